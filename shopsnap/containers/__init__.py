from shopsnap.containers.base import ContainerError, ContainerManager
from shopsnap.containers.compose import ComposeContainerManager, DEFAULT_COMPOSE_FILES


def create_container_manager(config=None):
    config = config or {}
    backend = config.get("container_backend", "compose")
    if backend == "compose":
        return ComposeContainerManager(config.get("compose_files") or DEFAULT_COMPOSE_FILES)
    raise ValueError(f"Unknown container backend: {backend!r}. Use 'compose'.")


__all__ = [
    "ContainerError",
    "ContainerManager",
    "ComposeContainerManager",
    "DEFAULT_COMPOSE_FILES",
    "create_container_manager",
]
