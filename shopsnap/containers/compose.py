import subprocess
from pathlib import Path
from shopsnap.containers.base import ContainerError, ContainerManager

DEFAULT_COMPOSE_FILES = ("docker-compose.yaml", "docker-compose.yml", "compose.yaml", "compose.yml")


class ComposeContainerManager(ContainerManager):
    """Runs `docker compose` inside the shop directory."""

    def __init__(self, compose_files=DEFAULT_COMPOSE_FILES):
        self.compose_files = tuple(compose_files)

    def find_manifest(self, shop_dir):
        shop_dir = Path(shop_dir)
        for name in self.compose_files:
            candidate = shop_dir / name
            if candidate.is_file():
                return candidate
        return None

    def _compose(self, shop_dir, args, action):
        manifest = self.find_manifest(shop_dir)
        if manifest is None:
            raise ContainerError(f"{action} failed: no compose file in {shop_dir}")
        cmd = ["docker", "compose", "-f", manifest.name, *args]
        try:
            result = subprocess.run(cmd, cwd=str(shop_dir), capture_output=True, text=True)
        except FileNotFoundError:
            raise ContainerError(f"{action} failed: docker not found", command=cmd)
        except OSError as e:
            raise ContainerError(f"{action} failed: {e}", command=cmd)
        if result.returncode != 0:
            raise ContainerError(f"{action} failed", command=cmd, stderr=result.stderr or result.stdout)
        return result

    def stop(self, shop_dir):
        self._compose(shop_dir, ["down"], "Stopping containers")

    def start(self, shop_dir):
        self._compose(shop_dir, ["up", "-d"], "Starting containers")
