from shopsnap.volume.base import Subvolume, VolumeError, VolumeManager
from shopsnap.volume.btrfs import BtrfsVolumeManager


def create_volume_manager(config=None):
    """Create a volume manager from config.

    Config keys:
        volume_backend: "btrfs" (default)
        filesystem_root: mount point of the BTRFS top level
        use_sudo: prefix btrfs commands with sudo
    """
    config = config or {}
    backend = config.get("volume_backend", "btrfs")

    if backend == "btrfs":
        return BtrfsVolumeManager(
            filesystem_root=config.get("filesystem_root", "/"),
            use_sudo=bool(config.get("use_sudo", False)),
        )

    raise ValueError(f"Unknown volume backend: {backend!r}. Use 'btrfs'.")


__all__ = ["Subvolume", "VolumeError", "VolumeManager", "BtrfsVolumeManager", "create_volume_manager"]
