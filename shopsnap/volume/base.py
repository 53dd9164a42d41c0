from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


class VolumeError(RuntimeError):
    """A volume command failed. Carries the command line and its stderr."""

    def __init__(self, message, command=None, stderr=""):
        super().__init__(message)
        self.command = command
        self.stderr = stderr

    def __str__(self):
        detail = (self.stderr or "").strip()
        if detail:
            return f"{self.args[0]}: {detail}"
        return self.args[0]


@dataclass(frozen=True)
class Subvolume:
    id: int
    path: Path
    gen: int = 0
    top_level: int = 0


class VolumeManager(ABC):
    """Base interface for volume backends.

    Implementations: BtrfsVolumeManager. Every method raises VolumeError
    when the underlying operation fails.
    """

    @abstractmethod
    def snapshot(self, source, dest, readonly=False):
        """Create a copy-on-write snapshot of source at dest."""
        pass

    @abstractmethod
    def delete(self, path):
        """Delete the subvolume at path."""
        pass

    @abstractmethod
    def set_readonly(self, path, readonly):
        """Flip the read-only property of the subvolume at path."""
        pass

    @abstractmethod
    def list(self, root):
        """List subvolumes below root. Returns a list of Subvolume."""
        pass
