from abc import ABC, abstractmethod


class ContainerError(RuntimeError):
    """A container command failed. Carries the command line and its stderr."""

    def __init__(self, message, command=None, stderr=""):
        super().__init__(message)
        self.command = command
        self.stderr = stderr

    def __str__(self):
        detail = (self.stderr or "").strip()
        if detail:
            return f"{self.args[0]}: {detail}"
        return self.args[0]


class ContainerManager(ABC):
    """Base interface for container backends.

    Implementations: ComposeContainerManager.
    """

    @abstractmethod
    def find_manifest(self, shop_dir):
        """Return the path of the shop's container manifest, or None if it has none."""
        pass

    @abstractmethod
    def stop(self, shop_dir):
        """Stop all services of the shop. Raises ContainerError on failure."""
        pass

    @abstractmethod
    def start(self, shop_dir):
        """Start all services of the shop in the background. Raises ContainerError on failure."""
        pass
