from abc import ABC, abstractmethod
from pathlib import Path


class PackageSource(ABC):
    """Abstract interface for places package source archives come from."""

    @abstractmethod
    def list_versions(self, name: str) -> list[str]:
        """Every version of `name` the source can provide.

        Raises:
            VersionResolutionError: the package is unknown to the source
            DownloadError: the source could not be queried
        """
        pass

    @abstractmethod
    def fetch(self, name: str, version: str, dest_dir: Path) -> Path:
        """Download the source archive for name@version into dest_dir.

        Returns:
            Path of the archive file; its suffix names the archive format.

        Raises:
            DownloadError: On any failure (missing release, timeout, etc.)
        """
        pass

    def close(self) -> None:
        return None

    def __enter__(self) -> "PackageSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
