import logging
import shutil
from pathlib import Path

from patchdeps.errors import DownloadError, VersionResolutionError
from patchdeps.registry.base import PackageSource

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tar.xz", ".tar", ".crate", ".zip")


def archive_suffix(filename: str) -> str | None:
    for suffix in ARCHIVE_SUFFIXES:
        if filename.endswith(suffix):
            return suffix
    return None


class LocalArchiveSource(PackageSource):
    """
    Serve archives named `<name>-<version>.<ext>` from a directory.

    Used for offline builds and as a vendored mirror.
    """

    def __init__(self, archive_dir: Path):
        self.archive_dir = Path(archive_dir)

    def _archives(self, name: str) -> dict[str, Path]:
        found: dict[str, Path] = {}
        if not self.archive_dir.is_dir():
            return found
        prefix = f"{name}-"
        for entry in sorted(self.archive_dir.iterdir()):
            if not entry.is_file() or not entry.name.startswith(prefix):
                continue
            suffix = archive_suffix(entry.name)
            if suffix is None:
                continue
            version = entry.name[len(prefix):-len(suffix)]
            # `foo-bar-1.0` must not be served as a version of `foo`
            if not version or not version[0].isdigit():
                continue
            found.setdefault(version, entry)
        return found

    def list_versions(self, name: str) -> list[str]:
        versions = list(self._archives(name))
        if not versions:
            raise VersionResolutionError(name, None)
        return versions

    def fetch(self, name: str, version: str, dest_dir: Path) -> Path:
        archive = self._archives(name).get(version)
        if archive is None:
            raise DownloadError(name, version, f"no archive in {self.archive_dir}")
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / archive.name
        try:
            shutil.copyfile(archive, dest)
        except OSError as e:
            raise DownloadError(name, version, str(e)) from e
        logger.debug("Copied %s -> %s", archive, dest)
        return dest
