import hashlib
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from filelock import FileLock
from pydantic import BaseModel, ConfigDict, ValidationError

from patchdeps.cache.archive import extract_archive
from patchdeps.errors import DownloadError, ExtractionError
from patchdeps.registry.base import PackageSource
from patchdeps.util.paths import ensure_dir, remove_tree

logger = logging.getLogger(__name__)

LOCKS_DIR = ".locks"
SCRATCH_DIR = ".tmp"


class PristineMarker(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
    )

    name: str
    version: str
    archive: str
    sha256: str
    extracted_at: datetime


def slot_name(name: str, version: str) -> str:
    return f"{name}-{version}"


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(64 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


class PackageCache:
    """
    Read-only pristine source trees shared by every pipeline run.

    Each (name, version) lives in its own slot directory. A slot only counts
    as present once its marker file exists; the marker is written after the
    tree has been moved into place, so a crash mid-extraction leaves a slot
    that is simply extracted again.
    """

    def __init__(self, cache_root: Path, source: PackageSource | None = None):
        self.cache_root = Path(cache_root)
        self.source = source

    def pristine_path(self, name: str, version: str) -> Path:
        return self.cache_root / slot_name(name, version)

    def marker_path(self, name: str, version: str) -> Path:
        return self.cache_root / f"{slot_name(name, version)}.json"

    def _lock(self, name: str, version: str) -> FileLock:
        locks = ensure_dir(self.cache_root / LOCKS_DIR)
        return FileLock(str(locks / f"{slot_name(name, version)}.lock"))

    def read_marker(self, name: str, version: str) -> PristineMarker | None:
        marker = self.marker_path(name, version)
        try:
            return PristineMarker.model_validate_json(marker.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable cache marker %s: %s", marker, e)
            return None

    def is_cached(self, name: str, version: str) -> bool:
        return self.pristine_path(name, version).is_dir() and self.read_marker(name, version) is not None

    def ensure_pristine(self, name: str, version: str, refresh: bool = False) -> Path:
        """
        Return the pristine tree for name@version, fetching it on first use.

        Concurrent callers for the same pair block on a per-slot file lock,
        so the archive is downloaded and extracted once; different pairs
        proceed in parallel.

        Raises:
            DownloadError: the source could not provide the archive
            ExtractionError: the archive could not be unpacked safely
        """

        slot = self.pristine_path(name, version)
        if not refresh and self.is_cached(name, version):
            logger.debug("Cache hit for %s-%s", name, version)
            return slot

        with self._lock(name, version):
            # another worker may have finished while we waited
            if not refresh and self.is_cached(name, version):
                logger.debug("Cache filled concurrently for %s-%s", name, version)
                return slot

            self._discard(name, version)
            self._populate(name, version)

        return slot

    def _discard(self, name: str, version: str) -> None:
        self.marker_path(name, version).unlink(missing_ok=True)
        remove_tree(self.pristine_path(name, version))

    def _populate(self, name: str, version: str) -> None:
        scratch_root = ensure_dir(self.cache_root / SCRATCH_DIR)
        token = uuid.uuid4().hex[:8]
        download_dir = scratch_root / f"{slot_name(name, version)}.download-{token}"
        extract_dir = scratch_root / f"{slot_name(name, version)}.extract-{token}"

        try:
            if self.source is None:
                raise DownloadError(name, version, "no package source configured")
            logger.info("Fetching %s-%s", name, version)
            try:
                archive = self.source.fetch(name, version, download_dir)
            except OSError as e:
                raise DownloadError(name, version, str(e)) from e

            try:
                extract_archive(archive, extract_dir)
                digest = _sha256(archive)
                extract_dir.replace(self.pristine_path(name, version))
            except OSError as e:
                raise ExtractionError(archive, str(e)) from e

            marker = PristineMarker(
                name=name,
                version=version,
                archive=archive.name,
                sha256=digest,
                extracted_at=datetime.now(timezone.utc),
            )
            marker_tmp = scratch_root / f"{slot_name(name, version)}.marker-{token}"
            marker_tmp.write_text(marker.model_dump_json(indent=2), encoding="utf-8")
            marker_tmp.replace(self.marker_path(name, version))
            logger.info("Cached %s-%s (sha256 %s)", name, version, digest[:12])
        finally:
            remove_tree(download_dir)
            remove_tree(extract_dir)

    def invalidate(self, name: str, version: str) -> None:
        with self._lock(name, version):
            self._discard(name, version)
        logger.info("Invalidated cache slot %s-%s", name, version)

    def clear(self) -> int:
        """Remove every cached slot; returns how many were removed."""

        if not self.cache_root.is_dir():
            return 0
        removed = 0
        for marker in sorted(self.cache_root.glob("*.json")):
            slot = marker.with_suffix("")
            marker.unlink(missing_ok=True)
            remove_tree(slot)
            removed += 1
        for entry in sorted(self.cache_root.iterdir()):
            if entry.name == LOCKS_DIR:
                continue
            remove_tree(entry)
        logger.info("Cleared %d cached packages from %s", removed, self.cache_root)
        return removed
