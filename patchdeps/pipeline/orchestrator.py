import hashlib
import json
import logging
import time
from pathlib import Path

from patchdeps.config import DEFAULT_OFFSET_WINDOW
from patchdeps.diff.applier import AppliedFile, ChangeType, apply_document
from patchdeps.diff.parser import detect_source_kind, parse_patch
from patchdeps.errors import (
    DependencyPatchError,
    FilesystemError,
    PatchDepsError,
    PatchFileNotFoundError,
)
from patchdeps.manifest.models import PatchDescriptor, PatchSpec
from patchdeps.pipeline.models import DependencyOutcome, DependencyStatus
from patchdeps.util.paths import ensure_dir, replace_tree

logger = logging.getLogger(__name__)

STAMPS_DIR = ".stamps"


def working_copy_name(name: str, version: str) -> str:
    return f"{name}-{version}"


class PatchOrchestrator:
    """
    Rebuilds one dependency's working copy and applies its patches in order.

    The working copy is always re-derived from the pristine tree, never
    patched in place twice, so running twice gives the same bytes.
    """

    def __init__(
        self,
        output_root: Path,
        patches_root: Path,
        offset_window: int = DEFAULT_OFFSET_WINDOW,
    ):
        self.output_root = Path(output_root)
        self.patches_root = Path(patches_root)
        self.offset_window = offset_window

    def working_copy(self, name: str, version: str) -> Path:
        return self.output_root / working_copy_name(name, version)

    def stamp_path(self, name: str, version: str) -> Path:
        return self.output_root / STAMPS_DIR / f"{working_copy_name(name, version)}.json"

    def patch_path(self, descriptor: PatchDescriptor) -> Path:
        return self.patches_root / descriptor.path

    def _read_patch(self, descriptor: PatchDescriptor) -> bytes:
        path = self.patch_path(descriptor)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise PatchFileNotFoundError(path) from e
        except OSError as e:
            raise FilesystemError(path, e) from e

    def fingerprint(self, spec: PatchSpec, version: str, pristine: Path) -> str:
        """
        Digest of everything that determines the working copy's content.

        Covers the dependency, its resolved version, the pristine marker
        (archive hash), each patch file's path, kind and bytes, and the
        offset window. A missing patch file hashes as absent so the stamp
        never matches and the full run reports the error.
        """

        digest = hashlib.sha256()
        digest.update(f"{spec.dependency_name}\0{version}\0{self.offset_window}\0".encode())

        marker = pristine.with_name(f"{pristine.name}.json")
        try:
            digest.update(marker.read_bytes())
        except OSError:
            digest.update(b"<no marker>")

        for descriptor in spec.patch_descriptors:
            kind = descriptor.source_kind.value if descriptor.source_kind else "Default"
            digest.update(f"\0{descriptor.path}\0{kind}\0".encode())
            try:
                content = self.patch_path(descriptor).read_bytes()
            except OSError:
                digest.update(b"<missing>")
                continue
            digest.update(hashlib.sha256(content).digest())

        return digest.hexdigest()

    def _read_stamp(self, name: str, version: str, fingerprint: str) -> list[str] | None:
        """Files recorded by the last successful run, or None when stale."""

        stamp = self.stamp_path(name, version)
        try:
            recorded = json.loads(stamp.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(recorded, dict) or recorded.get("fingerprint") != fingerprint:
            return None
        if not self.working_copy(name, version).is_dir():
            return None
        return list(recorded.get("patched_files") or [])

    def _write_stamp(self, name: str, version: str, fingerprint: str, files: list[str]) -> None:
        stamp = self.stamp_path(name, version)
        ensure_dir(stamp.parent)
        stamp.write_text(
            json.dumps({"fingerprint": fingerprint, "patched_files": files}, indent=2, sort_keys=True),
            encoding="utf-8",
        )

    def _apply_descriptor(self, spec: PatchSpec, descriptor: PatchDescriptor, target: Path) -> list[AppliedFile]:
        data = self._read_patch(descriptor)
        text = data.decode("utf-8", errors="surrogateescape")
        kind = descriptor.source_kind or detect_source_kind(text)
        document = parse_patch(text, kind, descriptor=str(descriptor.path))
        applied = apply_document(document, target, self.offset_window)
        logger.info("Patched %s: %s", spec.dependency_name, descriptor.path)
        for item in applied:
            logger.debug("  %s %s", item.change.value, item.describe())
        return applied

    def apply(
        self,
        spec: PatchSpec,
        version: str,
        pristine: Path,
        incremental: bool = False,
    ) -> DependencyOutcome:
        """
        Produce the patched working copy for spec at version.

        Raises:
            DependencyPatchError: wrapping the first error, with the patch
                file it happened in (None for errors while copying the tree)
        """

        started = time.monotonic()
        name = spec.dependency_name
        pristine = Path(pristine)
        target = self.working_copy(name, version)
        fingerprint = self.fingerprint(spec, version, pristine)

        recorded = self._read_stamp(name, version, fingerprint) if incremental else None
        if recorded is not None:
            logger.info("%s-%s is up to date", name, version)
            return DependencyOutcome(
                name=name,
                status=DependencyStatus.UP_TO_DATE,
                version=version,
                working_copy=target,
                patched_files=recorded,
                patches_applied=len(spec.patch_descriptors),
                duration_sec=time.monotonic() - started,
            )

        stamp = self.stamp_path(name, version)
        try:
            stamp.unlink(missing_ok=True)
            replace_tree(pristine, target)
        except OSError as e:
            raise DependencyPatchError(name, None, FilesystemError(target, e)) from e

        touched: set[str] = set()
        for descriptor in spec.patch_descriptors:
            label = str(descriptor.path)
            try:
                applied = self._apply_descriptor(spec, descriptor, target)
            except PatchDepsError as e:
                raise DependencyPatchError(name, label, e) from e
            except OSError as e:
                raise DependencyPatchError(name, label, FilesystemError(target, e)) from e
            touched.update(item.path for item in applied)
            touched.update(item.source for item in applied if item.change == ChangeType.RENAME)

        files = sorted(touched)
        try:
            self._write_stamp(name, version, fingerprint, files)
        except OSError as e:
            raise DependencyPatchError(name, None, FilesystemError(stamp, e)) from e

        return DependencyOutcome(
            name=name,
            status=DependencyStatus.PATCHED,
            version=version,
            working_copy=target,
            patched_files=files,
            patches_applied=len(spec.patch_descriptors),
            duration_sec=time.monotonic() - started,
        )

