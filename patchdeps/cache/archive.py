import logging
import os
import shutil
import tarfile
import zipfile
from pathlib import Path, PurePosixPath

from patchdeps.errors import ExtractionError
from patchdeps.util.paths import ensure_dir

logger = logging.getLogger(__name__)

TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tar.xz", ".tar", ".crate")
ZIP_SUFFIXES = (".zip",)


def _check_member_name(archive: Path, name: str) -> None:
    member = PurePosixPath(name.replace("\\", "/"))
    if member.is_absolute() or ".." in member.parts:
        raise ExtractionError(archive, f"unsafe member path {name!r}")


def _extract_tar(archive: Path, dest: Path) -> None:
    try:
        with tarfile.open(archive, "r:*") as tar:
            for member in tar.getmembers():
                _check_member_name(archive, member.name)
            tar.extractall(dest, filter="data")
    except tarfile.FilterError as e:
        raise ExtractionError(archive, f"unsafe member: {e}") from e
    except (tarfile.TarError, EOFError) as e:
        raise ExtractionError(archive, str(e)) from e


def _extract_zip(archive: Path, dest: Path) -> None:
    try:
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                _check_member_name(archive, info.filename)
            zf.extractall(dest)
            for info in zf.infolist():
                mode = (info.external_attr >> 16) & 0o777
                if mode and not info.is_dir():
                    os.chmod(dest / info.filename, mode)
    except (zipfile.BadZipFile, EOFError) as e:
        raise ExtractionError(archive, str(e)) from e
    except (NotImplementedError, RuntimeError, ValueError) as e:
        # an unsupported compression method or an encrypted member
        raise ExtractionError(archive, f"unreadable zip member: {e}") from e


def _strip_single_top_level(dest: Path) -> None:
    entries = list(dest.iterdir())
    if len(entries) != 1 or not entries[0].is_dir() or entries[0].is_symlink():
        return
    top = entries[0]
    # move children up, then drop the now-empty wrapper directory
    holder = dest / f".{top.name}.strip"
    os.replace(top, holder)
    for child in holder.iterdir():
        os.replace(child, dest / child.name)
    holder.rmdir()


def extract_archive(archive: Path, dest: Path) -> Path:
    """
    Unpack a source archive into dest.

    A single top-level directory (`foo-1.2.0/`, as sdists and crates carry)
    is stripped so dest holds the package tree directly. Members with
    absolute paths, `..` components or links leaving the tree are rejected.
    """

    archive = Path(archive)
    dest = ensure_dir(dest)
    name = archive.name

    if name.endswith(TAR_SUFFIXES):
        _extract_tar(archive, dest)
    elif name.endswith(ZIP_SUFFIXES):
        _extract_zip(archive, dest)
    else:
        raise ExtractionError(archive, "unsupported archive format")

    if not any(dest.iterdir()):
        shutil.rmtree(dest)
        raise ExtractionError(archive, "archive is empty")

    _strip_single_top_level(dest)
    logger.debug("Extracted %s into %s", archive, dest)
    return dest
