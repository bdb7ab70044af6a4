import logging
import os
import shutil
import uuid
from pathlib import Path

from patchdeps.errors import PathEscapeError

logger = logging.getLogger(__name__)


class SymLinkError(PathEscapeError):
    def __init__(self, path: Path, root: Path):
        super().__init__(path, root)
        self.args = (f"Path contains symlink: {str(path)}",)


def ensure_dir(path: Path) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_safe_path(
    root: Path,
    relative_path: str,
    allow_symlinks: bool = False,
) -> Path:
    """
    Resolve a patch-supplied path inside a dependency tree.

    Args:
        root: the working copy the patch is applied to
        relative_path: path taken from a diff header (should be relative)
        allow_symlinks: If False, reject paths that traverse a symlink

    Returns:
        Absolute path guaranteed to be inside root

    Raises:
        PathEscapeError: absolute paths, `..` escapes, or symlinks (when
            not allowed) that would leave the tree
    """

    root = Path(root).resolve()

    if not relative_path or Path(relative_path).is_absolute() or relative_path.startswith(("/", "\\")):
        logger.warning("Rejected absolute patch path: %s", relative_path)
        raise PathEscapeError(relative_path, root)

    candidate = (root / relative_path).resolve()

    if candidate == root or not candidate.is_relative_to(root):
        logger.warning("Path escape attempt: %s is not relative to %s", candidate, root)
        raise PathEscapeError(candidate, root)

    if not allow_symlinks:
        path_so_far = root

        for part in Path(relative_path).parts:
            path_so_far = path_so_far / part

            if path_so_far.is_symlink():
                logger.warning("Symlink blocked: %s", path_so_far)
                raise SymLinkError(path_so_far, root)

    logger.debug("Resolved safe path: %s -> %s", relative_path, candidate)
    return candidate


def remove_tree(path: Path) -> None:
    """Delete a directory tree; a missing path is not an error."""

    path = Path(path)
    if not path.exists() and not path.is_symlink():
        return
    if path.is_symlink() or path.is_file():
        path.unlink()
        return
    # rename first so a crash mid-delete never leaves a half-removed tree
    # under the original name
    trash = path.with_name(f".{path.name}.trash-{uuid.uuid4().hex[:8]}")
    os.replace(path, trash)
    shutil.rmtree(trash)


def replace_tree(source: Path, dest: Path) -> Path:
    """Make `dest` an exact copy of `source`, discarding anything already there."""

    dest = Path(dest)
    ensure_dir(dest.parent)
    remove_tree(dest)
    scratch = dest.with_name(f".{dest.name}.tmp-{uuid.uuid4().hex[:8]}")
    shutil.copytree(source, scratch, symlinks=True)
    os.replace(scratch, dest)
    logger.debug("Copied %s -> %s", source, dest)
    return dest


def tree_files(root: Path) -> list[Path]:
    """Relative paths of every regular file under root, sorted."""

    root = Path(root)
    return sorted(
        p.relative_to(root)
        for p in root.rglob("*")
        if p.is_file() and not p.is_symlink()
    )
