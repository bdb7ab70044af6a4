import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from patchdeps.config import DEFAULT_OFFSET_WINDOW
from patchdeps.diff.models import FilePatch, Hunk, PatchDocument
from patchdeps.errors import ApplyFailure, PatchApplyError
from patchdeps.util.paths import resolve_safe_path

logger = logging.getLogger(__name__)

# lines of file context shown on each side of a failed hunk
DIAGNOSTIC_CONTEXT = 3


class ChangeType(StrEnum):
    MODIFY = "modify"
    CREATE = "create"
    DELETE = "delete"
    RENAME = "rename"


@dataclass
class AppliedFile:
    path: str
    change: ChangeType
    source: str | None = None

    def describe(self) -> str:
        if self.change == ChangeType.CREATE:
            return f"/dev/null -> {self.path}"
        if self.change == ChangeType.DELETE:
            return f"{self.path} -> /dev/null"
        if self.change == ChangeType.RENAME:
            return f"{self.source} -> {self.path}"
        return self.path


def _split(data: bytes) -> tuple[list[str], bool]:
    text = data.decode("utf-8", errors="surrogateescape")
    # an empty file has no unterminated last line
    if not text:
        return [], True
    trailing_newline = text.endswith("\n")
    lines = text.split("\n")
    if trailing_newline:
        lines.pop()
    return lines, trailing_newline


def _join(lines: list[str], trailing_newline: bool) -> bytes:
    text = "\n".join(lines)
    if lines and trailing_newline:
        text += "\n"
    return text.encode("utf-8", errors="surrogateescape")


def _matches_at(lines: list[str], expected: list[str], pos: int) -> bool:
    if pos < 0 or pos + len(expected) > len(lines):
        return False
    return lines[pos:pos + len(expected)] == expected


def _search(
    lines: list[str],
    expected: list[str],
    anchor: int,
    window: int,
    floor: int,
) -> tuple[int | None, list[int]]:
    """
    Search outward from anchor, nearest distance first.

    Returns (position, []) on a unique nearest match, (None, tied) when both
    directions match at the same distance, and (None, []) when nothing within
    the window matches. Positions below floor are never candidates.
    """

    if anchor >= floor and _matches_at(lines, expected, anchor):
        return anchor, []
    for distance in range(1, window + 1):
        found = [
            pos
            for pos in (anchor - distance, anchor + distance)
            if pos >= floor and _matches_at(lines, expected, pos)
        ]
        if len(found) == 1:
            return found[0], []
        if len(found) > 1:
            return None, found
    return None, []


def _place_insertion(lines: list[str], anchor: int, window: int, floor: int) -> int | None:
    if floor <= anchor <= len(lines):
        return anchor
    if anchor > len(lines) and anchor - len(lines) <= window and len(lines) >= floor:
        return len(lines)
    if anchor < floor and floor - anchor <= window and floor <= len(lines):
        return floor
    return None


def _diagnostic_slice(lines: list[str], anchor: int, size: int) -> list[str]:
    start = max(anchor - DIAGNOSTIC_CONTEXT, 0)
    end = min(anchor + size + DIAGNOSTIC_CONTEXT, len(lines))
    return lines[start:end]


def _new_file_content(file_patch: FilePatch, path: str) -> bytes:
    lines: list[str] = []
    trailing_newline = True
    for idx, hunk in enumerate(file_patch.hunks):
        if hunk.old_lines:
            raise PatchApplyError(
                path,
                idx,
                ApplyFailure.NO_MATCH,
                "target file does not exist but the hunk expects existing lines",
                line=hunk.old_start,
                expected=hunk.old_lines,
            )
        lines.extend(hunk.new_lines)
        if hunk.lines:
            trailing_newline = not hunk.new_missing_newline()
    return _join(lines, trailing_newline)


def apply_file_patch(
    file_patch: FilePatch,
    data: bytes | None,
    offset_window: int = DEFAULT_OFFSET_WINDOW,
) -> bytes:
    """
    Apply every hunk of a FilePatch to the current bytes of its target.

    Args:
        file_patch: parsed file section; hunks in ascending old_start order
        data: current file bytes, or None when the target does not exist
        offset_window: how many lines a hunk may have drifted from its
            header position and still be applied

    Returns:
        The new file bytes.

    Raises:
        PatchApplyError: NO_MATCH when a hunk's Context+Removed lines are not
            found within the window, AMBIGUOUS when two positions at the
            same distance match, CONFLICT when the only match overlaps text
            an earlier hunk already rewrote.
    """

    path = file_patch.display_path
    if data is None:
        return _new_file_content(file_patch, path)

    lines, trailing_newline = _split(data)
    delta = 0
    floor = 0

    for idx, hunk in enumerate(file_patch.hunks):
        expected = hunk.old_lines
        replacement = hunk.new_lines

        if expected:
            anchor = hunk.old_start - 1 + delta
            pos, tied = _search(lines, expected, anchor, offset_window, floor)
            if pos is None:
                _raise_unplaced(path, idx, hunk, lines, anchor, offset_window, floor, tied)
        else:
            # pure insertion: old_start names the line the text goes after
            anchor = hunk.old_start + delta
            pos = _place_insertion(lines, anchor, offset_window, floor)
            if pos is None:
                raise PatchApplyError(
                    path,
                    idx,
                    ApplyFailure.NO_MATCH,
                    f"insertion point {hunk.old_start} is outside the file ({len(lines)} lines)",
                    line=hunk.old_start,
                )

        if pos != anchor:
            logger.debug("%s hunk #%d applied with offset %+d", path, idx + 1, pos - anchor)

        touches_eof = pos + len(expected) == len(lines)
        lines[pos:pos + len(expected)] = replacement
        delta += len(replacement) - len(expected)
        floor = pos + len(replacement)

        if touches_eof and (hunk.old_missing_newline() or hunk.new_missing_newline()):
            trailing_newline = not hunk.new_missing_newline()

    return _join(lines, trailing_newline)


def _raise_unplaced(
    path: str,
    idx: int,
    hunk: Hunk,
    lines: list[str],
    anchor: int,
    window: int,
    floor: int,
    tied: list[int],
) -> None:
    expected = hunk.old_lines
    actual = _diagnostic_slice(lines, max(anchor, 0), len(expected))
    if tied:
        raise PatchApplyError(
            path,
            idx,
            ApplyFailure.AMBIGUOUS,
            f"{hunk.header} matches equally well at lines {tied[0] + 1} and {tied[1] + 1}",
            line=hunk.old_start,
            expected=expected,
            actual=actual,
        )
    if floor > 0:
        overlapped, _ = _search(lines, expected, anchor, window, 0)
        if overlapped is not None:
            raise PatchApplyError(
                path,
                idx,
                ApplyFailure.CONFLICT,
                f"{hunk.header} only matches inside lines already changed by an earlier hunk",
                line=overlapped + 1,
                expected=expected,
                actual=actual,
            )
    raise PatchApplyError(
        path,
        idx,
        ApplyFailure.NO_MATCH,
        f"{hunk.header} context not found within {window} lines",
        line=hunk.old_start,
        expected=expected,
        actual=actual,
    )


def _conflict(path: str, message: str) -> PatchApplyError:
    return PatchApplyError(path, None, ApplyFailure.CONFLICT, message)


def apply_to_tree(
    file_patch: FilePatch,
    root: Path,
    offset_window: int = DEFAULT_OFFSET_WINDOW,
) -> AppliedFile:
    """Apply one FilePatch to the tree at root and write the result."""

    if file_patch.old_path is None and file_patch.new_path is None:
        raise _conflict("/dev/null", "Both old and new file are all empty.")

    old_target = resolve_safe_path(root, file_patch.old_path) if file_patch.old_path else None
    new_target = resolve_safe_path(root, file_patch.new_path) if file_patch.new_path else None

    if file_patch.is_deletion:
        target = old_target or new_target
        label = file_patch.old_path or file_patch.display_path
        if not target.is_file():
            raise PatchApplyError(label, None, ApplyFailure.NO_MATCH, "file to delete does not exist")
        remainder = apply_file_patch(file_patch, target.read_bytes(), offset_window)
        if remainder:
            raise _conflict(label, "file still has content after applying the deletion hunks")
        target.unlink()
        return AppliedFile(path=label, change=ChangeType.DELETE)

    source = old_target if old_target is not None and old_target.is_file() else None
    if (
        source is None
        and not file_patch.is_new_file
        and new_target.is_file()
        and any(hunk.old_lines for hunk in file_patch.hunks)
    ):
        # `diff -u foo.c.orig foo.c`: the old name only labels a backup
        logger.debug("%s does not exist, patching %s in place", file_patch.old_path, file_patch.new_path)
        source = new_target
    if source is None and new_target.exists():
        raise _conflict(file_patch.new_path, "cannot create file, it already exists")
    if source is not None and source != new_target and new_target.exists():
        raise _conflict(file_patch.new_path, "rename or copy target already exists")

    data = source.read_bytes() if source is not None else None
    result = apply_file_patch(file_patch, data, offset_window)

    new_target.parent.mkdir(parents=True, exist_ok=True)
    new_target.write_bytes(result)

    if source is None:
        if file_patch.new_mode and file_patch.new_mode.endswith("755"):
            new_target.chmod(0o755)
        return AppliedFile(path=file_patch.new_path, change=ChangeType.CREATE)

    if source != new_target:
        new_target.chmod(source.stat().st_mode & 0o777)
        if file_patch.is_rename:
            source.unlink()
            return AppliedFile(path=file_patch.new_path, change=ChangeType.RENAME, source=file_patch.old_path)
        return AppliedFile(path=file_patch.new_path, change=ChangeType.CREATE, source=file_patch.old_path)

    return AppliedFile(path=file_patch.new_path, change=ChangeType.MODIFY)


def apply_document(
    document: PatchDocument,
    root: Path,
    offset_window: int = DEFAULT_OFFSET_WINDOW,
) -> list[AppliedFile]:
    """
    Apply every FilePatch of a document, in order, to the tree at root.

    A failure part-way through leaves earlier files already rewritten; the
    working copy is rebuilt from the pristine tree on the next run, so no
    rollback is attempted.
    """

    applied: list[AppliedFile] = []
    for file_patch in document.file_patches:
        applied.append(apply_to_tree(file_patch, root, offset_window))
    logger.debug("Applied %s: %d files changed", document.descriptor, len(applied))
    return applied
