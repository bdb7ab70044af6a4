import logging
import re
from dataclasses import dataclass

from patchdeps.diff.models import FilePatch, Hunk, HunkLine, LineKind, PatchDocument
from patchdeps.errors import PatchParseError
from patchdeps.manifest.models import SourceKind

logger = logging.getLogger(__name__)

HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@ ?(.*)$")
MBOX_FROM_RE = re.compile(r"^From [0-9a-f]{7,40} ")
SIGNATURE_VERSION_RE = re.compile(r"^\d+\.\d+[\w.\-]*\s*$")
_ISO_TIMESTAMP_RE = re.compile(
    r"\s+\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:\s*[+-]\d{4})?\s*$"
)
_CTIME_TIMESTAMP_RE = re.compile(
    r"\s+\w{3} \w{3} [ \d]\d \d{2}:\d{2}:\d{2} \d{4}\s*$"
)
NO_NEWLINE_MARKER = "\\"

_GIT_EXTENDED_HEADERS = (
    "index ",
    "old mode ",
    "new mode ",
    "new file mode ",
    "deleted file mode ",
    "similarity index ",
    "dissimilarity index ",
    "rename from ",
    "rename to ",
    "copy from ",
    "copy to ",
)


@dataclass
class _ParseMode:
    strip_prefixes: bool
    git_headers: bool
    require_git_header: bool


_MODES = {
    SourceKind.UNIFIED: _ParseMode(strip_prefixes=False, git_headers=False, require_git_header=False),
    SourceKind.GIT_DIFF: _ParseMode(strip_prefixes=True, git_headers=True, require_git_header=True),
    SourceKind.GITHUB_PR_DIFF: _ParseMode(strip_prefixes=True, git_headers=True, require_git_header=False),
}


@dataclass
class _GitSection:
    line_number: int
    old_path: str | None
    new_path: str | None
    saw_file_headers: bool = False
    new_mode: str | None = None
    deleted_mode: str | None = None
    rename_from: str | None = None
    rename_to: str | None = None
    copy: bool = False


def detect_source_kind(patch_txt: str) -> SourceKind:
    """Pick the parsing strategy for a patch whose manifest entry names none."""

    for line in patch_txt.splitlines():
        if line.startswith("diff --git "):
            return SourceKind.GIT_DIFF
    return SourceKind.UNIFIED


def _split_lines(patch_txt: str) -> list[str]:
    lines = patch_txt.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _unquote(raw: str) -> str:
    """Undo git's C-style path quoting (`"a/sp\\303\\244ce"`)."""

    body = raw[1:-1] if raw.endswith('"') and len(raw) >= 2 else raw[1:]
    out = bytearray()
    escapes = {"n": b"\n", "t": b"\t", '"': b'"', "\\": b"\\", "a": b"\a", "b": b"\b", "f": b"\f", "r": b"\r", "v": b"\v"}
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            if nxt in "01234567" and re.match(r"[0-7]{3}", body[i + 1:i + 4]):
                out.append(int(body[i + 1:i + 4], 8))
                i += 4
                continue
            out.extend(escapes.get(nxt, nxt.encode("utf-8")))
            i += 2
            continue
        out.extend(ch.encode("utf-8"))
        i += 1
    return out.decode("utf-8", errors="surrogateescape")


def _header_path(raw: str, prefix: str | None) -> str | None:
    raw = raw.rstrip("\r")
    if "\t" in raw:
        raw = raw.split("\t", 1)[0]
    else:
        raw = _ISO_TIMESTAMP_RE.sub("", raw)
        raw = _CTIME_TIMESTAMP_RE.sub("", raw)
    raw = raw.strip()
    if raw.startswith('"'):
        raw = _unquote(raw)
    if raw == "/dev/null":
        return None
    if prefix and raw.startswith(prefix):
        raw = raw[len(prefix):]
    return raw


def _git_header_paths(rest: str) -> tuple[str | None, str | None]:
    rest = rest.rstrip("\r")
    if rest.startswith('"'):
        match = re.match(r'^("(?:[^"\\]|\\.)*")\s+(.+)$', rest)
        if match:
            return _header_path(match.group(1), "a/"), _header_path(match.group(2), "b/")
    idx = rest.rfind(" b/")
    if idx == -1:
        return None, None
    return _header_path(rest[:idx], "a/"), _header_path(rest[idx + 1:], "b/")


def _blank_github_decoration(lines: list[str]) -> list[str]:
    """
    Remove the mail envelope GitHub wraps around `.patch` downloads.

    Each commit in a pull-request patch starts with a `From <sha>` line, mail
    headers, the commit message and a diffstat, and the file ends with a
    `-- ` signature. Those lines are blanked rather than dropped so reported
    line numbers still point into the original file.

    The envelope ends at `diff --git`, or at a `---`/`+++` pair followed by a
    hunk once the `---` line separating message from diffstat has been seen.
    A diff quoted in the commit message therefore stays blanked.
    """

    out = list(lines)
    in_envelope = False
    past_separator = False
    for idx, line in enumerate(lines):
        if MBOX_FROM_RE.match(line):
            in_envelope = True
            past_separator = False
        elif _is_signature(lines, idx):
            in_envelope = True
        elif in_envelope and line.startswith("diff --git "):
            in_envelope = False
        elif (
            in_envelope
            and past_separator
            and _is_file_header(lines, idx)
            and idx + 2 < len(lines)
            and lines[idx + 2].startswith("@@")
        ):
            in_envelope = False
        elif in_envelope and line.rstrip("\r") == "---":
            past_separator = True
        if in_envelope:
            out[idx] = ""
    return out


def _is_signature(lines: list[str], idx: int) -> bool:
    # `-- ` followed by the git version, then a blank line, the next commit or EOF
    if lines[idx].rstrip("\r") != "-- " or idx + 1 >= len(lines):
        return False
    if not SIGNATURE_VERSION_RE.match(lines[idx + 1]):
        return False
    after = idx + 2
    return after >= len(lines) or lines[after].strip() == "" or bool(MBOX_FROM_RE.match(lines[after]))


def _is_file_header(lines: list[str], idx: int) -> bool:
    return (
        lines[idx].startswith("--- ")
        and idx + 1 < len(lines)
        and lines[idx + 1].startswith("+++ ")
    )


def _parse_hunk(lines: list[str], idx: int, descriptor: str) -> tuple[Hunk, int]:
    header = lines[idx].rstrip("\r")
    match = HUNK_HEADER_RE.match(header)
    if not match:
        raise PatchParseError(descriptor, idx + 1, f"malformed hunk header: {header!r}")

    old_start = int(match.group(1))
    old_count = int(match.group(2)) if match.group(2) is not None else 1
    new_start = int(match.group(3))
    new_count = int(match.group(4)) if match.group(4) is not None else 1
    hunk = Hunk(
        old_start=old_start,
        old_count=old_count,
        new_start=new_start,
        new_count=new_count,
        section=match.group(5).strip(),
    )

    remaining_old = old_count
    remaining_new = new_count
    j = idx + 1
    while (remaining_old > 0 or remaining_new > 0) and j < len(lines):
        body = lines[j]
        if body.startswith(NO_NEWLINE_MARKER):
            if hunk.lines:
                hunk.lines[-1].no_newline = True
            j += 1
            continue

        prefix = body[:1]
        if prefix == " " or body in ("", "\r"):
            # editors strip the lone space of blank context lines
            if remaining_old == 0 or remaining_new == 0:
                raise PatchParseError(descriptor, j + 1, "context line exceeds the hunk's declared counts")
            hunk.lines.append(HunkLine(LineKind.CONTEXT, body[1:] if prefix == " " else body))
            remaining_old -= 1
            remaining_new -= 1
        elif prefix == "-":
            if remaining_old == 0:
                raise PatchParseError(descriptor, j + 1, "removed line exceeds the hunk's declared old count")
            hunk.lines.append(HunkLine(LineKind.REMOVED, body[1:]))
            remaining_old -= 1
        elif prefix == "+":
            if remaining_new == 0:
                raise PatchParseError(descriptor, j + 1, "added line exceeds the hunk's declared new count")
            hunk.lines.append(HunkLine(LineKind.ADDED, body[1:]))
            remaining_new -= 1
        else:
            break
        j += 1

    if remaining_old or remaining_new:
        raise PatchParseError(
            descriptor,
            j + 1,
            f"hunk {hunk.header} ended early: {remaining_old} old and {remaining_new} new lines missing",
        )

    if j < len(lines) and lines[j].startswith(NO_NEWLINE_MARKER):
        if hunk.lines:
            hunk.lines[-1].no_newline = True
        j += 1

    return hunk, j


def _span(hunk: Hunk) -> tuple[int, int]:
    start = hunk.old_start if hunk.old_count > 0 else hunk.old_start + 1
    return start, start + hunk.old_count


def parse_patch(
    patch_txt: str,
    source_kind: SourceKind | None = None,
    descriptor: str = "<patch>",
) -> PatchDocument:
    """
    Parse diff text into a PatchDocument.

    Args:
        patch_txt: raw text of one patch file
        source_kind: parsing strategy; None sniffs Unified vs GitDiff
        descriptor: name used in error messages (usually the patch path)

    Returns:
        PatchDocument with one FilePatch per file section, in file order

    Raises:
        PatchParseError: malformed headers, truncated hunks, overlapping
            hunks, binary diffs, or text without any file section

    Header styles per source kind:
    - `Unified`: bare `--- path` / `+++ path`, paths kept verbatim
    - `GitDiff`: every section opens with `diff --git a/x b/x`; `a/`/`b/`
      prefixes stripped; extended headers (modes, renames) understood
    - `GithubPrDiff`: mail envelope stripped, `diff --git` optional,
      `a/`/`b/` prefixes stripped
    """

    kind = source_kind or detect_source_kind(patch_txt)
    mode = _MODES[kind]
    lines = _split_lines(patch_txt)
    if kind == SourceKind.GITHUB_PR_DIFF:
        lines = _blank_github_decoration(lines)

    old_prefix = "a/" if mode.strip_prefixes else None
    new_prefix = "b/" if mode.strip_prefixes else None

    file_patches: list[FilePatch] = []
    # (line number, patch) for headers seen outside a `diff --git` section
    bare_headers: list[tuple[int, FilePatch]] = []
    current: FilePatch | None = None
    section: _GitSection | None = None

    def close_section() -> None:
        nonlocal section
        if section is None or section.saw_file_headers:
            section = None
            return
        if section.rename_from is not None or section.new_mode or section.deleted_mode or section.copy:
            old_path = section.rename_from or section.old_path
            new_path = section.rename_to or section.new_path
            if section.new_mode:
                old_path = None
            if section.deleted_mode:
                new_path = None
            file_patches.append(
                FilePatch(
                    old_path=old_path,
                    new_path=new_path,
                    new_mode=section.new_mode,
                    deleted_mode=section.deleted_mode,
                    is_copy=section.copy,
                )
            )
        else:
            logger.debug("Skipping content-less git section at line %d", section.line_number)
        section = None

    i = 0
    while i < len(lines):
        line = lines[i]

        if mode.git_headers and line.startswith("diff --git "):
            close_section()
            current = None
            old_path, new_path = _git_header_paths(line[len("diff --git "):])
            if old_path is None and new_path is None:
                raise PatchParseError(descriptor, i + 1, f"malformed git header: {line!r}")
            section = _GitSection(line_number=i + 1, old_path=old_path, new_path=new_path)
            i += 1
            continue

        if section is not None and not section.saw_file_headers and line.startswith(_GIT_EXTENDED_HEADERS):
            value = line.rstrip("\r").rsplit(" ", 1)[-1]
            if line.startswith("new file mode "):
                section.new_mode = value
            elif line.startswith("deleted file mode "):
                section.deleted_mode = value
            elif line.startswith("rename from "):
                section.rename_from = _header_path(line[len("rename from "):], None)
            elif line.startswith("rename to "):
                section.rename_to = _header_path(line[len("rename to "):], None)
            elif line.startswith("copy from "):
                section.copy = True
                section.rename_from = _header_path(line[len("copy from "):], None)
            elif line.startswith("copy to "):
                section.copy = True
                section.rename_to = _header_path(line[len("copy to "):], None)
            i += 1
            continue

        if _is_file_header(lines, i):
            if mode.require_git_header and (section is None or section.saw_file_headers):
                raise PatchParseError(descriptor, i + 1, "file header outside a 'diff --git' section")
            current = FilePatch(
                old_path=_header_path(line[4:], old_prefix),
                new_path=_header_path(lines[i + 1][4:], new_prefix),
            )
            if section is not None:
                section.saw_file_headers = True
                current.new_mode = section.new_mode
                current.deleted_mode = section.deleted_mode
                current.is_copy = section.copy
            else:
                bare_headers.append((i + 1, current))
            file_patches.append(current)
            i += 2
            continue

        if line.startswith("@@"):
            if current is None:
                raise PatchParseError(descriptor, i + 1, "hunk header before any file header")
            hunk, next_i = _parse_hunk(lines, i, descriptor)
            if current.hunks:
                _, prev_end = _span(current.hunks[-1])
                start, _ = _span(hunk)
                if start < prev_end:
                    raise PatchParseError(
                        descriptor,
                        i + 1,
                        f"hunk {hunk.header} overlaps or precedes the previous hunk in {current.display_path}",
                    )
            current.hunks.append(hunk)
            i = next_i
            continue

        if line.startswith("GIT binary patch") or (
            line.startswith("Binary files ") and line.rstrip("\r").endswith(" differ")
        ):
            raise PatchParseError(descriptor, i + 1, "binary diffs are not supported")

        i += 1

    close_section()

    # without git headers a section with no hunks changes nothing
    skipped: set[int] = set()
    for line_number, file_patch in bare_headers:
        if not file_patch.hunks:
            logger.warning(
                "%s:%d: skipping file header for %s, it has no hunks",
                descriptor,
                line_number,
                file_patch.display_path,
            )
            skipped.add(id(file_patch))
    file_patches = [fp for fp in file_patches if id(fp) not in skipped]

    if not file_patches:
        raise PatchParseError(descriptor, 1, "no file patches found")

    logger.debug(
        "Parsed %d file patches from %s (%s)", len(file_patches), descriptor, kind.value
    )
    return PatchDocument(descriptor=descriptor, source_kind=kind, file_patches=file_patches)
