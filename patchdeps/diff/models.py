from dataclasses import dataclass, field
from enum import StrEnum

from patchdeps.manifest.models import SourceKind


class LineKind(StrEnum):
    CONTEXT = "context"
    ADDED = "added"
    REMOVED = "removed"


@dataclass
class HunkLine:
    kind: LineKind
    text: str
    no_newline: bool = False


@dataclass
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[HunkLine] = field(default_factory=list)
    section: str = ""

    @property
    def old_lines(self) -> list[str]:
        return [line.text for line in self.lines if line.kind != LineKind.ADDED]

    @property
    def new_lines(self) -> list[str]:
        return [line.text for line in self.lines if line.kind != LineKind.REMOVED]

    @property
    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"

    def old_missing_newline(self) -> bool:
        old = [line for line in self.lines if line.kind != LineKind.ADDED]
        return bool(old) and old[-1].no_newline

    def new_missing_newline(self) -> bool:
        new = [line for line in self.lines if line.kind != LineKind.REMOVED]
        return bool(new) and new[-1].no_newline


@dataclass
class FilePatch:
    old_path: str | None
    new_path: str | None
    hunks: list[Hunk] = field(default_factory=list)
    new_mode: str | None = None
    deleted_mode: str | None = None
    is_copy: bool = False

    @property
    def is_new_file(self) -> bool:
        return self.old_path is None or self.new_mode is not None

    @property
    def is_deletion(self) -> bool:
        return self.new_path is None or self.deleted_mode is not None

    @property
    def is_rename(self) -> bool:
        return (
            self.old_path is not None
            and self.new_path is not None
            and self.old_path != self.new_path
            and not self.is_copy
        )

    @property
    def display_path(self) -> str:
        return self.new_path or self.old_path or "/dev/null"


@dataclass
class PatchDocument:
    descriptor: str
    source_kind: SourceKind
    file_patches: list[FilePatch] = field(default_factory=list)
