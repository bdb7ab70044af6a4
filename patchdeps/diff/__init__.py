"""Unified/git diff parsing and fuzz-tolerant hunk application."""

from .applier import AppliedFile, ChangeType, apply_document, apply_file_patch
from .models import FilePatch, Hunk, HunkLine, LineKind, PatchDocument
from .parser import detect_source_kind, parse_patch

__all__ = [
    "AppliedFile",
    "ChangeType",
    "apply_document",
    "apply_file_patch",
    "FilePatch",
    "Hunk",
    "HunkLine",
    "LineKind",
    "PatchDocument",
    "detect_source_kind",
    "parse_patch",
]
