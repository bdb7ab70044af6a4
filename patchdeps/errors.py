from enum import StrEnum
from pathlib import Path


class ErrorKind(StrEnum):
    MANIFEST_PARSE = "manifest_parse"
    VERSION_RESOLUTION = "version_resolution"
    DOWNLOAD = "download"
    EXTRACTION = "extraction"
    PATCH_PARSE = "patch_parse"
    PATCH_APPLY = "patch_apply"
    PATH_ESCAPE = "path_escape"
    PATCH_FILE_MISSING = "patch_file_missing"
    IO = "io"
    INTERNAL = "internal"


class ApplyFailure(StrEnum):
    NO_MATCH = "no_match"
    AMBIGUOUS = "ambiguous"
    CONFLICT = "conflict"


class PatchDepsError(Exception):
    kind: ErrorKind = ErrorKind.IO

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ManifestParseError(PatchDepsError):
    kind = ErrorKind.MANIFEST_PARSE

    def __init__(self, manifest_path: Path, error: Exception | str):
        super().__init__(f"Invalid patch manifest ({manifest_path}): {error}")
        self.manifest_path = manifest_path
        self.error = error


class VersionResolutionError(PatchDepsError):
    kind = ErrorKind.VERSION_RESOLUTION

    def __init__(
        self,
        name: str,
        requirement: str | None,
        available: list[str] | None = None,
    ):
        wanted = requirement or "*"
        message = f"failed to select a version for the requirement `{name} = \"{wanted}\"`"
        if available:
            shown = ", ".join(available[-5:])
            message += f" (candidate versions: {shown})"
        else:
            message += " (no versions available)"
        super().__init__(message, details={"available": list(available or [])})
        self.name = name
        self.requirement = requirement


class DownloadError(PatchDepsError):
    kind = ErrorKind.DOWNLOAD

    def __init__(
        self,
        name: str,
        version: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ):
        super().__init__(
            f"failed to download {name}-{version}: {message}",
            details={"status_code": status_code},
        )
        self.name = name
        self.version = version
        self.retryable = retryable
        self.status_code = status_code


class ExtractionError(PatchDepsError):
    kind = ErrorKind.EXTRACTION

    def __init__(self, archive: Path, message: str):
        super().__init__(f"failed to extract {archive.name}: {message}")
        self.archive = archive


class PatchParseError(PatchDepsError):
    kind = ErrorKind.PATCH_PARSE

    def __init__(self, descriptor: str, line_number: int, reason: str):
        super().__init__(f"Unable to parse patch file {descriptor} (line {line_number}): {reason}")
        self.descriptor = descriptor
        self.line_number = line_number
        self.reason = reason


class PatchApplyError(PatchDepsError):
    """
    A hunk could not be placed in its target file.

    `expected` holds the hunk's Context+Removed lines and `actual` the file
    lines around the position the hunk pointed at, so diagnostics can show
    both sides of the mismatch.
    """

    kind = ErrorKind.PATCH_APPLY

    def __init__(
        self,
        file: str,
        hunk_index: int | None,
        reason: ApplyFailure,
        message: str,
        line: int | None = None,
        expected: list[str] | None = None,
        actual: list[str] | None = None,
    ):
        where = f"hunk #{hunk_index + 1}" if hunk_index is not None else "file"
        text = f"failed to apply patch to {file} ({where}, {reason.value}): {message}"
        if line is not None:
            text += f" near line {line}"
        super().__init__(text, details={"reason": reason.value, "line": line})
        self.file = file
        self.hunk_index = hunk_index
        self.reason = reason
        self.line = line
        self.expected = expected or []
        self.actual = actual or []


class PathEscapeError(PatchDepsError):
    kind = ErrorKind.PATH_ESCAPE

    def __init__(self, candidate: Path | str, root: Path):
        super().__init__(f"Patch file tried to escape dependency folder: {candidate} is not inside {root}")
        self.candidate = candidate
        self.root = root


class PatchFileNotFoundError(PatchDepsError):
    kind = ErrorKind.PATCH_FILE_MISSING

    def __init__(self, path: Path):
        super().__init__(f"Unable to find patch file with path: {str(path)!r}")
        self.path = path


class FilesystemError(PatchDepsError):
    kind = ErrorKind.IO

    def __init__(self, path: Path | str, error: OSError):
        super().__init__(f"I/O error on {path}: {error}")
        self.path = path
        self.error = error


class UnexpectedError(PatchDepsError):
    """Any exception the pipeline has no dedicated error for."""

    kind = ErrorKind.INTERNAL

    def __init__(self, error: BaseException):
        super().__init__(f"unexpected {type(error).__name__}: {error}")
        self.error = error


class DependencyPatchError(PatchDepsError):
    """Wraps any pipeline error with the dependency and patch file it happened in."""

    def __init__(self, dependency: str, descriptor: str | None, cause: PatchDepsError):
        location = f"{dependency}: {descriptor}" if descriptor else dependency
        super().__init__(f"{location}: {cause}", details=dict(cause.details))
        self.dependency = dependency
        self.descriptor = descriptor
        self.cause = cause
        self.kind = cause.kind


class PatchRunError(PatchDepsError):
    def __init__(self, failures: dict[str, str]):
        names = ", ".join(sorted(failures))
        super().__init__(
            f"patching failed for {len(failures)} dependencies: {names}",
            details={"failures": failures},
        )
        self.failures = failures
