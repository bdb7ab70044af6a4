"""Package sources and version selection."""

from .base import PackageSource
from .http import HttpIndexSource
from .local import LocalArchiveSource
from .versions import Version, VersionReq, select_version

__all__ = [
    "PackageSource",
    "HttpIndexSource",
    "LocalArchiveSource",
    "Version",
    "VersionReq",
    "select_version",
]
