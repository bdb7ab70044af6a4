"""Patch third-party package sources before they are built."""

from patchdeps.api import patch
from patchdeps.config import PatchConfig
from patchdeps.errors import PatchDepsError, PatchRunError
from patchdeps.pipeline.models import DependencyOutcome, DependencyStatus, PipelineResult

__all__ = [
    "patch",
    "PatchConfig",
    "PatchDepsError",
    "PatchRunError",
    "DependencyOutcome",
    "DependencyStatus",
    "PipelineResult",
]
