"""
Outcome and result records produced by a pipeline run.

One DependencyOutcome per configured dependency, whatever happened to it;
PipelineResult aggregates them in dependency-name order so two runs over the
same manifest report identically. RunRecord is the line written to the
run log for each outcome.
"""

from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from patchdeps.errors import PatchRunError


class DependencyStatus(StrEnum):
    PATCHED = "patched"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"


class DependencyOutcome(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
    )

    name: str
    status: DependencyStatus
    version: str | None = None
    working_copy: Path | None = None
    patched_files: list[str] = Field(default_factory=list)
    patches_applied: int = 0
    error_kind: str | None = None
    error: str | None = None
    descriptor: str | None = None
    # file lines the failing hunk expected, and what was found instead
    expected: list[str] = Field(default_factory=list)
    actual: list[str] = Field(default_factory=list)
    duration_sec: float = 0.0

    @field_serializer("working_copy")
    def _serialize_path(self, value: Path | None) -> str | None:
        return str(value) if value is not None else None

    @property
    def ok(self) -> bool:
        return self.status != DependencyStatus.FAILED


class PipelineResult(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
    )

    run_id: str
    outcomes: list[DependencyOutcome] = Field(default_factory=list)
    watched_paths: list[Path] = Field(default_factory=list)

    @field_serializer("watched_paths")
    def _serialize_paths(self, value: list[Path]) -> list[str]:
        return [str(p) for p in value]

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def failures(self) -> dict[str, str]:
        return {o.name: o.error or o.status.value for o in self.outcomes if not o.ok}

    def outcome(self, name: str) -> DependencyOutcome | None:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        return None

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise PatchRunError(self.failures)


class RunRecord(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
    )

    run_id: str
    timestamp: datetime
    incremental: bool
    outcome: DependencyOutcome

    @field_serializer("timestamp")
    def _serialize_datetime(self, value: datetime) -> str:
        return value.isoformat()
