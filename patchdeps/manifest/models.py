from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator

from patchdeps.registry.versions import VersionReq


class SourceKind(StrEnum):
    UNIFIED = "Unified"
    GIT_DIFF = "GitDiff"
    GITHUB_PR_DIFF = "GithubPrDiff"


class PatchDescriptor(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
    )

    path: Path
    # None means "Default": sniffed from the patch text at parse time
    source_kind: SourceKind | None = None

    @field_serializer("path")
    def serialize_path(self, v: Path) -> str:
        return str(v)


class PatchSpec(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
    )

    dependency_name: str
    version_requirement: str | None = None
    patch_descriptors: tuple[PatchDescriptor, ...] = ()

    @field_validator("dependency_name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        v = v.strip()
        if not v or "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError(f"invalid dependency name: {v!r}")
        return v

    @field_validator("version_requirement")
    @classmethod
    def _check_requirement(cls, v: str | None) -> str | None:
        if v is None:
            return None
        VersionReq.parse(v)
        return v.strip()

    @property
    def requirement(self) -> VersionReq:
        return VersionReq.parse(self.version_requirement or "*")
