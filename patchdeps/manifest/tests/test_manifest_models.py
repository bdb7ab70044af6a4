from pathlib import Path

import pytest
from pydantic import ValidationError

from patchdeps.manifest.models import PatchDescriptor, PatchSpec, SourceKind


class TestPatchSpec:
    def test_defaults(self):
        spec = PatchSpec(dependency_name="foo")

        assert spec.patch_descriptors == ()
        assert spec.requirement.matches("5.0.0")

    @pytest.mark.parametrize("name", ["", "a/b", "..", "a\\b"])
    def test_rejects_unsafe_names(self, name: str):
        with pytest.raises(ValidationError):
            PatchSpec(dependency_name=name)

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            PatchSpec(dependency_name="foo", branch="main")

    def test_is_frozen(self):
        spec = PatchSpec(dependency_name="foo")

        with pytest.raises(ValidationError):
            spec.dependency_name = "bar"


class TestPatchDescriptor:
    def test_serializes_path_as_string(self):
        descriptor = PatchDescriptor(path=Path("p/x.patch"), source_kind=SourceKind.UNIFIED)

        assert descriptor.model_dump(mode="json") == {"path": "p/x.patch", "source_kind": "Unified"}
