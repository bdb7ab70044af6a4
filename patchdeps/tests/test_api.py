import io
import tarfile
from pathlib import Path

import pytest

from patchdeps import DependencyStatus, PatchConfig, patch
from patchdeps.api import default_source, resolve_config
from patchdeps.errors import ManifestParseError
from patchdeps.registry.http import HttpIndexSource
from patchdeps.registry.local import LocalArchiveSource

PYPROJECT = """\
[project]
name = "app"

[tool.patchdeps.patch.foo]
version = "1"
patches = ["patches/foo.patch"]
"""


@pytest.fixture
def project(tmp_path: Path) -> Path:
    archives = tmp_path / "archives"
    archives.mkdir()
    with tarfile.open(archives / "foo-1.0.0.tar.gz", "w:gz") as tar:
        data = b"a\nb\n"
        info = tarfile.TarInfo("foo-1.0.0/f.txt")
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))

    app_dir = tmp_path / "app"
    (app_dir / "patches").mkdir(parents=True)
    (app_dir / "patches" / "foo.patch").write_text("--- f.txt\n+++ f.txt\n@@ -1,2 +1,2 @@\n a\n-b\n+c\n")
    (app_dir / "pyproject.toml").write_text(PYPROJECT)
    return app_dir


def _config(tmp_path: Path) -> PatchConfig:
    return PatchConfig(
        cache_dir=tmp_path / "cache",
        output_dir=tmp_path / "out",
        archive_dir=tmp_path / "archives",
    )


class TestPatch:
    """Tests for the build-hook entry point."""

    def test_patches_from_pyproject(self, tmp_path: Path, project: Path):
        result = patch(project / "pyproject.toml", config=_config(tmp_path))

        assert result.ok
        assert (tmp_path / "out" / "foo-1.0.0" / "f.txt").read_text() == "a\nc\n"
        assert result.watched_paths == [project / "pyproject.toml", project.resolve() / "patches" / "foo.patch"]

    def test_second_call_is_up_to_date(self, tmp_path: Path, project: Path):
        patch(project / "pyproject.toml", config=_config(tmp_path))

        result = patch(project / "pyproject.toml", config=_config(tmp_path))

        assert result.outcome("foo").status == DependencyStatus.UP_TO_DATE

    def test_finds_manifest_from_cwd(self, tmp_path: Path, project: Path, monkeypatch):
        (project / "sub").mkdir()
        monkeypatch.chdir(project / "sub")

        result = patch(config=_config(tmp_path))

        assert result.outcome("foo").version == "1.0.0"

    def test_no_manifest(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        result = patch(config=_config(tmp_path))

        assert result.ok
        assert result.outcomes == []

    def test_explicit_source_is_not_closed(self, tmp_path: Path, project: Path):
        class TrackingSource(LocalArchiveSource):
            closed = False

            def close(self):
                self.closed = True

        source = TrackingSource(tmp_path / "archives")

        patch(project / "pyproject.toml", config=_config(tmp_path), source=source)

        assert source.closed is False

    def test_invalid_manifest_raises(self, tmp_path: Path):
        manifest = tmp_path / "pyproject.toml"
        manifest.write_text("[tool.patchdeps.patch.foo]\nversion = 1\n")

        with pytest.raises(ManifestParseError, match="must be a string"):
            patch(manifest, config=_config(tmp_path))


class TestConfigHelpers:
    def test_patches_root_defaults_to_manifest_dir(self, tmp_path: Path, project: Path):
        config = resolve_config(project / "pyproject.toml", _config(tmp_path))

        assert config.patches_root == project.resolve()

    def test_explicit_patches_root_wins(self, tmp_path: Path, project: Path):
        config = _config(tmp_path).model_copy(update={"patches_root": tmp_path})

        assert resolve_config(project / "pyproject.toml", config).patches_root == tmp_path

    def test_default_source(self, tmp_path: Path):
        assert isinstance(default_source(_config(tmp_path)), LocalArchiveSource)

        http_config = _config(tmp_path).model_copy(update={"archive_dir": None})
        with default_source(http_config) as source:
            assert isinstance(source, HttpIndexSource)
