from pathlib import Path

import httpx
import pytest

from patchdeps.errors import DownloadError, VersionResolutionError
from patchdeps.registry.http import HttpIndexSource

INDEX = "https://index.example/pypi"
FILES = "https://files.example"


def _release_body(version: str) -> dict:
    return {
        "urls": [
            {
                "packagetype": "bdist_wheel",
                "filename": f"foo-{version}-py3-none-any.whl",
                "url": f"{FILES}/foo-{version}-py3-none-any.whl",
            },
            {
                "packagetype": "sdist",
                "filename": f"foo-{version}.tar.gz",
                "url": f"{FILES}/foo-{version}.tar.gz",
            },
        ]
    }


def _index_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/pypi/foo/json":
        return httpx.Response(
            200,
            json={"releases": {"1.0.0": [{}], "1.2.0": [{}], "0.1.0": []}},
        )
    if path == "/pypi/foo/1.2.0/json":
        return httpx.Response(200, json=_release_body("1.2.0"))
    if path == "/foo-1.2.0.tar.gz":
        return httpx.Response(200, content=b"archive-bytes")
    return httpx.Response(404, json={"message": "Not Found"})


def make_source(handler, retries: int = 2) -> HttpIndexSource:
    return HttpIndexSource(
        index_url=INDEX,
        timeout_sec=5,
        retries=retries,
        transport=httpx.MockTransport(handler),
        initial_delay_sec=0,
    )


class TestListVersions:
    def test_lists_releases_with_files(self):
        with make_source(_index_handler) as source:
            versions = source.list_versions("foo")

        assert sorted(versions) == ["1.0.0", "1.2.0"]

    def test_unknown_package(self):
        with make_source(_index_handler) as source:
            with pytest.raises(VersionResolutionError):
                source.list_versions("missing")


class TestFetch:
    def test_downloads_sdist(self, tmp_path: Path):
        with make_source(_index_handler) as source:
            archive = source.fetch("foo", "1.2.0", tmp_path / "dl")

        assert archive.name == "foo-1.2.0.tar.gz"
        assert archive.read_bytes() == b"archive-bytes"
        assert not list((tmp_path / "dl").glob("*.part"))

    def test_missing_release(self, tmp_path: Path):
        with make_source(_index_handler) as source:
            with pytest.raises(DownloadError) as exc_info:
                source.fetch("foo", "9.9.9", tmp_path)

        assert exc_info.value.status_code == 404
        assert exc_info.value.retryable is False

    def test_release_without_sdist(self, tmp_path: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"urls": []})

        with make_source(handler) as source:
            with pytest.raises(DownloadError, match="no source distribution"):
                source.fetch("foo", "1.2.0", tmp_path)

    def test_sdist_entry_without_url(self, tmp_path: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"urls": ["junk", {"packagetype": "sdist", "filename": "foo-1.2.0.tar.gz"}]},
            )

        with make_source(handler) as source:
            with pytest.raises(DownloadError, match="has no download url"):
                source.fetch("foo", "1.2.0", tmp_path)


class TestRetries:
    """Transient failures are retried, permanent ones are not."""

    def test_retries_server_errors(self, tmp_path: Path):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/pypi/foo/1.2.0/json":
                calls["count"] += 1
                if calls["count"] < 3:
                    return httpx.Response(503)
            return _index_handler(request)

        with make_source(handler, retries=2) as source:
            archive = source.fetch("foo", "1.2.0", tmp_path)

        assert calls["count"] == 3
        assert archive.exists()

    def test_gives_up_after_retries(self, tmp_path: Path):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(502)

        with make_source(handler, retries=1) as source:
            with pytest.raises(DownloadError) as exc_info:
                source.fetch("foo", "1.2.0", tmp_path)

        assert calls["count"] == 2
        assert exc_info.value.retryable is True

    def test_timeout_is_download_error(self, tmp_path: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        with make_source(handler, retries=0) as source:
            with pytest.raises(DownloadError, match="timed out"):
                source.fetch("foo", "1.2.0", tmp_path)

    def test_client_error_not_retried(self, tmp_path: Path):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(403)

        with make_source(handler, retries=3) as source:
            with pytest.raises(DownloadError):
                source.list_versions("foo")

        assert calls["count"] == 1
