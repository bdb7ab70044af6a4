import logging
import time
from pathlib import Path

import httpx

from patchdeps.config import DEFAULT_INDEX_URL
from patchdeps.errors import DownloadError, VersionResolutionError
from patchdeps.registry.base import PackageSource
from patchdeps.registry.local import archive_suffix

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
INITIAL_DELAY_SEC = 0.5
MAX_DELAY_SEC = 8.0
CHUNK_SIZE = 64 * 1024


class HttpIndexSource(PackageSource):
    """
    PyPI-style JSON index: `{index_url}/{name}/json` lists releases and
    `{index_url}/{name}/{version}/json` lists the files of one release.
    The sdist of a release is the archive that gets patched.
    """

    def __init__(
        self,
        index_url: str = DEFAULT_INDEX_URL,
        timeout_sec: float = 60.0,
        retries: int = 2,
        transport: httpx.BaseTransport | None = None,
        initial_delay_sec: float = INITIAL_DELAY_SEC,
    ):
        self.index_url = index_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.retries = retries
        self.initial_delay_sec = initial_delay_sec
        self._client = httpx.Client(
            timeout=timeout_sec,
            transport=transport,
            follow_redirects=True,
            headers={"User-Agent": "patchdeps"},
        )

    def close(self) -> None:
        self._client.close()

    def _classify_status(self, name: str, version: str, status_code: int) -> DownloadError:
        retryable = status_code in RETRYABLE_STATUS or status_code >= 500
        return DownloadError(
            name,
            version,
            f"HTTP {status_code}",
            retryable=retryable,
            status_code=status_code,
        )

    def _with_retries(self, name: str, version: str, action):
        max_attempts = self.retries + 1
        attempt = 0
        last_error: DownloadError | None = None

        while attempt < max_attempts:
            attempt += 1
            try:
                return action()
            except httpx.TimeoutException as e:
                error = DownloadError(
                    name,
                    version,
                    f"request timed out after {self.timeout_sec} seconds",
                    retryable=True,
                )
                error.__cause__ = e
            except httpx.HTTPStatusError as e:
                error = self._classify_status(name, version, e.response.status_code)
                error.__cause__ = e
            except httpx.RequestError as e:
                error = DownloadError(name, version, f"network error: {e}", retryable=True)
                error.__cause__ = e

            last_error = error
            if not error.retryable or attempt >= max_attempts:
                raise error

            delay = min(MAX_DELAY_SEC, self.initial_delay_sec * (2 ** (attempt - 1)))
            logger.warning(
                "Fetch of %s-%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                name,
                version,
                error,
                delay,
                attempt,
                max_attempts,
            )
            if delay > 0:
                time.sleep(delay)

        if last_error is not None:
            raise last_error
        raise DownloadError(name, version, "unknown download error")

    def _get_json(self, url: str) -> dict:
        response = self._client.get(url)
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise httpx.DecodingError(f"non-JSON index response from {url}", request=response.request)
        return body

    def list_versions(self, name: str) -> list[str]:
        try:
            body = self._with_retries(name, "*", lambda: self._get_json(f"{self.index_url}/{name}/json"))
        except DownloadError as e:
            if e.status_code == 404:
                raise VersionResolutionError(name, None) from e
            raise

        releases = body.get("releases") or {}
        versions = [version for version, files in releases.items() if files]
        logger.debug("Index lists %d versions of %s", len(versions), name)
        return versions

    def _sdist_url(self, name: str, version: str) -> tuple[str, str]:
        body = self._with_retries(
            name,
            version,
            lambda: self._get_json(f"{self.index_url}/{name}/{version}/json"),
        )
        for entry in body.get("urls") or []:
            if not isinstance(entry, dict):
                continue
            filename = entry.get("filename") or ""
            if entry.get("packagetype") == "sdist" and archive_suffix(filename):
                url = entry.get("url")
                if not isinstance(url, str) or not url:
                    raise DownloadError(name, version, f"index entry for {filename} has no download url")
                return url, filename
        raise DownloadError(name, version, "release has no source distribution")

    def _download(self, url: str, dest: Path) -> None:
        partial = dest.with_name(dest.name + ".part")
        with self._client.stream("GET", url) as response:
            response.raise_for_status()
            with open(partial, "wb") as f:
                for chunk in response.iter_bytes(CHUNK_SIZE):
                    f.write(chunk)
        partial.replace(dest)

    def fetch(self, name: str, version: str, dest_dir: Path) -> Path:
        url, filename = self._sdist_url(name, version)
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / Path(filename).name

        logger.info("Downloading %s-%s from %s", name, version, url)
        try:
            self._with_retries(name, version, lambda: self._download(url, dest))
        except OSError as e:
            raise DownloadError(name, version, str(e)) from e
        return dest
