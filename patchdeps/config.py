import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_INDEX_URL = "https://pypi.org/pypi"
DEFAULT_OFFSET_WINDOW = 50
DEFAULT_OUTPUT_DIR = Path("build") / "patched"


def _default_cache_dir() -> Path:
    xdg = os.getenv("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "patchdeps"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, value, default)
        return default


def _env_path(name: str, default: Path | None) -> Path | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return Path(value).expanduser()


class PatchConfig(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
    )

    cache_dir: Path = Field(default_factory=_default_cache_dir)
    output_dir: Path = DEFAULT_OUTPUT_DIR
    patches_root: Path | None = None
    jobs: int = Field(default=4, ge=1)
    offset_window: int = Field(default=DEFAULT_OFFSET_WINDOW, ge=0)
    fetch_timeout_sec: float = Field(default=60.0, gt=0)
    fetch_retries: int = Field(default=2, ge=0)
    index_url: str = DEFAULT_INDEX_URL
    archive_dir: Path | None = None

    @classmethod
    def from_env(cls, **overrides) -> "PatchConfig":
        """
        Build a config from PATCHDEPS_* environment variables.

        Explicit keyword overrides win over the environment; overrides that
        are None are ignored so CLI options can be passed through unchanged.
        """

        values = {
            "cache_dir": _env_path("PATCHDEPS_CACHE_DIR", _default_cache_dir()),
            "output_dir": _env_path("PATCHDEPS_OUTPUT_DIR", DEFAULT_OUTPUT_DIR),
            "patches_root": _env_path("PATCHDEPS_PATCHES_ROOT", None),
            "jobs": _env_int("PATCHDEPS_JOBS", min(4, os.cpu_count() or 1)),
            "offset_window": _env_int("PATCHDEPS_OFFSET_WINDOW", DEFAULT_OFFSET_WINDOW),
            "fetch_timeout_sec": _env_float("PATCHDEPS_FETCH_TIMEOUT_SEC", 60.0),
            "fetch_retries": _env_int("PATCHDEPS_FETCH_RETRIES", 2),
            "index_url": os.getenv("PATCHDEPS_INDEX_URL") or DEFAULT_INDEX_URL,
            "archive_dir": _env_path("PATCHDEPS_ARCHIVE_DIR", None),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
