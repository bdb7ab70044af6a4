import logging
import tomllib
from pathlib import Path

import yaml
from pydantic import ValidationError

from patchdeps.errors import ManifestParseError
from patchdeps.manifest.models import PatchDescriptor, PatchSpec, SourceKind

logger = logging.getLogger(__name__)

MANIFEST_CANDIDATES = ("patchdeps.yaml", "patchdeps.yml", "pyproject.toml")
DEFAULT_SOURCE = "Default"

_DEPENDENCY_KEYS = {"version", "patches"}
_DESCRIPTOR_KEYS = {"path", "source"}


def find_manifest(start: Path) -> Path | None:
    """First manifest file found in start, then its parents."""

    start = Path(start).resolve()
    for base in (start, *start.parents):
        for name in MANIFEST_CANDIDATES:
            candidate = base / name
            if not candidate.is_file():
                continue
            if name == "pyproject.toml":
                try:
                    tools = _read_toml(candidate).get("tool", {})
                except (OSError, tomllib.TOMLDecodeError) as e:
                    logger.warning("Skipping unreadable %s: %s", candidate, e)
                    continue
                if "patchdeps" not in tools:
                    continue
            return candidate
    return None


def _read_toml(path: Path) -> dict:
    with path.open("rb") as f:
        return tomllib.load(f)


def _read_raw(manifest_path: Path) -> dict:
    if manifest_path.suffix == ".toml":
        document = _read_toml(manifest_path)
        return document.get("tool", {}).get("patchdeps", {}) or {}

    with manifest_path.open("r", encoding="utf-8") as f:
        document = yaml.safe_load(f)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise TypeError(f"manifest root must be a mapping, got {type(document).__name__}")
    return document


def _source_kind(value: object, where: str) -> SourceKind | None:
    if value is None or value == DEFAULT_SOURCE:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Key '{where}' must be a string, got {type(value).__name__}")
    try:
        return SourceKind(value)
    except ValueError:
        allowed = ", ".join([DEFAULT_SOURCE, *(k.value for k in SourceKind)])
        raise ValueError(f"Key '{where}' has unknown patch source {value!r} (expected one of {allowed})") from None


def _descriptor(entry: object, where: str) -> PatchDescriptor:
    if isinstance(entry, str):
        return PatchDescriptor(path=Path(entry))
    if not isinstance(entry, dict):
        raise TypeError(f"Key '{where}' must be a string or a mapping, got {type(entry).__name__}")

    for key in entry:
        if key not in _DESCRIPTOR_KEYS:
            raise KeyError(f"Unexpected key: {where}.{key}")
    if "path" not in entry:
        raise KeyError(f"Missing key: {where}.path")
    if not isinstance(entry["path"], str):
        raise TypeError(f"Key '{where}.path' must be a string, got {type(entry['path']).__name__}")

    return PatchDescriptor(
        path=Path(entry["path"]),
        source_kind=_source_kind(entry.get("source"), f"{where}.source"),
    )


def _dependency(name: str, body: object) -> PatchSpec:
    where = f"patch.{name}"
    if not isinstance(body, dict):
        raise TypeError(f"Key '{where}' must be a mapping, got {type(body).__name__}")

    for key in body:
        if key not in _DEPENDENCY_KEYS:
            raise KeyError(f"Unexpected key: {where}.{key}")

    version = body.get("version")
    if version is not None and not isinstance(version, str):
        raise TypeError(f"Key '{where}.version' must be a string, got {type(version).__name__}")

    patches = body.get("patches", [])
    if not isinstance(patches, list):
        raise TypeError(f"Key '{where}.patches' must be a list, got {type(patches).__name__}")

    descriptors = tuple(_descriptor(entry, f"{where}.patches[{idx}]") for idx, entry in enumerate(patches))
    return PatchSpec(
        dependency_name=name,
        version_requirement=version,
        patch_descriptors=descriptors,
    )


def load_manifest(manifest_path: Path) -> list[PatchSpec]:
    """
    Read the patch manifest and return one PatchSpec per dependency.

    YAML files hold the `patch` table at the root; pyproject.toml holds it
    under `[tool.patchdeps]`. Dependency order follows the file. Any read,
    syntax or schema problem is reported as ManifestParseError.
    """

    manifest_path = Path(manifest_path)
    try:
        raw = _read_raw(manifest_path)
        for key in raw:
            if key != "patch":
                raise KeyError(f"Unexpected key: {key}")

        table = raw.get("patch") or {}
        if not isinstance(table, dict):
            raise TypeError(f"Key 'patch' must be a mapping, got {type(table).__name__}")

        specs = [_dependency(str(name), body) for name, body in table.items()]
    except (OSError, yaml.YAMLError, tomllib.TOMLDecodeError, KeyError, TypeError, ValueError, ValidationError) as e:
        logger.error("Manifest validation failed for %s: %s", manifest_path, e)
        raise ManifestParseError(manifest_path, e) from e

    logger.debug("Loaded %d patch specs from %s", len(specs), manifest_path)
    return specs
