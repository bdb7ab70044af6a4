import logging
from pathlib import Path

import ulid

from patchdeps.config import PatchConfig
from patchdeps.manifest.loader import find_manifest, load_manifest
from patchdeps.manifest.models import PatchSpec
from patchdeps.pipeline.driver import PipelineDriver
from patchdeps.pipeline.models import PipelineResult
from patchdeps.registry.base import PackageSource
from patchdeps.registry.http import HttpIndexSource
from patchdeps.registry.local import LocalArchiveSource

logger = logging.getLogger(__name__)


def default_source(config: PatchConfig) -> PackageSource:
    if config.archive_dir is not None:
        return LocalArchiveSource(config.archive_dir)
    return HttpIndexSource(
        index_url=config.index_url,
        timeout_sec=config.fetch_timeout_sec,
        retries=config.fetch_retries,
    )


def resolve_config(manifest: Path, config: PatchConfig | None) -> PatchConfig:
    """Patch paths default to the manifest's directory."""

    config = config or PatchConfig.from_env()
    if config.patches_root is None:
        config = config.model_copy(update={"patches_root": manifest.resolve().parent})
    return config


def watched_paths(manifest: Path, config: PatchConfig, specs: list[PatchSpec]) -> list[Path]:
    paths = [manifest]
    for spec in specs:
        for descriptor in spec.patch_descriptors:
            paths.append(config.patches_root / descriptor.path)
    return paths


def patch(
    manifest: Path | str | None = None,
    *,
    config: PatchConfig | None = None,
    source: PackageSource | None = None,
    incremental: bool = True,
) -> PipelineResult:
    """
    Build-hook entry point: patch every dependency named in the manifest.

    Meant to run on every build. In incremental mode a dependency whose
    pristine archive, patch files and settings are unchanged since the last
    successful run is reported up to date without touching the disk.
    `watched_paths` on the result lists the manifest and every patch file
    so the caller can rerun only when one of them changes.

    Raises:
        ManifestParseError: the manifest is unreadable or invalid
    """

    manifest_path = Path(manifest) if manifest is not None else find_manifest(Path.cwd())
    if manifest_path is None:
        logger.info("No patches found")
        return PipelineResult(run_id=str(ulid.new()))

    specs = load_manifest(manifest_path)
    config = resolve_config(manifest_path, config)

    owned = source is None
    source = source or default_source(config)
    try:
        result = PipelineDriver(config, source).run(specs, incremental=incremental)
    finally:
        if owned:
            source.close()

    result.watched_paths = watched_paths(manifest_path, config, specs)
    return result
