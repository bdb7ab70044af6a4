import logging
from pathlib import Path

import typer
from pydantic import ValidationError

from patchdeps.api import default_source, resolve_config
from patchdeps.cache.store import PackageCache
from patchdeps.config import PatchConfig
from patchdeps.errors import ManifestParseError
from patchdeps.logging import setup_logging
from patchdeps.manifest.loader import find_manifest, load_manifest
from patchdeps.pipeline.driver import PipelineDriver
from patchdeps.pipeline.models import DependencyOutcome, DependencyStatus

EXIT_OK = 0
EXIT_DEPENDENCY_FAILED = 1
EXIT_MANIFEST_ERROR = 2
EXIT_CONFIG_ERROR = 2

app = typer.Typer(no_args_is_help=True)
cache_app = typer.Typer(no_args_is_help=True)
app.add_typer(cache_app, name="cache", help="Manage the pristine package cache")


def _report_failure(outcome: DependencyOutcome) -> None:
    typer.echo(f"error: {outcome.error}", err=True)
    if outcome.expected:
        typer.echo("  expected:", err=True)
        for line in outcome.expected:
            typer.echo(f"    |{line}", err=True)
        typer.echo("  found:", err=True)
        for line in outcome.actual:
            typer.echo(f"    |{line}", err=True)


def _load_config(**overrides) -> PatchConfig:
    try:
        return PatchConfig.from_env(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        typer.echo(f"error: invalid configuration: {problems}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR)


@app.command("apply")
def apply_cmd(
    manifest: Path | None = typer.Option(None, "--manifest", "-m", help="Patch manifest (YAML or pyproject.toml)"),
    cache_dir: Path | None = typer.Option(None, "--cache-dir", help="Pristine package cache"),
    out: Path | None = typer.Option(None, "--out", help="Directory for patched working copies"),
    jobs: int | None = typer.Option(None, "--jobs", "-j", min=1, help="Dependencies processed in parallel"),
    refresh: bool = typer.Option(False, "--refresh", help="Re-download and re-extract cached packages"),
    incremental: bool = typer.Option(False, "--incremental", help="Skip dependencies whose inputs are unchanged"),
    offset_window: int | None = typer.Option(None, "--offset-window", min=0, help="Max lines a hunk may drift"),
    archive_dir: Path | None = typer.Option(None, "--archive-dir", help="Read archives from a local directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Fetch every dependency in the manifest and apply its patches."""

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    manifest_path = manifest or find_manifest(Path.cwd())
    if manifest_path is None:
        typer.echo("No patches found")
        raise typer.Exit(EXIT_OK)

    try:
        specs = load_manifest(manifest_path)
    except ManifestParseError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(EXIT_MANIFEST_ERROR)

    config = resolve_config(
        manifest_path,
        _load_config(
            cache_dir=cache_dir,
            output_dir=out,
            jobs=jobs,
            offset_window=offset_window,
            archive_dir=archive_dir,
        ),
    )

    if not specs:
        typer.echo("No patches found")
        raise typer.Exit(EXIT_OK)

    with default_source(config) as source:
        result = PipelineDriver(config, source).run(specs, refresh=refresh, incremental=incremental)

    for outcome in result.outcomes:
        if outcome.status == DependencyStatus.FAILED:
            _report_failure(outcome)
        elif outcome.status == DependencyStatus.UP_TO_DATE:
            typer.echo(f"Up to date {outcome.name}-{outcome.version}: {outcome.working_copy}")
        else:
            typer.echo(f"Patched {outcome.name}-{outcome.version}: {outcome.working_copy}")

    if not result.ok:
        raise typer.Exit(EXIT_DEPENDENCY_FAILED)


@cache_app.command("clear")
def cache_clear_cmd(
    cache_dir: Path | None = typer.Option(None, "--cache-dir", help="Pristine package cache"),
):
    """Remove every cached pristine tree."""

    config = _load_config(cache_dir=cache_dir)
    removed = PackageCache(config.cache_dir).clear()
    typer.echo(f"Removed {removed} cached packages from {config.cache_dir}")


@app.callback()
def main():
    """
    patchdeps: patch third-party package sources before they are built
    """
    pass
