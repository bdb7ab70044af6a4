import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path

import ulid

from patchdeps.cache.store import PackageCache
from patchdeps.config import PatchConfig
from patchdeps.errors import (
    DependencyPatchError,
    FilesystemError,
    PatchApplyError,
    PatchDepsError,
    UnexpectedError,
    VersionResolutionError,
)
from patchdeps.manifest.models import PatchSpec
from patchdeps.pipeline.models import (
    DependencyOutcome,
    DependencyStatus,
    PipelineResult,
    RunRecord,
)
from patchdeps.pipeline.orchestrator import STAMPS_DIR, PatchOrchestrator, working_copy_name
from patchdeps.registry.base import PackageSource
from patchdeps.registry.versions import select_version
from patchdeps.util.jsonl import append_jsonl
from patchdeps.util.paths import ensure_dir, remove_tree

logger = logging.getLogger(__name__)

RUN_LOG_NAME = "patch-runs.jsonl"


def _copy_owner(copy_name: str, names: set[str]) -> str | None:
    """Which of names a `<name>-<version>` directory belongs to, if any."""

    for name in names:
        prefix = f"{name}-"
        if copy_name.startswith(prefix) and copy_name[len(prefix):][:1].isdigit():
            return name
    return None


def _failed(name: str, error: PatchDepsError, version: str | None, started: float) -> DependencyOutcome:
    descriptor = None
    cause = error
    if isinstance(error, DependencyPatchError):
        descriptor = error.descriptor
        cause = error.cause
    return DependencyOutcome(
        name=name,
        status=DependencyStatus.FAILED,
        version=version,
        error_kind=error.kind.value,
        error=str(error),
        descriptor=descriptor,
        expected=cause.expected if isinstance(cause, PatchApplyError) else [],
        actual=cause.actual if isinstance(cause, PatchApplyError) else [],
        duration_sec=time.monotonic() - started,
    )


class PipelineDriver:
    """
    Runs resolve -> fetch -> patch for every dependency in parallel.

    A failing dependency never stops its siblings; its error is recorded in
    its own outcome and the run as a whole reports failure.
    """

    def __init__(
        self,
        config: PatchConfig,
        source: PackageSource,
        cache: PackageCache | None = None,
    ):
        self.config = config
        self.source = source
        self.cache = cache or PackageCache(config.cache_dir, source)
        self.orchestrator = PatchOrchestrator(
            output_root=config.output_dir,
            patches_root=config.patches_root or Path.cwd(),
            offset_window=config.offset_window,
        )

    @property
    def run_log(self) -> Path:
        return self.config.output_dir / RUN_LOG_NAME

    def resolve_version(self, spec: PatchSpec) -> str:
        available = self.source.list_versions(spec.dependency_name)
        version = select_version(spec.requirement, available)
        if version is None:
            raise VersionResolutionError(spec.dependency_name, spec.version_requirement, available)
        logger.debug("Resolved %s %s -> %s", spec.dependency_name, spec.requirement, version)
        return version

    def process(self, spec: PatchSpec, refresh: bool = False, incremental: bool = False) -> DependencyOutcome:
        """Resolve, fetch and patch one dependency; errors become a failed outcome."""

        started = time.monotonic()
        name = spec.dependency_name
        version: str | None = None
        try:
            version = self.resolve_version(spec)
            pristine = self.cache.ensure_pristine(name, version, refresh=refresh)
            return self.orchestrator.apply(spec, version, pristine, incremental=incremental and not refresh)
        except PatchDepsError as e:
            logger.error("%s: %s", name, e)
            return _failed(name, e, version, started)
        except OSError as e:
            error = FilesystemError(getattr(e, "filename", None) or name, e)
            logger.error("%s: %s", name, error)
            return _failed(name, error, version, started)
        except Exception as e:
            logger.exception("%s: unexpected error", name)
            return _failed(name, UnexpectedError(e), version, started)

    def run(
        self,
        specs: list[PatchSpec],
        refresh: bool = False,
        incremental: bool = False,
    ) -> PipelineResult:
        run_id = str(ulid.new())
        result = PipelineResult(run_id=run_id)

        if not specs:
            logger.info("No patches found")
            return result

        ensure_dir(self.config.output_dir)
        outcomes: list[DependencyOutcome] = []
        workers = max(1, min(self.config.jobs, len(specs)))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="patchdeps") as executor:
            futures = {
                executor.submit(self.process, spec, refresh, incremental): spec
                for spec in specs
            }
            for future in as_completed(futures):
                spec = futures[future]
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    logger.exception("%s: worker failed", spec.dependency_name)
                    outcomes.append(_failed(spec.dependency_name, UnexpectedError(e), None, time.monotonic()))

        outcomes.sort(key=lambda o: o.name)
        result.outcomes = outcomes

        if not incremental:
            self._prune(outcomes)
        self._record(run_id, outcomes, incremental)

        patched = sum(1 for o in outcomes if o.status == DependencyStatus.PATCHED)
        fresh = sum(1 for o in outcomes if o.status == DependencyStatus.UP_TO_DATE)
        failed = len(outcomes) - patched - fresh
        logger.info(
            "Run %s finished: %d patched, %d up to date, %d failed",
            run_id,
            patched,
            fresh,
            failed,
        )
        return result

    def _prune(self, outcomes: list[DependencyOutcome]) -> None:
        keep = {working_copy_name(o.name, o.version) for o in outcomes if o.version}
        # an unresolved dependency keeps whatever copies it had
        unresolved = {o.name for o in outcomes if not o.version}
        output = self.config.output_dir
        for entry in sorted(output.iterdir()):
            if not entry.is_dir() or entry.name.startswith(".") or entry.name in keep:
                continue
            if _copy_owner(entry.name, unresolved) is not None:
                continue
            logger.info("Removing stale working copy %s", entry)
            remove_tree(entry)
            (output / STAMPS_DIR / f"{entry.name}.json").unlink(missing_ok=True)

    def _record(self, run_id: str, outcomes: list[DependencyOutcome], incremental: bool) -> None:
        now = datetime.now(timezone.utc)
        records = [
            RunRecord(run_id=run_id, timestamp=now, incremental=incremental, outcome=outcome)
            for outcome in outcomes
        ]
        if not append_jsonl(self.run_log, records):
            logger.warning("Run %s was not recorded in %s", run_id, self.run_log)
