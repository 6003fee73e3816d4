"""Publish pipeline: schedule → prepublish → publish → assets → postpublish.

This module orchestrates a publish run across a workspace:
1. Schedule the selected packages in dependency order
2. For each package, build a fresh execution context
3. Run the prepublish stage
4. Skip publishing if the version is already published (when supported)
5. Run the publish stage and resolve the produced assets
6. Run the postpublish stage

A failing stage stops that package only; the run continues with the next
package and the overall report records every outcome.
"""

from __future__ import annotations

import os
import subprocess
import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path

from .assets import resolve_assets
from .context import ExecutionContext, build_context
from .errors import (
    AssetPathError,
    ConfigError,
    TemplateResolutionError,
    VersionCheckError,
)
from .graph import internal_deps, schedule
from .models import (
    STAGES,
    OverallReport,
    Package,
    PackageManagerSpec,
    PackageReport,
    StageResult,
    Status,
    WorkspaceConfig,
)
from .runner import StageRunner
from .shell import run_shell, step
from .template import expand
from .versions import same_version


class PublishOrchestrator:
    """Drives every selected package through its publish stages.

    Args:
        config: Validated workspace configuration.
        dry_run: Simulate the run; steps follow their dry-run mode.
        env: Environment snapshot exposed to templates and commands.
             Defaults to a copy of the current process environment.
        jobs: Number of packages that may run at the same time. Packages
              only start once their dependencies have finished.
        only: Restrict the run to these packages. Dependencies outside the
              selection are assumed to be published already.
    """

    def __init__(
        self,
        config: WorkspaceConfig,
        *,
        dry_run: bool = False,
        env: Mapping[str, str] | None = None,
        jobs: int = 1,
        only: Iterable[str] | None = None,
    ) -> None:
        self.config = config
        self.dry_run = dry_run
        self.env = dict(os.environ if env is None else env)
        self.jobs = max(1, jobs)
        self.only = list(only) if only else None
        self._cancelled = threading.Event()
        self._root_lock = threading.Lock()
        self._console_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop launching packages; running steps are allowed to finish."""
        self._cancelled.set()

    def selected_packages(self) -> dict[str, Package]:
        """Return the packages taking part in the run, in declaration order."""
        packages = self.config.packages
        if not self.only:
            return dict(packages)
        unknown = [name for name in self.only if name not in packages]
        if unknown:
            raise ConfigError(f"Unknown package(s): {', '.join(unknown)}")
        wanted = set(self.only)
        return {name: info for name, info in packages.items() if name in wanted}

    def plan(self) -> list[str]:
        """Return the publish order without running anything."""
        return schedule(self.selected_packages())

    def run(self) -> OverallReport:
        """Execute the publish run.

        Returns:
            OverallReport with one PackageReport per scheduled package.

        Raises:
            CycleError: If the dependency graph cannot be scheduled. No
                command has run at that point.
            ConfigError: If a selected package is unknown.
        """
        packages = self.selected_packages()
        order = schedule(packages)

        mode = " (dry run)" if self.dry_run else ""
        step(f"Publishing {len(order)} packages{mode}")

        reports = {
            name: PackageReport(name=name, version=packages[name].version)
            for name in order
        }
        if self.jobs == 1:
            self._run_sequential(order, reports)
        else:
            self._run_concurrent(order, packages, reports)

        return OverallReport(
            dry_run=self.dry_run,
            cancelled=self.cancelled,
            packages=[reports[name] for name in order],
        )

    def _run_sequential(self, order: list[str], reports: dict[str, PackageReport]) -> None:
        for name in order:
            if self.cancelled:
                _mark_not_started(reports[name])
                continue
            self.publish_package(name, reports[name], emit=print, stream=True)

    def _run_concurrent(
        self,
        order: list[str],
        packages: Mapping[str, Package],
        reports: dict[str, PackageReport],
    ) -> None:
        pending = list(order)
        finished: set[str] = set()
        running: dict[Future[None], str] = {}

        with ThreadPoolExecutor(max_workers=self.jobs) as pool:
            while pending or running:
                if not self.cancelled:
                    # Launch ready packages in schedule order
                    for name in list(pending):
                        if len(running) >= self.jobs:
                            break
                        if all(dep in finished for dep in internal_deps(packages, name)):
                            pending.remove(name)
                            future = pool.submit(self._run_buffered, name, reports[name])
                            running[future] = name
                if not running:
                    break
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    finished.add(running.pop(future))
                    future.result()

        for name in pending:
            _mark_not_started(reports[name])

    def _run_buffered(self, name: str, report: PackageReport) -> None:
        """Run a package with its console output flushed as one block."""
        lines: list[str] = []
        try:
            self.publish_package(name, report, emit=lines.append, stream=False)
        finally:
            with self._console_lock:
                print("\n".join(lines), flush=True)

    def publish_package(
        self,
        name: str,
        report: PackageReport,
        *,
        emit: Callable[[str], None] = print,
        stream: bool = True,
    ) -> PackageReport:
        """Run all stages for one package, updating report in place.

        Args:
            name: Package identifier.
            report: Report to fill in.
            emit: Receives console lines for this package.
            stream: Stream command output live instead of capturing it.
        """
        package = self.config.packages[name]
        manager = self.config.manager_for(name)
        context = build_context(name, package, self.env)
        runner = StageRunner(
            self.config,
            env=self.env,
            stream=stream,
            emit=emit,
            root_lock=self._root_lock,
            should_stop=self._cancelled.is_set,
        )
        emit(f"\n  {name} {package.version} ({package.path})")

        stop: str | None = None
        for stage in STAGES:
            if stop is None and self.cancelled:
                stop = "run cancelled"
                report.status = Status.CANCELLED
            if stop:
                report.stages.append(
                    StageResult(name=stage, status=Status.SKIPPED, note=stop)
                )
                continue

            emit(f"  [{stage}]")
            if stage == "publish" and self._already_published(
                manager, context, report, emit
            ):
                note = f"version {package.version} is already published"
                emit(f"    {note}, skipping")
                report.stages.append(
                    StageResult(name=stage, status=Status.SKIPPED, note=note)
                )
                continue

            result = runner.run_stage(stage, name, context, self.dry_run, report)
            if result.status == Status.CANCELLED:
                stop = "run cancelled"
                report.status = Status.CANCELLED
            elif result.status == Status.FAILED:
                stop = f"{stage} failed"
                _fail(report, result.error_kind, result.error)
                emit(f"    ERROR: {result.error}")
            elif stage == "publish" and not self._resolve_assets(
                manager, context, report, emit
            ):
                stop = "asset resolution failed"

        if report.status == Status.PENDING:
            report.status = Status.SUCCESS
        return report

    def published_version(
        self, manager: PackageManagerSpec, context: ExecutionContext
    ) -> str:
        """Run the manager's published-version probe and return its output.

        Raises:
            VersionCheckError: If the probe cannot be expanded, fails or
                times out.
        """
        template = manager.get_published_version or ""
        try:
            command = expand(template, context)
        except TemplateResolutionError as exc:
            raise VersionCheckError(template, str(exc)) from exc

        cwd = Path(self.config.root) / context.pkg["path"]
        try:
            proc = run_shell(
                command,
                cwd=cwd,
                env=self.env,
                capture=True,
                timeout=self.config.defaults.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise VersionCheckError(command, "timed out") from exc
        except OSError as exc:
            raise VersionCheckError(command, str(exc)) from exc
        if proc.returncode != 0:
            raise VersionCheckError(command, f"exit code {proc.returncode}")
        return (proc.stdout or "").strip()

    def _already_published(
        self,
        manager: PackageManagerSpec,
        context: ExecutionContext,
        report: PackageReport,
        emit: Callable[[str], None],
    ) -> bool:
        if not (manager.supports_version_check and manager.get_published_version):
            return False
        try:
            published = self.published_version(manager, context)
        except VersionCheckError as exc:
            # A failed probe must not prevent a legitimate publish
            note = f"{exc.kind}: {exc}; publishing anyway"
            report.notes.append(note)
            emit(f"    {note}")
            return False
        emit(f"    published version: {published or '<none>'}")
        return same_version(published, context.pkg_file["version"])

    def _resolve_assets(
        self,
        manager: PackageManagerSpec,
        context: ExecutionContext,
        report: PackageReport,
        emit: Callable[[str], None],
    ) -> bool:
        """Resolve the package's assets; False if the package must stop."""
        try:
            report.assets = resolve_assets(
                manager.assets,
                context,
                Path(self.config.root),
                check_exists=not self.dry_run,
            )
        except AssetPathError as exc:
            # Already published: report the missing artifact, keep going
            report.assets = exc.assets
            report.notes.append(f"{exc.kind}: {exc}")
            emit(f"    WARNING: {exc}")
        except TemplateResolutionError as exc:
            _fail(report, exc.kind, str(exc))
            emit(f"    ERROR: {exc}")
            return False
        for asset in report.assets:
            emit(f"    asset: {asset.name} ({asset.path})")
        return True


def _fail(report: PackageReport, kind: str | None, message: str | None) -> None:
    report.status = Status.FAILED
    report.error_kind = kind
    report.error = message


def _mark_not_started(report: PackageReport) -> None:
    report.status = Status.SKIPPED
    report.notes.append("not started: run cancelled")
    report.stages = [
        StageResult(name=stage, status=Status.SKIPPED, note="run cancelled")
        for stage in STAGES
    ]


def run_publish(
    config: WorkspaceConfig,
    *,
    dry_run: bool = False,
    env: Mapping[str, str] | None = None,
    jobs: int = 1,
    only: Iterable[str] | None = None,
) -> OverallReport:
    """Execute a full publish run.

    Args:
        config: Validated workspace configuration.
        dry_run: Simulate the run.
        env: Environment snapshot; defaults to the process environment.
        jobs: Maximum number of packages running at the same time.
        only: Restrict the run to these packages.
    """
    orchestrator = PublishOrchestrator(
        config, dry_run=dry_run, env=env, jobs=jobs, only=only
    )
    return orchestrator.run()
