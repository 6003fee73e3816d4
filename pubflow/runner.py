"""Step execution and stage running.

A stage is an ordered list of steps from the package's manager
configuration. Steps run strictly one after another: later steps often rely
on files produced by earlier ones (a lockfile before packaging, a heading
before the piped output it introduces).
"""

from __future__ import annotations

import subprocess
import threading
from collections.abc import Callable, Mapping
from contextlib import nullcontext
from pathlib import Path

from .context import ExecutionContext
from .errors import StepExecutionError, StepTimeoutError, TemplateResolutionError
from .models import (
    Override,
    PackageReport,
    Skip,
    StageResult,
    Status,
    Step,
    StepResult,
    WorkspaceConfig,
)
from .shell import run_shell
from .template import expand


def _text(value: str | bytes | None) -> str:
    # TimeoutExpired carries bytes even for text-mode processes
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value or ""


class StageRunner:
    """Runs the steps of one stage for one package.

    Args:
        config: Validated workspace configuration.
        env: Environment passed to every command.
        stream: Stream command output live. When False, output is captured
                and forwarded through emit once the command exits.
        emit: Callable receiving console lines for this package.
        root_lock: Lock held while a ``runFromRoot`` step executes, shared
                   by every runner of a run.
        should_stop: Returns True once the run was cancelled; checked before
                     each step starts.
    """

    def __init__(
        self,
        config: WorkspaceConfig,
        *,
        env: Mapping[str, str] | None = None,
        stream: bool = True,
        emit: Callable[[str], None] = print,
        root_lock: threading.Lock | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        self.config = config
        self.env = dict(env) if env is not None else None
        self.stream = stream
        self.emit = emit
        self.root_lock = root_lock or threading.Lock()
        self.should_stop = should_stop or (lambda: False)

    def working_dir(self, step: Step, context: ExecutionContext) -> Path:
        """Directory a step runs in: the package path or the workspace root."""
        root = Path(self.config.root)
        if step.run_from_root:
            return root
        return root / context.pkg["path"]

    def run_step(
        self, step: Step, context: ExecutionContext, dry_run: bool
    ) -> StepResult:
        """Expand and execute a single step.

        Args:
            step: Step to execute.
            context: Values for the command template.
            dry_run: Whether the run is a dry-run.

        Returns:
            StepResult describing the execution. Dry-run skips produce a
            successful result without starting any process.

        Raises:
            TemplateResolutionError: If the command cannot be expanded.
            StepExecutionError: If the command exits with a non-zero status
                or cannot be started.
            StepTimeoutError: If the command exceeds its timeout.
        """
        mode = step.dry_run
        if dry_run and isinstance(mode, Override):
            command = expand(mode.command, context)
        else:
            command = expand(step.command, context)

        if dry_run and isinstance(mode, Skip):
            self.emit(f"    [dry-run] {command}")
            return StepResult(
                command=command,
                dry_run=True,
                skipped=True,
                run_from_root=step.run_from_root,
            )

        timeout = step.timeout or self.config.defaults.timeout
        capture = step.pipe or not self.stream
        cwd = self.working_dir(step, context)
        self.emit(f"    $ {command}")

        # Root-scoped steps may touch shared files (lockfiles, git tags)
        guard = self.root_lock if step.run_from_root else nullcontext()
        with guard:
            try:
                proc = run_shell(
                    command, cwd=cwd, env=self.env, capture=capture, timeout=timeout
                )
            except subprocess.TimeoutExpired as exc:
                result = StepResult(
                    command=command,
                    dry_run=dry_run,
                    run_from_root=step.run_from_root,
                    output=_text(exc.stdout) if step.pipe else "",
                )
                raise StepTimeoutError(result, timeout or 0) from exc
            except OSError as exc:
                # The process never started (missing directory, no shell)
                result = StepResult(
                    command=command,
                    dry_run=dry_run,
                    run_from_root=step.run_from_root,
                )
                raise StepExecutionError(
                    result, f"Cannot start command in {cwd}: {exc}"
                ) from exc

        stdout, stderr = _text(proc.stdout), _text(proc.stderr)
        if capture:
            for text in (stdout, stderr):
                if text.strip():
                    self.emit(text.rstrip("\n"))

        result = StepResult(
            command=command,
            dry_run=dry_run,
            run_from_root=step.run_from_root,
            exit_status=proc.returncode,
            output=stdout if step.pipe else "",
        )
        if proc.returncode != 0:
            raise StepExecutionError(result)
        return result

    def run_stage(
        self,
        stage: str,
        package: str,
        context: ExecutionContext,
        dry_run: bool,
        report: PackageReport,
    ) -> StageResult:
        """Run every step of a stage in declaration order.

        Each step is recorded on the package report as soon as it finishes,
        and piped output is appended to the report body, also for a failing
        step. The first failure stops the stage.

        Args:
            stage: Stage name (prepublish, publish or postpublish).
            package: Package identifier.
            context: Execution context of the package run.
            dry_run: Whether the run is a dry-run.
            report: Report of the package, updated in place.

        Returns:
            The StageResult, also appended to report.stages.
        """
        result = StageResult(name=stage)
        report.stages.append(result)

        for step in self.config.manager_for(package).steps(stage):
            if self.should_stop():
                result.status = Status.CANCELLED
                result.note = "run cancelled"
                return result

            try:
                record = self.run_step(step, context, dry_run)
            except StepExecutionError as exc:
                record = exc.result
                record.error_kind, record.error = exc.kind, str(exc)
            except TemplateResolutionError as exc:
                record = StepResult(
                    command=step.command,
                    dry_run=dry_run,
                    run_from_root=step.run_from_root,
                    error_kind=exc.kind,
                    error=str(exc),
                )

            record.stage = stage
            result.steps.append(record)
            if step.pipe:
                report.append_output(record.output)

            if not record.ok:
                result.status = Status.FAILED
                result.error_kind, result.error = record.error_kind, record.error
                return result

        result.status = Status.SUCCESS
        return result
