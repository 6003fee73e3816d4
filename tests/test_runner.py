"""Tests for pubflow.runner."""

from __future__ import annotations

import subprocess
import time
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from pubflow.context import ExecutionContext, build_context
from pubflow.errors import StepExecutionError, StepTimeoutError, TemplateResolutionError
from pubflow.models import PackageReport, Status, Step, WorkspaceConfig
from pubflow.runner import StageRunner


def _runner(config: WorkspaceConfig, env: dict[str, str], **kwargs: Any) -> StageRunner:
    lines: list[str] = []
    return StageRunner(config, env=env, stream=False, emit=lines.append, **kwargs)


def _context(config: WorkspaceConfig, env: dict[str, str], name: str = "crate") -> ExecutionContext:
    return build_context(name, config.packages[name], env)


@pytest.fixture
def config(make_config) -> WorkspaceConfig:
    """One crate in crates/crate with an empty rust manager."""
    return make_config(
        {"rust": {}},
        {"crate": {"path": "crates/crate", "manager": "rust", "version": "1.2.3"}},
    )


class TestRunStep:
    """Tests for StageRunner.run_step()."""

    def test_runs_in_package_directory(
        self, config: WorkspaceConfig, env: dict[str, str], tmp_path: Path
    ) -> None:
        runner = _runner(config, env)
        step = Step(command="echo ${ pkgFile.version } > version.txt")

        result = runner.run_step(step, _context(config, env), dry_run=False)

        assert result.exit_status == 0
        assert result.command == "echo 1.2.3 > version.txt"
        assert (tmp_path / "crates/crate/version.txt").read_text() == "1.2.3\n"

    def test_run_from_root(
        self, config: WorkspaceConfig, env: dict[str, str], tmp_path: Path
    ) -> None:
        runner = _runner(config, env)
        step = Step(command="touch tagged", run_from_root=True)

        result = runner.run_step(step, _context(config, env), dry_run=False)

        assert result.run_from_root
        assert (tmp_path / "tagged").exists()
        assert not (tmp_path / "crates/crate/tagged").exists()

    def test_pipe_captures_stdout(self, config: WorkspaceConfig, env: dict[str, str]) -> None:
        runner = _runner(config, env)
        step = Step(command="echo token=$RELEASE_TOKEN", pipe=True)

        result = runner.run_step(step, _context(config, env), dry_run=False)

        assert result.output == "token=secret\n"

    def test_unpiped_output_not_recorded(
        self, config: WorkspaceConfig, env: dict[str, str]
    ) -> None:
        runner = _runner(config, env)

        result = runner.run_step(Step(command="echo hi"), _context(config, env), dry_run=False)

        assert result.output == ""

    def test_captured_output_is_emitted(
        self, config: WorkspaceConfig, env: dict[str, str]
    ) -> None:
        lines: list[str] = []
        runner = StageRunner(config, env=env, stream=False, emit=lines.append)

        runner.run_step(Step(command="echo hello"), _context(config, env), dry_run=False)

        assert lines == ["    $ echo hello", "hello"]

    def test_non_zero_exit_raises(self, config: WorkspaceConfig, env: dict[str, str]) -> None:
        runner = _runner(config, env)

        with pytest.raises(StepExecutionError) as exc_info:
            runner.run_step(Step(command="exit 3"), _context(config, env), dry_run=False)

        assert exc_info.value.result.exit_status == 3
        assert "exit code 3" in str(exc_info.value)

    def test_timeout(self, config: WorkspaceConfig, env: dict[str, str]) -> None:
        runner = _runner(config, env)
        step = Step(command="sleep 5", timeout=0.2)

        with pytest.raises(StepTimeoutError) as exc_info:
            runner.run_step(step, _context(config, env), dry_run=False)

        assert isinstance(exc_info.value, StepExecutionError)
        assert exc_info.value.timeout == 0.2

    def test_timeout_kills_children_of_the_shell(
        self, config: WorkspaceConfig, env: dict[str, str], tmp_path: Path
    ) -> None:
        """A background child of the timed-out shell must not outlive the step."""
        runner = _runner(config, env)
        step = Step(command="(sleep 1; touch late) & sleep 5", timeout=0.3)

        with pytest.raises(StepTimeoutError):
            runner.run_step(step, _context(config, env), dry_run=False)

        time.sleep(1.5)
        assert not (tmp_path / "crates/crate/late").exists()

    def test_missing_directory_raises(
        self, config: WorkspaceConfig, env: dict[str, str], tmp_path: Path
    ) -> None:
        (tmp_path / "crates/crate").rmdir()
        runner = _runner(config, env)

        with pytest.raises(StepExecutionError) as exc_info:
            runner.run_step(Step(command="echo hi"), _context(config, env), dry_run=False)

        assert exc_info.value.result.exit_status is None
        assert "Cannot start command" in str(exc_info.value)

    def test_default_timeout_from_config(self, make_config, env: dict[str, str]) -> None:
        config = make_config(
            {"rust": {}},
            {"crate": {"path": "crate", "manager": "rust"}},
            defaults={"timeout": 0.2},
        )
        runner = _runner(config, env)

        with pytest.raises(StepTimeoutError):
            runner.run_step(Step(command="sleep 5"), _context(config, env), dry_run=False)

    def test_template_error_propagates(self, config: WorkspaceConfig, env: dict[str, str]) -> None:
        runner = _runner(config, env)

        with pytest.raises(TemplateResolutionError):
            runner.run_step(
                Step(command="echo ${ process.env.MISSING }"),
                _context(config, env),
                dry_run=False,
            )


class TestDryRun:
    """Dry-run handling of the three dryRunCommand modes."""

    @patch("pubflow.runner.run_shell")
    def test_skip_never_starts_a_process(
        self, mock_run_shell: MagicMock, config: WorkspaceConfig, env: dict[str, str]
    ) -> None:
        runner = _runner(config, env)
        step = Step(command="cargo publish ${ pkg.pkg }", dry_run=True)

        result = runner.run_step(step, _context(config, env), dry_run=True)

        mock_run_shell.assert_not_called()
        assert result.skipped
        assert result.dry_run
        assert result.exit_status is None
        assert result.command == "cargo publish crate"

    @patch("pubflow.runner.run_shell")
    def test_override_runs_expanded_override(
        self, mock_run_shell: MagicMock, config: WorkspaceConfig, env: dict[str, str]
    ) -> None:
        mock_run_shell.return_value = subprocess.CompletedProcess("", 0, None, None)
        runner = _runner(config, env)
        step = Step(command="cargo publish", dry_run="cargo publish --dry-run -p ${ pkg.pkg }")

        result = runner.run_step(step, _context(config, env), dry_run=True)

        mock_run_shell.assert_called_once()
        assert mock_run_shell.call_args.args[0] == "cargo publish --dry-run -p crate"
        assert result.command == "cargo publish --dry-run -p crate"
        assert not result.skipped

    @patch("pubflow.runner.run_shell")
    def test_absent_runs_real_command(
        self, mock_run_shell: MagicMock, config: WorkspaceConfig, env: dict[str, str]
    ) -> None:
        mock_run_shell.return_value = subprocess.CompletedProcess("", 0, None, None)
        runner = _runner(config, env)

        runner.run_step(Step(command="cargo package"), _context(config, env), dry_run=True)

        assert mock_run_shell.call_args.args[0] == "cargo package"

    @patch("pubflow.runner.run_shell")
    def test_skip_mode_runs_normally_outside_dry_run(
        self, mock_run_shell: MagicMock, config: WorkspaceConfig, env: dict[str, str]
    ) -> None:
        mock_run_shell.return_value = subprocess.CompletedProcess("", 0, None, None)
        runner = _runner(config, env)
        step = Step(command="cargo publish", dry_run="cargo publish --dry-run")

        runner.run_step(step, _context(config, env), dry_run=False)

        assert mock_run_shell.call_args.args[0] == "cargo publish"


class TestRunStage:
    """Tests for StageRunner.run_stage()."""

    def _stage_config(self, make_config, prepublish: list[Any]) -> WorkspaceConfig:
        return make_config(
            {"rust": {"prepublish": prepublish}},
            {"crate": {"path": "crate", "manager": "rust", "version": "1.0.0"}},
        )

    def test_piped_steps_concatenate_in_order(self, make_config, env: dict[str, str]) -> None:
        config = self._stage_config(
            make_config,
            [
                {"command": "echo '# Title'", "pipe": True},
                "echo not piped",
                {"command": "echo body", "pipe": True},
                {"command": "echo '```'", "pipe": True},
            ],
        )
        runner = _runner(config, env)
        report = PackageReport(name="crate")

        result = runner.run_stage("prepublish", "crate", _context(config, env), False, report)

        assert result.status == Status.SUCCESS
        assert report.body == "# Title\nbody\n```\n"
        assert [s.stage for s in result.steps] == ["prepublish"] * 4
        assert report.stages == [result]

    def test_failing_step_halts_stage(
        self, make_config, env: dict[str, str], tmp_path: Path
    ) -> None:
        config = self._stage_config(
            make_config,
            [
                {"command": "echo before", "pipe": True},
                "exit 4",
                "touch never",
            ],
        )
        runner = _runner(config, env)
        report = PackageReport(name="crate")

        result = runner.run_stage("prepublish", "crate", _context(config, env), False, report)

        assert result.status == Status.FAILED
        assert result.error_kind == "StepExecutionError"
        assert len(result.steps) == 2
        assert result.steps[1].exit_status == 4
        assert not (tmp_path / "crate/never").exists()
        assert report.body == "before\n"

    def test_failing_piped_step_keeps_output(self, make_config, env: dict[str, str]) -> None:
        config = self._stage_config(
            make_config, [{"command": "echo partial; exit 1", "pipe": True}]
        )
        runner = _runner(config, env)
        report = PackageReport(name="crate")

        result = runner.run_stage("prepublish", "crate", _context(config, env), False, report)

        assert result.status == Status.FAILED
        assert report.body == "partial\n"
        assert result.steps[0].output == "partial\n"

    def test_timed_out_piped_step_keeps_output(
        self, make_config, env: dict[str, str]
    ) -> None:
        config = self._stage_config(
            make_config,
            [{"command": "echo partial; sleep 5", "pipe": True, "timeout": 0.5}],
        )
        runner = _runner(config, env)
        report = PackageReport(name="crate")

        result = runner.run_stage("prepublish", "crate", _context(config, env), False, report)

        assert result.status == Status.FAILED
        assert result.error_kind == "StepTimeoutError"
        assert "partial" in report.body

    def test_template_error_fails_stage(self, make_config, env: dict[str, str]) -> None:
        config = self._stage_config(make_config, ["echo ${ pkgFile.missing }"])
        runner = _runner(config, env)
        report = PackageReport(name="crate")

        result = runner.run_stage("prepublish", "crate", _context(config, env), False, report)

        assert result.status == Status.FAILED
        assert result.error_kind == "TemplateResolutionError"
        assert result.steps[0].command == "echo ${ pkgFile.missing }"

    def test_dry_run_skips_count_as_success(self, make_config, env: dict[str, str]) -> None:
        config = self._stage_config(
            make_config, [{"command": "exit 1", "dryRunCommand": True}]
        )
        runner = _runner(config, env)
        report = PackageReport(name="crate")

        result = runner.run_stage("prepublish", "crate", _context(config, env), True, report)

        assert result.status == Status.SUCCESS
        assert result.steps[0].skipped

    def test_empty_stage_succeeds(self, make_config, env: dict[str, str]) -> None:
        config = self._stage_config(make_config, [])
        runner = _runner(config, env)

        result = runner.run_stage(
            "publish", "crate", _context(config, env), False, PackageReport(name="crate")
        )

        assert result.status == Status.SUCCESS
        assert result.steps == []

    def test_stops_before_next_step_when_cancelled(
        self, make_config, env: dict[str, str]
    ) -> None:
        config = self._stage_config(make_config, ["echo one", "echo two"])
        runner = _runner(config, env, should_stop=lambda: True)

        result = runner.run_stage(
            "prepublish", "crate", _context(config, env), False, PackageReport(name="crate")
        )

        assert result.status == Status.CANCELLED
        assert result.steps == []
