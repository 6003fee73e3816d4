"""Human-readable and JSON rendering of publish reports."""

from __future__ import annotations

from pathlib import Path

from .models import OverallReport, PackageReport, StageResult, StepResult


def _step_line(result: StepResult) -> str:
    if result.skipped:
        return f"      [skipped] {result.command}"
    marker = "[dry-run] " if result.dry_run else ""
    status = "-" if result.exit_status is None else str(result.exit_status)
    line = f"      {marker}{result.command} (exit {status})"
    if result.error:
        line += f"\n        {result.error_kind}: {result.error}"
    return line


def _stage_lines(stage: StageResult) -> list[str]:
    header = f"    {stage.name}: {stage.status.value}"
    if stage.note:
        header += f" ({stage.note})"
    return [header, *(_step_line(s) for s in stage.steps)]


def render_package(report: PackageReport) -> str:
    """Render the report of one package."""
    lines = [f"  {report.name} {report.version}: {report.status.value}"]
    for stage in report.stages:
        lines.extend(_stage_lines(stage))
    if report.error:
        lines.append(f"    error: {report.error_kind}: {report.error}")
    for note in report.notes:
        lines.append(f"    note: {note}")
    for asset in report.assets:
        lines.append(f"    asset: {asset.name} → {asset.path}")
    if report.body:
        lines.append("    output:")
        lines.extend(f"      {line}" for line in report.body.splitlines())
    return "\n".join(lines)


def render_text(report: OverallReport) -> str:
    """Render the whole run as text for the terminal."""
    title = "Publish report (dry run)" if report.dry_run else "Publish report"
    lines = [title]
    lines.extend(render_package(p) for p in report.packages)
    if report.cancelled:
        lines.append("Run cancelled.")
    if report.failed:
        lines.append(f"Failed: {', '.join(report.failed)}")
    elif report.success:
        lines.append("All packages succeeded.")
    return "\n".join(lines)


def write_json(report: OverallReport, path: Path) -> None:
    """Write the machine-readable report."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2) + "\n")
