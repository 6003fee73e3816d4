"""CLI entry point for pubflow."""

from __future__ import annotations

import os
import signal
from collections.abc import Callable, Sequence
from pathlib import Path
from types import FrameType
from typing import Any, Union

import click

from pubflow.config import DEFAULT_CONFIG_NAMES, load_config
from pubflow.errors import PubflowError
from pubflow.pipeline import PublishOrchestrator
from pubflow.report import render_text, write_json
from pubflow.shell import step

TEMPLATES_DIR = Path(__file__).parent / "templates"

# Whatever signal.signal() returns: a callable, SIG_DFL/SIG_IGN or None
SignalHandler = Union[Callable[[int, Union[FrameType, None]], Any], int, None]

config_option = click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Configuration file. [default: {' or '.join(DEFAULT_CONFIG_NAMES)}]",
)
package_option = click.option(
    "-p",
    "--package",
    "packages",
    multiple=True,
    help="Only handle this package (repeatable).",
)


def _orchestrator(
    config_path: Path | None,
    packages: Sequence[str],
    *,
    dry_run: bool = False,
    jobs: int = 1,
) -> PublishOrchestrator:
    try:
        config = load_config(config_path)
    except PubflowError as exc:
        raise click.ClickException(str(exc)) from exc
    return PublishOrchestrator(
        config, dry_run=dry_run, env=dict(os.environ), jobs=jobs, only=packages
    )


def _install_interrupt_handler(orchestrator: PublishOrchestrator) -> SignalHandler:
    """Turn the first Ctrl-C into a graceful cancel; the second one aborts."""

    def handler(signum: int, frame: FrameType | None) -> None:
        click.echo(
            "\nCancelling: waiting for running steps to finish "
            "(press Ctrl-C again to abort)",
            err=True,
        )
        orchestrator.cancel()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    return signal.signal(signal.SIGINT, handler)


@click.group()
@click.version_option(package_name="pubflow")
def cli() -> None:
    """Publish every package of a workspace in dependency order."""


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
def init(force: bool) -> None:
    """Write a starter pubflow.toml into the current directory."""
    dest = Path.cwd() / DEFAULT_CONFIG_NAMES[0]
    if dest.exists() and not force:
        raise click.ClickException(
            f"{dest.name} already exists. Use --force to overwrite it."
        )

    dest.write_text((TEMPLATES_DIR / "pubflow.toml").read_text())

    click.echo(f"✓ Wrote {dest.name}")
    click.echo()
    click.echo("Next steps:")
    click.echo("  1. Describe your packages under [packages]")
    click.echo("  2. Check the publish order:")
    click.echo("       pubflow plan")
    click.echo("  3. Try a dry run:")
    click.echo("       pubflow publish --dry-run")


@cli.command()
@config_option
@package_option
def plan(config_path: Path | None, packages: tuple[str, ...]) -> None:
    """Show the order packages would be published in."""
    orchestrator = _orchestrator(config_path, packages)
    try:
        order = orchestrator.plan()
    except PubflowError as exc:
        raise click.ClickException(str(exc)) from exc

    step("Publish order")
    for name in order:
        info = orchestrator.config.packages[name]
        deps = f" → [{', '.join(info.dependencies)}]" if info.dependencies else ""
        click.echo(f"  {name} {info.version} ({info.path}) [{info.manager}]{deps}")


@cli.command()
@config_option
@package_option
@click.option("--dry-run", is_flag=True, help="Simulate the publish run.")
@click.option(
    "-j",
    "--jobs",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Packages to publish at the same time.",
)
@click.option(
    "--report-json",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write the report as JSON to this file.",
)
def publish(
    config_path: Path | None,
    packages: tuple[str, ...],
    dry_run: bool,
    jobs: int,
    report_json: Path | None,
) -> None:
    """Run the prepublish, publish and postpublish stages of every package."""
    orchestrator = _orchestrator(config_path, packages, dry_run=dry_run, jobs=jobs)

    previous = _install_interrupt_handler(orchestrator)
    try:
        report = orchestrator.run()
    except PubflowError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        signal.signal(signal.SIGINT, previous)

    step("Summary")
    click.echo(render_text(report))
    if report_json is not None:
        write_json(report, report_json)
        click.echo(f"\nReport written to {report_json}")

    if not report.success:
        raise SystemExit(report.exit_code)
    click.echo(f"\n{'=' * 60}\nDone!\n{'=' * 60}")
