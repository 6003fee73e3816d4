"""Error taxonomy for pubflow.

Every error raised by the engine derives from PubflowError so the CLI can
report it uniformly. Errors scoped to one step or stage are caught by the
stage runner and recorded on the package report; graph and configuration
errors propagate and abort the run before any command executes.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Asset, StepResult


class PubflowError(Exception):
    """Base class for all pubflow errors."""

    @property
    def kind(self) -> str:
        """Short error kind shown in reports (the exception class name)."""
        return type(self).__name__


class ConfigError(PubflowError):
    """Raised when the configuration document cannot be loaded or validated."""


class TemplateResolutionError(PubflowError):
    """Raised when a ``${ expr }`` placeholder cannot be resolved.

    Attributes:
        expression: The offending expression, without the ``${ }`` wrapper.
        reason: Why resolution failed.
    """

    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Cannot resolve '${{ {expression} }}': {reason}")
        self.expression = expression
        self.reason = reason


class CycleError(PubflowError):
    """Raised when the package dependency graph contains a cycle."""

    def __init__(self, packages: Iterable[str]) -> None:
        self.packages = sorted(packages)
        super().__init__(
            f"Dependency cycle detected involving: {', '.join(self.packages)}"
        )


class StepExecutionError(PubflowError):
    """Raised when a step's command exits with a non-zero status."""

    def __init__(self, result: StepResult, message: str | None = None) -> None:
        self.result = result
        super().__init__(
            message
            or f"Command failed with exit code {result.exit_status}: {result.command}"
        )


class StepTimeoutError(StepExecutionError):
    """Raised when a step runs longer than its allotted timeout."""

    def __init__(self, result: StepResult, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            result, f"Command timed out after {timeout:g}s: {result.command}"
        )


class AssetPathError(PubflowError):
    """Raised when resolved asset paths do not exist after publishing.

    Attributes:
        missing: Resolved paths that were not found on disk.
        assets: Assets whose paths did exist.
    """

    def __init__(self, missing: Sequence[str], assets: Sequence[Asset] = ()) -> None:
        self.missing = list(missing)
        self.assets = list(assets)
        super().__init__(f"Asset not found: {', '.join(self.missing)}")


class VersionCheckError(PubflowError):
    """Raised when the published-version probe itself fails."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Version check failed ({reason}): {command}")
