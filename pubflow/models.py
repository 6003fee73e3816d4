"""Data models for pubflow.

These Pydantic models represent both the declarative configuration (package
managers, packages, steps, asset templates) and the reports produced while
running the publish pipeline. Configuration models are frozen once loaded;
report models are filled in incrementally as steps execute.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

#: Stage names in execution order.
STAGES: tuple[str, ...] = ("prepublish", "publish", "postpublish")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")


# Dry-run behaviour of a step, resolved from the raw ``dryRunCommand`` value
# (true / false / string / absent) when the configuration is loaded.


class Skip(_Frozen):
    """Do not execute in dry-run; only report the would-be command."""

    kind: Literal["skip"] = "skip"


class Override(_Frozen):
    """Execute ``command`` instead of the real command in dry-run."""

    kind: Literal["override"] = "override"
    command: str


class RunReal(_Frozen):
    """Execute the real command even in dry-run."""

    kind: Literal["run_real"] = "run_real"


DryRunMode = Annotated[Union[Skip, Override, RunReal], Field(discriminator="kind")]


class Step(_Frozen):
    """One executable unit within a stage.

    Attributes:
        command: Shell command template, expanded before every execution.
        dry_run: What to do when the run is a dry-run (see Skip, Override,
                 RunReal). Configured through ``dryRunCommand``.
        run_from_root: Execute from the workspace root instead of the
                       package directory.
        pipe: Capture stdout and append it to the package report body.
        timeout: Seconds the command may run before it is failed.
    """

    command: str
    dry_run: DryRunMode = Field(default_factory=RunReal, alias="dryRunCommand")
    run_from_root: bool = Field(default=False, alias="runFromRoot")
    pipe: bool = False
    timeout: float | None = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        # A bare string is shorthand for {command = "..."}
        if isinstance(data, str):
            return {"command": data}
        return data

    @field_validator("dry_run", mode="before")
    @classmethod
    def _parse_dry_run(cls, value: Any) -> Any:
        if value is True:
            return {"kind": "skip"}
        if value is False or value is None:
            return {"kind": "run_real"}
        if isinstance(value, str):
            return {"kind": "override", "command": value}
        return value


class AssetTemplate(_Frozen):
    """Path/name template pair describing an artifact produced by publishing."""

    path: str
    name: str


class Asset(_Frozen):
    """A resolved release artifact."""

    path: str
    name: str


def _as_step_list(value: Any) -> Any:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return value


class PackageManagerSpec(_Frozen):
    """Named pipeline configuration shared by one or more packages.

    Attributes:
        supports_version_check: Whether get_published_version can be used to
                                skip publishing an already published version.
        get_published_version: Command template printing the version that is
                               currently published for the package.
        prepublish: Steps run before publishing.
        publish: Steps that publish the package.
        postpublish: Steps run after publishing.
        assets: Artifacts produced by the publish stage.
    """

    supports_version_check: bool = Field(default=False, alias="supportsVersionCheck")
    get_published_version: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "getPublishedVersion", "getPublishedVersionCommand", "get_published_version"
        ),
    )
    prepublish: tuple[Step, ...] = ()
    publish: tuple[Step, ...] = ()
    postpublish: tuple[Step, ...] = ()
    assets: tuple[AssetTemplate, ...] = ()

    @field_validator("prepublish", "publish", "postpublish", mode="before")
    @classmethod
    def _parse_steps(cls, value: Any) -> Any:
        return _as_step_list(value)

    def steps(self, stage: str) -> tuple[Step, ...]:
        """Return the steps configured for a stage."""
        if stage not in STAGES:
            raise ValueError(f"Unknown stage: {stage}")
        return getattr(self, stage)


class Package(_Frozen):
    """Metadata for a single publishable package in the workspace.

    Attributes:
        path: Path of the package directory, relative to the workspace root.
        manager: Identifier of the package manager configuration to use.
        dependencies: Identifiers of packages that must be published first.
        version: Version about to be published.
        name: Published name of the package (defaults to the identifier).
    """

    path: str = "."
    manager: str
    dependencies: tuple[str, ...] = ()
    version: str = "0.0.0"
    name: str | None = None


class Defaults(_Frozen):
    """Run-wide defaults applied to every step."""

    timeout: float | None = Field(default=None, gt=0)


class WorkspaceConfig(_Frozen):
    """The complete, validated configuration document.

    Packages are kept in declaration order, which the scheduler uses to break
    ties between packages with no ordering constraint.
    """

    pkg_managers: dict[str, PackageManagerSpec] = Field(
        default_factory=dict, alias="pkgManagers"
    )
    packages: dict[str, Package] = Field(default_factory=dict)
    defaults: Defaults = Field(default_factory=Defaults)
    root: Path = Path(".")

    @model_validator(mode="after")
    def _check_references(self) -> WorkspaceConfig:
        for name, package in self.packages.items():
            if package.manager not in self.pkg_managers:
                raise ValueError(
                    f"Package '{name}' uses unknown package manager '{package.manager}'"
                )
            for dep in package.dependencies:
                if dep not in self.packages:
                    raise ValueError(
                        f"Package '{name}' depends on unknown package '{dep}'"
                    )
        return self

    def manager_for(self, name: str) -> PackageManagerSpec:
        """Return the package manager configuration used by a package."""
        return self.pkg_managers[self.packages[name].manager]


class Status(str, Enum):
    """Outcome of a stage or package."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class StepResult(BaseModel):
    """Record of one executed (or dry-run skipped) step.

    Attributes:
        stage: Stage the step belongs to.
        command: The fully expanded command that ran (or would have run).
        dry_run: Whether the step ran as part of a dry-run.
        skipped: True when the step was not executed because of dry-run.
        run_from_root: Whether the step ran from the workspace root.
        exit_status: Process exit status; None when nothing was executed.
        output: Captured stdout of a piped step.
        error_kind: Error class name when the step failed.
        error: Error message when the step failed.
    """

    stage: str = ""
    command: str
    dry_run: bool = False
    skipped: bool = False
    run_from_root: bool = False
    exit_status: int | None = None
    output: str = ""
    error_kind: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None and self.exit_status in (0, None)


class StageResult(BaseModel):
    """Outcome of one stage for one package."""

    name: str
    status: Status = Status.PENDING
    steps: list[StepResult] = Field(default_factory=list)
    note: str | None = None
    error_kind: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (Status.SUCCESS, Status.SKIPPED)


class PackageReport(BaseModel):
    """Everything that happened while publishing one package."""

    name: str
    version: str = ""
    status: Status = Status.PENDING
    stages: list[StageResult] = Field(default_factory=list)
    assets: list[Asset] = Field(default_factory=list)
    body: str = ""
    notes: list[str] = Field(default_factory=list)
    error_kind: str | None = None
    error: str | None = None

    def append_output(self, text: str) -> None:
        """Append piped output to the report body, one line-terminated chunk."""
        if not text:
            return
        self.body += text if text.endswith("\n") else text + "\n"

    def stage(self, name: str) -> StageResult | None:
        """Return the result recorded for a stage, if it was reached."""
        for result in self.stages:
            if result.name == name:
                return result
        return None


class OverallReport(BaseModel):
    """Aggregated per-package reports for a whole run, in schedule order."""

    dry_run: bool = False
    cancelled: bool = False
    packages: list[PackageReport] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> list[str]:
        return [p.name for p in self.packages if p.status == Status.FAILED]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return not self.failed and not self.cancelled

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def package(self, name: str) -> PackageReport:
        """Return the report of a package by identifier."""
        for report in self.packages:
            if report.name == name:
                return report
        raise KeyError(name)
