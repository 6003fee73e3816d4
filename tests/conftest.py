"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from pubflow.config import parse_config
from pubflow.context import ExecutionContext, build_context
from pubflow.models import Package, WorkspaceConfig

MakeConfig = Callable[..., WorkspaceConfig]


@pytest.fixture
def env(tmp_path: Path) -> dict[str, str]:
    """A fixed environment; LOG points at a file steps can append to."""
    return {
        "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
        "RELEASE_TOKEN": "secret",
        "LOG": str(tmp_path / "log.txt"),
    }


@pytest.fixture
def make_config(tmp_path: Path) -> MakeConfig:
    """Build a validated config rooted at tmp_path, creating package dirs."""

    def _make(
        managers: dict[str, Any], packages: dict[str, Any], **extra: Any
    ) -> WorkspaceConfig:
        for info in packages.values():
            (tmp_path / info.get("path", ".")).mkdir(parents=True, exist_ok=True)
        document = {"pkgManagers": managers, "packages": packages, **extra}
        return parse_config(document, tmp_path)

    return _make


@pytest.fixture
def crate_context() -> ExecutionContext:
    """Context of a crate at version 1.2.3."""
    package = Package(path="crates/crate", manager="rust", version="1.2.3")
    return build_context("crate", package, {"HOME": "/home/ci"})


@pytest.fixture
def read_log(tmp_path: Path) -> Callable[[], list[str]]:
    """Return a reader for the lines steps appended to the LOG file."""

    def _read() -> list[str]:
        log = tmp_path / "log.txt"
        return log.read_text().splitlines() if log.exists() else []

    return _read
