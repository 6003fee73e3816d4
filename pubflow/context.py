"""Per-package execution context used to expand templates.

A context is built fresh for every package run and never shared, so values
resolved for one package can never leak into another package's commands.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .models import Package
from .versions import decompose


@dataclass(frozen=True)
class ExecutionContext:
    """Read-only value bag exposed to ``${ expr }`` placeholders.

    Attributes:
        pkg: Package configuration (``pkg``, ``path``, ``manager``).
        pkg_file: Package metadata (``name``, ``version`` and the
                  ``versionMajor/Minor/Patch`` components).
        env: Snapshot of the environment variables injected into the run.
    """

    pkg: Mapping[str, Any]
    pkg_file: Mapping[str, Any]
    env: Mapping[str, str] = field(default_factory=dict)

    def namespaces(self) -> Mapping[str, Any]:
        """Return the top-level names templates may reference."""
        return MappingProxyType(
            {
                "pkg": self.pkg,
                "pkgFile": self.pkg_file,
                "process": MappingProxyType({"env": self.env}),
            }
        )


def build_context(
    name: str, package: Package, env: Mapping[str, str] | None = None
) -> ExecutionContext:
    """Create the execution context for one package run.

    Args:
        name: Package identifier.
        package: Package configuration.
        env: Environment snapshot; copied so later changes are not visible.
    """
    pkg_file: dict[str, Any] = {
        "name": package.name or name,
        "version": package.version,
    }
    pkg_file.update(decompose(package.version))
    return ExecutionContext(
        pkg=MappingProxyType(
            {"pkg": name, "path": package.path, "manager": package.manager}
        ),
        pkg_file=MappingProxyType(pkg_file),
        env=MappingProxyType(dict(env or {})),
    )
