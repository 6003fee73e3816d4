"""Dependency graph utilities.

Provides topological sorting for determining publish order in a workspace.
Packages must be published in dependency order so that when package A
depends on package B, B is published first.
"""

from __future__ import annotations

import heapq
from collections.abc import Mapping

from .errors import CycleError
from .models import Package


def internal_deps(packages: Mapping[str, Package], name: str) -> list[str]:
    """Return the dependencies of name that are part of packages."""
    return [dep for dep in packages[name].dependencies if dep in packages]


def schedule(packages: Mapping[str, Package]) -> list[str]:
    """Topologically sort packages by their dependencies.

    Uses Kahn's algorithm to produce a publish order where dependencies
    come before dependents. Packages with no ordering constraint between
    them keep their declaration order, so runs are reproducible.

    Args:
        packages: Map of package name → Package, in declaration order.

    Returns:
        List of package names in publish order (dependencies first).

    Raises:
        CycleError: If a dependency cycle is detected. Nothing should be
            executed in that case.

    Example:
        If crate depends on sys:
        schedule({crate, sys}) → [sys, crate]
    """
    position = {name: i for i, name in enumerate(packages)}
    # Count incoming edges (dependencies) for each package
    in_degree = {n: 0 for n in packages}
    # Track reverse dependencies (who depends on each package)
    reverse_deps: dict[str, list[str]] = {n: [] for n in packages}

    for name in packages:
        # Only count dependencies that are within the packages we're sorting
        # (packages outside the selection are treated as already published)
        for dep in set(internal_deps(packages, name)):
            in_degree[name] += 1
            reverse_deps[dep].append(name)

    # Ready packages, earliest declared first
    ready = [(position[n], n) for n, d in in_degree.items() if d == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        _, node = heapq.heappop(ready)
        order.append(node)
        for dependent in reverse_deps[node]:
            in_degree[dependent] -= 1
            # When a package has all deps satisfied, it becomes ready
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (position[dependent], dependent))

    # If we didn't process all packages, there must be a cycle
    if len(order) != len(packages):
        raise CycleError(_cycle_members(packages, set(packages) - set(order)))

    return order


def _cycle_members(packages: Mapping[str, Package], remaining: set[str]) -> set[str]:
    """Drop packages that are only blocked by a cycle without being part of it."""
    members = set(remaining)
    changed = True
    while changed:
        changed = False
        for name in list(members):
            # Nothing left in the set depends on name: it is downstream only
            if not any(name in packages[other].dependencies for other in members):
                members.discard(name)
                changed = True
    return members or remaining
