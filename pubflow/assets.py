"""Asset resolution.

After a package is published, its manager's asset templates are expanded
into concrete artifact descriptors (path and display name) for the report.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from .context import ExecutionContext
from .errors import AssetPathError
from .models import Asset, AssetTemplate
from .template import expand


def resolve_assets(
    templates: Sequence[AssetTemplate],
    context: ExecutionContext,
    root: Path,
    *,
    check_exists: bool = True,
) -> list[Asset]:
    """Expand asset templates into assets, in declaration order.

    Args:
        templates: Asset templates of the package's manager.
        context: Execution context of the package run.
        root: Workspace root; relative asset paths are resolved against it.
        check_exists: Require every resolved path to exist on disk.

    Returns:
        List of resolved assets.

    Raises:
        TemplateResolutionError: If a template cannot be expanded.
        AssetPathError: If check_exists is set and any path is missing. The
            error carries the assets that did resolve.
    """
    assets: list[Asset] = []
    missing: list[str] = []

    for template in templates:
        asset = Asset(
            path=expand(template.path, context), name=expand(template.name, context)
        )
        if check_exists and not (root / asset.path).exists():
            missing.append(asset.path)
            continue
        assets.append(asset)

    if missing:
        raise AssetPathError(missing, assets)
    return assets
