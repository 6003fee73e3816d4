"""Configuration loading.

Reads the declarative workspace document (``pkgManagers`` and ``packages``)
from TOML via tomlkit or from JSON, and validates it into a WorkspaceConfig.
The workspace root defaults to the directory containing the document.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import ValidationError
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigError
from .models import WorkspaceConfig

#: File names searched for, in order, when no path is given.
DEFAULT_CONFIG_NAMES: tuple[str, ...] = ("pubflow.toml", "pubflow.json")


def find_config(directory: Path) -> Path:
    """Locate the configuration file in directory.

    Raises:
        ConfigError: If none of the default file names exist.
    """
    for name in DEFAULT_CONFIG_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    raise ConfigError(
        f"No {' or '.join(DEFAULT_CONFIG_NAMES)} found in {directory}"
    )


def load_document(path: Path) -> dict[str, Any]:
    """Parse a configuration file into plain Python data.

    Files ending in ``.json`` are read as JSON, anything else as TOML.
    """
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc

    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            # unwrap() turns tomlkit containers into plain dicts and lists
            data = tomlkit.parse(text).unwrap()
    except (json.JSONDecodeError, TOMLKitError) as exc:
        raise ConfigError(f"Invalid configuration file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a table/object")
    return data


def parse_config(data: dict[str, Any], root: Path) -> WorkspaceConfig:
    """Validate plain configuration data into a WorkspaceConfig.

    Args:
        data: Parsed document.
        root: Workspace root that package paths are relative to.

    Raises:
        ConfigError: If the document is invalid (unknown keys, wrong types,
            unknown package managers or dependencies).
    """
    try:
        return WorkspaceConfig.model_validate({**data, "root": root})
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration:\n{exc}") from exc


def load_config(path: Path | None = None, root: Path | None = None) -> WorkspaceConfig:
    """Load and validate the workspace configuration.

    Args:
        path: Configuration file. Searched for in the current directory
              when omitted.
        root: Workspace root. Defaults to the configuration file's directory.
    """
    if path is None:
        path = find_config(Path.cwd())
    data = load_document(path)
    data.pop("root", None)
    return parse_config(data, (root or path.parent).resolve())
