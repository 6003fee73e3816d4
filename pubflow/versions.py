"""Version parsing and comparison utilities.

Handles decomposition of version strings into semver components for the
``pkgFile`` template namespace, with special handling for incomplete version
strings (e.g., "1.0" → "1.0.0"), and the comparison used by the
published-version check.
"""

from __future__ import annotations

import semver
from packaging.version import InvalidVersion, Version


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3" → "1.2.3"

    Only the first 3 components are used (major.minor.patch).

    Raises:
        ValueError: If the string is not a valid version.
    """
    parts = version_str.strip().lstrip("v").split(".")
    # Pad with zeros to ensure we have at least 3 parts
    while len(parts) < 3:
        parts.append("0")
    return semver.Version.parse(".".join(parts[:3]))


def decompose(version_str: str) -> dict[str, int]:
    """Split a version into the ``versionMajor/Minor/Patch`` template fields.

    Returns an empty dict when the version cannot be parsed, so templates
    referencing the components fail with a resolution error while
    ``pkgFile.version`` itself stays usable.

    Examples:
        "1.2.3" → {"versionMajor": 1, "versionMinor": 2, "versionPatch": 3}
        "not-a-version" → {}
    """
    try:
        v = parse_version(version_str)
    except ValueError:
        return {}
    return {"versionMajor": v.major, "versionMinor": v.minor, "versionPatch": v.patch}


def same_version(published: str, target: str) -> bool:
    """Check whether a published version string matches the target version.

    Strings are compared after trimming whitespace; when both sides are valid
    PEP 440 versions they are compared semantically, so "1.0" == "1.0.0".
    """
    published, target = published.strip(), target.strip()
    if not published:
        return False
    if published == target:
        return True
    try:
        return Version(published) == Version(target)
    except InvalidVersion:
        return False
