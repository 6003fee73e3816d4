"""Template expansion for step commands and asset templates.

Templates contain ``${ expr }`` placeholders where ``expr`` is a dotted
property path into the execution context, e.g. ``${ pkgFile.version }`` or
``${ process.env.GITHUB_TOKEN }``. Nothing else is evaluated: no calls,
operators, indexing or defaults. A template is parsed into a flat list of
Literal and Reference nodes and then walked against the context.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from .context import ExecutionContext
from .errors import TemplateResolutionError

_OPEN = "${"
_CLOSE = "}"
_PATH_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


@dataclass(frozen=True)
class Literal:
    """Text copied to the output unchanged."""

    text: str


@dataclass(frozen=True)
class Reference:
    """A property path to look up in the context."""

    path: tuple[str, ...]

    @property
    def expression(self) -> str:
        return ".".join(self.path)


Node = Union[Literal, Reference]


def parse(template: str) -> list[Node]:
    """Split a template into literal text and references.

    Raises:
        TemplateResolutionError: On an unterminated placeholder or an
            expression that is not a plain dotted path.

    Example:
        parse("v${ pkgFile.version }") →
            [Literal("v"), Reference(("pkgFile", "version"))]
    """
    nodes: list[Node] = []
    pos = 0
    while True:
        start = template.find(_OPEN, pos)
        if start == -1:
            break
        end = template.find(_CLOSE, start + len(_OPEN))
        if end == -1:
            raise TemplateResolutionError(
                template[start + len(_OPEN) :].strip(), "unterminated placeholder"
            )
        if start > pos:
            nodes.append(Literal(template[pos:start]))
        expression = template[start + len(_OPEN) : end].strip()
        if not _PATH_PATTERN.match(expression):
            raise TemplateResolutionError(
                expression, "only dotted property paths are supported"
            )
        nodes.append(Reference(tuple(expression.split("."))))
        pos = end + len(_CLOSE)
    if pos < len(template):
        nodes.append(Literal(template[pos:]))
    return nodes


def lookup(reference: Reference, namespaces: Mapping[str, Any]) -> Any:
    """Walk a reference's path through nested mappings."""
    current: Any = namespaces
    for part in reference.path:
        if isinstance(current, Mapping) and part in current:
            current = current[part]
            continue
        raise TemplateResolutionError(reference.expression, f"'{part}' is not defined")
    return current


def _render(value: Any, reference: Reference) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if value is None:
        raise TemplateResolutionError(reference.expression, "value is not set")
    raise TemplateResolutionError(
        reference.expression, f"cannot render a {type(value).__name__} as text"
    )


def expand(template: str, context: ExecutionContext) -> str:
    """Replace every ``${ expr }`` placeholder in template.

    Expansion is pure: a string without placeholders is returned unchanged.

    Args:
        template: Template string.
        context: Values available to placeholders.

    Returns:
        The expanded string.

    Raises:
        TemplateResolutionError: If any placeholder cannot be resolved.
    """
    if _OPEN not in template:
        return template
    namespaces = context.namespaces()
    parts: list[str] = []
    for node in parse(template):
        if isinstance(node, Literal):
            parts.append(node.text)
        else:
            parts.append(_render(lookup(node, namespaces), node))
    return "".join(parts)
