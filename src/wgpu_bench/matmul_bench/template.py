"""Placeholder substitution for WGSL shader templates.

Templates mark substitution points as ``{{name}}``. Substitution is literal
and happens in a single pass over the template text, so a substituted value
is never scanned again for markers.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

import attrs

from .config import NumType

PlaceholderValue = int | str | NumType | tuple[int, ...]

_MARKER_RE = re.compile(r"\{\{([A-Za-z_][A-Za-z0-9_]*)\}\}")


class TemplateError(ValueError):
    """Raised when a placeholder map does not match its template."""


def format_value(value: PlaceholderValue) -> str:
    # bool is an int subclass and has no WGSL literal form here.
    if isinstance(value, bool):
        raise TemplateError(f"Unsupported placeholder value type: {type(value).__name__}")
    if isinstance(value, NumType):
        return value.wgsl_name
    if isinstance(value, tuple):
        return ", ".join(str(int(v)) for v in value)
    if isinstance(value, (int, str)):
        return str(value)
    raise TemplateError(f"Unsupported placeholder value type: {type(value).__name__}")


def find_placeholders(text: str) -> set[str]:
    return set(_MARKER_RE.findall(text))


def replace_all(text: str, values: Mapping[str, str]) -> str:
    """Replace every ``{{key}}`` with ``values[key]``.

    Markers whose name is not in ``values`` are left untouched.
    """

    def _sub(m: re.Match[str]) -> str:
        return values.get(m.group(1), m.group(0))

    return _MARKER_RE.sub(_sub, text)


@attrs.define(frozen=True, slots=True)
class ShaderTemplate:
    name: str
    source: str

    def placeholders(self) -> set[str]:
        return find_placeholders(self.source)

    def render(self, values: Mapping[str, PlaceholderValue]) -> str:
        """Instantiate the template, rejecting missing or unused keys."""
        used = self.placeholders()
        missing = sorted(used - set(values))
        unused = sorted(set(values) - used)
        if missing:
            raise TemplateError(f"Template {self.name!r}: missing placeholder value(s): {missing}")
        if unused:
            raise TemplateError(f"Template {self.name!r}: unused placeholder key(s): {unused}")

        text = replace_all(self.source, {k: format_value(v) for k, v in values.items()})
        return text
