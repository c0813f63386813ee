"""``${path.into.results}`` placeholder interpolation."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping, Optional

PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")

_MISSING = object()


def get_deep_value(obj: Any, path: str) -> Any:
    """Walk ``obj`` along a dot-separated ``path``.

    Mapping keys and list indices are both supported (``items.0.name``).
    Returns ``None`` when any segment is missing.
    """
    value = _lookup(obj, path)
    return None if value is _MISSING else value


def _lookup(obj: Any, path: str) -> Any:
    if not path:
        return _MISSING
    current = obj
    for part in path.split("."):
        if current is None:
            return _MISSING
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def to_json(value: Any) -> str:
    """Compact JSON, matching what HTTP APIs emit."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def to_text(value: Any) -> str:
    """Render a resolved value for substitution into text."""
    if isinstance(value, (dict, list, tuple)):
        return to_json(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def interpolate(template: Optional[str], results: Mapping[str, Any]) -> str:
    """Replace every ``${expr}`` in ``template`` with its value from ``results``.

    An empty or absent template yields ``""``. Unresolvable paths render as
    ``[missing <expr>]`` rather than raising, so log and notify text is always
    producible.
    """
    if not template:
        return ""

    def replace(match: re.Match) -> str:
        expr = match.group(1).strip()
        value = _lookup(results, expr)
        if value is _MISSING or value is None:
            return f"[missing {expr}]"
        return to_text(value)

    return PLACEHOLDER_RE.sub(replace, template)


def interpolate_json_payload(raw: str, results: Mapping[str, Any]) -> str:
    """Interpolate a raw JSON payload template before it is parsed.

    Placeholders may sit inside string literals or in number positions;
    substitution is purely textual.
    """
    return interpolate(raw, results)
