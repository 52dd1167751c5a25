# expressions.py
"""
`${{ context.key }}` placeholders.

Only two contexts exist: `matrix` (the job instance's binding) and `env`
(the step's resolved environment). Anything else is rejected when the
workflow is loaded.
"""
from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Tuple

_EXPR = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
_REF = re.compile(r"^(?P<context>[A-Za-z_][A-Za-z0-9_-]*)\.(?P<key>[A-Za-z0-9_.-]+)$")

CONTEXTS = ("matrix", "env")


def render_scalar(value: Any) -> str:
    """Render a YAML scalar the way it appears in a shell environment."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def references(text: str) -> List[Tuple[str, str]]:
    """Return (context, key) for every placeholder in `text`, raising on bad syntax."""
    out: List[Tuple[str, str]] = []
    for m in _EXPR.finditer(text):
        ref = _REF.match(m.group(1))
        if ref is None:
            raise ValueError(f"unsupported expression '{m.group(0)}'")
        out.append((ref.group("context"), ref.group("key")))
    return out


def validate_references(text: str, axes: Iterable[str]) -> None:
    """Raise ValueError if `text` refers to an unknown context or undeclared axis."""
    declared = set(axes)
    for context, key in references(text):
        if context not in CONTEXTS:
            raise ValueError(f"unknown expression context '{context}' (expected one of {', '.join(CONTEXTS)})")
        if context == "matrix" and key not in declared:
            known = ", ".join(sorted(declared)) or "none"
            raise ValueError(f"'matrix.{key}' is not a declared matrix axis (axes: {known})")


def substitute(text: str, contexts: Mapping[str, Mapping[str, Any]]) -> str:
    """
    Replace every placeholder in `text` from `contexts`.

    A key missing from its context renders as the empty string. A context
    not supplied at all is left untouched so that a later pass can fill it.
    """
    if "${{" not in text:
        return text

    def _replace(m: re.Match) -> str:
        ref = _REF.match(m.group(1))
        if ref is None:
            return m.group(0)
        context = contexts.get(ref.group("context"))
        if context is None:
            return m.group(0)
        return render_scalar(context.get(ref.group("key")))

    return _EXPR.sub(_replace, text)
