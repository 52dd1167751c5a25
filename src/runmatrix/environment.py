# environment.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Tuple

from .errors import EnvironmentFileError
from .expressions import render_scalar

PATH_LIKE_KEYS = frozenset({"PATH"})


@dataclass(frozen=True)
class EnvironmentLayer:
    """
    One immutable layer of environment variables.

    `path_entries` are directories exported by a step (toolchain installers);
    they are appended to PATH at this layer's position.
    """
    name: str
    values: Mapping[str, str] = field(default_factory=dict)
    path_entries: Tuple[str, ...] = ()

    @classmethod
    def of(cls, name: str, values: Mapping[str, object] | None) -> "EnvironmentLayer":
        return cls(name=name, values={k: render_scalar(v) for k, v in (values or {}).items()})


def resolve_environment(
    layers: Iterable[EnvironmentLayer],
    *,
    path_keys: Iterable[str] = PATH_LIKE_KEYS,
    separator: str = os.pathsep,
) -> Dict[str, str]:
    """
    Merge layers into one flat mapping.

    Later layers shadow earlier ones key by key, except path-like keys,
    whose values are joined with `separator` in layer order.
    """
    path_keys = frozenset(path_keys)
    merged: Dict[str, str] = {}
    segments: Dict[str, List[str]] = {}

    for layer in layers:
        for key, value in layer.values.items():
            if key in path_keys:
                if value:
                    segments.setdefault(key, []).append(value)
            else:
                merged[key] = value
        entries = [p for p in layer.path_entries if p]
        if not entries:
            continue
        if "PATH" in path_keys:
            segments.setdefault("PATH", []).extend(entries)
        else:
            # PATH is overwritten layer by layer; exports extend the value so far
            base = [merged["PATH"]] if merged.get("PATH") else []
            merged["PATH"] = separator.join([*base, *entries])

    for key, parts in segments.items():
        merged[key] = separator.join(parts)
    return merged


# ----------------------------------------------------------------------
# Step export files (RUNMATRIX_ENV / RUNMATRIX_PATH)
# ----------------------------------------------------------------------

def parse_env_file(text: str, *, step: str = "") -> Dict[str, str]:
    """
    Parse `KEY=VALUE` lines and `KEY<<DELIM` ... `DELIM` blocks.

    Blank lines are ignored. Later assignments to the same key win.
    """
    out: Dict[str, str] = {}
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        lineno = i + 1
        i += 1
        if not line.strip():
            continue

        if "<<" in line and ("=" not in line or line.index("<<") < line.index("=")):
            key, delim = line.split("<<", 1)
            key, delim = key.strip(), delim.strip()
            if not key or not delim:
                raise EnvironmentFileError(step=step, line=lineno, message=f"bad heredoc header: {line!r}")
            body: List[str] = []
            while i < len(lines) and lines[i] != delim:
                body.append(lines[i])
                i += 1
            if i >= len(lines):
                raise EnvironmentFileError(step=step, line=lineno, message=f"missing delimiter {delim!r}")
            i += 1  # skip delimiter
            out[key] = "\n".join(body)
            continue

        if "=" not in line:
            raise EnvironmentFileError(step=step, line=lineno, message=f"expected KEY=VALUE, got {line!r}")
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            raise EnvironmentFileError(step=step, line=lineno, message="empty variable name")
        out[key] = value
    return out


def parse_path_file(text: str) -> Tuple[str, ...]:
    """One directory per line; blank lines ignored."""
    return tuple(line.strip() for line in text.splitlines() if line.strip())
