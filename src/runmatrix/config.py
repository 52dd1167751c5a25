# config.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from .environment import PATH_LIKE_KEYS

DEFAULT_ROOT = ".runmatrix"

_DURATION = re.compile(r"^(?:(?P<h>\d+(?:\.\d+)?)h)?(?:(?P<m>\d+(?:\.\d+)?)m)?(?:(?P<s>\d+(?:\.\d+)?)s?)?$")


def default_concurrency() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


def parse_duration(text: str | float | int) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) and `h`/`m`/`s` suffixes: "90", "90s",
    "5m", "1h30m", "2.5m".
    """
    if isinstance(text, (int, float)):
        seconds = float(text)
    else:
        raw = text.strip().lower()
        m = _DURATION.match(raw)
        if not raw or m is None or not any(m.groupdict().values()):
            raise ValueError(f"invalid duration: {text!r}")
        seconds = (
            float(m.group("h") or 0) * 3600
            + float(m.group("m") or 0) * 60
            + float(m.group("s") or 0)
        )
    if seconds < 0:
        raise ValueError(f"duration must not be negative: {text!r}")
    return seconds


def parse_action_mapping(items: Iterable[str]) -> Dict[str, str]:
    """Parse CLI `REF=COMMAND` pairs into a mapping."""
    out: Dict[str, str] = {}
    for item in items:
        ref, sep, command = item.partition("=")
        if not sep or not ref.strip() or not command.strip():
            raise ValueError(f"expected REF=COMMAND, got {item!r}")
        out[ref.strip()] = command.strip()
    return out


@dataclass(frozen=True)
class RunOptions:
    """
    Settings for one `run()` call.

    working_directory_root holds one `work/<instance>` and one
    `logs/<instance>` directory per job instance.
    """
    max_concurrency: Optional[int] = None
    cancel_after: Optional[float] = None  # seconds
    working_directory_root: Path = Path(DEFAULT_ROOT)
    source_root: Path = Path(".")
    default_shell: Optional[str] = None
    base_env: Optional[Mapping[str, str]] = None
    path_keys: FrozenSet[str] = PATH_LIKE_KEYS
    kill_grace: float = 5.0
    unknown_actions: str = "error"  # "error" | "skip"
    action_commands: Mapping[str, str] = field(default_factory=dict)
    output_tail: int = 4000

    def __post_init__(self) -> None:
        object.__setattr__(self, "working_directory_root", Path(self.working_directory_root))
        object.__setattr__(self, "source_root", Path(self.source_root))
        object.__setattr__(self, "path_keys", frozenset(self.path_keys))

        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if self.cancel_after is not None and self.cancel_after < 0:
            raise ValueError(f"cancel_after must not be negative, got {self.cancel_after}")
        if self.kill_grace < 0:
            raise ValueError(f"kill_grace must not be negative, got {self.kill_grace}")
        if self.unknown_actions not in ("error", "skip"):
            raise ValueError(f"unknown_actions must be 'error' or 'skip', got {self.unknown_actions!r}")

    @property
    def workers(self) -> int:
        return self.max_concurrency or default_concurrency()

    @property
    def work_root(self) -> Path:
        return self.working_directory_root.resolve() / "work"

    @property
    def logs_root(self) -> Path:
        return self.working_directory_root.resolve() / "logs"
