from __future__ import annotations

import io
import os
import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import pytest

from runmatrix.config import RunOptions
from runmatrix.executor import CapturedOutput, ProcessOutcome
from runmatrix.model import Step
from runmatrix.ui.console import Console


class RecordingExecutor:
    """
    Stand-in for StepExecutor: records every call and returns scripted exit codes.

    `codes` maps a step display name to its exit code (default 0).
    """

    def __init__(self, codes: Optional[Dict[str, int]] = None):
        self.codes = codes or {}
        self.calls: List[dict] = []
        self._lock = threading.Lock()

    def execute(
        self,
        step: Step,
        env: Mapping[str, str],
        cwd: Path,
        *,
        output_path: Path,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ProcessOutcome:
        with self._lock:
            self.calls.append({"step": step, "env": dict(env), "cwd": cwd, "instance": env.get("RUNMATRIX_INSTANCE")})
        output_path.write_text(f"ran {step.display_name}\n", encoding="utf-8")
        return ProcessOutcome(exit_code=self.codes.get(step.display_name, 0), output=CapturedOutput(output_path))

    def names_for(self, instance_id: str) -> List[str]:
        return [c["step"].display_name for c in self.calls if c["instance"] == instance_id]


@pytest.fixture()
def console() -> Console:
    return Console(stream=io.StringIO(), err_stream=io.StringIO())


@pytest.fixture()
def options(tmp_path: Path) -> RunOptions:
    return RunOptions(
        max_concurrency=4,
        working_directory_root=tmp_path / "runs",
        source_root=tmp_path,
        base_env={"PATH": os.environ.get("PATH", "/usr/bin:/bin"), "HOME": str(tmp_path)},
        kill_grace=1.0,
    )


@pytest.fixture()
def recorder():
    """Factory for RecordingExecutor: recorder({"S2": 1})."""
    return RecordingExecutor
