# results.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .executor import CapturedOutput


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SPAWN_ERROR = "spawn_error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one step invocation."""
    index: int
    name: str
    status: StepStatus
    exit_code: Optional[int]
    output: Optional[CapturedOutput]
    started_at: datetime
    finished_at: datetime
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.SUCCEEDED

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass(frozen=True)
class JobResult:
    """Terminal result of one job instance."""
    instance_id: str
    name: str
    job: str
    matrix: Dict[str, Any]
    runs_on: str
    state: JobState
    steps: Tuple[ExecutionResult, ...] = ()
    total_steps: int = 0
    error: Optional[BaseException] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.state is JobState.SUCCEEDED

    @property
    def exit_codes(self) -> Tuple[Optional[int], ...]:
        return tuple(s.exit_code for s in self.steps)

    @property
    def failed_step(self) -> Optional[ExecutionResult]:
        for s in self.steps:
            if not s.succeeded:
                return s
        return None


@dataclass(frozen=True)
class AggregateResult:
    """
    Every job instance's result, in expansion order.

    The run succeeded iff every instance did.
    """
    jobs: Tuple[JobResult, ...]

    @property
    def state(self) -> JobState:
        if all(j.succeeded for j in self.jobs):
            return JobState.SUCCEEDED
        return JobState.FAILED

    @property
    def succeeded(self) -> bool:
        return self.state is JobState.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return any(j.state is JobState.CANCELLED for j in self.jobs)

    @property
    def failed(self) -> Tuple[JobResult, ...]:
        return tuple(j for j in self.jobs if not j.succeeded)

    def get(self, instance_id: str) -> JobResult:
        for j in self.jobs:
            if j.instance_id == instance_id:
                return j
        raise KeyError(instance_id)

    def __iter__(self):
        return iter(self.jobs)

    def __len__(self) -> int:
        return len(self.jobs)
