# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class RunmatrixError(Exception):
    """Base class for every error raised by the engine."""


# ----------------------------------------------------------------------
# Spec-level errors (raised before anything is scheduled)
# ----------------------------------------------------------------------

@dataclass
class MalformedSpecError(RunmatrixError):
    """
    The workflow failed structural validation.

    `location` is a dotted path into the workflow document
    (e.g. "jobs.build.steps.2") when one is known.
    """
    message: str
    location: str | None = None
    details: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        head = f"{self.location}: {self.message}" if self.location else self.message
        if not self.details:
            return head
        return "\n".join([head, *(f"  {d}" for d in self.details)])


@dataclass
class EmptyMatrixError(MalformedSpecError):
    """A matrix axis declares no values."""
    axis: str | None = None


# ----------------------------------------------------------------------
# Execution-level errors (scoped to one job instance)
# ----------------------------------------------------------------------

@dataclass
class ProcessSpawnError(RunmatrixError):
    """The process for a step could not be started at all."""
    step: str
    command: str
    reason: str
    instance: str | None = None

    def __str__(self) -> str:
        prefix = f"[{self.instance}] " if self.instance else ""
        return f"{prefix}step '{self.step}' could not start ({self.reason}): {self.command}"


@dataclass
class UnknownActionError(RunmatrixError):
    uses: str

    def __str__(self) -> str:
        return f"no handler registered for action '{self.uses}'"


@dataclass
class EnvironmentFileError(RunmatrixError):
    """A step wrote an unparseable RUNMATRIX_ENV file."""
    step: str
    line: int
    message: str

    def __str__(self) -> str:
        return f"step '{self.step}' exported invalid environment (line {self.line}): {self.message}"


@dataclass
class StepFailure(RunmatrixError):
    """
    A step exited non-zero or ran past its timeout.

    This is an expected outcome, not an engine fault: it is what drives
    the fail-fast transition of a job instance.
    """
    instance: str
    step: str
    exit_code: int | None
    timed_out: bool = False
    timeout: float | None = None

    def __str__(self) -> str:
        if self.timed_out:
            return f"[{self.instance}] step '{self.step}' timed out after {self.timeout:g}s"
        return f"[{self.instance}] step '{self.step}' failed (exit={self.exit_code})"


@dataclass
class CancelledError(RunmatrixError):
    instance: str
    step: str | None = None

    def __str__(self) -> str:
        if self.step:
            return f"[{self.instance}] cancelled during step '{self.step}'"
        return f"[{self.instance}] cancelled before start"
