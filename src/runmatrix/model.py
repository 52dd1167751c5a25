# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Mapping, Optional, Tuple, Union

from .errors import EmptyMatrixError, MalformedSpecError
from .expressions import validate_references


@dataclass(frozen=True)
class StepDefaults:
    """`defaults.run` block: applied to shell steps that don't set their own."""
    shell: str | None = None
    working_directory: str | None = None


@dataclass(frozen=True)
class ShellStep:
    """A literal command run through a shell."""
    run: str
    name: str | None = None
    working_directory: str | None = None
    shell: str | None = None
    env: Dict[str, Any] = field(default_factory=dict)
    timeout: float | None = None  # seconds
    id: str | None = None
    kind: Literal["shell"] = field(default="shell", init=False)

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        first = self.run.strip().splitlines()[0] if self.run.strip() else ""
        return f"Run {first}"


@dataclass(frozen=True)
class ActionStep:
    """A named reusable unit (`uses:`) with input parameters (`with:`)."""
    uses: str
    name: str | None = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, Any] = field(default_factory=dict)
    timeout: float | None = None
    id: str | None = None
    kind: Literal["action"] = field(default="action", init=False)

    @property
    def display_name(self) -> str:
        return self.name or f"Run {self.uses}"


Step = Union[ShellStep, ActionStep]


@dataclass(frozen=True)
class MatrixStrategy:
    """axis name -> ordered values. Axis order is declaration order."""
    axes: Dict[str, Tuple[Any, ...]]

    def __post_init__(self) -> None:
        if not self.axes:
            raise MalformedSpecError("matrix declares no axes", location="strategy.matrix")
        normalized: Dict[str, Tuple[Any, ...]] = {}
        for axis, values in self.axes.items():
            values = tuple(values)
            if not values:
                raise EmptyMatrixError(
                    f"matrix axis '{axis}' has no values",
                    location=f"strategy.matrix.{axis}",
                    axis=axis,
                )
            seen = []
            for v in values:
                # True == 1 in Python, but `1` and `true` are different values here
                if (type(v), v) in seen:
                    raise MalformedSpecError(
                        f"matrix axis '{axis}' lists {v!r} more than once",
                        location=f"strategy.matrix.{axis}",
                    )
                seen.append((type(v), v))
            normalized[axis] = values
        # frozen: replace the (possibly list-valued) mapping with tuples
        object.__setattr__(self, "axes", normalized)

    @property
    def size(self) -> int:
        n = 1
        for values in self.axes.values():
            n *= len(values)
        return n


@dataclass(frozen=True)
class Job:
    """
    A job definition: runner selector, optional matrix, ordered steps.

    Steps run in declared order; nothing reorders them.
    """
    name: str
    steps: Tuple[Step, ...]
    runs_on: str = "local"
    matrix: Optional[MatrixStrategy] = None
    env: Dict[str, Any] = field(default_factory=dict)
    defaults: StepDefaults = field(default_factory=StepDefaults)
    display_name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        where = f"jobs.{self.name}"
        if not self.name:
            raise MalformedSpecError("job has an empty name", location="jobs")
        if not self.steps:
            raise MalformedSpecError("job has no steps", location=where)
        if not self.runs_on:
            raise MalformedSpecError("job has no runner selector (runs-on)", location=where)

        axes = list(self.matrix.axes) if self.matrix else []
        self._check_refs(self.runs_on, axes, f"{where}.runs-on")
        for key, value in self.env.items():
            self._check_refs(value, axes, f"{where}.env.{key}")

        for i, step in enumerate(self.steps):
            loc = f"{where}.steps.{i}"
            if isinstance(step, ShellStep):
                if not step.run or not step.run.strip():
                    raise MalformedSpecError("shell step has an empty command", location=loc)
                texts = [step.run, step.name, step.working_directory, step.shell]
            elif isinstance(step, ActionStep):
                if not step.uses or not step.uses.strip():
                    raise MalformedSpecError("action step has an empty 'uses'", location=loc)
                if "${{" in step.uses:
                    raise MalformedSpecError("expressions are not allowed in 'uses'", location=loc)
                texts = [step.name, *step.inputs.values()]
            else:
                raise MalformedSpecError(
                    f"step is neither a shell step nor an action step (got {type(step).__name__})",
                    location=loc,
                )
            if step.timeout is not None and step.timeout <= 0:
                raise MalformedSpecError("timeout must be positive", location=loc)
            for text in [*texts, *step.env.values()]:
                self._check_refs(text, axes, loc)

    @staticmethod
    def _check_refs(value: Any, axes: list[str], location: str) -> None:
        if not isinstance(value, str):
            return
        try:
            validate_references(value, axes)
        except ValueError as e:
            raise MalformedSpecError(str(e), location=location) from e


@dataclass(frozen=True)
class Workflow:
    """
    A whole pipeline: trigger events, global env/defaults, jobs by name.

    `jobs` keeps declaration order; that order is the expansion order.
    """
    jobs: Dict[str, Job]
    on: Tuple[str, ...] = ()
    name: str | None = None
    env: Dict[str, Any] = field(default_factory=dict)
    defaults: StepDefaults = field(default_factory=StepDefaults)

    def __post_init__(self) -> None:
        object.__setattr__(self, "on", tuple(self.on))
        if not self.jobs:
            raise MalformedSpecError("workflow defines no jobs", location="jobs")
        for key, j in self.jobs.items():
            if key != j.name:
                raise MalformedSpecError(
                    f"job registered as '{key}' is named '{j.name}'", location=f"jobs.{key}"
                )
        for key, value in self.env.items():
            # matrix is per job, so the global layer can only use env.*
            Job._check_refs(value, [], f"env.{key}")

    @classmethod
    def from_jobs(cls, jobs: list[Job], **kwargs: Any) -> "Workflow":
        by_name: Dict[str, Job] = {}
        for j in jobs:
            if j.name in by_name:
                raise MalformedSpecError(f"duplicate job name: {j.name}", location="jobs")
            by_name[j.name] = j
        return cls(jobs=by_name, **kwargs)

    def get(self, name: str) -> Job:
        return self.jobs[name]
