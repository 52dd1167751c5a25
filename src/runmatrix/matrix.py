# matrix.py
from __future__ import annotations

import itertools
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .errors import EmptyMatrixError
from .expressions import render_scalar, substitute
from .model import Job, Workflow

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class JobInstance:
    """
    One job bound to one point of its matrix.

    `binding` keeps axis declaration order. `ordinal` is the position of
    this instance in the whole expanded workflow, `index` its position
    within its own job.
    """
    job: Job
    binding: Tuple[Tuple[str, Any], ...]
    runs_on: str
    index: int = 0
    ordinal: int = 0

    @property
    def matrix(self) -> Dict[str, Any]:
        return dict(self.binding)

    @property
    def name(self) -> str:
        """Display name, e.g. `build (macos-11, 3.10)`."""
        base = self.job.display_name or self.job.name
        if not self.binding:
            return base
        values = ", ".join(render_scalar(v) for _, v in self.binding)
        return f"{base} ({values})"

    @property
    def id(self) -> str:
        if not self.binding:
            return self.job.name
        values = ", ".join(render_scalar(v) for _, v in self.binding)
        return f"{self.job.name} ({values})"

    @property
    def slug(self) -> str:
        """Filesystem-safe, unique within one run."""
        parts = [self.job.name, *(render_scalar(v) for _, v in self.binding)]
        text = _UNSAFE.sub("_", "-".join(parts)).strip("_") or "job"
        return f"{self.ordinal:03d}-{text}"


def expand_job(job: Job, *, start: int = 0) -> List[JobInstance]:
    """
    Cartesian product of the job's matrix axes.

    Order is lexicographic over axis declaration order, then value order:
    the last axis varies fastest. A job without a matrix gives exactly one
    instance.
    """
    if job.matrix is None:
        return [JobInstance(job=job, binding=(), runs_on=job.runs_on, index=0, ordinal=start)]

    axes = list(job.matrix.axes.items())
    for axis, values in axes:
        if not values:
            raise EmptyMatrixError(
                f"matrix axis '{axis}' has no values",
                location=f"jobs.{job.name}.strategy.matrix.{axis}",
                axis=axis,
            )

    names = [axis for axis, _ in axes]
    instances: List[JobInstance] = []
    for i, combo in enumerate(itertools.product(*(values for _, values in axes))):
        binding = tuple(zip(names, combo))
        runs_on = substitute(job.runs_on, {"matrix": dict(binding)})
        instances.append(
            JobInstance(job=job, binding=binding, runs_on=runs_on, index=i, ordinal=start + i)
        )
    return instances


def expand_workflow(workflow: Workflow) -> List[JobInstance]:
    """Expand every job, in job declaration order."""
    out: List[JobInstance] = []
    for job in workflow.jobs.values():
        out.extend(expand_job(job, start=len(out)))
    return out
