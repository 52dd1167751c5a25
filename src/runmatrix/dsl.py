# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from .errors import MalformedSpecError
from .model import ActionStep, Job, MatrixStrategy, ShellStep, Step, StepDefaults, Workflow


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    shell: str | None = None,
    env: Optional[Dict[str, Any]] = None,
    timeout: float | None = None,
) -> ShellStep:
    """Create a shell step. `timeout` is in seconds."""
    return ShellStep(run=cmd, name=name, working_directory=cwd, shell=shell, env=env or {}, timeout=timeout)


def uses(
    ref: str,
    *,
    name: str | None = None,
    env: Optional[Dict[str, Any]] = None,
    timeout: float | None = None,
    **inputs: Any,
) -> ActionStep:
    """Create an action step: uses("actions/checkout@v2", submodules=True)."""
    return ActionStep(uses=ref, name=name, inputs=dict(inputs), env=env or {}, timeout=timeout)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(**axes: Iterable[Any]) -> MatrixStrategy:
    """
    Declare matrix axes; keyword order is axis order.

    Example:
        job("test", sh("pytest", "pytest -q"),
            matrix=matrix(os=["ubuntu", "macos"], py=["3.11", "3.12"]),
            runs_on="${{ matrix.os }}")
    """
    return MatrixStrategy(axes={k: tuple(v) for k, v in axes.items()})


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    runs_on: str = "local",
    matrix: Optional[MatrixStrategy] = None,
    env: Optional[Dict[str, Any]] = None,
    cwd: str | None = None,  # default cwd applied to shell steps missing cwd
    shell: str | None = None,
    display_name: str | None = None,
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if cwd is not None:
        steps_final = [
            replace(s, working_directory=cwd)
            if isinstance(s, ShellStep) and s.working_directory is None
            else s
            for s in steps_final
        ]

    return Job(
        name=name,
        steps=tuple(steps_final),
        runs_on=runs_on,
        matrix=matrix,
        env=env or {},
        defaults=StepDefaults(shell=shell),
        display_name=display_name,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._runs_on: str = "local"
        self._axes: dict[str, tuple] = {}
        self._defaults = StepDefaults()

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def with_matrix(self, **axes: Iterable[Any]):
        self._axes.update({k: tuple(v) for k, v in axes.items()})
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **kwargs: Any):
        self._steps.append(sh(name, run, cwd=cwd, **kwargs))
        return self

    def use_action(self, ref: str, name: str | None = None, **inputs: Any):
        self._steps.append(uses(ref, name=name, **inputs))
        return self

    def with_env(self, **env):
        # values are rendered as strings at execution time
        self._env.update(env)
        return self

    def with_defaults(self, *, shell: str | None = None, cwd: str | None = None):
        self._defaults = StepDefaults(shell=shell, working_directory=cwd)
        return self

    def build(self) -> Job:
        strategy = None
        if self._axes:
            try:
                strategy = MatrixStrategy(axes=dict(self._axes))
            except MalformedSpecError as e:
                e.location = f"jobs.{self.name}.{e.location}"
                raise
        return Job(
            name=self.name,
            steps=tuple(self._steps),
            runs_on=self._runs_on,
            matrix=strategy,
            env=dict(self._env),
            defaults=self._defaults,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: Job,
    name: str | None = None,
    on: Iterable[str] = ("push",),
    env: Optional[Dict[str, Any]] = None,
) -> Workflow:
    """
    Workflow definition helper.

    Users can write:
        from runmatrix import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )

    Or define WORKFLOW directly:
        WORKFLOW = wf(job(...), job(...))
    """
    return Workflow.from_jobs(list(jobs), name=name, on=tuple(on), env=env or {})
