# schema.py
"""
Pydantic models for the declarative workflow document.

These only check the *shape* of the YAML; `to_model()` hands the data to
the dataclasses in model.py, which enforce the structural invariants.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import MalformedSpecError
from .model import ActionStep, Job, MatrixStrategy, ShellStep, Step, StepDefaults, Workflow

Scalar = Union[bool, int, float, str]


class _Document(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


def _minutes(value: Optional[float]) -> Optional[float]:
    return None if value is None else value * 60.0


class RunDefaultsDocument(_Document):
    shell: Optional[str] = None
    working_directory: Optional[str] = Field(default=None, alias="working-directory")


class DefaultsDocument(_Document):
    run: RunDefaultsDocument = Field(default_factory=RunDefaultsDocument)

    def to_model(self) -> StepDefaults:
        return StepDefaults(shell=self.run.shell, working_directory=self.run.working_directory)


class StepDocument(_Document):
    id: Optional[str] = None
    name: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Optional[Scalar]] = Field(default_factory=dict, alias="with")
    run: Optional[str] = None
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    shell: Optional[str] = None
    env: Dict[str, Optional[Scalar]] = Field(default_factory=dict)
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)

    @model_validator(mode="after")
    def _one_shape(self) -> "StepDocument":
        if (self.uses is None) == (self.run is None):
            raise ValueError("a step needs exactly one of 'uses' or 'run'")
        if self.uses is not None and (self.working_directory or self.shell):
            raise ValueError("'working-directory' and 'shell' only apply to 'run' steps")
        if self.run is not None and self.with_:
            raise ValueError("'with' only applies to 'uses' steps")
        return self

    def to_model(self) -> Step:
        if self.uses is not None:
            return ActionStep(
                uses=self.uses,
                name=self.name,
                inputs=dict(self.with_),
                env=dict(self.env),
                timeout=_minutes(self.timeout_minutes),
                id=self.id,
            )
        return ShellStep(
            run=self.run,
            name=self.name,
            working_directory=self.working_directory,
            shell=self.shell,
            env=dict(self.env),
            timeout=_minutes(self.timeout_minutes),
            id=self.id,
        )


class StrategyDocument(_Document):
    matrix: Dict[str, List[Scalar]]


class JobDocument(_Document):
    name: Optional[str] = None
    runs_on: Union[str, List[str]] = Field(default="local", alias="runs-on")
    strategy: Optional[StrategyDocument] = None
    env: Dict[str, Optional[Scalar]] = Field(default_factory=dict)
    defaults: DefaultsDocument = Field(default_factory=DefaultsDocument)
    steps: List[StepDocument]

    @field_validator("runs_on")
    @classmethod
    def _labels(cls, value: Union[str, List[str]]) -> str:
        if isinstance(value, list):
            return ",".join(value)
        return value

    def _strategy(self, job_id: str) -> Optional[MatrixStrategy]:
        if self.strategy is None:
            return None
        try:
            return MatrixStrategy(axes=dict(self.strategy.matrix))
        except MalformedSpecError as e:
            e.location = f"jobs.{job_id}.{e.location}"
            raise

    def to_model(self, job_id: str) -> Job:
        return Job(
            name=job_id,
            display_name=self.name,
            runs_on=self.runs_on,
            matrix=self._strategy(job_id),
            env=dict(self.env),
            defaults=self.defaults.to_model(),
            steps=tuple(s.to_model() for s in self.steps),
        )


class WorkflowDocument(_Document):
    name: Optional[str] = None
    on: Union[str, List[str], Dict[str, Any]] = Field(default_factory=list)
    env: Dict[str, Optional[Scalar]] = Field(default_factory=dict)
    defaults: DefaultsDocument = Field(default_factory=DefaultsDocument)
    jobs: Dict[str, JobDocument]

    @field_validator("on")
    @classmethod
    def _events(cls, value: Union[str, List[str], Dict[str, Any]]) -> List[str]:
        if isinstance(value, str):
            return [value]
        return list(value)

    def to_model(self) -> Workflow:
        return Workflow(
            name=self.name,
            on=tuple(self.on),
            env=dict(self.env),
            defaults=self.defaults.to_model(),
            jobs={job_id: doc.to_model(job_id) for job_id, doc in self.jobs.items()},
        )
