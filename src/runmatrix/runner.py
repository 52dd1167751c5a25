# runner.py
from __future__ import annotations

import logging
import shutil
import threading
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .config import RunOptions
from .environment import EnvironmentLayer, parse_env_file, parse_path_file, resolve_environment
from .errors import (
    CancelledError,
    EnvironmentFileError,
    ProcessSpawnError,
    StepFailure,
)
from .executor import ProcessOutcome, StepExecutor
from .expressions import substitute
from .matrix import JobInstance
from .model import ActionStep, ShellStep, Step, StepDefaults, Workflow
from .results import ExecutionResult, JobResult, JobState, StepStatus
from .ui.console import Console, get_console

__all__ = ["JobRunner", "JobState"]

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobRunner:
    """
    Drives one job instance through its steps.

    Pending -> Running -> {Succeeded, Failed, Cancelled}. The first step that
    exits non-zero, times out or cannot be spawned ends the instance as
    Failed; later steps never run. Nothing is retried.

    Environment state (exports of earlier steps) lives on this object only,
    so it can never leak into another instance.
    """

    def __init__(
        self,
        workflow: Workflow,
        instance: JobInstance,
        *,
        executor: StepExecutor,
        options: RunOptions,
        base_env: Mapping[str, str],
        cancel: Optional[threading.Event] = None,
        console: Optional[Console] = None,
    ):
        self.workflow = workflow
        self.instance = instance
        self.executor = executor
        self.options = options
        self.base_env = dict(base_env)
        self.cancel = cancel or threading.Event()
        self.console = console or get_console()

        self.state = JobState.PENDING
        self.workspace = options.work_root / instance.slug
        self.log_dir = options.logs_root / instance.slug
        self._exports: List[EnvironmentLayer] = []
        self._results: List[ExecutionResult] = []

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def _runner_layer(self) -> EnvironmentLayer:
        return EnvironmentLayer.of("runner", {
            "CI": "true",
            "RUNMATRIX": "true",
            "RUNMATRIX_JOB": self.instance.job.name,
            "RUNMATRIX_INSTANCE": self.instance.id,
            "RUNMATRIX_WORKSPACE": str(self.workspace),
            "RUNMATRIX_SOURCE": str(self.options.source_root.resolve()),
            "RUNNER_LABEL": self.instance.runs_on,
        })

    def _matrix_layer(self, name: str, values: Mapping[str, object]) -> EnvironmentLayer:
        ctx = {"matrix": self.instance.matrix}
        layer = EnvironmentLayer.of(name, values)
        return replace(layer, values={k: substitute(v, ctx) for k, v in layer.values.items()})

    def layers_for(self, step: Step) -> List[EnvironmentLayer]:
        """Ordered layers for `step`: process, runner, workflow, job, exports..., step."""
        return [
            EnvironmentLayer("process", self.base_env),
            self._runner_layer(),
            self._matrix_layer("workflow", self.workflow.env),
            self._matrix_layer("job", self.instance.job.env),
            *self._exports,
            self._matrix_layer("step", step.env),
        ]

    def resolve_env(self, step: Step) -> Dict[str, str]:
        env = resolve_environment(self.layers_for(step), path_keys=self.options.path_keys)
        # env.* expressions may only see what is already resolved
        ctx = {"env": dict(env)}
        return {k: substitute(v, ctx) for k, v in env.items()}

    # ------------------------------------------------------------------
    # Step preparation
    # ------------------------------------------------------------------

    def _defaults(self) -> StepDefaults:
        job_d, wf_d = self.instance.job.defaults, self.workflow.defaults
        return StepDefaults(
            shell=job_d.shell or wf_d.shell,
            working_directory=job_d.working_directory or wf_d.working_directory,
        )

    def bind_step(self, step: Step, env: Mapping[str, str]) -> Step:
        """Fill `${{ }}` placeholders and `defaults.run` into the step."""
        ctx = {"matrix": self.instance.matrix, "env": env}

        def sub(value):
            return substitute(value, ctx) if isinstance(value, str) else value

        if isinstance(step, ShellStep):
            d = self._defaults()
            return replace(
                step,
                run=sub(step.run),
                name=sub(step.name),
                working_directory=sub(step.working_directory or d.working_directory),
                shell=sub(step.shell or d.shell),
            )
        return replace(
            step,
            name=sub(step.name),
            inputs={k: sub(v) for k, v in step.inputs.items()},
        )

    def working_directory(self, step: Step) -> Path:
        wd = step.working_directory if isinstance(step, ShellStep) else None
        return (self.workspace / wd).resolve() if wd else self.workspace

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _prepare_dirs(self) -> None:
        if self.workspace.exists():
            shutil.rmtree(self.workspace)
        self.workspace.mkdir(parents=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _finish(self, state: JobState, error: Optional[BaseException], started: datetime) -> JobResult:
        self.state = state
        result = JobResult(
            instance_id=self.instance.id,
            name=self.instance.name,
            job=self.instance.job.name,
            matrix=self.instance.matrix,
            runs_on=self.instance.runs_on,
            state=state,
            steps=tuple(self._results),
            total_steps=len(self.instance.job.steps),
            error=error,
            started_at=started,
            finished_at=_now(),
        )
        self.console.print_job_finished(result)
        return result

    def run(self) -> JobResult:
        if self.state.terminal:
            raise RuntimeError(f"job instance {self.instance.id} already finished ({self.state.value})")
        started = _now()
        if self.cancel.is_set():
            return self._finish(JobState.CANCELLED, CancelledError(instance=self.instance.id), started)

        self.state = JobState.RUNNING
        self.console.print_job_start(self.instance.name, self.instance.runs_on)
        self._prepare_dirs()

        for index, raw_step in enumerate(self.instance.job.steps):
            if self.cancel.is_set():
                return self._finish(JobState.CANCELLED, CancelledError(instance=self.instance.id), started)

            env = self.resolve_env(raw_step)
            step = self.bind_step(raw_step, env)
            self.console.print_step(self.instance.name, step.display_name)

            result, error = self._run_step(index, step, env)
            self._results.append(result)

            if result.status is StepStatus.CANCELLED:
                return self._finish(JobState.CANCELLED, error, started)
            if not result.succeeded:
                self.console.print_step_failure(
                    self.instance.name,
                    result,
                    result.output.tail(self.options.output_tail) if result.output else "",
                )
                return self._finish(JobState.FAILED, error, started)

        return self._finish(JobState.SUCCEEDED, None, started)

    def _run_step(
        self,
        index: int,
        step: Step,
        env: Dict[str, str],
    ) -> Tuple[ExecutionResult, Optional[BaseException]]:
        name = step.display_name
        env_file = self.log_dir / f"{index:02d}.env"
        path_file = self.log_dir / f"{index:02d}.path"
        env_file.write_text("", encoding="utf-8")
        path_file.write_text("", encoding="utf-8")
        env = {**env, "RUNMATRIX_ENV": str(env_file), "RUNMATRIX_PATH": str(path_file)}

        started = _now()
        try:
            outcome: ProcessOutcome = self.executor.execute(
                step,
                env,
                self.working_directory(step),
                output_path=self.log_dir / f"{index:02d}.log",
                timeout=step.timeout,
                cancel=self.cancel,
            )
        except ProcessSpawnError as e:
            e.instance = self.instance.id
            log.debug("spawn failed for %s: %s", self.instance.id, e)
            return ExecutionResult(
                index=index,
                name=name,
                status=StepStatus.SPAWN_ERROR,
                exit_code=None,
                output=None,
                started_at=started,
                finished_at=_now(),
                error=str(e),
            ), e

        def result(status: StepStatus, error: Optional[str] = None) -> ExecutionResult:
            return ExecutionResult(
                index=index,
                name=name,
                status=status,
                exit_code=outcome.exit_code,
                output=outcome.output,
                started_at=started,
                finished_at=_now(),
                error=error,
            )

        if outcome.cancelled:
            err = CancelledError(instance=self.instance.id, step=name)
            return result(StepStatus.CANCELLED, str(err)), err
        if outcome.timed_out:
            err = StepFailure(
                instance=self.instance.id, step=name, exit_code=None, timed_out=True, timeout=step.timeout
            )
            return result(StepStatus.TIMED_OUT, str(err)), err
        if outcome.exit_code != 0:
            err = StepFailure(instance=self.instance.id, step=name, exit_code=outcome.exit_code)
            return result(StepStatus.FAILED, str(err)), err

        try:
            self._collect_exports(index, name, env_file, path_file)
        except EnvironmentFileError as e:
            return result(StepStatus.FAILED, str(e)), e
        return result(StepStatus.SUCCEEDED), None

    def _collect_exports(self, index: int, name: str, env_file: Path, path_file: Path) -> None:
        values = parse_env_file(env_file.read_text(encoding="utf-8"), step=name) if env_file.exists() else {}
        paths = parse_path_file(path_file.read_text(encoding="utf-8")) if path_file.exists() else ()
        if values or paths:
            log.debug("%s step %d exported env=%s path=%s", self.instance.id, index, sorted(values), paths)
            self._exports.append(EnvironmentLayer(f"exports[{index}]", values, paths))
