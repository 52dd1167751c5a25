# scheduler.py
from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .config import RunOptions
from .executor import StepExecutor, default_executor
from .matrix import JobInstance, expand_workflow
from .model import Workflow
from .results import AggregateResult, JobResult, JobState
from .runner import JobRunner
from .ui.console import Console, get_console

log = logging.getLogger(__name__)


class CancelToken(threading.Event):
    """Run-wide cancellation signal shared by every job runner."""

    def cancel(self) -> None:
        self.set()

    @property
    def cancelled(self) -> bool:
        return self.is_set()


class Scheduler:
    """
    Fans job instances out over a bounded pool of runners.

    Each instance gets its own JobRunner on its own worker thread; the pool
    size is the number of runners available at once. Instances are
    independent: one failing never stops or changes another.
    """

    def __init__(
        self,
        workflow: Workflow,
        options: RunOptions | None = None,
        *,
        executor: StepExecutor | None = None,
        cancel: CancelToken | None = None,
        console: Console | None = None,
    ):
        self.workflow = workflow
        self.options = options or RunOptions()
        self.executor = executor or default_executor(
            commands=self.options.action_commands,
            skip_unknown=self.options.unknown_actions == "skip",
            default_shell=self.options.default_shell,
            kill_grace=self.options.kill_grace,
        )
        self.cancel = cancel or CancelToken()
        self.console = console or get_console()
        base = self.options.base_env
        # snapshot once so every instance starts from the same defaults
        self.base_env: Dict[str, str] = dict(os.environ if base is None else base)

    def _runner_for(self, instance: JobInstance) -> JobRunner:
        return JobRunner(
            self.workflow,
            instance,
            executor=self.executor,
            options=self.options,
            base_env=self.base_env,
            cancel=self.cancel,
            console=self.console,
        )

    def _crashed(self, instance: JobInstance, exc: BaseException) -> JobResult:
        now = datetime.now(timezone.utc)
        return JobResult(
            instance_id=instance.id,
            name=instance.name,
            job=instance.job.name,
            matrix=instance.matrix,
            runs_on=instance.runs_on,
            state=JobState.FAILED,
            total_steps=len(instance.job.steps),
            error=exc,
            started_at=now,
            finished_at=now,
        )

    def run(self, instances: Sequence[JobInstance]) -> AggregateResult:
        timer: Optional[threading.Timer] = None
        if self.options.cancel_after is not None:
            timer = threading.Timer(self.options.cancel_after, self.cancel.cancel)
            timer.daemon = True
            timer.start()

        results: Dict[int, JobResult] = {}
        try:
            with ThreadPoolExecutor(max_workers=self.options.workers, thread_name_prefix="runner") as pool:
                futures: Dict[Future, Tuple[int, JobInstance]] = {
                    pool.submit(self._runner_for(inst).run): (pos, inst) for pos, inst in enumerate(instances)
                }
                try:
                    self._collect(futures, results)
                except KeyboardInterrupt:
                    log.debug("interrupted, cancelling %d instance(s)", len(futures) - len(results))
                    self.cancel.cancel()
                    self._collect(futures, results)
        finally:
            if timer is not None:
                timer.cancel()

        ordered: List[JobResult] = [results[pos] for pos in range(len(instances))]
        return AggregateResult(jobs=tuple(ordered))

    def _collect(self, futures: Dict[Future, Tuple[int, JobInstance]], results: Dict[int, JobResult]) -> None:
        pending = [f for f, (pos, _) in futures.items() if pos not in results]
        for fut in as_completed(pending):
            pos, inst = futures[fut]
            try:
                results[pos] = fut.result()
            except Exception as e:
                log.debug("runner for %s crashed", inst.id, exc_info=True)
                self.console.print_exception(e)
                results[pos] = self._crashed(inst, e)


def run(
    spec: Union[Workflow, str, Path],
    options: RunOptions | None = None,
    *,
    executor: StepExecutor | None = None,
    cancel: CancelToken | None = None,
    console: Console | None = None,
) -> AggregateResult:
    """
    Expand `spec` and run every job instance.

    Spec errors (MalformedSpecError, EmptyMatrixError) are raised here,
    before anything is scheduled.
    """
    if not isinstance(spec, Workflow):
        from .loader import load_workflow
        spec = load_workflow(spec)

    options = options or RunOptions()
    instances = expand_workflow(spec)
    scheduler = Scheduler(spec, options, executor=executor, cancel=cancel, console=console)
    scheduler.console.print_run_started(
        workflow=spec.name or "workflow",
        instance_count=len(instances),
        workers=options.workers,
    )
    result = scheduler.run(instances)
    scheduler.console.print_results(result)
    return result
