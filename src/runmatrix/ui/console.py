"""Console output formatting utilities for runmatrix."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from ..matrix import JobInstance
    from ..results import AggregateResult, ExecutionResult, JobResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, stream=None, err_stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where normal output goes (defaults to sys.stdout at write time)
            err_stream: Where errors go (defaults to sys.stderr at write time)
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        # job instances report from worker threads
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        target = (self._err_stream or sys.stderr) if err else (self._stream or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=target)
            target.flush()

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        instance_count: int,
        workers: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Job instances: {instance_count}",
            f"Runners: {workers}",
            "",
        )

    def print_plan(self, instances: Iterable["JobInstance"]) -> None:
        """Print the expanded job instances without running them."""
        for inst in instances:
            lines = [f"{inst.name}  [runs-on: {inst.runs_on}]"]
            for i, step in enumerate(inst.job.steps, start=1):
                lines.append(f"  {i}. {step.display_name}")
            self._out(*lines)

    def print_job_start(self, name: str, runs_on: str) -> None:
        """Print job instance start message."""
        self._out(f"[{name}] started on {runs_on}")

    def print_step(self, name: str, step: str) -> None:
        """Print step start message."""
        self._out(f"[{name}] ▶ {step}")

    def print_step_failure(
        self,
        name: str,
        result: "ExecutionResult",
        output_tail: str = "",
    ) -> None:
        """
        Print a failed step with its exit code and the end of its output.

        Args:
            name: Job instance name
            result: The failed step's result
            output_tail: Last part of the captured output
        """
        lines = [f"[{name}] STEP FAILED: {result.name} after {result.duration:.1f}s"]
        if result.exit_code is not None:
            lines.append(f"Exit code: {result.exit_code}")
        if result.error:
            if self.debug:
                lines.append(f"Error details: {result.error}")
            else:
                lines.append(f"Error: {result.error.splitlines()[0]}")
        if output_tail.strip():
            lines.append("Output (tail):")
            lines.extend(f"  {line}" for line in output_tail.rstrip().splitlines())
        self._out(*lines)

    def print_job_finished(self, result: "JobResult") -> None:
        """Print job instance completion message."""
        duration = ""
        if result.started_at and result.finished_at:
            duration = f" in {(result.finished_at - result.started_at).total_seconds():.1f}s"
        self._out(f"[{result.name}] {result.state.value.upper()}{duration}")

    def print_results(self, results: "AggregateResult") -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for job in results:
            lines.append(f"  {job.name}: {job.state.value.upper()} ({len(job.steps)}/{job.total_steps} steps)")
        lines.append(f"\nRUN {results.state.value.upper()}" + (" (cancelled)" if results.cancelled else ""))
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._out("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
