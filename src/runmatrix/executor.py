# executor.py
from __future__ import annotations

import logging
import os
import shlex
import shutil
import signal
import subprocess
import threading
import time
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .actions import ActionRegistry, default_registry
from .errors import ProcessSpawnError, UnknownActionError
from .model import ActionStep, ShellStep, Step

log = logging.getLogger(__name__)

# {0} is replaced by the path of the script file holding the command text.
SHELL_TEMPLATES = {
    "bash": "bash --noprofile --norc -eo pipefail {0}",
    "sh": "sh -e {0}",
    "python": "python {0}",
    "pwsh": "pwsh -command \". '{0}'\"",
}

SCRIPT_SUFFIX = {
    "python": ".py",
    "pwsh": ".ps1",
}


def shell_argv(shell: str | None, script: Path, env: Mapping[str, str]) -> Tuple[str, ...]:
    """
    Build the argv that runs `script` under `shell`.

    `shell` is a known dialect name, a custom template containing `{0}`,
    or None for the default (bash if it is on PATH, else sh).
    """
    if shell is None:
        template = "bash -e {0}" if shutil.which("bash", path=env.get("PATH")) else "sh -e {0}"
    elif shell in SHELL_TEMPLATES:
        template = SHELL_TEMPLATES[shell]
    elif "{0}" in shell:
        template = shell
    else:
        raise ValueError(f"unknown shell {shell!r} (use one of {', '.join(SHELL_TEMPLATES)} or a template with {{0}})")
    return tuple(part.replace("{0}", str(script)) for part in shlex.split(template))


def _script_suffix(shell: str | None) -> str:
    if shell and shell in SCRIPT_SUFFIX:
        return SCRIPT_SUFFIX[shell]
    return ".sh"


@dataclass(frozen=True)
class CapturedOutput:
    """Handle on a step's captured stdout+stderr (kept on disk)."""
    path: Path

    def read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8", errors="replace")

    def tail(self, limit: int = 4000) -> str:
        text = self.read()
        return text[-limit:] if limit and len(text) > limit else text


@dataclass(frozen=True)
class ProcessOutcome:
    """
    What happened to one spawned process.

    exit_code is None when the process was killed for a timeout or
    cancellation before it could report a status of its own.
    """
    exit_code: Optional[int]
    output: CapturedOutput
    timed_out: bool = False
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


class StepExecutor:
    """
    Runs one step as exactly one external process.

    Never retries. A non-zero exit is reported in the outcome, not raised;
    only a failure to start the process raises (ProcessSpawnError).
    """

    def __init__(
        self,
        *,
        actions: ActionRegistry | None = None,
        default_shell: str | None = None,
        kill_grace: float = 5.0,
        poll_interval: float = 0.05,
    ):
        self.actions = actions or default_registry()
        self.default_shell = default_shell
        self.kill_grace = kill_grace
        self.poll_interval = poll_interval

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

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
        if isinstance(step, ShellStep):
            script, shell, extra_env = step.run, step.shell or self.default_shell, {}
        elif isinstance(step, ActionStep):
            try:
                cmd = self.actions.resolve(step.uses, step.inputs)
            except UnknownActionError as e:
                raise ProcessSpawnError(step=step.display_name, command=step.uses, reason=str(e)) from e
            script, shell, extra_env = cmd.run, cmd.shell or self.default_shell, dict(cmd.env)
        else:
            raise TypeError(f"not a step: {step!r}")

        full_env = {**env, **extra_env}
        return self._spawn(
            step.display_name,
            script,
            shell,
            full_env,
            Path(cwd),
            output_path=Path(output_path),
            timeout=timeout,
            cancel=cancel,
        )

    # ------------------------------------------------------------------
    # Process handling
    # ------------------------------------------------------------------

    def _spawn(
        self,
        label: str,
        script: str,
        shell: str | None,
        env: Mapping[str, str],
        cwd: Path,
        *,
        output_path: Path,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> ProcessOutcome:
        if not cwd.is_dir():
            raise ProcessSpawnError(step=label, command=script, reason=f"working directory not found: {cwd}")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        script_path = output_path.with_suffix(_script_suffix(shell))
        script_path.write_text(script if script.endswith("\n") else script + "\n", encoding="utf-8")

        try:
            argv = shell_argv(shell, script_path, env)
        except ValueError as e:
            raise ProcessSpawnError(step=label, command=script, reason=str(e)) from e

        exe = shutil.which(argv[0], path=env.get("PATH"))
        if exe is None:
            raise ProcessSpawnError(step=label, command=script, reason=f"shell not found on PATH: {argv[0]}")
        argv = (exe, *argv[1:])

        log.debug("spawn %s in %s: %s", label, cwd, argv)
        output = CapturedOutput(output_path)
        with output_path.open("wb") as sink:
            try:
                proc = subprocess.Popen(
                    argv,
                    cwd=str(cwd),
                    env=dict(env),
                    stdin=subprocess.DEVNULL,
                    stdout=sink,
                    stderr=subprocess.STDOUT,
                    start_new_session=(os.name == "posix"),
                )
            except OSError as e:
                raise ProcessSpawnError(step=label, command=script, reason=str(e)) from e

            code, timed_out, cancelled = self._wait(proc, timeout=timeout, cancel=cancel)

        log.debug("%s finished: exit=%s timed_out=%s cancelled=%s", label, code, timed_out, cancelled)
        return ProcessOutcome(
            exit_code=None if (timed_out or cancelled) else code,
            output=output,
            timed_out=timed_out,
            cancelled=cancelled,
        )

    def _wait(
        self,
        proc: subprocess.Popen,
        *,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> Tuple[int, bool, bool]:
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            try:
                return proc.wait(timeout=self.poll_interval), False, False
            except subprocess.TimeoutExpired:
                pass
            if cancel is not None and cancel.is_set():
                return self._terminate(proc), False, True
            if deadline is not None and time.monotonic() >= deadline:
                return self._terminate(proc), True, False

    def _terminate(self, proc: subprocess.Popen) -> int:
        """SIGTERM the process group, then SIGKILL after the grace period."""
        self._signal(proc, signal.SIGTERM)
        try:
            return proc.wait(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            log.debug("pid %s ignored SIGTERM, killing", proc.pid)
            self._signal(proc, signal.SIGKILL if os.name == "posix" else signal.SIGTERM)
            return proc.wait()

    @staticmethod
    def _signal(proc: subprocess.Popen, sig: int) -> None:
        # the process may already be gone
        with suppress(ProcessLookupError):
            if os.name == "posix":
                os.killpg(proc.pid, sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()


def default_executor(
    *,
    commands: Mapping[str, str] | None = None,
    skip_unknown: bool = False,
    default_shell: str | None = None,
    kill_grace: float = 5.0,
) -> StepExecutor:
    return StepExecutor(
        actions=default_registry(commands, skip_unknown=skip_unknown),
        default_shell=default_shell,
        kill_grace=kill_grace,
    )
