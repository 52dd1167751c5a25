from __future__ import annotations

import os

import pytest

from runmatrix.errors import CancelledError, ProcessSpawnError, StepFailure
from runmatrix.executor import StepExecutor
from runmatrix.matrix import expand_workflow
from runmatrix.model import ActionStep, Job, MatrixStrategy, ShellStep, StepDefaults, Workflow
from runmatrix.results import JobState, StepStatus
from runmatrix.runner import JobRunner
from runmatrix.scheduler import CancelToken


def _workflow(*steps, env=None, job_env=None, axes=None, defaults=None) -> Workflow:
    job = Job(
        name="build",
        steps=tuple(steps),
        env=job_env or {},
        matrix=MatrixStrategy(axes=axes) if axes else None,
        defaults=defaults or StepDefaults(),
    )
    return Workflow(jobs={"build": job}, env=env or {})


def _runner(workflow, executor, options, console, *, index=0, cancel=None) -> JobRunner:
    instance = expand_workflow(workflow)[index]
    return JobRunner(
        workflow,
        instance,
        executor=executor,
        options=options,
        base_env=options.base_env,
        cancel=cancel,
        console=console,
    )


def test_all_steps_succeed(recorder, options, console):
    executor = recorder()
    wf = _workflow(ShellStep(run="a", name="S1"), ShellStep(run="b", name="S2"), ShellStep(run="c", name="S3"))
    result = _runner(wf, executor, options, console).run()

    assert result.state is JobState.SUCCEEDED
    assert [s.name for s in result.steps] == ["S1", "S2", "S3"]
    assert result.exit_codes == (0, 0, 0)
    assert result.error is None


def test_first_failure_stops_the_instance(recorder, options, console):
    executor = recorder({"S2": 7})
    wf = _workflow(*(ShellStep(run="x", name=f"S{i}") for i in range(1, 5)))
    runner = _runner(wf, executor, options, console)
    result = runner.run()

    assert result.state is JobState.FAILED
    assert runner.state is JobState.FAILED
    assert [c["step"].display_name for c in executor.calls] == ["S1", "S2"]
    assert result.steps[-1].status is StepStatus.FAILED
    assert isinstance(result.error, StepFailure)
    assert result.error.exit_code == 7
    assert result.failed_step.name == "S2"
    assert result.total_steps == 4


def test_environment_layers_reach_the_executor(recorder, options, console):
    executor = recorder()
    wf = _workflow(
        ShellStep(run="x", name="plain"),
        ShellStep(run="x", name="override", env={"X": "3"}),
        env={"X": "1", "G": "g"},
        job_env={"X": "2"},
    )
    _runner(wf, executor, options, console).run()

    first, second = executor.calls
    assert first["env"]["X"] == "2"
    assert first["env"]["G"] == "g"
    assert second["env"]["X"] == "3"
    assert first["env"]["CI"] == "true"
    assert first["env"]["RUNMATRIX_JOB"] == "build"


def test_matrix_values_are_substituted(recorder, options, console):
    executor = recorder()
    wf = _workflow(
        ShellStep(run="build --os ${{ matrix.os }}", name="Build ${{ matrix.os }}", env={"TARGET": "${{ matrix.os }}"}),
        axes={"os": ["A", "B"]},
    )
    _runner(wf, executor, options, console, index=1).run()

    call = executor.calls[0]
    assert call["step"].run == "build --os B"
    assert call["step"].display_name == "Build B"
    assert call["env"]["TARGET"] == "B"


def test_default_working_directory_and_defaults(recorder, options, console):
    executor = recorder()
    wf = _workflow(
        ShellStep(run="x", name="a"),
        ShellStep(run="x", name="b", working_directory="sub"),
        defaults=StepDefaults(shell="bash", working_directory="kclvm"),
    )
    runner = _runner(wf, executor, options, console)
    runner.run()

    a, b = executor.calls
    assert a["cwd"] == (runner.workspace / "kclvm").resolve()
    assert b["cwd"] == (runner.workspace / "sub").resolve()
    assert a["step"].shell == "bash"


def test_cancelled_before_start_runs_nothing(recorder, options, console):
    executor = recorder()
    cancel = CancelToken()
    cancel.cancel()
    result = _runner(_workflow(ShellStep(run="x")), executor, options, console, cancel=cancel).run()

    assert result.state is JobState.CANCELLED
    assert result.steps == ()
    assert isinstance(result.error, CancelledError)
    assert executor.calls == []


def test_spawn_error_fails_the_instance(options, console):
    wf = _workflow(
        ShellStep(run="true", name="ok"),
        ShellStep(run="true", name="bad cwd", working_directory="missing"),
        ShellStep(run="true", name="never"),
    )
    result = _runner(wf, StepExecutor(poll_interval=0.01), options, console).run()

    assert result.state is JobState.FAILED
    assert [s.status for s in result.steps] == [StepStatus.SUCCEEDED, StepStatus.SPAWN_ERROR]
    assert isinstance(result.error, ProcessSpawnError)
    assert result.error.instance == "build"


@pytest.mark.skipif(os.name != "posix", reason="spawns POSIX shells")
def test_exports_are_visible_to_later_steps_only(options, console, tmp_path):
    tool = tmp_path / "toolchain" / "bin"
    wf = _workflow(
        ShellStep(run='echo "before=${TOOL_HOME:-unset}"', name="before", shell="sh"),
        ShellStep(
            run=f'echo "TOOL_HOME=/opt/tool" >> "$RUNMATRIX_ENV"\necho "{tool}" >> "$RUNMATRIX_PATH"',
            name="install",
            shell="sh",
        ),
        ShellStep(run='echo "after=$TOOL_HOME"\necho "path=$PATH"', name="after", shell="sh"),
    )
    result = _runner(wf, StepExecutor(poll_interval=0.01), options, console).run()

    assert result.state is JobState.SUCCEEDED
    assert "before=unset" in result.steps[0].output.read()
    after = result.steps[2].output.read()
    assert "after=/opt/tool" in after
    assert f"{os.pathsep}{tool}" in after


@pytest.mark.skipif(os.name != "posix", reason="spawns POSIX shells")
def test_timeout_fails_fast(options, console):
    wf = _workflow(
        ShellStep(run="sleep 30", name="slow", shell="sh", timeout=0.3),
        ShellStep(run="true", name="never", shell="sh"),
    )
    result = _runner(wf, StepExecutor(poll_interval=0.01, kill_grace=1.0), options, console).run()

    assert result.state is JobState.FAILED
    assert [s.status for s in result.steps] == [StepStatus.TIMED_OUT]
    assert result.error.timed_out


def test_unknown_action_fails_the_instance(options, console):
    wf = _workflow(ActionStep(uses="actions-rs/toolchain@v1", inputs={"toolchain": "1.67"}))
    result = _runner(wf, StepExecutor(poll_interval=0.01), options, console).run()

    assert result.state is JobState.FAILED
    assert result.steps[0].status is StepStatus.SPAWN_ERROR


def test_finished_runner_cannot_run_again(recorder, options, console):
    executor = recorder()
    runner = _runner(_workflow(ShellStep(run="a", name="S1")), executor, options, console)
    assert runner.run().state is JobState.SUCCEEDED
    assert runner.state.terminal

    with pytest.raises(RuntimeError, match="already finished"):
        runner.run()
    assert len(executor.calls) == 1


def test_failure_block_reports_step_duration(recorder, options, console):
    executor = recorder({"S1": 2})
    result = _runner(_workflow(ShellStep(run="a", name="S1")), executor, options, console).run()

    step = result.steps[0]
    assert step.duration >= 0
    out = console._stream.getvalue()
    assert f"STEP FAILED: S1 after {step.duration:.1f}s" in out
    assert "Exit code: 2" in out
