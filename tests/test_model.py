from __future__ import annotations

import pytest

from runmatrix.errors import EmptyMatrixError, MalformedSpecError
from runmatrix.model import ActionStep, Job, MatrixStrategy, ShellStep, Workflow


def test_job_without_steps_is_rejected():
    with pytest.raises(MalformedSpecError) as exc:
        Job(name="build", steps=())
    assert exc.value.location == "jobs.build"
    assert "no steps" in str(exc.value)


def test_empty_matrix_axis_is_rejected():
    with pytest.raises(EmptyMatrixError) as exc:
        MatrixStrategy(axes={"os": ["a"], "py": []})
    assert exc.value.axis == "py"
    # an empty axis is rejected like any other malformed workflow
    assert isinstance(exc.value, MalformedSpecError)


def test_matrix_without_axes_is_rejected():
    with pytest.raises(MalformedSpecError):
        MatrixStrategy(axes={})


def test_duplicate_axis_values_are_rejected():
    with pytest.raises(MalformedSpecError, match="more than once"):
        MatrixStrategy(axes={"os": ["a", "a"]})


def test_values_equal_only_across_types_are_distinct():
    strategy = MatrixStrategy(axes={"flag": [1, True], "n": [0, False, 0.5]})
    assert strategy.axes == {"flag": (1, True), "n": (0, False, 0.5)}
    assert strategy.size == 6
    with pytest.raises(MalformedSpecError):
        MatrixStrategy(axes={"flag": [True, True]})


def test_expression_in_uses_is_rejected():
    with pytest.raises(MalformedSpecError) as exc:
        Job(
            name="build",
            steps=(ActionStep(uses="actions/setup-${{ matrix.tool }}@v1"),),
            matrix=MatrixStrategy(axes={"tool": ["go"]}),
        )
    assert exc.value.location == "jobs.build.steps.0"
    assert "uses" in str(exc.value)


def test_step_of_unknown_shape_is_rejected():
    with pytest.raises(MalformedSpecError) as exc:
        Job(name="build", steps=(ShellStep(run="true"), {"run": "echo"}))
    assert exc.value.location == "jobs.build.steps.1"


def test_blank_command_is_rejected():
    with pytest.raises(MalformedSpecError):
        Job(name="build", steps=(ShellStep(run="   "),))


def test_non_positive_timeout_is_rejected():
    with pytest.raises(MalformedSpecError, match="timeout"):
        Job(name="build", steps=(ShellStep(run="true", timeout=0),))


def test_reference_to_undeclared_axis_is_rejected():
    with pytest.raises(MalformedSpecError, match="matrix.python"):
        Job(
            name="build",
            runs_on="${{ matrix.python }}",
            matrix=MatrixStrategy(axes={"os": ["a"]}),
            steps=(ShellStep(run="true"),),
        )


def test_unknown_expression_context_is_rejected():
    with pytest.raises(MalformedSpecError, match="secrets"):
        Job(name="build", steps=(ShellStep(run="echo ${{ secrets.TOKEN }}"),))


def test_matrix_reference_in_global_env_is_rejected():
    j = Job(name="build", steps=(ShellStep(run="true"),))
    with pytest.raises(MalformedSpecError):
        Workflow(jobs={"build": j}, env={"OS": "${{ matrix.os }}"})


def test_duplicate_job_names_are_rejected():
    a = Job(name="build", steps=(ShellStep(run="true"),))
    b = Job(name="build", steps=(ShellStep(run="false"),))
    with pytest.raises(MalformedSpecError, match="duplicate"):
        Workflow.from_jobs([a, b])


def test_workflow_needs_jobs():
    with pytest.raises(MalformedSpecError):
        Workflow(jobs={})


def test_display_names():
    assert ShellStep(run="cargo fmt --check\nmake").display_name == "Run cargo fmt --check"
    assert ShellStep(run="true", name="Unit test").display_name == "Unit test"
    assert ActionStep(uses="actions/checkout@v2").display_name == "Run actions/checkout@v2"


def test_step_kind_tags():
    assert ShellStep(run="true").kind == "shell"
    assert ActionStep(uses="x/y").kind == "action"


def test_matrix_size():
    m = MatrixStrategy(axes={"os": ["a", "b", "c"], "py": ["3.11", "3.12"]})
    assert m.size == 6
    assert m.axes["os"] == ("a", "b", "c")
