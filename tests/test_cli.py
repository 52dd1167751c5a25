from __future__ import annotations

import sys
import textwrap

import pytest
from click.testing import CliRunner

from runmatrix.cli import EXIT_FAILED, EXIT_OK, EXIT_SPEC_ERROR, cli

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="runs POSIX shell steps")

PASSING = textwrap.dedent("""
    name: demo
    on: push
    jobs:
      test:
        strategy:
          matrix:
            flavor: [a, b]
        runs-on: local-${{ matrix.flavor }}
        steps:
          - run: echo "flavor=${{ matrix.flavor }}"
          - name: second
            run: test -n "$RUNMATRIX_WORKSPACE"
""")

FAILING = textwrap.dedent("""
    jobs:
      test:
        steps:
          - name: boom
            run: exit 3
          - name: never
            run: echo unreachable
""")


@pytest.fixture()
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _invoke(*args):
    return CliRunner().invoke(cli, list(args), catch_exceptions=False)


def test_run_success(workdir):
    (workdir / "runmatrix.yml").write_text(PASSING)
    result = _invoke("run", "--root", str(workdir / "out"), "-j", "2")

    assert result.exit_code == EXIT_OK, result.output
    assert "test (a)" in result.output
    assert "test (b)" in result.output
    logs = sorted(p.name for p in (workdir / "out" / "logs").iterdir())
    assert len(logs) == 2
    assert logs[0] == "000-test-a"
    assert "flavor=a" in (workdir / "out" / "logs" / logs[0] / "00.log").read_text()


def test_run_failure(workdir):
    (workdir / "ci_workflow.yml").write_text(FAILING)
    result = _invoke("run", "--workflow", "ci_workflow.yml", "--root", str(workdir / "out"))

    assert result.exit_code == EXIT_FAILED
    assert "boom" in result.output
    assert "[test] ▶ never" not in result.output
    assert "test: FAILED (1/2 steps)" in result.output


def test_run_malformed(workdir):
    (workdir / "runmatrix.yml").write_text("jobs:\n  a:\n    steps: []\n")
    result = _invoke("run")
    assert result.exit_code == EXIT_SPEC_ERROR
    assert "Invalid workflow" in result.output


def test_run_unknown_action_fails_the_instance(workdir):
    (workdir / "runmatrix.yml").write_text("jobs:\n  a:\n    steps:\n      - uses: acme/missing@v1\n")
    assert _invoke("run", "--root", str(workdir / "out")).exit_code == EXIT_FAILED
    assert _invoke("run", "--root", str(workdir / "out"), "--skip-unknown-actions").exit_code == EXIT_OK


def test_action_mapping_option(workdir):
    (workdir / "runmatrix.yml").write_text(
        "jobs:\n  a:\n    steps:\n      - uses: actions/setup-go@v2\n        with: {go-version: '1.18'}\n"
    )
    result = _invoke(
        "run", "--root", str(workdir / "out"),
        "--action", 'actions/setup-go=test "$INPUT_GO_VERSION" = 1.18',
    )
    assert result.exit_code == EXIT_OK, result.output


def test_missing_workflow(workdir):
    assert _invoke("run").exit_code == EXIT_SPEC_ERROR
    assert _invoke("run", "--workflow", "nope.yml").exit_code == EXIT_SPEC_ERROR


def test_multiple_workflows(workdir):
    (workdir / "runmatrix.yml").write_text(PASSING)
    (workdir / "other_workflow.yml").write_text(PASSING)
    result = _invoke("validate")
    assert result.exit_code == EXIT_SPEC_ERROR
    assert "Multiple workflow files found" in result.output


def test_plan(workdir):
    (workdir / "runmatrix.yml").write_text(PASSING)
    result = _invoke("plan")
    assert result.exit_code == 0
    assert "demo: 2 job instance(s)" in result.output
    assert "test (a)  [runs-on: local-a]" in result.output
    assert "1. Run echo \"flavor=${{ matrix.flavor }}\"" in result.output


def test_validate(workdir):
    (workdir / "runmatrix.yml").write_text(PASSING)
    result = _invoke("validate")
    assert result.exit_code == 0
    assert "OK (1 job(s), 2 instance(s))" in result.output


def test_bad_cancel_after(workdir):
    (workdir / "runmatrix.yml").write_text(PASSING)
    result = CliRunner().invoke(cli, ["run", "--cancel-after", "soon"])
    assert result.exit_code == 2
    assert "invalid duration" in result.output
