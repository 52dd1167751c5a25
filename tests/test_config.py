from __future__ import annotations

from pathlib import Path

import pytest

from runmatrix.config import RunOptions, parse_action_mapping, parse_duration


@pytest.mark.parametrize(
    "text,seconds",
    [("90", 90.0), ("90s", 90.0), ("5m", 300.0), ("1h30m", 5400.0), ("2.5m", 150.0), (12, 12.0)],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text) == seconds


@pytest.mark.parametrize("text", ["", "soon", "m", "-5", "5x"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_parse_action_mapping():
    assert parse_action_mapping(["actions/setup-go=echo go=1.18"]) == {"actions/setup-go": "echo go=1.18"}
    with pytest.raises(ValueError):
        parse_action_mapping(["no-command"])


def test_run_options_validation():
    with pytest.raises(ValueError):
        RunOptions(max_concurrency=0)
    with pytest.raises(ValueError):
        RunOptions(unknown_actions="ignore")
    with pytest.raises(ValueError):
        RunOptions(cancel_after=-1)


def test_run_options_paths(tmp_path):
    opts = RunOptions(working_directory_root=str(tmp_path), max_concurrency=3)
    assert opts.workers == 3
    assert opts.work_root == tmp_path.resolve() / "work"
    assert opts.logs_root == tmp_path.resolve() / "logs"
    assert isinstance(opts.source_root, Path)
    assert RunOptions().workers >= 1
