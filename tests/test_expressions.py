from __future__ import annotations

import pytest

from runmatrix.expressions import references, render_scalar, substitute, validate_references


def test_references():
    assert references("make ${{ matrix.os }} ${{env.HOME}}") == [("matrix", "os"), ("env", "HOME")]


def test_bad_syntax():
    with pytest.raises(ValueError):
        references("${{ matrix.os || 'x' }}")


def test_validate_references():
    validate_references("${{ matrix.os }}", ["os"])
    with pytest.raises(ValueError, match="not a declared matrix axis"):
        validate_references("${{ matrix.py }}", ["os"])
    with pytest.raises(ValueError, match="unknown expression context"):
        validate_references("${{ github.sha }}", ["os"])


def test_substitute():
    ctx = {"matrix": {"os": "macos-11", "py": 3.1}, "env": {"HOME": "/h"}}
    assert substitute("${{ matrix.os }}-${{ matrix.py }} ${{ env.HOME }}", ctx) == "macos-11-3.1 /h"


def test_missing_key_is_empty_and_missing_context_is_kept():
    assert substitute("[${{ env.NOPE }}]", {"env": {}}) == "[]"
    assert substitute("${{ env.HOME }}", {"matrix": {}}) == "${{ env.HOME }}"


def test_render_scalar():
    assert render_scalar(True) == "true"
    assert render_scalar(False) == "false"
    assert render_scalar(None) == ""
    assert render_scalar(12) == "12"
