# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, List

import yaml
from pydantic import ValidationError

from .errors import MalformedSpecError
from .model import Job, Workflow
from .schema import WorkflowDocument

YAML_SUFFIXES = (".yml", ".yaml")


def _location(loc: tuple) -> str:
    return ".".join(str(part) for part in loc)


def _from_validation_error(e: ValidationError) -> MalformedSpecError:
    errors = e.errors()
    first = errors[0]
    details = [f"{_location(err['loc'])}: {err['msg']}" for err in errors[1:]]
    return MalformedSpecError(first["msg"], location=_location(first["loc"]) or None, details=details)


def workflow_from_dict(data: Any) -> Workflow:
    """Validate a parsed document and build the Workflow model."""
    if not isinstance(data, dict):
        raise MalformedSpecError(f"workflow document must be a mapping, got {type(data).__name__}")
    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in data and "on" not in data:
        data = dict(data)
        data["on"] = data.pop(True)
    try:
        doc = WorkflowDocument.model_validate(data)
    except ValidationError as e:
        raise _from_validation_error(e) from e
    return doc.to_model()


def _check_duplicate_keys(node: yaml.Node, path: tuple = ()) -> None:
    if isinstance(node, yaml.MappingNode):
        seen = set()
        for key_node, value_node in node.value:
            key = key_node.value if isinstance(key_node, yaml.ScalarNode) else None
            if key is None or key == "<<":
                continue
            where = ".".join((*path, key))
            if key in seen:
                line = key_node.start_mark.line + 1
                raise MalformedSpecError(f"duplicate key '{key}' (line {line})", location=where)
            seen.add(key)
            _check_duplicate_keys(value_node, (*path, key))
    elif isinstance(node, yaml.SequenceNode):
        for i, item in enumerate(node.value):
            _check_duplicate_keys(item, (*path, str(i)))


class WorkflowLoader(yaml.SafeLoader):
    """SafeLoader that rejects repeated mapping keys instead of keeping the last one."""

    def construct_document(self, node):
        _check_duplicate_keys(node)
        return super().construct_document(node)


def workflow_from_yaml(text: str) -> Workflow:
    try:
        data = yaml.load(text, Loader=WorkflowLoader)
    except yaml.YAMLError as e:
        raise MalformedSpecError(f"invalid YAML: {e}") from e
    return workflow_from_dict(data)


def _from_python(wf_path: Path) -> Workflow:
    """
    Load a workflow from a python file.

    The file must define either:
      - workflow() -> Workflow | List[Job]
      - WORKFLOW = Workflow(...)
      - JOBS = [Job, ...]
    """
    module_name = f"runmatrix_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    found: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            found = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from runmatrix import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "WORKFLOW" in globals_dict:
        found = globals_dict["WORKFLOW"]
    elif "JOBS" in globals_dict:
        found = globals_dict["JOBS"]

    if isinstance(found, Workflow):
        return found
    if isinstance(found, list) and found and all(isinstance(j, Job) for j in found):
        return Workflow.from_jobs(found)
    raise MalformedSpecError(
        "Workflow file must return/define a Workflow or a List[Job]. "
        "Define workflow() -> Workflow, WORKFLOW = wf(...) or JOBS = [Job, ...].",
        location=str(wf_path),
    )


def load_workflow(path: str | Path) -> Workflow:
    """Load a workflow from a .yml/.yaml document or a .py file."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in YAML_SUFFIXES:
        return workflow_from_yaml(wf_path.read_text(encoding="utf-8"))
    if wf_path.suffix == ".py":
        return _from_python(wf_path)
    raise MalformedSpecError(
        f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}", location=str(wf_path)
    )


def find_workflow_files(directory: str | Path = ".") -> List[Path]:
    """
    Workflow files in `directory`: runmatrix.yml/.yaml, runmatrix_workflow.py
    and any *_workflow.py / *_workflow.yml / *_workflow.yaml.
    """
    root = Path(directory)
    found = set()
    for pattern in ("runmatrix.yml", "runmatrix.yaml", "*_workflow.py", "*_workflow.yml", "*_workflow.yaml"):
        found.update(p for p in root.glob(pattern) if p.is_file())
    return sorted(found)
