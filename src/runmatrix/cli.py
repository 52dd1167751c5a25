# cli.py
from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from runmatrix.config import DEFAULT_ROOT, RunOptions, parse_action_mapping, parse_duration
from runmatrix.errors import MalformedSpecError
from runmatrix.loader import find_workflow_files, load_workflow
from runmatrix.matrix import expand_workflow
from runmatrix.model import Workflow
from runmatrix.scheduler import run as run_workflow
from runmatrix.ui.console import Console, get_console, set_console

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SPEC_ERROR = 2
EXIT_CANCELLED = 130


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Pick the workflow to load: `--workflow` if given, else the single
    workflow file in the current directory.

    Exits with EXIT_SPEC_ERROR when the file is missing or the choice is
    ambiguous.
    """
    console = get_console()

    if workflow_arg:
        path = Path(workflow_arg)
        if path.exists():
            return path
        console.print_error(
            "Workflow file not found",
            f"{workflow_arg} does not exist",
            suggestion="Point --workflow at a .yml, .yaml or .py workflow:\n  runmatrix run --workflow ci_workflow.yml",
        )
        sys.exit(EXIT_SPEC_ERROR)

    candidates = find_workflow_files(".")
    if len(candidates) == 1:
        return candidates[0]

    if not candidates:
        console.print_error(
            "No workflow file found",
            "Nothing to run in the current directory.",
            details=[
                "Looked for:",
                "  runmatrix.yml / runmatrix.yaml",
                "  *_workflow.py / *_workflow.yml / *_workflow.yaml",
            ],
            suggestion="Create runmatrix.yml, or name a file explicitly:\n  runmatrix run --workflow my_workflow.yml",
        )
    else:
        console.print_error(
            "Multiple workflow files found",
            "Choose one with --workflow:",
            details=[str(p) for p in candidates],
        )
    sys.exit(EXIT_SPEC_ERROR)


def _load_or_exit(workflow_arg: str | None) -> tuple[Path, Workflow]:
    console = get_console()
    workflow_path = discover_workflow(workflow_arg)
    try:
        workflow = load_workflow(workflow_path)
        # expansion errors (empty matrix) are spec errors too
        expand_workflow(workflow)
    except MalformedSpecError as e:
        console.print_error("Invalid workflow", f"{workflow_path}", details=str(e).splitlines())
        sys.exit(EXIT_SPEC_ERROR)
    except Exception as e:
        # a .py workflow can fail in arbitrary ways while it is being evaluated
        console.print_error("Failed to load workflow", f"Could not load workflow from {workflow_path}", details=[str(e)])
        if console.debug:
            console.print_exception(e)
        sys.exit(EXIT_SPEC_ERROR)
    return workflow_path, workflow


class _DurationType(click.ParamType):
    name = "duration"

    def convert(self, value, param, ctx):
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


@click.group(context_settings={"auto_envvar_prefix": "RUNMATRIX"})
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """runmatrix: run matrix build-and-test workflows locally."""
    console = Console(debug=debug)
    set_console(console)
    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(threadName)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.py)")
@click.option("-j", "--max-concurrency", default=None, type=click.IntRange(min=1), help="Maximum concurrent runners")
@click.option("--cancel-after", default=None, type=_DurationType(), help="Cancel the whole run after this long (e.g. 90s, 10m)")
@click.option("--root", default=DEFAULT_ROOT, show_default=True, help="Working directory root for workspaces and logs")
@click.option("--source", default=".", show_default=True, help="Source tree that actions/checkout clones")
@click.option("--shell", "default_shell", default=None, help="Default shell for run steps")
@click.option("--action", "actions", multiple=True, metavar="REF=COMMAND", help="Run COMMAND for action REF (repeatable)")
@click.option("--skip-unknown-actions", is_flag=True, default=False, help="Treat unregistered actions as no-ops instead of errors")
@click.option("--kill-grace", default=5.0, show_default=True, type=float, help="Seconds between SIGTERM and SIGKILL")
@click.pass_context
def run(ctx, workflow, max_concurrency, cancel_after, root, source, default_shell, actions, skip_unknown_actions, kill_grace):
    """Run a workflow: every job, every matrix combination."""
    console = get_console()
    _path, spec = _load_or_exit(workflow)

    try:
        options = RunOptions(
            max_concurrency=max_concurrency,
            cancel_after=cancel_after,
            working_directory_root=Path(root),
            source_root=Path(source),
            default_shell=default_shell,
            kill_grace=kill_grace,
            unknown_actions="skip" if skip_unknown_actions else "error",
            action_commands=parse_action_mapping(actions),
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    try:
        result = run_workflow(spec, options)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_CANCELLED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)

    if result.succeeded:
        sys.exit(EXIT_OK)
    if result.cancelled:
        sys.exit(EXIT_CANCELLED)
    sys.exit(EXIT_FAILED)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.py)")
def plan(workflow):
    """Show the job instances a workflow expands to, without running them."""
    console = get_console()
    path, spec = _load_or_exit(workflow)
    instances = expand_workflow(spec)
    console.print_header(f"{spec.name or path.name}: {len(instances)} job instance(s)")
    console.print_plan(instances)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.py)")
def validate(workflow):
    """Check a workflow for errors without running it."""
    path, spec = _load_or_exit(workflow)
    count = len(expand_workflow(spec))
    get_console().print_info(f"{path}: OK ({len(spec.jobs)} job(s), {count} instance(s))")


if __name__ == "__main__":
    cli()
