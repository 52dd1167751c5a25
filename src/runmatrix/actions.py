# actions.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional

from .errors import UnknownActionError
from .expressions import render_scalar


@dataclass(frozen=True)
class ActionCommand:
    """What an action step actually runs: a script plus its shell."""
    run: str
    shell: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)


ActionHandler = Callable[[Mapping[str, str]], ActionCommand]


def input_env(inputs: Mapping[str, object]) -> Dict[str, str]:
    """`with:` inputs as INPUT_<NAME> variables (go-version -> INPUT_GO_VERSION)."""
    return {
        "INPUT_" + re.sub(r"[\s-]+", "_", name.strip()).upper(): render_scalar(value)
        for name, value in inputs.items()
    }


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on", "recursive")


# ---------------------------------------------------------------------
# Built-in actions
# ---------------------------------------------------------------------

def checkout(inputs: Mapping[str, str]) -> ActionCommand:
    """Clone RUNMATRIX_SOURCE into the instance workspace."""
    lines = ['git clone --quiet "$RUNMATRIX_SOURCE" .']
    if inputs.get("ref"):
        lines.append('git checkout --quiet "$INPUT_REF"')
    if _truthy(inputs.get("submodules")):
        lines.append("git submodule update --init --recursive")
    return ActionCommand(run="\n".join(lines), shell="sh")


def skipped(uses: str) -> ActionCommand:
    return ActionCommand(run=f"echo 'runmatrix: no handler for {uses}, skipping'", shell="sh")


class ActionRegistry:
    """
    Maps action references (`owner/name@ref`) to handlers.

    Lookup tries the full reference first, then the reference without
    its `@ref` suffix, so `actions/checkout` serves every version.
    """

    def __init__(self, *, skip_unknown: bool = False):
        self._handlers: Dict[str, ActionHandler] = {}
        self.skip_unknown = skip_unknown

    def register(self, ref: str, handler: ActionHandler) -> None:
        self._handlers[ref] = handler

    def action(self, ref: str) -> Callable[[ActionHandler], ActionHandler]:
        """Decorator form of register()."""
        def deco(fn: ActionHandler) -> ActionHandler:
            self.register(ref, fn)
            return fn
        return deco

    def register_command(self, ref: str, command: str, *, shell: str | None = None) -> None:
        """Bind an action to a fixed shell command; inputs arrive as INPUT_* vars."""
        self.register(ref, lambda _inputs: ActionCommand(run=command, shell=shell))

    def lookup(self, uses: str) -> Optional[ActionHandler]:
        handler = self._handlers.get(uses)
        if handler is None and "@" in uses:
            handler = self._handlers.get(uses.split("@", 1)[0])
        return handler

    def resolve(self, uses: str, inputs: Mapping[str, object]) -> ActionCommand:
        rendered = {k: render_scalar(v) for k, v in inputs.items()}
        handler = self.lookup(uses)
        if handler is None:
            if self.skip_unknown:
                cmd = skipped(uses)
            else:
                raise UnknownActionError(uses=uses)
        else:
            cmd = handler(rendered)
        return ActionCommand(run=cmd.run, shell=cmd.shell, env={**input_env(rendered), **cmd.env})

    def __contains__(self, uses: str) -> bool:
        return self.lookup(uses) is not None


def default_registry(
    commands: Mapping[str, str] | None = None,
    *,
    skip_unknown: bool = False,
) -> ActionRegistry:
    reg = ActionRegistry(skip_unknown=skip_unknown)
    reg.register("actions/checkout", checkout)
    for ref, command in (commands or {}).items():
        reg.register_command(ref, command)
    return reg
