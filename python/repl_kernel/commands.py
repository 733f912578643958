"""Kernel commands: cell text starting with ':' is a directive, not code."""

from __future__ import annotations

from typing import Callable

from repl_kernel.display import text_result
from repl_kernel.execution import ExecutionResponse, ResponseState
from repl_kernel.sandbox import Sandbox

COMMAND_PREFIX = ":"

HELP_TEXT = {
    "help": "display help",
    "vars": "list user variables and their types",
    "reset": "clear all user variables",
}


def is_command(code: str) -> bool:
    return code.strip().startswith(COMMAND_PREFIX)


def _help(repl: Sandbox | None) -> ExecutionResponse:
    lines = ["Available commands:"]
    lines.extend(f"    {COMMAND_PREFIX}{name:<8}- {text}" for name, text in HELP_TEXT.items())
    return ExecutionResponse(state=ResponseState.OK, result=text_result("\n".join(lines)))


def _vars(repl: Sandbox | None) -> ExecutionResponse:
    if repl is None:
        return ExecutionResponse.error(stderr="NO REPL!")
    variables = repl.list_variables()
    text = "\n".join(f"{name}: {type_name}" for name, type_name in sorted(variables.items()))
    return ExecutionResponse(state=ResponseState.OK, result=text_result(text or "No variables defined"))


def _reset(repl: Sandbox | None) -> ExecutionResponse:
    if repl is None:
        return ExecutionResponse.error(stderr="NO REPL!")
    repl.clear()
    return ExecutionResponse(state=ResponseState.OK, stdout="Namespace cleared\n")


COMMANDS: dict[str, Callable[[Sandbox | None], ExecutionResponse]] = {
    "help": _help,
    "vars": _vars,
    "reset": _reset,
}


def run_command(code: str, repl: Sandbox | None) -> ExecutionResponse:
    """Run a kernel command and report it like an execution."""
    name = code.strip()[len(COMMAND_PREFIX):].split(maxsplit=1)
    command = COMMANDS.get(name[0] if name else "")
    if command is None:
        return ExecutionResponse.error(stderr=f"Unknown command: {code.strip()}")
    return command(repl)
