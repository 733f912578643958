"""Running a cell under output capture and classifying the outcome."""

from __future__ import annotations

import threading
import traceback
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from repl_kernel.capture import capture_output
from repl_kernel.display import DisplayResult, MimeTypedResult, text_result, to_mime_typed_result
from repl_kernel.sandbox import (
    EvalResult,
    InvocationTargetError,
    ReplCompilerError,
    ReplEvalRuntimeError,
)

ERROR_PLACEHOLDER = "Error!"


class ResponseState(str, Enum):
    OK = "ok"
    ERROR = "error"


class ExecutionResponse(BaseModel):
    """Everything the dispatcher needs to report one execution."""

    state: ResponseState
    result: dict[str, Any] | None = Field(default=None, description="Display payload of the cell value")
    displays: list[dict[str, Any]] = Field(default_factory=list, description="Display payloads in produced order")
    stdout: str = Field(default="", description="Captured stdout")
    stderr: str = Field(default="", description="Captured stderr")

    @property
    def has_stdout(self) -> bool:
        return bool(self.stdout)

    @property
    def has_stderr(self) -> bool:
        return bool(self.stderr)

    @classmethod
    def error(cls, stdout: str = "", stderr: str = "") -> ExecutionResponse:
        return cls(
            state=ResponseState.ERROR,
            result=text_result(ERROR_PLACEHOLDER),
            stdout=stdout,
            stderr=stderr,
        )


class ExecutionCounter:
    """Thread-safe execution counter."""

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = threading.Lock()

    def get(self) -> int:
        with self._lock:
            return self._value

    def get_and_increment(self) -> int:
        with self._lock:
            value = self._value
            self._value += 1
            return value


def join_lines(*parts: str) -> str:
    return "\n".join(part for part in parts if part and part.strip())


def _blank_to_empty(text: str) -> str:
    return text if text.strip() else ""


def _render_runtime_error(captured_stderr: str, error: ReplEvalRuntimeError) -> str:
    lines = []
    if captured_stderr.strip():
        lines.append(captured_stderr)

    cause = error.cause
    if cause is None:
        lines.append(error.message)
    else:
        if isinstance(cause, InvocationTargetError):
            cause = cause.target
        lines.append(f"{type(cause).__name__}: {cause}")
        for frame in traceback.format_tb(cause.__traceback__):
            lines.append(frame.rstrip("\n"))

    return "".join(line + "\n" for line in lines)


def _build_response(
    exec_result: EvalResult,
    to_display: Callable[[Any], MimeTypedResult | None],
    stdout: str,
    stderr: str,
) -> ExecutionResponse:
    try:
        displays = [
            payload
            for payload in (to_display(value) for value in exec_result.display_values)
            if payload is not None
        ]
        result = None
        if isinstance(exec_result.result_value, DisplayResult):
            result_display = to_display(exec_result.result_value.value)
            if result_display is not None:
                displays.append(result_display)
        else:
            result = to_display(exec_result.result_value)
        return ExecutionResponse(
            state=ResponseState.OK,
            result=result,
            displays=displays,
            stdout=stdout,
            stderr=stderr,
        )
    except Exception as e:
        return ExecutionResponse.error(
            stdout,
            join_lines(stderr, f"error:  Unable to convert result to a string: {e}"),
        )


def eval_with_io(
    body: Callable[[], EvalResult | None],
    to_display: Callable[[Any], MimeTypedResult | None] = to_mime_typed_result,
    mirror_stdout: bool = True,
    mirror_stderr: bool = False,
) -> ExecutionResponse:
    """Run ``body`` with stdout/stderr captured and classify what happened.

    Compile and runtime faults from the evaluator become error responses;
    anything else propagates.

    Args:
        body: Evaluates the cell; returns None when no evaluator is available
        to_display: Converts values to display payloads
        mirror_stdout: Echo captured stdout to the real stdout
        mirror_stderr: Echo captured stderr to the real stderr
    """
    with capture_output(mirror_stdout, mirror_stderr) as captured:
        try:
            exec_result = body()
        except ReplCompilerError as e:
            return ExecutionResponse.error(
                _blank_to_empty(captured.stdout),
                join_lines(captured.stderr, e.message),
            )
        except ReplEvalRuntimeError as e:
            return ExecutionResponse.error(
                _blank_to_empty(captured.stdout),
                _render_runtime_error(captured.stderr, e),
            )

        if exec_result is None:
            return ExecutionResponse.error(stderr="NO REPL!")

        return _build_response(
            exec_result,
            to_display,
            _blank_to_empty(captured.stdout),
            _blank_to_empty(captured.stderr),
        )
