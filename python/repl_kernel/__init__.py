"""repl-kernel - Jupyter kernel for sandboxed Python.

This package implements the Jupyter messaging protocol over ZMQ and evaluates
cells with RestrictedPython, capturing their output and display data.
"""

__version__ = "0.1.0"

from repl_kernel.completion import CompletionResult, Completer, get_token_bounds
from repl_kernel.execution import ExecutionCounter, ExecutionResponse, ResponseState, eval_with_io
from repl_kernel.protocol import Message, MessageType, make_reply_message
from repl_kernel.sandbox import ReplCompilerError, ReplEvalRuntimeError, Sandbox

__all__ = [
    "CompletionResult",
    "Completer",
    "ExecutionCounter",
    "ExecutionResponse",
    "Message",
    "MessageType",
    "ReplCompilerError",
    "ReplEvalRuntimeError",
    "ResponseState",
    "Sandbox",
    "eval_with_io",
    "get_token_bounds",
    "make_reply_message",
]
