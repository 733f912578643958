"""Shell and control message dispatch.

One message is handled at a time. Each request kind has its own handler;
execute requests emit, in order: busy, execute_input, streams, the result or
an abort reply, and idle.
"""

from __future__ import annotations

import platform
from typing import Any, Callable

from loguru import logger

from repl_kernel import __version__
from repl_kernel.commands import is_command, run_command
from repl_kernel.completion import Completer
from repl_kernel.config import KernelSettings
from repl_kernel.connection import Socket
from repl_kernel.execution import ExecutionCounter, ResponseState, eval_with_io
from repl_kernel.protocol import (
    PROTOCOL_VERSION,
    CompleteRequest,
    ExecuteRequest,
    ExecutionState,
    IsCompleteRequest,
    IsCompleteStatus,
    ListErrorsRequest,
    Message,
    MessageType,
    StreamName,
    iso8601_now,
    make_header,
    make_reply_message,
)
from repl_kernel.sandbox import ReplCompilerError, Sandbox

Handler = Callable[[Socket, Message], None]


class ShellMessageHandler:
    """Dispatches request messages and emits their replies and broadcasts."""

    def __init__(
        self,
        connection: Any,
        repl: Sandbox | None,
        execution_count: ExecutionCounter,
        settings: KernelSettings | None = None,
        completer: Completer | None = None,
    ):
        self.connection = connection
        self.repl = repl
        self.execution_count = execution_count
        self.settings = settings or KernelSettings()
        self.completer = completer or Completer()
        self.running = True

        self._handlers: dict[MessageType, Handler] = {
            MessageType.KERNEL_INFO_REQUEST: self._kernel_info,
            MessageType.HISTORY_REQUEST: self._history,
            MessageType.SHUTDOWN_REQUEST: self._shutdown,
            MessageType.CONNECT_REQUEST: self._connect,
            MessageType.EXECUTE_REQUEST: self._execute,
            MessageType.COMM_INFO_REQUEST: self._comm_info,
            MessageType.COMPLETE_REQUEST: self._complete,
            MessageType.IS_COMPLETE_REQUEST: self._is_complete,
            MessageType.LIST_ERRORS_REQUEST: self._list_errors,
        }
        missing = set(MessageType) - set(self._handlers)
        if missing:
            raise NotImplementedError(f"No handler for {sorted(kind.value for kind in missing)}")

    def handle(self, socket: Socket, msg: Message) -> None:
        """Handle one request that arrived on ``socket``."""
        logger.debug("Received {} on {}", msg.msg_type, socket.kind.value)
        kind = MessageType.lookup(msg.msg_type)
        if kind is None:
            socket.send(make_reply_message(msg, "unsupported_message_reply"))
            return
        self._handlers[kind](socket, msg)

    def _kernel_info(self, socket: Socket, msg: Message) -> None:
        version = platform.python_version()
        socket.send_wrapped(
            msg,
            make_reply_message(
                msg,
                "kernel_info_reply",
                content={
                    "protocol_version": PROTOCOL_VERSION,
                    "language": "python",
                    "language_version": version,
                    "language_info": {
                        "name": "python",
                        "codemirror_mode": "python",
                        "file_extension": ".py",
                        "mimetype": "text/x-python",
                        "pygments_lexer": "python3",
                        "version": version,
                    },
                    # Jupyter lab Console support
                    "banner": self.settings.banner or f"Restricted Python {version}",
                    "implementation": "repl-kernel",
                    "implementation_version": __version__,
                    "status": "ok",
                },
            ),
        )

    def _history(self, socket: Socket, msg: Message) -> None:
        socket.send_wrapped(msg, make_reply_message(msg, "history_reply", content={"history": []}))

    def _shutdown(self, socket: Socket, msg: Message) -> None:
        socket.send_wrapped(msg, make_reply_message(msg, "shutdown_reply", content=dict(msg.content)))
        logger.info("Shutdown requested")
        self.running = False

    def _connect(self, socket: Socket, msg: Message) -> None:
        socket.send_wrapped(
            msg,
            make_reply_message(msg, "connect_reply", content=self.connection.config.ports()),
        )

    def _comm_info(self, socket: Socket, msg: Message) -> None:
        socket.send_wrapped(msg, make_reply_message(msg, "comm_info_reply", content={"comms": {}}))

    def _send_stream(self, msg: Message, name: StreamName, text: str) -> None:
        self.connection.iopub.send(
            make_reply_message(
                msg,
                header=make_header("stream", msg),
                content={"name": name.value, "text": text},
            )
        )

    def _send_status(self, msg: Message, state: ExecutionState) -> None:
        self.connection.iopub.send(
            make_reply_message(msg, "status", content={"execution_state": state.value})
        )

    def _execute(self, socket: Socket, msg: Message) -> None:
        self.connection.context_message = msg
        try:
            count = self.execution_count.get_and_increment()
            started = iso8601_now()
            code = ExecuteRequest.model_validate(msg.content).code
            iopub = self.connection.iopub

            self._send_status(msg, ExecutionState.BUSY)
            iopub.send(
                make_reply_message(
                    msg,
                    "execute_input",
                    content={"execution_count": count, "code": code},
                )
            )

            if is_command(code):
                res = run_command(code, self.repl)
            else:
                repl = self.repl
                res = eval_with_io(
                    lambda: repl.eval(code, count) if repl is not None else None,
                    mirror_stdout=self.settings.mirror_stdout,
                    mirror_stderr=self.settings.mirror_stderr,
                )

            if res.has_stdout:
                self._send_stream(msg, StreamName.STDOUT, res.stdout)
            if res.has_stderr:
                self._send_stream(msg, StreamName.STDERR, res.stderr)

            if res.state is ResponseState.OK:
                if res.result is not None:
                    iopub.send(
                        make_reply_message(
                            msg,
                            "execute_result",
                            content={
                                "execution_count": count,
                                "data": res.result,
                                "metadata": {},
                            },
                        )
                    )
                for display in res.displays:
                    iopub.send(
                        make_reply_message(
                            msg,
                            "display_data",
                            content={"data": display, "metadata": {}},
                        )
                    )

                socket.send(
                    make_reply_message(
                        msg,
                        "execute_reply",
                        metadata={
                            "dependencies_met": True,
                            "engine": msg.session,
                            "status": "ok",
                            "started": started,
                        },
                        content={
                            "status": "ok",
                            "execution_count": count,
                            "user_variables": {},
                            "payload": [],
                            "user_expressions": {},
                        },
                    )
                )
            else:
                error_reply = make_reply_message(
                    msg,
                    "execute_reply",
                    content={"status": "abort", "execution_count": count},
                )
                logger.debug("Sending abort: {}", error_reply.content)
                socket.send(error_reply)

            self._send_status(msg, ExecutionState.IDLE)
        finally:
            self.connection.context_message = None

    def _complete(self, socket: Socket, msg: Message) -> None:
        request = CompleteRequest.model_validate(msg.content)
        if self.repl is None:
            # TODO: reply with an error status instead of leaving the client waiting
            logger.warning("Repl is not yet initialized on complete request")
            return

        result = self.completer.complete(
            self.repl.complete,
            {"include_builtins": self.settings.completion_include_builtins},
            request.code,
            self.execution_count.get(),
            request.cursor_pos,
        )
        socket.send_wrapped(msg, make_reply_message(msg, "complete_reply", content=result.to_json()))

    def _is_complete(self, socket: Socket, msg: Message) -> None:
        code = IsCompleteRequest.model_validate(msg.content).code
        if is_command(code):
            status = IsCompleteStatus.COMPLETE
        elif self.repl is None:
            status = IsCompleteStatus.ERROR
        else:
            try:
                check = self.repl.check_complete(self.execution_count.get(), code)
                status = IsCompleteStatus.COMPLETE if check.is_complete else IsCompleteStatus.INCOMPLETE
            except ReplCompilerError:
                status = IsCompleteStatus.INVALID

        content: dict[str, Any] = {"status": status.value}
        if status is IsCompleteStatus.INCOMPLETE:
            content["indent"] = ""
        socket.send_wrapped(msg, make_reply_message(msg, "is_complete_reply", content=content))

    def _list_errors(self, socket: Socket, msg: Message) -> None:
        code = ListErrorsRequest.model_validate(msg.content).code
        if self.repl is None:
            content: dict[str, Any] = {"status": "error", "code": code, "errors": []}
        else:
            content = self.repl.list_errors(code).to_json()
        socket.send_wrapped(msg, make_reply_message(msg, "list_errors_reply", content=content))
