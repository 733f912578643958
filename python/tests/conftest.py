"""Shared fixtures for kernel tests.

No ZMQ sockets are opened: channels are recording stand-ins that append every
sent message to one ordered log shared by the whole connection.
"""

import pytest

from repl_kernel.connection import ConnectionConfig, JupyterSockets, Socket
from repl_kernel.execution import ExecutionCounter
from repl_kernel.handlers import ShellMessageHandler
from repl_kernel.protocol import Message, make_header
from repl_kernel.sandbox import Sandbox


class RecordingSocket(Socket):
    """Socket that records sent messages instead of transmitting them."""

    def __init__(self, kind, connection):
        super().__init__(kind, connection)
        self.sent = []

    def send(self, msg):
        self.sent.append(msg)
        self.connection.log.append((self.kind, msg))


class FakeConnection:
    def __init__(self):
        self.config = ConnectionConfig(
            shell_port=5001,
            iopub_port=5002,
            stdin_port=5003,
            control_port=5004,
            hb_port=5005,
        )
        self.context_message = None
        self.log = []
        self.shell = RecordingSocket(JupyterSockets.SHELL, self)
        self.control = RecordingSocket(JupyterSockets.CONTROL, self)
        self.iopub = RecordingSocket(JupyterSockets.IOPUB, self)

    def iopub_types(self):
        return [msg.header["msg_type"] for msg in self.iopub.sent]

    def sequence(self):
        """(channel, msg_type) pairs in send order."""
        return [(kind.value, msg.header["msg_type"]) for kind, msg in self.log]


def build_request(msg_type, content=None, session="session-1"):
    header = make_header(msg_type, session_id=session)
    return Message(identities=[b"client-1"], header=header, content=content or {})


@pytest.fixture
def make_request():
    return build_request


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def sandbox():
    return Sandbox()


@pytest.fixture
def counter():
    return ExecutionCounter()


@pytest.fixture
def handler(connection, sandbox, counter):
    return ShellMessageHandler(connection, sandbox, counter)
