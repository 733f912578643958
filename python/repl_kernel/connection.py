"""ZMQ transport for the kernel channels.

Framing and signing are delegated to ``jupyter_client.session.Session``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any

import zmq
from jupyter_client.session import Session
from loguru import logger
from pydantic import BaseModel

from repl_kernel.protocol import ExecutionState, Message, make_reply_message


class JupyterSockets(str, Enum):
    HB = "hb"
    SHELL = "shell"
    CONTROL = "control"
    STDIN = "stdin"
    IOPUB = "iopub"


class ConnectionConfig(BaseModel):
    """Contents of a Jupyter connection file."""

    transport: str = "tcp"
    ip: str = "127.0.0.1"
    shell_port: int
    iopub_port: int
    stdin_port: int
    control_port: int
    hb_port: int
    key: str = ""
    signature_scheme: str = "hmac-sha256"

    @classmethod
    def from_file(cls, path: str | Path) -> ConnectionConfig:
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    def port(self, socket: JupyterSockets) -> int:
        return getattr(self, f"{socket.value}_port")

    def ports(self) -> dict[str, int]:
        return {f"{socket.value}_port": self.port(socket) for socket in JupyterSockets}

    def address(self, socket: JupyterSockets) -> str:
        return f"{self.transport}://{self.ip}:{self.port(socket)}"


class Socket(ABC):
    """One kernel channel. Subclasses implement ``send``."""

    def __init__(self, kind: JupyterSockets, connection: Any):
        self.kind = kind
        self.connection = connection

    @abstractmethod
    def send(self, msg: Message) -> None:
        """Transmit one message on this channel."""

    def send_wrapped(self, incoming: Message, msg: Message) -> None:
        """Send ``msg`` bracketed by busy/idle status broadcasts for ``incoming``."""
        iopub = self.connection.iopub
        iopub.send(make_reply_message(incoming, "status", content={"execution_state": ExecutionState.BUSY.value}))
        self.send(msg)
        iopub.send(make_reply_message(incoming, "status", content={"execution_state": ExecutionState.IDLE.value}))


class ZmqSocket(Socket):
    """Channel backed by a bound ZMQ socket."""

    def __init__(self, kind: JupyterSockets, connection: JupyterConnection, zmq_socket: zmq.Socket):
        super().__init__(kind, connection)
        self.zmq_socket = zmq_socket

    def send(self, msg: Message) -> None:
        # PUB subscribers do not route on client identities
        ident = None if self.kind is JupyterSockets.IOPUB else (msg.identities or None)
        self.connection.session.send(self.zmq_socket, msg.to_wire(), ident=ident)

    def receive(self) -> Message | None:
        """Read one message; None if nothing was ready or it failed to decode."""
        try:
            idents, msg = self.connection.session.recv(self.zmq_socket, mode=zmq.NOBLOCK)
        except ValueError as e:
            logger.warning("Error decoding message on {}: {}", self.kind.value, e)
            return None
        if msg is None:
            return None
        return Message.from_wire(list(idents or []), msg)

    def close(self) -> None:
        self.zmq_socket.close(0)


class HeartbeatThread(threading.Thread):
    """Echoes heartbeat pings on a REP socket until stopped."""

    def __init__(self, context: zmq.Context, addr: str):
        super().__init__(daemon=True, name="heartbeat-thread")
        self.context = context
        self.addr = addr
        self.stop_event = threading.Event()

    def run(self) -> None:
        sock = self.context.socket(zmq.REP)
        sock.linger = 0
        try:
            sock.bind(self.addr)
            poller = zmq.Poller()
            poller.register(sock, zmq.POLLIN)
            while not self.stop_event.is_set():
                events = dict(poller.poll(100))
                if events.get(sock, 0) & zmq.POLLIN:
                    sock.send(sock.recv())
        finally:
            sock.close(0)

    def stop(self) -> None:
        self.stop_event.set()


class JupyterConnection:
    """Binds all kernel channels described by a connection file."""

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self.context = zmq.Context.instance()
        self.session = Session(key=config.key.encode("utf-8"), signature_scheme=config.signature_scheme)
        self.context_message: Message | None = None

        self.shell = self._bind(JupyterSockets.SHELL, zmq.ROUTER)
        self.control = self._bind(JupyterSockets.CONTROL, zmq.ROUTER)
        self.stdin = self._bind(JupyterSockets.STDIN, zmq.ROUTER)
        self.iopub = self._bind(JupyterSockets.IOPUB, zmq.PUB)
        self.heartbeat = HeartbeatThread(self.context, config.address(JupyterSockets.HB))

    def _bind(self, kind: JupyterSockets, socket_type: int) -> ZmqSocket:
        sock = self.context.socket(socket_type)
        sock.linger = 0
        sock.bind(self.config.address(kind))
        logger.info("Bound {} socket to {}", kind.value, self.config.address(kind))
        return ZmqSocket(kind, self, sock)

    def start(self) -> None:
        self.heartbeat.start()

    def close(self) -> None:
        self.heartbeat.stop()
        if self.heartbeat.is_alive():
            self.heartbeat.join(timeout=1.0)
        for socket in (self.shell, self.control, self.stdin, self.iopub):
            socket.close()

    def __enter__(self) -> JupyterConnection:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
