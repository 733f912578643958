"""Main entry point for the kernel process.

This module binds the channels from a Jupyter connection file and serves
shell and control requests until a shutdown request arrives.
"""

from __future__ import annotations

import argparse
import signal

import zmq
from loguru import logger

from repl_kernel.config import KernelSettings, get_settings
from repl_kernel.connection import ConnectionConfig, JupyterConnection
from repl_kernel.execution import ExecutionCounter
from repl_kernel.handlers import ShellMessageHandler
from repl_kernel.logging_utils import configure_logging
from repl_kernel.sandbox import Sandbox


class KernelServer:
    """Receive loop over the shell and control channels."""

    def __init__(self, connection: JupyterConnection, handler: ShellMessageHandler, poll_interval_ms: int = 100):
        self.connection = connection
        self.handler = handler
        self.poll_interval_ms = poll_interval_ms

    def run(self) -> None:
        """Serve requests one at a time until the handler stops running."""
        signal.signal(signal.SIGTERM, lambda *_: setattr(self.handler, "running", False))

        poller = zmq.Poller()
        # Control first so shutdown is not starved by a busy shell
        sockets = (self.connection.control, self.connection.shell)
        for socket in sockets:
            poller.register(socket.zmq_socket, zmq.POLLIN)

        logger.info("Kernel ready")
        while self.handler.running:
            try:
                events = dict(poller.poll(self.poll_interval_ms))
                for socket in sockets:
                    if not self.handler.running or socket.zmq_socket not in events:
                        continue
                    msg = socket.receive()
                    if msg is not None:
                        self.handler.handle(socket, msg)

            except KeyboardInterrupt:
                break
            except Exception:
                logger.exception("Unexpected error while handling a request")

        logger.info("Kernel shutting down")


def build_server(connection: JupyterConnection, settings: KernelSettings) -> KernelServer:
    handler = ShellMessageHandler(connection, Sandbox(), ExecutionCounter(), settings)
    return KernelServer(connection, handler, settings.poll_interval_ms)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Jupyter kernel running restricted Python.")
    parser.add_argument("connection_file", help="Path to the Jupyter connection file")
    parser.add_argument("--log-level", default=None, help="Override REPL_KERNEL_LOG_LEVEL")
    parser.add_argument(
        "--no-mirror-stdout",
        action="store_true",
        help="Do not echo cell stdout to the kernel's own stdout",
    )
    args = parser.parse_args(argv)

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.no_mirror_stdout:
        overrides["mirror_stdout"] = False
    settings = get_settings(**overrides)
    configure_logging(settings.log_level)

    config = ConnectionConfig.from_file(args.connection_file)
    with JupyterConnection(config) as connection:
        build_server(connection, settings).run()


if __name__ == "__main__":
    main()
