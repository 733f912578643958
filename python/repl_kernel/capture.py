"""Capture of the process-wide standard streams around one evaluation.

``sys.stdout``, ``sys.stderr`` and ``sys.stdin`` are process globals, so only
one capture scope may be open at a time. The scope holds a process-wide lock
for its whole duration and refuses to nest.
"""

from __future__ import annotations

import io
import sys
import threading
from contextlib import contextmanager
from typing import Iterator, TextIO

_capture_lock = threading.Lock()


class CaptureActiveError(RuntimeError):
    """Raised when a capture scope is opened while another one is active."""

    pass


class CapturingStream(io.TextIOBase):
    """Text stream that records every write and optionally forwards it."""

    def __init__(self, original: TextIO, mirror: bool):
        super().__init__()
        self.original = original
        self.mirror = mirror
        self._buffer = io.StringIO()

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return getattr(self.original, "encoding", None) or "utf-8"

    def writable(self) -> bool:
        return True

    def write(self, s: str) -> int:
        if self.mirror:
            self.original.write(s)
        return self._buffer.write(s)

    def flush(self) -> None:
        if self.mirror:
            self.original.flush()

    def getvalue(self) -> str:
        return self._buffer.getvalue()


class CapturedOutput:
    """Text recorded by an active or finished capture scope."""

    def __init__(self, stdout: CapturingStream, stderr: CapturingStream):
        self._stdout = stdout
        self._stderr = stderr

    @property
    def stdout(self) -> str:
        return self._stdout.getvalue()

    @property
    def stderr(self) -> str:
        return self._stderr.getvalue()


@contextmanager
def capture_output(mirror_stdout: bool = True, mirror_stderr: bool = False) -> Iterator[CapturedOutput]:
    """Redirect stdout/stderr into buffers and stdin to an empty placeholder.

    Args:
        mirror_stdout: Also write captured stdout to the original stream
        mirror_stderr: Also write captured stderr to the original stream

    Raises:
        CaptureActiveError: If another capture scope is already open
    """
    if not _capture_lock.acquire(blocking=False):
        raise CaptureActiveError("Another output capture scope is already active")

    old_stdin = sys.stdin
    old_stdout = sys.stdout
    old_stderr = sys.stderr

    forked_out = CapturingStream(old_stdout, mirror_stdout)
    forked_err = CapturingStream(old_stderr, mirror_stderr)

    try:
        sys.stdin = io.StringIO("")
        sys.stdout = forked_out  # type: ignore
        sys.stderr = forked_err  # type: ignore
        yield CapturedOutput(forked_out, forked_err)
    finally:
        try:
            forked_out.flush()
            forked_err.flush()
        finally:
            sys.stdin = old_stdin
            sys.stdout = old_stdout
            sys.stderr = old_stderr
            _capture_lock.release()
