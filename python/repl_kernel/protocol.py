"""Jupyter wire protocol message types.

Messages arrive on the shell and control channels and are answered there;
status, stream and result notifications go out on iopub. This module defines
the message model and helpers to build replies correlated with a request.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

PROTOCOL_VERSION = "5.3"


class MessageType(str, Enum):
    """Request kinds the kernel handles."""

    KERNEL_INFO_REQUEST = "kernel_info_request"
    HISTORY_REQUEST = "history_request"
    SHUTDOWN_REQUEST = "shutdown_request"
    CONNECT_REQUEST = "connect_request"
    EXECUTE_REQUEST = "execute_request"
    COMM_INFO_REQUEST = "comm_info_request"
    COMPLETE_REQUEST = "complete_request"
    IS_COMPLETE_REQUEST = "is_complete_request"
    LIST_ERRORS_REQUEST = "list_errors_request"

    @classmethod
    def lookup(cls, msg_type: str | None) -> MessageType | None:
        try:
            return cls(msg_type)
        except ValueError:
            return None


class ExecutionState(str, Enum):
    BUSY = "busy"
    IDLE = "idle"


class StreamName(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class IsCompleteStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    INVALID = "invalid"
    ERROR = "error"


def iso8601_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Message(BaseModel):
    """One wire message; immutable once received."""

    model_config = ConfigDict(frozen=True)

    identities: list[bytes] = Field(default_factory=list, description="ZMQ routing frames")
    header: dict[str, Any] = Field(default_factory=dict)
    parent_header: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    content: dict[str, Any] = Field(default_factory=dict)

    @property
    def msg_type(self) -> str | None:
        return self.header.get("msg_type")

    @property
    def session(self) -> str | None:
        return self.header.get("session")

    @classmethod
    def from_wire(cls, identities: list[bytes], msg: dict[str, Any]) -> Message:
        return cls(
            identities=identities,
            header=dict(msg.get("header") or {}),
            parent_header=dict(msg.get("parent_header") or {}),
            metadata=dict(msg.get("metadata") or {}),
            content=dict(msg.get("content") or {}),
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "header": self.header,
            "parent_header": self.parent_header,
            "metadata": self.metadata,
            "content": self.content,
        }


def make_header(
    msg_type: str | None = None,
    incoming: Message | None = None,
    session_id: str | None = None,
) -> dict[str, Any]:
    incoming_header = incoming.header if incoming is not None else {}
    return {
        "msg_id": uuid.uuid4().hex,
        "date": iso8601_now(),
        "version": PROTOCOL_VERSION,
        "username": incoming_header.get("username", "kernel"),
        "session": session_id or incoming_header.get("session"),
        "msg_type": msg_type or "none",
    }


def make_reply_message(
    msg: Message,
    msg_type: str | None = None,
    session_id: str | None = None,
    header: dict[str, Any] | None = None,
    parent_header: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    content: dict[str, Any] | None = None,
) -> Message:
    """Build a message correlated with ``msg`` (its parent)."""
    return Message(
        identities=list(msg.identities),
        header=header or make_header(msg_type, msg, session_id),
        parent_header=parent_header or msg.header,
        metadata=metadata or {},
        content=content or {},
    )


# Request content models


class ExecuteRequest(BaseModel):
    """Content of an execute_request."""

    code: str = Field(..., description="Source text to run")
    silent: bool = False
    store_history: bool = True
    user_expressions: dict[str, Any] = Field(default_factory=dict)
    allow_stdin: bool = False
    stop_on_error: bool = True


class CompleteRequest(BaseModel):
    """Content of a complete_request."""

    code: str
    cursor_pos: int


class IsCompleteRequest(BaseModel):
    """Content of an is_complete_request."""

    code: str


class ListErrorsRequest(BaseModel):
    """Content of a list_errors_request."""

    code: str
