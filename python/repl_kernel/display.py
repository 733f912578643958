"""Display payloads: mime-typed representations of evaluated values."""

from __future__ import annotations

from typing import Any


class MimeTypedResult(dict):
    """Mapping of mime type to data, sent as the ``data`` of a display message."""

    pass


class DisplayResult:
    """Wrapper marking a value to be shown as display data, not as the cell result."""

    def __init__(self, value: Any):
        self.value = value

    def __repr__(self) -> str:
        return f"DisplayResult({self.value!r})"


def text_result(text: str) -> MimeTypedResult:
    return MimeTypedResult({"text/plain": text})


def html_result(html: str) -> MimeTypedResult:
    return MimeTypedResult({"text/html": html})


def mime_result(mime: str, data: Any) -> MimeTypedResult:
    return MimeTypedResult({mime: data})


def to_mime_typed_result(value: Any) -> MimeTypedResult | None:
    """Convert an evaluated value to a display payload.

    ``None`` has no representation. Payloads pass through, display wrappers
    are unwrapped, and everything else is shown by its ``repr``.
    """
    if value is None:
        return None
    if isinstance(value, MimeTypedResult):
        return value
    if isinstance(value, DisplayResult):
        return to_mime_typed_result(value.value)
    return text_result(repr(value))
