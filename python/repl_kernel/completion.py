"""Code completion for the kernel.

Completion requests carry the whole cell text and a cursor offset. The
evaluator proposes candidates; this module works out which span of the text
those candidates replace and shapes the reply payload.
"""

from __future__ import annotations

import asyncio
import inspect
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping


class CompletionStatus(str, Enum):
    """Status reported in a complete_reply."""

    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class CompletionTokenBounds:
    """Half-open span of the token being completed."""

    start: int
    end: int


@dataclass(frozen=True)
class CompletionVariant:
    """One candidate proposed by the evaluator."""

    text: str
    display_text: str = ""
    icon: str = ""
    tail: str = ""


@dataclass(frozen=True)
class SourceCode:
    """A snippet of cell text identified by its execution number."""

    number: int
    text: str

    @property
    def name(self) -> str:
        return f"Line_{self.number}"

    @property
    def location_id(self) -> str:
        return f"location_{self.number}"


def get_token_bounds(text: str, cursor: int) -> CompletionTokenBounds:
    """Return the span of the identifier that ends at ``cursor``.

    Identifier characters are letters, digits and underscores. The span starts
    right after the last other character before the cursor, or at 0.

    Raises:
        ValueError: If ``cursor`` is not a position inside ``text``.
    """
    if not 0 <= cursor <= len(text):
        raise ValueError(f"Position {cursor} does not exist in code snippet <{text}>")

    start = cursor
    while start > 0:
        char = text[start - 1]
        if not (char.isalnum() or char == "_"):
            break
        start -= 1

    return CompletionTokenBounds(start, cursor)


class CompletionResult:
    """Base of the completion outcomes; see Success, Empty and Error."""

    def __init__(self, status: CompletionStatus):
        self.status = status

    def to_json(self) -> dict[str, Any]:
        return {"status": self.status.value}


class Success(CompletionResult):
    """Completion produced candidates (possibly none, see Empty)."""

    def __init__(
        self,
        matches: list[str],
        bounds: CompletionTokenBounds,
        metadata: list[CompletionVariant],
        text: str,
        cursor: int,
    ):
        super().__init__(CompletionStatus.OK)
        if len(matches) != len(metadata):
            raise ValueError(f"{len(matches)} matches but {len(metadata)} metadata entries")
        self.matches = matches
        self.bounds = bounds
        self.metadata = metadata
        self.text = text
        self.cursor = cursor

    def to_json(self) -> dict[str, Any]:
        res = super().to_json()
        res["matches"] = list(self.matches)
        res["cursor_start"] = self.bounds.start
        res["cursor_end"] = self.bounds.end
        res["metadata"] = {
            "_jupyter_types_experimental": [
                {
                    "text": variant.text,
                    "type": variant.tail,
                    "start": self.bounds.start,
                    "end": self.bounds.end,
                }
                for variant in self.metadata
            ],
            "_jupyter_extended_metadata": [
                {
                    "text": variant.text,
                    "displayText": variant.display_text,
                    "icon": variant.icon,
                    "tail": variant.tail,
                }
                for variant in self.metadata
            ],
        }
        res["paragraph"] = {"cursor": self.cursor, "text": self.text}
        return res

    def sorted_matches(self) -> list[str]:
        return sorted(self.matches)


class Empty(Success):
    """Completion ran fine but found nothing."""

    def __init__(self, text: str, cursor: int):
        super().__init__([], CompletionTokenBounds(cursor, cursor), [], text, cursor)


class Error(CompletionResult):
    """Completion itself failed."""

    def __init__(self, error_name: str, error_value: str, trace_back: str):
        super().__init__(CompletionStatus.ERROR)
        self.error_name = error_name
        self.error_value = error_value
        self.trace_back = trace_back

    def to_json(self) -> dict[str, Any]:
        res = super().to_json()
        res["ename"] = self.error_name
        res["evalue"] = self.error_value
        res["traceback"] = self.trace_back.splitlines()
        return res


@dataclass(frozen=True)
class Diagnostic:
    """A compiler message with an optional (line, col) location."""

    message: str
    severity: str = "ERROR"
    start: tuple[int, int] | None = None
    end: tuple[int, int] | None = None


@dataclass
class ListErrorsResult:
    """Diagnostics for a cell; ``errors`` is consumed lazily by to_json()."""

    code: str
    errors: Iterable[Diagnostic] = field(default_factory=tuple)

    def to_json(self) -> dict[str, Any]:
        errors = []
        for diagnostic in self.errors:
            er: dict[str, Any] = {
                "message": diagnostic.message,
                "severity": diagnostic.severity,
            }
            if diagnostic.start is not None:
                er["start"] = {"line": diagnostic.start[0], "col": diagnostic.start[1]}
                if diagnostic.end is not None:
                    er["end"] = {"line": diagnostic.end[0], "col": diagnostic.end[1]}
            errors.append(er)
        return {"code": self.code, "errors": errors}


ReplCompleter = Callable[[SourceCode, int, Mapping[str, Any]], Any]


class Completer:
    """Turns evaluator completion candidates into a CompletionResult."""

    def complete(
        self,
        repl_completer: ReplCompleter,
        configuration: Mapping[str, Any],
        code: str,
        snippet_id: int,
        cursor: int,
    ) -> CompletionResult:
        # Out-of-range cursors propagate instead of becoming an Error result
        bounds = get_token_bounds(code, cursor)
        try:
            candidates = repl_completer(SourceCode(snippet_id, code), cursor, configuration)
            if inspect.isawaitable(candidates):
                candidates = asyncio.run(_await(candidates))

            variants = list(candidates or [])
            if not variants:
                return Empty(code, cursor)
            return Success([v.text for v in variants], bounds, variants, code, cursor)

        except Exception as e:
            return Error(type(e).__name__, str(e), traceback.format_exc())


async def _await(awaitable: Any) -> Any:
    return await awaitable
