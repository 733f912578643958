"""Tests for token bounds, completion results and diagnostics."""

import pytest

from repl_kernel.completion import (
    Completer,
    CompletionTokenBounds,
    CompletionVariant,
    Diagnostic,
    Empty,
    Error,
    ListErrorsResult,
    Success,
    get_token_bounds,
)


def _variants(*names, tail="int"):
    return [CompletionVariant(text=n, display_text=n, icon="variable", tail=tail) for n in names]


class TestTokenBounds:
    """Tests for the identifier span under the cursor."""

    def test_documented_examples(self):
        assert get_token_bounds("foo.bar", 7) == CompletionTokenBounds(4, 7)
        assert get_token_bounds("a+b", 3) == CompletionTokenBounds(2, 3)
        assert get_token_bounds("", 0) == CompletionTokenBounds(0, 0)

    def test_whole_prefix_is_identifier(self):
        assert get_token_bounds("snake_case1 rest", 5) == CompletionTokenBounds(0, 5)

    def test_cursor_inside_call(self):
        assert get_token_bounds("print(value)", 8) == CompletionTokenBounds(6, 8)

    def test_cursor_after_separator(self):
        assert get_token_bounds("x = ", 4) == CompletionTokenBounds(4, 4)

    def test_end_is_always_cursor(self):
        for text in ["", "abc", "a.b_c(d1, e)", "  x+=y2", "ümlaut.attr"]:
            for cursor in range(len(text) + 1):
                bounds = get_token_bounds(text, cursor)
                assert bounds.end == cursor
                assert 0 <= bounds.start <= cursor

    def test_cursor_out_of_range(self):
        with pytest.raises(ValueError, match="does not exist"):
            get_token_bounds("abc", 4)
        with pytest.raises(ValueError):
            get_token_bounds("abc", -1)


class TestCompleter:
    """Tests for turning evaluator candidates into completion results."""

    def test_success(self):
        result = Completer().complete(
            lambda source, cursor, config: _variants("value", "values"), {}, "x = val", 1, 7
        )

        assert isinstance(result, Success)
        assert not isinstance(result, Empty)
        assert result.matches == ["value", "values"]
        assert result.bounds == CompletionTokenBounds(4, 7)

    def test_success_json(self):
        result = Completer().complete(
            lambda source, cursor, config: _variants("value", "values"), {}, "x = val", 1, 7
        )
        payload = result.to_json()

        assert payload["status"] == "ok"
        assert payload["matches"] == ["value", "values"]
        assert payload["cursor_start"] == 4
        assert payload["cursor_end"] == 7
        assert payload["paragraph"] == {"cursor": 7, "text": "x = val"}

        types = payload["metadata"]["_jupyter_types_experimental"]
        extended = payload["metadata"]["_jupyter_extended_metadata"]
        assert [t["text"] for t in types] == [e["text"] for e in extended] == payload["matches"]
        assert types[0] == {"text": "value", "type": "int", "start": 4, "end": 7}
        assert extended[0] == {"text": "value", "displayText": "value", "icon": "variable", "tail": "int"}

    def test_source_code_is_passed_through(self):
        seen = {}

        def repl_completer(source, cursor, config):
            seen.update(source=source, cursor=cursor, config=config)
            return _variants("abc")

        Completer().complete(repl_completer, {"include_builtins": False}, "ab", 3, 2)

        assert seen["source"].number == 3
        assert seen["source"].text == "ab"
        assert seen["source"].name == "Line_3"
        assert seen["cursor"] == 2
        assert seen["config"] == {"include_builtins": False}

    def test_no_candidates_is_empty(self):
        for candidates in (None, []):
            result = Completer().complete(lambda s, c, cfg: candidates, {}, "x = val", 1, 7)
            assert isinstance(result, Empty)
            payload = result.to_json()
            assert payload["status"] == "ok"
            assert payload["matches"] == []
            assert payload["cursor_start"] == payload["cursor_end"] == 7

    def test_exception_becomes_error(self):
        def repl_completer(source, cursor, config):
            raise RuntimeError("kaput")

        result = Completer().complete(repl_completer, {}, "abc", 1, 3)

        assert isinstance(result, Error)
        payload = result.to_json()
        assert payload["status"] == "error"
        assert payload["ename"] == "RuntimeError"
        assert payload["evalue"] == "kaput"
        assert isinstance(payload["traceback"], list)
        assert any("kaput" in line for line in payload["traceback"])

    def test_awaitable_candidates_are_resolved(self):
        async def repl_completer(source, cursor, config):
            return _variants("abc")

        result = Completer().complete(repl_completer, {}, "ab", 1, 2)

        assert result.matches == ["abc"]

    def test_bad_cursor_propagates(self):
        with pytest.raises(ValueError):
            Completer().complete(lambda s, c, cfg: _variants("a"), {}, "abc", 1, 10)

    def test_success_requires_parallel_metadata(self):
        with pytest.raises(ValueError, match="metadata"):
            Success(["a"], CompletionTokenBounds(0, 0), [], "", 0)


class TestSandboxCompletion:
    """Tests for completion against a live sandbox namespace."""

    def test_variable_names(self, sandbox):
        sandbox.eval("value = 1\nvalues = [1, 2]", 0)

        result = Completer().complete(sandbox.complete, {"include_builtins": False}, "val", 1, 3)

        assert result.sorted_matches() == ["value", "values"]
        tails = [m.tail for m in result.metadata]
        assert tails == ["int", "list"]

    def test_builtins_are_offered(self, sandbox):
        result = Completer().complete(sandbox.complete, {"include_builtins": True}, "le", 1, 2)

        assert "len" in result.matches

    def test_private_names_are_hidden(self, sandbox):
        result = Completer().complete(sandbox.complete, {"include_builtins": False}, "", 1, 0)

        assert result.matches
        assert not [m for m in result.matches if m.startswith("_")]

    def test_attribute_completion(self, sandbox):
        sandbox.eval("import math", 0)

        result = Completer().complete(sandbox.complete, {}, "math.sq", 1, 7)

        assert result.matches == ["sqrt"]
        assert result.bounds == CompletionTokenBounds(5, 7)
        assert result.metadata[0].icon == "method"

    def test_unknown_owner_is_empty(self, sandbox):
        result = Completer().complete(sandbox.complete, {}, "nothing.at", 1, 10)

        assert isinstance(result, Empty)

    def test_repeated_requests_are_identical(self, sandbox):
        sandbox.eval("alpha = 1\nalphabet = 'abc'", 0)

        first = Completer().complete(sandbox.complete, {}, "alp", 1, 3)
        second = Completer().complete(sandbox.complete, {}, "alp", 1, 3)

        assert first.matches == second.matches == ["alpha", "alphabet"]


class TestListErrors:
    """Tests for lazily produced diagnostics."""

    def test_clean_code(self, sandbox):
        assert sandbox.list_errors("x = 1").to_json() == {"code": "x = 1", "errors": []}

    def test_syntax_error_has_location(self, sandbox):
        payload = sandbox.list_errors("x = (").to_json()

        assert len(payload["errors"]) == 1
        error = payload["errors"][0]
        assert error["severity"] == "ERROR"
        assert error["start"]["line"] == 1

    def test_restricted_name(self, sandbox):
        payload = sandbox.list_errors("_secret = 1").to_json()

        error = payload["errors"][0]
        assert error["severity"] == "ERROR"
        assert "_secret" in error["message"]
        assert error["start"] == {"line": 1, "col": 0}
        assert "end" not in error

    def test_diagnostics_are_consumed_on_serialization(self):
        consumed = []

        def diagnostics():
            consumed.append(True)
            yield Diagnostic("boom", "WARNING", start=(1, 2), end=(1, 4))
            yield Diagnostic("no location")

        result = ListErrorsResult("code", diagnostics())
        assert consumed == []

        payload = result.to_json()

        assert consumed == [True]
        assert payload["errors"] == [
            {
                "message": "boom",
                "severity": "WARNING",
                "start": {"line": 1, "col": 2},
                "end": {"line": 1, "col": 4},
            },
            {"message": "no location", "severity": "ERROR"},
        ]
