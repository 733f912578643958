"""Tests for the restricted evaluator."""

import pytest

from repl_kernel.display import DisplayResult
from repl_kernel.sandbox import (
    InvocationTargetError,
    ReplCompilerError,
    ReplEvalRuntimeError,
    Sandbox,
    SandboxError,
)


class TestSandbox:
    """Tests for the sandbox execution environment."""

    def test_simple_execution(self):
        sandbox = Sandbox()
        result = sandbox.eval("x = 1 + 1", 0)
        assert result.result_value is None
        assert result.result_name is None
        assert "x" in sandbox.list_variables()

    def test_trailing_expression_is_stored(self):
        sandbox = Sandbox()
        result = sandbox.eval("x = 20\nx * 2", 3)
        assert result.result_value == 40
        assert result.result_name == "res3"
        assert sandbox.globals["res3"] == 40

    def test_print_goes_to_current_stdout(self, capsys):
        sandbox = Sandbox()
        result = sandbox.eval("print('hello')", 0)
        assert result.result_value is None
        assert "hello" in capsys.readouterr().out

    def test_variables_persist_between_cells(self):
        sandbox = Sandbox()
        sandbox.eval("base = 10", 0)
        result = sandbox.eval("def add(n):\n    return base + n\nadd(5)", 1)
        assert result.result_value == 15

    def test_loops_and_unpacking(self):
        sandbox = Sandbox()
        code = "pairs = [(1, 2), (3, 4)]\ntotal = 0\nfor a, b in pairs:\n    total += a * b\ntotal"
        assert sandbox.eval(code, 0).result_value == 14

    def test_subscripts(self):
        sandbox = Sandbox()
        assert sandbox.eval("data = {'k': [1, 2, 3]}\ndata['k'][1]", 0).result_value == 2

    def test_blocked_builtins(self):
        sandbox = Sandbox()
        with pytest.raises(ReplEvalRuntimeError) as exc_info:
            sandbox.eval("open('/etc/passwd')", 0)
        assert isinstance(exc_info.value.cause, InvocationTargetError)
        assert isinstance(exc_info.value.cause.target, NameError)

    def test_blocked_import(self):
        sandbox = Sandbox()
        with pytest.raises(ReplEvalRuntimeError, match="not allowed") as exc_info:
            sandbox.eval("import os", 0)
        assert isinstance(exc_info.value.cause.target, SandboxError)

    def test_allowed_import(self):
        sandbox = Sandbox()
        sandbox.eval("import math; x = math.sqrt(4)", 0)
        assert sandbox.globals["x"] == 2.0

    def test_missing_attribute(self):
        sandbox = Sandbox()
        with pytest.raises(ReplEvalRuntimeError) as exc_info:
            sandbox.eval("x = [1]\nx.nope", 0)
        assert isinstance(exc_info.value.cause.target, AttributeError)

    def test_getattr_default(self):
        sandbox = Sandbox()
        assert sandbox.eval("getattr([], 'nope', 7)", 0).result_value == 7

    def test_dunder_access_blocked(self):
        sandbox = Sandbox()
        with pytest.raises(ReplCompilerError):
            sandbox.eval("x = ().__class__.__bases__[0].__subclasses__()", 0)

    def test_underscore_names_rejected(self):
        sandbox = Sandbox()
        with pytest.raises(ReplCompilerError) as exc_info:
            sandbox.eval("_x = 1", 0)
        assert exc_info.value.diagnostics
        assert exc_info.value.diagnostics[0].start == (1, 0)

    def test_syntax_error(self):
        sandbox = Sandbox()
        with pytest.raises(ReplCompilerError, match="Syntax error") as exc_info:
            sandbox.eval("x = (", 0)
        assert exc_info.value.diagnostics[0].severity == "ERROR"

    def test_failed_cell_keeps_earlier_state(self):
        sandbox = Sandbox()
        sandbox.eval("x = 1", 0)
        with pytest.raises(ReplEvalRuntimeError):
            sandbox.eval("x = 2\n1 / 0", 1)
        assert sandbox.globals["x"] == 2

    def test_display_helpers(self):
        sandbox = Sandbox()
        result = sandbox.eval("display(1, HTML('<i>x</i>'))\nDisplayResult(5)", 0)
        assert result.display_values == [1, {"text/html": "<i>x</i>"}]
        assert isinstance(result.result_value, DisplayResult)
        assert result.result_value.value == 5

    def test_display_values_reset_per_cell(self):
        sandbox = Sandbox()
        sandbox.eval("display(1)", 0)
        assert sandbox.eval("y = 2", 1).display_values == []

    def test_mime_helper(self):
        sandbox = Sandbox()
        result = sandbox.eval("MIME('text/markdown', '# title')", 0)
        assert result.result_value == {"text/markdown": "# title"}

    def test_list_variables(self):
        sandbox = Sandbox()
        sandbox.eval("a = 1; b = 'hello'; c = [1, 2, 3]", 0)
        variables = sandbox.list_variables()
        assert variables["a"] == "int"
        assert variables["b"] == "str"
        assert variables["c"] == "list"
        assert "display" not in variables
        assert "HTML" not in variables

    @pytest.mark.parametrize(
        "code, kind",
        [
            ("raise SystemExit(3)", SystemExit),
            ("raise KeyboardInterrupt()", KeyboardInterrupt),
        ],
    )
    def test_exit_signals_are_runtime_faults(self, code, kind):
        sandbox = Sandbox()
        with pytest.raises(ReplEvalRuntimeError) as exc_info:
            sandbox.eval(code, 0)
        assert isinstance(exc_info.value.cause, InvocationTargetError)
        assert isinstance(exc_info.value.cause.target, kind)

    def test_clear(self):
        sandbox = Sandbox()
        sandbox.eval("x = 42", 0)
        assert "x" in sandbox.list_variables()
        sandbox.clear()
        assert "x" not in sandbox.list_variables()
        assert sandbox.eval("display", 1).result_value is not None


class TestCheckComplete:
    """Tests for statement completeness checks."""

    def test_complete(self):
        assert Sandbox().check_complete(0, "x = 1").is_complete

    def test_complete_block(self):
        assert Sandbox().check_complete(0, "def f():\n    return 1\n").is_complete

    def test_incomplete(self):
        assert not Sandbox().check_complete(0, "for i in range(3):").is_complete

    def test_invalid(self):
        with pytest.raises(ReplCompilerError):
            Sandbox().check_complete(0, "x = )")
