"""Restricted Python evaluator backing the kernel.

Cells are compiled with RestrictedPython and run in one persistent namespace.
The sandbox:
- Blocks dangerous builtins (eval, exec, open, input)
- Rejects underscore names and attributes at compile time
- Only allows imports from a fixed module list
- Stores the value of a trailing expression as ``res<count>``
"""

from __future__ import annotations

import ast
import builtins
import codeop
import operator
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

from RestrictedPython import compile_restricted_exec, safe_builtins
from RestrictedPython.Eval import default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

from repl_kernel.completion import (
    CompletionVariant,
    Diagnostic,
    ListErrorsResult,
    SourceCode,
)
from repl_kernel.display import DisplayResult, html_result, mime_result


class ReplError(Exception):
    """Base class for evaluator faults."""

    pass


class SandboxError(ReplError):
    """Error raised when sandbox detects a violation."""

    pass


class ReplCompilerError(ReplError):
    """Error raised when a cell cannot be compiled."""

    def __init__(self, message: str, diagnostics: list[Diagnostic] | None = None):
        super().__init__(message)
        self.message = message
        self.diagnostics = diagnostics or []


class InvocationTargetError(ReplError):
    """Wraps an exception raised by user code while the sandbox invoked it."""

    def __init__(self, target: BaseException):
        super().__init__(str(target))
        self.target = target


class ReplEvalRuntimeError(ReplError):
    """Error raised when a compiled cell fails while running."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


@dataclass
class EvalResult:
    """Outcome of one successfully evaluated cell."""

    result_value: Any = None
    display_values: list[Any] = field(default_factory=list)
    result_name: str | None = None


@dataclass(frozen=True)
class CheckResult:
    is_complete: bool


_MISSING = object()


def _guarded_getattr(obj: Any, name: str, *default: Any) -> Any:
    """Custom getattr that blocks access to dangerous attributes."""
    if name.startswith("_"):
        raise SandboxError(f"Access to '{name}' is not allowed")
    value = safer_getattr(obj, name, _MISSING)
    if value is _MISSING:
        if default:
            return default[0]
        raise AttributeError(f"'{type(obj).__name__}' object has no attribute '{name}'")
    return value


def _guarded_getitem(obj: Any, key: Any) -> Any:
    """Custom getitem that works with common types."""
    if hasattr(obj, "__getitem__"):
        return obj[key]
    raise TypeError(f"'{type(obj).__name__}' object is not subscriptable")


def _guarded_apply(func: Any, *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


_INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "@=": operator.imatmul,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
}


def _inplacevar(op: str, target: Any, value: Any) -> Any:
    """Apply an augmented assignment operator."""
    try:
        return _INPLACE_OPERATORS[op](target, value)
    except KeyError:
        raise SandboxError(f"Operator '{op}' is not allowed") from None


ALLOWED_MODULES = frozenset(
    {
        "math",
        "re",
        "json",
        "collections",
        "itertools",
        "functools",
        "operator",
        "string",
        "textwrap",
        "datetime",
        "decimal",
        "fractions",
        "statistics",
        "random",  # Note: not cryptographically secure
        "copy",
        "pprint",
        "dataclasses",
        "typing",
        "enum",
    }
)


def _guarded_import(
    name: str,
    globalz: dict | None = None,
    localz: dict | None = None,
    fromlist: tuple = (),
    level: int = 0,
) -> Any:
    """Restricted import that only allows safe modules."""
    if level != 0 or name.split(".")[0] not in ALLOWED_MODULES:
        raise SandboxError(f"Import of '{name}' is not allowed")
    return builtins.__import__(name, globalz, localz, fromlist, level)


# Safe subset of builtins
SAFE_BUILTINS = {
    **safe_builtins,
    "dict": dict,
    "list": list,
    "set": set,
    "frozenset": frozenset,
    "tuple": tuple,
    "enumerate": enumerate,
    "map": map,
    "filter": filter,
    "reversed": reversed,
    "min": min,
    "max": max,
    "sum": sum,
    "any": any,
    "all": all,
    "iter": iter,
    "next": next,
    "type": type,
    "getattr": _guarded_getattr,
    "StopIteration": StopIteration,
    "__import__": _guarded_import,
}

for _blocked in ("eval", "exec", "compile", "open", "input", "breakpoint"):
    SAFE_BUILTINS.pop(_blocked, None)


class PrintCollector:
    """Target of RestrictedPython's rewritten print() calls.

    Output goes to whatever ``sys.stdout`` is at call time, so the kernel's
    output capture sees it.
    """

    def __init__(self, _getattr_=None):
        self._getattr_ = _getattr_

    def _call_print(self, *objects, **kwargs):
        if kwargs.get("file") is None:
            kwargs["file"] = sys.stdout
        print(*objects, **kwargs)

    def __call__(self):
        return ""


_LINE_PREFIX = re.compile(r"^Line (\d+): ?(.*)$", re.DOTALL)

# <name>.<name>...<partial> right before the cursor
_ATTRIBUTE_PATH = re.compile(r"([A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)\.(\w*)$")
_NAME_PREFIX = re.compile(r"(\w*)$")


def _restricted_diagnostic(message: str, severity: str) -> Diagnostic:
    match = _LINE_PREFIX.match(message)
    if match is None:
        return Diagnostic(message, severity)
    return Diagnostic(match.group(2), severity, start=(int(match.group(1)), 0))


def _syntax_diagnostic(error: SyntaxError) -> Diagnostic:
    start = (error.lineno, error.offset or 0) if error.lineno else None
    end = None
    if start is not None and getattr(error, "end_lineno", None):
        end = (error.end_lineno, error.end_offset or 0)
    return Diagnostic(error.msg, "ERROR", start=start, end=end)


class Sandbox:
    """Sandboxed Python execution environment."""

    def __init__(self):
        self.globals: dict[str, Any] = {}
        self._display_values: list[Any] = []
        self._setup_environment()

    def _setup_environment(self) -> None:
        """Set up the restricted execution environment."""
        self.globals["__builtins__"] = SAFE_BUILTINS.copy()
        self.globals["__name__"] = "__main__"
        self.globals["__metaclass__"] = type

        # RestrictedPython guards
        self.globals["_getattr_"] = _guarded_getattr
        self.globals["_getitem_"] = _guarded_getitem
        self.globals["_getiter_"] = default_guarded_getiter
        self.globals["_iter_unpack_sequence_"] = guarded_iter_unpack_sequence
        self.globals["_unpack_sequence_"] = guarded_unpack_sequence
        self.globals["_write_"] = full_write_guard
        self.globals["_inplacevar_"] = _inplacevar
        self.globals["_apply_"] = _guarded_apply
        self.globals["_print_"] = PrintCollector

        # Display helpers
        self.globals["display"] = self._display
        self.globals["HTML"] = html_result
        self.globals["MIME"] = mime_result
        self.globals["DisplayResult"] = DisplayResult

    def _display(self, *objs: Any) -> None:
        self._display_values.extend(objs)

    @staticmethod
    def _filename(count: int) -> str:
        return f"<cell-{count}>"

    def compile(self, code: str, count: int) -> tuple[Any, str | None]:
        """Compile a cell in restricted mode.

        A trailing expression statement is turned into an assignment to
        ``res<count>`` so its value survives execution.

        Returns:
            Tuple of (code object, result variable name or None)

        Raises:
            ReplCompilerError: If code fails to compile
        """
        filename = self._filename(count)
        try:
            tree = ast.parse(code, filename, "exec")
        except SyntaxError as e:
            raise ReplCompilerError(f"Syntax error: {e}", [_syntax_diagnostic(e)]) from e

        result_name = None
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            result_name = f"res{count}"
            last = tree.body[-1]
            tree.body[-1] = ast.copy_location(
                ast.Assign(
                    targets=[ast.Name(id=result_name, ctx=ast.Store())],
                    value=last.value,
                ),
                last,
            )
            ast.fix_missing_locations(tree)

        result = compile_restricted_exec(tree, filename)
        if result.errors:
            raise ReplCompilerError(
                "\n".join(result.errors),
                [_restricted_diagnostic(message, "ERROR") for message in result.errors],
            )
        return result.code, result_name

    def _invoke(self, compiled: Any) -> None:
        try:
            exec(compiled, self.globals)
        except BaseException as e:
            # SystemExit and KeyboardInterrupt raised by a cell are cell faults
            raise InvocationTargetError(e) from e

    def eval(self, code: str, count: int) -> EvalResult:
        """Execute a cell in the sandbox.

        Raises:
            ReplCompilerError: If code fails to compile
            ReplEvalRuntimeError: If the compiled code raises
        """
        self._display_values = []
        compiled, result_name = self.compile(code, count)

        try:
            self._invoke(compiled)
        except InvocationTargetError as e:
            raise ReplEvalRuntimeError(str(e.target), cause=e) from e

        result = self.globals.get(result_name) if result_name else None
        return EvalResult(result, list(self._display_values), result_name)

    def check_complete(self, count: int, code: str) -> CheckResult:
        """Check whether ``code`` forms a complete statement.

        Raises:
            ReplCompilerError: If code can never become valid
        """
        try:
            compiled = codeop.compile_command(code, self._filename(count), "exec")
        except (SyntaxError, OverflowError, ValueError) as e:
            raise ReplCompilerError(str(e)) from e
        return CheckResult(is_complete=compiled is not None)

    def list_errors(self, code: str) -> ListErrorsResult:
        return ListErrorsResult(code, self._diagnostics(code))

    def _diagnostics(self, code: str) -> Iterator[Diagnostic]:
        try:
            tree = ast.parse(code, "<cell>", "exec")
        except SyntaxError as e:
            yield _syntax_diagnostic(e)
            return

        result = compile_restricted_exec(tree, "<cell>")
        for message in result.errors:
            yield _restricted_diagnostic(message, "ERROR")
        for message in result.warnings:
            yield _restricted_diagnostic(message, "WARNING")

    def complete(
        self,
        source: SourceCode,
        cursor: int,
        configuration: Mapping[str, Any],
    ) -> list[CompletionVariant] | None:
        """Propose names for the token before ``cursor``.

        Dotted paths complete the attributes of the resolved object; bare
        names complete user variables, helpers and builtins.
        """
        before = source.text[:cursor]
        match = _ATTRIBUTE_PATH.search(before)
        if match:
            owner = self._resolve(match.group(1))
            if owner is _MISSING:
                return None
            prefix = match.group(2)
            names = dir(owner)
        else:
            owner = _MISSING
            prefix = _NAME_PREFIX.search(before).group(1)
            names = self._visible_names(configuration.get("include_builtins", True))

        variants = []
        for name in sorted(set(names)):
            if name.startswith("_") or not name.startswith(prefix):
                continue
            variants.append(self._variant(name, owner))
        return variants

    def _visible_names(self, include_builtins: bool) -> list[str]:
        names = list(self.globals)
        if include_builtins:
            names.extend(self.globals["__builtins__"])
        return names

    def _lookup(self, name: str) -> Any:
        if name in self.globals:
            return self.globals[name]
        return self.globals["__builtins__"].get(name, _MISSING)

    def _resolve(self, path: str) -> Any:
        head, *attrs = path.split(".")
        value = self._lookup(head)
        for attr in attrs:
            if value is _MISSING or attr.startswith("_"):
                return _MISSING
            try:
                value = getattr(value, attr)
            except Exception:
                return _MISSING
        return value

    def _variant(self, name: str, owner: Any) -> CompletionVariant:
        if owner is _MISSING:
            value = self._lookup(name)
        else:
            try:
                value = getattr(owner, name)
            except Exception:
                value = _MISSING

        if value is _MISSING:
            return CompletionVariant(text=name, display_text=name)
        if isinstance(value, type):
            icon = "class"
        elif callable(value):
            icon = "method" if owner is not _MISSING else "function"
        elif type(value).__name__ == "module":
            icon = "module"
        else:
            icon = "property" if owner is not _MISSING else "variable"
        return CompletionVariant(
            text=name,
            display_text=name,
            icon=icon,
            tail=type(value).__name__,
        )

    def list_variables(self) -> dict[str, str]:
        """List all user variables with their types."""
        skip = {"__metaclass__", "display", "HTML", "MIME", "DisplayResult"}

        variables = {}
        for name, value in self.globals.items():
            if name not in skip and not name.startswith("_"):
                variables[name] = type(value).__name__
        return variables

    def clear(self) -> None:
        """Clear all user variables."""
        self.globals.clear()
        self._display_values = []
        self._setup_environment()
