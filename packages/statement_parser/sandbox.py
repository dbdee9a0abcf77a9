"""Capability-scoped execution of generated parser code.

Generated code is the BODY of a Python function. :class:`SandboxExecutor`
wraps it in a function whose parameters are the input bindings (``text`` for
documents, ``headers``/``rows`` for sheets), checks it statically, and runs it
in a child process against a namespace that holds only the names granted by a
:class:`Capabilities` value. The body must finish with an explicit ``return``
of a list.

Contract
--------
- :meth:`SandboxExecutor.execute` never raises for problems in the generated
  code. Static rejections, exceptions, timeouts and non-list results all come
  back as :class:`SandboxResult` with ``error`` set to a readable message;
  that message is what the repair loop shows the model.
- Static checks reject imports, ``global``/``nonlocal``, class definitions,
  generators and async code, bare ``except:`` and ``finally`` clauses, names
  starting with ``__``, attribute names starting with ``_`` or reaching into
  frames, attribute assignment or deletion, calls to reflective builtins, and
  oversized code or string literals.
- Each call runs in its own process with freshly built utility namespaces,
  so nothing the code defines or mutates outlives the call.
- The process is killed once ``timeout_sec`` passes, including when it is
  stuck inside a C call such as a backtracking regex.
"""

from __future__ import annotations

import ast
import functools
import json
import math
import multiprocessing
import re
import textwrap
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from multiprocessing.connection import Connection
from multiprocessing.context import BaseContext
from types import MappingProxyType, SimpleNamespace, TracebackType
from typing import Any

from .logging_setup import get_logger

_FILENAME = "<generated-parser>"
_FUNC_NAME = "__parser__"
# How long a finished child gets to exit before it is killed.
_JOIN_GRACE_SEC: float = 0.5

_logger = get_logger("statement_parser.sandbox")


# ---- Capabilities ----------------------------------------------------------------


def _safe_builtins() -> dict[str, Any]:
    import builtins

    allowed = (
        "abs", "all", "any", "bool", "chr", "dict", "divmod", "enumerate", "filter",
        "float", "format", "frozenset", "int", "isinstance", "iter", "len", "list",
        "map", "max", "min", "next", "ord", "range", "reversed", "round", "set",
        "slice", "sorted", "str", "sum", "tuple", "zip",
        "Exception", "ValueError", "TypeError", "KeyError", "IndexError",
        "AttributeError", "ZeroDivisionError", "ArithmeticError", "LookupError",
    )  # fmt: skip
    return {name: getattr(builtins, name) for name in allowed}


def _utility_names() -> dict[str, Any]:
    # Curated namespaces rather than modules: a module object exposes its own
    # imports (json.codecs, for example).
    re_ns = SimpleNamespace(
        compile=re.compile,
        search=re.search,
        match=re.match,
        fullmatch=re.fullmatch,
        findall=re.findall,
        finditer=re.finditer,
        sub=re.sub,
        subn=re.subn,
        split=re.split,
        escape=re.escape,
        IGNORECASE=re.IGNORECASE,
        I=re.IGNORECASE,
        MULTILINE=re.MULTILINE,
        M=re.MULTILINE,
        DOTALL=re.DOTALL,
        S=re.DOTALL,
        VERBOSE=re.VERBOSE,
        X=re.VERBOSE,
        error=re.error,
    )
    math_ns = SimpleNamespace(
        floor=math.floor,
        ceil=math.ceil,
        fabs=math.fabs,
        isclose=math.isclose,
        isfinite=math.isfinite,
        isnan=math.isnan,
        fsum=math.fsum,
        inf=math.inf,
        nan=math.nan,
    )
    json_ns = SimpleNamespace(
        loads=json.loads, dumps=json.dumps, JSONDecodeError=json.JSONDecodeError
    )
    return {
        "re": re_ns,
        "math": math_ns,
        "json": json_ns,
        "datetime": datetime,
        "date": date,
        "timedelta": timedelta,
        "Decimal": Decimal,
        "InvalidOperation": InvalidOperation,
    }


def _fresh_names(names: Mapping[str, Any]) -> dict[str, Any]:
    return {
        k: SimpleNamespace(**vars(v)) if isinstance(v, SimpleNamespace) else v
        for k, v in names.items()
    }


@dataclass(frozen=True, slots=True)
class Capabilities:
    """What generated code may touch and how long it may run.

    ``names`` become module-level globals of the generated function and
    ``builtins`` replaces ``__builtins__``. Everything else is unreachable.
    Both are sent to the child process, so their values must be picklable.
    """

    names: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType(_utility_names()))
    builtins: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType(_safe_builtins())
    )
    timeout_sec: float = 5.0
    max_items: int = 10_000
    max_code_chars: int = 100_000
    max_string_literal: int = 10_000

    def with_timeout(self, timeout_sec: float) -> Capabilities:
        return replace(self, timeout_sec=timeout_sec)


DEFAULT_CAPABILITIES = Capabilities()


@dataclass(frozen=True, slots=True)
class SandboxResult:
    items: tuple[Any, ...] | None
    error: str | None
    duration_ms: int = 0
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


# ---- Static validation -------------------------------------------------------------

_FORBIDDEN_NODES: tuple[tuple[type[ast.AST], str], ...] = (
    (ast.Import, "import statements are not allowed"),
    (ast.ImportFrom, "import statements are not allowed"),
    (ast.Global, "global declarations are not allowed"),
    (ast.Nonlocal, "nonlocal declarations are not allowed"),
    (ast.ClassDef, "class definitions are not allowed"),
    (ast.AsyncFunctionDef, "async code is not allowed"),
    (ast.Await, "async code is not allowed"),
    (ast.AsyncFor, "async code is not allowed"),
    (ast.AsyncWith, "async code is not allowed"),
    (ast.Yield, "generators are not allowed; return a list"),
    (ast.YieldFrom, "generators are not allowed; return a list"),
    (ast.With, "with statements are not allowed"),
)

_FORBIDDEN_CALL_NAMES: frozenset[str] = frozenset(
    {
        "eval", "exec", "compile", "open", "globals", "locals", "vars", "dir",
        "getattr", "setattr", "delattr", "hasattr", "input", "breakpoint", "exit",
        "quit", "help", "memoryview", "type", "object", "super", "classmethod",
        "staticmethod", "property", "print",
    }
)  # fmt: skip

# Frame/code introspection that does not start with an underscore.
_FORBIDDEN_ATTRS: frozenset[str] = frozenset(
    {
        "gi_frame", "gi_code", "gi_yieldframe", "cr_frame", "cr_code", "ag_frame",
        "ag_code", "f_globals", "f_locals", "f_back", "f_builtins", "f_code",
        "tb_frame", "tb_next", "co_code", "format_map", "mro",
    }
)  # fmt: skip


class _Validator(ast.NodeVisitor):
    def __init__(self, capabilities: Capabilities) -> None:
        self.caps = capabilities
        self.errors: list[str] = []

    def _err(self, node: ast.AST, message: str) -> None:
        # Line 1 of the wrapper is the synthetic ``def``.
        line = max(1, getattr(node, "lineno", 2) - 1)
        self.errors.append(f"line {line}: {message}")

    def generic_visit(self, node: ast.AST) -> None:
        for node_type, message in _FORBIDDEN_NODES:
            if isinstance(node, node_type):
                self._err(node, message)
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._err(node, f"name {node.id!r} is not allowed")
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        # Local variables may shadow these names (``type = "debit"``); calling them may not.
        if isinstance(node.func, ast.Name) and node.func.id in _FORBIDDEN_CALL_NAMES:
            self._err(node, f"{node.func.id}() is not available")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_") or node.attr in _FORBIDDEN_ATTRS:
            self._err(node, f"attribute {node.attr!r} is not allowed")
        elif isinstance(node.ctx, (ast.Store, ast.Del)):
            self._err(node, f"assigning or deleting attribute {node.attr!r} is not allowed")
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is None:
            self._err(node, "bare 'except:' is not allowed; catch specific exceptions")
        self.generic_visit(node)

    def visit_Try(self, node: ast.Try) -> None:
        if node.finalbody:
            self._err(node, "'finally' clauses are not allowed")
        self.generic_visit(node)

    def visit_TryStar(self, node: ast.AST) -> None:
        self._err(node, "'except*' is not allowed")
        self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        if node.name.startswith("_") and node.name != _FUNC_NAME:
            self._err(node, f"function name {node.name!r} must not start with '_'")
        if node.decorator_list:
            self._err(node, "decorators are not allowed")
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant) -> None:
        if isinstance(node.value, (str, bytes)) and len(node.value) >= self.caps.max_string_literal:
            self._err(node, "string literal is too long")
        self.generic_visit(node)


def _has_top_level_return(func: ast.FunctionDef) -> bool:
    stack: list[ast.AST] = list(func.body)
    while stack:
        node = stack.pop()
        if isinstance(node, ast.Return) and node.value is not None:
            return True
        if isinstance(node, (ast.FunctionDef, ast.Lambda, ast.AsyncFunctionDef)):
            continue
        stack.extend(ast.iter_child_nodes(node))
    return False


def _wrap(code: str, params: tuple[str, ...]) -> str:
    body = textwrap.dedent(code).strip("\n")
    if not body.strip():
        body = "pass"
    return f"def {_FUNC_NAME}({', '.join(params)}):\n" + textwrap.indent(body, "    ") + "\n"


# ---- Child process -----------------------------------------------------------------


@functools.lru_cache(maxsize=1)
def _mp_context() -> BaseContext:
    # forkserver children fork from a server that has already imported this module
    # and the main script, so each run starts without re-importing either.
    if "forkserver" in multiprocessing.get_all_start_methods():
        ctx = multiprocessing.get_context("forkserver")
        ctx.set_forkserver_preload(["__main__", __name__])
        return ctx
    return multiprocessing.get_context("spawn")


def _error_line(tb: TracebackType | None) -> int | None:
    line = None
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == _FILENAME:
            line = tb.tb_lineno - 1
        tb = tb.tb_next
    return line


def _run_in_child(
    source: str,
    bindings: dict[str, Any],
    names: dict[str, Any],
    builtins: dict[str, Any],
    max_items: int,
    conn: Connection,
) -> None:
    """Child entry point: run the wrapped body and send one message back.

    Messages are ``("ok", items, total)`` or ``("error", message)``.
    """

    namespace: dict[str, Any] = {"__builtins__": builtins, **names}
    try:
        exec(compile(source, _FILENAME, "exec"), namespace)  # noqa: S102 - validated body
        value = namespace[_FUNC_NAME](**bindings)
    except RecursionError:
        message: tuple[Any, ...] = ("error", "RecursionError: maximum recursion depth exceeded")
    except Exception as e:  # noqa: BLE001 - reported to the caller as text
        line = _error_line(e.__traceback__)
        where = f" (line {line})" if line is not None else ""
        message = ("error", f"{type(e).__name__}: {e}{where}")
    else:
        if isinstance(value, list):
            message = ("ok", value[:max_items], len(value))
        else:
            got = "None" if value is None else type(value).__name__
            message = ("error", f"Parser did not return a list (got {got})")
    try:
        conn.send(message)
    except Exception as e:  # noqa: BLE001 - unpicklable items
        conn.send(("error", f"Parser returned items that cannot be transferred: {e}"))
    finally:
        conn.close()


# ---- Execution ---------------------------------------------------------------------


class SandboxExecutor:
    """Run generated function bodies under a fixed :class:`Capabilities` set."""

    def __init__(self, capabilities: Capabilities = DEFAULT_CAPABILITIES) -> None:
        self.capabilities = capabilities

    def _validate(self, code: str, params: tuple[str, ...]) -> tuple[str | None, str | None]:
        caps = self.capabilities
        if not isinstance(code, str) or not code.strip():
            return None, "Code validation failed: parser code is empty"
        if len(code) > caps.max_code_chars:
            return None, (
                f"Code validation failed: code is {len(code)} characters "
                f"(limit {caps.max_code_chars})"
            )
        for p in params:
            if not p.isidentifier() or p.startswith("_"):
                raise ValueError(f"invalid binding name: {p!r}")

        source = _wrap(code, params)
        try:
            tree = ast.parse(source, filename=_FILENAME)
        except SyntaxError as e:
            line = (e.lineno or 2) - 1
            return None, f"Syntax error: {e.msg} (line {max(1, line)})"

        func = tree.body[0]
        assert isinstance(func, ast.FunctionDef)
        validator = _Validator(caps)
        for stmt in func.body:
            validator.visit(stmt)
        if not _has_top_level_return(func):
            validator.errors.append("the code must end with an explicit 'return' of a list")
        if validator.errors:
            return None, "Code validation failed: " + "; ".join(validator.errors)
        try:
            compile(tree, _FILENAME, "exec")
        except (SyntaxError, ValueError) as e:
            return None, f"Syntax error: {e}"
        return source, None

    def execute(self, code: str, bindings: Mapping[str, Any]) -> SandboxResult:
        """Run ``code`` with ``bindings`` as arguments and return the outcome."""

        t0 = time.perf_counter()
        source, error = self._validate(code, tuple(bindings.keys()))
        if error is not None:
            return SandboxResult(items=None, error=error, duration_ms=_elapsed_ms(t0))

        caps = self.capabilities
        ctx = _mp_context()
        receiver, sender = ctx.Pipe(duplex=False)
        proc = ctx.Process(
            target=_run_in_child,
            args=(
                source,
                dict(bindings),
                _fresh_names(caps.names),
                dict(caps.builtins),
                caps.max_items,
                sender,
            ),
            name="sandbox-exec",
            daemon=True,
        )
        proc.start()
        sender.close()

        message: tuple[Any, ...] | None = None
        timed_out = False
        try:
            if receiver.poll(caps.timeout_sec):
                message = receiver.recv()
            else:
                timed_out = True
        except EOFError:
            message = None
        finally:
            receiver.close()
            if timed_out:
                proc.kill()
            proc.join(_JOIN_GRACE_SEC)
            if proc.is_alive():
                proc.kill()
                proc.join()

        if timed_out:
            _logger.warning("sandbox:timeout timeout_sec=%s", caps.timeout_sec)
            return SandboxResult(
                items=None,
                error=f"Execution timeout after {caps.timeout_sec:g}s",
                duration_ms=_elapsed_ms(t0),
            )
        if message is None:
            _logger.warning("sandbox:child_died exitcode=%s", proc.exitcode)
            return SandboxResult(
                items=None,
                error=f"Parser process exited without a result (exit code {proc.exitcode})",
                duration_ms=_elapsed_ms(t0),
            )
        if message[0] == "error":
            _logger.debug("sandbox:error error=%s", message[1])
            return SandboxResult(items=None, error=message[1], duration_ms=_elapsed_ms(t0))

        _, items, total = message
        truncated = total > caps.max_items
        if truncated:
            _logger.warning("sandbox:truncated items=%d limit=%d", total, caps.max_items)
        return SandboxResult(
            items=tuple(items),
            error=None,
            duration_ms=_elapsed_ms(t0),
            truncated=truncated,
        )


def _elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


__all__ = ["Capabilities", "DEFAULT_CAPABILITIES", "SandboxExecutor", "SandboxResult"]
