"""Restricted Python evaluation for Script, Variable and Condition steps.

Scripts are small Python snippets:

* run-context variables are readable by name, and `context` is a read-only view
  of the whole run context;
* the value of the last expression statement, or of an explicit top-level
  `return`, is the step result;
* `{name}` (a single-name set display) reads `name` from the context, so the
  placeholder syntax shared with Query steps also works here.

Safety is enforced by scanning the syntax tree before anything runs, the same
way the script is checked at validation time.
"""

from __future__ import annotations

import ast
import builtins
import logging
import math
import statistics
from collections.abc import Mapping
from types import CodeType, MappingProxyType, SimpleNamespace

from analytics_workflows.engine.errors import WorkflowRuntimeError
from analytics_workflows.engine.workflow.substitution import is_missing, lookup

logger = logging.getLogger(__name__)

_SCRIPT_FUNCTION = "_workflow_script"
_PLACEHOLDER_FUNCTION = "_placeholder"

# Capability name -> category reported to authors.
_PROHIBITED_NAMES: dict[str, str] = {
    **dict.fromkeys(["open", "input", "io", "os", "pathlib", "shutil", "tempfile", "glob"], "file access"),
    **dict.fromkeys(["socket", "ssl", "http", "urllib", "requests", "httpx", "ftplib", "smtplib"], "network access"),
    **dict.fromkeys(
        [
            "eval", "exec", "compile", "getattr", "setattr", "delattr", "globals",
            "locals", "vars", "dir", "type", "object", "super", "inspect",
            "importlib", "builtins", "ctypes", "gc", "pickle", "marshal", "memoryview",
            "gi_frame", "gi_code", "cr_frame", "ag_frame", "tb_frame", "f_back",
            "f_globals", "f_locals", "f_builtins", "f_code",
        ],
        "reflection",
    ),
    **dict.fromkeys(["threading", "multiprocessing", "concurrent", "asyncio", "_thread"], "threading"),
    **dict.fromkeys(
        ["subprocess", "sys", "signal", "pdb", "traceback", "breakpoint", "help", "exit", "quit"],
        "process/diagnostics",
    ),
}  # fmt: skip

_SAFE_BUILTINS: dict[str, object] = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter", "float",
        "int", "isinstance", "len", "list", "map", "max", "min", "pow", "range",
        "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip",
        "ArithmeticError", "IndexError", "KeyError", "TypeError", "ValueError",
        "ZeroDivisionError",
    )
}  # fmt: skip

_MATH_FUNCTIONS = (
    "ceil", "cos", "exp", "fabs", "floor", "fsum", "hypot", "isclose", "isfinite",
    "isinf", "isnan", "log", "log10", "log2", "sin", "sqrt", "tan", "trunc",
)  # fmt: skip
_MATH_CONSTANTS = ("e", "inf", "nan", "pi")
_STATISTICS_FUNCTIONS = (
    "fmean", "mean", "median", "median_high", "median_low", "mode", "pstdev",
    "pvariance", "stdev", "variance",
)  # fmt: skip


def _script_modules() -> dict[str, object]:
    """Fresh allow-listed stand-ins for `math` and `statistics` per evaluation."""

    math_ns = SimpleNamespace(
        **{name: getattr(math, name) for name in _MATH_FUNCTIONS + _MATH_CONSTANTS}
    )
    statistics_ns = SimpleNamespace(
        **{name: getattr(statistics, name) for name in _STATISTICS_FUNCTIONS}
    )
    return {"math": math_ns, "statistics": statistics_ns}


class ScriptCompileError(WorkflowRuntimeError):
    pass


class ScriptRuntimeError(WorkflowRuntimeError):
    pass


class UnsafeScriptError(WorkflowRuntimeError):
    pass


def _find_violation(tree: ast.AST) -> str | None:
    for node in ast.walk(tree):
        if isinstance(node, ast.Import | ast.ImportFrom):
            return "Script contains prohibited import statement."
        if isinstance(node, ast.ClassDef | ast.AsyncFunctionDef | ast.Await):
            return "Script contains prohibited class or async definition."
        if isinstance(node, ast.Global | ast.Nonlocal):
            return "Script contains prohibited scope declaration."
        if isinstance(node, ast.Name):
            if node.id.startswith("__"):
                return f"Script contains prohibited reflection usage ({node.id})."
            category = _PROHIBITED_NAMES.get(node.id)
            if category is not None:
                return f"Script contains prohibited {category} usage ({node.id})."
        if isinstance(node, ast.Attribute):
            if node.attr.startswith("__"):
                return f"Script contains prohibited reflection usage ({node.attr})."
            category = _PROHIBITED_NAMES.get(node.attr)
            if category is not None:
                return f"Script contains prohibited {category} usage ({node.attr})."
    return None


def _placeholder_ref(node: ast.AST) -> str | None:
    """`{x}` or `{x[0]}` set displays used as variable placeholders."""

    if not isinstance(node, ast.Set) or len(node.elts) != 1:
        return None
    elt = node.elts[0]
    if isinstance(elt, ast.Name):
        return elt.id
    if (
        isinstance(elt, ast.Subscript)
        and isinstance(elt.value, ast.Name)
        and isinstance(elt.slice, ast.Constant)
        and isinstance(elt.slice.value, int)
    ):
        return f"{elt.value.id}[{elt.slice.value}]"
    return None


_NESTED_SCOPES = (
    ast.FunctionDef,
    ast.Lambda,
    ast.ListComp,
    ast.SetComp,
    ast.DictComp,
    ast.GeneratorExp,
)


def _top_level_stores(node: ast.AST) -> set[str]:
    """Names bound in the script's own scope (nested scopes excluded)."""

    if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Store):
        return {node.id}
    if isinstance(node, ast.FunctionDef):
        return {node.name}
    if isinstance(node, _NESTED_SCOPES):
        return set()
    names: set[str] = set()
    for child in ast.iter_child_nodes(node):
        names |= _top_level_stores(child)
    return names


class _PlaceholderRewriter(ast.NodeTransformer):
    def visit_Set(self, node: ast.Set) -> ast.AST:
        ref = _placeholder_ref(node)
        if ref is None:
            return self.generic_visit(node)
        call = ast.Call(
            func=ast.Name(id=_PLACEHOLDER_FUNCTION, ctx=ast.Load()),
            args=[ast.Constant(value=ref)],
            keywords=[],
        )
        return ast.copy_location(call, node)


class PythonScriptExecutor:
    """Evaluates restricted Python snippets against a run context."""

    def is_safe(self, code: str) -> tuple[bool, str | None]:
        if not code or not code.strip():
            return False, "Script cannot be null or empty."
        try:
            tree = ast.parse(code, mode="exec")
        except SyntaxError as e:
            return False, f"Invalid script: {e.msg} (line {e.lineno})"
        violation = _find_violation(tree)
        if violation is not None:
            return False, violation
        return True, None

    def evaluate(self, code: str, context: Mapping[str, object]) -> object:
        safe, reason = self.is_safe(code)
        if not safe:
            raise UnsafeScriptError(reason or "Script is not allowed.")

        code_object = self._compile(code)
        snapshot = dict(context)

        def _placeholder(ref: str) -> object:
            value = lookup(snapshot, ref)
            return None if is_missing(value) else value

        namespace: dict[str, object] = {
            "__builtins__": _SAFE_BUILTINS,
            **_script_modules(),
            **{k: v for k, v in snapshot.items() if k.isidentifier()},
            "context": MappingProxyType(snapshot),
            _PLACEHOLDER_FUNCTION: _placeholder,
        }

        try:
            exec(code_object, namespace)  # noqa: S102 (tree already scanned)
            script = namespace[_SCRIPT_FUNCTION]
            return script()  # type: ignore[operator]
        except Exception as e:
            logger.debug("Script raised", exc_info=True)
            raise ScriptRuntimeError(f"{type(e).__name__}: {e}") from e

    def _compile(self, code: str) -> CodeType:
        try:
            tree = ast.parse(code, mode="exec")
        except SyntaxError as e:
            raise ScriptCompileError(f"Script compilation failed: {e.msg} (line {e.lineno})") from e

        body = [_PlaceholderRewriter().visit(stmt) for stmt in tree.body]
        if body and isinstance(body[-1], ast.Expr):
            body[-1] = ast.copy_location(ast.Return(value=body[-1].value), body[-1])

        # Assignments write to the script namespace, not to function locals,
        # so `x = x + 1` reads the context value of x.
        assigned = sorted({name for stmt in body for name in _top_level_stores(stmt)})

        module = ast.parse(f"def {_SCRIPT_FUNCTION}():\n    pass\n", mode="exec")
        function = module.body[0]
        assert isinstance(function, ast.FunctionDef)
        prologue: list[ast.stmt] = [ast.Global(names=assigned)] if assigned else []
        function.body = prologue + (body or [ast.Pass()])
        ast.fix_missing_locations(module)

        try:
            return compile(module, "<workflow-script>", "exec")
        except SyntaxError as e:
            raise ScriptCompileError(f"Script compilation failed: {e.msg} (line {e.lineno})") from e
