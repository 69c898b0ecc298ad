"""Restricted evaluator for TEXT_MANIPULATION function bodies.

A function body is a single expression over ``inputs`` (the task's resolved
named inputs), for example::

    inputs.article.upper()
    concat(inputs.title, ": ", inputs.summary)
    [line.strip() for line in inputs.text.split("\\n") if line]

A leading ``return`` and a trailing ``;`` are tolerated so bodies written as
one-line functions still work. Evaluation sees only ``inputs``, the named
operators in OPERATORS and a handful of safe builtins. Attribute access is
limited to input names (``inputs.article``) and the str/list/dict methods in
ALLOWED_METHODS; dunders, imports, lambdas, generator expressions and
assignments are rejected before anything runs.
"""

import ast
import json
from typing import Any, Callable, Optional

from core.exceptions import TaskExecutionError
from workflow.templates import MISSING, TemplateEngine


# ─── Attribute-style inputs ───────────────────────────────────

class _DotDict(dict):
    """Dict that supports attribute-style access for expressions."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"No input named '{name}'")

    def __setattr__(self, name, value):
        self[name] = value


def _make_dot_dict(obj, _depth=0, _max_depth=50):
    """Recursively convert dicts to _DotDict for expression access."""
    if _depth >= _max_depth:
        return obj
    if isinstance(obj, dict) and not isinstance(obj, _DotDict):
        return _DotDict({k: _make_dot_dict(v, _depth + 1, _max_depth) for k, v in obj.items()})
    elif isinstance(obj, list):
        return [_make_dot_dict(item, _depth + 1, _max_depth) for item in obj]
    return obj


def _to_plain(obj):
    if isinstance(obj, dict):
        return {k: _to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_plain(v) for v in obj]
    return obj


# ─── Named operators ──────────────────────────────────────────

def _concat(*parts: Any, sep: str = "") -> str:
    return sep.join(TemplateEngine.format_value(p) for p in parts if p is not None)


def _extract(obj: Any, path: str, default: Any = None) -> Any:
    value = TemplateEngine.get_path(obj, path)
    return default if value is MISSING else value


def _join(items: Any, sep: str = ", ") -> str:
    return sep.join(TemplateEngine.format_value(item) for item in items)


def _json_dumps(value: Any) -> str:
    return json.dumps(_to_plain(value), indent=2, ensure_ascii=False, default=str)


OPERATORS: dict[str, Callable[..., Any]] = {
    "upper": lambda text: str(text).upper(),
    "lower": lambda text: str(text).lower(),
    "strip": lambda text: str(text).strip(),
    "split": lambda text, sep=None: str(text).split(sep),
    "concat": _concat,
    "join": _join,
    "extract": _extract,
    "length": len,
    "json_dumps": _json_dumps,
    "json_loads": json.loads,
}

SAFE_BUILTINS: dict[str, Any] = {
    "True": True, "False": False, "None": None,
    "len": len, "str": str, "int": int, "float": float, "bool": bool,
    "list": list, "dict": dict, "abs": abs, "min": min, "max": max,
    "round": round, "sorted": sorted, "sum": sum, "range": range,
    "enumerate": enumerate, "zip": zip, "any": any, "all": all,
}

_FORBIDDEN_NODES = (
    ast.Lambda,
    ast.NamedExpr,
    ast.Await,
    ast.Yield,
    ast.YieldFrom,
    ast.GeneratorExp,
)

# Methods of str / list / dict values a body may call
ALLOWED_METHODS = frozenset({
    # str
    "upper", "lower", "strip", "lstrip", "rstrip", "split", "rsplit",
    "splitlines", "replace", "startswith", "endswith", "title", "capitalize",
    "casefold", "join", "find", "rfind", "count", "zfill", "center",
    "ljust", "rjust", "isdigit", "isalpha", "isalnum", "isspace",
    "islower", "isupper",
    # list
    "index",
    # dict
    "get", "keys", "values", "items",
})


# ─── Evaluation ───────────────────────────────────────────────

def _normalize(body: str) -> str:
    expr = body.strip()
    if expr.startswith("return ") or expr.startswith("return\n"):
        expr = expr[len("return"):].strip()
    while expr.endswith(";"):
        expr = expr[:-1].rstrip()
    return expr


def _is_input_path(node: ast.AST) -> bool:
    """True for ``inputs``, ``inputs.a.b`` or ``inputs['a'][0]`` (no calls in between)."""
    while isinstance(node, (ast.Attribute, ast.Subscript)):
        node = node.value
    return isinstance(node, ast.Name) and node.id == "inputs"


def _check_tree(tree: ast.AST) -> None:
    for node in ast.walk(tree):
        if isinstance(node, _FORBIDDEN_NODES):
            raise TaskExecutionError(f"'{type(node).__name__}' is not allowed in a function body")
        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_"):
                raise TaskExecutionError(f"Access to attribute '{node.attr}' is not allowed")
            # input names resolve through the data, anything else must be an allowed method
            if node.attr not in ALLOWED_METHODS and not _is_input_path(node.value):
                raise TaskExecutionError(f"Access to attribute '{node.attr}' is not allowed")
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise TaskExecutionError(f"Access to name '{node.id}' is not allowed")
        if isinstance(node, ast.Name) and node.id == "inputs" and not isinstance(node.ctx, ast.Load):
            raise TaskExecutionError("'inputs' cannot be rebound in a function body")
        if isinstance(node, ast.Constant) and isinstance(node.value, str) and "__" in node.value:
            raise TaskExecutionError("Dunder names are not allowed in string literals")


def compile_function_body(body: str):
    """Parse and validate ``body``; returns a code object."""
    expr = _normalize(body)
    if not expr:
        raise TaskExecutionError("Function body is empty")
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError as e:
        raise TaskExecutionError(f"Invalid expression: {e.msg}") from e
    _check_tree(tree)
    return compile(tree, "<functionBody>", "eval")


def evaluate_function_body(body: str, inputs: dict[str, Any], extra: Optional[dict[str, Any]] = None) -> Any:
    """Evaluate ``body`` over ``inputs`` and return a plain JSON-like value."""
    code = compile_function_body(body)
    namespace: dict[str, Any] = {
        **OPERATORS,
        "template": lambda text: TemplateEngine.render(str(text), inputs),
        "inputs": _make_dot_dict(dict(inputs)),
    }
    if extra:
        namespace.update(extra)
    # Single namespace so comprehension scopes can see the operators
    result = eval(code, {"__builtins__": SAFE_BUILTINS, **namespace})
    return _to_plain(result)
