from __future__ import annotations

import math
from typing import Any, Mapping

from footprints.types import ID_PROPERTY

Expression = list[Any]

# An id no catalog uses; filters matching it render nothing.
NONE_ID = "__none__"


class ExpressionError(ValueError):
    pass


def to_text(value: Any) -> str:
    """
    String coercion with the rendering engine's `to-string` semantics.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def get_prop(prop: str) -> Expression:
    return ["get", prop]


def id_equals(feature_id: str) -> Expression:
    return ["==", get_prop(ID_PROPERTY), str(feature_id)]


def id_in(feature_ids: list[str]) -> Expression:
    return ["in", get_prop(ID_PROPERTY), ["literal", [str(i) for i in feature_ids]]]


def match_nothing() -> Expression:
    return id_equals(NONE_ID)


def match_no_highlight() -> Expression:
    # Highlight layers idle on an empty id.
    return id_equals("")


def evaluate(expression: Expression | None, props: Mapping[str, Any]) -> bool:
    """
    Evaluate a filter expression the way the rendering engine would.

    `None` means "no filter". An expression that fails to evaluate (type error,
    unknown operator) filters the feature out instead of raising.
    """
    if expression is None:
        return True
    try:
        return _eval(expression, props) is True
    except ExpressionError:
        return False


def _eval(expr: Any, props: Mapping[str, Any]) -> Any:
    if not isinstance(expr, list):
        return expr
    if not expr:
        raise ExpressionError("empty expression")
    op = expr[0]
    args = expr[1:]

    if op == "literal":
        return args[0] if args else None
    if op == "get":
        return props.get(str(args[0]))
    if op == "has":
        return props.get(str(args[0])) is not None
    if op == "to-string":
        return to_text(_eval(args[0], props))
    if op == "downcase":
        v = _eval(args[0], props)
        if not isinstance(v, str):
            raise ExpressionError("downcase expects a string")
        return v.lower()
    if op == "all":
        return all(_eval(a, props) is True for a in args)
    if op == "any":
        return any(_eval(a, props) is True for a in args)
    if op == "!":
        return not (_eval(args[0], props) is True)
    if op in ("==", "!="):
        left = _eval(args[0], props)
        right = _eval(args[1], props)
        eq = left == right and type(left) is type(right)
        return eq if op == "==" else not eq
    if op in (">=", "<=", ">", "<"):
        return _compare(op, _eval(args[0], props), _eval(args[1], props))
    if op == "in":
        needle = _eval(args[0], props)
        haystack = _eval(args[1], props)
        if haystack is None:
            return False
        if isinstance(haystack, str):
            if not isinstance(needle, str):
                raise ExpressionError("string `in` expects a string needle")
            return needle in haystack
        if isinstance(haystack, list):
            return needle in haystack
        raise ExpressionError("`in` expects a string or array")
    raise ExpressionError(f"unsupported operator: {op!r}")


def _compare(op: str, left: Any, right: Any) -> bool:
    both_str = isinstance(left, str) and isinstance(right, str)
    both_num = (
        isinstance(left, (int, float))
        and isinstance(right, (int, float))
        and not isinstance(left, bool)
        and not isinstance(right, bool)
    )
    if not (both_str or both_num):
        raise ExpressionError(f"cannot compare {type(left).__name__} with {type(right).__name__}")
    if op == ">=":
        return left >= right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left < right
