# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Safe Condition Evaluator

AST-based evaluation of boolean conditions used by if/else and filter nodes.
User expressions are never executed as code: only literals, arithmetic,
comparisons, boolean logic, field access and a small set of functions and
methods are accepted.

Workflow authors write conditions in a JavaScript-flavoured syntax
(``{{input.count}} > 5 && {{input.status}} === "ok"``). Template tokens are
bound to variables rather than pasted into the source text, and the JS
operators are rewritten to their Python equivalents outside string literals.
"""

import ast
import operator
import re
from typing import Any, Dict, Optional, Tuple

from flowrunner.core.logging import get_service_logger
from flowrunner.engine.expressions import MISSING, resolve_path, to_text

logger = get_service_logger("conditions")


class _Undefined:
    """Value of a token whose path did not resolve. Orders against nothing."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "undefined"

    def __bool__(self):
        return False


UNDEFINED = _Undefined()


# Allowed operators for safe evaluation
SAFE_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.And: operator.and_,
    ast.Or: operator.or_,
    ast.Not: operator.not_,
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


# Allowed functions for safe evaluation
SAFE_FUNCTIONS = {
    'len': len,
    'str': str,
    'int': int,
    'float': float,
    'bool': bool,
    'abs': abs,
    'min': min,
    'max': max,
    'round': round,
}

# JS literal names
SAFE_NAMES = {
    'true': True,
    'false': False,
    'null': None,
    'undefined': UNDEFINED,
    'True': True,
    'False': False,
    'None': None,
}


def _js_includes(target, item):
    return item in target


# Methods callable on values: name -> (accepted receiver types, implementation)
SAFE_METHODS = {
    'includes': ((str, list), _js_includes),
    'startsWith': ((str,), lambda s, prefix: s.startswith(prefix)),
    'endsWith': ((str,), lambda s, suffix: s.endswith(suffix)),
    'toLowerCase': ((str,), lambda s: s.lower()),
    'toUpperCase': ((str,), lambda s: s.upper()),
    'trim': ((str,), lambda s: s.strip()),
    'lower': ((str,), lambda s: s.lower()),
    'upper': ((str,), lambda s: s.upper()),
    'strip': ((str,), lambda s: s.strip()),
}


class SafeEvaluator(ast.NodeVisitor):
    """
    AST-based safe evaluator for boolean expressions.

    Restricts evaluation to:
    - Literals (numbers, strings, lists, dicts) and JS-style true/false/null
    - Arithmetic, comparison and logical operators
    - Subscripts and ``.length`` / whitelisted method calls on values
    - Safe built-in functions (len, str, int, etc.)
    - Variable references from provided context
    """

    def __init__(self, variables: Dict[str, Any]):
        self.variables = variables

    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_Constant(self, node):
        return node.value

    def visit_Name(self, node):
        if node.id in self.variables:
            return self.variables[node.id]
        elif node.id in SAFE_NAMES:
            return SAFE_NAMES[node.id]
        elif node.id in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[node.id]
        else:
            raise ValueError(f"Undefined variable: {node.id}")

    def visit_List(self, node):
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node):
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_Dict(self, node):
        return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values)}

    def visit_Subscript(self, node):
        value = self.visit(node.value)
        key = self.visit(node.slice)
        if isinstance(value, dict):
            return value.get(key, UNDEFINED)
        if isinstance(value, (list, str)) and isinstance(key, int) and not isinstance(key, bool):
            return value[key] if -len(value) <= key < len(value) else UNDEFINED
        raise TypeError(f"Cannot index {type(value).__name__}")

    def visit_Attribute(self, node):
        value = self.visit(node.value)
        if node.attr == "length" and isinstance(value, (str, list, dict)):
            return len(value)
        if isinstance(value, dict):
            return value.get(node.attr, UNDEFINED)
        raise ValueError(f"Attribute not allowed: {node.attr}")

    def visit_BinOp(self, node):
        left = self.visit(node.left)
        right = self.visit(node.right)
        op_type = type(node.op)

        if op_type not in SAFE_OPERATORS:
            raise ValueError(f"Operator not allowed: {op_type.__name__}")

        return SAFE_OPERATORS[op_type](left, right)

    def visit_UnaryOp(self, node):
        operand = self.visit(node.operand)
        op_type = type(node.op)

        if op_type not in SAFE_OPERATORS:
            raise ValueError(f"Operator not allowed: {op_type.__name__}")

        return SAFE_OPERATORS[op_type](operand)

    def visit_Compare(self, node):
        left = self.visit(node.left)

        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            op_type = type(op)

            if op_type not in SAFE_OPERATORS:
                raise ValueError(f"Operator not allowed: {op_type.__name__}")

            if not SAFE_OPERATORS[op_type](left, right):
                return False

            left = right

        return True

    def visit_BoolOp(self, node):
        # Short-circuit like the source language does
        if isinstance(node.op, ast.And):
            result = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        elif isinstance(node.op, ast.Or):
            result = False
            for value in node.values:
                result = self.visit(value)
                if result:
                    return result
            return result
        raise ValueError(f"Boolean operator not allowed: {type(node.op).__name__}")

    def visit_IfExp(self, node):
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Call(self, node):
        if node.keywords:
            raise ValueError("Keyword arguments not allowed")
        args = [self.visit(arg) for arg in node.args]

        if isinstance(node.func, ast.Attribute):
            receiver = self.visit(node.func.value)
            method = SAFE_METHODS.get(node.func.attr)
            if method is None:
                raise ValueError(f"Method not allowed: {node.func.attr}")
            types, impl = method
            if not isinstance(receiver, types):
                raise TypeError(f"{node.func.attr} not supported on {type(receiver).__name__}")
            return impl(receiver, *args)

        func = self.visit(node.func)
        if not any(func is f for f in SAFE_FUNCTIONS.values()):
            raise ValueError(f"Function not allowed: {getattr(node.func, 'id', 'unknown')}")

        return func(*args)

    def generic_visit(self, node):
        raise ValueError(f"AST node type not allowed: {type(node).__name__}")


# Quoted string literal (single or double, with escapes)
_STRING_LITERAL = re.compile(r"""("(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')""")
_CONDITION_TOKEN = re.compile(r"\{\{\s*input(?:\.([\w.\[\]]+))?\s*\}\}")

_JS_OPERATORS = [
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
]


def _lookup(data: Any, path: str) -> Any:
    if path is None:
        return data
    resolved = resolve_path(data, path)
    return UNDEFINED if resolved is MISSING else resolved


def _normalize_code(segment: str) -> str:
    for pattern, replacement in _JS_OPERATORS:
        segment = pattern.sub(replacement, segment)
    return segment


def bind_condition(condition: str, data: Any) -> Tuple[str, Dict[str, Any]]:
    """
    Turn an authored condition into a Python expression plus its variables.

    Tokens outside string literals become ``var_N`` names bound to the
    resolved values. Tokens inside a quoted literal are interpolated as text.
    """
    variables: Dict[str, Any] = {}

    def bind(match: re.Match) -> str:
        name = f"var_{len(variables)}"
        variables[name] = _lookup(data, match.group(1))
        return f" {name} "

    def interpolate(match: re.Match) -> str:
        value = _lookup(data, match.group(1))
        text = "undefined" if value is UNDEFINED else to_text(value)
        return text.replace("\\", "\\\\").replace('"', '\\"').replace("'", "\\'")

    parts = _STRING_LITERAL.split(condition)
    out = []
    for i, part in enumerate(parts):
        if i % 2 == 1:
            out.append(_CONDITION_TOKEN.sub(interpolate, part))
        else:
            code = _CONDITION_TOKEN.sub(bind, part)
            out.append(_normalize_code(code))
    return "".join(out).strip(), variables


def evaluate_expression(expression: str, variables: Dict[str, Any]) -> Any:
    """
    Safely evaluate an already-bound Python expression.

    Raises:
        ValueError: If the expression uses unsafe operations
        SyntaxError: If the expression has syntax errors
    """
    tree = ast.parse(expression, mode='eval')
    return SafeEvaluator(variables).visit(tree)


def evaluate_condition(condition: str, data: Any, names: Optional[Dict[str, Any]] = None) -> bool:
    """
    Evaluate an authored boolean condition against a node's input.

    Fail-closed: an empty, malformed or type-invalid condition returns False
    and never raises.

    Args:
        condition: Authored condition text
        data: Value ``{{input...}}`` tokens resolve against
        names: Extra plain names in scope (the filter node binds ``item``)

    Examples:
        >>> evaluate_condition("{{input.value}} > 5", {"value": 10})
        True
        >>> evaluate_condition("{{input.missing}} > 5", {})
        False
        >>> evaluate_condition("item.age >= 18", None, {"item": {"age": 20}})
        True
    """
    if not condition or not str(condition).strip():
        return False

    try:
        expression, variables = bind_condition(str(condition).strip(), data)
        if names:
            variables = {**names, **variables}
        return bool(evaluate_expression(expression, variables))
    except Exception as e:
        logger.debug(
            "Condition evaluated to false on error",
            extra={"condition": condition, "error": str(e)}
        )
        return False
