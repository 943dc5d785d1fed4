"""Expression evaluator.

Evaluates parsed expressions against a RuleEvaluationContext by walking the
AST; left-deep operator and accessor chains are unwound iteratively.
Pure: the same expression and an equivalent context always give the same
value, and the context is never mutated.

Value semantics (no implicit coercion):
    < <= > >=    both numbers (bool is not a number) or both strings,
                 otherwise EvaluationError. Thresholds compare exactly.
    == !=        numbers compare numerically (1 == 1.0); other values are
                 equal only if they are the same kind and equal. Never raises.
    + - * / %    numbers; + also joins two strings. Division by zero raises.
    in           substring for strings, membership for lists, key for maps.
    && || ?? ?:  short-circuit and return operand values.
    truthiness   null, false, 0, '', empty list/map are falsy.
"""

from collections.abc import Mapping
from typing import Any

from captionarr.templates.context import RuleEvaluationContext, resolve_field
from captionarr.templates.errors import EvaluationError, ExpressionSyntaxError
from captionarr.templates.expression import (
    ArrayLiteral,
    Binary,
    Call,
    Conditional,
    Identifier,
    Index,
    Literal,
    Logical,
    Member,
    Node,
    Unary,
    parse_expression,
    to_source,
)
from captionarr.templates.helpers import HelperRegistry, get_registry
from captionarr.templates.helpers.numeric import is_number


def is_truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if is_number(value):
        return value != 0
    if isinstance(value, (str, list, tuple, Mapping)):
        return len(value) > 0
    return True


def values_equal(left: Any, right: Any) -> bool:
    if is_number(left) and is_number(right):
        return left == right
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if left is None or right is None:
        return left is right
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    if type(left) is not type(right):
        return False
    return left == right


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "list"
    if isinstance(value, Mapping):
        return "map"
    return type(value).__name__


class ExpressionEvaluator:
    """Evaluates expressions against a context.

    Usage:
        evaluator = ExpressionEvaluator()
        evaluator.evaluate("word.confidence >= 0.8", context)  # -> True

    evaluation_count counts top-level evaluate() calls; it exists so callers
    and tests can observe how often expressions actually run.
    """

    def __init__(self, helpers: HelperRegistry | None = None):
        self._helpers = helpers or get_registry()
        self.evaluation_count = 0

    def evaluate(
        self,
        expression: str | Node,
        context: RuleEvaluationContext,
        source: str | None = None,
    ) -> Any:
        """Evaluate an expression (text or pre-parsed AST).

        Args:
            expression: Expression text or AST from parse_expression()
            context: Evaluation context
            source: Original text of a pre-parsed AST, used in error messages

        Raises:
            ExpressionSyntaxError: expression text does not parse
            EvaluationError: unresolvable reference or type error
        """
        self.evaluation_count += 1
        if isinstance(expression, Node):
            node = expression
        else:
            node = parse_expression(expression)
            source = expression
        try:
            return self._eval(node, context)
        except EvaluationError as e:
            if not e.expression:
                e.expression = source if source is not None else to_source(node)
            raise
        except RecursionError:
            raise EvaluationError(
                "Expression is nested too deeply to evaluate",
                source or "",
                location=context.location,
            ) from None

    def evaluate_condition(
        self,
        expression: str | Node,
        context: RuleEvaluationContext,
        source: str | None = None,
    ) -> bool:
        """Evaluate an expression and reduce the result to a boolean."""
        return is_truthy(self.evaluate(expression, context, source))

    # -- recursion -------------------------------------------------------------

    def _error(self, message: str, node: Node, ctx: RuleEvaluationContext) -> EvaluationError:
        return EvaluationError(message, reference=to_source(node), location=ctx.location)

    def _eval(self, node: Node, ctx: RuleEvaluationContext) -> Any:
        if isinstance(node, Literal):
            return node.value

        if isinstance(node, Identifier):
            try:
                return ctx.root(node.name)
            except LookupError as e:
                raise self._error(e.args[0] if e.args else str(e), node, ctx) from None

        if isinstance(node, (Member, Index)):
            return self._access_chain(node, ctx)

        if isinstance(node, Logical):
            return self._logical(node, ctx)

        if isinstance(node, Conditional):
            if is_truthy(self._eval(node.test, ctx)):
                return self._eval(node.then, ctx)
            return self._eval(node.otherwise, ctx)

        if isinstance(node, Unary):
            value = self._eval(node.operand, ctx)
            if node.op == "!":
                return not is_truthy(value)
            if not is_number(value):
                raise self._error(f"Unary '{node.op}' expects a number, got {_kind(value)}", node, ctx)
            return -value if node.op == "-" else value

        if isinstance(node, Binary):
            return self._binary_chain(node, ctx)

        if isinstance(node, Call):
            return self._call(node, ctx)

        if isinstance(node, ArrayLiteral):
            return [self._eval(item, ctx) for item in node.items]

        raise self._error(f"Unsupported expression node {type(node).__name__}", node, ctx)

    def _access_chain(self, node: Member | Index, ctx: RuleEvaluationContext) -> Any:
        links = []
        while isinstance(node, (Member, Index)):
            links.append(node)
            node = node.obj
        obj = self._eval(node, ctx)
        for link in reversed(links):
            if isinstance(link, Index):
                if obj is None and link.optional:
                    continue
                obj = self._index(obj, self._eval(link.index, ctx), link, ctx)
                continue
            if obj is None:
                if link.optional:
                    continue
                raise self._error(f"Cannot read '{link.name}' of null", link, ctx)
            try:
                obj = resolve_field(obj, link.name)
            except KeyError:
                if not link.optional:
                    raise self._error(f"Unknown field '{link.name}' on {_kind(obj)}", link, ctx) from None
                obj = None
        return obj

    def _logical(self, node: Logical, ctx: RuleEvaluationContext) -> Any:
        # Left-deep chains (a || b || c ...) are walked without recursion.
        links = []
        while isinstance(node, Logical):
            links.append(node)
            node = node.left
        value = self._eval(node, ctx)
        for link in reversed(links):
            if link.op == "&&":
                if is_truthy(value):
                    value = self._eval(link.right, ctx)
            elif link.op == "||":
                if not is_truthy(value):
                    value = self._eval(link.right, ctx)
            elif value is None:  # ??
                value = self._eval(link.right, ctx)
        return value

    def _binary_chain(self, node: Binary, ctx: RuleEvaluationContext) -> Any:
        links = []
        while isinstance(node, Binary):
            links.append(node)
            node = node.left
        value = self._eval(node, ctx)
        for link in reversed(links):
            value = self._binary(link, value, self._eval(link.right, ctx), ctx)
        return value

    def _index(self, obj: Any, key: Any, node: Node, ctx: RuleEvaluationContext) -> Any:
        if isinstance(obj, (list, tuple, str)):
            if not isinstance(key, int) or isinstance(key, bool):
                raise self._error(f"List index must be an integer, got {_kind(key)}", node, ctx)
            if not -len(obj) <= key < len(obj):
                raise self._error(f"Index {key} out of range", node, ctx)
            return obj[key]
        if isinstance(key, str):
            try:
                return resolve_field(obj, key)
            except KeyError:
                raise self._error(f"Unknown field '{key}' on {_kind(obj)}", node, ctx) from None
        raise self._error(f"Cannot index {_kind(obj)} with {_kind(key)}", node, ctx)

    def _binary(self, node: Binary, left: Any, right: Any, ctx: RuleEvaluationContext) -> Any:
        op = node.op

        if op == "==":
            return values_equal(left, right)
        if op == "!=":
            return not values_equal(left, right)

        if op in ("<", "<=", ">", ">="):
            comparable = (is_number(left) and is_number(right)) or (
                isinstance(left, str) and isinstance(right, str)
            )
            if not comparable:
                raise self._error(f"Cannot compare {_kind(left)} {op} {_kind(right)}", node, ctx)
            if op == "<":
                return left < right
            if op == "<=":
                return left <= right
            if op == ">":
                return left > right
            return left >= right

        if op == "in":
            if isinstance(right, str):
                if not isinstance(left, str):
                    raise self._error(f"Cannot test {_kind(left)} in string", node, ctx)
                return left in right
            if isinstance(right, (list, tuple)):
                return any(values_equal(left, item) for item in right)
            if isinstance(right, Mapping):
                try:
                    return left in right
                except TypeError:
                    raise self._error(f"Cannot use {_kind(left)} as a map key", node, ctx) from None
            raise self._error(f"Cannot test membership in {_kind(right)}", node, ctx)

        if op == "+" and isinstance(left, str) and isinstance(right, str):
            return left + right

        if not (is_number(left) and is_number(right)):
            raise self._error(f"Cannot apply '{op}' to {_kind(left)} and {_kind(right)}", node, ctx)
        if op in ("/", "%") and right == 0:
            raise self._error("Division by zero", node, ctx)
        try:
            if op == "+":
                return left + right
            if op == "-":
                return left - right
            if op == "*":
                return left * right
            if op == "/":
                return left / right
            return left % right
        except OverflowError:
            raise self._error(f"Numeric overflow in '{op}'", node, ctx) from None

    def _call(self, node: Call, ctx: RuleEvaluationContext) -> Any:
        helper = self._helpers.get(node.name)
        if helper is None:
            raise self._error(f"Unknown helper '{node.name}'", node, ctx)
        if not helper.accepts(len(node.args)):
            raise self._error(
                f"{node.name}() takes {helper.arity_text} arguments, got {len(node.args)}",
                node,
                ctx,
            )
        args = [self._eval(arg, ctx) for arg in node.args]
        try:
            return helper.func(*args)
        except (TypeError, ValueError, ArithmeticError) as e:
            raise self._error(str(e), node, ctx) from e


def evaluate(expression: str | Node, context: RuleEvaluationContext) -> Any:
    """Evaluate an expression with a default evaluator."""
    return _default_evaluator.evaluate(expression, context)


_default_evaluator = ExpressionEvaluator()

__all__ = [
    "EvaluationError",
    "ExpressionEvaluator",
    "ExpressionSyntaxError",
    "evaluate",
    "is_truthy",
    "values_equal",
]
