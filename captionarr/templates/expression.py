"""Expression language for rule conditions and template variables.

Expressions are small, side-effect free and JavaScript-flavoured, so that
template authors can write conditions like:

    word.confidence >= 0.8 && segment.emotion == 'excited'
    contains(lower(word.text), 'wow') || word?.emphasis ?? false
    variables.avgConfidence > 0.7 ? 'strong' : 'weak'

The text is tokenized and parsed (recursive descent) into a closed AST of
frozen dataclasses. The evaluator walks the AST directly; nothing
is ever passed to Python's eval.

Precedence, lowest first:
    ?:    ??    || or    && and    == != === !==    < <= > >= in
    + -   * / %   ! not - + (unary)   . ?. [] () (postfix)
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from captionarr.templates.errors import ExpressionSyntaxError

MAX_NESTING_DEPTH = 64
MAX_NUMBER_LENGTH = 100
PARSE_CACHE_SIZE = 1024

KEYWORDS = {"true", "false", "null", "and", "or", "not", "in"}


# =============================================================================
# AST
# =============================================================================


@dataclass(frozen=True)
class Node:
    """Base AST node. pos is the offset of the node in the source text."""

    pos: int = field(default=0, compare=False, kw_only=True)


@dataclass(frozen=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True)
class ArrayLiteral(Node):
    items: tuple[Node, ...]


@dataclass(frozen=True)
class Identifier(Node):
    name: str


@dataclass(frozen=True)
class Member(Node):
    obj: Node
    name: str
    optional: bool = False


@dataclass(frozen=True)
class Index(Node):
    obj: Node
    index: Node
    optional: bool = False


@dataclass(frozen=True)
class Call(Node):
    name: str
    args: tuple[Node, ...]


@dataclass(frozen=True)
class Unary(Node):
    op: str  # "!", "-", "+"
    operand: Node


@dataclass(frozen=True)
class Binary(Node):
    op: str  # comparison, equality, arithmetic or "in"
    left: Node
    right: Node


@dataclass(frozen=True)
class Logical(Node):
    op: str  # "&&", "||", "??"
    left: Node
    right: Node


@dataclass(frozen=True)
class Conditional(Node):
    test: Node
    then: Node
    otherwise: Node


# =============================================================================
# TOKENIZER
# =============================================================================


@dataclass(frozen=True)
class Token:
    kind: str  # NUMBER | STRING | IDENT | OP | EOF
    value: Any
    pos: int


_OPERATORS = (
    "===", "!==", "==", "!=", "<=", ">=", "&&", "||", "??", "?.",
    "<", ">", "+", "-", "*", "/", "%", "!", "?", ":", ".", ",", "(", ")", "[", "]",
)  # fmt: skip

_NUMBER_RE = re.compile(r"(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_IDENT_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"', "0": "\0"}


def _is_digit(ch: str) -> bool:
    # ASCII only; str.isdigit() also accepts superscripts and other scripts
    return "0" <= ch <= "9"


def tokenize(source: str) -> list[Token]:
    """Split expression text into tokens."""
    tokens: list[Token] = []
    i = 0
    length = len(source)

    while i < length:
        ch = source[i]

        if ch.isspace():
            i += 1
            continue

        if _is_digit(ch) or (ch == "." and i + 1 < length and _is_digit(source[i + 1])):
            match = _NUMBER_RE.match(source, i)
            text = match.group(0)
            if len(text) > MAX_NUMBER_LENGTH:
                raise ExpressionSyntaxError("Number literal is too long", source, i)
            value: int | float = float(text) if any(c in text for c in ".eE") else int(text)
            tokens.append(Token("NUMBER", value, i))
            i = match.end()
            continue

        if ch in ("'", '"'):
            text, end = _read_string(source, i)
            tokens.append(Token("STRING", text, i))
            i = end
            continue

        match = _IDENT_RE.match(source, i)
        if match:
            tokens.append(Token("IDENT", match.group(0), i))
            i = match.end()
            continue

        for op in _OPERATORS:
            if source.startswith(op, i):
                # "?." followed by a digit is a ternary with a decimal literal
                if op == "?." and i + 2 < length and _is_digit(source[i + 2]):
                    continue
                tokens.append(Token("OP", op, i))
                i += len(op)
                break
        else:
            raise ExpressionSyntaxError(f"Unexpected character '{ch}'", source, i)

    tokens.append(Token("EOF", None, length))
    return tokens


def _read_string(source: str, start: int) -> tuple[str, int]:
    """Read a quoted string starting at start. Returns (text, end offset)."""
    quote = source[start]
    chars: list[str] = []
    i = start + 1
    while i < len(source):
        ch = source[i]
        if ch == "\\":
            if i + 1 >= len(source):
                break
            nxt = source[i + 1]
            chars.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    raise ExpressionSyntaxError("Unterminated string literal", source, start)


# =============================================================================
# PARSER
# =============================================================================

_EQUALITY_OPS = {"==", "!=", "===", "!=="}
_COMPARISON_OPS = {"<", "<=", ">", ">="}


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.index = 0
        self.depth = 0

    # -- token helpers -------------------------------------------------------

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _is_op(self, *ops: str) -> bool:
        token = self.current
        return token.kind == "OP" and token.value in ops

    def _is_keyword(self, *words: str) -> bool:
        token = self.current
        return token.kind == "IDENT" and token.value in words

    def _expect_op(self, op: str) -> Token:
        if not self._is_op(op):
            self._fail(f"Expected '{op}'")
        return self._advance()

    def _fail(self, message: str) -> None:
        token = self.current
        found = "end of expression" if token.kind == "EOF" else f"'{token.value}'"
        raise ExpressionSyntaxError(f"{message}, found {found}", self.source, token.pos)

    # -- grammar ---------------------------------------------------------------

    def parse(self) -> Node:
        if self.current.kind == "EOF":
            raise ExpressionSyntaxError("Empty expression", self.source, 0)
        node = self._conditional()
        if self.current.kind != "EOF":
            self._fail("Unexpected token")
        return node

    def _conditional(self) -> Node:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise ExpressionSyntaxError("Expression nested too deeply", self.source, self.current.pos)
        try:
            test = self._nullish()
            if self._is_op("?"):
                pos = self._advance().pos
                then = self._conditional()
                self._expect_op(":")
                otherwise = self._conditional()
                return Conditional(test, then, otherwise, pos=pos)
            return test
        finally:
            self.depth -= 1

    def _nullish(self) -> Node:
        node = self._or()
        while self._is_op("??"):
            pos = self._advance().pos
            node = Logical("??", node, self._or(), pos=pos)
        return node

    def _or(self) -> Node:
        node = self._and()
        while self._is_op("||") or self._is_keyword("or"):
            pos = self._advance().pos
            node = Logical("||", node, self._and(), pos=pos)
        return node

    def _and(self) -> Node:
        node = self._equality()
        while self._is_op("&&") or self._is_keyword("and"):
            pos = self._advance().pos
            node = Logical("&&", node, self._equality(), pos=pos)
        return node

    def _equality(self) -> Node:
        node = self._comparison()
        while self.current.kind == "OP" and self.current.value in _EQUALITY_OPS:
            token = self._advance()
            # === and !== behave exactly like == and != (no implicit coercion either way)
            op = token.value[:2]
            node = Binary(op, node, self._comparison(), pos=token.pos)
        return node

    def _comparison(self) -> Node:
        node = self._additive()
        while (self.current.kind == "OP" and self.current.value in _COMPARISON_OPS) or self._is_keyword("in"):
            token = self._advance()
            node = Binary(token.value, node, self._additive(), pos=token.pos)
        return node

    def _additive(self) -> Node:
        node = self._multiplicative()
        while self._is_op("+", "-"):
            token = self._advance()
            node = Binary(token.value, node, self._multiplicative(), pos=token.pos)
        return node

    def _multiplicative(self) -> Node:
        node = self._unary()
        while self._is_op("*", "/", "%"):
            token = self._advance()
            node = Binary(token.value, node, self._unary(), pos=token.pos)
        return node

    def _unary(self) -> Node:
        if self._is_op("!", "-", "+") or self._is_keyword("not"):
            token = self._advance()
            op = "!" if token.value == "not" else token.value
            self.depth += 1
            if self.depth > MAX_NESTING_DEPTH:
                raise ExpressionSyntaxError("Expression nested too deeply", self.source, token.pos)
            try:
                return Unary(op, self._unary(), pos=token.pos)
            finally:
                self.depth -= 1
        return self._postfix()

    def _postfix(self) -> Node:
        node = self._primary()
        while True:
            if self._is_op(".", "?."):
                token = self._advance()
                name = self.current
                if name.kind != "IDENT":
                    self._fail("Expected property name")
                self._advance()
                node = Member(node, name.value, optional=token.value == "?.", pos=token.pos)
            elif self._is_op("["):
                pos = self._advance().pos
                index = self._conditional()
                self._expect_op("]")
                node = Index(node, index, pos=pos)
            elif self._is_op("("):
                node = self._call(node)
            else:
                return node

    def _call(self, callee: Node) -> Node:
        if isinstance(callee, Identifier):
            name = callee.name
        elif isinstance(callee, Member) and isinstance(callee.obj, Identifier) and callee.obj.name == "helpers":
            name = callee.name
        else:
            self._fail("Only helper functions can be called")
        pos = self._advance().pos
        args: list[Node] = []
        if not self._is_op(")"):
            args.append(self._conditional())
            while self._is_op(","):
                self._advance()
                args.append(self._conditional())
        self._expect_op(")")
        return Call(name, tuple(args), pos=pos)

    def _primary(self) -> Node:
        token = self.current

        if token.kind == "NUMBER":
            self._advance()
            return Literal(token.value, pos=token.pos)

        if token.kind == "STRING":
            self._advance()
            return Literal(token.value, pos=token.pos)

        if token.kind == "IDENT":
            if token.value in ("true", "false"):
                self._advance()
                return Literal(token.value == "true", pos=token.pos)
            if token.value == "null":
                self._advance()
                return Literal(None, pos=token.pos)
            if token.value in KEYWORDS:
                self._fail("Unexpected keyword")
            self._advance()
            return Identifier(token.value, pos=token.pos)

        if self._is_op("("):
            self._advance()
            node = self._conditional()
            self._expect_op(")")
            return node

        if self._is_op("["):
            pos = self._advance().pos
            items: list[Node] = []
            if not self._is_op("]"):
                items.append(self._conditional())
                while self._is_op(","):
                    self._advance()
                    items.append(self._conditional())
            self._expect_op("]")
            return ArrayLiteral(tuple(items), pos=pos)

        self._fail("Expected a value")


def parse_expression(source: str) -> Node:
    """Parse expression text into an AST.

    ASTs are immutable, so parses are memoized by source text.

    Raises:
        ExpressionSyntaxError: text is not a valid expression
    """
    if not isinstance(source, str):
        raise ExpressionSyntaxError(f"Expression must be a string, got {type(source).__name__}")
    return _parse_cached(source)


@lru_cache(maxsize=PARSE_CACHE_SIZE)
def _parse_cached(source: str) -> Node:
    return _Parser(source).parse()


# =============================================================================
# ANALYSIS
# =============================================================================


def iter_nodes(node: Node) -> Iterator[Node]:
    """Yield node and all of its descendants, depth first."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        if isinstance(current, (Member, Unary)):
            stack.append(current.obj if isinstance(current, Member) else current.operand)
        elif isinstance(current, Index):
            stack.extend((current.index, current.obj))
        elif isinstance(current, (Binary, Logical)):
            stack.extend((current.right, current.left))
        elif isinstance(current, Conditional):
            stack.extend((current.otherwise, current.then, current.test))
        elif isinstance(current, Call):
            stack.extend(reversed(current.args))
        elif isinstance(current, ArrayLiteral):
            stack.extend(reversed(current.items))


def node_count(node: Node) -> int:
    return sum(1 for _ in iter_nodes(node))


def clause_count(node: Node) -> int:
    """Number of clauses in a condition, used as its specificity.

    Operands of && / || and the operand of ! are counted recursively;
    any other sub-expression is one clause, constants are zero.
    """
    total = 0
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, Logical) and current.op in ("&&", "||"):
            stack.extend((current.right, current.left))
        elif isinstance(current, Unary) and current.op == "!":
            stack.append(current.operand)
        elif isinstance(current, Conditional):
            total += clause_count(current.test) + max(clause_count(current.then), clause_count(current.otherwise))
        elif not isinstance(current, (Literal, ArrayLiteral)):
            total += 1
    return total


def root_names(node: Node) -> set[str]:
    """Identifiers referenced at the root of member chains."""
    return {n.name for n in iter_nodes(node) if isinstance(n, Identifier)}


def variable_references(node: Node) -> set[str]:
    """Names referenced as variables.<name> or variables['name']."""
    names = set()
    for n in iter_nodes(node):
        if isinstance(n, Member) and isinstance(n.obj, Identifier) and n.obj.name == "variables":
            names.add(n.name)
        elif (
            isinstance(n, Index)
            and isinstance(n.obj, Identifier)
            and n.obj.name == "variables"
            and isinstance(n.index, Literal)
            and isinstance(n.index.value, str)
        ):
            names.add(n.index.value)
    return names


def calls(node: Node) -> list[Call]:
    return [n for n in iter_nodes(node) if isinstance(n, Call)]


def to_source(node: Node) -> str:
    """Render an AST back to canonical expression text (for diagnostics)."""
    # Operator and accessor chains are unwound along their left spine, so
    # long generated conditions render without deep recursion.
    links = []
    while isinstance(node, (Binary, Logical, Member, Index)):
        links.append(node)
        node = node.obj if isinstance(node, (Member, Index)) else node.left
    text = _leaf_source(node)
    for link in reversed(links):
        if isinstance(link, Member):
            text = f"{text}{'?.' if link.optional else '.'}{link.name}"
        elif isinstance(link, Index):
            text = f"{text}[{to_source(link.index)}]"
        else:
            text = f"({text} {link.op} {to_source(link.right)})"
    return text


def _leaf_source(node: Node) -> str:
    if isinstance(node, Literal):
        if node.value is None:
            return "null"
        if isinstance(node.value, bool):
            return "true" if node.value else "false"
        if isinstance(node.value, str):
            return "'" + node.value.replace("\\", "\\\\").replace("'", "\\'") + "'"
        return repr(node.value)
    if isinstance(node, ArrayLiteral):
        return "[" + ", ".join(to_source(i) for i in node.items) + "]"
    if isinstance(node, Identifier):
        return node.name
    if isinstance(node, Call):
        return f"{node.name}({', '.join(to_source(a) for a in node.args)})"
    if isinstance(node, Unary):
        return f"{node.op}{to_source(node.operand)}"
    if isinstance(node, Conditional):
        return f"({to_source(node.test)} ? {to_source(node.then)} : {to_source(node.otherwise)})"
    return "<?>"
