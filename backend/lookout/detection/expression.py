"""Boolean expression language for expression rules.

A small CEL subset evaluated against a single event:

    has(dns.question.name) && dns.question.name.endsWith('.malicious.com')
    event.action == "login" && source.port in [22, 2222]
    size(process.name) > 0 && !process.name.matches("^(sh|bash)$")

Supported: string/number/boolean/null literals, list literals, dotted field
paths, ``== != < <= > >=``, ``&& || !``, unary minus, parentheses, ``in``,
``has(field)``, ``size(x)`` and the methods ``startsWith``, ``endsWith``,
``contains``, ``matches`` and ``size``.

Field paths that are absent on the event evaluate to null. String methods
on a null or non-string receiver are false, and ordering comparisons that
mix incompatible types are false rather than errors.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from lookout.exceptions import ExpressionSyntaxError
from lookout.schemas.events import NormalizedEvent

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+\.\d+|\d+)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<ident>[A-Za-z_@][A-Za-z0-9_@]*)
  | (?P<op>&&|\|\||==|!=|<=|>=|<|>|!|-|\(|\)|\[|\]|,|\.)
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}

STRING_METHODS = {"startsWith", "endsWith", "contains", "matches"}
FUNCTIONS = {"has", "size"}


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    position: int


def tokenize(source: str) -> list[Token]:
    """Split an expression into tokens.

    Raises:
        ExpressionSyntaxError: On characters outside the language
    """
    tokens = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_PATTERN.match(source, pos)
        if not match:
            raise ExpressionSyntaxError(f"Unexpected character {source[pos]!r}", position=pos)
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "number":
            tokens.append(Token("number", float(text) if "." in text else int(text), pos))
        elif kind == "string":
            tokens.append(Token("string", _unescape(text[1:-1]), pos))
        elif kind == "ident":
            tokens.append(Token("ident", text, pos))
        elif kind == "op":
            tokens.append(Token("op", text, pos))
        pos = match.end()
    tokens.append(Token("end", None, len(source)))
    return tokens


def _unescape(text: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), text)


# =============================================================================
# Syntax tree
# =============================================================================


class Node:
    """Base class for expression nodes."""

    def evaluate(self, event: NormalizedEvent) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Node):
    value: Any

    def evaluate(self, event: NormalizedEvent) -> Any:
        return self.value


@dataclass(frozen=True)
class Field(Node):
    path: str

    def evaluate(self, event: NormalizedEvent) -> Any:
        return event.get(self.path)


@dataclass(frozen=True)
class ListLiteral(Node):
    items: tuple[Node, ...]

    def evaluate(self, event: NormalizedEvent) -> list[Any]:
        return [item.evaluate(event) for item in self.items]


@dataclass(frozen=True)
class Unary(Node):
    operator: str
    operand: Node

    def evaluate(self, event: NormalizedEvent) -> Any:
        value = self.operand.evaluate(event)
        if self.operator == "!":
            return not _truthy(value)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return -value
        return None


@dataclass(frozen=True)
class Logical(Node):
    operator: str
    left: Node
    right: Node

    def evaluate(self, event: NormalizedEvent) -> bool:
        left = _truthy(self.left.evaluate(event))
        if self.operator == "&&":
            return left and _truthy(self.right.evaluate(event))
        return left or _truthy(self.right.evaluate(event))


@dataclass(frozen=True)
class Compare(Node):
    operator: str
    left: Node
    right: Node

    def evaluate(self, event: NormalizedEvent) -> bool:
        left = self.left.evaluate(event)
        right = self.right.evaluate(event)

        if self.operator == "==":
            return left == right
        if self.operator == "!=":
            return left != right
        if left is None or right is None:
            return False

        try:
            match self.operator:
                case "<":
                    return left < right
                case "<=":
                    return left <= right
                case ">":
                    return left > right
                case ">=":
                    return left >= right
        except TypeError:
            return False
        return False


@dataclass(frozen=True)
class Membership(Node):
    element: Node
    container: Node

    def evaluate(self, event: NormalizedEvent) -> bool:
        element = self.element.evaluate(event)
        container = self.container.evaluate(event)
        if isinstance(container, (list, tuple)):
            return element in container
        if isinstance(container, str) and isinstance(element, str):
            return element in container
        if isinstance(container, dict):
            return element in container
        return False


@dataclass(frozen=True)
class Call(Node):
    """Function call (``has(x)``, ``size(x)``) or method call (``x.contains(y)``)."""

    name: str
    args: tuple[Node, ...]
    receiver: Node | None = None

    def evaluate(self, event: NormalizedEvent) -> Any:
        if self.receiver is None:
            if self.name == "has":
                return self.args[0].evaluate(event) is not None
            return _size(self.args[0].evaluate(event))

        target = self.receiver.evaluate(event)
        if self.name == "size":
            return _size(target)

        argument = self.args[0].evaluate(event)
        if not isinstance(target, str) or not isinstance(argument, str):
            return False

        match self.name:
            case "startsWith":
                return target.startswith(argument)
            case "endsWith":
                return target.endswith(argument)
            case "contains":
                return argument in target
            case "matches":
                return _search(argument, target)
        return False


def _truthy(value: Any) -> bool:
    return bool(value) if value is not None else False


def _size(value: Any) -> int:
    if value is None:
        return 0
    try:
        return len(value)
    except TypeError:
        return 0


@lru_cache(maxsize=256)
def _regex(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error:
        return None


def _search(pattern: str, text: str) -> bool:
    compiled = _regex(pattern)
    return bool(compiled and compiled.search(text))


# =============================================================================
# Parser
# =============================================================================


class _Parser:
    """Recursive descent parser.

    Precedence, lowest first: ``||``, ``&&``, relations and ``in``,
    unary ``!``/``-``, member access and calls.
    """

    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != "end":
            self.pos += 1
        return token

    def _check(self, value: str) -> bool:
        return self.current.kind == "op" and self.current.value == value

    def _expect(self, value: str) -> Token:
        if not self._check(value):
            raise self._error(f"Expected '{value}'")
        return self._advance()

    def _error(self, message: str) -> ExpressionSyntaxError:
        token = self.current
        found = "end of expression" if token.kind == "end" else repr(token.value)
        return ExpressionSyntaxError(
            f"{message} at position {token.position}, found {found}",
            position=token.position,
        )

    def parse(self) -> Node:
        node = self._or()
        if self.current.kind != "end":
            raise self._error("Unexpected token")
        return node

    def _or(self) -> Node:
        node = self._and()
        while self._check("||"):
            self._advance()
            node = Logical("||", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._relation()
        while self._check("&&"):
            self._advance()
            node = Logical("&&", node, self._relation())
        return node

    def _relation(self) -> Node:
        node = self._unary()
        if self.current.kind == "op" and self.current.value in ("==", "!=", "<", "<=", ">", ">="):
            operator = self._advance().value
            return Compare(operator, node, self._unary())
        if self.current.kind == "ident" and self.current.value == "in":
            self._advance()
            return Membership(node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._check("!") or self._check("-"):
            operator = self._advance().value
            return Unary(operator, self._unary())
        return self._postfix()

    def _postfix(self) -> Node:
        node = self._primary()
        while self._check("."):
            self._advance()
            if self.current.kind != "ident":
                raise self._error("Expected field or method name")
            name = self._advance().value

            if self._check("("):
                node = self._method(node, name)
            elif isinstance(node, Field):
                node = Field(f"{node.path}.{name}")
            else:
                raise self._error("Field access on a non-field value")
        return node

    def _method(self, receiver: Node, name: str) -> Node:
        if name not in STRING_METHODS and name != "size":
            raise self._error(f"Unknown method '{name}'")
        args = self._arguments()
        expected = 0 if name == "size" else 1
        if len(args) != expected:
            raise self._error(f"Method '{name}' takes {expected} argument(s)")
        return Call(name, args, receiver=receiver)

    def _arguments(self) -> tuple[Node, ...]:
        self._expect("(")
        args = []
        if not self._check(")"):
            args.append(self._or())
            while self._check(","):
                self._advance()
                args.append(self._or())
        self._expect(")")
        return tuple(args)

    def _primary(self) -> Node:
        token = self.current

        if token.kind in ("number", "string"):
            self._advance()
            return Literal(token.value)

        if token.kind == "ident":
            self._advance()
            match token.value:
                case "true":
                    return Literal(True)
                case "false":
                    return Literal(False)
                case "null":
                    return Literal(None)
                case "in":
                    self.pos -= 1
                    raise self._error("Unexpected keyword")

            if self._check("("):
                return self._function(token.value)
            return Field(token.value)

        if self._check("("):
            self._advance()
            node = self._or()
            self._expect(")")
            return node

        if self._check("["):
            self._advance()
            items = []
            if not self._check("]"):
                items.append(self._or())
                while self._check(","):
                    self._advance()
                    items.append(self._or())
            self._expect("]")
            return ListLiteral(tuple(items))

        raise self._error("Unexpected token")

    def _function(self, name: str) -> Node:
        if name not in FUNCTIONS:
            raise self._error(f"Unknown function '{name}'")
        args = self._arguments()
        if len(args) != 1:
            raise self._error(f"Function '{name}' takes 1 argument")
        if name == "has" and not isinstance(args[0], Field):
            raise self._error("has() requires a field path")
        return Call(name, args)


@dataclass(frozen=True)
class Expression:
    """A compiled expression."""

    source: str
    root: Node

    def evaluate(self, event: NormalizedEvent) -> bool:
        """Evaluate against one event; non-boolean results use truthiness."""
        return _truthy(self.root.evaluate(event))


@lru_cache(maxsize=256)
def compile_expression(source: str) -> Expression:
    """Parse an expression.

    Args:
        source: Expression text

    Returns:
        Compiled expression

    Raises:
        ExpressionSyntaxError: If the text is not a valid expression
    """
    if not source or not source.strip():
        raise ExpressionSyntaxError("Empty expression", position=0)
    return Expression(source=source, root=_Parser(source).parse())
