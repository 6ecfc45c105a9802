"""Recursive-descent parser for the filter language.

Grammar::

    expr      := or_expr
    or_expr   := and_expr ("or" and_expr)*
    and_expr  := unary ("and" unary)*
    unary     := "not" unary
               | ("and" | "or") unary unary
               | "(" expr ")"
               | resource | namespace | label
    resource  := KIND pattern
    namespace := "namespace" pattern
    label     := "label" (key "=" value)*
    pattern   := [namespace "/"] name

``not`` binds tighter than ``and``, which binds tighter than ``or``.  Binary
operators may also be written in prefix position (``and pod a pod b``).
"""

from __future__ import annotations

from kubedump.errors import FilterParseError
from kubedump.filter.expression import (
    AndExpr,
    Expression,
    LabelExpr,
    NamespaceExpr,
    NotExpr,
    OrExpr,
    ResourceExpr,
    TrueExpr,
)
from kubedump.filter.tokens import Token, TokenKind, tokenize
from kubedump.filter.validation import (
    validate_dns_subdomain,
    validate_label_key,
    validate_label_value,
    validate_namespace,
)
from kubedump.models.resource import ResourceKind

DEFAULT_NAMESPACE = "default"


def split_pattern(pattern: str) -> tuple[str, str]:
    """Split ``[namespace/]name`` into its parts, defaulting the namespace."""
    parts = pattern.split("/")
    if len(parts) == 1:
        return DEFAULT_NAMESPACE, parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise FilterParseError(f"pattern '{pattern}' has more than one namespace/name separator")


def split_label_pattern(pattern: str) -> tuple[str, str]:
    """Split ``key=value``; the value may be empty, the separator may not be missing."""
    if "=" not in pattern:
        raise FilterParseError(f"label pattern '{pattern}' is missing '='")
    key, value = pattern.split("=", 1)
    return key, value


class Parser:
    """Parses one filter string; use :func:`parse` rather than this class."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = tokenize(text)
        self._pos = 0

    def parse(self) -> Expression:
        if self._peek().kind is TokenKind.EOF:
            return TrueExpr()

        expr = self._or_expr()

        trailing = self._peek()
        if trailing.kind is not TokenKind.EOF:
            raise self._error(f"unexpected token '{trailing.body}' at position {trailing.position}")
        return expr

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    def _peek(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        token = self._tokens[self._pos]
        if token.kind is not TokenKind.EOF:
            self._pos += 1
        return token

    def _error(self, message: str) -> FilterParseError:
        return FilterParseError(message, text=self._text)

    # ------------------------------------------------------------------
    # Productions
    # ------------------------------------------------------------------

    def _or_expr(self) -> Expression:
        left = self._and_expr()
        while self._peek().kind is TokenKind.OR:
            self._advance()
            left = OrExpr(left, self._operand("or"))
        return left

    def _and_expr(self) -> Expression:
        left = self._unary()
        while self._peek().kind is TokenKind.AND:
            self._advance()
            left = AndExpr(left, self._operand("and"))
        return left

    def _operand(self, operator: str) -> Expression:
        if self._peek().kind in (TokenKind.EOF, TokenKind.CLOSE_PAREN):
            raise self._error(f"missing operand for '{operator}'")
        return self._and_expr() if operator == "or" else self._unary()

    def _unary(self) -> Expression:
        token = self._advance()

        match token.kind:
            case TokenKind.NOT:
                return NotExpr(self._required_unary("not"))
            case TokenKind.AND:
                return AndExpr(self._required_unary("and"), self._required_unary("and"))
            case TokenKind.OR:
                return OrExpr(self._required_unary("or"), self._required_unary("or"))
            case TokenKind.OPEN_PAREN:
                return self._group(token)
            case TokenKind.RESOURCE:
                return self._resource(token)
            case TokenKind.NAMESPACE:
                return self._namespace()
            case TokenKind.LABEL:
                return self._label()
            case TokenKind.EOF:
                raise self._error("unexpected end of expression")
            case _:
                raise self._error(f"unexpected token '{token.body}' at position {token.position}")

    def _required_unary(self, operator: str) -> Expression:
        if self._peek().kind in (TokenKind.EOF, TokenKind.CLOSE_PAREN):
            raise self._error(f"missing operand for '{operator}'")
        return self._unary()

    def _group(self, opening: Token) -> Expression:
        if self._peek().kind is TokenKind.CLOSE_PAREN:
            raise self._error(f"empty parentheses at position {opening.position}")
        expr = self._or_expr()
        closing = self._advance()
        if closing.kind is not TokenKind.CLOSE_PAREN:
            raise self._error(f"unbalanced parenthesis at position {opening.position}")
        return expr

    def _pattern(self, owner: str) -> str:
        token = self._peek()
        if token.kind is not TokenKind.PATTERN:
            raise self._error(f"missing pattern for '{owner}'")
        self._advance()
        return token.body

    def _resource(self, token: Token) -> Expression:
        kind = ResourceKind.from_keyword(token.body)
        namespace, name = split_pattern(self._pattern(token.body))
        validate_namespace(namespace)
        validate_dns_subdomain(token.body, name)
        return ResourceExpr(kind=kind, namespace_pattern=namespace, name_pattern=name)

    def _namespace(self) -> Expression:
        pattern = self._pattern("namespace")
        if "/" in pattern:
            raise self._error(f"namespace pattern '{pattern}' must not contain '/'")
        validate_namespace(pattern)
        return NamespaceExpr(namespace_pattern=pattern)

    def _label(self) -> Expression:
        patterns: dict[str, str] = {}
        while self._peek().kind is TokenKind.PATTERN:
            key, value = split_label_pattern(self._advance().body)
            validate_label_key(key)
            validate_label_value(value)
            patterns[key] = value
        return LabelExpr.of(patterns)


def parse(text: str) -> Expression:
    """Compile *text* into an :class:`Expression`.

    The empty string compiles to an expression matching every resource.

    Raises:
        FilterParseError: the text is not a valid filter.
    """
    return Parser(text).parse()
