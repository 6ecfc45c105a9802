"""Tokenizer for the filter language.

Tokens are whitespace delimited, except ``(`` and ``)`` which always stand on
their own.  The input is scanned once, left to right.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from kubedump.models.resource import FILTER_KEYWORDS


class TokenKind(StrEnum):
    """Lexical class of a token."""

    PATTERN = "pattern"
    RESOURCE = "resource"
    NAMESPACE = "namespace"
    LABEL = "label"
    NOT = "not"
    AND = "and"
    OR = "or"
    OPEN_PAREN = "("
    CLOSE_PAREN = ")"
    EOF = "eof"


_KEYWORDS: dict[str, TokenKind] = {
    "namespace": TokenKind.NAMESPACE,
    "label": TokenKind.LABEL,
    "not": TokenKind.NOT,
    "and": TokenKind.AND,
    "or": TokenKind.OR,
}


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    body: str
    position: int


def _classify(body: str) -> TokenKind:
    if body in FILTER_KEYWORDS:
        return TokenKind.RESOURCE
    return _KEYWORDS.get(body, TokenKind.PATTERN)


def tokenize(text: str) -> list[Token]:
    """Split *text* into tokens; the list always ends with an EOF token."""
    tokens: list[Token] = []
    head = 0
    length = len(text)

    while True:
        while head < length and text[head].isspace():
            head += 1

        if head == length:
            tokens.append(Token(TokenKind.EOF, "", head))
            return tokens

        char = text[head]
        if char == "(":
            tokens.append(Token(TokenKind.OPEN_PAREN, char, head))
            head += 1
            continue
        if char == ")":
            tokens.append(Token(TokenKind.CLOSE_PAREN, char, head))
            head += 1
            continue

        start = head
        while head < length and not text[head].isspace() and text[head] not in "()":
            head += 1
        body = text[start:head]
        tokens.append(Token(_classify(body), body, start))
