"""Filter language: compile text such as ``pod my-ns/app-* or label team=core``
into a predicate over resources."""

from kubedump.errors import FilterParseError
from kubedump.filter.expression import (
    AndExpr,
    Expression,
    FalseExpr,
    LabelExpr,
    NamespaceExpr,
    NotExpr,
    OrExpr,
    ResourceExpr,
    TrueExpr,
    wildcard_match,
)
from kubedump.filter.parser import parse

__all__ = [
    "AndExpr",
    "Expression",
    "FalseExpr",
    "FilterParseError",
    "LabelExpr",
    "NamespaceExpr",
    "NotExpr",
    "OrExpr",
    "ResourceExpr",
    "TrueExpr",
    "parse",
    "wildcard_match",
]
