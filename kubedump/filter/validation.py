"""Validation of the literal segments of filter patterns.

Names follow the Kubernetes object naming rules:
https://kubernetes.io/docs/concepts/overview/working-with-objects/names/

The wildcard characters ``*`` and ``?`` are accepted anywhere a name character
is, so ``app-*`` validates while ``app-`` does not.
"""

from __future__ import annotations

import re

from kubedump.errors import FilterParseError

_DNS_LABEL_FMT = r"[a-z0-9*?]([a-z0-9\-*?]{0,61}[a-z0-9*?])?"
_DNS_SUBDOMAIN_FMT = r"[a-z0-9*?]([a-z0-9\-.*?]{0,251}[a-z0-9*?])?"

_LABEL_KEY_PREFIX_FMT = _DNS_SUBDOMAIN_FMT + "/"
_LABEL_KEY_NAME_FMT = r"[a-zA-Z0-9*?]([a-zA-Z0-9\-_.*?]{0,61}[a-zA-Z0-9*?])?"
_LABEL_VALUE_FMT = r"([a-zA-Z0-9*?]([a-zA-Z0-9\-_.*?]{0,61}[a-zA-Z0-9*?])?)?"

_DNS_LABEL = re.compile(f"^{_DNS_LABEL_FMT}$")
_DNS_SUBDOMAIN = re.compile(f"^{_DNS_SUBDOMAIN_FMT}$")
_LABEL_KEY = re.compile(f"^({_LABEL_KEY_PREFIX_FMT})?{_LABEL_KEY_NAME_FMT}$")
_LABEL_VALUE = re.compile(f"^{_LABEL_VALUE_FMT}$")


def validate_dns_label(kind: str, value: str) -> None:
    """RFC 1123 label: namespaces."""
    if not _DNS_LABEL.match(value):
        raise FilterParseError(f"{kind} '{value}' is not a valid RFC 1123 DNS label")


def validate_dns_subdomain(kind: str, value: str) -> None:
    """RFC 1123 subdomain: object names."""
    if not _DNS_SUBDOMAIN.match(value):
        raise FilterParseError(f"name '{value}' is invalid for kind '{kind}'")


def validate_namespace(value: str) -> None:
    validate_dns_label("namespace", value)


def validate_label_key(key: str) -> None:
    if not key:
        raise FilterParseError("label key must not be empty")
    if not _LABEL_KEY.match(key):
        raise FilterParseError(f"label key '{key}' is not valid")


def validate_label_value(value: str) -> None:
    if not _LABEL_VALUE.match(value):
        raise FilterParseError(f"label value '{value}' is not valid")
