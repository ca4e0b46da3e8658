"""Hostname validation and normalization for custom domains.

Tenants type domains the way they see them, so input may be mixed case, carry
a trailing dot, or contain non-ASCII labels (e.g. an Arabic IDN). Everything
is stored in its ASCII (punycode) form:

    - "Links.Example.COM."  ->  "links.example.com"
    - "bücher.example"      ->  "xn--bcher-kva.example"

A subdomain is optional and modeled as ``None`` when absent, never as an
empty string.
"""

from __future__ import annotations

import re
from functools import lru_cache

from brandlink.domains.errors import InvalidDomainFormat, ValidationError

MAX_DOMAIN_LENGTH = 253
MAX_LABEL_LENGTH = 63

_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_TLD_RE = re.compile(r"^(?:[a-z]{2,63}|xn--[a-z0-9-]{1,59})$")


def _to_ascii_label(label: str) -> str:
    if label.isascii():
        return label
    try:
        return label.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise InvalidDomainFormat(f"Invalid international label: {label}") from e


def normalize_domain(value: str | None) -> str:
    """Normalize user input to a lower-case ASCII hostname.

    Args:
        value: Raw domain as typed by the tenant.

    Returns:
        Lower-cased, trailing-dot-free, punycode-encoded hostname.

    Raises:
        ValidationError: If the value is empty.

    Examples:
        >>> normalize_domain("  Example.COM. ")
        'example.com'
    """
    if value is None or not value.strip():
        raise ValidationError("Domain name is required")

    domain = value.strip().lower().rstrip(".")
    if not domain:
        raise ValidationError("Domain name is required")

    return ".".join(_to_ascii_label(label) for label in domain.split("."))


@lru_cache(maxsize=1000)
def _check_hostname(domain: str) -> str | None:
    """Return an error message for an invalid hostname, None when valid."""
    if len(domain) > MAX_DOMAIN_LENGTH:
        return f"Domain name is too long (max {MAX_DOMAIN_LENGTH} characters)"

    labels = domain.split(".")
    if len(labels) < 2:
        return "Domain must include a top-level domain (e.g. example.com)"

    for label in labels:
        if not label:
            return "Domain contains an empty label"
        if len(label) > MAX_LABEL_LENGTH:
            return f"Domain label is too long (max {MAX_LABEL_LENGTH} characters per part)"
        if not _LABEL_RE.match(label):
            return f"Invalid domain label: {label}"

    if not _TLD_RE.match(labels[-1]):
        return f"Invalid top-level domain: {labels[-1]}"

    return None


def is_valid_hostname(domain: str) -> bool:
    """Check a normalized hostname without raising.

    Examples:
        >>> is_valid_hostname("links.example.com")
        True
        >>> is_valid_hostname("localhost")
        False
    """
    return _check_hostname(domain) is None


def validate_hostname(value: str) -> str:
    """Normalize and validate a full hostname.

    Raises:
        InvalidDomainFormat: If the hostname is syntactically invalid.
        ValidationError: If the value is empty.
    """
    domain = normalize_domain(value)
    error = _check_hostname(domain)
    if error:
        raise InvalidDomainFormat(error)
    return domain


def validate_subdomain(value: str | None) -> str | None:
    """Normalize an optional subdomain.

    Blank input means "no subdomain" and returns None. Dotted values such as
    "go.links" are accepted as long as every label is valid.
    """
    if value is None or not value.strip():
        return None

    subdomain = normalize_domain(value)
    for label in subdomain.split("."):
        if len(label) > MAX_LABEL_LENGTH or not _LABEL_RE.match(label):
            raise InvalidDomainFormat(f"Invalid subdomain: {value.strip()}")
    return subdomain


def build_full_domain(base_domain: str, subdomain: str | None = None) -> str:
    """Combine an optional subdomain with its base domain.

    Examples:
        >>> build_full_domain("example.com", "sub")
        'sub.example.com'
        >>> build_full_domain("example.com")
        'example.com'
    """
    base = base_domain.lower()
    return f"{subdomain.lower()}.{base}" if subdomain else base


def to_unicode(domain: str) -> str:
    """Decode punycode labels for display. Undecodable labels are kept as-is."""
    labels = []
    for label in domain.split("."):
        if label.startswith("xn--"):
            try:
                label = label.encode("ascii").decode("idna")
            except UnicodeError:
                pass
        labels.append(label)
    return ".".join(labels)


def normalize_target(value: str) -> str:
    """Normalize a DNS answer for comparison: lower-case, no trailing dot."""
    return value.strip().strip('"').lower().rstrip(".")
