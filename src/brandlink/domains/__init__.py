"""Brandlink custom domain management.

Tenants of the URL shortener attach their own hostnames (e.g.
links.mycompany.com) instead of the shared short domain.

Features:
- Hostname validation with IDNA/punycode normalization
- DNS verification (CNAME, TXT fallback for apex domains) with four outcomes
- JSON file storage enforcing one default domain per tenant
- Promotion of verified domains, optionally through a certificate issuer

Usage:
    from brandlink.domains import DomainManager, DomainStore

    store = DomainStore("domains.json")
    manager = DomainManager(store, cname_target="cname.brandlink.link")

    record = await manager.register_domain("acme", "example.com", subdomain="links")
    report = await manager.verify_domain("acme", record.id)
"""

from brandlink.domains.errors import (
    ApiError,
    CannotDeleteDefault,
    ConflictError,
    DomainError,
    DomainInUse,
    DomainNotActive,
    DomainNotFound,
    DuplicateDomain,
    InvalidDomainFormat,
    SessionExpired,
    TransientError,
    ValidationError,
    VerificationFailure,
)
from brandlink.domains.hostnames import (
    build_full_domain,
    is_valid_hostname,
    normalize_domain,
    to_unicode,
    validate_hostname,
    validate_subdomain,
)
from brandlink.domains.manager import (
    DomainInfo,
    DomainManager,
    DomainStats,
    SetupInstructions,
)
from brandlink.domains.storage import (
    DomainRecord,
    DomainStore,
    OperationalStatus,
    VerificationStatus,
)
from brandlink.domains.verification import (
    DNSVerifier,
    ProviderMatch,
    VerificationOutcome,
    VerificationReport,
)

__all__ = [
    "DomainManager",
    "DomainInfo",
    "DomainStats",
    "SetupInstructions",
    "DomainStore",
    "DomainRecord",
    "OperationalStatus",
    "VerificationStatus",
    "DNSVerifier",
    "ProviderMatch",
    "VerificationOutcome",
    "VerificationReport",
    "build_full_domain",
    "is_valid_hostname",
    "normalize_domain",
    "to_unicode",
    "validate_hostname",
    "validate_subdomain",
    "DomainError",
    "ValidationError",
    "InvalidDomainFormat",
    "DomainNotFound",
    "VerificationFailure",
    "TransientError",
    "ConflictError",
    "DuplicateDomain",
    "DomainNotActive",
    "CannotDeleteDefault",
    "DomainInUse",
    "SessionExpired",
    "ApiError",
]
