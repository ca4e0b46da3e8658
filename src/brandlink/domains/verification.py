"""DNS verification for custom domain ownership.

A tenant proves ownership by pointing its hostname at the platform:

    # subdomains (preferred)
    links.mycompany.com  CNAME  cname.brandlink.link

    # apex domains, where most DNS providers refuse a CNAME
    mycompany.com        TXT    "brandlink-verify=cname.brandlink.link"

Every lookup resolves to one of four outcomes. NOT_FOUND usually means the
record has not propagated yet, MISMATCH means it points somewhere else, and
TRANSIENT_ERROR means the resolver could not give an answer at all, which
must never be reported to the tenant as a misconfiguration.
"""

from __future__ import annotations

import asyncio
import re
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import aiodns
import pycares
import structlog

from brandlink.domains.errors import TransientError, VerificationFailure
from brandlink.domains.hostnames import normalize_target

if TYPE_CHECKING:
    from brandlink.domains.storage import DomainRecord

logger = structlog.get_logger()

TXT_PREFIX = "brandlink-verify="

_NO_ANSWER_CODES = frozenset({pycares.errno.ARES_ENOTFOUND, pycares.errno.ARES_ENODATA})

PROVIDER_PATTERNS: dict[str, re.Pattern[str]] = {
    "cloudflare": re.compile(r"cloudflare", re.IGNORECASE),
    "namecheap": re.compile(r"namecheap", re.IGNORECASE),
    "godaddy": re.compile(r"godaddy|domaincontrol", re.IGNORECASE),
    "amazon": re.compile(r"amazon|aws", re.IGNORECASE),
    "google": re.compile(r"google", re.IGNORECASE),
    "digitalocean": re.compile(r"digitalocean", re.IGNORECASE),
}


class VerificationOutcome(Enum):
    """Result of a single DNS verification attempt."""

    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    MISMATCH = "mismatch"
    TRANSIENT_ERROR = "transient_error"


OUTCOME_MESSAGES = {
    VerificationOutcome.VERIFIED: "Domain verified successfully.",
    VerificationOutcome.NOT_FOUND: (
        "No DNS record found yet. DNS changes can take up to 24 hours to "
        "propagate; check your record and try again later."
    ),
    VerificationOutcome.MISMATCH: (
        "A DNS record exists but points to {found}. Update it to point to {expected}."
    ),
    VerificationOutcome.TRANSIENT_ERROR: (
        "We could not reach DNS to check your domain. Your record may be "
        "correct; please try again in a moment."
    ),
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class VerificationReport:
    """Outcome of a verification attempt plus what DNS actually returned."""

    domain: str
    outcome: VerificationOutcome
    record_type: str
    expected: str
    found: list[str] = field(default_factory=list)
    error: str | None = None
    checked_at: datetime = field(default_factory=_utc_now)
    record: DomainRecord | None = None

    @property
    def is_verified(self) -> bool:
        return self.outcome == VerificationOutcome.VERIFIED

    @property
    def is_transient(self) -> bool:
        return self.outcome == VerificationOutcome.TRANSIENT_ERROR

    @property
    def message(self) -> str:
        """Tenant facing guidance, distinct per outcome."""
        template = OUTCOME_MESSAGES[self.outcome]
        return template.format(
            found=", ".join(self.found) or "another host",
            expected=self.expected,
        )

    def raise_for_outcome(self) -> None:
        """Raise the matching error unless the domain was verified.

        Raises:
            TransientError: If DNS could not be queried.
            VerificationFailure: If the record is missing or points elsewhere.
        """
        if self.is_verified:
            return
        if self.is_transient:
            raise TransientError(self.error or self.message)
        raise VerificationFailure(self.message, outcome=self.outcome.value)

    def to_api(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "outcome": self.outcome.value,
            "verified": self.is_verified,
            "recordType": self.record_type,
            "expected": self.expected,
            "records": list(self.found),
            "error": self.error,
            "checkedAt": self.checked_at.isoformat(),
            "message": self.message,
            "record": self.record.to_api() if self.record else None,
        }


@dataclass
class ProviderMatch:
    """A DNS hosting provider recognised from the NS records."""

    name: str
    nameserver: str
    detected: bool


def cname_matches(value: str, target: str) -> bool:
    """Check a CNAME answer against the expected target.

    Matches the target itself or any host under it, so a CNAME to
    ``edge1.cname.brandlink.link`` satisfies ``cname.brandlink.link``.
    """
    value = normalize_target(value)
    target = normalize_target(target)
    return value == target or value.endswith(f".{target}")


def txt_matches(value: str, target: str) -> bool:
    """Check a TXT string against the expected target."""
    value = normalize_target(value)
    target = normalize_target(target)
    if value.startswith(TXT_PREFIX):
        value = normalize_target(value[len(TXT_PREFIX):])
    return value == target


def _txt_text(text: str | bytes) -> str:
    # pycares hands back bytes for strings that are not valid UTF-8
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text.strip('"').strip("'")


class DNSVerifier:
    """Verifies custom domains via DNS records.

    Subdomains must CNAME to the platform target. Apex domains may use a
    CNAME (or a provider's CNAME flattening) and otherwise fall back to a TXT
    record at the apex.
    """

    def __init__(
        self,
        target: str = "cname.brandlink.link",
        timeout: float = 10.0,
        nameservers: list[str] | None = None,
    ) -> None:
        """Initialize DNS verifier.

        Args:
            target: The platform hostname records must point to.
            timeout: Upper bound in seconds for each DNS query.
            nameservers: Resolver addresses; system resolvers when None.
        """
        self.target = normalize_target(target)
        self.timeout = timeout
        self.nameservers = nameservers or None
        self._resolver: aiodns.DNSResolver | None = None

    def _get_resolver(self) -> aiodns.DNSResolver:
        """Get or create DNS resolver with proper event loop handling."""
        if self._resolver is None:
            kwargs: dict[str, Any] = {"timeout": self.timeout}
            if self.nameservers:
                kwargs["nameservers"] = self.nameservers
            if sys.platform == "win32":
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    loop = asyncio.new_event_loop()
                self._resolver = aiodns.DNSResolver(loop=loop, **kwargs)
            else:
                self._resolver = aiodns.DNSResolver(**kwargs)
        return self._resolver

    async def _lookup(self, name: str, record_type: str) -> list[str]:
        """Resolve ``name`` and return the answer values.

        Returns:
            Answer values, or an empty list when the name has no such record.

        Raises:
            TransientError: On timeouts and resolver failures.
        """
        resolver = self._get_resolver()
        try:
            result = await asyncio.wait_for(
                resolver.query(name, record_type), timeout=self.timeout
            )
        except TimeoutError as e:
            raise TransientError(f"DNS lookup for {name} timed out") from e
        except aiodns.error.DNSError as e:
            code = e.args[0] if e.args else None
            if code in _NO_ANSWER_CODES:
                return []
            raise TransientError(f"DNS lookup for {name} failed: {e}") from e

        if not result:
            return []
        if record_type == "CNAME":
            return [result.cname.rstrip(".")]
        if record_type == "TXT":
            return [_txt_text(record.text) for record in result]
        return [str(record.host).rstrip(".") for record in result]

    async def check(
        self,
        domain: str,
        target: str | None = None,
        apex: bool = False,
    ) -> VerificationReport:
        """Check DNS for a hostname against the expected target.

        Args:
            domain: Normalized hostname to check.
            target: Expected target, defaults to the platform target.
            apex: Allow the TXT fallback when no CNAME exists.

        Returns:
            VerificationReport with the outcome and the discovered values.
        """
        expected = normalize_target(target or self.target)

        try:
            cnames = await self._lookup(domain, "CNAME")
        except TransientError as e:
            return VerificationReport(
                domain, VerificationOutcome.TRANSIENT_ERROR, "CNAME", expected, error=str(e)
            )

        if cnames:
            matched = any(cname_matches(value, expected) for value in cnames)
            outcome = VerificationOutcome.VERIFIED if matched else VerificationOutcome.MISMATCH
            return VerificationReport(domain, outcome, "CNAME", expected, found=cnames)

        if not apex:
            return VerificationReport(
                domain,
                VerificationOutcome.NOT_FOUND,
                "CNAME",
                expected,
                error=f"No CNAME record found for {domain}",
            )

        try:
            txt_values = await self._lookup(domain, "TXT")
        except TransientError as e:
            return VerificationReport(
                domain, VerificationOutcome.TRANSIENT_ERROR, "TXT", expected, error=str(e)
            )

        if not txt_values:
            return VerificationReport(
                domain,
                VerificationOutcome.NOT_FOUND,
                "TXT",
                expected,
                error=f"No CNAME or TXT record found for {domain}",
            )

        matched = any(txt_matches(value, expected) for value in txt_values)
        outcome = VerificationOutcome.VERIFIED if matched else VerificationOutcome.MISMATCH
        return VerificationReport(domain, outcome, "TXT", expected, found=txt_values)

    async def check_record(self, record: DomainRecord) -> VerificationReport:
        """Check a stored domain record against its own expected target."""
        return await self.check(
            record.full_domain,
            target=record.cname_target or self.target,
            apex=record.is_apex,
        )

    async def lookup_records(self, domain: str) -> dict[str, list[str]]:
        """Fetch CNAME, A, TXT and MX records concurrently.

        Lookup failures produce empty lists; this is a diagnostic view.
        """
        record_types = ("CNAME", "A", "TXT", "MX")
        results = await asyncio.gather(
            *(self._lookup(domain, record_type) for record_type in record_types),
            return_exceptions=True,
        )
        info: dict[str, list[str]] = {}
        for record_type, result in zip(record_types, results, strict=True):
            if isinstance(result, TransientError):
                logger.debug("DNS lookup failed", domain=domain, type=record_type, error=str(result))
                result = []
            elif isinstance(result, BaseException):
                raise result
            info[record_type.lower()] = result
        return info

    async def detect_provider(self, domain: str) -> list[ProviderMatch]:
        """Guess the DNS hosting provider from the domain's NS records."""
        try:
            nameservers = await self._lookup(domain, "NS")
        except TransientError as e:
            logger.debug("NS lookup failed", domain=domain, error=str(e))
            nameservers = []

        providers = []
        for nameserver in nameservers:
            for name, pattern in PROVIDER_PATTERNS.items():
                if pattern.search(nameserver):
                    providers.append(ProviderMatch(name, nameserver, True))

        if not providers:
            providers.append(
                ProviderMatch("unknown", nameservers[0] if nameservers else "unknown", False)
            )
        return providers
