"""Domain manager for custom domain lifecycle management.

This module provides the main server-side interface for tenant domains:
- Registration with hostname validation and a pending/unverified start state
- DNS verification (CNAME, or TXT for apex domains) with idempotent results
- Promotion of verified domains to active, optionally through a certificate issuer
- The single-default-domain invariant and guarded deletion

Usage:
    manager = DomainManager(store, cname_target="cname.brandlink.link")

    # Register a new domain
    record = await manager.register_domain("acme", "example.com", subdomain="links")

    # Verify DNS records
    report = await manager.verify_domain("acme", record.id)

    # Promote and make it the default
    await manager.promote_domain("acme", record.id)
    await manager.set_default("acme", record.id)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from brandlink.domains.errors import (
    ConflictError,
    DomainError,
    DomainInUse,
    DomainNotActive,
    DomainNotFound,
    InvalidDomainFormat,
    ValidationError,
)
from brandlink.domains.hostnames import (
    build_full_domain,
    is_valid_hostname,
    validate_hostname,
    validate_subdomain,
)
from brandlink.domains.storage import (
    REDIRECT_TYPES,
    DomainRecord,
    DomainStore,
    OperationalStatus,
    VerificationStatus,
)
from brandlink.domains.verification import (
    TXT_PREFIX,
    DNSVerifier,
    ProviderMatch,
    VerificationOutcome,
    VerificationReport,
)
from brandlink.observability.metrics import (
    DEFAULT_DOMAIN_CHANGES,
    DOMAIN_PROMOTIONS,
    DOMAIN_VERIFICATIONS,
    DOMAINS_DELETED,
    DOMAINS_REGISTERED,
    PENDING_PROMOTIONS,
    VERIFICATION_DURATION,
)

if TYPE_CHECKING:
    from brandlink.core.config import DomainSettings

logger = structlog.get_logger()

CertificateIssuer = Callable[[str], Awaitable[bool]]
LinkCounter = Callable[[str], Awaitable[int]]

MAX_NOTES_LENGTH = 1000
_UNSET: Any = object()


@dataclass
class SetupInstructions:
    """DNS record a tenant has to create for one domain."""

    record_type: str
    name: str
    host: str
    value: str
    ttl: int = 300
    steps: list[str] = field(default_factory=list)

    def to_api(self) -> dict[str, Any]:
        return {
            "type": self.record_type,
            "name": self.name,
            "host": self.host,
            "value": self.value,
            "ttl": self.ttl,
            "steps": list(self.steps),
        }


@dataclass
class DomainInfo:
    """A record together with what the tenant still has to do for it."""

    record: DomainRecord
    instructions: SetupInstructions | None
    dns: dict[str, list[str]] | None = None

    @property
    def status(self) -> str:
        if self.record.is_active:
            return "active"
        if self.record.operational_status == OperationalStatus.SSL_FAILED:
            return "ssl_failed"
        if self.record.is_verified:
            return "certificate_pending"
        if self.record.verification_status == VerificationStatus.FAILED:
            return "verification_failed"
        return "pending_verification"


@dataclass
class DomainStats:
    total: int
    verified: int
    active: int
    pending: int

    def to_api(self) -> dict[str, int]:
        return {
            "totalDomains": self.total,
            "verifiedDomains": self.verified,
            "activeDomains": self.active,
            "pendingDomains": self.pending,
        }


def build_setup_instructions(record: DomainRecord, default_target: str) -> SetupInstructions:
    """Generate the DNS record a tenant has to create for ``record``."""
    target = record.cname_target or default_target
    if record.is_apex:
        value = f"{TXT_PREFIX}{target}"
        return SetupInstructions(
            record_type="TXT",
            name=record.full_domain,
            host="@",
            value=value,
            steps=[
                "Log into your domain registrar or DNS provider",
                f"Find the DNS settings for {record.full_domain}",
                "Add a new TXT record with these values:",
                "  - Type: TXT",
                "  - Name: @",
                f"  - Value: {value}",
                "  - TTL: 300 (or leave default)",
                f"If your provider supports CNAME flattening (ALIAS/ANAME), "
                f"you may point {record.full_domain} to {target} instead",
                "Save the changes and wait for DNS propagation (up to 24 hours)",
                'Click "Verify DNS" to check the configuration',
            ],
        )

    return SetupInstructions(
        record_type="CNAME",
        name=record.full_domain,
        host=record.subdomain or "@",
        value=target,
        steps=[
            "Log into your domain registrar or DNS provider",
            f"Find the DNS settings for {record.base_domain}",
            "Add a new CNAME record with these values:",
            "  - Type: CNAME",
            f"  - Name: {record.subdomain}",
            f"  - Value: {target}",
            "  - TTL: 300 (or leave default)",
            "Save the changes and wait for DNS propagation (up to 24 hours)",
            'Click "Verify DNS" to check the configuration',
        ],
    )


class DomainManager:
    """Manages custom domain registration, verification and promotion.

    Coordinates between DNS verification and storage. All operations are
    scoped by tenant; a record of another tenant behaves as if it did not
    exist.
    """

    def __init__(
        self,
        store: DomainStore,
        cname_target: str = "cname.brandlink.link",
        verifier: DNSVerifier | None = None,
        max_failed_checks: int = 3,
        auto_promote: bool = False,
        allow_delete_default: bool = False,
        sweep_delay: float = 1.0,
        certificate_issuer: CertificateIssuer | None = None,
        link_counter: LinkCounter | None = None,
    ) -> None:
        """Initialize domain manager.

        Args:
            store: Storage backend for domain records.
            cname_target: Platform hostname tenants point their records at.
            verifier: DNS verifier, created for ``cname_target`` when omitted.
            max_failed_checks: Consecutive NOT_FOUND/MISMATCH results before a
                record is marked failed.
            auto_promote: Promote domains in the background once verified.
            allow_delete_default: Allow deleting the tenant's default domain.
            sweep_delay: Pause between checks in :meth:`verify_pending`.
            certificate_issuer: Coroutine issuing TLS for a hostname, returns success.
            link_counter: Coroutine counting short links that use a hostname.
        """
        self.store = store
        self.cname_target = cname_target
        self.verifier = verifier or DNSVerifier(cname_target)
        self.max_failed_checks = max_failed_checks
        self.auto_promote = auto_promote
        self.allow_delete_default = allow_delete_default
        self.sweep_delay = sweep_delay
        self.certificate_issuer = certificate_issuer
        self.link_counter = link_counter
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(cls, settings: DomainSettings, **kwargs: Any) -> DomainManager:
        """Build a manager and its store from DomainSettings."""
        store = DomainStore(
            settings.storage_path or None,
            unique_across_tenants=settings.unique_across_tenants,
        )
        verifier = DNSVerifier(
            settings.cname_target,
            timeout=settings.dns_timeout,
            nameservers=settings.dns_nameservers,
        )
        return cls(
            store,
            cname_target=settings.cname_target,
            verifier=verifier,
            max_failed_checks=settings.max_failed_checks,
            auto_promote=settings.auto_promote,
            allow_delete_default=settings.allow_delete_default,
            sweep_delay=settings.sweep_delay,
            **kwargs,
        )

    async def register_domain(
        self,
        tenant_id: str,
        base_domain: str,
        subdomain: str | None = None,
        added_by: str | None = None,
        is_default: bool = False,
    ) -> DomainRecord:
        """Register a new custom domain for a tenant.

        The record starts pending and unverified. The tenant must then
        configure DNS and call verify_domain().

        Args:
            tenant_id: Owning tenant.
            base_domain: Registrable domain, e.g. example.com.
            subdomain: Optional label(s) in front of the base domain.
            added_by: Who added the domain.
            is_default: Rejected, a new domain is never active.

        Returns:
            The stored DomainRecord.

        Raises:
            ValidationError: If the domain or subdomain is malformed.
            DuplicateDomain: If the hostname is already registered.
            DomainNotActive: If ``is_default`` is requested.
        """
        base = validate_hostname(base_domain)
        sub = validate_subdomain(subdomain)
        validate_hostname(build_full_domain(base, sub))

        if is_default:
            raise DomainNotActive("A new domain must be verified and active before it can be the default")

        record = DomainRecord(
            tenant_id=tenant_id,
            base_domain=base,
            subdomain=sub,
            cname_target=self.cname_target,
            added_by=added_by,
            record_type="TXT" if sub is None else "CNAME",
        )
        stored = await self.store.create(record)

        DOMAINS_REGISTERED.labels(kind="apex" if sub is None else "subdomain").inc()
        logger.info(
            "Domain registered",
            tenant=tenant_id,
            domain=stored.full_domain,
            domain_id=stored.id,
        )
        return stored

    async def get_domain(self, tenant_id: str, record_id: str) -> DomainRecord:
        """Get one of the tenant's records.

        Raises:
            DomainNotFound: If the record is missing or owned by another tenant.
        """
        record = await self.store.get(record_id)
        if record is None or record.tenant_id != tenant_id:
            raise DomainNotFound(f"Domain {record_id} not found")
        return record

    async def resolve(self, tenant_id: str, ref: str) -> DomainRecord:
        """Find a record by id or by hostname."""
        record = await self.store.get(ref)
        if record is None or record.tenant_id != tenant_id:
            record = await self.store.find_by_domain(ref, tenant_id=tenant_id)
        if record is None:
            raise DomainNotFound(f"Domain {ref} not found")
        return record

    async def list_domains(
        self,
        tenant_id: str,
        status: OperationalStatus | None = None,
        verification_status: VerificationStatus | None = None,
        search: str | None = None,
    ) -> list[DomainRecord]:
        """List a tenant's records, oldest first.

        Args:
            tenant_id: Owning tenant.
            status: Only records with this operational status.
            verification_status: Only records with this verification status.
            search: Case-insensitive substring of the hostname.
        """
        records = await self.store.list_for_tenant(tenant_id)
        if status is not None:
            records = [rec for rec in records if rec.operational_status == status]
        if verification_status is not None:
            records = [rec for rec in records if rec.verification_status == verification_status]
        if search:
            needle = search.lower().strip()
            records = [
                rec
                for rec in records
                if needle in rec.full_domain or needle in rec.unicode_domain
            ]
        return records

    async def verify_domain(
        self,
        tenant_id: str,
        record_id: str,
        verified_by: str | None = None,
    ) -> VerificationReport:
        """Verify DNS records for a domain and record the result.

        Calling this on a verified domain performs no lookup and returns a
        VERIFIED report again. A VERIFIED result never activates the domain
        by itself; promotion is a separate step.

        Args:
            tenant_id: Owning tenant.
            record_id: The record to verify.
            verified_by: Who triggered the check.

        Returns:
            VerificationReport with the outcome and the updated record.

        Raises:
            DomainNotFound: If the record does not exist for this tenant.
            InvalidDomainFormat: If the stored hostname is not a valid hostname.
        """
        record = await self.get_domain(tenant_id, record_id)
        if not is_valid_hostname(record.full_domain):
            raise InvalidDomainFormat(f"Invalid hostname: {record.full_domain}")

        expected = record.cname_target or self.cname_target
        if record.is_verified:
            return VerificationReport(
                domain=record.full_domain,
                outcome=VerificationOutcome.VERIFIED,
                record_type=record.record_type,
                expected=expected,
                checked_at=record.last_checked_at or record.verified_at or record.created_at,
                record=record,
            )

        started = time.perf_counter()
        report = await self.verifier.check_record(record)
        VERIFICATION_DURATION.observe(time.perf_counter() - started)
        DOMAIN_VERIFICATIONS.labels(
            outcome=report.outcome.value, record_type=report.record_type
        ).inc()

        newly_verified = False

        def apply_result(current: DomainRecord) -> dict[str, Any]:
            nonlocal newly_verified
            # A concurrent check already verified it; this result is stale.
            if current.is_verified:
                return {}

            changes: dict[str, Any] = {
                "last_checked_at": report.checked_at,
                "last_outcome": report.outcome.value,
                "record_type": report.record_type,
            }
            if report.is_verified:
                newly_verified = True
                changes.update(
                    verification_status=VerificationStatus.VERIFIED,
                    verified_at=report.checked_at,
                    verified_by=verified_by,
                    failed_checks=0,
                )
            elif report.is_transient:
                if current.verification_status == VerificationStatus.UNVERIFIED:
                    changes["verification_status"] = VerificationStatus.PENDING
            else:
                failed_checks = current.failed_checks + 1
                changes["failed_checks"] = failed_checks
                if failed_checks >= self.max_failed_checks:
                    changes["verification_status"] = VerificationStatus.FAILED
                elif current.verification_status == VerificationStatus.PENDING:
                    changes["verification_status"] = VerificationStatus.UNVERIFIED
            return changes

        report.record = await self.store.update_with(record.id, apply_result)

        log = logger.info if report.is_verified else logger.warning
        log(
            "Domain verification finished",
            tenant=tenant_id,
            domain=record.full_domain,
            outcome=report.outcome.value,
            found=report.found,
            error=report.error,
        )

        if newly_verified and self.auto_promote:
            self._schedule_promotion(tenant_id, record.id)

        return report

    async def promote_domain(
        self,
        tenant_id: str,
        record_id: str,
        ssl_ok: bool | None = None,
    ) -> DomainRecord:
        """Move a verified domain to active (or ssl_failed).

        Args:
            tenant_id: Owning tenant.
            record_id: The record to promote.
            ssl_ok: Certificate outcome. When None, the configured certificate
                issuer decides; without an issuer the domain is activated.

        Raises:
            ConflictError: If the domain is not verified yet.
        """
        record = await self.get_domain(tenant_id, record_id)
        if record.is_active:
            return record
        if not record.is_verified:
            raise ConflictError(
                f"Domain {record.full_domain} must be verified before it can be activated"
            )

        if ssl_ok is None:
            ssl_ok = await self._issue_certificate(record.full_domain)

        status = OperationalStatus.ACTIVE if ssl_ok else OperationalStatus.SSL_FAILED
        promoted = await self.store.update(record.id, operational_status=status)

        DOMAIN_PROMOTIONS.labels(status=status.value).inc()
        logger.info(
            "Domain promoted",
            tenant=tenant_id,
            domain=record.full_domain,
            status=status.value,
            is_default=promoted.is_default,
        )
        return promoted

    async def _issue_certificate(self, full_domain: str) -> bool:
        if self.certificate_issuer is None:
            return True
        try:
            return bool(await self.certificate_issuer(full_domain))
        except Exception as e:
            logger.error("Certificate issuance failed", domain=full_domain, error=str(e))
            return False

    def _schedule_promotion(self, tenant_id: str, record_id: str) -> None:
        task = asyncio.create_task(self._promote_in_background(tenant_id, record_id))
        self._tasks.add(task)
        PENDING_PROMOTIONS.inc()
        task.add_done_callback(self._promotion_done)

    def _promotion_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        PENDING_PROMOTIONS.dec()

    async def _promote_in_background(self, tenant_id: str, record_id: str) -> None:
        try:
            await self.promote_domain(tenant_id, record_id)
        except DomainError as e:
            logger.warning("Background promotion skipped", domain_id=record_id, error=e.message)

    async def drain(self) -> None:
        """Wait for all scheduled background promotions to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def set_default(self, tenant_id: str, record_id: str) -> DomainRecord:
        """Make an active domain the tenant's default.

        Raises:
            DomainNotFound: If the record does not exist for this tenant.
            DomainNotActive: If the record is not active.
        """
        new_default, previous = await self.store.set_default(tenant_id, record_id)
        if previous is not None:
            DEFAULT_DOMAIN_CHANGES.inc()
        logger.info(
            "Default domain set",
            tenant=tenant_id,
            domain=new_default.full_domain,
            previous=previous.full_domain if previous else None,
        )
        return new_default

    async def delete_domain(self, tenant_id: str, record_id: str) -> bool:
        """Delete one of the tenant's domains.

        Returns:
            True if deleted, False if not found.

        Raises:
            CannotDeleteDefault: If the record is the default and that is not allowed.
            DomainInUse: If short links still use the hostname.
        """
        try:
            record = await self.get_domain(tenant_id, record_id)
        except DomainNotFound:
            return False

        if self.link_counter is not None:
            link_count = await self.link_counter(record.full_domain)
            if link_count > 0:
                raise DomainInUse(
                    f"Cannot delete domain. {link_count} links are using this domain. "
                    "Please move or delete them first."
                )

        deleted = await self.store.delete(record.id, allow_default=self.allow_delete_default)
        if deleted:
            DOMAINS_DELETED.inc()
            logger.info("Domain deleted", tenant=tenant_id, domain=record.full_domain)
        return deleted

    async def update_settings(
        self,
        tenant_id: str,
        record_id: str,
        notes: str | None = _UNSET,
        redirect_type: int | None = None,
    ) -> DomainRecord:
        """Update a domain's notes and redirect type.

        Raises:
            ValidationError: If notes are too long or the redirect type is unsupported.
        """
        record = await self.get_domain(tenant_id, record_id)
        changes: dict[str, Any] = {}
        if notes is not _UNSET:
            if notes is not None and len(notes) > MAX_NOTES_LENGTH:
                raise ValidationError(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")
            changes["notes"] = notes
        if redirect_type is not None:
            if redirect_type not in REDIRECT_TYPES:
                raise ValidationError("Redirect type must be 301, 302, or 307")
            changes["redirect_type"] = redirect_type
        if not changes:
            return record
        return await self.store.update(record.id, **changes)

    async def get_domain_info(
        self, tenant_id: str, record_id: str, include_dns: bool = False
    ) -> DomainInfo:
        """Get a record with setup instructions and, optionally, live DNS data."""
        record = await self.get_domain(tenant_id, record_id)
        instructions = None if record.is_active else self.setup_instructions(record)
        dns = await self.verifier.lookup_records(record.full_domain) if include_dns else None
        return DomainInfo(record=record, instructions=instructions, dns=dns)

    async def lookup(self, domain: str) -> tuple[dict[str, list[str]], list[ProviderMatch]]:
        """Inspect any hostname's DNS records and guess its DNS provider."""
        domain = validate_hostname(domain)
        records, providers = await asyncio.gather(
            self.verifier.lookup_records(domain),
            self.verifier.detect_provider(domain),
        )
        return records, providers

    async def stats(self, tenant_id: str) -> DomainStats:
        records = await self.store.list_for_tenant(tenant_id)
        return DomainStats(
            total=len(records),
            verified=sum(1 for rec in records if rec.is_verified),
            active=sum(1 for rec in records if rec.is_active),
            pending=sum(
                1
                for rec in records
                if rec.verification_status
                in (VerificationStatus.UNVERIFIED, VerificationStatus.PENDING)
            ),
        )

    async def verify_pending(self, tenant_id: str | None = None) -> list[VerificationReport]:
        """Re-check every unverified, pending or failed domain once.

        This is an explicit sweep for operators; nothing schedules it.
        Checks are spaced by ``sweep_delay`` seconds to go easy on resolvers.

        Args:
            tenant_id: Limit the sweep to one tenant.
        """
        if tenant_id is None:
            records = await self.store.list_all()
        else:
            records = await self.store.list_for_tenant(tenant_id)
        candidates = [rec for rec in records if not rec.is_verified]

        reports = []
        for index, record in enumerate(candidates):
            if index and self.sweep_delay > 0:
                await asyncio.sleep(self.sweep_delay)
            try:
                reports.append(await self.verify_domain(record.tenant_id, record.id))
            except DomainNotFound:
                logger.debug("Domain removed during sweep", domain_id=record.id)
        return reports

    def setup_instructions(self, record: DomainRecord) -> SetupInstructions:
        """Generate DNS setup instructions for the tenant."""
        return build_setup_instructions(record, self.cname_target)
