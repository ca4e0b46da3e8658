"""Storage for tenant domain records.

This module provides JSON file-based storage for domain records, suitable for
self-hosted deployments, with an in-memory mode for tests and ephemeral runs.

Storage file format (domains.json):
    {
        "domains": {
            "5f0c...": {
                "id": "5f0c...",
                "tenant_id": "acme",
                "base_domain": "example.com",
                "subdomain": "links",
                "operational_status": "active",
                "verification_status": "verified",
                "is_default": true,
                "cname_target": "cname.brandlink.link",
                "created_at": "2024-01-15T10:00:00+00:00",
                "added_by": "ops@acme.test",
                ...
            }
        }
    }

The store is the source of truth for the default-domain invariant: a tenant
has at most one default domain, and exactly one once any of its domains is
active.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import os
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from brandlink.domains.errors import (
    CannotDeleteDefault,
    DomainNotActive,
    DomainNotFound,
    DuplicateDomain,
)
from brandlink.domains.hostnames import build_full_domain, to_unicode

logger = structlog.get_logger()

REDIRECT_TYPES = (301, 302, 307)
IMMUTABLE_FIELDS = frozenset(
    {"id", "tenant_id", "base_domain", "subdomain", "created_at", "added_by"}
)


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


def parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class OperationalStatus(Enum):
    """Whether a domain currently serves redirects."""

    PENDING = "pending"
    ACTIVE = "active"
    SSL_FAILED = "ssl_failed"
    INACTIVE = "inactive"

    @classmethod
    def parse(cls, value: str | None) -> OperationalStatus:
        if not value:
            return cls.PENDING
        normalized = value.strip().lower()
        if normalized in ("sslfailed", "ssl-failed"):
            normalized = "ssl_failed"
        if normalized == "verification_failed":
            return cls.INACTIVE
        return cls(normalized)


class VerificationStatus(Enum):
    """Whether DNS ownership has been proven. Independent of OperationalStatus."""

    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass
class DomainRecord:
    """A custom domain owned by a tenant.

    ``full_domain`` is always derived from ``base_domain`` and ``subdomain``
    so the two can never drift apart.
    """

    tenant_id: str
    base_domain: str
    subdomain: str | None = None
    id: str = field(default_factory=_new_id)
    cname_target: str = ""
    operational_status: OperationalStatus = OperationalStatus.PENDING
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    is_default: bool = False
    created_at: datetime = field(default_factory=_utc_now)
    added_by: str | None = None
    verified_at: datetime | None = None
    verified_by: str | None = None
    last_checked_at: datetime | None = None
    last_outcome: str | None = None
    failed_checks: int = 0
    record_type: str = "CNAME"
    notes: str | None = None
    redirect_type: int = 302

    @property
    def full_domain(self) -> str:
        return build_full_domain(self.base_domain, self.subdomain)

    @property
    def unicode_domain(self) -> str:
        return to_unicode(self.full_domain)

    @property
    def is_apex(self) -> bool:
        """True when the record has no subdomain (CNAME may be disallowed)."""
        return self.subdomain is None

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED

    @property
    def is_active(self) -> bool:
        return self.operational_status == OperationalStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "base_domain": self.base_domain,
            "subdomain": self.subdomain,
            "full_domain": self.full_domain,
            "cname_target": self.cname_target,
            "operational_status": self.operational_status.value,
            "verification_status": self.verification_status.value,
            "is_default": self.is_default,
            "created_at": self.created_at.isoformat(),
            "added_by": self.added_by,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "verified_by": self.verified_by,
            "last_checked_at": self.last_checked_at.isoformat()
            if self.last_checked_at
            else None,
            "last_outcome": self.last_outcome,
            "failed_checks": self.failed_checks,
            "record_type": self.record_type,
            "notes": self.notes,
            "redirect_type": self.redirect_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainRecord:
        """Create from dictionary (JSON deserialization)."""
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            base_domain=data["base_domain"],
            subdomain=data.get("subdomain") or None,
            cname_target=data.get("cname_target", ""),
            operational_status=OperationalStatus.parse(data.get("operational_status")),
            verification_status=VerificationStatus(
                data.get("verification_status", VerificationStatus.UNVERIFIED.value)
            ),
            is_default=data.get("is_default", False),
            created_at=parse_datetime(data.get("created_at")) or _utc_now(),
            added_by=data.get("added_by"),
            verified_at=parse_datetime(data.get("verified_at")),
            verified_by=data.get("verified_by"),
            last_checked_at=parse_datetime(data.get("last_checked_at")),
            last_outcome=data.get("last_outcome"),
            failed_checks=data.get("failed_checks", 0),
            record_type=data.get("record_type", "CNAME"),
            notes=data.get("notes"),
            redirect_type=data.get("redirect_type", 302),
        )

    def to_api(self) -> dict[str, Any]:
        """Wire representation used by the remote domain API."""
        return {
            "id": self.id,
            "domain": self.base_domain,
            "baseDomain": self.base_domain,
            "subdomain": self.subdomain,
            "fullDomain": self.full_domain,
            "unicodeDomain": self.unicode_domain,
            "status": self.operational_status.value,
            "verificationStatus": self.verification_status.value,
            "verified": self.is_verified,
            "isDefault": self.is_default,
            "cnameTarget": self.cname_target,
            "createdAt": self.created_at.isoformat(),
            "addedBy": self.added_by,
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
            "lastCheckedAt": self.last_checked_at.isoformat()
            if self.last_checked_at
            else None,
            "lastOutcome": self.last_outcome,
            "failedChecks": self.failed_checks,
            "recordType": self.record_type,
            "notes": self.notes,
            "redirectType": self.redirect_type,
        }

    @classmethod
    def from_api(cls, data: dict[str, Any], tenant_id: str = "") -> DomainRecord:
        """Build a record from any shape the domain API has served.

        Older deployments send ``_id`` instead of ``id``, a boolean
        ``verified`` instead of ``verificationStatus``, ``dateAdded`` instead
        of ``createdAt``, ``status == "verification_failed"`` and a nested
        ``metadata.addedBy`` user object. All of them land on one schema here.
        """
        record_id = data.get("id") or data.get("_id")
        if not record_id:
            raise ValueError("Domain payload has no id")

        base_domain = data.get("baseDomain") or data.get("domain") or data.get("fullDomain")
        if not base_domain:
            raise ValueError("Domain payload has no domain")

        raw_status = data.get("status") or data.get("operationalStatus")
        if "verificationStatus" in data and data["verificationStatus"]:
            verification = VerificationStatus(data["verificationStatus"])
        elif data.get("verified"):
            verification = VerificationStatus.VERIFIED
        else:
            verification = VerificationStatus.UNVERIFIED
        if raw_status == "verification_failed":
            verification = VerificationStatus.FAILED

        metadata = data.get("metadata") or {}
        added_by = data.get("addedBy") or metadata.get("addedBy")
        if isinstance(added_by, dict):
            added_by = added_by.get("email") or added_by.get("id") or added_by.get("_id")

        verification_record = data.get("verificationRecord") or {}

        return cls(
            id=str(record_id),
            tenant_id=data.get("tenantId") or tenant_id,
            base_domain=str(base_domain).lower(),
            subdomain=(data.get("subdomain") or None),
            cname_target=data.get("cnameTarget") or verification_record.get("value") or "",
            operational_status=OperationalStatus.parse(raw_status),
            verification_status=verification,
            is_default=bool(data.get("isDefault", False)),
            created_at=parse_datetime(data.get("createdAt") or data.get("dateAdded"))
            or _utc_now(),
            added_by=added_by,
            verified_at=parse_datetime(data.get("verifiedAt") or metadata.get("verifiedAt")),
            last_checked_at=parse_datetime(
                data.get("lastCheckedAt") or verification_record.get("lastChecked")
            ),
            last_outcome=data.get("lastOutcome"),
            failed_checks=data.get("failedChecks", 0),
            record_type=data.get("recordType") or verification_record.get("type") or "CNAME",
            notes=data.get("notes") or metadata.get("notes"),
            redirect_type=data.get("redirectType")
            or (data.get("configuration") or {}).get("redirectType")
            or 302,
        )


class DomainStore:
    """JSON file-based storage for domain records.

    Writes are serialized with an asyncio lock and readers get copies, so no
    caller ever observes a half-applied update. Pass ``storage_path=None``
    for a purely in-memory store.
    """

    def __init__(
        self,
        storage_path: str | Path | None = "domains.json",
        unique_across_tenants: bool = True,
    ) -> None:
        """Initialize domain store.

        Args:
            storage_path: Path to the JSON storage file, or None for memory only.
            unique_across_tenants: Reject a hostname already claimed by any tenant.
        """
        self.storage_path = Path(storage_path) if storage_path else None
        self.unique_across_tenants = unique_across_tenants
        self._lock = asyncio.Lock()
        self._cache: dict[str, DomainRecord] | None = None

    async def _load(self) -> dict[str, DomainRecord]:
        """Load domains from storage file."""
        if self._cache is not None:
            return self._cache

        if self.storage_path is None or not self.storage_path.exists():
            self._cache = {}
            return self._cache

        try:
            content = await asyncio.to_thread(self.storage_path.read_text)
            data = json.loads(content)
            self._cache = {
                record_id: DomainRecord.from_dict(record_data)
                for record_id, record_data in data.get("domains", {}).items()
            }
        except (json.JSONDecodeError, KeyError) as e:
            logger.warning("Unreadable domain storage, starting empty", error=str(e))
            self._cache = {}

        return self._cache

    async def _save(self, domains: dict[str, DomainRecord]) -> None:
        """Save domains to storage file."""
        if self.storage_path is not None:
            data = {"domains": {record_id: rec.to_dict() for record_id, rec in domains.items()}}
            content = json.dumps(data, indent=2)
            await asyncio.to_thread(self._write_atomic, self.storage_path, content)
        self._cache = domains

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        """Replace the storage file so readers never see a partial write."""
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(content)
        os.replace(tmp_path, path)

    @staticmethod
    def _tenant_records(
        domains: dict[str, DomainRecord], tenant_id: str
    ) -> list[DomainRecord]:
        return sorted(
            (rec for rec in domains.values() if rec.tenant_id == tenant_id),
            key=lambda rec: (rec.created_at, rec.id),
        )

    @classmethod
    def _ensure_default(cls, domains: dict[str, DomainRecord], tenant_id: str) -> None:
        """Give the tenant a default once it has an active domain."""
        records = cls._tenant_records(domains, tenant_id)
        if any(rec.is_default for rec in records):
            return
        for rec in records:
            if rec.is_active:
                domains[rec.id] = dataclasses.replace(rec, is_default=True)
                logger.info("Default domain assigned", tenant=tenant_id, domain=rec.full_domain)
                return

    async def create(self, record: DomainRecord) -> DomainRecord:
        """Insert a new record.

        Raises:
            DuplicateDomain: If the hostname is already registered.
        """
        async with self._lock:
            domains = dict(await self._load())
            full_domain = record.full_domain
            for existing in domains.values():
                if existing.full_domain != full_domain:
                    continue
                if existing.tenant_id == record.tenant_id or self.unique_across_tenants:
                    raise DuplicateDomain(f"Domain {full_domain} is already registered")

            if record.is_default:
                if not record.is_active:
                    raise DomainNotActive("Only an active domain can be the default")
                for rec in self._tenant_records(domains, record.tenant_id):
                    if rec.is_default:
                        domains[rec.id] = dataclasses.replace(rec, is_default=False)

            domains[record.id] = dataclasses.replace(record)
            self._ensure_default(domains, record.tenant_id)
            await self._save(domains)
            return dataclasses.replace(domains[record.id])

    async def get(self, record_id: str) -> DomainRecord | None:
        """Get a copy of a record by id.

        Args:
            record_id: The record id to look up.

        Returns:
            The record if found, None otherwise.
        """
        async with self._lock:
            domains = await self._load()
            record = domains.get(record_id)
            return dataclasses.replace(record) if record else None

    async def find_by_domain(
        self, full_domain: str, tenant_id: str | None = None
    ) -> DomainRecord | None:
        """Look a record up by hostname, optionally restricted to one tenant."""
        full_domain = full_domain.lower().strip().rstrip(".")
        async with self._lock:
            domains = await self._load()
            for record in domains.values():
                if record.full_domain != full_domain:
                    continue
                if tenant_id is None or record.tenant_id == tenant_id:
                    return dataclasses.replace(record)
            return None

    async def list_for_tenant(self, tenant_id: str) -> list[DomainRecord]:
        """Get all records of a tenant, oldest first.

        Args:
            tenant_id: The tenant to filter by.

        Returns:
            Copies of the tenant's records sorted by creation time.
        """
        async with self._lock:
            domains = await self._load()
            return [dataclasses.replace(rec) for rec in self._tenant_records(domains, tenant_id)]

    async def list_all(self) -> list[DomainRecord]:
        """Get all domain records."""
        async with self._lock:
            domains = await self._load()
            return [
                dataclasses.replace(rec)
                for rec in sorted(domains.values(), key=lambda rec: (rec.created_at, rec.id))
            ]

    async def get_default(self, tenant_id: str) -> DomainRecord | None:
        """Get the tenant's default domain, if any."""
        async with self._lock:
            domains = await self._load()
            for rec in self._tenant_records(domains, tenant_id):
                if rec.is_default:
                    return dataclasses.replace(rec)
            return None

    async def update(self, record_id: str, **changes: Any) -> DomainRecord:
        """Apply a single-record update and return the stored copy.

        ``is_default`` cannot be changed here, use :meth:`set_default`.

        Raises:
            DomainNotFound: If no record has this id.
            ValueError: If an immutable field or ``is_default`` is changed.
        """
        self._check_changes(changes)
        return await self.update_with(record_id, lambda record: changes)

    async def update_with(
        self,
        record_id: str,
        decide: Callable[[DomainRecord], dict[str, Any]],
    ) -> DomainRecord:
        """Update a record from changes computed against its current state.

        ``decide`` runs under the store lock with a copy of the stored record,
        so no other write can land between reading and writing. An empty
        result leaves the record untouched.

        Raises:
            DomainNotFound: If no record has this id.
            ValueError: If an immutable field or ``is_default`` is changed.
        """
        async with self._lock:
            domains = dict(await self._load())
            record = domains.get(record_id)
            if record is None:
                raise DomainNotFound(f"Domain {record_id} not found")

            changes = decide(dataclasses.replace(record))
            if not changes:
                return dataclasses.replace(record)
            self._check_changes(changes)

            updated = dataclasses.replace(record, **changes)
            domains[record_id] = updated
            if updated.is_active and not record.is_active:
                self._ensure_default(domains, updated.tenant_id)
            await self._save(domains)
            return dataclasses.replace(domains[record_id])

    @staticmethod
    def _check_changes(changes: dict[str, Any]) -> None:
        forbidden = (IMMUTABLE_FIELDS | {"is_default"}) & changes.keys()
        if forbidden:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(forbidden))}")

    async def set_default(
        self, tenant_id: str, record_id: str
    ) -> tuple[DomainRecord, DomainRecord | None]:
        """Atomically move the tenant's default flag to ``record_id``.

        Both writes happen inside one locked section and one save, so readers
        see either the old default or the new one, never zero or two.

        Returns:
            Tuple of (new default, previous default or None).

        Raises:
            DomainNotFound: If the record does not exist for this tenant.
            DomainNotActive: If the record is not active.
        """
        async with self._lock:
            domains = dict(await self._load())
            target = domains.get(record_id)
            if target is None or target.tenant_id != tenant_id:
                raise DomainNotFound(f"Domain {record_id} not found")
            if not target.is_active:
                raise DomainNotActive(
                    f"Domain {target.full_domain} must be active before it can be the default"
                )

            previous = None
            for rec in self._tenant_records(domains, tenant_id):
                if rec.is_default and rec.id != record_id:
                    previous = dataclasses.replace(rec, is_default=False)
                    domains[rec.id] = previous

            domains[record_id] = dataclasses.replace(target, is_default=True)
            await self._save(domains)
            return dataclasses.replace(domains[record_id]), previous

    async def delete(self, record_id: str, allow_default: bool = False) -> bool:
        """Delete a record.

        Args:
            record_id: The record to delete.
            allow_default: Permit deleting the default domain. Another active
                domain of the tenant then inherits the default flag.

        Returns:
            True if deleted, False if not found.

        Raises:
            CannotDeleteDefault: If the record is the default and that is not allowed.
        """
        async with self._lock:
            domains = dict(await self._load())
            record = domains.get(record_id)
            if record is None:
                return False
            if record.is_default and not allow_default:
                raise CannotDeleteDefault(
                    f"Domain {record.full_domain} is the default domain; "
                    "set another default before deleting it"
                )

            del domains[record_id]
            if record.is_default:
                self._ensure_default(domains, record.tenant_id)
            await self._save(domains)
            return True

    def invalidate_cache(self) -> None:
        """Invalidate the in-memory cache.

        Call this after external modifications to the storage file.
        Has no effect on an in-memory store other than emptying it.
        """
        self._cache = None
