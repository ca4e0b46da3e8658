"""Controller behind the tenant's custom domain list.

Keeps an in-memory snapshot of the tenant's domains, refreshed from the
domain service after every write. Failures are exposed through
``last_error`` for the presentation layer; only SessionExpired propagates,
after the snapshot has been cleared.
"""

from __future__ import annotations

import dataclasses
from enum import Enum

import structlog

from brandlink.client.service import DomainService
from brandlink.domains.errors import (
    ConflictError,
    DomainError,
    DomainNotActive,
    DomainNotFound,
    SessionExpired,
)
from brandlink.domains.manager import DomainStats
from brandlink.domains.storage import DomainRecord
from brandlink.domains.verification import VerificationReport

logger = structlog.get_logger()


class ConfirmationState(Enum):
    IDLE = "idle"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ConfirmationDialog:
    """Two-step confirmation for destructive actions."""

    def __init__(self) -> None:
        self.state = ConfirmationState.IDLE
        self.subject_id: str | None = None

    @property
    def is_open(self) -> bool:
        return self.state == ConfirmationState.CONFIRMING

    def open(self, subject_id: str) -> None:
        self.state = ConfirmationState.CONFIRMING
        self.subject_id = subject_id

    def confirm(self) -> str:
        """Confirm the pending action and return its subject.

        Raises:
            ConflictError: If nothing is awaiting confirmation.
        """
        if self.state != ConfirmationState.CONFIRMING or self.subject_id is None:
            raise ConflictError("Nothing to confirm")
        self.state = ConfirmationState.CONFIRMED
        return self.subject_id

    def cancel(self) -> None:
        if self.state == ConfirmationState.CONFIRMING:
            self.state = ConfirmationState.CANCELLED

    def reset(self) -> None:
        self.state = ConfirmationState.IDLE
        self.subject_id = None


def _sort_key(record: DomainRecord) -> tuple:
    return (record.created_at, record.id)


class DomainListController:
    """List, verify, set default and delete a tenant's domains."""

    def __init__(self, service: DomainService) -> None:
        self.service = service
        self.dialog = ConfirmationDialog()
        self.reports: dict[str, VerificationReport] = {}
        self.last_error: DomainError | None = None
        self._domains: list[DomainRecord] = []
        self._checking: set[str] = set()

    @property
    def domains(self) -> list[DomainRecord]:
        return list(self._domains)

    @property
    def default_domain(self) -> DomainRecord | None:
        for record in self._domains:
            if record.is_default:
                return record
        return None

    def is_checking(self, record_id: str) -> bool:
        return record_id in self._checking

    def _find(self, record_id: str) -> DomainRecord | None:
        for record in self._domains:
            if record.id == record_id:
                return record
        return None

    def _replace(self, record: DomainRecord) -> None:
        if self._find(record.id) is None:
            return
        self._domains = [record if rec.id == record.id else rec for rec in self._domains]

    def _session_expired(self) -> None:
        self._domains = []
        self._checking.clear()
        self.reports.clear()
        self.dialog.reset()
        logger.info("Domain list cleared after session expiry")

    async def refresh(self) -> bool:
        """Reload the snapshot from the service."""
        try:
            records = await self.service.list_domains()
        except SessionExpired:
            self._session_expired()
            raise
        except DomainError as e:
            self.last_error = e
            return False
        self._domains = sorted(records, key=_sort_key)
        return True

    async def list_domains(self) -> list[DomainRecord]:
        await self.refresh()
        return self.domains

    async def verify_now(self, record_id: str) -> VerificationReport | None:
        """Check DNS for one listed domain and update it in place."""
        if record_id in self._checking:
            return None
        if self._find(record_id) is None:
            self.last_error = DomainNotFound(f"Domain {record_id} not found")
            return None

        self._checking.add(record_id)
        try:
            report = await self.service.verify_domain(record_id)
        except SessionExpired:
            self._session_expired()
            raise
        except DomainError as e:
            self.last_error = e
            return None
        finally:
            self._checking.discard(record_id)

        self.reports[record_id] = report
        self.last_error = None
        if report.record is not None:
            self._replace(report.record)
        return report

    async def set_default(self, record_id: str) -> bool:
        """Make an active domain the default.

        The snapshot flips both flags in one assignment before the request is
        sent and is restored if the request fails.
        """
        target = self._find(record_id)
        if target is None:
            self.last_error = DomainNotFound(f"Domain {record_id} not found")
            return False
        if target.is_default:
            return True
        if not target.is_active:
            self.last_error = DomainNotActive(
                f"Domain {target.full_domain} must be active before it can be the default"
            )
            return False

        snapshot = self._domains
        self._domains = [
            dataclasses.replace(rec, is_default=rec.id == record_id) for rec in snapshot
        ]
        try:
            await self.service.set_default(record_id)
        except SessionExpired:
            self._session_expired()
            raise
        except DomainError as e:
            self._domains = snapshot
            self.last_error = e
            return False

        self.last_error = None
        await self.refresh()
        return True

    def request_delete(self, record_id: str) -> bool:
        """Open the delete confirmation for a listed domain."""
        if self._find(record_id) is None:
            self.last_error = DomainNotFound(f"Domain {record_id} not found")
            return False
        self.dialog.open(record_id)
        return True

    def cancel_delete(self) -> None:
        self.dialog.cancel()

    async def confirm_delete(self) -> bool:
        """Delete the domain awaiting confirmation."""
        try:
            record_id = self.dialog.confirm()
        except ConflictError as e:
            self.last_error = e
            return False

        try:
            deleted = await self.service.delete_domain(record_id)
        except SessionExpired:
            self._session_expired()
            raise
        except DomainError as e:
            self.last_error = e
            self.dialog.reset()
            return False

        self.dialog.reset()
        self.last_error = None
        self.reports.pop(record_id, None)
        self._domains = [rec for rec in self._domains if rec.id != record_id]
        await self.refresh()
        return deleted

    async def update_settings(
        self,
        record_id: str,
        notes: str | None = None,
        redirect_type: int | None = None,
    ) -> DomainRecord | None:
        try:
            record = await self.service.update_settings(
                record_id, notes=notes, redirect_type=redirect_type
            )
        except SessionExpired:
            self._session_expired()
            raise
        except DomainError as e:
            self.last_error = e
            return None
        self.last_error = None
        self._replace(record)
        return record

    async def stats(self) -> DomainStats | None:
        try:
            return await self.service.stats()
        except SessionExpired:
            self._session_expired()
            raise
        except DomainError as e:
            self.last_error = e
            return None
