"""Domain service interface shared by the wizard and the list controller.

Both presentation controllers talk to a :class:`DomainService`. In a browser
style deployment that is the remote API client; in-process (CLI, tests,
server-side tooling) it is a :class:`LocalDomainService` bound to one tenant.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from brandlink.domains.manager import DomainManager, DomainStats
from brandlink.domains.storage import DomainRecord
from brandlink.domains.verification import VerificationReport


@runtime_checkable
class DomainService(Protocol):
    """Operations a tenant session can perform on its domains."""

    async def list_domains(self) -> list[DomainRecord]: ...

    async def get_domain(self, record_id: str) -> DomainRecord: ...

    async def create_domain(
        self,
        base_domain: str,
        subdomain: str | None = None,
        is_default: bool = False,
    ) -> DomainRecord: ...

    async def verify_domain(self, record_id: str) -> VerificationReport: ...

    async def set_default(self, record_id: str) -> DomainRecord: ...

    async def delete_domain(self, record_id: str) -> bool: ...

    async def update_settings(
        self,
        record_id: str,
        notes: str | None = None,
        redirect_type: int | None = None,
    ) -> DomainRecord: ...

    async def stats(self) -> DomainStats: ...


class LocalDomainService:
    """A DomainService backed directly by a DomainManager for one tenant."""

    def __init__(self, manager: DomainManager, tenant_id: str, user: str | None = None) -> None:
        self.manager = manager
        self.tenant_id = tenant_id
        self.user = user

    async def list_domains(self) -> list[DomainRecord]:
        return await self.manager.list_domains(self.tenant_id)

    async def get_domain(self, record_id: str) -> DomainRecord:
        return await self.manager.get_domain(self.tenant_id, record_id)

    async def create_domain(
        self,
        base_domain: str,
        subdomain: str | None = None,
        is_default: bool = False,
    ) -> DomainRecord:
        return await self.manager.register_domain(
            self.tenant_id,
            base_domain,
            subdomain=subdomain,
            added_by=self.user,
            is_default=is_default,
        )

    async def verify_domain(self, record_id: str) -> VerificationReport:
        return await self.manager.verify_domain(self.tenant_id, record_id, verified_by=self.user)

    async def set_default(self, record_id: str) -> DomainRecord:
        return await self.manager.set_default(self.tenant_id, record_id)

    async def delete_domain(self, record_id: str) -> bool:
        return await self.manager.delete_domain(self.tenant_id, record_id)

    async def update_settings(
        self,
        record_id: str,
        notes: str | None = None,
        redirect_type: int | None = None,
    ) -> DomainRecord:
        if notes is None:
            return await self.manager.update_settings(
                self.tenant_id, record_id, redirect_type=redirect_type
            )
        return await self.manager.update_settings(
            self.tenant_id, record_id, notes=notes, redirect_type=redirect_type
        )

    async def stats(self) -> DomainStats:
        return await self.manager.stats(self.tenant_id)
