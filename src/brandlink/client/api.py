"""Authenticated client for the remote domain API.

The client speaks the ``{success, data, message, error}`` envelope and turns
every failure into the DomainError taxonomy:

- HTTP 401 clears the token, notifies ``on_session_expired`` and raises
  SessionExpired
- timeouts and connection failures raise TransientError
- error envelopes map by their ``error`` code, falling back to the HTTP status

Responses from older API deployments (``_id``, boolean ``verified``,
``dateAdded``, ``verification_failed``...) are accepted as well.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from brandlink.domains.errors import (
    ERRORS_BY_CODE,
    ApiError,
    ConflictError,
    DomainError,
    DomainNotFound,
    SessionExpired,
    TransientError,
    ValidationError,
)
from brandlink.domains.hostnames import build_full_domain
from brandlink.domains.manager import DomainStats
from brandlink.domains.storage import DomainRecord, parse_datetime
from brandlink.domains.verification import VerificationOutcome, VerificationReport

if TYPE_CHECKING:
    from brandlink.core.config import ApiClientSettings

logger = structlog.get_logger()

_STATUS_ERRORS: dict[int, type[DomainError]] = {
    400: ValidationError,
    403: DomainNotFound,
    404: DomainNotFound,
    409: ConflictError,
    422: ValidationError,
    502: TransientError,
    503: TransientError,
    504: TransientError,
}


def error_from_response(status_code: int, body: dict[str, Any]) -> DomainError:
    """Map an error envelope onto the DomainError taxonomy."""
    message = body.get("message") or body.get("detail") or f"Request failed with HTTP {status_code}"
    if not isinstance(message, str):
        message = str(message)

    code = body.get("error")
    error_cls = ERRORS_BY_CODE.get(code) if isinstance(code, str) else None
    if error_cls is None:
        error_cls = _STATUS_ERRORS.get(status_code)
    if error_cls is None:
        return ApiError(message, status_code=status_code)
    return error_cls(message)


def _records_from_payload(payload: Any, tenant_id: str) -> list[DomainRecord]:
    if isinstance(payload, dict):
        payload = payload.get("domains", [])
    return [DomainRecord.from_api(item, tenant_id=tenant_id) for item in payload or []]


class DomainApiClient:
    """DomainService implementation talking to the remote domain API.

    Example:
        async with DomainApiClient("https://api.brandlink.link", token="...") as api:
            records = await api.list_domains()
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        tenant_id: str = "",
        on_session_expired: Callable[[], None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize API client.

        Args:
            base_url: Root URL of the domain API.
            token: Bearer token for the tenant session.
            timeout: Request timeout in seconds.
            tenant_id: Tenant recorded on parsed records.
            on_session_expired: Called once the server rejects the token.
            transport: Custom httpx transport (tests use httpx.MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.tenant_id = tenant_id
        self.on_session_expired = on_session_expired
        self._token = token
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: ApiClientSettings, **kwargs: Any) -> DomainApiClient:
        return cls(
            settings.api_base_url,
            token=settings.api_token,
            timeout=settings.api_timeout,
            **kwargs,
        )

    @property
    def token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        self._token = token

    def clear_token(self) -> None:
        self._token = None

    async def __aenter__(self) -> DomainApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _session_expired(self, message: str) -> SessionExpired:
        self.clear_token()
        logger.warning("Domain API session expired", base_url=self.base_url)
        if self.on_session_expired is not None:
            self.on_session_expired()
        return SessionExpired(message)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_error: bool = False,
    ) -> tuple[int, dict[str, Any]]:
        """Send one request and return ``(status, envelope)``.

        Args:
            allow_error: Return error envelopes instead of raising.

        Raises:
            SessionExpired: On HTTP 401 or when no token is set.
            TransientError: On timeouts and transport failures.
        """
        if not self._token:
            raise self._session_expired("Not signed in")

        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            response = await self._get_http_client().request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TimeoutException as e:
            logger.warning("Domain API timeout", method=method, path=path, error=str(e))
            raise TransientError(f"Request to {path} timed out") from e
        except httpx.RequestError as e:
            logger.warning("Domain API unreachable", method=method, path=path, error=str(e))
            raise TransientError(f"Could not reach the domain API: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"success": response.is_success, "data": body}

        if response.status_code == 401:
            raise self._session_expired(body.get("message") or "Session expired")

        failed = response.is_error or body.get("success") is False
        if failed and not allow_error:
            raise error_from_response(response.status_code, body)
        return response.status_code, body

    async def list_domains(self) -> list[DomainRecord]:
        """List the tenant's domains, oldest first."""
        _, body = await self._request("GET", "/domains")
        records = _records_from_payload(body.get("data"), self.tenant_id)
        return sorted(records, key=lambda rec: (rec.created_at, rec.id))

    async def get_domain(self, record_id: str) -> DomainRecord:
        _, body = await self._request("GET", f"/domains/{record_id}")
        return self._record(body)

    async def create_domain(
        self,
        base_domain: str,
        subdomain: str | None = None,
        is_default: bool = False,
    ) -> DomainRecord:
        full_domain = build_full_domain(base_domain.strip(), subdomain.strip() if subdomain else None)
        payload: dict[str, Any] = {
            "domain": base_domain,
            "fullDomain": full_domain,
            "isDefault": is_default,
        }
        if subdomain:
            payload["subdomain"] = subdomain
        _, body = await self._request("POST", "/domains", json=payload)
        return self._record(body)

    async def verify_domain(self, record_id: str) -> VerificationReport:
        """Trigger a DNS check.

        Every conclusive outcome comes back as a report, including failures;
        only errors unrelated to DNS are raised.
        """
        status_code, body = await self._request(
            "POST", f"/domains/{record_id}/verify", allow_error=True
        )
        data = body.get("data")
        if isinstance(data, dict) and "outcome" in data:
            return self._report(data)
        if isinstance(data, dict) and body.get("success"):
            return self._legacy_report(data, verified=True)
        if isinstance(data, dict) and "details" in data:
            return self._legacy_report(data, verified=False)
        raise error_from_response(status_code, body)

    async def set_default(self, record_id: str) -> DomainRecord:
        _, body = await self._request("POST", f"/domains/{record_id}/set-default")
        return self._record(body)

    async def promote_domain(self, record_id: str, ssl_ok: bool | None = None) -> DomainRecord:
        payload = {} if ssl_ok is None else {"sslOk": ssl_ok}
        _, body = await self._request("POST", f"/domains/{record_id}/promote", json=payload)
        return self._record(body)

    async def delete_domain(self, record_id: str) -> bool:
        try:
            await self._request("DELETE", f"/domains/{record_id}")
        except DomainNotFound:
            return False
        return True

    async def update_settings(
        self,
        record_id: str,
        notes: str | None = None,
        redirect_type: int | None = None,
    ) -> DomainRecord:
        payload: dict[str, Any] = {}
        if notes is not None:
            payload["notes"] = notes
        if redirect_type is not None:
            payload["redirectType"] = redirect_type
        _, body = await self._request("PUT", f"/domains/{record_id}", json=payload)
        return self._record(body)

    async def stats(self) -> DomainStats:
        _, body = await self._request("GET", "/domains/stats")
        data = body.get("data") or {}
        stats = data.get("stats", data)
        return DomainStats(
            total=stats.get("totalDomains", 0),
            verified=stats.get("verifiedDomains", 0),
            active=stats.get("activeDomains", 0),
            pending=stats.get("pendingDomains", 0),
        )

    async def lookup(self, domain: str) -> dict[str, Any]:
        """Fetch live DNS records and detected providers for any hostname."""
        _, body = await self._request("GET", f"/domains/info/{domain}")
        return body.get("data") or {}

    def _record(self, body: dict[str, Any]) -> DomainRecord:
        data = body.get("data") or {}
        payload = data.get("domain", data) if isinstance(data, dict) else data
        if not isinstance(payload, dict):
            raise ApiError("Domain API returned no domain")
        try:
            return DomainRecord.from_api(payload, tenant_id=self.tenant_id)
        except ValueError as e:
            raise ApiError(f"Malformed domain payload: {e}") from e

    def _report(self, data: dict[str, Any]) -> VerificationReport:
        record = data.get("record")
        report = VerificationReport(
            domain=data.get("domain", ""),
            outcome=VerificationOutcome(data["outcome"]),
            record_type=data.get("recordType") or "CNAME",
            expected=data.get("expected") or "",
            found=list(data.get("records") or []),
            error=data.get("error"),
            record=DomainRecord.from_api(record, tenant_id=self.tenant_id) if record else None,
        )
        checked_at = parse_datetime(data.get("checkedAt"))
        if checked_at is not None:
            report.checked_at = checked_at
        return report

    def _legacy_report(self, data: dict[str, Any], verified: bool) -> VerificationReport:
        record_data = data.get("domain")
        record = (
            DomainRecord.from_api(record_data, tenant_id=self.tenant_id)
            if isinstance(record_data, dict)
            else None
        )
        details = data.get("details") or {}
        found = [str(value) for value in details.get("records") or []]
        if verified:
            outcome = VerificationOutcome.VERIFIED
        elif found:
            outcome = VerificationOutcome.MISMATCH
        else:
            outcome = VerificationOutcome.NOT_FOUND
        return VerificationReport(
            domain=record.full_domain if record else details.get("domain", ""),
            outcome=outcome,
            record_type=details.get("type") or (record.record_type if record else "CNAME"),
            expected=details.get("expected") or (record.cname_target if record else ""),
            found=found,
            error=details.get("error"),
            record=record,
        )
