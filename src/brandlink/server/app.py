"""HTTP API for tenant custom domains.

Every response uses one envelope:

    {"success": true, "data": {...}, "message": "..."}
    {"success": false, "error": "not_active", "message": "..."}

``error`` is the machine readable code of the raised DomainError, so clients
can map failures back onto the same exception types. Requests authenticate
with ``Authorization: Bearer <token>``; the token selects the tenant.
"""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from brandlink import __version__
from brandlink.domains.errors import DomainError, SessionExpired, ValidationError
from brandlink.domains.manager import DomainManager
from brandlink.domains.storage import OperationalStatus, VerificationStatus
from brandlink.observability.metrics import generate_metrics, get_content_type

logger = structlog.get_logger()


class DomainCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    domain: str | None = None
    subdomain: str | None = None
    full_domain: str | None = Field(default=None, alias="fullDomain")
    is_default: bool = Field(default=False, alias="isDefault")


class DomainUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notes: str | None = None
    redirect_type: int | None = Field(default=None, alias="redirectType")


class PromoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ssl_ok: bool | None = Field(default=None, alias="sslOk")


def _envelope(
    data: Any = None, message: str | None = None, status_code: int = 200
) -> JSONResponse:
    content: dict[str, Any] = {"success": True, "data": data}
    if message:
        content["message"] = message
    return JSONResponse(content, status_code=status_code)


def _error(code: str, message: str, status_code: int, data: Any = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": code, "message": message}
    if data is not None:
        content["data"] = data
    return JSONResponse(content, status_code=status_code)


def _parse_enum(enum_cls: type, value: str | None, name: str) -> Any:
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"Unknown {name}: {value}") from e


def create_app(manager: DomainManager, api_tokens: dict[str, str]) -> FastAPI:
    """Create the domain API application.

    Args:
        manager: Domain manager serving all tenants.
        api_tokens: Bearer token to tenant id mapping.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Domain API starting", tenants=len(set(api_tokens.values())))
        yield
        await manager.drain()
        logger.info("Domain API stopped")

    app = FastAPI(title="Brandlink Domain API", version=__version__, lifespan=lifespan)
    app.state.manager = manager

    async def current_tenant(request: Request) -> str:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            raise SessionExpired("Authentication required")
        token = header[7:].strip()
        for known, tenant_id in api_tokens.items():
            if secrets.compare_digest(token, known):
                return tenant_id
        raise SessionExpired("Invalid or expired token")

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("Domain request failed", path=request.url.path, error=exc.message)
        return _error(exc.code, exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'][1:])}: {err['msg']}"
            for err in exc.errors()
        )
        return _error(ValidationError.code, details or "Invalid request", 400)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_metrics(), media_type=get_content_type())

    @app.get("/domains")
    async def list_domains(
        status: str | None = None,
        verification_status: str | None = None,
        search: str | None = None,
        tenant_id: str = Depends(current_tenant),
    ) -> JSONResponse:
        records = await manager.list_domains(
            tenant_id,
            status=_parse_enum(OperationalStatus, status, "status"),
            verification_status=_parse_enum(
                VerificationStatus, verification_status, "verification status"
            ),
            search=search,
        )
        return _envelope({"domains": [rec.to_api() for rec in records], "total": len(records)})

    @app.get("/domains/stats")
    async def domain_stats(tenant_id: str = Depends(current_tenant)) -> JSONResponse:
        stats = await manager.stats(tenant_id)
        return _envelope({"stats": stats.to_api()})

    @app.get("/domains/info/{domain}")
    async def domain_info(domain: str, tenant_id: str = Depends(current_tenant)) -> JSONResponse:
        records, providers = await manager.lookup(domain)
        return _envelope(
            {
                "domain": domain,
                "info": records,
                "providers": [
                    {"name": p.name, "nameserver": p.nameserver, "detected": p.detected}
                    for p in providers
                ],
            }
        )

    @app.post("/domains")
    async def create_domain(
        body: DomainCreate, tenant_id: str = Depends(current_tenant)
    ) -> JSONResponse:
        base_domain = body.domain or body.full_domain
        if not base_domain:
            raise ValidationError("Domain name is required")
        record = await manager.register_domain(
            tenant_id,
            base_domain,
            subdomain=body.subdomain,
            added_by=tenant_id,
            is_default=body.is_default,
        )
        return _envelope(
            {
                "domain": record.to_api(),
                "setupInstructions": manager.setup_instructions(record).to_api(),
            },
            message="Domain added successfully",
            status_code=201,
        )

    @app.get("/domains/{record_id}")
    async def get_domain(record_id: str, tenant_id: str = Depends(current_tenant)) -> JSONResponse:
        info = await manager.get_domain_info(tenant_id, record_id)
        return _envelope(
            {
                "domain": info.record.to_api(),
                "status": info.status,
                "setupInstructions": info.instructions.to_api() if info.instructions else None,
            }
        )

    @app.put("/domains/{record_id}")
    async def update_domain(
        record_id: str, body: DomainUpdate, tenant_id: str = Depends(current_tenant)
    ) -> JSONResponse:
        changes: dict[str, Any] = {"redirect_type": body.redirect_type}
        if "notes" in body.model_fields_set:
            changes["notes"] = body.notes
        record = await manager.update_settings(tenant_id, record_id, **changes)
        return _envelope({"domain": record.to_api()}, message="Domain updated successfully")

    @app.delete("/domains/{record_id}")
    async def delete_domain(
        record_id: str, tenant_id: str = Depends(current_tenant)
    ) -> JSONResponse:
        deleted = await manager.delete_domain(tenant_id, record_id)
        if not deleted:
            return _error("not_found", "Domain not found", 404)
        return _envelope(message="Domain deleted successfully")

    @app.post("/domains/{record_id}/verify")
    async def verify_domain(
        record_id: str, tenant_id: str = Depends(current_tenant)
    ) -> JSONResponse:
        report = await manager.verify_domain(tenant_id, record_id, verified_by=tenant_id)
        data = report.to_api()
        if report.is_verified:
            return _envelope(data, message="Domain verification successful")
        if report.is_transient:
            return _error("transient", report.message, 503, data=data)
        return _error("verification_failed", report.message, 400, data=data)

    @app.post("/domains/{record_id}/set-default")
    async def set_default(
        record_id: str, tenant_id: str = Depends(current_tenant)
    ) -> JSONResponse:
        record = await manager.set_default(tenant_id, record_id)
        return _envelope({"domain": record.to_api()}, message="Default domain updated")

    @app.post("/domains/{record_id}/promote")
    async def promote_domain(
        record_id: str,
        body: PromoteRequest | None = None,
        tenant_id: str = Depends(current_tenant),
    ) -> JSONResponse:
        ssl_ok = body.ssl_ok if body else None
        record = await manager.promote_domain(tenant_id, record_id, ssl_ok=ssl_ok)
        return _envelope({"domain": record.to_api()}, message="Domain promoted")

    return app
