"""Tests for the domain HTTP API."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from brandlink.client import (
    DomainApiClient,
    DomainListController,
    PollState,
    ProvisioningWizard,
    WizardStep,
)
from brandlink.domains import (
    DomainManager,
    DomainStore,
    ProviderMatch,
    SessionExpired,
    VerificationOutcome,
    VerificationReport,
)
from brandlink.server import create_app

TARGET = "cname.brandlink.link"
TOKENS = {"acme-token": "acme", "globex-token": "globex"}
ACME = {"Authorization": "Bearer acme-token"}
GLOBEX = {"Authorization": "Bearer globex-token"}


def make_report(outcome: VerificationOutcome, **kwargs) -> VerificationReport:
    return VerificationReport("links.example.com", outcome, "CNAME", TARGET, **kwargs)


def dns_answer(manager, outcome: VerificationOutcome, **kwargs):
    return patch.object(
        manager.verifier,
        "check_record",
        new=AsyncMock(return_value=make_report(outcome, **kwargs)),
    )


@pytest.fixture
def manager():
    return DomainManager(DomainStore(None), cname_target=TARGET)


@pytest.fixture
def client(manager):
    app = create_app(manager, TOKENS)
    with TestClient(app) as test_client:
        yield test_client


def create(client, domain="example.com", subdomain="links", headers=ACME):
    payload = {"domain": domain, "isDefault": False}
    if subdomain:
        payload["subdomain"] = subdomain
    response = client.post("/domains", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["domain"]


def activate(client, manager, record_id):
    with dns_answer(manager, VerificationOutcome.VERIFIED):
        assert client.post(f"/domains/{record_id}/verify", headers=ACME).status_code == 200
    response = client.post(f"/domains/{record_id}/promote", json={}, headers=ACME)
    assert response.status_code == 200, response.text
    return response.json()["data"]["domain"]


class TestAuth:
    """Tests for bearer authentication."""

    def test_missing_token(self, client):
        response = client.get("/domains")

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "session_expired",
            "message": "Authentication required",
        }

    def test_invalid_token(self, client):
        response = client.get("/domains", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.json()["error"] == "session_expired"

    def test_health_is_public(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_metrics(self, client):
        create(client)
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "brandlink_domains_registered_total" in response.text


class TestDomainRoutes:
    """Tests for the domain CRUD routes."""

    def test_create(self, client):
        response = client.post(
            "/domains",
            json={"domain": "Example.com", "subdomain": "sub", "fullDomain": "sub.example.com"},
            headers=ACME,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        domain = body["data"]["domain"]
        assert domain["fullDomain"] == "sub.example.com"
        assert domain["status"] == "pending"
        assert domain["verificationStatus"] == "unverified"
        assert domain["isDefault"] is False
        instructions = body["data"]["setupInstructions"]
        assert instructions["type"] == "CNAME"
        assert instructions["value"] == TARGET

    def test_create_apex_gets_txt_instructions(self, client):
        response = client.post("/domains", json={"domain": "example.com"}, headers=ACME)

        instructions = response.json()["data"]["setupInstructions"]
        assert instructions["type"] == "TXT"
        assert instructions["value"] == f"brandlink-verify={TARGET}"

    def test_create_invalid(self, client):
        response = client.post("/domains", json={"domain": "localhost"}, headers=ACME)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_domain"

    def test_create_missing_domain(self, client):
        response = client.post("/domains", json={}, headers=ACME)

        assert response.status_code == 400
        assert response.json()["error"] == "validation"

    def test_create_malformed_body(self, client):
        response = client.post("/domains", json={"domain": "example.com", "isDefault": "maybe"}, headers=ACME)

        assert response.status_code == 400
        assert response.json()["error"] == "validation"

    def test_create_duplicate(self, client):
        create(client)
        response = client.post(
            "/domains", json={"domain": "example.com", "subdomain": "links"}, headers=GLOBEX
        )

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_domain"

    def test_create_as_default(self, client):
        response = client.post(
            "/domains", json={"domain": "example.com", "isDefault": True}, headers=ACME
        )

        assert response.status_code == 409
        assert response.json()["error"] == "not_active"

    def test_list_is_tenant_scoped(self, client):
        create(client, subdomain="a")
        create(client, domain="globex.com", subdomain=None, headers=GLOBEX)

        body = client.get("/domains", headers=ACME).json()

        assert body["data"]["total"] == 1
        assert body["data"]["domains"][0]["fullDomain"] == "a.example.com"

    def test_list_filters(self, client, manager):
        first = create(client, subdomain="a")
        create(client, subdomain="b")
        activate(client, manager, first["id"])

        active = client.get("/domains", params={"status": "active"}, headers=ACME).json()
        assert [d["id"] for d in active["data"]["domains"]] == [first["id"]]

        bad = client.get("/domains", params={"status": "bogus"}, headers=ACME)
        assert bad.status_code == 400

    def test_get(self, client):
        domain = create(client)

        body = client.get(f"/domains/{domain['id']}", headers=ACME).json()

        assert body["data"]["domain"]["id"] == domain["id"]
        assert body["data"]["status"] == "pending_verification"
        assert body["data"]["setupInstructions"]["host"] == "links"

    def test_get_other_tenant(self, client):
        domain = create(client)

        response = client.get(f"/domains/{domain['id']}", headers=GLOBEX)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_update_settings(self, client):
        domain = create(client)

        response = client.put(
            f"/domains/{domain['id']}",
            json={"notes": "summer campaign", "redirectType": 301},
            headers=ACME,
        )

        assert response.status_code == 200
        updated = response.json()["data"]["domain"]
        assert updated["notes"] == "summer campaign"
        assert updated["redirectType"] == 301

    def test_update_invalid_redirect(self, client):
        domain = create(client)

        response = client.put(f"/domains/{domain['id']}", json={"redirectType": 303}, headers=ACME)

        assert response.status_code == 400
        assert response.json()["error"] == "validation"

    def test_delete(self, client):
        domain = create(client)

        assert client.delete(f"/domains/{domain['id']}", headers=ACME).status_code == 200
        assert client.delete(f"/domains/{domain['id']}", headers=ACME).status_code == 404

    def test_stats(self, client, manager):
        first = create(client, subdomain="a")
        create(client, subdomain="b")
        activate(client, manager, first["id"])

        stats = client.get("/domains/stats", headers=ACME).json()["data"]["stats"]

        assert stats == {
            "totalDomains": 2,
            "verifiedDomains": 1,
            "activeDomains": 1,
            "pendingDomains": 1,
        }

    def test_info(self, client, manager):
        records = {"cname": [TARGET], "a": [], "txt": [], "mx": []}
        providers = [ProviderMatch("cloudflare", "ada.ns.cloudflare.com", True)]

        with patch.object(
            manager.verifier, "lookup_records", new=AsyncMock(return_value=records)
        ), patch.object(manager.verifier, "detect_provider", new=AsyncMock(return_value=providers)):
            body = client.get("/domains/info/links.example.com", headers=ACME).json()

        assert body["data"]["info"] == records
        assert body["data"]["providers"][0]["name"] == "cloudflare"


class TestVerifyAndDefault:
    """Tests for verification, promotion and default switching."""

    def test_verify_success(self, client, manager):
        domain = create(client)

        with dns_answer(manager, VerificationOutcome.VERIFIED):
            response = client.post(f"/domains/{domain['id']}/verify", headers=ACME)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["outcome"] == "verified"
        assert data["record"]["verificationStatus"] == "verified"
        assert data["record"]["status"] == "pending"

    def test_verify_mismatch(self, client, manager):
        domain = create(client)

        with dns_answer(manager, VerificationOutcome.MISMATCH, found=["wrong.example.net"]):
            response = client.post(f"/domains/{domain['id']}/verify", headers=ACME)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "verification_failed"
        assert "wrong.example.net" in body["message"]
        assert body["data"]["outcome"] == "mismatch"
        assert body["data"]["record"]["verificationStatus"] == "unverified"

    def test_verify_transient(self, client, manager):
        domain = create(client)

        with dns_answer(manager, VerificationOutcome.TRANSIENT_ERROR, error="timed out"):
            response = client.post(f"/domains/{domain['id']}/verify", headers=ACME)

        assert response.status_code == 503
        assert response.json()["error"] == "transient"
        assert response.json()["data"]["outcome"] == "transient_error"

    def test_promote_unverified(self, client):
        domain = create(client)

        response = client.post(f"/domains/{domain['id']}/promote", headers=ACME)

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_promote_ssl_failed(self, client, manager):
        domain = create(client)
        with dns_answer(manager, VerificationOutcome.VERIFIED):
            client.post(f"/domains/{domain['id']}/verify", headers=ACME)

        response = client.post(
            f"/domains/{domain['id']}/promote", json={"sslOk": False}, headers=ACME
        )

        assert response.json()["data"]["domain"]["status"] == "ssl_failed"

    def test_first_active_domain_is_default(self, client, manager):
        domain = create(client)

        promoted = activate(client, manager, domain["id"])

        assert promoted["status"] == "active"
        assert promoted["isDefault"] is True

    def test_set_default(self, client, manager):
        d1 = activate(client, manager, create(client, subdomain="one")["id"])
        d2 = activate(client, manager, create(client, subdomain="two")["id"])

        response = client.post(f"/domains/{d2['id']}/set-default", headers=ACME)

        assert response.status_code == 200
        domains = client.get("/domains", headers=ACME).json()["data"]["domains"]
        defaults = {d["id"]: d["isDefault"] for d in domains}
        assert defaults == {d1["id"]: False, d2["id"]: True}

    def test_set_default_not_active(self, client):
        domain = create(client)

        response = client.post(f"/domains/{domain['id']}/set-default", headers=ACME)

        assert response.status_code == 409
        assert response.json()["error"] == "not_active"

    def test_delete_default(self, client, manager):
        domain = activate(client, manager, create(client)["id"])

        response = client.delete(f"/domains/{domain['id']}", headers=ACME)

        assert response.status_code == 409
        assert response.json()["error"] == "cannot_delete_default"


class TestClientAgainstServer:
    """The API client, wizard and list controller against the real app."""

    @pytest.fixture
    def api(self, manager):
        app = create_app(manager, TOKENS)
        return DomainApiClient(
            "http://brandlink.test",
            token="acme-token",
            tenant_id="acme",
            transport=httpx.ASGITransport(app=app),
        )

    @pytest.mark.asyncio
    async def test_wizard_flow(self, api, manager):
        wizard = ProvisioningWizard(api)
        wizard.set_details("example.com", "links")

        assert await wizard.next() is True
        assert wizard.record.full_domain == "links.example.com"

        with dns_answer(manager, VerificationOutcome.MISMATCH, found=["wrong.example.net"]):
            await wizard.check_dns()
        assert wizard.poll_state == PollState.FAILED
        assert wizard.step == WizardStep.DNS_CONFIG
        assert wizard.record.verification_status.value == "unverified"

        with dns_answer(manager, VerificationOutcome.VERIFIED):
            await wizard.check_dns()
        assert wizard.poll_state == PollState.SUCCESS

        assert await wizard.next() is True
        assert await wizard.next() is True
        assert wizard.closed
        await api.close()

    @pytest.mark.asyncio
    async def test_controller_flow(self, api, manager):
        d1 = await manager.register_domain("acme", "example.com", subdomain="one")
        d2 = await manager.register_domain("acme", "example.com", subdomain="two")
        for record in (d1, d2):
            with dns_answer(manager, VerificationOutcome.VERIFIED):
                await manager.verify_domain("acme", record.id)
            await manager.promote_domain("acme", record.id)

        controller = DomainListController(api)
        await controller.refresh()
        assert controller.default_domain.id == d1.id

        assert await controller.set_default(d2.id) is True
        assert controller.default_domain.id == d2.id

        controller.request_delete(d1.id)
        assert await controller.confirm_delete() is True
        assert [r.id for r in controller.domains] == [d2.id]
        await api.close()

    @pytest.mark.asyncio
    async def test_expired_token(self, manager):
        app = create_app(manager, TOKENS)
        expired = []
        api = DomainApiClient(
            "http://brandlink.test",
            token="revoked",
            transport=httpx.ASGITransport(app=app),
            on_session_expired=lambda: expired.append(True),
        )
        controller = DomainListController(api)

        with pytest.raises(SessionExpired):
            await controller.refresh()

        assert expired == [True]
        assert api.token is None
        await api.close()
