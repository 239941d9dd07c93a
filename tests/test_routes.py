try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import copy
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from freeagent_sync.clients.freeagent_auth import OAuthStateEncoder
from freeagent_sync.main import app
from freeagent_sync.models.principal import DirectoryPrincipal
from freeagent_sync.services.access import InvoiceAccessPolicy
from freeagent_sync.services.invoices import InvoiceService
from freeagent_sync.services.owners import SystemOwnerResolver

pytestmark = pytest.mark.anyio("asyncio")

ADMIN_HEADERS = {"X-Principal-Id": "admin"}
ALICE_HEADERS = {"X-Principal-Id": "alice"}
STRANGER_HEADERS = {"X-Principal-Id": "stranger"}


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


@pytest.fixture()
def stack(freeagent_config, oauth_manager, sync_engine, mirror, api_client, fake_api):
    from freeagent_sync import dependencies
    from freeagent_sync.core.config import get_settings

    settings = copy.deepcopy(get_settings())
    settings.frontend_base_url = None
    encoder = OAuthStateEncoder("route-secret")
    policy = InvoiceAccessPolicy()
    service = InvoiceService(
        policy=policy,
        owners=SystemOwnerResolver(),
        oauth=oauth_manager,
        sync_engine=sync_engine,
        mirror=mirror,
        api=api_client,
    )

    alice_contact = fake_api.add_contact(1)
    other_contact = fake_api.add_contact(2)
    fake_api.add_invoice(1, contact=alice_contact)
    fake_api.add_invoice(2, contact=other_contact)
    fake_api.add_invoice(3, contact=other_contact)
    mirror.save_principal(DirectoryPrincipal(principal_id="admin", is_admin=True))
    mirror.link_contact("alice", alice_contact["url"])

    app.dependency_overrides.clear()
    app.dependency_overrides.update(
        {
            dependencies.get_app_settings: lambda: settings,
            dependencies.get_freeagent_config: lambda: freeagent_config,
            dependencies.get_oauth_state_encoder: lambda: encoder,
            dependencies.get_oauth_manager: lambda: oauth_manager,
            dependencies.get_sync_engine: lambda: sync_engine,
            dependencies.get_mirror_store: lambda: mirror,
            dependencies.get_access_policy: lambda: policy,
            dependencies.get_invoice_service: lambda: service,
        }
    )

    yield SimpleNamespace(
        settings=settings,
        encoder=encoder,
        alice_contact=alice_contact,
        other_contact=other_contact,
    )

    app.dependency_overrides.clear()


async def _start_connect(stack, **params) -> tuple[str, str]:
    async with _client() as client:
        response = await client.get(
            "/freeagent/connect", params=params, headers=ADMIN_HEADERS
        )
    assert response.status_code == 200
    state = response.json()["state"]
    return state, stack.encoder.decode(state)["nonce"]


async def test_healthcheck() -> None:
    async with _client() as client:
        response = await client.get("/freeagent/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_missing_principal_header_is_unauthorized(stack) -> None:
    async with _client() as client:
        response = await client.get("/freeagent/invoices")

    assert response.status_code == 401


async def test_connect_requires_administrator(stack) -> None:
    async with _client() as client:
        response = await client.get("/freeagent/connect", headers=ALICE_HEADERS)

    assert response.status_code == 403


async def test_connect_returns_signed_state_and_cookie(stack) -> None:
    async with _client() as client:
        response = await client.get("/freeagent/connect", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    data = response.json()
    params = parse_qs(urlparse(data["authorization_url"]).query)
    assert data["authorization_url"].startswith(
        "https://api.sandbox.freeagent.com/v2/approve_app"
    )
    assert params["state"] == [data["state"]]
    payload = stack.encoder.decode(data["state"])
    assert payload["owner_id"] == "system"
    assert f"freeagent_oauth_state={payload['nonce']}" in response.headers["set-cookie"]


async def test_connect_redirects_browsers(stack) -> None:
    async with _client() as client:
        response = await client.get(
            "/freeagent/connect", params={"redirect": "true"}, headers=ADMIN_HEADERS
        )

    assert response.status_code == 307
    assert response.headers["location"].startswith(
        "https://api.sandbox.freeagent.com/v2/approve_app"
    )


async def test_callback_stores_token(stack, oauth_manager, fake_api) -> None:
    state, nonce = await _start_connect(stack)

    async with _client() as client:
        response = await client.get(
            "/freeagent/callback",
            params={"state": state, "code": "oauth-code"},
            headers={"cookie": f"freeagent_oauth_state={nonce}"},
        )

    assert response.status_code == 200
    assert response.json() == {
        "status": "connected",
        "owner_id": "system",
        "redirect_to": None,
    }
    assert fake_api.token_forms[-1]["code"] == "oauth-code"
    assert oauth_manager.has_connection("system") is True


async def test_callback_redirects_to_requested_page(stack) -> None:
    state, nonce = await _start_connect(
        stack, redirect_to="https://panel.example.com/settings"
    )

    async with _client() as client:
        response = await client.get(
            "/freeagent/callback",
            params={"state": state, "code": "oauth-code"},
            headers={
                "cookie": f"freeagent_oauth_state={nonce}",
                "accept": "text/html",
            },
        )

    assert response.status_code == 307
    assert response.headers["location"] == "https://panel.example.com/settings"


async def test_callback_rejects_mismatched_nonce(stack, oauth_manager) -> None:
    state, _ = await _start_connect(stack)

    async with _client() as client:
        response = await client.get(
            "/freeagent/callback",
            params={"state": state, "code": "oauth-code"},
            headers={"cookie": "freeagent_oauth_state=someone-else"},
        )

    assert response.status_code == 400
    assert oauth_manager.has_connection("system") is False


async def test_callback_rejects_foreign_state(stack) -> None:
    forged = OAuthStateEncoder("other-secret").encode(
        {"nonce": "abc", "owner_id": "system"}
    )

    async with _client() as client:
        response = await client.get(
            "/freeagent/callback",
            params={"state": forged, "code": "oauth-code"},
            headers={"cookie": "freeagent_oauth_state=abc"},
        )

    assert response.status_code == 400


async def test_callback_without_state_is_bad_request(stack) -> None:
    async with _client() as client:
        response = await client.get("/freeagent/callback", params={"code": "oauth-code"})

    assert response.status_code == 400


async def test_callback_with_provider_error_is_unauthorized(stack, fake_api) -> None:
    state, nonce = await _start_connect(stack)

    async with _client() as client:
        response = await client.get(
            "/freeagent/callback",
            params={"state": state, "error": "access_denied"},
            headers={"cookie": f"freeagent_oauth_state={nonce}"},
        )

    assert response.status_code == 401
    assert fake_api.token_forms == []


async def test_admin_sees_every_invoice(stack, connect_owner) -> None:
    connect_owner()

    async with _client() as client:
        response = await client.get("/freeagent/invoices", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert len(data) == 3
    assert {item["reference"] for item in data} == {"INV-001", "INV-002", "INV-003"}
    assert data[0]["formatted_total"] == "£120.00"
    assert data[0]["status_label"] == "Open"


async def test_scoped_user_sees_linked_contact_only(stack, connect_owner) -> None:
    connect_owner()

    async with _client() as client:
        response = await client.get("/freeagent/invoices", headers=ALICE_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert [item["contact_ref"] for item in data] == [stack.alice_contact["url"]]


async def test_invoice_listing_accepts_filters(stack, connect_owner, fake_api) -> None:
    connect_owner()
    fake_api.resources["invoices"][1]["status"] = "Paid"
    fake_api.resources["invoices"][2]["due_on"] = "2024-02-01"

    def references(response) -> list:
        assert response.status_code == 200
        return sorted(item["reference"] for item in response.json())

    async with _client() as client:
        async def listing(params, headers=ADMIN_HEADERS) -> httpx.Response:
            return await client.get("/freeagent/invoices", params=params, headers=headers)

        paid = await listing({"status": "paid"})
        several = await listing([("status", "PAID"), ("status", "open")])
        unpaid = await listing({"unpaid": "true"})
        overdue = await listing({"overdue": "true"})
        ranged = await listing({"from_date": "2024-01-03", "to_date": "2024-01-03"})
        scoped = await listing({"status": "paid"}, ALICE_HEADERS)
        invalid = await listing({"from_date": "yesterday"})

    assert references(paid) == ["INV-002"]
    assert references(several) == ["INV-001", "INV-002", "INV-003"]
    assert references(unpaid) == ["INV-001", "INV-003"]
    assert references(overdue) == ["INV-003"]
    assert overdue.json()[0]["is_overdue"] is True
    assert references(ranged) == ["INV-002"]
    assert references(scoped) == []
    assert invalid.status_code == 422


async def test_unlinked_user_is_forbidden(stack, connect_owner) -> None:
    connect_owner()

    async with _client() as client:
        response = await client.get("/freeagent/invoices", headers=STRANGER_HEADERS)

    assert response.status_code == 403


async def test_pdf_download_respects_scope(stack, connect_owner, fake_api) -> None:
    connect_owner()
    fake_api.add_pdf(1, b"%PDF-1.7 alice")

    async with _client() as client:
        listing = await client.get("/freeagent/invoices", headers=ADMIN_HEADERS)
        ids = {item["reference"]: item["id"] for item in listing.json()}
        own = await client.get(
            f"/freeagent/invoice/{ids['INV-001']}/pdf", headers=ALICE_HEADERS
        )
        foreign = await client.get(
            f"/freeagent/invoice/{ids['INV-002']}/pdf", headers=ALICE_HEADERS
        )
        missing = await client.get("/freeagent/invoice/9999/pdf", headers=ADMIN_HEADERS)

    assert own.status_code == 200
    assert own.content == b"%PDF-1.7 alice"
    assert own.headers["content-type"] == "application/pdf"
    assert 'filename="invoice_INV-001_' in own.headers["content-disposition"]
    assert own.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert foreign.status_code == 403
    assert missing.status_code == 403


async def test_manual_sync_reports_stats(stack, connect_owner) -> None:
    connect_owner()

    async with _client() as client:
        response = await client.post("/freeagent/sync", headers=ALICE_HEADERS)
        denied = await client.post("/freeagent/sync", headers=STRANGER_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["owner_id"] == "system"
    assert data["invoices"]["total"] == 1
    assert data["invoices"]["created"] == 1
    assert denied.status_code == 403


async def test_manual_sync_without_connection_is_unauthorized(stack) -> None:
    async with _client() as client:
        response = await client.post("/freeagent/sync", headers=ADMIN_HEADERS)

    assert response.status_code == 401


async def test_manual_sync_maps_upstream_failure(stack, connect_owner, fake_api) -> None:
    connect_owner()
    fake_api.failures["contacts"] = 500

    async with _client() as client:
        response = await client.post("/freeagent/sync", headers=ADMIN_HEADERS)

    assert response.status_code == 502


async def test_cache_clear_is_admin_only(stack, connect_owner, sync_engine) -> None:
    connect_owner()

    async with _client() as client:
        await client.get("/freeagent/invoices", headers=ADMIN_HEADERS)
        denied = await client.post("/freeagent/cache/clear", headers=ALICE_HEADERS)
        cleared = await client.post("/freeagent/cache/clear", headers=ADMIN_HEADERS)

    assert denied.status_code == 403
    assert cleared.status_code == 200
    assert cleared.json()["owners"] == ["system"]
    assert cleared.json()["entries_removed"] > 0
    assert sync_engine.is_stale("system", "invoices") is True


async def test_cache_clear_for_all_owners(stack, connect_owner) -> None:
    connect_owner()

    async with _client() as client:
        await client.get("/freeagent/invoices", headers=ADMIN_HEADERS)
        response = await client.post(
            "/freeagent/cache/clear", params={"all": "true"}, headers=ADMIN_HEADERS
        )

    assert response.status_code == 200
    assert response.json()["owners"] == ["system"]


async def test_status_and_disconnect(stack, connect_owner, oauth_manager) -> None:
    connect_owner()

    async with _client() as client:
        await client.get("/freeagent/invoices", headers=ADMIN_HEADERS)
        status = await client.get("/freeagent/status", headers=ADMIN_HEADERS)
        denied = await client.post("/freeagent/disconnect", headers=ALICE_HEADERS)
        disconnected = await client.post("/freeagent/disconnect", headers=ADMIN_HEADERS)
        after = await client.get("/freeagent/status", headers=ADMIN_HEADERS)

    body = status.json()
    assert body["connected"] is True
    assert body["environment"] == "sandbox"
    assert body["stale"] == {"contacts": False, "invoices": False}
    assert body["mirrored"] == {"contacts": 2, "projects": 0, "invoices": 3}
    assert denied.status_code == 403
    assert disconnected.json() == {"status": "disconnected", "owner_id": "system"}
    assert after.json()["connected"] is False
    assert oauth_manager.has_connection("system") is False
