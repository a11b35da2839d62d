"""
Tests for the HTTP surface: auth, error rendering and the full instance lifecycle
"""

import pytest
from httpx import AsyncClient, ASGITransport

from agent_services.main import app
from agent_services.providers import ProviderError


# ============ Auth ============

@pytest.mark.asyncio
async def test_healthz_is_public():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/healthz")
    assert response.status_code == 200
    assert response.json()["ok"] is True


@pytest.mark.asyncio
async def test_missing_api_key():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/registry")
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid or missing API key"}


@pytest.mark.asyncio
async def test_wrong_api_key():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/registry", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_api_key_in_query_string():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/registry", params={"key": "test-key"})
    assert response.status_code == 200


# ============ Registry ============

@pytest.mark.asyncio
async def test_registry(client: AsyncClient):
    response = await client.get("/registry")
    assert response.status_code == 200
    tools = response.json()["tools"]
    assert [t["id"] for t in tools] == ["openrouter", "agentmail", "telnyx"]
    assert tools[0] == {
        "id": "openrouter",
        "name": "OpenRouter",
        "mode": "per-instance-key",
        "envKeys": ["OPENROUTER_API_KEY"],
    }
    assert tools[2]["envKeys"] == ["TELNYX_PHONE_NUMBER", "TELNYX_MESSAGING_PROFILE_ID"]


# ============ Lifecycle ============

@pytest.mark.asyncio
async def test_instance_lifecycle(client: AsyncClient, ctx):
    """Create with two tools, add a third, reject a duplicate, then destroy"""
    response = await client.post(
        "/create-instance",
        json={"instanceId": "abc123", "name": "assistant", "tools": ["openrouter", "agentmail"]},
    )
    assert response.status_code == 200
    created = response.json()
    assert created["instanceId"] == "abc123"
    assert created["serviceId"] == "svc-1"
    assert created["url"] == "https://abc123.up.railway.app"
    assert created["services"] == {
        "openrouter": {"resourceId": "hash-abc"},
        "agentmail": {"resourceId": "inbox-abc"},
    }

    response = await client.post("/provision/abc123/telnyx", json={})
    assert response.status_code == 200
    assert response.json() == {
        "toolId": "telnyx",
        "resourceId": "+15550001111",
        "envKey": "TELNYX_PHONE_NUMBER",
        "status": "active",
    }

    response = await client.post("/provision/abc123/openrouter")
    assert response.status_code == 409
    assert response.json() == {"error": "Tool openrouter already provisioned for abc123"}

    response = await client.post("/redeploy/abc123")
    assert response.status_code == 200
    assert response.json() == {"instanceId": "abc123", "ok": True}

    response = await client.delete("/destroy/abc123")
    assert response.status_code == 200
    assert response.json() == {
        "instanceId": "abc123",
        "destroyed": {
            "openrouter": True,
            "agentmail": True,
            "telnyx": True,
            "volumes": True,
            "service": True,
        },
    }
    ctx.telnyx.delete_phone.assert_awaited_once_with("+15550001111")

    response = await client.delete("/destroy/abc123")
    assert response.status_code == 404
    assert response.json() == {"error": "Instance abc123 not found"}


@pytest.mark.asyncio
async def test_create_requires_fields(client: AsyncClient):
    response = await client.post("/create-instance", json={"instanceId": "abc123"})
    assert response.status_code == 400
    assert response.json() == {"error": "instanceId and name are required"}


@pytest.mark.asyncio
async def test_create_rejects_malformed_body(client: AsyncClient):
    response = await client.post("/create-instance", json={"instanceId": "a", "name": "b", "tools": "openrouter"})
    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_create_duplicate_instance(client: AsyncClient):
    body = {"instanceId": "abc123", "name": "assistant", "tools": []}
    assert (await client.post("/create-instance", json=body)).status_code == 200

    response = await client.post("/create-instance", json=body)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_create_failure_returns_500(client: AsyncClient, ctx):
    ctx.railway.create_service.side_effect = ProviderError("railway", "quota exceeded")

    response = await client.post(
        "/create-instance",
        json={"instanceId": "abc123", "name": "assistant", "tools": ["openrouter"]},
    )

    assert response.status_code == 500
    assert "quota exceeded" in response.json()["error"]
    ctx.openrouter.delete_key.assert_awaited_once_with("hash-abc")


@pytest.mark.asyncio
async def test_provision_errors(client: AsyncClient, ctx):
    response = await client.post("/provision/nope/openrouter")
    assert response.status_code == 404

    await client.post("/create-instance", json={"instanceId": "abc123", "name": "assistant"})

    response = await client.post("/provision/abc123/fax")
    assert response.status_code == 400
    assert response.json() == {"error": "Unknown tool: fax"}

    ctx.telnyx.configured = False
    response = await client.post("/provision/abc123/telnyx")
    assert response.status_code == 400
    assert response.json() == {"error": "TELNYX_API_KEY not configured"}


@pytest.mark.asyncio
async def test_redeploy_upstream_failure(client: AsyncClient, ctx):
    await client.post("/create-instance", json={"instanceId": "abc123", "name": "assistant"})
    ctx.railway.redeploy_service.side_effect = ProviderError("railway", "No deployment found to redeploy")

    response = await client.post("/redeploy/abc123")

    assert response.status_code == 500
    assert response.json() == {"error": "railway: No deployment found to redeploy"}


@pytest.mark.asyncio
async def test_redeploy_unknown(client: AsyncClient):
    response = await client.post("/redeploy/nope")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_configure(client: AsyncClient, ctx):
    await client.post("/create-instance", json={"instanceId": "abc123", "name": "assistant"})

    response = await client.post("/configure/abc123", json={"variables": {"XMTP_ENV": "production"}, "redeploy": True})

    assert response.status_code == 200
    ctx.railway.redeploy_service.assert_awaited_once_with("svc-1")

    response = await client.post("/configure/abc123", json={"variables": {}})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_destroy_tool_resource(client: AsyncClient, ctx):
    await client.post(
        "/create-instance",
        json={"instanceId": "abc123", "name": "assistant", "tools": ["agentmail"]},
    )

    response = await client.delete("/destroy/abc123/agentmail/inbox-abc")

    assert response.status_code == 200
    assert response.json() == {"toolId": "agentmail", "resourceId": "inbox-abc", "deleted": True}

    response = await client.delete("/destroy/abc123/fax/x")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_provision_local(client: AsyncClient, ctx):
    response = await client.post("/provision-local", json={"tools": ["agentmail"]})

    assert response.status_code == 200
    assert response.json() == {"env": {"AGENTMAIL_INBOX_ID": "inbox-abc"}}
    ctx.openrouter.create_key.assert_not_awaited()


@pytest.mark.asyncio
async def test_provision_local_defaults(client: AsyncClient):
    response = await client.post("/provision-local")

    assert response.status_code == 200
    assert set(response.json()["env"]) == {"OPENROUTER_API_KEY", "AGENTMAIL_INBOX_ID"}
