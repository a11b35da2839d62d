"""
Tests for status derivation and the status endpoints
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import AsyncClient

from agent_services.db import InstanceInfra
from agent_services.providers import ProviderError
from agent_services.services.errors import InstanceNotFoundError, UpstreamUnavailableError
from agent_services.services.status_service import (
    InstanceStatus,
    derive_status,
    fetch_batch_status,
    get_instance_status,
)
from fakes import compute_service, fake_railway, make_context

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
READY = {"ready": True}


def _ago(minutes: float) -> datetime:
    return NOW - timedelta(minutes=minutes)


# ============ Status Derivation ============

@pytest.mark.parametrize("deploy_status", ["QUEUED", "WAITING", "BUILDING", "DEPLOYING"])
def test_starting_statuses(deploy_status):
    assert derive_status(deploy_status, now=NOW) == InstanceStatus.STARTING
    assert derive_status(deploy_status, is_claimed=True, now=NOW) == InstanceStatus.CLAIMED


@pytest.mark.parametrize("deploy_status", ["FAILED", "CRASHED", "REMOVED", "SKIPPED"])
def test_dead_statuses(deploy_status):
    assert derive_status(deploy_status, now=NOW) == InstanceStatus.DEAD
    assert derive_status(deploy_status, is_claimed=True, now=NOW) == InstanceStatus.CRASHED


def test_sleeping_wins_over_everything():
    assert derive_status("SLEEPING", READY, _ago(1), is_claimed=True, now=NOW) == InstanceStatus.SLEEPING
    assert derive_status("SLEEPING", None, None, now=NOW) == InstanceStatus.SLEEPING


def test_success_and_ready():
    assert derive_status("SUCCESS", READY, _ago(1), now=NOW) == InstanceStatus.IDLE
    assert derive_status("SUCCESS", READY, _ago(1), is_claimed=True, now=NOW) == InstanceStatus.CLAIMED


def test_success_not_ready_within_timeout_is_starting():
    assert derive_status("SUCCESS", {"ready": False}, _ago(14.9), now=NOW) == InstanceStatus.STARTING


def test_success_not_ready_past_timeout_is_dead():
    """An instance that never became healthy is declared dead after 15 minutes"""
    assert derive_status("SUCCESS", None, _ago(16), now=NOW) == InstanceStatus.DEAD
    assert derive_status("SUCCESS", {"ready": False}, _ago(15), now=NOW) == InstanceStatus.DEAD


def test_success_not_ready_but_claimed_stays_claimed():
    assert derive_status("SUCCESS", None, _ago(60), is_claimed=True, now=NOW) == InstanceStatus.CLAIMED


def test_unknown_created_at_counts_as_old():
    assert derive_status("SUCCESS", None, None, now=NOW) == InstanceStatus.DEAD
    assert derive_status("SUCCESS", None, "not a date", now=NOW) == InstanceStatus.DEAD


def test_created_at_formats():
    iso = (NOW - timedelta(minutes=2)).isoformat().replace("+00:00", "Z")
    epoch_ms = int((NOW - timedelta(minutes=2)).timestamp() * 1000)
    naive = (NOW - timedelta(minutes=2)).replace(tzinfo=None)
    for created_at in (iso, epoch_ms, naive):
        assert derive_status("SUCCESS", None, created_at, now=NOW) == InstanceStatus.STARTING


def test_unrecognised_or_missing_status_falls_through():
    assert derive_status(None, None, _ago(1), now=NOW) == InstanceStatus.STARTING
    assert derive_status("SOMETHING_NEW", None, _ago(30), now=NOW) == InstanceStatus.DEAD
    assert derive_status(42, None, _ago(1), is_claimed=True, now=NOW) == InstanceStatus.CLAIMED


def test_malformed_health_check_is_not_ready():
    assert derive_status("SUCCESS", "yes", _ago(1), now=NOW) == InstanceStatus.STARTING
    assert derive_status("SUCCESS", {"ready": 0}, _ago(1), now=NOW) == InstanceStatus.STARTING
    assert derive_status("SUCCESS", {}, _ago(1), now=NOW) == InstanceStatus.STARTING


def test_truthy_ready_counts_as_ready():
    assert derive_status("SUCCESS", {"ready": 1}, _ago(30), now=NOW) == InstanceStatus.IDLE
    assert derive_status("SUCCESS", {"ready": "true"}, _ago(1), is_claimed=True, now=NOW) == InstanceStatus.CLAIMED


def test_custom_stuck_timeout():
    assert derive_status("SUCCESS", None, _ago(2), stuck_timeout_ms=60_000, now=NOW) == InstanceStatus.DEAD


# ============ Batch Status ============

@pytest.mark.asyncio
async def test_batch_status_filters_agent_services():
    railway = fake_railway()
    railway.list_project_services.return_value = [
        compute_service("abc123", "SUCCESS"),
        compute_service("def456", "BUILDING"),
        compute_service("other-env", "SUCCESS", env="env-2"),
        compute_service("pool-manager", "SUCCESS"),
    ]
    railway.list_project_services.return_value[-1].name = "convos-agent-pool-manager"
    ctx = make_context(railway=railway)

    result = await fetch_batch_status(ctx)

    assert result["projectId"] == "proj-1"
    assert [s["instanceId"] for s in result["services"]] == ["abc123", "def456"]
    first = result["services"][0]
    assert first == {
        "instanceId": "abc123",
        "serviceId": "svc-abc123",
        "name": "convos-agent-abc123",
        "deployStatus": "SUCCESS",
        "domain": "abc123.up.railway.app",
        "image": "ghcr.io/xmtplabs/convos-runtime:latest",
        "environmentIds": ["env-1"],
    }


@pytest.mark.asyncio
async def test_batch_status_instance_filter():
    railway = fake_railway()
    railway.list_project_services.return_value = [compute_service("abc123"), compute_service("def456")]
    ctx = make_context(railway=railway)

    result = await fetch_batch_status(ctx, ["def456"])

    assert [s["instanceId"] for s in result["services"]] == ["def456"]


@pytest.mark.asyncio
async def test_batch_status_upstream_failure():
    railway = fake_railway()
    railway.list_project_services.side_effect = ProviderError("railway", "boom", 503)
    ctx = make_context(railway=railway)

    with pytest.raises(UpstreamUnavailableError):
        await fetch_batch_status(ctx)


@pytest.mark.asyncio
async def test_batch_status_endpoint(client: AsyncClient, ctx):
    ctx.railway.list_project_services.return_value = [compute_service("abc123")]

    response = await client.post("/status/batch", json={"instanceIds": ["abc123"]})

    assert response.status_code == 200
    assert response.json()["services"][0]["serviceId"] == "svc-abc123"


@pytest.mark.asyncio
async def test_batch_status_endpoint_502(client: AsyncClient, ctx):
    ctx.railway.list_project_services.side_effect = ProviderError("railway", "down")

    response = await client.post("/status/batch")

    assert response.status_code == 502
    assert response.json() == {"error": "Failed to fetch services from Railway"}


# ============ Single Instance Status ============

def _health_transport(ready: bool, seen: list):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ready": ready})
    return httpx.MockTransport(handler)


async def _add_instance(db_session, instance_id="abc123", deploy_status="BUILDING", url=None, created_at=None):
    db_session.add(InstanceInfra(
        instance_id=instance_id,
        provider_service_id=f"svc-{instance_id}",
        provider_env_id="env-1",
        url=url,
        deploy_status=deploy_status,
        created_at=created_at or datetime.utcnow(),
    ))
    await db_session.commit()


@pytest.mark.asyncio
async def test_instance_status_idle_and_records_deploy_status(db_session):
    await _add_instance(db_session)
    seen = []
    railway = fake_railway()
    railway.fetch_service_status.return_value = compute_service("abc123", "SUCCESS")
    ctx = make_context(railway=railway, http_transport=_health_transport(True, seen))

    result = await get_instance_status(ctx, db_session, "abc123")

    assert result == {
        "instanceId": "abc123",
        "deployStatus": "SUCCESS",
        "healthCheck": {"ready": True},
        "status": "idle",
    }
    assert str(seen[0].url) == "https://abc123.up.railway.app/pool/health"
    assert seen[0].headers["Authorization"] == "Bearer pool-key"

    infra = await db_session.get(InstanceInfra, "abc123")
    await db_session.refresh(infra)
    assert infra.deploy_status == "SUCCESS"
    assert infra.url == "https://abc123.up.railway.app"


@pytest.mark.asyncio
async def test_instance_status_claimed(db_session):
    await _add_instance(db_session, url="https://abc123.up.railway.app")
    railway = fake_railway()
    railway.fetch_service_status.return_value = compute_service("abc123", "SUCCESS")
    ctx = make_context(railway=railway, http_transport=_health_transport(True, []))

    result = await get_instance_status(ctx, db_session, "abc123", is_claimed=True)

    assert result["status"] == "claimed"


@pytest.mark.asyncio
async def test_instance_status_no_probe_while_building(db_session):
    await _add_instance(db_session, url="https://abc123.up.railway.app")
    seen = []
    railway = fake_railway()
    railway.fetch_service_status.return_value = compute_service("abc123", "BUILDING")
    ctx = make_context(railway=railway, http_transport=_health_transport(True, seen))

    result = await get_instance_status(ctx, db_session, "abc123")

    assert result["status"] == "starting"
    assert result["healthCheck"] is None
    assert seen == []


@pytest.mark.asyncio
async def test_instance_status_falls_back_to_stored_status(db_session):
    await _add_instance(db_session, deploy_status="CRASHED")
    railway = fake_railway()
    railway.fetch_service_status.side_effect = ProviderError("railway", "timeout")
    ctx = make_context(railway=railway)

    result = await get_instance_status(ctx, db_session, "abc123")

    assert result["deployStatus"] == "CRASHED"
    assert result["status"] == "dead"


@pytest.mark.asyncio
async def test_instance_status_unknown(db_session, ctx):
    with pytest.raises(InstanceNotFoundError):
        await get_instance_status(ctx, db_session, "nope")


@pytest.mark.asyncio
async def test_instance_status_endpoint(client: AsyncClient, ctx, db_session):
    await _add_instance(db_session, deploy_status="FAILED")
    ctx.railway.fetch_service_status.return_value = compute_service("abc123", "FAILED")

    response = await client.get("/status/abc123", params={"claimed": "true"})

    assert response.status_code == 200
    assert response.json()["status"] == "crashed"

    response = await client.get("/status/missing")
    assert response.status_code == 404
    assert response.json() == {"error": "Instance missing not found"}
