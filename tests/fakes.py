"""
Fake provider clients and settings for orchestrator tests.
"""

from unittest.mock import AsyncMock, MagicMock

from agent_services.config import Settings
from agent_services.providers import ComputeService, IssuedKey, ProvisionedPhone
from agent_services.services.context import ServiceContext

API_KEY = "test-key"

def make_settings(**overrides) -> Settings:
    values = dict(
        services_api_key=API_KEY,
        database_url="sqlite+aiosqlite:///:memory:",
        railway_api_token="rw-token",
        railway_project_id="proj-1",
        railway_environment_id="env-1",
        openrouter_management_key="or-mgmt",
        agentmail_api_key="am-key",
        telnyx_api_key="tx-key",
        pool_api_key="pool-key",
    )
    values.update(overrides)
    return Settings(**values)


def fake_railway(configured: bool = True) -> MagicMock:
    railway = MagicMock(name="railway")
    railway.configured = configured
    railway.project_id = "proj-1"
    railway.environment_id = "env-1"
    railway.create_service = AsyncMock(return_value="svc-1")
    railway.ensure_volume = AsyncMock(return_value="vol-1")
    railway.create_domain = AsyncMock(return_value="abc123.up.railway.app")
    railway.upsert_variables = AsyncMock(return_value=None)
    railway.redeploy_service = AsyncMock(return_value=None)
    railway.delete_service = AsyncMock(return_value=None)
    railway.list_volumes = AsyncMock(return_value=[])
    railway.list_volumes_by_service = AsyncMock(return_value={"svc-1": ["vol-1"]})
    railway.delete_volume = AsyncMock(return_value=None)
    railway.fetch_service_status = AsyncMock(return_value=None)
    railway.list_project_services = AsyncMock(return_value=[])
    return railway


def fake_openrouter(configured: bool = True) -> MagicMock:
    openrouter = MagicMock(name="openrouter")
    openrouter.configured = configured
    openrouter.create_key = AsyncMock(return_value=IssuedKey(key="sk-or-abc", hash="hash-abc"))
    openrouter.delete_key = AsyncMock(return_value=True)
    openrouter.list_keys = AsyncMock(return_value=[])
    openrouter.get_credits = AsyncMock(return_value={"totalCredits": 0, "totalUsage": 0})
    openrouter.update_key_limit = AsyncMock(return_value={})
    return openrouter


def fake_agentmail(configured: bool = True) -> MagicMock:
    agentmail = MagicMock(name="agentmail")
    agentmail.configured = configured
    agentmail.create_inbox = AsyncMock(return_value="inbox-abc")
    agentmail.delete_inbox = AsyncMock(return_value=True)
    agentmail.list_inboxes = AsyncMock(return_value=[])
    return agentmail


def fake_telnyx(configured: bool = True) -> MagicMock:
    telnyx = MagicMock(name="telnyx")
    telnyx.configured = configured
    telnyx.provision_phone = AsyncMock(
        return_value=ProvisionedPhone(phone_number="+15550001111", messaging_profile_id="mp-1")
    )
    telnyx.delete_phone = AsyncMock(return_value=True)
    telnyx.list_phone_numbers = AsyncMock(return_value=[])
    return telnyx


def make_context(settings: Settings = None, **clients) -> ServiceContext:
    return ServiceContext(
        settings=settings or make_settings(),
        railway=clients.get("railway") or fake_railway(),
        openrouter=clients.get("openrouter") or fake_openrouter(),
        agentmail=clients.get("agentmail") or fake_agentmail(),
        telnyx=clients.get("telnyx") or fake_telnyx(),
        http_transport=clients.get("http_transport"),
    )


def compute_service(instance_id: str, status: str = "SUCCESS", service_id: str = None, env: str = "env-1"):
    return ComputeService(
        id=service_id or f"svc-{instance_id}",
        name=f"convos-agent-{instance_id}",
        created_at="2026-10-19T00:00:00Z",
        environment_ids=[env],
        deploy_status=status,
        domain=f"{instance_id}.up.railway.app",
        image="ghcr.io/xmtplabs/convos-runtime:latest",
    )

