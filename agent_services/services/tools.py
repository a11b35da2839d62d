"""
Tool registry and per-tool provisioning adapters.

The registry is the static description of what can be attached to an
instance. Each adapter turns one provider's create/delete primitives into
the canonical ProvisionedTool shape the orchestrator works with.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from agent_services.db.models import ToolId
from agent_services.providers import ProviderClient
from agent_services.services.context import ServiceContext
from agent_services.services.errors import UnknownToolError, ToolNotConfiguredError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolSpec:
    id: str
    name: str
    mode: str
    env_keys: tuple[str, ...]
    credential: str  # Env var the provider credential is read from

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "mode": self.mode, "envKeys": list(self.env_keys)}


TOOL_REGISTRY: tuple[ToolSpec, ...] = (
    ToolSpec(
        id=ToolId.OPENROUTER.value,
        name="OpenRouter",
        mode="per-instance-key",
        env_keys=("OPENROUTER_API_KEY",),
        credential="OPENROUTER_MANAGEMENT_KEY",
    ),
    ToolSpec(
        id=ToolId.AGENTMAIL.value,
        name="AgentMail",
        mode="per-instance-inbox",
        env_keys=("AGENTMAIL_INBOX_ID",),
        credential="AGENTMAIL_API_KEY",
    ),
    ToolSpec(
        id=ToolId.TELNYX.value,
        name="Telnyx",
        mode="per-instance-phone",
        env_keys=("TELNYX_PHONE_NUMBER", "TELNYX_MESSAGING_PROFILE_ID"),
        credential="TELNYX_API_KEY",
    ),
)

TOOL_IDS: tuple[str, ...] = tuple(t.id for t in TOOL_REGISTRY)


@dataclass
class ProvisionedTool:
    """A freshly created tool resource and the env vars it injects."""
    tool_id: str
    resource_id: str
    env_key: str                  # Primary env var recorded on the resource row
    env_value: Optional[str]
    env: dict[str, str] = field(default_factory=dict)
    meta: dict = field(default_factory=dict)


class ToolProvisioner:
    spec: ToolSpec

    def client(self, ctx: ServiceContext) -> ProviderClient:
        raise NotImplementedError

    def configured(self, ctx: ServiceContext) -> bool:
        return self.client(ctx).configured

    def require_configured(self, ctx: ServiceContext) -> None:
        if not self.configured(ctx):
            raise ToolNotConfiguredError(self.spec.id, self.spec.credential)

    async def provision(self, ctx: ServiceContext, name: str, config: Optional[dict] = None) -> ProvisionedTool:
        """Create the resource, naming it `name` (or tagging it with it)."""
        raise NotImplementedError

    async def release(self, ctx: ServiceContext, resource_id: str) -> bool:
        raise NotImplementedError


class OpenRouterProvisioner(ToolProvisioner):
    spec = TOOL_REGISTRY[0]

    def client(self, ctx):
        return ctx.openrouter

    async def provision(self, ctx, name, config=None):
        limit = (config or {}).get("limit")
        if limit is None:
            limit = ctx.settings.openrouter_key_limit
        issued = await ctx.openrouter.create_key(name, limit)
        return ProvisionedTool(
            tool_id=self.spec.id,
            resource_id=issued.hash,
            env_key="OPENROUTER_API_KEY",
            env_value=issued.key,
            env={"OPENROUTER_API_KEY": issued.key},
            meta={"limit": limit},
        )

    async def release(self, ctx, resource_id):
        return await ctx.openrouter.delete_key(resource_id)


class AgentMailProvisioner(ToolProvisioner):
    spec = TOOL_REGISTRY[1]

    def client(self, ctx):
        return ctx.agentmail

    async def provision(self, ctx, name, config=None):
        inbox_id = await ctx.agentmail.create_inbox(name)
        return ProvisionedTool(
            tool_id=self.spec.id,
            resource_id=inbox_id,
            env_key="AGENTMAIL_INBOX_ID",
            env_value=inbox_id,
            env={"AGENTMAIL_INBOX_ID": inbox_id},
        )

    async def release(self, ctx, resource_id):
        return await ctx.agentmail.delete_inbox(resource_id)


class TelnyxProvisioner(ToolProvisioner):
    spec = TOOL_REGISTRY[2]

    def client(self, ctx):
        return ctx.telnyx

    async def provision(self, ctx, name, config=None):
        phone = await ctx.telnyx.provision_phone(customer_reference=name)
        return ProvisionedTool(
            tool_id=self.spec.id,
            resource_id=phone.phone_number,
            env_key="TELNYX_PHONE_NUMBER",
            env_value=phone.phone_number,
            env={
                "TELNYX_PHONE_NUMBER": phone.phone_number,
                "TELNYX_MESSAGING_PROFILE_ID": phone.messaging_profile_id,
            },
            meta={"messagingProfileId": phone.messaging_profile_id},
        )

    async def release(self, ctx, resource_id):
        return await ctx.telnyx.delete_phone(resource_id)


PROVISIONERS: dict[str, ToolProvisioner] = {
    p.spec.id: p for p in (OpenRouterProvisioner(), AgentMailProvisioner(), TelnyxProvisioner())
}


def get_provisioner(tool_id: str) -> ToolProvisioner:
    provisioner = PROVISIONERS.get(tool_id)
    if provisioner is None:
        raise UnknownToolError(tool_id)
    return provisioner


def registry_entries() -> list[dict]:
    return [t.to_dict() for t in TOOL_REGISTRY]
