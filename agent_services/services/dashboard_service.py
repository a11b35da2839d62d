"""
Operator dashboard queries: tracked instances, OpenRouter spend, inboxes,
and key top-ups.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from agent_services.db.models import InstanceInfra, InstanceService
from agent_services.services.context import ServiceContext
from agent_services.services.errors import InvalidRequestError

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _tool_to_dict(row: InstanceService) -> dict:
    # env_value is the secret itself and never leaves the store
    return {
        "toolId": row.tool_id,
        "resourceId": row.resource_id,
        "envKey": row.env_key,
        "status": row.status,
        "resourceMeta": row.resource_meta or {},
        "createdAt": _iso(row.created_at),
    }


def _instance_to_dict(infra: InstanceInfra) -> dict:
    return {
        "instanceId": infra.instance_id,
        "provider": infra.provider,
        "serviceId": infra.provider_service_id,
        "environmentId": infra.provider_env_id,
        "url": infra.url,
        "deployStatus": infra.deploy_status,
        "runtimeImage": infra.runtime_image,
        "volumeId": infra.volume_id,
        "createdAt": _iso(infra.created_at),
        "updatedAt": _iso(infra.updated_at),
        "tools": [_tool_to_dict(s) for s in sorted(infra.services, key=lambda s: s.id)],
    }


async def list_instances(db: AsyncSession) -> list[dict]:
    """Every tracked instance with its tools, newest first."""
    result = await db.execute(
        select(InstanceInfra)
        .options(selectinload(InstanceInfra.services))
        .order_by(InstanceInfra.created_at.desc())
    )
    return [_instance_to_dict(infra) for infra in result.scalars().all()]


async def get_credits(ctx: ServiceContext) -> dict:
    credits = await ctx.openrouter.get_credits()
    keys = await ctx.openrouter.list_keys()
    return {"credits": credits, "keys": keys}


async def list_inboxes(ctx: ServiceContext) -> dict:
    inboxes = await ctx.agentmail.list_inboxes()
    return {"count": len(inboxes), "inboxes": inboxes}


async def top_up_key(ctx: ServiceContext, key_hash: str, limit: Any) -> dict:
    """Raise (or lower) the spend limit on one OpenRouter key."""
    if isinstance(limit, bool) or not isinstance(limit, (int, float)) or limit <= 0:
        raise InvalidRequestError("limit must be a positive number")

    data = await ctx.openrouter.update_key_limit(key_hash, limit)
    logger.info("[dashboard] Topped up key %s to %s", key_hash, limit)
    return {"ok": True, "data": data}
