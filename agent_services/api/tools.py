"""
Tool endpoints.

GET    /registry                                   — static tool list
POST   /provision/{instance_id}/{tool_id}          — add one tool to an instance
POST   /provision-local                            — tool env for a local runtime
DELETE /destroy/{instance_id}/{tool_id}/{resource_id} — remove one tool resource
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agent_services.api.deps import get_context
from agent_services.db import get_db
from agent_services.services import provisioning_service
from agent_services.services.context import ServiceContext
from agent_services.services.tools import registry_entries

router = APIRouter(tags=["Tools"])


class ProvisionRequest(BaseModel):
    config: Optional[dict] = None


class ProvisionLocalRequest(BaseModel):
    tools: Optional[list[str]] = None


@router.get("/registry")
async def get_registry():
    return {"tools": registry_entries()}


@router.post("/provision-local")
async def provision_local(
    body: Optional[ProvisionLocalRequest] = None,
    ctx: ServiceContext = Depends(get_context),
):
    tools = body.tools if body else None
    return await provisioning_service.provision_local(ctx, tools)


@router.post("/provision/{instance_id}/{tool_id}")
async def provision_tool(
    instance_id: str,
    tool_id: str,
    body: Optional[ProvisionRequest] = None,
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
):
    config = body.config if body else None
    return await provisioning_service.provision_tool(ctx, db, instance_id, tool_id, config)


@router.delete("/destroy/{instance_id}/{tool_id}/{resource_id}")
async def destroy_tool_resource(
    instance_id: str,
    tool_id: str,
    resource_id: str,
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
):
    return await provisioning_service.destroy_tool_resource(ctx, db, instance_id, tool_id, resource_id)
