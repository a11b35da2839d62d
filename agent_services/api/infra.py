"""
Instance lifecycle endpoints.

POST   /create-instance           — create compute service + tools
DELETE /destroy/{instance_id}     — tear everything down
POST   /redeploy/{instance_id}    — redeploy latest build
POST   /configure/{instance_id}   — set env vars, optionally redeploy
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from agent_services.api.deps import get_context
from agent_services.db import get_db
from agent_services.services import provisioning_service
from agent_services.services.context import ServiceContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Instances"])


class CreateInstanceRequest(BaseModel):
    # Optional here so a missing field is reported as our own 400, not a schema error
    instanceId: Optional[str] = None
    name: Optional[str] = None
    tools: list[str] = Field(default_factory=list)


class ConfigureRequest(BaseModel):
    variables: dict[str, str] = Field(default_factory=dict)
    redeploy: bool = False


@router.post("/create-instance")
async def create_instance(
    body: CreateInstanceRequest,
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
):
    logger.info("[infra] Creating instance %s (%s), tools=%s", body.instanceId, body.name, body.tools)
    return await provisioning_service.create_instance(ctx, db, body.instanceId, body.name, body.tools)


@router.delete("/destroy/{instance_id}")
async def destroy_instance(
    instance_id: str,
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
):
    logger.info("[infra] Destroying instance %s", instance_id)
    return await provisioning_service.destroy_instance(ctx, db, instance_id)


@router.post("/redeploy/{instance_id}")
async def redeploy_instance(
    instance_id: str,
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
):
    return await provisioning_service.redeploy_instance(ctx, db, instance_id)


@router.post("/configure/{instance_id}")
async def configure_instance(
    instance_id: str,
    body: ConfigureRequest,
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
):
    return await provisioning_service.configure_instance(ctx, db, instance_id, body.variables, body.redeploy)
