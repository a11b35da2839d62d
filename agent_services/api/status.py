"""
Status endpoints.

POST /status/batch          — live deploy status for agent services
GET  /status/{instance_id}  — derived lifecycle status for one instance
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agent_services.api.deps import get_context
from agent_services.db import get_db
from agent_services.services import status_service
from agent_services.services.context import ServiceContext

router = APIRouter(prefix="/status", tags=["Status"])


class BatchStatusRequest(BaseModel):
    instanceIds: Optional[list[str]] = None


@router.post("/batch")
async def batch_status(
    body: Optional[BatchStatusRequest] = None,
    ctx: ServiceContext = Depends(get_context),
):
    return await status_service.fetch_batch_status(ctx, body.instanceIds if body else None)


@router.get("/{instance_id}")
async def instance_status(
    instance_id: str,
    claimed: bool = False,
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
):
    return await status_service.get_instance_status(ctx, db, instance_id, is_claimed=claimed)
