"""
Dashboard endpoints.

GET   /dashboard/instances         — tracked instances with their tools
GET   /dashboard/credits           — OpenRouter credits + per-key usage
GET   /dashboard/inboxes           — AgentMail inboxes
PATCH /dashboard/topup/{key_hash}  — set the spend limit on an OpenRouter key
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agent_services.api.deps import get_context
from agent_services.db import get_db
from agent_services.services import dashboard_service
from agent_services.services.context import ServiceContext

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


class TopUpRequest(BaseModel):
    # Validated by the service so a non-number gets the same 400 as a negative one
    limit: Optional[Any] = None


@router.get("/instances")
async def list_instances(db: AsyncSession = Depends(get_db)):
    return await dashboard_service.list_instances(db)


@router.get("/credits")
async def get_credits(ctx: ServiceContext = Depends(get_context)):
    return await dashboard_service.get_credits(ctx)


@router.get("/inboxes")
async def list_inboxes(ctx: ServiceContext = Depends(get_context)):
    return await dashboard_service.list_inboxes(ctx)


@router.patch("/topup/{key_hash}")
async def top_up_key(
    key_hash: str,
    body: TopUpRequest,
    ctx: ServiceContext = Depends(get_context),
):
    return await dashboard_service.top_up_key(ctx, key_hash, body.limit)
