from fastapi import APIRouter, Depends

from agent_services.api.deps import require_api_key
from agent_services.api import dashboard, infra, status, tools

api_router = APIRouter(dependencies=[Depends(require_api_key)])
api_router.include_router(infra.router)
api_router.include_router(tools.router)
api_router.include_router(status.router)
api_router.include_router(dashboard.router)
