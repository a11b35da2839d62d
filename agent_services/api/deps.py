"""Shared route dependencies: the service context and the API key guard."""

import secrets

from fastapi import HTTPException, Request, status

from agent_services.config import get_settings
from agent_services.services.context import ServiceContext


def get_context(request: Request) -> ServiceContext:
    """The process-wide ServiceContext, built on first use if lifespan did not run."""
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        ctx = ServiceContext.from_settings(get_settings())
        request.app.state.ctx = ctx
    return ctx


def _presented_key(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth.removeprefix("Bearer ").strip()
    return request.query_params.get("key", "")


async def require_api_key(request: Request) -> None:
    """FastAPI dependency: reject requests without the shared API key with 401.

    Fails closed when no key is configured.
    """
    expected = get_settings().services_api_key
    presented = _presented_key(request)
    if not expected or not presented or not secrets.compare_digest(presented, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
