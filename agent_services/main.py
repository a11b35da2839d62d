"""
Agent Services - instance lifecycle orchestrator entry point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException

from agent_services import __version__
from agent_services.api import api_router
from agent_services.config import settings
from agent_services.db import init_db, async_session_maker
from agent_services.providers import ProviderError
from agent_services.services.context import ServiceContext
from agent_services.services.errors import OrchestratorError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Agent Services starting up...")

    created = await init_db()
    logger.info("Database initialized (%d table(s) created)", len(created))

    ctx = ServiceContext.from_settings(settings)
    app.state.ctx = ctx
    for name, configured in (
        ("railway", ctx.railway.configured),
        ("openrouter", ctx.openrouter.configured),
        ("agentmail", ctx.agentmail.configured),
        ("telnyx", ctx.telnyx.configured),
    ):
        if not configured:
            logger.warning("%s credentials not set; its features are disabled", name)
    if not settings.services_api_key:
        logger.warning("SERVICES_API_KEY not set; every authenticated route will return 401")

    scheduler = None
    if settings.reconcile_schedule_enabled:
        try:
            from agent_services.services.scheduler import start_scheduler
            scheduler = start_scheduler(ctx)
        except Exception as e:
            logger.error("Could not start scheduler: %s", e)

    yield

    if scheduler is not None:
        from agent_services.services.scheduler import stop_scheduler
        stop_scheduler(scheduler)
    logger.info("Agent Services shutdown complete.")


app = FastAPI(
    title=settings.app_name,
    description="Provisions, tracks and tears down disposable agent instances and their external resources",
    version=__version__,
    lifespan=lifespan,
)


# ── Error rendering: every failure is {"error": "..."} ────────────────────────

@app.exception_handler(OrchestratorError)
async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error("%s %s failed upstream: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()) if p != 'body')}: {e.get('msg')}" for e in errors
    ) or "Invalid request"
    return JSONResponse(status_code=400, content={"error": detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


app.include_router(api_router)


@app.get("/healthz")
async def healthz():
    """Liveness probe. Public."""
    db_status = "connected"
    try:
        async with async_session_maker() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"error: {e}"
    return {"ok": db_status == "connected", "version": __version__, "database": db_status}
