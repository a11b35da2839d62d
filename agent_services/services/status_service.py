"""
Instance status derivation.

Railway reports a raw deploy status per service. The pool cares about a
smaller lifecycle taxonomy, which also depends on whether the runtime inside
the service answers its readiness probe, how old the instance is, and
whether a user has claimed it.
"""

import logging
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agent_services.db.models import InstanceInfra
from agent_services.naming import is_agent_service, parse_instance_id
from agent_services.providers import ProviderError, probe_health
from agent_services.services.context import ServiceContext
from agent_services.services.errors import InstanceNotFoundError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_STUCK_TIMEOUT_MS = 15 * 60 * 1000

STARTING_STATUSES = frozenset({"QUEUED", "WAITING", "BUILDING", "DEPLOYING"})
DEAD_STATUSES = frozenset({"FAILED", "CRASHED", "REMOVED", "SKIPPED"})


class InstanceStatus(str, Enum):
    SLEEPING = "sleeping"   # Railway put the service to sleep
    CRASHED = "crashed"     # Claimed instance whose deploy died
    DEAD = "dead"           # Unclaimed and unrecoverable (or stuck too long)
    CLAIMED = "claimed"     # In use by someone
    STARTING = "starting"   # Still coming up
    IDLE = "idle"           # Healthy and waiting to be claimed


def age_ms(created_at: Any, now: datetime) -> float:
    """Milliseconds since `created_at`; unknown or unparseable means infinitely old."""
    if created_at is None:
        return math.inf
    try:
        if isinstance(created_at, datetime):
            created = created_at
        elif isinstance(created_at, str):
            created = datetime.fromisoformat(created_at.strip().replace("Z", "+00:00"))
        elif isinstance(created_at, (int, float)) and not isinstance(created_at, bool):
            created = datetime.fromtimestamp(created_at / 1000, tz=timezone.utc)
        else:
            return math.inf
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return (now - created).total_seconds() * 1000
    except (TypeError, ValueError, OverflowError, OSError):
        return math.inf


def _is_ready(health_check: Any) -> bool:
    if not health_check:
        return False
    try:
        if isinstance(health_check, dict):
            return bool(health_check.get("ready"))
        return bool(getattr(health_check, "ready", False))
    except Exception:
        return False


def derive_status(
    deploy_status: Optional[str],
    health_check: Any = None,
    created_at: Any = None,
    is_claimed: bool = False,
    stuck_timeout_ms: float = DEFAULT_STUCK_TIMEOUT_MS,
    now: Optional[datetime] = None,
) -> InstanceStatus:
    """Map raw compute/health signals onto the pool lifecycle. Pure and total."""
    if not isinstance(deploy_status, str):
        deploy_status = None
    claimed = bool(is_claimed)

    if deploy_status == "SLEEPING":
        return InstanceStatus.SLEEPING
    if deploy_status in DEAD_STATUSES:
        return InstanceStatus.CRASHED if claimed else InstanceStatus.DEAD
    if deploy_status in STARTING_STATUSES:
        return InstanceStatus.CLAIMED if claimed else InstanceStatus.STARTING
    if deploy_status == "SUCCESS" and _is_ready(health_check):
        return InstanceStatus.CLAIMED if claimed else InstanceStatus.IDLE

    # SUCCESS without a ready probe, or a status we do not recognise
    if claimed:
        return InstanceStatus.CLAIMED
    age = age_ms(created_at, now or datetime.now(timezone.utc))
    return InstanceStatus.STARTING if age < stuck_timeout_ms else InstanceStatus.DEAD


async def fetch_batch_status(ctx: ServiceContext, instance_ids: Optional[list[str]] = None) -> dict:
    """Live deploy status for every agent service (optionally only `instance_ids`)."""
    settings = ctx.settings
    try:
        services = await ctx.railway.list_project_services()
    except ProviderError as exc:
        logger.warning("[status] listProjectServices failed: %s", exc.message)
        raise UpstreamUnavailableError("Failed to fetch services from Railway") from exc

    env_id = settings.railway_environment_id
    agents = [
        s for s in services
        if is_agent_service(s.name, settings.agent_name_prefix, settings.pool_manager_service_name)
        and (not env_id or env_id in s.environment_ids)
    ]
    if instance_ids:
        wanted = set(instance_ids)
        agents = [s for s in agents if parse_instance_id(s.name, settings.agent_name_prefix) in wanted]

    return {
        "projectId": settings.railway_project_id,
        "services": [
            {
                "instanceId": parse_instance_id(s.name, settings.agent_name_prefix),
                "serviceId": s.id,
                "name": s.name,
                "deployStatus": s.deploy_status,
                "domain": s.domain,
                "image": s.image,
                "environmentIds": s.environment_ids,
            }
            for s in agents
        ],
    }


async def get_instance_status(
    ctx: ServiceContext,
    db: AsyncSession,
    instance_id: str,
    is_claimed: bool = False,
) -> dict:
    """Fetch live signals for one instance, derive its lifecycle status, and record the raw status."""
    result = await db.execute(select(InstanceInfra).where(InstanceInfra.instance_id == instance_id))
    infra: Optional[InstanceInfra] = result.scalar_one_or_none()
    if not infra:
        raise InstanceNotFoundError(instance_id)

    try:
        live = await ctx.railway.fetch_service_status(infra.provider_service_id)
    except ProviderError as exc:
        logger.warning("[status] fetchServiceStatus(%s) failed: %s", infra.provider_service_id, exc.message)
        live = None

    deploy_status = live.deploy_status if live else infra.deploy_status
    url = infra.url or (f"https://{live.domain}" if live and live.domain else None)

    health = None
    if deploy_status == "SUCCESS" and url:
        health = await probe_health(
            url,
            ctx.settings.pool_api_key,
            timeout=ctx.settings.health_check_timeout,
            transport=ctx.http_transport,
        )

    status = derive_status(
        deploy_status,
        health_check=health,
        created_at=infra.created_at,
        is_claimed=is_claimed,
        stuck_timeout_ms=ctx.settings.pool_stuck_timeout_ms,
    )

    if live and (live.deploy_status != infra.deploy_status or url != infra.url):
        infra.deploy_status = live.deploy_status
        infra.url = url
        await db.commit()

    return {
        "instanceId": instance_id,
        "deployStatus": deploy_status,
        "healthCheck": health,
        "status": status.value,
    }
