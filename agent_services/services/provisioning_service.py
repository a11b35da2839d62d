"""
Instance provisioning orchestrator.

Creates an instance as one unit (tool resources → compute service → volume
and domain → DB rows), tears it down again best-effort, provisions single
tools on demand, and forwards redeploy/configure requests to Railway.

Creation is a compensating transaction: if any step fails, everything this
request already created upstream is deleted again before the error is
raised. Anything whose rollback fails still carries the instance id in its
name, which is what the orphan reconciler keys on.
"""

import asyncio
import logging
import time
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agent_services.db.models import InstanceInfra, InstanceService, ResourceStatus
from agent_services.providers import ProviderError
from agent_services.providers.credentials import (
    generate_gateway_token,
    generate_setup_password,
    generate_private_wallet_key,
)
from agent_services.providers.env import build_instance_env
from agent_services.services.context import ServiceContext
from agent_services.services.errors import (
    InstanceExistsError,
    InstanceNotFoundError,
    InvalidRequestError,
    OrchestratorError,
    ProvisioningError,
    ToolAlreadyProvisionedError,
)
from agent_services.services.tools import (
    PROVISIONERS,
    TOOL_IDS,
    ProvisionedTool,
    get_provisioner,
)

logger = logging.getLogger(__name__)


# ── Store helpers ─────────────────────────────────────────────────────────────

async def _get_instance(db: AsyncSession, instance_id: str) -> InstanceInfra:
    result = await db.execute(select(InstanceInfra).where(InstanceInfra.instance_id == instance_id))
    infra: Optional[InstanceInfra] = result.scalar_one_or_none()
    if not infra:
        raise InstanceNotFoundError(instance_id)
    return infra


async def _existing_tool_resource(db: AsyncSession, instance_id: str, tool_id: str) -> Optional[InstanceService]:
    result = await db.execute(
        select(InstanceService)
        .where(InstanceService.instance_id == instance_id)
        .where(InstanceService.tool_id == tool_id)
    )
    return result.scalar_one_or_none()


def _service_row(instance_id: str, tool: ProvisionedTool) -> InstanceService:
    return InstanceService(
        instance_id=instance_id,
        tool_id=tool.tool_id,
        resource_id=tool.resource_id,
        resource_meta=tool.meta,
        env_key=tool.env_key,
        env_value=tool.env_value,
        status=ResourceStatus.ACTIVE.value,
    )


# ── Compensation ──────────────────────────────────────────────────────────────

async def _compensate(
    ctx: ServiceContext,
    label: str,
    tools: list[ProvisionedTool],
    service_id: Optional[str] = None,
) -> dict[str, bool]:
    """Undo upstream side effects of a failed request. Never raises."""
    undone: dict[str, bool] = {}
    for tool in reversed(tools):
        try:
            undone[tool.tool_id] = await PROVISIONERS[tool.tool_id].release(ctx, tool.resource_id)
        except Exception as e:
            logger.warning("[infra] Rollback of %s/%s for %s failed: %s", tool.tool_id, tool.resource_id, label, e)
            undone[tool.tool_id] = False
    if service_id:
        try:
            await ctx.railway.delete_service(service_id)
            undone["service"] = True
        except ProviderError as e:
            logger.warning("[infra] Rollback of service %s for %s failed: %s", service_id, label, e.message)
            undone["service"] = False

    leaked = [k for k, ok in undone.items() if not ok]
    if leaked:
        logger.warning("[infra] Rollback for %s left %s behind; reconciler will reclaim them", label, leaked)
    else:
        logger.info("[infra] Rolled back %d resource(s) for %s", len(undone), label)
    return undone


async def _provision_tools(
    ctx: ServiceContext,
    label: str,
    tool_ids: list[str],
    config: Optional[dict] = None,
    name: Optional[str] = None,
) -> list[ProvisionedTool]:
    """Provision tools one at a time in registry order, skipping unconfigured ones.

    Resources are named `name`, or the managed name of instance `label` by default.

    On failure, already-created tools are rolled back before ProvisioningError is raised.
    """
    name = name or ctx.resource_name(label)
    requested = set(tool_ids)
    provisioned: list[ProvisionedTool] = []
    for tool_id in TOOL_IDS:
        if tool_id not in requested:
            continue
        provisioner = PROVISIONERS[tool_id]
        if not provisioner.configured(ctx):
            logger.info("[infra] %s not configured, skipping %s for %s", provisioner.spec.credential, tool_id, label)
            continue
        try:
            provisioned.append(await provisioner.provision(ctx, name, config))
        except ProviderError as e:
            logger.error("[infra] Provisioning %s for %s failed: %s", tool_id, label, e.message)
            await _compensate(ctx, label, provisioned)
            raise ProvisioningError(f"{tool_id} provisioning failed: {e.message}") from e
    return provisioned


def _check_tools(tool_ids: list[str]) -> None:
    for tool_id in tool_ids:
        get_provisioner(tool_id)


# ── Create ────────────────────────────────────────────────────────────────────

async def create_instance(
    ctx: ServiceContext,
    db: AsyncSession,
    instance_id: str,
    name: str,
    tools: Optional[list[str]] = None,
) -> dict:
    """Create a compute service with secrets and the requested tools, then record it."""
    if not instance_id or not name:
        raise InvalidRequestError("instanceId and name are required")
    tools = list(tools or [])
    _check_tools(tools)

    if not ctx.railway.configured:
        raise OrchestratorError("RAILWAY_API_TOKEN, RAILWAY_PROJECT_ID and RAILWAY_ENVIRONMENT_ID must be set")

    # Pre-check only; the primary key is what actually guarantees uniqueness
    existing = await db.execute(select(InstanceInfra.instance_id).where(InstanceInfra.instance_id == instance_id))
    if existing.scalar_one_or_none():
        raise InstanceExistsError(instance_id)

    gateway_token = generate_gateway_token()
    setup_password = generate_setup_password()
    wallet_key = generate_private_wallet_key()

    variables = build_instance_env(ctx.settings)
    variables["OPENCLAW_GATEWAY_TOKEN"] = gateway_token
    variables["SETUP_PASSWORD"] = setup_password
    variables["PRIVATE_WALLET_KEY"] = wallet_key

    provisioned = await _provision_tools(ctx, instance_id, tools)
    for tool in provisioned:
        variables.update(tool.env)

    try:
        service_id = await ctx.railway.create_service(name, variables)
    except ProviderError as e:
        logger.error("[infra] Railway service creation for %s failed: %s", instance_id, e.message)
        await _compensate(ctx, instance_id, provisioned)
        raise ProvisioningError(f"service creation failed: {e.message}") from e
    logger.info("[infra] Railway service created: %s", service_id)

    volume_id = await ctx.railway.ensure_volume(service_id)
    if not volume_id:
        logger.warning("[infra] Volume creation failed for %s", service_id)

    url = None
    try:
        domain = await ctx.railway.create_domain(service_id)
        url = f"https://{domain}"
        logger.info("[infra] Domain: %s", url)
    except ProviderError as e:
        logger.warning("[infra] Domain creation failed for %s: %s", service_id, e.message)

    db.add(InstanceInfra(
        instance_id=instance_id,
        provider="railway",
        provider_service_id=service_id,
        provider_env_id=ctx.railway.environment_id,
        provider_project_id=ctx.railway.project_id or None,
        url=url,
        deploy_status="BUILDING",
        runtime_image=ctx.settings.railway_runtime_image,
        volume_id=volume_id,
        gateway_token=gateway_token,
        setup_password=setup_password,
        wallet_key=wallet_key,
    ))
    for tool in provisioned:
        db.add(_service_row(instance_id, tool))
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        if isinstance(e, IntegrityError):
            logger.warning("[infra] Instance %s was created concurrently, rolling back: %s", instance_id, e.orig)
        else:
            logger.error("[infra] Recording instance %s failed, rolling back: %s", instance_id, e)
        await _compensate(ctx, instance_id, provisioned, service_id)
        if isinstance(e, IntegrityError):
            raise InstanceExistsError(instance_id) from e
        raise

    logger.info("[infra] Instance %s created successfully", instance_id)
    return {
        "instanceId": instance_id,
        "serviceId": service_id,
        "url": url,
        "services": {tool.tool_id: {"resourceId": tool.resource_id} for tool in provisioned},
    }


# ── Destroy ───────────────────────────────────────────────────────────────────

async def _delete_service_with_retry(ctx: ServiceContext, service_id: str) -> bool:
    attempts = ctx.settings.destroy_retry_attempts
    for attempt in range(1, attempts + 1):
        try:
            await ctx.railway.delete_service(service_id)
            return True
        except ProviderError as e:
            logger.warning("[infra] Delete service attempt %d/%d failed for %s: %s",
                           attempt, attempts, service_id, e.message)
            if attempt < attempts:
                await asyncio.sleep(ctx.settings.destroy_retry_delay * attempt)
    return False


async def destroy_instance(ctx: ServiceContext, db: AsyncSession, instance_id: str) -> dict:
    """Delete every resource of an instance, then its rows.

    Each step is attempted regardless of the others; the result says which
    resources were not cleaned up.
    """
    infra = await _get_instance(db, instance_id)
    service_id = infra.provider_service_id
    result = await db.execute(select(InstanceService).where(InstanceService.instance_id == instance_id))
    rows = result.scalars().all()

    destroyed: dict[str, bool] = {tool_id: False for tool_id in TOOL_IDS}
    destroyed.update(volumes=False, service=False)

    for row in rows:
        provisioner = PROVISIONERS.get(row.tool_id)
        if provisioner is None:
            logger.warning("[infra] Unknown tool %s on %s, leaving %s", row.tool_id, instance_id, row.resource_id)
            continue
        try:
            destroyed[row.tool_id] = await provisioner.release(ctx, row.resource_id)
        except Exception as e:
            logger.warning("[infra] Failed to delete %s resource for %s: %s", row.tool_id, instance_id, e)

    try:
        volume_map = await ctx.railway.list_volumes_by_service()
        for volume_id in volume_map.get(service_id, []):
            await ctx.railway.delete_volume(volume_id, service_id)
        destroyed["volumes"] = True
    except ProviderError as e:
        logger.warning("[infra] Volume cleanup failed for %s: %s", instance_id, e.message)

    destroyed["service"] = await _delete_service_with_retry(ctx, service_id)

    await db.execute(delete(InstanceService).where(InstanceService.instance_id == instance_id))
    await db.execute(delete(InstanceInfra).where(InstanceInfra.instance_id == instance_id))
    await db.commit()

    expected = {row.tool_id for row in rows} | {"volumes", "service"}
    leftovers = [k for k, ok in destroyed.items() if k in expected and not ok]
    if leftovers:
        logger.warning("[infra] Instance %s destroyed with leftovers: %s", instance_id, leftovers)
    else:
        logger.info("[infra] Instance %s destroyed", instance_id)
    return {"instanceId": instance_id, "destroyed": destroyed}


# ── Redeploy / configure ──────────────────────────────────────────────────────

async def redeploy_instance(ctx: ServiceContext, db: AsyncSession, instance_id: str) -> dict:
    infra = await _get_instance(db, instance_id)
    await ctx.railway.redeploy_service(infra.provider_service_id)
    logger.info("[infra] Redeployed instance %s", instance_id)
    return {"instanceId": instance_id, "ok": True}


async def configure_instance(
    ctx: ServiceContext,
    db: AsyncSession,
    instance_id: str,
    variables: dict[str, str],
    redeploy: bool = False,
) -> dict:
    """Set env vars on an instance's service, optionally redeploying it."""
    if not variables:
        raise InvalidRequestError("variables object is required")
    infra = await _get_instance(db, instance_id)

    await ctx.railway.upsert_variables(infra.provider_service_id, variables, skip_deploys=not redeploy)
    if redeploy:
        await ctx.railway.redeploy_service(infra.provider_service_id)

    logger.info("[configure] Updated %d var(s) for %s", len(variables), instance_id)
    return {"instanceId": instance_id, "ok": True}


# ── Single tools ──────────────────────────────────────────────────────────────

async def provision_tool(
    ctx: ServiceContext,
    db: AsyncSession,
    instance_id: str,
    tool_id: str,
    config: Optional[dict] = None,
) -> dict:
    """Provision one tool for a running instance and push its env into the service."""
    infra = await _get_instance(db, instance_id)

    # Fast path only: two concurrent calls can both get past this check,
    # the unique (instance_id, tool_id) constraint decides the winner below.
    if await _existing_tool_resource(db, instance_id, tool_id):
        raise ToolAlreadyProvisionedError(instance_id, tool_id)

    provisioner = get_provisioner(tool_id)
    provisioner.require_configured(ctx)

    try:
        tool = await provisioner.provision(ctx, ctx.resource_name(instance_id), config)
    except ProviderError as e:
        raise ProvisioningError(f"{tool_id} provisioning failed: {e.message}") from e

    try:
        await ctx.railway.upsert_variables(infra.provider_service_id, tool.env, skip_deploys=True)
    except ProviderError as e:
        await _compensate(ctx, instance_id, [tool])
        raise ProvisioningError(f"pushing {tool.env_key} to {instance_id} failed: {e.message}") from e

    db.add(_service_row(instance_id, tool))
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        if isinstance(e, IntegrityError):
            logger.warning("[tools] Lost race provisioning %s for %s, releasing %s",
                           tool_id, instance_id, tool.resource_id)
        else:
            logger.error("[tools] Recording %s for %s failed, releasing %s: %s",
                         tool_id, instance_id, tool.resource_id, e)
        await _compensate(ctx, instance_id, [tool])
        if isinstance(e, IntegrityError):
            raise ToolAlreadyProvisionedError(instance_id, tool_id) from e
        raise

    logger.info("[tools] Provisioned %s for %s: %s", tool_id, instance_id, tool.resource_id)
    return {
        "toolId": tool_id,
        "resourceId": tool.resource_id,
        "envKey": tool.env_key,
        "status": ResourceStatus.ACTIVE.value,
    }


async def destroy_tool_resource(
    ctx: ServiceContext,
    db: AsyncSession,
    instance_id: str,
    tool_id: str,
    resource_id: str,
) -> dict:
    """Delete one tool resource upstream and drop its row."""
    provisioner = get_provisioner(tool_id)
    deleted = await provisioner.release(ctx, resource_id)

    await db.execute(
        delete(InstanceService)
        .where(InstanceService.instance_id == instance_id)
        .where(InstanceService.tool_id == tool_id)
        .where(InstanceService.resource_id == resource_id)
    )
    await db.commit()

    logger.info("[tools] Destroyed %s/%s for %s", tool_id, resource_id, instance_id)
    return {"toolId": tool_id, "resourceId": resource_id, "deleted": deleted}


async def provision_local(ctx: ServiceContext, tools: Optional[list[str]] = None) -> dict:
    """Create tool resources for a local dev runtime. Nothing is persisted."""
    tools = ["openrouter", "agentmail"] if tools is None else list(tools)
    _check_tools(tools)
    label = f"local-{int(time.time() * 1000)}"
    # Never under agent_name_prefix: nothing tracks these resources
    name = f"{ctx.settings.local_name_prefix}{label}"

    env: dict[str, str] = {}
    for tool in await _provision_tools(ctx, label, tools, name=name):
        env.update(tool.env)

    logger.info("[tools] Provisioned local: %s", ", ".join(env))
    return {"env": env}
