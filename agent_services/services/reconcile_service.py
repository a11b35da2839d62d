"""
Orphan reconciliation.

Every managed provider resource carries `<prefix><instanceId>` in its name,
client id or customer reference. A managed resource is an orphan when its
id is not referenced by an active tool row and its embedded instance id is
not tracked anywhere (DB rows or the live Railway listing).

Railway itself is reconciled in both directions: agent services and volumes
that no instance row accounts for, and instance rows whose service is gone.
Deletion is always a separate, explicit step.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agent_services.db.models import InstanceInfra, InstanceService, ResourceStatus
from agent_services.naming import is_agent_service, parse_instance_id
from agent_services.providers import ProviderClient, ProviderError
from agent_services.services.context import ServiceContext
from agent_services.services.status_service import age_ms
from agent_services.services.tools import PROVISIONERS

logger = logging.getLogger(__name__)

TAG = "[reconcile]"


@dataclass(frozen=True)
class ManagedResource:
    resource_id: str
    name: str
    created_at: Optional[Any] = None
    attached_to: tuple[str, ...] = ()   # Volumes only: ids of the services using it


def find_orphans(
    resources: Iterable[ManagedResource],
    active_resource_ids: set[str],
    active_instance_ids: set[str],
    prefix: str,
    keep_names: Iterable[str] = (),
) -> list[ManagedResource]:
    """Managed resources referenced by neither an active row nor a live instance."""
    keep = {n for n in keep_names if n}
    orphans = []
    for res in resources:
        if not res.resource_id or not res.name or not res.name.startswith(prefix):
            continue
        if res.name in keep:
            continue
        if res.resource_id in active_resource_ids:
            continue
        instance_id = parse_instance_id(res.name, prefix)
        if instance_id and instance_id in active_instance_ids:
            continue
        orphans.append(res)
    return orphans


def _past_grace(ctx: ServiceContext, res: ManagedResource) -> bool:
    """False while a resource is young enough to belong to a create still in flight."""
    grace_ms = ctx.settings.reconcile_grace_minutes * 60 * 1000
    return age_ms(res.created_at, datetime.now(timezone.utc)) >= grace_ms


async def _live_service_ids(ctx: ServiceContext) -> set[str]:
    return {svc.id for svc in await ctx.railway.list_project_services()}


# ── Targets ───────────────────────────────────────────────────────────────────

class ReconcileTarget:
    key: str
    label: str
    credential: str

    def client(self, ctx: ServiceContext) -> ProviderClient:
        raise NotImplementedError

    def is_managed(self, ctx: ServiceContext, res: ManagedResource) -> bool:
        return res.name.startswith(ctx.settings.agent_name_prefix)

    async def list_resources(self, ctx: ServiceContext, db: AsyncSession) -> list[ManagedResource]:
        raise NotImplementedError

    async def find(
        self,
        ctx: ServiceContext,
        db: AsyncSession,
        resources: list[ManagedResource],
        instance_ids: set[str],
    ) -> list[ManagedResource]:
        raise NotImplementedError

    async def delete(self, ctx: ServiceContext, db: AsyncSession, resource_id: str) -> bool:
        raise NotImplementedError


class ToolTarget(ReconcileTarget):
    """Resources created by a tool provisioner."""
    tool_id: str

    @property
    def credential(self) -> str:
        return PROVISIONERS[self.tool_id].spec.credential

    def client(self, ctx):
        return PROVISIONERS[self.tool_id].client(ctx)

    def keep_names(self, ctx: ServiceContext) -> tuple[str, ...]:
        return ()

    async def find(self, ctx, db, resources, instance_ids):
        resource_ids = await active_resource_ids(db, self.tool_id)
        return find_orphans(resources, resource_ids, instance_ids, ctx.settings.agent_name_prefix, self.keep_names(ctx))

    async def delete(self, ctx, db, resource_id):
        return await PROVISIONERS[self.tool_id].release(ctx, resource_id)


class InboxTarget(ToolTarget):
    key = "email"
    tool_id = "agentmail"
    label = "AgentMail inboxes"

    async def list_resources(self, ctx, db):
        prefix = ctx.settings.agent_name_prefix
        resources = []
        for inbox in await ctx.agentmail.list_inboxes():
            client_id = inbox.get("client_id") or ""
            username = inbox.get("username") or ""
            name = client_id if client_id.startswith(prefix) else username
            resources.append(ManagedResource(inbox.get("inbox_id") or "", name, inbox.get("created_at")))
        return resources


class KeyTarget(ToolTarget):
    key = "openrouter"
    tool_id = "openrouter"
    label = "OpenRouter keys"

    def keep_names(self, ctx):
        return (ctx.settings.openrouter_clean_skip_name,)

    async def list_resources(self, ctx, db):
        return [
            ManagedResource(k.get("hash") or "", k.get("name") or "", k.get("created_at"))
            for k in await ctx.openrouter.list_keys()
        ]


class PhoneTarget(ToolTarget):
    key = "telnyx"
    tool_id = "telnyx"
    label = "Telnyx phone numbers"

    async def list_resources(self, ctx, db):
        return [
            ManagedResource(n.get("phone_number") or "", n.get("customer_reference") or "", n.get("created_at"))
            for n in await ctx.telnyx.list_phone_numbers()
        ]


class ServiceTarget(ReconcileTarget):
    """Agent services in our Railway environment that no instance row points at."""
    key = "railway"
    label = "Railway services"
    credential = "RAILWAY_API_TOKEN"

    def client(self, ctx):
        return ctx.railway

    async def list_resources(self, ctx, db):
        settings = ctx.settings
        env_id = ctx.railway.environment_id
        return [
            ManagedResource(svc.id, svc.name, svc.created_at)
            for svc in await ctx.railway.list_project_services()
            if is_agent_service(svc.name, settings.agent_name_prefix, settings.pool_manager_service_name)
            and (not svc.environment_ids or env_id in svc.environment_ids)
        ]

    async def find(self, ctx, db, resources, instance_ids):
        result = await db.execute(select(InstanceInfra.instance_id, InstanceInfra.provider_service_id))
        rows = result.all()
        tracked_services = {row.provider_service_id for row in rows}
        tracked_instances = {row.instance_id for row in rows}
        orphans = find_orphans(
            resources, tracked_services, tracked_instances, ctx.settings.agent_name_prefix,
            (ctx.settings.pool_manager_service_name,),
        )
        return [res for res in orphans if _past_grace(ctx, res)]

    async def delete(self, ctx, db, resource_id):
        try:
            volume_map = await ctx.railway.list_volumes_by_service()
            for volume_id in volume_map.get(resource_id, []):
                await ctx.railway.delete_volume(volume_id, resource_id)
        except ProviderError as e:
            logger.warning("%s Volume cleanup for service %s failed: %s", TAG, resource_id, e.message)
        try:
            await ctx.railway.delete_service(resource_id)
        except ProviderError as e:
            logger.warning("%s Deleting service %s failed: %s", TAG, resource_id, e.message)
            return False
        return True


class RecordTarget(ReconcileTarget):
    """Instance rows whose Railway service no longer exists."""
    key = "records"
    label = "Instance records without a Railway service"
    credential = "RAILWAY_API_TOKEN"

    def client(self, ctx):
        return ctx.railway

    def is_managed(self, ctx, res):
        return True

    async def list_resources(self, ctx, db):
        result = await db.execute(select(InstanceInfra))
        return [
            ManagedResource(row.instance_id, row.provider_service_id, row.created_at)
            for row in result.scalars().all()
        ]

    async def find(self, ctx, db, resources, instance_ids):
        live = await _live_service_ids(ctx)
        return [res for res in resources if res.name not in live]

    async def delete(self, ctx, db, resource_id):
        """Release the instance's tool resources, then drop its rows."""
        result = await db.execute(select(InstanceService).where(InstanceService.instance_id == resource_id))
        for row in result.scalars().all():
            provisioner = PROVISIONERS.get(row.tool_id)
            if provisioner is None:
                continue
            try:
                await provisioner.release(ctx, row.resource_id)
            except Exception as e:
                logger.warning("%s Releasing %s/%s of %s failed: %s", TAG, row.tool_id, row.resource_id, resource_id, e)
        try:
            await db.execute(delete(InstanceService).where(InstanceService.instance_id == resource_id))
            await db.execute(delete(InstanceInfra).where(InstanceInfra.instance_id == resource_id))
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            raise
        return True


class VolumeTarget(ReconcileTarget):
    """Project volumes not attached to any live service."""
    key = "volumes"
    label = "Railway volumes"
    credential = "RAILWAY_API_TOKEN"

    def client(self, ctx):
        return ctx.railway

    def is_managed(self, ctx, res):
        return True

    async def list_resources(self, ctx, db):
        return [
            ManagedResource(v.id, v.name or v.id, v.created_at, tuple(v.service_ids))
            for v in await ctx.railway.list_volumes()
        ]

    async def find(self, ctx, db, resources, instance_ids):
        live = await _live_service_ids(ctx)
        return [
            res for res in resources
            if not any(sid in live for sid in res.attached_to) and _past_grace(ctx, res)
        ]

    async def delete(self, ctx, db, resource_id):
        try:
            await ctx.railway.delete_volume(resource_id, "(orphan)")
        except ProviderError as e:
            logger.warning("%s Deleting volume %s failed: %s", TAG, resource_id, e.message)
            return False
        return True


TARGETS: dict[str, ReconcileTarget] = {
    t.key: t
    for t in (InboxTarget(), KeyTarget(), PhoneTarget(), ServiceTarget(), RecordTarget(), VolumeTarget())
}
TARGET_CHOICES = (*TARGETS, "all")


def resolve_targets(target: str) -> list[ReconcileTarget]:
    target = (target or "all").lower()
    if target == "all":
        return list(TARGETS.values())
    if target not in TARGETS:
        raise ValueError(f'Unknown target "{target}". Use: {", ".join(TARGET_CHOICES)}')
    return [TARGETS[target]]


# ── Active sets ───────────────────────────────────────────────────────────────

async def active_resource_ids(db: AsyncSession, tool_id: str) -> set[str]:
    result = await db.execute(
        select(InstanceService.resource_id)
        .where(InstanceService.tool_id == tool_id)
        .where(InstanceService.status == ResourceStatus.ACTIVE.value)
    )
    return set(result.scalars().all())


async def active_instance_ids(ctx: ServiceContext, db: AsyncSession) -> set[str]:
    """Instance ids that are still alive: DB rows unioned with the live Railway listing."""
    result = await db.execute(select(InstanceInfra.instance_id))
    ids = set(result.scalars().all())

    if not ctx.railway.configured:
        return ids
    settings = ctx.settings
    try:
        services = await ctx.railway.list_project_services()
    except ProviderError as e:
        logger.warning("%s Railway listing unavailable, using DB instances only: %s", TAG, e.message)
        return ids
    for svc in services:
        if is_agent_service(svc.name, settings.agent_name_prefix, settings.pool_manager_service_name):
            instance_id = parse_instance_id(svc.name, settings.agent_name_prefix)
            if instance_id:
                ids.add(instance_id)
    return ids


# ── Plan / delete ─────────────────────────────────────────────────────────────

@dataclass
class OrphanReport:
    target: ReconcileTarget
    total: int = 0
    managed: int = 0
    orphans: list[ManagedResource] = field(default_factory=list)
    skipped: Optional[str] = None   # Why the target was not inspected


@dataclass
class DeletionResult:
    resource: ManagedResource
    deleted: bool


async def plan_reconcile(ctx: ServiceContext, db: AsyncSession, target: str = "all") -> list[OrphanReport]:
    """Find orphans for each target without deleting anything."""
    targets = resolve_targets(target)
    instance_ids = await active_instance_ids(ctx, db)
    logger.info("%s %d active instance(s)", TAG, len(instance_ids))

    reports = []
    for t in targets:
        report = OrphanReport(target=t)
        reports.append(report)
        if not t.client(ctx).configured:
            report.skipped = f"{t.credential} not set"
            logger.info("%s %s, skipping %s", TAG, report.skipped, t.label)
            continue
        try:
            resources = await t.list_resources(ctx, db)
            report.orphans = await t.find(ctx, db, resources, instance_ids)
        except ProviderError as e:
            report.skipped = f"listing failed: {e.message}"
            logger.error("%s Failed to list %s: %s", TAG, t.label, e.message)
            continue

        report.total = len(resources)
        report.managed = sum(1 for r in resources if t.is_managed(ctx, r))
        logger.info("%s %s: %d total, %d managed, %d orphaned",
                    TAG, t.label, report.total, report.managed, len(report.orphans))
    return reports


async def delete_orphans(ctx: ServiceContext, db: AsyncSession, report: OrphanReport) -> list[DeletionResult]:
    """Delete a report's orphans one by one. A failure never stops the rest."""
    results = []
    for res in report.orphans:
        try:
            deleted = await report.target.delete(ctx, db, res.resource_id)
        except Exception as e:
            logger.warning("%s Deleting %s (%s) failed: %s", TAG, res.name, res.resource_id, e)
            deleted = False
        results.append(DeletionResult(resource=res, deleted=deleted))
    return results


def format_created(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value) if value else "?"
