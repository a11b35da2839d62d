"""
Scheduled orphan reports.

Runs the reconciler in report-only mode on an interval. Nothing is ever
deleted from here; deletion goes through `agent-services reconcile`, which
asks an operator first.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from agent_services.db import async_session_maker
from agent_services.services.context import ServiceContext
from agent_services.services.reconcile_service import plan_reconcile

logger = logging.getLogger(__name__)


async def run_orphan_report(ctx: ServiceContext) -> int:
    """Log orphan counts for every target. Returns the total number of orphans found."""
    logger.info("Starting scheduled orphan report...")

    async with async_session_maker() as db:
        reports = await plan_reconcile(ctx, db, "all")

    total = 0
    for report in reports:
        if report.skipped:
            continue
        total += len(report.orphans)
        for res in report.orphans:
            logger.warning("Orphaned %s: %s (%s)", report.target.key, res.name, res.resource_id)

    logger.info(
        f"Orphan report complete: {total} orphan(s) across "
        f"{sum(1 for r in reports if not r.skipped)} target(s); run `agent-services reconcile` to delete"
    )
    return total


async def _safe_orphan_report(ctx: ServiceContext) -> None:
    try:
        await run_orphan_report(ctx)
    except Exception as e:
        logger.error(f"Error running orphan report: {e}")


def setup_scheduler(ctx: ServiceContext) -> AsyncIOScheduler:
    """Create a scheduler with the orphan report job. The caller starts it."""
    interval_hours = ctx.settings.reconcile_interval_hours
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _safe_orphan_report,
        trigger=IntervalTrigger(hours=interval_hours),
        args=[ctx],
        id="orphan_report",
        name="Orphan Report (dry run)",
        replace_existing=True,
    )
    logger.info(f"Scheduler configured: orphan report every {interval_hours}h")
    return scheduler


def start_scheduler(ctx: ServiceContext) -> AsyncIOScheduler:
    scheduler = setup_scheduler(ctx)
    scheduler.start()
    logger.info("Orphan report scheduler started")
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("Orphan report scheduler stopped")
