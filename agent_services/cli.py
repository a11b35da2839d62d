#!/usr/bin/env python3
"""
agent-services — operator commands for the instance orchestrator.

Usage:
    agent-services serve
    agent-services migrate
    agent-services reconcile --target email
    agent-services reconcile --target all --yes
"""
import argparse
import asyncio
import sys
from typing import Callable

from agent_services.config import get_settings
from agent_services.db import async_session_maker, engine, init_db
from agent_services.services.context import ServiceContext
from agent_services.services.reconcile_service import (
    TAG,
    TARGET_CHOICES,
    delete_orphans,
    format_created,
    plan_reconcile,
)


def confirm(question: str) -> bool:
    try:
        answer = input(question)
    except EOFError:
        return False
    return answer.strip().lower().startswith("y")


async def reconcile(target: str, assume_yes: bool = False, ask: Callable[[str], bool] = confirm) -> int:
    """Find orphans for `target`, show them, and delete them once confirmed. Returns an exit code."""
    ctx = ServiceContext.from_settings(get_settings())
    async with async_session_maker() as db:
        return await _reconcile(ctx, db, target, assume_yes, ask)


async def _reconcile(ctx, db, target, assume_yes, ask) -> int:
    reports = await plan_reconcile(ctx, db, target)

    pending = [r for r in reports if r.orphans]
    if not pending:
        print(f"{TAG} Nothing to clean up.")
        return 0

    for report in pending:
        print(f"\n{report.target.label} to delete ({len(report.orphans)}):")
        for res in report.orphans:
            print(f"  - {res.name} ({res.resource_id}) created {format_created(res.created_at)}")

    print()
    if not assume_yes and not ask("Proceed with deletion? (y/N) "):
        print(f"{TAG} Aborted.")
        return 1

    deleted = failed = 0
    for report in pending:
        for result in await delete_orphans(ctx, db, report):
            res = result.resource
            if result.deleted:
                deleted += 1
                print(f"  [deleted] {res.name} ({res.resource_id})")
            else:
                failed += 1
                print(f"  [failed]  {res.name} ({res.resource_id})")

    print(f"{TAG} Done. {deleted} deleted, {failed} failed.")
    return 1 if failed else 0


def cmd_reconcile(args):
    """Delete orphaned provider resources after confirmation."""
    async def run():
        try:
            return await reconcile(args.target, assume_yes=args.yes)
        finally:
            await engine.dispose()

    sys.exit(asyncio.run(run()))


def cmd_migrate(args):
    """Create any missing tables."""
    async def run():
        try:
            created = await init_db()
        finally:
            await engine.dispose()
        print(f"[migrate] Done. Created: {', '.join(created) if created else 'nothing'}")

    asyncio.run(run())


def cmd_serve(args):
    """Run the HTTP API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("agent_services.main:app", host=args.host, port=args.port or settings.port)


def main():
    parser = argparse.ArgumentParser(
        prog="agent-services",
        description="Agent Services CLI — operate the instance orchestrator",
    )
    sub = parser.add_subparsers(dest="command", help="Command")

    # serve
    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="0.0.0.0", help="Bind address")
    p_serve.add_argument("--port", type=int, default=None, help="Port (default: PORT setting)")
    p_serve.set_defaults(func=cmd_serve)

    # migrate
    p_migrate = sub.add_parser("migrate", help="Create missing database tables")
    p_migrate.set_defaults(func=cmd_migrate)

    # reconcile
    p_rec = sub.add_parser("reconcile", help="Find and delete orphaned provider resources")
    p_rec.add_argument("--target", "-t", choices=TARGET_CHOICES, default="all", help="Provider to reconcile")
    p_rec.add_argument("--yes", "-y", action="store_true", help="Delete without asking")
    p_rec.set_defaults(func=cmd_reconcile)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
