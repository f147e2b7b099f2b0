#!/usr/bin/env python3
"""CLI for tenant schema lifecycle and migrations.

Usage:
    python scripts/manage_tenants.py provision acme
    python scripts/manage_tenants.py delete acme --hard
    python scripts/manage_tenants.py archive acme
    python scripts/manage_tenants.py restore acme
    python scripts/manage_tenants.py migrate acme
    python scripts/manage_tenants.py migrate-all
    python scripts/manage_tenants.py status
    python scripts/manage_tenants.py list

Connects using DATABASE_URL from environment or .env file. Pass --registry
to catalogue tenants in the control schema (created if missing), and --cache
to put the Redis read cache from REDIS_URL in front of it.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.tenancy
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run(args: argparse.Namespace) -> int:
    from src.tenancy.core.database import close_db, init_db
    from src.tenancy.core.errors import TenancyError
    from src.tenancy.core.logging import configure_structlog
    from src.tenancy.core.redis import close_redis, get_redis_pool
    from src.tenancy.services.bootstrap import build_tenant_manager

    configure_structlog()
    if args.registry:
        await init_db()
    manager = build_tenant_manager(
        use_registry=args.registry,
        redis=get_redis_pool() if args.registry and args.cache else None,
    )

    try:
        if args.command == "provision":
            info = await manager.provision_tenant(args.tenant)
            print(f"Provisioned {info.tenant_id} -> {info.schema_name}")
        elif args.command == "delete":
            await manager.delete_tenant(args.tenant, hard=args.hard)
            print(f"Deleted {args.tenant} ({'hard' if args.hard else 'soft'})")
        elif args.command == "archive":
            print(f"Archived to {await manager.archive_tenant(args.tenant)}")
        elif args.command == "restore":
            print(f"Restored to {await manager.restore_tenant(args.tenant)}")
        elif args.command == "migrate":
            result = await manager.migrate_tenant(args.tenant)
            print(f"{result.schema_name}: applied {len(result.applied)} migration(s)")
        elif args.command == "migrate-all":
            report = await manager.migrate_all_tenants()
            print(f"Migrated {len(report.results)} tenant(s), {len(report.failures)} skipped on failure")
            for tenant_id, exc in report.failures.items():
                print(f"  FAILED {tenant_id}: {exc}")
        elif args.command == "status":
            for tenant_id, status in (await manager.get_migration_status()).items():
                state = "error" if status.error else ("up to date" if status.is_up_to_date else "pending")
                print(f"{tenant_id}\t{status.schema_name}\t{state}\t{len(status.applied)} applied\t{len(status.pending)} pending")
                if status.error:
                    print(f"  {status.error}")
        elif args.command == "list":
            for info in await manager.list_tenants():
                status = info.status.name if info.status is not None else "-"
                print(f"{info.tenant_id}\t{info.schema_name}\t{status}")
    except TenancyError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await close_redis()
        await close_db()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage tenant schemas")
    parser.add_argument("--registry", action="store_true", help="Use the control registry")
    parser.add_argument("--cache", action="store_true", help="Cache registry reads in Redis (with --registry)")
    sub = parser.add_subparsers(dest="command", required=True)

    for name in ("provision", "archive", "restore", "migrate"):
        sub.add_parser(name).add_argument("tenant", help="Tenant identifier")
    delete = sub.add_parser("delete")
    delete.add_argument("tenant", help="Tenant identifier")
    delete.add_argument("--hard", action="store_true", help="Drop the schema instead of soft-deleting")
    sub.add_parser("migrate-all")
    sub.add_parser("status")
    sub.add_parser("list")

    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
