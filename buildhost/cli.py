"""
buildhost-admin: user management and maintenance commands.

    buildhost-admin create-user alice
    buildhost-admin create-admin root
    buildhost-admin rotate-key alice
    buildhost-admin retry-archives
    buildhost-admin serve --port 8080
"""
import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from typing import Awaitable, Callable

from buildhost.lib.config import settings
from buildhost.lib.database import AsyncSessionLocal, create_all, engine
from buildhost.lib.errors import BuildhostError
from buildhost.services.user_service import UserService

logger = logging.getLogger("buildhost.cli")


async def _with_users(fn: Callable[[UserService], Awaitable[int]]) -> int:
    try:
        async with AsyncSessionLocal() as session:
            return await fn(UserService(session))
    finally:
        await engine.dispose()


def _create(role: str):
    async def run(args: argparse.Namespace) -> int:
        async def op(users: UserService) -> int:
            user, api_key = await users.create_user(args.username, role=role)
            print(f"Created {role} '{user.username}' (id={user.id})")
            print(f"API key: {api_key}")
            print("Store it now; it cannot be shown again.")
            return 0
        return await _with_users(op)
    return run


async def list_users(args: argparse.Namespace) -> int:
    async def op(users: UserService) -> int:
        for user in await users.list_users():
            active = "active" if user.is_active else "inactive"
            print(f"{user.id:>5}  {user.username:<24} {user.role:<6} {active:<9} {user.api_key_prefix}...")
        return 0
    return await _with_users(op)


def _set_active(active: bool):
    async def run(args: argparse.Namespace) -> int:
        async def op(users: UserService) -> int:
            changed = await users.set_active(args.username, active)
            state = "active" if active else "inactive"
            if changed:
                print(f"User '{args.username}' is now {state}")
            else:
                print(f"User '{args.username}' was already {state}")
            return 0
        return await _with_users(op)
    return run


async def rotate_key(args: argparse.Namespace) -> int:
    async def op(users: UserService) -> int:
        api_key = await users.rotate_key(args.username)
        print(f"New API key for '{args.username}': {api_key}")
        print("The previous key no longer works.")
        return 0
    return await _with_users(op)


async def retry_archives(args: argparse.Namespace) -> int:
    from buildhost.jobs.archive_job import retry_failed_archive_jobs
    from buildhost.services.storage_service import StorageService

    try:
        async with AsyncSessionLocal() as session:
            counts = await retry_failed_archive_jobs(
                session,
                StorageService(),
                limit=args.limit,
                stale_after=timedelta(minutes=args.stale_minutes),
            )
    finally:
        await engine.dispose()

    print(
        f"reclaimed={counts['reclaimed']} retried={counts['retried']} "
        f"recovered={counts['recovered']} "
        f"failed={counts['failed']} skipped={counts['skipped']}"
    )
    return 1 if counts["failed"] else 0


async def init_db(args: argparse.Namespace) -> int:
    try:
        await create_all()
    finally:
        await engine.dispose()
    print("Tables created")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "buildhost.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="buildhost-admin", description="Buildhost administration")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="Run the HTTP server")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8080)
    p.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    p.set_defaults(func=serve)

    for name, role in (("create-user", "user"), ("create-admin", "admin")):
        p = sub.add_parser(name, help=f"Create a {role} and print its API key")
        p.add_argument("username")
        p.set_defaults(func=_create(role))

    p = sub.add_parser("list-users", help="List users")
    p.set_defaults(func=list_users)

    p = sub.add_parser("activate-user", help="Re-enable a user")
    p.add_argument("username")
    p.set_defaults(func=_set_active(True))

    p = sub.add_parser("deactivate-user", help="Disable a user; their key stops working")
    p.add_argument("username")
    p.set_defaults(func=_set_active(False))

    p = sub.add_parser("rotate-key", help="Replace a user's API key")
    p.add_argument("username")
    p.set_defaults(func=rotate_key)

    p = sub.add_parser("retry-archives", help="Re-run failed archive assembly jobs")
    p.add_argument("--limit", type=int, default=100)
    p.add_argument(
        "--stale-minutes",
        type=int,
        default=30,
        help="Treat running jobs and processing builds older than this as abandoned",
    )
    p.set_defaults(func=retry_archives)

    p = sub.add_parser("init-db", help="Create tables directly (development; production uses alembic)")
    p.set_defaults(func=init_db)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        result = args.func(args)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
    except BuildhostError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1
    return result


if __name__ == "__main__":
    raise SystemExit(main())
