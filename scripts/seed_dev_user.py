#!/usr/bin/env python3
"""Seed script to create development users and print their API keys."""
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from buildhost.lib.database import AsyncSessionLocal, create_all
from buildhost.services.user_service import UserService

DEV_USERS = [
    ("admin", "admin"),
    ("alice", "user"),
]


async def seed():
    """Create the development users that do not exist yet."""
    await create_all()

    async with AsyncSessionLocal() as session:
        users = UserService(session)
        for username, role in DEV_USERS:
            existing = await users.get_by_username(username)
            if existing:
                print(f"User already exists: {existing.username} (key prefix {existing.api_key_prefix})")
                continue

            user, api_key = await users.create_user(username, role=role)
            print(f"Created {role}: {user.username} (api key: {api_key})")


if __name__ == "__main__":
    asyncio.run(seed())
