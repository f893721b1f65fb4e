import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from buildhost.lib.config import settings
from buildhost.lib.errors import MalformedInputError, NotFoundError
from buildhost.lib.security import generate_api_key, hash_token
from buildhost.models.user import User

logger = logging.getLogger(__name__)

ROLES = ("user", "admin")


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def authenticate(self, api_key: str) -> Optional[User]:
        """Look up an active user by API key."""
        result = await self.db.execute(
            select(User).where(User.api_key_hash == hash_token(api_key), User.is_active == True)
        )
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.username == username)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_users(self) -> List[User]:
        result = await self.db.execute(select(User).order_by(User.id))
        return list(result.scalars().all())

    async def create_user(self, username: str, role: str = "user") -> Tuple[User, str]:
        """
        Create a user with a fresh API key.

        Returns the user and the plain API key. The key is not stored and
        cannot be recovered later.
        """
        if role not in ROLES:
            raise MalformedInputError(f"unknown role '{role}'")
        if not username or "/" in username:
            raise MalformedInputError("username must be non-empty and contain no '/'")

        if await self.get_by_username(username):
            raise MalformedInputError(f"user '{username}' already exists")

        api_key = generate_api_key()
        user = User(
            username=username,
            display_name=username,
            role=role,
            is_active=True,
            api_key_hash=hash_token(api_key),
            api_key_prefix=api_key[:settings.api_key_prefix_length],
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)

        logger.info("Created %s user %s", role, username)
        return user, api_key

    async def set_active(self, username: str, active: bool) -> bool:
        """
        Activate or deactivate a user.

        Returns False when the user was already in the requested state.
        """
        user = await self.get_by_username(username)
        if not user:
            raise NotFoundError(f"user '{username}' not found")

        if user.is_active == active:
            return False

        user.is_active = active
        await self.db.commit()
        logger.info("User %s is_active=%s", username, active)
        return True

    async def rotate_key(self, username: str) -> str:
        """Replace the user's only credential. The old key stops working at once."""
        user = await self.get_by_username(username)
        if not user:
            raise NotFoundError(f"user '{username}' not found")

        api_key = generate_api_key()
        user.api_key_hash = hash_token(api_key)
        user.api_key_prefix = api_key[:settings.api_key_prefix_length]
        await self.db.commit()

        logger.info("Rotated API key for %s", username)
        return api_key
