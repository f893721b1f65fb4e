"""
Game Service

Read-only lookups behind the profile/game/upload/build endpoints. Every
lookup checks that the acting user may access the owning namespace.
"""
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from buildhost.lib.errors import NotFoundError
from buildhost.models.build import BUILD_COMPLETED, Build
from buildhost.models.game import Game
from buildhost.models.upload import Upload
from buildhost.models.user import User
from buildhost.services.ownership import require_access


class GameService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_games(self, owner: User) -> List[Game]:
        result = await self.db.execute(
            select(Game).where(Game.user_id == owner.id).order_by(Game.id)
        )
        return list(result.scalars().all())

    async def get_game(self, user: User, game_id: int) -> Game:
        result = await self.db.execute(
            select(Game)
            .where(Game.id == game_id)
            .options(selectinload(Game.owner))
        )
        game = result.scalar_one_or_none()
        if not game:
            raise NotFoundError("game not found")

        require_access(user, game.owner.username)
        return game

    async def list_uploads(self, user: User, game_id: int) -> List[Upload]:
        game = await self.get_game(user, game_id)

        result = await self.db.execute(
            select(Upload).where(Upload.game_id == game.id).order_by(Upload.id)
        )
        return list(result.scalars().all())

    async def get_upload(self, user: User, upload_id: int) -> Upload:
        result = await self.db.execute(
            select(Upload, User.username)
            .join(Game, Upload.game_id == Game.id)
            .join(User, Game.user_id == User.id)
            .where(Upload.id == upload_id)
        )
        row = result.first()
        if not row:
            raise NotFoundError("upload not found")

        upload, namespace = row
        require_access(user, namespace)
        return upload

    async def list_builds(self, user: User, upload_id: int) -> List[Build]:
        upload = await self.get_upload(user, upload_id)

        result = await self.db.execute(
            select(Build)
            .where(Build.upload_id == upload.id)
            .order_by(Build.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_build(self, user: User, build_id: int) -> Build:
        result = await self.db.execute(
            select(Build, User.username)
            .join(Upload, Build.upload_id == Upload.id)
            .join(Game, Upload.game_id == Game.id)
            .join(User, Game.user_id == User.id)
            .where(Build.id == build_id)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if not row:
            raise NotFoundError("build not found")

        build, namespace = row
        require_access(user, namespace)
        return build

    async def get_latest_completed_build(self, user: User, upload_id: int) -> Build:
        """Newest completed build of an upload, the one its download serves."""
        upload = await self.get_upload(user, upload_id)

        result = await self.db.execute(
            select(Build)
            .where(Build.upload_id == upload.id, Build.state == BUILD_COMPLETED)
            .order_by(Build.id.desc())
            .limit(1)
        )
        build = result.scalar_one_or_none()
        if not build:
            raise NotFoundError("upload has no completed build")
        return build
