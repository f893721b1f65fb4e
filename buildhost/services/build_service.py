"""
Build Service

Build lifecycle: create a build on a channel, register its files, finalize
them once the client has uploaded, and complete the build when every file
has landed.
"""
import logging
import re
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from buildhost.jobs.archive_job import run_archive_job
from buildhost.lib.errors import (
    InternalError,
    MalformedInputError,
    NotFoundError,
    UploadVerificationError,
)
from buildhost.lib.locks import build_locks
from buildhost.models.build import (
    BUILD_COMPLETED,
    BUILD_PROCESSING,
    BUILD_STARTED,
    FILE_UPLOADED,
    FILE_UPLOADING,
    Build,
    BuildFile,
)
from buildhost.models.game import Game
from buildhost.models.user import User
from buildhost.services.channel_service import ChannelService
from buildhost.services.ownership import parse_target, require_access
from buildhost.services.storage_service import StorageService

logger = logging.getLogger(__name__)

# Attempts at moving a channel pointer before giving up
POINTER_RETRIES = 5

# File types become part of the object key
FILE_TYPE_RE = re.compile(r"[A-Za-z0-9_-]+")


class BuildService:
    """Service for the build/file lifecycle."""

    def __init__(self, db: AsyncSession, storage: StorageService):
        self.db = db
        self.storage = storage
        self.channels = ChannelService(db)

    # --- Lookups ---

    async def get_build(self, build_id: int) -> Build:
        result = await self.db.execute(
            select(Build)
            .where(Build.id == build_id)
            .execution_options(populate_existing=True)
        )
        build = result.scalar_one_or_none()
        if not build:
            raise NotFoundError("build not found")
        return build

    async def get_build_file(self, build_id: int, file_id: int) -> BuildFile:
        result = await self.db.execute(
            select(BuildFile)
            .where(BuildFile.id == file_id)
            .execution_options(populate_existing=True)
        )
        build_file = result.scalar_one_or_none()
        if not build_file:
            raise NotFoundError("build file not found")
        if build_file.build_id != build_id:
            raise MalformedInputError("build file does not belong to build")
        return build_file

    async def list_build_files(self, build_id: int) -> List[BuildFile]:
        await self.get_build(build_id)

        result = await self.db.execute(
            select(BuildFile)
            .where(BuildFile.build_id == build_id)
            .order_by(BuildFile.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # --- Create ---

    async def _get_or_create_game(self, owner_id: int, namespace: str, title: str) -> Game:
        """Games always belong to the namespace owner. Commits."""
        query = select(Game).where(Game.user_id == owner_id, Game.title == title)

        result = await self.db.execute(query)
        game = result.scalar_one_or_none()
        if game:
            return game

        game = Game(user_id=owner_id, title=title, type="default", classification="game")
        self.db.add(game)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            result = await self.db.execute(query.execution_options(populate_existing=True))
            return result.scalar_one()

        await self.db.refresh(game)
        logger.info("Created game %s '%s' in namespace %s", game.id, title, namespace)
        return game

    async def create_build(
        self,
        user: User,
        target: str,
        channel: str,
        user_version: Optional[str] = None,
    ) -> Build:
        """
        Start a new build on ``channel`` of ``namespace/game``.

        The game and the upload behind the channel are created on first
        push. The new build's parent is the channel head read under the
        channel row lock, and the channel is moved to the new build with a
        compare-and-swap on its version; a lost race retries with the new
        head.
        """
        namespace, title = parse_target(target)
        if not channel:
            raise MalformedInputError("missing channel")

        require_access(user, namespace)
        # Rollbacks below expire loaded instances; keep plain values
        acting = user.username

        result = await self.db.execute(select(User).where(User.username == namespace))
        owner = result.scalar_one_or_none()
        if not owner:
            raise NotFoundError(f"namespace owner not found: {namespace}")

        game = await self._get_or_create_game(owner.id, namespace, title)
        game_id = game.id
        upload = await self.channels.ensure_upload_channel(game_id, title, channel)
        upload_id = upload.id

        for attempt in range(POINTER_RETRIES):
            locked = await self.channels.lock_channel(channel, upload_id)
            build = Build(
                upload_id=upload_id,
                user_version=user_version,
                parent_build_id=locked.current_build_id,
                state=BUILD_STARTED,
            )
            self.db.add(build)
            await self.db.flush()

            if await self.channels.move_pointer(locked.id, build.id, locked.version):
                await self.db.commit()
                await self.db.refresh(build)
                logger.info(
                    "Created build %s on %s/%s channel %s (parent=%s, by %s)",
                    build.id, namespace, title, channel, build.parent_build_id, acting,
                )
                return build

            await self.db.rollback()
            logger.info("Channel %s moved during build creation, retrying (%d)", channel, attempt + 1)

        raise InternalError(f"could not update channel {channel}, too much contention")

    # --- Files ---

    async def register_build_file(
        self,
        build_id: int,
        file_type: str,
        sub_type: Optional[str] = None,
    ) -> Tuple[BuildFile, Dict[str, str]]:
        """
        Create a build file and a presigned URL the client uploads to.

        Returns the file and the headers the client must send with its PUT.
        """
        await self.get_build(build_id)

        if not file_type:
            raise MalformedInputError("missing type")
        if not FILE_TYPE_RE.fullmatch(file_type):
            raise MalformedInputError(f"invalid type: {file_type}")
        sub_type = sub_type or "default"
        if not FILE_TYPE_RE.fullmatch(sub_type):
            raise MalformedInputError(f"invalid sub_type: {sub_type}")

        upload_info = await self.storage.create_upload_url(build_id, file_type, sub_type)

        build_file = BuildFile(
            build_id=build_id,
            type=file_type,
            sub_type=sub_type,
            state=FILE_UPLOADING,
            size=0,
            storage_path=upload_info['storage_path'],
            upload_url=upload_info['upload_url'],
        )
        self.db.add(build_file)
        await self.db.commit()
        await self.db.refresh(build_file)

        logger.info(
            "Registered build file %s (%s/%s) on build %s",
            build_file.id, file_type, sub_type, build_id,
        )
        return build_file, upload_info['upload_headers']

    async def finalize_build_file(
        self,
        build_id: int,
        file_id: int,
        declared_size: Optional[int] = None,
    ) -> BuildFile:
        """
        Mark a file uploaded after checking the object really is in storage.

        The size reported by storage wins over the client's. The per-build
        lock is held across the file update and the completion check.
        """
        async with build_locks.hold(build_id):
            build_file = await self.get_build_file(build_id, file_id)

            stat = await self.storage.stat(build_file.storage_path)
            if stat is None:
                logger.warning(
                    "Finalize of build file %s rejected, nothing at %s",
                    file_id, build_file.storage_path,
                )
                raise UploadVerificationError("file not found in storage - upload may have failed")

            size = stat.get('size')
            if size is None:
                size = declared_size or 0
            elif declared_size is not None and declared_size != size:
                logger.warning(
                    "Build file %s declared %d bytes, storage has %d",
                    file_id, declared_size, size,
                )

            await self.db.execute(
                update(BuildFile)
                .where(BuildFile.id == file_id)
                .values(size=size, state=FILE_UPLOADED)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            logger.info("Build file %s of build %s uploaded (%d bytes)", file_id, build_id, size)

            await self.evaluate_completion(build_id)

            return await self.get_build_file(build_id, file_id)

    async def evaluate_completion(self, build_id: int) -> bool:
        """
        Complete the build if every registered file is uploaded.

        Only the caller whose compare-and-swap moves the build from started
        to processing goes on to assemble the archive, so a build is
        archived at most once.

        Returns True when this call completed the build.
        """
        result = await self.db.execute(select(Build.state).where(Build.id == build_id))
        state = result.scalar_one_or_none()
        if state != BUILD_STARTED:
            return False

        result = await self.db.execute(
            select(BuildFile.state).where(BuildFile.build_id == build_id)
        )
        file_states = list(result.scalars().all())
        if not file_states or any(s != FILE_UPLOADED for s in file_states):
            return False

        result = await self.db.execute(
            update(Build)
            .where(Build.id == build_id, Build.state == BUILD_STARTED)
            .values(state=BUILD_PROCESSING)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            return False

        logger.info("All files uploaded for build %s, processing", build_id)

        # Once processing, the build must reach completed even when the
        # archive step raises or the request is cancelled
        try:
            await run_archive_job(self.db, self.storage, build_id)
        except BaseException:
            await self.db.rollback()
            raise
        finally:
            await self.db.execute(
                update(Build)
                .where(Build.id == build_id, Build.state == BUILD_PROCESSING)
                .values(state=BUILD_COMPLETED)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            logger.info("Build %s completed", build_id)

        return True

    # --- Download ---

    async def get_download_url(self, build_id: int, file_id: int) -> str:
        build_file = await self.get_build_file(build_id, file_id)

        if not build_file.storage_path or await self.storage.stat(build_file.storage_path) is None:
            raise NotFoundError("file not found in storage")

        return await self.storage.get_download_url(build_file.storage_path)
