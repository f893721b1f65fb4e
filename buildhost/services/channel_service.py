"""
Channel Service

Channels are named pointers to the build currently distributed on an upload.
Pointer writes are guarded by a row lock plus a compare-and-swap on
``Channel.version``.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from buildhost.lib.errors import NotFoundError
from buildhost.models.build import Build
from buildhost.models.channel import Channel
from buildhost.models.game import Game
from buildhost.models.upload import Upload
from buildhost.models.user import User
from buildhost.services.ownership import parse_target, require_access

logger = logging.getLogger(__name__)

# (channel, head build or None)
ChannelHead = Tuple[Channel, Optional[Build]]


class ChannelService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Lookups ---

    async def resolve_game(self, user: User, target: str) -> Game:
        """
        Resolve ``namespace/game`` for reading.

        Access is checked before anything is looked up, so a denied caller
        learns nothing about what exists in the namespace.
        """
        namespace, title = parse_target(target)
        require_access(user, namespace)

        result = await self.db.execute(select(User).where(User.username == namespace))
        owner = result.scalar_one_or_none()
        if not owner:
            raise NotFoundError("target user not found")

        result = await self.db.execute(
            select(Game).where(Game.user_id == owner.id, Game.title == title)
        )
        game = result.scalar_one_or_none()
        if not game:
            raise NotFoundError("game not found")

        return game

    async def find_upload_for_channel(self, game_id: int, name: str) -> Optional[Upload]:
        """First upload of the game (by id) that carries a channel called ``name``."""
        result = await self.db.execute(
            select(Upload)
            .join(Channel, Channel.upload_id == Upload.id)
            .where(Upload.game_id == game_id, Channel.name == name)
            .order_by(Upload.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _channels_with_heads(self, game_id: int, name: Optional[str] = None) -> List[ChannelHead]:
        query = (
            select(Channel, Build)
            .join(Upload, Channel.upload_id == Upload.id)
            .outerjoin(Build, Channel.current_build_id == Build.id)
            .where(Upload.game_id == game_id)
            .order_by(Upload.id, Channel.id)
            .execution_options(populate_existing=True)
        )
        if name is not None:
            query = query.where(Channel.name == name)

        result = await self.db.execute(query)
        return [(channel, head) for channel, head in result.all()]

    async def list_channels(self, user: User, target: str) -> List[ChannelHead]:
        """
        Every channel of every upload of the game, with its head build.

        When two uploads carry the same channel name the first upload wins,
        matching the upload chosen when pushing to that channel.
        """
        game = await self.resolve_game(user, target)

        seen = set()
        channels = []
        for channel, head in await self._channels_with_heads(game.id):
            if channel.name in seen:
                continue
            seen.add(channel.name)
            channels.append((channel, head))
        return channels

    async def get_channel(self, user: User, target: str, name: str) -> ChannelHead:
        game = await self.resolve_game(user, target)

        found = await self._channels_with_heads(game.id, name)
        if not found:
            raise NotFoundError("channel not found")
        return found[0]

    # --- Pointer protocol ---

    async def ensure_upload_channel(self, game_id: int, title: str, name: str) -> Upload:
        """
        Find the upload serving channel ``name``, creating upload and channel
        when none exists yet.

        The new channel always sits on a new upload, so the (name, upload)
        unique key cannot catch two first pushes racing. Only the game row
        lock held while scanning serializes them. SQLite ignores that lock;
        there a race can leave two uploads carrying the channel, and the
        lowest upload id keeps serving it. Commits.
        """
        await self.db.execute(
            select(Game.id).where(Game.id == game_id).with_for_update()
        )
        upload = await self.find_upload_for_channel(game_id, name)
        if upload:
            await self.db.commit()
            return upload

        upload = Upload(
            game_id=game_id,
            filename=f"{title}.zip",
            display_name=title,
            storage="hosted",
            type="default",
        )
        self.db.add(upload)
        await self.db.flush()
        self.db.add(Channel(name=name, upload_id=upload.id))
        await self.db.commit()

        logger.info("Created upload %s with channel %s for game %s", upload.id, name, game_id)
        return upload

    async def lock_channel(self, name: str, upload_id: int) -> Channel:
        """Read the channel row with ``FOR UPDATE`` inside the caller's transaction."""
        result = await self.db.execute(
            select(Channel)
            .where(Channel.name == name, Channel.upload_id == upload_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        channel = result.scalar_one_or_none()
        if not channel:
            raise NotFoundError("channel not found")
        return channel

    async def move_pointer(self, channel_id: int, build_id: int, expected_version: int) -> bool:
        """
        Point the channel at ``build_id`` if nobody moved it since
        ``expected_version`` was read. Does not commit.
        """
        result = await self.db.execute(
            update(Channel)
            .where(Channel.id == channel_id, Channel.version == expected_version)
            .values(current_build_id=build_id, version=Channel.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
