import asyncio

import pytest
from sqlalchemy import select

from buildhost.lib.errors import AccessDeniedError, MalformedInputError, NotFoundError
from buildhost.models.channel import Channel
from buildhost.models.game import Game
from buildhost.models.upload import Upload
from buildhost.services.build_service import BuildService
from buildhost.services.channel_service import ChannelService


@pytest.fixture
def channels(db):
    return ChannelService(db)


async def test_list_channels_with_heads(db, storage, channels, users):
    alice, _ = users["alice"]
    builds = BuildService(db, storage)
    await builds.create_build(alice, "alice/demo", "main")
    head = await builds.create_build(alice, "alice/demo", "main")
    beta = await builds.create_build(alice, "alice/demo", "beta")

    listed = await channels.list_channels(alice, "alice/demo")

    by_name = {channel.name: build for channel, build in listed}
    assert set(by_name) == {"main", "beta"}
    assert by_name["main"].id == head.id
    assert by_name["main"].parent_build_id == head.parent_build_id
    assert by_name["beta"].id == beta.id


async def test_channel_without_head(db, channels, users):
    alice, _ = users["alice"]
    game = Game(user_id=alice.id, title="empty", type="default", classification="game")
    db.add(game)
    await db.flush()
    upload = Upload(game_id=game.id, filename="empty.zip", display_name="empty", storage="hosted", type="default")
    db.add(upload)
    await db.flush()
    db.add(Channel(name="main", upload_id=upload.id))
    await db.commit()

    channel, head = await channels.get_channel(alice, "alice/empty", "main")

    assert channel.upload_id == upload.id
    assert head is None


async def test_first_upload_wins_on_duplicate_names(db, storage, channels, users):
    alice, _ = users["alice"]
    first = await BuildService(db, storage).create_build(alice, "alice/demo", "main")

    game = (await db.execute(select(Game).where(Game.title == "demo"))).scalar_one()
    other = Upload(game_id=game.id, filename="other.zip", display_name="other", storage="hosted", type="default")
    db.add(other)
    await db.flush()
    db.add(Channel(name="main", upload_id=other.id))
    await db.commit()

    listed = await channels.list_channels(alice, "alice/demo")
    assert [(c.name, c.upload_id) for c, _ in listed] == [("main", first.upload_id)]

    channel, head = await channels.get_channel(alice, "alice/demo", "main")
    assert channel.upload_id == first.upload_id
    assert head.id == first.id


async def test_access_checked_before_lookup(channels, users):
    alice, _ = users["alice"]

    with pytest.raises(AccessDeniedError):
        await channels.list_channels(alice, "bob/demo")
    with pytest.raises(AccessDeniedError):
        await channels.get_channel(alice, "ghost/demo", "main")


async def test_lookup_errors(db, storage, channels, users):
    alice, _ = users["alice"]
    root, _ = users["root"]
    await BuildService(db, storage).create_build(alice, "alice/demo", "main")

    with pytest.raises(NotFoundError) as exc:
        await channels.list_channels(root, "ghost/demo")
    assert exc.value.message == "target user not found"

    with pytest.raises(NotFoundError) as exc:
        await channels.list_channels(alice, "alice/nope")
    assert exc.value.message == "game not found"

    with pytest.raises(NotFoundError) as exc:
        await channels.get_channel(alice, "alice/demo", "nightly")
    assert exc.value.message == "channel not found"

    with pytest.raises(MalformedInputError):
        await channels.list_channels(alice, "alice")


async def test_admin_reads_any_namespace(db, storage, channels, users):
    bob, _ = users["bob"]
    root, _ = users["root"]
    build = await BuildService(db, storage).create_build(bob, "bob/tool", "main")

    channel, head = await channels.get_channel(root, "bob/tool", "main")
    assert head.id == build.id


async def test_move_pointer_bumps_version(db, storage, channels, users):
    alice, _ = users["alice"]
    build = await BuildService(db, storage).create_build(alice, "alice/demo", "main")
    build_id, upload_id = build.id, build.upload_id

    channel = await channels.lock_channel("main", upload_id)
    channel_id, version = channel.id, channel.version

    assert await channels.move_pointer(channel_id, build_id, version) is True
    assert await channels.move_pointer(channel_id, build_id, version) is False
    await db.commit()

    channel = await channels.lock_channel("main", upload_id)
    assert channel.version == version + 1
    await db.commit()


async def test_racing_first_pushes_leave_one_serving_upload(session_factory, storage, users):
    alice, _ = users["alice"]

    async def push():
        async with session_factory() as s:
            build = await BuildService(s, storage).create_build(alice, "alice/demo", "main")
            return build.upload_id

    upload_ids = await asyncio.gather(push(), push())

    async with session_factory() as s:
        listed = await ChannelService(s).list_channels(alice, "alice/demo")
        assert [(c.name, c.upload_id) for c, _ in listed] == [("main", min(upload_ids))]

        follow_up = await BuildService(s, storage).create_build(alice, "alice/demo", "main")
        assert follow_up.upload_id == min(upload_ids)
