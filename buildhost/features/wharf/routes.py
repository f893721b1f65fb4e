"""
Wharf API endpoints.

The build upload protocol spoken by butler: channels, builds, build files
and their downloads.
"""
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from buildhost.lib.database import get_db
from buildhost.lib.deps import body_of, get_current_user
from buildhost.models.build import Build
from buildhost.models.channel import Channel
from buildhost.models.user import User
from buildhost.schemas.wharf import (
    BuildFileListResponse,
    BuildFileSummary,
    BuildInfo,
    BuildRef,
    ChannelHead,
    ChannelInfo,
    ChannelListResponse,
    ChannelResponse,
    ChannelUpload,
    CreateBuildRequest,
    CreateBuildResponse,
    FinalizeBuildFileRequest,
    FinalizeBuildFileResponse,
    FinalizedBuildFile,
    RegisterBuildFileRequest,
    RegisterBuildFileResponse,
    RegisteredBuildFile,
    WharfStatusResponse,
)
from buildhost.services.build_service import BuildService
from buildhost.services.channel_service import ChannelService
from buildhost.services.storage_service import StorageService, get_storage

router = APIRouter(prefix="/wharf", tags=["Wharf"])


def _channel_info(channel: Channel, head: Optional[Build]) -> ChannelInfo:
    info = ChannelInfo(name=channel.name, upload=ChannelUpload(id=channel.upload_id))
    if head is not None:
        info.head = ChannelHead(
            id=head.id,
            state=head.state,
            user_version=head.user_version or None,
            parent_build_id=head.parent_build_id,
        )
    return info


@router.get("/status", response_model=WharfStatusResponse)
async def wharf_status(current_user: User = Depends(get_current_user)):
    return WharfStatusResponse()


@router.get("/channels", response_model=ChannelListResponse, response_model_exclude_none=True)
async def list_channels(
    target: str = Query(""),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    List every channel of a game with its current build.

    ``target`` is ``namespace/game``.
    """
    channels: List[Tuple[Channel, Optional[Build]]] = await ChannelService(db).list_channels(
        current_user, target
    )
    return ChannelListResponse(
        channels={channel.name: _channel_info(channel, head) for channel, head in channels}
    )


@router.get("/channels/{channel}", response_model=ChannelResponse, response_model_exclude_none=True)
async def get_channel(
    channel: str,
    target: str = Query(""),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    found, head = await ChannelService(db).get_channel(current_user, target, channel)
    return ChannelResponse(channel=_channel_info(found, head))


@router.post("/builds", response_model=CreateBuildResponse, response_model_exclude_none=True)
async def create_build(
    current_user: User = Depends(get_current_user),
    data: CreateBuildRequest = Depends(body_of(CreateBuildRequest)),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
):
    """
    Start a new build on a channel.

    Creates the game, upload and channel on first push. The response only
    carries ``parentBuild`` when the channel already had a build.
    """
    service = BuildService(db, storage)
    build = await service.create_build(current_user, data.target, data.channel, data.user_version)

    return CreateBuildResponse(
        build=BuildInfo(
            id=build.id,
            upload_id=build.upload_id,
            user_version=build.user_version or "",
            state=build.state,
            parent_build=BuildRef(id=build.parent_build_id) if build.parent_build_id else None,
        )
    )


@router.get("/builds/{build_id}/files", response_model=BuildFileListResponse)
async def list_build_files(
    build_id: int,
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    files = await BuildService(db, storage).list_build_files(build_id)
    return BuildFileListResponse(files=[BuildFileSummary.model_validate(f) for f in files])


@router.post("/builds/{build_id}/files", response_model=RegisterBuildFileResponse)
async def register_build_file(
    build_id: int,
    current_user: User = Depends(get_current_user),
    data: RegisterBuildFileRequest = Depends(body_of(RegisterBuildFileRequest)),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
):
    """
    Register a file on a build and hand out a presigned upload URL.

    The client PUTs the bytes straight to storage with ``upload_headers``.
    """
    build_file, upload_headers = await BuildService(db, storage).register_build_file(
        build_id, data.type, data.sub_type
    )

    return RegisterBuildFileResponse(
        file=RegisteredBuildFile(
            id=build_file.id,
            type=build_file.type,
            sub_type=build_file.sub_type,
            state=build_file.state,
            upload_url=build_file.upload_url,
            upload_headers=upload_headers,
        )
    )


@router.post("/builds/{build_id}/files/{file_id}", response_model=FinalizeBuildFileResponse)
async def finalize_build_file(
    build_id: int,
    file_id: int,
    current_user: User = Depends(get_current_user),
    data: FinalizeBuildFileRequest = Depends(body_of(FinalizeBuildFileRequest)),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
):
    """
    Finalize an uploaded file.

    Fails with 400 when nothing landed in storage. The last file to be
    finalized completes the build.
    """
    build_file = await BuildService(db, storage).finalize_build_file(build_id, file_id, data.size)
    return FinalizeBuildFileResponse(file=FinalizedBuildFile.model_validate(build_file))


@router.api_route("/builds/{build_id}/files/{file_id}/download", methods=["GET", "HEAD"])
async def download_build_file(
    build_id: int,
    file_id: int,
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    """Redirect to a presigned download URL."""
    url = await BuildService(db, storage).get_download_url(build_id, file_id)
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
