"""
Core API endpoints.

Read-only views of the acting user's profile, games, uploads and builds,
plus the download of an upload's latest build.
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from buildhost.lib.database import get_db
from buildhost.lib.deps import get_current_user
from buildhost.lib.errors import NotFoundError
from buildhost.models.user import User
from buildhost.schemas.core import (
    BuildListResponse,
    BuildResponse,
    BuildSummary,
    GameDetail,
    GameInfo,
    GameListResponse,
    GameResponse,
    ProfileResponse,
    UploadInfo,
    UploadListResponse,
    UploadResponse,
    UserInfo,
)
from buildhost.services.archive_service import ArchiveService
from buildhost.services.game_service import GameService
from buildhost.services.storage_service import StorageService, get_storage

router = APIRouter(tags=["Core"])


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    return ProfileResponse(user=UserInfo.model_validate(current_user))


@router.get("/profile/games", response_model=GameListResponse)
async def list_profile_games(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Games in the acting user's own namespace."""
    games = await GameService(db).list_games(current_user)
    return GameListResponse(games=[GameInfo.model_validate(g) for g in games])


@router.get("/games/{game_id}", response_model=GameResponse)
async def get_game(
    game_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    game = await GameService(db).get_game(current_user, game_id)
    return GameResponse(
        game=GameDetail(
            **GameInfo.model_validate(game).model_dump(),
            user=UserInfo.model_validate(game.owner),
        )
    )


@router.get("/games/{game_id}/uploads", response_model=UploadListResponse)
async def list_game_uploads(
    game_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    uploads = await GameService(db).list_uploads(current_user, game_id)
    return UploadListResponse(uploads=[UploadInfo.model_validate(u) for u in uploads])


@router.get("/uploads/{upload_id}", response_model=UploadResponse)
async def get_upload(
    upload_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    upload = await GameService(db).get_upload(current_user, upload_id)
    return UploadResponse(upload=UploadInfo.model_validate(upload))


@router.get("/uploads/{upload_id}/builds", response_model=BuildListResponse)
async def list_upload_builds(
    upload_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Builds of an upload, newest first."""
    builds = await GameService(db).list_builds(current_user, upload_id)
    return BuildListResponse(builds=[BuildSummary.model_validate(b) for b in builds])


@router.get("/uploads/{upload_id}/download")
async def download_upload(
    upload_id: int,
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    """Redirect to the archive of the upload's newest completed build."""
    build = await GameService(db).get_latest_completed_build(current_user, upload_id)

    archive_file = await ArchiveService(db, storage).get_archive_file(build.id)
    if not archive_file:
        raise NotFoundError("no archive for the latest build")

    url = await storage.get_download_url(archive_file.storage_path)
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.get("/builds/{build_id}", response_model=BuildResponse)
async def get_build(
    build_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    build = await GameService(db).get_build(current_user, build_id)
    return BuildResponse(build=BuildSummary.model_validate(build))
