"""Read-only profile/game/upload/build schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class UserInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    display_name: str


class ProfileResponse(BaseModel):
    user: UserInfo


class GameInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    short_text: Optional[str] = None
    type: str
    classification: str
    url: Optional[str] = None
    created_at: Optional[datetime] = None


class GameDetail(GameInfo):
    user: UserInfo


class GameListResponse(BaseModel):
    games: List[GameInfo]


class GameResponse(BaseModel):
    game: GameDetail


class UploadInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    display_name: Optional[str] = None
    size: int
    storage: str
    type: str
    platforms: List[str] = []


class UploadListResponse(BaseModel):
    uploads: List[UploadInfo]


class UploadResponse(BaseModel):
    upload: UploadInfo


class BuildSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    upload_id: int
    user_version: Optional[str] = None
    parent_build_id: Optional[int] = None
    state: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BuildListResponse(BaseModel):
    builds: List[BuildSummary]


class BuildResponse(BaseModel):
    build: BuildSummary
