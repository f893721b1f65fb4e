from buildhost.schemas.core import (
    ProfileResponse,
    GameResponse,
    GameListResponse,
    UploadResponse,
    UploadListResponse,
    BuildResponse,
    BuildListResponse,
)
from buildhost.schemas.wharf import (
    CreateBuildRequest,
    CreateBuildResponse,
    RegisterBuildFileRequest,
    RegisterBuildFileResponse,
    FinalizeBuildFileRequest,
    FinalizeBuildFileResponse,
    BuildFileListResponse,
    ChannelListResponse,
    ChannelResponse,
)

__all__ = [
    # Core
    "ProfileResponse",
    "GameResponse",
    "GameListResponse",
    "UploadResponse",
    "UploadListResponse",
    "BuildResponse",
    "BuildListResponse",
    # Wharf
    "CreateBuildRequest",
    "CreateBuildResponse",
    "RegisterBuildFileRequest",
    "RegisterBuildFileResponse",
    "FinalizeBuildFileRequest",
    "FinalizeBuildFileResponse",
    "BuildFileListResponse",
    "ChannelListResponse",
    "ChannelResponse",
]
