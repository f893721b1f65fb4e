"""Wharf (build upload protocol) request and response schemas."""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Requests ---

class CreateBuildRequest(BaseModel):
    target: str = ""
    channel: str = ""
    user_version: str = ""


class RegisterBuildFileRequest(BaseModel):
    type: str = ""
    sub_type: str = ""
    upload_type: Optional[str] = None


class FinalizeBuildFileRequest(BaseModel):
    size: Optional[int] = Field(None, ge=0)

    @field_validator('size', mode='before')
    @classmethod
    def blank_size(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


# --- Builds ---

class BuildRef(BaseModel):
    id: int


class BuildInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    upload_id: int = Field(..., alias="uploadId")
    user_version: str = Field("", alias="userVersion")
    state: str
    # Absent, not null, on the first build of a channel
    parent_build: Optional[BuildRef] = Field(None, alias="parentBuild")


class CreateBuildResponse(BaseModel):
    build: BuildInfo


# --- Build files ---

class BuildFileSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: int
    type: str
    sub_type: str = Field(..., alias="subType")
    size: int
    state: str


class BuildFileListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    files: List[BuildFileSummary] = Field(default_factory=list, alias="Files")


class RegisteredBuildFile(BaseModel):
    id: int
    type: str
    sub_type: str
    state: str
    upload_url: str
    upload_headers: Dict[str, str]


class RegisterBuildFileResponse(BaseModel):
    file: RegisteredBuildFile


class FinalizedBuildFile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    size: int
    state: str


class FinalizeBuildFileResponse(BaseModel):
    file: FinalizedBuildFile


# --- Channels ---

class ChannelUpload(BaseModel):
    id: int


class ChannelHead(BaseModel):
    id: int
    state: str
    user_version: Optional[str] = None
    parent_build_id: Optional[int] = None


class ChannelInfo(BaseModel):
    name: str
    upload: ChannelUpload
    head: Optional[ChannelHead] = None


class ChannelListResponse(BaseModel):
    channels: Dict[str, ChannelInfo]


class ChannelResponse(BaseModel):
    channel: ChannelInfo


class WharfStatusResponse(BaseModel):
    ok: bool = True
