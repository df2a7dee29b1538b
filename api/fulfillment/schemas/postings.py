from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PostingStatus = Literal["open", "filled", "closed", "expired"]
PostingMode = Literal["open", "friend_ask"]


class PostingCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    team_size_min: int = Field(default=1, ge=1)
    team_size_max: int = Field(ge=1)
    mode: PostingMode = "open"
    auto_accept: bool = False
    expires_at: datetime | None = None


class PostingReactivateRequest(BaseModel):
    days: int | None = Field(default=None, ge=1, le=365)


class PostingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    creator_id: str
    title: str
    team_size_min: int
    team_size_max: int
    status: PostingStatus
    mode: PostingMode
    auto_accept: bool = False
    expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PostingDetailOut(PostingOut):
    accepted_count: int = 0
    waitlist_count: int = 0
    spots_left: int = 0
