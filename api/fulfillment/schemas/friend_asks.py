from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

InviteMode = Literal["sequential", "parallel"]
FriendAskStatus = Literal["pending", "accepted", "exhausted"]
InviteAction = Literal["accept", "decline"]


class FriendAskCreateRequest(BaseModel):
    posting_id: str = Field(min_length=1)
    ordered_friend_list: list[str]
    invite_mode: InviteMode = "sequential"


class FriendAskRespondRequest(BaseModel):
    action: InviteAction


class SequentialInviteRespondRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    posting_id: str = Field(alias="postingId", min_length=1)
    action: InviteAction


class FriendAskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    posting_id: str
    creator_id: str
    ordered_friend_list: list[str]
    current_request_index: int
    invite_mode: InviteMode
    status: FriendAskStatus
    declined_list: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class InviteResponseOut(BaseModel):
    friend_ask: FriendAskOut
    participant_application_id: str | None = None
