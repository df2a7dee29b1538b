from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ApplicationStatus = Literal["pending", "accepted", "rejected", "waitlisted", "withdrawn"]
ApplicationSource = Literal["application", "friend_ask"]


class ApplicationCreateRequest(BaseModel):
    posting_id: str = Field(min_length=1)
    cover_message: str | None = Field(default=None, max_length=2000)


class ApplicationPatchRequest(BaseModel):
    status: Literal["accepted", "rejected", "waitlisted", "withdrawn"]


class ApplicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    posting_id: str
    applicant_id: str
    status: ApplicationStatus
    source: ApplicationSource = "application"
    cover_message: str | None = None
    created_at: datetime
    updated_at: datetime


class ApplicationSubmittedOut(ApplicationOut):
    waitlist_position: int | None = None


class ApplicationUpdatedOut(ApplicationOut):
    promoted_application_id: str | None = None
    offered_application_id: str | None = None
