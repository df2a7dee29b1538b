from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    kind: str
    title: str
    body: str
    related_posting_id: str | None = None
    related_application_id: str | None = None
    related_user_id: str | None = None
    read_at: datetime | None = None
    created_at: datetime


class NotificationPreferencesIn(BaseModel):
    in_app: dict[str, bool] = Field(default_factory=dict)
    browser: dict[str, bool] = Field(default_factory=dict)


class NotificationPreferencesOut(BaseModel):
    in_app: dict[str, bool]
    browser: dict[str, bool]
