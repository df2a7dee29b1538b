from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Protocol

PostingStatus = Literal["open", "filled", "closed", "expired"]
PostingMode = Literal["open", "friend_ask"]
ApplicationStatus = Literal["pending", "accepted", "rejected", "waitlisted", "withdrawn"]
ApplicationSource = Literal["application", "friend_ask"]
InviteMode = Literal["sequential", "parallel"]
FriendAskStatus = Literal["pending", "accepted", "exhausted"]

RECONCILABLE_POSTING_STATUSES = {"open", "filled"}
CLOSED_POSTING_STATUSES = {"closed", "expired"}
ACTIVE_FRIEND_ASK_STATUSES = {"pending", "accepted"}
INVITE_MODES = {"sequential", "parallel"}


@dataclass(slots=True)
class PostingRecord:
    id: str
    creator_id: str
    title: str
    team_size_min: int
    team_size_max: int
    status: PostingStatus
    mode: PostingMode
    auto_accept: bool
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None

    def is_past_deadline(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    @property
    def accepts_participants(self) -> bool:
        return self.status not in CLOSED_POSTING_STATUSES


@dataclass(slots=True)
class ApplicationRecord:
    id: str
    posting_id: str
    applicant_id: str
    status: ApplicationStatus
    seq: int
    created_at: datetime
    updated_at: datetime
    cover_message: str | None = None
    source: ApplicationSource = "application"

    @property
    def queue_key(self) -> tuple[datetime, int]:
        return (self.created_at, self.seq)


@dataclass(slots=True)
class FriendAskRecord:
    id: str
    posting_id: str
    creator_id: str
    ordered_friend_list: list[str]
    invite_mode: InviteMode
    status: FriendAskStatus
    created_at: datetime
    updated_at: datetime
    current_request_index: int = 0
    declined_list: list[str] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_FRIEND_ASK_STATUSES

    @property
    def current_invitee(self) -> str | None:
        if 0 <= self.current_request_index < len(self.ordered_friend_list):
            return self.ordered_friend_list[self.current_request_index]
        return None

    def awaiting_response(self) -> list[str]:
        """Invitees who may respond right now; empty once the ask is settled."""
        if self.status != "pending":
            return []
        if self.invite_mode == "parallel":
            declined = set(self.declined_list)
            return [user_id for user_id in self.ordered_friend_list if user_id not in declined]
        invitee = self.current_invitee
        return [invitee] if invitee is not None else []


@dataclass(slots=True)
class NotificationRecord:
    id: str
    user_id: str
    kind: str
    title: str
    body: str
    related_posting_id: str
    created_at: datetime
    related_application_id: str | None = None
    related_user_id: str | None = None
    read_at: datetime | None = None


class PostingUnit(Protocol):
    """One posting locked for a read-modify-write sequence.

    Implementations hold the posting's lock (row lock or in-process lock) for
    their whole lifetime, so every capacity check and mutation made through a
    unit is serialized against other units for the same posting.
    """

    posting: PostingRecord

    async def save_posting(self) -> None: ...

    async def count_accepted(self) -> int: ...

    async def get_application(self, application_id: str) -> ApplicationRecord | None: ...

    async def find_application(self, applicant_id: str) -> ApplicationRecord | None: ...

    async def insert_application(
        self,
        *,
        applicant_id: str,
        status: str,
        cover_message: str | None,
        source: str,
    ) -> ApplicationRecord: ...

    async def save_application(self, application: ApplicationRecord) -> None: ...

    async def list_waitlisted(self) -> list[ApplicationRecord]: ...

    async def get_friend_ask(self, friend_ask_id: str) -> FriendAskRecord | None: ...

    async def get_active_friend_ask(self) -> FriendAskRecord | None: ...

    async def insert_friend_ask(
        self,
        *,
        creator_id: str,
        ordered_friend_list: Sequence[str],
        invite_mode: str,
    ) -> FriendAskRecord: ...

    async def save_friend_ask(self, friend_ask: FriendAskRecord) -> None: ...
