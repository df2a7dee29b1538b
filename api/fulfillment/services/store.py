from __future__ import annotations

import asyncio
import itertools
import weakref
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fulfillment.services.errors import DuplicateApplicationError, FulfillmentNotFoundError
from fulfillment.services.notifications import NotificationEvent, normalize_preferences
from fulfillment.services.records import (
    ApplicationRecord,
    FriendAskRecord,
    NotificationRecord,
    PostingRecord,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """Process-local store used by tests and when no database is configured.

    Records are copied on the way in and out so callers can only change
    stored state through a posting unit.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.clock = clock
        self.postings: dict[str, PostingRecord] = {}
        self.applications: dict[str, ApplicationRecord] = {}
        self.friend_asks: dict[str, FriendAskRecord] = {}
        self.notifications: list[NotificationRecord] = []
        self.notification_preferences: dict[str, dict[str, dict[str, bool]]] = {}
        self._seq = itertools.count(1)
        self._locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]] = (
            weakref.WeakKeyDictionary()
        )

    async def close(self) -> None:
        return None

    async def create_posting(
        self,
        *,
        creator_id: str,
        title: str,
        team_size_min: int,
        team_size_max: int,
        mode: str = "open",
        auto_accept: bool = False,
        expires_at: datetime | None = None,
    ) -> PostingRecord:
        now = self.clock()
        posting = PostingRecord(
            id=str(uuid4()),
            creator_id=creator_id,
            title=title,
            team_size_min=team_size_min,
            team_size_max=team_size_max,
            status="open",
            mode=mode,
            auto_accept=auto_accept,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )
        self.postings[posting.id] = deepcopy(posting)
        return posting

    async def get_posting(self, posting_id: str) -> PostingRecord:
        posting = self.postings.get(posting_id)
        if posting is None:
            raise FulfillmentNotFoundError("posting not found")
        return deepcopy(posting)

    async def count_applications_by_status(self, posting_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        for application in self.applications.values():
            if application.posting_id == posting_id:
                counts[application.status] = counts.get(application.status, 0) + 1
        return counts

    async def list_applications(self, posting_id: str) -> list[ApplicationRecord]:
        rows = [deepcopy(row) for row in self.applications.values() if row.posting_id == posting_id]
        return sorted(rows, key=lambda row: row.queue_key)

    async def resolve_application_posting(self, application_id: str) -> str:
        application = self.applications.get(application_id)
        if application is None:
            raise FulfillmentNotFoundError("application not found")
        return application.posting_id

    async def resolve_friend_ask_posting(self, friend_ask_id: str) -> str:
        friend_ask = self.friend_asks.get(friend_ask_id)
        if friend_ask is None:
            raise FulfillmentNotFoundError("friend-ask not found")
        return friend_ask.posting_id

    async def list_friend_asks(self, *, user_id: str) -> list[FriendAskRecord]:
        rows = [
            deepcopy(row)
            for row in self.friend_asks.values()
            if row.creator_id == user_id or user_id in row.ordered_friend_list
        ]
        return sorted(rows, key=lambda row: row.created_at, reverse=True)

    async def insert_notification(self, event: NotificationEvent) -> NotificationRecord:
        record = NotificationRecord(
            id=str(uuid4()),
            user_id=event.user_id,
            kind=event.kind,
            title=event.title,
            body=event.body,
            related_posting_id=event.related_posting_id,
            related_application_id=event.related_application_id,
            related_user_id=event.related_user_id,
            created_at=self.clock(),
        )
        self.notifications.append(record)
        return deepcopy(record)

    async def list_notifications(self, *, user_id: str, limit: int = 50) -> list[NotificationRecord]:
        rows = [deepcopy(row) for row in reversed(self.notifications) if row.user_id == user_id]
        return rows[:limit]

    async def get_notification_preferences(self, user_id: str) -> dict[str, Any] | None:
        preferences = self.notification_preferences.get(user_id)
        return deepcopy(preferences) if preferences is not None else None

    async def set_notification_preferences(
        self,
        user_id: str,
        preferences: dict[str, dict[str, bool]],
    ) -> dict[str, dict[str, bool]]:
        normalized = normalize_preferences(preferences)
        self.notification_preferences[user_id] = normalized
        return deepcopy(normalized)

    @asynccontextmanager
    async def posting_unit(self, posting_id: str) -> AsyncIterator[InMemoryPostingUnit]:
        async with self._lock_for(posting_id):
            posting = self.postings.get(posting_id)
            if posting is None:
                raise FulfillmentNotFoundError("posting not found")

            snapshot = self._snapshot(posting_id)
            try:
                yield InMemoryPostingUnit(self, deepcopy(posting))
            except BaseException:
                self._restore(posting_id, snapshot)
                raise

    def next_seq(self) -> int:
        return next(self._seq)

    def _lock_for(self, posting_id: str) -> asyncio.Lock:
        # asyncio.Lock binds to the loop it first waits on; tests run many loops.
        loop = asyncio.get_running_loop()
        locks = self._locks.setdefault(loop, {})
        lock = locks.get(posting_id)
        if lock is None:
            lock = asyncio.Lock()
            locks[posting_id] = lock
        return lock

    def _snapshot(self, posting_id: str) -> tuple[PostingRecord, dict[str, ApplicationRecord], dict[str, FriendAskRecord]]:
        return (
            deepcopy(self.postings[posting_id]),
            {key: deepcopy(row) for key, row in self.applications.items() if row.posting_id == posting_id},
            {key: deepcopy(row) for key, row in self.friend_asks.items() if row.posting_id == posting_id},
        )

    def _restore(
        self,
        posting_id: str,
        snapshot: tuple[PostingRecord, dict[str, ApplicationRecord], dict[str, FriendAskRecord]],
    ) -> None:
        posting, applications, friend_asks = snapshot
        self.postings[posting_id] = posting
        for key in [key for key, row in self.applications.items() if row.posting_id == posting_id]:
            del self.applications[key]
        self.applications.update(applications)
        for key in [key for key, row in self.friend_asks.items() if row.posting_id == posting_id]:
            del self.friend_asks[key]
        self.friend_asks.update(friend_asks)


class InMemoryPostingUnit:
    def __init__(self, store: InMemoryStore, posting: PostingRecord) -> None:
        self.store = store
        self.posting = posting

    async def save_posting(self) -> None:
        self.posting.updated_at = self.store.clock()
        self.store.postings[self.posting.id] = deepcopy(self.posting)

    async def count_accepted(self) -> int:
        # Yield so concurrent units interleave here unless the posting lock serializes them.
        await asyncio.sleep(0)
        return sum(
            1
            for row in self.store.applications.values()
            if row.posting_id == self.posting.id and row.status == "accepted"
        )

    async def get_application(self, application_id: str) -> ApplicationRecord | None:
        application = self.store.applications.get(application_id)
        if application is None or application.posting_id != self.posting.id:
            return None
        return deepcopy(application)

    async def find_application(self, applicant_id: str) -> ApplicationRecord | None:
        for application in self.store.applications.values():
            if application.posting_id == self.posting.id and application.applicant_id == applicant_id:
                return deepcopy(application)
        return None

    async def insert_application(
        self,
        *,
        applicant_id: str,
        status: str,
        cover_message: str | None,
        source: str,
    ) -> ApplicationRecord:
        if await self.find_application(applicant_id) is not None:
            raise DuplicateApplicationError("already applied to this posting")
        now = self.store.clock()
        application = ApplicationRecord(
            id=str(uuid4()),
            posting_id=self.posting.id,
            applicant_id=applicant_id,
            status=status,
            seq=self.store.next_seq(),
            created_at=now,
            updated_at=now,
            cover_message=cover_message,
            source=source,
        )
        self.store.applications[application.id] = deepcopy(application)
        return application

    async def save_application(self, application: ApplicationRecord) -> None:
        application.updated_at = self.store.clock()
        self.store.applications[application.id] = deepcopy(application)

    async def list_waitlisted(self) -> list[ApplicationRecord]:
        rows = [
            deepcopy(row)
            for row in self.store.applications.values()
            if row.posting_id == self.posting.id and row.status == "waitlisted"
        ]
        return sorted(rows, key=lambda row: row.queue_key)

    async def get_friend_ask(self, friend_ask_id: str) -> FriendAskRecord | None:
        friend_ask = self.store.friend_asks.get(friend_ask_id)
        if friend_ask is None or friend_ask.posting_id != self.posting.id:
            return None
        return deepcopy(friend_ask)

    async def get_active_friend_ask(self) -> FriendAskRecord | None:
        active = [
            row for row in self.store.friend_asks.values() if row.posting_id == self.posting.id and row.is_active
        ]
        if not active:
            return None
        return deepcopy(max(active, key=lambda row: row.created_at))

    async def insert_friend_ask(
        self,
        *,
        creator_id: str,
        ordered_friend_list: Sequence[str],
        invite_mode: str,
    ) -> FriendAskRecord:
        now = self.store.clock()
        friend_ask = FriendAskRecord(
            id=str(uuid4()),
            posting_id=self.posting.id,
            creator_id=creator_id,
            ordered_friend_list=list(ordered_friend_list),
            invite_mode=invite_mode,
            status="pending",
            created_at=now,
            updated_at=now,
        )
        self.store.friend_asks[friend_ask.id] = deepcopy(friend_ask)
        return friend_ask

    async def save_friend_ask(self, friend_ask: FriendAskRecord) -> None:
        friend_ask.updated_at = self.store.clock()
        self.store.friend_asks[friend_ask.id] = deepcopy(friend_ask)
