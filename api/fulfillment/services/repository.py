from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from fulfillment.core.config import get_settings
from fulfillment.services.errors import (
    DuplicateApplicationError,
    FulfillmentConflictError,
    FulfillmentNotFoundError,
    FulfillmentUnavailableError,
    FulfillmentValidationError,
)
from fulfillment.services.notifications import NotificationEvent, normalize_preferences
from fulfillment.services.records import (
    ApplicationRecord,
    FriendAskRecord,
    NotificationRecord,
    PostingRecord,
)
from fulfillment.services.store import InMemoryStore

logger = logging.getLogger(__name__)

POSTING_COLUMNS = """
  id::text as id,
  creator_id::text as creator_id,
  title,
  team_size_min,
  team_size_max,
  status::text as status,
  mode::text as mode,
  auto_accept,
  expires_at,
  created_at,
  updated_at
"""

APPLICATION_COLUMNS = """
  id::text as id,
  posting_id::text as posting_id,
  applicant_id::text as applicant_id,
  status::text as status,
  source::text as source,
  seq,
  cover_message,
  created_at,
  updated_at
"""

FRIEND_ASK_COLUMNS = """
  id::text as id,
  posting_id::text as posting_id,
  creator_id::text as creator_id,
  ordered_friend_list::text[] as ordered_friend_list,
  current_request_index,
  invite_mode::text as invite_mode,
  status::text as status,
  declined_list::text[] as declined_list,
  created_at,
  updated_at
"""

NOTIFICATION_COLUMNS = """
  id::text as id,
  user_id::text as user_id,
  kind,
  title,
  body,
  related_posting_id::text as related_posting_id,
  related_application_id::text as related_application_id,
  related_user_id::text as related_user_id,
  read_at,
  created_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

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
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                insert into postings (
                  creator_id,
                  title,
                  team_size_min,
                  team_size_max,
                  mode,
                  auto_accept,
                  expires_at
                )
                values ($1::uuid, $2, $3, $4, $5::posting_mode, $6, $7)
                returning {POSTING_COLUMNS}
                """,
                creator_id,
                title,
                team_size_min,
                team_size_max,
                mode,
                auto_accept,
                expires_at,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentValidationError("invalid creator id or posting fields") from exc
        except pg_exc.CheckViolationError as exc:
            raise FulfillmentValidationError("team sizes are out of range") from exc
        return self._posting_from_row(row)

    async def get_posting(self, posting_id: str) -> PostingRecord:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"select {POSTING_COLUMNS} from postings where id = $1::uuid",
                posting_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentNotFoundError("posting not found") from exc
        if not row:
            raise FulfillmentNotFoundError("posting not found")
        return self._posting_from_row(row)

    async def count_applications_by_status(self, posting_id: str) -> dict[str, int]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select status::text as status, count(*)::int as total
                from applications
                where posting_id = $1::uuid
                group by status
                """,
                posting_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentNotFoundError("posting not found") from exc
        return {str(row["status"]): int(row["total"]) for row in rows}

    async def list_applications(self, posting_id: str) -> list[ApplicationRecord]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {APPLICATION_COLUMNS}
                from applications
                where posting_id = $1::uuid
                order by created_at asc, seq asc
                """,
                posting_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentNotFoundError("posting not found") from exc
        return [self._application_from_row(row) for row in rows]

    async def resolve_application_posting(self, application_id: str) -> str:
        pool = await self._get_pool()
        try:
            posting_id = await pool.fetchval(
                "select posting_id::text from applications where id = $1::uuid",
                application_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentNotFoundError("application not found") from exc
        if not posting_id:
            raise FulfillmentNotFoundError("application not found")
        return str(posting_id)

    async def resolve_friend_ask_posting(self, friend_ask_id: str) -> str:
        pool = await self._get_pool()
        try:
            posting_id = await pool.fetchval(
                "select posting_id::text from friend_asks where id = $1::uuid",
                friend_ask_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentNotFoundError("friend-ask not found") from exc
        if not posting_id:
            raise FulfillmentNotFoundError("friend-ask not found")
        return str(posting_id)

    async def list_friend_asks(self, *, user_id: str) -> list[FriendAskRecord]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {FRIEND_ASK_COLUMNS}
                from friend_asks
                where creator_id = $1::uuid
                   or $1::uuid = any(ordered_friend_list)
                order by created_at desc
                """,
                user_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentValidationError("invalid user id") from exc
        return [self._friend_ask_from_row(row) for row in rows]

    async def insert_notification(self, event: NotificationEvent) -> NotificationRecord:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            insert into notifications (
              user_id,
              kind,
              title,
              body,
              related_posting_id,
              related_application_id,
              related_user_id
            )
            values ($1::uuid, $2, $3, $4, $5::uuid, $6::uuid, $7::uuid)
            returning {NOTIFICATION_COLUMNS}
            """,
            event.user_id,
            event.kind,
            event.title,
            event.body,
            event.related_posting_id,
            event.related_application_id,
            event.related_user_id,
        )
        return self._notification_from_row(row)

    async def list_notifications(self, *, user_id: str, limit: int = 50) -> list[NotificationRecord]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {NOTIFICATION_COLUMNS}
                from notifications
                where user_id = $1::uuid
                order by created_at desc
                limit $2
                """,
                user_id,
                limit,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentValidationError("invalid user id") from exc
        return [self._notification_from_row(row) for row in rows]

    async def get_notification_preferences(self, user_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        raw = await pool.fetchval(
            "select preferences from notification_preferences where user_id = $1::uuid",
            user_id,
        )
        if raw is None:
            return None
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                return None
        return raw if isinstance(raw, dict) else None

    async def set_notification_preferences(
        self,
        user_id: str,
        preferences: dict[str, dict[str, bool]],
    ) -> dict[str, dict[str, bool]]:
        normalized = normalize_preferences(preferences)
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into notification_preferences (user_id, preferences)
                values ($1::uuid, $2::jsonb)
                on conflict (user_id) do update
                set preferences = excluded.preferences,
                    updated_at = now()
                """,
                user_id,
                json.dumps(normalized),
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentValidationError("invalid user id") from exc
        return normalized

    @asynccontextmanager
    async def posting_unit(self, posting_id: str) -> AsyncIterator[PostgresPostingUnit]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"""
                        select {POSTING_COLUMNS}
                        from postings
                        where id = $1::uuid
                        for update
                        """,
                        posting_id,
                    )
                    if not row:
                        raise FulfillmentNotFoundError("posting not found")
                    yield PostgresPostingUnit(conn, self._posting_from_row(row))
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise FulfillmentValidationError("invalid identifier") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise FulfillmentUnavailableError("PF_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise FulfillmentUnavailableError("database unavailable") from exc

    @staticmethod
    def _posting_from_row(row: asyncpg.Record) -> PostingRecord:
        return PostingRecord(
            id=row["id"],
            creator_id=row["creator_id"],
            title=row["title"],
            team_size_min=int(row["team_size_min"]),
            team_size_max=int(row["team_size_max"]),
            status=row["status"],
            mode=row["mode"],
            auto_accept=bool(row["auto_accept"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            expires_at=row["expires_at"],
        )

    @staticmethod
    def _application_from_row(row: asyncpg.Record) -> ApplicationRecord:
        return ApplicationRecord(
            id=row["id"],
            posting_id=row["posting_id"],
            applicant_id=row["applicant_id"],
            status=row["status"],
            seq=int(row["seq"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            cover_message=row["cover_message"],
            source=row["source"],
        )

    @staticmethod
    def _friend_ask_from_row(row: asyncpg.Record) -> FriendAskRecord:
        return FriendAskRecord(
            id=row["id"],
            posting_id=row["posting_id"],
            creator_id=row["creator_id"],
            ordered_friend_list=list(row["ordered_friend_list"] or []),
            invite_mode=row["invite_mode"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            current_request_index=int(row["current_request_index"]),
            declined_list=list(row["declined_list"] or []),
        )

    @staticmethod
    def _notification_from_row(row: asyncpg.Record) -> NotificationRecord:
        return NotificationRecord(
            id=row["id"],
            user_id=row["user_id"],
            kind=row["kind"],
            title=row["title"],
            body=row["body"],
            related_posting_id=row["related_posting_id"],
            created_at=row["created_at"],
            related_application_id=row["related_application_id"],
            related_user_id=row["related_user_id"],
            read_at=row["read_at"],
        )


class PostgresPostingUnit:
    """Reads and writes for one posting inside its row-locked transaction."""

    def __init__(self, conn: asyncpg.Connection, posting: PostingRecord) -> None:
        self.conn = conn
        self.posting = posting

    async def save_posting(self) -> None:
        self.posting.updated_at = await self.conn.fetchval(
            """
            update postings
            set
              status = $2::posting_status,
              mode = $3::posting_mode,
              expires_at = $4,
              updated_at = now()
            where id = $1::uuid
            returning updated_at
            """,
            self.posting.id,
            self.posting.status,
            self.posting.mode,
            self.posting.expires_at,
        )

    async def count_accepted(self) -> int:
        total = await self.conn.fetchval(
            """
            select count(*)::int
            from applications
            where posting_id = $1::uuid
              and status = 'accepted'
            """,
            self.posting.id,
        )
        return int(total or 0)

    async def get_application(self, application_id: str) -> ApplicationRecord | None:
        row = await self.conn.fetchrow(
            f"""
            select {APPLICATION_COLUMNS}
            from applications
            where id = $1::uuid
              and posting_id = $2::uuid
            for update
            """,
            application_id,
            self.posting.id,
        )
        return PostgresRepository._application_from_row(row) if row else None

    async def find_application(self, applicant_id: str) -> ApplicationRecord | None:
        row = await self.conn.fetchrow(
            f"""
            select {APPLICATION_COLUMNS}
            from applications
            where posting_id = $1::uuid
              and applicant_id = $2::uuid
            """,
            self.posting.id,
            applicant_id,
        )
        return PostgresRepository._application_from_row(row) if row else None

    async def insert_application(
        self,
        *,
        applicant_id: str,
        status: str,
        cover_message: str | None,
        source: str,
    ) -> ApplicationRecord:
        try:
            row = await self.conn.fetchrow(
                f"""
                insert into applications (posting_id, applicant_id, status, source, cover_message)
                values ($1::uuid, $2::uuid, $3::application_status, $4::application_source, $5)
                returning {APPLICATION_COLUMNS}
                """,
                self.posting.id,
                applicant_id,
                status,
                source,
                cover_message,
            )
        except pg_exc.UniqueViolationError as exc:
            raise DuplicateApplicationError("already applied to this posting") from exc
        return PostgresRepository._application_from_row(row)

    async def save_application(self, application: ApplicationRecord) -> None:
        application.updated_at = await self.conn.fetchval(
            """
            update applications
            set
              status = $2::application_status,
              updated_at = now()
            where id = $1::uuid
            returning updated_at
            """,
            application.id,
            application.status,
        )

    async def list_waitlisted(self) -> list[ApplicationRecord]:
        rows = await self.conn.fetch(
            f"""
            select {APPLICATION_COLUMNS}
            from applications
            where posting_id = $1::uuid
              and status = 'waitlisted'
            order by created_at asc, seq asc
            """,
            self.posting.id,
        )
        return [PostgresRepository._application_from_row(row) for row in rows]

    async def get_friend_ask(self, friend_ask_id: str) -> FriendAskRecord | None:
        row = await self.conn.fetchrow(
            f"""
            select {FRIEND_ASK_COLUMNS}
            from friend_asks
            where id = $1::uuid
              and posting_id = $2::uuid
            for update
            """,
            friend_ask_id,
            self.posting.id,
        )
        return PostgresRepository._friend_ask_from_row(row) if row else None

    async def get_active_friend_ask(self) -> FriendAskRecord | None:
        row = await self.conn.fetchrow(
            f"""
            select {FRIEND_ASK_COLUMNS}
            from friend_asks
            where posting_id = $1::uuid
              and status in ('pending', 'accepted')
            order by created_at desc
            limit 1
            for update
            """,
            self.posting.id,
        )
        return PostgresRepository._friend_ask_from_row(row) if row else None

    async def insert_friend_ask(
        self,
        *,
        creator_id: str,
        ordered_friend_list: Sequence[str],
        invite_mode: str,
    ) -> FriendAskRecord:
        try:
            row = await self.conn.fetchrow(
                f"""
                insert into friend_asks (posting_id, creator_id, ordered_friend_list, invite_mode)
                values ($1::uuid, $2::uuid, $3::uuid[], $4::invite_mode)
                returning {FRIEND_ASK_COLUMNS}
                """,
                self.posting.id,
                creator_id,
                list(ordered_friend_list),
                invite_mode,
            )
        except pg_exc.UniqueViolationError as exc:
            raise FulfillmentConflictError("an active friend-ask already exists for this posting") from exc
        return PostgresRepository._friend_ask_from_row(row)

    async def save_friend_ask(self, friend_ask: FriendAskRecord) -> None:
        friend_ask.updated_at = await self.conn.fetchval(
            """
            update friend_asks
            set
              status = $2::friend_ask_status,
              current_request_index = $3,
              declined_list = $4::uuid[],
              updated_at = now()
            where id = $1::uuid
            returning updated_at
            """,
            friend_ask.id,
            friend_ask.status,
            friend_ask.current_request_index,
            list(friend_ask.declined_list),
        )


@lru_cache
def get_repository() -> PostgresRepository | InMemoryStore:
    settings = get_settings()
    if not settings.database_url:
        logger.warning("PF_DATABASE_URL is not set; falling back to the in-memory store")
        return InMemoryStore()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
