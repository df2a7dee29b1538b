from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from opentelemetry import trace

from fulfillment.services.applications import ApplicationStateMachine
from fulfillment.services.capacity import CapacityLedger
from fulfillment.services.errors import (
    FulfillmentForbiddenError,
    FulfillmentNotFoundError,
    FulfillmentValidationError,
    InvalidTransitionError,
)
from fulfillment.services.invites import InviteOutcome, InviteSequencer
from fulfillment.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    RepositoryNotificationSink,
)
from fulfillment.services.records import (
    RECONCILABLE_POSTING_STATUSES,
    ApplicationRecord,
    PostingRecord,
    PostingUnit,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

POSTING_MODES = {"open", "friend_ask"}
DECISION_BY_STATUS = {
    "accepted": "accept",
    "rejected": "reject",
    "waitlisted": "waitlist",
}


@dataclass(slots=True)
class SubmissionResult:
    application: ApplicationRecord
    waitlist_position: int | None = None


@dataclass(slots=True)
class StatusChangeResult:
    application: ApplicationRecord
    promoted: ApplicationRecord | None = None
    offered: ApplicationRecord | None = None


@dataclass(slots=True)
class PostingSummary:
    posting: PostingRecord
    accepted_count: int
    waitlist_count: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FulfillmentCoordinator:
    """Single entry point per fulfillment event.

    Every handler runs one operation inside one per-posting unit of work,
    reconciles capacity where it can change, and dispatches the collected
    notifications only after the unit has committed.
    """

    def __init__(
        self,
        repository: Any,
        *,
        dispatcher: NotificationDispatcher | None = None,
        reactivation_days: int = 90,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.dispatcher = dispatcher or NotificationDispatcher(RepositoryNotificationSink(repository))
        self.reactivation_days = max(1, reactivation_days)
        self.clock = clock
        self.ledger = CapacityLedger()
        self.applications = ApplicationStateMachine(self.ledger)
        self.invites = InviteSequencer(self.applications)

    async def posting_created(
        self,
        *,
        creator_id: str,
        title: str,
        team_size_min: int,
        team_size_max: int,
        auto_accept: bool = False,
        mode: str = "open",
        expires_at: datetime | None = None,
    ) -> PostingRecord:
        with tracer.start_as_current_span("fulfillment.posting_created"):
            cleaned_title = title.strip() if isinstance(title, str) else ""
            if not cleaned_title:
                raise FulfillmentValidationError("title is required")
            if team_size_min < 1 or team_size_max < 1:
                raise FulfillmentValidationError("team sizes must be at least 1")
            if team_size_min > team_size_max:
                raise FulfillmentValidationError("team_size_min cannot exceed team_size_max")
            if mode not in POSTING_MODES:
                raise FulfillmentValidationError("mode must be one of: open, friend_ask")
            if expires_at is not None and expires_at <= self.clock():
                raise FulfillmentValidationError("expires_at must be in the future")

            posting = await self.repository.create_posting(
                creator_id=creator_id,
                title=cleaned_title,
                team_size_min=team_size_min,
                team_size_max=team_size_max,
                mode=mode,
                auto_accept=auto_accept,
                expires_at=expires_at,
            )
            logger.info("posting created posting=%s creator=%s max=%s", posting.id, creator_id, team_size_max)
            return posting

    async def posting_summary(self, posting_id: str) -> PostingSummary:
        posting = await self.repository.get_posting(posting_id)
        counts = await self.repository.count_applications_by_status(posting_id)
        return PostingSummary(
            posting=posting,
            accepted_count=counts.get("accepted", 0),
            waitlist_count=counts.get("waitlisted", 0),
        )

    async def posting_applications(self, *, posting_id: str, requester_id: str) -> list[ApplicationRecord]:
        posting = await self.repository.get_posting(posting_id)
        if posting.creator_id != requester_id:
            raise FulfillmentForbiddenError("only the posting owner can list applications")
        return await self.repository.list_applications(posting_id)

    async def posting_closed(self, *, posting_id: str, actor_id: str) -> PostingRecord:
        with tracer.start_as_current_span("fulfillment.posting_closed") as span:
            span.set_attribute("posting.id", posting_id)
            async with self.repository.posting_unit(posting_id) as unit:
                posting = unit.posting
                if posting.creator_id != actor_id:
                    raise FulfillmentForbiddenError("only the posting owner can close it")
                if posting.status == "closed":
                    raise InvalidTransitionError("posting is already closed")
                posting.status = "closed"
                await unit.save_posting()
                logger.info("posting closed posting=%s", posting_id)
                return posting

    async def posting_reactivated(
        self,
        *,
        posting_id: str,
        actor_id: str,
        days: int | None = None,
    ) -> PostingRecord:
        with tracer.start_as_current_span("fulfillment.posting_reactivated") as span:
            span.set_attribute("posting.id", posting_id)
            async with self.repository.posting_unit(posting_id) as unit:
                posting = unit.posting
                if posting.creator_id != actor_id:
                    raise FulfillmentForbiddenError("only the posting creator can reactivate")
                now = self.clock()
                await self._expire_if_due(unit, now)
                if posting.status != "expired":
                    raise FulfillmentValidationError("posting is not expired and cannot be reactivated")

                extension = days if days is not None and days > 0 else self.reactivation_days
                posting.status = "open"
                posting.expires_at = now + timedelta(days=extension)
                await unit.save_posting()
                await self.ledger.reconcile_posting_status(unit)
                notifications: list[NotificationEvent] = []
                if await self.ledger.has_capacity(unit):
                    promotion = await self.applications.promoter.on_slot_freed(unit)
                    notifications.extend(promotion.notifications)
                logger.info("posting reactivated posting=%s expires_at=%s", posting_id, posting.expires_at)

            await self._dispatch(notifications)
            return posting

    async def application_submitted(
        self,
        *,
        posting_id: str,
        applicant_id: str,
        cover_message: str | None = None,
    ) -> SubmissionResult:
        with tracer.start_as_current_span("fulfillment.application_submitted") as span:
            span.set_attribute("posting.id", posting_id)
            async with self.repository.posting_unit(posting_id) as unit:
                await self._expire_if_due(unit, self.clock())
                outcome = await self.applications.submit(
                    unit,
                    applicant_id=applicant_id,
                    cover_message=cover_message,
                )
                notifications = list(outcome.notifications)
                application = outcome.application

                posting = unit.posting
                if (
                    posting.auto_accept
                    and application.status == "pending"
                    and not await unit.list_waitlisted()
                    and await self.ledger.has_capacity(unit)
                ):
                    accepted = await self.applications.decide(
                        unit,
                        application,
                        "accept",
                        actor_id=posting.creator_id,
                    )
                    notifications.extend(accepted.notifications)
                await self.ledger.reconcile_posting_status(unit)

                position = None
                if application.status == "waitlisted":
                    queue = sorted(await unit.list_waitlisted(), key=lambda row: row.queue_key)
                    position = next(
                        (index for index, row in enumerate(queue, start=1) if row.id == application.id),
                        len(queue),
                    )

            await self._dispatch(notifications)
            return SubmissionResult(application=application, waitlist_position=position)

    async def application_status_changed(
        self,
        *,
        application_id: str,
        actor_id: str,
        status: str,
    ) -> StatusChangeResult:
        if status == "withdrawn":
            return await self.application_withdrawn(application_id=application_id, actor_id=actor_id)
        decision = DECISION_BY_STATUS.get(status)
        if decision is None:
            raise FulfillmentValidationError('status must be "accepted", "rejected", "waitlisted" or "withdrawn"')
        application = await self.application_decided(
            application_id=application_id,
            actor_id=actor_id,
            decision=decision,
        )
        return StatusChangeResult(application=application)

    async def application_decided(
        self,
        *,
        application_id: str,
        actor_id: str,
        decision: str,
    ) -> ApplicationRecord:
        with tracer.start_as_current_span("fulfillment.application_decided") as span:
            span.set_attribute("application.id", application_id)
            span.set_attribute("application.decision", decision)
            posting_id = await self.repository.resolve_application_posting(application_id)
            async with self.repository.posting_unit(posting_id) as unit:
                await self._expire_if_due(unit, self.clock())
                application = await self._load_application(unit, application_id)
                outcome = await self.applications.decide(unit, application, decision, actor_id=actor_id)
                await self.ledger.reconcile_posting_status(unit)

            await self._dispatch(outcome.notifications)
            return outcome.application

    async def application_withdrawn(self, *, application_id: str, actor_id: str) -> StatusChangeResult:
        with tracer.start_as_current_span("fulfillment.application_withdrawn") as span:
            span.set_attribute("application.id", application_id)
            posting_id = await self.repository.resolve_application_posting(application_id)
            async with self.repository.posting_unit(posting_id) as unit:
                await self._expire_if_due(unit, self.clock())
                application = await self._load_application(unit, application_id)
                outcome = await self.applications.withdraw(unit, application, actor_id=actor_id)
                await self.ledger.reconcile_posting_status(unit)

            await self._dispatch(outcome.notifications)
            promotion = outcome.promotion
            return StatusChangeResult(
                application=outcome.application,
                promoted=promotion.promoted if promotion else None,
                offered=promotion.offered if promotion else None,
            )

    async def invite_created(
        self,
        *,
        posting_id: str,
        requester_id: str,
        ordered_friend_list: Sequence[str],
        invite_mode: str = "sequential",
    ) -> InviteOutcome:
        with tracer.start_as_current_span("fulfillment.invite_created") as span:
            span.set_attribute("posting.id", posting_id)
            span.set_attribute("invite.mode", invite_mode)
            async with self.repository.posting_unit(posting_id) as unit:
                await self._expire_if_due(unit, self.clock())
                outcome = await self.invites.create(
                    unit,
                    requester_id=requester_id,
                    ordered_friend_list=ordered_friend_list,
                    invite_mode=invite_mode,
                )

            await self._dispatch(outcome.notifications)
            return outcome

    async def invite_responded(
        self,
        *,
        responder_id: str,
        action: str,
        friend_ask_id: str | None = None,
        posting_id: str | None = None,
    ) -> InviteOutcome:
        with tracer.start_as_current_span("fulfillment.invite_responded") as span:
            span.set_attribute("invite.action", action)
            if friend_ask_id is not None:
                posting_id = await self.repository.resolve_friend_ask_posting(friend_ask_id)
            if posting_id is None:
                raise FulfillmentValidationError("friend_ask_id or posting_id is required")

            async with self.repository.posting_unit(posting_id) as unit:
                await self._expire_if_due(unit, self.clock())
                if friend_ask_id is not None:
                    friend_ask = await unit.get_friend_ask(friend_ask_id)
                else:
                    friend_ask = await unit.get_active_friend_ask()
                if friend_ask is None:
                    raise FulfillmentNotFoundError("friend-ask not found")
                outcome = await self.invites.respond(unit, friend_ask, responder_id=responder_id, action=action)
                await self.ledger.reconcile_posting_status(unit)

            await self._dispatch(outcome.notifications)
            return outcome

    async def invite_advanced(self, *, friend_ask_id: str, requester_id: str) -> InviteOutcome:
        with tracer.start_as_current_span("fulfillment.invite_advanced") as span:
            span.set_attribute("friend_ask.id", friend_ask_id)
            posting_id = await self.repository.resolve_friend_ask_posting(friend_ask_id)
            async with self.repository.posting_unit(posting_id) as unit:
                await self._expire_if_due(unit, self.clock())
                friend_ask = await unit.get_friend_ask(friend_ask_id)
                if friend_ask is None:
                    raise FulfillmentNotFoundError("friend-ask not found")
                outcome = await self.invites.advance(unit, friend_ask, requester_id=requester_id)

            await self._dispatch(outcome.notifications)
            return outcome

    async def _load_application(self, unit: PostingUnit, application_id: str) -> ApplicationRecord:
        application = await unit.get_application(application_id)
        if application is None:
            raise FulfillmentNotFoundError("application not found")
        return application

    async def _expire_if_due(self, unit: PostingUnit, now: datetime) -> None:
        posting = unit.posting
        if posting.status in RECONCILABLE_POSTING_STATUSES and posting.is_past_deadline(now):
            logger.info("posting expired posting=%s expires_at=%s", posting.id, posting.expires_at)
            posting.status = "expired"
            await unit.save_posting()

    async def _dispatch(self, notifications: list[NotificationEvent]) -> None:
        if notifications:
            await self.dispatcher.dispatch(notifications)
