from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fulfillment.services.capacity import CapacityLedger
from fulfillment.services.errors import (
    CapacityExceededError,
    DuplicateApplicationError,
    FulfillmentConflictError,
    FulfillmentForbiddenError,
    FulfillmentValidationError,
    InvalidTransitionError,
    PostingClosedError,
)
from fulfillment.services.notifications import NotificationEvent
from fulfillment.services.records import (
    CLOSED_POSTING_STATUSES,
    ApplicationRecord,
    PostingRecord,
    PostingUnit,
)
from fulfillment.services.waitlist import PromotionOutcome, WaitlistPromoter

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"accepted", "rejected", "waitlisted"},
    "waitlisted": {"accepted", "rejected", "withdrawn"},
    "accepted": {"withdrawn"},
    "rejected": set(),
    "withdrawn": set(),
}
STATUS_BY_DECISION = {
    "accept": "accepted",
    "reject": "rejected",
    "waitlist": "waitlisted",
}


@dataclass(slots=True)
class TransitionOutcome:
    application: ApplicationRecord
    notifications: list[NotificationEvent] = field(default_factory=list)
    promotion: PromotionOutcome | None = None


class ApplicationStateMachine:
    """Lifecycle of a single application; the only writer of application status."""

    def __init__(self, ledger: CapacityLedger) -> None:
        self.ledger = ledger
        self.promoter = WaitlistPromoter(self, ledger)

    async def submit(
        self,
        unit: PostingUnit,
        *,
        applicant_id: str,
        cover_message: str | None = None,
    ) -> TransitionOutcome:
        posting = unit.posting
        if posting.creator_id == applicant_id:
            raise FulfillmentValidationError("cannot apply to your own posting")
        if posting.mode != "open":
            raise FulfillmentValidationError("posting only accepts invited participants")

        existing = await unit.find_application(applicant_id)
        if existing is not None:
            raise DuplicateApplicationError("already applied to this posting")
        if posting.status in CLOSED_POSTING_STATUSES:
            raise PostingClosedError("posting is no longer accepting requests")

        joins_waitlist = posting.status == "filled"
        status = "waitlisted" if joins_waitlist else "pending"
        message = None if joins_waitlist else _clean_text(cover_message)

        application = await unit.insert_application(
            applicant_id=applicant_id,
            status=status,
            cover_message=message,
            source="application",
        )
        logger.info(
            "application submitted posting=%s application=%s status=%s",
            posting.id,
            application.id,
            status,
        )

        if joins_waitlist:
            title = "New Waitlist Entry"
            body = f'Someone joined the waitlist for "{posting.title}"'
        else:
            title = "New Join Request"
            body = f'Someone requested to join "{posting.title}"'
        notice = NotificationEvent(
            user_id=posting.creator_id,
            kind="application_received",
            title=title,
            body=body,
            related_posting_id=posting.id,
            related_application_id=application.id,
            related_user_id=applicant_id,
        )
        return TransitionOutcome(application=application, notifications=[notice])

    async def decide(
        self,
        unit: PostingUnit,
        application: ApplicationRecord,
        decision: str,
        *,
        actor_id: str,
        from_waitlist: bool = False,
    ) -> TransitionOutcome:
        posting = unit.posting
        if actor_id != posting.creator_id:
            raise FulfillmentForbiddenError("only the posting owner can decide on applications")

        target = STATUS_BY_DECISION.get(decision)
        if target is None:
            raise FulfillmentValidationError("decision must be one of: accept, reject, waitlist")
        _validate_transition(from_status=application.status, to_status=target)

        if target == "accepted":
            if posting.status in CLOSED_POSTING_STATUSES:
                raise PostingClosedError("posting is no longer accepting participants")
            if not await self.ledger.has_capacity(unit):
                raise CapacityExceededError("no free slot on this posting")

        from_status = application.status
        application.status = target
        await unit.save_application(application)
        if target == "accepted":
            await self.ledger.reconcile_posting_status(unit)

        logger.info(
            "application decided posting=%s application=%s from=%s to=%s",
            posting.id,
            application.id,
            from_status,
            target,
        )
        notice = _decision_notice(posting, application, from_waitlist=from_waitlist)
        return TransitionOutcome(application=application, notifications=[notice])

    async def withdraw(
        self,
        unit: PostingUnit,
        application: ApplicationRecord,
        *,
        actor_id: str,
    ) -> TransitionOutcome:
        if actor_id != application.applicant_id:
            raise FulfillmentForbiddenError("only the applicant can withdraw this application")
        _validate_transition(from_status=application.status, to_status="withdrawn")

        was_accepted = application.status == "accepted"
        application.status = "withdrawn"
        await unit.save_application(application)
        logger.info(
            "application withdrawn posting=%s application=%s freed_slot=%s",
            application.posting_id,
            application.id,
            was_accepted,
        )

        outcome = TransitionOutcome(application=application)
        if was_accepted:
            await self.ledger.reconcile_posting_status(unit)
            outcome.promotion = await self.promoter.on_slot_freed(unit)
            outcome.notifications.extend(outcome.promotion.notifications)
        return outcome

    async def admit_invitee(self, unit: PostingUnit, *, invitee_id: str) -> ApplicationRecord:
        """Record an invite acceptance as an accepted participant.

        Shares the capacity gate with ``decide`` so invite accepts and
        application accepts on one posting can never over-fill it.
        """
        posting = unit.posting
        if posting.status in CLOSED_POSTING_STATUSES:
            raise PostingClosedError("posting is no longer accepting participants")
        if not await self.ledger.has_capacity(unit):
            raise CapacityExceededError("no free slot on this posting")

        existing = await unit.find_application(invitee_id)
        if existing is None:
            application = await unit.insert_application(
                applicant_id=invitee_id,
                status="accepted",
                cover_message=None,
                source="friend_ask",
            )
        elif existing.status in {"pending", "waitlisted"}:
            existing.status = "accepted"
            await unit.save_application(existing)
            application = existing
        else:
            raise FulfillmentConflictError(f"invitee already holds a {existing.status} application")

        await self.ledger.reconcile_posting_status(unit)
        logger.info("invitee admitted posting=%s application=%s", posting.id, application.id)
        return application


def _validate_transition(*, from_status: str, to_status: str) -> None:
    allowed = ALLOWED_TRANSITIONS.get(from_status)
    if not allowed or to_status not in allowed:
        raise InvalidTransitionError(f"invalid application transition: {from_status} -> {to_status}")


def _decision_notice(
    posting: PostingRecord,
    application: ApplicationRecord,
    *,
    from_waitlist: bool,
) -> NotificationEvent:
    if application.status == "accepted" and from_waitlist:
        kind = "waitlist_promoted"
        title = "You're in!"
        body = f'A spot opened on "{posting.title}" and you have been promoted from the waitlist!'
    elif application.status == "accepted":
        kind = "application_accepted"
        title = "Request Accepted!"
        body = f'Your request to join "{posting.title}" has been accepted!'
    elif application.status == "waitlisted":
        kind = "application_waitlisted"
        title = "You're on the waitlist"
        body = f'"{posting.title}" is full right now; you will be offered the next free spot in order.'
    else:
        kind = "application_rejected"
        title = "Request Update"
        body = f'Your request to join "{posting.title}" was not selected.'
    return NotificationEvent(
        user_id=application.applicant_id,
        kind=kind,
        title=title,
        body=body,
        related_posting_id=posting.id,
        related_application_id=application.id,
        related_user_id=posting.creator_id,
    )


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
