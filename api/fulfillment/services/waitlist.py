from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fulfillment.services.capacity import CapacityLedger
from fulfillment.services.errors import CapacityExceededError
from fulfillment.services.notifications import NotificationEvent
from fulfillment.services.records import ApplicationRecord, PostingUnit

if TYPE_CHECKING:
    from fulfillment.services.applications import ApplicationStateMachine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PromotionOutcome:
    promoted: ApplicationRecord | None = None
    offered: ApplicationRecord | None = None
    notifications: list[NotificationEvent] = field(default_factory=list)


class WaitlistPromoter:
    """Offers a freed slot to the earliest waitlisted application.

    Ordering is strictly FIFO by submission time with the insertion sequence
    as tie-break; compatibility scores never reorder the waitlist.
    """

    def __init__(self, state_machine: ApplicationStateMachine, ledger: CapacityLedger) -> None:
        self.state_machine = state_machine
        self.ledger = ledger

    async def on_slot_freed(self, unit: PostingUnit) -> PromotionOutcome:
        posting = unit.posting
        waitlisted = await unit.list_waitlisted()
        if not waitlisted or not posting.accepts_participants:
            await self.ledger.reconcile_posting_status(unit)
            return PromotionOutcome()

        candidate = min(waitlisted, key=lambda row: row.queue_key)

        if posting.auto_accept:
            try:
                # Re-enters decide() so capacity is checked again under the same lock.
                transition = await self.state_machine.decide(
                    unit,
                    candidate,
                    "accept",
                    actor_id=posting.creator_id,
                    from_waitlist=True,
                )
            except CapacityExceededError:
                logger.info(
                    "waitlist promotion skipped, no capacity posting=%s application=%s",
                    posting.id,
                    candidate.id,
                )
                await self.ledger.reconcile_posting_status(unit)
                return PromotionOutcome()
            await self.ledger.reconcile_posting_status(unit)
            logger.info("waitlist promoted posting=%s application=%s", posting.id, candidate.id)
            return PromotionOutcome(promoted=transition.application, notifications=transition.notifications)

        await self.ledger.reconcile_posting_status(unit)
        logger.info("waitlist slot offered to owner posting=%s application=%s", posting.id, candidate.id)
        notice = NotificationEvent(
            user_id=posting.creator_id,
            kind="waitlist_slot_open",
            title="Spot opened, waitlist ready",
            body=f'A spot opened on "{posting.title}". You have waitlisted people ready to accept.',
            related_posting_id=posting.id,
            related_application_id=candidate.id,
            related_user_id=candidate.applicant_id,
        )
        return PromotionOutcome(offered=candidate, notifications=[notice])
