from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from fulfillment.services.applications import ApplicationStateMachine
from fulfillment.services.errors import (
    FulfillmentConflictError,
    FulfillmentForbiddenError,
    FulfillmentValidationError,
    InvalidTransitionError,
    PostingClosedError,
)
from fulfillment.services.notifications import NotificationEvent
from fulfillment.services.records import (
    CLOSED_POSTING_STATUSES,
    INVITE_MODES,
    ApplicationRecord,
    FriendAskRecord,
    PostingRecord,
    PostingUnit,
)

logger = logging.getLogger(__name__)

INVITE_ACTIONS = {"accept", "decline"}


@dataclass(slots=True)
class InviteOutcome:
    friend_ask: FriendAskRecord
    notifications: list[NotificationEvent] = field(default_factory=list)
    participant: ApplicationRecord | None = None


class InviteSequencer:
    """Walks an owner-ranked friend list, one invitee at a time or all at once.

    The list order is fixed at creation and never re-ranked.
    """

    def __init__(self, state_machine: ApplicationStateMachine) -> None:
        self.state_machine = state_machine

    async def create(
        self,
        unit: PostingUnit,
        *,
        requester_id: str,
        ordered_friend_list: Sequence[str],
        invite_mode: str = "sequential",
    ) -> InviteOutcome:
        posting = unit.posting
        if requester_id != posting.creator_id:
            raise FulfillmentForbiddenError("you can only create friend-asks for your own postings")
        if invite_mode not in INVITE_MODES:
            raise FulfillmentValidationError("invite_mode must be one of: sequential, parallel")
        friend_list = _validate_friend_list(ordered_friend_list, owner_id=posting.creator_id)
        if posting.status in CLOSED_POSTING_STATUSES:
            raise PostingClosedError("posting is no longer accepting participants")

        existing = await unit.get_active_friend_ask()
        if existing is not None:
            raise FulfillmentConflictError("an active friend-ask already exists for this posting")

        if posting.mode != "friend_ask":
            posting.mode = "friend_ask"
            await unit.save_posting()

        friend_ask = await unit.insert_friend_ask(
            creator_id=requester_id,
            ordered_friend_list=friend_list,
            invite_mode=invite_mode,
        )
        logger.info(
            "friend-ask created posting=%s friend_ask=%s mode=%s size=%s",
            posting.id,
            friend_ask.id,
            invite_mode,
            len(friend_list),
        )
        notifications = [_invite_notice(posting, friend_ask, invitee) for invitee in friend_ask.awaiting_response()]
        return InviteOutcome(friend_ask=friend_ask, notifications=notifications)

    async def respond(
        self,
        unit: PostingUnit,
        friend_ask: FriendAskRecord,
        *,
        responder_id: str,
        action: str,
    ) -> InviteOutcome:
        if action not in INVITE_ACTIONS:
            raise FulfillmentValidationError("action must be 'accept' or 'decline'")
        if responder_id not in friend_ask.awaiting_response():
            raise FulfillmentForbiddenError("you are not currently invited to respond")
        if unit.posting.status in CLOSED_POSTING_STATUSES:
            raise PostingClosedError("posting is no longer accepting participants")

        posting = unit.posting
        if action == "accept":
            participant = await self.state_machine.admit_invitee(unit, invitee_id=responder_id)
            friend_ask.status = "accepted"
            friend_ask.current_request_index = friend_ask.ordered_friend_list.index(responder_id)
            await unit.save_friend_ask(friend_ask)
            logger.info("friend-ask accepted friend_ask=%s responder=%s", friend_ask.id, responder_id)
            notice = NotificationEvent(
                user_id=posting.creator_id,
                kind="invite_accepted",
                title="Invite accepted",
                body=f'Your invite to "{posting.title}" was accepted.',
                related_posting_id=posting.id,
                related_application_id=participant.id,
                related_user_id=responder_id,
            )
            return InviteOutcome(friend_ask=friend_ask, notifications=[notice], participant=participant)

        if friend_ask.invite_mode == "parallel":
            friend_ask.declined_list.append(responder_id)
            notifications: list[NotificationEvent] = []
            if not friend_ask.awaiting_response():
                friend_ask.status = "exhausted"
                notifications.append(_exhausted_notice(posting, friend_ask))
            await unit.save_friend_ask(friend_ask)
            logger.info(
                "friend-ask declined friend_ask=%s responder=%s status=%s",
                friend_ask.id,
                responder_id,
                friend_ask.status,
            )
            return InviteOutcome(friend_ask=friend_ask, notifications=notifications)

        return await self._advance(unit, friend_ask)

    async def advance(self, unit: PostingUnit, friend_ask: FriendAskRecord, *, requester_id: str) -> InviteOutcome:
        """Skip an unresponsive invitee and ask the next one (owner only, sequential only)."""
        if requester_id != friend_ask.creator_id:
            raise FulfillmentForbiddenError("only the creator can send asks")
        if friend_ask.invite_mode != "sequential":
            raise FulfillmentValidationError("only sequential friend-asks can be advanced")
        if friend_ask.status != "pending":
            raise InvalidTransitionError(f"cannot send: friend-ask status is {friend_ask.status}")
        if unit.posting.status in CLOSED_POSTING_STATUSES:
            raise PostingClosedError("posting is no longer accepting participants")
        return await self._advance(unit, friend_ask)

    async def _advance(self, unit: PostingUnit, friend_ask: FriendAskRecord) -> InviteOutcome:
        posting = unit.posting
        friend_ask.current_request_index += 1
        next_invitee = friend_ask.current_invitee
        if next_invitee is None:
            friend_ask.status = "exhausted"
            notice = _exhausted_notice(posting, friend_ask)
        else:
            notice = _invite_notice(posting, friend_ask, next_invitee)
        await unit.save_friend_ask(friend_ask)
        logger.info(
            "friend-ask advanced friend_ask=%s index=%s status=%s",
            friend_ask.id,
            friend_ask.current_request_index,
            friend_ask.status,
        )
        return InviteOutcome(friend_ask=friend_ask, notifications=[notice])


def _validate_friend_list(ordered_friend_list: Sequence[str], *, owner_id: str) -> list[str]:
    if isinstance(ordered_friend_list, str) or not ordered_friend_list:
        raise FulfillmentValidationError("ordered_friend_list must be a non-empty array of user IDs")

    friend_list: list[str] = []
    for index, user_id in enumerate(ordered_friend_list):
        if not isinstance(user_id, str) or not user_id.strip():
            raise FulfillmentValidationError(f"ordered_friend_list[{index}] must be a non-empty user ID")
        normalized = user_id.strip()
        if normalized == owner_id:
            raise FulfillmentValidationError("ordered_friend_list cannot include the posting owner")
        if normalized in friend_list:
            raise FulfillmentValidationError(f"ordered_friend_list contains {normalized} more than once")
        friend_list.append(normalized)
    return friend_list


def _invite_notice(posting: PostingRecord, friend_ask: FriendAskRecord, invitee_id: str) -> NotificationEvent:
    return NotificationEvent(
        user_id=invitee_id,
        kind="invite_received",
        title="You're invited",
        body=f'You have been invited to join "{posting.title}".',
        related_posting_id=posting.id,
        related_user_id=friend_ask.creator_id,
    )


def _exhausted_notice(posting: PostingRecord, friend_ask: FriendAskRecord) -> NotificationEvent:
    return NotificationEvent(
        user_id=friend_ask.creator_id,
        kind="invite_exhausted",
        title="Invite list finished",
        body=f'Nobody on your invite list for "{posting.title}" accepted.',
        related_posting_id=posting.id,
    )
