from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import pytest

from fulfillment.services.coordinator import FulfillmentCoordinator
from fulfillment.services.errors import (
    CapacityExceededError,
    FulfillmentConflictError,
    FulfillmentForbiddenError,
    FulfillmentNotFoundError,
    FulfillmentValidationError,
    InvalidTransitionError,
    PostingClosedError,
)
from fulfillment.services.store import InMemoryStore

T = TypeVar("T")


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


async def _setup(*, size: int = 2) -> tuple[FulfillmentCoordinator, InMemoryStore, str]:
    store = InMemoryStore()
    coordinator = FulfillmentCoordinator(store)
    posting = await coordinator.posting_created(
        creator_id="owner-1",
        title="Board game night",
        team_size_min=1,
        team_size_max=size,
    )
    return coordinator, store, posting.id


async def _kinds(store: InMemoryStore, user_id: str) -> list[str]:
    return [row.kind for row in reversed(await store.list_notifications(user_id=user_id))]


def test_sequential_ask_notifies_only_first_friend() -> None:
    async def scenario() -> None:
        coordinator, store, posting_id = await _setup()

        outcome = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2"],
        )

        assert outcome.friend_ask.status == "pending"
        assert outcome.friend_ask.current_request_index == 0
        assert await _kinds(store, "friend-1") == ["invite_received"]
        assert await _kinds(store, "friend-2") == []
        assert (await store.get_posting(posting_id)).mode == "friend_ask"

    _run(scenario())


def test_sequential_declines_exhaust_list_with_single_owner_notice() -> None:
    async def scenario() -> None:
        coordinator, store, posting_id = await _setup()
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2", "friend-3"],
        )
        friend_ask_id = created.friend_ask.id

        first = await coordinator.invite_responded(friend_ask_id=friend_ask_id, responder_id="friend-1", action="decline")
        assert first.friend_ask.current_request_index == 1
        assert await _kinds(store, "friend-2") == ["invite_received"]

        await coordinator.invite_responded(friend_ask_id=friend_ask_id, responder_id="friend-2", action="decline")
        last = await coordinator.invite_responded(friend_ask_id=friend_ask_id, responder_id="friend-3", action="decline")

        assert last.friend_ask.status == "exhausted"
        owner_kinds = await _kinds(store, "owner-1")
        assert owner_kinds.count("invite_exhausted") == 1

        with pytest.raises(FulfillmentForbiddenError):
            await coordinator.invite_responded(friend_ask_id=friend_ask_id, responder_id="friend-3", action="accept")
        assert (await _kinds(store, "owner-1")).count("invite_exhausted") == 1

    _run(scenario())


def test_accept_short_circuits_remaining_friends() -> None:
    async def scenario() -> None:
        coordinator, store, posting_id = await _setup()
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2"],
        )

        accepted = await coordinator.invite_responded(
            friend_ask_id=created.friend_ask.id,
            responder_id="friend-1",
            action="accept",
        )

        assert accepted.friend_ask.status == "accepted"
        assert accepted.friend_ask.current_request_index == 0
        assert accepted.participant is not None
        assert accepted.participant.status == "accepted"
        assert accepted.participant.source == "friend_ask"
        assert await _kinds(store, "owner-1") == ["invite_accepted"]

        with pytest.raises(FulfillmentForbiddenError) as forbidden:
            await coordinator.invite_responded(
                friend_ask_id=created.friend_ask.id,
                responder_id="friend-2",
                action="accept",
            )
        assert forbidden.value.code == "FORBIDDEN"

    _run(scenario())


def test_out_of_turn_response_is_forbidden() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2"],
        )
        with pytest.raises(FulfillmentForbiddenError):
            await coordinator.invite_responded(
                friend_ask_id=created.friend_ask.id,
                responder_id="friend-2",
                action="accept",
            )

    _run(scenario())


def test_parallel_mode_asks_everyone_and_tracks_declines() -> None:
    async def scenario() -> None:
        coordinator, store, posting_id = await _setup()
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2", "friend-3"],
            invite_mode="parallel",
        )
        for friend in ("friend-1", "friend-2", "friend-3"):
            assert await _kinds(store, friend) == ["invite_received"]

        declined = await coordinator.invite_responded(
            friend_ask_id=created.friend_ask.id,
            responder_id="friend-2",
            action="decline",
        )
        assert declined.friend_ask.declined_list == ["friend-2"]
        assert declined.friend_ask.status == "pending"

        with pytest.raises(FulfillmentForbiddenError):
            await coordinator.invite_responded(
                friend_ask_id=created.friend_ask.id,
                responder_id="friend-2",
                action="accept",
            )

        accepted = await coordinator.invite_responded(
            friend_ask_id=created.friend_ask.id,
            responder_id="friend-3",
            action="accept",
        )
        assert accepted.friend_ask.status == "accepted"
        assert accepted.friend_ask.current_request_index == 2

    _run(scenario())


def test_parallel_mode_exhausts_once_everyone_declines() -> None:
    async def scenario() -> None:
        coordinator, store, posting_id = await _setup()
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2"],
            invite_mode="parallel",
        )
        await coordinator.invite_responded(friend_ask_id=created.friend_ask.id, responder_id="friend-1", action="decline")
        last = await coordinator.invite_responded(
            friend_ask_id=created.friend_ask.id,
            responder_id="friend-2",
            action="decline",
        )

        assert last.friend_ask.status == "exhausted"
        assert (await _kinds(store, "owner-1")).count("invite_exhausted") == 1

    _run(scenario())


def test_create_validates_requester_and_list() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()

        with pytest.raises(FulfillmentForbiddenError):
            await coordinator.invite_created(posting_id=posting_id, requester_id="friend-1", ordered_friend_list=["friend-2"])
        with pytest.raises(FulfillmentValidationError):
            await coordinator.invite_created(posting_id=posting_id, requester_id="owner-1", ordered_friend_list=[])
        with pytest.raises(FulfillmentValidationError):
            await coordinator.invite_created(
                posting_id=posting_id,
                requester_id="owner-1",
                ordered_friend_list=["friend-1", "owner-1"],
            )
        with pytest.raises(FulfillmentValidationError):
            await coordinator.invite_created(
                posting_id=posting_id,
                requester_id="owner-1",
                ordered_friend_list=["friend-1", "friend-1"],
            )
        with pytest.raises(FulfillmentValidationError):
            await coordinator.invite_created(
                posting_id=posting_id,
                requester_id="owner-1",
                ordered_friend_list=["friend-1"],
                invite_mode="broadcast",
            )

    _run(scenario())


def test_only_one_active_friend_ask_per_posting() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()
        await coordinator.invite_created(posting_id=posting_id, requester_id="owner-1", ordered_friend_list=["friend-1"])

        with pytest.raises(FulfillmentConflictError) as conflict:
            await coordinator.invite_created(
                posting_id=posting_id,
                requester_id="owner-1",
                ordered_friend_list=["friend-2"],
            )
        assert conflict.value.code == "CONFLICT"

    _run(scenario())


def test_new_ask_allowed_after_exhaustion() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()
        first = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1"],
        )
        await coordinator.invite_responded(friend_ask_id=first.friend_ask.id, responder_id="friend-1", action="decline")

        second = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-2"],
        )
        assert second.friend_ask.status == "pending"

    _run(scenario())


def test_create_on_closed_posting_is_rejected() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()
        await coordinator.posting_closed(posting_id=posting_id, actor_id="owner-1")
        with pytest.raises(PostingClosedError):
            await coordinator.invite_created(posting_id=posting_id, requester_id="owner-1", ordered_friend_list=["friend-1"])

    _run(scenario())


def test_friend_ask_posting_rejects_open_applications() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()
        await coordinator.invite_created(posting_id=posting_id, requester_id="owner-1", ordered_friend_list=["friend-1"])
        with pytest.raises(FulfillmentValidationError):
            await coordinator.application_submitted(posting_id=posting_id, applicant_id="stranger-1")

    _run(scenario())


def test_invite_accept_respects_capacity() -> None:
    async def scenario() -> None:
        coordinator, store, posting_id = await _setup(size=1)
        member = await coordinator.application_submitted(posting_id=posting_id, applicant_id="member-1")
        await coordinator.application_decided(application_id=member.application.id, actor_id="owner-1", decision="accept")
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1"],
        )

        with pytest.raises(CapacityExceededError):
            await coordinator.invite_responded(
                friend_ask_id=created.friend_ask.id,
                responder_id="friend-1",
                action="accept",
            )

        assert store.friend_asks[created.friend_ask.id].status == "pending"
        counts = await store.count_applications_by_status(posting_id)
        assert counts == {"accepted": 1}

    _run(scenario())


def test_owner_can_skip_to_next_friend() -> None:
    async def scenario() -> None:
        coordinator, store, posting_id = await _setup()
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2"],
        )

        with pytest.raises(FulfillmentForbiddenError):
            await coordinator.invite_advanced(friend_ask_id=created.friend_ask.id, requester_id="friend-1")

        advanced = await coordinator.invite_advanced(friend_ask_id=created.friend_ask.id, requester_id="owner-1")
        assert advanced.friend_ask.current_request_index == 1
        assert await _kinds(store, "friend-2") == ["invite_received"]

        exhausted = await coordinator.invite_advanced(friend_ask_id=created.friend_ask.id, requester_id="owner-1")
        assert exhausted.friend_ask.status == "exhausted"

        with pytest.raises(InvalidTransitionError):
            await coordinator.invite_advanced(friend_ask_id=created.friend_ask.id, requester_id="owner-1")

    _run(scenario())


def test_parallel_ask_cannot_be_advanced() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2"],
            invite_mode="parallel",
        )
        with pytest.raises(FulfillmentValidationError):
            await coordinator.invite_advanced(friend_ask_id=created.friend_ask.id, requester_id="owner-1")

    _run(scenario())


def test_respond_by_posting_uses_active_ask() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()
        await coordinator.invite_created(posting_id=posting_id, requester_id="owner-1", ordered_friend_list=["friend-1"])

        outcome = await coordinator.invite_responded(posting_id=posting_id, responder_id="friend-1", action="accept")
        assert outcome.friend_ask.status == "accepted"

    _run(scenario())


def test_respond_by_posting_without_ask_is_not_found() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()
        with pytest.raises(FulfillmentNotFoundError):
            await coordinator.invite_responded(posting_id=posting_id, responder_id="friend-1", action="accept")

    _run(scenario())


def test_invalid_action_is_validation_error() -> None:
    async def scenario() -> None:
        coordinator, _, posting_id = await _setup()
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1"],
        )
        with pytest.raises(FulfillmentValidationError):
            await coordinator.invite_responded(friend_ask_id=created.friend_ask.id, responder_id="friend-1", action="maybe")

    _run(scenario())


def test_decline_on_closed_posting_does_not_invite_next_friend() -> None:
    async def scenario() -> None:
        coordinator, store, posting_id = await _setup()
        created = await coordinator.invite_created(
            posting_id=posting_id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2"],
        )
        await coordinator.posting_closed(posting_id=posting_id, actor_id="owner-1")

        with pytest.raises(PostingClosedError):
            await coordinator.invite_responded(
                friend_ask_id=created.friend_ask.id,
                responder_id="friend-1",
                action="decline",
            )

        assert store.friend_asks[created.friend_ask.id].current_request_index == 0
        assert await _kinds(store, "friend-2") == []

    _run(scenario())


def test_skip_on_expired_posting_is_rejected() -> None:
    async def scenario() -> None:
        now = [datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)]
        store = InMemoryStore(clock=lambda: now[0])
        coordinator = FulfillmentCoordinator(store, clock=lambda: now[0])
        posting = await coordinator.posting_created(
            creator_id="owner-1",
            title="Board game night",
            team_size_min=1,
            team_size_max=2,
            expires_at=now[0] + timedelta(hours=6),
        )
        created = await coordinator.invite_created(
            posting_id=posting.id,
            requester_id="owner-1",
            ordered_friend_list=["friend-1", "friend-2"],
        )

        now[0] += timedelta(days=1)
        with pytest.raises(PostingClosedError):
            await coordinator.invite_advanced(friend_ask_id=created.friend_ask.id, requester_id="owner-1")

        assert await _kinds(store, "friend-2") == []

    _run(scenario())
