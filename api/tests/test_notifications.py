from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

import pytest

from fulfillment.services.coordinator import FulfillmentCoordinator
from fulfillment.services.notifications import (
    DEFAULT_NOTIFICATION_PREFERENCES,
    NotificationDispatcher,
    NotificationEvent,
    normalize_preferences,
    should_notify,
)
from fulfillment.services.store import InMemoryStore

T = TypeVar("T")


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def _event(user_id: str, kind: str = "application_received") -> NotificationEvent:
    return NotificationEvent(
        user_id=user_id,
        kind=kind,
        title="New Join Request",
        body="Someone requested to join",
        related_posting_id="posting-1",
    )


class FlakySink:
    def __init__(self, failing_user: str) -> None:
        self.failing_user = failing_user
        self.delivered: list[NotificationEvent] = []

    async def emit(self, event: NotificationEvent) -> bool:
        if event.user_id == self.failing_user:
            raise RuntimeError("sink offline")
        self.delivered.append(event)
        return True


class BrokenSink:
    async def emit(self, event: NotificationEvent) -> bool:
        raise ConnectionError("push gateway unreachable")


def test_dispatcher_logs_and_skips_failed_deliveries(caplog: pytest.LogCaptureFixture) -> None:
    sink = FlakySink(failing_user="user-2")
    dispatcher = NotificationDispatcher(sink)

    with caplog.at_level(logging.ERROR):
        delivered = _run(dispatcher.dispatch([_event("user-1"), _event("user-2"), _event("user-3")]))

    assert delivered == 2
    assert [event.user_id for event in sink.delivered] == ["user-1", "user-3"]
    assert any("notification delivery failed" in record.getMessage() for record in caplog.records)


def test_failed_notifications_do_not_undo_the_transition() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        coordinator = FulfillmentCoordinator(store, dispatcher=NotificationDispatcher(BrokenSink()))
        posting = await coordinator.posting_created(
            creator_id="owner-1",
            title="Climbing partners",
            team_size_min=1,
            team_size_max=1,
        )
        submitted = await coordinator.application_submitted(posting_id=posting.id, applicant_id="climber-1")
        accepted = await coordinator.application_decided(
            application_id=submitted.application.id,
            actor_id="owner-1",
            decision="accept",
        )

        assert accepted.status == "accepted"
        assert (await store.get_posting(posting.id)).status == "filled"
        assert store.notifications == []

    _run(scenario())


def test_should_notify_defaults_to_delivery() -> None:
    assert should_notify(None, "application_accepted")
    assert should_notify({}, "application_accepted")
    assert should_notify({"in_app": "garbage"}, "application_accepted")
    assert should_notify({"in_app": {}}, "invite_received")


def test_should_notify_maps_kinds_onto_preference_toggles() -> None:
    preferences = {"in_app": {"application_rejected": False, "sequential_invite": True}}
    assert not should_notify(preferences, "application_rejected")
    assert not should_notify(preferences, "application_waitlisted")
    assert should_notify(preferences, "invite_exhausted")
    assert should_notify(preferences, "application_rejected", "browser")


def test_normalize_preferences_fills_defaults() -> None:
    normalized = normalize_preferences({"browser": {"application_rejected": True}, "unknown": {"x": False}})
    assert set(normalized) == {"in_app", "browser"}
    assert normalized["in_app"] == DEFAULT_NOTIFICATION_PREFERENCES["in_app"]
    assert normalized["browser"]["application_rejected"] is True
    assert normalized["browser"]["interest_received"] is True


def test_recipient_preferences_suppress_in_app_rows() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        coordinator = FulfillmentCoordinator(store)
        await store.set_notification_preferences("applicant-1", {"in_app": {"application_rejected": False}})
        posting = await coordinator.posting_created(
            creator_id="owner-1",
            title="Band practice",
            team_size_min=1,
            team_size_max=2,
        )
        submitted = await coordinator.application_submitted(posting_id=posting.id, applicant_id="applicant-1")
        await coordinator.application_decided(
            application_id=submitted.application.id,
            actor_id="owner-1",
            decision="reject",
        )

        assert await store.list_notifications(user_id="applicant-1") == []
        assert [row.kind for row in await store.list_notifications(user_id="owner-1")] == ["application_received"]

    _run(scenario())
