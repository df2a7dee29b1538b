from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal, Protocol

logger = logging.getLogger(__name__)

NotificationKind = Literal[
    "application_received",
    "application_accepted",
    "application_rejected",
    "application_waitlisted",
    "waitlist_promoted",
    "waitlist_slot_open",
    "invite_received",
    "invite_accepted",
    "invite_exhausted",
]
NotificationChannel = Literal["in_app", "browser"]

PREFERENCE_TYPES = ("interest_received", "application_accepted", "application_rejected", "sequential_invite")

# Several notification kinds share one user-facing preference toggle.
PREFERENCE_TYPE_BY_KIND: dict[str, str] = {
    "application_received": "interest_received",
    "waitlist_slot_open": "interest_received",
    "application_accepted": "application_accepted",
    "waitlist_promoted": "application_accepted",
    "application_rejected": "application_rejected",
    "application_waitlisted": "application_rejected",
    "invite_received": "sequential_invite",
    "invite_accepted": "sequential_invite",
    "invite_exhausted": "sequential_invite",
}

DEFAULT_NOTIFICATION_PREFERENCES: dict[str, dict[str, bool]] = {
    "in_app": {name: True for name in PREFERENCE_TYPES},
    "browser": {
        "interest_received": True,
        "application_accepted": True,
        "application_rejected": False,
        "sequential_invite": True,
    },
}


@dataclass(slots=True, frozen=True)
class NotificationEvent:
    user_id: str
    kind: NotificationKind
    title: str
    body: str
    related_posting_id: str
    related_application_id: str | None = None
    related_user_id: str | None = None


class NotificationSink(Protocol):
    async def emit(self, event: NotificationEvent) -> bool: ...


class PreferenceSource(Protocol):
    async def get_notification_preferences(self, user_id: str) -> dict[str, Any] | None: ...

    async def insert_notification(self, event: NotificationEvent) -> Any: ...


def should_notify(
    preferences: dict[str, Any] | None,
    kind: str,
    channel: NotificationChannel = "in_app",
) -> bool:
    """Missing preferences mean "deliver" so older profiles never lose notifications."""
    if not preferences:
        return True
    channel_preferences = preferences.get(channel)
    if not isinstance(channel_preferences, dict):
        return True
    preference_type = PREFERENCE_TYPE_BY_KIND.get(kind, kind)
    value = channel_preferences.get(preference_type)
    if isinstance(value, bool):
        return value
    return True


def normalize_preferences(raw: dict[str, dict[str, bool]]) -> dict[str, dict[str, bool]]:
    normalized: dict[str, dict[str, bool]] = {}
    for channel, defaults in DEFAULT_NOTIFICATION_PREFERENCES.items():
        supplied = raw.get(channel) or {}
        normalized[channel] = {
            name: bool(supplied[name]) if name in supplied else default for name, default in defaults.items()
        }
    return normalized


class RepositoryNotificationSink:
    """Writes in-app notification rows, honouring each recipient's preferences."""

    def __init__(self, repository: PreferenceSource) -> None:
        self.repository = repository

    async def emit(self, event: NotificationEvent) -> bool:
        preferences = await self.repository.get_notification_preferences(event.user_id)
        if not should_notify(preferences, event.kind, "in_app"):
            logger.debug("notification suppressed by preferences user=%s kind=%s", event.user_id, event.kind)
            return False
        await self.repository.insert_notification(event)
        return True


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink) -> None:
        self.sink = sink

    async def dispatch(self, events: Iterable[NotificationEvent]) -> int:
        delivered = 0
        for event in events:
            try:
                if await self.sink.emit(event):
                    delivered += 1
            except Exception:
                # Delivery is best-effort: the state transition is already committed.
                logger.exception(
                    "notification delivery failed user=%s kind=%s posting=%s",
                    event.user_id,
                    event.kind,
                    event.related_posting_id,
                )
        return delivered
