"""
Best-effort notification dispatch.

Template rendering and delivery live outside the engine. The engine only
hands a channel, a template kind and a payload to a dispatcher, and a
failing dispatcher never fails a cancellation or a waitlist fill.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

EMAIL = "email"
SMS = "sms"

CANCELLATION = "cancellation"
WAITLIST_CONFIRMATION = "waitlist_confirmation"
WAITLIST_FILL_SMS = "waitlist_fill"


@dataclass
class SentNotification:
    channel: str
    template_kind: str
    payload: dict[str, Any] = field(default_factory=dict)


class LoggingNotificationDispatcher:
    """Logs notifications and keeps them for inspection. Used by the demo and tests."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []

    def notify(self, channel: str, template_kind: str, payload: dict[str, Any]) -> None:
        self.sent.append(SentNotification(channel, template_kind, dict(payload)))
        logger.info("Notification queued: %s/%s -> %s", channel, template_kind, payload.get("to"))

    def of_kind(self, template_kind: str) -> list[SentNotification]:
        return [n for n in self.sent if n.template_kind == template_kind]


def dispatch_best_effort(
    dispatcher: Optional[Any],
    channel: str,
    template_kind: str,
    payload: dict[str, Any],
) -> bool:
    """Send a notification, logging and swallowing any failure.

    Returns:
        True if the dispatcher accepted the notification.
    """
    if dispatcher is None or not payload.get("to"):
        return False
    try:
        dispatcher.notify(channel, template_kind, payload)
        return True
    except Exception:
        logger.exception("%s notification '%s' failed", channel, template_kind)
        return False
