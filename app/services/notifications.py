"""
Notification hand-off to the delivery service.

The scheduling core only emits "client X, session Y, reason Z" events;
transport, templating and retries belong to the delivery service. A notifier
is anything with an async `send(event)`; the default one just logs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Protocol

logger = logging.getLogger(__name__)

SESSION_CANCELLED = "SESSION_CANCELLED"
WAITLIST_PROMOTED = "WAITLIST_PROMOTED"


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    client_id: int
    class_session_id: int
    reason: str
    studio_id: Optional[int] = None
    waitlist_entry_id: Optional[int] = None
    expires_at: Optional[datetime] = None


@dataclass
class DispatchReport:
    sent: int = 0
    failed: List[str] = field(default_factory=list)

    def merge(self, other: "DispatchReport") -> "DispatchReport":
        self.sent += other.sent
        self.failed.extend(other.failed)
        return self


class Notifier(Protocol):
    async def send(self, event: NotificationEvent) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records the event in the application log"""

    async def send(self, event: NotificationEvent) -> None:
        logger.info(
            "Notification %s client=%s session=%s reason=%s",
            event.kind,
            event.client_id,
            event.class_session_id,
            event.reason,
        )


_notifier: Notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    return _notifier


def set_notifier(notifier: Notifier) -> None:
    global _notifier
    _notifier = notifier


async def dispatch_notifications(
    events: Iterable[NotificationEvent],
    notifier: Optional[Notifier] = None,
) -> DispatchReport:
    """Send every event; a failing send is logged and reported, never raised."""
    notifier = notifier or get_notifier()
    report = DispatchReport()

    for event in events:
        try:
            await notifier.send(event)
            report.sent += 1
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Notification %s for client %s session %s failed: %s",
                event.kind, event.client_id, event.class_session_id, exc
            )
            report.failed.append(f"client={event.client_id} session={event.class_session_id}: {exc}")

    return report
