"""Admin notifications for sweep outcomes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from vascatalog.email.render import render_notification
from vascatalog.ingest.models import SyncStats
from vascatalog.utils.dates import utc_now
from vascatalog.utils.esp import EmailMessage, EmailProvider, admin_recipients

logger = logging.getLogger(__name__)

CATALOG_CHANGED = "catalog_changed"
CATALOG_SYNC_ERROR = "catalog_sync_error"


@dataclass(slots=True)
class NotificationEvent:
    kind: str
    title: str
    message: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: utc_now().isoformat())

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "payload": self.payload,
            "created_at": self.created_at,
        }


def catalog_changed_event(stats: SyncStats) -> NotificationEvent:
    return NotificationEvent(
        kind=CATALOG_CHANGED,
        title="Catalog updated",
        message=(
            f"{stats.new_products} new and {stats.decommissioned_products} "
            f"decommissioned products after the daily sweep"
        ),
        payload={"stats": stats.as_dict()},
    )


def sync_error_event(title: str, exc: BaseException, stats: dict[str, Any] | None = None) -> NotificationEvent:
    return NotificationEvent(
        kind=CATALOG_SYNC_ERROR,
        title=title,
        message=f"{type(exc).__name__}: {exc}",
        payload={"error": str(exc), "stats": stats or {}},
    )


async def deliver(event: dict[str, Any]) -> int:
    """Render and email an event to every admin address. Returns the number of messages sent."""
    recipients = admin_recipients()
    if not recipients:
        logger.info("No ADMIN_EMAILS configured; %s notification not sent", event.get("kind"))
        return 0
    subject, html = render_notification(event)
    provider = EmailProvider()
    for address in recipients:
        await provider.send(EmailMessage(to=address, subject=subject, html=html))
    return len(recipients)
