"""Email rendering utilities."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",)),
)


def render_email(template_name: str, context: dict[str, Any]) -> tuple[str, str]:
    template = ENV.get_template(template_name)
    html = template.render(**context)
    subject = context.get("subject", "VAS catalog update")
    return subject, html


def render_notification(event: dict[str, Any]) -> tuple[str, str]:
    payload = event.get("payload") or {}
    context = {
        "subject": f"[VAS catalog] {event.get('title', 'Notification')}",
        "title": event.get("title"),
        "message": event.get("message"),
        "kind": event.get("kind"),
        "created_at": event.get("created_at"),
        "stats": payload.get("stats") or {},
        "error": payload.get("error"),
    }
    return render_email("notification.html", context)
