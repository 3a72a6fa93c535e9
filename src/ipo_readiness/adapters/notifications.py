"""Notification and lead-status adapters.

The engine only knows the INotificationSink and ILeadStatusCollaborator
protocols. These defaults log the events; hosts wire in e-mail, chat or a
message bus by supplying their own implementations.
"""

from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class LoggingNotificationSink:
    """INotificationSink that records every event as a structured log line."""

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        """Log one lifecycle event.

        Args:
            event: Event name, e.g. ``assessment.submitted``.
            payload: Event payload (assessment_id, lead_id, status, ...).
        """
        logger.info("Lifecycle event", notification_event=event, **payload)


class LoggingLeadStatusCollaborator:
    """ILeadStatusCollaborator used when the host has no lead system attached."""

    async def on_approved(self, lead_id: str) -> None:
        logger.info("Lead approved", lead_id=lead_id)
