"""In-app notification sink used by the escalation engine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sla_models import Notification
from sla_store import SlaStore

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Stores one notification row per recipient. Delivery beyond the row (email,
    push) belongs to whoever reads the table; nothing is retried here.
    """

    def __init__(self, store: SlaStore) -> None:
        self.store = store

    def notify(
        self,
        recipient_id: str,
        category: str,
        title: str,
        message: str,
        *,
        related_type: Optional[str] = None,
        related_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Notification:
        notification = Notification(
            user_id=recipient_id,
            type=category,
            title=title,
            message=message,
            related_type=related_type,
            related_id=related_id,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.store.add_notification(notification)

        logger.debug(
            "notification_stored",
            extra={"recipient_id": recipient_id, "category": category, "related_id": related_id},
        )
        return notification
