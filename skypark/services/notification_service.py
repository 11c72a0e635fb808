"""
Notification collaborator

Writes outbox rows for the external delivery transport. Always invoked
after the triggering transition has committed, through the task dispatcher.
"""

from typing import Any, Dict
from uuid import UUID
import logging

from skypark.core.database import db_manager
from skypark.core.tasks import task_dispatcher
from skypark.models.notification import Notification, NotificationStatus

logger = logging.getLogger(__name__)


class NotificationService:
    """Outbox writer for user notifications"""

    async def notify(self, user_id: UUID, event_type: str, payload: Dict[str, Any]) -> Notification:
        async with db_manager.atomic_transaction() as session:
            notification = Notification(
                user_id=user_id,
                event_type=event_type,
                payload=payload,
                status=NotificationStatus.PENDING,
            )
            session.add(notification)

        logger.debug(f"Queued {event_type} notification for user {user_id}")
        return notification

    def dispatch(self, user_id: UUID, event_type: str, payload: Dict[str, Any]):
        """Fire-and-forget variant used by the lifecycle services"""
        return task_dispatcher.dispatch(f"notify:{event_type}", self.notify, user_id, event_type, payload)


notification_service = NotificationService()
