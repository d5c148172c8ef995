import logging
from typing import Dict, Any, Optional
import uuid

from ..utils.clock import utcnow
from ..utils.redis_client import redis_client

logger = logging.getLogger(__name__)


class EventService:
    """Handle event publishing via Redis"""

    # Event channels
    RIDE_EVENTS_CHANNEL = "ride-events"
    USER_NOTIFICATIONS_CHANNEL = "user-notifications"

    def __init__(self, client=None):
        self.client = client or redis_client

    async def publish_ride_event(self, event_type: str, event_data: Dict[str, Any]):
        """Publish ride-related events"""
        try:
            event = {
                "event_id": str(uuid.uuid4()),
                "event_type": event_type,
                "timestamp": utcnow().isoformat(),
                "service": "ride-booking",
                "data": event_data
            }

            await self.client.publish_event(self.RIDE_EVENTS_CHANNEL, event)
            logger.info(f"Published ride event: {event_type}")

        except Exception as e:
            logger.error(f"Failed to publish ride event: {e}")
            raise

    async def notify(
        self,
        user_id: Any,
        message: str,
        severity: str = "INFO",
        related_entity_id: Optional[Any] = None,
    ):
        """Publish a notification addressed to one user"""
        try:
            notification = {
                "notification_id": str(uuid.uuid4()),
                "recipient_id": str(user_id),
                "timestamp": utcnow().isoformat(),
                "message": message,
                "severity": severity,
                "related_entity_id": str(related_entity_id) if related_entity_id else None,
            }

            await self.client.publish_event(self.USER_NOTIFICATIONS_CHANNEL, notification)
            logger.info(f"Published {severity} notification to {user_id}")

        except Exception as e:
            logger.error(f"Failed to publish user notification: {e}")
            raise
