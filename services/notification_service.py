# Notification Service for Collaboration Conversations
# Provides notification records and the flow-state push notifier

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional, List
from datetime import datetime
from enum import Enum
import logging

from database.collaboration_models import FlowStateDB, Notification
from database.config import get_db_context

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Notification types stored on Notification.type."""
    FLOW_STATE_CHANGED = "flow_state_changed"
    CONNECTION_REQUEST = "connection_request"
    PAYMENT_RECEIVED = "payment_received"
    ESCROW_RELEASED = "escrow_released"
    SYSTEM = "system"


FLOW_STATE_TITLE = "Conversation Update"

FLOW_STATE_MESSAGES = {
    FlowStateDB.INFLUENCER_RESPONDING: "You have a new connection request",
    FlowStateDB.BRAND_OWNER_DETAILS: "Please provide project details",
    FlowStateDB.INFLUENCER_REVIEWING: "Please review the project requirements",
    FlowStateDB.BRAND_OWNER_PRICING: "Please set your price offer",
    FlowStateDB.INFLUENCER_PRICE_RESPONSE: "Please respond to the price offer",
    FlowStateDB.BRAND_OWNER_NEGOTIATION: "The influencer wants to negotiate the price",
    FlowStateDB.INFLUENCER_NEGOTIATION_INPUT: "Please enter your counter offer",
    FlowStateDB.BRAND_OWNER_NEGOTIATION_REVIEW: "Please review the counter offer",
    FlowStateDB.PAYMENT_PENDING: "Payment is required to continue",
    FlowStateDB.PAYMENT_COMPLETED: "Payment completed! You can start working",
    FlowStateDB.WORK_IN_PROGRESS: "Work has started",
    FlowStateDB.WORK_SUBMITTED: "Work has been submitted for review",
    FlowStateDB.WORK_FINAL_REVIEW: "Final revision submitted for review",
    FlowStateDB.WORK_APPROVED: "Work has been approved!",
}

DEFAULT_FLOW_STATE_MESSAGE = "Conversation state updated"


def flow_state_message(state: FlowStateDB) -> str:
    return FLOW_STATE_MESSAGES.get(state, DEFAULT_FLOW_STATE_MESSAGE)


class NotificationService:
    """
    Service for creating and reading user notifications inside a session.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        user_id: str,
        type: NotificationType | str,
        title: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Notification:
        """
        Create a new notification for a user.

        Args:
            user_id: The user to notify
            type: Notification type (use NotificationType enum)
            title: Short notification title
            message: Full notification message
            data: Optional additional data as JSON

        Returns:
            The created Notification object
        """
        type_value = type.value if isinstance(type, NotificationType) else str(type)
        notification = Notification(
            user_id=user_id,
            type=type_value,
            title=title,
            message=message,
            data=data or {},
        )
        self.db.add(notification)
        self.db.flush()  # Get the ID without committing
        return notification

    def notify_flow_state(
        self,
        conversation_id: str,
        user_id: str,
        new_state: FlowStateDB,
        body: Optional[str] = None,
    ) -> Notification:
        """Notify a participant that the conversation moved to new_state."""
        return self.create(
            user_id=user_id,
            type=NotificationType.FLOW_STATE_CHANGED,
            title=FLOW_STATE_TITLE,
            message=body or flow_state_message(new_state),
            data={
                "conversation_id": conversation_id,
                "flow_state": new_state.value,
            }
        )

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.read == False)
        return query.order_by(Notification.created_at.desc()).all()

    def mark_read(self, notification_id: str, user_id: str) -> bool:
        """
        Mark a notification as read.

        Returns:
            True if notification was marked read, False if not found
        """
        notification = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()

        if notification:
            notification.read = True
            notification.read_at = datetime.utcnow()
            self.db.flush()
            return True
        return False

    def get_unread_count(self, user_id: str) -> int:
        """Get unread notification count for a user."""
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.read == False
        ).count()


class PushNotifier:
    """
    Sends flow-state notifications after the engine commits. Each call runs
    in its own unit of work and never raises.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def send_flow_state_notification(
        self,
        conversation_id: str,
        user_id: str,
        new_state: FlowStateDB,
        body: Optional[str] = None,
    ) -> bool:
        if not user_id:
            return False
        try:
            with get_db_context(self.session_factory) as db:
                NotificationService(db).notify_flow_state(conversation_id, user_id, new_state, body)
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Push notification for conversation {conversation_id} failed: {e}")
            return False
