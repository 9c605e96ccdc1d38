# Event Emitter for Collaboration Conversations
# Builds realtime events inside a unit of work and publishes them after commit

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

from core.event_channel import EventChannel
from database.collaboration_models import Conversation, FlowStateDB, Message, MessageTypeDB

logger = logging.getLogger(__name__)

CHAT_NEW = "chat:new"
CHAT_AUTOMATED = "chat:automated"
CONVERSATION_STATE_CHANGED = "conversation_state_changed"
CONVERSATIONS_UPSERT = "conversations:upsert"
UNREAD_COUNT_UPDATED = "unread_count_updated"


@dataclass
class PendingEvent:
    """An event captured before commit. Payloads are plain JSON-ready dicts."""
    scope: str  # "conversation" or "user"
    target_id: str
    name: str
    payload: Dict[str, Any]


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def message_payload(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "receiver_id": message.receiver_id,
        "message": message.message,
        "message_type": message.message_type.value,
        "action_required": bool(message.action_required),
        "action_data": message.action_data,
        "attachments": list(message.attachments or []),
        "seq": message.seq,
        "created_at": _iso(message.created_at),
    }


def conversation_summary(conversation: Conversation, last_message: Optional[Message] = None) -> Dict[str, Any]:
    """Row shape used by conversation list views."""
    return {
        "id": conversation.id,
        "brand_owner_id": conversation.brand_owner_id,
        "influencer_id": conversation.influencer_id,
        "bid_id": conversation.bid_id,
        "campaign_id": conversation.campaign_id,
        "flow_state": conversation.flow_state.value,
        "awaiting_role": conversation.awaiting_role.value if conversation.awaiting_role else None,
        "chat_status": conversation.chat_status.value,
        "last_message": message_payload(last_message) if last_message is not None else None,
        "updated_at": _iso(conversation.updated_at),
    }


class EventEmitter:
    """
    Collects events for one unit of work; ``dispatch`` publishes them and
    never raises. Clients reconcile through the conversation snapshot.
    """

    def __init__(self, channel: EventChannel):
        self.channel = channel

    def message_events(self, message: Message) -> List[PendingEvent]:
        name = CHAT_NEW if message.message_type == MessageTypeDB.USER else CHAT_AUTOMATED
        return [PendingEvent("conversation", message.conversation_id, name, message_payload(message))]

    def state_changed_events(self, conversation: Conversation, previous_state: FlowStateDB) -> List[PendingEvent]:
        payload = {
            "conversation_id": conversation.id,
            "previous_state": previous_state.value,
            "flow_state": conversation.flow_state.value,
            "awaiting_role": conversation.awaiting_role.value if conversation.awaiting_role else None,
            "chat_status": conversation.chat_status.value,
            "current_action_data": conversation.current_action_data,
        }
        return [PendingEvent("conversation", conversation.id, CONVERSATION_STATE_CHANGED, payload)]

    def upsert_events(self, conversation: Conversation, last_message: Optional[Message]) -> List[PendingEvent]:
        summary = conversation_summary(conversation, last_message)
        return [
            PendingEvent("user", user_id, CONVERSATIONS_UPSERT, {"conversation": summary})
            for user_id in (conversation.brand_owner_id, conversation.influencer_id)
        ]

    def unread_events(self, user_id: str, conversation_id: str, count: int, total: int) -> List[PendingEvent]:
        payload = {"conversation_id": conversation_id, "unread_count": count, "total_unread": total}
        return [PendingEvent("user", user_id, UNREAD_COUNT_UPDATED, payload)]

    def dispatch(self, events: List[PendingEvent]) -> int:
        """Publish events in order. Returns how many were delivered."""
        delivered = 0
        for event in events:
            try:
                if event.scope == "conversation":
                    self.channel.emit_to_conversation(event.target_id, event.name, event.payload)
                else:
                    self.channel.emit_to_user(event.target_id, event.name, event.payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Failed to emit {event.name} to {event.scope} {event.target_id}: {e}")
        return delivered
