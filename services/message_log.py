# Message Log for Collaboration Conversations
# Append-only, totally ordered messages per conversation

from sqlalchemy.orm import Session
from typing import Optional, List
from datetime import datetime

from database.collaboration_models import Conversation, Message, MessageTypeDB
from schemas.collaboration import ActionPrompt


class MessageLog:
    """Appends and reads conversation messages inside the caller's unit of work."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        conversation: Conversation,
        sender_id: str,
        receiver_id: Optional[str],
        text: str,
        now: datetime,
        message_type: MessageTypeDB = MessageTypeDB.AUTOMATED,
        prompt: Optional[ActionPrompt] = None,
        attachments: Optional[List[str]] = None,
    ) -> Message:
        """
        Write one message. The conversation row must already be locked by the
        caller so that seq stays gap-free and ordered.
        """
        conversation.message_seq = (conversation.message_seq or 0) + 1
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            message=text,
            message_type=message_type,
            action_required=prompt is not None and bool(prompt.buttons or prompt.input_field),
            action_data=prompt.to_wire() if prompt is not None else None,
            attachments=list(attachments or []),
            seq=conversation.message_seq,
            is_read=False,
            created_at=now,
        )
        self.db.add(message)
        self.db.flush()
        return message

    def list_for(self, conversation_id: str) -> List[Message]:
        return self.db.query(Message).filter(
            Message.conversation_id == conversation_id
        ).order_by(Message.created_at, Message.seq, Message.id).all()

    def latest(self, conversation_id: str) -> Optional[Message]:
        return self.db.query(Message).filter(
            Message.conversation_id == conversation_id
        ).order_by(Message.created_at.desc(), Message.seq.desc()).first()

    def unread_count(self, user_id: str, conversation_id: Optional[str] = None) -> int:
        query = self.db.query(Message).filter(
            Message.receiver_id == user_id,
            Message.is_read == False
        )
        if conversation_id is not None:
            query = query.filter(Message.conversation_id == conversation_id)
        return query.count()

    def mark_read(self, conversation_id: str, user_id: str, now: datetime) -> int:
        """Mark every message addressed to user_id as read. Returns the count."""
        return self.db.query(Message).filter(
            Message.conversation_id == conversation_id,
            Message.receiver_id == user_id,
            Message.is_read == False
        ).update({
            "is_read": True,
            "read_at": now
        }, synchronize_session=False)
