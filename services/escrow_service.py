# Escrow Controller
# Holds verified funds per conversation, releases on approval, refunds on closure

from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
import logging

from database.collaboration_models import (
    Conversation,
    EscrowHold,
    EscrowStatusDB,
    Transaction,
    TransactionDirectionDB,
    TransactionStageDB,
    TransactionStatusDB,
)
from services.errors import LedgerError
from services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class EscrowService:
    """
    At most one hold per conversation is in the held status. Every change
    writes a matching ledger row in the same unit of work.
    """

    def __init__(self, db: Session, ledger: Optional[LedgerService] = None):
        self.db = db
        self.ledger = ledger or LedgerService(db)

    def active_hold(self, conversation_id: str) -> Optional[EscrowHold]:
        return self.db.query(EscrowHold).filter(
            EscrowHold.conversation_id == conversation_id,
            EscrowHold.status == EscrowStatusDB.HELD
        ).first()

    def hold(self, conversation: Conversation, verified: Transaction, amount_paise: int, now: datetime) -> EscrowHold:
        """Lock net funds behind a verified payment."""
        if self.active_hold(conversation.id) is not None:
            raise LedgerError("Conversation already has an active escrow hold")

        self.ledger.record(
            conversation_id=conversation.id,
            direction=TransactionDirectionDB.IN,
            stage=TransactionStageDB.ESCROW_HOLD,
            amount_paise=amount_paise,
            now=now,
            status=TransactionStatusDB.HELD,
            sender_id=conversation.brand_owner_id,
            receiver_id=conversation.influencer_id,
            external_ref=verified.external_ref,
            metadata={"verified_transaction_id": verified.id},
        )
        escrow = EscrowHold(
            conversation_id=conversation.id,
            transaction_id=verified.id,
            amount_paise=amount_paise,
            status=EscrowStatusDB.HELD,
            created_at=now,
        )
        self.db.add(escrow)
        self.db.flush()
        logger.info(f"Escrow hold of {amount_paise} paise for conversation {conversation.id}")
        return escrow

    def release(self, conversation: Conversation, now: datetime) -> EscrowHold:
        """Pay the held amount out to the influencer."""
        escrow = self.active_hold(conversation.id)
        if escrow is None:
            raise LedgerError("No active escrow hold to release")

        release_tx = self.ledger.record(
            conversation_id=conversation.id,
            direction=TransactionDirectionDB.OUT,
            stage=TransactionStageDB.ESCROW_RELEASE,
            amount_paise=escrow.amount_paise,
            now=now,
            sender_id=conversation.brand_owner_id,
            receiver_id=conversation.influencer_id,
            metadata={"escrow_hold_id": escrow.id},
        )
        escrow.status = EscrowStatusDB.RELEASED
        escrow.released_at = now
        escrow.release_transaction_id = release_tx.id
        self.db.flush()
        logger.info(f"Released escrow {escrow.id} ({escrow.amount_paise} paise) to {conversation.influencer_id}")
        return escrow

    def refund(self, conversation: Conversation, now: datetime, reason: Optional[str] = None) -> EscrowHold:
        """Return the held amount to the brand owner."""
        escrow = self.active_hold(conversation.id)
        if escrow is None:
            raise LedgerError("No active escrow hold to refund")

        refund_tx = self.ledger.record(
            conversation_id=conversation.id,
            direction=TransactionDirectionDB.OUT,
            stage=TransactionStageDB.REFUND,
            amount_paise=escrow.amount_paise,
            now=now,
            receiver_id=conversation.brand_owner_id,
            metadata={"escrow_hold_id": escrow.id, "reason": reason},
        )
        escrow.status = EscrowStatusDB.REFUNDED
        escrow.released_at = now
        escrow.release_transaction_id = refund_tx.id
        self.db.flush()
        logger.info(f"Refunded escrow {escrow.id} ({escrow.amount_paise} paise) to {conversation.brand_owner_id}")
        return escrow
