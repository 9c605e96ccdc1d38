# Transaction Ledger
# Append-only record of every monetary movement linked to a conversation

from sqlalchemy import func, case
from sqlalchemy.orm import Session
from typing import Optional, List, Dict, Any
from datetime import datetime
import logging

from database.collaboration_models import (
    Transaction,
    TransactionDirectionDB,
    TransactionStageDB,
    TransactionStatusDB,
)
from services.errors import LedgerError

logger = logging.getLogger(__name__)


class LedgerService:
    """Writes ledger rows. Rows are never updated or deleted."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        conversation_id: str,
        direction: TransactionDirectionDB,
        stage: TransactionStageDB,
        amount_paise: int,
        now: datetime,
        status: TransactionStatusDB = TransactionStatusDB.COMPLETED,
        sender_id: Optional[str] = None,
        receiver_id: Optional[str] = None,
        external_ref: Optional[str] = None,
        fee_paise: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        if not isinstance(amount_paise, int) or isinstance(amount_paise, bool) or amount_paise <= 0:
            raise LedgerError(f"Ledger amount must be a positive paise integer, got {amount_paise!r}")
        if fee_paise < 0:
            raise LedgerError("Ledger fee cannot be negative")

        transaction = Transaction(
            conversation_id=conversation_id,
            direction=direction,
            stage=stage,
            amount_paise=amount_paise,
            fee_paise=fee_paise,
            status=status,
            sender_id=sender_id,
            receiver_id=receiver_id,
            external_ref=external_ref,
            metadata_json=metadata or {},
            created_at=now,
        )
        self.db.add(transaction)
        self.db.flush()
        logger.info(
            f"Ledger {stage.value} {direction.value} {amount_paise} paise "
            f"({status.value}) for conversation {conversation_id}"
        )
        return transaction

    def entries(self, conversation_id: str) -> List[Transaction]:
        return self.db.query(Transaction).filter(
            Transaction.conversation_id == conversation_id
        ).order_by(Transaction.created_at, Transaction.id).all()

    def balance(self, conversation_id: str) -> int:
        """Sum of completed in rows minus completed out rows, in paise."""
        signed = case(
            (Transaction.direction == TransactionDirectionDB.IN, Transaction.amount_paise),
            else_=-Transaction.amount_paise,
        )
        total = self.db.query(func.coalesce(func.sum(signed), 0)).filter(
            Transaction.conversation_id == conversation_id,
            Transaction.status == TransactionStatusDB.COMPLETED
        ).scalar()
        return int(total or 0)

    def find_order(self, order_id: str) -> Optional[Transaction]:
        return self.db.query(Transaction).filter(
            Transaction.stage == TransactionStageDB.ORDER_CREATED,
            Transaction.external_ref == order_id
        ).order_by(Transaction.created_at.desc()).first()

    def find_verified(self, conversation_id: str, order_id: str) -> Optional[Transaction]:
        return self.db.query(Transaction).filter(
            Transaction.conversation_id == conversation_id,
            Transaction.stage == TransactionStageDB.VERIFIED,
            Transaction.external_ref == order_id
        ).first()

    def find_late_capture(self, conversation_id: str, order_id: str, payment_id: str) -> Optional[Transaction]:
        """Refund-required row for a payment captured after the conversation moved on."""
        rows = self.db.query(Transaction).filter(
            Transaction.conversation_id == conversation_id,
            Transaction.stage == TransactionStageDB.RECEIVED,
            Transaction.status == TransactionStatusDB.CREATED,
            Transaction.external_ref == order_id
        ).all()
        for row in rows:
            if (row.metadata_json or {}).get("payment_id") == payment_id:
                return row
        return None

    def count_stage(self, conversation_id: str, stage: TransactionStageDB) -> int:
        return self.db.query(Transaction).filter(
            Transaction.conversation_id == conversation_id,
            Transaction.stage == stage
        ).count()
