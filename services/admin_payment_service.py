# Admin Payment Tracking
# Admin-managed flow: the brand owner pays the platform, an admin pays the
# influencer an advance when work starts and the remainder after approval

from dataclasses import dataclass
from sqlalchemy.orm import Session
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import logging

from database.collaboration_models import (
    AdminPaymentTracking,
    AdvancePaymentStatusDB,
    FinalPaymentStatusDB,
)
from schemas.collaboration import PaymentBreakdown
from services.errors import PreconditionFailedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminTrackingInfo:
    """What the flow engine needs to know about an admin-managed payout."""
    conversation_id: str
    advance_payment_status: AdvancePaymentStatusDB
    final_payment_status: FinalPaymentStatusDB
    total_amount_paise: int
    commission_amount_paise: int
    net_amount_paise: int
    advance_amount_paise: int
    final_amount_paise: int

    @property
    def awaiting_final(self) -> bool:
        return (
            self.advance_payment_status == AdvancePaymentStatusDB.ADMIN_CONFIRMED
            and self.final_payment_status == FinalPaymentStatusDB.PENDING
        )


class AdminTrackingLookup:
    """Answers whether a conversation is under admin-managed payment."""

    def lookup_admin_tracking(self, db: Session, conversation_id: str) -> Optional[AdminTrackingInfo]:
        raise NotImplementedError


class DatabaseAdminTrackingLookup(AdminTrackingLookup):

    def lookup_admin_tracking(self, db: Session, conversation_id: str) -> Optional[AdminTrackingInfo]:
        tracking = AdminPaymentService(db).get(conversation_id)
        if tracking is None:
            return None
        return AdminTrackingInfo(
            conversation_id=conversation_id,
            advance_payment_status=tracking.advance_payment_status,
            final_payment_status=tracking.final_payment_status,
            total_amount_paise=tracking.total_amount_paise,
            commission_amount_paise=tracking.commission_amount_paise,
            net_amount_paise=tracking.net_amount_paise,
            advance_amount_paise=tracking.advance_amount_paise,
            final_amount_paise=tracking.final_amount_paise,
        )


class AdminPaymentService:

    def __init__(self, db: Session):
        self.db = db

    def get(self, conversation_id: str) -> Optional[AdminPaymentTracking]:
        return self.db.query(AdminPaymentTracking).filter(
            AdminPaymentTracking.conversation_id == conversation_id
        ).first()

    def _require(self, conversation_id: str) -> AdminPaymentTracking:
        tracking = self.get(conversation_id)
        if tracking is None:
            raise PreconditionFailedError("No admin payment tracking exists for this conversation")
        return tracking

    @staticmethod
    def _add_proof(tracking: AdminPaymentTracking, stage: str, attachment_ids: List[str], now: datetime):
        if not attachment_ids:
            return
        tracking.proofs = list(tracking.proofs or []) + [{
            "stage": stage,
            "attachment_ids": list(attachment_ids),
            "at": now.isoformat(),
        }]

    def record_brand_payment(
        self,
        conversation_id: str,
        breakdown: PaymentBreakdown,
        now: datetime,
        proof_attachment_ids: Optional[List[str]] = None,
    ) -> AdminPaymentTracking:
        if self.get(conversation_id) is not None:
            raise PreconditionFailedError("Brand owner payment was already recorded")
        tracking = AdminPaymentTracking(
            conversation_id=conversation_id,
            total_amount_paise=breakdown.total_paise,
            commission_amount_paise=breakdown.commission_paise,
            net_amount_paise=breakdown.net_paise,
            advance_amount_paise=breakdown.advance_paise,
            final_amount_paise=breakdown.final_paise,
            commission_percentage=Decimal(breakdown.commission_percentage),
            advance_payment_status=AdvancePaymentStatusDB.ADMIN_RECEIVED,
            final_payment_status=FinalPaymentStatusDB.PENDING,
            proofs=[],
            brand_payment_received_at=now,
        )
        self._add_proof(tracking, "received", proof_attachment_ids or [], now)
        self.db.add(tracking)
        self.db.flush()
        logger.info(f"Admin received brand payment for conversation {conversation_id}")
        return tracking

    def confirm_advance(self, conversation_id: str, now: datetime,
                        proof_attachment_ids: Optional[List[str]] = None) -> AdminPaymentTracking:
        tracking = self._require(conversation_id)
        if tracking.advance_payment_status != AdvancePaymentStatusDB.ADMIN_RECEIVED:
            raise PreconditionFailedError(
                f"Advance cannot be released from status {tracking.advance_payment_status.value}"
            )
        tracking.advance_payment_status = AdvancePaymentStatusDB.ADMIN_CONFIRMED
        tracking.advance_confirmed_at = now
        self._add_proof(tracking, "advance", proof_attachment_ids or [], now)
        self.db.flush()
        return tracking

    def confirm_final(self, conversation_id: str, now: datetime,
                      proof_attachment_ids: Optional[List[str]] = None) -> AdminPaymentTracking:
        tracking = self._require(conversation_id)
        if tracking.final_payment_status != FinalPaymentStatusDB.PENDING:
            raise PreconditionFailedError(
                f"Final payment cannot be released from status {tracking.final_payment_status.value}"
            )
        tracking.final_payment_status = FinalPaymentStatusDB.ADMIN_CONFIRMED
        tracking.final_confirmed_at = now
        self._add_proof(tracking, "final", proof_attachment_ids or [], now)
        self.db.flush()
        return tracking

    def refund_final(self, conversation_id: str, now: datetime,
                     proof_attachment_ids: Optional[List[str]] = None) -> AdminPaymentTracking:
        tracking = self._require(conversation_id)
        if tracking.final_payment_status != FinalPaymentStatusDB.PENDING:
            raise PreconditionFailedError(
                f"Final payment cannot be refunded from status {tracking.final_payment_status.value}"
            )
        tracking.final_payment_status = FinalPaymentStatusDB.REFUNDED
        self._add_proof(tracking, "refund", proof_attachment_ids or [], now)
        self.db.flush()
        return tracking
