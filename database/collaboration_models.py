# Database Models for Collaboration Conversations
# The conversation aggregate, its message log, the money ledger and escrow
# Import these in addition to the parties in database/models.py

from sqlalchemy import Column, String, Integer, BigInteger, DateTime, ForeignKey, Text, JSON, Enum, Boolean, Numeric, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

# Use the same Base from existing models
from database.models import Base, generate_uuid


# ============================================================================
# ENUMS
# ============================================================================

class FlowStateDB(str, enum.Enum):
    INFLUENCER_RESPONDING = "influencer_responding"
    BRAND_OWNER_DETAILS = "brand_owner_details"
    INFLUENCER_REVIEWING = "influencer_reviewing"
    BRAND_OWNER_PRICING = "brand_owner_pricing"
    INFLUENCER_PRICE_RESPONSE = "influencer_price_response"
    BRAND_OWNER_NEGOTIATION = "brand_owner_negotiation"
    INFLUENCER_NEGOTIATION_INPUT = "influencer_negotiation_input"
    BRAND_OWNER_NEGOTIATION_REVIEW = "brand_owner_negotiation_review"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_COMPLETED = "payment_completed"
    WORK_IN_PROGRESS = "work_in_progress"
    WORK_SUBMITTED = "work_submitted"
    WORK_FINAL_REVIEW = "work_final_review"
    ADMIN_FINAL_PAYMENT_PENDING = "admin_final_payment_pending"
    ADMIN_FINAL_PAYMENT_COMPLETE = "admin_final_payment_complete"
    WORK_APPROVED = "work_approved"
    WORK_REJECTED = "work_rejected"
    PRICE_REJECTED = "price_rejected"
    PROJECT_REJECTED = "project_rejected"
    CLOSED = "closed"


TERMINAL_STATES = frozenset({
    FlowStateDB.ADMIN_FINAL_PAYMENT_COMPLETE,
    FlowStateDB.WORK_APPROVED,
    FlowStateDB.WORK_REJECTED,
    FlowStateDB.PRICE_REJECTED,
    FlowStateDB.PROJECT_REJECTED,
    FlowStateDB.CLOSED,
})


class AwaitingRoleDB(str, enum.Enum):
    BRAND_OWNER = "brand_owner"
    INFLUENCER = "influencer"
    ADMIN = "admin"


class ChatStatusDB(str, enum.Enum):
    AUTOMATED = "automated"
    REAL_TIME = "real_time"
    CLOSED = "closed"


class MessageTypeDB(str, enum.Enum):
    AUTOMATED = "automated"
    USER = "user"
    SYSTEM_PAYMENT_UPDATE = "system_payment_update"


class RequestStatusDB(str, enum.Enum):
    CONNECTED = "connected"
    NEGOTIATING = "negotiating"
    FINALIZED = "finalized"
    PAID = "paid"
    WORK_SUBMITTED = "work_submitted"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class TransactionDirectionDB(str, enum.Enum):
    IN = "in"
    OUT = "out"


class TransactionStageDB(str, enum.Enum):
    ORDER_CREATED = "order_created"
    VERIFIED = "verified"
    ESCROW_HOLD = "escrow_hold"
    ESCROW_RELEASE = "escrow_release"
    ADVANCE = "advance"
    FINAL = "final"
    REFUND = "refund"
    RECEIVED = "received"


class TransactionStatusDB(str, enum.Enum):
    CREATED = "created"
    HELD = "held"
    COMPLETED = "completed"


class EscrowStatusDB(str, enum.Enum):
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class AdvancePaymentStatusDB(str, enum.Enum):
    PENDING = "pending"
    ADMIN_RECEIVED = "admin_received"
    ADMIN_CONFIRMED = "admin_confirmed"


class FinalPaymentStatusDB(str, enum.Enum):
    PENDING = "pending"
    ADMIN_CONFIRMED = "admin_confirmed"
    REFUNDED = "refunded"


# ============================================================================
# CONVERSATION
# ============================================================================

class Conversation(Base):
    """One brand owner / influencer collaboration driven by the flow engine."""
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("bid_id", "brand_owner_id", "influencer_id", name="uq_conversation_bid_parties"),
        UniqueConstraint("campaign_id", "brand_owner_id", "influencer_id", name="uq_conversation_campaign_parties"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    brand_owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    influencer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    bid_id = Column(String(36), ForeignKey("bids.id"), nullable=True)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), nullable=True)
    request_id = Column(String(36), ForeignKey("requests.id"), nullable=True)

    flow_state = Column(Enum(FlowStateDB, values_callable=lambda x: [e.value for e in x], name="flowstatedb"), nullable=False, default=FlowStateDB.INFLUENCER_RESPONDING)
    awaiting_role = Column(Enum(AwaitingRoleDB, values_callable=lambda x: [e.value for e in x], name="awaitingroledb"), nullable=True)
    chat_status = Column(Enum(ChatStatusDB, values_callable=lambda x: [e.value for e in x], name="chatstatusdb"), nullable=False, default=ChatStatusDB.AUTOMATED)

    flow_data = Column(JSON, default=dict)  # Prices stored in paise
    negotiation_history = Column(JSON, default=list)
    revision_count = Column(Integer, nullable=False, default=0)
    max_revisions = Column(Integer, nullable=False, default=3)
    revision_history = Column(JSON, default=list)
    current_action_data = Column(JSON)  # Last prompt published to clients

    message_seq = Column(Integer, nullable=False, default=0)  # Last assigned Message.seq

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    messages = relationship("Message", back_populates="conversation", order_by="Message.seq")
    request = relationship("Request", foreign_keys=[request_id])
    escrow_holds = relationship("EscrowHold", back_populates="conversation")

    @property
    def is_terminal(self) -> bool:
        return self.flow_state in TERMINAL_STATES

    def counterparty_of(self, user_id: str):
        if user_id == self.brand_owner_id:
            return self.influencer_id
        if user_id == self.influencer_id:
            return self.brand_owner_id
        return None


class Message(Base):
    """Append-only conversation message. Only the read markers change after insert."""
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_order", "conversation_id", "created_at", "seq"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(36), nullable=False)
    receiver_id = Column(String(36), nullable=True)  # NULL for broadcast

    message = Column(Text, nullable=False)
    message_type = Column(Enum(MessageTypeDB, values_callable=lambda x: [e.value for e in x], name="messagetypedb"), nullable=False, default=MessageTypeDB.AUTOMATED)
    action_required = Column(Boolean, default=False)
    action_data = Column(JSON)
    attachments = Column(JSON, default=list)
    seq = Column(Integer, nullable=False, default=0)

    # Delivery side record
    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    conversation = relationship("Conversation", back_populates="messages")


# ============================================================================
# REQUEST
# ============================================================================

class Request(Base):
    """Pairs an influencer with a bid or campaign and carries the amounts."""
    __tablename__ = "requests"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    bid_id = Column(String(36), ForeignKey("bids.id"), nullable=True)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), nullable=True)
    influencer_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    proposed_amount = Column(BigInteger, default=0)  # In paise
    final_agreed_amount = Column(BigInteger)  # In paise
    status = Column(Enum(RequestStatusDB, values_callable=lambda x: [e.value for e in x], name="requeststatusdb"), default=RequestStatusDB.CONNECTED)

    completed_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ============================================================================
# LEDGER
# ============================================================================

class Transaction(Base):
    """Immutable ledger row for one monetary movement of a conversation."""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    conversation_id = Column(String(36), nullable=False, index=True)  # Referenced, not owned

    direction = Column(Enum(TransactionDirectionDB, values_callable=lambda x: [e.value for e in x], name="transactiondirectiondb"), nullable=False)
    stage = Column(Enum(TransactionStageDB, values_callable=lambda x: [e.value for e in x], name="transactionstagedb"), nullable=False)
    amount_paise = Column(BigInteger, nullable=False)
    fee_paise = Column(BigInteger, default=0)  # Commission withheld
    status = Column(Enum(TransactionStatusDB, values_callable=lambda x: [e.value for e in x], name="transactionstatusdb"), nullable=False, default=TransactionStatusDB.COMPLETED)

    sender_id = Column(String(36))
    receiver_id = Column(String(36))
    external_ref = Column(String(255), index=True)  # Gateway order id, admin reference
    metadata_json = Column(JSON)

    created_at = Column(DateTime, nullable=False, server_default=func.now())


# ============================================================================
# ESCROW
# ============================================================================

class EscrowHold(Base):
    """Funds retained for a conversation until approval or refund."""
    __tablename__ = "escrow_holds"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, index=True)
    transaction_id = Column(String(36), ForeignKey("transactions.id"), nullable=False)

    amount_paise = Column(BigInteger, nullable=False)
    status = Column(Enum(EscrowStatusDB, values_callable=lambda x: [e.value for e in x], name="escrowstatusdb"), nullable=False, default=EscrowStatusDB.HELD)

    released_at = Column(DateTime)
    release_transaction_id = Column(String(36), ForeignKey("transactions.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    conversation = relationship("Conversation", back_populates="escrow_holds")


# ============================================================================
# COMMISSION AND ADMIN PAYMENT TRACKING
# ============================================================================

class CommissionSetting(Base):
    __tablename__ = "commission_settings"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    percentage = Column(Numeric(5, 2), nullable=False)
    is_active = Column(Boolean, default=True)
    effective_from = Column(DateTime, nullable=False, server_default=func.now())
    created_by = Column(String(36))
    created_at = Column(DateTime, server_default=func.now())


class AdminPaymentTracking(Base):
    """Admin-managed payout record: brand pays the platform, admin disburses in two parts."""
    __tablename__ = "admin_payment_tracking"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), unique=True, nullable=False)

    total_amount_paise = Column(BigInteger, nullable=False)
    commission_amount_paise = Column(BigInteger, nullable=False)
    net_amount_paise = Column(BigInteger, nullable=False)
    advance_amount_paise = Column(BigInteger, nullable=False)
    final_amount_paise = Column(BigInteger, nullable=False)
    commission_percentage = Column(Numeric(5, 2), nullable=False)

    advance_payment_status = Column(Enum(AdvancePaymentStatusDB, values_callable=lambda x: [e.value for e in x], name="advancepaymentstatusdb"), default=AdvancePaymentStatusDB.PENDING)
    final_payment_status = Column(Enum(FinalPaymentStatusDB, values_callable=lambda x: [e.value for e in x], name="finalpaymentstatusdb"), default=FinalPaymentStatusDB.PENDING)
    proofs = Column(JSON, default=list)  # [{stage, attachment_ids, at}]

    brand_payment_received_at = Column(DateTime)
    advance_confirmed_at = Column(DateTime)
    final_confirmed_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ============================================================================
# WALLET
# ============================================================================

class Wallet(Base):
    """Per-user balance projection of the ledger."""
    __tablename__ = "wallets"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    balance = Column(BigInteger, default=0)  # In paise
    hold_balance = Column(BigInteger, default=0)  # Amount in escrow
    total_earned = Column(BigInteger, default=0)  # Lifetime earnings (influencers)
    total_spent = Column(BigInteger, default=0)   # Lifetime spending (brand owners)
    currency = Column(String(3), default="INR")

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ============================================================================
# NOTIFICATIONS
# ============================================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(String(50), nullable=False)  # flow_state_changed, payment_received, etc.
    title = Column(String(200), nullable=False)
    message = Column(Text)
    data = Column(JSON)  # conversation_id, flow_state, etc.

    read = Column(Boolean, default=False)
    read_at = Column(DateTime)

    created_at = Column(DateTime, server_default=func.now())
