# Pydantic Schemas for Collaboration Conversations
# Action prompts, action payloads, money breakdowns and engine results

from pydantic import BaseModel, Field, validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum

from database.collaboration_models import (
    FlowStateDB,
    AwaitingRoleDB,
    ChatStatusDB,
    MessageTypeDB,
    RequestStatusDB,
    TransactionDirectionDB,
    TransactionStageDB,
    TransactionStatusDB,
    EscrowStatusDB,
)


# ============================================================================
# ENUMS
# ============================================================================

class VisibleTo(str, Enum):
    BRAND_OWNER = "brand_owner"
    INFLUENCER = "influencer"
    ADMIN = "admin"
    BOTH = "both"


class ButtonStyle(str, Enum):
    SUCCESS = "success"
    DANGER = "danger"
    WARNING = "warning"
    PRIMARY = "primary"
    SECONDARY = "secondary"


# ============================================================================
# MONEY
# ============================================================================

class PaymentBreakdownDisplay(BaseModel):
    total: str
    commission: str
    net: str
    advance: str
    final: str


class PaymentBreakdown(BaseModel):
    """Paise amounts are authoritative; display mirrors them as formatted strings."""
    total_paise: int
    commission_paise: int
    net_paise: int
    advance_paise: int
    final_paise: int
    commission_percentage: str  # e.g. "10.00"
    advance_percentage: int
    currency: str = "INR"
    display: PaymentBreakdownDisplay


class PaymentOrder(BaseModel):
    order_id: str
    amount_paise: int
    currency: str
    receipt: str


# ============================================================================
# ACTION PROMPTS
# ============================================================================

class PromptButton(BaseModel):
    id: str
    text: str
    style: ButtonStyle = ButtonStyle.PRIMARY
    action: str
    data: Optional[Dict[str, Any]] = None


class InputField(BaseModel):
    id: str
    type: str  # text, textarea, number
    placeholder: str
    required: bool = True
    min: Optional[int] = None
    maxLength: Optional[int] = None


class ActionPrompt(BaseModel):
    """Structured instruction telling one side what it can do next."""
    title: str
    subtitle: Optional[str] = None
    visible_to: VisibleTo
    flow_state: FlowStateDB
    message_type: str
    buttons: List[PromptButton] = []
    input_field: Optional[InputField] = None
    payment_breakdown: Optional[PaymentBreakdown] = None
    payment_order: Optional[PaymentOrder] = None
    auto_trigger: Optional[bool] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ============================================================================
# ACTION PAYLOADS
# ============================================================================

class EmptyPayload(BaseModel):
    pass


class ProjectDetailsPayload(BaseModel):
    project_details: str = Field(..., min_length=1, max_length=1000)

    @validator('project_details')
    def validate_project_details(cls, v):
        if not v.strip():
            raise ValueError('project_details must not be blank')
        return v.strip()


class PricePayload(BaseModel):
    price: Decimal

    @validator('price')
    def validate_price(cls, v):
        if not v.is_finite() or v <= 0:
            raise ValueError('price must be a positive amount')
        return v


class OptionalPricePayload(BaseModel):
    price: Optional[Decimal] = None

    @validator('price')
    def validate_price(cls, v):
        if v is not None and (not v.is_finite() or v <= 0):
            raise ValueError('price must be a positive amount')
        return v


class WorkSubmissionPayload(BaseModel):
    deliverables: str = Field(..., min_length=1, max_length=5000)
    description: Optional[str] = Field(None, max_length=5000)
    notes: Optional[str] = Field(None, max_length=2000)
    attachment_ids: List[str] = []

    @validator('deliverables')
    def validate_deliverables(cls, v):
        if not v.strip():
            raise ValueError('deliverables must not be blank')
        return v


class RevisionPayload(BaseModel):
    feedback: str = Field(..., min_length=1, max_length=2000)


class FeedbackPayload(BaseModel):
    feedback: Optional[str] = Field(None, max_length=2000)


class AdminProofPayload(BaseModel):
    proof_attachment_ids: List[str] = []
    reference: Optional[str] = Field(None, max_length=255)
    note: Optional[str] = Field(None, max_length=1000)


class RefundPayload(AdminProofPayload):
    reason: Optional[str] = Field(None, max_length=1000)


class ForceClosePayload(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
    refund: bool = False


# ============================================================================
# RESULTS AND SNAPSHOTS
# ============================================================================

class ErrorInfo(BaseModel):
    kind: str
    subkind: Optional[str] = None
    message: str


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: Optional[str] = None
    message: str
    message_type: MessageTypeDB
    action_required: bool = False
    action_data: Optional[Dict[str, Any]] = None
    attachments: List[str] = []
    seq: int
    is_read: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class ActionOutcome(BaseModel):
    conversation_id: str
    state: FlowStateDB
    awaiting_role: Optional[AwaitingRoleDB] = None
    chat_status: ChatStatusDB
    message: Optional[MessageResponse] = None
    messages: List[MessageResponse] = []
    current_action_data: Optional[Dict[str, Any]] = None
    is_existing: bool = False


class TransactionResponse(BaseModel):
    id: str
    conversation_id: str
    direction: TransactionDirectionDB
    stage: TransactionStageDB
    amount_paise: int
    fee_paise: int = 0
    status: TransactionStatusDB
    sender_id: Optional[str] = None
    receiver_id: Optional[str] = None
    external_ref: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class EscrowHoldResponse(BaseModel):
    id: str
    conversation_id: str
    transaction_id: str
    amount_paise: int
    status: EscrowStatusDB
    released_at: Optional[datetime] = None
    release_transaction_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RequestResponse(BaseModel):
    id: str
    bid_id: Optional[str] = None
    campaign_id: Optional[str] = None
    influencer_id: str
    proposed_amount: int = 0
    final_agreed_amount: Optional[int] = None
    status: RequestStatusDB

    class Config:
        from_attributes = True


class ConversationSnapshot(BaseModel):
    """Everything a client needs to rebuild its view of a conversation."""
    id: str
    brand_owner_id: str
    influencer_id: str
    bid_id: Optional[str] = None
    campaign_id: Optional[str] = None
    request_id: Optional[str] = None
    flow_state: FlowStateDB
    awaiting_role: Optional[AwaitingRoleDB] = None
    chat_status: ChatStatusDB
    flow_data: Dict[str, Any] = {}
    negotiation_history: List[Dict[str, Any]] = []
    revision_count: int
    max_revisions: int
    revision_history: List[Dict[str, Any]] = []
    current_action_data: Optional[Dict[str, Any]] = None
    payment_breakdown: Optional[PaymentBreakdown] = None
    ledger_balance_paise: int = 0
    messages: List[MessageResponse] = []
    transactions: List[TransactionResponse] = []
    escrow_holds: List[EscrowHoldResponse] = []
    request: Optional[RequestResponse] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EngineResult(BaseModel):
    """Discriminated result returned by every engine operation."""
    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data=None) -> "EngineResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: str, message: str, subkind: Optional[str] = None) -> "EngineResult":
        return cls(success=False, error=ErrorInfo(kind=kind, subkind=subkind, message=message))
