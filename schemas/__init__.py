# Schemas module for the Collaboration Platform
# Pydantic models for prompts, action payloads and engine results

from schemas.collaboration import (
    # Money
    PaymentBreakdown,
    PaymentBreakdownDisplay,
    PaymentOrder,

    # Prompts
    ActionPrompt,
    PromptButton,
    InputField,

    # Payloads
    EmptyPayload,
    ProjectDetailsPayload,
    PricePayload,
    OptionalPricePayload,
    WorkSubmissionPayload,
    RevisionPayload,
    FeedbackPayload,
    AdminProofPayload,
    RefundPayload,
    ForceClosePayload,

    # Results
    ErrorInfo,
    MessageResponse,
    ActionOutcome,
    TransactionResponse,
    EscrowHoldResponse,
    RequestResponse,
    ConversationSnapshot,
    EngineResult,
)

__all__ = [
    # Money
    "PaymentBreakdown",
    "PaymentBreakdownDisplay",
    "PaymentOrder",

    # Prompts
    "ActionPrompt",
    "PromptButton",
    "InputField",

    # Payloads
    "EmptyPayload",
    "ProjectDetailsPayload",
    "PricePayload",
    "OptionalPricePayload",
    "WorkSubmissionPayload",
    "RevisionPayload",
    "FeedbackPayload",
    "AdminProofPayload",
    "RefundPayload",
    "ForceClosePayload",

    # Results
    "ErrorInfo",
    "MessageResponse",
    "ActionOutcome",
    "TransactionResponse",
    "EscrowHoldResponse",
    "RequestResponse",
    "ConversationSnapshot",
    "EngineResult",
]
