# Collaboration Flow Transition Table
# Declarative (state, action) lookup with branch conditions and guards

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel

from auth.roles import ActorRole, FlowAction
from config.app_config import ESCROW_AUTO_RELEASE_DAYS
from database.collaboration_models import (
    AwaitingRoleDB,
    ChatStatusDB,
    Conversation,
    FlowStateDB,
    TERMINAL_STATES,
)
from schemas.collaboration import (
    AdminProofPayload,
    EmptyPayload,
    FeedbackPayload,
    ForceClosePayload,
    OptionalPricePayload,
    PricePayload,
    ProjectDetailsPayload,
    RefundPayload,
    RevisionPayload,
    WorkSubmissionPayload,
)
from services.admin_payment_service import AdminTrackingInfo

S = FlowStateDB
A = FlowAction
R = ActorRole
W = AwaitingRoleDB

# States where free-form chat is open and money is in play
WORK_LOOP_STATES = frozenset({
    S.PAYMENT_COMPLETED,
    S.WORK_IN_PROGRESS,
    S.WORK_SUBMITTED,
    S.WORK_FINAL_REVIEW,
    S.ADMIN_FINAL_PAYMENT_PENDING,
})


def chat_status_for(state: FlowStateDB) -> ChatStatusDB:
    if state in TERMINAL_STATES:
        return ChatStatusDB.CLOSED
    if state in WORK_LOOP_STATES:
        return ChatStatusDB.REAL_TIME
    return ChatStatusDB.AUTOMATED


@dataclass
class GuardContext:
    """What branch conditions and guards may look at. No I/O happens here."""
    conversation: Conversation
    payload: BaseModel
    now: datetime
    admin_tracking: Optional[AdminTrackingInfo] = None


Condition = Callable[[GuardContext], bool]
Guard = Callable[[GuardContext], Optional[str]]


# =========================================================================
# BRANCH CONDITIONS
# =========================================================================

def final_submission(ctx: GuardContext) -> bool:
    conversation = ctx.conversation
    return conversation.revision_count >= conversation.max_revisions - 1


def admin_awaiting_final(ctx: GuardContext) -> bool:
    return ctx.admin_tracking is not None and ctx.admin_tracking.awaiting_final


# =========================================================================
# GUARDS (return an error message when the action may not proceed)
# =========================================================================

def revision_budget_left(ctx: GuardContext) -> Optional[str]:
    conversation = ctx.conversation
    if conversation.revision_count + 1 > conversation.max_revisions:
        return f"Revision limit of {conversation.max_revisions} reached"
    return None


def final_revision_reached(ctx: GuardContext) -> Optional[str]:
    if not final_submission(ctx):
        return "Final work can only be rejected once the last allowed revision is submitted"
    return None


def agreed_price_present(ctx: GuardContext) -> Optional[str]:
    if not (ctx.conversation.flow_data or {}).get("agreed_price"):
        return "No agreed price on this conversation"
    return None


def admin_advance_received(ctx: GuardContext) -> Optional[str]:
    if ctx.admin_tracking is None:
        return "Advance can only be released for admin-managed payments"
    return None


def no_pending_admin_final(ctx: GuardContext) -> Optional[str]:
    if ctx.admin_tracking is not None and not admin_awaiting_final(ctx):
        return "Admin-managed payment must have its advance confirmed before approval"
    return None


def submission_overdue(ctx: GuardContext) -> Optional[str]:
    submission = (ctx.conversation.flow_data or {}).get("work_submission") or {}
    submitted_at = submission.get("submitted_at")
    if not submitted_at:
        return "No work submission on record"
    if ctx.now - datetime.fromisoformat(submitted_at) < timedelta(days=ESCROW_AUTO_RELEASE_DAYS):
        return "Submission is still inside the review window"
    return None


# =========================================================================
# TABLE
# =========================================================================

@dataclass(frozen=True)
class Transition:
    """
    One edge of the flow. ``when`` selects between edges sharing
    (source, action); ``requires`` guards raise PreconditionFailed;
    ``effects`` name engine steps applied in order; ``message`` names the
    prompt builder for the message the edge writes.
    """
    source: FlowStateDB
    action: FlowAction
    actor: ActorRole
    target: FlowStateDB
    awaiting: Optional[AwaitingRoleDB]
    message: str
    payload: Type[BaseModel] = EmptyPayload
    effects: Tuple[str, ...] = ()
    history_event: Optional[str] = None
    when: Optional[Condition] = None
    requires: Tuple[Guard, ...] = ()

    @property
    def chat_status(self) -> ChatStatusDB:
        return chat_status_for(self.target)


def _t(source, action, actor, target, awaiting, message, **kwargs) -> Transition:
    return Transition(source, action, actor, target, awaiting, message, **kwargs)


_EDGES: List[Transition] = [
    # Connection
    _t(S.INFLUENCER_RESPONDING, A.ACCEPT_CONNECTION, R.INFLUENCER, S.BRAND_OWNER_DETAILS, W.BRAND_OWNER,
       "connection_accepted", effects=("mark_connection_accepted",)),
    _t(S.INFLUENCER_RESPONDING, A.REJECT_CONNECTION, R.INFLUENCER, S.PROJECT_REJECTED, None,
       "connection_rejected", effects=("reject_request",)),

    # Project details
    _t(S.BRAND_OWNER_DETAILS, A.SEND_PROJECT_DETAILS, R.BRAND_OWNER, S.INFLUENCER_REVIEWING, W.INFLUENCER,
       "project_details_sent", payload=ProjectDetailsPayload, effects=("store_project_details",)),
    _t(S.INFLUENCER_REVIEWING, A.ACCEPT_PROJECT_DETAILS, R.INFLUENCER, S.BRAND_OWNER_PRICING, W.BRAND_OWNER,
       "project_accepted"),
    _t(S.INFLUENCER_REVIEWING, A.REJECT_PROJECT_DETAILS, R.INFLUENCER, S.PROJECT_REJECTED, None,
       "project_rejected", effects=("reject_request",)),

    # Pricing
    _t(S.BRAND_OWNER_PRICING, A.SEND_PRICE_OFFER, R.BRAND_OWNER, S.INFLUENCER_PRICE_RESPONSE, W.INFLUENCER,
       "price_offered", payload=PricePayload, effects=("store_price_offer",), history_event="price_offered"),
    _t(S.INFLUENCER_PRICE_RESPONSE, A.ACCEPT_PRICE, R.INFLUENCER, S.PAYMENT_PENDING, W.BRAND_OWNER,
       "price_accepted", payload=OptionalPricePayload, effects=("agree_offered_price",), history_event="price_accepted"),
    _t(S.INFLUENCER_PRICE_RESPONSE, A.REJECT_PRICE, R.INFLUENCER, S.PRICE_REJECTED, None,
       "price_rejected", effects=("reject_request",), history_event="price_rejected"),
    _t(S.INFLUENCER_PRICE_RESPONSE, A.NEGOTIATE_PRICE, R.INFLUENCER, S.BRAND_OWNER_NEGOTIATION, W.BRAND_OWNER,
       "negotiation_requested", history_event="negotiation_requested"),

    # Negotiation
    _t(S.BRAND_OWNER_NEGOTIATION, A.ACCEPT_NEGOTIATION, R.BRAND_OWNER, S.INFLUENCER_NEGOTIATION_INPUT, W.INFLUENCER,
       "negotiation_accepted", history_event="negotiation_accepted"),
    _t(S.BRAND_OWNER_NEGOTIATION, A.REJECT_NEGOTIATION, R.BRAND_OWNER, S.INFLUENCER_PRICE_RESPONSE, W.INFLUENCER,
       "negotiation_rejected", history_event="negotiation_rejected"),
    _t(S.INFLUENCER_NEGOTIATION_INPUT, A.SEND_NEGOTIATED_PRICE, R.INFLUENCER, S.BRAND_OWNER_NEGOTIATION_REVIEW, W.BRAND_OWNER,
       "negotiated_price_sent", payload=PricePayload, effects=("store_negotiated_price",),
       history_event="negotiated_price_submitted"),
    _t(S.BRAND_OWNER_NEGOTIATION_REVIEW, A.ACCEPT_NEGOTIATED_PRICE, R.BRAND_OWNER, S.PAYMENT_PENDING, W.BRAND_OWNER,
       "negotiated_price_accepted", payload=OptionalPricePayload, effects=("agree_negotiated_price",),
       history_event="negotiated_price_accepted"),
    _t(S.BRAND_OWNER_NEGOTIATION_REVIEW, A.REJECT_NEGOTIATED_PRICE, R.BRAND_OWNER, S.INFLUENCER_NEGOTIATION_INPUT, W.INFLUENCER,
       "negotiated_price_rejected", history_event="negotiated_price_rejected"),

    # Payment
    _t(S.PAYMENT_PENDING, A.PROCEED_TO_PAYMENT, R.BRAND_OWNER, S.PAYMENT_PENDING, W.BRAND_OWNER,
       "payment_order_created", effects=("create_payment_order",), requires=(agreed_price_present,)),
    _t(S.PAYMENT_PENDING, A.RECEIVE_BRAND_OWNER_PAYMENT, R.ADMIN, S.PAYMENT_COMPLETED, W.ADMIN,
       "brand_payment_received", payload=AdminProofPayload, effects=("record_brand_payment",),
       requires=(agreed_price_present,)),
    _t(S.PAYMENT_COMPLETED, A.RELEASE_ADVANCE, R.ADMIN, S.WORK_IN_PROGRESS, W.INFLUENCER,
       "advance_released", payload=AdminProofPayload, effects=("release_advance", "mark_work_started"),
       requires=(admin_advance_received,)),

    # Work loop
    _t(S.PAYMENT_COMPLETED, A.START_WORK, R.INFLUENCER, S.WORK_IN_PROGRESS, W.INFLUENCER,
       "work_started", effects=("mark_work_started",)),
    _t(S.WORK_SUBMITTED, A.REQUEST_REVISION, R.BRAND_OWNER, S.WORK_IN_PROGRESS, W.INFLUENCER,
       "revision_requested", payload=RevisionPayload, effects=("record_revision_request",),
       requires=(revision_budget_left,)),
    _t(S.WORK_SUBMITTED, A.REJECT_FINAL_WORK, R.BRAND_OWNER, S.WORK_REJECTED, None,
       "final_work_rejected", payload=FeedbackPayload, effects=("reject_request", "record_review_feedback"),
       requires=(final_revision_reached,)),
    _t(S.WORK_FINAL_REVIEW, A.REJECT_FINAL_WORK, R.BRAND_OWNER, S.WORK_REJECTED, None,
       "final_work_rejected", payload=FeedbackPayload, effects=("reject_request", "record_review_feedback"),
       requires=(final_revision_reached,)),

    # Admin final disbursement
    _t(S.ADMIN_FINAL_PAYMENT_PENDING, A.RELEASE_FINAL, R.ADMIN, S.ADMIN_FINAL_PAYMENT_COMPLETE, None,
       "final_released", payload=AdminProofPayload, effects=("release_final", "complete_request")),
    _t(S.ADMIN_FINAL_PAYMENT_PENDING, A.REFUND_FINAL, R.ADMIN, S.CLOSED, None,
       "final_refunded", payload=RefundPayload, effects=("refund_admin_final", "mark_closed")),
    _t(S.WORK_REJECTED, A.REFUND_FINAL, R.ADMIN, S.CLOSED, None,
       "final_refunded", payload=RefundPayload, effects=("refund_admin_final", "mark_closed"),
       when=admin_awaiting_final),
    _t(S.WORK_REJECTED, A.REFUND_FINAL, R.ADMIN, S.CLOSED, None,
       "escrow_refunded", payload=RefundPayload, effects=("refund_escrow", "mark_closed")),
]

# Submission branches: the last allowed revision goes to final review
for _action in (A.SUBMIT_WORK, A.RESUBMIT_WORK):
    _EDGES.append(_t(S.WORK_IN_PROGRESS, _action, R.INFLUENCER, S.WORK_FINAL_REVIEW, W.BRAND_OWNER,
                     "work_submitted", payload=WorkSubmissionPayload, effects=("store_work_submission",),
                     when=final_submission))
    _EDGES.append(_t(S.WORK_IN_PROGRESS, _action, R.INFLUENCER, S.WORK_SUBMITTED, W.BRAND_OWNER,
                     "work_submitted", payload=WorkSubmissionPayload, effects=("store_work_submission",)))

# Approval branches: admin-managed payouts wait for the final disbursement
for _source in (S.WORK_SUBMITTED, S.WORK_FINAL_REVIEW):
    for _action, _actor in ((A.APPROVE_WORK, R.BRAND_OWNER), (A.AUTO_APPROVE_WORK, R.SYSTEM)):
        _requires = (submission_overdue,) if _actor == R.SYSTEM else ()
        _EDGES.append(_t(_source, _action, _actor, S.ADMIN_FINAL_PAYMENT_PENDING, W.ADMIN,
                         "work_approved_admin", payload=FeedbackPayload,
                         effects=("record_review_feedback", "mark_approved"),
                         when=admin_awaiting_final, requires=_requires))
        _EDGES.append(_t(_source, _action, _actor, S.WORK_APPROVED, None,
                         "work_approved", payload=FeedbackPayload,
                         effects=("record_review_feedback", "mark_approved", "release_escrow", "complete_request"),
                         requires=_requires + (no_pending_admin_final,)))

# Admin override from every open state
for _source in FlowStateDB:
    if _source not in TERMINAL_STATES:
        _EDGES.append(_t(_source, A.FORCE_CLOSE, R.ADMIN, S.CLOSED, None,
                         "force_closed", payload=ForceClosePayload, effects=("force_close", "mark_closed")))


TRANSITIONS: Dict[Tuple[FlowStateDB, FlowAction], List[Transition]] = {}
for _edge in _EDGES:
    TRANSITIONS.setdefault((_edge.source, _edge.action), []).append(_edge)


def candidates(state: FlowStateDB, action: FlowAction) -> List[Transition]:
    return TRANSITIONS.get((state, action), [])


def resolve(state: FlowStateDB, action: FlowAction, ctx: GuardContext) -> Optional[Transition]:
    """First edge for (state, action) whose branch condition holds."""
    for edge in candidates(state, action):
        if edge.when is None or edge.when(ctx):
            return edge
    return None


def actions_available(state: FlowStateDB, role: ActorRole) -> List[FlowAction]:
    """Actions a role may take from a state, in table order."""
    seen = []
    for (source, action), edges in TRANSITIONS.items():
        if source == state and any(e.actor == role for e in edges) and action not in seen:
            seen.append(action)
    return seen
