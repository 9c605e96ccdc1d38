# Collaboration Flow Engine
# Drives a brand owner / influencer conversation through negotiation,
# escrowed payment, work review and payout

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import logging

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth.roles import (
    ActorRole,
    FlowAction,
    OVERRIDE_ACTIONS,
    can_perform,
    is_counterparty_action,
    parse_action,
    parse_role,
)
from config import app_config
from core.event_channel import EventChannel, build_event_channel
from core.razorpay_service import PaymentGatewayError, RazorpayService
from database.collaboration_models import (
    AwaitingRoleDB,
    Conversation,
    EscrowHold,
    FlowStateDB,
    Message,
    MessageTypeDB,
    Request,
    RequestStatusDB,
    TransactionDirectionDB,
    TransactionStageDB,
    TransactionStatusDB,
)
from database.config import get_db_context
from database.models import Bid, Campaign, User, UserType
from schemas.collaboration import (
    ActionOutcome,
    ConversationSnapshot,
    EngineResult,
    EscrowHoldResponse,
    MessageResponse,
    PaymentBreakdown,
    PaymentOrder,
    RequestResponse,
    TransactionResponse,
)
from services import prompts, transitions
from services.admin_payment_service import AdminPaymentService, AdminTrackingLookup, DatabaseAdminTrackingLookup
from services.errors import (
    CollaborationError,
    ErrorKind,
    ExternalUnavailableError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    PreconditionFailedError,
    SignatureInvalidError,
    UnauthorizedError,
)
from services.escrow_service import EscrowService
from services.event_emitter import EventEmitter, PendingEvent
from services.ledger_service import LedgerService
from services.locks import KeyedLocks
from services.message_log import MessageLog
from services.money import CommissionService, rupees_to_paise
from services.notification_service import PushNotifier
from services.rate_limiter import RateLimiter, build_rate_limiter
from services.wallet_service import WalletMovement, WalletService

logger = logging.getLogger(__name__)


@dataclass
class SideEffects:
    """Everything that happens after commit, in order."""
    events: List[PendingEvent] = field(default_factory=list)
    notifications: List[Dict[str, Any]] = field(default_factory=list)
    wallet_movements: List[WalletMovement] = field(default_factory=list)


@dataclass
class Step:
    """State shared by the effect steps of one accepted action."""
    db: Session
    conversation: Conversation
    actor: ActorRole
    action: FlowAction
    payload: BaseModel
    now: datetime
    prompt: prompts.PromptContext
    side_effects: SideEffects
    history_price: Optional[int] = None
    attachments: List[str] = field(default_factory=list)

    @property
    def flow_data(self) -> dict:
        return self.conversation.flow_data or {}


def _epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def _set_flow_data(conversation: Conversation, **values) -> None:
    conversation.flow_data = {**(conversation.flow_data or {}), **values}


class CollaborationFlowEngine:
    """
    The only surface callers use. Every operation returns an EngineResult;
    domain errors never escape as exceptions.
    """

    def __init__(
        self,
        session_factory=None,
        gateway: Optional[RazorpayService] = None,
        event_channel: Optional[EventChannel] = None,
        notifier: Optional[PushNotifier] = None,
        wallets: Optional[WalletService] = None,
        admin_tracking: Optional[AdminTrackingLookup] = None,
        rate_limiter: Optional[RateLimiter] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Optional[Callable[[], datetime]] = None,
        system_user_id: str = app_config.SYSTEM_USER_ID,
    ):
        if session_factory is None:
            from database.config import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.gateway = gateway or RazorpayService()
        self.events = EventEmitter(event_channel or build_event_channel(app_config.REDIS_URL))
        self.notifier = notifier or PushNotifier(session_factory)
        self.wallets = wallets or WalletService(session_factory)
        self.admin_tracking = admin_tracking or DatabaseAdminTrackingLookup()
        self.rate_limiter = rate_limiter or build_rate_limiter(
            app_config.CHAT_RATE_LIMIT_PER_MINUTE, app_config.REDIS_URL
        )
        self.locks = locks or KeyedLocks()
        self.clock = clock or datetime.utcnow
        self.system_user_id = system_user_id

    # =========================================================================
    # BOUNDARY
    # =========================================================================

    def initialize_bid(self, bid_id: str, influencer_id: str, proposed_amount) -> EngineResult:
        return self._run("initialize_bid", lambda: self._initialize_bid(bid_id, influencer_id, proposed_amount))

    def initialize_campaign(self, campaign_id: str, influencer_id: str) -> EngineResult:
        return self._run("initialize_campaign", lambda: self._initialize_campaign(campaign_id, influencer_id))

    def handle_action(self, conversation_id: str, actor_role, action, payload: Optional[dict] = None) -> EngineResult:
        return self._run(
            "handle_action",
            lambda: self._handle_action(conversation_id, actor_role, action, payload if payload is not None else {}),
        )

    def verify_payment(self, order_id: str, payment_id: str, signature: str) -> EngineResult:
        return self._run("verify_payment", lambda: self._verify_payment(order_id, payment_id, signature))

    def get_context(self, conversation_id: str) -> EngineResult:
        return self._run("get_context", lambda: self._get_context(conversation_id))

    def send_message(self, conversation_id: str, sender_id: str, text: Optional[str],
                     attachments: Optional[List[str]] = None) -> EngineResult:
        return self._run("send_message", lambda: self._send_message(conversation_id, sender_id, text, attachments))

    def mark_read(self, conversation_id: str, user_id: str) -> EngineResult:
        return self._run("mark_read", lambda: self._mark_read(conversation_id, user_id))

    def run_auto_release(self, now: Optional[datetime] = None) -> EngineResult:
        return self._run("run_auto_release", lambda: self._run_auto_release(now))

    def _run(self, operation: str, fn: Callable[[], Any]) -> EngineResult:
        try:
            return EngineResult.ok(fn())
        except CollaborationError as e:
            logger.info(f"{operation} rejected: {e.kind}{'/' + e.subkind if e.subkind else ''}: {e.message}")
            return EngineResult.fail(e.kind, e.message, e.subkind)
        except SQLAlchemyError as e:
            logger.error(f"{operation} could not be persisted: {e}")
            return EngineResult.fail(ErrorKind.INVALID_STATE, "The change could not be saved", "persistence")

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def _initialize_bid(self, bid_id: str, influencer_id: str, proposed_amount) -> ActionOutcome:
        proposed_paise = rupees_to_paise(proposed_amount)
        with self.locks.hold(f"bid:{bid_id}:{influencer_id}"):
            with get_db_context(self.session_factory) as db:
                bid = db.query(Bid).filter(Bid.id == bid_id).first()
                if bid is None:
                    raise NotFoundError(f"Bid {bid_id} not found")
                influencer = self._require_influencer(db, influencer_id, bid.created_by)
                existing = db.query(Conversation).filter(
                    Conversation.bid_id == bid_id,
                    Conversation.brand_owner_id == bid.created_by,
                    Conversation.influencer_id == influencer_id
                ).first()
                if existing is not None:
                    return self._existing_outcome(db, existing)

                request = self._ensure_request(db, influencer_id, proposed_paise, bid_id=bid_id)
                outcome, side_effects = self._open_conversation(
                    db,
                    brand_owner_id=bid.created_by,
                    influencer=influencer,
                    request=request,
                    listing_kind="bid",
                    listing_title=bid.title,
                    amount_paise=proposed_paise,
                    bid_id=bid_id,
                )
            self._dispatch(side_effects)
        return outcome

    def _initialize_campaign(self, campaign_id: str, influencer_id: str) -> ActionOutcome:
        with self.locks.hold(f"campaign:{campaign_id}:{influencer_id}"):
            with get_db_context(self.session_factory) as db:
                campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
                if campaign is None:
                    raise NotFoundError(f"Campaign {campaign_id} not found")
                influencer = self._require_influencer(db, influencer_id, campaign.created_by)
                existing = db.query(Conversation).filter(
                    Conversation.campaign_id == campaign_id,
                    Conversation.brand_owner_id == campaign.created_by,
                    Conversation.influencer_id == influencer_id
                ).first()
                if existing is not None:
                    return self._existing_outcome(db, existing)

                budget = campaign.budget or 0
                request = self._ensure_request(db, influencer_id, budget, campaign_id=campaign_id)
                outcome, side_effects = self._open_conversation(
                    db,
                    brand_owner_id=campaign.created_by,
                    influencer=influencer,
                    request=request,
                    listing_kind="campaign",
                    listing_title=campaign.title,
                    amount_paise=budget,
                    campaign_id=campaign_id,
                )
            self._dispatch(side_effects)
        return outcome

    @staticmethod
    def _require_influencer(db: Session, influencer_id: str, brand_owner_id: str) -> User:
        influencer = db.query(User).filter(
            User.id == influencer_id,
            User.user_type == UserType.INFLUENCER
        ).first()
        if influencer is None:
            raise NotFoundError(f"Influencer {influencer_id} not found")
        if influencer_id == brand_owner_id:
            raise InvalidInputError("Brand owner cannot connect with themselves")
        return influencer

    @staticmethod
    def _ensure_request(db: Session, influencer_id: str, amount_paise: int,
                        bid_id: Optional[str] = None, campaign_id: Optional[str] = None) -> Request:
        query = db.query(Request).filter(Request.influencer_id == influencer_id)
        if bid_id is not None:
            query = query.filter(Request.bid_id == bid_id)
        else:
            query = query.filter(Request.campaign_id == campaign_id)
        request = query.first()
        if request is None:
            request = Request(
                bid_id=bid_id,
                campaign_id=campaign_id,
                influencer_id=influencer_id,
                proposed_amount=amount_paise,
                status=RequestStatusDB.CONNECTED,
            )
            db.add(request)
        else:
            request.proposed_amount = amount_paise
        db.flush()
        return request

    def _open_conversation(self, db: Session, brand_owner_id: str, influencer: User, request: Request,
                           listing_kind: str, listing_title: str, amount_paise: int,
                           bid_id: Optional[str] = None, campaign_id: Optional[str] = None):
        now = self.clock()
        state = FlowStateDB.INFLUENCER_RESPONDING
        conversation = Conversation(
            brand_owner_id=brand_owner_id,
            influencer_id=influencer.id,
            bid_id=bid_id,
            campaign_id=campaign_id,
            request_id=request.id,
            flow_state=state,
            awaiting_role=AwaitingRoleDB.INFLUENCER,
            chat_status=transitions.chat_status_for(state),
            flow_data={"initialized_at": now.isoformat()},
            negotiation_history=[],
            revision_count=0,
            max_revisions=app_config.DEFAULT_MAX_REVISIONS,
            revision_history=[],
            message_seq=0,
            created_at=now,
            updated_at=now,
        )
        db.add(conversation)
        db.flush()

        ctx = prompts.PromptContext(
            conversation=conversation,
            target=state,
            influencer_name=influencer.name or "there",
            listing_title=listing_title,
            listing_kind=listing_kind,
            amount_paise=amount_paise,
        )
        flow_message = prompts.build("connection_request", ctx)
        message = self._write_flow_message(db, conversation, ActorRole.BRAND_OWNER, flow_message, now)
        conversation.current_action_data = message.action_data
        db.flush()

        side_effects = SideEffects()
        side_effects.events += self._message_events(db, conversation, [message])
        side_effects.notifications.append(self._notification(conversation, conversation.influencer_id))
        logger.info(f"Opened conversation {conversation.id} for {listing_kind} {bid_id or campaign_id}")
        return self._outcome(conversation, [message]), side_effects

    def _existing_outcome(self, db: Session, conversation: Conversation) -> ActionOutcome:
        latest = MessageLog(db).latest(conversation.id)
        outcome = self._outcome(conversation, [latest] if latest is not None else [])
        outcome.is_existing = True
        return outcome

    # =========================================================================
    # ACTIONS
    # =========================================================================

    def _handle_action(self, conversation_id: str, actor_role, action_name, raw_payload) -> ActionOutcome:
        role = parse_role(actor_role)
        if role is None:
            raise InvalidInputError(f"Unknown actor role {actor_role!r}")
        action = parse_action(action_name)
        if action is None:
            raise InvalidInputError(f"Unknown action {action_name!r}", subkind="unknown_action")
        if is_counterparty_action(role, action):
            raise UnauthorizedError(
                f"{action.value} belongs to the other party", subkind=UnauthorizedError.NOT_YOUR_TURN
            )
        if not can_perform(role, action):
            raise UnauthorizedError(
                f"{role.value} cannot perform {action.value}", subkind=UnauthorizedError.ROLE_NOT_PERMITTED
            )
        if not isinstance(raw_payload, dict):
            raise InvalidInputError("Payload must be an object")

        with self.locks.hold(conversation_id):
            with get_db_context(self.session_factory) as db:
                conversation = self._load_for_update(db, conversation_id)
                outcome, side_effects = self._apply(db, conversation, role, action, raw_payload)
            self._dispatch(side_effects)
        return outcome

    def _apply(self, db: Session, conversation: Conversation, role: ActorRole, action: FlowAction, raw_payload: dict):
        now = self.clock()
        state = conversation.flow_state

        if action not in OVERRIDE_ACTIONS:
            if conversation.is_terminal:
                raise InvalidStateError("Conversation is closed", subkind="conversation_closed")
            awaiting = conversation.awaiting_role
            if awaiting is None or awaiting.value != role.value:
                waiting_for = awaiting.value if awaiting else "nobody"
                raise UnauthorizedError(
                    f"Not your turn: waiting for {waiting_for}", subkind=UnauthorizedError.NOT_YOUR_TURN
                )

        edges = transitions.candidates(state, action)
        if not edges:
            raise InvalidStateError(f"{action.value} is not allowed while {state.value}")

        payload = self._parse_payload(edges[0].payload, raw_payload)
        guard_ctx = transitions.GuardContext(
            conversation=conversation,
            payload=payload,
            now=now,
            admin_tracking=self.admin_tracking.lookup_admin_tracking(db, conversation.id),
        )
        edge = transitions.resolve(state, action, guard_ctx)
        if edge is None:
            raise InvalidStateError(f"{action.value} is not allowed while {state.value}")
        for guard in edge.requires:
            problem = guard(guard_ctx)
            if problem:
                raise PreconditionFailedError(problem)

        step = Step(
            db=db,
            conversation=conversation,
            actor=role,
            action=action,
            payload=payload,
            now=now,
            prompt=prompts.PromptContext(conversation=conversation, target=edge.target, payload=payload),
            side_effects=SideEffects(),
        )
        for effect in edge.effects:
            getattr(self, f"_effect_{effect}")(step)
        if edge.history_event:
            entry = {"event": edge.history_event, "by": role.value, "at": now.isoformat()}
            if step.history_price is not None:
                entry["price"] = step.history_price
            conversation.negotiation_history = list(conversation.negotiation_history or []) + [entry]

        self._move(conversation, edge.target, edge.awaiting, now)
        flow_message = prompts.build(edge.message, step.prompt)
        message = self._write_flow_message(db, conversation, role, flow_message, now, step.attachments)
        conversation.current_action_data = message.action_data
        db.flush()

        side_effects = step.side_effects
        side_effects.events += self._message_events(db, conversation, [message], previous_state=state)
        if edge.target != state:
            side_effects.notifications += self._state_notifications(conversation)
        logger.info(
            f"Conversation {conversation.id}: {role.value} {action.value} "
            f"{state.value} -> {edge.target.value}"
        )
        return self._outcome(conversation, [message]), side_effects

    @staticmethod
    def _parse_payload(model, raw_payload: dict) -> BaseModel:
        try:
            return model.model_validate(raw_payload)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}" for err in e.errors()
            )
            raise InvalidInputError(f"Invalid payload: {problems}")

    @staticmethod
    def _move(conversation: Conversation, target: FlowStateDB, awaiting: Optional[AwaitingRoleDB], now: datetime):
        conversation.flow_state = target
        conversation.awaiting_role = awaiting
        conversation.chat_status = transitions.chat_status_for(target)
        conversation.updated_at = now

    # =========================================================================
    # EFFECT STEPS
    # =========================================================================

    @staticmethod
    def _request_of(step: Step) -> Optional[Request]:
        if not step.conversation.request_id:
            return None
        return step.db.query(Request).filter(Request.id == step.conversation.request_id).first()

    def _effect_mark_connection_accepted(self, step: Step):
        _set_flow_data(step.conversation, connection_accepted_at=step.now.isoformat())

    def _effect_reject_request(self, step: Step):
        request = self._request_of(step)
        if request is not None:
            request.status = RequestStatusDB.REJECTED
        _set_flow_data(step.conversation, rejected_at=step.now.isoformat(), rejected_by=step.actor.value)

    def _effect_store_project_details(self, step: Step):
        _set_flow_data(
            step.conversation,
            project_details=step.payload.project_details,
            project_details_sent_at=step.now.isoformat(),
        )

    def _effect_store_price_offer(self, step: Step):
        price = rupees_to_paise(step.payload.price)
        _set_flow_data(step.conversation, price_offer=price, price_offered_at=step.now.isoformat())
        request = self._request_of(step)
        if request is not None:
            request.proposed_amount = price
            request.status = RequestStatusDB.NEGOTIATING
        step.history_price = price

    def _agree(self, step: Step, key: str):
        offered = step.flow_data.get(key)
        if not offered:
            raise InvalidStateError(f"No {key.replace('_', ' ')} to accept")
        if step.payload.price is not None and rupees_to_paise(step.payload.price) != offered:
            raise InvalidInputError("Accepted price does not match the offer")
        _set_flow_data(step.conversation, agreed_price=offered, price_agreed_at=step.now.isoformat())
        request = self._request_of(step)
        if request is not None:
            request.final_agreed_amount = offered
            request.status = RequestStatusDB.FINALIZED
        step.history_price = offered
        step.prompt.breakdown = CommissionService(step.db).breakdown_for(offered, step.now)

    def _effect_agree_offered_price(self, step: Step):
        self._agree(step, "price_offer")

    def _effect_store_negotiated_price(self, step: Step):
        price = rupees_to_paise(step.payload.price)
        _set_flow_data(step.conversation, negotiated_price=price)
        request = self._request_of(step)
        if request is not None:
            request.proposed_amount = price
        step.history_price = price

    def _effect_agree_negotiated_price(self, step: Step):
        self._agree(step, "negotiated_price")

    def _effect_create_payment_order(self, step: Step):
        conversation = step.conversation
        breakdown = CommissionService(step.db).breakdown_for(step.flow_data["agreed_price"], step.now)
        receipt = RazorpayService.build_receipt(conversation.id, _epoch_ms(step.now))
        try:
            order = PaymentOrder(**self.gateway.create_order(
                breakdown.total_paise,
                breakdown.currency,
                receipt,
                {"conversation_id": conversation.id},
            ))
        except PaymentGatewayError as e:
            raise ExternalUnavailableError(f"Payment gateway unavailable: {e}")

        snapshot = breakdown.model_dump(mode="json")
        _set_flow_data(
            conversation,
            razorpay_order_id=order.order_id,
            order_created_at=step.now.isoformat(),
            payment_breakdown=snapshot,
        )
        LedgerService(step.db).record(
            conversation_id=conversation.id,
            direction=TransactionDirectionDB.IN,
            stage=TransactionStageDB.ORDER_CREATED,
            amount_paise=order.amount_paise,
            now=step.now,
            status=TransactionStatusDB.CREATED,
            sender_id=conversation.brand_owner_id,
            external_ref=order.order_id,
            metadata={"receipt": order.receipt, "breakdown": snapshot},
        )
        step.prompt.breakdown = breakdown
        step.prompt.order = order

    def _effect_record_brand_payment(self, step: Step):
        conversation = step.conversation
        breakdown = CommissionService(step.db).breakdown_for(step.flow_data["agreed_price"], step.now)
        AdminPaymentService(step.db).record_brand_payment(
            conversation.id, breakdown, step.now, step.payload.proof_attachment_ids
        )
        LedgerService(step.db).record(
            conversation_id=conversation.id,
            direction=TransactionDirectionDB.IN,
            stage=TransactionStageDB.RECEIVED,
            amount_paise=breakdown.net_paise,
            now=step.now,
            fee_paise=breakdown.commission_paise,
            sender_id=conversation.brand_owner_id,
            external_ref=step.payload.reference,
            metadata={"total_paise": breakdown.total_paise, "note": step.payload.note},
        )
        _set_flow_data(
            conversation,
            payment_breakdown=breakdown.model_dump(mode="json"),
            payment_completed_at=step.now.isoformat(),
            admin_managed=True,
        )
        request = self._request_of(step)
        if request is not None:
            request.status = RequestStatusDB.PAID
        step.prompt.breakdown = breakdown
        step.attachments = list(step.payload.proof_attachment_ids)
        step.side_effects.wallet_movements.append(
            WalletMovement(conversation.brand_owner_id, spent=breakdown.total_paise, reason="brand payment received")
        )

    def _effect_release_advance(self, step: Step):
        conversation = step.conversation
        tracking = AdminPaymentService(step.db).confirm_advance(
            conversation.id, step.now, step.payload.proof_attachment_ids
        )
        LedgerService(step.db).record(
            conversation_id=conversation.id,
            direction=TransactionDirectionDB.OUT,
            stage=TransactionStageDB.ADVANCE,
            amount_paise=tracking.advance_amount_paise,
            now=step.now,
            receiver_id=conversation.influencer_id,
            external_ref=step.payload.reference,
        )
        step.prompt.amount_paise = tracking.advance_amount_paise
        step.attachments = list(step.payload.proof_attachment_ids)
        step.side_effects.wallet_movements.append(WalletMovement(
            conversation.influencer_id,
            balance=tracking.advance_amount_paise,
            earned=tracking.advance_amount_paise,
            reason="advance released",
        ))

    def _effect_mark_work_started(self, step: Step):
        _set_flow_data(step.conversation, work_started_at=step.now.isoformat())

    def _effect_store_work_submission(self, step: Step):
        conversation = step.conversation
        payload = step.payload
        submission = {
            "deliverables": payload.deliverables,
            "description": payload.description,
            "notes": payload.notes,
            "attachment_ids": list(payload.attachment_ids),
            "revision_number": conversation.revision_count,
            "submitted_at": step.now.isoformat(),
        }
        _set_flow_data(conversation, work_submission=submission)

        history = [dict(entry) for entry in (conversation.revision_history or [])]
        if history and history[-1].get("status") == "requested":
            history[-1]["submitted_at"] = step.now.isoformat()
            history[-1]["status"] = "submitted"
            conversation.revision_history = history

        request = self._request_of(step)
        if request is not None:
            request.status = RequestStatusDB.WORK_SUBMITTED
        step.attachments = list(payload.attachment_ids)

    def _effect_record_revision_request(self, step: Step):
        conversation = step.conversation
        conversation.revision_count = conversation.revision_count + 1
        conversation.revision_history = list(conversation.revision_history or []) + [{
            "revision_number": conversation.revision_count,
            "requested_at": step.now.isoformat(),
            "feedback": step.payload.feedback,
            "submitted_at": None,
            "status": "requested",
        }]

    def _effect_record_review_feedback(self, step: Step):
        if step.payload.feedback:
            _set_flow_data(step.conversation, review_feedback=step.payload.feedback)

    def _effect_mark_approved(self, step: Step):
        _set_flow_data(step.conversation, approved_at=step.now.isoformat(), approved_by=step.actor.value)

    def _effect_release_escrow(self, step: Step):
        conversation = step.conversation
        escrow = EscrowService(step.db).release(conversation, step.now)
        step.prompt.amount_paise = escrow.amount_paise
        step.side_effects.wallet_movements.append(WalletMovement(
            conversation.influencer_id,
            balance=escrow.amount_paise,
            hold=-escrow.amount_paise,
            earned=escrow.amount_paise,
            reason="escrow released",
        ))

    def _effect_complete_request(self, step: Step):
        request = self._request_of(step)
        if request is not None:
            request.status = RequestStatusDB.COMPLETED
            request.completed_at = step.now
        _set_flow_data(step.conversation, completed_at=step.now.isoformat())

    def _effect_release_final(self, step: Step):
        conversation = step.conversation
        tracking = AdminPaymentService(step.db).confirm_final(
            conversation.id, step.now, step.payload.proof_attachment_ids
        )
        LedgerService(step.db).record(
            conversation_id=conversation.id,
            direction=TransactionDirectionDB.OUT,
            stage=TransactionStageDB.FINAL,
            amount_paise=tracking.final_amount_paise,
            now=step.now,
            receiver_id=conversation.influencer_id,
            external_ref=step.payload.reference,
        )
        step.prompt.amount_paise = tracking.final_amount_paise
        step.attachments = list(step.payload.proof_attachment_ids)
        step.side_effects.wallet_movements.append(WalletMovement(
            conversation.influencer_id,
            balance=tracking.final_amount_paise,
            earned=tracking.final_amount_paise,
            reason="final payment released",
        ))

    def _effect_refund_admin_final(self, step: Step):
        conversation = step.conversation
        tracking = AdminPaymentService(step.db).refund_final(
            conversation.id, step.now, step.payload.proof_attachment_ids
        )
        LedgerService(step.db).record(
            conversation_id=conversation.id,
            direction=TransactionDirectionDB.OUT,
            stage=TransactionStageDB.REFUND,
            amount_paise=tracking.final_amount_paise,
            now=step.now,
            receiver_id=conversation.brand_owner_id,
            external_ref=step.payload.reference,
            metadata={"reason": step.payload.reason},
        )
        step.prompt.amount_paise = tracking.final_amount_paise
        step.attachments = list(step.payload.proof_attachment_ids)
        step.side_effects.wallet_movements.append(WalletMovement(
            conversation.brand_owner_id, balance=tracking.final_amount_paise, reason="final payment refunded"
        ))

    def _refund_hold(self, step: Step, reason: Optional[str]) -> EscrowHold:
        conversation = step.conversation
        escrow = EscrowService(step.db).refund(conversation, step.now, reason)
        step.prompt.amount_paise = escrow.amount_paise
        step.side_effects.wallet_movements += [
            WalletMovement(conversation.influencer_id, hold=-escrow.amount_paise, reason="escrow refunded"),
            WalletMovement(conversation.brand_owner_id, balance=escrow.amount_paise, reason="escrow refunded"),
        ]
        return escrow

    def _effect_refund_escrow(self, step: Step):
        self._refund_hold(step, step.payload.reason)
        step.attachments = list(step.payload.proof_attachment_ids)

    def _effect_force_close(self, step: Step):
        _set_flow_data(step.conversation, close_reason=step.payload.reason, closed_by=step.actor.value)
        if step.payload.refund and EscrowService(step.db).active_hold(step.conversation.id) is not None:
            self._refund_hold(step, step.payload.reason or "force_close")

    def _effect_mark_closed(self, step: Step):
        _set_flow_data(step.conversation, closed_at=step.now.isoformat())
        request = self._request_of(step)
        if request is not None and request.status not in (RequestStatusDB.COMPLETED, RequestStatusDB.REJECTED):
            request.status = RequestStatusDB.CANCELLED

    # =========================================================================
    # PAYMENT VERIFICATION
    # =========================================================================

    def _verify_payment(self, order_id: str, payment_id: str, signature: str) -> ActionOutcome:
        try:
            valid = self.gateway.verify_signature(order_id, payment_id, signature)
        except PaymentGatewayError as e:
            raise ExternalUnavailableError(f"Payment verification unavailable: {e}")
        if not valid:
            logger.warning(f"Invalid payment signature for order {order_id}")
            raise SignatureInvalidError("Payment signature verification failed")

        with get_db_context(self.session_factory) as db:
            order = LedgerService(db).find_order(order_id)
            if order is None:
                raise NotFoundError(f"No conversation has payment order {order_id}")
            conversation_id = order.conversation_id

        with self.locks.hold(conversation_id):
            with get_db_context(self.session_factory) as db:
                conversation = self._load_for_update(db, conversation_id)
                late_state = self._flag_late_capture(db, conversation, order_id, payment_id)
                if late_state is None:
                    outcome, side_effects = self._record_verified_payment(db, conversation, order_id, payment_id)
            if late_state is not None:
                raise InvalidStateError(f"Payment cannot be verified while {late_state.value}")
            self._dispatch(side_effects)
        return outcome

    def _flag_late_capture(self, db: Session, conversation: Conversation, order_id: str, payment_id: str):
        """
        Keep a record of money captured after the conversation left payment_pending.

        The row stays in created status so the ledger balance does not move; it
        marks the payment for a manual refund. Returns the blocking state, or
        None when the payment can be verified normally.
        """
        ledger = LedgerService(db)
        if conversation.flow_state == FlowStateDB.PAYMENT_PENDING:
            return None
        if ledger.find_verified(conversation.id, order_id) is not None:
            return None

        logger.warning(
            f"Payment {payment_id} for order {order_id} captured while conversation "
            f"{conversation.id} is {conversation.flow_state.value}; refund required"
        )
        if ledger.find_late_capture(conversation.id, order_id, payment_id) is None:
            order = ledger.find_order(order_id)
            ledger.record(
                conversation_id=conversation.id,
                direction=TransactionDirectionDB.IN,
                stage=TransactionStageDB.RECEIVED,
                amount_paise=order.amount_paise,
                now=self.clock(),
                status=TransactionStatusDB.CREATED,
                sender_id=conversation.brand_owner_id,
                external_ref=order_id,
                metadata={
                    "order_id": order_id,
                    "payment_id": payment_id,
                    "refund_required": True,
                    "flow_state": conversation.flow_state.value,
                },
            )
        return conversation.flow_state

    def _record_verified_payment(self, db: Session, conversation: Conversation, order_id: str, payment_id: str):
        ledger = LedgerService(db)
        existing = ledger.find_verified(conversation.id, order_id)
        if existing is not None:
            if (existing.metadata_json or {}).get("payment_id") != payment_id:
                raise InvalidStateError("Order was already paid with a different payment")
            logger.info(f"Duplicate verification for order {order_id} ignored")
            latest = MessageLog(db).latest(conversation.id)
            return self._outcome(conversation, [latest] if latest is not None else []), SideEffects()

        if conversation.flow_state != FlowStateDB.PAYMENT_PENDING:
            raise InvalidStateError(f"Payment cannot be verified while {conversation.flow_state.value}")

        now = self.clock()
        order = ledger.find_order(order_id)
        breakdown = PaymentBreakdown(**order.metadata_json["breakdown"])
        verified = ledger.record(
            conversation_id=conversation.id,
            direction=TransactionDirectionDB.IN,
            stage=TransactionStageDB.VERIFIED,
            amount_paise=breakdown.net_paise,
            now=now,
            fee_paise=breakdown.commission_paise,
            sender_id=conversation.brand_owner_id,
            receiver_id=conversation.influencer_id,
            external_ref=order_id,
            metadata={"order_id": order_id, "payment_id": payment_id, "total_paise": breakdown.total_paise},
        )
        EscrowService(db, ledger).hold(conversation, verified, breakdown.net_paise, now)

        previous_state = conversation.flow_state
        _set_flow_data(
            conversation,
            razorpay_payment_id=payment_id,
            payment_completed_at=now.isoformat(),
            payment_breakdown=breakdown.model_dump(mode="json"),
        )
        request = conversation.request_id and db.query(Request).filter(Request.id == conversation.request_id).first()
        if request:
            request.status = RequestStatusDB.PAID
        self._move(conversation, FlowStateDB.PAYMENT_COMPLETED, AwaitingRoleDB.INFLUENCER, now)

        ctx = prompts.PromptContext(conversation=conversation, target=FlowStateDB.PAYMENT_COMPLETED, breakdown=breakdown)
        confirmation = self._write_flow_message(
            db, conversation, ActorRole.SYSTEM, prompts.build("payment_confirmed", ctx), now
        )
        start_prompt = self._write_flow_message(
            db, conversation, ActorRole.SYSTEM, prompts.build("start_work_prompt", ctx), now
        )
        conversation.current_action_data = start_prompt.action_data
        db.flush()

        side_effects = SideEffects(wallet_movements=[
            WalletMovement(conversation.brand_owner_id, spent=breakdown.total_paise, reason="payment verified"),
            WalletMovement(conversation.influencer_id, hold=breakdown.net_paise, reason="escrow hold"),
        ])
        side_effects.events += self._message_events(db, conversation, [confirmation, start_prompt], previous_state)
        side_effects.notifications += self._state_notifications(conversation)
        logger.info(f"Payment {payment_id} verified for conversation {conversation.id}")
        return self._outcome(conversation, [confirmation, start_prompt]), side_effects

    # =========================================================================
    # CHAT
    # =========================================================================

    def _send_message(self, conversation_id: str, sender_id: str, text: Optional[str],
                      attachments: Optional[List[str]]) -> ActionOutcome:
        text = (text or "").strip()
        attachments = list(attachments or [])
        if not text and not attachments:
            raise InvalidInputError("Message must have text or attachments")

        with self.locks.hold(conversation_id):
            with get_db_context(self.session_factory) as db:
                conversation = self._load_for_update(db, conversation_id)
                receiver_id = conversation.counterparty_of(sender_id)
                if receiver_id is None:
                    raise UnauthorizedError(
                        "Sender is not a participant", subkind=UnauthorizedError.NOT_PARTICIPANT
                    )
                if conversation.chat_status.value != "real_time":
                    raise InvalidStateError("Free-form messages are only allowed while the collaboration is active")
                self.rate_limiter.check(sender_id, conversation_id)

                now = self.clock()
                message = MessageLog(db).append(
                    conversation, sender_id, receiver_id, text, now,
                    message_type=MessageTypeDB.USER, attachments=attachments,
                )
                conversation.updated_at = now
                db.flush()
                side_effects = SideEffects(events=self._message_events(db, conversation, [message]))
                outcome = self._outcome(conversation, [message])
            self._dispatch(side_effects)
        return outcome

    def _mark_read(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        with get_db_context(self.session_factory) as db:
            conversation = self._load(db, conversation_id)
            if conversation.counterparty_of(user_id) is None:
                raise UnauthorizedError("User is not a participant", subkind=UnauthorizedError.NOT_PARTICIPANT)
            log = MessageLog(db)
            marked = log.mark_read(conversation_id, user_id, self.clock())
            total = log.unread_count(user_id)
        self._dispatch(SideEffects(events=self.events.unread_events(user_id, conversation_id, 0, total)))
        return {"conversation_id": conversation_id, "marked": marked, "total_unread": total}

    # =========================================================================
    # AUTO RELEASE
    # =========================================================================

    def _run_auto_release(self, now: Optional[datetime]) -> Dict[str, Any]:
        now = now or self.clock()
        with get_db_context(self.session_factory) as db:
            candidates = db.query(Conversation.id, Conversation.flow_data).filter(
                Conversation.flow_state.in_([FlowStateDB.WORK_SUBMITTED, FlowStateDB.WORK_FINAL_REVIEW])
            ).all()

        cutoff_days = app_config.ESCROW_AUTO_RELEASE_DAYS
        released, failed = [], []
        for conversation_id, flow_data in candidates:
            submitted_at = ((flow_data or {}).get("work_submission") or {}).get("submitted_at")
            if not submitted_at or (now - datetime.fromisoformat(submitted_at)).days < cutoff_days:
                continue
            result = self.handle_action(conversation_id, ActorRole.SYSTEM, FlowAction.AUTO_APPROVE_WORK)
            if result.success:
                released.append(conversation_id)
            else:
                failed.append({"conversation_id": conversation_id, "error": result.error.model_dump()})
        if released or failed:
            logger.info(f"Auto-release: {len(released)} approved, {len(failed)} failed")
        return {"released": released, "failed": failed}

    # =========================================================================
    # CONTEXT
    # =========================================================================

    def _get_context(self, conversation_id: str) -> ConversationSnapshot:
        with get_db_context(self.session_factory) as db:
            conversation = self._load(db, conversation_id)
            ledger = LedgerService(db)
            flow_data = conversation.flow_data or {}
            breakdown = None
            if flow_data.get("payment_breakdown"):
                breakdown = PaymentBreakdown(**flow_data["payment_breakdown"])
            elif flow_data.get("agreed_price"):
                breakdown = CommissionService(db).breakdown_for(flow_data["agreed_price"], self.clock())
            request = None
            if conversation.request_id:
                request = db.query(Request).filter(Request.id == conversation.request_id).first()
            holds = db.query(EscrowHold).filter(
                EscrowHold.conversation_id == conversation.id
            ).order_by(EscrowHold.created_at).all()

            return ConversationSnapshot(
                id=conversation.id,
                brand_owner_id=conversation.brand_owner_id,
                influencer_id=conversation.influencer_id,
                bid_id=conversation.bid_id,
                campaign_id=conversation.campaign_id,
                request_id=conversation.request_id,
                flow_state=conversation.flow_state,
                awaiting_role=conversation.awaiting_role,
                chat_status=conversation.chat_status,
                flow_data=flow_data,
                negotiation_history=conversation.negotiation_history or [],
                revision_count=conversation.revision_count,
                max_revisions=conversation.max_revisions,
                revision_history=conversation.revision_history or [],
                current_action_data=conversation.current_action_data,
                payment_breakdown=breakdown,
                ledger_balance_paise=ledger.balance(conversation.id),
                messages=[MessageResponse.model_validate(m) for m in MessageLog(db).list_for(conversation.id)],
                transactions=[TransactionResponse.model_validate(t) for t in ledger.entries(conversation.id)],
                escrow_holds=[EscrowHoldResponse.model_validate(h) for h in holds],
                request=RequestResponse.model_validate(request) if request is not None else None,
                created_at=conversation.created_at,
                updated_at=conversation.updated_at,
            )

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _load(db: Session, conversation_id: str) -> Conversation:
        conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    @staticmethod
    def _load_for_update(db: Session, conversation_id: str) -> Conversation:
        conversation = db.query(Conversation).filter(
            Conversation.id == conversation_id
        ).with_for_update().first()
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def _write_flow_message(self, db: Session, conversation: Conversation, role: ActorRole,
                            flow_message: prompts.FlowMessage, now: datetime,
                            attachments: Optional[List[str]] = None) -> Message:
        """Participants write to their counterparty; admin and system broadcast."""
        if role == ActorRole.BRAND_OWNER:
            sender_id, receiver_id = conversation.brand_owner_id, conversation.influencer_id
            default_type = MessageTypeDB.AUTOMATED
        elif role == ActorRole.INFLUENCER:
            sender_id, receiver_id = conversation.influencer_id, conversation.brand_owner_id
            default_type = MessageTypeDB.AUTOMATED
        else:
            sender_id, receiver_id = self.system_user_id, None
            default_type = MessageTypeDB.SYSTEM_PAYMENT_UPDATE if role == ActorRole.ADMIN else MessageTypeDB.AUTOMATED
        return MessageLog(db).append(
            conversation,
            sender_id,
            receiver_id,
            flow_message.text,
            now,
            message_type=flow_message.message_type or default_type,
            prompt=flow_message.prompt,
            attachments=attachments,
        )

    def _message_events(self, db: Session, conversation: Conversation, messages: List[Message],
                        previous_state: Optional[FlowStateDB] = None) -> List[PendingEvent]:
        events: List[PendingEvent] = []
        for message in messages:
            events += self.events.message_events(message)
        if previous_state is not None and previous_state != conversation.flow_state:
            events += self.events.state_changed_events(conversation, previous_state)
        events += self.events.upsert_events(conversation, messages[-1] if messages else None)
        log = MessageLog(db)
        receivers = []
        for message in messages:
            if message.receiver_id and message.receiver_id not in receivers:
                receivers.append(message.receiver_id)
        for user_id in receivers:
            events += self.events.unread_events(
                user_id, conversation.id, log.unread_count(user_id, conversation.id), log.unread_count(user_id)
            )
        return events

    @staticmethod
    def _notification(conversation: Conversation, user_id: str) -> Dict[str, Any]:
        return {
            "conversation_id": conversation.id,
            "user_id": user_id,
            "new_state": conversation.flow_state,
        }

    def _state_notifications(self, conversation: Conversation) -> List[Dict[str, Any]]:
        awaiting = conversation.awaiting_role
        if awaiting == AwaitingRoleDB.BRAND_OWNER:
            recipients = [conversation.brand_owner_id]
        elif awaiting == AwaitingRoleDB.INFLUENCER:
            recipients = [conversation.influencer_id]
        else:
            recipients = [conversation.brand_owner_id, conversation.influencer_id]
        return [self._notification(conversation, user_id) for user_id in recipients]

    def _outcome(self, conversation: Conversation, messages: List[Message]) -> ActionOutcome:
        responses = [MessageResponse.model_validate(m) for m in messages]
        return ActionOutcome(
            conversation_id=conversation.id,
            state=conversation.flow_state,
            awaiting_role=conversation.awaiting_role,
            chat_status=conversation.chat_status,
            message=responses[0] if responses else None,
            messages=responses,
            current_action_data=conversation.current_action_data,
        )

    def _dispatch(self, side_effects: SideEffects) -> None:
        """Best-effort delivery after commit. Failures are logged, never raised."""
        self.events.dispatch(side_effects.events)
        for notification in side_effects.notifications:
            try:
                self.notifier.send_flow_state_notification(**notification)
            except Exception as e:
                logger.warning(f"Notification for conversation {notification['conversation_id']} failed: {e}")
        if side_effects.wallet_movements:
            try:
                self.wallets.apply(side_effects.wallet_movements)
            except Exception as e:
                logger.warning(f"Wallet projection failed: {e}")
