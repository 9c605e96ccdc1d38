"""Tests for the collaboration flow engine: initialization, turn-taking and the main scenarios."""

from sqlalchemy.orm import sessionmaker

from conftest import (
    ADMIN_ID,
    BID_ID,
    BRAND_ID,
    CAMPAIGN_ID,
    INFLUENCER_ID,
    OTHER_INFLUENCER_ID,
    FakeGateway,
    FixedClock,
    FlowDriver,
    create_test_engine,
    seed_parties,
)
from config.app_config import SYSTEM_USER_ID
from core.event_channel import InMemoryEventChannel
from database.collaboration_models import (
    Conversation,
    EscrowHold,
    Message,
    Request,
    Transaction,
    TransactionStageDB,
)
from database.models import Base
from services.flow_engine import CollaborationFlowEngine
from services.rate_limiter import SlidingWindowRateLimiter


def _context(engine, conversation_id):
    result = engine.get_context(conversation_id)
    assert result.success, result.error
    return result.data


def _stage_count(session_factory, conversation_id, stage):
    with session_factory() as session:
        return session.query(Transaction).filter(
            Transaction.conversation_id == conversation_id,
            Transaction.stage == stage
        ).count()


# =============================================================================
# INITIALIZATION
# =============================================================================


class TestInitializeBid:
    """Tests for opening a conversation from a bid."""

    def test_opens_conversation_waiting_for_influencer(self, flow_engine, setup_bid):
        result = flow_engine.initialize_bid(BID_ID, INFLUENCER_ID, "1000")

        assert result.success
        outcome = result.data
        assert outcome.state == "influencer_responding"
        assert outcome.awaiting_role == "influencer"
        assert outcome.chat_status == "automated"
        assert outcome.is_existing is False
        assert outcome.message.sender_id == BRAND_ID
        assert outcome.message.receiver_id == INFLUENCER_ID
        assert outcome.message.action_required is True
        assert [b["action"] for b in outcome.current_action_data["buttons"]] == [
            "accept_connection", "reject_connection"
        ]

    def test_creates_request_with_proposed_amount_in_paise(self, flow_engine, setup_bid, session_factory):
        outcome = flow_engine.initialize_bid(BID_ID, INFLUENCER_ID, "1000.50").data

        with session_factory() as session:
            conversation = session.get(Conversation, outcome.conversation_id)
            request = session.get(Request, conversation.request_id)
            assert request.proposed_amount == 100050
            assert request.status == "connected"
            assert request.bid_id == BID_ID

    def test_second_call_returns_existing_conversation(self, flow_engine, setup_bid, session_factory):
        first = flow_engine.initialize_bid(BID_ID, INFLUENCER_ID, "1000").data
        second = flow_engine.initialize_bid(BID_ID, INFLUENCER_ID, "1000").data

        assert second.conversation_id == first.conversation_id
        assert second.is_existing is True
        with session_factory() as session:
            assert session.query(Conversation).count() == 1
            assert session.query(Message).count() == 1

    def test_different_influencers_get_separate_conversations(self, flow_engine, setup_bid):
        first = flow_engine.initialize_bid(BID_ID, INFLUENCER_ID, "1000").data
        second = flow_engine.initialize_bid(BID_ID, OTHER_INFLUENCER_ID, "1200").data

        assert first.conversation_id != second.conversation_id

    def test_unknown_bid_is_not_found(self, flow_engine, setup_users):
        result = flow_engine.initialize_bid("missing-bid", INFLUENCER_ID, "1000")

        assert not result.success
        assert result.error.kind == "NotFound"

    def test_non_influencer_is_not_found(self, flow_engine, setup_bid):
        result = flow_engine.initialize_bid(BID_ID, ADMIN_ID, "1000")

        assert result.error.kind == "NotFound"

    def test_invalid_amounts_are_rejected(self, flow_engine, setup_bid, session_factory):
        for amount in ("abc", "0", "-10", "NaN", True):
            result = flow_engine.initialize_bid(BID_ID, INFLUENCER_ID, amount)
            assert result.error.kind == "InvalidInput", amount

        with session_factory() as session:
            assert session.query(Conversation).count() == 0


class TestInitializeCampaign:
    """Tests for opening a conversation from a campaign."""

    def test_uses_campaign_budget(self, flow_engine, setup_campaign, session_factory):
        outcome = flow_engine.initialize_campaign(CAMPAIGN_ID, INFLUENCER_ID).data

        assert outcome.state == "influencer_responding"
        assert "₹2,500.00" in outcome.message.message
        with session_factory() as session:
            conversation = session.get(Conversation, outcome.conversation_id)
            assert conversation.campaign_id == CAMPAIGN_ID
            assert conversation.bid_id is None
            assert session.get(Request, conversation.request_id).proposed_amount == 250000

    def test_unknown_campaign_is_not_found(self, flow_engine, setup_users):
        assert flow_engine.initialize_campaign("missing", INFLUENCER_ID).error.kind == "NotFound"


# =============================================================================
# AUTHORIZATION AND VALIDATION
# =============================================================================


class TestActionChecks:
    """Tests for the checks every action goes through before any write."""

    def test_not_your_turn_leaves_state_and_messages_untouched(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.act(conversation_id, "influencer", "accept_connection")
        driver.act(conversation_id, "brand_owner", "send_project_details", {"project_details": "Make a reel"})
        before = _context(flow_engine, conversation_id)

        result = flow_engine.handle_action(conversation_id, "brand_owner", "send_price_offer", {"price": "900"})

        assert result.error.kind == "Unauthorized"
        assert result.error.subkind == "not_your_turn"
        after = _context(flow_engine, conversation_id)
        assert after.flow_state == "influencer_reviewing"
        assert len(after.messages) == len(before.messages)

    def test_role_not_permitted(self, flow_engine, driver):
        conversation_id = driver.open_bid()

        result = flow_engine.handle_action(conversation_id, "influencer", "force_close")

        assert result.error.kind == "Unauthorized"
        assert result.error.subkind == "role_not_permitted"

    def test_counterparty_action_is_not_your_turn(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_pricing(conversation_id)

        result = flow_engine.handle_action(conversation_id, "influencer", "send_price_offer", {"price": "900"})

        assert result.error.kind == "Unauthorized"
        assert result.error.subkind == "not_your_turn"
        assert _context(flow_engine, conversation_id).flow_state == "brand_owner_pricing"

    def test_participant_cannot_use_admin_actions(self, flow_engine, driver):
        conversation_id = driver.open_bid()

        result = flow_engine.handle_action(conversation_id, "brand_owner", "release_advance", {})

        assert result.error.subkind == "role_not_permitted"

    def test_unknown_action(self, flow_engine, driver):
        conversation_id = driver.open_bid()

        result = flow_engine.handle_action(conversation_id, "influencer", "dance")

        assert result.error.kind == "InvalidInput"
        assert result.error.subkind == "unknown_action"

    def test_unknown_role(self, flow_engine, driver):
        conversation_id = driver.open_bid()

        assert flow_engine.handle_action(conversation_id, "guest", "accept_connection").error.kind == "InvalidInput"

    def test_unknown_conversation(self, flow_engine, setup_users):
        result = flow_engine.handle_action("missing", "influencer", "accept_connection")

        assert result.error.kind == "NotFound"

    def test_action_from_wrong_state(self, flow_engine, driver):
        conversation_id = driver.open_bid()

        result = flow_engine.handle_action(conversation_id, "influencer", "accept_price")

        assert result.error.kind == "InvalidState"

    def test_closed_conversation_rejects_participant_actions(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        outcome = driver.act(conversation_id, "influencer", "reject_connection")
        assert outcome.state == "project_rejected"
        assert outcome.chat_status == "closed"
        assert outcome.current_action_data is None

        result = flow_engine.handle_action(
            conversation_id, "brand_owner", "send_project_details", {"project_details": "x"}
        )

        assert result.error.kind == "InvalidState"
        assert result.error.subkind == "conversation_closed"

    def test_payload_validation(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.act(conversation_id, "influencer", "accept_connection")

        empty = flow_engine.handle_action(conversation_id, "brand_owner", "send_project_details", {"project_details": "  "})
        too_long = flow_engine.handle_action(
            conversation_id, "brand_owner", "send_project_details", {"project_details": "x" * 1001}
        )
        missing = flow_engine.handle_action(conversation_id, "brand_owner", "send_project_details", {})

        assert empty.error.kind == "InvalidInput"
        assert too_long.error.kind == "InvalidInput"
        assert missing.error.kind == "InvalidInput"
        assert _context(flow_engine, conversation_id).flow_state == "brand_owner_details"

    def test_price_validation(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_pricing(conversation_id)

        for price in ("-5", "0", "abc", "Infinity"):
            result = flow_engine.handle_action(conversation_id, "brand_owner", "send_price_offer", {"price": price})
            assert result.error.kind == "InvalidInput", price

    def test_accept_price_must_match_offer(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_pricing(conversation_id)
        driver.act(conversation_id, "brand_owner", "send_price_offer", {"price": "900"})

        result = flow_engine.handle_action(conversation_id, "influencer", "accept_price", {"price": "950"})

        assert result.error.kind == "InvalidInput"
        assert _context(flow_engine, conversation_id).flow_state == "influencer_price_response"


# =============================================================================
# SCENARIOS
# =============================================================================


class TestHappyPath:
    """Bid to approval with a gateway payment held in escrow."""

    def test_full_flow(self, flow_engine, driver, session_factory):
        conversation_id = driver.open_bid()
        assert driver.act(conversation_id, "influencer", "accept_connection").state == "brand_owner_details"
        assert driver.act(
            conversation_id, "brand_owner", "send_project_details", {"project_details": "Make a reel"}
        ).state == "influencer_reviewing"
        assert driver.act(conversation_id, "influencer", "accept_project_details").state == "brand_owner_pricing"
        assert driver.act(
            conversation_id, "brand_owner", "send_price_offer", {"price": "900"}
        ).state == "influencer_price_response"

        accepted = driver.act(conversation_id, "influencer", "accept_price", {"price": "900"})
        assert accepted.state == "payment_pending"
        assert accepted.awaiting_role == "brand_owner"
        breakdown = accepted.current_action_data["payment_breakdown"]
        assert breakdown["total_paise"] == 90000
        assert breakdown["commission_paise"] == 9000
        assert breakdown["net_paise"] == 81000
        assert breakdown["advance_paise"] == 24300
        assert breakdown["final_paise"] == 56700

        driver.pay(conversation_id)
        paid = _context(flow_engine, conversation_id)
        assert paid.flow_state == "payment_completed"
        assert paid.chat_status == "real_time"
        assert paid.ledger_balance_paise == 81000
        assert len(paid.escrow_holds) == 1
        assert paid.escrow_holds[0].amount_paise == 81000
        assert paid.escrow_holds[0].status == "held"

        assert driver.act(conversation_id, "influencer", "start_work").state == "work_in_progress"
        assert driver.submit(conversation_id).state == "work_submitted"
        approved = driver.act(conversation_id, "brand_owner", "approve_work", {"feedback": "Great reel"})

        assert approved.state == "work_approved"
        assert approved.awaiting_role is None
        assert approved.chat_status == "closed"
        done = _context(flow_engine, conversation_id)
        assert done.escrow_holds[0].status == "released"
        assert done.escrow_holds[0].release_transaction_id is not None
        assert done.request.status == "completed"
        assert done.ledger_balance_paise == 0
        assert done.flow_data["review_feedback"] == "Great reel"

    def test_messages_are_ordered_and_sequenced(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_payment_pending(conversation_id)

        messages = _context(flow_engine, conversation_id).messages

        assert [m.seq for m in messages] == list(range(1, len(messages) + 1))
        assert messages[-1].sender_id == INFLUENCER_ID
        assert messages[-1].receiver_id == BRAND_ID

    def test_agreed_price_stored_in_paise(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_payment_pending(conversation_id, price="900.75")

        context = _context(flow_engine, conversation_id)

        assert context.flow_data["agreed_price"] == 90075
        assert context.request.final_agreed_amount == 90075
        assert context.request.status == "finalized"


class TestNegotiation:
    """Counter-offer loop between the brand owner and the influencer."""

    def test_negotiation_loop(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_pricing(conversation_id)
        driver.act(conversation_id, "brand_owner", "send_price_offer", {"price": "1000"})

        assert driver.act(conversation_id, "influencer", "negotiate_price").state == "brand_owner_negotiation"
        assert driver.act(conversation_id, "brand_owner", "accept_negotiation").state == "influencer_negotiation_input"
        assert driver.act(
            conversation_id, "influencer", "send_negotiated_price", {"price": "1200"}
        ).state == "brand_owner_negotiation_review"
        assert driver.act(
            conversation_id, "brand_owner", "reject_negotiated_price"
        ).state == "influencer_negotiation_input"
        driver.act(conversation_id, "influencer", "send_negotiated_price", {"price": "1100"})
        accepted = driver.act(conversation_id, "brand_owner", "accept_negotiated_price", {"price": "1100"})

        assert accepted.state == "payment_pending"
        context = _context(flow_engine, conversation_id)
        assert context.flow_data["agreed_price"] == 110000
        assert [entry["event"] for entry in context.negotiation_history] == [
            "price_offered",
            "negotiation_requested",
            "negotiation_accepted",
            "negotiated_price_submitted",
            "negotiated_price_rejected",
            "negotiated_price_submitted",
            "negotiated_price_accepted",
        ]
        assert context.negotiation_history[0]["price"] == 100000
        assert context.negotiation_history[-1]["price"] == 110000
        assert context.negotiation_history[-1]["by"] == "brand_owner"

    def test_rejected_negotiation_returns_to_original_offer(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_pricing(conversation_id)
        driver.act(conversation_id, "brand_owner", "send_price_offer", {"price": "1000"})
        driver.act(conversation_id, "influencer", "negotiate_price")

        outcome = driver.act(conversation_id, "brand_owner", "reject_negotiation")

        assert outcome.state == "influencer_price_response"
        assert outcome.awaiting_role == "influencer"
        assert "₹1,000.00" in outcome.message.message
        assert driver.act(conversation_id, "influencer", "accept_price").state == "payment_pending"

    def test_price_rejection_closes_conversation(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_pricing(conversation_id)
        driver.act(conversation_id, "brand_owner", "send_price_offer", {"price": "1000"})

        outcome = driver.act(conversation_id, "influencer", "reject_price")

        assert outcome.state == "price_rejected"
        assert _context(flow_engine, conversation_id).request.status == "rejected"


class TestRevisions:
    """Revision budget and the final review."""

    def test_revision_exhaustion_leads_to_final_review(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_work_in_progress(conversation_id)

        driver.submit(conversation_id)
        assert driver.act(
            conversation_id, "brand_owner", "request_revision", {"feedback": "Brighter colours"}
        ).state == "work_in_progress"
        assert driver.submit(conversation_id, "resubmit_work").state == "work_submitted"
        driver.act(conversation_id, "brand_owner", "request_revision", {"feedback": "Shorter intro"})
        final = driver.submit(conversation_id, "resubmit_work")

        assert final.state == "work_final_review"
        assert [b["action"] for b in final.current_action_data["buttons"]] == ["approve_work", "reject_final_work"]
        context = _context(flow_engine, conversation_id)
        assert context.revision_count == 2
        assert [entry["status"] for entry in context.revision_history] == ["submitted", "submitted"]
        assert context.revision_history[0]["feedback"] == "Brighter colours"

        more = flow_engine.handle_action(conversation_id, "brand_owner", "request_revision", {"feedback": "again"})
        assert more.error.kind == "InvalidState"

        rejected = driver.act(conversation_id, "brand_owner", "reject_final_work", {"feedback": "Not usable"})
        assert rejected.state == "work_rejected"
        assert rejected.chat_status == "closed"

    def test_reject_final_work_needs_final_revision(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_work_in_progress(conversation_id)
        driver.submit(conversation_id)

        result = flow_engine.handle_action(conversation_id, "brand_owner", "reject_final_work")

        assert result.error.kind == "PreconditionFailed"

    def test_revision_needs_feedback(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_work_in_progress(conversation_id)
        driver.submit(conversation_id)

        result = flow_engine.handle_action(conversation_id, "brand_owner", "request_revision", {})

        assert result.error.kind == "InvalidInput"

    def test_rejected_work_escrow_is_refunded_by_admin(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_work_in_progress(conversation_id)
        driver.submit(conversation_id)
        for _ in range(2):
            driver.act(conversation_id, "brand_owner", "request_revision", {"feedback": "More"})
            driver.submit(conversation_id, "resubmit_work")
        driver.act(conversation_id, "brand_owner", "reject_final_work")
        assert _context(flow_engine, conversation_id).ledger_balance_paise == 81000

        outcome = driver.act(conversation_id, "admin", "refund_final", {"reason": "Work rejected"})

        assert outcome.state == "closed"
        assert outcome.message.sender_id == SYSTEM_USER_ID
        assert outcome.message.message_type == "system_payment_update"
        context = _context(flow_engine, conversation_id)
        assert context.escrow_holds[0].status == "refunded"
        assert context.ledger_balance_paise == 0


class TestForceClose:
    """Admin override from any open state."""

    def test_force_close_mid_work_keeps_escrow(self, flow_engine, driver, session_factory):
        conversation_id = driver.open_bid()
        driver.to_work_in_progress(conversation_id)
        before = _context(flow_engine, conversation_id)

        outcome = driver.act(conversation_id, "admin", "force_close", {"reason": "Policy violation"})

        assert outcome.state == "closed"
        assert outcome.awaiting_role is None
        after = _context(flow_engine, conversation_id)
        new_messages = after.messages[len(before.messages):]
        assert len(new_messages) == 1
        assert new_messages[0].message_type == "system_payment_update"
        assert new_messages[0].sender_id == SYSTEM_USER_ID
        assert new_messages[0].receiver_id is None
        assert after.escrow_holds[0].status == "held"
        assert len(after.transactions) == len(before.transactions)
        assert after.request.status == "cancelled"

    def test_force_close_with_refund(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_work_in_progress(conversation_id)

        outcome = driver.act(conversation_id, "admin", "force_close", {"reason": "Dispute", "refund": True})

        assert "₹810.00" in outcome.message.message
        context = _context(flow_engine, conversation_id)
        assert context.escrow_holds[0].status == "refunded"
        assert context.ledger_balance_paise == 0

    def test_force_close_ignores_turn(self, flow_engine, driver):
        conversation_id = driver.open_bid()

        assert driver.act(conversation_id, "admin", "force_close").state == "closed"

    def test_cannot_force_close_twice(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.act(conversation_id, "admin", "force_close")

        result = flow_engine.handle_action(conversation_id, "admin", "force_close")

        assert result.error.kind == "InvalidState"


class TestGetContext:
    """Tests for the conversation snapshot."""

    def test_snapshot_contents(self, flow_engine, driver):
        conversation_id = driver.open_bid()
        driver.to_payment_pending(conversation_id)

        context = _context(flow_engine, conversation_id)

        assert context.id == conversation_id
        assert context.brand_owner_id == BRAND_ID
        assert context.influencer_id == INFLUENCER_ID
        assert context.payment_breakdown.total_paise == 90000
        assert context.transactions == []
        assert context.ledger_balance_paise == 0
        assert context.current_action_data["buttons"][0]["action"] == "proceed_to_payment"

    def test_unknown_conversation(self, flow_engine, setup_users):
        assert flow_engine.get_context("missing").error.kind == "NotFound"

    def test_escrow_rows_reference_verified_payment(self, flow_engine, driver, session_factory):
        conversation_id = driver.open_bid()
        driver.to_payment_pending(conversation_id)
        order_id = driver.pay(conversation_id)

        with session_factory() as session:
            hold = session.query(EscrowHold).filter(EscrowHold.conversation_id == conversation_id).one()
            verified = session.get(Transaction, hold.transaction_id)
            assert verified.stage == TransactionStageDB.VERIFIED
            assert verified.external_ref == order_id
            assert verified.fee_paise == 9000
        assert _stage_count(session_factory, conversation_id, TransactionStageDB.ORDER_CREATED) == 1


# =============================================================================
# ROLLBACK AND REPLAY
# =============================================================================


NEGOTIATED_HISTORY = [
    ("influencer", "accept_connection", None),
    ("brand_owner", "send_project_details", {"project_details": "Make a reel"}),
    ("influencer", "accept_project_details", None),
    ("brand_owner", "send_price_offer", {"price": "1200"}),
    ("influencer", "negotiate_price", None),
    ("brand_owner", "accept_negotiation", None),
    ("influencer", "send_negotiated_price", {"price": "1500.50"}),
    ("brand_owner", "accept_negotiated_price", {"price": "1500.50"}),
]


def _drive_negotiated_collaboration(engine, gateway):
    driver = FlowDriver(engine, gateway)
    conversation_id = driver.open_bid()
    states = []
    for role, action, payload in NEGOTIATED_HISTORY:
        states.append(driver.act(conversation_id, role, action, payload).state)
    driver.pay(conversation_id)
    states.append(driver.act(conversation_id, "influencer", "start_work").state)
    states.append(driver.submit(conversation_id).state)
    states.append(driver.act(conversation_id, "brand_owner", "request_revision", {"feedback": "Shorter"}).state)
    states.append(driver.submit(conversation_id, "resubmit_work").state)
    states.append(driver.act(conversation_id, "brand_owner", "approve_work").state)

    context = engine.get_context(conversation_id).data
    return {
        "states": states,
        "texts": [m.message for m in context.messages],
        "negotiation_history": context.negotiation_history,
        "revision_history": context.revision_history,
        "payment_breakdown": context.payment_breakdown,
        "ledger": sorted((t.stage.value, t.direction.value, t.amount_paise, t.fee_paise) for t in context.transactions),
        "balance": context.ledger_balance_paise,
    }


class TestRollbackAndReplay:
    """Failed effects leave no trace; identical histories give identical conversations."""

    def test_escrow_failure_rolls_back_the_transition(self, flow_engine, driver, session_factory):
        conversation_id = driver.open_bid()
        driver.to_work_in_progress(conversation_id)
        driver.submit(conversation_id)
        before = _context(flow_engine, conversation_id)
        with session_factory() as session:
            session.query(EscrowHold).filter(EscrowHold.conversation_id == conversation_id).delete()
            session.commit()

        result = flow_engine.handle_action(conversation_id, "brand_owner", "approve_work", {"feedback": "Great"})

        assert result.error.kind == "PreconditionFailed"
        after = _context(flow_engine, conversation_id)
        assert after.flow_state == "work_submitted"
        assert after.awaiting_role == "brand_owner"
        assert len(after.messages) == len(before.messages)
        assert after.current_action_data == before.current_action_data
        assert "approved_at" not in after.flow_data
        assert "review_feedback" not in after.flow_data
        assert after.request.status == before.request.status
        assert _stage_count(session_factory, conversation_id, TransactionStageDB.ESCROW_RELEASE) == 0

    def test_replaying_a_history_reproduces_the_conversation(self, flow_engine, gateway, setup_bid):
        first = _drive_negotiated_collaboration(flow_engine, gateway)

        replay_db = create_test_engine()
        try:
            replay_sessions = sessionmaker(bind=replay_db, autocommit=False, autoflush=False)
            with replay_sessions() as session:
                seed_parties(session)
            replay_gateway = FakeGateway()
            replay_engine = CollaborationFlowEngine(
                session_factory=replay_sessions,
                gateway=replay_gateway,
                event_channel=InMemoryEventChannel(),
                rate_limiter=SlidingWindowRateLimiter(max_events=5),
                clock=FixedClock(),
            )

            second = _drive_negotiated_collaboration(replay_engine, replay_gateway)
        finally:
            Base.metadata.drop_all(bind=replay_db)
            replay_db.dispose()

        assert first["states"][-1] == "work_approved"
        assert first["payment_breakdown"].total_paise == 150050
        assert first == second
