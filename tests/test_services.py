"""Unit tests for money math, the transition table, the ledger and supporting services."""

import threading
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import BigInteger

from auth.roles import (
    ActorRole,
    FlowAction,
    can_perform,
    get_actions_for_role,
    is_counterparty_action,
    parse_action,
    roles_for_action,
)
from conftest import BRAND_ID, INFLUENCER_ID
from database.collaboration_models import (
    AdminPaymentTracking,
    AwaitingRoleDB,
    ChatStatusDB,
    Conversation,
    EscrowHold,
    FlowStateDB,
    Request,
    TERMINAL_STATES,
    Transaction,
    TransactionDirectionDB,
    TransactionStageDB,
    TransactionStatusDB,
    Wallet,
)
from database.models import Bid, Campaign
from services import transitions
from services.errors import InvalidInputError, LedgerError
from services.escrow_service import EscrowService
from services.ledger_service import LedgerService
from services.locks import KeyedLocks
from services.money import CommissionService, compute_breakdown, format_inr, round_half_up, rupees_to_paise
from services.notification_service import NotificationService, NotificationType

NOW = datetime(2026, 3, 1, 12, 0, 0)


# =============================================================================
# MONEY
# =============================================================================


class TestMoney:
    """Tests for paise conversion and payment breakdowns."""

    def test_round_half_up(self):
        assert round_half_up(Decimal("2.5")) == 3
        assert round_half_up(Decimal("2.4999")) == 2
        assert round_half_up(Decimal("-2.5")) == -2

    def test_rupees_to_paise(self):
        assert rupees_to_paise("900") == 90000
        assert rupees_to_paise(900.75) == 90075
        assert rupees_to_paise("0.005") == 1
        assert rupees_to_paise(Decimal("1000.50")) == 100050

    def test_rupees_to_paise_rejects_bad_values(self):
        for value in ("0", "-1", "abc", "inf", None, True, "0.001"):
            with pytest.raises(InvalidInputError):
                rupees_to_paise(value)

    def test_breakdown_for_agreed_price(self):
        breakdown = compute_breakdown(90000, "10.00")

        assert breakdown.total_paise == 90000
        assert breakdown.commission_paise == 9000
        assert breakdown.net_paise == 81000
        assert breakdown.advance_paise == 24300
        assert breakdown.final_paise == 56700
        assert breakdown.commission_percentage == "10.00"
        assert breakdown.display.net == "₹810.00"

    def test_breakdown_parts_always_add_up(self):
        for total in (1, 3, 99, 12345, 99999, 1000001):
            for percentage in ("0", "2.5", "10", "12.75", "33.33", "100"):
                b = compute_breakdown(total, percentage)
                assert b.commission_paise + b.net_paise == b.total_paise
                assert b.advance_paise + b.final_paise == b.net_paise
                assert min(b.commission_paise, b.net_paise, b.advance_paise, b.final_paise) >= 0

    def test_breakdown_rejects_bad_percentages(self):
        with pytest.raises(InvalidInputError):
            compute_breakdown(1000, "101")
        with pytest.raises(InvalidInputError):
            compute_breakdown(0, "10")

    def test_format_inr(self):
        assert format_inr(9000000) == "₹90,000.00"
        assert format_inr(5) == "₹0.05"


class TestCommissionService:
    """Tests for commission settings."""

    def test_default_when_no_setting(self, db_session):
        assert CommissionService(db_session).get_active_percentage() == Decimal("10.00")

    def test_latest_active_setting_wins(self, db_session):
        service = CommissionService(db_session)
        service.set_commission("12.5", effective_from=datetime(2026, 1, 1))
        service.set_commission("8", effective_from=datetime(2026, 2, 1))

        assert service.get_active_percentage() == Decimal("8.00")
        assert service.breakdown_for(10000).commission_paise == 800

    def test_lookup_uses_the_given_time(self, db_session):
        service = CommissionService(db_session)
        service.set_commission("20", effective_from=datetime(2026, 4, 30))

        assert service.get_active_percentage(NOW) == Decimal("10.00")
        assert service.get_active_percentage(datetime(2026, 5, 1)) == Decimal("20.00")
        assert service.set_commission("5", now=NOW).effective_from == NOW

    def test_rejects_out_of_range(self, db_session):
        with pytest.raises(InvalidInputError):
            CommissionService(db_session).set_commission("-1")


# =============================================================================
# TRANSITION TABLE
# =============================================================================


class TestTransitionTable:
    """Tests for the declarative flow table."""

    def test_every_edge_has_a_known_effect_and_builder(self):
        from services import prompts
        from services.flow_engine import CollaborationFlowEngine

        for edges in transitions.TRANSITIONS.values():
            for edge in edges:
                assert edge.message in prompts.BUILDERS, edge
                for effect in edge.effects:
                    assert hasattr(CollaborationFlowEngine, f"_effect_{effect}"), effect

    def test_edge_actor_owns_its_action(self):
        for edges in transitions.TRANSITIONS.values():
            for edge in edges:
                assert can_perform(edge.actor, edge.action), edge

    def test_no_edges_leave_terminal_states_except_refund(self):
        for (source, action), edges in transitions.TRANSITIONS.items():
            if source in TERMINAL_STATES:
                assert action == FlowAction.REFUND_FINAL
                assert source == FlowStateDB.WORK_REJECTED

    def test_terminal_targets_await_nobody(self):
        for edges in transitions.TRANSITIONS.values():
            for edge in edges:
                if edge.target in TERMINAL_STATES:
                    assert edge.awaiting is None, edge
                    assert edge.chat_status == ChatStatusDB.CLOSED

    def test_chat_status_for_states(self):
        assert transitions.chat_status_for(FlowStateDB.INFLUENCER_RESPONDING) == ChatStatusDB.AUTOMATED
        assert transitions.chat_status_for(FlowStateDB.WORK_IN_PROGRESS) == ChatStatusDB.REAL_TIME
        assert transitions.chat_status_for(FlowStateDB.CLOSED) == ChatStatusDB.CLOSED

    def test_submission_branch(self):
        conversation = Conversation(revision_count=2, max_revisions=3, flow_data={})
        ctx = transitions.GuardContext(conversation=conversation, payload=None, now=NOW)

        edge = transitions.resolve(FlowStateDB.WORK_IN_PROGRESS, FlowAction.SUBMIT_WORK, ctx)

        assert edge.target == FlowStateDB.WORK_FINAL_REVIEW
        conversation.revision_count = 1
        assert transitions.resolve(
            FlowStateDB.WORK_IN_PROGRESS, FlowAction.SUBMIT_WORK, ctx
        ).target == FlowStateDB.WORK_SUBMITTED

    def test_actions_available(self):
        assert transitions.actions_available(FlowStateDB.INFLUENCER_PRICE_RESPONSE, ActorRole.INFLUENCER) == [
            FlowAction.ACCEPT_PRICE, FlowAction.REJECT_PRICE, FlowAction.NEGOTIATE_PRICE
        ]
        assert transitions.actions_available(FlowStateDB.PAYMENT_PENDING, ActorRole.ADMIN) == [
            FlowAction.RECEIVE_BRAND_OWNER_PAYMENT, FlowAction.FORCE_CLOSE
        ]


class TestRoles:
    """Tests for role to action ownership."""

    def test_each_action_has_one_owner(self):
        for action in FlowAction:
            assert len(roles_for_action(action)) == 1, action

    def test_parse_action(self):
        assert parse_action("approve_work") == FlowAction.APPROVE_WORK
        assert parse_action("nope") is None

    def test_system_only_auto_approves(self):
        assert get_actions_for_role(ActorRole.SYSTEM) == {FlowAction.AUTO_APPROVE_WORK}

    def test_counterparty_action(self):
        assert is_counterparty_action(ActorRole.INFLUENCER, FlowAction.APPROVE_WORK)
        assert is_counterparty_action(ActorRole.BRAND_OWNER, FlowAction.SUBMIT_WORK)
        assert not is_counterparty_action(ActorRole.INFLUENCER, FlowAction.SUBMIT_WORK)
        assert not is_counterparty_action(ActorRole.BRAND_OWNER, FlowAction.FORCE_CLOSE)
        assert not is_counterparty_action(ActorRole.ADMIN, FlowAction.APPROVE_WORK)


# =============================================================================
# LEDGER AND ESCROW
# =============================================================================


@pytest.fixture
def conversation(db_session, setup_users):
    conversation = Conversation(
        brand_owner_id=BRAND_ID,
        influencer_id=INFLUENCER_ID,
        flow_state=FlowStateDB.PAYMENT_PENDING,
        awaiting_role=AwaitingRoleDB.BRAND_OWNER,
        chat_status=ChatStatusDB.AUTOMATED,
        flow_data={},
    )
    db_session.add(conversation)
    db_session.flush()
    return conversation


class TestLedger:
    """Tests for ledger rows and the derived balance."""

    def test_only_completed_rows_count(self, db_session, conversation):
        ledger = LedgerService(db_session)
        ledger.record(conversation.id, TransactionDirectionDB.IN, TransactionStageDB.ORDER_CREATED, 90000, NOW,
                      status=TransactionStatusDB.CREATED, external_ref="order_1")
        ledger.record(conversation.id, TransactionDirectionDB.IN, TransactionStageDB.VERIFIED, 81000, NOW,
                      fee_paise=9000, external_ref="order_1")
        ledger.record(conversation.id, TransactionDirectionDB.OUT, TransactionStageDB.ADVANCE, 24300, NOW)

        assert ledger.balance(conversation.id) == 56700
        assert ledger.find_order("order_1").stage == TransactionStageDB.ORDER_CREATED
        assert ledger.find_verified(conversation.id, "order_1").amount_paise == 81000
        assert ledger.count_stage(conversation.id, TransactionStageDB.VERIFIED) == 1

    def test_rejects_non_positive_amounts(self, db_session, conversation):
        ledger = LedgerService(db_session)

        for amount in (0, -5, 10.5, True):
            with pytest.raises(LedgerError):
                ledger.record(conversation.id, TransactionDirectionDB.IN, TransactionStageDB.RECEIVED, amount, NOW)

    def test_amounts_beyond_32_bits_are_kept(self, db_session, conversation):
        ledger = LedgerService(db_session)
        large = 5_000_000_000

        ledger.record(conversation.id, TransactionDirectionDB.IN, TransactionStageDB.RECEIVED, large, NOW)

        assert ledger.balance(conversation.id) == large

    def test_money_columns_are_64_bit(self):
        columns = [
            Request.proposed_amount, Request.final_agreed_amount,
            Transaction.amount_paise, Transaction.fee_paise,
            EscrowHold.amount_paise,
            AdminPaymentTracking.total_amount_paise, AdminPaymentTracking.final_amount_paise,
            Wallet.balance, Wallet.hold_balance, Wallet.total_earned, Wallet.total_spent,
            Bid.budget, Campaign.budget,
        ]

        for column in columns:
            assert isinstance(column.property.columns[0].type, BigInteger), column


class TestEscrow:
    """Tests for holding, releasing and refunding escrow."""

    def _verified(self, db_session, conversation):
        return LedgerService(db_session).record(
            conversation.id, TransactionDirectionDB.IN, TransactionStageDB.VERIFIED, 81000, NOW, external_ref="order_1"
        )

    def test_hold_then_release(self, db_session, conversation):
        escrow = EscrowService(db_session)
        hold = escrow.hold(conversation, self._verified(db_session, conversation), 81000, NOW)

        assert escrow.active_hold(conversation.id).id == hold.id
        released = escrow.release(conversation, NOW)

        assert released.status == "released"
        assert escrow.active_hold(conversation.id) is None
        assert LedgerService(db_session).balance(conversation.id) == 0

    def test_single_active_hold(self, db_session, conversation):
        escrow = EscrowService(db_session)
        verified = self._verified(db_session, conversation)
        escrow.hold(conversation, verified, 81000, NOW)

        with pytest.raises(LedgerError):
            escrow.hold(conversation, verified, 81000, NOW)

    def test_release_without_hold(self, db_session, conversation):
        with pytest.raises(LedgerError):
            EscrowService(db_session).release(conversation, NOW)

    def test_refund_pays_brand_owner(self, db_session, conversation):
        escrow = EscrowService(db_session)
        escrow.hold(conversation, self._verified(db_session, conversation), 81000, NOW)

        refunded = escrow.refund(conversation, NOW, reason="dispute")

        assert refunded.status == "refunded"
        refund_rows = [
            t for t in LedgerService(db_session).entries(conversation.id) if t.stage == TransactionStageDB.REFUND
        ]
        assert refund_rows[0].receiver_id == BRAND_ID
        assert refund_rows[0].id == refunded.release_transaction_id


# =============================================================================
# LOCKS AND NOTIFICATIONS
# =============================================================================


class TestKeyedLocks:
    """Tests for per-key mutual exclusion."""

    def test_same_key_serializes(self):
        locks = KeyedLocks()
        active = []
        overlaps = []

        def work():
            with locks.hold("conv-1"):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                threading.Event().wait(0.01)
                active.pop()

        threads = [threading.Thread(target=work) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []
        assert len(locks) == 0

    def test_released_on_error(self):
        locks = KeyedLocks()

        with pytest.raises(RuntimeError):
            with locks.hold("conv-1"):
                raise RuntimeError("boom")

        with locks.hold("conv-1"):
            assert len(locks) == 1


class TestNotificationService:
    """Tests for notification records."""

    def test_create_list_and_mark_read(self, db_session, setup_users):
        service = NotificationService(db_session)
        note = service.create(INFLUENCER_ID, NotificationType.SYSTEM, "Welcome", "Hello")
        service.notify_flow_state("conv-1", INFLUENCER_ID, FlowStateDB.WORK_APPROVED)

        assert service.get_unread_count(INFLUENCER_ID) == 2
        assert service.mark_read(note.id, INFLUENCER_ID)
        assert not service.mark_read(note.id, BRAND_ID)
        assert service.get_unread_count(INFLUENCER_ID) == 1
        assert len(service.list_for_user(INFLUENCER_ID, unread_only=True)) == 1
