"""Pytest configuration and fixtures for the collaboration engine tests.

This module provides fixtures for:
- Database: SQLite in-memory engine shared by every session in a test
- Engine: CollaborationFlowEngine wired to an in-memory event channel,
  a fake payment gateway and a fixed clock
- Parties: a brand owner, an influencer, an admin, a bid and a campaign
"""

from collections.abc import Generator
from datetime import datetime, timedelta

import pytest
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from core.event_channel import InMemoryEventChannel
from core.razorpay_service import PaymentGatewayError, RazorpayService
from database.config import init_db
from database.models import Base, Bid, Campaign, User, UserType
from services.flow_engine import CollaborationFlowEngine
from services.rate_limiter import SlidingWindowRateLimiter

BRAND_ID = "brand-0001"
INFLUENCER_ID = "influencer-0001"
OTHER_INFLUENCER_ID = "influencer-0002"
ADMIN_ID = "admin-0001"
BID_ID = "bid-0001"
CAMPAIGN_ID = "campaign-0001"

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0)


# -----------------------------------------------------------------------------
# Test Doubles
# -----------------------------------------------------------------------------


class FixedClock:
    """Clock the engine reads; tests move it forward explicitly."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway(RazorpayService):
    """Creates orders locally and signs payments with the test secret."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret="rzp_test_secret", base_url="https://gateway.invalid")
        self.orders = []
        self.fail_create = False

    def create_order(self, amount_paise, currency, receipt, notes=None):
        if self.fail_create:
            raise PaymentGatewayError("Payment service error: timed out")
        order = {
            "order_id": f"order_{len(self.orders) + 1:04d}",
            "amount_paise": amount_paise,
            "currency": currency,
            "receipt": receipt,
        }
        self.orders.append(order)
        return order

    def sign(self, order_id: str, payment_id: str) -> str:
        return self.compute_signature(order_id, payment_id)


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------


def create_test_engine():
    """Create a synchronous SQLite in-memory engine with every table."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable foreign key support for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    init_db(bind=engine)
    return engine


@pytest.fixture
def sync_engine():
    """Create a synchronous SQLite in-memory engine for testing."""
    engine = create_test_engine()

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(sync_engine) -> sessionmaker:
    """Create a synchronous session factory."""
    return sessionmaker(bind=sync_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Session for arranging and inspecting rows outside the engine."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# Parties
# -----------------------------------------------------------------------------


def make_users():
    return [
        User(id=BRAND_ID, email="brand@example.com", name="Acme Brands", user_type=UserType.BRAND_OWNER),
        User(id=INFLUENCER_ID, email="priya@example.com", name="Priya", user_type=UserType.INFLUENCER),
        User(id=OTHER_INFLUENCER_ID, email="rahul@example.com", name="Rahul", user_type=UserType.INFLUENCER),
        User(id=ADMIN_ID, email="admin@example.com", name="Platform Admin", user_type=UserType.ADMIN),
    ]


def seed_parties(session):
    """Add the brand owner, both influencers, the admin and the bid."""
    users = make_users()
    session.add_all(users)
    session.add(Bid(id=BID_ID, created_by=BRAND_ID, title="Summer launch reel", budget=100000))
    session.commit()
    return users


@pytest.fixture
def setup_users(db_session):
    users = make_users()
    db_session.add_all(users)
    db_session.commit()
    return users


@pytest.fixture
def setup_bid(db_session, setup_users):
    bid = Bid(id=BID_ID, created_by=BRAND_ID, title="Summer launch reel", budget=100000)
    db_session.add(bid)
    db_session.commit()
    return bid


@pytest.fixture
def setup_campaign(db_session, setup_users):
    campaign = Campaign(id=CAMPAIGN_ID, created_by=BRAND_ID, title="Diwali campaign", budget=250000)
    db_session.add(campaign)
    db_session.commit()
    return campaign


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------


@pytest.fixture
def channel() -> InMemoryEventChannel:
    return InMemoryEventChannel()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def flow_engine(session_factory, gateway, channel, clock) -> CollaborationFlowEngine:
    return CollaborationFlowEngine(
        session_factory=session_factory,
        gateway=gateway,
        event_channel=channel,
        rate_limiter=SlidingWindowRateLimiter(max_events=5),
        clock=clock,
    )


class FlowDriver:
    """Walks a conversation through the happy path, asserting each step succeeds."""

    def __init__(self, engine: CollaborationFlowEngine, gateway: FakeGateway):
        self.engine = engine
        self.gateway = gateway

    def act(self, conversation_id, role, action, payload=None):
        result = self.engine.handle_action(conversation_id, role, action, payload)
        assert result.success, result.error
        return result.data

    def open_bid(self, influencer_id=INFLUENCER_ID, amount="1000"):
        result = self.engine.initialize_bid(BID_ID, influencer_id, amount)
        assert result.success, result.error
        return result.data.conversation_id

    def to_pricing(self, conversation_id):
        self.act(conversation_id, "influencer", "accept_connection")
        self.act(conversation_id, "brand_owner", "send_project_details", {"project_details": "Make a reel"})
        self.act(conversation_id, "influencer", "accept_project_details")

    def to_payment_pending(self, conversation_id, price="900"):
        self.to_pricing(conversation_id)
        self.act(conversation_id, "brand_owner", "send_price_offer", {"price": price})
        return self.act(conversation_id, "influencer", "accept_price", {"price": price})

    def create_order(self, conversation_id):
        outcome = self.act(conversation_id, "brand_owner", "proceed_to_payment")
        return outcome.current_action_data["payment_order"]["order_id"]

    def pay(self, conversation_id, payment_id="pay_0001"):
        order_id = self.create_order(conversation_id)
        result = self.engine.verify_payment(order_id, payment_id, self.gateway.sign(order_id, payment_id))
        assert result.success, result.error
        return order_id

    def to_work_in_progress(self, conversation_id, price="900"):
        self.to_payment_pending(conversation_id, price)
        self.pay(conversation_id)
        self.act(conversation_id, "influencer", "start_work")

    def submit(self, conversation_id, action="submit_work"):
        return self.act(conversation_id, "influencer", action, {"deliverables": "https://example.com/reel.mp4"})

    def admin_to_work_in_progress(self, conversation_id, price="900"):
        self.to_payment_pending(conversation_id, price)
        self.act(conversation_id, "admin", "receive_brand_owner_payment", {"proof_attachment_ids": ["proof-1"]})
        self.act(conversation_id, "admin", "release_advance", {"proof_attachment_ids": ["proof-2"]})


@pytest.fixture
def driver(flow_engine, gateway, setup_bid) -> FlowDriver:
    return FlowDriver(flow_engine, gateway)
