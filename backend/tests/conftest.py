"""Shared pytest fixtures for test suite"""
import pytest
import sys
from pathlib import Path
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import fakeredis

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from meterbill.models import Base
from meterbill.models.account import Account
from meterbill.models.plan import Plan
from meterbill.models.subscription import Subscription
from meterbill.services.account_service import create_account
from meterbill.services.plan_service import create_plan, seed_default_plan
from meterbill.db import redis as redis_module


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)
    
    # Create session
    session = TestSessionLocal()
    
    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def session_factory(db_session: Session):
    """Session factory bound to the test database (for code that opens its own sessions)"""
    return TestSessionLocal


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    redis_module.set_redis_client(fake_redis)
    try:
        yield fake_redis
    finally:
        redis_module.set_redis_client(None)


@pytest.fixture(scope="function")
def free_plan(db_session: Session) -> Plan:
    """The seeded default plan (Free, 100 messages, auto-renewing)"""
    return seed_default_plan(db_session)


@pytest.fixture(scope="function")
def basic_plan(db_session: Session) -> Plan:
    return create_plan(name="Basic", monthly_message_limit=100, price="10.00", currency="USD", db=db_session)


@pytest.fixture(scope="function")
def pro_plan(db_session: Session) -> Plan:
    return create_plan(name="Pro", monthly_message_limit=1000, price="50.00", currency="USD", db=db_session)


@pytest.fixture(scope="function")
def test_account(db_session: Session, free_plan: Plan) -> Account:
    """Account on the default free plan"""
    return create_account("Acme Support", db_session)


@pytest.fixture(scope="function")
def basic_account(db_session: Session, basic_plan: Plan) -> Account:
    """Account subscribed to the Basic plan"""
    return create_account("Basic Co", db_session, plan=basic_plan)


@pytest.fixture(scope="function")
def set_usage(db_session: Session):
    """Put a subscription at a given usage (and optionally status) and commit"""
    def _set(subscription: Subscription, used: int, status: str = None) -> Subscription:
        subscription.messages_used = used
        if status is not None:
            subscription.status = status
        db_session.commit()
        db_session.refresh(subscription)
        return subscription
    return _set
