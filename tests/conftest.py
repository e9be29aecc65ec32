"""
Pytest fixtures for testing
"""
import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.dialects.postgresql import JSONB

from budgetmate.infrastructure.db.session import Base
from budgetmate.infrastructure.db.models import (
    User, EnvelopeModel, IncomeSourceModel, IncomeTransaction,
)


@pytest.fixture
def db_engine():
    """Create in-memory SQLite engine for tests, with JSONB→JSON mapping."""
    # StaticPool: TestClient runs sync routes in a worker thread, same in-memory DB
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite has no JSONB; remap to JSON for tests
    for table in Base.metadata.tables.values():
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sample_account_id():
    """Sample account ID for tests"""
    return 1


@pytest.fixture
def sample_user(db_session, sample_account_id):
    """Account owner paid fortnightly"""
    user = User(
        id=sample_account_id,
        email="owner@example.com",
        password_hash="x",
        pay_cycle="fortnightly",
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def make_envelope(db_session, sample_account_id):
    """Factory: envelope row with explicit defaults"""
    def _make(name, subtype="bill", target="0", due_frequency="monthly", priority="important",
              account_id=None, is_archived=False):
        envelope = EnvelopeModel(
            account_id=account_id or sample_account_id,
            name=name,
            subtype=subtype,
            target_amount=Decimal(target),
            due_frequency=due_frequency,
            priority=priority,
            current_balance=Decimal("0"),
            allocation_revision=0,
            is_archived=is_archived,
        )
        db_session.add(envelope)
        db_session.commit()
        return envelope
    return _make


@pytest.fixture
def make_income_source(db_session, sample_account_id):
    """Factory: active income source row"""
    def _make(name, typical_amount, frequency="fortnightly", next_pay_date=None, account_id=None):
        source = IncomeSourceModel(
            account_id=account_id or sample_account_id,
            name=name,
            typical_amount=Decimal(typical_amount),
            frequency=frequency,
            is_active=True,
            next_pay_date=next_pay_date,
        )
        db_session.add(source)
        db_session.commit()
        return source
    return _make


@pytest.fixture
def make_transaction(db_session, sample_account_id):
    """Factory: unprocessed bank credit"""
    def _make(amount, description="", category=None, merchant=None, occurred_on=None, account_id=None):
        transaction = IncomeTransaction(
            account_id=account_id or sample_account_id,
            amount=Decimal(amount),
            description=description,
            merchant=merchant,
            category=category,
            occurred_on=occurred_on or date(2026, 3, 6),
            status="unprocessed",
        )
        db_session.add(transaction)
        db_session.commit()
        return transaction
    return _make
