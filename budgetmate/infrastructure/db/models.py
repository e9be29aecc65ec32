"""
SQLAlchemy ORM models
"""
from decimal import Decimal
from datetime import date as date_type
from sqlalchemy import String, DateTime, Integer, TIMESTAMP, Date, Float, func, Boolean, Numeric, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from budgetmate.infrastructure.db.session import Base


class User(Base):
    """
    User (account owner); pay_cycle is the canonical cycle for all per-cycle figures
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # weekly, fortnightly, twice_monthly, monthly
    pay_cycle: Mapped[str] = mapped_column(String(20), nullable=False, server_default="fortnightly")

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )


class EventLog(Base):
    """
    Append-only audit log of engine writes

    idempotency_key is UNIQUE: a second append with the same key fails with IntegrityError
    """
    __tablename__ = "event_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    actor_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False)  # PostgreSQL JSONB

    occurred_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        index=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True
    )
    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )


class IncomeSourceModel(Base):
    """
    Recurring income stream. Deactivated (not deleted) once it has postings.
    """
    __tablename__ = "income_sources"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    typical_amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)  # weekly .. annual
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")

    next_pay_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    last_reconciled_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    last_reconciled_transaction_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index('ix_income_source_account_active', 'account_id', 'is_active'),
    )


class IncomeAllocationRule(Base):
    """
    One line of an income source's saved plan: amount per occurrence of the source
    """
    __tablename__ = "income_allocation_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    income_source_id: Mapped[int] = mapped_column(Integer, nullable=False)
    envelope_id: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False, server_default="0")

    __table_args__ = (
        UniqueConstraint('income_source_id', 'envelope_id', name='uq_income_rule_envelope'),
        Index('ix_income_rule_source', 'income_source_id', 'position'),
    )


class EnvelopeModel(Base):
    """
    Budget envelope. current_balance changes only through allocation postings.
    """
    __tablename__ = "envelopes"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subtype: Mapped[str] = mapped_column(String(20), nullable=False)  # bill, spending, savings, goal, tracking
    target_amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False, server_default="0")
    due_frequency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, server_default="important")

    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=2),
        nullable=False,
        server_default="0"
    )
    # Bumped on every allocation map write (optimistic concurrency)
    allocation_revision: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class EnvelopeIncomeAllocation(Base):
    """
    Allocation map entry: amount per user pay cycle from one income source
    """
    __tablename__ = "envelope_income_allocations"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    envelope_id: Mapped[int] = mapped_column(Integer, nullable=False)
    income_source_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False, server_default="0")

    updated_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint('envelope_id', 'income_source_id', name='uq_envelope_income_allocation'),
        Index('ix_envelope_allocation_source', 'income_source_id'),
    )


class IncomeTransaction(Base):
    """
    Bank/ledger credit created by the host app; the engine only moves its status
    """
    __tablename__ = "income_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    description: Mapped[str] = mapped_column(String(512), nullable=False, server_default="")
    merchant: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    occurred_on: Mapped[date_type] = mapped_column(Date, nullable=False)

    # unprocessed, income_detected, allocated, not_income
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="unprocessed")
    income_source_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )


class IncomeAllocation(Base):
    """
    One row per processed income transaction.

    UNIQUE(source_transaction_id) is the conditional insert that stops two
    concurrent runs from posting the same transaction twice.
    """
    __tablename__ = "income_allocations"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    source_transaction_id: Mapped[int] = mapped_column(Integer, nullable=False)
    income_source_id: Mapped[int] = mapped_column(Integer, nullable=False)

    actual_amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    total_allocated: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    unallocated: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False, server_default="0")
    is_reversed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint('source_transaction_id', name='uq_income_allocation_transaction'),
    )


class AllocationPosting(Base):
    """
    Immutable ledger credit to an envelope. Reversed only by a compensating
    posting (negated amount, reverses_posting_id set).
    """
    __tablename__ = "allocation_postings"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    allocation_id: Mapped[int] = mapped_column(Integer, nullable=False)
    source_transaction_id: Mapped[int] = mapped_column(Integer, nullable=False)
    envelope_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    reverses_posting_id: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index('ix_posting_transaction', 'source_transaction_id'),
        Index('ix_posting_envelope', 'envelope_id'),
    )
