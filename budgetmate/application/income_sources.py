"""
Income source use cases and loaders
"""
import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from budgetmate.domain.allocation import parse_amount
from budgetmate.domain.errors import NotFound
from budgetmate.domain.income_source import IncomeSource, RuleLine
from budgetmate.infrastructure.db.models import (
    IncomeSourceModel, IncomeAllocationRule, EnvelopeIncomeAllocation, EnvelopeModel, IncomeAllocation,
)

logger = logging.getLogger(__name__)


class IncomeSourceValidationError(ValueError):
    """Invalid income source attributes"""
    pass


class CreateIncomeSourceUseCase:
    """Use case: register a recurring income stream"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        account_id: int,
        name: str,
        typical_amount,
        frequency: str,
        next_pay_date: date | None = None,
    ) -> int:
        """
        Create an income source

        Args:
            account_id: Account ID (user.id)
            name: Display name, also used by income matching
            typical_amount: Usual amount per occurrence (> 0)
            frequency: weekly, fortnightly, twice_monthly, monthly, quarterly, annual
            next_pay_date: Expected date of the next payment

        Returns:
            income_source_id
        """
        name = name.strip()
        if not name:
            raise IncomeSourceValidationError("Income source name cannot be empty")

        amount = parse_amount(typical_amount)
        frequency = IncomeSource.validate(amount, frequency)

        source = IncomeSourceModel(
            account_id=account_id,
            name=name,
            typical_amount=amount,
            frequency=frequency,
            is_active=True,
            next_pay_date=next_pay_date,
        )
        self.db.add(source)
        self.db.commit()

        return source.id


class DeactivateIncomeSourceUseCase:
    """
    Use case: remove an income source

    A source with historical allocations is only deactivated; one without is
    deleted. Either way its allocation map entries are dropped so envelope
    maps only reference active sources.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, account_id: int, income_source_id: int) -> str:
        """
        Returns:
            "deactivated" or "deleted"
        """
        source = get_income_source(self.db, account_id, income_source_id)

        entries = self.db.query(EnvelopeIncomeAllocation).filter(
            EnvelopeIncomeAllocation.income_source_id == source.id
        ).all()
        for entry in entries:
            self.db.query(EnvelopeModel).filter(EnvelopeModel.id == entry.envelope_id).update(
                {EnvelopeModel.allocation_revision: EnvelopeModel.allocation_revision + 1},
                synchronize_session=False,
            )
            self.db.delete(entry)

        has_history = self.db.query(IncomeAllocation).filter(
            IncomeAllocation.income_source_id == source.id
        ).first() is not None

        if has_history:
            source.is_active = False
            outcome = "deactivated"
        else:
            self.db.query(IncomeAllocationRule).filter(
                IncomeAllocationRule.income_source_id == source.id
            ).delete(synchronize_session=False)
            self.db.delete(source)
            outcome = "deleted"

        self.db.commit()
        logger.info("Income source %d %s (account %d)", income_source_id, outcome, account_id)
        return outcome


def get_income_source(db: Session, account_id: int, income_source_id: int, active_only: bool = False) -> IncomeSourceModel:
    """Income source owned by the account, or NotFound"""
    query = db.query(IncomeSourceModel).filter(
        IncomeSourceModel.id == income_source_id,
        IncomeSourceModel.account_id == account_id,
    )
    if active_only:
        query = query.filter(IncomeSourceModel.is_active == True)
    source = query.first()
    if not source:
        raise NotFound(f"Income source #{income_source_id} not found")
    return source


def load_allocation_rule(db: Session, income_source_id: int) -> List[RuleLine]:
    """
    Saved plan of an income source, in rule order.

    Lines pointing at archived or missing envelopes are left out.
    """
    rows = (
        db.query(IncomeAllocationRule)
        .join(EnvelopeModel, EnvelopeModel.id == IncomeAllocationRule.envelope_id)
        .filter(
            IncomeAllocationRule.income_source_id == income_source_id,
            EnvelopeModel.is_archived == False,
        )
        .order_by(IncomeAllocationRule.position.asc(), IncomeAllocationRule.id.asc())
        .all()
    )
    return [RuleLine(envelope_id=row.envelope_id, amount=Decimal(row.amount)) for row in rows]


def load_income_sources(db: Session, account_id: int, active_only: bool = True) -> List[IncomeSource]:
    """Domain income sources with their rules, ordered by id"""
    query = db.query(IncomeSourceModel).filter(IncomeSourceModel.account_id == account_id)
    if active_only:
        query = query.filter(IncomeSourceModel.is_active == True)
    rows = query.order_by(IncomeSourceModel.id.asc()).all()

    rules = defaultdict(list)
    rule_rows = (
        db.query(IncomeAllocationRule)
        .filter(IncomeAllocationRule.account_id == account_id)
        .order_by(IncomeAllocationRule.position.asc(), IncomeAllocationRule.id.asc())
        .all()
    )
    for row in rule_rows:
        rules[row.income_source_id].append(RuleLine(envelope_id=row.envelope_id, amount=Decimal(row.amount)))

    return [
        IncomeSource(
            id=row.id,
            name=row.name,
            typical_amount=Decimal(row.typical_amount),
            frequency=row.frequency,
            is_active=row.is_active,
            next_pay_date=row.next_pay_date,
            allocation_rule=rules.get(row.id, []),
        )
        for row in rows
    ]
