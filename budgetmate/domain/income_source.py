"""
Income source domain entity (recurring income stream with its saved plan)
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Any, List

from budgetmate.domain.cycles import canonical_frequency, quantize_money
from budgetmate.domain.errors import InvalidAmount

# Variance thresholds: both must be exceeded
VARIANCE_PERCENT_THRESHOLD = Decimal("0.01")
VARIANCE_ABSOLUTE_THRESHOLD = Decimal("1.00")

VARIANCE_BONUS = "bonus"
VARIANCE_SHORTFALL = "shortfall"

# Income transaction processing states:
# unprocessed -> income_detected -> allocated, or unprocessed -> not_income (terminal)
TRANSACTION_UNPROCESSED = "unprocessed"
TRANSACTION_INCOME_DETECTED = "income_detected"
TRANSACTION_ALLOCATED = "allocated"
TRANSACTION_NOT_INCOME = "not_income"


@dataclass(frozen=True)
class RuleLine:
    """One line of an allocation rule, in the source's per-occurrence units."""
    envelope_id: int
    amount: Decimal


@dataclass
class IncomeSource:
    """
    Recurring income stream

    allocation_rule is ordered; its amounts are per occurrence of this
    source (not per user pay cycle).
    """
    id: int
    name: str
    typical_amount: Decimal
    frequency: str
    is_active: bool = True
    next_pay_date: date | None = None
    allocation_rule: List[RuleLine] = field(default_factory=list)

    @staticmethod
    def validate(typical_amount: Decimal, frequency: str) -> str:
        """Check amount > 0 and return the canonical frequency."""
        if not typical_amount.is_finite() or typical_amount <= 0:
            raise InvalidAmount("Typical income amount must be greater than zero")
        return canonical_frequency(frequency)


@dataclass(frozen=True)
class IncomeVariance:
    expected_amount: Decimal
    actual_amount: Decimal
    difference: Decimal
    percentage_change: Decimal
    variance_type: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "expected_amount": str(self.expected_amount),
            "actual_amount": str(self.actual_amount),
            "difference": str(self.difference),
            "percentage_change": str(self.percentage_change),
            "variance_type": self.variance_type,
        }


def detect_variance(expected: Decimal, actual: Decimal) -> IncomeVariance | None:
    """
    Compare actual pay with the typical amount.

    Returns None unless the difference exceeds both 1% and 1.00.
    """
    if expected <= 0:
        return None

    difference = actual - expected
    ratio = abs(difference) / expected
    if ratio < VARIANCE_PERCENT_THRESHOLD or abs(difference) < VARIANCE_ABSOLUTE_THRESHOLD:
        return None

    return IncomeVariance(
        expected_amount=expected,
        actual_amount=actual,
        difference=quantize_money(difference),
        percentage_change=quantize_money(difference / expected * 100),
        variance_type=VARIANCE_BONUS if difference > 0 else VARIANCE_SHORTFALL,
    )


def income_allocated_event(
    transaction_id: int,
    income_source_id: int,
    actual_amount: Decimal,
    postings: List[Dict[str, Any]],
    unallocated: Decimal,
) -> Dict[str, Any]:
    """Create income_allocated event payload"""
    return {
        "transaction_id": transaction_id,
        "income_source_id": income_source_id,
        "actual_amount": str(actual_amount),
        "postings": postings,
        "unallocated": str(unallocated),
        "allocated_at": datetime.now(timezone.utc).isoformat(),
    }


def income_reconciled_event(
    transaction_id: int,
    income_source_id: int,
    transaction_date: date,
    previous_next_pay_date: date | None,
    new_next_pay_date: date,
    variance: IncomeVariance | None,
) -> Dict[str, Any]:
    """Create income_reconciled event payload (pay date advanced after allocation)"""
    return {
        "transaction_id": transaction_id,
        "income_source_id": income_source_id,
        "transaction_date": transaction_date.isoformat(),
        "previous_next_pay_date": previous_next_pay_date.isoformat() if previous_next_pay_date else None,
        "new_next_pay_date": new_next_pay_date.isoformat(),
        "variance": variance.as_dict() if variance else None,
    }
