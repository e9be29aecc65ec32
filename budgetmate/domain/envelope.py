"""
Envelope domain entity and ideal contribution calculator

The ideal contribution is the steady-state amount an envelope needs per user
pay cycle. It depends only on target amount, due frequency and pay cycle -
never on due dates or current balance.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any

from budgetmate.domain.cycles import MONTHLY, normalize, quantize_money, validate_pay_cycle, canonical_frequency
from budgetmate.domain.errors import AllocationEngineError

# Envelope subtypes
SUBTYPE_BILL = "bill"
SUBTYPE_SPENDING = "spending"
SUBTYPE_SAVINGS = "savings"
SUBTYPE_GOAL = "goal"
SUBTYPE_TRACKING = "tracking"

SUBTYPES = (SUBTYPE_BILL, SUBTYPE_SPENDING, SUBTYPE_SAVINGS, SUBTYPE_GOAL, SUBTYPE_TRACKING)
SCHEDULED_SUBTYPES = (SUBTYPE_BILL, SUBTYPE_SAVINGS, SUBTYPE_GOAL)

# Priorities, most urgent first
PRIORITY_ESSENTIAL = "essential"
PRIORITY_IMPORTANT = "important"
PRIORITY_DISCRETIONARY = "discretionary"

PRIORITY_RANK = {
    PRIORITY_ESSENTIAL: 0,
    PRIORITY_IMPORTANT: 1,
    PRIORITY_DISCRETIONARY: 2,
}


class EnvelopeValidationError(AllocationEngineError, ValueError):
    """Invalid envelope attributes"""
    pass


@dataclass
class Envelope:
    """
    Envelope: a named budget bucket with a target and a running balance.

    allocations maps income_source_id -> amount per user pay cycle.
    current_balance only moves through allocation postings.
    """
    id: int
    name: str
    subtype: str
    target_amount: Decimal
    due_frequency: str | None = None
    priority: str = PRIORITY_IMPORTANT
    allocations: Dict[int, Decimal] = field(default_factory=dict)
    current_balance: Decimal = Decimal("0")

    @property
    def allocated_per_cycle(self) -> Decimal:
        return sum(self.allocations.values(), Decimal("0"))

    @staticmethod
    def validate(subtype: str, target_amount: Decimal, due_frequency: str | None, priority: str) -> None:
        """Raise EnvelopeValidationError / InvalidFrequency for bad attributes."""
        if subtype not in SUBTYPES:
            raise EnvelopeValidationError(f"Unknown envelope subtype: {subtype}")
        if priority not in PRIORITY_RANK:
            raise EnvelopeValidationError(f"Unknown envelope priority: {priority}")
        if not target_amount.is_finite() or target_amount < 0:
            raise EnvelopeValidationError("Target amount must be a finite amount >= 0")
        if due_frequency is not None:
            canonical_frequency(due_frequency)

    @staticmethod
    def allocation_set(
        envelope_id: int,
        income_source_id: int,
        amount: Decimal,
        revision: int,
        rule_amount: Decimal,
    ) -> Dict[str, Any]:
        """
        Create envelope_allocation_set event payload

        Args:
            envelope_id: Envelope receiving the allocation
            income_source_id: Funding income source
            amount: Amount per user pay cycle
            revision: Allocation revision after the write
            rule_amount: Same amount in the source's per-occurrence units
        """
        return {
            "envelope_id": envelope_id,
            "income_source_id": income_source_id,
            "amount": str(amount),
            "revision": revision,
            "rule_amount": str(rule_amount),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }


def ideal_per_cycle(envelope, user_pay_cycle: str) -> Decimal:
    """
    Amount an envelope needs per user pay cycle.

    - target 0: 0 ("no target set")
    - tracking: 0 (mirrors an external balance)
    - spending: target is already per pay cycle
    - bill / savings / goal: target normalized from its due frequency;
      a missing due frequency counts as monthly

    Example:
        >>> ideal_per_cycle(Envelope(1, "Rent", "bill", Decimal("1300"), "monthly"), "fortnightly")
        Decimal('600.00')
    """
    user_pay_cycle = validate_pay_cycle(user_pay_cycle)
    target = Decimal(envelope.target_amount or 0)

    if target == 0 or envelope.subtype == SUBTYPE_TRACKING:
        return Decimal("0.00")

    if envelope.subtype == SUBTYPE_SPENDING:
        return quantize_money(target)

    if envelope.subtype not in SCHEDULED_SUBTYPES:
        raise EnvelopeValidationError(f"Unknown envelope subtype: {envelope.subtype}")

    return normalize(target, envelope.due_frequency or MONTHLY, user_pay_cycle)
