"""
Funding state of an envelope: ideal vs allocated per pay cycle.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List

from budgetmate.domain.cycles import quantize_money
from budgetmate.domain.envelope import PRIORITY_RANK, PRIORITY_DISCRETIONARY

STATE_FULLY_FUNDED = "fully_funded"
STATE_SHORTFALL = "shortfall"
STATE_UNFUNDED = "unfunded"
STATE_NO_TARGET = "no_target"

DEFAULT_EPSILON = Decimal("0.01")


@dataclass(frozen=True)
class FundingStatus:
    ideal: Decimal
    allocated: Decimal
    gap: Decimal
    surplus: Decimal
    state: str

    @property
    def needs_funding(self) -> bool:
        return self.state in (STATE_SHORTFALL, STATE_UNFUNDED)


def funding_status(ideal: Decimal, allocated: Decimal, epsilon: Decimal = DEFAULT_EPSILON) -> FundingStatus:
    """
    gap = max(0, ideal - allocated); surplus = max(0, allocated - ideal).

    States, checked in order:
    - no_target: ideal is 0
    - fully_funded: gap <= epsilon
    - unfunded: nothing allocated
    - shortfall: otherwise
    """
    gap = max(Decimal("0"), ideal - allocated)
    surplus = max(Decimal("0"), allocated - ideal)

    if ideal == 0:
        state = STATE_NO_TARGET
    elif gap <= epsilon:
        state = STATE_FULLY_FUNDED
    elif allocated == 0:
        state = STATE_UNFUNDED
    else:
        state = STATE_SHORTFALL

    return FundingStatus(
        ideal=quantize_money(ideal),
        allocated=quantize_money(allocated),
        gap=quantize_money(gap),
        surplus=quantize_money(surplus),
        state=state,
    )


def rank_unfunded(rows: Iterable) -> List:
    """
    Envelopes needing funding, most urgent first.

    Rows need .priority, .name and .status (FundingStatus). Order is
    priority rank (essential < important < discretionary), then gap
    descending, then name - an essential shortfall of 5 beats a
    discretionary shortfall of 500.
    """
    pending = [row for row in rows if row.status.needs_funding]
    fallback = PRIORITY_RANK[PRIORITY_DISCRETIONARY] + 1
    return sorted(
        pending,
        key=lambda row: (PRIORITY_RANK.get(row.priority, fallback), -row.status.gap, row.name),
    )
