"""
Allocation arithmetic: proportional suggestions and plan scaling.

Pure functions, Decimal only. Rounding happens once per output value.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Sequence, Tuple

from budgetmate.domain.cycles import normalize, quantize_money
from budgetmate.domain.errors import InvalidAmount, NoIncomeAvailable
from budgetmate.domain.income_source import RuleLine

ZERO = Decimal("0")


def parse_amount(value) -> Decimal:
    """
    Coerce user input into a finite, non-negative Decimal.

    Raises:
        InvalidAmount: negative, NaN/Infinity, or not a number
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidAmount("Amount must be finite")
    if amount < 0:
        raise InvalidAmount("Amount must be zero or greater")
    return amount


@dataclass(frozen=True)
class IncomeShare:
    income_source_id: int
    amount_per_cycle: Decimal  # unrounded
    share: Decimal  # unrounded fraction of total income


@dataclass(frozen=True)
class IncomeDistribution:
    total_per_cycle: Decimal  # unrounded
    shares: Tuple[IncomeShare, ...]


def income_shares(sources: Iterable, pay_cycle: str) -> IncomeDistribution:
    """
    Normalize active income sources onto the user's pay cycle.

    Args:
        sources: Objects with id, typical_amount, frequency, is_active
        pay_cycle: User pay cycle

    Raises:
        NoIncomeAvailable: no active source, or total income is zero
    """
    per_cycle: List[Tuple[int, Decimal]] = []
    for source in sources:
        if not source.is_active:
            continue
        amount = normalize(source.typical_amount, source.frequency, pay_cycle, quantize=False)
        per_cycle.append((source.id, amount))

    total = sum((amount for _, amount in per_cycle), ZERO)
    if total <= 0:
        raise NoIncomeAvailable()

    return IncomeDistribution(
        total_per_cycle=total,
        shares=tuple(
            IncomeShare(income_source_id=source_id, amount_per_cycle=amount, share=amount / total)
            for source_id, amount in per_cycle
        ),
    )


def suggest_split(ideal: Decimal, distribution: IncomeDistribution) -> Dict[int, Decimal]:
    """
    Split an envelope's ideal contribution across income sources by share.

    Each value is ideal * source / total rounded to cents; rounding
    remainders are not redistributed.

    Example:
        sources A=1500, B=500 (same cycle), ideal 600 -> {A: 450.00, B: 150.00}
    """
    return {
        share.income_source_id: quantize_money(ideal * share.amount_per_cycle / distribution.total_per_cycle)
        for share in distribution.shares
    }


def scale_plan(
    rule: Sequence[RuleLine],
    typical_amount: Decimal,
    actual_amount: Decimal,
) -> List[Tuple[int, Decimal]]:
    """
    Turn a saved allocation rule into posting amounts for one pay event.

    Lines with amount <= 0 are skipped. When pay equals the typical amount and
    the plan fits inside it, the rule is used verbatim. Otherwise every line is
    scaled by actual / base, where base is the larger of the typical amount and
    the plan total, and the rounding residual goes to the largest line (first in
    rule order on ties). Postings never add up to more than the actual amount;
    they equal it exactly when the plan covers the whole typical amount.

    Example:
        rule {A: 1200, B: 1300}, typical 2000, actual 1000 -> A 480.00, B 520.00

    Returns:
        [(envelope_id, amount)] in rule order
    """
    lines = [line for line in rule if line.amount > 0]
    if not lines:
        return []

    plan_total = sum((line.amount for line in lines), ZERO)
    if actual_amount == typical_amount and plan_total <= typical_amount:
        return [(line.envelope_id, quantize_money(line.amount)) for line in lines]

    if typical_amount <= 0:
        raise InvalidAmount("Typical income amount must be greater than zero")

    base = max(typical_amount, plan_total)
    target_total = quantize_money(plan_total * actual_amount / base)
    amounts = [quantize_money(line.amount * actual_amount / base) for line in lines]

    residual = target_total - sum(amounts, ZERO)
    if residual:
        largest = max(range(len(lines)), key=lambda i: (lines[i].amount, -i))
        amounts[largest] += residual

    return [(line.envelope_id, amount) for line, amount in zip(lines, amounts)]
