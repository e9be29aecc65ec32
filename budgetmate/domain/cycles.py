"""
Cycle normalizer - conversion between calendar frequencies and per-cycle amounts.

All arithmetic is Decimal. Rounding (half-up, 2 places) happens only on the
final output; chained calculations pass quantize=False.

Frequencies:
- weekly: 52 per year
- fortnightly: 26 per year
- twice_monthly: 24 per year
- monthly: 12 per year
- quarterly: 4 per year
- annual: 1 per year
"""
import calendar
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP

from budgetmate.domain.errors import InvalidFrequency

WEEKLY = "weekly"
FORTNIGHTLY = "fortnightly"
TWICE_MONTHLY = "twice_monthly"
MONTHLY = "monthly"
QUARTERLY = "quarterly"
ANNUAL = "annual"

CYCLES_PER_YEAR = {
    WEEKLY: 52,
    FORTNIGHTLY: 26,
    TWICE_MONTHLY: 24,
    MONTHLY: 12,
    QUARTERLY: 4,
    ANNUAL: 1,
}

FREQUENCIES = frozenset(CYCLES_PER_YEAR)
PAY_CYCLES = frozenset({WEEKLY, FORTNIGHTLY, TWICE_MONTHLY, MONTHLY})

_ALIASES = {
    "twice-monthly": TWICE_MONTHLY,
    "annually": ANNUAL,
}

CENT = Decimal("0.01")


def canonical_frequency(frequency: str) -> str:
    """Resolve aliases; raise InvalidFrequency for anything unknown."""
    if not isinstance(frequency, str):
        raise InvalidFrequency(frequency)
    key = _ALIASES.get(frequency, frequency)
    if key not in CYCLES_PER_YEAR:
        raise InvalidFrequency(frequency)
    return key


def cycles_per_year(frequency: str) -> int:
    return CYCLES_PER_YEAR[canonical_frequency(frequency)]


def validate_pay_cycle(pay_cycle: str) -> str:
    """User pay cycles are limited to weekly / fortnightly / twice_monthly / monthly."""
    key = canonical_frequency(pay_cycle)
    if key not in PAY_CYCLES:
        raise InvalidFrequency(pay_cycle)
    return key


def quantize_money(amount: Decimal) -> Decimal:
    """Round half-up to currency precision (2 places)."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize(amount, from_frequency: str, to_frequency: str, quantize: bool = True) -> Decimal:
    """
    Convert an amount expressed per `from_frequency` into per `to_frequency`.

    Args:
        amount: Amount per source cycle (Decimal, int or numeric string)
        from_frequency: Frequency the amount is expressed in
        to_frequency: Target frequency
        quantize: Round to cents (False keeps full precision for chaining)

    Returns:
        amount * cycles_per_year(from) / cycles_per_year(to)

    Example:
        >>> normalize(Decimal("1300"), "monthly", "fortnightly")
        Decimal('600.00')
        >>> normalize(Decimal("1000"), "weekly", "fortnightly")
        Decimal('2000.00')
    """
    source = cycles_per_year(from_frequency)
    target = cycles_per_year(to_frequency)
    if isinstance(amount, float):
        amount = str(amount)
    value = Decimal(amount) * source / target
    if quantize:
        return quantize_money(value)
    return value


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    day = min(d.day, last_day_of_month(year, month))
    return date(year, month, day)


def next_pay_date(from_date: date, frequency: str) -> date:
    """
    Date of the next occurrence after `from_date` for the given frequency.

    twice_monthly alternates between the first and second half of the month
    (15 days forward from the first half, back 15 days + one month otherwise).
    """
    frequency = canonical_frequency(frequency)
    if frequency == WEEKLY:
        return from_date + timedelta(days=7)
    if frequency == FORTNIGHTLY:
        return from_date + timedelta(days=14)
    if frequency == TWICE_MONTHLY:
        if from_date.day <= 15:
            last = last_day_of_month(from_date.year, from_date.month)
            return from_date.replace(day=min(from_date.day + 15, last))
        return add_months(from_date.replace(day=from_date.day - 15), 1)
    if frequency == MONTHLY:
        return add_months(from_date, 1)
    if frequency == QUARTERLY:
        return add_months(from_date, 3)
    return add_months(from_date, 12)
