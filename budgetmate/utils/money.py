"""
Unified money formatting for messages and logs.

Usage:
    from budgetmate.utils.money import format_money

    format_money(1500, "NZD")        -> "$1,500.00"
    format_money(Decimal("12.5"))    -> "$12.50"
    format_money(-40, "EUR")         -> "-40.00 EUR"
"""
from decimal import Decimal

# Dollar currencies get a "$" prefix, everything else an ISO code suffix
_DOLLAR_CURRENCIES = {"NZD", "AUD", "USD", "CAD"}


def format_money(amount, currency: str = "NZD", decimals: int = 2) -> str:
    """
    Format an amount with thousands separators.

    Args:
        amount: int / float / Decimal / str
        currency: ISO currency code
        decimals: digits after the point

    Returns:
        "$1,500.00" / "-40.00 EUR"
    """
    if isinstance(amount, str):
        amount = Decimal(amount)
    sign = "-" if amount < 0 else ""
    formatted = f"{{:,.{decimals}f}}".format(abs(amount))
    if currency in _DOLLAR_CURRENCIES:
        return f"{sign}${formatted}"
    return f"{sign}{formatted} {currency}"
