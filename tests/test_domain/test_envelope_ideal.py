"""Tests for Envelope entity and ideal contribution"""
import pytest
from decimal import Decimal

from budgetmate.domain.envelope import Envelope, EnvelopeValidationError, ideal_per_cycle
from budgetmate.domain.errors import InvalidFrequency


def _envelope(subtype, target, due_frequency=None, **kwargs):
    return Envelope(id=1, name="Test", subtype=subtype, target_amount=Decimal(target),
                    due_frequency=due_frequency, **kwargs)


def test_monthly_rent_on_fortnightly_pay():
    """Rent 1300/month paid fortnightly needs 600 per pay"""
    rent = _envelope("bill", "1300", "monthly")
    assert ideal_per_cycle(rent, "fortnightly") == Decimal("600.00")


def test_annual_insurance_on_monthly_pay():
    insurance = _envelope("bill", "1200", "annual")
    assert ideal_per_cycle(insurance, "monthly") == Decimal("100.00")


def test_quarterly_savings_on_weekly_pay():
    savings = _envelope("savings", "300", "quarterly")
    assert ideal_per_cycle(savings, "weekly") == Decimal("23.08")


def test_goal_uses_due_frequency():
    goal = _envelope("goal", "2600", "annual")
    assert ideal_per_cycle(goal, "fortnightly") == Decimal("100.00")


def test_spending_target_is_already_per_cycle():
    groceries = _envelope("spending", "250", "monthly")
    assert ideal_per_cycle(groceries, "fortnightly") == Decimal("250.00")
    assert ideal_per_cycle(groceries, "weekly") == Decimal("250.00")


def test_tracking_envelope_needs_nothing():
    kiwisaver = _envelope("tracking", "5000", "monthly")
    assert ideal_per_cycle(kiwisaver, "fortnightly") == Decimal("0.00")


def test_zero_target_means_no_target():
    assert ideal_per_cycle(_envelope("bill", "0", "monthly"), "weekly") == Decimal("0.00")


def test_missing_due_frequency_counts_as_monthly():
    rent = _envelope("bill", "1300")
    assert ideal_per_cycle(rent, "fortnightly") == Decimal("600.00")


def test_ignores_current_balance():
    rent = _envelope("bill", "1300", "monthly", current_balance=Decimal("5000"))
    assert ideal_per_cycle(rent, "fortnightly") == Decimal("600.00")


def test_invalid_pay_cycle_raises():
    with pytest.raises(InvalidFrequency):
        ideal_per_cycle(_envelope("bill", "100", "monthly"), "annual")


def test_invalid_due_frequency_raises():
    with pytest.raises(InvalidFrequency):
        ideal_per_cycle(_envelope("bill", "100", "daily"), "weekly")


def test_allocated_per_cycle_sums_allocations():
    envelope = _envelope("bill", "1300", "monthly", allocations={1: Decimal("450"), 2: Decimal("150")})
    assert envelope.allocated_per_cycle == Decimal("600")


class TestValidate:
    def test_valid(self):
        Envelope.validate("bill", Decimal("100"), "monthly", "essential")

    def test_unknown_subtype(self):
        with pytest.raises(EnvelopeValidationError):
            Envelope.validate("debt", Decimal("100"), "monthly", "essential")

    def test_unknown_priority(self):
        with pytest.raises(EnvelopeValidationError):
            Envelope.validate("bill", Decimal("100"), "monthly", "urgent")

    def test_negative_target(self):
        with pytest.raises(EnvelopeValidationError):
            Envelope.validate("bill", Decimal("-1"), "monthly", "important")

    def test_unknown_due_frequency(self):
        with pytest.raises(InvalidFrequency):
            Envelope.validate("bill", Decimal("100"), "daily", "important")


def test_allocation_set_payload():
    payload = Envelope.allocation_set(7, 3, Decimal("450.00"), 2, Decimal("975.00"))

    assert payload["envelope_id"] == 7
    assert payload["income_source_id"] == 3
    assert payload["amount"] == "450.00"
    assert payload["rule_amount"] == "975.00"
    assert payload["revision"] == 2
    assert "updated_at" in payload
