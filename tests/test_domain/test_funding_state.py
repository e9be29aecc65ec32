"""Tests for funding state, ranking and income variance"""
from dataclasses import dataclass
from decimal import Decimal

from budgetmate.domain.funding import (
    FundingStatus, funding_status, rank_unfunded,
    STATE_FULLY_FUNDED, STATE_SHORTFALL, STATE_UNFUNDED, STATE_NO_TARGET,
)
from budgetmate.domain.income_source import detect_variance


@dataclass
class Row:
    name: str
    priority: str
    status: FundingStatus


class TestFundingStatus:
    def test_shortfall(self):
        status = funding_status(Decimal("100"), Decimal("60"))

        assert status.state == STATE_SHORTFALL
        assert status.gap == Decimal("40.00")
        assert status.surplus == Decimal("0.00")

    def test_unfunded(self):
        status = funding_status(Decimal("100"), Decimal("0"))
        assert status.state == STATE_UNFUNDED
        assert status.gap == Decimal("100.00")

    def test_gap_within_epsilon_is_fully_funded(self):
        status = funding_status(Decimal("100.00"), Decimal("99.99"))
        assert status.state == STATE_FULLY_FUNDED
        assert status.gap == Decimal("0.01")

    def test_over_allocated(self):
        status = funding_status(Decimal("100"), Decimal("120"))
        assert status.state == STATE_FULLY_FUNDED
        assert status.gap == Decimal("0.00")
        assert status.surplus == Decimal("20.00")

    def test_no_target(self):
        status = funding_status(Decimal("0"), Decimal("10"))
        assert status.state == STATE_NO_TARGET
        assert status.surplus == Decimal("10.00")
        assert not status.needs_funding

    def test_custom_epsilon(self):
        status = funding_status(Decimal("100"), Decimal("99.50"), epsilon=Decimal("1.00"))
        assert status.state == STATE_FULLY_FUNDED


def test_rank_unfunded_priority_before_gap():
    """Essential gap of 5 ranks above discretionary gap of 500"""
    rows = [
        Row("Holiday", "discretionary", funding_status(Decimal("500"), Decimal("0"))),
        Row("Power", "essential", funding_status(Decimal("100"), Decimal("95"))),
        Row("Car", "important", funding_status(Decimal("80"), Decimal("0"))),
        Row("Rent", "essential", funding_status(Decimal("600"), Decimal("600"))),
    ]

    ranked = rank_unfunded(rows)

    assert [row.name for row in ranked] == ["Power", "Car", "Holiday"]


def test_rank_unfunded_gap_then_name():
    rows = [
        Row("Water", "essential", funding_status(Decimal("50"), Decimal("0"))),
        Row("Gas", "essential", funding_status(Decimal("50"), Decimal("0"))),
        Row("Rates", "essential", funding_status(Decimal("200"), Decimal("0"))),
    ]
    assert [row.name for row in rank_unfunded(rows)] == ["Rates", "Gas", "Water"]


class TestIncomeVariance:
    def test_small_difference_ignored(self):
        assert detect_variance(Decimal("1000"), Decimal("1000.50")) is None

    def test_small_percentage_ignored(self):
        assert detect_variance(Decimal("10000"), Decimal("10050")) is None

    def test_bonus(self):
        variance = detect_variance(Decimal("1000"), Decimal("1100"))

        assert variance.variance_type == "bonus"
        assert variance.difference == Decimal("100.00")
        assert variance.percentage_change == Decimal("10.00")

    def test_shortfall(self):
        variance = detect_variance(Decimal("1000"), Decimal("950"))
        assert variance.variance_type == "shortfall"
        assert variance.difference == Decimal("-50.00")
