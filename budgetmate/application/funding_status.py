"""
Funding status tracker - how well each envelope is funded per pay cycle.

Views:
- by-income: envelopes grouped under the income source funding them
- unfunded: envelopes with a shortfall, most urgent first
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from budgetmate.application.accounts import get_user_pay_cycle
from budgetmate.application.envelopes import load_envelopes
from budgetmate.application.income_sources import load_income_sources
from budgetmate.config import get_settings
from budgetmate.domain.cycles import normalize, quantize_money
from budgetmate.domain.envelope import Envelope, PRIORITY_RANK, ideal_per_cycle
from budgetmate.domain.funding import FundingStatus, funding_status, rank_unfunded

VIEW_BY_INCOME = "by-income"
VIEW_UNFUNDED = "unfunded"
VIEWS = (VIEW_BY_INCOME, VIEW_UNFUNDED)


@dataclass
class EnvelopeFundingRow:
    envelope_id: int
    name: str
    subtype: str
    priority: str
    status: FundingStatus
    allocations: Dict[int, Decimal] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "envelope_id": self.envelope_id,
            "name": self.name,
            "subtype": self.subtype,
            "priority": self.priority,
            "ideal": self.status.ideal,
            "allocated": self.status.allocated,
            "gap": self.status.gap,
            "surplus": self.status.surplus,
            "state": self.status.state,
        }


def envelope_status(envelope: Envelope, pay_cycle: str, epsilon: Decimal | None = None) -> FundingStatus:
    """Funding status of a single envelope against its ideal contribution"""
    if epsilon is None:
        epsilon = get_settings().ROUNDING_EPSILON
    ideal = ideal_per_cycle(envelope, pay_cycle)
    return funding_status(ideal, envelope.allocated_per_cycle, epsilon)


class FundingStatusUseCase:
    """Use case: funding status rows for display"""

    def __init__(self, db: Session, epsilon: Decimal | None = None):
        self.db = db
        self.epsilon = epsilon if epsilon is not None else get_settings().ROUNDING_EPSILON

    def execute(self, account_id: int, view: str = VIEW_UNFUNDED) -> Dict[str, Any]:
        """
        Args:
            account_id: Account ID
            view: "by-income" or "unfunded"

        Raises:
            ValueError: unknown view
        """
        if view not in VIEWS:
            raise ValueError(f"Unknown funding view: {view}. Use 'by-income' or 'unfunded'")

        pay_cycle = get_user_pay_cycle(self.db, account_id)
        rows = self.build_rows(account_id, pay_cycle)

        if view == VIEW_UNFUNDED:
            ranked = rank_unfunded(rows)
            return {
                "view": view,
                "pay_cycle": pay_cycle,
                "total_gap": quantize_money(sum((row.status.gap for row in ranked), Decimal("0"))),
                "rows": [row.as_dict() for row in ranked],
            }

        return {
            "view": view,
            "pay_cycle": pay_cycle,
            "groups": self._group_by_income(account_id, pay_cycle, rows),
            "unassigned": [
                row.as_dict() for row in _by_priority(rows)
                if not row.allocations and row.status.ideal > 0
            ],
        }

    def build_rows(self, account_id: int, pay_cycle: str) -> List[EnvelopeFundingRow]:
        return [
            EnvelopeFundingRow(
                envelope_id=envelope.id,
                name=envelope.name,
                subtype=envelope.subtype,
                priority=envelope.priority,
                status=envelope_status(envelope, pay_cycle, self.epsilon),
                allocations=envelope.allocations,
            )
            for envelope in load_envelopes(self.db, account_id)
        ]

    def _group_by_income(self, account_id: int, pay_cycle: str, rows: List[EnvelopeFundingRow]) -> List[Dict[str, Any]]:
        groups = []
        for source in load_income_sources(self.db, account_id):
            income_per_cycle = normalize(source.typical_amount, source.frequency, pay_cycle)
            funded = [row for row in _by_priority(rows) if source.id in row.allocations]
            allocated_total = sum((row.allocations[source.id] for row in funded), Decimal("0"))

            groups.append({
                "income_source_id": source.id,
                "name": source.name,
                "income_per_cycle": income_per_cycle,
                "allocated_total": quantize_money(allocated_total),
                "unallocated": quantize_money(income_per_cycle - allocated_total),
                "envelopes": [
                    dict(row.as_dict(), amount_from_source=row.allocations[source.id])
                    for row in funded
                ],
            })
        return groups


def _by_priority(rows: List[EnvelopeFundingRow]) -> List[EnvelopeFundingRow]:
    return sorted(rows, key=lambda row: (PRIORITY_RANK.get(row.priority, len(PRIORITY_RANK)), row.name))
