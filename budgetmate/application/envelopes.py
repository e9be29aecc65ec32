"""
Envelope use cases and loaders
"""
from collections import defaultdict
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from budgetmate.domain.allocation import parse_amount
from budgetmate.domain.cycles import canonical_frequency
from budgetmate.domain.envelope import Envelope, EnvelopeValidationError, PRIORITY_IMPORTANT
from budgetmate.domain.errors import NotFound
from budgetmate.infrastructure.db.models import EnvelopeModel, EnvelopeIncomeAllocation


class CreateEnvelopeUseCase:
    """Use case: create a budget envelope"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        account_id: int,
        name: str,
        subtype: str,
        target_amount,
        due_frequency: str | None = None,
        priority: str = PRIORITY_IMPORTANT,
    ) -> int:
        """
        Create an envelope

        Args:
            account_id: Account ID (user.id)
            name: Envelope name
            subtype: bill, spending, savings, goal or tracking
            target_amount: Target (>= 0)
            due_frequency: How often the target falls due (bill/savings/goal)
            priority: essential, important or discretionary

        Returns:
            envelope_id
        """
        name = name.strip()
        if not name:
            raise EnvelopeValidationError("Envelope name cannot be empty")

        target = parse_amount(target_amount)
        Envelope.validate(subtype, target, due_frequency, priority)

        envelope = EnvelopeModel(
            account_id=account_id,
            name=name,
            subtype=subtype,
            target_amount=target,
            due_frequency=canonical_frequency(due_frequency) if due_frequency else None,
            priority=priority,
            current_balance=Decimal("0"),
            allocation_revision=0,
            is_archived=False,
        )
        self.db.add(envelope)
        self.db.commit()

        return envelope.id


def get_envelope(db: Session, account_id: int, envelope_id: int) -> EnvelopeModel:
    """Envelope owned by the account, or NotFound"""
    envelope = db.query(EnvelopeModel).filter(
        EnvelopeModel.id == envelope_id,
        EnvelopeModel.account_id == account_id,
    ).first()
    if not envelope:
        raise NotFound(f"Envelope #{envelope_id} not found")
    return envelope


def load_envelopes(db: Session, account_id: int, include_archived: bool = False) -> List[Envelope]:
    """Domain envelopes with their allocation maps, ordered by id"""
    query = db.query(EnvelopeModel).filter(EnvelopeModel.account_id == account_id)
    if not include_archived:
        query = query.filter(EnvelopeModel.is_archived == False)
    rows = query.order_by(EnvelopeModel.id.asc()).all()

    allocations = defaultdict(dict)
    entries = db.query(EnvelopeIncomeAllocation).filter(
        EnvelopeIncomeAllocation.account_id == account_id
    ).all()
    for entry in entries:
        allocations[entry.envelope_id][entry.income_source_id] = Decimal(entry.amount)

    return [
        Envelope(
            id=row.id,
            name=row.name,
            subtype=row.subtype,
            target_amount=Decimal(row.target_amount),
            due_frequency=row.due_frequency,
            priority=row.priority,
            allocations=allocations.get(row.id, {}),
            current_balance=Decimal(row.current_balance),
        )
        for row in rows
    ]
