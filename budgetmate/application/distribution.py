"""
Multi-income distributor

Suggestion mode splits each envelope's ideal contribution across active
income sources in proportion to their share of income per pay cycle.
Suggestions are re-derived on every call and never stored, so rounding
drift cannot accumulate.

Manual mode writes one allocation map entry (envelope <- income source,
amount per user pay cycle) and mirrors it into the income source's saved
plan in the source's own per-occurrence units.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from budgetmate.application.accounts import get_user_pay_cycle
from budgetmate.application.envelopes import get_envelope, load_envelopes
from budgetmate.application.income_sources import get_income_source, load_income_sources
from budgetmate.domain.allocation import income_shares, parse_amount, suggest_split
from budgetmate.domain.cycles import normalize, quantize_money
from budgetmate.domain.envelope import Envelope, ideal_per_cycle
from budgetmate.domain.errors import AllocationConflict
from budgetmate.infrastructure.db.models import (
    EnvelopeModel, EnvelopeIncomeAllocation, IncomeAllocationRule, IncomeSourceModel,
)
from budgetmate.infrastructure.eventlog.repository import EventLogRepository

logger = logging.getLogger(__name__)


class GetSuggestionsUseCase:
    """
    Use case: proportional funding suggestions for every envelope

    Raises NoIncomeAvailable when there is no active income to split.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, account_id: int) -> Dict[str, Any]:
        """
        Returns:
            {
                "pay_cycle": "fortnightly",
                "total_income_per_cycle": Decimal,
                "income_sources": [{income_source_id, name, frequency, typical_amount,
                                    amount_per_cycle, share}],
                "envelopes": [{envelope_id, name, ideal_per_cycle,
                               suggested_split: {income_source_id: amount}}],
            }
        """
        pay_cycle = get_user_pay_cycle(self.db, account_id)
        sources = load_income_sources(self.db, account_id)
        distribution = income_shares(sources, pay_cycle)
        names = {source.id: source for source in sources}

        envelopes = []
        for envelope in load_envelopes(self.db, account_id):
            ideal = ideal_per_cycle(envelope, pay_cycle)
            envelopes.append({
                "envelope_id": envelope.id,
                "name": envelope.name,
                "ideal_per_cycle": ideal,
                "suggested_split": suggest_split(ideal, distribution),
            })

        return {
            "pay_cycle": pay_cycle,
            "total_income_per_cycle": quantize_money(distribution.total_per_cycle),
            "income_sources": [
                {
                    "income_source_id": share.income_source_id,
                    "name": names[share.income_source_id].name,
                    "frequency": names[share.income_source_id].frequency,
                    "typical_amount": names[share.income_source_id].typical_amount,
                    "amount_per_cycle": quantize_money(share.amount_per_cycle),
                    "share": share.share.quantize(Decimal("0.0001")),
                }
                for share in distribution.shares
            ],
            "envelopes": envelopes,
        }


class SetAllocationUseCase:
    """
    Use case: manual allocation write

    Last writer wins unless the caller passes expected_revision, in which case
    a stale revision raises AllocationConflict. No upper bound is enforced;
    over-allocation is shown by the funding status, not rejected here.
    """

    def __init__(self, db: Session):
        self.db = db
        self.event_repo = EventLogRepository(db)

    def execute(
        self,
        account_id: int,
        envelope_id: int,
        income_source_id: int,
        amount,
        expected_revision: int | None = None,
        actor_user_id: int | None = None,
    ) -> Dict[str, Any]:
        """
        Set how much one income source funds one envelope per pay cycle

        Args:
            account_id: Account ID
            envelope_id: Envelope being funded
            income_source_id: Active income source funding it
            amount: Amount per user pay cycle (>= 0)
            expected_revision: Envelope allocation revision the caller last saw
            actor_user_id: Who made the change

        Returns:
            {envelope_id, income_source_id, amount, rule_amount, revision, allocated_per_cycle}

        Raises:
            InvalidAmount: negative or non-finite amount
            NotFound: envelope or active income source not in this account
            AllocationConflict: expected_revision is stale
        """
        pay_cycle = get_user_pay_cycle(self.db, account_id)
        result = self.stage(
            account_id, pay_cycle, envelope_id, income_source_id, amount,
            expected_revision=expected_revision, actor_user_id=actor_user_id,
        )
        self.db.commit()
        return result

    def stage(
        self,
        account_id: int,
        pay_cycle: str,
        envelope_id: int,
        income_source_id: int,
        amount,
        expected_revision: int | None = None,
        actor_user_id: int | None = None,
    ) -> Dict[str, Any]:
        """Same as execute, without committing (used for bulk writes)"""
        amount = quantize_money(parse_amount(amount))
        envelope = get_envelope(self.db, account_id, envelope_id)
        source = get_income_source(self.db, account_id, income_source_id, active_only=True)

        revision = self._bump_revision(envelope, expected_revision)

        entry = self.db.query(EnvelopeIncomeAllocation).filter(
            EnvelopeIncomeAllocation.envelope_id == envelope.id,
            EnvelopeIncomeAllocation.income_source_id == source.id,
        ).first()
        if entry:
            entry.amount = amount
        else:
            self.db.add(EnvelopeIncomeAllocation(
                account_id=account_id,
                envelope_id=envelope.id,
                income_source_id=source.id,
                amount=amount,
            ))
        self.db.flush()

        rule_amount = normalize(amount, pay_cycle, source.frequency)
        self._write_rule_line(account_id, source, envelope.id, rule_amount)

        self.event_repo.append_event(
            account_id=account_id,
            event_type="envelope_allocation_set",
            payload=Envelope.allocation_set(envelope.id, source.id, amount, revision, rule_amount),
            actor_user_id=actor_user_id,
        )

        allocated = self.db.query(func.coalesce(func.sum(EnvelopeIncomeAllocation.amount), 0)).filter(
            EnvelopeIncomeAllocation.envelope_id == envelope.id
        ).scalar()

        logger.info(
            "Allocation set: envelope %d <- source %d = %s per %s (rev %d)",
            envelope.id, source.id, amount, pay_cycle, revision,
        )

        return {
            "envelope_id": envelope.id,
            "income_source_id": source.id,
            "amount": amount,
            "rule_amount": rule_amount,
            "revision": revision,
            "allocated_per_cycle": quantize_money(Decimal(str(allocated))),
        }

    def _bump_revision(self, envelope: EnvelopeModel, expected_revision: int | None) -> int:
        """Increment allocation_revision in SQL; conditional when a revision is expected"""
        query = self.db.query(EnvelopeModel).filter(EnvelopeModel.id == envelope.id)
        if expected_revision is not None:
            query = query.filter(EnvelopeModel.allocation_revision == expected_revision)

        updated = query.update(
            {EnvelopeModel.allocation_revision: EnvelopeModel.allocation_revision + 1},
            synchronize_session=False,
        )
        self.db.refresh(envelope)

        if updated == 0:
            raise AllocationConflict(envelope.id, expected_revision, envelope.allocation_revision)
        return envelope.allocation_revision

    def _write_rule_line(self, account_id: int, source: IncomeSourceModel, envelope_id: int, rule_amount: Decimal) -> None:
        line = self.db.query(IncomeAllocationRule).filter(
            IncomeAllocationRule.income_source_id == source.id,
            IncomeAllocationRule.envelope_id == envelope_id,
        ).first()
        if line:
            line.amount = rule_amount
            return

        last_position = self.db.query(func.max(IncomeAllocationRule.position)).filter(
            IncomeAllocationRule.income_source_id == source.id
        ).scalar()
        self.db.add(IncomeAllocationRule(
            account_id=account_id,
            income_source_id=source.id,
            envelope_id=envelope_id,
            position=(last_position + 1) if last_position is not None else 0,
            amount=rule_amount,
        ))
        self.db.flush()


class ApplySuggestionsUseCase:
    """
    Use case: accept the current suggestions as the confirmed allocation

    Every non-zero suggested split is written through SetAllocationUseCase
    in a single commit.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        account_id: int,
        envelope_ids: List[int] | None = None,
        actor_user_id: int | None = None,
    ) -> List[Dict[str, Any]]:
        suggestions = GetSuggestionsUseCase(self.db).execute(account_id)
        writer = SetAllocationUseCase(self.db)

        written = []
        for row in suggestions["envelopes"]:
            if envelope_ids is not None and row["envelope_id"] not in envelope_ids:
                continue
            if row["ideal_per_cycle"] == 0:
                continue
            for income_source_id, amount in row["suggested_split"].items():
                if amount == 0:
                    continue
                written.append(writer.stage(
                    account_id, suggestions["pay_cycle"], row["envelope_id"], income_source_id, amount,
                    actor_user_id=actor_user_id,
                ))

        self.db.commit()
        logger.info("Applied %d suggested allocation(s) for account %d", len(written), account_id)
        return written
