"""
Income event allocator - executes an income source's saved plan when pay arrives.

Per transaction:
    unprocessed -> income_detected -> allocated
    unprocessed -> not_income (terminal)

One database transaction covers the whole allocation: the guard row in
income_allocations (UNIQUE source_transaction_id), the postings, the
envelope balance increments, the audit event and the pay date advance.
A concurrent duplicate hits the unique constraint, rolls back and returns
the result that won the race.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from budgetmate.application.income_matcher import IncomeTransactionMatcher
from budgetmate.application.income_sources import load_allocation_rule
from budgetmate.config import get_settings
from budgetmate.domain.allocation import scale_plan
from budgetmate.domain.cycles import next_pay_date
from budgetmate.domain.errors import AllocationEngineError, DuplicatePosting, NotFound, PersistenceFailure
from budgetmate.domain.income_source import (
    IncomeVariance, detect_variance, income_allocated_event, income_reconciled_event,
    TRANSACTION_ALLOCATED, TRANSACTION_INCOME_DETECTED, TRANSACTION_NOT_INCOME,
)
from budgetmate.infrastructure.db.models import (
    AllocationPosting, EnvelopeModel, IncomeAllocation, IncomeSourceModel, IncomeTransaction,
)
from budgetmate.infrastructure.eventlog.repository import EventLogRepository
from budgetmate.utils.money import format_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class ReversalError(AllocationEngineError, ValueError):
    """Allocation cannot be reversed (already reversed)"""
    pass


@dataclass
class AllocationResult:
    transaction_id: int
    processed: bool = False
    income_detected: bool = False
    allocated: bool = False
    income_source_id: int | None = None
    confidence: float | None = None
    postings: List[Dict[str, Any]] = field(default_factory=list)
    total_allocated: Decimal = ZERO
    unallocated: Decimal = ZERO
    needs_review: bool = False
    replayed: bool = False
    variance: Dict[str, Any] | None = None
    next_pay_date: str | None = None
    message: str = ""
    error: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "processed": self.processed,
            "income_detected": self.income_detected,
            "allocated": self.allocated,
            "income_source_id": self.income_source_id,
            "confidence": self.confidence,
            "postings": self.postings,
            "total_allocated": self.total_allocated,
            "unallocated": self.unallocated,
            "needs_review": self.needs_review,
            "replayed": self.replayed,
            "variance": self.variance,
            "next_pay_date": self.next_pay_date,
            "message": self.message,
            "error": self.error,
        }


def _posting_dict(posting: AllocationPosting) -> Dict[str, Any]:
    return {
        "posting_id": posting.id,
        "envelope_id": posting.envelope_id,
        "amount": Decimal(posting.amount),
    }


def _allocation_key(transaction_id: int) -> str:
    return f"income-allocation-{transaction_id}"


def get_income_transaction(db: Session, account_id: int, transaction_id: int) -> IncomeTransaction:
    transaction = db.query(IncomeTransaction).filter(
        IncomeTransaction.id == transaction_id,
        IncomeTransaction.account_id == account_id,
    ).first()
    if not transaction:
        raise NotFound(f"Transaction #{transaction_id} not found")
    return transaction


def find_allocation(db: Session, transaction_id: int) -> IncomeAllocation | None:
    return db.query(IncomeAllocation).filter(
        IncomeAllocation.source_transaction_id == transaction_id
    ).first()


class ProcessIncomeTransactionUseCase:
    """
    Use case: detect income on a transaction and post its allocation plan

    Safe to call any number of times per transaction.
    """

    def __init__(self, db: Session, matcher=None, threshold: float | None = None):
        self.db = db
        self.event_repo = EventLogRepository(db)
        self.matcher = matcher if matcher is not None else IncomeTransactionMatcher(db)
        self.threshold = threshold if threshold is not None else get_settings().INCOME_MATCH_THRESHOLD

    def execute(self, account_id: int, transaction_id: int, actor_user_id: int | None = None) -> AllocationResult:
        """
        Process one income transaction

        Args:
            account_id: Account ID
            transaction_id: Income transaction to process
            actor_user_id: Who triggered processing (audit)

        Returns:
            AllocationResult

        Raises:
            NotFound: transaction (or matched income source) not in this account
            PersistenceFailure: storage error; nothing was posted
        """
        transaction = get_income_transaction(self.db, account_id, transaction_id)

        prior = self._find_allocation(transaction.id)
        if prior is not None:
            return self._replay(transaction, prior)

        if transaction.status == TRANSACTION_NOT_INCOME:
            return AllocationResult(
                transaction_id=transaction.id,
                processed=True,
                confidence=transaction.match_confidence,
                replayed=True,
                message="Not detected as income",
            )

        match = self.matcher.match(transaction)
        if match.income_source_id is None or match.confidence < self.threshold:
            transaction.status = TRANSACTION_NOT_INCOME
            transaction.match_confidence = match.confidence
            self._commit()
            logger.info(
                "Transaction %d not income (confidence %.2f < %.2f): %s",
                transaction.id, match.confidence, self.threshold, match.reason,
            )
            return AllocationResult(
                transaction_id=transaction.id,
                processed=True,
                confidence=match.confidence,
                message=match.reason or "Not detected as income",
            )

        source = self.db.query(IncomeSourceModel).filter(
            IncomeSourceModel.id == match.income_source_id,
            IncomeSourceModel.account_id == account_id,
        ).first()
        if not source:
            raise NotFound(f"Income source #{match.income_source_id} not found")

        transaction.status = TRANSACTION_INCOME_DETECTED
        transaction.income_source_id = source.id
        transaction.match_confidence = match.confidence

        actual = Decimal(transaction.amount)
        typical = Decimal(source.typical_amount)
        variance = detect_variance(typical, actual)
        planned = scale_plan(load_allocation_rule(self.db, source.id), typical, actual)

        if not planned:
            # Detected income without a plan: leave it for manual review
            self._commit()
            logger.warning("Transaction %d matched source %d but the source has no allocation plan", transaction.id, source.id)
            return AllocationResult(
                transaction_id=transaction.id,
                processed=True,
                income_detected=True,
                income_source_id=source.id,
                confidence=match.confidence,
                unallocated=actual,
                needs_review=True,
                variance=variance.as_dict() if variance else None,
                message=f"No allocation plan for {source.name}; {format_money(actual)} left unallocated",
            )

        try:
            result = self._post(account_id, transaction, source, planned, variance, actor_user_id)
            self.db.commit()
        except DuplicatePosting:
            self.db.rollback()
            logger.info("Transaction %d was allocated concurrently; returning existing postings", transaction_id)
            prior = self._find_allocation(transaction_id)
            if prior is None:
                raise PersistenceFailure(f"Allocation for transaction #{transaction_id} vanished after conflict")
            return self._replay(transaction, prior)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailure(str(exc)) from exc

        result.confidence = match.confidence
        logger.info(
            "Transaction %d: posted %d allocation(s), %s to envelopes, %s unallocated",
            transaction.id, len(result.postings), result.total_allocated, result.unallocated,
        )
        return result

    def _find_allocation(self, transaction_id: int) -> IncomeAllocation | None:
        return find_allocation(self.db, transaction_id)

    def _post(
        self,
        account_id: int,
        transaction: IncomeTransaction,
        source: IncomeSourceModel,
        planned,
        variance: IncomeVariance | None,
        actor_user_id: int | None,
    ) -> AllocationResult:
        # A failed flush expires the instance, so the id is read up front
        transaction_id = transaction.id
        actual = Decimal(transaction.amount)
        total = sum((amount for _, amount in planned), ZERO)
        unallocated = actual - total

        allocation = IncomeAllocation(
            account_id=account_id,
            source_transaction_id=transaction.id,
            income_source_id=source.id,
            actual_amount=actual,
            total_allocated=total,
            unallocated=unallocated,
            is_reversed=False,
        )
        self.db.add(allocation)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise DuplicatePosting(transaction_id) from exc

        postings = []
        for envelope_id, amount in planned:
            posting = AllocationPosting(
                account_id=account_id,
                allocation_id=allocation.id,
                source_transaction_id=transaction.id,
                envelope_id=envelope_id,
                amount=amount,
            )
            self.db.add(posting)
            postings.append(posting)
            self.db.query(EnvelopeModel).filter(
                EnvelopeModel.id == envelope_id,
                EnvelopeModel.account_id == account_id,
            ).update(
                {EnvelopeModel.current_balance: EnvelopeModel.current_balance + amount},
                synchronize_session=False,
            )
        self.db.flush()

        posting_dicts = [_posting_dict(posting) for posting in postings]

        try:
            self.event_repo.append_event(
                account_id=account_id,
                event_type="income_allocated",
                payload=income_allocated_event(
                    transaction.id, source.id, actual,
                    [dict(p, amount=str(p["amount"])) for p in posting_dicts],
                    unallocated,
                ),
                actor_user_id=actor_user_id,
                idempotency_key=_allocation_key(transaction.id),
            )
        except IntegrityError as exc:
            raise DuplicatePosting(transaction_id) from exc

        previous_pay_date = source.next_pay_date
        new_pay_date = next_pay_date(transaction.occurred_on, source.frequency)
        source.next_pay_date = new_pay_date
        source.last_reconciled_date = transaction.occurred_on
        source.last_reconciled_transaction_id = transaction.id

        self.event_repo.append_event(
            account_id=account_id,
            event_type="income_reconciled",
            payload=income_reconciled_event(
                transaction.id, source.id, transaction.occurred_on,
                previous_pay_date, new_pay_date, variance,
            ),
            actor_user_id=actor_user_id,
        )

        transaction.status = TRANSACTION_ALLOCATED

        return AllocationResult(
            transaction_id=transaction.id,
            processed=True,
            income_detected=True,
            allocated=True,
            income_source_id=source.id,
            postings=posting_dicts,
            total_allocated=total,
            unallocated=unallocated,
            variance=variance.as_dict() if variance else None,
            next_pay_date=new_pay_date.isoformat(),
            message=f"Allocated {format_money(total)} to {len(posting_dicts)} envelope(s)",
        )

    def _replay(self, transaction: IncomeTransaction, allocation: IncomeAllocation) -> AllocationResult:
        """Rebuild the stored result of an earlier run without touching anything"""
        postings = self.db.query(AllocationPosting).filter(
            AllocationPosting.allocation_id == allocation.id,
            AllocationPosting.reverses_posting_id.is_(None),
        ).order_by(AllocationPosting.id.asc()).all()

        return AllocationResult(
            transaction_id=transaction.id,
            processed=True,
            income_detected=True,
            allocated=not allocation.is_reversed,
            income_source_id=allocation.income_source_id,
            confidence=transaction.match_confidence,
            postings=[_posting_dict(posting) for posting in postings],
            total_allocated=Decimal(allocation.total_allocated),
            unallocated=Decimal(allocation.unallocated),
            replayed=True,
            message="Allocation reversed" if allocation.is_reversed else "Already allocated",
        )

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailure(str(exc)) from exc


class ProcessIncomeTransactionsUseCase:
    """
    Use case: process a batch of income transactions

    Each transaction is independent: a failure is recorded on its own result
    and the rest of the batch carries on.
    """

    def __init__(self, db: Session, matcher=None, threshold: float | None = None):
        self.db = db
        self.single = ProcessIncomeTransactionUseCase(db, matcher=matcher, threshold=threshold)

    def execute(self, account_id: int, transaction_ids: List[int], actor_user_id: int | None = None) -> Dict[str, Any]:
        """
        Returns:
            {"results": [AllocationResult.as_dict()], "processed": n, "allocated": n, "failed": n}
        """
        results = []
        allocated = failed = 0

        for transaction_id in transaction_ids:
            try:
                result = self.single.execute(account_id, transaction_id, actor_user_id=actor_user_id)
            except (AllocationEngineError, SQLAlchemyError) as exc:
                self.db.rollback()
                logger.exception("Income allocation failed for transaction %d", transaction_id)
                failed += 1
                result = AllocationResult(transaction_id=transaction_id, error=str(exc), message="Processing failed")
            else:
                if result.allocated:
                    allocated += 1
            results.append(result.as_dict())

        logger.info(
            "Income batch: %d transaction(s), %d allocated, %d failed (account %d)",
            len(transaction_ids), allocated, failed, account_id,
        )
        return {
            "results": results,
            "processed": len(transaction_ids) - failed,
            "allocated": allocated,
            "failed": failed,
        }


class ReverseIncomeAllocationUseCase:
    """
    Use case: undo an income allocation with compensating postings

    Original postings are never modified; each gets a negated twin with
    reverses_posting_id set (unique, so a posting is reversed at most once).
    """

    def __init__(self, db: Session):
        self.db = db
        self.event_repo = EventLogRepository(db)

    def execute(self, account_id: int, transaction_id: int, actor_user_id: int | None = None) -> AllocationResult:
        transaction = get_income_transaction(self.db, account_id, transaction_id)
        allocation = find_allocation(self.db, transaction.id)
        if allocation is None:
            raise NotFound(f"Transaction #{transaction_id} has no allocation to reverse")
        if allocation.is_reversed:
            raise ReversalError(f"Allocation for transaction #{transaction_id} is already reversed")

        originals = self.db.query(AllocationPosting).filter(
            AllocationPosting.allocation_id == allocation.id,
            AllocationPosting.reverses_posting_id.is_(None),
        ).order_by(AllocationPosting.id.asc()).all()

        try:
            compensations = []
            for original in originals:
                amount = -Decimal(original.amount)
                compensation = AllocationPosting(
                    account_id=account_id,
                    allocation_id=allocation.id,
                    source_transaction_id=transaction.id,
                    envelope_id=original.envelope_id,
                    amount=amount,
                    reverses_posting_id=original.id,
                )
                self.db.add(compensation)
                compensations.append(compensation)
                self.db.query(EnvelopeModel).filter(
                    EnvelopeModel.id == original.envelope_id,
                    EnvelopeModel.account_id == account_id,
                ).update(
                    {EnvelopeModel.current_balance: EnvelopeModel.current_balance + amount},
                    synchronize_session=False,
                )
            allocation.is_reversed = True
            self.db.flush()

            self.event_repo.append_event(
                account_id=account_id,
                event_type="income_allocation_reversed",
                payload={
                    "transaction_id": transaction.id,
                    "allocation_id": allocation.id,
                    "reversed_posting_ids": [original.id for original in originals],
                },
                actor_user_id=actor_user_id,
                idempotency_key=f"income-allocation-reversal-{transaction.id}",
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ReversalError(f"Allocation for transaction #{transaction_id} is already reversed") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailure(str(exc)) from exc

        logger.info("Transaction %d: reversed %d posting(s)", transaction.id, len(compensations))

        return AllocationResult(
            transaction_id=transaction.id,
            processed=True,
            income_detected=True,
            allocated=False,
            income_source_id=allocation.income_source_id,
            postings=[_posting_dict(posting) for posting in compensations],
            total_allocated=-Decimal(allocation.total_allocated),
            unallocated=Decimal(allocation.unallocated),
            message=f"Reversed {format_money(allocation.total_allocated)} from {len(compensations)} envelope(s)",
        )
