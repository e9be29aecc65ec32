"""
Tests for income event allocation (process, batch, reverse)
"""
import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy.exc import OperationalError

from budgetmate.application.distribution import SetAllocationUseCase
from budgetmate.application.income_allocator import (
    ProcessIncomeTransactionUseCase, ProcessIncomeTransactionsUseCase, ReverseIncomeAllocationUseCase,
    ReversalError,
)
from budgetmate.application.income_matcher import IncomeMatch
from budgetmate.domain.errors import NotFound, PersistenceFailure
from budgetmate.infrastructure.db.models import (
    AllocationPosting, EnvelopeModel, EventLog, IncomeAllocation, IncomeSourceModel, IncomeTransaction,
)


@pytest.fixture
def payroll(db_session, sample_account_id, sample_user, make_envelope, make_income_source):
    """Fortnightly salary of 1000 with a 600/400 plan"""
    salary = make_income_source("ACME Payroll", "1000", "fortnightly", next_pay_date=date(2026, 3, 6))
    rent = make_envelope("Rent", "bill", "1300", "monthly", priority="essential")
    savings = make_envelope("Savings", "savings", "10400", "annual")

    use_case = SetAllocationUseCase(db_session)
    use_case.execute(sample_account_id, rent.id, salary.id, "600")
    use_case.execute(sample_account_id, savings.id, salary.id, "400")

    return {"salary": salary, "rent": rent, "savings": savings}


def _balance(db_session, envelope_id):
    db_session.expire_all()
    return db_session.query(EnvelopeModel).filter(EnvelopeModel.id == envelope_id).one().current_balance


def _salary_credit(make_transaction, amount="1000.00"):
    return make_transaction(amount, description="ACME PAYROLL SALARY", category="income")


def test_process_posts_saved_plan(db_session, sample_account_id, payroll, make_transaction):
    transaction = _salary_credit(make_transaction)

    result = ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)

    assert result.allocated is True
    assert result.income_source_id == payroll["salary"].id
    assert result.confidence == pytest.approx(1.0)
    assert [(p["envelope_id"], p["amount"]) for p in result.postings] == [
        (payroll["rent"].id, Decimal("600.00")),
        (payroll["savings"].id, Decimal("400.00")),
    ]
    assert result.total_allocated == Decimal("1000.00")
    assert result.unallocated == Decimal("0.00")
    assert result.variance is None

    assert _balance(db_session, payroll["rent"].id) == Decimal("600.00")
    assert _balance(db_session, payroll["savings"].id) == Decimal("400.00")

    transaction = db_session.query(IncomeTransaction).filter(IncomeTransaction.id == transaction.id).one()
    assert transaction.status == "allocated"
    assert transaction.income_source_id == payroll["salary"].id


def test_process_advances_next_pay_date(db_session, sample_account_id, payroll, make_transaction):
    transaction = _salary_credit(make_transaction)

    result = ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)

    assert result.next_pay_date == "2026-03-20"
    source = db_session.query(IncomeSourceModel).filter(IncomeSourceModel.id == payroll["salary"].id).one()
    assert source.next_pay_date == date(2026, 3, 20)
    assert source.last_reconciled_date == date(2026, 3, 6)
    assert source.last_reconciled_transaction_id == transaction.id

    reconciled = db_session.query(EventLog).filter(EventLog.event_type == "income_reconciled").one()
    assert reconciled.payload_json["previous_next_pay_date"] == "2026-03-06"
    assert reconciled.payload_json["new_next_pay_date"] == "2026-03-20"


def test_process_writes_keyed_event(db_session, sample_account_id, payroll, make_transaction):
    transaction = _salary_credit(make_transaction)

    ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id, actor_user_id=sample_account_id)

    event = db_session.query(EventLog).filter(EventLog.event_type == "income_allocated").one()
    assert event.idempotency_key == f"income-allocation-{transaction.id}"
    assert event.payload_json["actual_amount"] == "1000.00"
    assert [p["amount"] for p in event.payload_json["postings"]] == ["600.00", "400.00"]


def test_process_twice_posts_once(db_session, sample_account_id, payroll, make_transaction):
    transaction = _salary_credit(make_transaction)
    use_case = ProcessIncomeTransactionUseCase(db_session)

    first = use_case.execute(sample_account_id, transaction.id)
    second = use_case.execute(sample_account_id, transaction.id)

    assert second.replayed is True
    assert second.allocated is True
    assert second.postings == first.postings
    assert second.total_allocated == first.total_allocated
    assert db_session.query(AllocationPosting).count() == 2
    assert _balance(db_session, payroll["rent"].id) == Decimal("600.00")


def test_concurrent_duplicate_returns_winner(db_session, sample_account_id, payroll, make_transaction):
    """A run that misses the existing allocation hits the unique guard and replays"""
    transaction = _salary_credit(make_transaction)
    first = ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)

    class LateUseCase(ProcessIncomeTransactionUseCase):
        lookups = 0

        def _find_allocation(self, transaction_id):
            self.lookups += 1
            if self.lookups == 1:
                return None
            return super()._find_allocation(transaction_id)

    second = LateUseCase(db_session).execute(sample_account_id, transaction.id)

    assert second.replayed is True
    assert second.postings == first.postings
    assert db_session.query(AllocationPosting).count() == 2
    assert db_session.query(IncomeAllocation).count() == 1
    assert _balance(db_session, payroll["rent"].id) == Decimal("600.00")
    assert _balance(db_session, payroll["savings"].id) == Decimal("400.00")
    assert db_session.query(IncomeTransaction).filter(IncomeTransaction.id == transaction.id).one().status == "allocated"


def test_bonus_pay_scales_plan(db_session, sample_account_id, payroll, make_transaction):
    transaction = _salary_credit(make_transaction, "1100.00")

    result = ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)

    assert [p["amount"] for p in result.postings] == [Decimal("660.00"), Decimal("440.00")]
    assert result.total_allocated == Decimal("1100.00")
    assert result.variance["variance_type"] == "bonus"
    assert result.variance["percentage_change"] == "10.00"


def test_plan_above_typical_never_exceeds_pay(db_session, sample_account_id, payroll, make_transaction):
    """An 800/400 plan on a 1000 salary is scaled down to the 1000 received"""
    SetAllocationUseCase(db_session).execute(sample_account_id, payroll["rent"].id, payroll["salary"].id, "800")
    transaction = _salary_credit(make_transaction)

    result = ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)

    assert [p["amount"] for p in result.postings] == [Decimal("666.67"), Decimal("333.33")]
    assert result.total_allocated == Decimal("1000.00")
    assert result.unallocated == Decimal("0.00")
    assert _balance(db_session, payroll["rent"].id) + _balance(db_session, payroll["savings"].id) == Decimal("1000.00")

    allocation = db_session.query(IncomeAllocation).one()
    assert allocation.unallocated == Decimal("0.00")


def test_archived_envelope_left_out(db_session, sample_account_id, payroll, make_transaction):
    payroll["savings"].is_archived = True
    db_session.commit()
    transaction = _salary_credit(make_transaction)

    result = ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)

    assert [p["envelope_id"] for p in result.postings] == [payroll["rent"].id]
    assert result.unallocated == Decimal("400.00")
    assert _balance(db_session, payroll["savings"].id) == Decimal("0.00")


def test_not_income_is_terminal(db_session, sample_account_id, payroll, make_transaction):
    transaction = make_transaction("45.00", description="Refund from hardware store")
    use_case = ProcessIncomeTransactionUseCase(db_session)

    result = use_case.execute(sample_account_id, transaction.id)

    assert result.processed is True
    assert result.income_detected is False
    assert result.allocated is False
    assert db_session.query(IncomeTransaction).filter(IncomeTransaction.id == transaction.id).one().status == "not_income"

    again = use_case.execute(sample_account_id, transaction.id)
    assert again.replayed is True
    assert again.income_detected is False
    assert db_session.query(AllocationPosting).count() == 0


def test_no_plan_needs_review(db_session, sample_account_id, sample_user, make_income_source, make_transaction):
    gig = make_income_source("Side Gig", "200", "fortnightly")
    transaction = make_transaction("200.00", description="Side Gig payout")

    result = ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)

    assert result.income_detected is True
    assert result.allocated is False
    assert result.needs_review is True
    assert result.income_source_id == gig.id
    assert result.unallocated == Decimal("200.00")
    assert db_session.query(IncomeTransaction).filter(IncomeTransaction.id == transaction.id).one().status == "income_detected"
    assert db_session.query(IncomeAllocation).count() == 0


def test_custom_matcher(db_session, sample_account_id, payroll, make_transaction):
    class AlwaysSalary:
        def match(self, transaction):
            return IncomeMatch(payroll["salary"].id, 0.9, "User confirmed")

    transaction = make_transaction("1000.00", description="Deposit")

    result = ProcessIncomeTransactionUseCase(db_session, matcher=AlwaysSalary()).execute(sample_account_id, transaction.id)

    assert result.allocated is True
    assert result.confidence == pytest.approx(0.9)


def test_threshold_override(db_session, sample_account_id, payroll, make_transaction):
    transaction = _salary_credit(make_transaction, "1100.00")  # name + category only: 0.5

    result = ProcessIncomeTransactionUseCase(db_session, threshold=0.6).execute(sample_account_id, transaction.id)

    assert result.income_detected is False


def test_other_account_transaction_not_found(db_session, sample_account_id, payroll, make_transaction):
    transaction = make_transaction("1000.00", description="ACME PAYROLL", account_id=2)

    with pytest.raises(NotFound):
        ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)


def test_storage_failure_posts_nothing(db_session, sample_account_id, payroll, make_transaction, monkeypatch):
    transaction = _salary_credit(make_transaction)

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", broken_commit)

    with pytest.raises(PersistenceFailure):
        ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)

    monkeypatch.undo()
    assert db_session.query(AllocationPosting).count() == 0
    assert db_session.query(IncomeAllocation).count() == 0
    assert _balance(db_session, payroll["rent"].id) == Decimal("0.00")


class TestBatch:
    def test_failure_does_not_stop_batch(self, db_session, sample_account_id, payroll, make_transaction):
        good = _salary_credit(make_transaction)
        other = make_transaction("45.00", description="Refund")

        result = ProcessIncomeTransactionsUseCase(db_session).execute(sample_account_id, [good.id, 9999, other.id])

        assert result["processed"] == 2
        assert result["allocated"] == 1
        assert result["failed"] == 1
        assert [row["transaction_id"] for row in result["results"]] == [good.id, 9999, other.id]
        assert "not found" in result["results"][1]["error"]
        assert result["results"][2]["income_detected"] is False
        assert _balance(db_session, payroll["rent"].id) == Decimal("600.00")

    def test_batch_replays_processed(self, db_session, sample_account_id, payroll, make_transaction):
        good = _salary_credit(make_transaction)
        use_case = ProcessIncomeTransactionsUseCase(db_session)

        use_case.execute(sample_account_id, [good.id])
        result = use_case.execute(sample_account_id, [good.id, good.id])

        assert result["allocated"] == 2
        assert all(row["replayed"] for row in result["results"])
        assert db_session.query(AllocationPosting).count() == 2


class TestReverse:
    def test_reverse_compensates_postings(self, db_session, sample_account_id, payroll, make_transaction):
        transaction = _salary_credit(make_transaction)
        ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)

        result = ReverseIncomeAllocationUseCase(db_session).execute(sample_account_id, transaction.id)

        assert [p["amount"] for p in result.postings] == [Decimal("-600.00"), Decimal("-400.00")]
        assert result.total_allocated == Decimal("-1000.00")
        assert _balance(db_session, payroll["rent"].id) == Decimal("0.00")
        assert _balance(db_session, payroll["savings"].id) == Decimal("0.00")

        originals = db_session.query(AllocationPosting).filter(
            AllocationPosting.reverses_posting_id.is_(None)
        ).order_by(AllocationPosting.id).all()
        assert [posting.amount for posting in originals] == [Decimal("600.00"), Decimal("400.00")]
        assert db_session.query(AllocationPosting).count() == 4

    def test_reverse_twice_rejected(self, db_session, sample_account_id, payroll, make_transaction):
        transaction = _salary_credit(make_transaction)
        ProcessIncomeTransactionUseCase(db_session).execute(sample_account_id, transaction.id)
        use_case = ReverseIncomeAllocationUseCase(db_session)
        use_case.execute(sample_account_id, transaction.id)

        with pytest.raises(ReversalError):
            use_case.execute(sample_account_id, transaction.id)

    def test_reprocess_after_reverse_does_not_repost(self, db_session, sample_account_id, payroll, make_transaction):
        transaction = _salary_credit(make_transaction)
        use_case = ProcessIncomeTransactionUseCase(db_session)
        use_case.execute(sample_account_id, transaction.id)
        ReverseIncomeAllocationUseCase(db_session).execute(sample_account_id, transaction.id)

        result = use_case.execute(sample_account_id, transaction.id)

        assert result.replayed is True
        assert result.allocated is False
        assert _balance(db_session, payroll["rent"].id) == Decimal("0.00")

    def test_reverse_without_allocation(self, db_session, sample_account_id, payroll, make_transaction):
        transaction = _salary_credit(make_transaction)

        with pytest.raises(NotFound):
            ReverseIncomeAllocationUseCase(db_session).execute(sample_account_id, transaction.id)
