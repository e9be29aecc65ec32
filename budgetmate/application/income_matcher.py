"""
Income transaction matcher - decides which income source a credit belongs to.

Confidence is the sum of:
- amount within tolerance of the typical amount: up to 0.5 (linear, 0.5 on an exact match)
- income source name found in description/merchant: 0.3
- category "income" or "transfer": 0.2

The allocator only proceeds when confidence reaches its threshold.
"""
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from budgetmate.config import get_settings
from budgetmate.infrastructure.db.models import IncomeSourceModel, IncomeTransaction

AMOUNT_WEIGHT = 0.5
NAME_WEIGHT = 0.3
CATEGORY_WEIGHT = 0.2
INCOME_CATEGORIES = ("income", "transfer")


@dataclass(frozen=True)
class IncomeMatch:
    income_source_id: int | None
    confidence: float
    reason: str

    @property
    def matched(self) -> bool:
        return self.income_source_id is not None


class IncomeTransactionMatcher:
    """
    Default matcher over the account's active income sources.

    Any object with a match(transaction) -> IncomeMatch method can replace it.
    """

    def __init__(self, db: Session, amount_tolerance: float | None = None):
        self.db = db
        if amount_tolerance is None:
            amount_tolerance = get_settings().INCOME_AMOUNT_TOLERANCE
        self.amount_tolerance = Decimal(str(amount_tolerance))

    def match(self, transaction: IncomeTransaction) -> IncomeMatch:
        amount = Decimal(transaction.amount)
        if amount <= 0:
            return IncomeMatch(None, 0.0, "Not a credit")

        sources = self.db.query(IncomeSourceModel).filter(
            IncomeSourceModel.account_id == transaction.account_id,
            IncomeSourceModel.is_active == True,
        ).order_by(IncomeSourceModel.id.asc()).all()

        if not sources:
            return IncomeMatch(None, 0.0, "No active income sources")

        best = None
        best_confidence = 0.0
        for source in sources:
            confidence = self._score(transaction, amount, source)
            if confidence > best_confidence:
                best, best_confidence = source, confidence

        if best is None:
            return IncomeMatch(None, 0.0, "No income source resembles this transaction")

        return IncomeMatch(best.id, round(best_confidence, 4), f"Matched to income source: {best.name}")

    def _score(self, transaction: IncomeTransaction, amount: Decimal, source: IncomeSourceModel) -> float:
        confidence = 0.0

        typical = Decimal(source.typical_amount)
        if typical > 0 and self.amount_tolerance > 0:
            diff_ratio = abs(amount - typical) / typical
            if diff_ratio <= self.amount_tolerance:
                confidence += AMOUNT_WEIGHT * float(1 - diff_ratio / self.amount_tolerance)

        search_text = f"{transaction.description or ''} {transaction.merchant or ''}".lower()
        if source.name.lower() in search_text:
            confidence += NAME_WEIGHT

        if (transaction.category or "").lower() in INCOME_CATEGORIES:
            confidence += CATEGORY_WEIGHT

        return confidence
