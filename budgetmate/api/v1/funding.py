"""
Funding status API endpoint
"""
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from budgetmate.api.deps import get_db, get_current_user
from budgetmate.application.funding_status import FundingStatusUseCase
from budgetmate.infrastructure.db.models import User


router = APIRouter(prefix="/api/v1/funding-status", tags=["funding"])


class FundingRowResponse(BaseModel):
    envelope_id: int
    name: str
    subtype: str
    priority: str
    ideal: Decimal
    allocated: Decimal
    gap: Decimal
    surplus: Decimal
    state: str
    amount_from_source: Decimal | None = None


class IncomeGroupResponse(BaseModel):
    income_source_id: int
    name: str
    income_per_cycle: Decimal
    allocated_total: Decimal
    unallocated: Decimal
    envelopes: List[FundingRowResponse]


class FundingStatusResponse(BaseModel):
    view: str
    pay_cycle: str
    total_gap: Decimal | None = None
    rows: List[FundingRowResponse] | None = None
    groups: List[IncomeGroupResponse] | None = None
    unassigned: List[FundingRowResponse] | None = None


@router.get("", response_model=FundingStatusResponse, response_model_exclude_none=True)
def get_funding_status(
    view: str = Query("unfunded", description="by-income | unfunded"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Funding status grouped by income source, or ranked shortfalls"""
    return FundingStatusUseCase(db).execute(account_id=user.id, view=view)
