"""
Allocation API endpoints: suggestions and manual allocation writes
"""
from decimal import Decimal
from typing import Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from budgetmate.api.deps import get_db, get_current_user
from budgetmate.application.distribution import (
    GetSuggestionsUseCase, SetAllocationUseCase, ApplySuggestionsUseCase,
)
from budgetmate.infrastructure.db.models import User


router = APIRouter(prefix="/api/v1/allocations", tags=["allocations"])


# === Request/Response models ===

class IncomeShareResponse(BaseModel):
    income_source_id: int
    name: str
    frequency: str
    typical_amount: Decimal
    amount_per_cycle: Decimal
    share: Decimal


class EnvelopeSuggestionResponse(BaseModel):
    envelope_id: int
    name: str
    ideal_per_cycle: Decimal
    suggested_split: Dict[int, Decimal]


class SuggestionsResponse(BaseModel):
    pay_cycle: str
    total_income_per_cycle: Decimal
    income_sources: List[IncomeShareResponse]
    envelopes: List[EnvelopeSuggestionResponse]


class SetAllocationRequest(BaseModel):
    amount: str | int | float  # per user pay cycle; validated by the use case
    expected_revision: int | None = None


class ApplySuggestionsRequest(BaseModel):
    envelope_ids: List[int] | None = None


class AllocationResponse(BaseModel):
    envelope_id: int
    income_source_id: int
    amount: Decimal
    rule_amount: Decimal
    revision: int
    allocated_per_cycle: Decimal


# === Endpoints ===

@router.get("/suggestions", response_model=SuggestionsResponse)
def get_suggestions(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Proportional funding suggestions (read-only, re-derived on every call)"""
    return GetSuggestionsUseCase(db).execute(account_id=user.id)


@router.post("/suggestions/apply", response_model=list[AllocationResponse])
def apply_suggestions(
    req: ApplySuggestionsRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Confirm current suggestions as allocations"""
    return ApplySuggestionsUseCase(db).execute(
        account_id=user.id,
        envelope_ids=req.envelope_ids,
        actor_user_id=user.id
    )


@router.put("/{envelope_id}/{income_source_id}", response_model=AllocationResponse)
def set_allocation(
    envelope_id: int,
    income_source_id: int,
    req: SetAllocationRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Manual allocation write (per user pay cycle)"""
    return SetAllocationUseCase(db).execute(
        account_id=user.id,
        envelope_id=envelope_id,
        income_source_id=income_source_id,
        amount=req.amount,
        expected_revision=req.expected_revision,
        actor_user_id=user.id
    )
