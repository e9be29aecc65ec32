"""
Income API endpoints: income sources and income transaction processing
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from budgetmate.api.deps import get_db, get_current_user
from budgetmate.application.income_allocator import (
    ProcessIncomeTransactionUseCase, ProcessIncomeTransactionsUseCase, ReverseIncomeAllocationUseCase,
)
from budgetmate.application.income_sources import CreateIncomeSourceUseCase, DeactivateIncomeSourceUseCase
from budgetmate.infrastructure.db.models import User
from budgetmate.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1", tags=["income"])


# === Request/Response models ===

class CreateIncomeSourceRequest(BaseModel):
    name: str
    typical_amount: str
    frequency: str  # weekly, fortnightly, twice_monthly, monthly, quarterly, annual
    next_pay_date: date | None = None

    @field_validator("typical_amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v, max_decimal_places=2)


class IncomeSourceCreatedResponse(BaseModel):
    income_source_id: int


class PostingResponse(BaseModel):
    posting_id: int
    envelope_id: int
    amount: Decimal


class ProcessResultResponse(BaseModel):
    transaction_id: int
    processed: bool
    income_detected: bool
    allocated: bool
    income_source_id: int | None = None
    confidence: float | None = None
    postings: List[PostingResponse]
    total_allocated: Decimal
    unallocated: Decimal
    needs_review: bool
    replayed: bool
    variance: Dict[str, Any] | None = None
    next_pay_date: str | None = None
    message: str
    error: str | None = None


class ProcessBatchRequest(BaseModel):
    transaction_ids: List[int]


class ProcessBatchResponse(BaseModel):
    results: List[ProcessResultResponse]
    processed: int
    allocated: int
    failed: int


# === Income sources ===

@router.post("/income-sources", response_model=IncomeSourceCreatedResponse)
def create_income_source(
    req: CreateIncomeSourceRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Register a recurring income stream"""
    income_source_id = CreateIncomeSourceUseCase(db).execute(
        account_id=user.id,
        name=req.name,
        typical_amount=req.typical_amount,
        frequency=req.frequency,
        next_pay_date=req.next_pay_date
    )
    return IncomeSourceCreatedResponse(income_source_id=income_source_id)


@router.delete("/income-sources/{income_source_id}")
def deactivate_income_source(
    income_source_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Deactivate (or delete, when unused) an income source"""
    outcome = DeactivateIncomeSourceUseCase(db).execute(account_id=user.id, income_source_id=income_source_id)
    return {"status": outcome}


# === Income transactions ===

@router.post("/income-transactions/process", response_model=ProcessBatchResponse)
def process_income_transactions(
    req: ProcessBatchRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Process a batch; one failing transaction does not stop the others"""
    return ProcessIncomeTransactionsUseCase(db).execute(
        account_id=user.id,
        transaction_ids=req.transaction_ids,
        actor_user_id=user.id
    )


@router.post("/income-transactions/{transaction_id}/process", response_model=ProcessResultResponse)
def process_income_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Detect income and post the saved allocation plan (idempotent)"""
    result = ProcessIncomeTransactionUseCase(db).execute(
        account_id=user.id,
        transaction_id=transaction_id,
        actor_user_id=user.id
    )
    return result.as_dict()


@router.post("/income-transactions/{transaction_id}/reverse", response_model=ProcessResultResponse)
def reverse_income_allocation(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Reverse an allocation with compensating postings"""
    result = ReverseIncomeAllocationUseCase(db).execute(
        account_id=user.id,
        transaction_id=transaction_id,
        actor_user_id=user.id
    )
    return result.as_dict()
