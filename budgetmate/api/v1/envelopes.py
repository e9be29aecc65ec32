"""
Envelope API endpoints
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from budgetmate.api.deps import get_db, get_current_user
from budgetmate.application.envelopes import CreateEnvelopeUseCase
from budgetmate.domain.envelope import PRIORITY_IMPORTANT
from budgetmate.infrastructure.db.models import User
from budgetmate.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/envelopes", tags=["envelopes"])


class CreateEnvelopeRequest(BaseModel):
    name: str
    subtype: str  # bill, spending, savings, goal, tracking
    target_amount: str = "0"
    due_frequency: str | None = None
    priority: str = PRIORITY_IMPORTANT

    @field_validator("target_amount")
    @classmethod
    def validate_target(cls, v: str) -> str:
        return validate_and_normalize_amount(v, max_decimal_places=2)


class EnvelopeCreatedResponse(BaseModel):
    envelope_id: int


@router.post("", response_model=EnvelopeCreatedResponse)
def create_envelope(
    req: CreateEnvelopeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a budget envelope"""
    envelope_id = CreateEnvelopeUseCase(db).execute(
        account_id=user.id,
        name=req.name,
        subtype=req.subtype,
        target_amount=req.target_amount,
        due_frequency=req.due_frequency,
        priority=req.priority
    )
    return EnvelopeCreatedResponse(envelope_id=envelope_id)
