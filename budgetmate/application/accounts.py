"""
Account-level reads shared by the use cases
"""
from sqlalchemy.orm import Session

from budgetmate.config import get_settings
from budgetmate.domain.cycles import validate_pay_cycle
from budgetmate.domain.errors import NotFound
from budgetmate.infrastructure.db.models import User


def get_user_pay_cycle(db: Session, account_id: int) -> str:
    """
    Canonical pay cycle of the account owner (read-only for the engine)

    Falls back to DEFAULT_PAY_CYCLE when the user has none stored.

    Raises:
        NotFound: no such user
        InvalidFrequency: stored value is not a valid pay cycle
    """
    user = db.query(User).filter(User.id == account_id).first()
    if not user:
        raise NotFound(f"User #{account_id} not found")
    return validate_pay_cycle(user.pay_cycle or get_settings().DEFAULT_PAY_CYCLE)
