"""
Event Log Repository - append-only audit trail of engine writes
"""
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from budgetmate.infrastructure.db.models import EventLog


class EventLogRepository:
    """
    Repository for the event log
    """

    def __init__(self, db: Session):
        self.db = db

    def append_event(
        self,
        account_id: int,
        event_type: str,
        payload: Dict[str, Any],
        occurred_at: Optional[datetime] = None,
        actor_user_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> int:
        """
        Append an event to the log

        Args:
            account_id: Account ID
            event_type: Event type (e.g. "income_allocated")
            payload: Event data (stored as JSONB)
            occurred_at: When it happened (default: now)
            actor_user_id: Who did it (optional)
            idempotency_key: Idempotency key (optional, unique)

        Returns:
            event_id: ID of the new event

        Raises:
            IntegrityError: if idempotency_key already exists

        Example:
            >>> repo = EventLogRepository(db)
            >>> event_id = repo.append_event(
            ...     account_id=1,
            ...     event_type="income_allocated",
            ...     payload={"transaction_id": 42},
            ...     idempotency_key="income-allocation-42"
            ... )
        """
        if occurred_at is None:
            occurred_at = datetime.now(timezone.utc)

        event = EventLog(
            account_id=account_id,
            actor_user_id=actor_user_id,
            event_type=event_type,
            payload_json=payload,
            occurred_at=occurred_at,
            idempotency_key=idempotency_key,
        )

        self.db.add(event)
        self.db.flush()  # get ID without commit

        return event.id
