"""
Error kinds raised by the allocation engine

Calculation errors (InvalidFrequency, InvalidAmount) are caller bugs or bad
input and are never retried. NoIncomeAvailable is an expected state the UI
renders as guidance. DuplicatePosting stays inside the allocator.
"""


class AllocationEngineError(Exception):
    """Base class for all engine errors"""
    pass


class InvalidFrequency(AllocationEngineError, ValueError):
    """Unknown frequency or pay cycle value"""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown frequency: {value!r}")


class InvalidAmount(AllocationEngineError, ValueError):
    """Negative, non-finite or non-numeric amount"""
    pass


class NoIncomeAvailable(AllocationEngineError):
    """No active income (or all income amounts are zero)"""

    def __init__(self, message: str = "No active income sources to allocate from"):
        super().__init__(message)


class NotFound(AllocationEngineError, LookupError):
    """Record missing or owned by another account"""
    pass


class AllocationConflict(AllocationEngineError):
    """Allocation map changed since the caller read it"""

    def __init__(self, envelope_id: int, expected: int, actual: int):
        self.envelope_id = envelope_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Envelope #{envelope_id} allocation revision is {actual}, expected {expected}"
        )


class DuplicatePosting(AllocationEngineError):
    """Source transaction already has postings (unique constraint hit)"""

    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction #{transaction_id} already allocated")


class PersistenceFailure(AllocationEngineError):
    """Opaque storage failure passed through from the database layer"""
    pass
