"""Exceptions raised by the reconciliation engine."""

from typing import Any, Optional


class ReconEngineError(Exception):
    """Base class for engine errors."""


class LedgerStoreError(ReconEngineError):
    """The ledger store could not read or write a record."""


class RecordNotFound(LedgerStoreError):
    """A record referenced by id does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvariantViolation(ReconEngineError):
    """A write would break a ledger invariant (e.g. a doubly linked payment)."""


class SuggestionStateError(ReconEngineError):
    """A review action is not allowed from the suggestion's current status."""


class ScoringError(ReconEngineError):
    """The candidate scorer failed or returned an unusable response."""

    def __init__(self, message: str, status_code: int = 0, details: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details

    @property
    def is_retryable(self) -> bool:
        """Transport failures and server errors are worth another attempt."""
        return self.status_code == 0 or self.status_code >= 500
