"""Error taxonomy shared by the pipelines and the API layer."""
from __future__ import annotations


class LeadEngineError(Exception):
    """Base class for matching and distribution failures."""
    pass


class NotFoundError(LeadEngineError):
    """Raised when a referenced inquiry or partner no longer exists."""

    def __init__(self, entity: str, entity_id: int, message: str | None = None) -> None:
        super().__init__(message or f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InquiryStateError(LeadEngineError):
    """Raised when an inquiry status transition is not allowed."""
    pass


class DataAccessError(LeadEngineError):
    """Raised when a read or write against the database fails."""
    pass
