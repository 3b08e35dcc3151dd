"""
Back-office error taxonomy.

Read paths turn SourceUnavailableError into degraded results; write paths
surface it. Everything else is raised to the HTTP layer or recorded per item
by the bulk executor.
"""

from typing import Any, Dict, Optional


class BackofficeError(Exception):
    """Base class for all domain errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(BackofficeError):
    """Request rejected before any work started (bad window, empty id list, unknown entity)"""


class NotFoundError(BackofficeError):
    """Referenced entity does not exist"""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            f"{entity_type.title()} '{entity_id}' not found",
            {"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class SourceUnavailableError(BackofficeError):
    """No configured record source could serve the call"""


class InvariantViolation(BackofficeError):
    """Mutation would break a domain rule (refund above total, cancel on terminal state)"""
