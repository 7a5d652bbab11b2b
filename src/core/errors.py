"""
Error taxonomy shared by every domain of the dispatch pipeline
"""

from typing import Optional


class DispatchServiceError(Exception):
    """Base class for all service errors"""


class ValidationError(DispatchServiceError):
    """Invalid input rejected before any write. Never retried."""


class NotLocatable(ValidationError):
    """Coordinates are missing or out of range"""


class StoreError(DispatchServiceError):
    """Transient store failure (unreachable, timed out)"""


class QueryError(StoreError):
    """A read query against a store failed"""


class NotFoundError(DispatchServiceError):
    """Requested document does not exist"""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class ConflictError(DispatchServiceError):
    """Optimistic-concurrency collision, or a state conflict on the document"""

    def __init__(self, message: str, request_id: Optional[str] = None):
        super().__init__(message)
        self.request_id = request_id


class InvalidTransition(DispatchServiceError):
    """Illegal lifecycle move. Never retried."""

    def __init__(self, subject: str, current: str, target: str):
        super().__init__(f"Cannot move {subject} from {current} to {target}")
        self.subject = subject
        self.current = current
        self.target = target


class DeliveryError(DispatchServiceError):
    """Single-recipient send failure"""

    def __init__(self, phone: str, reason: str):
        super().__init__(reason)
        self.phone = phone
        self.reason = reason
