"""
Notification results
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from dataclasses import dataclass, field


@dataclass
class DeliveryResult:
    """Outcome of sending one message to one recipient"""
    phone: str
    success: bool
    attempted_at: datetime
    donor_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phone": self.phone,
            "donor_id": self.donor_id,
            "success": self.success,
            "message_id": self.message_id,
            "error": self.error,
            "attempted_at": self.attempted_at.isoformat(),
        }


@dataclass
class DispatchReport:
    """
    What one dispatch pass did for a request.

    ``outcome`` is one of ``sent``, ``partial``, ``nothing-to-send``,
    ``in-progress`` (another pass holds the outstanding records),
    ``request-closed`` or ``failed``.
    """
    request_id: str
    outcome: str
    added: List[str] = field(default_factory=list)
    results: List[DeliveryResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def delivered(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "outcome": self.outcome,
            "added": self.added,
            "delivered": self.delivered,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "error": self.error,
        }
