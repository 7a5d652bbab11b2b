"""
Inbound reply results
"""

from typing import Optional
from dataclasses import dataclass
from enum import Enum


class IntakeCode(str, Enum):
    IGNORED = "ignored"
    UNKNOWN_SENDER = "unknown-sender"
    AMBIGUOUS_SENDER = "ambiguous-sender"
    NO_ACTIVE_REQUEST = "no-active-request"
    ALREADY_RESPONDED = "already-responded"
    RESPONDED = "responded"


@dataclass
class IntakeResult:
    code: IntakeCode
    request_id: Optional[str] = None
    donor_id: Optional[str] = None
    confirmation_sent: bool = False

    def to_dict(self):
        return {
            "code": self.code.value,
            "request_id": self.request_id,
            "donor_id": self.donor_id,
            "confirmation_sent": self.confirmation_sent,
        }
