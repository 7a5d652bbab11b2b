"""
Matching domain models
"""

from typing import List
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DonorCandidate:
    """Eligible donor for a request, ready to be notified"""
    donor_id: str
    phone: str
    distance_meters: float


@dataclass(frozen=True)
class Exclusion:
    """A donor returned by the store but dropped before notification"""
    donor_id: str
    reason: str


@dataclass
class MatchOutcome:
    """Result of one matching pass"""
    candidates: List[DonorCandidate] = field(default_factory=list)
    excluded: List[Exclusion] = field(default_factory=list)
    ranges_queried: int = 0
    outside_radius: int = 0

    @property
    def donor_ids(self) -> List[str]:
        return [c.donor_id for c in self.candidates]
