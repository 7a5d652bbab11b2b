"""
UserStore interface consumed by the dispatch pipeline
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from domains.users.models.user import BloodType, User, UserRole


class UserStore(ABC):
    """
    Read access to donor and hospital profiles.

    Profiles are owned by the profile-management collaborator; the pipeline
    only writes derived fields (spatial key, reminder timestamp).
    """

    @abstractmethod
    async def query_donors(self, blood_type: BloodType, low: str, high: str) -> List[User]:
        """Available donors of ``blood_type`` whose spatial key lies in [low, high]"""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[User]:
        """Fetch a single user"""

    @abstractmethod
    async def find_by_phone(self, phone: str, role: Optional[UserRole] = None, limit: int = 2) -> List[User]:
        """Users registered with exactly this phone number, optionally of one role"""

    @abstractmethod
    async def find_lapsed_donors(self, cutoff: datetime) -> List[User]:
        """Available donors whose last donation is older than ``cutoff``"""

    @abstractmethod
    async def mark_reminded(self, user_id: str, at: datetime) -> None:
        """Record when the last reminder was sent"""

    @abstractmethod
    async def set_spatial_key(self, user_id: str, latitude: float, longitude: float, spatial_key: str) -> bool:
        """Tag the user's location, only if the coordinates are still the ones given"""

    async def get_by_phone(self, phone: str, role: Optional[UserRole] = None) -> Optional[User]:
        """The single user owning ``phone``, or None when missing or ambiguous"""
        users = await self.find_by_phone(phone, role=role)
        return users[0] if len(users) == 1 else None
