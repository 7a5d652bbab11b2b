"""
RequestStore interface consumed by the dispatch pipeline
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from domains.requests.models.request import EmergencyRequest, RequestStatus


class RequestStore(ABC):
    """
    Versioned storage for emergency requests.

    Every committed write increments ``version``; ``conditional_update``
    applies a patch only if the stored version still equals the one read.
    """

    @abstractmethod
    async def create(self, request: EmergencyRequest) -> str:
        """Insert a new request, returning its id"""

    @abstractmethod
    async def get(self, request_id: str) -> EmergencyRequest:
        """Fetch a request. Raises NotFoundError."""

    @abstractmethod
    async def conditional_update(self, request_id: str, expected_version: int, patch: Dict[str, Any]) -> None:
        """
        Apply ``patch`` if the document is still at ``expected_version``.

        Raises ConflictError when the version moved, NotFoundError when the
        document is gone.
        """

    @abstractmethod
    async def query_by_status(self, statuses: Sequence[RequestStatus], limit: int = 50) -> List[EmergencyRequest]:
        """Newest first"""

    @abstractmethod
    async def query_by_matched_donor(
        self,
        donor_id: str,
        statuses: Sequence[RequestStatus] = (),
        limit: int = 50
    ) -> List[EmergencyRequest]:
        """Requests on which ``donor_id`` holds a match record, newest first"""

    @abstractmethod
    async def find_latest_notified_for_phone(self, phone: str) -> Optional[EmergencyRequest]:
        """
        Most recent (by created_at) PENDING or ACTIVE request holding a
        NOTIFIED record for ``phone``
        """
