"""
Emergency request repository - MongoDB-backed RequestStore with versioned writes
"""

from typing import Optional, List, Dict, Any, Sequence
import logging

from motor.motor_asyncio import AsyncIOMotorCollection

from core.database import BaseRepository
from core.errors import ConflictError, NotFoundError
from domains.requests.models.request import (
    EmergencyRequest,
    MatchStatus,
    OPEN_STATUSES,
    RequestStatus
)
from domains.requests.repositories.request_store import RequestStore


logger = logging.getLogger(__name__)


class RequestRepository(BaseRepository, RequestStore):
    """Repository over the ``emergency_requests`` collection"""

    def __init__(self, collection: AsyncIOMotorCollection, timeout: Optional[float] = None):
        super().__init__(collection, timeout)

    async def create(self, request: EmergencyRequest) -> str:
        doc = request.to_doc()
        doc["version"] = 0
        return await self.insert_one(doc)

    async def get(self, request_id: str) -> EmergencyRequest:
        doc = await self.find_one({"_id": request_id})
        if not doc:
            raise NotFoundError("Emergency request", request_id)
        return EmergencyRequest.from_doc(doc)

    async def conditional_update(self, request_id: str, expected_version: int, patch: Dict[str, Any]) -> None:
        if "version" in patch:
            raise ValueError("version is managed by the store")

        matched = await self.update_one(
            {"_id": request_id, "version": expected_version},
            {"$set": patch, "$inc": {"version": 1}}
        )
        if matched:
            return

        if not await self.count_documents({"_id": request_id}):
            raise NotFoundError("Emergency request", request_id)
        raise ConflictError(
            f"Emergency request {request_id} changed since version {expected_version}",
            request_id=request_id
        )

    async def query_by_status(self, statuses: Sequence[RequestStatus], limit: int = 50) -> List[EmergencyRequest]:
        docs = await self.find_many(
            {"status": {"$in": [s.value for s in statuses]}},
            sort=[("created_at", -1)],
            limit=limit
        )
        return [EmergencyRequest.from_doc(doc) for doc in docs]

    async def query_by_matched_donor(
        self,
        donor_id: str,
        statuses: Sequence[RequestStatus] = (),
        limit: int = 50
    ) -> List[EmergencyRequest]:
        query: Dict[str, Any] = {"matched_donors.donor_id": donor_id}
        if statuses:
            query["status"] = {"$in": [s.value for s in statuses]}

        docs = await self.find_many(query, sort=[("created_at", -1)], limit=limit)
        return [EmergencyRequest.from_doc(doc) for doc in docs]

    async def find_latest_notified_for_phone(self, phone: str) -> Optional[EmergencyRequest]:
        doc = await self.find_one(
            {
                "status": {"$in": [s.value for s in OPEN_STATUSES]},
                "matched_donors": {
                    "$elemMatch": {"phone": phone, "status": MatchStatus.NOTIFIED.value}
                },
            },
            sort=[("created_at", -1)]
        )
        return EmergencyRequest.from_doc(doc) if doc else None
