"""
Shared fixtures: in-memory stores and a recording SMS sender
"""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest

from core.errors import ConflictError, NotFoundError
from domains.matching.services.geo_index import encode
from domains.pipeline.services.pipeline_service import build_pipeline
from domains.requests.models.request import (
    OPEN_STATUSES,
    EmergencyRequest,
    MatchStatus,
    RequestStatus,
    Urgency,
)
from domains.requests.repositories.request_store import RequestStore
from domains.users.models.user import BloodType, Location, User, UserRole, VerificationStatus
from domains.users.repositories.user_store import UserStore
from providers.base_provider import MessageSender, SendResult

# Luanda
CENTER = (-8.8383, 13.2344)


def donor(
    donor_id: str,
    latitude: Optional[float],
    longitude: Optional[float],
    phone: Optional[str] = None,
    blood_type: BloodType = BloodType.O_NEGATIVE,
    is_available: bool = True,
    last_donation_at: Optional[datetime] = None,
    last_reminder_sent_at: Optional[datetime] = None,
) -> User:
    spatial_key = encode(latitude, longitude) if latitude is not None and longitude is not None else None
    return User(
        id=donor_id,
        phone_number=phone,
        role=UserRole.DONOR,
        location=Location(latitude, longitude, spatial_key),
        blood_type=blood_type,
        is_available=is_available,
        last_donation_at=last_donation_at,
        last_reminder_sent_at=last_reminder_sent_at,
    )


def hospital(user_id: str, phone: Optional[str], status: VerificationStatus) -> User:
    return User(
        id=user_id,
        phone_number=phone,
        role=UserRole.HOSPITAL,
        location=Location(*CENTER),
        name="Hospital Josina Machel",
        verification_status=status,
    )


def emergency(
    request_id: str,
    blood_type: BloodType = BloodType.O_NEGATIVE,
    status: RequestStatus = RequestStatus.PENDING,
    created_at: Optional[datetime] = None,
    location=CENTER,
) -> EmergencyRequest:
    created_at = created_at or datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
    return EmergencyRequest(
        id=request_id,
        hospital_id="hospital-1",
        blood_type=blood_type,
        units_needed=2,
        urgency=Urgency.CRITICAL,
        location=Location(location[0], location[1]),
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )


class InMemoryUserStore(UserStore):
    def __init__(self, users: Sequence[User] = ()):
        self.users: Dict[str, User] = {u.id: u for u in users}
        self.reminded: Dict[str, datetime] = {}
        self.queries: List[tuple] = []

    def add(self, user: User) -> User:
        self.users[user.id] = user
        return user

    async def query_donors(self, blood_type, low, high):
        self.queries.append((blood_type, low, high))
        return [
            copy.deepcopy(u) for u in self.users.values()
            if u.role == UserRole.DONOR
            and u.blood_type == blood_type
            and u.is_available
            and u.location.spatial_key is not None
            and low <= u.location.spatial_key <= high
        ]

    async def get(self, user_id):
        user = self.users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def find_by_phone(self, phone, role=None, limit=2):
        return [
            copy.deepcopy(u) for u in self.users.values()
            if u.phone_number == phone and (role is None or u.role == role)
        ][:limit]

    async def find_lapsed_donors(self, cutoff):
        return [
            copy.deepcopy(u) for u in self.users.values()
            if u.role == UserRole.DONOR
            and u.is_available
            and u.last_donation_at is not None
            and u.last_donation_at < cutoff
        ]

    async def mark_reminded(self, user_id, at):
        self.reminded[user_id] = at
        self.users[user_id].last_reminder_sent_at = at

    async def set_spatial_key(self, user_id, latitude, longitude, spatial_key):
        user = self.users.get(user_id)
        if user is None or user.location.latitude != latitude or user.location.longitude != longitude:
            return False
        user.location.spatial_key = spatial_key
        return True


class InMemoryRequestStore(RequestStore):
    """Versioned document store with the same conditional-update contract as Mongo"""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.updates = 0

    async def create(self, request):
        doc = request.to_doc()
        doc["version"] = 0
        self.docs[request.id] = copy.deepcopy(doc)
        return request.id

    async def get(self, request_id):
        if request_id not in self.docs:
            raise NotFoundError("Emergency request", request_id)
        return EmergencyRequest.from_doc(copy.deepcopy(self.docs[request_id]))

    async def conditional_update(self, request_id, expected_version, patch):
        doc = self.docs.get(request_id)
        if doc is None:
            raise NotFoundError("Emergency request", request_id)
        if doc["version"] != expected_version:
            raise ConflictError(f"Emergency request {request_id} changed", request_id=request_id)
        doc.update(copy.deepcopy(patch))
        doc["version"] += 1
        self.updates += 1

    def _newest_first(self, docs):
        return sorted(docs, key=lambda d: d["created_at"], reverse=True)

    async def query_by_status(self, statuses, limit=50):
        wanted = {s.value for s in statuses}
        docs = [d for d in self.docs.values() if d["status"] in wanted]
        return [EmergencyRequest.from_doc(copy.deepcopy(d)) for d in self._newest_first(docs)[:limit]]

    async def query_by_matched_donor(self, donor_id, statuses=(), limit=50):
        wanted = {s.value for s in statuses}
        docs = [
            d for d in self.docs.values()
            if any(m["donor_id"] == donor_id for m in d["matched_donors"])
            and (not wanted or d["status"] in wanted)
        ]
        return [EmergencyRequest.from_doc(copy.deepcopy(d)) for d in self._newest_first(docs)[:limit]]

    async def find_latest_notified_for_phone(self, phone):
        open_values = {s.value for s in OPEN_STATUSES}
        docs = [
            d for d in self.docs.values()
            if d["status"] in open_values
            and any(m["phone"] == phone and m["status"] == MatchStatus.NOTIFIED.value for m in d["matched_donors"])
        ]
        docs = self._newest_first(docs)
        return EmergencyRequest.from_doc(copy.deepcopy(docs[0])) if docs else None


class FakeSender(MessageSender):
    """Records every message; phones listed in ``failing`` are rejected"""

    def __init__(self, failing: Sequence[str] = ()):
        super().__init__()
        self.failing = set(failing)
        self.sent: List[tuple] = []

    async def send(self, to_phone, body):
        self.sent.append((to_phone, body))
        if to_phone in self.failing:
            return self._record(SendResult(success=False, provider="fake", error="unreachable"))
        return self._record(SendResult(success=True, provider="fake", message_id=f"SM{len(self.sent)}"))

    def bodies_to(self, phone):
        return [body for to, body in self.sent if to == phone]


@pytest.fixture
def user_store():
    return InMemoryUserStore()


@pytest.fixture
def request_store():
    return InMemoryRequestStore()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
async def pipeline(user_store, request_store, sender):
    return build_pipeline(user_store, request_store, sender)
