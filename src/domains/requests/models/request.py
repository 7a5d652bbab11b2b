"""
Emergency request domain models
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field

from core.errors import InvalidTransition, ValidationError
from domains.users.models.user import BloodType, Location


class Urgency(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _URGENCY_ORDER.index(self)

    def __lt__(self, other):
        if isinstance(other, Urgency):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, Urgency):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, Urgency):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, Urgency):
            return self.rank >= other.rank
        return NotImplemented


_URGENCY_ORDER = (Urgency.LOW, Urgency.MEDIUM, Urgency.HIGH, Urgency.CRITICAL)


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.FULFILLED, RequestStatus.CANCELLED)


OPEN_STATUSES = (RequestStatus.PENDING, RequestStatus.ACTIVE)


class NotificationState(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class MatchStatus(str, Enum):
    NOTIFIED = "NOTIFIED"
    RESPONDED = "RESPONDED"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"

    @property
    def rank(self) -> int:
        return _MATCH_ORDER.index(self)

    @property
    def next(self) -> Optional["MatchStatus"]:
        index = self.rank + 1
        return _MATCH_ORDER[index] if index < len(_MATCH_ORDER) else None


_MATCH_ORDER = (MatchStatus.NOTIFIED, MatchStatus.RESPONDED, MatchStatus.SCHEDULED, MatchStatus.COMPLETED)


class DeliveryState(str, Enum):
    PENDING = "PENDING"
    SENDING = "SENDING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


@dataclass
class MatchRecord:
    """Per-donor notification and response record on a request"""
    donor_id: str
    phone: str
    status: MatchStatus
    notified_at: datetime
    responded_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    delivery_state: DeliveryState = DeliveryState.PENDING
    delivery_error: Optional[str] = None
    delivery_attempted_at: Optional[datetime] = None
    # Set while a dispatch pass owns the send
    delivery_claim: Optional[str] = None
    delivery_claimed_at: Optional[datetime] = None

    def advance(self, target: MatchStatus, now: datetime) -> None:
        """Move exactly one step forward, stamping the matching timestamp"""
        if self.status.next != target:
            raise InvalidTransition(f"match {self.donor_id}", self.status.value, target.value)

        self.status = target
        if target == MatchStatus.RESPONDED:
            self.responded_at = now
        elif target == MatchStatus.SCHEDULED:
            self.scheduled_at = now
        elif target == MatchStatus.COMPLETED:
            self.completed_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "donor_id": self.donor_id,
            "phone": self.phone,
            "status": self.status.value,
            "notified_at": self.notified_at,
            "responded_at": self.responded_at,
            "scheduled_at": self.scheduled_at,
            "completed_at": self.completed_at,
            "delivery_state": self.delivery_state.value,
            "delivery_error": self.delivery_error,
            "delivery_attempted_at": self.delivery_attempted_at,
            "delivery_claim": self.delivery_claim,
            "delivery_claimed_at": self.delivery_claimed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchRecord":
        return cls(
            donor_id=str(data["donor_id"]),
            phone=data.get("phone", ""),
            status=MatchStatus(data.get("status", MatchStatus.NOTIFIED.value)),
            notified_at=data.get("notified_at"),
            responded_at=data.get("responded_at"),
            scheduled_at=data.get("scheduled_at"),
            completed_at=data.get("completed_at"),
            # Records written before delivery tracking were already sent
            delivery_state=DeliveryState(data.get("delivery_state", DeliveryState.DELIVERED.value)),
            delivery_error=data.get("delivery_error"),
            delivery_attempted_at=data.get("delivery_attempted_at"),
            delivery_claim=data.get("delivery_claim"),
            delivery_claimed_at=data.get("delivery_claimed_at"),
        )


@dataclass
class EmergencyRequest:
    """
    Emergency request entity.

    ``matched_donors`` is keyed by donor id in memory and serialized as an
    ordered list at the storage boundary. Insertion order is notification order.
    """
    id: str
    hospital_id: str
    blood_type: BloodType
    units_needed: int
    urgency: Urgency
    location: Location
    status: RequestStatus = RequestStatus.PENDING
    notification_state: NotificationState = NotificationState.PENDING
    matched_donors: Dict[str, MatchRecord] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0
    notes: Optional[str] = None

    def validate(self) -> None:
        """Reject requests that cannot be matched"""
        if not self.hospital_id:
            raise ValidationError("hospital_id is required")
        if not isinstance(self.blood_type, BloodType):
            raise ValidationError(f"Unknown blood type: {self.blood_type}")
        if not isinstance(self.units_needed, int) or isinstance(self.units_needed, bool) or self.units_needed < 1:
            raise ValidationError("units_needed must be a positive integer")
        if not self.location.has_coordinates:
            raise ValidationError("Request location is required")

    def add_match(self, record: MatchRecord) -> bool:
        """Append a record unless the donor is already matched"""
        if record.donor_id in self.matched_donors:
            return False
        self.matched_donors[record.donor_id] = record
        return True

    def find_match_by_phone(self, phone: str, status: Optional[MatchStatus] = None) -> Optional[MatchRecord]:
        for record in self.matched_donors.values():
            if record.phone == phone and (status is None or record.status == status):
                return record
        return None

    def outstanding_deliveries(self) -> List[MatchRecord]:
        """Records not yet sent or still being sent"""
        return [
            r for r in self.matched_donors.values()
            if r.delivery_state in (DeliveryState.PENDING, DeliveryState.SENDING)
        ]

    def mutable_fields(self, include_location: bool = False) -> Dict[str, Any]:
        """
        Fields a conditional update may rewrite. ``location`` belongs to the
        profile collaborator and is only written back when tagging it.
        """
        fields = {
            "status": self.status.value,
            "notification_state": self.notification_state.value,
            "matched_donors": [record.to_dict() for record in self.matched_donors.values()],
            "updated_at": self.updated_at,
        }
        if include_location:
            fields["location"] = self.location.to_dict()
        return fields

    def to_doc(self) -> Dict[str, Any]:
        doc = {
            "_id": self.id,
            "hospital_id": self.hospital_id,
            "blood_type": self.blood_type.value,
            "units_needed": self.units_needed,
            "urgency": self.urgency.value,
            "created_at": self.created_at,
            "version": self.version,
            "notes": self.notes,
        }
        doc.update(self.mutable_fields(include_location=True))
        return doc

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "EmergencyRequest":
        matched: Dict[str, MatchRecord] = {}
        for item in doc.get("matched_donors") or []:
            # Legacy documents stored bare donor ids; they carry no record state
            if not isinstance(item, dict):
                continue
            record = MatchRecord.from_dict(item)
            matched.setdefault(record.donor_id, record)

        return cls(
            id=str(doc["_id"]),
            hospital_id=doc.get("hospital_id", ""),
            blood_type=BloodType(doc["blood_type"]),
            units_needed=int(doc.get("units_needed", 0)),
            urgency=Urgency(doc.get("urgency", Urgency.MEDIUM.value)),
            location=Location.from_dict(doc.get("location")),
            status=RequestStatus(doc.get("status", RequestStatus.PENDING.value)),
            notification_state=NotificationState(doc.get("notification_state", NotificationState.PENDING.value)),
            matched_donors=matched,
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
            version=int(doc.get("version", 0)),
            notes=doc.get("notes"),
        )


# API models

class LocationPayload(BaseModel):
    """Coordinates supplied by the hospital"""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class CreateEmergencyRequest(BaseModel):
    """New emergency request posted by a hospital"""
    hospital_id: str = Field(..., min_length=1)
    blood_type: BloodType
    units_needed: int = Field(..., ge=1)
    urgency: Urgency = Urgency.HIGH
    location: LocationPayload
    notes: Optional[str] = Field(None, max_length=1000)


class DispatchRequest(BaseModel):
    """Optional overrides for a manual matching pass"""
    radius_meters: Optional[float] = Field(None, gt=0, le=500_000)


class MatchRecordResponse(BaseModel):
    donor_id: str
    phone: str
    status: MatchStatus
    notified_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    delivery_state: DeliveryState
    delivery_error: Optional[str] = None


class EmergencyRequestResponse(BaseModel):
    """Emergency request as returned to hospital and admin tooling"""
    id: str
    hospital_id: str
    blood_type: BloodType
    units_needed: int
    urgency: Urgency
    status: RequestStatus
    notification_state: NotificationState
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    spatial_key: Optional[str] = None
    matched_donors: List[MatchRecordResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int
    notes: Optional[str] = None

    @classmethod
    def from_entity(cls, request: EmergencyRequest) -> "EmergencyRequestResponse":
        return cls(
            id=request.id,
            hospital_id=request.hospital_id,
            blood_type=request.blood_type,
            units_needed=request.units_needed,
            urgency=request.urgency,
            status=request.status,
            notification_state=request.notification_state,
            latitude=request.location.latitude,
            longitude=request.location.longitude,
            spatial_key=request.location.spatial_key,
            matched_donors=[MatchRecordResponse(**r.to_dict()) for r in request.matched_donors.values()],
            created_at=request.created_at,
            updated_at=request.updated_at,
            version=request.version,
            notes=request.notes,
        )
