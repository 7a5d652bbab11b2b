"""
User domain models (donors and hospitals)
"""

from typing import Optional, Dict, Any
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum


class UserRole(str, Enum):
    DONOR = "donor"
    HOSPITAL = "hospital"


class BloodType(str, Enum):
    A_POSITIVE = "A_POSITIVE"
    A_NEGATIVE = "A_NEGATIVE"
    B_POSITIVE = "B_POSITIVE"
    B_NEGATIVE = "B_NEGATIVE"
    AB_POSITIVE = "AB_POSITIVE"
    AB_NEGATIVE = "AB_NEGATIVE"
    O_POSITIVE = "O_POSITIVE"
    O_NEGATIVE = "O_NEGATIVE"


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


@dataclass
class Location:
    """Point coordinates plus the spatial key derived from them"""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    spatial_key: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def as_point(self):
        return (self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "spatial_key": self.spatial_key
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Location":
        data = data or {}
        lat = data.get("latitude")
        lon = data.get("longitude")
        return cls(
            latitude=float(lat) if lat is not None else None,
            longitude=float(lon) if lon is not None else None,
            spatial_key=data.get("spatial_key")
        )


@dataclass
class User:
    """Read-side view of a user document owned by the profile collaborator"""
    id: str
    phone_number: Optional[str]
    role: UserRole
    location: Location = field(default_factory=Location)
    name: Optional[str] = None

    # Donor-only
    blood_type: Optional[BloodType] = None
    is_available: bool = False
    last_donation_at: Optional[datetime] = None
    last_reminder_sent_at: Optional[datetime] = None

    # Hospital-only
    verification_status: Optional[VerificationStatus] = None

    def to_doc(self) -> Dict[str, Any]:
        doc = {
            "_id": self.id,
            "phone_number": self.phone_number,
            "role": self.role.value,
            "location": self.location.to_dict(),
            "name": self.name,
        }
        if self.role == UserRole.DONOR:
            doc.update({
                "blood_type": self.blood_type.value if self.blood_type else None,
                "is_available": self.is_available,
                "last_donation_at": self.last_donation_at,
                "last_reminder_sent_at": self.last_reminder_sent_at,
            })
        else:
            doc["verification_status"] = (
                self.verification_status.value if self.verification_status else VerificationStatus.UNVERIFIED.value
            )
        return doc

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "User":
        blood_type = doc.get("blood_type")
        verification = doc.get("verification_status")
        return cls(
            id=str(doc["_id"]),
            phone_number=doc.get("phone_number"),
            role=UserRole(doc.get("role", UserRole.DONOR.value)),
            location=Location.from_dict(doc.get("location")),
            name=doc.get("name"),
            blood_type=BloodType(blood_type) if blood_type else None,
            is_available=bool(doc.get("is_available", False)),
            last_donation_at=doc.get("last_donation_at"),
            last_reminder_sent_at=doc.get("last_reminder_sent_at"),
            verification_status=VerificationStatus(verification.lower()) if verification else None,
        )
