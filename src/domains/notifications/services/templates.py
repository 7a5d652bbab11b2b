"""
Outbound SMS texts
"""

from domains.requests.models.request import EmergencyRequest
from domains.users.models.user import BloodType, VerificationStatus

RESPONSE_CONFIRMATION = "Thank you for responding! Please open the BloodLink app to schedule your donation."

VERIFICATION_APPROVED = (
    "Your hospital verification has been approved. You can now create emergency blood requests."
)
VERIFICATION_REJECTED = (
    "Your hospital verification has been rejected. Please submit a new verification document."
)


def emergency_request_message(request: EmergencyRequest) -> str:
    return (
        "URGENT: Blood donation needed!\n"
        f"Blood Type: {request.blood_type.value}\n"
        f"Units: {request.units_needed}\n"
        f"Urgency: {request.urgency.value}\n"
        "Reply YES to respond to this request."
    )


def donation_reminder_message(blood_type: BloodType) -> str:
    return (
        "BloodLink Reminder: It's been 3 months since your last donation. "
        f"Your blood type ({blood_type.value}) is always in demand. "
        "Please consider donating again soon!"
    )


def verification_message(status: VerificationStatus):
    """Text for a verification decision, or None when there is nothing to announce"""
    if status == VerificationStatus.VERIFIED:
        return VERIFICATION_APPROVED
    if status == VerificationStatus.REJECTED:
        return VERIFICATION_REJECTED
    return None
