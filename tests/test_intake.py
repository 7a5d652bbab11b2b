"""
Inbound reply handling
"""

from datetime import datetime, timezone

import pytest

from domains.matching.models.matching import DonorCandidate
from domains.notifications.services.dispatcher import NotificationDispatcher
from domains.notifications.services.templates import RESPONSE_CONFIRMATION
from domains.requests.models.request import MatchStatus, RequestStatus
from domains.requests.services.lifecycle_service import RequestLifecycle
from domains.responses.models.intake import IntakeCode
from domains.responses.services.intake_service import ResponseIntake, is_affirmative
from domains.users.models.user import VerificationStatus

from conftest import CENTER, FakeSender, donor, emergency, hospital

PHONE = "+244923000001"


@pytest.fixture
def lifecycle(request_store):
    return RequestLifecycle(request_store, max_attempts=3)


@pytest.fixture
def intake(user_store, request_store, lifecycle, sender):
    user_store.add(donor("d-1", *CENTER, phone=PHONE))
    dispatcher = NotificationDispatcher(lifecycle, sender)
    return ResponseIntake(user_store, request_store, lifecycle, dispatcher)


async def notified_request(request_store, lifecycle, request_id, created_day=1, status=RequestStatus.PENDING):
    await request_store.create(emergency(
        request_id,
        status=status,
        created_at=datetime(2026, 10, created_day, 12, 0, tzinfo=timezone.utc)
    ))
    await lifecycle.claim_deliveries(request_id, [DonorCandidate("d-1", PHONE, 500.0)], "claim-1")
    return request_id


@pytest.mark.parametrize("body,expected", [
    ("YES", True),
    ("  yes \n", True),
    ("Yes", True),
    ("sim", True),
    ("SIM", True),
    ("maybe", False),
    ("yes please", False),
    ("", False),
    (None, False),
])
def test_affirmative_replies(body, expected):
    assert is_affirmative(body) is expected


async def test_yes_records_response_and_confirms(intake, request_store, lifecycle, sender):
    await notified_request(request_store, lifecycle, "r1")

    result = await intake.handle_reply(PHONE, " Yes ")

    assert result.code == IntakeCode.RESPONDED
    assert result.request_id == "r1"
    assert result.confirmation_sent
    assert sender.bodies_to(PHONE) == [RESPONSE_CONFIRMATION]

    request = await request_store.get("r1")
    assert request.matched_donors["d-1"].status == MatchStatus.RESPONDED
    assert request.matched_donors["d-1"].responded_at is not None
    assert request.status == RequestStatus.ACTIVE


async def test_only_the_newest_request_is_updated(intake, request_store, lifecycle):
    await notified_request(request_store, lifecycle, "r-old", created_day=1)
    await notified_request(request_store, lifecycle, "r-new", created_day=5)

    result = await intake.handle_reply(PHONE, "yes")

    assert result.request_id == "r-new"
    assert (await request_store.get("r-new")).matched_donors["d-1"].status == MatchStatus.RESPONDED
    assert (await request_store.get("r-old")).matched_donors["d-1"].status == MatchStatus.NOTIFIED


async def test_second_yes_answers_the_older_request(intake, request_store, lifecycle):
    await notified_request(request_store, lifecycle, "r-old", created_day=1)
    await notified_request(request_store, lifecycle, "r-new", created_day=5)

    await intake.handle_reply(PHONE, "yes")
    result = await intake.handle_reply(PHONE, "yes")

    assert result.request_id == "r-old"
    assert (await request_store.get("r-old")).matched_donors["d-1"].status == MatchStatus.RESPONDED


async def test_other_text_is_ignored(intake, request_store, lifecycle, sender):
    await notified_request(request_store, lifecycle, "r1")
    version = request_store.docs["r1"]["version"]

    result = await intake.handle_reply(PHONE, "maybe")

    assert result.code == IntakeCode.IGNORED
    assert request_store.docs["r1"]["version"] == version
    assert sender.sent == []


async def test_national_format_sender_is_resolved(intake, request_store, lifecycle):
    await notified_request(request_store, lifecycle, "r1")

    result = await intake.handle_reply("923 000 001", "YES")

    assert result.code == IntakeCode.RESPONDED


async def test_unknown_sender(intake):
    result = await intake.handle_reply("+244923999999", "yes")

    assert result.code == IntakeCode.UNKNOWN_SENDER


async def test_unparseable_sender(intake):
    result = await intake.handle_reply("", "yes")

    assert result.code == IntakeCode.UNKNOWN_SENDER


async def test_ambiguous_sender(intake, user_store, request_store, lifecycle):
    user_store.add(donor("d-dup", *CENTER, phone=PHONE))
    await notified_request(request_store, lifecycle, "r1")

    result = await intake.handle_reply(PHONE, "yes")

    assert result.code == IntakeCode.AMBIGUOUS_SENDER
    assert (await request_store.get("r1")).matched_donors["d-1"].status == MatchStatus.NOTIFIED


async def test_hospital_number_does_not_hide_second_donor(intake, user_store, request_store, lifecycle):
    user_store.add(hospital("h-1", PHONE, VerificationStatus.VERIFIED))
    user_store.add(donor("d-dup", *CENTER, phone=PHONE))
    await notified_request(request_store, lifecycle, "r1")

    result = await intake.handle_reply(PHONE, "yes")

    assert result.code == IntakeCode.AMBIGUOUS_SENDER
    assert (await request_store.get("r1")).matched_donors["d-1"].status == MatchStatus.NOTIFIED


async def test_hospital_number_shared_with_one_donor(intake, user_store, request_store, lifecycle):
    user_store.add(hospital("h-1", PHONE, VerificationStatus.VERIFIED))
    await notified_request(request_store, lifecycle, "r1")

    result = await intake.handle_reply(PHONE, "yes")

    assert result.code == IntakeCode.RESPONDED


async def test_no_active_request(intake):
    result = await intake.handle_reply(PHONE, "yes")

    assert result.code == IntakeCode.NO_ACTIVE_REQUEST


async def test_closed_requests_are_not_answered(intake, request_store, lifecycle):
    await notified_request(request_store, lifecycle, "r1")
    await lifecycle.cancel("r1")

    result = await intake.handle_reply(PHONE, "yes")

    assert result.code == IntakeCode.NO_ACTIVE_REQUEST


async def test_repeated_yes_is_already_responded(intake, request_store, lifecycle, sender):
    await notified_request(request_store, lifecycle, "r1")
    await intake.handle_reply(PHONE, "yes")

    result = await intake.handle_reply(PHONE, "yes")

    assert result.code == IntakeCode.ALREADY_RESPONDED
    assert result.request_id == "r1"
    assert sender.bodies_to(PHONE) == [RESPONSE_CONFIRMATION]


async def test_failed_confirmation_still_records_response(user_store, request_store, lifecycle):
    sender = FakeSender(failing=[PHONE])
    user_store.add(donor("d-1", *CENTER, phone=PHONE))
    intake = ResponseIntake(user_store, request_store, lifecycle, NotificationDispatcher(lifecycle, sender))
    await notified_request(request_store, lifecycle, "r1")

    result = await intake.handle_reply(PHONE, "yes")

    assert result.code == IntakeCode.RESPONDED
    assert not result.confirmation_sent
