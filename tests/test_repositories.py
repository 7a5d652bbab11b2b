"""
Mongo repositories against mocked motor collections
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import AutoReconnect

from core.errors import ConflictError, NotFoundError, QueryError, StoreError
from domains.requests.models.request import MatchStatus, RequestStatus
from domains.requests.repositories.request_repository import RequestRepository
from domains.users.models.user import BloodType, UserRole, VerificationStatus
from domains.users.repositories.user_repository import UserRepository

from conftest import emergency


def collection(name, docs=()):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.to_list = AsyncMock(return_value=list(docs))

    coll = MagicMock()
    coll.name = name
    coll.find.return_value = cursor
    coll.find_one = AsyncMock(return_value=docs[0] if docs else None)
    coll.insert_one = AsyncMock(return_value=MagicMock(inserted_id="r1"))
    coll.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    coll.count_documents = AsyncMock(return_value=1)
    return coll, cursor


def request_doc(request_id="r1", **overrides):
    doc = emergency(request_id).to_doc()
    doc.update(overrides)
    return doc


async def test_conditional_update_filters_on_version_and_increments():
    coll, _ = collection("emergency_requests")
    repo = RequestRepository(coll)

    await repo.conditional_update("r1", 4, {"status": "ACTIVE"})

    coll.update_one.assert_awaited_once_with(
        {"_id": "r1", "version": 4},
        {"$set": {"status": "ACTIVE"}, "$inc": {"version": 1}}
    )


async def test_conditional_update_conflict():
    coll, _ = collection("emergency_requests")
    coll.update_one.return_value = MagicMock(matched_count=0)
    coll.count_documents.return_value = 1

    with pytest.raises(ConflictError):
        await RequestRepository(coll).conditional_update("r1", 4, {"status": "ACTIVE"})


async def test_conditional_update_missing_document():
    coll, _ = collection("emergency_requests")
    coll.update_one.return_value = MagicMock(matched_count=0)
    coll.count_documents.return_value = 0

    with pytest.raises(NotFoundError):
        await RequestRepository(coll).conditional_update("r1", 4, {"status": "ACTIVE"})


async def test_conditional_update_refuses_version_in_patch():
    coll, _ = collection("emergency_requests")

    with pytest.raises(ValueError):
        await RequestRepository(coll).conditional_update("r1", 4, {"version": 9})


async def test_driver_errors_become_store_errors():
    coll, _ = collection("emergency_requests")
    coll.update_one.side_effect = AutoReconnect("primary gone")

    with pytest.raises(StoreError):
        await RequestRepository(coll).conditional_update("r1", 4, {"status": "ACTIVE"})


async def test_read_errors_become_query_errors():
    coll, _ = collection("emergency_requests")
    coll.find_one.side_effect = AutoReconnect("primary gone")

    with pytest.raises(QueryError):
        await RequestRepository(coll).get("r1")


async def test_get_missing_request():
    coll, _ = collection("emergency_requests")

    with pytest.raises(NotFoundError):
        await RequestRepository(coll).get("nope")


async def test_create_starts_at_version_zero():
    coll, _ = collection("emergency_requests")

    await RequestRepository(coll).create(emergency("r1"))

    doc = coll.insert_one.await_args.args[0]
    assert doc["_id"] == "r1"
    assert doc["version"] == 0
    assert doc["matched_donors"] == []
    assert doc["blood_type"] == "O_NEGATIVE"


async def test_latest_notified_query():
    coll, _ = collection("emergency_requests", [request_doc()])

    request = await RequestRepository(coll).find_latest_notified_for_phone("+244923000001")

    assert request.id == "r1"
    filter_dict = coll.find_one.await_args.args[0]
    assert filter_dict["status"] == {"$in": ["PENDING", "ACTIVE"]}
    assert filter_dict["matched_donors"] == {
        "$elemMatch": {"phone": "+244923000001", "status": MatchStatus.NOTIFIED.value}
    }
    assert coll.find_one.await_args.kwargs["sort"] == [("created_at", -1)]


async def test_query_by_status_sorts_newest_first():
    coll, cursor = collection("emergency_requests", [request_doc("r2"), request_doc("r1")])

    requests = await RequestRepository(coll).query_by_status([RequestStatus.ACTIVE], limit=10)

    assert [r.id for r in requests] == ["r2", "r1"]
    coll.find.assert_called_once_with({"status": {"$in": ["ACTIVE"]}}, None)
    cursor.sort.assert_called_once_with([("created_at", -1)])
    cursor.limit.assert_called_once_with(10)


async def test_legacy_matched_donor_entries_are_tolerated():
    doc = request_doc(matched_donors=[
        "d-legacy",
        {"donor_id": "d-1", "phone": "+244923000001", "status": "RESPONDED",
         "notified_at": datetime(2026, 10, 1, tzinfo=timezone.utc)},
        {"donor_id": "d-1", "phone": "+244923000001", "status": "NOTIFIED",
         "notified_at": datetime(2026, 10, 1, tzinfo=timezone.utc)},
    ])
    coll, _ = collection("emergency_requests", [doc])

    request = await RequestRepository(coll).get("r1")

    assert list(request.matched_donors) == ["d-1"]
    assert request.matched_donors["d-1"].status == MatchStatus.RESPONDED


async def test_query_donors_uses_spatial_key_range():
    donor_doc = {
        "_id": "d-1",
        "phone_number": "+244923000001",
        "role": "donor",
        "blood_type": "O_NEGATIVE",
        "is_available": True,
        "location": {"latitude": -8.8, "longitude": 13.2, "spatial_key": "kqh8"},
    }
    coll, _ = collection("users", [donor_doc])

    users = await UserRepository(coll).query_donors(BloodType.O_NEGATIVE, "kqh", "kqj")

    assert users[0].id == "d-1"
    assert users[0].role == UserRole.DONOR
    coll.find.assert_called_once_with({
        "role": "donor",
        "blood_type": "O_NEGATIVE",
        "is_available": True,
        "location.spatial_key": {"$gte": "kqh", "$lte": "kqj"},
    }, None)


async def test_find_by_phone_filters_on_role():
    coll, cursor = collection("users", [{"_id": "d-1", "phone_number": "+244923000001", "role": "donor"}])

    users = await UserRepository(coll).find_by_phone("+244923000001", role=UserRole.DONOR)

    assert [u.id for u in users] == ["d-1"]
    coll.find.assert_called_once_with({"phone_number": "+244923000001", "role": "donor"}, None)
    cursor.limit.assert_called_once_with(2)


async def test_get_by_phone_returns_none_when_ambiguous():
    docs = [
        {"_id": "d-1", "phone_number": "+244923000001", "role": "donor"},
        {"_id": "d-2", "phone_number": "+244923000001", "role": "donor"},
    ]
    coll, _ = collection("users", docs)

    assert await UserRepository(coll).get_by_phone("+244923000001") is None


async def test_verification_status_is_read_case_insensitively():
    coll, _ = collection("users", [{
        "_id": "h-1", "phone_number": "+244222000111", "role": "hospital", "verification_status": "VERIFIED",
    }])

    user = await UserRepository(coll).get("h-1")

    assert user.verification_status == VerificationStatus.VERIFIED


async def test_set_spatial_key_is_conditional_on_coordinates():
    coll, _ = collection("users")
    coll.update_one.return_value = MagicMock(matched_count=0)

    tagged = await UserRepository(coll).set_spatial_key("d-1", -8.8, 13.2, "kqh8")

    assert tagged is False
    filter_dict, update = coll.update_one.await_args.args
    assert filter_dict == {"_id": "d-1", "location.latitude": -8.8, "location.longitude": 13.2}
    assert update == {"$set": {"location.spatial_key": "kqh8"}}


async def test_mark_reminded():
    coll, _ = collection("users")
    at = datetime(2026, 10, 19, tzinfo=timezone.utc)

    await UserRepository(coll).mark_reminded("d-1", at)

    coll.update_one.assert_awaited_once_with({"_id": "d-1"}, {"$set": {"last_reminder_sent_at": at}})
