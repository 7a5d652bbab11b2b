"""
HTTP surface: routing, error mapping and the inbound SMS webhook
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

import main
from domains.pipeline.services.pipeline_service import build_pipeline
from domains.requests.models.request import RequestStatus

from conftest import CENTER, donor, emergency

DONOR_PHONE = "+244923000001"


@pytest.fixture
def client(user_store, request_store, sender):
    main.app.state.service = SimpleNamespace(
        pipeline=build_pipeline(user_store, request_store, sender),
        health=AsyncMock(return_value={"status": "healthy"}),
    )
    # No context manager: the lifespan would connect to MongoDB and Redis
    return TestClient(main.app)


def create_payload(**overrides):
    payload = {
        "hospital_id": "hospital-1",
        "blood_type": "O_NEGATIVE",
        "units_needed": 2,
        "urgency": "CRITICAL",
        "location": {"latitude": CENTER[0], "longitude": CENTER[1]},
    }
    payload.update(overrides)
    return payload


def test_create_notifies_donors_and_reply_is_recorded(client, user_store, sender):
    user_store.add(donor("d1", *CENTER, phone=DONOR_PHONE))

    response = client.post("/api/v1/requests", json=create_payload())

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["spatial_key"]
    assert [to for to, _ in sender.sent] == [DONOR_PHONE]

    reply = client.post("/api/v1/sms/inbound", data={"From": DONOR_PHONE, "Body": " Yes "})
    assert reply.status_code == 200
    assert reply.headers["X-Intake-Result"] == "responded"
    assert "<Response></Response>" in reply.text

    stored = client.get(f"/api/v1/requests/{body['id']}").json()
    assert stored["status"] == "ACTIVE"
    assert stored["matched_donors"][0]["status"] == "RESPONDED"
    assert len(sender.bodies_to(DONOR_PHONE)) == 2


def test_invalid_payload_is_rejected(client, request_store):
    response = client.post("/api/v1/requests", json=create_payload(blood_type="Z_POSITIVE", units_needed=0))

    assert response.status_code == 422
    assert request_store.docs == {}


def test_unknown_request_is_404(client):
    response = client.get("/api/v1/requests/missing")

    assert response.status_code == 404
    assert "missing" in response.json()["detail"]


def test_illegal_transition_is_409(client, request_store):
    request = emergency("r1", status=RequestStatus.CANCELLED)
    request_store.docs["r1"] = {**request.to_doc(), "version": 0}

    response = client.post("/api/v1/requests/r1/activate")

    assert response.status_code == 409


def test_status_transitions(client, request_store):
    request = emergency("r1")
    request_store.docs["r1"] = {**request.to_doc(), "version": 0}

    assert client.post("/api/v1/requests/r1/activate").json()["status"] == "ACTIVE"
    assert client.post("/api/v1/requests/r1/fulfill").json()["status"] == "FULFILLED"
    assert client.post("/api/v1/requests/r1/cancel").status_code == 409


def test_list_defaults_to_open_requests(client, request_store):
    for request_id, status in (("open", RequestStatus.PENDING), ("done", RequestStatus.FULFILLED)):
        request = emergency(request_id, status=status)
        request_store.docs[request_id] = {**request.to_doc(), "version": 0}

    assert [r["id"] for r in client.get("/api/v1/requests").json()] == ["open"]
    listed = client.get("/api/v1/requests", params={"status": "FULFILLED"}).json()
    assert [r["id"] for r in listed] == ["done"]


def test_inbound_non_affirmative_reply(client, sender):
    response = client.post("/api/v1/sms/inbound", data={"From": DONOR_PHONE, "Body": "maybe later"})

    assert response.status_code == 200
    assert response.headers["X-Intake-Result"] == "ignored"
    assert sender.sent == []


def test_inbound_reply_from_stranger(client):
    response = client.post("/api/v1/sms/inbound", data={"From": "+244999999999", "Body": "YES"})

    assert response.headers["X-Intake-Result"] == "unknown-sender"


def test_dispatch_with_wider_radius(client, user_store, request_store, sender):
    # Roughly 80 km north of the request
    user_store.add(donor("far", CENTER[0] + 0.72, CENTER[1], phone=DONOR_PHONE))
    request = emergency("r1")
    request_store.docs["r1"] = {**request.to_doc(), "version": 0}

    first = client.post("/api/v1/requests/r1/dispatch").json()
    assert first["status"] == "ok"
    assert sender.sent == []

    wider = client.post("/api/v1/requests/r1/dispatch", json={"radius_meters": 100000}).json()
    assert wider["event"] == "redispatch"
    assert wider["detail"] == "sent"
    assert [to for to, _ in sender.sent] == [DONOR_PHONE]


def test_user_location_event(client, user_store):
    user = donor("d1", *CENTER, phone=DONOR_PHONE)
    user.location.spatial_key = None
    user_store.add(user)

    result = client.post("/api/v1/events/users/d1/location").json()

    assert result["status"] == "ok"
    assert user_store.users["d1"].location.spatial_key == result["data"]["spatial_key"]


def test_reminder_sweep_endpoint(client):
    result = client.post("/api/v1/sweeps/reminders").json()

    assert result["event"] == "scheduled_sweep"
    assert result["status"] == "ok"
    assert result["data"]["considered"] == 0


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"status": "healthy"}

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "bloodlink_notifications_total" in metrics.text
