from datetime import datetime, timedelta

from booking_service.timer import as_utc

from conftest import APPLICANT, PROVIDER, T0, auth


def parse_dt(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def live_payload(**overrides):
    payload = {
        "provider_id": PROVIDER,
        "service_id": "svc-mock-1",
        "price": 150,
        "delivery": "live",
        "scheduled_at": (T0 + timedelta(days=5)).isoformat(),
        "duration": 45,
        "service_snapshot": {"type": "mock_interview", "title": "Mock Interview"},
        "provider_snapshot": {"name": "Dana Reyes, CRNA"},
        "applicant_snapshot": {"name": "Sam Ortiz"},
        "intake_data": {"target_schools": ["Duke", "Emory"]},
        "attachments": [{"name": "resume.pdf", "url": "https://files.example/resume.pdf"}],
    }
    payload.update(overrides)
    return payload


def async_payload(**overrides):
    payload = live_payload(
        delivery="async",
        service_snapshot={"type": "essay_review", "turnaround_hours": 72},
    )
    payload.pop("scheduled_at")
    payload.pop("duration")
    payload.update(overrides)
    return payload


def create(client, headers, payload=None):
    r = client.post("/bookings", json=payload or live_payload(), headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["booking"]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["service"] == "booking-service"


def test_requires_token(client):
    assert client.get("/bookings").status_code == 401


def test_create_pending_booking(client, clock, published, applicant_headers):
    booking = create(client, applicant_headers)

    assert booking["status"] == "pending_provider"
    assert booking["applicant_id"] == APPLICANT
    assert parse_dt(booking["expires_at"]) == T0 + timedelta(hours=48)
    assert booking["duration"] == 45
    assert booking["turnaround_deadline"] is None
    assert booking["service_snapshot"]["title"] == "Mock Interview"
    assert booking["attachments"][0]["name"] == "resume.pdf"

    view = booking["view"]
    assert view["status_label"] == "Awaiting Confirmation"
    assert view["time_remaining"]["hours"] == 48
    assert view["actions"] == ["cancel"]
    assert published == ["booking.requested"]


def test_create_collects_validation_errors(client, clock, applicant_headers):
    payload = async_payload(price=0, scheduled_at=(T0 + timedelta(days=1)).isoformat())
    r = client.post("/bookings", json=payload, headers=applicant_headers)
    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["kind"] == "validation"
    assert set(detail["details"]) == {"price", "scheduled_at"}


def test_create_rejects_past_session(client, clock, applicant_headers):
    payload = live_payload(scheduled_at=(T0 - timedelta(hours=1)).isoformat())
    r = client.post("/bookings", json=payload, headers=applicant_headers)
    assert r.status_code == 422
    assert r.json()["detail"]["details"]["scheduled_at"] == "Cannot book in the past"


def test_providers_cannot_create(client, provider_headers):
    r = client.post("/bookings", json=live_payload(), headers=provider_headers)
    assert r.status_code == 403


def test_instant_booking_is_confirmed_immediately(client, clock, applicant_headers):
    booking = create(client, applicant_headers, live_payload(booking_model="instant"))
    assert booking["status"] == "confirmed"
    assert booking["accepted_at"] is not None


def test_provider_accepts_within_window(client, clock, published, applicant_headers, provider_headers):
    booking = create(client, applicant_headers)

    clock["now"] = T0 + timedelta(hours=10)
    r = client.post(
        f"/bookings/{booking['booking_id']}/accept",
        json={"meeting_url": "https://meet.example/xyz"},
        headers=provider_headers,
    )
    assert r.status_code == 200, r.text
    accepted = r.json()["booking"]
    assert accepted["status"] == "confirmed"
    assert accepted["meeting_url"] == "https://meet.example/xyz"
    assert parse_dt(accepted["scheduled_at"]) == T0 + timedelta(days=5)
    assert parse_dt(accepted["accepted_at"]) == T0 + timedelta(hours=10)
    assert published[-1] == "booking.accepted"


def test_accept_after_expiry_conflicts(client, clock, applicant_headers, provider_headers):
    booking = create(client, applicant_headers)

    clock["now"] = T0 + timedelta(hours=48, minutes=1)
    detail = client.get(f"/bookings/{booking['booking_id']}", headers=applicant_headers).json()
    assert detail["view"]["expired"] is True
    assert detail["status"] == "pending_provider"

    r = client.post(f"/bookings/{booking['booking_id']}/accept", headers=provider_headers)
    assert r.status_code == 409
    assert r.json()["detail"]["kind"] == "conflict"


def test_applicant_cannot_accept(client, clock, applicant_headers):
    booking = create(client, applicant_headers)
    r = client.post(f"/bookings/{booking['booking_id']}/accept", headers=applicant_headers)
    assert r.status_code == 403
    assert r.json()["detail"]["kind"] == "forbidden"


def test_other_provider_is_not_a_party(client, clock, applicant_headers):
    booking = create(client, applicant_headers)
    stranger = auth("provider-2", ["provider"])
    r = client.post(f"/bookings/{booking['booking_id']}/decline", headers=stranger)
    assert r.status_code == 403
    assert client.get(f"/bookings/{booking['booking_id']}", headers=stranger).status_code == 403


def test_unknown_booking(client, applicant_headers):
    r = client.post("/bookings/nope/cancel", headers=applicant_headers)
    assert r.status_code == 404
    assert r.json()["detail"]["kind"] == "not_found"


def test_decline_refunds_in_full(client, clock, published, applicant_headers, provider_headers):
    booking = create(client, applicant_headers)
    r = client.post(
        f"/bookings/{booking['booking_id']}/decline",
        json={"reason": "Fully booked that week"},
        headers=provider_headers,
    )
    assert r.status_code == 200
    body = r.json()
    assert body["booking"]["status"] == "declined"
    assert body["booking"]["declined_reason"] == "Fully booked that week"
    assert body["refund"]["percent"] == 100
    assert body["refund"]["amount"] == 150.0
    assert published[-1] == "booking.declined"


def test_cancel_future_confirmed_session(client, clock, applicant_headers, provider_headers):
    booking = create(client, applicant_headers)
    booking_id = booking["booking_id"]
    client.post(f"/bookings/{booking_id}/accept", headers=provider_headers)

    clock["now"] = T0 + timedelta(days=4)
    r = client.post(f"/bookings/{booking_id}/cancel", json={"reason": "Interview moved"}, headers=applicant_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["booking"]["status"] == "cancelled"
    assert body["booking"]["cancelled_by"] == "applicant"
    assert body["refund"]["percent"] == 100


def test_cancel_within_policy_window_is_partial(client, clock, applicant_headers, provider_headers):
    booking = create(client, applicant_headers)
    booking_id = booking["booking_id"]
    client.post(f"/bookings/{booking_id}/accept", headers=provider_headers)

    clock["now"] = T0 + timedelta(days=5) - timedelta(hours=2)
    body = client.post(f"/bookings/{booking_id}/cancel", headers=applicant_headers).json()
    assert body["refund"]["percent"] == 50
    assert body["refund"]["amount"] == 75.0


def test_cancel_after_session_start_conflicts(client, clock, applicant_headers, provider_headers):
    booking = create(client, applicant_headers)
    booking_id = booking["booking_id"]
    client.post(f"/bookings/{booking_id}/accept", headers=provider_headers)

    clock["now"] = T0 + timedelta(days=5, minutes=5)
    r = client.post(f"/bookings/{booking_id}/cancel", headers=applicant_headers)
    assert r.status_code == 409


def test_complete_then_only_review_remains(client, clock, published, applicant_headers, provider_headers):
    booking = create(client, applicant_headers)
    booking_id = booking["booking_id"]
    client.post(
        f"/bookings/{booking_id}/accept",
        json={"meeting_url": "https://meet.example/xyz"},
        headers=provider_headers,
    )

    clock["now"] = T0 + timedelta(days=5, minutes=10)
    view = client.get(f"/bookings/{booking_id}", headers=applicant_headers).json()["view"]
    assert view["can_join"] is True

    clock["now"] = T0 + timedelta(days=5, hours=1)
    r = client.post(f"/bookings/{booking_id}/complete", headers=provider_headers)
    assert r.status_code == 200
    completed = r.json()["booking"]
    assert completed["status"] == "completed"
    assert completed["view"]["actions"] == []
    assert completed["view"]["can_join"] is False
    assert published[-1] == "booking.completed"

    view = client.get(f"/bookings/{booking_id}", headers=applicant_headers).json()["view"]
    assert view["can_review"] is True
    assert view["actions"] == []

    assert client.post(f"/bookings/{booking_id}/complete", headers=provider_headers).status_code == 409
    assert client.post(f"/bookings/{booking_id}/cancel", headers=applicant_headers).status_code == 409


def test_async_accept_sets_turnaround(client, clock, applicant_headers, provider_headers):
    booking = create(client, applicant_headers, async_payload())
    assert booking["scheduled_at"] is None
    assert booking["duration"] is None

    clock["now"] = T0 + timedelta(hours=2)
    accepted = client.post(f"/bookings/{booking['booking_id']}/accept", headers=provider_headers).json()["booking"]
    assert accepted["status"] == "confirmed"
    assert accepted["scheduled_at"] is None
    assert parse_dt(accepted["turnaround_deadline"]) == T0 + timedelta(hours=74)


def test_live_accept_without_time_needs_one(client, clock, applicant_headers, provider_headers):
    payload = live_payload()
    payload.pop("scheduled_at")
    booking = create(client, applicant_headers, payload)

    r = client.post(f"/bookings/{booking['booking_id']}/accept", headers=provider_headers)
    assert r.status_code == 422

    chosen = T0 + timedelta(days=2)
    r = client.post(
        f"/bookings/{booking['booking_id']}/accept",
        json={"scheduled_at": chosen.isoformat()},
        headers=provider_headers,
    )
    assert r.status_code == 200
    assert parse_dt(r.json()["booking"]["scheduled_at"]) == chosen


def test_session_notes(client, clock, applicant_headers, provider_headers):
    booking = create(client, applicant_headers)
    booking_id = booking["booking_id"]

    r = client.put(f"/bookings/{booking_id}/notes", json={"session_notes": "Focus on ICU stories"}, headers=provider_headers)
    assert r.status_code == 200
    assert r.json()["session_notes"] == "Focus on ICU stories"

    client.post(f"/bookings/{booking_id}/decline", headers=provider_headers)
    r = client.put(f"/bookings/{booking_id}/notes", json={"session_notes": "late edit"}, headers=provider_headers)
    assert r.status_code == 409


def test_list_hides_closed_by_default(client, clock, applicant_headers, provider_headers):
    kept = create(client, applicant_headers)
    dropped = create(client, applicant_headers)
    client.post(f"/bookings/{dropped['booking_id']}/decline", headers=provider_headers)

    ids = [b["booking_id"] for b in client.get("/bookings", headers=applicant_headers).json()]
    assert ids == [kept["booking_id"]]

    ids = [
        b["booking_id"]
        for b in client.get("/bookings", params={"include_cancelled": True}, headers=applicant_headers).json()
    ]
    assert set(ids) == {kept["booking_id"], dropped["booking_id"]}


def test_pending_requests_urgent_count(client, clock, applicant_headers, provider_headers):
    create(client, applicant_headers)
    clock["now"] = T0 + timedelta(hours=1)
    create(client, applicant_headers)

    clock["now"] = T0 + timedelta(hours=36, minutes=30)
    body = client.get("/bookings/pending", headers=provider_headers).json()
    assert len(body["requests"]) == 2
    assert body["urgent_count"] == 1


def test_admin_can_cancel_any_booking(client, clock, applicant_headers, admin_headers):
    booking = create(client, applicant_headers)
    r = client.post(f"/bookings/{booking['booking_id']}/cancel", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["booking"]["cancelled_by"] == "admin"


def test_idempotency_key_replays_result(client, clock, fake_redis, applicant_headers):
    booking = create(client, applicant_headers)
    headers = dict(applicant_headers, **{"Idempotency-Key": "cancel-once"})

    first = client.post(f"/bookings/{booking['booking_id']}/cancel", headers=headers)
    second = client.post(f"/bookings/{booking['booking_id']}/cancel", headers=headers)
    assert first.status_code == second.status_code == 200
    assert first.json()["booking"]["status"] == second.json()["booking"]["status"] == "cancelled"


def test_live_booking_rejects_turnaround_deadline(client, clock, applicant_headers):
    payload = live_payload(turnaround_deadline=(T0 + timedelta(days=3)).isoformat())
    r = client.post("/bookings", json=payload, headers=applicant_headers)
    assert r.status_code == 422
    assert set(r.json()["detail"]["details"]) == {"turnaround_deadline"}


def test_async_booking_rejects_duration(client, clock, applicant_headers):
    r = client.post("/bookings", json=async_payload(duration=30), headers=applicant_headers)
    assert r.status_code == 422
    assert set(r.json()["detail"]["details"]) == {"duration"}


def test_losing_concurrent_writer_gets_conflict(
    client, clock, competing_write, applicant_headers, provider_headers
):
    booking = create(client, applicant_headers)
    booking_id = booking["booking_id"]

    competing_write["status"] = "cancelled"
    r = client.post(f"/bookings/{booking_id}/decline", json={"reason": "busy"}, headers=provider_headers)
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["kind"] == "conflict"
    assert detail["details"] == {"booking_id": booking_id, "expected_status": "pending_provider"}

    stored = client.get(f"/bookings/{booking_id}", headers=applicant_headers).json()
    assert stored["status"] == "cancelled"
    assert stored["declined_at"] is None


def _confirmed(client, applicant_headers, provider_headers):
    booking = create(client, applicant_headers)
    r = client.post(f"/bookings/{booking['booking_id']}/accept", headers=provider_headers)
    assert r.status_code == 200
    return r.json()["booking"]


def test_reschedule_confirmed_session(client, clock, published, applicant_headers, provider_headers):
    booking = _confirmed(client, applicant_headers, provider_headers)
    new_time = T0 + timedelta(days=7, hours=2)

    clock["now"] = T0 + timedelta(days=1)
    r = client.post(
        f"/bookings/{booking['booking_id']}/reschedule",
        json={"scheduled_at": new_time.isoformat(), "reason": "Clinical shift moved"},
        headers=applicant_headers,
    )
    assert r.status_code == 200, r.text
    moved = r.json()["booking"]
    assert moved["status"] == "confirmed"
    assert parse_dt(moved["scheduled_at"]) == new_time
    assert published[-1] == "booking.rescheduled"


def test_reschedule_needs_a_future_time(client, clock, applicant_headers, provider_headers):
    booking = _confirmed(client, applicant_headers, provider_headers)
    url = f"/bookings/{booking['booking_id']}/reschedule"

    r = client.post(url, headers=provider_headers)
    assert r.status_code == 422
    assert r.json()["detail"]["details"] == {"scheduled_at": "required"}

    r = client.post(url, json={"scheduled_at": (T0 - timedelta(hours=1)).isoformat()}, headers=provider_headers)
    assert r.status_code == 422

    stored = client.get(f"/bookings/{booking['booking_id']}", headers=applicant_headers).json()
    assert parse_dt(stored["scheduled_at"]) == T0 + timedelta(days=5)


def test_reschedule_after_session_start_conflicts(client, clock, applicant_headers, provider_headers):
    booking = _confirmed(client, applicant_headers, provider_headers)

    clock["now"] = T0 + timedelta(days=5, minutes=1)
    r = client.post(
        f"/bookings/{booking['booking_id']}/reschedule",
        json={"scheduled_at": (T0 + timedelta(days=9)).isoformat()},
        headers=applicant_headers,
    )
    assert r.status_code == 409


def test_pending_request_cannot_be_rescheduled(client, clock, applicant_headers):
    booking = create(client, applicant_headers)
    r = client.post(
        f"/bookings/{booking['booking_id']}/reschedule",
        json={"scheduled_at": (T0 + timedelta(days=9)).isoformat()},
        headers=applicant_headers,
    )
    assert r.status_code == 409
