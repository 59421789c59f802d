import json

from conftest import OWNER, RENTER, FakeRedis, future_day

OWNER_H = {"X-User-Id": OWNER}
RENTER_H = {"X-User-Id": RENTER}


async def new_spot(client, price="10.00", **extra):
    resp = await client.post("/spots", json={"name": "Lot A", "price": price, **extra}, headers=OWNER_H)
    assert resp.status_code == 200
    return resp.json()


def booking_body(spot_id, start="10:00:00", end="12:00:00"):
    day = future_day().isoformat()
    return {"spot_id": spot_id, "start_date": day, "end_date": day, "start_time": start, "end_time": end}


async def top_up(client, gateway, amount):
    resp = await client.post("/wallet/topups", json={"amount": amount}, headers=RENTER_H)
    assert resp.status_code == 200
    session_id = resp.json()["session_id"]
    gateway.pay(session_id)
    resp = await client.post("/wallet/topups/verify", json={"session_id": session_id}, headers=RENTER_H)
    assert resp.status_code == 200
    return resp.json()


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_actor_header_is_required(client):
    resp = await client.post("/spots", json={"name": "Lot A"})
    assert resp.status_code == 401


async def test_spot_view_is_per_viewer(client):
    spot = await new_spot(client)
    assert spot["is_owner"] is True

    resp = await client.get(f"/spots/{spot['id']}", headers=RENTER_H)
    body = resp.json()
    assert body["is_owner"] is False
    assert body["effective_status"] == "available"


async def test_unknown_spot_is_404(client):
    resp = await client.get("/spots/12345")
    assert resp.status_code == 404


async def test_schedule_drives_availability(client):
    spot = await new_spot(client)
    day = future_day()
    other_day = (day.weekday() + 1) % 7
    resp = await client.put(
        f"/spots/{spot['id']}/schedule",
        json={"slots": [{"day_of_week": other_day, "start_time": "08:00:00", "end_time": "18:00:00"}]},
        headers=OWNER_H,
    )
    assert resp.status_code == 200
    assert resp.json()["has_schedule"] is True

    params = {
        "start_date": day.isoformat(),
        "end_date": day.isoformat(),
        "start_time": "10:00:00",
        "end_time": "12:00:00",
    }
    resp = await client.get(f"/spots/{spot['id']}/availability", params=params)
    assert resp.json() == {"spot_id": spot["id"], "bookable": False, "reason": "outside_schedule"}

    resp = await client.post("/bookings", json=booking_body(spot["id"]), headers=RENTER_H)
    assert resp.status_code == 409
    assert resp.json()["detail"]["reason"] == "outside_schedule"


async def test_overlapping_slots_are_rejected(client):
    spot = await new_spot(client)
    slots = [
        {"day_of_week": 0, "start_time": "08:00:00", "end_time": "12:00:00"},
        {"day_of_week": 0, "start_time": "11:00:00", "end_time": "14:00:00"},
    ]
    resp = await client.put(f"/spots/{spot['id']}/schedule", json={"slots": slots}, headers=OWNER_H)
    assert resp.status_code == 400


async def test_booking_flow_with_wallet(client, gateway):
    spot = await new_spot(client)
    paid = await top_up(client, gateway, "30")
    assert paid["success"] is True

    resp = await client.post("/bookings", json=booking_body(spot["id"]), headers=RENTER_H)
    assert resp.status_code == 200
    booking = resp.json()
    assert booking["is_mine"] is True
    assert booking["total_price"] == "20.00"

    resp = await client.get("/bookings", params={"role": "incoming"}, headers=OWNER_H)
    assert [b["booking_id"] for b in resp.json()] == [booking["booking_id"]]
    assert resp.json()[0]["is_mine"] is False

    resp = await client.post(f"/bookings/{booking['booking_id']}/accept", headers=OWNER_H)
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"
    assert resp.json()["payment_amount"] == "22.00"

    resp = await client.post(f"/bookings/{booking['booking_id']}/accept", headers=OWNER_H)
    assert resp.status_code == 409

    wallet = (await client.get("/wallet", headers=RENTER_H)).json()
    assert wallet["balance"] == "8.00"
    wallet = (await client.get("/wallet", headers=OWNER_H)).json()
    assert wallet["balance"] == "20.00"


async def test_insufficient_funds_is_402(client, gateway):
    spot = await new_spot(client)
    await top_up(client, gateway, "15")
    booking = (await client.post("/bookings", json=booking_body(spot["id"]), headers=RENTER_H)).json()

    resp = await client.post(f"/bookings/{booking['booking_id']}/accept", headers=OWNER_H)
    assert resp.status_code == 402
    assert resp.json()["detail"]["required"] == "22.00"

    resp = await client.get(f"/bookings/{booking['booking_id']}", headers=RENTER_H)
    assert resp.json()["status"] == "pending"


async def test_only_parties_see_a_booking(client):
    spot = await new_spot(client)
    booking = (await client.post("/bookings", json=booking_body(spot["id"]), headers=RENTER_H)).json()
    resp = await client.get(f"/bookings/{booking['booking_id']}", headers={"X-User-Id": "stranger"})
    assert resp.status_code == 404


async def test_verify_refuses_someone_elses_session(client, gateway):
    resp = await client.post("/wallet/topups", json={"amount": "10"}, headers=RENTER_H)
    session_id = resp.json()["session_id"]
    gateway.pay(session_id)
    resp = await client.post("/wallet/topups/verify", json={"session_id": session_id}, headers=OWNER_H)
    assert resp.status_code == 403


async def test_webhook_rejects_bad_signature(client):
    resp = await client.post("/webhooks/stripe", content=b"{}", headers={"stripe-signature": "forged"})
    assert resp.status_code == 400


async def test_webhook_accepts_paid_booking_once(client, gateway, monkeypatch):
    monkeypatch.setattr("app.routes.redis_client", FakeRedis())
    spot = await new_spot(client)
    booking = (await client.post("/bookings", json=booking_body(spot["id"]), headers=RENTER_H)).json()
    checkout = (await client.post(f"/bookings/{booking['booking_id']}/checkout", headers=RENTER_H)).json()
    assert checkout["amount"] == "22.00"

    event = {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": gateway.pay(checkout["session_id"])},
    }
    payload = json.dumps(event).encode()
    headers = {"stripe-signature": "valid"}

    first = await client.post("/webhooks/stripe", content=payload, headers=headers)
    second = await client.post("/webhooks/stripe", content=payload, headers=headers)
    assert first.json() == {"received": True}
    assert second.json() == {"received": True, "duplicate": True}

    resp = await client.get(f"/bookings/{booking['booking_id']}", headers=OWNER_H)
    assert resp.json()["status"] == "accepted"
    assert resp.json()["payment_processed"] is True

    resp = await client.post(f"/bookings/{booking['booking_id']}/accept", headers=OWNER_H)
    assert resp.status_code == 409
    assert (await client.get("/wallet", headers=OWNER_H)).json()["balance"] == "20.00"


async def test_status_pass_endpoint(client):
    resp = await client.post("/system/status-pass")
    assert resp.status_code == 200
    assert resp.json() == {"updates": 0}
