"""
Booking API tests.

Drives a booking through the HTTP surface end to end and checks the error
envelope for authentication, authorization and state conflicts.
"""

from datetime import datetime, timedelta, timezone

import pytest

from concierge_backend.app.core.jwt import create_access_token
from concierge_backend.app.domain.booking.state_machine import BookingStateMachine
from concierge_backend.app.domain.pricing.fare_engine import FareEngine
from concierge_backend.app.domain.pricing.pricing_catalog import DEFAULT_RULES
from concierge_backend.app.domain.tracking.trip_tracker import trip_tracker
from concierge_backend.app.models.booking_enums import BookingStatus, ServiceType
from concierge_backend.app.schemas.events import REQUEST_STATUS_CHANGED, request_channel

from factories import JFK, MIDTOWN, auth_headers, dispatched_booking


def booking_payload(**overrides) -> dict:
    payload = {
        "service_type": "POINT_TO_POINT",
        "pickup": JFK.model_dump(),
        "dropoff": MIDTOWN.model_dump(),
        "scheduled_at": (datetime.utcnow() + timedelta(days=1)).isoformat(),
        "vehicle_category": "Luxury Sedan",
        "passenger_count": 2,
        "vip_preferences": ["still water", "no small talk"],
    }
    payload.update(overrides)
    return payload


async def create_booking(client, concierge) -> dict:
    response = await client.post("/v1/bookings", json=booking_payload(), headers=auth_headers(concierge))
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_booking_lifecycle_over_http(client, concierge, operators, driver, payment_gateway, redis_client):
    booking = await create_booking(client, concierge)
    assert booking["status"] == "SOURCING"
    assert booking["estimated_price"] > 0
    booking_id = booking["id"]

    # Operators bid
    for operator, price in zip(operators, (210.0, 185.0)):
        response = await client.post(
            f"/v1/bookings/{booking_id}/quotes",
            json={"vehicle_id": 500 + operator.user_id, "price": price, "eta_minutes": 12},
            headers=auth_headers(operator),
        )
        assert response.status_code == 201
        assert response.json()["status"] == "PENDING"

    response = await client.get(f"/v1/bookings/{booking_id}/quotes", headers=auth_headers(concierge))
    assert response.status_code == 200
    listing = response.json()
    assert listing["estimated_price"] == booking["estimated_price"]
    assert [q["price"] for q in listing["quotes"]] == [185.0, 210.0]
    assert listing["quotes"][0]["best_value"] is True
    best_quote_id = listing["quotes"][0]["id"]

    response = await client.get("/v1/bookings", headers=auth_headers(concierge))
    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert response.json()["bookings"][0]["status"] == "QUOTING"

    # Requester accepts the cheapest bid
    response = await client.post(
        f"/v1/bookings/{booking_id}/quotes/{best_quote_id}/accept", headers=auth_headers(concierge)
    )
    assert response.status_code == 200
    accepted = response.json()
    assert accepted["status"] == "OPERATOR_ASSIGNED"
    assert accepted["final_price"] == 185.0
    assert accepted["assigned_operator_id"] == operators[1].user_id

    # Winning operator dispatches a driver
    response = await client.post(
        f"/v1/bookings/{booking_id}/assign-driver",
        json={"driver_id": driver.user_id, "vehicle_id": 701},
        headers=auth_headers(operators[1]),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "DRIVER_ASSIGNED"

    response = await client.get(f"/v1/bookings/{booking_id}/trip", headers=auth_headers(concierge))
    assert response.status_code == 200
    trip = response.json()
    assert trip["progress"] == 0.0
    assert trip["route"]["total_distance_km"] > 0
    trip_id = trip["id"]

    response = await client.post(f"/v1/bookings/{booking_id}/driver-accept", headers=auth_headers(driver))
    assert response.status_code == 200
    assert response.json()["status"] == "DRIVER_EN_ROUTE"

    # Driver reports a fix part way along the route
    response = await client.post(
        f"/v1/trips/{trip_id}/location",
        json={"latitude": 40.70, "longitude": -73.88, "heading": 315.0},
        headers=auth_headers(driver),
    )
    assert response.status_code == 200
    assert response.json()["progress"] > 0

    response = await client.get(f"/v1/trips/{trip_id}/locations", headers=auth_headers(concierge))
    assert response.status_code == 200
    assert response.json()[0]["source"] == "GPS"

    for action in ("ARRIVE", "PICKUP", "COMPLETE"):
        response = await client.post(
            f"/v1/trips/{trip_id}/status", json={"action": action}, headers=auth_headers(driver)
        )
        assert response.status_code == 200

    response = await client.get(f"/v1/bookings/{booking_id}", headers=auth_headers(concierge))
    assert response.status_code == 200
    final = response.json()
    assert final["status"] == "PAID"
    assert final["completed_at"] is not None
    assert payment_gateway.captured == [(payment_gateway.preauthorized[0][0], 185.0)]

    events = redis_client.events(REQUEST_STATUS_CHANGED, channel=request_channel(booking_id))
    statuses = [event["data"]["status"] for event in events]
    assert statuses[-1] == "PAID"


@pytest.mark.asyncio
async def test_location_accepts_offset_timestamps(client, db_session, concierge, operators, driver):
    booking, trip = await dispatched_booking(db_session, concierge, operators, driver)
    await BookingStateMachine.transition(db_session, booking.id, BookingStatus.DRIVER_EN_ROUTE, driver)
    ticked = await trip_tracker.tick(trip.id)
    assert ticked.location_recorded_at.tzinfo is None

    fix_at = datetime.now(timezone.utc) + timedelta(seconds=30)
    response = await client.post(
        f"/v1/trips/{trip.id}/location",
        json={"latitude": 40.70, "longitude": -73.88, "recorded_at": fix_at.isoformat()},
        headers=auth_headers(driver),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["current_location"]["latitude"] == 40.70
    assert body["current_location"]["speed_kmh"] > 0
    assert body["progress"] > ticked.progress

    # An offset timestamp older than the latest fix is kept as a breadcrumb only
    earlier = (fix_at - timedelta(minutes=10)).astimezone(timezone(timedelta(hours=-5)))
    response = await client.post(
        f"/v1/trips/{trip.id}/location",
        json={"latitude": 40.75, "longitude": -73.97, "recorded_at": earlier.isoformat()},
        headers=auth_headers(driver),
    )
    assert response.status_code == 200
    assert response.json()["current_location"]["latitude"] == 40.70

    response = await client.get(f"/v1/trips/{trip.id}/locations", headers=auth_headers(driver))
    latitudes = [loc["latitude"] for loc in response.json()]
    assert latitudes[0] == 40.70
    assert 40.75 in latitudes


@pytest.mark.asyncio
async def test_cancel_over_http(client, concierge):
    booking = await create_booking(client, concierge)

    response = await client.post(
        f"/v1/bookings/{booking['id']}/cancel", json={"reason": "Flight cancelled"}, headers=auth_headers(concierge)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"
    assert response.json()["cancellation_reason"] == "Flight cancelled"


# Error envelopes

@pytest.mark.asyncio
async def test_missing_token_rejected(client):
    response = await client.get("/v1/bookings")
    assert response.status_code in (401, 403)
    assert response.json()["error_code"] in ("ERR_UNAUTHORIZED", "ERR_FORBIDDEN")


@pytest.mark.asyncio
async def test_invalid_token_rejected(client):
    response = await client.get("/v1/bookings", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
@pytest.mark.parametrize("claims", [
    {"sub": "no-tenant", "user_id": 41, "role": "CONCIERGE"},
    {"sub": "scheduler", "user_id": 42, "role": "SYSTEM", "tenant_id": 1},
    {"sub": "unknown", "user_id": 43, "role": "DISPATCHER", "tenant_id": 1},
])
async def test_unusable_token_claims_rejected(client, claims):
    token = create_access_token(claims)
    response = await client.get("/v1/bookings", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_wrong_role_forbidden(client, operators):
    response = await client.post("/v1/bookings", json=booking_payload(), headers=auth_headers(operators[0]))
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_FORBIDDEN"


@pytest.mark.asyncio
async def test_illegal_transition_is_conflict(client, concierge):
    booking = await create_booking(client, concierge)

    response = await client.post(
        f"/v1/bookings/{booking['id']}/transitions",
        json={"target_status": "COMPLETED"},
        headers=auth_headers(concierge),
    )
    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "ERR_ILLEGAL_TRANSITION"
    assert set(body) == {"error_code", "message", "details"}


@pytest.mark.asyncio
async def test_schema_violation_is_validation_error(client, concierge):
    response = await client.post(
        "/v1/bookings", json=booking_payload(passenger_count=0), headers=auth_headers(concierge)
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_incomplete_trip_spec_is_validation_error(client, concierge):
    response = await client.post(
        "/v1/bookings",
        json=booking_payload(service_type="HOURLY_CHARTER", dropoff=None),
        headers=auth_headers(concierge),
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_unknown_booking_not_found(client, concierge):
    response = await client.get("/v1/bookings/9999", headers=auth_headers(concierge))
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND"


@pytest.mark.asyncio
async def test_settle_requires_admin_role(client, concierge):
    booking = await create_booking(client, concierge)
    response = await client.post(f"/v1/bookings/{booking['id']}/settle", headers=auth_headers(concierge))
    assert response.status_code == 403


# Pricing and health

@pytest.mark.asyncio
async def test_pricing_rules_and_estimate(client, operators, concierge):
    response = await client.get("/v1/pricing/rules", headers=auth_headers(concierge))
    assert response.status_code == 200
    assert {r["vehicle_category"] for r in response.json()} == set(DEFAULT_RULES)

    response = await client.put(
        "/v1/pricing/rules/Luxury Sedan", json={"hourly_rate": 110.0}, headers=auth_headers(operators[0])
    )
    assert response.status_code == 200
    assert response.json()["hourly_rate"] == 110.0
    assert response.json()["is_default"] is False

    response = await client.post(
        "/v1/pricing/estimate",
        json={"service_type": "HOURLY_CHARTER", "vehicle_category": "Luxury Sedan", "duration_hours": 5, "location": "Paris"},
        headers=auth_headers(concierge),
    )
    assert response.status_code == 200
    estimate = response.json()

    rule = DEFAULT_RULES["Luxury Sedan"].model_copy(update={"hourly_rate": 110.0})
    expected = FareEngine.estimate(ServiceType.HOURLY_CHARTER, rule, duration_hours=5, location_text="Paris")
    assert estimate["total"] == pytest.approx(expected.total)
    assert estimate["driver_payout"] == pytest.approx(expected.driver_payout)
    assert estimate["breakdown"]["time_fare"] == pytest.approx(expected.time_fare)


@pytest.mark.asyncio
async def test_concierge_cannot_update_pricing(client, concierge):
    response = await client.put(
        "/v1/pricing/rules/Luxury Sedan", json={"hourly_rate": 1.0}, headers=auth_headers(concierge)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["redis"] == "up"
    assert body["tracked_trips"] == 0
