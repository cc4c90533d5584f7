"""
Failure Injection Tests.

Validates that payment, realtime and background-sweep failures leave
bookings in a consistent, retryable state.
"""

import time

import httpx
import pytest
from redis.exceptions import RedisError

from concierge_backend.app.core.config import settings
from concierge_backend.app.core.exceptions import UpstreamError
from concierge_backend.app.core.reliability import CircuitBreaker, CircuitOpenError, payment_circuit_breaker
from concierge_backend.app.domain.booking.state_machine import BookingStateMachine
from concierge_backend.app.domain.marketplace.expiry_sweeper import QuoteExpirySweeper
from concierge_backend.app.domain.marketplace.quote_marketplace import QuoteMarketplace
from concierge_backend.app.domain.tracking.trip_tracker import trip_tracker
from concierge_backend.app.models.booking_enums import BookingStatus, QuoteStatus
from concierge_backend.app.schemas.events import REQUEST_STATUS_CHANGED
from concierge_backend.app.services.audit import AuditAction, get_audit_trail
from concierge_backend.app.services.payment_gateway import HttpPaymentGateway

from factories import dispatched_booking, point_to_point_spec, quoted_booking


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker("test", failure_threshold=2, reset_timeout=60)

    async def failing_func():
        raise ValueError("Boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            await cb.call(failing_func)

    assert cb.state == "OPEN"
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


@pytest.mark.asyncio
async def test_circuit_breaker_recovers_after_timeout(mocker):
    clock = mocker.patch("concierge_backend.app.core.reliability.time")
    clock.time.return_value = 1000.0
    cb = CircuitBreaker("test", failure_threshold=1, reset_timeout=30)

    async def failing_func():
        raise ValueError("Boom")

    async def healthy_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    with pytest.raises(CircuitOpenError):
        await cb.call(healthy_func)

    # Trial call after the timeout closes the circuit again
    clock.time.return_value = 1031.0
    assert await cb.call(healthy_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


# Payment gateway client

@pytest.mark.asyncio
async def test_http_gateway_returns_transaction_ref():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, request.headers.get("authorization")))
        return httpx.Response(200, json={"transaction_ref": "txn-42"})

    gateway = HttpPaymentGateway("https://payments.test", api_key="secret", transport=httpx.MockTransport(handler))

    assert await gateway.preauthorize(180.0, "booking-1") == "txn-42"
    assert seen == [("/v1/preauthorizations", "Bearer secret")]


@pytest.mark.asyncio
async def test_http_gateway_wraps_server_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"detail": "processor down"})

    gateway = HttpPaymentGateway("https://payments.test", transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError) as exc_info:
        await gateway.capture("txn-42", 180.0)
    assert exc_info.value.details["path"] == "/v1/transactions/txn-42/capture"
    assert payment_circuit_breaker.failures == 1


@pytest.mark.asyncio
async def test_http_gateway_rejects_missing_reference():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    gateway = HttpPaymentGateway("https://payments.test", transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError):
        await gateway.preauthorize(100.0, "booking-1")


@pytest.mark.asyncio
async def test_http_gateway_open_circuit_is_upstream_error():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"transaction_ref": "txn-1"})

    payment_circuit_breaker.state = "OPEN"
    payment_circuit_breaker.last_failure_time = time.time()
    gateway = HttpPaymentGateway("https://payments.test", transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError):
        await gateway.preauthorize(100.0, "booking-1")
    assert calls == []


# Settlement under payment failure

@pytest.mark.asyncio
async def test_preauthorization_failure_aborts_acceptance(db_session, concierge, operators, payment_gateway):
    booking, quotes = await quoted_booking(db_session, concierge, operators)
    payment_gateway.fail_preauthorize = True

    with pytest.raises(UpstreamError):
        await BookingStateMachine.assign_operator(db_session, booking.id, quotes[0].id, concierge)

    booking = await BookingStateMachine.get(db_session, booking.id, concierge)
    assert booking.status == BookingStatus.QUOTING
    assert booking.selected_quote_id is None
    assert booking.payment_ref is None

    _, stored = await QuoteMarketplace.list_quotes(db_session, concierge, booking.id)
    assert all(q.status == QuoteStatus.PENDING for q in stored)

    # The same quote can be accepted once the gateway recovers
    payment_gateway.fail_preauthorize = False
    booking = await BookingStateMachine.assign_operator(db_session, booking.id, quotes[0].id, concierge)
    assert booking.status == BookingStatus.OPERATOR_ASSIGNED


@pytest.mark.asyncio
async def test_capture_failure_leaves_booking_in_billing(db_session, concierge, operators, driver, admin, payment_gateway):
    booking, _ = await dispatched_booking(db_session, concierge, operators, driver)
    for target in (BookingStatus.DRIVER_EN_ROUTE, BookingStatus.ARRIVED, BookingStatus.IN_PROGRESS):
        booking = await BookingStateMachine.transition(db_session, booking.id, target, driver)

    payment_gateway.fail_capture = True
    booking = await BookingStateMachine.transition(
        db_session, booking.id, BookingStatus.COMPLETED, driver, {"driver_asserted": True}
    )

    booking = await BookingStateMachine.get(db_session, booking.id, admin)
    assert booking.status == BookingStatus.BILLING
    assert payment_gateway.captured == []

    failures = await get_audit_trail(
        db_session, admin.tenant_id, entity_id=booking.id, action=AuditAction.PAYMENT_CAPTURE_FAILED
    )
    assert len(failures) == 1
    assert failures[0].meta_data["amount"] == 180.0

    # Retrying settlement from BILLING captures once the gateway recovers
    payment_gateway.fail_capture = False
    booking = await BookingStateMachine.settle(db_session, booking.id, admin)
    assert booking.status == BookingStatus.PAID
    assert payment_gateway.captured == [(booking.payment_ref, 180.0)]


@pytest.mark.asyncio
async def test_manual_settle_surfaces_capture_failure(db_session, concierge, operators, driver, admin, payment_gateway, monkeypatch):
    monkeypatch.setattr(settings, "auto_settle_on_completion", False)
    booking, _ = await dispatched_booking(db_session, concierge, operators, driver)
    for target in (BookingStatus.DRIVER_EN_ROUTE, BookingStatus.ARRIVED, BookingStatus.IN_PROGRESS):
        booking = await BookingStateMachine.transition(db_session, booking.id, target, driver)
    await BookingStateMachine.transition(
        db_session, booking.id, BookingStatus.COMPLETED, driver, {"driver_asserted": True}
    )

    payment_gateway.fail_capture = True
    with pytest.raises(UpstreamError):
        await BookingStateMachine.settle(db_session, booking.id, admin)

    booking = await BookingStateMachine.get(db_session, booking.id, admin)
    assert booking.status == BookingStatus.BILLING


# Realtime and background failures

@pytest.mark.asyncio
async def test_publish_failure_does_not_undo_transition(db_session, concierge, redis_client, mocker):
    mocker.patch.object(redis_client, "publish", side_effect=RedisError("connection refused"))

    booking = await BookingStateMachine.create(db_session, concierge, point_to_point_spec())

    assert booking.status == BookingStatus.SOURCING
    stored = await BookingStateMachine.get(db_session, booking.id, concierge)
    assert stored.status == BookingStatus.SOURCING
    assert redis_client.events(REQUEST_STATUS_CHANGED) == []


@pytest.mark.asyncio
async def test_sweeper_survives_database_failure():
    def broken_session_factory():
        raise RuntimeError("database unavailable")

    sweeper = QuoteExpirySweeper(interval_seconds=60, session_factory=broken_session_factory)

    assert await sweeper.run_once() == 0


# Tracking across failed status changes

async def en_route_booking(db, concierge, operators, driver):
    booking, trip = await dispatched_booking(db, concierge, operators, driver)
    booking = await BookingStateMachine.transition(db, booking.id, BookingStatus.DRIVER_EN_ROUTE, driver)
    return booking, trip


@pytest.mark.asyncio
async def test_failed_cancel_keeps_trip_tracked(db_session, concierge, operators, driver, mocker):
    booking, trip = await en_route_booking(db_session, concierge, operators, driver)
    assert trip_tracker.is_running(trip.id)

    mocker.patch(
        "concierge_backend.app.domain.booking.state_machine.log_event",
        side_effect=RuntimeError("audit store unavailable"),
    )
    with pytest.raises(RuntimeError):
        await BookingStateMachine.cancel(db_session, booking.id, concierge, "Client no-show")
    mocker.stopall()

    booking = await BookingStateMachine.get(db_session, booking.id, concierge)
    assert booking.status == BookingStatus.DRIVER_EN_ROUTE
    assert trip_tracker.is_running(trip.id)

    # Ingestion and ticks are still accepted
    updated = await trip_tracker.ingest_location(db_session, trip.id, driver, latitude=40.70, longitude=-73.88)
    assert updated.status == BookingStatus.DRIVER_EN_ROUTE
    assert await trip_tracker.tick(trip.id) is not None


@pytest.mark.asyncio
async def test_failed_completion_keeps_ingestion_open(db_session, concierge, operators, driver, mocker):
    booking, trip = await en_route_booking(db_session, concierge, operators, driver)
    for target in (BookingStatus.ARRIVED, BookingStatus.IN_PROGRESS):
        booking = await BookingStateMachine.transition(db_session, booking.id, target, driver)

    mocker.patch(
        "concierge_backend.app.domain.booking.state_machine.log_event",
        side_effect=RuntimeError("audit store unavailable"),
    )
    with pytest.raises(RuntimeError):
        await BookingStateMachine.transition(
            db_session, booking.id, BookingStatus.COMPLETED, driver, {"driver_asserted": True}
        )
    mocker.stopall()

    booking = await BookingStateMachine.get(db_session, booking.id, concierge)
    assert booking.status == BookingStatus.IN_PROGRESS
    assert trip_tracker.is_running(trip.id)
    await trip_tracker.ingest_location(db_session, trip.id, driver, latitude=40.72, longitude=-73.93)


@pytest.mark.asyncio
async def test_committed_cancel_releases_stopped_trip(db_session, concierge, operators, driver):
    booking, trip = await en_route_booking(db_session, concierge, operators, driver)

    await BookingStateMachine.cancel(db_session, booking.id, concierge, "Client no-show")

    assert not trip_tracker.is_running(trip.id)
    assert trip.id not in trip_tracker._stopped
    # The terminal trip status alone keeps further ticks out
    assert await trip_tracker.tick(trip.id) is None
