"""
Concurrency Tests.

Validates that racing acceptances settle a request exactly once and that
keyed locks only serialize callers sharing a key.
"""

import asyncio

import pytest
from sqlalchemy import select

from concierge_backend.app.core.exceptions import ConflictError
from concierge_backend.app.core.locks import KeyedLock
from concierge_backend.app.domain.booking.state_machine import BookingStateMachine
from concierge_backend.app.domain.marketplace.quote_marketplace import QuoteMarketplace
from concierge_backend.app.models.booking_enums import BookingStatus, DeclineReason, QuoteStatus
from concierge_backend.app.models.booking_request import BookingRequest
from concierge_backend.app.models.operator_quote import OperatorQuote
from concierge_backend.app.schemas.events import QUOTE_ACCEPTED

from factories import point_to_point_spec, quoted_booking


@pytest.mark.asyncio
async def test_concurrent_accepts_settle_exactly_once(db_session, session_factory, concierge, operators, redis_client):
    """Two acceptances of different quotes on separate sessions: one wins, one conflicts."""
    booking, quotes = await quoted_booking(db_session, concierge, operators)

    async def accept(quote_id):
        async with session_factory() as db:
            return await BookingStateMachine.assign_operator(db, booking.id, quote_id, concierge)

    results = await asyncio.gather(
        accept(quotes[0].id),
        accept(quotes[1].id),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, BookingRequest)]
    losers = [r for r in results if isinstance(r, ConflictError)]
    assert len(winners) == 1
    assert len(losers) == 1

    result = await db_session.execute(
        select(OperatorQuote).where(OperatorQuote.request_id == booking.id).execution_options(populate_existing=True)
    )
    stored = result.scalars().all()
    accepted = [q for q in stored if q.status == QuoteStatus.ACCEPTED]
    assert len(accepted) == 1
    assert all(q.decline_reason == DeclineReason.OUTBID for q in stored if q.status == QuoteStatus.DECLINED)

    booking = await BookingStateMachine.get(db_session, booking.id, concierge)
    assert booking.status == BookingStatus.OPERATOR_ASSIGNED
    assert booking.selected_quote_id == accepted[0].id
    assert booking.final_price == accepted[0].price
    # QUOTING (v2) -> OPERATOR_ASSIGNED (v3), exactly one bump
    assert booking.version == 3

    accepted_ids = {event["data"]["id"] for event in redis_client.events(QUOTE_ACCEPTED)}
    assert accepted_ids == {accepted[0].id}


@pytest.mark.asyncio
async def test_concurrent_accepts_of_same_quote(db_session, session_factory, concierge, operators):
    booking, quotes = await quoted_booking(db_session, concierge, operators)

    async def accept():
        async with session_factory() as db:
            return await QuoteMarketplace.accept_quote(db, quotes[2].id, concierge)

    results = await asyncio.gather(*(accept() for _ in range(4)), return_exceptions=True)

    assert sum(1 for r in results if isinstance(r, OperatorQuote)) == 1
    assert sum(1 for r in results if isinstance(r, ConflictError)) == 3


@pytest.mark.asyncio
async def test_concurrent_submissions_advance_status_once(db_session, session_factory, concierge, operators):
    booking = await BookingStateMachine.create(db_session, concierge, point_to_point_spec())
    assert booking.status == BookingStatus.SOURCING

    async def submit(operator, price):
        async with session_factory() as db:
            return await QuoteMarketplace.submit_quote(db, operator, booking.id, vehicle_id=operator.user_id, price=price)

    await asyncio.gather(*(submit(op, 100.0 + i) for i, op in enumerate(operators)))

    booking = await BookingStateMachine.get(db_session, booking.id, concierge)
    assert booking.status == BookingStatus.QUOTING
    assert booking.version == 2

    _, ranked = await QuoteMarketplace.list_quotes(db_session, concierge, booking.id)
    assert len(ranked) == 3


@pytest.mark.asyncio
async def test_keyed_lock_serializes_same_key():
    lock = KeyedLock("test")
    order = []

    async def worker(name, delay):
        async with lock.hold("request-1"):
            order.append(f"{name}-in")
            await asyncio.sleep(delay)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a", 0.05), worker("b", 0))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(lock) == 0


@pytest.mark.asyncio
async def test_keyed_lock_does_not_block_other_keys():
    lock = KeyedLock("test")
    released = asyncio.Event()

    async def holder():
        async with lock.hold(1):
            await released.wait()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    assert lock.is_locked(1)

    # A different key is acquired immediately
    async with lock.hold(2):
        assert lock.is_locked(2)

    released.set()
    await task
    assert not lock.is_locked(1)
    assert len(lock) == 0
