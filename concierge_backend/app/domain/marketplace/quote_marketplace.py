"""
Quote Marketplace (Domain Logic).

Competing operator bids against an open booking request.

Acceptance is a single critical section keyed by request id:
1. In-process: the request's KeyedLock serializes acceptance attempts
2. Cross-process: conditional UPDATEs (request QUOTING -> OPERATOR_ASSIGNED,
   quote PENDING -> ACCEPTED) act as compare-and-swap; a zero rowcount
   means another worker settled the request first

Exactly one quote per request ever holds ACCEPTED; every sibling that was
still pending is DECLINED (OUTBID) in the same transaction.
"""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from concierge_backend.app.core.config import settings
from concierge_backend.app.core.exceptions import (
    ConflictError,
    IllegalTransitionError,
    InsufficientPermissionsError,
    NotFoundError,
    ValidationError,
)
from concierge_backend.app.core.locks import request_locks
from concierge_backend.app.models.booking_enums import BookingStatus, DeclineReason, QuoteStatus
from concierge_backend.app.models.booking_request import BookingRequest
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.models.operator_quote import OperatorQuote
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.schemas.events import QUOTE_ACCEPTED, QUOTE_RECEIVED, REQUEST_STATUS_CHANGED
from concierge_backend.app.schemas.quote import QuoteResponse
from concierge_backend.app.services.audit import AuditAction, log_event
from concierge_backend.app.services.realtime import realtime_publisher

logger = logging.getLogger(__name__)

OPEN_FOR_BIDDING = (BookingStatus.SOURCING, BookingStatus.QUOTING)

BeforeCommitHook = Callable[[BookingRequest, OperatorQuote], Awaitable[None]]


class QuoteMarketplace:

    @staticmethod
    async def _load_request(db: AsyncSession, request_id: int, actor: Actor) -> BookingRequest:
        booking = await db.get(BookingRequest, request_id, populate_existing=True)
        if booking is None or booking.tenant_id != actor.tenant_id:
            raise NotFoundError("BookingRequest", request_id)
        return booking

    @staticmethod
    async def _load_quote(db: AsyncSession, quote_id: int, actor: Actor) -> OperatorQuote:
        quote = await db.get(OperatorQuote, quote_id, populate_existing=True)
        if quote is None or quote.tenant_id != actor.tenant_id:
            raise NotFoundError("OperatorQuote", quote_id)
        return quote

    @staticmethod
    async def submit_quote(
        db: AsyncSession,
        actor: Actor,
        request_id: int,
        vehicle_id: int,
        price: float,
        eta_minutes: int = 15,
        notes: Optional[str] = None,
        operator_rating: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> OperatorQuote:
        """
        Place an operator bid on an open request.

        The first quote moves the request SOURCING -> QUOTING. An operator
        holds at most one pending quote per request; re-bidding withdraws
        the previous one.

        Raises:
            InsufficientPermissionsError: Caller is not an operator
            ValidationError: Non-positive price or negative ETA
            NotFoundError: Unknown request
            ConflictError: Request no longer open for bidding
        """
        if actor.role != UserRole.OPERATOR:
            raise InsufficientPermissionsError("Only operators may submit quotes")
        if price is None or price <= 0:
            raise ValidationError("price must be greater than zero", {"price": price})
        if eta_minutes is None or eta_minutes < 0:
            raise ValidationError("eta_minutes must be non-negative", {"eta_minutes": eta_minutes})

        now = now or datetime.utcnow()

        async with request_locks.hold(request_id):
            advanced = False
            try:
                booking = await QuoteMarketplace._load_request(db, request_id, actor)
                if booking.status not in OPEN_FOR_BIDDING:
                    raise ConflictError(
                        f"Booking request {request_id} is not open for bidding",
                        {"status": booking.status.value},
                    )

                # Re-bid replaces the operator's live quote
                await db.execute(
                    update(OperatorQuote)
                    .where(
                        OperatorQuote.request_id == request_id,
                        OperatorQuote.operator_id == actor.user_id,
                        OperatorQuote.status == QuoteStatus.PENDING,
                    )
                    .values(
                        status=QuoteStatus.DECLINED,
                        decline_reason=DeclineReason.WITHDRAWN,
                        decided_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )

                quote = OperatorQuote(
                    tenant_id=booking.tenant_id,
                    request_id=booking.id,
                    operator_id=actor.user_id,
                    vehicle_id=vehicle_id,
                    price=price,
                    eta_minutes=eta_minutes,
                    operator_rating=operator_rating,
                    notes=notes,
                    status=QuoteStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                    expires_at=now + timedelta(minutes=settings.quote_ttl_minutes),
                )
                db.add(quote)

                if booking.status == BookingStatus.SOURCING:
                    booking.status = BookingStatus.QUOTING
                    booking.version += 1
                    advanced = True

                await db.flush()
                await log_event(
                    db,
                    AuditAction.QUOTE_SUBMITTED,
                    actor=actor,
                    entity_type="quote",
                    entity_id=quote.id,
                    metadata={"request_id": booking.id, "price": price, "eta_minutes": eta_minutes},
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

            if advanced:
                await realtime_publisher.publish_booking(REQUEST_STATUS_CHANGED, booking, previous_status=BookingStatus.SOURCING.value)
            await realtime_publisher.publish_quote(QUOTE_RECEIVED, quote, booking)

        logger.info("Quote %s submitted by operator %s on request %s at %.2f", quote.id, actor.user_id, request_id, price)
        return quote

    @staticmethod
    async def list_quotes(
        db: AsyncSession,
        actor: Actor,
        request_id: int,
        now: Optional[datetime] = None,
    ) -> Tuple[BookingRequest, List[QuoteResponse]]:
        """
        Quotes for a request, cheapest first (ties: earlier created_at, then id).

        The cheapest quote still open for acceptance is flagged best_value.
        Operators only see their own bids.
        """
        booking = await QuoteMarketplace._load_request(db, request_id, actor)
        if actor.role in (UserRole.CONCIERGE, UserRole.DRIVER) and actor.user_id != booking.requester_id:
            raise NotFoundError("BookingRequest", request_id)

        query = select(OperatorQuote).where(OperatorQuote.request_id == request_id)
        if actor.role == UserRole.OPERATOR:
            query = query.where(OperatorQuote.operator_id == actor.user_id)
        query = query.order_by(OperatorQuote.price, OperatorQuote.created_at, OperatorQuote.id)
        query = query.execution_options(populate_existing=True)

        result = await db.execute(query)
        quotes = result.scalars().all()

        now = now or datetime.utcnow()
        responses = [QuoteResponse.model_validate(quote) for quote in quotes]
        for response, quote in zip(responses, quotes):
            if quote.status == QuoteStatus.PENDING and quote.expires_at > now:
                response.best_value = True
                break

        return booking, responses

    @staticmethod
    async def accept_quote(
        db: AsyncSession,
        quote_id: int,
        actor: Actor,
        request_id: Optional[int] = None,
        before_commit: Optional[BeforeCommitHook] = None,
    ) -> OperatorQuote:
        """
        Accept one quote and settle the request.

        Args:
            db: Database session
            quote_id: Quote to accept
            actor: Requester or admin
            request_id: When given, the quote must belong to this request
            before_commit: Awaited inside the critical section after the
                settlement is staged; raising aborts the whole settlement

        Returns:
            The accepted quote

        Raises:
            NotFoundError: Unknown quote or request
            IllegalTransitionError: Caller may not accept for this request
            ConflictError: Quote already decided or expired, or request no
                longer QUOTING
        """
        quote = await QuoteMarketplace._load_quote(db, quote_id, actor)
        if request_id is not None and quote.request_id != request_id:
            raise NotFoundError("OperatorQuote", quote_id)
        request_id = quote.request_id

        async with request_locks.hold(request_id):
            try:
                booking = await QuoteMarketplace._load_request(db, request_id, actor)
                if not (actor.is_admin or actor.user_id == booking.requester_id):
                    raise IllegalTransitionError(
                        booking.status,
                        BookingStatus.OPERATOR_ASSIGNED,
                        "only the requester or an admin may accept a quote",
                    )

                quote = await QuoteMarketplace._load_quote(db, quote_id, actor)
                now = datetime.utcnow()
                if quote.status != QuoteStatus.PENDING:
                    raise ConflictError(
                        f"Quote {quote_id} is already {quote.status.value}",
                        {"status": quote.status.value, "decline_reason": quote.decline_reason.value if quote.decline_reason else None},
                    )
                if quote.expires_at <= now:
                    raise ConflictError(f"Quote {quote_id} has expired", {"expires_at": quote.expires_at.isoformat()})
                if booking.status != BookingStatus.QUOTING:
                    raise ConflictError(
                        f"Booking request {request_id} is not accepting quotes",
                        {"status": booking.status.value},
                    )

                settled = await db.execute(
                    update(BookingRequest)
                    .where(BookingRequest.id == request_id, BookingRequest.status == BookingStatus.QUOTING)
                    .values(
                        status=BookingStatus.OPERATOR_ASSIGNED,
                        version=BookingRequest.version + 1,
                        selected_quote_id=quote.id,
                        assigned_operator_id=quote.operator_id,
                        final_price=quote.price,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if settled.rowcount != 1:
                    raise ConflictError(f"Booking request {request_id} was settled concurrently")

                accepted = await db.execute(
                    update(OperatorQuote)
                    .where(OperatorQuote.id == quote.id, OperatorQuote.status == QuoteStatus.PENDING)
                    .values(status=QuoteStatus.ACCEPTED, decided_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if accepted.rowcount != 1:
                    raise ConflictError(f"Quote {quote_id} was decided concurrently")

                await db.execute(
                    update(OperatorQuote)
                    .where(
                        OperatorQuote.request_id == request_id,
                        OperatorQuote.id != quote.id,
                        OperatorQuote.status == QuoteStatus.PENDING,
                    )
                    .values(status=QuoteStatus.DECLINED, decline_reason=DeclineReason.OUTBID, decided_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

                await db.refresh(booking)
                await db.refresh(quote)

                if before_commit is not None:
                    await before_commit(booking, quote)

                await log_event(
                    db,
                    AuditAction.QUOTE_ACCEPTED,
                    actor=actor,
                    entity_type="quote",
                    entity_id=quote.id,
                    metadata={"request_id": request_id, "final_price": quote.price, "operator_id": quote.operator_id},
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

            await realtime_publisher.publish_quote(QUOTE_ACCEPTED, quote, booking)
            await realtime_publisher.publish_booking(
                REQUEST_STATUS_CHANGED, booking, previous_status=BookingStatus.QUOTING.value
            )

        logger.info("Quote %s accepted for request %s (final price %.2f)", quote_id, request_id, quote.price)
        return quote

    @staticmethod
    async def _decline(
        db: AsyncSession,
        quote_id: int,
        actor: Actor,
        reason: DeclineReason,
        authorize: Callable[[BookingRequest, OperatorQuote], bool],
    ) -> OperatorQuote:
        quote = await QuoteMarketplace._load_quote(db, quote_id, actor)

        async with request_locks.hold(quote.request_id):
            try:
                booking = await QuoteMarketplace._load_request(db, quote.request_id, actor)
                quote = await QuoteMarketplace._load_quote(db, quote_id, actor)
                if not authorize(booking, quote):
                    raise InsufficientPermissionsError(f"Not allowed to mark quote {quote_id} {reason.value}")
                if quote.status != QuoteStatus.PENDING:
                    raise ConflictError(f"Quote {quote_id} is already {quote.status.value}", {"status": quote.status.value})

                quote.status = QuoteStatus.DECLINED
                quote.decline_reason = reason
                quote.decided_at = datetime.utcnow()

                await log_event(
                    db,
                    AuditAction.QUOTE_DECLINED,
                    actor=actor,
                    entity_type="quote",
                    entity_id=quote.id,
                    metadata={"request_id": quote.request_id, "reason": reason.value},
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        return quote

    @staticmethod
    async def decline_quote(db: AsyncSession, quote_id: int, actor: Actor) -> OperatorQuote:
        """Requester (or admin) turns down a pending bid."""
        return await QuoteMarketplace._decline(
            db, quote_id, actor, DeclineReason.REJECTED,
            lambda booking, quote: actor.is_admin or actor.user_id == booking.requester_id,
        )

    @staticmethod
    async def withdraw_quote(db: AsyncSession, quote_id: int, actor: Actor) -> OperatorQuote:
        """Operator pulls its own pending bid."""
        return await QuoteMarketplace._decline(
            db, quote_id, actor, DeclineReason.WITHDRAWN,
            lambda booking, quote: actor.is_admin or (
                actor.role == UserRole.OPERATOR and actor.user_id == quote.operator_id
            ),
        )

    @staticmethod
    async def close_pending_quotes(db: AsyncSession, request_id: int, now: Optional[datetime] = None) -> int:
        """Decline every pending quote of a request being cancelled. Caller commits."""
        now = now or datetime.utcnow()
        result = await db.execute(
            update(OperatorQuote)
            .where(OperatorQuote.request_id == request_id, OperatorQuote.status == QuoteStatus.PENDING)
            .values(status=QuoteStatus.DECLINED, decline_reason=DeclineReason.REQUEST_CLOSED, decided_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def expire_stale_quotes(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Decline (EXPIRED) every pending quote whose expires_at has passed.

        Accepted quotes are never touched.

        Returns:
            Number of quotes expired
        """
        now = now or datetime.utcnow()
        try:
            result = await db.execute(
                update(OperatorQuote)
                .where(OperatorQuote.status == QuoteStatus.PENDING, OperatorQuote.expires_at <= now)
                .values(status=QuoteStatus.DECLINED, decline_reason=DeclineReason.EXPIRED, decided_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            expired = result.rowcount
            if expired:
                await log_event(db, AuditAction.QUOTES_EXPIRED, metadata={"count": expired, "swept_at": now.isoformat()})
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if expired:
            logger.info("Expired %d stale quotes", expired)
        return expired
