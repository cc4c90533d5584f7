"""
Quote Marketplace API Endpoints.

Operators bid on open requests; the requester compares and accepts one bid.
"""

from fastapi import APIRouter, Body, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from concierge_backend.app.core.dependencies import get_current_actor
from concierge_backend.app.core.guards import require_role
from concierge_backend.app.db.session import get_db
from concierge_backend.app.domain.booking.state_machine import BookingStateMachine
from concierge_backend.app.domain.marketplace.quote_marketplace import QuoteMarketplace
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.schemas.booking import BookingResponse
from concierge_backend.app.schemas.quote import QuoteListResponse, QuoteResponse, QuoteSubmit

router = APIRouter(tags=["Quotes"])


@router.post(
    "/bookings/{booking_id}/quotes",
    response_model=QuoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_quote(
    booking_id: int = Path(..., description="Booking request ID"),
    quote_data: QuoteSubmit = Body(...),
    actor: Actor = Depends(require_role([UserRole.OPERATOR])),
    db: AsyncSession = Depends(get_db)
):
    """
    Submit a bid (Operator only).

    Legal while the request is SOURCING or QUOTING. Re-bidding replaces the
    operator's previous pending quote. Quotes expire after 30 minutes.
    """
    quote = await QuoteMarketplace.submit_quote(
        db,
        actor,
        booking_id,
        vehicle_id=quote_data.vehicle_id,
        price=quote_data.price,
        eta_minutes=quote_data.eta_minutes,
        notes=quote_data.notes,
        operator_rating=quote_data.operator_rating,
    )
    return QuoteResponse.model_validate(quote)


@router.get("/bookings/{booking_id}/quotes", response_model=QuoteListResponse)
async def list_quotes(
    booking_id: int = Path(..., description="Booking request ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    List quotes cheapest first.

    The cheapest open quote is flagged best_value; the request's fare
    estimate is included for comparison.
    """
    booking, quotes = await QuoteMarketplace.list_quotes(db, actor, booking_id)
    return QuoteListResponse(
        request_id=booking.id,
        estimated_price=booking.estimated_price,
        quotes=quotes,
    )


@router.post("/bookings/{booking_id}/quotes/{quote_id}/accept", response_model=BookingResponse)
async def accept_quote(
    booking_id: int = Path(..., description="Booking request ID"),
    quote_id: int = Path(..., description="Quote ID"),
    actor: Actor = Depends(require_role([UserRole.CONCIERGE, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Accept a quote (requester or Admin).

    Settles the request atomically: this quote ACCEPTED, every other pending
    quote DECLINED, request OPERATOR_ASSIGNED at the quoted price, payment
    pre-authorized.
    """
    booking = await BookingStateMachine.assign_operator(db, booking_id, quote_id, actor)
    return BookingResponse.model_validate(booking)


@router.post("/quotes/{quote_id}/decline", response_model=QuoteResponse)
async def decline_quote(
    quote_id: int = Path(..., description="Quote ID"),
    actor: Actor = Depends(require_role([UserRole.CONCIERGE, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Turn down a pending quote (requester or Admin)."""
    quote = await QuoteMarketplace.decline_quote(db, quote_id, actor)
    return QuoteResponse.model_validate(quote)


@router.post("/quotes/{quote_id}/withdraw", response_model=QuoteResponse)
async def withdraw_quote(
    quote_id: int = Path(..., description="Quote ID"),
    actor: Actor = Depends(require_role([UserRole.OPERATOR, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Withdraw a pending quote (owning Operator or Admin)."""
    quote = await QuoteMarketplace.withdraw_quote(db, quote_id, actor)
    return QuoteResponse.model_validate(quote)
