"""
Pricing API Endpoints.

Rate tables per vehicle category and ad hoc fare estimates.
"""

from typing import List

from fastapi import APIRouter, Body, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from concierge_backend.app.core.dependencies import get_current_actor
from concierge_backend.app.core.guards import require_role
from concierge_backend.app.db.session import get_db
from concierge_backend.app.domain.pricing.fare_engine import FareEngine
from concierge_backend.app.domain.pricing.pricing_catalog import pricing_catalog
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.schemas.pricing import (
    FareEstimateRequest,
    FareEstimateResponse,
    PricingRuleResponse,
    PricingRuleUpdate,
)

router = APIRouter(prefix="/pricing", tags=["Pricing"])


@router.get("/rules", response_model=List[PricingRuleResponse])
async def list_pricing_rules(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Effective rule for every category (tenant rule or built-in default)."""
    return await pricing_catalog.list_rules(db, actor.tenant_id)


@router.put("/rules/{vehicle_category}", response_model=PricingRuleResponse)
async def update_pricing_rule(
    vehicle_category: str = Path(..., description="Vehicle category, e.g. 'Luxury Sedan'"),
    values: PricingRuleUpdate = Body(...),
    actor: Actor = Depends(require_role([UserRole.OPERATOR, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Overwrite rates for a category (Operator/Admin).

    Visible to the next fare estimate in this tenant.
    """
    return await pricing_catalog.update_rule(db, actor, vehicle_category, values)


@router.post("/estimate", response_model=FareEstimateResponse)
async def estimate_fare(
    request: FareEstimateRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Full fare breakdown using the tenant's effective rule."""
    rule = await pricing_catalog.get_rule(db, actor.tenant_id, request.vehicle_category)
    fare = FareEngine.estimate(
        request.service_type,
        rule,
        distance_km=request.distance_km,
        duration_days=request.duration_days,
        duration_hours=request.duration_hours,
        location_text=request.location,
    )
    return FareEstimateResponse(**fare.to_dict())
