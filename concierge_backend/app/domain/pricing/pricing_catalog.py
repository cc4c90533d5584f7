"""
Pricing Catalog.

Resolves the effective rate card for a (tenant, vehicle category):
1. Tenant-specific PricingRule row
2. Built-in default for the category
3. Built-in Luxury Sedan default (unknown categories)

Rules are read-mostly and cached per tenant. update_rule writes through and
drops the tenant's cache entry before returning, so the next estimate sees
the new rates.
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from concierge_backend.app.core.config import settings
from concierge_backend.app.core.exceptions import ConflictError, InsufficientPermissionsError, ValidationError
from concierge_backend.app.models.booking_enums import VehicleCategory
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.models.pricing_rule import PricingRule
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.schemas.pricing import PricingRuleResponse, PricingRuleUpdate
from concierge_backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)

RATE_FIELDS = (
    "hourly_rate",
    "base_fare_p2p",
    "per_distance_unit_rate",
    "minimum_billable_hours",
    "driver_commission_fraction",
)

DEFAULT_RULES: Dict[str, PricingRuleResponse] = {
    VehicleCategory.LUXURY_SEDAN.value: PricingRuleResponse(
        vehicle_category=VehicleCategory.LUXURY_SEDAN.value,
        hourly_rate=95.0,
        base_fare_p2p=125.0,
        per_distance_unit_rate=2.35,
        minimum_billable_hours=3.0,
        driver_commission_fraction=0.75,
        is_default=True,
    ),
    VehicleCategory.LUXURY_SUV.value: PricingRuleResponse(
        vehicle_category=VehicleCategory.LUXURY_SUV.value,
        hourly_rate=125.0,
        base_fare_p2p=160.0,
        per_distance_unit_rate=2.95,
        minimum_billable_hours=3.0,
        driver_commission_fraction=0.75,
        is_default=True,
    ),
    VehicleCategory.EXECUTIVE_SPRINTER.value: PricingRuleResponse(
        vehicle_category=VehicleCategory.EXECUTIVE_SPRINTER.value,
        hourly_rate=175.0,
        base_fare_p2p=250.0,
        per_distance_unit_rate=3.40,
        minimum_billable_hours=4.0,
        driver_commission_fraction=0.70,
        is_default=True,
    ),
    VehicleCategory.FIRST_CLASS_LIMO.value: PricingRuleResponse(
        vehicle_category=VehicleCategory.FIRST_CLASS_LIMO.value,
        hourly_rate=225.0,
        base_fare_p2p=350.0,
        per_distance_unit_rate=4.00,
        minimum_billable_hours=4.0,
        driver_commission_fraction=0.80,
        is_default=True,
    ),
}

FALLBACK_CATEGORY = VehicleCategory.LUXURY_SEDAN.value


class PricingCatalog:
    """Per-tenant rate table with a TTL cache."""

    def __init__(self, ttl_seconds: float = 300):
        self.ttl_seconds = ttl_seconds
        self._cache: Dict[int, Tuple[float, Dict[str, PricingRuleResponse]]] = {}
        # Bumped on every invalidation; a read that started under an older
        # generation must not repopulate the cache
        self._generations: Dict[int, int] = {}
        self._epoch = 0

    def _generation(self, tenant_id: int) -> Tuple[int, int]:
        return self._epoch, self._generations.get(tenant_id, 0)

    def invalidate(self, tenant_id: Optional[int] = None) -> None:
        if tenant_id is None:
            self._epoch += 1
            self._cache.clear()
        else:
            self._generations[tenant_id] = self._generations.get(tenant_id, 0) + 1
            self._cache.pop(tenant_id, None)

    async def _tenant_rules(self, db: AsyncSession, tenant_id: int) -> Dict[str, PricingRuleResponse]:
        cached = self._cache.get(tenant_id)
        if cached and time.monotonic() - cached[0] < self.ttl_seconds:
            return cached[1]

        generation = self._generation(tenant_id)
        result = await db.execute(select(PricingRule).where(PricingRule.tenant_id == tenant_id))
        rules = {
            row.vehicle_category: PricingRuleResponse.model_validate(row)
            for row in result.scalars().all()
        }
        if self._generation(tenant_id) == generation:
            self._cache[tenant_id] = (time.monotonic(), rules)
        return rules

    async def get_rule(self, db: AsyncSession, tenant_id: int, vehicle_category: str) -> PricingRuleResponse:
        """
        Effective rule for a category.

        Never fails for an unknown category: falls back to the category's
        default, then to the Luxury Sedan default.
        """
        rules = await self._tenant_rules(db, tenant_id)
        if vehicle_category in rules:
            return rules[vehicle_category]
        if vehicle_category in DEFAULT_RULES:
            return DEFAULT_RULES[vehicle_category]
        logger.info(
            "No pricing rule for category '%s' (tenant %s), using %s",
            vehicle_category, tenant_id, FALLBACK_CATEGORY,
        )
        return DEFAULT_RULES[FALLBACK_CATEGORY]

    async def list_rules(self, db: AsyncSession, tenant_id: int) -> List[PricingRuleResponse]:
        """Effective rules for every default category plus any tenant-specific ones."""
        rules = dict(DEFAULT_RULES)
        rules.update(await self._tenant_rules(db, tenant_id))
        return [rules[category] for category in sorted(rules)]

    async def update_rule(
        self,
        db: AsyncSession,
        actor: Actor,
        vehicle_category: str,
        values: PricingRuleUpdate,
    ) -> PricingRuleResponse:
        """
        Overwrite rates for a category in the actor's tenant.

        Omitted fields keep their current effective value (stored rule or
        default). The tenant's cache entry is dropped before returning.

        Raises:
            InsufficientPermissionsError: Caller is not an operator or admin
            ValidationError: Negative rate or commission outside [0, 1]
        """
        if actor.role not in (UserRole.OPERATOR, UserRole.ADMIN):
            raise InsufficientPermissionsError("Only operators and admins may update pricing rules")
        if not vehicle_category or not vehicle_category.strip():
            raise ValidationError("vehicle_category is required")

        updates = values.model_dump(exclude_none=True)
        for field, value in updates.items():
            if value < 0:
                raise ValidationError(f"{field} must be non-negative", {field: value})
        commission = updates.get("driver_commission_fraction")
        if commission is not None and commission > 1:
            raise ValidationError(
                "driver_commission_fraction must be between 0 and 1",
                {"driver_commission_fraction": commission},
            )

        result = await db.execute(
            select(PricingRule).where(
                PricingRule.tenant_id == actor.tenant_id,
                PricingRule.vehicle_category == vehicle_category,
            )
        )
        rule = result.scalar_one_or_none()

        if rule is None:
            base = DEFAULT_RULES.get(vehicle_category, DEFAULT_RULES[FALLBACK_CATEGORY])
            rule = PricingRule(
                tenant_id=actor.tenant_id,
                vehicle_category=vehicle_category,
                **{field: getattr(base, field) for field in RATE_FIELDS},
            )
            db.add(rule)

        for field, value in updates.items():
            setattr(rule, field, value)
        rule.updated_by = actor.user_id

        try:
            await db.flush()
            await log_event(
                db,
                AuditAction.PRICING_RULE_UPDATED,
                actor=actor,
                entity_type="pricing_rule",
                entity_id=rule.id,
                metadata={"vehicle_category": vehicle_category, "changes": updates},
            )
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(
                f"Pricing rule for '{vehicle_category}' was modified concurrently",
                {"vehicle_category": vehicle_category},
            )
        except Exception:
            await db.rollback()
            raise
        finally:
            self.invalidate(actor.tenant_id)

        await db.refresh(rule)
        logger.info("Pricing rule %s updated for tenant %s by user %s", vehicle_category, actor.tenant_id, actor.user_id)
        return PricingRuleResponse.model_validate(rule)


# Global catalog instance
pricing_catalog = PricingCatalog(ttl_seconds=settings.pricing_cache_ttl_seconds)
