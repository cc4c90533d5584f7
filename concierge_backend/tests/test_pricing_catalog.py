"""
Pricing catalog tests: defaults, fallback, per-tenant overrides and
cache invalidation on update.
"""

import asyncio

import pytest

from concierge_backend.app.core.exceptions import InsufficientPermissionsError, ValidationError
from concierge_backend.app.domain.pricing.fare_engine import FareEngine
from concierge_backend.app.domain.pricing.pricing_catalog import DEFAULT_RULES, FALLBACK_CATEGORY, pricing_catalog
from concierge_backend.app.models.booking_enums import ServiceType
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.schemas.pricing import PricingRuleUpdate
from concierge_backend.app.services.audit import AuditAction, get_audit_trail


@pytest.mark.asyncio
async def test_default_rule_for_known_category(db_session):
    rule = await pricing_catalog.get_rule(db_session, 1, "Executive Sprinter")
    assert rule.is_default
    assert rule.hourly_rate == 175.0
    assert rule.minimum_billable_hours == 4.0


@pytest.mark.asyncio
async def test_unknown_category_falls_back_to_luxury_sedan(db_session):
    rule = await pricing_catalog.get_rule(db_session, 1, "Hovercraft")
    assert rule == DEFAULT_RULES[FALLBACK_CATEGORY]
    assert rule.vehicle_category == "Luxury Sedan"


@pytest.mark.asyncio
async def test_update_visible_to_next_estimate(db_session, operators):
    operator = operators[0]

    # Warm the cache first
    before = await pricing_catalog.get_rule(db_session, operator.tenant_id, "Luxury Sedan")
    assert before.hourly_rate == 95.0

    updated = await pricing_catalog.update_rule(
        db_session, operator, "Luxury Sedan", PricingRuleUpdate(hourly_rate=120.0)
    )
    assert updated.hourly_rate == 120.0
    assert not updated.is_default
    # Untouched fields keep the default values
    assert updated.base_fare_p2p == 125.0
    assert updated.driver_commission_fraction == 0.75

    after = await pricing_catalog.get_rule(db_session, operator.tenant_id, "Luxury Sedan")
    assert after.hourly_rate == 120.0

    fare = FareEngine.estimate(ServiceType.HOURLY_CHARTER, after, duration_hours=4, location_text="Dubai")
    assert fare.subtotal == pytest.approx(480.0)


@pytest.mark.asyncio
async def test_second_update_modifies_existing_rule(db_session, admin):
    await pricing_catalog.update_rule(db_session, admin, "Luxury SUV", PricingRuleUpdate(hourly_rate=130.0))
    await pricing_catalog.update_rule(db_session, admin, "Luxury SUV", PricingRuleUpdate(per_distance_unit_rate=3.5))

    rule = await pricing_catalog.get_rule(db_session, admin.tenant_id, "Luxury SUV")
    assert rule.hourly_rate == 130.0
    assert rule.per_distance_unit_rate == 3.5

    rules = await pricing_catalog.list_rules(db_session, admin.tenant_id)
    assert [r.vehicle_category for r in rules] == sorted(DEFAULT_RULES)
    assert sum(1 for r in rules if not r.is_default) == 1


@pytest.mark.asyncio
async def test_rules_are_scoped_per_tenant(db_session, admin):
    await pricing_catalog.update_rule(db_session, admin, "First Class Limo", PricingRuleUpdate(hourly_rate=300.0))

    other_tenant = await pricing_catalog.get_rule(db_session, 2, "First Class Limo")
    assert other_tenant.hourly_rate == 225.0
    assert other_tenant.is_default


@pytest.mark.asyncio
async def test_update_is_audited(db_session, admin):
    await pricing_catalog.update_rule(db_session, admin, "Luxury Sedan", PricingRuleUpdate(base_fare_p2p=140.0))

    trail = await get_audit_trail(db_session, admin.tenant_id, action=AuditAction.PRICING_RULE_UPDATED)
    assert len(trail) == 1
    assert trail[0].meta_data["changes"] == {"base_fare_p2p": 140.0}
    assert trail[0].actor_id == admin.user_id


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [UserRole.CONCIERGE, UserRole.DRIVER])
async def test_update_requires_operator_or_admin(db_session, role):
    actor = Actor(user_id=99, role=role, tenant_id=1)
    with pytest.raises(InsufficientPermissionsError):
        await pricing_catalog.update_rule(db_session, actor, "Luxury Sedan", PricingRuleUpdate(hourly_rate=1.0))


@pytest.mark.asyncio
async def test_update_rejects_commission_above_one(db_session, admin):
    with pytest.raises(ValidationError):
        await pricing_catalog.update_rule(
            db_session, admin, "Luxury Sedan", PricingRuleUpdate.model_construct(driver_commission_fraction=1.2)
        )
    rule = await pricing_catalog.get_rule(db_session, admin.tenant_id, "Luxury Sedan")
    assert rule.is_default


@pytest.mark.asyncio
async def test_update_rejects_negative_rates(db_session, admin):
    with pytest.raises(ValidationError):
        await pricing_catalog.update_rule(
            db_session, admin, "Luxury Sedan", PricingRuleUpdate.model_construct(hourly_rate=-5.0)
        )


@pytest.mark.asyncio
async def test_read_racing_an_update_does_not_cache_old_rates(session_factory, admin, mocker):
    read_done = asyncio.Event()
    release = asyncio.Event()

    async with session_factory() as reader_db, session_factory() as writer_db:
        real_execute = reader_db.execute

        async def held_execute(*args, **kwargs):
            result = await real_execute(*args, **kwargs)
            read_done.set()
            await release.wait()
            return result

        mocker.patch.object(reader_db, "execute", side_effect=held_execute)

        # Reader loads the old rows, then the update commits before it caches them
        reader = asyncio.create_task(pricing_catalog.get_rule(reader_db, admin.tenant_id, "Luxury Sedan"))
        await read_done.wait()
        await pricing_catalog.update_rule(writer_db, admin, "Luxury Sedan", PricingRuleUpdate(hourly_rate=999.0))
        release.set()

        in_flight = await reader
        assert in_flight.hourly_rate == 95.0

    async with session_factory() as db:
        rule = await pricing_catalog.get_rule(db, admin.tenant_id, "Luxury Sedan")
    assert rule.hourly_rate == 999.0


def test_invalidate_is_scoped_to_tenant():
    pricing_catalog._cache[1] = (0.0, {})
    pricing_catalog._cache[2] = (0.0, {})

    pricing_catalog.invalidate(1)

    assert 1 not in pricing_catalog._cache
    assert 2 in pricing_catalog._cache
