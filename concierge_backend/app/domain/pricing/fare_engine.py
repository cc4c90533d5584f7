"""
Fare Engine (Domain Logic).

Pure fare computation: subtotal, tax, platform fee, total and driver payout
for one trip. No I/O; the applicable rule is resolved by the PricingCatalog.

Intermediate components keep full float precision. Only `display_total`
is rounded, so the four additive terms never compound rounding error.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Protocol

from concierge_backend.app.core.exceptions import ValidationError
from concierge_backend.app.domain.pricing.tax_locator import TaxLocatorFn, locate_tax_rate
from concierge_backend.app.models.booking_enums import ServiceType

PLATFORM_FEE_RATE = 0.05


class RateCard(Protocol):
    """Anything carrying the five rate fields (PricingRule row or default)."""
    hourly_rate: float
    base_fare_p2p: float
    per_distance_unit_rate: float
    minimum_billable_hours: float
    driver_commission_fraction: float


@dataclass
class FareBreakdown:
    subtotal: float
    tax_rate: float
    tax: float
    platform_fee: float
    total: float
    display_total: float
    driver_payout: float
    effective_hours: Optional[float]
    base_fare: float
    distance_fare: float
    time_fare: float

    def to_dict(self) -> dict:
        data = asdict(self)
        data["breakdown"] = {
            "base_fare": data.pop("base_fare"),
            "distance_fare": data.pop("distance_fare"),
            "time_fare": data.pop("time_fare"),
        }
        return data


class FareEngine:

    @staticmethod
    def estimate(
        service_type: ServiceType,
        rule: RateCard,
        distance_km: float = 0.0,
        duration_days: int = 1,
        duration_hours: float = 0.0,
        location_text: str = "",
        tax_locator: Optional[TaxLocatorFn] = None,
    ) -> FareBreakdown:
        """
        Compute the fare breakdown for a trip.

        Hourly charter:
            effective_hours = max(duration_hours, rule.minimum_billable_hours)
            subtotal = duration_days * effective_hours * rule.hourly_rate
        Point-to-point:
            subtotal = rule.base_fare_p2p + distance_km * rule.per_distance_unit_rate

        Then tax = subtotal * tax_rate, platform_fee = subtotal * 5%,
        total = subtotal + tax + platform_fee and
        driver_payout = subtotal * rule.driver_commission_fraction.

        Raises:
            ValidationError: On negative inputs or an out-of-range rule.
        """
        distance_km = distance_km or 0.0
        duration_hours = duration_hours or 0.0
        duration_days = 1 if duration_days is None else duration_days

        if distance_km < 0:
            raise ValidationError("distance_km must be non-negative", {"distance_km": distance_km})
        if duration_hours < 0:
            raise ValidationError("duration_hours must be non-negative", {"duration_hours": duration_hours})
        if duration_days < 0:
            raise ValidationError("duration_days must be non-negative", {"duration_days": duration_days})
        FareEngine._validate_rule(rule)

        base_fare = 0.0
        distance_fare = 0.0
        time_fare = 0.0
        effective_hours = None

        if service_type == ServiceType.HOURLY_CHARTER:
            effective_hours = max(duration_hours, rule.minimum_billable_hours)
            time_fare = duration_days * effective_hours * rule.hourly_rate
        else:
            base_fare = rule.base_fare_p2p
            distance_fare = distance_km * rule.per_distance_unit_rate

        subtotal = base_fare + distance_fare + time_fare

        locator = tax_locator or locate_tax_rate
        tax_rate = locator(location_text or "")
        if tax_rate < 0:
            raise ValidationError("tax rate must be non-negative", {"tax_rate": tax_rate})

        tax = subtotal * tax_rate
        platform_fee = subtotal * PLATFORM_FEE_RATE
        total = subtotal + tax + platform_fee

        return FareBreakdown(
            subtotal=subtotal,
            tax_rate=tax_rate,
            tax=tax,
            platform_fee=platform_fee,
            total=total,
            display_total=round(total, 2),
            driver_payout=subtotal * rule.driver_commission_fraction,
            effective_hours=effective_hours,
            base_fare=base_fare,
            distance_fare=distance_fare,
            time_fare=time_fare,
        )

    @staticmethod
    def _validate_rule(rule: RateCard) -> None:
        for field in ("hourly_rate", "base_fare_p2p", "per_distance_unit_rate", "minimum_billable_hours"):
            value = getattr(rule, field)
            if value is None or value < 0:
                raise ValidationError(f"Pricing rule {field} must be non-negative", {field: value})
        commission = rule.driver_commission_fraction
        if commission is None or not 0 <= commission <= 1:
            raise ValidationError(
                "Pricing rule driver_commission_fraction must be between 0 and 1",
                {"driver_commission_fraction": commission},
            )
