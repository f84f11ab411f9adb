# This module turns a mechanic rate card and a trip distance into an itemized price.
# The emergency multiplier applies to base fee plus travel fee, and tax applies after the multiplier.
# Settlement always recomputes the final cost from the breakdown so post-service edits stay consistent.
# Arithmetic runs in Decimal so half-up rounding at .5 boundaries is exact.

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from src.accounts.account_models import RateCard
from src.common.errors import ValidationError
from src.service_requests.request_models import PartUsed, PricingBreakdown, RequestPricing

CENT = Decimal("0.01")
WHOLE = Decimal("1")

BREAKDOWN_COMPONENTS: tuple[str, ...] = tuple(PricingBreakdown.model_fields)
ADDITIVE_COMPONENTS: tuple[str, ...] = tuple(name for name in BREAKDOWN_COMPONENTS if name != "discount")


def _dec(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: float | Decimal) -> int:
    """Round to the nearest integer with .5 going up, unlike Python's round()."""

    return int(_dec(value).quantize(WHOLE, rounding=ROUND_HALF_UP))


def _money(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def estimate_cost(
    *,
    distance_km: float,
    is_emergency: bool,
    rate_card: RateCard,
    tax_rate: float = 0.18,
    currency: str = "INR",
) -> RequestPricing:
    """Price a visit: (base + distance x per-km) x emergency multiplier, plus rounded tax."""

    if distance_km < 0:
        raise ValidationError("distance_km must be nonnegative")

    service_fee = _dec(rate_card.base_fee).quantize(CENT, rounding=ROUND_HALF_UP)
    travel_fee = (_dec(distance_km) * _dec(rate_card.per_km_charge)).quantize(CENT, rounding=ROUND_HALF_UP)
    before_multiplier = service_fee + travel_fee

    emergency_charge = Decimal("0")
    if is_emergency:
        emergency_charge = (before_multiplier * (_dec(rate_card.emergency_multiplier) - 1)).quantize(
            CENT, rounding=ROUND_HALF_UP
        )

    subtotal = before_multiplier + emergency_charge
    tax = round_half_up(_dec(tax_rate) * subtotal)
    estimated_cost = round_half_up(subtotal + tax)

    breakdown = PricingBreakdown(
        service_fee=_money(service_fee),
        travel_fee=_money(travel_fee),
        emergency_charge=_money(emergency_charge),
        tax=float(tax),
    )
    return settle(RequestPricing(estimated_cost=float(estimated_cost), breakdown=breakdown, currency=currency))


def final_cost(breakdown: PricingBreakdown) -> float:
    """Sum of every line item minus the discount."""

    gross = sum((_dec(getattr(breakdown, name)) for name in ADDITIVE_COMPONENTS), Decimal("0"))
    return _money(gross - _dec(breakdown.discount))


def settle(pricing: RequestPricing) -> RequestPricing:
    return pricing.model_copy(update={"final_cost": final_cost(pricing.breakdown)})


def adjust_breakdown(pricing: RequestPricing, **components: float) -> RequestPricing:
    """Replace named line items and resettle."""

    unknown = sorted(set(components) - set(BREAKDOWN_COMPONENTS))
    if unknown:
        raise ValidationError(f"Unknown pricing components: {', '.join(unknown)}")
    negative = sorted(name for name, value in components.items() if value < 0)
    if negative:
        raise ValidationError(f"Pricing components must be nonnegative: {', '.join(negative)}")

    breakdown = pricing.breakdown.model_copy(
        update={name: _money(_dec(value)) for name, value in components.items()}
    )
    return settle(pricing.model_copy(update={"breakdown": breakdown}))


def apply_discount(pricing: RequestPricing, amount: float) -> RequestPricing:
    gross = final_cost(pricing.breakdown.model_copy(update={"discount": 0.0}))
    if amount < 0 or amount > gross:
        raise ValidationError(f"Discount must be between 0 and {gross}")
    return adjust_breakdown(pricing, discount=amount)


def parts_total(parts: Iterable[PartUsed]) -> float:
    return _money(sum((_dec(part.total_price) for part in parts), Decimal("0")))


def reprice(
    current: RequestPricing,
    *,
    distance_km: float,
    is_emergency: bool,
    rate_card: RateCard,
    tax_rate: float,
    currency: str,
) -> RequestPricing:
    """Fresh estimate that carries over the post-service line items already on the request."""

    estimate = estimate_cost(
        distance_km=distance_km,
        is_emergency=is_emergency,
        rate_card=rate_card,
        tax_rate=tax_rate,
        currency=currency,
    )
    kept = current.breakdown
    return adjust_breakdown(
        estimate,
        parts_cost=kept.parts_cost,
        labor_cost=kept.labor_cost,
        discount=kept.discount,
    )
