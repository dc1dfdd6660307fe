from __future__ import annotations

import math
from datetime import date
from typing import Any

from valuation.config import DEFAULT_CONFIG, ValuationConfig
from valuation.data_models import (
    ConditionInput,
    OfferResult,
    ValuationResult,
    VehicleRecord,
    coerce_float,
    coerce_int,
)


def _round_money(value: float) -> int:
    return int(math.floor(value + 0.5))


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(k in lowered for k in keywords)


# ── Age & depreciation ──────────────────────────────────────────────

def vehicle_age(
    year: Any,
    config: ValuationConfig = DEFAULT_CONFIG,
    reference_year: int | None = None,
) -> int:
    """Age in whole years; unknown years fall back to ``config.default_age``."""
    ref = reference_year or date.today().year
    parsed = coerce_int(year)
    if parsed is None or parsed <= 0:
        return config.default_age
    return max(0, ref - parsed)


def depreciation_rate(age: int, config: ValuationConfig = DEFAULT_CONFIG) -> float:
    if age <= 0:
        return 0.0
    rate = config.first_year_depreciation
    early_years = min(age, config.early_years_end) - 1
    rate += config.early_years_depreciation * early_years
    if age > config.early_years_end:
        rate += config.late_years_depreciation * (age - config.early_years_end)
    return min(rate, config.max_depreciation)


def msrp_retention(age: int, config: ValuationConfig = DEFAULT_CONFIG) -> float:
    for max_age, retained in config.msrp_retention:
        if age <= max_age:
            return retained
    return config.msrp_retention_floor


# ── Category lookups ────────────────────────────────────────────────

def body_category(body_class: str, config: ValuationConfig = DEFAULT_CONFIG) -> str | None:
    for category, keywords in config.body_keywords:
        if _contains_any(body_class or "", keywords):
            return category
    return None


def brand_tier(make: str, config: ValuationConfig = DEFAULT_CONFIG) -> str | None:
    make = make or ""
    if _contains_any(make, config.premium_brands):
        return "premium"
    if _contains_any(make, config.reliable_brands):
        return "reliable"
    if _contains_any(make, config.economy_brands):
        return "economy"
    if _contains_any(make, config.truck_brands):
        return "truck"
    return None


def category_factors(vehicle: VehicleRecord, config: ValuationConfig = DEFAULT_CONFIG) -> dict[str, float]:
    """Multipliers applied on top of the depreciated anchor.

    A domestic truck brand only counts on a truck body, and then the
    truck adjustment is the larger of the brand and body factors rather
    than their product.
    """
    tier = brand_tier(vehicle.make, config)
    body = body_category(vehicle.body_class, config)

    brand = 1.0
    if tier in ("premium", "reliable", "economy"):
        brand = config.brand_factors[tier]

    body_factor = config.body_factors.get(body, 1.0) if body else 1.0
    if body == "truck" and tier == "truck":
        body_factor = max(body_factor, config.brand_factors["truck"])

    fuel = 1.0
    fuel_type = (vehicle.fuel_type or "").lower()
    if "hybrid" in fuel_type:
        fuel = config.hybrid_factor
    elif "electric" in fuel_type:
        fuel = config.electric_factor

    engine = 1.0
    cylinders = vehicle.engine_cylinders or 0
    if cylinders >= config.large_engine_cylinders:
        engine = config.large_engine_factor
    elif cylinders >= config.mid_engine_cylinders:
        engine = config.mid_engine_factor

    return {"brand": brand, "body": body_factor, "fuel": fuel, "engine": engine}


# ── Base value ──────────────────────────────────────────────────────

def estimate_base_value(
    vehicle: VehicleRecord,
    config: ValuationConfig = DEFAULT_CONFIG,
    reference_year: int | None = None,
) -> int:
    age = vehicle_age(vehicle.year, config, reference_year)
    value = config.anchor_value * (1.0 - depreciation_rate(age, config))
    for factor in category_factors(vehicle, config).values():
        value *= factor
    return max(config.minimum_value, _round_money(value))


def estimate_from_msrp(msrp: float, age: int, config: ValuationConfig = DEFAULT_CONFIG) -> int:
    return max(config.minimum_value, _round_money(msrp * msrp_retention(age, config)))


def market_value(
    base_value: int,
    age: int,
    mileage: int | None,
    config: ValuationConfig = DEFAULT_CONFIG,
) -> int | None:
    mileage = coerce_int(mileage)
    if mileage is None:
        return None
    expected = max(age, 1) * config.annual_mileage
    delta = mileage - expected
    if delta > 0:
        adjustment = -config.excess_mileage_rate * math.ceil(delta / 1000)
    else:
        credit = config.low_mileage_credit_rate * math.floor(-delta / 1000)
        adjustment = min(credit, base_value * config.low_mileage_credit_cap)
    return max(config.minimum_value, _round_money(base_value + adjustment))


def value_vehicle(
    vehicle: VehicleRecord,
    mileage: int | None = None,
    config: ValuationConfig = DEFAULT_CONFIG,
    reference_year: int | None = None,
) -> ValuationResult:
    age = vehicle_age(vehicle.year, config, reference_year)
    if vehicle.msrp:
        base = estimate_from_msrp(vehicle.msrp, age, config)
        method = "msrp"
        pct = config.msrp_confidence_pct
    else:
        base = estimate_base_value(vehicle, config, reference_year)
        method = "heuristic"
        pct = config.heuristic_confidence_pct
    if vehicle.year is None or vehicle.year <= 0:
        pct = config.unknown_year_confidence_pct

    market = market_value(base, age, mileage, config)
    confidence = _round_money((market if market is not None else base) * pct)
    return ValuationResult(base_value=base, market_value=market, confidence=confidence, method=method, age=age)


# ── Offer ───────────────────────────────────────────────────────────

def calculate_offer(
    base_value: Any,
    condition: ConditionInput,
    age: Any,
    config: ValuationConfig = DEFAULT_CONFIG,
) -> OfferResult:
    """Instant cash offer: condition penalties, excess mileage, then the dealer margin.

    Missing or unparsable inputs are replaced with defaults; this never raises.
    """
    base = coerce_float(base_value)
    if base is None or base < 0:
        base = float(estimate_base_value(VehicleRecord(), config))
    years = coerce_int(age)
    years = config.default_age if years is None else max(0, years)

    penalties = {name: config.condition_penalties[name] for name in condition.failed_checks()}
    value = base - sum(penalties.values())

    expected_mileage = years * config.annual_mileage
    reported = coerce_int(condition.mileage)
    mileage = expected_mileage if reported is None else max(0, reported)
    excess_miles = max(0, mileage - expected_mileage)
    mileage_penalty = config.excess_mileage_rate * math.ceil(excess_miles / 1000)
    value -= mileage_penalty

    pre_discount = value
    discounted = pre_discount * config.instant_offer_multiplier
    offer = max(config.minimum_value, _round_money(discounted))

    band = config.confidence_band_with_photos if condition.has_photos else config.confidence_band_without_photos
    breakdown = {
        "base_value": _round_money(base),
        "condition_penalties": penalties,
        "expected_mileage": expected_mileage,
        "mileage": mileage,
        "excess_miles": excess_miles,
        "mileage_penalty": _round_money(mileage_penalty),
        "pre_discount_value": _round_money(pre_discount),
        "discount_rate": config.instant_offer_multiplier,
        "discount_amount": _round_money(pre_discount - discounted),
        "minimum_applied": _round_money(discounted) < config.minimum_value,
    }
    return OfferResult(
        offer_amount=offer,
        confidence_band=band,
        valid_days=config.offer_valid_days,
        valid_miles=config.offer_valid_miles,
        breakdown=breakdown,
    )


def offer_for_vehicle(
    vehicle: VehicleRecord,
    condition: ConditionInput,
    base_value: Any = None,
    config: ValuationConfig = DEFAULT_CONFIG,
    reference_year: int | None = None,
) -> OfferResult:
    age = vehicle_age(vehicle.year, config, reference_year)
    if coerce_float(base_value) is None:
        base_value = value_vehicle(vehicle, config=config, reference_year=reference_year).base_value
    return calculate_offer(base_value, condition, age, config)
