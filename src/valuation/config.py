from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict


@dataclass(frozen=True)
class ValuationConfig:
    anchor_value: float = 35_000.0
    minimum_value: int = 1_000
    default_age: int = 10

    # Tiered depreciation off the anchor
    first_year_depreciation: float = 0.20
    early_years_depreciation: float = 0.15  # per year, ages 2-5
    late_years_depreciation: float = 0.10  # per year, age 6+
    early_years_end: int = 5
    max_depreciation: float = 0.85

    # Fraction of MSRP retained, keyed by upper age bound
    msrp_retention: tuple[tuple[int, float], ...] = (
        (1, 0.80),
        (3, 0.65),
        (5, 0.50),
        (7, 0.40),
        (10, 0.30),
    )
    msrp_retention_floor: float = 0.15

    premium_brands: tuple[str, ...] = (
        "bmw", "mercedes", "audi", "lexus", "porsche", "jaguar", "land rover",
        "volvo", "genesis", "acura", "infiniti", "cadillac", "lincoln", "maserati",
    )
    reliable_brands: tuple[str, ...] = ("toyota", "honda", "subaru", "mazda")
    economy_brands: tuple[str, ...] = ("kia", "hyundai", "mitsubishi", "nissan", "fiat")
    truck_brands: tuple[str, ...] = ("ford", "chevrolet", "gmc", "ram", "dodge")
    brand_factors: Dict[str, float] = field(
        default_factory=lambda: {
            "premium": 1.4,
            "reliable": 1.15,
            "economy": 0.85,
            "truck": 1.25,
        }
    )

    # Checked in order; first match wins
    body_keywords: tuple[tuple[str, tuple[str, ...]], ...] = (
        ("truck", ("truck", "pickup")),
        ("suv", ("suv", "sport utility")),
        ("minivan", ("minivan",)),
        ("coupe", ("coupe", "convertible", "cabriolet")),
    )
    body_factors: Dict[str, float] = field(
        default_factory=lambda: {
            "truck": 1.2,
            "suv": 1.15,
            "minivan": 0.9,
            "coupe": 1.1,
        }
    )

    hybrid_factor: float = 1.1
    electric_factor: float = 1.2
    large_engine_cylinders: int = 8
    large_engine_factor: float = 1.15
    mid_engine_cylinders: int = 6
    mid_engine_factor: float = 1.05

    # Offer adjustments
    annual_mileage: int = 12_000
    excess_mileage_rate: float = 100.0  # per 1000 miles over expected
    low_mileage_credit_rate: float = 50.0  # per 1000 miles under, market value only
    low_mileage_credit_cap: float = 0.10
    condition_penalties: Dict[str, int] = field(
        default_factory=lambda: {
            "tires": 400,
            "windshield": 300,
            "lights": 200,
            "accident": 1_500,
        }
    )
    instant_offer_multiplier: float = 0.83
    confidence_band_with_photos: int = 500
    confidence_band_without_photos: int = 1_500
    offer_valid_days: int = 7
    offer_valid_miles: int = 500

    # Valuation confidence band as a share of the estimate
    msrp_confidence_pct: float = 0.10
    heuristic_confidence_pct: float = 0.15
    unknown_year_confidence_pct: float = 0.25

    @classmethod
    def classic(cls) -> "ValuationConfig":
        """Simpler multiplier set used by the first version of the estimator."""
        return replace(
            cls(),
            premium_brands=("bmw", "mercedes"),
            reliable_brands=("honda", "toyota"),
            economy_brands=(),
            truck_brands=(),
            brand_factors={"premium": 1.3, "reliable": 1.1, "economy": 1.0, "truck": 1.0},
            body_factors={"truck": 1.2, "suv": 1.15, "minivan": 1.0, "coupe": 1.0},
            hybrid_factor=1.0,
            electric_factor=1.0,
            large_engine_factor=1.0,
            mid_engine_factor=1.0,
        )


DEFAULT_CONFIG = ValuationConfig()
