from __future__ import annotations

import random

from valuation.data_models import VehicleRecord


def market_comparison(
    vehicle: VehicleRecord,
    estimate: int,
    zip_code: str | None = None,
    rng: random.Random | None = None,
) -> dict[str, object]:
    """Display-only blurb comparing the estimate with "similar listings".

    The listing count and spread are random; nothing here feeds back into
    the valuation.
    """
    rng = rng or random.Random()
    listings = rng.randint(8, 60)
    spread = rng.uniform(-0.06, 0.06)
    average = int(round(estimate * (1 + spread), -2))
    area = f"near {zip_code}" if zip_code else "in your area"
    label = " ".join(p for p in (str(vehicle.year or ""), vehicle.make, vehicle.model) if p and p != "Unknown")
    direction = "above" if spread < 0 else "below"
    return {
        "similarListings": listings,
        "averageListingPrice": average,
        "summary": (
            f"{listings} similar {label or 'vehicles'} listed {area}; "
            f"this estimate is {abs(spread) * 100:.1f}% {direction} their average asking price."
        ),
    }
