from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Mapping


ValuationMethod = Literal["heuristic", "msrp"]

UNKNOWN = "Unknown"

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_EMPTY_MARKERS = {"", "unknown", "not applicable", "n/a", "na", "null", "none"}


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _EMPTY_MARKERS:
        return None
    return text


def coerce_float(value: Any) -> float | None:
    """Parse the first number out of loosely formatted upstream values ("V8", "2.5 L", 310)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = value
    else:
        text = clean_text(value)
        match = _NUMBER_RE.search(text.replace(",", "")) if text else None
        if match is None:
            return None
        number = match.group()
    try:
        number = float(number)
    except OverflowError:
        # ints beyond the float range
        return None
    return number if math.isfinite(number) else None


def coerce_int(value: Any) -> int | None:
    number = coerce_float(value)
    return None if number is None else int(number)


def coerce_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"true", "yes", "y", "1"}:
        return True
    if text in {"false", "no", "n", "0"}:
        return False
    return default


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


@dataclass(frozen=True)
class VehicleRecord:
    year: int | None = None
    make: str = UNKNOWN
    model: str = UNKNOWN
    trim: str = ""
    body_class: str = ""
    fuel_type: str = ""
    engine_cylinders: int | None = None
    msrp: float | None = None
    vin: str | None = None
    drive_type: str = ""
    displacement_l: float | None = None
    horsepower: float | None = None
    gvwr: str = ""
    manufacturer: str = ""
    plant_country: str = ""
    vehicle_type: str = ""
    doors: int | None = None
    source: str = "manual"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "VehicleRecord":
        """Build a record from a camelCase or snake_case payload; never raises."""
        year = coerce_int(_pick(data, "year", "model_year", "modelYear"))
        if year is not None and year <= 0:
            year = None
        msrp = coerce_float(_pick(data, "msrp", "base_msrp", "baseMsrp"))
        return cls(
            year=year,
            make=clean_text(_pick(data, "make")) or UNKNOWN,
            model=clean_text(_pick(data, "model")) or UNKNOWN,
            trim=clean_text(_pick(data, "trim")) or "",
            body_class=clean_text(_pick(data, "body_class", "bodyClass")) or "",
            fuel_type=clean_text(_pick(data, "fuel_type", "fuelType")) or "",
            engine_cylinders=coerce_int(_pick(data, "engine_cylinders", "engineCylinders")),
            msrp=msrp if msrp and msrp > 0 else None,
            vin=clean_text(_pick(data, "vin")),
            drive_type=clean_text(_pick(data, "drive_type", "driveType")) or "",
            displacement_l=coerce_float(_pick(data, "displacement_l", "displacementL", "engineSize")),
            horsepower=coerce_float(_pick(data, "horsepower", "engineHp", "engine_hp")),
            gvwr=clean_text(_pick(data, "gvwr")) or "",
            manufacturer=clean_text(_pick(data, "manufacturer")) or "",
            plant_country=clean_text(_pick(data, "plant_country", "plantCountry")) or "",
            vehicle_type=clean_text(_pick(data, "vehicle_type", "vehicleType")) or "",
            doors=coerce_int(_pick(data, "doors")),
            source=clean_text(_pick(data, "source")) or "manual",
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ConditionInput:
    mileage: int | None = None
    tires_ok: bool = True
    windshield_ok: bool = True
    lights_ok: bool = True
    accident_free: bool = True
    has_photos: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ConditionInput":
        mileage = coerce_int(_pick(data, "mileage", "odometer"))
        return cls(
            mileage=None if mileage is None else max(0, mileage),
            tires_ok=coerce_bool(_pick(data, "tires_ok", "tiresOk")),
            windshield_ok=coerce_bool(_pick(data, "windshield_ok", "windshieldOk")),
            lights_ok=coerce_bool(_pick(data, "lights_ok", "lightsOk")),
            accident_free=coerce_bool(_pick(data, "accident_free", "accidentFree")),
            has_photos=coerce_bool(_pick(data, "has_photos", "hasPhotos"), default=False),
        )

    def failed_checks(self) -> list[str]:
        flags = {
            "tires": self.tires_ok,
            "windshield": self.windshield_ok,
            "lights": self.lights_ok,
            "accident": self.accident_free,
        }
        return [name for name, ok in flags.items() if not ok]


@dataclass(frozen=True)
class ValuationResult:
    base_value: int
    market_value: int | None
    confidence: int | None
    method: ValuationMethod
    age: int


@dataclass(frozen=True)
class OfferResult:
    offer_amount: int
    confidence_band: int
    valid_days: int
    valid_miles: int
    breakdown: dict[str, Any] = field(default_factory=dict)
