from __future__ import annotations

import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from cashoffer.errors import CashOfferError, ConfigurationError, InputValidationError, ProviderRateLimitError
from cashoffer.logging_config import configure_logging, correlation_id, new_correlation_id
from cashoffer.market import market_comparison
from cashoffer.settings import ServiceSettings
from cashoffer.storage import RedisCache
from cashoffer.vin import VinResolver, build_resolver, validate_vin
from valuation.config import DEFAULT_CONFIG, ValuationConfig
from valuation.data_models import ConditionInput, VehicleRecord
from valuation.engine import offer_for_vehicle, value_vehicle

logger = logging.getLogger(__name__)


# ── Request / Response Models ───────────────────────────────────────

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DecodeRequest(ApiModel):
    vin: str | None = None
    mileage: int | None = None


class VehicleInput(ApiModel):
    vin: str | None = None
    year: int | str | None = None
    make: str | None = None
    model: str | None = None
    trim: str | None = None
    body_class: str | None = None
    fuel_type: str | None = None
    engine_cylinders: int | str | None = None
    msrp: float | str | None = None


class ValuationRequest(VehicleInput):
    mileage: int | None = None
    zip_code: str | None = None


class OfferRequest(ApiModel):
    vin: str | None = None
    vehicle: VehicleInput | None = None
    base_value: float | str | None = None
    mileage: int | None = None
    tires_ok: bool = True
    windshield_ok: bool = True
    lights_ok: bool = True
    accident_free: bool = True
    has_photos: bool = False


class UserCreateRequest(ApiModel):
    email: str | None = None
    name: str | None = None


class ValuationResponse(ApiModel):
    success: bool = True
    vehicle: dict[str, Any]
    base_value: int
    market_value: int | None
    confidence: int | None
    method: str
    market_comparison: dict[str, Any] | None = None


class OfferResponse(ApiModel):
    success: bool = True
    offer_amount: int
    confidence_band: int
    valid_days: int
    valid_miles: int
    breakdown: dict[str, Any]
    vehicle: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    status: str
    message: str


class StatsResponse(BaseModel):
    users: int
    vehicles: int
    offers: int


class UserResponse(BaseModel):
    user: dict[str, Any]
    created: bool


def _camel_keys(data: dict[str, Any]) -> dict[str, Any]:
    return {to_camel(k): (_camel_keys(v) if isinstance(v, dict) else v) for k, v in data.items()}


def _error_body(message: str, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return body


def _select_config(preset: str) -> ValuationConfig:
    if preset == "default":
        return DEFAULT_CONFIG
    if preset == "classic":
        return ValuationConfig.classic()
    raise ConfigurationError(f"Unknown valuation preset: {preset!r}")


# ── App Factory ─────────────────────────────────────────────────────

def create_app(settings: ServiceSettings | None = None, resolver: VinResolver | None = None) -> FastAPI:
    settings = settings or ServiceSettings()
    configure_logging(level=settings.log_level, fmt=settings.log_format)

    config = _select_config(settings.valuation_preset.strip().lower())
    cache = RedisCache(redis_url=settings.redis_url)
    resolver = resolver or build_resolver(settings, cache)
    counters: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await cache.connect()
        logger.info(
            "Cash offer API started",
            extra={"extra_data": {"vin_provider": resolver.name, "redis": cache.connected}},
        )
        try:
            yield
        finally:
            await cache.close()

    app = FastAPI(title=settings.api_title, version=settings.api_version, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials="*" not in settings.cors_origin_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next: Any) -> Response:
        cid = request.headers.get("X-Correlation-ID") or new_correlation_id()
        correlation_id.set(cid)
        t0 = time.monotonic()
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        logger.info(
            "%s %s -> %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={"extra_data": {"duration_ms": round((time.monotonic() - t0) * 1000, 1)}},
        )
        return response

    # ── Errors ──────────────────────────────────────────────────────

    @app.exception_handler(CashOfferError)
    async def cash_offer_error_handler(_: Request, exc: CashOfferError) -> JSONResponse:
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, "%s: %s", type(exc).__name__, exc.message)
        headers = None
        if isinstance(exc, ProviderRateLimitError) and exc.retry_after is not None:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.details), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=_error_body("Invalid request", exc.errors()))

    # ── Service ─────────────────────────────────────────────────────

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {
            "message": settings.api_title,
            "version": settings.api_version,
            "endpoints": [
                "GET /api/health",
                "GET /api/stats",
                "POST /api/users/create",
                "POST /api/vehicle/decode",
                "POST /api/vehicle/valuation",
                "POST /api/offer/calculate",
            ],
        }

    @app.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="OK", message="Backend Running")

    @app.get("/api/stats", response_model=StatsResponse)
    async def stats() -> StatsResponse:
        return StatsResponse(users=counters["users"], vehicles=counters["vehicles"], offers=counters["offers"])

    @app.post("/api/users/create", response_model=UserResponse)
    async def create_user(payload: UserCreateRequest) -> UserResponse:
        # Accounts are not persisted; the id only counts calls in this process
        if not payload.email:
            raise InputValidationError("Email is required")
        counters["users"] += 1
        return UserResponse(user={"id": counters["users"], "email": payload.email, "name": payload.name}, created=True)

    # ── Valuation ───────────────────────────────────────────────────

    @app.post("/api/vehicle/decode", response_model=ValuationResponse)
    async def decode_vehicle(payload: DecodeRequest) -> ValuationResponse:
        vin = validate_vin(payload.vin)
        vehicle = await resolver.resolve(vin)
        mileage = None if payload.mileage is None else max(0, payload.mileage)
        result = value_vehicle(vehicle, mileage=mileage, config=config)
        counters["vehicles"] += 1
        return ValuationResponse(
            vehicle=_camel_keys(vehicle.to_dict()),
            base_value=result.base_value,
            market_value=result.market_value,
            confidence=result.confidence,
            method=result.method,
        )

    @app.post("/api/vehicle/valuation", response_model=ValuationResponse)
    async def value_vehicle_attributes(payload: ValuationRequest) -> ValuationResponse:
        vehicle = VehicleRecord.from_mapping(payload.model_dump(exclude={"mileage", "zip_code"}))
        if vehicle.year is None and vehicle.make == "Unknown" and not vehicle.msrp:
            raise InputValidationError("Provide at least a year, make or msrp")
        mileage = None if payload.mileage is None else max(0, payload.mileage)
        result = value_vehicle(vehicle, mileage=mileage, config=config)
        counters["vehicles"] += 1
        estimate = result.market_value if result.market_value is not None else result.base_value
        return ValuationResponse(
            vehicle=_camel_keys(vehicle.to_dict()),
            base_value=result.base_value,
            market_value=result.market_value,
            confidence=result.confidence,
            method=result.method,
            market_comparison=market_comparison(vehicle, estimate, zip_code=payload.zip_code),
        )

    @app.post("/api/offer/calculate", response_model=OfferResponse)
    async def calculate_offer(payload: OfferRequest) -> OfferResponse:
        vehicle_json: dict[str, Any] | None = None
        if payload.vin:
            vehicle = await resolver.resolve(validate_vin(payload.vin))
            vehicle_json = _camel_keys(vehicle.to_dict())
        elif payload.vehicle is not None:
            vehicle = VehicleRecord.from_mapping(payload.vehicle.model_dump())
            vehicle_json = _camel_keys(vehicle.to_dict())
        elif payload.base_value is not None:
            vehicle = VehicleRecord()
        else:
            raise InputValidationError("Provide a vin, a vehicle or a baseValue")

        condition = ConditionInput.from_mapping(payload.model_dump(exclude={"vin", "vehicle", "base_value"}))
        offer = offer_for_vehicle(vehicle, condition, base_value=payload.base_value, config=config)
        counters["offers"] += 1
        logger.info(
            "Offer calculated",
            extra={"extra_data": {"vin": vehicle.vin, "offer_amount": offer.offer_amount}},
        )
        return OfferResponse(
            offer_amount=offer.offer_amount,
            confidence_band=offer.confidence_band,
            valid_days=offer.valid_days,
            valid_miles=offer.valid_miles,
            breakdown=_camel_keys(offer.breakdown),
            vehicle=vehicle_json,
        )

    return app


app = create_app()
