"""VIN validation and the interchangeable upstream decoders.

Two providers implement the same ``VinResolver`` contract: the free NHTSA
vPIC decoder and a paid commercial decoder authenticated with OAuth2
client credentials. ``build_resolver`` picks one from settings and wraps it
in the decode cache.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

import httpx

from cashoffer.errors import (
    CashOfferError,
    ProviderAuthError,
    ProviderConfigError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    VinNotFoundError,
    VinValidationError,
)
from cashoffer.settings import ServiceSettings
from cashoffer.storage import RedisCache
from cashoffer.token_cache import ProviderTokenCache
from valuation.data_models import VehicleRecord, coerce_float, coerce_int

logger = logging.getLogger(__name__)

VIN_LENGTH = 17
_VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")


def validate_vin(vin: Any) -> str:
    """Return the normalised VIN or raise ``VinValidationError``."""
    if not isinstance(vin, str) or not vin.strip():
        raise VinValidationError("VIN is required")
    normalized = vin.strip().upper()
    if len(normalized) != VIN_LENGTH:
        raise VinValidationError(
            "Invalid VIN. Must be 17 characters.",
            details={"length": len(normalized)},
        )
    if not _VIN_RE.match(normalized):
        raise VinValidationError("VIN contains invalid characters (I, O, Q not allowed)")
    return normalized


class VinResolver(Protocol):
    name: str

    async def resolve(self, vin: str) -> VehicleRecord: ...


def _retry_after(resp: httpx.Response) -> int | None:
    return coerce_int(resp.headers.get("Retry-After"))


async def _send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: str,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one upstream request and map transport and status failures onto the taxonomy."""
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise ProviderTimeoutError(f"{provider} request timed out", details=str(exc)) from exc
    except httpx.HTTPError as exc:
        raise ProviderError(f"{provider} request failed", details=str(exc)) from exc

    if resp.status_code == 429:
        raise ProviderRateLimitError(f"{provider} rate limit exceeded", retry_after=_retry_after(resp))
    if resp.status_code in (401, 403):
        raise ProviderAuthError(f"{provider} rejected credentials", details=resp.status_code)
    if resp.status_code == 404:
        raise VinNotFoundError("VIN not found or invalid", details=f"{provider} returned 404")
    if resp.status_code >= 400:
        raise ProviderError(f"{provider} returned HTTP {resp.status_code}", details=resp.text[:200])
    return resp


def _json_body(resp: httpx.Response, provider: str) -> dict[str, Any]:
    try:
        payload = resp.json()
    except ValueError as exc:
        raise ProviderError(f"{provider} returned a non-JSON response") from exc
    if not isinstance(payload, dict):
        raise ProviderError(f"{provider} returned an unexpected payload")
    return payload


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


# ── NHTSA vPIC ──────────────────────────────────────────────────────

def _nhtsa_error_codes(raw: Any) -> set[str]:
    codes = set()
    for part in str(raw or "").split(","):
        match = re.match(r"\s*(\d+)", part)
        if match:
            codes.add(match.group(1))
    return codes


class NhtsaVinResolver:
    name = "nhtsa"

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def resolve(self, vin: str) -> VehicleRecord:
        vin = validate_vin(vin)
        url = f"{self.base_url}/DecodeVinValues/{vin}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await _send(client, "GET", url, "NHTSA", params={"format": "json"})
        payload = _json_body(resp, "NHTSA")

        results = payload.get("Results") or []
        if not results:
            raise VinNotFoundError("VIN not found or invalid", details="No results from NHTSA")
        row = results[0] if isinstance(results, list) else None
        if not isinstance(row, dict):
            raise ProviderError("NHTSA returned an unexpected payload")

        codes = _nhtsa_error_codes(row.get("ErrorCode"))
        record = VehicleRecord.from_mapping(
            {
                "vin": vin,
                "year": row.get("ModelYear"),
                "make": row.get("Make"),
                "model": row.get("Model"),
                "trim": row.get("Trim"),
                "body_class": row.get("BodyClass"),
                "fuel_type": row.get("FuelTypePrimary"),
                "engine_cylinders": row.get("EngineCylinders"),
                "displacement_l": row.get("DisplacementL"),
                "horsepower": row.get("EngineHP"),
                "drive_type": row.get("DriveType"),
                "gvwr": row.get("GVWR"),
                "manufacturer": row.get("Manufacturer"),
                "plant_country": row.get("PlantCountry"),
                "vehicle_type": row.get("VehicleType"),
                "doors": row.get("Doors"),
                "msrp": row.get("BasePrice"),
                "source": self.name,
            }
        )

        if "0" not in codes:
            if record.make == "Unknown":
                raise VinNotFoundError("VIN not found or invalid", details=row.get("ErrorText") or row.get("ErrorCode"))
            # Partial decodes (e.g. check digit mismatch) still carry usable data
            logger.warning("NHTSA partial decode for %s: %s", vin, row.get("ErrorText"))
        return record


# ── Commercial decoder ──────────────────────────────────────────────

class CommercialVinResolver:
    """Paid decoder: OAuth2 client credentials, bearer token per request, MSRP when known."""

    name = "commercial"

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        token_safety_margin_seconds: float = 60.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.tokens = ProviderTokenCache(self._fetch_token, safety_margin_seconds=token_safety_margin_seconds)

    @property
    def _has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _fetch_token(self) -> tuple[str, float]:
        if not self._has_credentials:
            raise ProviderConfigError("Commercial VIN provider credentials are not configured")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                resp = await _send(
                    client,
                    "POST",
                    f"{self.base_url}/oauth/token",
                    "VIN provider auth",
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                )
            except VinNotFoundError as exc:
                raise ProviderConfigError("VIN provider token endpoint not found", details=self.base_url) from exc
        data = _json_body(resp, "VIN provider auth")
        token = data.get("access_token")
        if not token:
            raise ProviderAuthError("VIN provider token response had no access_token")
        return str(token), coerce_float(data.get("expires_in")) or 3600.0

    async def _lookup(self, vin: str, token: str) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await _send(
                client,
                "GET",
                f"{self.base_url}/v1/vins/{vin}",
                "VIN provider",
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        return _json_body(resp, "VIN provider")

    async def resolve(self, vin: str) -> VehicleRecord:
        vin = validate_vin(vin)
        token = await self.tokens.get_valid_token()
        try:
            payload = await self._lookup(vin, token)
        except ProviderAuthError:
            # Token may have been revoked before its stated expiry
            self.tokens.invalidate()
            payload = await self._lookup(vin, await self.tokens.get_valid_token())

        data = payload.get("vehicle") or payload
        if not isinstance(data, dict):
            raise ProviderError("VIN provider returned an unexpected payload")
        engine = _as_dict(data.get("engine"))
        pricing = _as_dict(data.get("pricing"))
        record = VehicleRecord.from_mapping(
            {
                "vin": vin,
                "year": data.get("year"),
                "make": data.get("make"),
                "model": data.get("model"),
                "trim": data.get("trim"),
                "body_class": data.get("body_type") or data.get("body_class"),
                "fuel_type": data.get("fuel_type"),
                "engine_cylinders": engine.get("cylinders") or data.get("cylinders"),
                "displacement_l": engine.get("displacement_l") or engine.get("displacement"),
                "horsepower": engine.get("horsepower"),
                "drive_type": data.get("drive_type") or data.get("drivetrain"),
                "gvwr": data.get("gvwr"),
                "manufacturer": data.get("manufacturer"),
                "plant_country": data.get("plant_country"),
                "vehicle_type": data.get("vehicle_type"),
                "doors": data.get("doors"),
                "msrp": pricing.get("base_msrp") or data.get("msrp"),
                "source": self.name,
            }
        )
        if record.make == "Unknown" and record.year is None:
            raise VinNotFoundError("VIN not found or invalid", details="VIN provider returned no vehicle data")
        return record


# ── Cache & selection ───────────────────────────────────────────────

class CachedVinResolver:
    """Caches successful decodes; failures always go back upstream next time."""

    def __init__(self, inner: VinResolver, cache: RedisCache, ttl_seconds: int) -> None:
        self.inner = inner
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.name = inner.name

    async def resolve(self, vin: str) -> VehicleRecord:
        vin = validate_vin(vin)
        cache_key = f"vin_decode:{self.name}:{vin}"
        cached = await self.cache.get_json(cache_key)
        if cached is not None:
            return VehicleRecord.from_mapping(cached)

        try:
            record = await self.inner.resolve(vin)
        except CashOfferError as exc:
            logger.warning(
                "VIN decode failed",
                extra={"extra_data": {"vin": vin, "provider": self.name, "error": exc.message}},
            )
            raise
        await self.cache.set_json(cache_key, record.to_dict(), ttl_seconds=self.ttl_seconds)
        logger.info("VIN decoded", extra={"extra_data": {"vin": vin, "provider": self.name}})
        return record


def build_resolver(settings: ServiceSettings, cache: RedisCache) -> VinResolver:
    provider = settings.vin_provider.strip().lower()
    inner: VinResolver
    if provider == "nhtsa":
        inner = NhtsaVinResolver(settings.nhtsa_base_url, timeout=settings.upstream_timeout_seconds)
    elif provider == "commercial":
        inner = CommercialVinResolver(
            settings.commercial_vin_base_url,
            client_id=settings.commercial_vin_client_id,
            client_secret=settings.commercial_vin_client_secret,
            timeout=settings.upstream_timeout_seconds,
            token_safety_margin_seconds=settings.token_safety_margin_seconds,
        )
    else:
        raise ProviderConfigError(f"Unknown VIN provider: {settings.vin_provider!r}")
    return CachedVinResolver(inner, cache, ttl_seconds=settings.vin_cache_ttl_seconds)
