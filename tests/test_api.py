import pytest
from fastapi.testclient import TestClient

from cashoffer.errors import (
    ProviderConfigError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    VinNotFoundError,
)
from valuation.data_models import ConditionInput, VehicleRecord
from valuation.engine import offer_for_vehicle, value_vehicle

VIN = "1HGCM82633A004352"


class FakeResolver:
    name = "fake"

    def __init__(self, record=None, error=None):
        self.record = record or VehicleRecord(
            vin=VIN, year=2020, make="Toyota", model="Camry", body_class="Sedan/Saloon", source="fake"
        )
        self.error = error
        self.calls = []

    async def resolve(self, vin):
        self.calls.append(vin)
        if self.error is not None:
            raise self.error
        return self.record


def _make_app(monkeypatch, resolver=None, **env):
    monkeypatch.setenv("REDIS_URL", "redis://localhost:65535/0")
    monkeypatch.setenv("LOG_FORMAT", "text")
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    from cashoffer.api import create_app
    return create_app(resolver=resolver)


# ── Service Endpoints ────────────────────────────────────────────────


def test_root_and_health(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "OK", "message": "Backend Running"}

        root = client.get("/").json()
        assert "POST /api/offer/calculate" in root["endpoints"]


def test_api_correlation_id(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        resp = client.get("/api/health", headers={"X-Correlation-ID": "my-trace-123"})
        assert resp.headers.get("X-Correlation-ID") == "my-trace-123"

        resp2 = client.get("/api/health")
        assert "X-Correlation-ID" in resp2.headers


def test_cors_preflight(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        resp = client.options(
            "/api/offer/calculate",
            headers={"Origin": "https://app.example", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"


def test_users_create(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        resp = client.post("/api/users/create", json={"email": "seller@example.com", "name": "Sam"})
        assert resp.status_code == 200
        assert resp.json()["user"] == {"id": 1, "email": "seller@example.com", "name": "Sam"}

        resp = client.post("/api/users/create", json={"name": "No Email"})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Email is required"}


# ── Decode ───────────────────────────────────────────────────────────


@pytest.mark.parametrize("vin", [VIN[:16], VIN + "X"])
def test_decode_rejects_wrong_length_without_upstream_call(monkeypatch, vin):
    resolver = FakeResolver()
    app = _make_app(monkeypatch, resolver)
    with TestClient(app) as client:
        resp = client.post("/api/vehicle/decode", json={"vin": vin})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Invalid VIN. Must be 17 characters."
    assert resolver.calls == []


def test_decode_requires_vin(monkeypatch):
    resolver = FakeResolver()
    app = _make_app(monkeypatch, resolver)
    with TestClient(app) as client:
        resp = client.post("/api/vehicle/decode", json={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "VIN is required"
    assert resolver.calls == []


def test_decode_success(monkeypatch):
    resolver = FakeResolver()
    app = _make_app(monkeypatch, resolver)
    with TestClient(app) as client:
        resp = client.post("/api/vehicle/decode", json={"vin": VIN.lower(), "mileage": 30000})
        assert resp.status_code == 200
        body = resp.json()

    expected = value_vehicle(resolver.record, mileage=30000)
    assert resolver.calls == [VIN]
    assert body["success"] is True
    assert body["vehicle"]["make"] == "Toyota"
    assert body["vehicle"]["bodyClass"] == "Sedan/Saloon"
    assert body["baseValue"] == expected.base_value
    assert body["marketValue"] == expected.market_value
    assert body["confidence"] == expected.confidence
    assert body["method"] == "heuristic"


@pytest.mark.parametrize(
    "error, status",
    [
        (VinNotFoundError("VIN not found or invalid"), 404),
        (ProviderTimeoutError("NHTSA request timed out"), 504),
        (ProviderConfigError("Commercial VIN provider credentials are not configured"), 500),
        (ProviderError("NHTSA returned HTTP 503"), 502),
    ],
)
def test_decode_maps_provider_failures(monkeypatch, error, status):
    app = _make_app(monkeypatch, FakeResolver(error=error))
    with TestClient(app) as client:
        resp = client.post("/api/vehicle/decode", json={"vin": VIN})
        assert resp.status_code == status
        assert resp.json() == {"success": False, "error": error.message}


def test_decode_rate_limit_sets_retry_after(monkeypatch):
    error = ProviderRateLimitError("NHTSA rate limit exceeded", retry_after=12)
    app = _make_app(monkeypatch, FakeResolver(error=error))
    with TestClient(app) as client:
        resp = client.post("/api/vehicle/decode", json={"vin": VIN})
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "12"


# ── Valuation ────────────────────────────────────────────────────────


def test_valuation_from_attributes(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    payload = {"year": 2019, "make": "BMW", "model": "X5", "bodyClass": "SUV", "mileage": 40000, "zipCode": "90210"}
    with TestClient(app) as client:
        resp = client.post("/api/vehicle/valuation", json=payload)
        assert resp.status_code == 200
        body = resp.json()

    expected = value_vehicle(VehicleRecord(year=2019, make="BMW", model="X5", body_class="SUV"), mileage=40000)
    assert body["baseValue"] == expected.base_value
    assert body["marketValue"] == expected.market_value
    assert "near 90210" in body["marketComparison"]["summary"]


def test_valuation_uses_msrp(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        body = client.post("/api/vehicle/valuation", json={"year": 2022, "make": "Honda", "msrp": "30000"}).json()
    assert body["method"] == "msrp"


def test_valuation_requires_some_attributes(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        resp = client.post("/api/vehicle/valuation", json={"model": "Civic"})
        assert resp.status_code == 400


# ── Offer ────────────────────────────────────────────────────────────


def test_offer_from_base_value(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        resp = client.post("/api/offer/calculate", json={"baseValue": 20000, "mileage": 100000})
        assert resp.status_code == 200
        body = resp.json()
    assert body["offerAmount"] == 16600
    assert body["confidenceBand"] == 1500
    assert body["validDays"] == 7
    assert body["validMiles"] == 500
    assert body["vehicle"] is None
    assert body["breakdown"]["baseValue"] == 20000
    assert body["breakdown"]["mileagePenalty"] == 0
    assert body["breakdown"]["conditionPenalties"] == {}


def test_offer_condition_penalty_and_photos(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    payload = {"baseValue": 20000, "mileage": 100000, "tiresOk": False, "hasPhotos": True}
    with TestClient(app) as client:
        body = client.post("/api/offer/calculate", json=payload).json()
    assert body["offerAmount"] == 16268
    assert body["confidenceBand"] == 500
    assert body["breakdown"]["conditionPenalties"] == {"tires": 400}


def test_offer_from_vin(monkeypatch):
    resolver = FakeResolver()
    app = _make_app(monkeypatch, resolver)
    with TestClient(app) as client:
        body = client.post("/api/offer/calculate", json={"vin": VIN, "mileage": 60000}).json()
    expected = offer_for_vehicle(resolver.record, ConditionInput(mileage=60000))
    assert body["offerAmount"] == expected.offer_amount
    assert body["vehicle"]["model"] == "Camry"


def test_offer_from_vehicle_attributes(monkeypatch):
    resolver = FakeResolver()
    app = _make_app(monkeypatch, resolver)
    payload = {"vehicle": {"year": 2018, "make": "Ford", "bodyClass": "Pickup"}, "accidentFree": False}
    with TestClient(app) as client:
        body = client.post("/api/offer/calculate", json=payload).json()
    vehicle = VehicleRecord(year=2018, make="Ford", body_class="Pickup")
    expected = offer_for_vehicle(vehicle, ConditionInput(accident_free=False))
    assert body["offerAmount"] == expected.offer_amount
    assert resolver.calls == []


def test_offer_requires_a_vehicle(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        resp = client.post("/api/offer/calculate", json={"mileage": 1000})
        assert resp.status_code == 400


def test_offer_rejects_malformed_fields(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        resp = client.post("/api/offer/calculate", json={"baseValue": 20000, "mileage": "lots"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Invalid request"
        assert body["details"]


def test_stats_counts_activity(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        client.post("/api/vehicle/decode", json={"vin": VIN})
        client.post("/api/offer/calculate", json={"baseValue": 15000})
        client.post("/api/offer/calculate", json={"baseValue": 9000})
        client.post("/api/vehicle/decode", json={"vin": "short"})
        stats = client.get("/api/stats").json()
    assert stats == {"users": 0, "vehicles": 1, "offers": 2}


def test_classic_preset(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver(), VALUATION_PRESET="classic")
    payload = {"year": 2020, "make": "BMW", "model": "3 Series"}
    with TestClient(app) as client:
        body = client.post("/api/vehicle/valuation", json=payload).json()
    from valuation.config import ValuationConfig
    expected = value_vehicle(VehicleRecord(year=2020, make="BMW", model="3 Series"), config=ValuationConfig.classic())
    assert body["baseValue"] == expected.base_value


def test_offer_with_out_of_range_mileage(monkeypatch):
    app = _make_app(monkeypatch, FakeResolver())
    with TestClient(app) as client:
        resp = client.post("/api/offer/calculate", json={"baseValue": 20000, "mileage": 10**400})
        assert resp.status_code == 200
        body = resp.json()
    assert body["offerAmount"] == 16600
    assert body["breakdown"]["mileagePenalty"] == 0


def test_decode_clamps_negative_mileage(monkeypatch):
    resolver = FakeResolver()
    app = _make_app(monkeypatch, resolver)
    with TestClient(app) as client:
        body = client.post("/api/vehicle/decode", json={"vin": VIN, "mileage": -50000}).json()
    assert body["marketValue"] == value_vehicle(resolver.record, mileage=0).market_value


def test_unknown_valuation_preset_fails_at_startup(monkeypatch):
    from cashoffer.errors import ConfigurationError, ProviderConfigError

    with pytest.raises(ConfigurationError) as exc_info:
        _make_app(monkeypatch, FakeResolver(), VALUATION_PRESET="luxury")
    assert not isinstance(exc_info.value, ProviderConfigError)
    assert "luxury" in exc_info.value.message
