from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    api_title: str = Field(default="Cash Offer AI Backend API", alias="API_TITLE")
    api_version: str = Field(default="1.0.0", alias="API_VERSION")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # VIN decoding: "nhtsa" (free public decoder) or "commercial" (paid, OAuth)
    vin_provider: str = Field(default="nhtsa", alias="VIN_PROVIDER")
    nhtsa_base_url: str = Field(default="https://vpic.nhtsa.dot.gov/api/vehicles", alias="NHTSA_BASE_URL")
    commercial_vin_base_url: str = Field(default="https://api.vindata.example.com", alias="COMMERCIAL_VIN_BASE_URL")
    commercial_vin_client_id: str = Field(default="", alias="COMMERCIAL_VIN_CLIENT_ID")
    commercial_vin_client_secret: str = Field(default="", alias="COMMERCIAL_VIN_CLIENT_SECRET")
    upstream_timeout_seconds: float = Field(default=10.0, alias="UPSTREAM_TIMEOUT_SECONDS")
    token_safety_margin_seconds: int = Field(default=60, alias="TOKEN_SAFETY_MARGIN_SECONDS")
    vin_cache_ttl_seconds: int = Field(default=2_592_000, alias="VIN_CACHE_TTL_SECONDS")

    # "default" or "classic" multiplier set
    valuation_preset: str = Field(default="default", alias="VALUATION_PRESET")

    # Comma separated; "*" allows any origin
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()] or ["*"]
