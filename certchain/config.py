"""
CertChain — Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)

Every tunable parameter of the issuance engine lives here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Sub-configs ──────────────────────────────────────────────────


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 5000
    # Header carrying the admin caller's claimed address
    admin_header: str = "X-Admin-Address"


class RedisConfig(BaseModel):
    url: str = "redis://redis:6379/0"
    prefix: str = "certchain"
    password: str = ""

    @property
    def full_url(self) -> str:
        """Build URL with password injected."""
        clean_pw = self.password.strip() if self.password else ""
        if clean_pw and "://" in self.url:
            scheme, rest = self.url.split("://", 1)
            return f"{scheme}://:{clean_pw}@{rest}"
        return self.url


class StoreConfig(BaseModel):
    backend: str = "redis"  # "redis" | "memory"
    # Per-owner lock: how long the holder may keep it, and how long a writer waits
    lock_timeout_s: float = 10.0
    lock_blocking_timeout_s: float = 5.0


class PinataConfig(BaseModel):
    jwt: str = ""
    api_url: str = "https://api.pinata.cloud"
    gateway_url: str = "https://gateway.pinata.cloud"
    timeout_s: float = 30.0

    @model_validator(mode="after")
    def _strip_secrets(self) -> PinataConfig:
        # Secret managers can inject trailing \r\n into env vars
        if self.jwt:
            object.__setattr__(self, "jwt", self.jwt.strip())
        object.__setattr__(self, "gateway_url", self.gateway_url.rstrip("/"))
        return self


class LedgerConfig(BaseModel):
    rpc_url: str = ""
    contract_address: str = ""
    private_key: str = ""
    chain_id: int | None = None
    # Applied to every gas estimate before broadcast
    gas_multiplier: float = 1.2
    confirmation_timeout_s: float = 120.0
    poll_interval_s: float = 2.0

    @field_validator("gas_multiplier")
    @classmethod
    def _multiplier_floor(cls, v: float) -> float:
        if v < 1.1:
            raise ValueError("gas_multiplier must be at least 1.1")
        return v

    @model_validator(mode="after")
    def _strip_private_key(self) -> LedgerConfig:
        if self.private_key:
            object.__setattr__(self, "private_key", self.private_key.strip())
        return self


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Root Configuration ──────────────────────────────────────────


class CertChainConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="CERTCHAIN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = "certchain-default"

    server: ServerConfig = Field(default_factory=ServerConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    pinata: PinataConfig = Field(default_factory=PinataConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str | Path | None = None) -> CertChainConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    # Inject secrets from environment. These use the flat names the
    # deployment already exports alongside the nested CERTCHAIN_ ones.
    import os

    secrets: dict[str, Any] = {}
    if alchemy_url := os.environ.get("ALCHEMY_API_URL"):
        secrets.setdefault("ledger", {})["rpc_url"] = alchemy_url
    if contract := os.environ.get("CONTRACT_ADDRESS"):
        secrets.setdefault("ledger", {})["contract_address"] = contract
    if private_key := os.environ.get("PRIVATE_KEY"):
        secrets.setdefault("ledger", {})["private_key"] = private_key
    if pinata_jwt := os.environ.get("PINATA_JWT"):
        secrets.setdefault("pinata", {})["jwt"] = pinata_jwt
    if gateway := os.environ.get("GATEWAY_URL"):
        secrets.setdefault("pinata", {})["gateway_url"] = gateway
    if redis_url := os.environ.get("CERTCHAIN_REDIS__URL"):
        secrets.setdefault("redis", {})["url"] = redis_url
    if redis_pw := os.environ.get("CERTCHAIN_REDIS_PASSWORD"):
        secrets.setdefault("redis", {})["password"] = redis_pw
    if instance_id := os.environ.get("CERTCHAIN_INSTANCE_ID"):
        secrets["instance_id"] = instance_id

    return CertChainConfig(**_deep_merge(raw, secrets))
