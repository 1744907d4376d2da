"""Environment configuration.

Values are read once at startup; a ``.env`` file in the working directory is
loaded by the server entry point before this runs.
"""

from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field

from .core.clients.dune import API_BASE
from .core.execution import DEFAULT_INTERVAL_SECONDS, DEFAULT_MAX_ATTEMPTS

DEFAULT_QUERY_ID = 5733367
DEFAULT_CHAIN_ID = "eip155:8453"  # Base mainnet
DEFAULT_DONATION_VALUE = "230000"  # 0.23 USDC, 6 decimals
DEFAULT_PORT = 3000


class Settings(BaseModel):
    dune_api_key: str = ""
    dune_api_base: str = API_BASE
    dune_query_id: int = DEFAULT_QUERY_ID
    poll_max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1)
    poll_interval_seconds: float = Field(DEFAULT_INTERVAL_SECONDS, ge=0)
    donation_address: Optional[str] = None
    donation_chain_id: str = DEFAULT_CHAIN_ID
    donation_value: str = DEFAULT_DONATION_VALUE
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    log_level: str = "INFO"

    @property
    def has_api_key(self) -> bool:
        return bool(self.dune_api_key)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_settings() -> Settings:
    """Build settings from the process environment."""
    return Settings(
        dune_api_key=os.environ.get("DUNE_API_KEY", ""),
        dune_api_base=os.environ.get("DUNE_API_BASE", API_BASE).rstrip("/"),
        dune_query_id=_env_int("DUNE_QUERY_ID", DEFAULT_QUERY_ID),
        poll_max_attempts=_env_int("POLL_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", DEFAULT_INTERVAL_SECONDS),
        donation_address=os.environ.get("DONATION_ADDRESS") or None,
        donation_chain_id=os.environ.get("DONATION_CHAIN_ID", DEFAULT_CHAIN_ID),
        donation_value=os.environ.get("DONATION_VALUE", DEFAULT_DONATION_VALUE),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=_env_int("PORT", DEFAULT_PORT),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
