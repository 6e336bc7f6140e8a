"""
Cart engine settings.

Read from `CARTSYNC_*` environment variables; components themselves take
plain numbers so tests can pass tiny delays directly.

    settings = load_settings(push_debounce_seconds=0.01)
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CartSettings(BaseSettings):
    """Endpoints, timings, sampler limits and storage keys."""

    # Transport
    api_base_url: str = Field(default="http://localhost:3000/api")
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    # Timers
    push_debounce_seconds: float = Field(default=0.7, ge=0)
    estimate_debounce_seconds: float = Field(default=0.6, ge=0)
    analytics_flush_seconds: float = Field(default=2.0, ge=0)
    heartbeat_interval_seconds: float = Field(default=60.0, gt=0)
    highlight_clear_seconds: float = Field(default=5.0, ge=0)

    # Cross-sell
    crosssell_limit: int = Field(default=6, ge=0)
    crosssell_per_category: int = Field(default=3, ge=1)
    crosssell_max_categories: int = Field(default=4, ge=1)
    crosssell_pool_size: int = Field(default=20, ge=1)

    # Local storage
    default_currency: str = Field(default="USD", min_length=3, max_length=3)
    cart_storage_key: str = "glow_cart_v1"
    events_storage_key: str = "glow_cart_events_buffer_v1"
    client_id_storage_key: str = "glow_cart_client_id"

    # Logging
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    model_config = SettingsConfigDict(
        env_prefix="CARTSYNC_",
        env_file=None,
        case_sensitive=False,
        extra="ignore",
    )


def load_settings(**overrides: Any) -> CartSettings:
    """Environment first, keyword overrides on top."""
    return CartSettings(**overrides)


__all__ = ("CartSettings", "load_settings")
