"""
Checkout configuration loader (timers, phone rules, backend, mock behaviour, flow retention).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class PaymentTimersConfig(BaseModel):
    poll_interval_seconds: float = Field(default=3.0, gt=0.0, le=60.0)
    countdown_seconds: int = Field(default=300, ge=1, le=3600)
    tick_seconds: float = Field(default=1.0, gt=0.0, le=60.0)


class PhoneConfig(BaseModel):
    prefixes: List[str] = Field(default_factory=lambda: ["07", "01"])

    @field_validator("prefixes")
    @classmethod
    def _non_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one phone prefix is required")
        return value


class BackendConfig(BaseModel):
    request_timeout_seconds: float = Field(default=15.0, gt=0.0, le=120.0)


class MockConfig(BaseModel):
    payment_success_rate: float = Field(default=0.95, ge=0.0, le=1.0)


class StoreConfig(BaseModel):
    """How long finished or abandoned checkouts stay in memory."""

    completed_retention_seconds: float = Field(default=900.0, gt=0.0)
    idle_timeout_seconds: float = Field(default=3600.0, gt=0.0)


class CheckoutConfig(BaseModel):
    currency: str = "KES"
    timers: PaymentTimersConfig = Field(default_factory=PaymentTimersConfig)
    phone: PhoneConfig = Field(default_factory=PhoneConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    mock: MockConfig = Field(default_factory=MockConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)


def load_checkout_config(config_path: Optional[Path] = None) -> CheckoutConfig:
    """
    Load and validate checkout configuration from YAML file

    Args:
        config_path: Path to config file. Defaults to $CHECKOUT_CONFIG_PATH, then
            config/checkout_config.yml

    Returns:
        Validated CheckoutConfig object. Defaults are used when the default
        file is absent; an explicit path that does not exist is an error.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist
        ValidationError: If config doesn't match schema
    """
    if config_path is None and os.getenv("CHECKOUT_CONFIG_PATH"):
        config_path = Path(os.environ["CHECKOUT_CONFIG_PATH"])
    explicit = config_path is not None
    if config_path is None:
        config_path = Path(__file__).parent.parent.parent / "config" / "checkout_config.yml"

    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"Checkout config file not found: {config_path}")
        logger.warning("Checkout config %s not found; using defaults", config_path)
        return CheckoutConfig()

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        config = CheckoutConfig(**data)
        logger.info(f"Successfully loaded checkout config from {config_path}")
        return config
    except ValidationError as e:
        logger.error(f"Checkout config validation failed: {e}")
        raise
