"""
Configuration objects for the smart pricing engine.

Two layers live here: the per-product ``PricingConfig`` record that the
decision engine mutates, and the run-level ``EngineSettings`` loaded from
YAML by the command line and scheduler entry points.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .env import env_flag, parse_bool


class ConfigError(RuntimeError):
    """Raised when settings or a product's pricing configuration are invalid."""


class PricingState(str, Enum):
    STABLE = "stable"
    INCREASED = "increased"
    WAITING = "waiting"


@dataclass(frozen=True)
class PricingConfig:
    """Experiment configuration and state for a single product."""

    product_id: str
    revenue_drop_threshold: float = 0.15
    price_step_percent: float = 0.05
    observation_window_hours: int = 24
    wait_hours_after_revert: int = 24
    max_increase_percent: float = 1.0
    current_state: PricingState = PricingState.STABLE
    last_price_change_at: Optional[datetime] = None
    next_eligible_at: Optional[datetime] = None
    # Price to restore when the active increase is reverted.
    reverted_from_price: Optional[float] = None
    pre_smart_pricing_price: Optional[float] = None
    last_smart_pricing_price: Optional[float] = None
    version: int = 0

    def validate(self) -> "PricingConfig":
        """Check ranges and state invariants, returning ``self`` when valid."""

        if not 0 < self.revenue_drop_threshold <= 1:
            raise ConfigError(
                f"revenue_drop_threshold must be in (0, 1], got {self.revenue_drop_threshold}"
            )
        if not 0 < self.price_step_percent <= 1:
            raise ConfigError(f"price_step_percent must be in (0, 1], got {self.price_step_percent}")
        if self.observation_window_hours <= 0:
            raise ConfigError(
                f"observation_window_hours must be positive, got {self.observation_window_hours}"
            )
        if self.wait_hours_after_revert <= 0:
            raise ConfigError(
                f"wait_hours_after_revert must be positive, got {self.wait_hours_after_revert}"
            )
        if self.max_increase_percent <= 0:
            raise ConfigError(f"max_increase_percent must be positive, got {self.max_increase_percent}")

        if self.current_state == PricingState.INCREASED and self.last_price_change_at is None:
            raise ConfigError("INCREASED state requires last_price_change_at")
        if self.current_state == PricingState.WAITING:
            if self.next_eligible_at is None:
                raise ConfigError("WAITING state requires next_eligible_at")
            if self.last_price_change_at is not None and self.next_eligible_at <= self.last_price_change_at:
                raise ConfigError("next_eligible_at must be later than last_price_change_at")
        return self

    def for_product(self, product_id: str) -> "PricingConfig":
        """Return a fresh STABLE copy of this template bound to ``product_id``."""

        return replace(
            self,
            product_id=product_id,
            current_state=PricingState.STABLE,
            last_price_change_at=None,
            next_eligible_at=None,
            reverted_from_price=None,
            pre_smart_pricing_price=None,
            last_smart_pricing_price=None,
            version=0,
        )


@dataclass
class ShopifySettings:
    api_version: str = "2024-10"
    timeout_seconds: float = 10.0


@dataclass
class EngineSettings:
    """Run-level options shared by every product in a run."""

    global_enabled: bool = True
    max_workers: int = 4
    deadline_seconds: Optional[float] = None
    defaults: PricingConfig = field(default_factory=lambda: PricingConfig(product_id=""))
    shopify: ShopifySettings = field(default_factory=ShopifySettings)


def _load_defaults(raw: Dict[str, Any]) -> PricingConfig:
    try:
        template = PricingConfig(
            product_id="",
            revenue_drop_threshold=float(raw.get("revenue_drop_threshold", 0.15)),
            price_step_percent=float(raw.get("price_step_percent", 0.05)),
            observation_window_hours=int(raw.get("observation_window_hours", 24)),
            wait_hours_after_revert=int(raw.get("wait_hours_after_revert", 24)),
            max_increase_percent=float(raw.get("max_increase_percent", 1.0)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid pricing defaults: {raw}") from exc
    return template.validate()


def load_settings(path: str | Path | None = None) -> EngineSettings:
    """Load EngineSettings from a YAML file, applying environment overrides."""

    raw: Dict[str, Any] = {}
    if path:
        settings_path = Path(path)
        if not settings_path.exists():
            raise ConfigError(f"Settings file not found: {path}")
        with settings_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

    engine_raw = raw.get("engine") or {}
    shopify_raw = raw.get("shopify") or {}

    try:
        max_workers = int(engine_raw.get("max_workers", 4))
        deadline = engine_raw.get("deadline_seconds")
        deadline_seconds = float(deadline) if deadline is not None else None
        shopify = ShopifySettings(
            api_version=str(shopify_raw.get("api_version", "2024-10")),
            timeout_seconds=float(shopify_raw.get("timeout_seconds", 10)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid engine settings: {raw}") from exc

    if max_workers < 1:
        raise ConfigError(f"max_workers must be at least 1, got {max_workers}")
    if deadline_seconds is not None and deadline_seconds <= 0:
        raise ConfigError(f"deadline_seconds must be positive, got {deadline_seconds}")

    settings = EngineSettings(
        global_enabled=parse_bool(engine_raw.get("global_enabled", True)),
        max_workers=max_workers,
        deadline_seconds=deadline_seconds,
        defaults=_load_defaults(raw.get("defaults") or {}),
        shopify=shopify,
    )

    if os.getenv("SHOPIFY_API_VERSION"):
        settings.shopify.api_version = os.environ["SHOPIFY_API_VERSION"]
    global_override = env_flag("SMART_PRICING_GLOBAL_ENABLED")
    if global_override is not None:
        settings.global_enabled = global_override
    return settings


__all__ = [
    "ConfigError",
    "EngineSettings",
    "PricingConfig",
    "PricingState",
    "ShopifySettings",
    "load_settings",
]
