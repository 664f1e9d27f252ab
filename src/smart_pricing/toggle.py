"""
Turning smart pricing off and back on for individual products.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Optional

from .config import PricingConfig, PricingState
from .engine import Clock, utc_now
from .models import HistoryAction, PricingHistoryEntry, Product, StoreCredentials
from .shopify import PriceApplier
from .stores import HistoryRecorder, PricingConfigStore

logger = logging.getLogger(__name__)


class ToggleError(RuntimeError):
    """Raised when smart pricing cannot be disabled or resumed for a product."""


class ResumeOption(str, Enum):
    BASE = "base"
    LAST = "last"


def resolve_baseline_price(product: Product, config: Optional[PricingConfig]) -> float:
    if config is not None and config.pre_smart_pricing_price is not None:
        return config.pre_smart_pricing_price
    if product.base_price:
        return product.base_price
    return product.current_price


def resolve_resume_price(product: Product, config: Optional[PricingConfig], option: ResumeOption) -> float:
    if option == ResumeOption.BASE:
        return resolve_baseline_price(product, config)
    if config is not None and config.last_smart_pricing_price is not None:
        return config.last_smart_pricing_price
    return product.current_price


class SmartPricingToggle:
    def __init__(
        self,
        config_store: PricingConfigStore,
        price_applier: PriceApplier,
        history: HistoryRecorder,
        clock: Optional[Clock] = None,
    ):
        self.config_store = config_store
        self.price_applier = price_applier
        self.history = history
        self.clock = clock or utc_now

    def _load_config(self, product_id: str) -> PricingConfig:
        return self.config_store.get(product_id) or self.config_store.create_default(product_id)

    def _apply(self, product: Product, price: float, credentials: StoreCredentials) -> None:
        if price == product.current_price:
            return
        applied = self.price_applier.set_price(product.id, product.external_id, price, credentials)
        if not applied.ok:
            raise ToggleError(f"Failed to update storefront price for {product.label}: {applied.reason}")

    def _commit(
        self,
        product: Product,
        config: PricingConfig,
        new_config: PricingConfig,
        price: float,
        enabled: bool,
        action: HistoryAction,
        reason: str,
    ) -> None:
        swapped = self.config_store.compare_and_swap(
            product.id, config.version, new_config, new_price=price, auto_pricing_enabled=enabled
        )
        if not swapped:
            raise ToggleError(f"Pricing config for {product.label} changed concurrently")
        entry = PricingHistoryEntry(
            product_id=product.id,
            timestamp=self.clock(),
            action=action,
            price_before=product.current_price,
            price_after=price,
            reason=reason,
        )
        if not self.history.append(entry):
            logger.error("History append failed for %s (%s)", product.id, action.value)

    def disable_smart_pricing(
        self,
        product: Product,
        credentials: StoreCredentials,
        reason: str = "Smart pricing disabled",
    ) -> float:
        """Restore the pre-smart-pricing price and stop experiments; returns that price."""

        config = self._load_config(product.id)
        revert_price = resolve_baseline_price(product, config)
        self._apply(product, revert_price, credentials)

        new_config = replace(
            config,
            current_state=PricingState.STABLE,
            last_price_change_at=None,
            next_eligible_at=None,
            reverted_from_price=None,
            pre_smart_pricing_price=revert_price,
            last_smart_pricing_price=product.current_price,
        )
        self._commit(product, config, new_config, revert_price, False, HistoryAction.REVERT, reason)
        logger.info("Disabled smart pricing for %s, reverted to %.2f", product.label, revert_price)
        return revert_price

    def resume_smart_pricing(
        self,
        product: Product,
        credentials: StoreCredentials,
        option: ResumeOption | str = ResumeOption.BASE,
    ) -> float:
        """Re-enable experiments from the base price or the last smart price; returns it."""

        option = ResumeOption(option)
        config = self._load_config(product.id)
        resume_price = resolve_resume_price(product, config, option)
        self._apply(product, resume_price, credentials)

        pre_price = (
            config.pre_smart_pricing_price if config.pre_smart_pricing_price is not None else resume_price
        )
        new_config = replace(
            config,
            current_state=PricingState.STABLE,
            last_price_change_at=None,
            next_eligible_at=None,
            reverted_from_price=None,
            pre_smart_pricing_price=pre_price,
            last_smart_pricing_price=resume_price,
        )
        if option == ResumeOption.BASE:
            action, reason = HistoryAction.RESUME_BASE, "Smart pricing resumed from base price"
        else:
            action, reason = HistoryAction.RESUME_LAST, "Smart pricing resumed from last smart price"
        self._commit(product, config, new_config, resume_price, True, action, reason)
        logger.info("Resumed smart pricing for %s at %.2f", product.label, resume_price)
        return resume_price


__all__ = [
    "ResumeOption",
    "SmartPricingToggle",
    "ToggleError",
    "resolve_baseline_price",
    "resolve_resume_price",
]
