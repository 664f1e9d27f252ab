"""
Per-product decision engine for price experiments.

Each product moves through STABLE -> INCREASED -> (STABLE | WAITING) -> STABLE.
A transition that changes the storefront price is a two-phase write: the
price applier is called first and only a successful call is followed by a
compare-and-swap of the config (and product price) plus a history entry.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import numpy as np

from .config import ConfigError, PricingConfig, PricingState
from .models import (
    Decision,
    HistoryAction,
    Outcome,
    PricingHistoryEntry,
    Product,
    StoreCredentials,
)
from .revenue import RevenueWindowCalculator, RevenueWindows, after_window_closes
from .shopify import PriceApplier
from .stores import HistoryRecorder, PricingConfigStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def round_price(value: float) -> float:
    return round(float(value), 2)


def exceeds_threshold(drop: float, threshold: float) -> bool:
    """A drop equal to the threshold counts as a breach."""

    return drop >= threshold or math.isclose(drop, threshold, rel_tol=1e-9, abs_tol=1e-12)


class PricingDecisionEngine:
    """Evaluates one state-machine step for a product and commits the result."""

    def __init__(
        self,
        config_store: PricingConfigStore,
        price_applier: PriceApplier,
        history: HistoryRecorder,
        revenue: RevenueWindowCalculator,
        clock: Optional[Clock] = None,
    ):
        self.config_store = config_store
        self.price_applier = price_applier
        self.history = history
        self.revenue = revenue
        self.clock = clock or utc_now

    def evaluate(self, product: Product, config: PricingConfig, credentials: StoreCredentials) -> Decision:
        now = self.clock()
        try:
            config.validate()
        except ConfigError as exc:
            return self._error(product, f"invalid pricing config: {exc}")

        if not product.auto_pricing_enabled:
            return Decision(product.id, Outcome.SKIPPED, "auto pricing disabled")
        if not product.is_active:
            return Decision(product.id, Outcome.SKIPPED, "product inactive")

        if config.current_state == PricingState.STABLE:
            return self._evaluate_stable(product, config, credentials, now)
        if config.current_state == PricingState.INCREASED:
            return self._evaluate_increased(product, config, credentials, now)
        return self._evaluate_waiting(product, config, now)

    def _evaluate_stable(
        self, product: Product, config: PricingConfig, credentials: StoreCredentials, now: datetime
    ) -> Decision:
        if config.next_eligible_at is not None and now < config.next_eligible_at:
            return Decision(product.id, Outcome.SKIPPED, f"not eligible until {config.next_eligible_at.isoformat()}")

        cap_price = round_price(product.base_price * (1 + config.max_increase_percent))
        if product.current_price >= cap_price:
            return Decision(product.id, Outcome.SKIPPED, "at max cap")

        target = round_price(product.current_price * (1 + config.price_step_percent))
        new_price = round_price(np.clip(target, product.current_price, cap_price))
        reason = "Price step" if new_price == target else "Hit max cap"

        baseline = self.revenue.compute_windows(product.id, None, config.observation_window_hours, now)
        applied = self.price_applier.set_price(product.id, product.external_id, new_price, credentials)
        if not applied.ok:
            return self._error(product, f"price update failed: {applied.reason}")

        new_config = replace(
            config,
            current_state=PricingState.INCREASED,
            last_price_change_at=now,
            next_eligible_at=None,
            reverted_from_price=product.current_price,
        )
        entry = PricingHistoryEntry(
            product_id=product.id,
            timestamp=now,
            action=HistoryAction.INCREASE,
            price_before=product.current_price,
            price_after=new_price,
            revenue_before=baseline.before_revenue,
            reason=reason,
        )
        if not self._commit(product, config, new_config, entry, new_price=new_price):
            return self._conflict(product)

        logger.info("Increased %s: %.2f -> %.2f", product.label, product.current_price, new_price)
        return Decision(product.id, Outcome.INCREASED, reason, product.current_price, new_price)

    def _evaluate_increased(
        self, product: Product, config: PricingConfig, credentials: StoreCredentials, now: datetime
    ) -> Decision:
        # Never earlier than observation_window_hours after the change.
        window_closes = after_window_closes(config.last_price_change_at, config.observation_window_hours)
        if now < window_closes:
            logger.debug("Observing %s until %s", product.label, window_closes.isoformat())
            return Decision(product.id, Outcome.WAITING, f"observing until {window_closes.isoformat()}")

        windows = self.revenue.compute_windows(
            product.id, config.last_price_change_at, config.observation_window_hours, now
        )
        drop = windows.drop
        if drop is None:
            logger.debug("Insufficient sales data for %s, deferring decision", product.label)
            return Decision(product.id, Outcome.WAITING, "insufficient sales data")

        if exceeds_threshold(drop, config.revenue_drop_threshold):
            return self._revert(product, config, credentials, windows, drop, now)
        return self._keep(product, config, windows, drop, now)

    def _revert(
        self,
        product: Product,
        config: PricingConfig,
        credentials: StoreCredentials,
        windows: RevenueWindows,
        drop: float,
        now: datetime,
    ) -> Decision:
        restore_price = (
            config.reverted_from_price if config.reverted_from_price is not None else product.base_price
        )
        applied = self.price_applier.set_price(product.id, product.external_id, restore_price, credentials)
        if not applied.ok:
            return self._error(product, f"price revert failed: {applied.reason}")

        new_config = replace(
            config,
            current_state=PricingState.WAITING,
            last_price_change_at=now,
            next_eligible_at=now + timedelta(hours=config.wait_hours_after_revert),
            reverted_from_price=None,
        )
        reason = f"Revenue dropped {drop * 100:.1f}%"
        entry = PricingHistoryEntry(
            product_id=product.id,
            timestamp=now,
            action=HistoryAction.REVERT,
            price_before=product.current_price,
            price_after=restore_price,
            revenue_before=windows.before_revenue,
            revenue_after=windows.after_revenue,
            revenue_change_percent=windows.change_percent,
            reason=reason,
        )
        if not self._commit(product, config, new_config, entry, new_price=restore_price):
            return self._conflict(product)

        logger.info("Reverted %s: %.2f -> %.2f (%s)", product.label, product.current_price, restore_price, reason)
        return Decision(product.id, Outcome.REVERTED, reason, product.current_price, restore_price)

    def _keep(
        self, product: Product, config: PricingConfig, windows: RevenueWindows, drop: float, now: datetime
    ) -> Decision:
        new_config = replace(
            config,
            current_state=PricingState.STABLE,
            last_price_change_at=None,
            reverted_from_price=None,
        )
        change = round(-drop * 100, 1) or 0.0
        direction = "up" if change > 0 else "stable"
        reason = f"Revenue {direction} ({change:+.1f}%)"
        entry = PricingHistoryEntry(
            product_id=product.id,
            timestamp=now,
            action=HistoryAction.KEEP,
            price_before=product.current_price,
            price_after=product.current_price,
            revenue_before=windows.before_revenue,
            revenue_after=windows.after_revenue,
            revenue_change_percent=windows.change_percent,
            reason=reason,
        )
        if not self._commit(product, config, new_config, entry):
            return self._conflict(product)

        logger.info("Kept %s at %.2f: %s", product.label, product.current_price, reason)
        return Decision(product.id, Outcome.KEPT, reason, product.current_price, product.current_price)

    def _evaluate_waiting(self, product: Product, config: PricingConfig, now: datetime) -> Decision:
        if now < config.next_eligible_at:
            return Decision(product.id, Outcome.WAITING, f"cooling down until {config.next_eligible_at.isoformat()}")

        new_config = replace(config, current_state=PricingState.STABLE, next_eligible_at=None)
        if not self._commit(product, config, new_config, None):
            return self._conflict(product)
        logger.info("Cooldown finished for %s", product.label)
        return Decision(product.id, Outcome.WAITING, "cooldown finished")

    def _commit(
        self,
        product: Product,
        config: PricingConfig,
        new_config: PricingConfig,
        entry: Optional[PricingHistoryEntry],
        new_price: Optional[float] = None,
    ) -> bool:
        if not self.config_store.compare_and_swap(product.id, config.version, new_config, new_price=new_price):
            return False
        if entry is not None:
            self._record_history(entry)
        return True

    def _record_history(self, entry: PricingHistoryEntry) -> None:
        # History is an audit trail; a failed append never undoes the commit.
        try:
            appended = self.history.append(entry)
        except Exception:
            logger.exception("History append raised for %s (%s)", entry.product_id, entry.action.value)
            return
        if not appended:
            logger.error("History append failed for %s (%s)", entry.product_id, entry.action.value)

    def _conflict(self, product: Product) -> Decision:
        return self._error(product, "concurrent update detected, state left untouched")

    def _error(self, product: Product, message: str) -> Decision:
        logger.warning("Skipping %s: %s", product.label, message)
        return Decision(product.id, Outcome.ERROR, message)


__all__ = ["PricingDecisionEngine", "exceeds_threshold", "round_price", "utc_now"]
