"""
Run orchestration: iterate a store's products (and all stores) through the engine.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import EngineSettings, PricingConfig
from .engine import Clock, PricingDecisionEngine, utc_now
from .models import (
    Decision,
    MultiStoreResult,
    Outcome,
    Product,
    RunRecord,
    RunResult,
    RunStats,
    StoreAccount,
    StoreCredentials,
)
from .revenue import RevenueWindowCalculator
from .shopify import PriceApplier
from .stores import (
    HistoryRecorder,
    InMemoryPricingStore,
    PricingConfigStore,
    ProductCatalog,
    RunLogRecorder,
    SalesDataSource,
    StoreDirectory,
)

logger = logging.getLogger(__name__)

GLOBAL_DISABLED_MESSAGE = "Global smart pricing is disabled"
NO_PRODUCTS_MESSAGE = "No products with autopilot enabled"


class ProductLocks:
    """Hands out one lock per product so overlapping runs decide one at a time."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def for_product(self, product_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = self._locks[product_id] = threading.Lock()
            return lock


class RunCoordinator:
    """Runs the decision engine over every eligible product of a store."""

    def __init__(
        self,
        catalog: ProductCatalog,
        config_store: PricingConfigStore,
        engine: PricingDecisionEngine,
        settings: Optional[EngineSettings] = None,
        locks: Optional[ProductLocks] = None,
        run_log: Optional[RunLogRecorder] = None,
        global_switch: Optional[Callable[[], bool]] = None,
        clock: Optional[Clock] = None,
    ):
        self.catalog = catalog
        self.config_store = config_store
        self.engine = engine
        self.settings = settings or EngineSettings()
        self.locks = locks or ProductLocks()
        self.run_log = run_log
        self.global_switch = global_switch or (lambda: self.settings.global_enabled)
        self.clock = clock or utc_now

    def _load_config(self, product_id: str) -> PricingConfig:
        config = self.config_store.get(product_id)
        if config is None:
            config = self.config_store.create_default(product_id)
        return config

    def _process(self, product: Product, credentials: StoreCredentials, deadline: Optional[float]) -> Optional[Decision]:
        if deadline is not None and time.monotonic() >= deadline:
            return None
        # Read-decide-write happens under the product lock; the store's
        # compare-and-swap covers writers in other processes.
        with self.locks.for_product(product.id):
            current = self.catalog.get_product(product.id) or product
            config = self._load_config(product.id)
            return self.engine.evaluate(current, config, credentials)

    def _eligible_products(self, store_id: str) -> List[Product]:
        return [
            product
            for product in self.catalog.list_products(store_id)
            if product.auto_pricing_enabled and product.is_active
        ]

    def run(
        self,
        store_id: str,
        credentials: StoreCredentials,
        deadline_seconds: Optional[float] = None,
    ) -> RunStats:
        """Process every eligible product; raises only if products cannot be listed."""

        return self._run_products(self._eligible_products(store_id), store_id, credentials, deadline_seconds)

    def _run_products(
        self,
        products: Sequence[Product],
        store_id: str,
        credentials: StoreCredentials,
        deadline_seconds: Optional[float],
    ) -> RunStats:
        stats = RunStats()
        if not products:
            return stats

        deadline_seconds = deadline_seconds if deadline_seconds is not None else self.settings.deadline_seconds
        deadline = time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        workers = max(1, min(self.settings.max_workers, len(products)))

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"pricing-{store_id}")
        futures: Dict[Future, Product] = {
            executor.submit(self._process, product, credentials, deadline): product for product in products
        }
        pending = set(futures)
        try:
            while pending:
                timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
                done, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                if not done:
                    logger.warning(
                        "Run for store %s hit its deadline with %d product(s) pending",
                        store_id,
                        len(pending),
                    )
                    break
                for future in done:
                    self._collect(future, futures[future], stats)
        finally:
            # Queued products are dropped; products already being decided
            # finish and are counted below.
            executor.shutdown(wait=True, cancel_futures=True)

        for future in pending:
            if not future.cancelled():
                self._collect(future, futures[future], stats)
        return stats

    def _collect(self, future: Future, product: Product, stats: RunStats) -> None:
        try:
            decision = future.result()
        except Exception as exc:
            logger.warning("Product %s failed: %s", product.label, exc)
            decision = Decision(product.id, Outcome.ERROR, str(exc) or exc.__class__.__name__)
        if decision is None:
            # Started after the deadline; the next scheduled run picks it up.
            return
        stats.record(decision, label=product.label)

    def run_pricing_algorithm(
        self,
        store_id: str,
        store_domain: str,
        access_token: str,
        deadline_seconds: Optional[float] = None,
    ) -> RunResult:
        """Scheduler-facing entry point; never raises."""

        started_at = self.clock()
        stats = RunStats()
        if not self.global_switch():
            logger.info("Skipping store %s: %s", store_id, GLOBAL_DISABLED_MESSAGE)
            return RunResult(success=True, stats=stats, errors=[GLOBAL_DISABLED_MESSAGE])

        credentials = StoreCredentials(shop_domain=store_domain, access_token=access_token)
        logger.info("Starting pricing run for store %s (%s)", store_id, store_domain)
        try:
            products = self._eligible_products(store_id)
        except Exception as exc:
            logger.error("Pricing run for store %s failed: %s", store_id, exc)
            return RunResult(success=False, stats=stats, errors=[str(exc) or "Algorithm failed"])
        if not products:
            return RunResult(success=True, stats=stats, errors=[NO_PRODUCTS_MESSAGE])

        stats = self._run_products(products, store_id, credentials, deadline_seconds)
        errors = list(stats.errors)
        logger.info("Finished pricing run for store %s: %s", store_id, stats.as_dict())
        self._record_run(store_id, started_at, stats)
        return RunResult(success=True, stats=stats, errors=errors)

    def _record_run(self, store_id: str, started_at: datetime, stats: RunStats) -> None:
        if self.run_log is None:
            return
        record = RunRecord(
            store_id=store_id,
            started_at=started_at,
            finished_at=self.clock(),
            stats=stats.as_dict(),
            errors=list(stats.errors),
        )
        try:
            self.run_log.record(record)
        except Exception:
            logger.exception("Failed to record run log for store %s", store_id)


def build_coordinator(
    store: InMemoryPricingStore,
    sales: SalesDataSource,
    price_applier: PriceApplier,
    history: HistoryRecorder,
    settings: Optional[EngineSettings] = None,
    run_log: Optional[RunLogRecorder] = None,
    clock: Optional[Clock] = None,
) -> RunCoordinator:
    """Wire an engine and coordinator around a store that is both catalog and config store."""

    engine = PricingDecisionEngine(
        config_store=store,
        price_applier=price_applier,
        history=history,
        revenue=RevenueWindowCalculator(sales),
        clock=clock,
    )
    return RunCoordinator(store, store, engine, settings=settings, run_log=run_log, clock=clock)


def run_all_stores(
    coordinator: RunCoordinator,
    directory: StoreDirectory,
    max_concurrent_stores: int = 1,
) -> MultiStoreResult:
    """Run every active store and aggregate their stats."""

    stores = directory.list_active_stores()
    total = RunStats()
    errors: List[str] = []
    if not stores:
        logger.info("No active stores found")
        return MultiStoreResult(success=True, stats=total, errors=errors, stores_processed=0)

    logger.info("Found %d active store(s) to process", len(stores))

    def _run_store(store: StoreAccount) -> Tuple[Optional[RunResult], Optional[str]]:
        token = directory.get_access_token(store.id)
        if not token:
            return None, f"No valid access token found for store {store.shop_domain}"
        return coordinator.run_pricing_algorithm(store.id, store.shop_domain, token), None

    failed_stores = 0
    with ThreadPoolExecutor(max_workers=max(1, max_concurrent_stores)) as executor:
        submitted = [(store, executor.submit(_run_store, store)) for store in stores]
        for store, future in submitted:
            try:
                result, problem = future.result()
            except Exception as exc:
                result, problem = None, f"Failed to process store {store.shop_domain}: {exc}"
            if problem:
                logger.error(problem)
                errors.append(problem)
                failed_stores += 1
                continue
            total.merge(result.stats, prefix=f"[{store.shop_domain}] ")
            if not result.success:
                failed_stores += 1
                errors.extend(f"[{store.shop_domain}] {message}" for message in result.errors)
            else:
                errors.extend(f"[{store.shop_domain}] {message}" for message in result.stats.errors)

    if errors:
        logger.warning("Pricing completed with %d error(s)", len(errors))
    logger.info("Total stats: %s", total.as_dict())
    return MultiStoreResult(
        success=failed_stores == 0,
        stats=total,
        errors=errors,
        stores_processed=len(stores),
    )


__all__ = [
    "GLOBAL_DISABLED_MESSAGE",
    "NO_PRODUCTS_MESSAGE",
    "ProductLocks",
    "RunCoordinator",
    "build_coordinator",
    "run_all_stores",
]
