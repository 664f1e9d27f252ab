"""
Collaborator contracts used by the pricing engine, plus in-memory and CSV
implementations for local runs and tests.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .config import PricingConfig
from .env import parse_bool
from .models import PricingHistoryEntry, Product, RunRecord, SalesRecord, StoreAccount


class StoreUnavailableError(RuntimeError):
    """Raised when a backing store cannot be reached."""


def _read_csv(csv_path: str | Path, **kwargs) -> pd.DataFrame:
    try:
        return pd.read_csv(Path(csv_path), **kwargs)
    except (OSError, pd.errors.EmptyDataError, pd.errors.ParserError) as exc:
        raise StoreUnavailableError(f"Cannot read {csv_path}: {exc}") from exc


class SalesDataSource(ABC):
    @abstractmethod
    def list_records(self, product_id: str, from_date: date, to_date: date) -> Sequence[SalesRecord]:
        """Return records with ``from_date <= date < to_date``."""


class ProductCatalog(ABC):
    @abstractmethod
    def list_products(self, store_id: str) -> Sequence[Product]:
        """Return every product owned by ``store_id``."""

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]:
        ...


class PricingConfigStore(ABC):
    @abstractmethod
    def get(self, product_id: str) -> Optional[PricingConfig]:
        ...

    @abstractmethod
    def create_default(self, product_id: str) -> PricingConfig:
        ...

    @abstractmethod
    def compare_and_swap(
        self,
        product_id: str,
        expected_version: int,
        new_config: PricingConfig,
        new_price: Optional[float] = None,
        auto_pricing_enabled: Optional[bool] = None,
    ) -> bool:
        """
        Persist ``new_config`` only if the stored version still equals ``expected_version``.

        ``new_price`` and ``auto_pricing_enabled`` are written to the product in the
        same atomic step. Returns ``False`` when another writer got there first.
        """


class HistoryRecorder(ABC):
    @abstractmethod
    def append(self, entry: PricingHistoryEntry) -> bool:
        ...


class RunLogRecorder(ABC):
    @abstractmethod
    def record(self, run: RunRecord) -> None:
        ...


class StoreDirectory(ABC):
    @abstractmethod
    def list_active_stores(self) -> Sequence[StoreAccount]:
        ...

    @abstractmethod
    def get_access_token(self, store_id: str) -> Optional[str]:
        ...


class InMemorySalesDataSource(SalesDataSource):
    def __init__(self, records: Iterable[SalesRecord] = ()):
        self._records: Dict[str, List[SalesRecord]] = defaultdict(list)
        self._lock = threading.Lock()
        for record in records:
            self.add(record)

    def add(self, record: SalesRecord) -> None:
        with self._lock:
            self._records[record.product_id].append(record)

    def list_records(self, product_id: str, from_date: date, to_date: date) -> Sequence[SalesRecord]:
        with self._lock:
            rows = list(self._records.get(product_id, ()))
        return sorted(
            (record for record in rows if from_date <= record.date < to_date),
            key=lambda record: record.date,
        )


class CSVSalesDataSource(InMemorySalesDataSource):
    """Loads daily sales from a CSV with product_id,date,units_sold,revenue,price columns."""

    REQUIRED_COLUMNS = {"product_id", "date", "units_sold", "revenue"}

    def __init__(self, csv_path: str | Path):
        frame = _read_csv(Path(csv_path), parse_dates=["date"], dtype={"product_id": str})
        missing = self.REQUIRED_COLUMNS - set(frame.columns)
        if missing:
            raise ValueError(f"Sales CSV is missing columns: {', '.join(sorted(missing))}")
        if "price" not in frame.columns:
            frame["price"] = 0.0
        super().__init__(
            SalesRecord(
                product_id=row.product_id,
                date=row.date.date(),
                units_sold=int(row.units_sold),
                revenue=float(row.revenue),
                price=float(row.price),
            )
            for row in frame.itertuples(index=False)
        )


class InMemoryPricingStore(ProductCatalog, PricingConfigStore):
    """
    Products and their pricing configs behind a single lock.

    Keeping both in one store lets a compare-and-swap update the config and the
    product's price together, which is what the engine's commit step needs.
    """

    def __init__(
        self,
        products: Iterable[Product] = (),
        defaults: Optional[PricingConfig] = None,
    ):
        self._lock = threading.Lock()
        self._products: Dict[str, Product] = {product.id: product for product in products}
        self._configs: Dict[str, PricingConfig] = {}
        self._defaults = defaults or PricingConfig(product_id="")

    def add_product(self, product: Product) -> None:
        with self._lock:
            self._products[product.id] = product

    def put_config(self, config: PricingConfig) -> None:
        """Administrative write that bypasses version checks."""

        with self._lock:
            self._configs[config.product_id] = config

    def list_products(self, store_id: str) -> Sequence[Product]:
        with self._lock:
            return [product for product in self._products.values() if product.store_id == store_id]

    def get_product(self, product_id: str) -> Optional[Product]:
        with self._lock:
            return self._products.get(product_id)

    def get(self, product_id: str) -> Optional[PricingConfig]:
        with self._lock:
            return self._configs.get(product_id)

    def create_default(self, product_id: str) -> PricingConfig:
        with self._lock:
            if product_id not in self._products:
                raise KeyError(f"Unknown product: {product_id}")
            # A concurrent creator may have won; at most one config per product.
            config = self._configs.get(product_id)
            if config is None:
                config = self._defaults.for_product(product_id)
                self._configs[product_id] = config
            return config

    def compare_and_swap(
        self,
        product_id: str,
        expected_version: int,
        new_config: PricingConfig,
        new_price: Optional[float] = None,
        auto_pricing_enabled: Optional[bool] = None,
    ) -> bool:
        with self._lock:
            current = self._configs.get(product_id)
            if current is None or current.version != expected_version:
                return False
            self._configs[product_id] = replace(new_config, version=expected_version + 1)
            product = self._products.get(product_id)
            if product is not None:
                updates = {}
                if new_price is not None:
                    updates["current_price"] = new_price
                if auto_pricing_enabled is not None:
                    updates["auto_pricing_enabled"] = auto_pricing_enabled
                if updates:
                    self._products[product_id] = replace(product, **updates)
            return True


class InMemoryHistoryRecorder(HistoryRecorder):
    def __init__(self) -> None:
        self._entries: Dict[str, List[PricingHistoryEntry]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, entry: PricingHistoryEntry) -> bool:
        with self._lock:
            self._entries[entry.product_id].append(entry)
        return True

    def entries_for(self, product_id: str) -> List[PricingHistoryEntry]:
        with self._lock:
            return list(self._entries.get(product_id, ()))


class InMemoryRunLog(RunLogRecorder):
    def __init__(self) -> None:
        self.runs: List[RunRecord] = []
        self._lock = threading.Lock()

    def record(self, run: RunRecord) -> None:
        with self._lock:
            self.runs.append(run)


class InMemoryStoreDirectory(StoreDirectory):
    def __init__(
        self,
        stores: Iterable[StoreAccount] = (),
        tokens: Optional[Dict[str, str]] = None,
        token_lookup: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self._stores = list(stores)
        self._tokens = dict(tokens or {})
        self._token_lookup = token_lookup

    def list_active_stores(self) -> Sequence[StoreAccount]:
        return list(self._stores)

    def get_access_token(self, store_id: str) -> Optional[str]:
        if self._token_lookup is not None:
            return self._token_lookup(store_id)
        return self._tokens.get(store_id)


def load_products_csv(csv_path: str | Path, store_id: str | None = None) -> List[Product]:
    """Read products from a CSV with id,store_id,external_id,current_price,base_price columns."""

    frame = _read_csv(Path(csv_path), dtype={"id": str, "store_id": str, "external_id": str})
    for column in ("id", "external_id", "current_price"):
        if column not in frame.columns:
            raise ValueError(f"Products CSV needs a '{column}' column")
    if "store_id" not in frame.columns:
        frame["store_id"] = store_id or "default"
    if "base_price" not in frame.columns:
        frame["base_price"] = frame["current_price"]
    frame = frame.fillna({"title": "", "auto_pricing_enabled": True, "is_active": True})

    products = []
    for row in frame.to_dict(orient="records"):
        products.append(
            Product(
                id=row["id"],
                store_id=row["store_id"],
                external_id=row["external_id"],
                current_price=float(row["current_price"]),
                base_price=float(row["base_price"]),
                auto_pricing_enabled=parse_bool(row.get("auto_pricing_enabled", True)),
                is_active=parse_bool(row.get("is_active", True)),
                title=str(row.get("title", "")),
            )
        )
    return products


__all__ = [
    "CSVSalesDataSource",
    "HistoryRecorder",
    "InMemoryHistoryRecorder",
    "InMemoryPricingStore",
    "InMemoryRunLog",
    "InMemorySalesDataSource",
    "InMemoryStoreDirectory",
    "PricingConfigStore",
    "ProductCatalog",
    "RunLogRecorder",
    "SalesDataSource",
    "StoreDirectory",
    "StoreUnavailableError",
    "load_products_csv",
]
