"""
Domain records exchanged between the engine and its collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Product:
    id: str
    store_id: str
    external_id: str
    current_price: float
    base_price: float
    auto_pricing_enabled: bool = True
    is_active: bool = True
    title: str = ""

    @property
    def label(self) -> str:
        return self.title or self.id


@dataclass(frozen=True)
class SalesRecord:
    """Per-product, per-day sales aggregate."""

    product_id: str
    date: date
    units_sold: int
    revenue: float
    price: float


class HistoryAction(str, Enum):
    INCREASE = "increase"
    KEEP = "keep"
    REVERT = "revert"
    RESUME_BASE = "resume_base"
    RESUME_LAST = "resume_last"


@dataclass(frozen=True)
class PricingHistoryEntry:
    product_id: str
    timestamp: datetime
    action: HistoryAction
    price_before: float
    price_after: float
    revenue_before: Optional[float] = None
    revenue_after: Optional[float] = None
    revenue_change_percent: Optional[float] = None
    reason: str = ""


@dataclass(frozen=True)
class StoreCredentials:
    shop_domain: str
    access_token: str


@dataclass(frozen=True)
class StoreAccount:
    id: str
    shop_domain: str


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of a storefront price mutation."""

    ok: bool
    reason: str = ""

    @classmethod
    def success(cls) -> "ApplyResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> "ApplyResult":
        return cls(ok=False, reason=reason)


class Outcome(str, Enum):
    INCREASED = "increased"
    KEPT = "kept"
    REVERTED = "reverted"
    WAITING = "waiting"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class Decision:
    """What the engine did with one product during a run."""

    product_id: str
    outcome: Outcome
    message: str = ""
    price_before: Optional[float] = None
    price_after: Optional[float] = None


@dataclass
class RunStats:
    processed: int = 0
    increased: int = 0
    kept: int = 0
    reverted: int = 0
    waiting: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    _COUNTERS = {
        Outcome.INCREASED: "increased",
        Outcome.KEPT: "kept",
        Outcome.REVERTED: "reverted",
        Outcome.WAITING: "waiting",
        Outcome.SKIPPED: "skipped",
    }

    def record(self, decision: Decision, label: str | None = None) -> None:
        self.processed += 1
        if decision.outcome == Outcome.ERROR:
            self.errors.append(f"{label or decision.product_id}: {decision.message}")
            return
        counter = self._COUNTERS[decision.outcome]
        setattr(self, counter, getattr(self, counter) + 1)

    def merge(self, other: "RunStats", prefix: str = "") -> None:
        self.processed += other.processed
        self.increased += other.increased
        self.kept += other.kept
        self.reverted += other.reverted
        self.waiting += other.waiting
        self.skipped += other.skipped
        self.errors.extend(f"{prefix}{message}" for message in other.errors)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def as_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "increased": self.increased,
            "kept": self.kept,
            "reverted": self.reverted,
            "waiting": self.waiting,
            "skipped": self.skipped,
            "errors": self.error_count,
        }


@dataclass
class RunResult:
    success: bool
    stats: RunStats
    errors: List[str] = field(default_factory=list)


@dataclass
class MultiStoreResult:
    success: bool
    stats: RunStats
    errors: List[str] = field(default_factory=list)
    stores_processed: int = 0


@dataclass(frozen=True)
class RunRecord:
    store_id: str
    started_at: datetime
    finished_at: datetime
    stats: Dict[str, int]
    errors: List[str]

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


__all__ = [
    "ApplyResult",
    "Decision",
    "HistoryAction",
    "MultiStoreResult",
    "Outcome",
    "PricingHistoryEntry",
    "Product",
    "RunRecord",
    "RunResult",
    "RunStats",
    "SalesRecord",
    "StoreAccount",
    "StoreCredentials",
]
