"""
Revenue window calculations that feed keep/revert decisions.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

import pandas as pd

from .models import SalesRecord
from .stores import SalesDataSource

SALES_COLUMNS = ["product_id", "date", "units_sold", "revenue", "price"]


@dataclass(frozen=True)
class RevenueWindows:
    before_revenue: float
    after_revenue: float
    before_units: int
    after_units: int
    sufficient_data: bool

    @property
    def drop(self) -> Optional[float]:
        """Relative revenue drop, ``None`` when it cannot be trusted."""

        return relative_drop(self.before_revenue, self.after_revenue) if self.sufficient_data else None

    @property
    def change_percent(self) -> Optional[float]:
        """Revenue change in percent rounded to 0.01, positive when revenue grew."""

        drop = relative_drop(self.before_revenue, self.after_revenue)
        if drop is None:
            return None
        return round(-drop * 100, 2) or 0.0


def relative_drop(before_revenue: float, after_revenue: float) -> Optional[float]:
    if before_revenue == 0:
        return None
    return (before_revenue - after_revenue) / before_revenue


def window_days(observation_window_hours: int) -> int:
    """Sales are aggregated per day, so windows are widened to whole days."""

    return max(1, math.ceil(observation_window_hours / 24))


def window_bounds(
    anchor_time: datetime, observation_window_hours: int, now: datetime
) -> tuple[date, date, date, date]:
    """
    Return half-open ``[start, end)`` day bounds for the before and after windows.

    The day of the change mixes sales at both prices, so it belongs to
    neither window: the before window ends the day before it and the after
    window starts on the first whole day after it.
    """

    days = timedelta(days=window_days(observation_window_hours))
    anchor_day = anchor_time.astimezone(timezone.utc).date()
    after_start = anchor_day + timedelta(days=1)
    today = now.astimezone(timezone.utc).date()
    after_end = min(after_start + days, today + timedelta(days=1))
    return anchor_day - days, anchor_day, after_start, max(after_end, after_start)


def after_window_closes(anchor_time: datetime, observation_window_hours: int) -> datetime:
    """Moment the after window holds complete days of sales (UTC midnight after its last day)."""

    anchor_day = anchor_time.astimezone(timezone.utc).date()
    closing_day = anchor_day + timedelta(days=1 + window_days(observation_window_hours))
    return datetime(closing_day.year, closing_day.month, closing_day.day, tzinfo=timezone.utc)


def records_to_frame(records: Iterable[SalesRecord]) -> pd.DataFrame:
    frame = pd.DataFrame(
        [
            {
                "product_id": record.product_id,
                "date": record.date,
                "units_sold": record.units_sold,
                "revenue": record.revenue,
                "price": record.price,
            }
            for record in records
        ],
        columns=SALES_COLUMNS,
    )
    frame["date"] = pd.to_datetime(frame["date"])
    return frame


def _window_totals(frame: pd.DataFrame, start: date, end: date) -> tuple[float, int, bool]:
    mask = (frame["date"] >= pd.Timestamp(start)) & (frame["date"] < pd.Timestamp(end))
    window = frame.loc[mask]
    revenue = float(window["revenue"].sum())
    units = int(window["units_sold"].sum())
    has_sales = bool((window["units_sold"] > 0).any())
    return revenue, units, has_sales


def summarize_windows(
    records: Iterable[SalesRecord],
    anchor_time: datetime,
    observation_window_hours: int,
    now: datetime,
) -> RevenueWindows:
    """Aggregate ``records`` into before/after totals around ``anchor_time``."""

    frame = records_to_frame(records)
    before_start, before_end, after_start, after_end = window_bounds(
        anchor_time, observation_window_hours, now
    )
    before_revenue, before_units, before_sales = _window_totals(frame, before_start, before_end)
    after_revenue, after_units, after_sales = _window_totals(frame, after_start, after_end)

    return RevenueWindows(
        before_revenue=before_revenue,
        after_revenue=after_revenue,
        before_units=before_units,
        after_units=after_units,
        sufficient_data=before_sales and after_sales and before_revenue > 0,
    )


class RevenueWindowCalculator:
    """Reads sales records for a product and compares revenue around a price change."""

    def __init__(self, sales_source: SalesDataSource):
        self.sales_source = sales_source

    def compute_windows(
        self,
        product_id: str,
        anchor_time: Optional[datetime],
        observation_window_hours: int,
        now: Optional[datetime] = None,
    ) -> RevenueWindows:
        now = now or datetime.now(timezone.utc)
        # Without a prior change the baseline is the lookback ending now.
        anchor = anchor_time or now
        before_start, _, _, after_end = window_bounds(anchor, observation_window_hours, now)
        records = self.sales_source.list_records(product_id, before_start, after_end)
        return summarize_windows(records, anchor, observation_window_hours, now)


__all__ = [
    "RevenueWindowCalculator",
    "RevenueWindows",
    "after_window_closes",
    "relative_drop",
    "summarize_windows",
    "window_bounds",
    "window_days",
]
