from datetime import date, datetime, timedelta, timezone

import pytest

from smart_pricing.engine import PricingDecisionEngine
from smart_pricing.models import ApplyResult, Product, SalesRecord, StoreCredentials
from smart_pricing.revenue import RevenueWindowCalculator
from smart_pricing.shopify import PriceApplier
from smart_pricing.stores import InMemoryHistoryRecorder, InMemoryPricingStore, InMemorySalesDataSource

T0 = datetime(2024, 3, 1, 2, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingApplier(PriceApplier):
    def __init__(self):
        self.calls = []
        self.fail_with = None

    def set_price(self, product_id, external_product_id, new_price, credentials):
        self.calls.append((product_id, new_price))
        if self.fail_with:
            return ApplyResult.failure(self.fail_with)
        return ApplyResult.success()


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def product():
    return Product(
        id="p1",
        store_id="s1",
        external_id="1001",
        current_price=100.0,
        base_price=100.0,
        title="Mug",
    )


@pytest.fixture
def store(product):
    return InMemoryPricingStore([product])


@pytest.fixture
def sales():
    return InMemorySalesDataSource()


@pytest.fixture
def history():
    return InMemoryHistoryRecorder()


@pytest.fixture
def applier():
    return RecordingApplier()


@pytest.fixture
def credentials():
    return StoreCredentials(shop_domain="demo.myshopify.com", access_token="shpat_token")


@pytest.fixture
def engine(store, applier, history, sales, clock):
    return PricingDecisionEngine(store, applier, history, RevenueWindowCalculator(sales), clock=clock)


@pytest.fixture
def step(engine, store, credentials):
    """Evaluate one product against the latest stored product and config."""

    def _step(product_id="p1"):
        config = store.get(product_id) or store.create_default(product_id)
        return engine.evaluate(store.get_product(product_id), config, credentials)

    return _step


@pytest.fixture
def add_sales(sales):
    def _add(day: date, revenue: float, units: int = 10, product_id: str = "p1", price: float = 100.0):
        sales.add(SalesRecord(product_id=product_id, date=day, units_sold=units, revenue=revenue, price=price))

    return _add
