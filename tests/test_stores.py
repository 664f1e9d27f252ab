from dataclasses import replace
from datetime import date

import pytest

from smart_pricing.config import PricingConfig, PricingState
from smart_pricing.stores import CSVSalesDataSource, InMemoryPricingStore, StoreUnavailableError, load_products_csv


def test_compare_and_swap_rejects_stale_versions(store):
    config = store.create_default("p1")
    updated = replace(config, current_state=PricingState.INCREASED)

    assert store.compare_and_swap("p1", 0, updated, new_price=105.0)
    assert not store.compare_and_swap("p1", 0, updated, new_price=110.0)

    assert store.get("p1").version == 1
    assert store.get_product("p1").current_price == 105.0


def test_create_default_is_idempotent(store):
    first = store.create_default("p1")
    store.compare_and_swap("p1", 0, replace(first, price_step_percent=0.1))

    assert store.create_default("p1").price_step_percent == 0.1


def test_create_default_requires_known_product(store):
    with pytest.raises(KeyError):
        store.create_default("missing")


def test_store_uses_configured_defaults(product):
    store = InMemoryPricingStore([product], defaults=PricingConfig(product_id="", wait_hours_after_revert=72))

    assert store.create_default("p1").wait_hours_after_revert == 72


def test_sales_source_filters_half_open_range(sales, add_sales):
    add_sales(date(2024, 2, 28), 10.0)
    add_sales(date(2024, 2, 29), 20.0)
    add_sales(date(2024, 3, 1), 30.0)
    add_sales(date(2024, 3, 1), 99.0, product_id="p2")

    records = sales.list_records("p1", date(2024, 2, 29), date(2024, 3, 1))

    assert [record.revenue for record in records] == [20.0]


def test_csv_sales_source(tmp_path):
    path = tmp_path / "sales.csv"
    path.write_text(
        "product_id,date,units_sold,revenue,price\n"
        "p1,2024-02-29,10,1000,100\n"
        "p1,2024-03-01,8,840,105\n",
        encoding="utf-8",
    )

    records = CSVSalesDataSource(path).list_records("p1", date(2024, 2, 1), date(2024, 4, 1))

    assert [(record.date, record.units_sold, record.revenue) for record in records] == [
        (date(2024, 2, 29), 10, 1000.0),
        (date(2024, 3, 1), 8, 840.0),
    ]


def test_csv_sales_source_requires_columns(tmp_path):
    path = tmp_path / "sales.csv"
    path.write_text("product_id,date\np1,2024-02-29\n", encoding="utf-8")

    with pytest.raises(ValueError, match="units_sold"):
        CSVSalesDataSource(path)


def test_load_products_csv_fills_defaults(tmp_path):
    path = tmp_path / "products.csv"
    path.write_text(
        "id,external_id,current_price,title\n"
        "p1,1001,19.99,Mug\n"
        "p2,1002,5,\n",
        encoding="utf-8",
    )

    products = load_products_csv(path, store_id="s1")

    assert [product.id for product in products] == ["p1", "p2"]
    assert products[0].base_price == 19.99
    assert products[0].store_id == "s1"
    assert products[0].auto_pricing_enabled
    assert products[1].label == "p2"


def test_load_products_csv_parses_flag_strings(tmp_path):
    path = tmp_path / "products.csv"
    path.write_text(
        "id,external_id,current_price,auto_pricing_enabled,is_active\n"
        "p1,1001,10,no,yes\n"
        "p2,1002,10,false ,true\n"
        "p3,1003,10,TRUE,0\n"
        "p4,1004,10,,\n",
        encoding="utf-8",
    )

    products = {product.id: product for product in load_products_csv(path)}

    assert not products["p1"].auto_pricing_enabled and products["p1"].is_active
    assert not products["p2"].auto_pricing_enabled and products["p2"].is_active
    assert products["p3"].auto_pricing_enabled and not products["p3"].is_active
    assert products["p4"].auto_pricing_enabled and products["p4"].is_active


def test_unreadable_csv_is_reported_as_unavailable_store(tmp_path):
    with pytest.raises(StoreUnavailableError, match="missing.csv"):
        CSVSalesDataSource(tmp_path / "missing.csv")

    empty = tmp_path / "products.csv"
    empty.write_text("", encoding="utf-8")
    with pytest.raises(StoreUnavailableError):
        load_products_csv(empty)
