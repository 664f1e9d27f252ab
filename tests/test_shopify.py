import requests

from smart_pricing.config import ShopifySettings
from smart_pricing.models import StoreCredentials
from smart_pricing.shopify import DryRunPriceApplier, ShopifyPriceApplier

CREDENTIALS = StoreCredentials(shop_domain="demo.myshopify.com", access_token="shpat_token")


class DummyResponse:
    def __init__(self, payload=None, status_code=200, reason="OK"):
        self._payload = payload or {}
        self.status_code = status_code
        self.reason = reason

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> dict:
        return self._payload


PRODUCT_PAYLOAD = {"product": {"id": 1001, "variants": [{"id": 555, "price": "100.00"}]}}


def test_shopify_applier_updates_first_variant(monkeypatch):
    captured = {}

    def fake_get(url, headers, timeout):
        captured["get_url"] = url
        captured["headers"] = headers
        return DummyResponse(PRODUCT_PAYLOAD)

    def fake_put(url, json, headers, timeout):
        captured["put_url"] = url
        captured["payload"] = json
        captured["timeout"] = timeout
        return DummyResponse({"variant": json["variant"]})

    monkeypatch.setattr("smart_pricing.shopify.requests.get", fake_get)
    monkeypatch.setattr("smart_pricing.shopify.requests.put", fake_put)

    applier = ShopifyPriceApplier(ShopifySettings(api_version="2024-10", timeout_seconds=7))
    result = applier.set_price("p1", "1001", 105.0, CREDENTIALS)

    assert result.ok
    assert captured["get_url"] == "https://demo.myshopify.com/admin/api/2024-10/products/1001.json"
    assert captured["put_url"] == "https://demo.myshopify.com/admin/api/2024-10/variants/555.json"
    assert captured["payload"] == {"variant": {"id": 555, "price": "105.00", "compare_at_price": None}}
    assert captured["headers"]["X-Shopify-Access-Token"] == "shpat_token"
    assert captured["timeout"] == 7


def test_shopify_applier_reports_missing_variant(monkeypatch):
    monkeypatch.setattr(
        "smart_pricing.shopify.requests.get",
        lambda *args, **kwargs: DummyResponse({"product": {"id": 1001, "variants": []}}),
    )

    result = ShopifyPriceApplier().set_price("p1", "1001", 105.0, CREDENTIALS)

    assert not result.ok
    assert result.reason == "No variant found"


def test_shopify_applier_reports_rejected_update(monkeypatch):
    monkeypatch.setattr("smart_pricing.shopify.requests.get", lambda *args, **kwargs: DummyResponse(PRODUCT_PAYLOAD))
    monkeypatch.setattr(
        "smart_pricing.shopify.requests.put",
        lambda *args, **kwargs: DummyResponse(status_code=422, reason="Unprocessable Entity"),
    )

    result = ShopifyPriceApplier().set_price("p1", "1001", 105.0, CREDENTIALS)

    assert not result.ok
    assert "422" in result.reason


def test_shopify_applier_turns_network_errors_into_failures(monkeypatch):
    def unreachable(*args, **kwargs):
        raise requests.ConnectionError("connection reset")

    monkeypatch.setattr("smart_pricing.shopify.requests.get", unreachable)

    result = ShopifyPriceApplier().set_price("p1", "1001", 105.0, CREDENTIALS)

    assert not result.ok
    assert "connection reset" in result.reason


def test_dry_run_applier_always_succeeds():
    assert DryRunPriceApplier().set_price("p1", "1001", 99.5, CREDENTIALS).ok
