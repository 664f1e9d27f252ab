"""
Price appliers that push price changes to the storefront.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests

from .config import ShopifySettings
from .models import ApplyResult, StoreCredentials

logger = logging.getLogger(__name__)


class PriceUpdateError(RuntimeError):
    """Raised inside the Shopify client when a price cannot be written."""


class PriceApplier(ABC):
    @abstractmethod
    def set_price(
        self,
        product_id: str,
        external_product_id: str,
        new_price: float,
        credentials: StoreCredentials,
    ) -> ApplyResult:
        """Mutate the storefront price once; never raises for platform errors."""


class DryRunPriceApplier(PriceApplier):
    """Accepts every change without touching the network."""

    def set_price(
        self,
        product_id: str,
        external_product_id: str,
        new_price: float,
        credentials: StoreCredentials,
    ) -> ApplyResult:
        logger.info(
            "Dry run: %s (%s) on %s -> %.2f",
            product_id,
            external_product_id,
            credentials.shop_domain,
            new_price,
        )
        return ApplyResult.success()


class ShopifyPriceApplier(PriceApplier):
    """Updates the first variant of a Shopify product through the Admin REST API."""

    def __init__(self, settings: Optional[ShopifySettings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or ShopifySettings()
        self._http = session or requests

    def _base_url(self, shop_domain: str) -> str:
        return f"https://{shop_domain}/admin/api/{self.settings.api_version}"

    def _headers(self, credentials: StoreCredentials) -> dict[str, str]:
        return {
            "X-Shopify-Access-Token": credentials.access_token,
            "Content-Type": "application/json",
        }

    def _resolve_variant_id(self, external_product_id: str, credentials: StoreCredentials) -> int:
        url = f"{self._base_url(credentials.shop_domain)}/products/{external_product_id}.json"
        response = self._http.get(url, headers=self._headers(credentials), timeout=self.settings.timeout_seconds)
        if not response.ok:
            raise PriceUpdateError(f"Failed to fetch product: {response.status_code} {response.reason}")
        variants = ((response.json() or {}).get("product") or {}).get("variants") or []
        if not variants or not variants[0].get("id"):
            raise PriceUpdateError("No variant found")
        return variants[0]["id"]

    def _put_variant_price(self, variant_id: int, new_price: float, credentials: StoreCredentials) -> None:
        url = f"{self._base_url(credentials.shop_domain)}/variants/{variant_id}.json"
        payload = {
            "variant": {
                "id": variant_id,
                "price": f"{new_price:.2f}",
                # Clear "compare at" so the storefront does not show a crossed-out price.
                "compare_at_price": None,
            }
        }
        response = self._http.put(
            url, json=payload, headers=self._headers(credentials), timeout=self.settings.timeout_seconds
        )
        if not response.ok:
            raise PriceUpdateError(f"Failed to update price: {response.status_code} {response.reason}")

    def set_price(
        self,
        product_id: str,
        external_product_id: str,
        new_price: float,
        credentials: StoreCredentials,
    ) -> ApplyResult:
        try:
            variant_id = self._resolve_variant_id(external_product_id, credentials)
            self._put_variant_price(variant_id, new_price, credentials)
        except requests.RequestException as exc:
            logger.warning("Shopify request failed for %s: %s", product_id, exc)
            return ApplyResult.failure(f"Shopify request failed: {exc}")
        except PriceUpdateError as exc:
            logger.warning("Shopify rejected price for %s: %s", product_id, exc)
            return ApplyResult.failure(str(exc))
        return ApplyResult.success()


__all__ = [
    "DryRunPriceApplier",
    "PriceApplier",
    "PriceUpdateError",
    "ShopifyPriceApplier",
]
