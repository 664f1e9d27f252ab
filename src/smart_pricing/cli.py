"""
Command line interface for a single smart pricing run.
"""

from __future__ import annotations

import argparse
import logging
import os

from .config import load_settings
from .coordinator import build_coordinator
from .env import load_env_file
from .shopify import DryRunPriceApplier, ShopifyPriceApplier
from .stores import (
    CSVSalesDataSource,
    InMemoryHistoryRecorder,
    InMemoryPricingStore,
    StoreUnavailableError,
    load_products_csv,
)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one smart pricing pass for a store")
    parser.add_argument("--settings", help="Optional YAML settings file")
    parser.add_argument("--products", required=True, help="CSV with id,external_id,current_price[,base_price,...]")
    parser.add_argument("--sales", required=True, help="CSV with product_id,date,units_sold,revenue[,price]")
    parser.add_argument("--store-id", default="default", help="Store whose products are processed")
    parser.add_argument(
        "--shop-domain",
        default=os.getenv("SHOPIFY_SHOP_DOMAIN", "example.myshopify.com"),
        help="Storefront domain used for price updates",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log price changes instead of sending them to Shopify",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    return parser.parse_args()


def main() -> None:
    load_env_file(os.getenv("SMART_PRICING_ENV_FILE", ".env"))
    args = _parse_args()
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    settings = load_settings(args.settings)
    try:
        products = load_products_csv(args.products, store_id=args.store_id)
        sales = CSVSalesDataSource(args.sales)
    except StoreUnavailableError as exc:
        raise SystemExit(str(exc)) from exc
    store = InMemoryPricingStore(products, defaults=settings.defaults)
    history = InMemoryHistoryRecorder()
    applier = DryRunPriceApplier() if args.dry_run else ShopifyPriceApplier(settings.shopify)
    coordinator = build_coordinator(store, sales, applier, history, settings=settings)

    access_token = os.getenv("SHOPIFY_ACCESS_TOKEN", "")
    if not access_token and not args.dry_run:
        raise SystemExit("SHOPIFY_ACCESS_TOKEN is required unless --dry-run is given")
    result = coordinator.run_pricing_algorithm(args.store_id, args.shop_domain, access_token)

    print("\nSmart Pricing Results\n---------------------")
    for product in store.list_products(args.store_id):
        config = store.get(product.id)
        state = config.current_state.value if config else "-"
        entries = history.entries_for(product.id)
        action = entries[-1].action.value if entries else "none"
        print(f"{product.label:20} | price: ${product.current_price:>8.2f} | state: {state:9} | last: {action}")

    stats = result.stats
    print(
        f"\nprocessed={stats.processed} increased={stats.increased} kept={stats.kept} "
        f"reverted={stats.reverted} waiting={stats.waiting} skipped={stats.skipped} "
        f"errors={stats.error_count}"
    )
    for message in result.errors:
        print(f"  ! {message}")
    if not result.success:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
