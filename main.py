"""
Price-Drop Buy Orders - Command Line Entry Point

Commands:
- init-db:        create the SQLite schema
- add-product:    register a product to take buy orders against
- update-price:   apply a manual price change and fulfill matching orders
- import-prices:  bulk price changes from a CSV/Excel sheet
- expire:         expire overdue monitoring orders (safe to cron)
- serve:          run the Flask API
"""
import argparse
import json
import sys

from config.settings import Settings
from core.exceptions import CollaboratorUnavailableError, InputError
from core.models import Platform
from services.price_import import import_prices, read_price_sheet
from validator.price_events import normalize_event
from web_app import build_services, configure_logging, create_app


def cmd_init_db(settings: Settings, args) -> int:
    services = build_services(settings)
    print(f"✅ Database ready: {services.db_path}")
    return 0


def cmd_add_product(settings: Settings, args) -> int:
    services = build_services(settings)
    product = services.product_store.create_product(
        merchant_id=args.merchant_id or settings.DEFAULT_MERCHANT_ID,
        current_price=args.price,
        currency=args.currency or settings.DEFAULT_CURRENCY,
        title=args.title or "",
        platform=Platform(args.platform),
        external_id=args.external_id,
        product_id=args.product_id,
    )
    print(f"✅ Product {product.id}: {product.title or '(untitled)'} at {product.current_price} {product.currency}")
    return 0


def cmd_update_price(settings: Settings, args) -> int:
    services = build_services(settings)
    event = normalize_event("manual", {"productId": args.product_id, "newPrice": args.price})
    result = services.ingestor.ingest(event)
    report = result.report
    print(f"✅ {result.product_id}: {result.old_price} -> {result.new_price}")
    print(f"Fulfilled: {report.fulfilled_count}  Skipped: {report.skipped_count}  Failed: {report.failed_count}")
    for attempt in report.attempts:
        print(f"  - {attempt.order_id}: {attempt.outcome.value} {attempt.reason}")
    return 0


def cmd_import_prices(settings: Settings, args) -> int:
    services = build_services(settings)
    df = read_price_sheet(args.path, args.path)
    print(f"\n📋 Importing {len(df)} price rows from {args.path}...")
    summary = import_prices(df, services.ingestor)
    for row in summary["results"]:
        if row["status"] == "success":
            print(f"  ✅ Row {row['row']}: {row['productId']} -> {row['newPrice']} (fulfilled {row['fulfilled']})")
        else:
            print(f"  ❌ Row {row['row']}: {row['error']}")
    print(f"\nSucceeded: {summary['success_count']}  Failed: {summary['failed_count']}")
    return 0 if summary["failed_count"] == 0 else 1


def cmd_expire(settings: Settings, args) -> int:
    services = build_services(settings)
    result = services.sweeper.sweep()
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def cmd_serve(settings: Settings, args) -> int:
    app = create_app(settings)
    app.run(debug=settings.DEBUG, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Price-drop buy orders")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database schema").set_defaults(func=cmd_init_db)

    p = sub.add_parser("add-product", help="Register a product")
    p.add_argument("--price", required=True)
    p.add_argument("--title")
    p.add_argument("--currency")
    p.add_argument("--merchant-id")
    p.add_argument("--product-id")
    p.add_argument("--platform", choices=[pl.value for pl in Platform], default=Platform.MANUAL.value)
    p.add_argument("--external-id")
    p.set_defaults(func=cmd_add_product)

    p = sub.add_parser("update-price", help="Apply a manual price change")
    p.add_argument("product_id")
    p.add_argument("price")
    p.set_defaults(func=cmd_update_price)

    p = sub.add_parser("import-prices", help="Bulk price changes from CSV/Excel (ProductId, NewPrice[, Currency])")
    p.add_argument("path")
    p.set_defaults(func=cmd_import_prices)

    sub.add_parser("expire", help="Expire overdue monitoring orders").set_defaults(func=cmd_expire)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=5000)
    p.set_defaults(func=cmd_serve)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    configure_logging(settings.LOG_LEVEL)
    try:
        return args.func(settings, args)
    except InputError as e:
        print(f"❌ {e}")
        return 2
    except CollaboratorUnavailableError as e:
        print(f"❌ Store unavailable: {e}")
        return 3


if __name__ == "__main__":
    sys.exit(main())
