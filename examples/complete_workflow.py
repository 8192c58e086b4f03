"""
Complete Integration Example

Walks one product through the whole buy order lifecycle using the
in-process fakes: two customers register target prices, the merchant
drops the price, one order fulfils, the other is swept at expiry.

Run from the repository root:
    python examples/complete_workflow.py
"""
import os
import tempfile
from datetime import timedelta
from decimal import Decimal

from adapters.discounts import FakeDiscountAdapter
from adapters.payments import FakeEscrowAdapter
from config.settings import Settings
from core.models import utcnow
from validator.buy_order import BuyOrderIntent
from validator.price_events import normalize_event
from web_app import build_services


def complete_workflow_example():
    print("=" * 70)
    print("COMPLETE PRICE DROP WORKFLOW EXAMPLE")
    print("=" * 70)

    # ========================================================================
    # STEP 1: Wire services against a throwaway database
    # ========================================================================
    print("\n[STEP 1] Wiring services...")

    settings = Settings()
    settings.DATABASE_PATH = os.path.join(tempfile.mkdtemp(), "workflow.db")
    settings.DEFAULT_MERCHANT_ID = "merchant-demo"

    payments = FakeEscrowAdapter()
    services = build_services(settings, payment_adapter=payments, discount_adapter=FakeDiscountAdapter())
    print(f"✅ Database at {services.db_path}")

    # ========================================================================
    # STEP 2: Register a product
    # ========================================================================
    print("\n[STEP 2] Registering product...")

    product = services.product_store.create_product(
        merchant_id="merchant-demo",
        current_price=Decimal("120.00"),
        currency="GBP",
        title="Waterproof Jacket",
        product_id="jacket-1",
    )
    print(f"✅ {product.title} listed at {product.current_price} {product.currency}")

    # ========================================================================
    # STEP 3: Customers place buy orders
    # ========================================================================
    print("\n[STEP 3] Placing buy orders...")

    escrow_order = services.intake.create(BuyOrderIntent(
        productId=product.id, customerId="alice", targetPrice="100", escrowReference="pi_demo_alice",
    ))
    discount_order = services.intake.create(BuyOrderIntent(
        productId=product.id, customerId="bob", targetPrice="80",
    ))
    for order in (escrow_order, discount_order):
        print(f"✅ {order.customer_id}: target {order.target_price}, status {order.status.value}")

    # ========================================================================
    # STEP 4: Merchant drops the price
    # ========================================================================
    print("\n[STEP 4] Price drops to 95.00...")

    event = normalize_event("manual", {"productId": product.id, "newPrice": "95.00"})
    result = services.ingestor.ingest(event)
    report = result.report
    print(f"Old price: {result.old_price}, new price: {result.new_price}")
    print(f"Fulfilled: {report.fulfilled_count}, skipped: {report.skipped_count}, failed: {report.failed_count}")
    for attempt in report.attempts:
        print(f"  {attempt.order_id}: {attempt.outcome.value} {attempt.side_effects}")

    # ========================================================================
    # STEP 5: Redelivered event is a no-op for fulfilled orders
    # ========================================================================
    print("\n[STEP 5] Redelivering the same event...")

    again = services.ingestor.ingest(event)
    print(f"Fulfilled on redelivery: {again.report.fulfilled_count}")

    # ========================================================================
    # STEP 6: Expiry sweep
    # ========================================================================
    print("\n[STEP 6] Sweeping a month later...")

    sweep = services.sweeper.sweep(utcnow() + timedelta(days=settings.DEFAULT_ORDER_EXPIRY_DAYS + 1))
    print(f"Expired: {sweep.expired}")

    # ========================================================================
    # STEP 7: Inspect notifications
    # ========================================================================
    print("\n[STEP 7] Notifications...")

    for user in ("alice", "bob", "merchant-demo"):
        kinds = [n["kind"] for n in services.notification_sink.list_for_user(user)]
        print(f"  {user}: {kinds}")

    print(f"\nGateway calls: {payments.calls}")
    print("\n" + "=" * 70)


if __name__ == "__main__":
    complete_workflow_example()
