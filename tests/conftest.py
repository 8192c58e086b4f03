"""
Shared fixtures: real SQLite stores under tmp_path plus fake adapters.
"""
from decimal import Decimal

import pytest

from adapters.discounts import FakeDiscountAdapter
from adapters.payments import FakeEscrowAdapter
from orchestrator.fulfillment import FulfillmentMatcher
from orchestrator.price_change import PriceChangeIngestor
from services.database import init_db
from services.notifications import SqliteNotificationSink
from services.order_store import SqliteOrderStore
from services.product_store import SqliteProductStore

MERCHANT_ID = "merchant-1"


@pytest.fixture
def db_path(tmp_path):
    return init_db(str(tmp_path / "buy_orders.db"))


@pytest.fixture
def product_store(db_path):
    return SqliteProductStore(db_path)


@pytest.fixture
def order_store(db_path):
    return SqliteOrderStore(db_path)


@pytest.fixture
def sink(db_path):
    return SqliteNotificationSink(db_path)


@pytest.fixture
def payments():
    return FakeEscrowAdapter()


@pytest.fixture
def discounts():
    return FakeDiscountAdapter()


@pytest.fixture
def matcher(order_store, product_store, payments, discounts, sink):
    return FulfillmentMatcher(order_store, product_store, payments, discounts, sink)


@pytest.fixture
def ingestor(product_store, matcher):
    return PriceChangeIngestor(product_store, matcher, default_merchant_id=MERCHANT_ID, default_currency="GBP")


@pytest.fixture
def product(product_store):
    return product_store.create_product(
        merchant_id=MERCHANT_ID,
        current_price=Decimal("100.00"),
        currency="GBP",
        title="Trail Shoe",
        product_id="prod-1",
    )


@pytest.fixture
def make_order(order_store, product):
    """Create a monitoring order on ``product``; pass escrow_reference for the escrow model."""
    counter = {"n": 0}

    def _make(target_price, escrow_reference=None, customer_id=None, **kwargs):
        counter["n"] += 1
        return order_store.create_order(
            merchant_id=MERCHANT_ID,
            product_id=product.id,
            customer_id=customer_id or f"customer-{counter['n']}",
            target_price=Decimal(str(target_price)),
            current_price=product.current_price,
            currency=product.currency,
            escrow_reference=escrow_reference,
            **kwargs,
        )

    return _make
