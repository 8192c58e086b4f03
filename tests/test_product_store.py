"""
Tests for the SQLite product store and its price history
"""
import sqlite3
from decimal import Decimal

import pytest

from core.exceptions import OrderStoreError, ProductNotFoundError
from core.models import Platform
from services.database import connect


class TestProducts:

    def test_create_and_get(self, product_store, product):
        stored = product_store.get_product(product.id)

        assert stored.current_price == Decimal("100.00")
        assert stored.currency == "GBP"
        assert stored.platform == Platform.MANUAL
        assert stored.title == "Trail Shoe"

    def test_zero_decimal_currency(self, product_store):
        p = product_store.create_product(merchant_id="m", current_price="1500", currency="jpy")

        assert p.currency == "JPY"
        assert p.current_price == Decimal("1500")

    def test_find_by_external_id(self, product_store):
        p = product_store.create_product(
            merchant_id="m", current_price="10", currency="USD",
            platform=Platform.SHOPIFY, external_id="632910392",
        )

        assert product_store.find_by_external_id(Platform.SHOPIFY, "632910392").id == p.id
        assert product_store.find_by_external_id(Platform.WOOCOMMERCE, "632910392") is None

    def test_deleted_products_hidden(self, product_store, product):
        assert product_store.mark_deleted(product.id) is True

        assert product_store.get_product(product.id) is None
        assert product_store.mark_deleted(product.id) is False


class TestUpdatePrice:

    def test_returns_old_price_and_appends_history(self, product_store, product):
        old = product_store.update_price(product.id, Decimal("85.50"), source="shopify")

        assert old == Decimal("100.00")
        assert product_store.get_product(product.id).current_price == Decimal("85.50")
        history = product_store.price_history(product.id)
        assert [h.price for h in history] == [Decimal("100.00"), Decimal("85.50")]
        assert history[-1].source == "shopify"

    def test_unknown_product(self, product_store):
        with pytest.raises(ProductNotFoundError):
            product_store.update_price("nope", Decimal("1"))

    def test_rounds_to_currency_precision(self, product_store, product):
        product_store.update_price(product.id, Decimal("19.995"))

        assert product_store.get_product(product.id).current_price == Decimal("20.00")


class TestPriceHistoryAppendOnly:

    def test_history_rows_cannot_be_updated(self, db_path, product):
        with pytest.raises(OrderStoreError):
            with connect(db_path) as conn:
                conn.execute("UPDATE price_history SET price_minor = 1")

    def test_history_rows_cannot_be_deleted(self, db_path, product):
        with pytest.raises(OrderStoreError):
            with connect(db_path) as conn:
                conn.execute("DELETE FROM price_history")

        conn = sqlite3.connect(db_path)
        try:
            assert conn.execute("SELECT COUNT(*) FROM price_history").fetchone()[0] == 1
        finally:
            conn.close()
