"""
Tests for storefront discount clients and the platform router
"""
import re
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from adapters.discounts import PlatformDiscountAdapter, build_discount_adapter, generate_discount_code
from adapters.shopify.discounts import ShopifyDiscountClient
from adapters.woocommerce.discounts import WooCommerceCouponClient
from config.settings import Settings
from core.exceptions import DiscountIssuanceError
from core.models import Platform

EXPIRES = datetime(2030, 1, 31, tzinfo=timezone.utc)


def _response(status_code, body):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = body
    resp.text = str(body)
    return resp


class TestGenerateDiscountCode:

    def test_format(self):
        assert re.fullmatch(r"LIMINA-[A-Z0-9]{6}-[A-Z0-9]{4}", generate_discount_code())
        assert generate_discount_code("SHOP").startswith("SHOP-")


class TestShopifyDiscountClient:

    def test_price_rule_then_code(self):
        mock_session = Mock()
        mock_session.request.side_effect = [
            _response(201, {"price_rule": {"id": 507328175}}),
            _response(201, {"discount_code": {"id": 1054381139, "code": "LIMINA-ABCDEF-1234"}}),
        ]
        client = ShopifyDiscountClient(store_domain="shop.myshopify.com", access_token="shpat_x")

        with patch('adapters.http_session.get_session', return_value=mock_session):
            ids = client.create_discount(
                code="LIMINA-ABCDEF-1234", amount_off=Decimal("15.00"),
                external_product_id="632910392", expires_at=EXPIRES,
            )

        assert ids == {"platform_discount_id": "507328175", "platform_code_id": "1054381139"}
        first, second = mock_session.request.call_args_list
        assert first.args[1] == "https://shop.myshopify.com/admin/api/2023-10/price_rules.json"
        assert first.kwargs['headers']['X-Shopify-Access-Token'] == "shpat_x"
        rule = first.kwargs['json']['price_rule']
        assert rule['value_type'] == "fixed_amount"
        assert rule['value'] == "-15.00"
        assert rule['entitled_product_ids'] == [632910392]
        assert rule['usage_limit'] == 1
        assert second.args[1].endswith("/price_rules/507328175/discount_codes.json")

    def test_errors_body_raises(self):
        mock_session = Mock()
        mock_session.request.return_value = _response(200, {"errors": {"title": ["can't be blank"]}})
        client = ShopifyDiscountClient(store_domain="shop.myshopify.com", access_token="t")

        with patch('adapters.http_session.get_session', return_value=mock_session):
            with pytest.raises(DiscountIssuanceError):
                client.create_discount(code="C", amount_off=Decimal("1"), external_product_id="1", expires_at=EXPIRES)


class TestWooCommerceCouponClient:

    def test_coupon_payload(self):
        mock_session = Mock()
        mock_session.request.return_value = _response(201, {"id": 720, "code": "c"})
        client = WooCommerceCouponClient("https://store.example/", "ck_x", "cs_x")

        with patch('adapters.http_session.get_session', return_value=mock_session):
            ids = client.create_discount(
                code="LIMINA-ABCDEF-1234", amount_off=Decimal("4.50"),
                external_product_id="93", expires_at=EXPIRES,
            )

        assert ids["platform_discount_id"] == "720"
        args, kwargs = mock_session.request.call_args
        assert args[1] == "https://store.example/wp-json/wc/v3/coupons"
        assert kwargs['auth'] == ("ck_x", "cs_x")
        assert kwargs['json']['discount_type'] == "fixed_product"
        assert kwargs['json']['amount'] == "4.50"
        assert kwargs['json']['product_ids'] == [93]
        assert kwargs['json']['date_expires'] == "2030-01-31"

    def test_http_error_raises(self):
        mock_session = Mock()
        mock_session.request.return_value = _response(401, {"code": "woocommerce_rest_cannot_create"})
        client = WooCommerceCouponClient("https://store.example", "ck", "cs")

        with patch('adapters.http_session.get_session', return_value=mock_session):
            with pytest.raises(DiscountIssuanceError):
                client.create_discount(code="C", amount_off=Decimal("1"), external_product_id="1", expires_at=EXPIRES)


class TestPlatformDiscountAdapter:

    @pytest.fixture
    def shopify_product(self, product_store):
        return product_store.create_product(
            merchant_id="m", current_price="100", currency="USD",
            platform=Platform.SHOPIFY, external_id="632910392",
        )

    def test_routes_to_platform_client_with_amount_off(self, product_store, shopify_product):
        client = Mock()
        client.create_discount.return_value = {"platform_discount_id": "pr_1", "platform_code_id": "dc_1"}
        adapter = PlatformDiscountAdapter(product_store, {Platform.SHOPIFY: client}, code_prefix="TEST")

        result = adapter.issue(shopify_product.id, "cust-1", Decimal("88"))

        assert result.success is True
        assert result.code.startswith("TEST-")
        assert result.platform == "shopify"
        assert result.platform_discount_id == "pr_1"
        kwargs = client.create_discount.call_args.kwargs
        assert kwargs['amount_off'] == Decimal("12.00")
        assert kwargs['external_product_id'] == "632910392"

    def test_price_already_at_target_needs_no_code(self, product_store, shopify_product):
        client = Mock()
        adapter = PlatformDiscountAdapter(product_store, {Platform.SHOPIFY: client})

        result = adapter.issue(shopify_product.id, "cust-1", Decimal("100"))

        assert result.success is True
        assert result.code is None
        client.create_discount.assert_not_called()

    def test_missing_client_fails(self, product_store, shopify_product):
        adapter = PlatformDiscountAdapter(product_store, {})

        result = adapter.issue(shopify_product.id, "cust-1", Decimal("50"))

        assert result.success is False
        assert "No discount client" in result.failure_reason

    def test_client_error_becomes_failed_result(self, product_store, shopify_product):
        client = Mock()
        client.create_discount.side_effect = DiscountIssuanceError("HTTP 429: throttled")
        adapter = PlatformDiscountAdapter(product_store, {Platform.SHOPIFY: client})

        result = adapter.issue(shopify_product.id, "cust-1", Decimal("50"))

        assert result.success is False
        assert result.failure_reason == "HTTP 429: throttled"

    def test_unknown_product(self, product_store):
        result = PlatformDiscountAdapter(product_store, {}).issue("nope", "cust-1", Decimal("1"))

        assert result.success is False


class TestBuildDiscountAdapter:

    def test_clients_built_from_settings(self, product_store):
        settings = Settings()
        settings.SHOPIFY_STORE_DOMAIN = "shop.myshopify.com"
        settings.SHOPIFY_ACCESS_TOKEN = "shpat_x"
        settings.WOOCOMMERCE_URL = ""

        adapter = build_discount_adapter(settings, product_store)

        assert set(adapter.clients) == {Platform.SHOPIFY}
        assert isinstance(adapter.clients[Platform.SHOPIFY], ShopifyDiscountClient)
        assert adapter.code_prefix == settings.DISCOUNT_CODE_PREFIX
