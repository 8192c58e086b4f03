"""
Discount issuance for the code-based fulfillment model.

PlatformDiscountAdapter looks up the product, works out how much the
customer needs off the storefront price to pay target_price, and asks the
product's storefront client to mint a single-use code for that amount.
"""
import logging
import secrets
import string
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Optional

from adapters.base import DiscountAdapter, ProductStore
from config.settings import Settings
from core.exceptions import DiscountIssuanceError
from core.models import DiscountResult, Platform, utcnow

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_discount_code(prefix: str = "LIMINA") -> str:
    """Format: PREFIX-XXXXXX-XXXX"""
    part1 = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    part2 = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(4))
    return f"{prefix}-{part1}-{part2}"


class PlatformDiscountAdapter(DiscountAdapter):
    """
    Routes issuance to the storefront a product is sold on.

    clients maps a Platform to an object exposing
    ``create_discount(code=, amount_off=, external_product_id=, expires_at=)``
    (ShopifyDiscountClient, WooCommerceCouponClient).
    """

    def __init__(
        self,
        product_store: ProductStore,
        clients: Dict[Platform, object],
        code_prefix: str = "LIMINA",
        expiry_days: int = 30,
    ):
        self.product_store = product_store
        self.clients = {Platform(k): v for k, v in clients.items()}
        self.code_prefix = code_prefix
        self.expiry_days = expiry_days

    def issue(self, product_id: str, customer_id: str, target_price: Decimal) -> DiscountResult:
        product = self.product_store.get_product(product_id)
        if product is None:
            return DiscountResult(success=False, failure_reason=f"Product '{product_id}' not found")

        amount_off = product.current_price - Decimal(target_price)
        if amount_off <= 0:
            # Storefront price already at or below target; checkout needs no code
            logger.info(
                f"No discount needed for {customer_id} on {product_id}: "
                f"price {product.current_price} <= target {target_price}"
            )
            return DiscountResult(success=True, code=None, platform=product.platform.value)

        client = self.clients.get(product.platform)
        if client is None:
            return DiscountResult(
                success=False,
                platform=product.platform.value,
                failure_reason=f"No discount client for platform {product.platform.value}",
            )
        if not product.external_id:
            return DiscountResult(
                success=False,
                platform=product.platform.value,
                failure_reason=f"Product {product_id} is not synced with {product.platform.value}",
            )

        code = generate_discount_code(self.code_prefix)
        try:
            ids = client.create_discount(
                code=code,
                amount_off=amount_off,
                external_product_id=product.external_id,
                expires_at=utcnow() + timedelta(days=self.expiry_days),
            )
        except (DiscountIssuanceError, ValueError) as e:
            logger.error(f"Discount issuance failed for {customer_id} on {product_id}: {e}")
            return DiscountResult(success=False, platform=product.platform.value, failure_reason=str(e))

        return DiscountResult(
            success=True,
            code=code,
            platform=product.platform.value,
            platform_discount_id=ids.get("platform_discount_id"),
        )


class FakeDiscountAdapter(DiscountAdapter):
    """Configurable in-process issuer for development and tests."""

    def __init__(self, should_succeed: bool = True, failure_reason: str = "Storefront unavailable"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.calls = []

    def configure(self, should_succeed: bool, failure_reason: Optional[str] = None) -> None:
        self.should_succeed = should_succeed
        if failure_reason is not None:
            self.failure_reason = failure_reason

    def issue(self, product_id: str, customer_id: str, target_price: Decimal) -> DiscountResult:
        self.calls.append({"product_id": product_id, "customer_id": customer_id, "target_price": target_price})
        if self.should_succeed:
            return DiscountResult(success=True, code=generate_discount_code("FAKE"), platform="manual")
        return DiscountResult(success=False, failure_reason=self.failure_reason)


def build_discount_adapter(settings: Settings, product_store: ProductStore) -> DiscountAdapter:
    """Wire storefront clients for whichever platforms have credentials."""
    clients: Dict[Platform, object] = {}
    if settings.SHOPIFY_STORE_DOMAIN and settings.SHOPIFY_ACCESS_TOKEN:
        from adapters.shopify.discounts import ShopifyDiscountClient
        clients[Platform.SHOPIFY] = ShopifyDiscountClient(
            store_domain=settings.SHOPIFY_STORE_DOMAIN,
            access_token=settings.SHOPIFY_ACCESS_TOKEN,
            api_version=settings.SHOPIFY_API_VERSION,
            timeout=settings.ADAPTER_TIMEOUT_SECONDS,
            max_attempts=settings.ADAPTER_MAX_ATTEMPTS,
        )
    if settings.WOOCOMMERCE_URL and settings.WOOCOMMERCE_CONSUMER_KEY and settings.WOOCOMMERCE_CONSUMER_SECRET:
        from adapters.woocommerce.discounts import WooCommerceCouponClient
        clients[Platform.WOOCOMMERCE] = WooCommerceCouponClient(
            store_url=settings.WOOCOMMERCE_URL,
            consumer_key=settings.WOOCOMMERCE_CONSUMER_KEY,
            consumer_secret=settings.WOOCOMMERCE_CONSUMER_SECRET,
            timeout=settings.ADAPTER_TIMEOUT_SECONDS,
            max_attempts=settings.ADAPTER_MAX_ATTEMPTS,
        )
    if not clients:
        logger.warning("No storefront credentials configured; codes can only be skipped for at-target prices")
    return PlatformDiscountAdapter(
        product_store=product_store,
        clients=clients,
        code_prefix=settings.DISCOUNT_CODE_PREFIX,
        expiry_days=settings.DISCOUNT_CODE_EXPIRY_DAYS,
    )
