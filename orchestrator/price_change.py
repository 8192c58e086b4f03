"""
Price Change Ingestor

Every price source (manual API, storefront webhooks, bulk import) goes
through ingest():
1. Resolve the product, creating a shadow product for unseen storefront ids
2. Persist the price and append price history
3. Run the fulfillment matcher at exactly the persisted price
"""
import logging
from typing import Tuple

from adapters.base import ProductStore
from core.exceptions import CollaboratorUnavailableError, InputError, OrderStoreError, ProductNotFoundError
from core.models import IngestResult, Product
from orchestrator.fulfillment import FulfillmentMatcher
from validator.price_events import PriceChangeEvent

logger = logging.getLogger(__name__)


class PriceChangeIngestor:
    """
    Single entry point from a price change to fulfilled buy orders.
    """

    def __init__(
        self,
        product_store: ProductStore,
        matcher: FulfillmentMatcher,
        default_merchant_id: str,
        default_currency: str = "GBP",
    ):
        """
        Args:
            product_store: Products and price history
            matcher: Matcher run after every persisted price
            default_merchant_id: Owner recorded on shadow products
            default_currency: Currency for shadow products when the event has none
        """
        self.product_store = product_store
        self.matcher = matcher
        self.default_merchant_id = default_merchant_id
        self.default_currency = default_currency

    def _resolve(self, event: PriceChangeEvent) -> Tuple[Product, bool]:
        if event.product_id is not None:
            product = self.product_store.get_product(event.product_id)
            if product is None:
                raise ProductNotFoundError(f"Product '{event.product_id}' not found")
            return product, False

        product = self.product_store.find_by_external_id(event.platform, event.external_id)
        if product is not None:
            return product, False

        # Unseen storefront product: record it so later events and buy orders can reference it
        product = self.product_store.create_product(
            merchant_id=self.default_merchant_id,
            current_price=event.new_price,
            currency=event.currency or self.default_currency,
            title=event.title or "",
            platform=event.platform,
            external_id=event.external_id,
            source=event.source,
        )
        logger.info(f"Shadow product {product.id} created for {event.platform.value}:{event.external_id}")
        return product, True

    def ingest(self, event: PriceChangeEvent) -> IngestResult:
        """
        Persist a price change and fulfill any buy orders it satisfies.

        Returns:
            IngestResult with the previous price and the matcher's report

        Raises:
            ProductNotFoundError: If event.product_id is unknown
            InputError: If event.currency differs from the product's currency
            CollaboratorUnavailableError: If a store cannot be reached
        """
        try:
            # Step 1: Resolve
            product, created = self._resolve(event)

            # Step 2: Persist
            if created:
                old_price = None
            else:
                if event.currency and event.currency.upper() != product.currency.upper():
                    raise InputError(
                        f"Price currency {event.currency} does not match product currency {product.currency}"
                    )
                old_price = self.product_store.update_price(product.id, event.new_price, source=event.source)
                if event.title and event.title != product.title:
                    self.product_store.update_title(product.id, event.title)

            persisted = self.product_store.get_product(product.id)
        except OrderStoreError as e:
            raise CollaboratorUnavailableError(f"Product store unavailable: {e}") from e
        if persisted is None:
            raise ProductNotFoundError(f"Product '{product.id}' not found")

        # Step 3: Match at the stored (currency-rounded) price
        report = self.matcher.match_and_fulfill(persisted.id, persisted.current_price)

        logger.info(
            f"Ingested {event.source} price for {persisted.id}: {old_price} -> {persisted.current_price}, "
            f"fulfilled {report.fulfilled_count}"
        )
        return IngestResult(
            product_id=persisted.id,
            old_price=old_price,
            new_price=persisted.current_price,
            created=created,
            report=report,
        )
