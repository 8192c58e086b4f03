"""
Fulfillment Matcher

Handles the complete flow when a product's price drops:
1. Validate the new price and the product
2. Select monitoring buy orders whose target is met
3. Claim each order with a conditional status write
4. Capture its escrow or issue a discount code
5. Revert the claim on failure, record and notify on success
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from adapters.base import DiscountAdapter, NotificationSink, OrderStore, PaymentAdapter, ProductStore
from core.exceptions import (
    CollaboratorUnavailableError,
    InputError,
    InvalidOfferError,
    ProductNotFoundError,
)
from core.models import (
    AttemptOutcome,
    BuyOrder,
    FulfillmentAttempt,
    FulfillmentReport,
    NotificationKind,
    PaymentStatus,
    Product,
    utcnow,
)
from core.money import discount_percentage, parse_price

logger = logging.getLogger(__name__)

ALREADY_HANDLED = "already_handled"


class FulfillmentMatcher:
    """
    Converts monitoring buy orders into fulfilled ones when a price drop
    meets their target.

    Retry safety: calling match_and_fulfill again with the same arguments
    fulfills nothing new. Orders already fulfilled are no longer selected,
    and an order claimed by a concurrent pass is reported as skipped.
    """

    def __init__(
        self,
        order_store: OrderStore,
        product_store: ProductStore,
        payment_adapter: PaymentAdapter,
        discount_adapter: DiscountAdapter,
        notification_sink: NotificationSink,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.order_store = order_store
        self.product_store = product_store
        self.payment_adapter = payment_adapter
        self.discount_adapter = discount_adapter
        self.notification_sink = notification_sink
        self.clock = clock or utcnow

    def _load_product(self, product_id: str) -> Product:
        try:
            product = self.product_store.get_product(product_id)
        except Exception as e:
            if isinstance(e, InputError):
                raise
            raise CollaboratorUnavailableError(f"Product store unavailable: {e}") from e
        if product is None:
            raise ProductNotFoundError(f"Product '{product_id}' not found")
        return product

    def _select(self, product_id: str, price: Decimal) -> List[BuyOrder]:
        try:
            return self.order_store.find_monitoring_orders(product_id, price)
        except Exception as e:
            raise CollaboratorUnavailableError(f"Order store unavailable: {e}") from e

    def match_and_fulfill(self, product_id: str, new_price) -> FulfillmentReport:
        """
        Fulfill every monitoring order for product_id whose target_price is
        at or above new_price.

        Args:
            product_id: Product whose price changed
            new_price: The price that was just persisted for the product

        Returns:
            FulfillmentReport with one attempt per selected order

        Raises:
            InvalidPriceError: If new_price is negative, non-finite or malformed
            ProductNotFoundError: If product_id is unknown
            CollaboratorUnavailableError: If the product read or order selection fails
        """
        # Step 1: Validate before anything is touched
        price = parse_price(new_price)
        product = self._load_product(product_id)

        # Step 2: Select
        orders = self._select(product_id, price)

        # Step 3: Attempt each order independently
        report = FulfillmentReport(product_id=product_id, new_price=price)
        for order in orders:
            report.attempts.append(self._attempt(order, product, price, order.target_price))

        logger.info(
            f"Price {price} {product.currency} for {product_id}: selected={len(orders)} "
            f"fulfilled={report.fulfilled_count} skipped={report.skipped_count} failed={report.failed_count}"
        )
        return report

    def push_offer(self, product_id: str, offer_price, order_ids: Optional[Iterable[str]] = None) -> FulfillmentReport:
        """
        Merchant-initiated offer: fulfill waiting demand at offer_price
        without changing the product's listed price.

        Args:
            product_id: Product the offer applies to
            offer_price: Price the merchant is willing to sell at
            order_ids: Restrict the offer to these buy orders (default: all eligible)

        Raises:
            InvalidPriceError: If offer_price is malformed
            InvalidOfferError: If offer_price is not below the current price
            ProductNotFoundError: If product_id is unknown
            CollaboratorUnavailableError: If the stores cannot be read
        """
        price = parse_price(offer_price)
        product = self._load_product(product_id)
        if price >= product.current_price:
            raise InvalidOfferError(
                f"Offer price {price} must be below current price {product.current_price}"
            )

        orders = self._select(product_id, price)
        if order_ids is not None:
            wanted = set(order_ids)
            orders = [o for o in orders if o.id in wanted]

        report = FulfillmentReport(product_id=product_id, new_price=price)
        for order in orders:
            report.attempts.append(self._attempt(order, product, price, price))

        logger.info(
            f"Offer {price} {product.currency} on {product_id} "
            f"({discount_percentage(product.current_price, price)}% off): "
            f"fulfilled={report.fulfilled_count} skipped={report.skipped_count} failed={report.failed_count}"
        )
        return report

    # ------------------------------------------------
    # Per-order attempt
    # ------------------------------------------------

    def _attempt(self, order: BuyOrder, product: Product, price: Decimal, code_price: Decimal) -> FulfillmentAttempt:
        attempt = FulfillmentAttempt(order_id=order.id, outcome=AttemptOutcome.FAILED)
        try:
            if not self.order_store.try_transition_to_fulfilled(order.id):
                attempt.outcome = AttemptOutcome.SKIPPED
                attempt.reason = ALREADY_HANDLED
                return attempt
        except Exception as e:
            attempt.reason = f"transition_failed: {e}"
            logger.warning(f"Buy order {order.id}: {attempt.reason}")
            return attempt
        attempt.side_effects.append("transitioned")

        try:
            self._fulfill_claimed(order, product, price, code_price, attempt)
        except Exception as e:
            attempt.reason = f"unexpected_error: {e}"
            if "captured" in attempt.side_effects or "code_issued" in attempt.side_effects:
                # Money moved or a code exists; the claim must stand
                attempt.outcome = AttemptOutcome.FULFILLED
                logger.error(f"Buy order {order.id} paid but not recorded: {e}")
            else:
                attempt.outcome = AttemptOutcome.FAILED
                logger.warning(f"Buy order {order.id}: {attempt.reason}")
                self._revert(order, attempt)
        return attempt

    def _fulfill_claimed(
        self,
        order: BuyOrder,
        product: Product,
        price: Decimal,
        code_price: Decimal,
        attempt: FulfillmentAttempt,
    ) -> None:
        discount_code = None

        if order.has_escrow:
            try:
                result = self.payment_adapter.capture(order.escrow_reference, price, order.currency)
                ok, detail = result.success, result.failure_reason
            except Exception as e:
                ok, detail = False, str(e)
            if not ok:
                attempt.reason = f"payment_capture_failed: {detail}"
                logger.warning(f"Buy order {order.id}: {attempt.reason}")
                self._revert(order, attempt)
                return
            attempt.side_effects.append("captured")
            payment_status = PaymentStatus.CAPTURED
        else:
            try:
                result = self.discount_adapter.issue(order.product_id, order.customer_id, code_price)
                ok, detail = result.success, result.failure_reason
                discount_code = result.code
            except Exception as e:
                ok, detail = False, str(e)
            if not ok:
                attempt.reason = f"discount_issuance_failed: {detail}"
                logger.warning(f"Buy order {order.id}: {attempt.reason}")
                self._revert(order, attempt)
                return
            if discount_code:
                attempt.side_effects.append("code_issued")
                payment_status = PaymentStatus.CODE_ISSUED
            else:
                # Storefront price already meets the target; checkout needs no code
                attempt.side_effects.append("no_code_needed")
                payment_status = PaymentStatus.NONE

        fulfilled_at = self.clock()
        attempt.outcome = AttemptOutcome.FULFILLED
        attempt.reason = "no_code_needed" if payment_status == PaymentStatus.NONE else payment_status.value
        try:
            self.order_store.record_fulfillment(
                order.id,
                payment_status=payment_status,
                fulfilled_at=fulfilled_at,
                fulfilled_price=price,
                escrow_reference=order.escrow_reference,
                discount_code=discount_code,
            )
        except Exception as e:
            if payment_status == PaymentStatus.NONE:
                # Nothing moved; let the caller revert so the order stays eligible
                raise
            attempt.side_effects.append("record_failed")
            attempt.reason = f"record_failed: {e}"
            logger.error(f"Buy order {order.id} fulfilled ({payment_status.value}) but not recorded: {e}")
            self._mark_payment(order, payment_status)

        payload = {
            "orderId": order.id,
            "productId": order.product_id,
            "productTitle": product.title,
            "targetPrice": str(order.target_price),
            "fulfilledPrice": str(price),
            "currency": order.currency,
            "discountCode": discount_code,
            "fulfilledAt": fulfilled_at.isoformat(),
        }
        self._notify(order.customer_id, NotificationKind.ORDER_FULFILLED, payload, attempt)
        self._notify(order.merchant_id, NotificationKind.DEMAND_REALIZED, payload, attempt)

    def _revert(self, order: BuyOrder, attempt: FulfillmentAttempt) -> None:
        try:
            self.order_store.revert_transition(order.id)
            attempt.side_effects.append("reverted")
        except Exception as e:
            logger.error(f"Revert of buy order {order.id} failed, order left fulfilled without payment: {e}")
            self._mark_payment(order, PaymentStatus.FAILED)

    def _mark_payment(self, order: BuyOrder, payment_status: PaymentStatus) -> None:
        try:
            self.order_store.set_payment_status(order.id, payment_status)
        except Exception as e:
            logger.error(f"Could not mark buy order {order.id} payment as {payment_status.value}: {e}")

    def _notify(self, user_id: str, kind: NotificationKind, payload, attempt: FulfillmentAttempt) -> None:
        try:
            self.notification_sink.enqueue(user_id, kind.value, payload)
            attempt.side_effects.append(f"notified:{kind.value}")
        except Exception as e:
            logger.warning(f"Notification {kind.value} for {user_id} failed: {e}")
