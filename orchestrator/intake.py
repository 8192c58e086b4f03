"""
Buy order intake and cancellation.

An order whose target is already met at creation is stored fulfilled and
its escrow is captured straight away; it never enters monitoring.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from adapters.base import NotificationSink, PaymentAdapter, ProductStore
from core.exceptions import OrderNotCancellableError, OrderNotFoundError, ProductNotFoundError
from core.models import BuyOrder, NotificationKind, OrderStatus, PaymentStatus, utcnow
from services.order_store import SqliteOrderStore
from validator.buy_order import BuyOrderIntent

logger = logging.getLogger(__name__)


class BuyOrderIntake:

    def __init__(
        self,
        order_store: SqliteOrderStore,
        product_store: ProductStore,
        payment_adapter: PaymentAdapter,
        notification_sink: NotificationSink,
        expiry_days: int = 30,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.order_store = order_store
        self.product_store = product_store
        self.payment_adapter = payment_adapter
        self.notification_sink = notification_sink
        self.expiry_days = expiry_days
        self.clock = clock or utcnow

    def create(self, intent: BuyOrderIntent) -> BuyOrder:
        """
        Persist a buy order against the product's current price.

        Raises:
            ProductNotFoundError: If intent.product_id is unknown
        """
        product = self.product_store.get_product(intent.product_id)
        if product is None:
            raise ProductNotFoundError(f"Product '{intent.product_id}' not found")

        now = self.clock()
        order = self.order_store.create_order(
            merchant_id=product.merchant_id,
            product_id=product.id,
            customer_id=intent.customer_id,
            target_price=intent.target_price,
            current_price=product.current_price,
            currency=product.currency,
            expires_at=now + timedelta(days=intent.expires_in_days or self.expiry_days),
            escrow_reference=intent.escrow_reference,
        )
        if order.status != OrderStatus.FULFILLED:
            return order

        if order.has_escrow:
            try:
                result = self.payment_adapter.capture(order.escrow_reference, product.current_price, order.currency)
                ok, detail = result.success, result.failure_reason
            except Exception as e:
                ok, detail = False, str(e)
            if ok:
                self.order_store.set_payment_status(order.id, PaymentStatus.CAPTURED, expected=PaymentStatus.AUTHORIZED)
            else:
                logger.warning(f"Immediate capture for buy order {order.id} failed: {detail}")
                self.order_store.set_payment_status(order.id, PaymentStatus.FAILED, expected=PaymentStatus.AUTHORIZED)

        payload = {
            "orderId": order.id,
            "productId": product.id,
            "productTitle": product.title,
            "targetPrice": str(order.target_price),
            "fulfilledPrice": str(order.fulfilled_price),
            "currency": order.currency,
            "fulfilledAt": order.fulfilled_at.isoformat() if order.fulfilled_at else None,
        }
        for user_id, kind in (
            (order.customer_id, NotificationKind.ORDER_FULFILLED),
            (order.merchant_id, NotificationKind.DEMAND_REALIZED),
        ):
            try:
                self.notification_sink.enqueue(user_id, kind.value, payload)
            except Exception as e:
                logger.warning(f"Notification {kind.value} for {user_id} failed: {e}")

        return self.order_store.get_order(order.id)

    def cancel(self, order_id: str) -> BuyOrder:
        """
        Cancel a pending or monitoring order and release its escrow.

        Raises:
            OrderNotFoundError: If order_id is unknown
            OrderNotCancellableError: If the order already left monitoring
        """
        order = self.order_store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Buy order '{order_id}' not found")
        if not self.order_store.cancel_order(order_id):
            raise OrderNotCancellableError(f"Buy order '{order_id}' is {order.status.value}")

        if order.has_escrow and order.payment_status == PaymentStatus.AUTHORIZED:
            try:
                result = self.payment_adapter.release(order.escrow_reference)
                ok, detail = result.success, result.failure_reason
            except Exception as e:
                ok, detail = False, str(e)
            if ok:
                self.order_store.set_payment_status(order_id, PaymentStatus.RELEASED, expected=PaymentStatus.AUTHORIZED)
            else:
                logger.warning(f"Escrow release for cancelled order {order_id} failed: {detail}")
                self.order_store.set_payment_status(order_id, PaymentStatus.FAILED, expected=PaymentStatus.AUTHORIZED)

        try:
            self.notification_sink.enqueue(
                order.customer_id,
                NotificationKind.ORDER_CANCELLED.value,
                {"orderId": order_id, "productId": order.product_id},
            )
        except Exception as e:
            logger.warning(f"Cancellation notification for {order_id} failed: {e}")

        logger.info(f"Buy order {order_id} cancelled")
        return self.order_store.get_order(order_id)
