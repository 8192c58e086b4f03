"""
Expiry sweep for buy orders whose monitoring window has closed.
"""
import logging
from datetime import datetime
from typing import Optional

from adapters.base import NotificationSink, PaymentAdapter
from core.models import NotificationKind, PaymentStatus, SweepResult, utcnow
from services.order_store import SqliteOrderStore

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Expires overdue monitoring orders and releases their escrow."""

    def __init__(
        self,
        order_store: SqliteOrderStore,
        payment_adapter: PaymentAdapter,
        notification_sink: NotificationSink,
    ):
        self.order_store = order_store
        self.payment_adapter = payment_adapter
        self.notification_sink = notification_sink

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or utcnow()
        result = SweepResult()

        for order in self.order_store.find_expired(now):
            try:
                if not self.order_store.try_transition_to_expired(order.id, now):
                    # Fulfilled or cancelled since selection
                    continue
                result.expired.append(order.id)

                if order.has_escrow and order.payment_status == PaymentStatus.AUTHORIZED:
                    try:
                        release = self.payment_adapter.release(order.escrow_reference)
                        ok, detail = release.success, release.failure_reason
                    except Exception as e:
                        ok, detail = False, str(e)
                    if ok:
                        self.order_store.set_payment_status(order.id, PaymentStatus.RELEASED)
                        result.released.append(order.id)
                    else:
                        self.order_store.set_payment_status(order.id, PaymentStatus.FAILED)
                        result.release_failed.append((order.id, detail or "release failed"))
                        logger.warning(f"Escrow release for expired order {order.id} failed: {detail}")

                try:
                    self.notification_sink.enqueue(
                        order.customer_id,
                        NotificationKind.ORDER_EXPIRED.value,
                        {
                            "orderId": order.id,
                            "productId": order.product_id,
                            "targetPrice": str(order.target_price),
                            "currency": order.currency,
                            "expiresAt": order.expires_at.isoformat(),
                        },
                    )
                except Exception as e:
                    logger.warning(f"Expiry notification for {order.id} failed: {e}")
            except Exception as e:
                logger.error(f"Expiry of buy order {order.id} failed: {e}")

        logger.info(
            f"Expiry sweep at {now.isoformat()}: expired={len(result.expired)} "
            f"released={len(result.released)} release_failed={len(result.release_failed)}"
        )
        return result
