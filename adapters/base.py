"""
Collaborator contracts consumed by the fulfillment matcher.
Stores, payment gateways, storefront discount APIs and notification
sinks all implement one of these.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Any, Optional
from core.models import (
    BuyOrder,
    CaptureResult,
    DiscountResult,
    PaymentStatus,
    Platform,
    Product,
    ReleaseResult,
)


class OrderStore(ABC):
    """
    Persistent buy orders.
    Every status change must be a single conditional write so two
    concurrent matcher passes can never fulfill the same order twice.
    """

    @abstractmethod
    def find_monitoring_orders(self, product_id: str, max_target_price: Decimal) -> List[BuyOrder]:
        """
        Return orders for product_id with status 'monitoring' and
        target_price >= max_target_price (the new price).
        """
        pass

    @abstractmethod
    def try_transition_to_fulfilled(self, order_id: str) -> bool:
        """
        Move order_id from 'monitoring' to 'fulfilled'.
        Return True iff this call performed the transition.
        """
        pass

    @abstractmethod
    def revert_transition(self, order_id: str) -> None:
        """Undo try_transition_to_fulfilled; payment_status is left as it was."""
        pass

    @abstractmethod
    def record_fulfillment(
        self,
        order_id: str,
        payment_status: PaymentStatus,
        fulfilled_at: datetime,
        fulfilled_price: Decimal,
        escrow_reference: Optional[str] = None,
        discount_code: Optional[str] = None,
    ) -> None:
        """Stamp a transitioned order with the completed side effect."""
        pass

    @abstractmethod
    def set_payment_status(
        self,
        order_id: str,
        payment_status: PaymentStatus,
        expected: Optional[PaymentStatus] = None,
    ) -> bool:
        """Change payment_status only; when expected is given, only from that value."""
        pass

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[BuyOrder]:
        pass


class ProductStore(ABC):
    """Products and their append-only price history."""

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    def find_by_external_id(self, platform: Platform, external_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    def update_price(self, product_id: str, new_price: Decimal, source: str = "manual") -> Decimal:
        """
        Persist new_price as the product's current price and append a
        price history row in the same transaction.
        Return the previous price.
        """
        pass

    @abstractmethod
    def create_product(
        self,
        *,
        merchant_id: str,
        current_price,
        currency: str,
        title: str = "",
        platform: Platform = Platform.MANUAL,
        external_id: Optional[str] = None,
        product_id: Optional[str] = None,
        source: str = "manual",
    ) -> Product:
        pass

    @abstractmethod
    def update_title(self, product_id: str, title: str) -> None:
        pass


class PaymentAdapter(ABC):
    """
    Escrow gateway: funds are authorized when the buy order is created
    and captured only on fulfillment.
    Implementations return result values and must not raise for
    gateway-side failures.
    """

    @abstractmethod
    def capture(
        self,
        escrow_reference: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> CaptureResult:
        pass

    @abstractmethod
    def release(self, escrow_reference: str) -> ReleaseResult:
        """Cancel an authorization without capturing it."""
        pass


class DiscountAdapter(ABC):
    """Mints a one-time storefront discount code for a customer."""

    @abstractmethod
    def issue(self, product_id: str, customer_id: str, target_price: Decimal) -> DiscountResult:
        pass


class NotificationSink(ABC):
    """
    User-facing messages. Fire-and-forget: a failure here never changes a
    fulfillment outcome.
    """

    @abstractmethod
    def enqueue(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        pass
