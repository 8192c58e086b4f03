"""
Core domain models shared across stores, adapters and the matcher.
"""
from enum import Enum
from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    """Buy order status."""
    PENDING = "pending"
    MONITORING = "monitoring"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    """Payment state of a buy order."""
    NONE = "none"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    RELEASED = "released"
    FAILED = "failed"
    CODE_ISSUED = "code_issued"


class AttemptOutcome(str, Enum):
    FULFILLED = "fulfilled"
    SKIPPED = "skipped"
    FAILED = "failed"


class Platform(str, Enum):
    """Where a product is sold."""
    SHOPIFY = "shopify"
    WOOCOMMERCE = "woocommerce"
    MANUAL = "manual"


class NotificationKind(str, Enum):
    ORDER_FULFILLED = "order_fulfilled"
    DEMAND_REALIZED = "demand_realized"
    ORDER_EXPIRED = "order_expired"
    ORDER_CANCELLED = "order_cancelled"


@dataclass
class Product:
    """A merchant catalog item with a mutable current price."""
    id: str
    merchant_id: str
    current_price: Decimal
    currency: str
    title: str = ""
    platform: Platform = Platform.MANUAL
    external_id: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass
class PriceHistoryEntry:
    product_id: str
    price: Decimal
    recorded_at: datetime
    source: str = "manual"


@dataclass
class BuyOrder:
    """A customer's conditional commitment to buy at or below target_price."""
    id: str
    merchant_id: str
    product_id: str
    customer_id: str
    target_price: Decimal
    current_price_at_creation: Decimal
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    expires_at: datetime
    fulfilled_at: Optional[datetime] = None
    escrow_reference: Optional[str] = None
    fulfilled_price: Optional[Decimal] = None
    discount_code: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    cancelled_at: Optional[datetime] = None

    @property
    def has_escrow(self) -> bool:
        return bool(self.escrow_reference)

    def to_dict(self) -> Dict[str, Any]:
        def ts(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "merchantId": self.merchant_id,
            "productId": self.product_id,
            "customerId": self.customer_id,
            "targetPrice": str(self.target_price),
            "currentPriceAtCreation": str(self.current_price_at_creation),
            "currency": self.currency,
            "status": self.status.value,
            "paymentStatus": self.payment_status.value,
            "expiresAt": ts(self.expires_at),
            "fulfilledAt": ts(self.fulfilled_at),
            "fulfilledPrice": None if self.fulfilled_price is None else str(self.fulfilled_price),
            "escrowReference": self.escrow_reference,
            "discountCode": self.discount_code,
            "createdAt": ts(self.created_at),
            "cancelledAt": ts(self.cancelled_at),
        }


@dataclass(frozen=True)
class CaptureResult:
    """Result of capturing (or releasing) an escrowed payment."""
    success: bool
    reference: Optional[str] = None
    gateway_status: Optional[str] = None
    failure_reason: Optional[str] = None


# Releasing an authorization reports the same fields as a capture
ReleaseResult = CaptureResult


@dataclass(frozen=True)
class DiscountResult:
    """Result of minting a discount code on a storefront."""
    success: bool
    code: Optional[str] = None
    platform: Optional[str] = None
    platform_discount_id: Optional[str] = None
    failure_reason: Optional[str] = None


@dataclass
class FulfillmentAttempt:
    """What happened to one buy order during a matcher pass."""
    order_id: str
    outcome: AttemptOutcome
    reason: str = ""
    side_effects: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "sideEffects": list(self.side_effects),
        }


@dataclass
class FulfillmentReport:
    """Outcome of one matcher pass over a product's monitoring orders."""
    product_id: str
    new_price: Decimal
    attempts: List[FulfillmentAttempt] = field(default_factory=list)

    def _count(self, outcome: AttemptOutcome) -> int:
        return sum(1 for a in self.attempts if a.outcome == outcome)

    @property
    def fulfilled_count(self) -> int:
        return self._count(AttemptOutcome.FULFILLED)

    @property
    def skipped_count(self) -> int:
        return self._count(AttemptOutcome.SKIPPED)

    @property
    def failed_count(self) -> int:
        return self._count(AttemptOutcome.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "newPrice": str(self.new_price),
            "fulfilledCount": self.fulfilled_count,
            "skippedCount": self.skipped_count,
            "failedCount": self.failed_count,
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass
class IngestResult:
    """Returned by the price change ingestor for HTTP responses and logs."""
    product_id: str
    old_price: Optional[Decimal]
    new_price: Decimal
    created: bool
    report: FulfillmentReport

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "oldPrice": None if self.old_price is None else str(self.old_price),
            "newPrice": str(self.new_price),
            "productCreated": self.created,
            "fulfillment": self.report.to_dict(),
        }


@dataclass
class SweepResult:
    expired: List[str] = field(default_factory=list)
    released: List[str] = field(default_factory=list)
    release_failed: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expiredCount": len(self.expired),
            "releasedCount": len(self.released),
            "releaseFailedCount": len(self.release_failed),
            "releaseFailures": [{"orderId": oid, "reason": r} for oid, r in self.release_failed],
        }
