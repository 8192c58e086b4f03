"""
Payment adapter wiring plus a fake escrow gateway for development and tests.
"""
import logging
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from adapters.base import PaymentAdapter
from config.settings import Settings
from core.models import CaptureResult, ReleaseResult

logger = logging.getLogger(__name__)


class FakeEscrowAdapter(PaymentAdapter):
    """
    Configurable fake escrow gateway. No external calls; every call is
    recorded in ``calls``.
    """

    def __init__(self, should_succeed: bool = True, failure_reason: str = "Card declined"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.calls = []

    def configure(self, should_succeed: bool, failure_reason: Optional[str] = None) -> None:
        self.should_succeed = should_succeed
        if failure_reason is not None:
            self.failure_reason = failure_reason

    def capture(
        self,
        escrow_reference: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> CaptureResult:
        self.calls.append({"method": "capture", "escrow_reference": escrow_reference, "amount": amount})
        if self.should_succeed:
            return CaptureResult(success=True, reference=f"fake_cap_{uuid4().hex[:12]}", gateway_status="succeeded")
        return CaptureResult(success=False, reference=escrow_reference, failure_reason=self.failure_reason)

    def release(self, escrow_reference: str) -> ReleaseResult:
        self.calls.append({"method": "release", "escrow_reference": escrow_reference})
        if self.should_succeed:
            return ReleaseResult(success=True, reference=escrow_reference, gateway_status="canceled")
        return ReleaseResult(success=False, reference=escrow_reference, failure_reason=self.failure_reason)


def build_payment_adapter(settings: Settings) -> PaymentAdapter:
    """Stripe when a key is configured, otherwise the fake gateway."""
    if settings.STRIPE_API_KEY:
        from adapters.stripe.escrow import StripeEscrowAdapter
        return StripeEscrowAdapter(
            api_key=settings.STRIPE_API_KEY,
            api_base=settings.STRIPE_API_BASE,
            timeout=settings.ADAPTER_TIMEOUT_SECONDS,
            max_attempts=settings.ADAPTER_MAX_ATTEMPTS,
        )
    logger.warning("STRIPE_API_KEY not set, using FakeEscrowAdapter")
    return FakeEscrowAdapter()
