"""
Stripe escrow adapter.

Buy orders with escrow hold a manual-capture PaymentIntent. Fulfillment
captures it; expiry or cancellation cancels it.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from adapters.base import PaymentAdapter
from adapters.http_session import request_with_retry
from core.exceptions import PaymentCaptureError
from core.models import CaptureResult, ReleaseResult
from core.money import to_minor_units

logger = logging.getLogger(__name__)


class StripeEscrowAdapter(PaymentAdapter):
    """Captures and cancels Stripe PaymentIntents over the REST API."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://api.stripe.com",
        timeout: float = 5,
        max_attempts: int = 2,
    ):
        if not api_key:
            raise ValueError("StripeEscrowAdapter requires an API key")
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts

    def _post(self, path: str, data: Dict[str, Any], idempotency_key: str) -> Dict[str, Any]:
        """
        POST to Stripe and return the decoded PaymentIntent.

        Raises:
            PaymentCaptureError: on connection failure, HTTP error or a Stripe error body
        """
        url = f"{self.api_base}{path}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Idempotency-Key": idempotency_key,
        }
        try:
            response = request_with_retry(
                "POST",
                url,
                data=data,
                headers=headers,
                timeout=self.timeout,
                max_attempts=self.max_attempts,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise PaymentCaptureError(f"Connection failed: {exc}") from exc

        if response.status_code != 200:
            message = response.text
            try:
                message = response.json().get("error", {}).get("message") or message
            except ValueError:
                pass
            logger.error(f"Stripe HTTP {response.status_code} on {path}: {message}")
            raise PaymentCaptureError(f"HTTP {response.status_code}: {message}")

        try:
            return response.json()
        except ValueError as exc:
            raise PaymentCaptureError(f"Invalid JSON from Stripe: {response.text[:200]}") from exc

    def capture(
        self,
        escrow_reference: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> CaptureResult:
        """
        Capture a held PaymentIntent.

        When amount and currency are given, only that much is captured
        (the rest of the authorization is released by Stripe).
        """
        data: Dict[str, Any] = {}
        if amount is not None and currency:
            data["amount_to_capture"] = to_minor_units(amount, currency)

        try:
            intent = self._post(
                f"/v1/payment_intents/{escrow_reference}/capture",
                data,
                idempotency_key=f"capture-{escrow_reference}",
            )
        except PaymentCaptureError as e:
            return CaptureResult(success=False, reference=escrow_reference, failure_reason=str(e))

        status = intent.get("status")
        if status != "succeeded":
            logger.error(f"Capture of {escrow_reference} returned status {status}")
            return CaptureResult(
                success=False,
                reference=escrow_reference,
                gateway_status=status,
                failure_reason=f"PaymentIntent status {status}",
            )

        logger.info(f"Captured escrow {escrow_reference}")
        return CaptureResult(success=True, reference=intent.get("id", escrow_reference), gateway_status=status)

    def release(self, escrow_reference: str) -> ReleaseResult:
        try:
            intent = self._post(
                f"/v1/payment_intents/{escrow_reference}/cancel",
                {"cancellation_reason": "abandoned"},
                idempotency_key=f"cancel-{escrow_reference}",
            )
        except PaymentCaptureError as e:
            return ReleaseResult(success=False, reference=escrow_reference, failure_reason=str(e))

        status = intent.get("status")
        if status != "canceled":
            return ReleaseResult(
                success=False,
                reference=escrow_reference,
                gateway_status=status,
                failure_reason=f"PaymentIntent status {status}",
            )
        logger.info(f"Released escrow {escrow_reference}")
        return ReleaseResult(success=True, reference=escrow_reference, gateway_status=status)
