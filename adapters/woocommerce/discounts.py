"""
WooCommerce coupon minting via the wc/v3 REST API.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict

import requests

from adapters.http_session import request_with_retry
from core.exceptions import DiscountIssuanceError

logger = logging.getLogger(__name__)


class WooCommerceCouponClient:
    platform = "woocommerce"

    def __init__(
        self,
        store_url: str,
        consumer_key: str,
        consumer_secret: str,
        timeout: float = 5,
        max_attempts: int = 2,
    ):
        if not store_url or not consumer_key or not consumer_secret:
            raise ValueError("WooCommerceCouponClient requires store_url, consumer_key and consumer_secret")
        self.coupons_url = f"{store_url.rstrip('/')}/wp-json/wc/v3/coupons"
        self.auth = (consumer_key, consumer_secret)
        self.timeout = timeout
        self.max_attempts = max_attempts

    def create_discount(
        self,
        *,
        code: str,
        amount_off: Decimal,
        external_product_id: str,
        expires_at: datetime,
    ) -> Dict[str, str]:
        """
        Create a single-use fixed_product coupon for one product.

        Raises:
            DiscountIssuanceError: on connection failure or a non-201 response
        """
        payload = {
            "code": code,
            "discount_type": "fixed_product",
            "amount": str(amount_off),
            "individual_use": True,
            "product_ids": [int(external_product_id)],
            "usage_limit": 1,
            "usage_limit_per_user": 1,
            "date_expires": expires_at.date().isoformat(),
            "description": f"Price Alert - {amount_off} off",
        }
        try:
            response = request_with_retry(
                "POST", self.coupons_url, json=payload, auth=self.auth,
                timeout=self.timeout, max_attempts=self.max_attempts,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise DiscountIssuanceError(f"Connection failed: {exc}") from exc

        if response.status_code not in (200, 201):
            logger.error(f"WooCommerce HTTP {response.status_code}: {response.text}")
            raise DiscountIssuanceError(f"HTTP {response.status_code}: {response.text}")

        data = response.json()
        if "id" not in data:
            logger.error(f"Unexpected coupon response: {data}")
            raise DiscountIssuanceError("No coupon id in response")

        logger.info(f"WooCommerce coupon {code} created (id={data['id']})")
        return {"platform_discount_id": str(data["id"]), "platform_code_id": str(data["id"])}
