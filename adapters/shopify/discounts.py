"""
Shopify discount minting: one price rule plus one discount code per
buy order, limited to a single use on the entitled product.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

import requests

from adapters.http_session import request_with_retry
from core.exceptions import DiscountIssuanceError

logger = logging.getLogger(__name__)


class ShopifyDiscountClient:
    """Admin REST API client for price rules and discount codes."""

    platform = "shopify"

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2023-10",
        timeout: float = 5,
        max_attempts: int = 2,
    ):
        if not store_domain or not access_token:
            raise ValueError("ShopifyDiscountClient requires store_domain and access_token")
        self.base_url = f"https://{store_domain}/admin/api/{api_version}"
        self.access_token = access_token
        self.timeout = timeout
        self.max_attempts = max_attempts

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }
        try:
            response = request_with_retry(
                "POST", url, json=payload, headers=headers,
                timeout=self.timeout, max_attempts=self.max_attempts,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise DiscountIssuanceError(f"Connection failed: {exc}") from exc

        if response.status_code not in (200, 201):
            logger.error(f"Shopify HTTP {response.status_code} on {path}: {response.text}")
            raise DiscountIssuanceError(f"HTTP {response.status_code}: {response.text}")

        data = response.json()
        if "errors" in data:
            logger.error(f"Shopify error on {path}: {data['errors']}")
            raise DiscountIssuanceError(f"Shopify rejected: {data['errors']}")
        return data

    def create_discount(
        self,
        *,
        code: str,
        amount_off: Decimal,
        external_product_id: str,
        expires_at: datetime,
    ) -> Dict[str, str]:
        """
        Create a fixed-amount price rule entitled to one product and attach ``code``.

        Returns:
            {"platform_discount_id": <price rule id>, "platform_code_id": <discount code id>}

        Raises:
            DiscountIssuanceError: if either API call fails
        """
        price_rule = self._post(
            "/price_rules.json",
            {
                "price_rule": {
                    "title": f"Price Alert - {code}",
                    "value_type": "fixed_amount",
                    "value": f"-{amount_off}",
                    "customer_selection": "all",
                    "target_type": "line_item",
                    "target_selection": "entitled",
                    "entitled_product_ids": [int(external_product_id)],
                    "allocation_method": "each",
                    "once_per_customer": True,
                    "usage_limit": 1,
                    "starts_at": datetime.now(expires_at.tzinfo).isoformat(),
                    "ends_at": expires_at.isoformat(),
                }
            },
        )
        price_rule_id = price_rule.get("price_rule", {}).get("id")
        if price_rule_id is None:
            raise DiscountIssuanceError(f"No price_rule id in response: {price_rule}")

        discount = self._post(
            f"/price_rules/{price_rule_id}/discount_codes.json",
            {"discount_code": {"code": code}},
        )
        code_id = discount.get("discount_code", {}).get("id")
        if code_id is None:
            raise DiscountIssuanceError(f"No discount_code id in response: {discount}")

        logger.info(f"Shopify discount {code} created (price_rule={price_rule_id})")
        return {"platform_discount_id": str(price_rule_id), "platform_code_id": str(code_id)}
