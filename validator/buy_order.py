from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.exceptions import InvalidPriceError
from core.money import parse_price


class BuyOrderIntent(BaseModel):
    """Body of POST /api/buy-orders."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: str = Field(alias="productId")
    customer_id: str = Field(alias="customerId")
    target_price: Decimal = Field(alias="targetPrice")

    # Manual-capture PaymentIntent id; absent for the discount-code model
    escrow_reference: Optional[str] = Field(default=None, alias="escrowReference")
    expires_in_days: Optional[int] = Field(default=None, alias="expiresInDays")

    @field_validator("product_id", "customer_id", mode="before")
    def norm_id(cls, v):
        v = "" if v is None else str(v).strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("target_price", mode="before")
    def validate_target(cls, v):
        try:
            price = parse_price(v)
        except InvalidPriceError as e:
            raise ValueError(str(e)) from e
        if price <= 0:
            raise ValueError("targetPrice must be > 0")
        return price

    @field_validator("escrow_reference", mode="before")
    def norm_escrow(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("expires_in_days")
    def validate_expiry(cls, v: Optional[int]):
        if v is not None and not 1 <= v <= 365:
            raise ValueError("expiresInDays must be between 1 and 365")
        return v
