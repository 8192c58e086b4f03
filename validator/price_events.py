from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Hashable, List, Literal, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from core.exceptions import InputError, InvalidPriceError
from core.models import Platform, utcnow
from core.money import parse_price

PriceSource = Literal["shopify", "woocommerce", "manual", "import"]


def _price(v: Any) -> Decimal:
    # pydantic only turns ValueError into a validation error
    try:
        return parse_price(v)
    except InvalidPriceError as e:
        raise ValueError(str(e)) from e


class PriceChangeEvent(BaseModel):
    """A price change from any source, normalized for the ingestor."""

    source: PriceSource
    product_id: Optional[str] = None
    external_id: Optional[str] = None
    new_price: Decimal
    currency: Optional[str] = None
    title: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utcnow)

    @field_validator("new_price", mode="before")
    def validate_new_price(cls, v):
        return _price(v)

    @field_validator("product_id", "external_id", mode="before")
    def norm_id(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("currency")
    def norm_currency(cls, v: Optional[str]):
        if v is None:
            return None
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be a 3-letter ISO code")
        return v

    @model_validator(mode="after")
    def check_identity(self):
        if self.product_id is None and self.external_id is None:
            raise ValueError("either product_id or external_id is required")
        if self.external_id is not None and self.product_id is None and self.source in ("manual", "import"):
            raise ValueError(f"{self.source} price updates must reference a product_id")
        return self

    @property
    def platform(self) -> Platform:
        if self.source in ("shopify", "woocommerce"):
            return Platform(self.source)
        return Platform.MANUAL


class ShopifyVariant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: Decimal

    @field_validator("price", mode="before")
    def validate_price(cls, v):
        return _price(v)


class ShopifyProductWebhook(BaseModel):
    """products/create and products/update payload (fields we read)."""

    model_config = ConfigDict(extra="ignore")

    id: int
    title: str = ""
    variants: List[ShopifyVariant]

    @field_validator("variants")
    def require_variant(cls, v: List[ShopifyVariant]):
        if not v:
            raise ValueError("product has no variants")
        return v

    def to_event(self) -> PriceChangeEvent:
        return PriceChangeEvent(
            source="shopify",
            external_id=str(self.id),
            new_price=self.variants[0].price,
            title=self.title,
        )


class WooCommerceProductWebhook(BaseModel):
    """product.created and product.updated payload (fields we read)."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""
    price: Optional[str] = None
    regular_price: Optional[str] = None

    @field_validator("price", "regular_price", mode="before")
    def norm_price_str(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @model_validator(mode="after")
    def require_price(self):
        if self.price is None and self.regular_price is None:
            raise ValueError("product has neither price nor regular_price")
        _price(self.effective_price)
        return self

    @property
    def effective_price(self) -> str:
        return self.price if self.price is not None else self.regular_price

    def to_event(self) -> PriceChangeEvent:
        return PriceChangeEvent(
            source="woocommerce",
            external_id=str(self.id),
            new_price=self.effective_price,
            title=self.name,
        )


class ManualPriceUpdate(BaseModel):
    """Body of POST /api/products/update-price."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: str = Field(alias="productId")
    new_price: Decimal = Field(alias="newPrice")

    @field_validator("product_id", mode="before")
    def norm_product_id(cls, v):
        v = "" if v is None else str(v).strip()
        if not v:
            raise ValueError("productId is required")
        return v

    @field_validator("new_price", mode="before")
    def validate_new_price(cls, v):
        return _price(v)

    def to_event(self) -> PriceChangeEvent:
        return PriceChangeEvent(source="manual", product_id=self.product_id, new_price=self.new_price)


_NORMALIZERS = {
    "shopify": ShopifyProductWebhook,
    "woocommerce": WooCommerceProductWebhook,
    "manual": ManualPriceUpdate,
}


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else err["msg"]


def normalize_event(source: str, payload: Dict[str, Any]) -> PriceChangeEvent:
    """
    Turn a raw webhook or API payload into a PriceChangeEvent.

    Raises:
        InputError: unknown source or a payload that fails validation
    """
    model = _NORMALIZERS.get(source)
    if model is None:
        raise InputError(f"Unsupported price source: {source}")
    if not isinstance(payload, dict):
        raise InputError("Payload must be a JSON object")
    try:
        return model(**payload).to_event()
    except ValidationError as e:
        raise InputError(_first_error(e)) from e


class PriceUpdateRow(BaseModel):
    """One row of a bulk price import sheet."""

    ProductId: str
    NewPrice: Decimal
    Currency: Optional[str] = None

    @field_validator("ProductId", mode="before")
    def norm_product_id(cls, v):
        v = "" if v is None else str(v).strip()
        if not v:
            raise ValueError("ProductId is required")
        return v

    @field_validator("NewPrice", mode="before")
    def validate_new_price(cls, v):
        return _price(v)

    @field_validator("Currency", mode="before")
    def norm_currency(cls, v):
        if v is None:
            return None
        v = str(v).strip().upper()
        return v or None

    def to_event(self) -> PriceChangeEvent:
        return PriceChangeEvent(
            source="import",
            product_id=self.ProductId,
            new_price=self.NewPrice,
            currency=self.Currency,
        )


def validate_price_updates_df(
    df: pd.DataFrame,
) -> Tuple[List[Tuple[Hashable, PriceChangeEvent]], List[Tuple[Hashable, str]]]:
    """
    Validate a bulk price sheet.

    Returns:
    - events: (row_index, event) for every valid row
    - errors: list of (row_index, error_message)
    """
    events: List[Tuple[Hashable, PriceChangeEvent]] = []
    errors: List[Tuple[Hashable, str]] = []

    for idx, row in df.iterrows():
        data = {k: (None if pd.isna(v) else v) for k, v in row.to_dict().items()}
        try:
            events.append((idx, PriceUpdateRow(**data).to_event()))
        except ValidationError as e:
            errors.append((idx, e.errors()[0]["msg"]))

    return events, errors
