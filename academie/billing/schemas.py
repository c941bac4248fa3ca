"""
Pydantic schemas for Hotmart postbacks.

Only the fields the membership flow reads are modelled; everything else in
the postback is ignored. Every field is optional so a partial payload
parses and is then classified (or dropped) by HotmartEventIngestor.
"""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic import model_validator


class HotmartModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def null_to_empty(cls, data):
        # Hotmart sends null for sections it has no data for
        return {} if data is None else data


class HotmartBuyer(HotmartModel):
    email: str = ""
    name: str = ""
    checkout_phone: str = ""

    @field_validator("email", "name", "checkout_phone", mode="before")
    @classmethod
    def none_to_blank(cls, value):
        return "" if value is None else str(value)

    @property
    def normalized_email(self) -> str:
        return self.email.strip().lower()


class HotmartPrice(HotmartModel):
    value: float = 0
    currency_value: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def none_to_zero(cls, value):
        return 0 if value is None else value


class HotmartPurchase(HotmartModel):
    transaction: str | None = None
    status: str = ""
    price: HotmartPrice = Field(default_factory=HotmartPrice)


class HotmartProduct(HotmartModel):
    id: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        return "" if value is None else str(value)


class HotmartData(HotmartModel):
    buyer: HotmartBuyer = Field(default_factory=HotmartBuyer)
    purchase: HotmartPurchase = Field(default_factory=HotmartPurchase)
    product: HotmartProduct = Field(default_factory=HotmartProduct)


class HotmartPostback(HotmartModel):
    """Hotmart webhook body (postback v2)."""

    event: str = ""
    hottok: str | None = None
    data: HotmartData = Field(default_factory=HotmartData)
