"""
Pydantic models for the Shopify draft order webhook and derived records.

Models:
  CustomAttribute    free-text key/value pair on a line item
  LineItem           one product line of a draft order
  Customer           customer snapshot embedded in the webhook payload
  DraftOrder         the webhook body (draft_orders/create)
  Advisor            account executive resolved from customer metafields
  AdjustedLineItem   line item after decoration surcharges are applied
  LineBreakdown      per-line base/decoration/total split used by emails

Shopify sends many more fields than we model; unknown fields are ignored.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, StrictStr

ADVISOR_ROLE = "Ejecutivo de Cuenta"

# Customer id used for the placeholder synthesized from a bare order email.
PLACEHOLDER_CUSTOMER_ID = 0


class CustomAttribute(BaseModel):
    """
    A line item attribute.

    GraphQL payloads use {"key", "value"} (customAttributes); REST webhook
    payloads use {"name", "value"} (properties). Both are accepted.
    """
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    key: str = Field(default="", validation_alias=AliasChoices("key", "name"))
    value: Optional[str] = None


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    title: str = ""
    quantity: int = Field(default=1, ge=1)
    price: Decimal = Decimal("0")  # unit price as sent by Shopify
    sku: Optional[str] = None
    variant_title: Optional[str] = None
    properties: list[CustomAttribute] = []
    custom_attributes: list[CustomAttribute] = Field(
        default_factory=list,
        validation_alias=AliasChoices("customAttributes", "custom_attributes"),
    )

    @property
    def attributes(self) -> list[CustomAttribute]:
        """All free-text attributes, GraphQL-style first."""
        return [*self.custom_attributes, *self.properties]


class Customer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    currency: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DraftOrder(BaseModel):
    """
    Draft order webhook body.

    Only id, name, email and line_items are structurally required; the
    remaining fields are optional so partial test payloads still validate.
    """
    model_config = ConfigDict(extra="ignore")

    id: StrictInt
    name: StrictStr
    email: StrictStr
    line_items: list[LineItem]
    currency: str = "MXN"
    note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    total_price: Optional[Decimal] = None
    subtotal_price: Optional[Decimal] = None
    total_tax: Optional[Decimal] = None
    customer: Optional[Customer] = None


class Advisor(BaseModel):
    id: int
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    role: str = ADVISOR_ROLE


class AdjustedLineItem(BaseModel):
    """
    A line item after decoration pricing.

    price already includes the per-unit decoration surcharge; the base price
    is recovered as price - decoration_price.
    """
    title: str
    quantity: int
    price: Decimal
    decoration_price: Decimal = Decimal("0")

    @property
    def base_price(self) -> Decimal:
        return self.price - self.decoration_price


class LineBreakdown(BaseModel):
    title: str
    quantity: int
    base_price: Decimal
    decoration_price: Decimal
    total_base: Decimal
    total_decoration: Decimal
    line_total: Decimal
    unit_price: Decimal
