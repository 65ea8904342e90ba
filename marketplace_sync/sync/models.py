"""
Transient sync data shapes: normalized orders, invoice requests, settings and results.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


class BuyerAddress(BaseModel):
    """Delivery address of the buyer; every field may be absent on the wire."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    street: Optional[str] = None
    zip_code: Optional[str] = None
    city: Optional[str] = None
    country_code: Optional[str] = None


class LineItem(BaseModel):
    """One purchased offer within an order."""

    external_id: Optional[str] = None
    offer_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)


class NormalizedOrder(BaseModel):
    """Marketplace order translated into the shape the sync works with."""

    external_id: str = Field(min_length=1)
    number: str = Field(min_length=1)
    buyer_id: str = Field(min_length=1)
    buyer_email: Optional[str] = None
    address: BuyerAddress = Field(default_factory=BuyerAddress)
    total: Optional[Decimal] = None
    line_items: list[LineItem] = Field(min_length=1)
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    source: Optional[str] = None

    @property
    def buyer_name(self) -> str:
        """Full name from the delivery address, falling back to the buyer login."""
        parts = [self.address.first_name, self.address.last_name]
        name = " ".join(p.strip() for p in parts if p and p.strip())
        return name or self.buyer_id


class IntegrationSettings(BaseModel):
    """
    Per-integration settings, persisted as camelCase JSON.

    Every key is optional; missing keys take the defaults below.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    auto_generate_invoices: bool = True
    invoice_template_id: Optional[str] = None
    sync_frequency_minutes: int = Field(default=60, gt=0)
    auto_mark_as_paid: bool = False
    auto_create_customer: bool = True
    auto_create_product: bool = True
    default_vat_rate: Decimal = Field(default=Decimal("23"), ge=0, le=100)
    order_source_filter: Optional[list[str]] = None
    sync_schedule: Optional[str] = None

    @field_serializer("default_vat_rate")
    def _serialize_vat_rate(self, value: Decimal) -> float:
        return float(value)

    @classmethod
    def from_raw(cls, raw: Optional[dict[str, Any]]) -> "IntegrationSettings":
        return cls.model_validate(raw or {})

    def to_raw(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class InvoiceItemInput(BaseModel):
    product_id: Optional[str] = None
    description: str
    quantity: int = Field(gt=0)
    unit_price: Decimal
    vat_rate: Decimal


class InvoiceCreateInput(BaseModel):
    """Request handed to the invoice-creation collaborator."""

    company_id: str
    customer_id: str
    invoice_type: str = "standard"
    issue_date: date
    due_date: date
    items: list[InvoiceItemInput] = Field(min_length=1)
    notes: Optional[str] = None
    template_id: Optional[str] = None
    external_order_id: Optional[str] = None
    mark_as_paid: bool = False
    currency: Optional[str] = None


class SyncResult(BaseModel):
    """Outcome of one sync pass, or of a retried sequence of passes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    orders_processed: int = 0
    invoices_created: int = 0
    errors: list[str] = Field(default_factory=list)
    cancelled: bool = False
