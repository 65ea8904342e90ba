"""
Database models for marketplace order ingestion.

All models use SQLAlchemy 2.0 declarative base with type hints.
Customers, products and invoices belong to the invoicing domain; only the
columns the sync needs are modelled here.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace_sync.db.base import Base, IdMixin, TimestampMixin

JSONType = JSON().with_variant(JSONB(), "postgresql")


class MarketplaceIntegration(Base, IdMixin, TimestampMixin):
    """
    OAuth credentials, health and settings for one marketplace account of a tenant user.

    Tokens are stored encrypted (see TokenCipher).
    """

    __tablename__ = "marketplace_integrations"

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    company_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, comment="Company invoices are issued for"
    )
    external_account_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    access_token: Mapped[str] = mapped_column(Text, nullable=False, comment="Encrypted access token")
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False, comment="Encrypted refresh token")
    token_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    settings: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    __table_args__ = (Index("idx_integrations_tenant_user", "tenant_id", "user_id"),)


class Customer(Base, IdMixin, TimestampMixin):
    """
    Invoice recipient. Marketplace buyers are keyed by their login.
    """

    __tablename__ = "customers"

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    company_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    external_buyer_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    billing_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    billing_postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    billing_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    billing_country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    customer_type: Mapped[str] = mapped_column(String(20), nullable=False, default="individual")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("tenant_id", "external_buyer_id"),)


class Product(Base, IdMixin, TimestampMixin):
    """
    Catalogue item. Marketplace offers are keyed by their offer id.
    """

    __tablename__ = "products"

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    company_id: Mapped[str] = mapped_column(String(36), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    external_product_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("tenant_id", "external_product_id"),)


class Invoice(Base, IdMixin, TimestampMixin):
    """
    Issued invoice. ``external_order_id`` links it to the marketplace order it came from.

    At most one invoice per (tenant, external order id).
    """

    __tablename__ = "invoices"

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    company_id: Mapped[str] = mapped_column(String(36), nullable=False)
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id"), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_type: Mapped[str] = mapped_column(String(20), nullable=False, default="standard")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="issued")
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total_net: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_vat: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_gross: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    template_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    external_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    items: Mapped[list["InvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_order_id"),
        UniqueConstraint("tenant_id", "invoice_number"),
        Index("idx_invoices_tenant_issue_date", "tenant_id", "issue_date"),
    )


class InvoiceItem(Base, IdMixin):
    """One invoice line."""

    __tablename__ = "invoice_items"

    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id"), nullable=False, index=True)
    product_id: Mapped[Optional[str]] = mapped_column(ForeignKey("products.id"), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="items")
