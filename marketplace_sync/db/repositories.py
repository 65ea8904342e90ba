"""
Repositories over the SQLAlchemy models.

The sync services only see the Protocols below; the Sql* classes are the
implementations wired in by the factory. Unique-key violations surface as
DuplicateRecordError so callers never depend on driver exceptions.
"""

from datetime import date
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace_sync.core.currency import (
    calculate_gross_from_net,
    calculate_tax_amount,
    round_currency,
)
from marketplace_sync.core.logging import get_logger
from marketplace_sync.db.models import (
    Customer,
    Invoice,
    InvoiceItem,
    MarketplaceIntegration,
    Product,
)
from marketplace_sync.sync.models import InvoiceCreateInput

logger = get_logger(__name__)

INVOICE_NUMBER_PREFIX = "INV"


class DuplicateRecordError(Exception):
    """A row with the same natural key already exists."""

    pass


class IntegrationRepository(Protocol):
    def get(self, integration_id: str) -> Optional[MarketplaceIntegration]: ...

    def find_by_account(
        self, tenant_id: str, user_id: str, external_account_id: str
    ) -> Optional[MarketplaceIntegration]: ...

    def list_active(self) -> list[MarketplaceIntegration]: ...

    def list_by_tenant(self, tenant_id: str) -> list[MarketplaceIntegration]: ...

    def save(self, integration: MarketplaceIntegration) -> MarketplaceIntegration: ...


class CustomerRepository(Protocol):
    def find_by_external_id(self, tenant_id: str, external_buyer_id: str) -> Optional[Customer]: ...

    def save(self, customer: Customer) -> Customer: ...


class ProductRepository(Protocol):
    def find_by_external_id(self, tenant_id: str, external_product_id: str) -> Optional[Product]: ...

    def save(self, product: Product) -> Product: ...


class InvoiceRepository(Protocol):
    def exists_for_order(self, tenant_id: str, external_order_id: str) -> bool: ...

    def stamp_external_order_id(self, invoice: Invoice, external_order_id: str) -> Invoice: ...


class InvoiceCreator(Protocol):
    def create_invoice(self, tenant_id: str, data: InvoiceCreateInput) -> Invoice: ...


def _commit(session: Session, instance: object) -> None:
    """
    Add and commit.

    Any failure rolls the session back so it stays usable for the next unit of work;
    a unique violation is re-raised as DuplicateRecordError.
    """
    session.add(instance)
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise DuplicateRecordError(str(e.orig)) from e
    except Exception:
        session.rollback()
        raise


class SqlIntegrationRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, integration_id: str) -> Optional[MarketplaceIntegration]:
        return self.session.get(MarketplaceIntegration, integration_id)

    def find_by_account(
        self, tenant_id: str, user_id: str, external_account_id: str
    ) -> Optional[MarketplaceIntegration]:
        stmt = select(MarketplaceIntegration).where(
            MarketplaceIntegration.tenant_id == tenant_id,
            MarketplaceIntegration.user_id == user_id,
            MarketplaceIntegration.external_account_id == external_account_id,
        )
        return self.session.scalars(stmt).first()

    def list_active(self) -> list[MarketplaceIntegration]:
        stmt = select(MarketplaceIntegration).where(MarketplaceIntegration.is_active.is_(True))
        return list(self.session.scalars(stmt))

    def list_by_tenant(self, tenant_id: str) -> list[MarketplaceIntegration]:
        stmt = (
            select(MarketplaceIntegration)
            .where(MarketplaceIntegration.tenant_id == tenant_id)
            .order_by(MarketplaceIntegration.created_at)
        )
        return list(self.session.scalars(stmt))

    def save(self, integration: MarketplaceIntegration) -> MarketplaceIntegration:
        _commit(self.session, integration)
        return integration


class SqlCustomerRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_external_id(self, tenant_id: str, external_buyer_id: str) -> Optional[Customer]:
        stmt = select(Customer).where(
            Customer.tenant_id == tenant_id,
            Customer.external_buyer_id == external_buyer_id,
        )
        return self.session.scalars(stmt).first()

    def save(self, customer: Customer) -> Customer:
        _commit(self.session, customer)
        return customer


class SqlProductRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_external_id(self, tenant_id: str, external_product_id: str) -> Optional[Product]:
        stmt = select(Product).where(
            Product.tenant_id == tenant_id,
            Product.external_product_id == external_product_id,
        )
        return self.session.scalars(stmt).first()

    def save(self, product: Product) -> Product:
        _commit(self.session, product)
        return product


class SqlInvoiceRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def exists_for_order(self, tenant_id: str, external_order_id: str) -> bool:
        stmt = select(Invoice.id).where(
            Invoice.tenant_id == tenant_id,
            Invoice.external_order_id == external_order_id,
        )
        return self.session.scalars(stmt).first() is not None

    def stamp_external_order_id(self, invoice: Invoice, external_order_id: str) -> Invoice:
        invoice.external_order_id = external_order_id
        _commit(self.session, invoice)
        return invoice


class SqlInvoiceCreator:
    """
    Default invoice-creation collaborator.

    Numbers invoices per tenant and month (INV/2026/10/0001), computes line and
    document totals, and writes the invoice with its lines in one transaction.
    """

    def __init__(self, session: Session, currency: str) -> None:
        self.session = session
        self.currency = currency

    def next_invoice_number(self, tenant_id: str, issue_date: date) -> str:
        prefix = f"{INVOICE_NUMBER_PREFIX}/{issue_date:%Y}/{issue_date:%m}/"
        stmt = select(func.count(Invoice.id)).where(
            Invoice.tenant_id == tenant_id,
            Invoice.invoice_number.like(f"{prefix}%"),
        )
        count = self.session.scalar(stmt) or 0
        return f"{prefix}{count + 1:04d}"

    def create_invoice(self, tenant_id: str, data: InvoiceCreateInput) -> Invoice:
        """
        Raises:
            DuplicateRecordError: If the tenant already has an invoice for the
                external order id (or the generated number collided)
        """
        invoice = Invoice(
            tenant_id=tenant_id,
            company_id=data.company_id,
            customer_id=data.customer_id,
            invoice_number=self.next_invoice_number(tenant_id, data.issue_date),
            invoice_type=data.invoice_type,
            status="paid" if data.mark_as_paid else "issued",
            issue_date=data.issue_date,
            due_date=data.due_date,
            currency=data.currency or self.currency,
            notes=data.notes,
            template_id=data.template_id,
            external_order_id=data.external_order_id,
        )

        total_net = total_vat = total_gross = Decimal("0")
        for position, item in enumerate(data.items, start=1):
            net = round_currency(item.unit_price * item.quantity)
            vat = calculate_tax_amount(net, item.vat_rate)
            gross = calculate_gross_from_net(net, item.vat_rate)
            invoice.items.append(
                InvoiceItem(
                    position=position,
                    product_id=item.product_id,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    vat_rate=item.vat_rate,
                    net_amount=net,
                    vat_amount=vat,
                    gross_amount=gross,
                )
            )
            total_net += net
            total_vat += vat
            total_gross += gross

        invoice.total_net = total_net
        invoice.total_vat = total_vat
        invoice.total_gross = total_gross

        _commit(self.session, invoice)
        logger.debug(
            f"Created invoice {invoice.invoice_number}",
            extra={"tenant_id": tenant_id, "invoice_id": invoice.id},
        )
        return invoice
