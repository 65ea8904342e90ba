"""
Builds invoice requests from orders and hands them to the invoice creator.
"""

from datetime import date, timedelta
from typing import Callable, Optional, Sequence

from marketplace_sync.core.logging import audit_logger, get_logger
from marketplace_sync.core.time import local_date, utcnow
from marketplace_sync.db.models import Customer, Invoice, Product
from marketplace_sync.db.repositories import (
    DuplicateRecordError,
    InvoiceCreator,
    InvoiceRepository,
)
from marketplace_sync.sync.errors import CreationError, DuplicateOrderError
from marketplace_sync.sync.models import (
    InvoiceCreateInput,
    InvoiceItemInput,
    LineItem,
    NormalizedOrder,
)

logger = get_logger(__name__)

DEFAULT_PAYMENT_TERMS_DAYS = 14


def _today() -> date:
    return local_date(utcnow())


class InvoiceAssembler:
    """One invoice per order, one line per order line item."""

    def __init__(
        self,
        creator: InvoiceCreator,
        invoices: InvoiceRepository,
        provider_name: str = "Allegro",
        payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS,
        today: Callable[[], date] = _today,
    ) -> None:
        self.creator = creator
        self.invoices = invoices
        self.provider_name = provider_name
        self.payment_terms_days = payment_terms_days
        self.today = today

    def build_input(
        self,
        company_id: str,
        order: NormalizedOrder,
        customer: Customer,
        resolved_items: Sequence[tuple[LineItem, Product]],
        template_id: Optional[str] = None,
        mark_as_paid: bool = False,
    ) -> InvoiceCreateInput:
        issue_date = self.today()
        return InvoiceCreateInput(
            company_id=company_id,
            customer_id=customer.id,
            invoice_type="standard",
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=self.payment_terms_days),
            items=[
                InvoiceItemInput(
                    product_id=product.id,
                    description=line_item.title,
                    quantity=line_item.quantity,
                    unit_price=line_item.unit_price,
                    vat_rate=product.vat_rate,
                )
                for line_item, product in resolved_items
            ],
            notes=f"Auto-generated from {self.provider_name} order #{order.number}",
            template_id=template_id,
            external_order_id=order.external_id,
            mark_as_paid=mark_as_paid,
        )

    def build_and_create(
        self,
        tenant_id: str,
        company_id: str,
        order: NormalizedOrder,
        customer: Customer,
        resolved_items: Sequence[tuple[LineItem, Product]],
        template_id: Optional[str] = None,
        mark_as_paid: bool = False,
    ) -> Invoice:
        """
        Create the invoice for ``order``.

        Raises:
            DuplicateOrderError: If storage already holds an invoice for the order
            CreationError: If the creator rejects the request for any other reason
        """
        data = self.build_input(
            company_id, order, customer, resolved_items, template_id, mark_as_paid
        )

        try:
            invoice = self.creator.create_invoice(tenant_id, data)
        except DuplicateRecordError as e:
            if self.invoices.exists_for_order(tenant_id, order.external_id):
                raise DuplicateOrderError(order.external_id) from e
            raise CreationError(f"Invoice creation failed: {e}") from e
        except Exception as e:
            raise CreationError(f"Invoice creation failed: {e}") from e

        if invoice.external_order_id != order.external_id:
            invoice = self.invoices.stamp_external_order_id(invoice, order.external_id)

        audit_logger.log_invoice_created(
            order.external_id, invoice.id, invoice.invoice_number, tenant_id
        )
        return invoice
