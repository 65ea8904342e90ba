"""
Unit tests for the SQLAlchemy repositories and the default invoice creator.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from conftest import COMPANY_ID, TENANT_ID
from marketplace_sync.db.models import Customer, Invoice, Product
from marketplace_sync.db.repositories import (
    DuplicateRecordError,
    SqlCustomerRepository,
    SqlIntegrationRepository,
    SqlInvoiceCreator,
    SqlInvoiceRepository,
    SqlProductRepository,
)
from marketplace_sync.sync.models import InvoiceCreateInput, InvoiceItemInput


def invoice_input(external_order_id: str = "O1", issue_date: date = date(2026, 10, 19), **kwargs):
    values = dict(
        company_id=COMPANY_ID,
        customer_id="cust-1",
        issue_date=issue_date,
        due_date=issue_date,
        items=[
            InvoiceItemInput(
                description="Widget", quantity=2, unit_price=Decimal("10.00"), vat_rate=Decimal("23")
            ),
            InvoiceItemInput(
                description="Book", quantity=1, unit_price=Decimal("39.99"), vat_rate=Decimal("5")
            ),
        ],
        external_order_id=external_order_id,
    )
    values.update(kwargs)
    return InvoiceCreateInput(**values)


class TestSqlInvoiceCreator:
    def test_totals_and_lines(self, session) -> None:
        invoice = SqlInvoiceCreator(session, currency="PLN").create_invoice(TENANT_ID, invoice_input())

        assert invoice.invoice_number == "INV/2026/10/0001"
        assert invoice.currency == "PLN"
        assert invoice.status == "issued"
        assert [item.position for item in invoice.items] == [1, 2]
        assert invoice.items[0].net_amount == Decimal("20.00")
        assert invoice.items[0].vat_amount == Decimal("4.60")
        assert invoice.items[0].gross_amount == Decimal("24.60")
        assert invoice.items[1].vat_amount == Decimal("2.00")
        assert invoice.total_net == Decimal("59.99")
        assert invoice.total_vat == Decimal("6.60")
        assert invoice.total_gross == Decimal("66.59")

    def test_numbering_per_tenant_and_month(self, session) -> None:
        creator = SqlInvoiceCreator(session, currency="PLN")

        first = creator.create_invoice(TENANT_ID, invoice_input("O1"))
        second = creator.create_invoice(TENANT_ID, invoice_input("O2"))
        next_month = creator.create_invoice(TENANT_ID, invoice_input("O3", issue_date=date(2026, 11, 2)))
        other_tenant = creator.create_invoice("tenant-2", invoice_input("O4"))

        assert first.invoice_number == "INV/2026/10/0001"
        assert second.invoice_number == "INV/2026/10/0002"
        assert next_month.invoice_number == "INV/2026/11/0001"
        assert other_tenant.invoice_number == "INV/2026/10/0001"

    def test_paid_flag(self, session) -> None:
        invoice = SqlInvoiceCreator(session, currency="PLN").create_invoice(
            TENANT_ID, invoice_input(mark_as_paid=True)
        )

        assert invoice.status == "paid"

    def test_duplicate_order_is_rejected(self, session) -> None:
        creator = SqlInvoiceCreator(session, currency="PLN")
        creator.create_invoice(TENANT_ID, invoice_input("O1"))

        with pytest.raises(DuplicateRecordError):
            creator.create_invoice(TENANT_ID, invoice_input("O1"))

        invoices = SqlInvoiceRepository(session)
        assert invoices.exists_for_order(TENANT_ID, "O1") is True
        assert invoices.exists_for_order("tenant-2", "O1") is False

    def test_same_order_id_in_other_tenant_is_allowed(self, session) -> None:
        creator = SqlInvoiceCreator(session, currency="PLN")
        creator.create_invoice(TENANT_ID, invoice_input("O1"))
        creator.create_invoice("tenant-2", invoice_input("O1"))

        assert SqlInvoiceRepository(session).exists_for_order("tenant-2", "O1")

    def test_stamp_external_order_id(self, session) -> None:
        invoice = SqlInvoiceCreator(session, currency="PLN").create_invoice(
            TENANT_ID, invoice_input(external_order_id=None)
        )
        invoices = SqlInvoiceRepository(session)

        invoices.stamp_external_order_id(invoice, "O9")

        assert invoices.exists_for_order(TENANT_ID, "O9")
        assert session.get(Invoice, invoice.id).external_order_id == "O9"


class TestNaturalKeys:
    def test_customer_unique_per_tenant_and_buyer(self, session) -> None:
        customers = SqlCustomerRepository(session)
        customers.save(
            Customer(tenant_id=TENANT_ID, company_id=COMPANY_ID, name="A", external_buyer_id="b1")
        )

        with pytest.raises(DuplicateRecordError):
            customers.save(
                Customer(tenant_id=TENANT_ID, company_id=COMPANY_ID, name="B", external_buyer_id="b1")
            )

        assert customers.find_by_external_id(TENANT_ID, "b1").name == "A"
        assert customers.find_by_external_id("tenant-2", "b1") is None

    def test_product_unique_per_tenant_and_offer(self, session) -> None:
        products = SqlProductRepository(session)

        def product() -> Product:
            return Product(
                tenant_id=TENANT_ID,
                company_id=COMPANY_ID,
                sku="ALLEGRO-P1",
                name="Widget",
                external_product_id="P1",
                unit_price=Decimal("10.00"),
                vat_rate=Decimal("23"),
            )

        products.save(product())
        with pytest.raises(DuplicateRecordError):
            products.save(product())


class TestIntegrationRepository:
    def test_lookup_and_listing(self, session, make_integration) -> None:
        active = make_integration(external_account_id="acc-1")
        make_integration(external_account_id="acc-2", is_active=False)
        make_integration(external_account_id="acc-3", tenant_id="tenant-2")
        repo = SqlIntegrationRepository(session)

        assert repo.get(active.id) is active
        assert repo.get("missing") is None
        assert repo.find_by_account(TENANT_ID, active.user_id, "acc-1") is active
        assert repo.find_by_account(TENANT_ID, "someone-else", "acc-1") is None
        assert {i.external_account_id for i in repo.list_active()} == {"acc-1", "acc-3"}
        assert {i.external_account_id for i in repo.list_by_tenant(TENANT_ID)} == {"acc-1", "acc-2"}

    def test_external_account_is_unique(self, make_integration) -> None:
        make_integration(external_account_id="acc-1")

        with pytest.raises(DuplicateRecordError):
            make_integration(external_account_id="acc-1", user_id="user-2")


class TestFailedWrites:
    def test_session_is_usable_after_a_database_error(self, session) -> None:
        customers = SqlCustomerRepository(session)
        engine = session.get_bind()

        failed: list[str] = []

        def fail_once(conn, cursor, statement, parameters, context, executemany) -> None:
            if not failed and statement.startswith("INSERT INTO customers"):
                failed.append(statement)
                raise OperationalError(statement, parameters, Exception("connection reset"))

        event.listen(engine, "before_cursor_execute", fail_once)
        try:
            with pytest.raises(OperationalError):
                customers.save(
                    Customer(
                        tenant_id=TENANT_ID, company_id=COMPANY_ID, name="A", external_buyer_id="b1"
                    )
                )
        finally:
            event.remove(engine, "before_cursor_execute", fail_once)

        customers.save(
            Customer(tenant_id=TENANT_ID, company_id=COMPANY_ID, name="B", external_buyer_id="b2")
        )
        assert customers.find_by_external_id(TENANT_ID, "b1") is None
        assert customers.find_by_external_id(TENANT_ID, "b2").name == "B"
