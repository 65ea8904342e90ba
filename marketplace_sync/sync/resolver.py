"""
Find-or-create of the customers and products an order refers to.
"""

from decimal import Decimal

from marketplace_sync.core.logging import get_logger
from marketplace_sync.db.models import Customer, Product
from marketplace_sync.db.repositories import (
    CustomerRepository,
    DuplicateRecordError,
    ProductRepository,
)
from marketplace_sync.sync.errors import ResolutionError
from marketplace_sync.sync.models import LineItem, NormalizedOrder

logger = get_logger(__name__)


class EntityResolver:
    """
    Upserts customers and products by their marketplace natural keys.

    Existing records are returned untouched. When a concurrent pass inserts the
    same key first, the losing insert re-reads and returns the winner's row.
    """

    def __init__(
        self,
        customers: CustomerRepository,
        products: ProductRepository,
        provider: str = "allegro",
    ) -> None:
        self.customers = customers
        self.products = products
        self.provider = provider

    def resolve_customer(
        self,
        tenant_id: str,
        company_id: str,
        order: NormalizedOrder,
        create_missing: bool = True,
    ) -> Customer:
        existing = self.customers.find_by_external_id(tenant_id, order.buyer_id)
        if existing is not None:
            return existing

        if not create_missing:
            raise ResolutionError(f"Customer {order.buyer_id} not found and auto-create is disabled")

        address = order.address
        customer = Customer(
            tenant_id=tenant_id,
            company_id=company_id,
            name=order.buyer_name,
            email=order.buyer_email,
            external_buyer_id=order.buyer_id,
            billing_address=address.street,
            billing_postal_code=address.zip_code,
            billing_city=address.city,
            billing_country=address.country_code,
            customer_type="individual",
            is_active=True,
        )
        try:
            saved = self.customers.save(customer)
        except DuplicateRecordError:
            winner = self.customers.find_by_external_id(tenant_id, order.buyer_id)
            if winner is None:
                raise
            return winner

        logger.info(f"Created customer for buyer {order.buyer_id}", extra={"tenant_id": tenant_id})
        return saved

    def resolve_line_item_product(
        self,
        tenant_id: str,
        company_id: str,
        line_item: LineItem,
        default_vat_rate: Decimal,
        create_missing: bool = True,
    ) -> Product:
        existing = self.products.find_by_external_id(tenant_id, line_item.offer_id)
        if existing is not None:
            return existing

        if not create_missing:
            raise ResolutionError(f"Product {line_item.offer_id} not found and auto-create is disabled")

        product = Product(
            tenant_id=tenant_id,
            company_id=company_id,
            sku=f"{self.provider.upper()}-{line_item.offer_id}",
            name=line_item.title,
            description=line_item.title,
            external_product_id=line_item.offer_id,
            unit_price=line_item.unit_price,
            vat_rate=default_vat_rate,
            is_active=True,
        )
        try:
            saved = self.products.save(product)
        except DuplicateRecordError:
            winner = self.products.find_by_external_id(tenant_id, line_item.offer_id)
            if winner is None:
                raise
            return winner

        logger.info(f"Created product for offer {line_item.offer_id}", extra={"tenant_id": tenant_id})
        return saved
