"""
One sync pass for one integration: fetch, deduplicate, resolve, invoice, record health.
"""

from datetime import datetime
from typing import Callable, Optional

from marketplace_sync.core.idempotency import IdempotencyGuard
from marketplace_sync.core.logging import audit_logger, get_logger
from marketplace_sync.core.time import utcnow
from marketplace_sync.db.models import MarketplaceIntegration
from marketplace_sync.db.repositories import IntegrationRepository
from marketplace_sync.sync.assembler import InvoiceAssembler
from marketplace_sync.sync.errors import (
    DuplicateOrderError,
    IntegrationInactiveError,
    IntegrationNotFoundError,
    SyncError,
)
from marketplace_sync.sync.models import IntegrationSettings, NormalizedOrder, SyncResult
from marketplace_sync.sync.orders import FETCH_LIMIT, OrderFetcher
from marketplace_sync.sync.resolver import EntityResolver
from marketplace_sync.sync.tokens import TokenManager

logger = get_logger(__name__)

# Consecutive failed passes after which the integration is switched off
DISABLE_THRESHOLD = 5


class SyncOrchestrator:
    """
    Runs a single pass over the current order feed of an integration.

    Orders are handled one at a time in fetch order. Failures of a single order are
    collected in the result and never stop the pass; failures before the first order
    (token, fetch) are recorded on the integration and re-raised for the retry ladder.
    """

    def __init__(
        self,
        integrations: IntegrationRepository,
        tokens: TokenManager,
        fetcher: OrderFetcher,
        guard: IdempotencyGuard,
        resolver: EntityResolver,
        assembler: InvoiceAssembler,
        clock: Callable[[], datetime] = utcnow,
        fetch_limit: int = FETCH_LIMIT,
        disable_threshold: int = DISABLE_THRESHOLD,
    ) -> None:
        self.integrations = integrations
        self.tokens = tokens
        self.fetcher = fetcher
        self.guard = guard
        self.resolver = resolver
        self.assembler = assembler
        self.clock = clock
        self.fetch_limit = fetch_limit
        self.disable_threshold = disable_threshold

    def load_integration(self, integration_id: str, tenant_id: str) -> MarketplaceIntegration:
        integration = self.integrations.get(integration_id)
        if integration is None or integration.tenant_id != tenant_id:
            raise IntegrationNotFoundError(f"Integration {integration_id} not found", integration_id)
        return integration

    async def sync_once(
        self,
        integration_id: str,
        company_id: Optional[str],
        tenant_id: str,
        deadline: Optional[datetime] = None,
    ) -> SyncResult:
        """
        Run one pass.

        Args:
            integration_id: Integration to sync
            company_id: Company invoices are issued for (defaults to the integration's)
            tenant_id: Owning tenant; a mismatch is treated as not found
            deadline: Stop before starting the next order once this moment has passed

        Raises:
            IntegrationNotFoundError: Unknown integration or foreign tenant
            IntegrationInactiveError: Integration is disabled
            AuthError, FetchError: Pass-level failures, already recorded on the integration
        """
        integration = self.load_integration(integration_id, tenant_id)
        if not integration.is_active:
            raise IntegrationInactiveError(f"Integration {integration_id} is inactive", integration_id)

        settings = IntegrationSettings.from_raw(integration.settings)
        company_id = company_id or integration.company_id

        try:
            if not company_id:
                raise SyncError("No company configured for invoices", integration_id)
            access_token = await self.tokens.ensure_valid_token(integration)
            orders = await self.fetcher.fetch_orders(
                integration, access_token, limit=self.fetch_limit, settings=settings
            )
        except Exception as e:
            self._record_failure(integration, str(e))
            raise

        result = SyncResult()

        if not settings.auto_generate_invoices:
            logger.info(
                f"Invoice generation disabled; {len(orders)} orders left untouched",
                extra={"integration_id": integration_id},
            )
            result.orders_processed = len(orders)
            self._record_outcome(integration, result)
            return result

        for order in orders:
            if deadline is not None and self.clock() >= deadline:
                logger.info(
                    f"Deadline reached after {result.orders_processed} orders",
                    extra={"integration_id": integration_id},
                )
                result.cancelled = True
                break

            result.orders_processed += 1
            try:
                if self._process_order(tenant_id, company_id, order, settings):
                    result.invoices_created += 1
            except Exception as e:
                logger.warning(
                    f"Order {order.number} failed: {e}",
                    extra={"integration_id": integration_id, "external_order_id": order.external_id},
                )
                result.errors.append(f"Order {order.number}: {e}")

        self._record_outcome(integration, result)
        logger.info(
            f"Sync pass finished: {result.orders_processed} processed, "
            f"{result.invoices_created} created, {len(result.errors)} errors",
            extra={"integration_id": integration_id, "tenant_id": tenant_id},
        )
        return result

    def _process_order(
        self,
        tenant_id: str,
        company_id: str,
        order: NormalizedOrder,
        settings: IntegrationSettings,
    ) -> bool:
        """Returns True when an invoice was created, False for a skipped duplicate."""
        if self.guard.is_duplicate(tenant_id, order.external_id):
            return False

        customer = self.resolver.resolve_customer(
            tenant_id, company_id, order, create_missing=settings.auto_create_customer
        )
        resolved_items = [
            (
                line_item,
                self.resolver.resolve_line_item_product(
                    tenant_id,
                    company_id,
                    line_item,
                    settings.default_vat_rate,
                    create_missing=settings.auto_create_product,
                ),
            )
            for line_item in order.line_items
        ]

        try:
            self.assembler.build_and_create(
                tenant_id,
                company_id,
                order,
                customer,
                resolved_items,
                template_id=settings.invoice_template_id,
                mark_as_paid=settings.auto_mark_as_paid,
            )
        except DuplicateOrderError:
            # Another pass got there first
            logger.debug(f"Order {order.external_id} was invoiced concurrently")
            self.guard.mark_processed(order.external_id)
            return False

        self.guard.mark_processed(order.external_id)
        return True

    def _record_outcome(self, integration: MarketplaceIntegration, result: SyncResult) -> None:
        if result.errors:
            self._record_failure(integration, result.errors[0])
            return

        if result.cancelled:
            return

        integration.sync_error_count = 0
        integration.last_sync_error = None
        integration.last_sync_at = self.clock()
        self.integrations.save(integration)

    def _record_failure(self, integration: MarketplaceIntegration, message: str) -> None:
        integration.sync_error_count = (integration.sync_error_count or 0) + 1
        integration.last_sync_error = message

        if integration.is_active and integration.sync_error_count >= self.disable_threshold:
            integration.is_active = False
            audit_logger.log_integration_disabled(
                integration.id,
                f"{integration.sync_error_count} consecutive failed syncs",
                last_error=message,
            )

        self.integrations.save(integration)
