"""
Wiring of the sync services from settings.

``Runtime`` owns the long-lived resources (engine, HTTP client, idempotency cache);
``build_services`` assembles the per-session service graph on top of them.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from marketplace_sync.clients.marketplace_client import MarketplaceClient
from marketplace_sync.core.config import settings
from marketplace_sync.core.encryption import TokenCipher
from marketplace_sync.core.idempotency import IdempotencyCache, IdempotencyGuard, build_cache
from marketplace_sync.core.logging import get_logger
from marketplace_sync.db.base import create_db_engine, create_session_factory
from marketplace_sync.db.models import MarketplaceIntegration
from marketplace_sync.db.repositories import (
    SqlCustomerRepository,
    SqlIntegrationRepository,
    SqlInvoiceCreator,
    SqlInvoiceRepository,
    SqlProductRepository,
)
from marketplace_sync.sync.assembler import InvoiceAssembler
from marketplace_sync.sync.integrations import IntegrationService
from marketplace_sync.sync.models import SyncResult
from marketplace_sync.sync.orchestrator import SyncOrchestrator
from marketplace_sync.sync.orders import OrderFetcher
from marketplace_sync.sync.resolver import EntityResolver
from marketplace_sync.sync.retry import RetryCoordinator
from marketplace_sync.sync.scheduler import SyncScheduler
from marketplace_sync.sync.tokens import OAuthService, TokenManager

logger = get_logger(__name__)


@dataclass
class SyncServices:
    """Service graph bound to one database session."""

    integrations: SqlIntegrationRepository
    tokens: TokenManager
    oauth: OAuthService
    orchestrator: SyncOrchestrator
    retry: RetryCoordinator
    management: IntegrationService


def build_services(
    session: Session,
    client: MarketplaceClient,
    cache: IdempotencyCache,
    cipher: Optional[TokenCipher] = None,
) -> SyncServices:
    cipher = cipher or TokenCipher()
    provider = settings.marketplace_provider

    integrations = SqlIntegrationRepository(session)
    invoices = SqlInvoiceRepository(session)
    tokens = TokenManager(integrations, client, cipher)

    orchestrator = SyncOrchestrator(
        integrations=integrations,
        tokens=tokens,
        fetcher=OrderFetcher(client),
        guard=IdempotencyGuard(
            cache,
            invoices,
            provider=provider,
            ttl=timedelta(hours=settings.idempotency_ttl_hours),
        ),
        resolver=EntityResolver(
            SqlCustomerRepository(session), SqlProductRepository(session), provider=provider
        ),
        assembler=InvoiceAssembler(
            SqlInvoiceCreator(session, currency=settings.base_currency),
            invoices,
            provider_name=provider.capitalize(),
            payment_terms_days=settings.default_payment_terms,
        ),
        fetch_limit=settings.sync_batch_size,
    )

    return SyncServices(
        integrations=integrations,
        tokens=tokens,
        oauth=OAuthService(integrations, client, cipher),
        orchestrator=orchestrator,
        retry=RetryCoordinator(orchestrator),
        management=IntegrationService(integrations),
    )


class Runtime:
    """
    Process-wide resources shared by the API, the CLI and the scheduler.

    Examples:
        >>> runtime = Runtime()
        >>> with runtime.session() as session:
        ...     services = runtime.services(session)
        >>> await runtime.close()
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker[Session]] = None,
        client: Optional[MarketplaceClient] = None,
        cache: Optional[IdempotencyCache] = None,
        cipher: Optional[TokenCipher] = None,
    ) -> None:
        self.session_factory = session_factory or create_session_factory(
            create_db_engine(echo=settings.debug)
        )
        self.client = client or MarketplaceClient()
        self.cache = cache or build_cache(settings.idempotency_backend, settings.redis_url)
        self._cipher = cipher

    @property
    def cipher(self) -> TokenCipher:
        if self._cipher is None:
            self._cipher = TokenCipher()
        return self._cipher

    def session(self) -> Session:
        return self.session_factory()

    def services(self, session: Session) -> SyncServices:
        return build_services(session, self.client, self.cache, self.cipher)

    def load_active_integrations(self) -> list[MarketplaceIntegration]:
        with self.session() as session:
            return SqlIntegrationRepository(session).list_active()

    async def sync_integration(self, integration: MarketplaceIntegration) -> SyncResult:
        """Retried pass for one integration in a session of its own."""
        with self.session() as session:
            services = self.services(session)
            return await services.retry.sync_with_retry(
                integration.id, integration.company_id, integration.tenant_id
            )

    def scheduler(self) -> SyncScheduler:
        return SyncScheduler(
            self.load_active_integrations,
            self.sync_integration,
            poll_seconds=settings.scheduler_poll_seconds,
        )

    async def close(self) -> None:
        await self.client.close()
