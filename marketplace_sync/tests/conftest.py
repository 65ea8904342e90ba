"""
Pytest configuration and fixtures.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from marketplace_sync.clients.marketplace_client import TokenResponse
from marketplace_sync.core.encryption import TokenCipher
from marketplace_sync.core.idempotency import IdempotencyGuard, InMemoryIdempotencyCache
from marketplace_sync.db.base import init_db
from marketplace_sync.db.models import MarketplaceIntegration
from marketplace_sync.db.repositories import (
    SqlCustomerRepository,
    SqlIntegrationRepository,
    SqlInvoiceCreator,
    SqlInvoiceRepository,
    SqlProductRepository,
)
from marketplace_sync.sync.assembler import InvoiceAssembler
from marketplace_sync.sync.orchestrator import SyncOrchestrator
from marketplace_sync.sync.orders import OrderFetcher
from marketplace_sync.sync.resolver import EntityResolver
from marketplace_sync.sync.tokens import TokenManager

TENANT_ID = "tenant-1"
COMPANY_ID = "company-1"
USER_ID = "user-1"


class FixedClock:
    """Controllable replacement for utcnow."""

    def __init__(self, current: datetime) -> None:
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


class FakeMarketplaceClient:
    """
    In-memory stand-in for MarketplaceClient.

    ``orders`` is returned by list_orders; setting ``list_error`` or ``token_error``
    makes the corresponding call fail with it.
    """

    def __init__(self) -> None:
        self.orders: list[dict[str, Any]] = []
        self.list_error: Optional[Exception] = None
        self.token_error: Optional[Exception] = None
        self.token_response = TokenResponse(
            access_token="new-access", refresh_token="new-refresh", expires_in=3600
        )
        self.account_id = "seller-42"
        self.exchange_calls: list[dict[str, Optional[str]]] = []
        self.list_calls = 0

    def build_authorization_url(self, state: str) -> str:
        return f"https://marketplace.test/authorize?state={state}"

    async def exchange_token(
        self, *, code: Optional[str] = None, refresh_token: Optional[str] = None
    ) -> TokenResponse:
        self.exchange_calls.append({"code": code, "refresh_token": refresh_token})
        if self.token_error is not None:
            raise self.token_error
        return self.token_response

    async def get_account_id(self, access_token: str) -> str:
        return self.account_id

    async def list_orders(self, access_token: str, limit: int = 100, statuses: Any = None) -> list:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.orders)

    async def close(self) -> None:
        pass


def wire_order(
    order_id: str,
    number: str,
    buyer: str = "buyer_x",
    items: Optional[list[tuple[str, str, int, str]]] = None,
    marketplace: str = "allegro-pl",
) -> dict[str, Any]:
    """Build a checkout form as the marketplace returns it. Items are (offer, title, qty, price)."""
    items = items if items is not None else [("P1", "Widget", 2, "10.00")]
    return {
        "id": order_id,
        "attributes": {
            "number": number,
            "status": "SENT",
            "createdAt": "2026-10-01T12:00:00Z",
            "buyer": {"login": buyer, "email": f"{buyer}@example.com"},
            "totalPrice": {"amount": "20.00"},
            "lineItems": [
                {
                    "id": f"{order_id}-{offer}",
                    "offer": {"id": offer, "title": title},
                    "quantity": quantity,
                    "originalPrice": {"amount": price},
                }
                for offer, title, quantity, price in items
            ],
            "delivery": {
                "address": {
                    "firstName": "Jan",
                    "lastName": "Kowalski",
                    "street": "Marszałkowska 1",
                    "zipCode": "00-001",
                    "city": "Warszawa",
                    "countryCode": "PL",
                }
            },
            "marketplace": {"id": marketplace},
        },
    }


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TokenCipher.generate_key())


@pytest.fixture
def session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    with Session(engine, expire_on_commit=False) as db_session:
        yield db_session
    engine.dispose()


@pytest.fixture
def fake_client() -> FakeMarketplaceClient:
    return FakeMarketplaceClient()


@pytest.fixture
def make_integration(
    session: Session, cipher: TokenCipher, clock: FixedClock
) -> Callable[..., MarketplaceIntegration]:
    """Persist an integration; keyword arguments override column values."""
    account_numbers = itertools.count(1)

    def _make(**overrides: Any) -> MarketplaceIntegration:
        values: dict[str, Any] = {
            "tenant_id": TENANT_ID,
            "user_id": USER_ID,
            "company_id": COMPANY_ID,
            "external_account_id": f"seller-{next(account_numbers)}",
            "access_token": cipher.encrypt("stored-access"),
            "refresh_token": cipher.encrypt("stored-refresh"),
            "token_expires_at": clock() + timedelta(hours=2),
            "is_active": True,
            "sync_error_count": 0,
            "settings": {"defaultVatRate": 23},
        }
        values.update(overrides)
        integration = MarketplaceIntegration(**values)
        return SqlIntegrationRepository(session).save(integration)

    return _make


@pytest.fixture
def idempotency_cache(clock: FixedClock) -> InMemoryIdempotencyCache:
    return InMemoryIdempotencyCache(clock=clock)


@pytest.fixture
def orchestrator(
    session: Session,
    fake_client: FakeMarketplaceClient,
    cipher: TokenCipher,
    clock: FixedClock,
    idempotency_cache: InMemoryIdempotencyCache,
) -> SyncOrchestrator:
    """Orchestrator over in-memory SQLite and the fake marketplace."""
    integrations = SqlIntegrationRepository(session)
    invoices = SqlInvoiceRepository(session)
    return SyncOrchestrator(
        integrations=integrations,
        tokens=TokenManager(integrations, fake_client, cipher, clock=clock),
        fetcher=OrderFetcher(fake_client),
        guard=IdempotencyGuard(idempotency_cache, invoices, provider="allegro"),
        resolver=EntityResolver(
            SqlCustomerRepository(session), SqlProductRepository(session), provider="allegro"
        ),
        assembler=InvoiceAssembler(
            SqlInvoiceCreator(session, currency="PLN"),
            invoices,
            provider_name="Allegro",
            today=lambda: clock().date(),
        ),
        clock=clock,
    )
