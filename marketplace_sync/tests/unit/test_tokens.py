"""
Unit tests for the token lifecycle and OAuth connection.
"""

from datetime import timedelta

import pytest

from conftest import COMPANY_ID, TENANT_ID, USER_ID, FakeMarketplaceClient, FixedClock
from marketplace_sync.clients.base import APIError, AuthenticationError
from marketplace_sync.clients.marketplace_client import TokenResponse
from marketplace_sync.core.encryption import TokenCipher
from marketplace_sync.core.time import as_utc
from marketplace_sync.db.repositories import SqlIntegrationRepository
from marketplace_sync.sync.errors import AccountAlreadyLinkedError, AuthError
from marketplace_sync.sync.tokens import REFRESH_MARGIN, OAuthService, TokenManager


@pytest.fixture
def token_manager(session, fake_client, cipher, clock) -> TokenManager:
    return TokenManager(SqlIntegrationRepository(session), fake_client, cipher, clock=clock)


class TestEnsureValidToken:
    @pytest.mark.asyncio
    async def test_token_far_from_expiry_is_used_without_network(
        self, token_manager, make_integration, fake_client, clock
    ) -> None:
        integration = make_integration(token_expires_at=clock() + timedelta(hours=2))

        token = await token_manager.ensure_valid_token(integration)

        assert token == "stored-access"
        assert fake_client.exchange_calls == []

    @pytest.mark.asyncio
    async def test_token_close_to_expiry_is_refreshed(
        self, token_manager, make_integration, fake_client, cipher, clock, session
    ) -> None:
        integration = make_integration(token_expires_at=clock() + timedelta(minutes=30))

        token = await token_manager.ensure_valid_token(integration)

        assert token == "new-access"
        assert fake_client.exchange_calls == [{"code": None, "refresh_token": "stored-refresh"}]

        stored = SqlIntegrationRepository(session).get(integration.id)
        assert cipher.decrypt(stored.access_token) == "new-access"
        assert cipher.decrypt(stored.refresh_token) == "new-refresh"
        assert as_utc(stored.token_expires_at) == clock() + timedelta(seconds=3600)

    @pytest.mark.asyncio
    async def test_exactly_one_hour_left_triggers_refresh(
        self, token_manager, make_integration, fake_client, clock
    ) -> None:
        integration = make_integration(token_expires_at=clock() + REFRESH_MARGIN)

        await token_manager.ensure_valid_token(integration)

        assert len(fake_client.exchange_calls) == 1

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(
        self, token_manager, make_integration, fake_client, clock
    ) -> None:
        integration = make_integration(token_expires_at=clock() - timedelta(days=1))

        assert await token_manager.ensure_valid_token(integration) == "new-access"

    @pytest.mark.asyncio
    async def test_missing_refresh_token_in_response_keeps_stored_one(
        self, token_manager, make_integration, fake_client, cipher, clock
    ) -> None:
        fake_client.token_response = TokenResponse(access_token="rotated", expires_in=7200)
        integration = make_integration(token_expires_at=clock() + timedelta(minutes=5))

        await token_manager.ensure_valid_token(integration)

        assert cipher.decrypt(integration.refresh_token) == "stored-refresh"
        assert cipher.decrypt(integration.access_token) == "rotated"

    @pytest.mark.asyncio
    async def test_refresh_failure_deactivates_and_raises(
        self, token_manager, make_integration, fake_client, clock, session
    ) -> None:
        fake_client.token_error = AuthenticationError("invalid_grant", status_code=400)
        integration = make_integration(token_expires_at=clock() + timedelta(minutes=10))

        with pytest.raises(AuthError):
            await token_manager.ensure_valid_token(integration)

        stored = SqlIntegrationRepository(session).get(integration.id)
        assert stored.is_active is False
        assert "Token refresh failed" in stored.last_sync_error

    @pytest.mark.asyncio
    async def test_network_failure_during_refresh_is_auth_error(
        self, token_manager, make_integration, fake_client, clock
    ) -> None:
        fake_client.token_error = APIError("Request failed: timed out")
        integration = make_integration(token_expires_at=clock())

        with pytest.raises(AuthError):
            await token_manager.ensure_valid_token(integration)

        assert integration.is_active is False

    @pytest.mark.asyncio
    async def test_undecryptable_refresh_token_is_auth_error(
        self, token_manager, make_integration, fake_client, clock
    ) -> None:
        other = TokenCipher(TokenCipher.generate_key())
        integration = make_integration(
            token_expires_at=clock(), refresh_token=other.encrypt("foreign")
        )

        with pytest.raises(AuthError):
            await token_manager.ensure_valid_token(integration)

        assert fake_client.exchange_calls == []
        assert integration.is_active is False


class TestOAuthService:
    @pytest.fixture
    def oauth(self, session, fake_client, cipher, clock) -> OAuthService:
        return OAuthService(SqlIntegrationRepository(session), fake_client, cipher, clock=clock)

    def test_authorization_url_carries_tenant_in_state(self, oauth: OAuthService) -> None:
        url = oauth.authorization_url(TENANT_ID)
        state = url.split("state=", 1)[1]

        decoded = oauth.decode_state(state)

        assert decoded["tenantId"] == TENANT_ID
        assert isinstance(decoded["timestamp"], int)

    def test_decode_state_rejects_garbage(self, oauth: OAuthService) -> None:
        with pytest.raises(ValueError):
            oauth.decode_state("not base64 json!")

    @pytest.mark.asyncio
    async def test_connect_creates_active_integration(
        self, oauth: OAuthService, fake_client: FakeMarketplaceClient, cipher, clock: FixedClock
    ) -> None:
        integration = await oauth.connect(TENANT_ID, USER_ID, "auth-code", company_id=COMPANY_ID)

        assert fake_client.exchange_calls == [{"code": "auth-code", "refresh_token": None}]
        assert integration.id
        assert integration.external_account_id == "seller-42"
        assert integration.is_active is True
        assert integration.sync_error_count == 0
        assert integration.company_id == COMPANY_ID
        assert cipher.decrypt(integration.access_token) == "new-access"
        assert as_utc(integration.token_expires_at) == clock() + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_reconnect_updates_existing_integration(
        self, oauth: OAuthService, session
    ) -> None:
        first = await oauth.connect(TENANT_ID, USER_ID, "code-1")
        first.is_active = False
        first.sync_error_count = 5
        SqlIntegrationRepository(session).save(first)

        second = await oauth.connect(TENANT_ID, USER_ID, "code-2")

        assert second.id == first.id
        assert second.is_active is True
        assert second.sync_error_count == 0
        assert len(SqlIntegrationRepository(session).list_by_tenant(TENANT_ID)) == 1

    @pytest.mark.asyncio
    async def test_connect_failure_raises_auth_error(
        self, oauth: OAuthService, fake_client: FakeMarketplaceClient
    ) -> None:
        fake_client.token_error = APIError("HTTP 400", status_code=400)

        with pytest.raises(AuthError):
            await oauth.connect(TENANT_ID, USER_ID, "bad-code")

    @pytest.mark.asyncio
    async def test_account_linked_by_another_user_is_rejected(
        self, oauth: OAuthService, session
    ) -> None:
        await oauth.connect(TENANT_ID, USER_ID, "code-1")

        with pytest.raises(AccountAlreadyLinkedError):
            await oauth.connect(TENANT_ID, "user-2", "code-2")

        [integration] = SqlIntegrationRepository(session).list_by_tenant(TENANT_ID)
        assert integration.user_id == USER_ID
