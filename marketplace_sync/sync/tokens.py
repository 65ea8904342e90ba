"""
OAuth token lifecycle: connecting an account and keeping its access token valid.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from marketplace_sync.clients.base import APIError
from marketplace_sync.clients.marketplace_client import (
    MarketplaceClient,
    decode_state,
    encode_state,
)
from marketplace_sync.core.encryption import EncryptionError, TokenCipher
from marketplace_sync.core.logging import audit_logger, get_logger
from marketplace_sync.core.time import as_utc, utcnow
from marketplace_sync.db.models import MarketplaceIntegration
from marketplace_sync.db.repositories import DuplicateRecordError, IntegrationRepository
from marketplace_sync.sync.errors import AccountAlreadyLinkedError, AuthError

logger = get_logger(__name__)

# Tokens expiring within this window are refreshed before use
REFRESH_MARGIN = timedelta(hours=1)


class TokenManager:
    """
    Hands out usable access tokens for an integration.

    A refresh failure is terminal for the integration: it is deactivated and
    AuthError is raised; the user has to reconnect the account.
    """

    def __init__(
        self,
        integrations: IntegrationRepository,
        client: MarketplaceClient,
        cipher: TokenCipher,
        clock: Callable[[], datetime] = utcnow,
        refresh_margin: timedelta = REFRESH_MARGIN,
    ) -> None:
        self.integrations = integrations
        self.client = client
        self.cipher = cipher
        self.clock = clock
        self.refresh_margin = refresh_margin

    def needs_refresh(self, integration: MarketplaceIntegration) -> bool:
        return as_utc(integration.token_expires_at) - self.clock() <= self.refresh_margin

    async def ensure_valid_token(self, integration: MarketplaceIntegration) -> str:
        """
        Return an access token valid for at least the refresh margin.

        Raises:
            AuthError: If the refresh exchange fails or stored tokens cannot be decrypted
        """
        if not self.needs_refresh(integration):
            try:
                return self.cipher.decrypt(integration.access_token)
            except EncryptionError as e:
                self._deactivate(integration, f"Stored access token unreadable: {e}")
                raise AuthError(f"Stored access token unreadable: {e}", integration.id) from e

        logger.info(f"Refreshing access token for integration {integration.id}")
        try:
            refresh_token = self.cipher.decrypt(integration.refresh_token)
            token = await self.client.exchange_token(refresh_token=refresh_token)
        except (APIError, EncryptionError) as e:
            self._deactivate(integration, f"Token refresh failed: {e}")
            raise AuthError(f"Token refresh failed: {e}", integration.id) from e

        integration.access_token = self.cipher.encrypt(token.access_token)
        if token.refresh_token:
            integration.refresh_token = self.cipher.encrypt(token.refresh_token)
        integration.token_expires_at = self.clock() + timedelta(seconds=token.expires_in)
        self.integrations.save(integration)

        audit_logger.log_token_refreshed(integration.id, token.expires_in)
        return token.access_token

    def _deactivate(self, integration: MarketplaceIntegration, reason: str) -> None:
        integration.is_active = False
        integration.last_sync_error = reason
        self.integrations.save(integration)
        audit_logger.log_integration_disabled(integration.id, reason)


class OAuthService:
    """Authorization-code flow that creates or refreshes an integration."""

    def __init__(
        self,
        integrations: IntegrationRepository,
        client: MarketplaceClient,
        cipher: TokenCipher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.integrations = integrations
        self.client = client
        self.cipher = cipher
        self.clock = clock

    def authorization_url(self, tenant_id: str) -> str:
        state = encode_state({"tenantId": tenant_id, "timestamp": int(self.clock().timestamp())})
        return self.client.build_authorization_url(state)

    @staticmethod
    def decode_state(state: str) -> dict[str, Any]:
        return decode_state(state)

    async def connect(
        self,
        tenant_id: str,
        user_id: str,
        code: str,
        company_id: Optional[str] = None,
    ) -> MarketplaceIntegration:
        """
        Exchange an authorization code and store the resulting credentials.

        An existing integration for the same tenant, user and marketplace account is
        updated and reactivated instead of duplicated.

        Raises:
            AuthError: If the code exchange or account lookup fails
            AccountAlreadyLinkedError: If another tenant or user already connected the account
        """
        try:
            token = await self.client.exchange_token(code=code)
            account_id = await self.client.get_account_id(token.access_token)
        except APIError as e:
            raise AuthError(f"Authorization failed: {e}") from e

        if not token.refresh_token:
            raise AuthError("Authorization failed: provider returned no refresh token")

        integration = self.integrations.find_by_account(tenant_id, user_id, account_id)
        if integration is None:
            integration = MarketplaceIntegration(
                tenant_id=tenant_id,
                user_id=user_id,
                external_account_id=account_id,
                settings={},
            )

        integration.access_token = self.cipher.encrypt(token.access_token)
        integration.refresh_token = self.cipher.encrypt(token.refresh_token)
        integration.token_expires_at = self.clock() + timedelta(seconds=token.expires_in)
        integration.is_active = True
        integration.sync_error_count = 0
        integration.last_sync_error = None
        if company_id is not None:
            integration.company_id = company_id

        try:
            self.integrations.save(integration)
        except DuplicateRecordError as e:
            logger.warning(
                f"Marketplace account {account_id} is already linked elsewhere",
                extra={"tenant_id": tenant_id, "user_id": user_id},
            )
            raise AccountAlreadyLinkedError(
                f"Marketplace account {account_id} is already connected to another user"
            ) from e
        audit_logger.log_integration_connected(integration.id, tenant_id, account_id)
        return integration
