"""
Marketplace REST API client (Allegro-style checkout forms) with OAuth2 support.

Exposes the narrow surface the sync core depends on: token exchange, account
lookup and order listing. Everything else about the marketplace stays out.
"""

import base64
import json
from typing import Any, Optional, Sequence
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from marketplace_sync.clients.base import APIError, BaseAPIClient
from marketplace_sync.core.config import settings
from marketplace_sync.core.logging import get_logger

logger = get_logger(__name__)

ORDERS_ENDPOINT = "/order/checkout-forms"
ACCOUNT_ENDPOINT = "/me"
JSON_API_MEDIA_TYPE = "application/vnd.api+json"

# Newly placed and in-progress orders; shipped and cancelled ones are never invoiced here
ACTIONABLE_STATUSES = ("SENT", "PROCESSING")


class TokenResponse(BaseModel):
    """OAuth2 token endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int
    token_type: str = "bearer"


def encode_state(payload: dict[str, Any]) -> str:
    """Encode the opaque OAuth ``state`` parameter."""
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_state(state: str) -> dict[str, Any]:
    """
    Decode an OAuth ``state`` parameter produced by ``encode_state``.

    Raises:
        ValueError: If the state is not valid base64 JSON object
    """
    try:
        padded = state + "=" * (-len(state) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (ValueError, UnicodeError) as e:
        raise ValueError("Malformed OAuth state") from e
    if not isinstance(data, dict):
        raise ValueError("Malformed OAuth state")
    return data


class MarketplaceClient(BaseAPIClient):
    """
    Marketplace API client.

    Handles OAuth2 code/refresh exchanges and order listing. One instance can
    serve many integrations: the bearer token is passed per call.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        api_base_url: Optional[str] = None,
        authorize_url: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            base_url=api_base_url or settings.marketplace_api_base_url,
            timeout=timeout or settings.marketplace_api_timeout,
            rate_limit=settings.marketplace_rate_limit,
            transport=transport,
        )
        self.client_id = client_id if client_id is not None else settings.marketplace_client_id
        self.client_secret = (
            client_secret if client_secret is not None else settings.marketplace_client_secret
        )
        self.redirect_uri = (
            redirect_uri if redirect_uri is not None else settings.marketplace_redirect_uri
        )
        self.authorize_url = authorize_url or settings.marketplace_authorize_url
        self.token_url = token_url or settings.marketplace_token_url

    def _get_headers(self, access_token: str) -> dict[str, str]:
        """Get headers with bearer authentication."""
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": JSON_API_MEDIA_TYPE,
        }

    def build_authorization_url(self, state: str) -> str:
        """
        Build the URL the user is redirected to for granting access.

        Args:
            state: Opaque value echoed back on the callback
        """
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_token(
        self,
        *,
        code: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> TokenResponse:
        """
        Exchange an authorization code or a refresh token for a new token pair.

        Exactly one of ``code`` and ``refresh_token`` must be given.

        Raises:
            APIError: On network failure, timeout, or non-2xx response
        """
        payload: dict[str, str] = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        if code is not None and refresh_token is None:
            payload.update(
                grant_type="authorization_code",
                code=code,
                redirect_uri=self.redirect_uri,
            )
        elif refresh_token is not None and code is None:
            payload.update(grant_type="refresh_token", refresh_token=refresh_token)
        else:
            raise ValueError("Pass exactly one of code or refresh_token")

        logger.debug(f"Exchanging token ({payload['grant_type']})")
        data = await self.post(self.token_url, data=payload, headers={"Accept": "application/json"})

        try:
            return TokenResponse.model_validate(data)
        except ValueError as e:
            raise APIError(f"Unexpected token response: {e}") from e

    async def get_account_id(self, access_token: str) -> str:
        """Return the marketplace account id the token belongs to."""
        data = await self.get(ACCOUNT_ENDPOINT, headers=self._get_headers(access_token))
        try:
            return str(data["data"]["id"])
        except (KeyError, TypeError) as e:
            raise APIError("Unexpected account response: missing data.id") from e

    async def list_orders(
        self,
        access_token: str,
        limit: int = 100,
        statuses: Sequence[str] = ACTIONABLE_STATUSES,
    ) -> list[dict[str, Any]]:
        """
        List checkout forms in the given statuses.

        Returns:
            Raw order resources, in the order the marketplace returned them

        Raises:
            APIError: On network failure, timeout, or non-2xx response
        """
        params: list[tuple[str, Any]] = [("limit", limit)]
        params.extend(("status", status) for status in statuses)

        data = await self.get(ORDERS_ENDPOINT, headers=self._get_headers(access_token), params=params)

        orders = data.get("data") if isinstance(data, dict) else None
        if not isinstance(orders, list):
            raise APIError("Unexpected orders response: missing data list")
        return orders
