"""
Order fetching and mapping from marketplace checkout forms to NormalizedOrder.
"""

from typing import Any, Optional

from pydantic import ValidationError

from marketplace_sync.clients.base import APIError
from marketplace_sync.clients.marketplace_client import MarketplaceClient
from marketplace_sync.core.currency import to_decimal
from marketplace_sync.core.logging import get_logger
from marketplace_sync.core.time import parse_iso
from marketplace_sync.db.models import MarketplaceIntegration
from marketplace_sync.sync.errors import FetchError
from marketplace_sync.sync.models import (
    BuyerAddress,
    IntegrationSettings,
    LineItem,
    NormalizedOrder,
)

logger = get_logger(__name__)

FETCH_LIMIT = 100


class OrderMappingError(ValueError):
    """A wire order lacks a required field or carries a malformed one."""

    pass


def _dig(data: Any, *path: str) -> Any:
    """Follow nested keys, returning None as soon as one is missing."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _map_line_item(raw: Any) -> LineItem:
    try:
        return LineItem(
            external_id=_dig(raw, "id"),
            offer_id=str(_dig(raw, "offer", "id") or ""),
            title=str(_dig(raw, "offer", "title") or "").strip(),
            quantity=_dig(raw, "quantity"),
            unit_price=to_decimal(_dig(raw, "originalPrice", "amount")),
        )
    except (ValueError, ValidationError) as e:
        raise OrderMappingError(f"invalid line item: {e}") from e


def map_order(raw: dict[str, Any]) -> NormalizedOrder:
    """
    Translate one checkout form into a NormalizedOrder.

    Raises:
        OrderMappingError: If the order id, buyer login or a line item is missing or malformed
    """
    attributes = raw.get("attributes")
    if not isinstance(attributes, dict):
        raise OrderMappingError("missing attributes")

    raw_items = attributes.get("lineItems")
    if not isinstance(raw_items, list) or not raw_items:
        raise OrderMappingError("no line items")
    line_items = [_map_line_item(item) for item in raw_items]

    created_at = None
    if attributes.get("createdAt"):
        try:
            created_at = parse_iso(str(attributes["createdAt"]))
        except ValueError:
            logger.debug(f"Unparseable createdAt on order {raw.get('id')}")

    total = None
    if _dig(attributes, "totalPrice", "amount") is not None:
        try:
            total = to_decimal(attributes["totalPrice"]["amount"])
        except ValueError:
            total = None

    address = _dig(attributes, "delivery", "address")
    if not isinstance(address, dict):
        address = {}

    try:
        return NormalizedOrder(
            external_id=str(raw.get("id") or ""),
            number=str(attributes.get("number") or raw.get("id") or ""),
            buyer_id=str(_dig(attributes, "buyer", "login") or ""),
            buyer_email=_dig(attributes, "buyer", "email"),
            address=BuyerAddress(
                first_name=address.get("firstName"),
                last_name=address.get("lastName"),
                street=address.get("street"),
                zip_code=address.get("zipCode"),
                city=address.get("city"),
                country_code=address.get("countryCode"),
            ),
            total=total,
            line_items=line_items,
            status=attributes.get("status"),
            created_at=created_at,
            source=_dig(attributes, "marketplace", "id"),
        )
    except ValidationError as e:
        raise OrderMappingError(str(e)) from e


class OrderFetcher:
    """Lists actionable orders for an integration and maps them."""

    def __init__(self, client: MarketplaceClient) -> None:
        self.client = client

    async def fetch_orders(
        self,
        integration: MarketplaceIntegration,
        access_token: str,
        limit: int = FETCH_LIMIT,
        settings: Optional[IntegrationSettings] = None,
    ) -> list[NormalizedOrder]:
        """
        Fetch one page of orders.

        Malformed orders are dropped with a warning. Orders from marketplaces not in
        ``orderSourceFilter`` are dropped silently.

        Raises:
            FetchError: If the listing call fails; no partial result is returned
        """
        try:
            raw_orders = await self.client.list_orders(access_token, limit=limit)
        except APIError as e:
            raise FetchError(f"Failed to fetch orders: {e}", integration.id) from e

        settings = settings or IntegrationSettings.from_raw(integration.settings)
        source_filter = settings.order_source_filter

        orders: list[NormalizedOrder] = []
        for raw in raw_orders:
            if not isinstance(raw, dict):
                logger.warning(f"Skipping non-object order entry for integration {integration.id}")
                continue
            try:
                order = map_order(raw)
            except OrderMappingError as e:
                logger.warning(
                    f"Skipping malformed order {raw.get('id')}: {e}",
                    extra={"integration_id": integration.id},
                )
                continue

            if source_filter and order.source not in source_filter:
                continue
            orders.append(order)

        logger.info(
            f"Fetched {len(orders)} orders ({len(raw_orders)} listed)",
            extra={"integration_id": integration.id},
        )
        return orders
