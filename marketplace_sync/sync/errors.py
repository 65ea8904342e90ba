"""
Sync error taxonomy.

Pass-level errors (AuthError, FetchError, Integration*Error) end a pass and reach
the retry coordinator. Per-order errors are caught by the orchestrator and
recorded in the SyncResult.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for order ingestion."""

    def __init__(self, message: str, integration_id: Optional[str] = None):
        super().__init__(message)
        self.integration_id = integration_id


class IntegrationNotFoundError(SyncError):
    """No integration with this id exists for the tenant."""

    pass


class IntegrationInactiveError(SyncError):
    """The integration is disabled and must be reactivated before syncing."""

    pass


class AuthError(SyncError):
    """Token refresh failed; the integration has been deactivated."""

    pass


class FetchError(SyncError):
    """The order listing call failed as a whole."""

    pass


class ResolutionError(SyncError):
    """A customer or product could not be resolved for an order."""

    pass


class CreationError(SyncError):
    """The invoice-creation collaborator rejected the request."""

    pass


class AccountAlreadyLinkedError(SyncError):
    """The marketplace account is already connected by another tenant or user."""

    pass


class DuplicateOrderError(SyncError):
    """The order already produced an invoice (detected at creation time)."""

    def __init__(self, external_order_id: str):
        super().__init__(f"Order {external_order_id} already has an invoice")
        self.external_order_id = external_order_id


# Retrying these cannot succeed until someone intervenes
NON_RETRYABLE_ERRORS = (AuthError, IntegrationNotFoundError, IntegrationInactiveError)
