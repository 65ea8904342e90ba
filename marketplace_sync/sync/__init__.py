"""Marketplace order ingestion."""

from marketplace_sync.sync.errors import (
    AccountAlreadyLinkedError,
    AuthError,
    CreationError,
    DuplicateOrderError,
    FetchError,
    IntegrationInactiveError,
    IntegrationNotFoundError,
    SyncError,
)
from marketplace_sync.sync.models import IntegrationSettings, NormalizedOrder, SyncResult

__all__ = [
    "SyncError",
    "AccountAlreadyLinkedError",
    "AuthError",
    "FetchError",
    "CreationError",
    "DuplicateOrderError",
    "IntegrationNotFoundError",
    "IntegrationInactiveError",
    "IntegrationSettings",
    "NormalizedOrder",
    "SyncResult",
]
