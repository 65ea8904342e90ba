"""
Integration management: status, activation and per-integration settings.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from marketplace_sync.core.logging import audit_logger, get_logger
from marketplace_sync.db.models import MarketplaceIntegration
from marketplace_sync.db.repositories import IntegrationRepository
from marketplace_sync.sync.errors import IntegrationNotFoundError
from marketplace_sync.sync.models import IntegrationSettings

logger = get_logger(__name__)


class IntegrationStatus(BaseModel):
    """Public view of an integration; never carries tokens."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    tenant_id: str
    company_id: Optional[str] = None
    external_account_id: str
    is_active: bool
    token_expires_at: datetime
    last_sync_at: Optional[datetime] = None
    sync_error_count: int = 0
    last_sync_error: Optional[str] = None

    @classmethod
    def from_integration(cls, integration: MarketplaceIntegration) -> "IntegrationStatus":
        return cls(
            id=integration.id,
            tenant_id=integration.tenant_id,
            company_id=integration.company_id,
            external_account_id=integration.external_account_id,
            is_active=integration.is_active,
            token_expires_at=integration.token_expires_at,
            last_sync_at=integration.last_sync_at,
            sync_error_count=integration.sync_error_count or 0,
            last_sync_error=integration.last_sync_error,
        )


class IntegrationService:
    def __init__(self, integrations: IntegrationRepository) -> None:
        self.integrations = integrations

    def _get(self, tenant_id: str, integration_id: str) -> MarketplaceIntegration:
        integration = self.integrations.get(integration_id)
        if integration is None or integration.tenant_id != tenant_id:
            raise IntegrationNotFoundError(f"Integration {integration_id} not found", integration_id)
        return integration

    def get_status(self, tenant_id: str, integration_id: str) -> IntegrationStatus:
        return IntegrationStatus.from_integration(self._get(tenant_id, integration_id))

    def list_by_tenant(self, tenant_id: str) -> list[IntegrationStatus]:
        return [
            IntegrationStatus.from_integration(integration)
            for integration in self.integrations.list_by_tenant(tenant_id)
        ]

    def deactivate(self, tenant_id: str, integration_id: str) -> IntegrationStatus:
        integration = self._get(tenant_id, integration_id)
        integration.is_active = False
        self.integrations.save(integration)
        audit_logger.log_integration_disabled(integration.id, "Deactivated by user")
        return IntegrationStatus.from_integration(integration)

    def reactivate(self, tenant_id: str, integration_id: str) -> IntegrationStatus:
        """Turn the integration back on with a clean error count."""
        integration = self._get(tenant_id, integration_id)
        integration.is_active = True
        integration.sync_error_count = 0
        integration.last_sync_error = None
        self.integrations.save(integration)
        logger.info(f"Integration {integration.id} reactivated", extra={"tenant_id": tenant_id})
        return IntegrationStatus.from_integration(integration)

    def get_settings(self, tenant_id: str, integration_id: str) -> dict[str, Any]:
        """Stored settings as saved, without defaults."""
        return dict(self._get(tenant_id, integration_id).settings or {})

    def get_settings_with_defaults(self, tenant_id: str, integration_id: str) -> IntegrationSettings:
        return IntegrationSettings.from_raw(self._get(tenant_id, integration_id).settings)

    def update_settings(
        self, tenant_id: str, integration_id: str, changes: dict[str, Any]
    ) -> IntegrationSettings:
        """
        Merge ``changes`` (camelCase keys) into the stored settings.

        Raises:
            pydantic.ValidationError: If the merged settings are invalid; nothing is saved
        """
        integration = self._get(tenant_id, integration_id)
        merged = {**(integration.settings or {}), **changes}
        validated = IntegrationSettings.model_validate(merged)

        # Keep only recognised keys, in their canonical spelling
        integration.settings = validated.model_dump(
            by_alias=True, exclude_none=True, exclude_unset=True
        )
        self.integrations.save(integration)
        return validated
