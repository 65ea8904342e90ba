"""
Unit tests for integration management.
"""

import pytest
from pydantic import ValidationError

from conftest import TENANT_ID
from marketplace_sync.db.repositories import SqlIntegrationRepository
from marketplace_sync.sync.errors import IntegrationNotFoundError
from marketplace_sync.sync.integrations import IntegrationService


@pytest.fixture
def service(session) -> IntegrationService:
    return IntegrationService(SqlIntegrationRepository(session))


class TestStatus:
    def test_status_has_no_tokens(self, service, make_integration) -> None:
        integration = make_integration(sync_error_count=2, last_sync_error="HTTP 503")

        status = service.get_status(TENANT_ID, integration.id)
        payload = status.model_dump(by_alias=True)

        assert payload["isActive"] is True
        assert payload["syncErrorCount"] == 2
        assert payload["lastSyncError"] == "HTTP 503"
        assert "accessToken" not in payload
        assert "refreshToken" not in payload

    def test_other_tenant_sees_nothing(self, service, make_integration) -> None:
        integration = make_integration()
        make_integration(tenant_id="tenant-2")

        with pytest.raises(IntegrationNotFoundError):
            service.get_status("tenant-2", integration.id)
        assert [s.id for s in service.list_by_tenant(TENANT_ID)] == [integration.id]


class TestActivation:
    def test_deactivate(self, service, make_integration) -> None:
        integration = make_integration()

        status = service.deactivate(TENANT_ID, integration.id)

        assert status.is_active is False
        assert integration.is_active is False

    def test_reactivate_clears_health(self, service, make_integration) -> None:
        integration = make_integration(is_active=False, sync_error_count=5, last_sync_error="boom")

        status = service.reactivate(TENANT_ID, integration.id)

        assert status.is_active is True
        assert integration.sync_error_count == 0
        assert integration.last_sync_error is None


class TestSettings:
    def test_defaults_fill_missing_keys(self, service, make_integration) -> None:
        integration = make_integration(settings={"autoMarkAsPaid": True})

        settings = service.get_settings_with_defaults(TENANT_ID, integration.id)

        assert settings.auto_mark_as_paid is True
        assert settings.auto_generate_invoices is True
        assert settings.sync_frequency_minutes == 60
        assert service.get_settings(TENANT_ID, integration.id) == {"autoMarkAsPaid": True}

    def test_update_merges_into_stored(self, service, make_integration) -> None:
        integration = make_integration(settings={"autoMarkAsPaid": True})

        service.update_settings(
            TENANT_ID, integration.id, {"syncFrequencyMinutes": 15, "unknownKey": "dropped"}
        )

        assert integration.settings == {"autoMarkAsPaid": True, "syncFrequencyMinutes": 15}

    def test_invalid_update_is_not_saved(self, service, make_integration) -> None:
        integration = make_integration(settings={"autoMarkAsPaid": True})

        with pytest.raises(ValidationError):
            service.update_settings(TENANT_ID, integration.id, {"syncFrequencyMinutes": 0})

        assert integration.settings == {"autoMarkAsPaid": True}
