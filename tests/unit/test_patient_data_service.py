"""
Unit tests for the patient data aggregator

Tests source dispatch, mock fallback, notifications and the Epic
authorization hand-off.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from labtriage.core.notifications import NotificationBus, NotificationLevel
from labtriage.integrations.fhir.epic_adapter import EpicConfig, EpicFhirAdapter
from labtriage.integrations.fhir.epic_auth import (
    AuthorizationRedirect,
    AuthToken,
    EpicAuthConfig,
    EpicAuthorizationError,
    EpicAuthService,
)
from labtriage.integrations.fhir.fhir_client import FHIRAuthenticationError, FHIRServerError
from labtriage.integrations.fhir.token_store import STATE_STORAGE_KEY, InMemoryTokenStore
from labtriage.integrations.vista.vitals_client import VistaConnectionError, VistaResponseError
from labtriage.models.enums import DataSource
from labtriage.models.patient import CanonicalPatientRecord
from labtriage.services import patient_data_service
from labtriage.services.patient_data_service import PatientDataService

from tests.conftest import FakeResponse

REDIRECT = AuthorizationRedirect(url="https://auth.example.test/authorize?state=s1", state="s1")


def _record(record_id, hemoglobin=13.0, potassium=4.2):
    return CanonicalPatientRecord.build(
        id=record_id,
        display_name="Patient",
        external_patient_id=record_id,
        date_of_birth=None,
        hemoglobin=hemoglobin,
        potassium=potassium,
    )


@pytest.fixture
def bus():
    return NotificationBus()


@pytest.fixture
def vista_client():
    client = MagicMock()
    client.fetch_all_patient_records = AsyncMock(return_value=[_record("vista-1"), _record("vista-2", 7.0)])
    client.close = AsyncMock()
    return client


@pytest.fixture
def epic_auth():
    auth = MagicMock()
    auth.is_authenticated.return_value = True
    auth.initiate_authorization.return_value = REDIRECT
    auth.close = AsyncMock()
    return auth


@pytest.fixture
def epic_adapter(epic_auth):
    adapter = MagicMock()
    adapter.auth = epic_auth
    adapter.fetch_patient_records = AsyncMock(return_value=[_record("epic-x-0")])
    adapter.close = AsyncMock()
    return adapter


@pytest.fixture
def service(vista_client, epic_adapter, epic_auth, bus):
    return PatientDataService(
        vista_client=vista_client,
        epic_adapter=epic_adapter,
        epic_auth=epic_auth,
        notification_bus=bus,
        mock_delay_ms=0,
    )


class TestLegacyVitals:
    """Tests for the legacy-vitals source."""

    @pytest.mark.asyncio
    async def test_records_tagged_with_source(self, service, vista_client):
        result = await service.fetch_patient_data(DataSource.LEGACY_VITALS, 10)

        vista_client.fetch_all_patient_records.assert_awaited_once_with(10)
        assert result.actual_source == DataSource.LEGACY_VITALS
        assert [r.id for r in result.records] == ["vista-1", "vista-2"]
        assert all(r.source == DataSource.LEGACY_VITALS for r in result.records)
        assert result.notifications == []
        assert result.used_fallback is False

    @pytest.mark.asyncio
    async def test_adapter_failure_resolves_to_mock(self, service, vista_client, bus):
        """Test a thrown adapter error never reaches the caller."""
        vista_client.fetch_all_patient_records.side_effect = VistaConnectionError("connection refused")

        result = await service.fetch_patient_data("legacy-vitals", 10)

        assert result.actual_source == DataSource.MOCK
        assert result.requested_source == DataSource.LEGACY_VITALS
        assert len(result.records) > 0
        assert all(r.source == DataSource.MOCK for r in result.records)
        assert [n.level for n in result.notifications] == [NotificationLevel.WARNING]
        assert result.notifications[0].message == "Could not fetch data from VistA EHR, using mock data"
        assert bus.get_history() == result.notifications

    @pytest.mark.asyncio
    async def test_non_2xx_list_response_warns(self, service, vista_client):
        vista_client.fetch_all_patient_records.side_effect = VistaResponseError("LIST failed with status 503", 503)

        result = await service.fetch_patient_data(DataSource.LEGACY_VITALS, 5)

        assert result.actual_source == DataSource.MOCK
        assert [n.level for n in result.notifications] == [NotificationLevel.WARNING]

    @pytest.mark.asyncio
    async def test_unexpected_error_reported_as_error(self, service, vista_client):
        vista_client.fetch_all_patient_records.side_effect = RuntimeError("boom")

        result = await service.fetch_patient_data(DataSource.LEGACY_VITALS, 5)

        assert result.actual_source == DataSource.MOCK
        assert [n.level for n in result.notifications] == [NotificationLevel.ERROR]
        assert "VistA EHR" in result.notifications[0].message

    @pytest.mark.asyncio
    async def test_empty_result_resolves_to_mock_with_warning(self, service, vista_client):
        vista_client.fetch_all_patient_records.return_value = []

        result = await service.fetch_patient_data(DataSource.LEGACY_VITALS, 10)

        assert result.actual_source == DataSource.MOCK
        assert len(result.records) == 15
        (notification,) = result.notifications
        assert notification.level == NotificationLevel.WARNING
        assert notification.source == "legacy-vitals"
        assert "VistA EHR" in notification.message

    @pytest.mark.asyncio
    async def test_default_count(self, service, vista_client):
        await service.fetch_patient_data(DataSource.LEGACY_VITALS)
        vista_client.fetch_all_patient_records.assert_awaited_once_with(15)


class TestFhir:
    """Tests for the fhir source."""

    @pytest.mark.asyncio
    async def test_unauthenticated_returns_redirect(self, service, epic_auth, epic_adapter):
        epic_auth.is_authenticated.return_value = False

        result = await service.fetch_patient_data(DataSource.FHIR, 10)

        assert result.records == []
        assert result.actual_source == DataSource.FHIR
        assert result.authorization == REDIRECT
        assert result.awaiting_authorization is True
        epic_auth.initiate_authorization.assert_called_once_with()
        epic_adapter.fetch_patient_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_authenticated_records(self, service, epic_adapter):
        result = await service.fetch_patient_data(DataSource.FHIR, 3)

        epic_adapter.fetch_patient_records.assert_awaited_once_with(3)
        assert result.actual_source == DataSource.FHIR
        assert [r.source for r in result.records] == [DataSource.FHIR]
        assert result.authorization is None

    @pytest.mark.asyncio
    async def test_authentication_failure(self, service, epic_adapter, epic_auth):
        epic_adapter.fetch_patient_records.side_effect = FHIRAuthenticationError("Authentication failed", 401)

        result = await service.fetch_patient_data(DataSource.FHIR, 10)

        assert result.actual_source == DataSource.MOCK
        assert len(result.records) == 15
        epic_auth.logout.assert_called_once_with()
        (notification,) = result.notifications
        assert notification.level == NotificationLevel.ERROR
        assert "authentication failed" in notification.message

    @pytest.mark.asyncio
    async def test_server_error(self, service, epic_adapter, epic_auth):
        epic_adapter.fetch_patient_records.side_effect = FHIRServerError("Server error: 503", 503)

        result = await service.fetch_patient_data(DataSource.FHIR, 10)

        assert result.actual_source == DataSource.MOCK
        epic_auth.logout.assert_not_called()
        assert result.notifications[0].level == NotificationLevel.WARNING

    @pytest.mark.asyncio
    async def test_empty_result(self, service, epic_adapter):
        epic_adapter.fetch_patient_records.return_value = []

        result = await service.fetch_patient_data(DataSource.FHIR, 10)

        assert result.actual_source == DataSource.MOCK
        assert result.notifications[0].level == NotificationLevel.WARNING
        assert "Epic EHR" in result.notifications[0].message


class TestMock:
    """Tests for the mock source."""

    @pytest.mark.asyncio
    async def test_static_dataset(self, service, vista_client, epic_adapter):
        result = await service.fetch_patient_data(DataSource.MOCK, 3)

        assert result.actual_source == DataSource.MOCK
        assert result.used_fallback is False
        assert len(result.records) == 15
        assert result.notifications == []
        vista_client.fetch_all_patient_records.assert_not_awaited()
        epic_adapter.fetch_patient_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_to_dict(self, service):
        data = (await service.fetch_patient_data(DataSource.MOCK)).to_dict()

        assert data["actual_source"] == "mock"
        assert data["actual_source_display_name"] == "Mock Data"
        assert data["authorization"] is None
        assert len(data["records"]) == 15

    @pytest.mark.asyncio
    async def test_unknown_source_rejected(self, service):
        with pytest.raises(ValueError):
            await service.fetch_patient_data("somewhere-else")


class TestEpicHandOff:
    """Tests with the real Epic auth service and adapter wired together."""

    @pytest.fixture
    def wired(self, fake_session, clock, bus, vista_client):
        store = InMemoryTokenStore()
        auth = EpicAuthService(
            EpicAuthConfig(
                authorization_url="https://auth.example.test/oauth2/authorize",
                token_url="https://auth.example.test/oauth2/token",
                client_id="client-1",
                redirect_uri="http://localhost:8080/epic-callback",
            ),
            store=store,
            session=fake_session,
            clock=clock,
        )
        adapter = EpicFhirAdapter(
            EpicConfig(base_url="https://fhir.example.test/R4", patient_id="p1"),
            auth=auth,
            session=fake_session,
        )
        service = PatientDataService(vista_client=vista_client, epic_adapter=adapter, notification_bus=bus)
        return service, auth, store

    @pytest.mark.asyncio
    async def test_unauthenticated_fetch_redirects_once_without_resource_calls(self, wired, fake_session):
        service, auth, store = wired

        result = await service.fetch_patient_data(DataSource.FHIR, 10)

        assert service.epic_auth is auth
        assert result.records == []
        assert result.authorization.url.startswith("https://auth.example.test/oauth2/authorize?")
        assert store.get(STATE_STORAGE_KEY) == result.authorization.state
        assert fake_session.calls_to("/Patient/p1") == []
        assert fake_session.calls == []

    @pytest.mark.asyncio
    async def test_callback_success_notifies(self, wired, fake_session, bus):
        service, auth, _ = wired
        fake_session.route(
            "POST",
            "/oauth2/token",
            FakeResponse(json_data={"access_token": "a", "refresh_token": "r", "expires_in": 3600}),
        )
        redirect = service.initiate_authorization()

        token = await service.handle_authorization_callback({"code": "c", "state": redirect.state})

        assert isinstance(token, AuthToken)
        assert service.is_authenticated() is True
        assert bus.get_history()[-1].level == NotificationLevel.SUCCESS

    @pytest.mark.asyncio
    async def test_callback_failure_notifies_and_raises(self, wired, bus):
        service, _, _ = wired
        service.initiate_authorization()

        with pytest.raises(EpicAuthorizationError):
            await service.handle_authorization_callback({"code": "c", "state": "forged"})

        assert bus.get_history()[-1].level == NotificationLevel.ERROR
        assert service.is_authenticated() is False

    @pytest.mark.asyncio
    async def test_logout(self, wired, bus, clock):
        service, auth, store = wired
        store.set(
            "epic_auth_token",
            AuthToken(access_token="a", expires_in=3600, received_at=clock.now_ms).to_json(),
        )

        await service.logout()

        assert service.is_authenticated() is False
        assert bus.get_history()[-1].level == NotificationLevel.INFO


class TestModuleInterface:
    """Tests for the module-level functions backed by the global service."""

    @pytest.fixture(autouse=True)
    def install(self, service):
        patient_data_service.set_patient_data_service(service)
        yield
        patient_data_service.set_patient_data_service(None)

    @pytest.mark.asyncio
    async def test_fetch_patient_data(self):
        result = await patient_data_service.fetch_patient_data(DataSource.MOCK)
        assert result.actual_source == DataSource.MOCK

    def test_authorization_helpers(self, epic_auth):
        assert patient_data_service.is_authenticated() is True
        assert patient_data_service.initiate_authorization() == REDIRECT

    @pytest.mark.asyncio
    async def test_logout(self, epic_auth):
        await patient_data_service.logout()
        epic_auth.logout.assert_called_once_with()

    def test_reexported_helpers(self):
        assert patient_data_service.classify_priority(7.0, 4.0).value == "urgent"
        assert patient_data_service.get_factor_label("frailty") == "Frailty"
        assert patient_data_service.get_data_source_display_name(DataSource.FHIR) == "Epic EHR"
