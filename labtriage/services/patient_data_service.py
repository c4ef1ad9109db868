"""
Patient Data Service

Source selection for the triage dashboard. Dispatches to the VistA client,
the Epic adapter or the static mock dataset and always resolves with some
dataset plus the source actually used:

- legacy-vitals: VistA records; none (or a failure) means mock data
- fhir: without a token the authorization flow is started and the result is
  empty until the callback completes; otherwise Epic records, falling back
  to mock data like VistA
- mock: the static dataset

Adapter errors are logged, reported as notifications and never re-raised.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from labtriage.core.config import settings
from labtriage.core.logging import get_logger
from labtriage.core.notifications import Notification, NotificationBus, NotificationLevel, get_notification_bus
from labtriage.engines.clinical_engine.triage import classify_priority, get_factor_label
from labtriage.integrations.fhir.epic_adapter import EpicFhirAdapter, create_epic_adapter
from labtriage.integrations.fhir.epic_auth import (
    AuthorizationRedirect,
    AuthToken,
    EpicAuthService,
    get_epic_auth_service,
)
from labtriage.integrations.fhir.fhir_client import FHIRAuthenticationError, FHIRError
from labtriage.integrations.vista.vitals_client import VistaError, VistaVitalsClient, create_vista_client
from labtriage.models.enums import DataSource, get_data_source_display_name
from labtriage.models.patient import CanonicalPatientRecord
from labtriage.services.mock_data import get_mock_patients

logger = get_logger(__name__)


@dataclass
class PatientDataResult:
    """Outcome of one fetch"""

    records: List[CanonicalPatientRecord]
    requested_source: DataSource
    actual_source: DataSource
    notifications: List[Notification] = field(default_factory=list)
    # Set when the caller must send the user to Epic before data is available
    authorization: Optional[AuthorizationRedirect] = None

    @property
    def awaiting_authorization(self) -> bool:
        return self.authorization is not None

    @property
    def used_fallback(self) -> bool:
        return self.actual_source != self.requested_source

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": [r.to_dict() for r in self.records],
            "requested_source": self.requested_source.value,
            "actual_source": self.actual_source.value,
            "actual_source_display_name": get_data_source_display_name(self.actual_source),
            "notifications": [n.to_dict() for n in self.notifications],
            "authorization": self.authorization.to_dict() if self.authorization else None,
        }


class PatientDataService:
    """
    Aggregates patient records across data sources.

    Usage:
        service = PatientDataService()
        result = await service.fetch_patient_data(DataSource.LEGACY_VITALS, count=10)
        if result.awaiting_authorization:
            ...  # send the browser to result.authorization.url
    """

    def __init__(
        self,
        vista_client: Optional[VistaVitalsClient] = None,
        epic_adapter: Optional[EpicFhirAdapter] = None,
        epic_auth: Optional[EpicAuthService] = None,
        notification_bus: Optional[NotificationBus] = None,
        mock_delay_ms: Optional[int] = None,
    ):
        if epic_auth is None:
            epic_auth = epic_adapter.auth if epic_adapter is not None else get_epic_auth_service()

        self.vista_client = vista_client or create_vista_client()
        self.epic_auth = epic_auth
        self.epic_adapter = epic_adapter or create_epic_adapter(auth=epic_auth)
        self.notification_bus = notification_bus or get_notification_bus()
        self.mock_delay_ms = settings.MOCK_DELAY_MS if mock_delay_ms is None else mock_delay_ms

    async def close(self) -> None:
        """Close HTTP sessions owned by the adapters"""
        await self.vista_client.close()
        await self.epic_adapter.close()
        await self.epic_auth.close()

    async def _notify(
        self,
        notifications: List[Notification],
        level: NotificationLevel,
        message: str,
        source: DataSource,
    ) -> None:
        notification = Notification(level=level, message=message, source=source.value)
        notifications.append(notification)
        await self.notification_bus.publish(notification)

    # =========================================================================
    # Fetching
    # =========================================================================

    async def fetch_patient_data(self, source: DataSource, count: Optional[int] = None) -> PatientDataResult:
        """
        Fetch canonical records from ``source``.

        Args:
            source: Requested data source
            count: Number of patients to request (defaults to DEFAULT_PATIENT_COUNT)

        Returns:
            PatientDataResult; ``actual_source`` is mock whenever a fallback happened
        """
        source = DataSource(source)
        count = settings.DEFAULT_PATIENT_COUNT if count is None else count
        notifications: List[Notification] = []
        display_name = get_data_source_display_name(source)

        logger.info("patient_data_requested", source=source.value, count=count)

        try:
            if source == DataSource.LEGACY_VITALS:
                records = await self.vista_client.fetch_all_patient_records(count)
                if not records:
                    await self._notify(
                        notifications,
                        NotificationLevel.WARNING,
                        f"Could not fetch data from {display_name}, using mock data",
                        source,
                    )
                    return await self._mock_result(source, notifications)

            elif source == DataSource.FHIR:
                if not self.epic_auth.is_authenticated():
                    redirect = self.epic_auth.initiate_authorization()
                    await self._notify(
                        notifications,
                        NotificationLevel.INFO,
                        f"Redirecting to {display_name} for authorization",
                        source,
                    )
                    return PatientDataResult(
                        records=[],
                        requested_source=source,
                        actual_source=source,
                        notifications=notifications,
                        authorization=redirect,
                    )

                records = await self.epic_adapter.fetch_patient_records(count)
                if not records:
                    await self._notify(
                        notifications,
                        NotificationLevel.WARNING,
                        f"Could not fetch data from {display_name}, using mock data",
                        source,
                    )
                    return await self._mock_result(source, notifications)

            else:
                return await self._mock_result(source, notifications)

        except FHIRAuthenticationError as e:
            logger.warning("patient_data_authentication_failed", source=source.value, error=str(e))
            self.epic_auth.logout()
            await self._notify(
                notifications,
                NotificationLevel.ERROR,
                f"{display_name} authentication failed, using mock data",
                source,
            )
            return await self._mock_result(source, notifications)

        except (VistaError, FHIRError) as e:
            logger.warning("patient_data_source_unavailable", source=source.value, error=str(e))
            await self._notify(
                notifications,
                NotificationLevel.WARNING,
                f"Could not fetch data from {display_name}, using mock data",
                source,
            )
            return await self._mock_result(source, notifications)

        except Exception as e:
            logger.error("patient_data_fetch_failed", source=source.value, error=str(e), exc_info=True)
            await self._notify(
                notifications,
                NotificationLevel.ERROR,
                f"Failed to load data from {display_name}, using mock data",
                source,
            )
            return await self._mock_result(source, notifications)

        logger.info("patient_data_loaded", source=source.value, count=len(records))
        return PatientDataResult(
            records=[record.with_source(source) for record in records],
            requested_source=source,
            actual_source=source,
            notifications=notifications,
        )

    async def _mock_result(self, requested: DataSource, notifications: List[Notification]) -> PatientDataResult:
        if self.mock_delay_ms > 0:
            await asyncio.sleep(self.mock_delay_ms / 1000)

        return PatientDataResult(
            records=[record.with_source(DataSource.MOCK) for record in get_mock_patients()],
            requested_source=requested,
            actual_source=DataSource.MOCK,
            notifications=notifications,
        )

    # =========================================================================
    # Epic Authorization
    # =========================================================================

    def is_authenticated(self) -> bool:
        return self.epic_auth.is_authenticated()

    def initiate_authorization(self) -> AuthorizationRedirect:
        return self.epic_auth.initiate_authorization()

    async def handle_authorization_callback(self, params: Mapping[str, str]) -> AuthToken:
        """
        Complete the Epic flow from the callback query parameters.

        Raises:
            FHIRAuthenticationError: The callback was rejected or the code exchange failed
        """
        display_name = get_data_source_display_name(DataSource.FHIR)
        try:
            token = await self.epic_auth.handle_callback(params)
        except FHIRAuthenticationError as e:
            logger.warning("epic_callback_failed", error=str(e))
            await self.notification_bus.publish(
                Notification(
                    level=NotificationLevel.ERROR,
                    message=f"{display_name} authentication failed",
                    source=DataSource.FHIR.value,
                )
            )
            raise

        await self.notification_bus.publish(
            Notification(
                level=NotificationLevel.SUCCESS,
                message=f"Successfully authenticated with {display_name}",
                source=DataSource.FHIR.value,
            )
        )
        return token

    async def logout(self) -> None:
        self.epic_auth.logout()
        await self.notification_bus.publish(
            Notification(
                level=NotificationLevel.INFO,
                message=f"Logged out from {get_data_source_display_name(DataSource.FHIR)}",
                source=DataSource.FHIR.value,
            )
        )


# ==============================================================================
# Global Instance
# ==============================================================================


_patient_data_service: Optional[PatientDataService] = None


def get_patient_data_service() -> PatientDataService:
    """Get or create patient data service instance"""
    global _patient_data_service

    if _patient_data_service is None:
        _patient_data_service = PatientDataService()

    return _patient_data_service


def set_patient_data_service(service: Optional[PatientDataService]) -> None:
    """Replace the global instance (None resets it)"""
    global _patient_data_service
    _patient_data_service = service


# ==============================================================================
# Module interface used by the UI layer
# ==============================================================================


async def fetch_patient_data(source: DataSource, count: Optional[int] = None) -> PatientDataResult:
    return await get_patient_data_service().fetch_patient_data(source, count)


def is_authenticated() -> bool:
    return get_patient_data_service().is_authenticated()


def initiate_authorization() -> AuthorizationRedirect:
    return get_patient_data_service().initiate_authorization()


async def handle_authorization_callback(params: Mapping[str, str]) -> AuthToken:
    return await get_patient_data_service().handle_authorization_callback(params)


async def logout() -> None:
    await get_patient_data_service().logout()


__all__ = [
    "PatientDataResult",
    "PatientDataService",
    "classify_priority",
    "fetch_patient_data",
    "get_data_source_display_name",
    "get_factor_label",
    "get_patient_data_service",
    "handle_authorization_callback",
    "initiate_authorization",
    "is_authenticated",
    "logout",
    "set_patient_data_service",
]
