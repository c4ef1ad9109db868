"""
Epic FHIR Adapter

Epic-specific FHIR R4 adapter:
- Bearer token from the EpicAuthService (authorization-code flow)
- Patient, DiagnosticReport and laboratory Observation reads
- Expansion of the fetched patient into triage records via an ExpansionPolicy

The adapter never starts an authorization flow itself. Without a usable
token it raises FHIRAuthenticationError before any resource request.

References:
- Epic FHIR API: https://fhir.epic.com/
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp
from labtriage.core.config import settings
from labtriage.core.logging import get_logger
from labtriage.models.patient import CanonicalPatientRecord

from .epic_auth import EpicAuthService, get_epic_auth_service
from .expansion import CyclicExpansionPolicy, ExpansionPolicy
from .fhir_client import FHIRAuthenticationError, FHIRClient, FHIRClientConfig
from .fhir_models import FHIRDiagnosticReport, FHIRObservation, FHIRPatient, FHIRResourceType, parse_bundle_entries

logger = get_logger(__name__)

LABORATORY_CATEGORY = "laboratory"


# ==============================================================================
# Configuration
# ==============================================================================


@dataclass
class EpicConfig:
    """Epic adapter configuration"""

    base_url: str
    patient_id: str
    timeout_seconds: float = 30

    default_headers: Dict[str, str] = field(
        default_factory=lambda: {
            "Accept": "application/fhir+json",
        }
    )

    def client_config(self) -> FHIRClientConfig:
        return FHIRClientConfig(
            base_url=self.base_url,
            timeout_seconds=self.timeout_seconds,
            default_headers=dict(self.default_headers),
        )


@dataclass
class EpicPatientBundle:
    """The three resource sets read for one patient"""

    patient: FHIRPatient
    reports: List[FHIRDiagnosticReport]
    observations: List[FHIRObservation]


# ==============================================================================
# Epic Adapter
# ==============================================================================


class EpicFhirAdapter(FHIRClient):
    """
    Epic FHIR adapter.

    Usage:
        adapter = EpicFhirAdapter(config, auth=get_epic_auth_service())
        records = await adapter.fetch_patient_records(count=10)
    """

    def __init__(
        self,
        epic_config: EpicConfig,
        auth: EpicAuthService,
        session: Optional[aiohttp.ClientSession] = None,
        expansion: Optional[ExpansionPolicy] = None,
    ):
        super().__init__(epic_config.client_config(), session=session)
        self.epic_config = epic_config
        self.auth = auth
        self.expansion = expansion or CyclicExpansionPolicy()

    async def get_access_token(self) -> Optional[str]:
        return await self.auth.get_access_token()

    async def _get_auth_headers(self) -> Dict[str, str]:
        # Checked before every request so a token nearing expiry is refreshed mid-fetch
        token = await self.get_access_token()
        if not token:
            raise FHIRAuthenticationError("Not authenticated with Epic")
        return {"Authorization": f"Bearer {token}"}

    async def fetch_patient_bundle(self, patient_id: Optional[str] = None) -> EpicPatientBundle:
        """
        Read the patient, its diagnostic reports and its lab observations.

        The three requests run in sequence, each with a freshly checked
        token; any non-2xx response aborts the fetch with a FHIRError.

        Raises:
            FHIRAuthenticationError: No usable token, or the server returned 401
            FHIRError: Any other failed request
        """
        patient_id = patient_id or self.epic_config.patient_id

        patient_data = await self.read(FHIRResourceType.PATIENT, patient_id)
        report_bundle = await self.search(FHIRResourceType.DIAGNOSTIC_REPORT, {"patient": patient_id})
        observation_bundle = await self.search(
            FHIRResourceType.OBSERVATION,
            {"patient": patient_id, "category": LABORATORY_CATEGORY},
        )

        bundle = EpicPatientBundle(
            patient=FHIRPatient.from_fhir(patient_data),
            reports=[FHIRDiagnosticReport.from_fhir(r) for r in parse_bundle_entries(report_bundle)],
            observations=[FHIRObservation.from_fhir(o) for o in parse_bundle_entries(observation_bundle)],
        )

        logger.info(
            "epic_patient_fetched",
            patient_id=patient_id,
            reports=len(bundle.reports),
            observations=len(bundle.observations),
        )
        return bundle

    async def fetch_patient_records(self, count: int = 10) -> List[CanonicalPatientRecord]:
        """Fetch the configured patient and expand it into ``count`` records"""
        bundle = await self.fetch_patient_bundle()
        records = self.expansion.expand(bundle.patient, bundle.observations, count)
        logger.info("epic_records_expanded", requested=count, produced=len(records))
        return records

    def get_status(self) -> Dict[str, Any]:
        return {
            "base_url": self.epic_config.base_url,
            "patient_id": self.epic_config.patient_id,
            "auth_state": self.auth.state.value,
        }


# ==============================================================================
# Factory Function
# ==============================================================================


def create_epic_adapter(
    auth: Optional[EpicAuthService] = None,
    session: Optional[aiohttp.ClientSession] = None,
    expansion: Optional[ExpansionPolicy] = None,
) -> EpicFhirAdapter:
    """Create an Epic adapter from application settings"""
    config = EpicConfig(
        base_url=settings.EPIC_FHIR_BASE_URL,
        patient_id=settings.EPIC_TEST_PATIENT_ID,
        timeout_seconds=settings.EPIC_TIMEOUT_SEC,
    )
    return EpicFhirAdapter(
        epic_config=config,
        auth=auth or get_epic_auth_service(),
        session=session,
        expansion=expansion or CyclicExpansionPolicy(seed=settings.EPIC_EXPANSION_SEED),
    )


__all__ = [
    "EpicConfig",
    "EpicFhirAdapter",
    "EpicPatientBundle",
    "create_epic_adapter",
]
