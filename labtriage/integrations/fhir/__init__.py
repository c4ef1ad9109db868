"""
FHIR Integration Package

Read-only FHIR R4 client and the Epic adapter used for lab triage.

Components:
- FHIRClient: Minimal FHIR R4 read/search client
- EpicAuthService: SMART on FHIR authorization-code flow with token refresh
- EpicFhirAdapter: Patient + lab reads expanded into canonical records
- ExpansionPolicy: How one fetched patient becomes ``count`` records
- FHIR Models: Dataclass views of Patient, Observation, DiagnosticReport

Usage:
    from labtriage.integrations.fhir import (
        create_epic_adapter,
        get_epic_auth_service,
    )

    auth = get_epic_auth_service()
    if not auth.is_authenticated():
        redirect = auth.initiate_authorization()
        # UI follows redirect.url, callback lands in auth.handle_callback()

    adapter = create_epic_adapter(auth=auth)
    records = await adapter.fetch_patient_records(count=10)
"""

# Epic Adapter
from .epic_adapter import EpicConfig, EpicFhirAdapter, EpicPatientBundle, create_epic_adapter

# Epic Authorization
from .epic_auth import (
    AuthorizationRedirect,
    AuthState,
    AuthToken,
    EpicAuthConfig,
    EpicAuthorizationError,
    EpicAuthService,
    EpicTokenExchangeError,
    create_epic_auth_config,
    get_epic_auth_service,
)

# Expansion
from .expansion import CyclicExpansionPolicy, ExpansionPolicy, FactorRule, NoExpansionPolicy

# FHIR Client
from .fhir_client import (
    FHIRAuthenticationError,
    FHIRAuthorizationError,
    FHIRClient,
    FHIRClientConfig,
    FHIRError,
    FHIRNotFoundError,
    FHIRServerError,
    FHIRTimeoutError,
)

# FHIR Models
from .fhir_models import (
    CodeableConcept,
    FHIRDiagnosticReport,
    FHIRObservation,
    FHIRPatient,
    FHIRResourceType,
    Quantity,
    parse_bundle_entries,
)

# Token storage
from .token_store import InMemoryTokenStore, JsonFileTokenStore, TokenStore

__all__ = [
    # Adapter
    "EpicConfig",
    "EpicFhirAdapter",
    "EpicPatientBundle",
    "create_epic_adapter",
    # Authorization
    "AuthState",
    "AuthToken",
    "AuthorizationRedirect",
    "EpicAuthConfig",
    "EpicAuthService",
    "EpicAuthorizationError",
    "EpicTokenExchangeError",
    "create_epic_auth_config",
    "get_epic_auth_service",
    # Expansion
    "CyclicExpansionPolicy",
    "ExpansionPolicy",
    "FactorRule",
    "NoExpansionPolicy",
    # Client
    "FHIRAuthenticationError",
    "FHIRAuthorizationError",
    "FHIRClient",
    "FHIRClientConfig",
    "FHIRError",
    "FHIRNotFoundError",
    "FHIRServerError",
    "FHIRTimeoutError",
    # Models
    "CodeableConcept",
    "FHIRDiagnosticReport",
    "FHIRObservation",
    "FHIRPatient",
    "FHIRResourceType",
    "Quantity",
    "parse_bundle_entries",
    # Storage
    "InMemoryTokenStore",
    "JsonFileTokenStore",
    "TokenStore",
]
