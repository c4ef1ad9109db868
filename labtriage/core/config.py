"""
Application configuration
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "LabTriage Gateway"
    APP_VERSION: str = "0.1.0"
    # Debug mode switches logging to the console renderer
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # CORS
    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:8080"

    # Legacy VistA vitals interface
    VISTA_API_BASE_URL: str = "http://localhost:8001"
    VISTA_LIST_PATH: str = "LIST"
    VISTA_VITALS_PATH: str = "VITALS"
    VISTA_TIMEOUT_SEC: int = 15
    # Values substituted (and flagged) when a patient has no hemoglobin/potassium vital
    VISTA_FALLBACK_HEMOGLOBIN: float = 10.0
    VISTA_FALLBACK_POTASSIUM: float = 4.5

    # Epic FHIR (SMART on FHIR authorization-code flow)
    EPIC_AUTHORIZATION_URL: str = "https://fhir.epic.com/interconnect-fhir-oauth/oauth2/authorize"
    EPIC_TOKEN_URL: str = "https://fhir.epic.com/interconnect-fhir-oauth/oauth2/token"
    EPIC_FHIR_BASE_URL: str = "https://fhir.epic.com/interconnect-fhir-oauth/api/FHIR/R4"
    EPIC_CLIENT_ID: str = ""
    EPIC_REDIRECT_URI: str = "http://localhost:8080/epic-callback"
    EPIC_SCOPES: str = "openid fhirUser offline_access launch/patient"
    EPIC_TEST_PATIENT_ID: str = "erXuFYUfucBZaryVksYEcMg3"  # Camila Lopez sandbox patient
    EPIC_TIMEOUT_SEC: int = 30
    EPIC_TOKEN_REFRESH_BUFFER_SEC: int = 300  # Refresh 5 min before expiry
    EPIC_TOKEN_STORE_PATH: Optional[str] = None  # None keeps tokens in memory only
    EPIC_EXPANSION_SEED: int = 0

    # Aggregation
    DEFAULT_PATIENT_COUNT: int = 15
    MOCK_DELAY_MS: int = 0

    @property
    def EPIC_SCOPE_LIST(self) -> List[str]:
        return self.EPIC_SCOPES.split()

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# Global settings instance
settings = Settings()
