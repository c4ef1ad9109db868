"""
LabTriage Gateway - FastAPI application
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from labtriage.api import epic_auth, health, patients
from labtriage.core.config import settings
from labtriage.core.logging import configure_logging, get_logger
from labtriage.services.patient_data_service import get_patient_data_service
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

# Configure structured logging
configure_logging()
logger = get_logger(__name__)


# Create rate limiter
limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    description="""
    Lab triage over hemoglobin and potassium results

    ## Sources
    - Legacy VistA vitals interface
    - Epic FHIR R4 (SMART on FHIR authorization-code flow)
    - Static mock dataset, also used as the fallback
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Parse ALLOWED_ORIGINS from environment (comma-separated string)
allowed_origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()]

if settings.DEBUG:
    allowed_origins.append("*")  # Allow all in development

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(patients.router)
app.include_router(epic_auth.router)


@app.on_event("startup")
async def startup_event():
    """Application startup tasks"""
    logger.info(
        "application_startup",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        debug=settings.DEBUG,
        vista_base_url=settings.VISTA_API_BASE_URL,
        epic_fhir_base_url=settings.EPIC_FHIR_BASE_URL,
        token_store="file" if settings.EPIC_TOKEN_STORE_PATH else "memory",
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown tasks"""
    logger.info(
        "application_shutdown",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
    )

    await get_patient_data_service().close()


def main() -> None:
    uvicorn.run(
        "labtriage.main:app",
        host="0.0.0.0",  # nosec B104 - intentional for container deployment
        port=8000,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    main()
