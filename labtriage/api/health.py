"""
Health check endpoints
"""

import time

from fastapi import APIRouter, Request
from labtriage.core.config import settings
from labtriage.core.logging import get_logger
from labtriage.services.patient_data_service import get_patient_data_service
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

router = APIRouter()
logger = get_logger(__name__)
limiter = Limiter(key_func=get_remote_address)


class HealthResponse(BaseModel):
    """Health check response model"""

    status: str
    version: str
    epic_auth_state: str
    timestamp: float


@router.get("/health", response_model=HealthResponse)
@limiter.limit("100/minute")
async def health_check(request: Request):
    """
    Basic health check endpoint
    Returns 200 if the service is running

    Rate limit: 100 requests per minute
    """
    logger.debug("health_check_requested")
    return HealthResponse(
        status="healthy",
        version=settings.APP_VERSION,
        epic_auth_state=get_patient_data_service().epic_auth.state.value,
        timestamp=time.time(),
    )
