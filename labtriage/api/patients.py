"""
Patient triage endpoints

- GET /api/patients            records from the selected source (with fallback)
- GET /api/patients/classify   triage bucket for a pair of lab values
- GET /api/patients/sources    selectable data sources
"""

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse
from labtriage.core.api_envelope import APIEnvelope, error_response, success_response
from labtriage.core.config import settings
from labtriage.core.logging import get_logger
from labtriage.engines.clinical_engine.triage import (
    classify_priority,
    get_priority_label,
    label_hemoglobin,
    label_potassium,
)
from labtriage.models.enums import DataSource, get_data_source_display_name
from labtriage.services.patient_data_service import get_patient_data_service
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = get_logger(__name__)
router = APIRouter(prefix="/api/patients", tags=["patients"])
limiter = Limiter(key_func=get_remote_address)


@router.get("", response_model=APIEnvelope)
@limiter.limit("60/minute")
async def list_patients(
    request: Request,
    source: DataSource = Query(DataSource.MOCK, description="Requested data source"),
    count: int = Query(settings.DEFAULT_PATIENT_COUNT, ge=1, le=100),
):
    """
    Fetch triaged patient records.

    Always answers with a dataset and the source actually used. For the fhir
    source without a token the records are empty and ``authorization`` holds
    the URL the browser must visit.

    Rate limit: 60 requests per minute per IP
    """
    result = await get_patient_data_service().fetch_patient_data(source, count)
    return success_response(result.to_dict())


@router.get("/classify", response_model=APIEnvelope)
@limiter.limit("100/minute")
async def classify(
    request: Request,
    hemoglobin: float = Query(..., description="Hemoglobin in g/dL"),
    potassium: float = Query(..., description="Potassium in mmol/L"),
):
    """Classify a hemoglobin/potassium pair"""
    try:
        priority = classify_priority(hemoglobin, potassium)
    except ValueError as e:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_response(code="INVALID_LAB_VALUE", message=str(e)),
        )

    return success_response(
        {
            "priority": priority.value,
            "priority_label": get_priority_label(priority),
            "hemoglobin_label": label_hemoglobin(hemoglobin),
            "potassium_label": label_potassium(potassium),
        }
    )


@router.get("/sources", response_model=APIEnvelope)
async def list_sources():
    return success_response(
        [{"source": source.value, "display_name": get_data_source_display_name(source)} for source in DataSource]
    )
