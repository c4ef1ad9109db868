"""
Epic authorization endpoints

The browser is sent to ``/authorize``'s URL, Epic redirects back to the
configured redirect URI, and the UI forwards those query parameters to
``/callback``.
"""

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from labtriage.core.api_envelope import APIEnvelope, error_response, success_response
from labtriage.core.logging import get_logger
from labtriage.integrations.fhir.fhir_client import FHIRAuthenticationError
from labtriage.services.patient_data_service import get_patient_data_service
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = get_logger(__name__)
router = APIRouter(prefix="/api/auth/epic", tags=["authentication", "epic"])
limiter = Limiter(key_func=get_remote_address)


@router.get("/authorize", response_model=APIEnvelope)
@limiter.limit("30/minute")
async def epic_authorize(request: Request):
    """
    Start the Epic authorization-code flow

    Returns the authorization URL and the state value the callback must echo.

    Rate limit: 30 requests per minute per IP
    """
    redirect = get_patient_data_service().initiate_authorization()
    return success_response(redirect.to_dict())


@router.get("/callback", response_model=APIEnvelope)
@limiter.limit("10/minute")
async def epic_callback(request: Request):
    """
    Complete the flow with the ``code`` and ``state`` Epic redirected with

    Rate limit: 10 requests per minute per IP
    """
    params = dict(request.query_params)
    try:
        token = await get_patient_data_service().handle_authorization_callback(params)
    except FHIRAuthenticationError as e:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=error_response(code="AUTHORIZATION_FAILED", message=str(e)),
        )

    return success_response(
        {
            "authenticated": True,
            "expires_in": token.expires_in,
            "patient": token.patient,
        }
    )


@router.get("/status", response_model=APIEnvelope)
async def epic_status():
    service = get_patient_data_service()
    return success_response(
        {
            "authenticated": service.is_authenticated(),
            "state": service.epic_auth.state.value,
        }
    )


@router.post("/logout", response_model=APIEnvelope)
async def epic_logout():
    """Forget the stored Epic token"""
    await get_patient_data_service().logout()
    return success_response({"authenticated": False})
