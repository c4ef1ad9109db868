"""
Standard API response envelope for consistent responses across all endpoints.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel


class APIEnvelope(BaseModel):
    """
    Standard API response envelope.

    Wraps all API responses in a consistent structure with metadata.
    """

    success: bool
    data: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: str


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def success_response(data: Any, request_id: Optional[str] = None, version: str = "1.0.0", **extra_metadata) -> Dict[str, Any]:
    """
    Create a successful API response.

    Args:
        data: Response data
        request_id: Request correlation ID
        version: API version
        extra_metadata: Additional metadata fields

    Returns:
        API envelope dictionary
    """
    metadata = {
        "version": version,
        **({"request_id": request_id} if request_id else {}),
        **extra_metadata,
    }

    return {
        "success": True,
        "data": data,
        "error": None,
        "metadata": metadata if metadata else None,
        "timestamp": _timestamp(),
    }


def error_response(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
    version: str = "1.0.0",
) -> Dict[str, Any]:
    """
    Create an error API response.

    Args:
        code: Machine-readable error code (e.g., "AUTHORIZATION_FAILED")
        message: Human-readable error message
        details: Additional error details
        request_id: Request correlation ID
        version: API version

    Returns:
        API envelope dictionary
    """
    metadata = {
        "version": version,
        **({"request_id": request_id} if request_id else {}),
    }

    return {
        "success": False,
        "data": None,
        "error": {"code": code, "message": message, "details": details},
        "metadata": metadata,
        "timestamp": _timestamp(),
    }
