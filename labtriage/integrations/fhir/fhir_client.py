"""
FHIR R4 Client

Minimal read-only FHIR R4 client:
- Resource read and search returning raw JSON
- Bearer authentication hook for adapters
- Bounded per-request timeout
- Typed exceptions per failure class

Any non-2xx response raises; callers decide whether to fall back.
Designed to be extended by EHR-specific adapters (Epic).
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp
from labtriage.core.logging import get_logger

from .fhir_models import FHIRResourceType

logger = get_logger(__name__)


# ==============================================================================
# Exceptions
# ==============================================================================


class FHIRError(Exception):
    """Base FHIR error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FHIRAuthenticationError(FHIRError):
    """No usable token, or the server rejected it"""


class FHIRAuthorizationError(FHIRError):
    """Authorization denied"""


class FHIRNotFoundError(FHIRError):
    """Resource not found"""


class FHIRServerError(FHIRError):
    """Server error"""


class FHIRTimeoutError(FHIRError):
    """Request timeout"""


# ==============================================================================
# Configuration
# ==============================================================================


@dataclass
class FHIRClientConfig:
    """Configuration for FHIR client"""

    base_url: str
    timeout_seconds: float = 30

    default_headers: Dict[str, str] = field(
        default_factory=lambda: {
            "Accept": "application/fhir+json, application/json",
        }
    )


# ==============================================================================
# FHIR Client
# ==============================================================================


class FHIRClient:
    """
    Generic read-only FHIR R4 client.

    Usage:
        config = FHIRClientConfig(base_url="https://fhir.example.com/R4")
        async with FHIRClient(config) as client:
            patient = await client.read(FHIRResourceType.PATIENT, "123")
            bundle = await client.search(FHIRResourceType.OBSERVATION, {"patient": "123"})
    """

    def __init__(self, config: FHIRClientConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close HTTP session if this client created it"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # =========================================================================
    # Authentication (to be overridden by adapters)
    # =========================================================================

    async def get_access_token(self) -> Optional[str]:
        """
        Get access token for authenticated requests.
        Override in subclass for OAuth/SMART on FHIR.
        """
        return None

    async def _get_auth_headers(self) -> Dict[str, str]:
        token = await self.get_access_token()
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def read(
        self,
        resource_type: FHIRResourceType,
        resource_id: str,
    ) -> Dict[str, Any]:
        """Read a single resource by ID"""
        url = f"{self.config.base_url.rstrip('/')}/{resource_type.value}/{resource_id}"
        headers = await self._get_auth_headers()
        return await self._request(url, resource_type.value, headers=headers)

    async def search(
        self,
        resource_type: FHIRResourceType,
        params: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Search for resources; returns the raw Bundle"""
        url = f"{self.config.base_url.rstrip('/')}/{resource_type.value}"
        headers = await self._get_auth_headers()
        return await self._request(url, resource_type.value, params=params, headers=headers)

    async def _request(
        self,
        url: str,
        resource_type: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """GET a FHIR endpoint; every non-2xx status raises"""
        session = await self._get_session()
        request_headers = {**self.config.default_headers, **(headers or {})}

        try:
            async with session.get(url, params=params, headers=request_headers, timeout=self._timeout) as response:
                status = response.status
                if 200 <= status < 300:
                    return await response.json(content_type=None)

                text = await response.text()
                logger.warning("fhir_request_failed", resource_type=resource_type, status=status)

                if status == 401:
                    raise FHIRAuthenticationError("Authentication failed", status)
                if status == 403:
                    raise FHIRAuthorizationError("Authorization denied", status)
                if status == 404:
                    raise FHIRNotFoundError(f"{resource_type} not found", status)
                if status >= 500:
                    raise FHIRServerError(f"Server error: {status}", status)
                raise FHIRError(f"Unexpected response {status}: {text[:200]}", status)

        except asyncio.TimeoutError:
            raise FHIRTimeoutError(f"{resource_type} request timed out")
        except aiohttp.ClientError as e:
            raise FHIRError(f"Network error: {str(e)}")


__all__ = [
    "FHIRAuthenticationError",
    "FHIRAuthorizationError",
    "FHIRClient",
    "FHIRClientConfig",
    "FHIRError",
    "FHIRNotFoundError",
    "FHIRServerError",
    "FHIRTimeoutError",
]
