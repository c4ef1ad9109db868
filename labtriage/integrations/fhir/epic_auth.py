"""
Epic SMART on FHIR Authorization

OAuth 2.0 authorization-code flow against Epic:

    UNAUTHENTICATED
        -> initiate_authorization()      AUTHORIZATION_REQUESTED
        -> handle_callback(code, state)  AUTHENTICATED
        -> (token within 5 min of expiry) TOKEN_NEAR_EXPIRY
            -> refresh ok                AUTHENTICATED
            -> refresh failed            UNAUTHENTICATED

The service never navigates anywhere: ``initiate_authorization`` returns an
AuthorizationRedirect that the UI layer follows. Tokens and the anti-CSRF
state value live in an injected TokenStore.

Reference: http://hl7.org/fhir/smart-app-launch/
"""

import asyncio
import json
import secrets
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlencode

import aiohttp
from labtriage.core.config import settings
from labtriage.core.logging import get_logger

from .fhir_client import FHIRAuthenticationError
from .token_store import STATE_STORAGE_KEY, TOKEN_STORAGE_KEY, InMemoryTokenStore, JsonFileTokenStore, TokenStore

logger = get_logger(__name__)


# ==============================================================================
# Exceptions
# ==============================================================================


class EpicAuthorizationError(FHIRAuthenticationError):
    """Callback rejected: provider error, missing code, or state mismatch"""


class EpicTokenExchangeError(FHIRAuthenticationError):
    """Token endpoint refused the code or refresh token, or was unreachable"""


# ==============================================================================
# Data Classes
# ==============================================================================


class AuthState(str, Enum):
    """Where the authorization flow currently stands"""

    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZATION_REQUESTED = "authorization_requested"
    AUTHENTICATED = "authenticated"
    TOKEN_NEAR_EXPIRY = "token_near_expiry"


@dataclass
class EpicAuthConfig:
    """Epic OAuth2 endpoints and client registration"""

    authorization_url: str
    token_url: str
    client_id: str
    redirect_uri: str
    scopes: List[str] = field(default_factory=lambda: ["openid", "fhirUser", "offline_access", "launch/patient"])
    aud: Optional[str] = None  # FHIR base URL the token is for
    timeout_seconds: float = 30
    refresh_buffer_seconds: int = 300


@dataclass
class AuthToken:
    """OAuth token as persisted in the token store"""

    access_token: str
    expires_in: int  # seconds
    received_at: int  # epoch milliseconds
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: str = ""
    patient: Optional[str] = None  # Patient context returned by Epic

    @classmethod
    def from_token_response(cls, data: Dict[str, Any], received_at: int) -> "AuthToken":
        return cls(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in", 3600)),
            received_at=received_at,
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
            patient=data.get("patient"),
        )

    @classmethod
    def from_json(cls, raw: str) -> "AuthToken":
        data = json.loads(raw)
        return cls(
            access_token=data["access_token"],
            expires_in=int(data["expires_in"]),
            received_at=int(data.get("received_at") or 0),
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
            patient=data.get("patient"),
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @property
    def expires_at(self) -> int:
        """Expiry as epoch milliseconds"""
        return self.received_at + self.expires_in * 1000

    def is_near_expiry(self, now_ms: int, buffer_ms: int = 300_000) -> bool:
        return now_ms > self.expires_at - buffer_ms


@dataclass(frozen=True)
class AuthorizationRedirect:
    """Instruction for the UI: send the user agent to ``url``"""

    url: str
    state: str

    def to_dict(self) -> Dict[str, str]:
        return {"url": self.url, "state": self.state}


def _now_ms() -> int:
    return int(time.time() * 1000)


# ==============================================================================
# Epic Auth Service
# ==============================================================================


class EpicAuthService:
    """
    Epic authorization-code flow with transparent token refresh.

    Usage:
        auth = EpicAuthService(config, store=InMemoryTokenStore())

        redirect = auth.initiate_authorization()
        # UI sends the browser to redirect.url

        # Later, on the redirect back to our callback URL
        await auth.handle_callback({"code": "...", "state": "..."})

        token = await auth.get_access_token()
    """

    def __init__(
        self,
        config: EpicAuthConfig,
        store: Optional[TokenStore] = None,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.config = config
        self.store = store if store is not None else InMemoryTokenStore()
        self._clock = clock
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
        """Close HTTP session if this service created it"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> AuthState:
        token = self._load_token()
        if token is not None:
            if token.is_near_expiry(self._clock(), self._buffer_ms):
                return AuthState.TOKEN_NEAR_EXPIRY
            return AuthState.AUTHENTICATED
        if self.store.get(STATE_STORAGE_KEY):
            return AuthState.AUTHORIZATION_REQUESTED
        return AuthState.UNAUTHENTICATED

    @property
    def _buffer_ms(self) -> int:
        return self.config.refresh_buffer_seconds * 1000

    def is_authenticated(self) -> bool:
        """True when a token is stored (it may still need a refresh)"""
        return self.store.get(TOKEN_STORAGE_KEY) is not None

    def _load_token(self) -> Optional[AuthToken]:
        raw = self.store.get(TOKEN_STORAGE_KEY)
        if raw is None:
            return None
        try:
            return AuthToken.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("epic_stored_token_invalid", error=str(e))
            self.store.delete(TOKEN_STORAGE_KEY)
            return None

    def _save_token(self, token: AuthToken) -> None:
        self.store.set(TOKEN_STORAGE_KEY, token.to_json())

    # =========================================================================
    # Authorization Flow
    # =========================================================================

    def initiate_authorization(self) -> AuthorizationRedirect:
        """
        Start the authorization-code flow.

        Persists a fresh anti-CSRF state value and returns the redirect the UI
        must follow. No data is fetched until the callback completes.
        """
        state = secrets.token_urlsafe(16)
        self.store.set(STATE_STORAGE_KEY, state)

        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": " ".join(self.config.scopes),
            "state": state,
        }
        if self.config.aud:
            params["aud"] = self.config.aud

        url = f"{self.config.authorization_url}?{urlencode(params)}"
        logger.info("epic_authorization_requested", redirect_uri=self.config.redirect_uri)
        return AuthorizationRedirect(url=url, state=state)

    async def handle_callback(self, params: Mapping[str, str]) -> AuthToken:
        """
        Validate the redirect back from Epic and exchange the code.

        Args:
            params: Query parameters of the callback URL

        Returns:
            The stored AuthToken

        Raises:
            EpicAuthorizationError: Provider error, missing code or state mismatch
            EpicTokenExchangeError: Token endpoint failure
        """
        expected_state = self.store.get(STATE_STORAGE_KEY)
        error = params.get("error")
        code = params.get("code")
        state = params.get("state")

        if error:
            self.store.delete(STATE_STORAGE_KEY)
            raise EpicAuthorizationError(f"Authorization error: {error}")

        if not code or not state or not expected_state or not secrets.compare_digest(state.encode(), expected_state.encode()):
            self.store.delete(STATE_STORAGE_KEY)
            logger.warning("epic_callback_rejected", has_code=bool(code), has_state=bool(state))
            raise EpicAuthorizationError("Invalid authorization response")

        try:
            token_data = await self._request_token(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.config.redirect_uri,
                    "client_id": self.config.client_id,
                }
            )
        finally:
            self.store.delete(STATE_STORAGE_KEY)

        token = AuthToken.from_token_response(token_data, received_at=self._clock())
        self._save_token(token)

        logger.info("epic_authenticated", expires_in=token.expires_in, has_refresh_token=bool(token.refresh_token))
        return token

    # =========================================================================
    # Token Management
    # =========================================================================

    async def get_access_token(self) -> Optional[str]:
        """
        Current access token, refreshed silently when near expiry.

        Returns None (and discards the stored token) when the token is expiring
        and cannot be refreshed; the caller must go back through
        ``initiate_authorization``.
        """
        token = self._load_token()
        if token is None:
            return None

        if not token.is_near_expiry(self._clock(), self._buffer_ms):
            return token.access_token

        if token.refresh_token:
            try:
                refreshed = await self._refresh(token)
                return refreshed.access_token
            except EpicTokenExchangeError as e:
                logger.warning("epic_token_refresh_failed", error=str(e))

        self.store.delete(TOKEN_STORAGE_KEY)
        logger.info("epic_token_discarded")
        return None

    async def _refresh(self, token: AuthToken) -> AuthToken:
        token_data = await self._request_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": token.refresh_token,
                "client_id": self.config.client_id,
            }
        )
        new_token = AuthToken.from_token_response(token_data, received_at=self._clock())

        # Preserve refresh token and patient context if not returned
        if not new_token.refresh_token:
            new_token.refresh_token = token.refresh_token
        if not new_token.patient:
            new_token.patient = token.patient

        self._save_token(new_token)
        logger.info("epic_token_refreshed", expires_in=new_token.expires_in)
        return new_token

    async def _request_token(self, data: Dict[str, str]) -> Dict[str, Any]:
        """POST a form-encoded grant to the token endpoint"""
        session = await self._get_session()
        headers = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}

        try:
            async with session.post(self.config.token_url, data=data, headers=headers, timeout=self._timeout) as response:
                if not 200 <= response.status < 300:
                    error_text = await response.text()
                    logger.error("epic_token_request_failed", status=response.status, body=error_text[:200])
                    raise EpicTokenExchangeError(f"Token request failed: {response.status}", response.status)
                token_data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise EpicTokenExchangeError("Token request timed out")
        except aiohttp.ClientError as e:
            raise EpicTokenExchangeError(f"Token request error: {e}")

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise EpicTokenExchangeError("Token response did not include an access token")
        return token_data

    def logout(self) -> None:
        """Forget the stored token. No revocation call is made."""
        self.store.delete(TOKEN_STORAGE_KEY)
        logger.info("epic_logged_out")


# ==============================================================================
# Global Instance
# ==============================================================================


_epic_auth_service: Optional[EpicAuthService] = None


def create_epic_auth_config() -> EpicAuthConfig:
    return EpicAuthConfig(
        authorization_url=settings.EPIC_AUTHORIZATION_URL,
        token_url=settings.EPIC_TOKEN_URL,
        client_id=settings.EPIC_CLIENT_ID,
        redirect_uri=settings.EPIC_REDIRECT_URI,
        scopes=settings.EPIC_SCOPE_LIST,
        aud=settings.EPIC_FHIR_BASE_URL,
        timeout_seconds=settings.EPIC_TIMEOUT_SEC,
        refresh_buffer_seconds=settings.EPIC_TOKEN_REFRESH_BUFFER_SEC,
    )


def get_epic_auth_service() -> EpicAuthService:
    """Get or create Epic auth service instance"""
    global _epic_auth_service

    if _epic_auth_service is None:
        if settings.EPIC_TOKEN_STORE_PATH:
            store: TokenStore = JsonFileTokenStore(settings.EPIC_TOKEN_STORE_PATH)
        else:
            store = InMemoryTokenStore()
        _epic_auth_service = EpicAuthService(create_epic_auth_config(), store=store)

    return _epic_auth_service


__all__ = [
    "AuthState",
    "AuthToken",
    "AuthorizationRedirect",
    "EpicAuthConfig",
    "EpicAuthService",
    "EpicAuthorizationError",
    "EpicTokenExchangeError",
    "create_epic_auth_config",
    "get_epic_auth_service",
]
