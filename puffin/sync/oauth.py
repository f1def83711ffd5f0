"""
Google OAuth 2.0 flow for Drive access.

Requests only per-file Drive access plus the account email. Tokens are
persisted through SyncConfigManager; this module is the only writer.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from ..exceptions import AuthError, create_error_context
from .base import OAuthCallbackResult, TokenSet, now_ms
from .config import SyncConfigManager

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME_MS = 3600 * 1000
INVALID_STATE_ERROR = "invalid_state"


@dataclass
class OAuthState:
    """OAuth state for CSRF protection."""
    state_token: str
    created_at: datetime = field(default_factory=datetime.utcnow)

    def is_expired(self) -> bool:
        """State tokens expire after 10 minutes."""
        return datetime.utcnow() > (self.created_at + timedelta(minutes=10))


@dataclass
class AuthorizedClient:
    """A fresh access token, ready to sign Drive requests."""
    tokens: TokenSet

    @property
    def access_token(self) -> str:
        return self.tokens.access_token

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"{self.tokens.token_type or 'Bearer'} {self.tokens.access_token}"}


class OAuthBroker:
    """
    Handles the authorization-code flow and keeps tokens usable.
    """

    GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
    GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
    GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
    SCOPES = [
        "https://www.googleapis.com/auth/drive.file",  # Files the app created or the user picked
        "https://www.googleapis.com/auth/userinfo.email",
    ]

    def __init__(
        self,
        config_manager: SyncConfigManager,
        redirect_uri: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], int] = now_ms,
        timeout: float = 30.0,
    ):
        """
        Initialize OAuth broker.

        Args:
            config_manager: Source of credentials and token persistence
            redirect_uri: Callback URL registered with Google
            transport: Optional httpx transport (tests use MockTransport)
            clock: Returns the current time in epoch ms
            timeout: HTTP timeout in seconds
        """
        self.config_manager = config_manager
        self.redirect_uri = redirect_uri
        self._transport = transport
        self._clock = clock
        self._timeout = timeout
        self._pending_states: Dict[str, OAuthState] = {}

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)

    async def is_configured(self) -> bool:
        """Check if OAuth client credentials are available."""
        credentials = await self.config_manager.get_credentials()
        return credentials.is_configured()

    def issue_state(self) -> str:
        """Create a one-time state token."""
        state_token = secrets.token_urlsafe(32)
        self._pending_states[state_token] = OAuthState(state_token=state_token)
        self._cleanup_expired_states()
        return state_token

    def validate_state(self, state_token: str) -> bool:
        """
        Consume a state token.

        Returns:
            True if the token was issued here and has not expired
        """
        state = self._pending_states.pop(state_token, None)
        if not state:
            return False
        return not state.is_expired()

    def _cleanup_expired_states(self) -> None:
        expired = [token for token, state in self._pending_states.items() if state.is_expired()]
        for token in expired:
            del self._pending_states[token]

    async def build_auth_url(self, state: Optional[str] = None) -> str:
        """
        Build the Google consent URL.

        Args:
            state: CSRF state token; one is issued when omitted

        Returns:
            Authorization URL
        """
        credentials = await self.config_manager.get_credentials()
        if not credentials.is_configured():
            raise AuthError(
                message="Google OAuth not configured",
                error_code="OAUTH_NOT_CONFIGURED",
                context=create_error_context(operation="build_auth_url"),
                user_message="Google Drive sync is not configured. Add a client id and secret first.",
            )

        params = {
            "client_id": credentials.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.SCOPES),
            "access_type": "offline",  # Get refresh token
            "prompt": "consent",  # Always show consent to get refresh token
            "state": state or self.issue_state(),
        }
        return f"{self.GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenSet:
        """
        Exchange an authorization code for tokens and persist them.

        Args:
            code: Authorization code from the callback

        Returns:
            The stored TokenSet

        Raises:
            AuthError: If the exchange fails or tokens are incomplete
        """
        credentials = await self.config_manager.get_credentials()

        try:
            async with self._http() as client:
                response = await client.post(
                    self.GOOGLE_TOKEN_URL,
                    data={
                        "client_id": credentials.client_id,
                        "client_secret": credentials.client_secret,
                        "code": code,
                        "grant_type": "authorization_code",
                        "redirect_uri": self.redirect_uri,
                    },
                )
        except httpx.HTTPError as e:
            raise AuthError(
                message=f"Token exchange request failed: {e}",
                error_code="TOKEN_EXCHANGE_FAILED",
                context=create_error_context(operation="exchange_code"),
                user_message="Could not reach Google to complete sign-in. Please try again.",
                cause=e,
            ) from e

        if response.status_code != 200:
            raise AuthError(
                message=f"Token exchange failed: {response.status_code} {response.text}",
                error_code="TOKEN_EXCHANGE_FAILED",
                context=create_error_context(operation="exchange_code"),
                user_message="Google sign-in failed. Please try again.",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AuthError(
                message=f"Token exchange returned a non-JSON body: {e}",
                error_code="TOKEN_EXCHANGE_FAILED",
                context=create_error_context(operation="exchange_code"),
                user_message="Google sign-in failed. Please try again.",
                cause=e,
            ) from e
        if not isinstance(data, dict) or not data.get("access_token") or not data.get("refresh_token"):
            raise AuthError(
                message="Token exchange did not return both access and refresh tokens",
                error_code="INCOMPLETE_TOKENS",
                context=create_error_context(operation="exchange_code"),
                user_message="Google did not grant offline access. Please authenticate again.",
            )

        tokens = TokenSet(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expiry_date=self._expiry_from(data),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )
        await self.config_manager.save_tokens(tokens)
        logger.info("Stored Google Drive tokens")

        email = await self._fetch_email(tokens)
        if email:
            await self.config_manager.save_config(user_email=email)

        return tokens

    async def handle_callback(self, code: str, state: Optional[str]) -> OAuthCallbackResult:
        """
        Complete the OAuth callback.

        Args:
            code: Authorization code
            state: State token issued with the consent URL; a missing or
                unknown token fails without exchanging the code

        Returns:
            Result with the connected email on success
        """
        if not state or not self.validate_state(state):
            logger.warning("OAuth callback rejected: missing or invalid state")
            return OAuthCallbackResult(success=False, error=INVALID_STATE_ERROR)

        try:
            await self.exchange_code(code)
        except AuthError as e:
            logger.error(f"OAuth callback failed: {e}")
            return OAuthCallbackResult(success=False, error=e.user_message)

        config = await self.config_manager.get_config()
        return OAuthCallbackResult(success=True, email=config.user_email)

    async def get_client(self) -> Optional[AuthorizedClient]:
        """
        Get a client with a usable access token.

        Returns:
            None when there are no tokens or the refresh failed
        """
        tokens = await self.config_manager.get_tokens()
        if not tokens:
            return None

        if tokens.is_expired(self._clock()):
            tokens = await self._refresh(tokens)
            if not tokens:
                return None

        return AuthorizedClient(tokens=tokens)

    async def _refresh(self, tokens: TokenSet) -> Optional[TokenSet]:
        credentials = await self.config_manager.get_credentials()

        try:
            async with self._http() as client:
                response = await client.post(
                    self.GOOGLE_TOKEN_URL,
                    data={
                        "client_id": credentials.client_id,
                        "client_secret": credentials.client_secret,
                        "refresh_token": tokens.refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Token refresh request failed: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"Token refresh failed: {response.status_code}")
            return None

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Token refresh returned a non-JSON body: {e}")
            return None
        if not isinstance(data, dict) or not data.get("access_token"):
            logger.error("Token refresh returned no access token")
            return None

        # Keep existing refresh token if not returned
        new_tokens = TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or tokens.refresh_token,
            expiry_date=self._expiry_from(data),
            token_type=data.get("token_type", tokens.token_type),
            scope=data.get("scope", tokens.scope),
        )
        await self.config_manager.save_tokens(new_tokens)
        logger.info("Refreshed Google Drive access token")
        return new_tokens

    async def revoke(self) -> None:
        """Revoke the stored token at Google. Failures are only logged."""
        tokens = await self.config_manager.get_tokens()
        if not tokens:
            return

        token = tokens.refresh_token or tokens.access_token
        try:
            async with self._http() as client:
                response = await client.post(self.GOOGLE_REVOKE_URL, params={"token": token})
            if response.status_code != 200:
                logger.warning(f"Token revocation returned {response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Failed to revoke token: {e}")

    async def _fetch_email(self, tokens: TokenSet) -> Optional[str]:
        try:
            async with self._http() as client:
                response = await client.get(
                    self.GOOGLE_USERINFO_URL,
                    headers=AuthorizedClient(tokens).auth_headers(),
                )
            if response.status_code != 200:
                logger.warning(f"Could not fetch account email: {response.status_code}")
                return None
            return response.json().get("email")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning(f"Could not fetch account email: {e}")
            return None

    def _expiry_from(self, data: Dict) -> int:
        expires_in = data.get("expires_in")
        if expires_in is None:
            return self._clock() + DEFAULT_TOKEN_LIFETIME_MS
        return self._clock() + int(expires_in) * 1000
