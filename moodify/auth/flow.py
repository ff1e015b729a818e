from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
from pydantic import ValidationError

from ..errors import (
    ExchangeFailed,
    MissingCode,
    NoRefreshToken,
    RequestError,
    RequestFailed,
)
from ..http_utils import RateLimitedRequester
from ..metrics import TOKEN_REFRESH
from ..models import AuthToken, PendingAuthorization
from ..settings import MoodifySettings
from .pkce import code_challenge, generate_code_verifier, generate_state
from .schemas import TokenResponse
from .token_store import TokenStore

logger = logging.getLogger(__name__)

# PKCE verifiers older than this are refused at redirect time
PENDING_MAX_AGE = 600.0
# Token endpoint answers meaning the refresh token itself is no longer usable
REJECTED_REFRESH_STATUSES = frozenset({400, 401})


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZING = "authorizing"
    EXCHANGING = "exchanging"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    REFRESHING = "refreshing"


class AuthFlow:
    """PKCE authorization-code flow and token lifecycle for the provider.

    All provider calls go through :meth:`ensure_valid_token`. Concurrent
    callers that find the token expired share a single in-flight refresh.
    """

    def __init__(
        self,
        settings: MoodifySettings,
        store: TokenStore,
        requester: RateLimitedRequester,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not settings.spotify_client_id:
            raise ValueError("MOODIFY_SPOTIFY_CLIENT_ID is required")
        self.client_id = settings.spotify_client_id
        self.redirect_uri = settings.spotify_redirect_uri
        self.scopes = settings.spotify_scopes
        self.auth_url = settings.spotify_auth_url
        self.token_url = settings.spotify_token_url
        self.expiry_margin = settings.token_expiry_margin
        self.store = store
        self.requester = requester
        self._clock = clock

        self._token: AuthToken | None = None
        self._loaded = False
        self._authorizing = False
        self._exchanging = False
        self._refresh_task: asyncio.Task[AuthToken] | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def restore(self) -> AuthToken | None:
        """Load the persisted token once; later calls return the cached value."""
        if not self._loaded:
            self._token = await self.store.load()
            self._loaded = True
        return self._token

    @property
    def token(self) -> AuthToken | None:
        return self._token

    def is_valid(self) -> bool:
        """True iff an access token exists and outlives the safety margin."""
        if self._token is None:
            return False
        return self._token.is_valid(self._clock(), self.expiry_margin)

    @property
    def state(self) -> AuthState:
        if self._refresh_task is not None and not self._refresh_task.done():
            return AuthState.REFRESHING
        if self._exchanging:
            return AuthState.EXCHANGING
        if self._token is not None:
            return AuthState.AUTHENTICATED if self.is_valid() else AuthState.EXPIRED
        if self._authorizing:
            return AuthState.AUTHORIZING
        return AuthState.UNAUTHENTICATED

    # ------------------------------------------------------------------
    # Authorization code flow
    # ------------------------------------------------------------------

    async def authorize(self) -> str:
        """Start a PKCE attempt and return the provider authorize URL."""
        verifier = generate_code_verifier()
        pending = PendingAuthorization(
            state=generate_state(), verifier=verifier, created_at=self._clock()
        )
        await self.store.save_pending(pending)
        self._authorizing = True

        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": self.scopes,
            "state": pending.state,
            "code_challenge_method": "S256",
            "code_challenge": code_challenge(verifier),
        }
        logger.info(
            "auth.authorize_url_built",
            extra={
                "meta": {
                    "verifier_length": len(verifier),
                    "scopes": self.scopes,
                    "redirect_uri": self.redirect_uri,
                }
            },
        )
        return f"{self.auth_url}?{urlencode(params)}"

    async def complete_redirect(self, redirect_url: str) -> AuthToken:
        """Exchange the ``code`` carried by the redirect for a token."""
        query = parse_qs(urlparse(redirect_url).query)
        error = query.get("error", [None])[0]
        if error:
            self._authorizing = False
            raise ExchangeFailed(f"authorization denied: {error}")
        code = query.get("code", [None])[0]
        if not code:
            raise MissingCode()

        state = query.get("state", [None])[0]
        pending = await self.store.pop_pending(state)
        if pending is None:
            raise ExchangeFailed("no pending authorization for this redirect")
        if pending.is_expired(self._clock(), PENDING_MAX_AGE):
            raise ExchangeFailed("authorization attempt expired")

        self._exchanging = True
        try:
            token = await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                    "client_id": self.client_id,
                    "code_verifier": pending.verifier,
                },
                previous_refresh_token=None,
            )
            await self.store.save(token)
            self._token = token
            self._loaded = True
        finally:
            self._exchanging = False
            self._authorizing = False

        logger.info(
            "auth.code_exchanged",
            extra={
                "meta": {
                    "has_refresh_token": token.can_refresh(),
                    "seconds_until_expiry": token.seconds_until_expiry(self._clock()),
                }
            },
        )
        return token

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> AuthToken:
        """Renew the access token, sharing one request among concurrent callers."""
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._do_refresh())
            self._refresh_task = task
            task.add_done_callback(self._refresh_done)
        # shield: one impatient caller must not cancel the shared refresh
        return await asyncio.shield(task)

    def _refresh_done(self, task: asyncio.Task[AuthToken]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Consume the exception so an unawaited failure is not reported as lost
            task.exception()

    async def _do_refresh(self) -> AuthToken:
        current = await self.restore()
        if current is None or not current.refresh_token:
            TOKEN_REFRESH.labels("no_refresh_token").inc()
            raise NoRefreshToken()

        try:
            token = await self._token_request(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": current.refresh_token,
                    "client_id": self.client_id,
                },
                previous_refresh_token=current.refresh_token,
            )
        except ExchangeFailed as e:
            TOKEN_REFRESH.labels("failed").inc()
            cause = e.__cause__
            if (
                isinstance(cause, RequestFailed)
                and cause.status_code in REJECTED_REFRESH_STATUSES
            ):
                # Provider rejected the refresh token: a fresh authorize() is required
                logger.warning(
                    "auth.refresh_rejected",
                    extra={"meta": {"status": cause.status_code}},
                )
                await self.store.clear()
                self._token = None
            raise

        await self.store.save(token)
        self._token = token
        TOKEN_REFRESH.labels("ok").inc()
        logger.info(
            "auth.token_refreshed",
            extra={
                "meta": {
                    "refresh_token_rotated": token.refresh_token != current.refresh_token,
                    "seconds_until_expiry": token.seconds_until_expiry(self._clock()),
                }
            },
        )
        return token

    async def ensure_valid_token(self) -> AuthToken:
        """Return a usable token, refreshing first if it is missing or about to expire."""
        token = await self.restore()
        if token is not None and self.is_valid():
            return token
        if token is None:
            raise NoRefreshToken("not authenticated; authorize first")
        return await self.refresh()

    async def logout(self) -> None:
        await self.store.clear()
        self._token = None
        self._loaded = True

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def _token_request(
        self, form: dict[str, str], *, previous_refresh_token: str | None
    ) -> AuthToken:
        request = httpx.Request(
            "POST",
            self.token_url,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        try:
            response = await self.requester.send(request)
        except RequestError as e:
            raise ExchangeFailed(str(e)) from e

        try:
            payload = TokenResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise ExchangeFailed("malformed token response") from e

        # Refresh tokens are not always rotated; keep the old one when omitted
        return AuthToken(
            access_token=payload.access_token,
            refresh_token=payload.refresh_token or previous_refresh_token,
            expires_at=self._clock() + payload.expires_in,
            scope=payload.scope,
        )


__all__ = ["AuthFlow", "AuthState"]
