"""
Tests for the PKCE authorization flow and token lifecycle.

Covers:
1. AuthToken validity boundaries around the 300 s margin
2. authorize(): URL shape and S256 challenge
3. complete_redirect(): code exchange, missing code, denial, unknown state
4. refresh(): refresh-token retention, single-flight, rejection handling
"""

import asyncio
import time
from urllib.parse import parse_qs, urlparse

import pytest

from moodify.auth.flow import AuthFlow, AuthState
from moodify.auth.pkce import UNRESERVED, code_challenge, generate_code_verifier
from moodify.auth.token_store import MemoryTokenStore
from moodify.errors import ExchangeFailed, MissingCode, NoRefreshToken
from moodify.models import AuthToken


def _expired_token(**kw):
    return AuthToken(
        access_token="old-access",
        refresh_token=kw.get("refresh_token", "refresh-0"),
        expires_at=time.time() - 10,
    )


class TestTokenValidity:
    def test_valid_beyond_margin(self):
        now = 1000.0
        token = AuthToken(access_token="a", expires_at=now + 301)
        assert token.is_valid(now, margin=300)

    def test_invalid_at_margin_boundary(self):
        now = 1000.0
        token = AuthToken(access_token="a", expires_at=now + 300)
        assert not token.is_valid(now, margin=300)

    @pytest.mark.parametrize("offset", [0, -1, -3600])
    def test_invalid_when_expired(self, offset):
        now = 1000.0
        token = AuthToken(access_token="a", expires_at=now + offset)
        assert not token.is_valid(now)

    def test_empty_access_token_is_invalid(self):
        assert not AuthToken(access_token="", expires_at=time.time() + 3600).is_valid()

    def test_flow_is_valid_uses_clock(self, settings, requester, clock):
        token = AuthToken(access_token="a", refresh_token="r", expires_at=clock() + 900)
        flow = AuthFlow(settings, MemoryTokenStore(token), requester, clock=clock)
        flow._token = token
        assert flow.is_valid()
        clock.advance(601)
        assert not flow.is_valid()
        assert flow.state is AuthState.EXPIRED


class TestPkce:
    def test_verifier_uses_unreserved_chars(self):
        verifier = generate_code_verifier()
        assert len(verifier) == 128
        assert set(verifier) <= set(UNRESERVED)

    @pytest.mark.parametrize("length", [42, 129])
    def test_verifier_length_bounds(self, length):
        with pytest.raises(ValueError):
            generate_code_verifier(length)

    def test_challenge_is_unpadded_base64url_sha256(self):
        verifier = "dBjftJeZ4CVP-mJ0Y0FbU86Ce53rmHRUhmoRE4nNCeA"
        assert code_challenge(verifier) == "f4I_ZZfRtCWd8LlchK5dFdNyx3F_Y23L5qN1B_1I4IE"


class TestAuthorize:
    def test_missing_client_id_is_config_error(self, settings, requester):
        with pytest.raises(ValueError):
            AuthFlow(settings.model_copy(update={"spotify_client_id": ""}), MemoryTokenStore(), requester)

    @pytest.mark.asyncio
    async def test_authorize_url_carries_pkce_params(self, settings, requester):
        store = MemoryTokenStore()
        flow = AuthFlow(settings, store, requester)

        url = await flow.authorize()

        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == settings.spotify_auth_url
        assert params["client_id"] == "client-123"
        assert params["response_type"] == "code"
        assert params["redirect_uri"] == "moodifyapp://callback"
        assert params["code_challenge_method"] == "S256"
        assert params["scope"] == settings.spotify_scopes

        pending = await store.pop_pending(params["state"])
        assert pending is not None
        assert params["code_challenge"] == code_challenge(pending.verifier)
        assert flow.state is AuthState.AUTHORIZING


class TestCompleteRedirect:
    @pytest.mark.asyncio
    async def test_code_exchanged_for_token(self, settings, requester, backend):
        store = MemoryTokenStore()
        flow = AuthFlow(settings, store, requester)
        url = await flow.authorize()
        state = parse_qs(urlparse(url).query)["state"][0]

        token = await flow.complete_redirect(f"moodifyapp://callback?code=abc&state={state}")

        assert token.access_token == "access-1"
        assert token.refresh_token == "refresh-1"
        assert await store.load() == token
        assert flow.state is AuthState.AUTHENTICATED

        form = parse_qs(backend.last("POST", "/api/token").content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["abc"]
        assert form["client_id"] == ["client-123"]
        assert form["redirect_uri"] == ["moodifyapp://callback"]
        assert len(form["code_verifier"][0]) == 128

    @pytest.mark.asyncio
    async def test_redirect_without_state_uses_latest_verifier(self, settings, requester, backend):
        flow = AuthFlow(settings, MemoryTokenStore(), requester)
        await flow.authorize()
        token = await flow.complete_redirect("moodifyapp://callback?code=abc")
        assert token.access_token == "access-1"

    @pytest.mark.asyncio
    async def test_missing_code(self, settings, requester, backend):
        flow = AuthFlow(settings, MemoryTokenStore(), requester)
        await flow.authorize()
        with pytest.raises(MissingCode):
            await flow.complete_redirect("moodifyapp://callback?state=xyz")
        assert backend.token_calls == 0

    @pytest.mark.asyncio
    async def test_denied_authorization(self, settings, requester, backend):
        flow = AuthFlow(settings, MemoryTokenStore(), requester)
        await flow.authorize()
        with pytest.raises(ExchangeFailed, match="access_denied"):
            await flow.complete_redirect("moodifyapp://callback?error=access_denied")
        assert backend.token_calls == 0

    @pytest.mark.asyncio
    async def test_unknown_state_rejected(self, settings, requester, backend):
        flow = AuthFlow(settings, MemoryTokenStore(), requester)
        await flow.authorize()
        with pytest.raises(ExchangeFailed):
            await flow.complete_redirect("moodifyapp://callback?code=abc&state=forged")
        assert backend.token_calls == 0

    @pytest.mark.asyncio
    async def test_stale_verifier_rejected(self, settings, requester, clock):
        flow = AuthFlow(settings, MemoryTokenStore(), requester, clock=clock)
        await flow.authorize()
        clock.advance(601)
        with pytest.raises(ExchangeFailed, match="expired"):
            await flow.complete_redirect("moodifyapp://callback?code=abc")

    @pytest.mark.asyncio
    async def test_token_endpoint_error_is_exchange_failed(self, settings, requester, backend):
        backend.token_status = 400
        flow = AuthFlow(settings, MemoryTokenStore(), requester)
        await flow.authorize()
        with pytest.raises(ExchangeFailed):
            await flow.complete_redirect("moodifyapp://callback?code=abc")
        assert flow.token is None


class TestRefresh:
    @pytest.mark.asyncio
    async def test_valid_token_needs_no_refresh(self, auth, backend, valid_token):
        token = await auth.ensure_valid_token()
        assert token == valid_token
        assert backend.token_calls == 0

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self, settings, requester, backend):
        store = MemoryTokenStore(_expired_token())
        flow = AuthFlow(settings, store, requester)

        token = await flow.ensure_valid_token()

        assert token.access_token == "access-1"
        assert (await store.load()).access_token == "access-1"
        form = parse_qs(backend.last("POST", "/api/token").content.decode())
        assert form == {
            "grant_type": ["refresh_token"],
            "refresh_token": ["refresh-0"],
            "client_id": ["client-123"],
        }

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_not_rotated(
        self, settings, requester, backend
    ):
        backend.rotate_refresh_token = False
        flow = AuthFlow(settings, MemoryTokenStore(_expired_token()), requester)
        token = await flow.refresh()
        assert token.refresh_token == "refresh-0"

    @pytest.mark.asyncio
    async def test_concurrent_refresh_is_single_flight(self, settings, requester, backend):
        flow = AuthFlow(settings, MemoryTokenStore(_expired_token()), requester)

        tokens = await asyncio.gather(*(flow.ensure_valid_token() for _ in range(10)))

        assert backend.token_calls == 1
        assert {t.access_token for t in tokens} == {"access-1"}

    @pytest.mark.asyncio
    async def test_sequential_refreshes_each_hit_endpoint(self, settings, requester, backend):
        flow = AuthFlow(settings, MemoryTokenStore(_expired_token()), requester)
        await flow.refresh()
        await flow.refresh()
        assert backend.token_calls == 2

    @pytest.mark.asyncio
    async def test_no_token_means_not_authenticated(self, settings, requester):
        flow = AuthFlow(settings, MemoryTokenStore(), requester)
        with pytest.raises(NoRefreshToken):
            await flow.ensure_valid_token()
        assert flow.state is AuthState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, settings, requester, backend):
        flow = AuthFlow(settings, MemoryTokenStore(_expired_token(refresh_token=None)), requester)
        with pytest.raises(NoRefreshToken):
            await flow.refresh()
        assert backend.token_calls == 0

    @pytest.mark.asyncio
    async def test_rejected_refresh_clears_store(self, settings, requester, backend):
        backend.token_status = 400
        store = MemoryTokenStore(_expired_token())
        flow = AuthFlow(settings, store, requester)

        with pytest.raises(ExchangeFailed):
            await flow.refresh()

        assert await store.load() is None
        assert flow.state is AuthState.UNAUTHENTICATED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [500, 503])
    async def test_server_error_on_refresh_keeps_token(self, settings, requester, backend, status):
        backend.token_status = status
        store = MemoryTokenStore(_expired_token())
        flow = AuthFlow(settings, store, requester)

        with pytest.raises(ExchangeFailed):
            await flow.refresh()

        assert (await store.load()).refresh_token == "refresh-0"
        assert flow.state is AuthState.EXPIRED

    @pytest.mark.asyncio
    async def test_rate_limited_refresh_keeps_token(self, settings, requester, backend, fake_sleep):
        backend.token_status = 429
        store = MemoryTokenStore(_expired_token())
        flow = AuthFlow(settings, store, requester)

        with pytest.raises(ExchangeFailed):
            await flow.refresh()

        assert (await store.load()).access_token == "old-access"
        assert len(fake_sleep.calls) == 3

    @pytest.mark.asyncio
    async def test_logout_clears_token(self, auth, token_store):
        await auth.ensure_valid_token()
        await auth.logout()
        assert await token_store.load() is None
        assert auth.token is None
