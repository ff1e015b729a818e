from __future__ import annotations

import json
import re
import time
from urllib.parse import parse_qs

import httpx
import pytest

from moodify.auth.flow import AuthFlow
from moodify.auth.token_store import MemoryTokenStore
from moodify.http_utils import RateLimitedRequester
from moodify.llm.prompts import MOOD_SYSTEM, SUGGESTION_SYSTEM, TITLE_SYSTEM
from moodify.models import AuthToken, QuestionnaireResponse
from moodify.settings import MoodifySettings

API = "https://api.spotify.com/v1"

SUGGESTIONS = [
    ("Weightless", "Marconi Union"),
    ("Holocene", "Bon Iver"),
    ("Breathe Me", "Sia"),
    ("Stand by Me", "Ben E. King"),
    ("Sunset Lover", "Petit Biscuit"),
    ("Bloom", "The Paper Kites"),
    ("Night Owl", "Galimatias"),
    ("Intro", "The xx"),
    ("River", "Leon Bridges"),
    ("Skinny Love", "Bon Iver"),
]


def slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)

    @property
    def total(self) -> float:
        return sum(self.calls)


class FakeBackend:
    """One MockTransport handler standing in for the provider, completion and storage APIs."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.mood_reply = "Relaxed"
        self.title_reply = "Calm Evening Waves"
        self.suggestion_reply = "\n".join(
            f"{i}. {title} by {artist}" for i, (title, artist) in enumerate(SUGGESTIONS, 1)
        )
        self.failing_titles: set[str] = set()
        self.missing_titles: set[str] = set()
        self.undecodable_titles: set[str] = set()
        self.undecodable_completion = False
        self.token_status = 200
        self.add_tracks_status = 201
        self.create_status = 201
        self.persist_status = 201
        self.profile_status = 200
        self.unauthorized_once: set[str] = set()
        self.liked_ids: list[str] = []
        self.rotate_refresh_token = True

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    def last(self, method: str, path: str) -> httpx.Request:
        return [r for r in self.requests if r.method == method and r.url.path == path][-1]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "accounts.spotify.com":
            return self._token(request)
        if host == "api.openai.com":
            return self._completion(request)
        if host == "api.spotify.com":
            return self._provider(request)
        if host == "db.example.supabase.co":
            return self._storage(request)
        return httpx.Response(404, json={"error": "unknown host"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        self.token_calls += 1
        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"error": "invalid_grant"})
        form = parse_qs(request.content.decode())
        body = {
            "access_token": f"access-{self.token_calls}",
            "token_type": "Bearer",
            "expires_in": 3600,
            "scope": "user-read-private",
        }
        if form.get("grant_type") == ["authorization_code"] or self.rotate_refresh_token:
            body["refresh_token"] = f"refresh-{self.token_calls}"
        return httpx.Response(200, json=body)

    def _completion(self, request: httpx.Request) -> httpx.Response:
        if self.undecodable_completion:
            raise httpx.DecodingError("incorrect header check", request=request)
        payload = json.loads(request.content)
        system = payload["messages"][0]["content"]
        if system == MOOD_SYSTEM:
            text = self.mood_reply
        elif system == TITLE_SYSTEM:
            text = self.title_reply
        elif system == SUGGESTION_SYSTEM:
            text = self.suggestion_reply
        else:
            text = ""
        return httpx.Response(
            200,
            json={"choices": [{"index": 0, "message": {"role": "assistant", "content": text}}]},
        )

    def _provider(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1")
        key = f"{request.method} {path}"
        if key in self.unauthorized_once:
            self.unauthorized_once.discard(key)
            return httpx.Response(401, json={"error": {"status": 401, "message": "expired"}})

        if key == "GET /me":
            if self.profile_status != 200:
                return httpx.Response(self.profile_status)
            return httpx.Response(200, json={"id": "user-1", "display_name": "Test User"})

        if key == "GET /search":
            query = request.url.params["q"]
            match = re.match(r"track:(.*) artist:(.*)", query)
            title, artist = match.group(1), match.group(2)
            if title in self.failing_titles:
                return httpx.Response(500, text="boom")
            if title in self.undecodable_titles:
                raise httpx.DecodingError("incorrect header check", request=request)
            if title in self.missing_titles:
                return httpx.Response(200, json={"tracks": {"items": [], "total": 0}})
            track = {
                "id": f"id-{slug(title)}",
                "name": title,
                "uri": f"spotify:track:id-{slug(title)}",
                "artists": [{"name": artist}],
            }
            return httpx.Response(200, json={"tracks": {"items": [track], "total": 1}})

        if key == "GET /me/tracks":
            offset = int(request.url.params.get("offset", 0))
            limit = int(request.url.params.get("limit", 50))
            page = self.liked_ids[offset : offset + limit]
            items = [{"track": {"id": t, "name": t, "artists": []}} for t in page]
            more = offset + limit < len(self.liked_ids)
            return httpx.Response(
                200,
                json={
                    "items": items,
                    "total": len(self.liked_ids),
                    "next": f"{API}/me/tracks?offset={offset + limit}" if more else None,
                },
            )

        if key == "GET /me/playlists":
            return httpx.Response(
                200,
                json={
                    "items": [{"id": "pl-old", "name": "Old Mix", "public": False}],
                    "total": 1,
                    "next": None,
                },
            )

        if key == "POST /users/user-1/playlists":
            if self.create_status != 201:
                return httpx.Response(self.create_status)
            body = json.loads(request.content)
            return httpx.Response(
                201, json={"id": "pl-1", "name": body["name"], "public": body["public"]}
            )

        if key == "POST /playlists/pl-1/tracks":
            if self.add_tracks_status != 201:
                return httpx.Response(self.add_tracks_status, text="bad uris")
            return httpx.Response(201, json={"snapshot_id": "snap-1"})

        if key == "DELETE /playlists/pl-1/followers":
            return httpx.Response(200)

        return httpx.Response(404, json={"error": key})

    def _storage(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(self.persist_status)
        return httpx.Response(200, json=[])


@pytest.fixture
def settings() -> MoodifySettings:
    return MoodifySettings(
        _env_file=None,
        spotify_client_id="client-123",
        openai_api_key="sk-test",
        supabase_url="https://db.example.supabase.co",
        supabase_key="anon-key",
        retry_delay=5.0,
        max_retries=3,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def http_client(backend):
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handle))
    yield client
    await client.aclose()


@pytest.fixture
def requester(http_client, fake_sleep) -> RateLimitedRequester:
    return RateLimitedRequester(http_client, service="test", retry_delay=5.0, sleep=fake_sleep)


@pytest.fixture
def valid_token() -> AuthToken:
    return AuthToken(
        access_token="access-0",
        refresh_token="refresh-0",
        expires_at=time.time() + 3600,
    )


@pytest.fixture
def token_store(valid_token) -> MemoryTokenStore:
    return MemoryTokenStore(valid_token)


@pytest.fixture
def auth(settings, token_store, requester) -> AuthFlow:
    return AuthFlow(settings, token_store, requester)


@pytest.fixture
def calm_responses() -> list[QuestionnaireResponse]:
    return [
        QuestionnaireResponse("I feel calm and peaceful.", "Strongly Agree"),
        QuestionnaireResponse("I have a lot of energy right now.", "Disagree"),
        QuestionnaireResponse("I want to unwind.", "Strongly Agree"),
    ]
