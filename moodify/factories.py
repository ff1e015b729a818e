"""
Factory functions that wire the production object graph from settings.

Every collaborator can be passed in explicitly, which is how tests swap in
mock transports, in-memory stores and fake clocks.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx

from .auth.flow import AuthFlow
from .auth.token_store import SqliteTokenStore, TokenStore
from .http_utils import RateLimitedRequester, SleepFunc, make_http_client
from .llm.completion import CompletionClient
from .llm.mood_classifier import MoodClassifier
from .llm.suggestions import TrackSuggester
from .persistence.gateway import InMemoryGateway, PersistenceGateway, SupabaseGateway
from .pipeline.orchestrator import PlaylistOrchestrator
from .settings import MoodifySettings, get_settings
from .spotify.client import ProviderClient
from .spotify.playlists import PlaylistBuilder
from .spotify.tracks import TrackResolver


def make_token_store(settings: MoodifySettings) -> TokenStore:
    return SqliteTokenStore(settings.token_db_path, settings.token_master_key)


def make_requester(
    client: httpx.AsyncClient,
    settings: MoodifySettings,
    service: str,
    *,
    sleep: SleepFunc = asyncio.sleep,
) -> RateLimitedRequester:
    return RateLimitedRequester(
        client,
        service=service,
        max_retries=settings.max_retries,
        retry_delay=settings.retry_delay,
        sleep=sleep,
    )


def make_gateway(
    settings: MoodifySettings, requester: RateLimitedRequester
) -> PersistenceGateway:
    """Supabase when credentials are configured, otherwise an in-memory gateway."""
    if settings.supabase_url and settings.supabase_key:
        return SupabaseGateway(settings.supabase_url, settings.supabase_key, requester)
    return InMemoryGateway()


@dataclass
class MoodifyServices:
    settings: MoodifySettings
    http_client: httpx.AsyncClient
    auth: AuthFlow
    provider: ProviderClient
    gateway: PersistenceGateway
    orchestrator: PlaylistOrchestrator

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_services(
    settings: MoodifySettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    token_store: TokenStore | None = None,
    gateway: PersistenceGateway | None = None,
    sleep: SleepFunc = asyncio.sleep,
) -> MoodifyServices:
    """
    Build every service sharing one ``httpx.AsyncClient``.

    Raises:
        ValueError: when the provider client id or completion API key is missing.
    """
    settings = settings or get_settings()
    http_client = make_http_client(settings, transport)

    auth = AuthFlow(
        settings,
        token_store or make_token_store(settings),
        make_requester(http_client, settings, "spotify_token", sleep=sleep),
    )
    provider = ProviderClient(
        auth, make_requester(http_client, settings, "spotify", sleep=sleep), settings.spotify_api_base
    )
    completion = CompletionClient(settings, make_requester(http_client, settings, "openai", sleep=sleep))
    if gateway is None:
        gateway = make_gateway(settings, make_requester(http_client, settings, "supabase", sleep=sleep))

    orchestrator = PlaylistOrchestrator(
        auth,
        MoodClassifier(
            completion,
            temperature=settings.classification_temperature,
            title_temperature=settings.creative_temperature,
        ),
        TrackSuggester(
            completion, count=settings.suggestion_count, temperature=settings.creative_temperature
        ),
        TrackResolver(provider, max_concurrency=settings.search_concurrency),
        PlaylistBuilder(provider),
        gateway,
        min_run_interval=settings.min_run_interval,
        include_liked_tracks=settings.include_liked_tracks,
        liked_tracks_limit=settings.liked_tracks_limit,
        cleanup_orphaned_playlists=settings.cleanup_orphaned_playlists,
        sleep=sleep,
    )
    return MoodifyServices(
        settings=settings,
        http_client=http_client,
        auth=auth,
        provider=provider,
        gateway=gateway,
        orchestrator=orchestrator,
    )


__all__ = ["build_services", "MoodifyServices", "make_token_store", "make_requester", "make_gateway"]
