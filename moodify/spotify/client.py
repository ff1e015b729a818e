from __future__ import annotations

import logging
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from ..auth.flow import AuthFlow
from ..errors import MalformedResponse, RequestFailed
from ..http_utils import RateLimitedRequester
from .schemas import (
    AddTracksRequest,
    CreatedPlaylist,
    CreatePlaylistRequest,
    PlaylistPage,
    PlaylistSummary,
    SavedTracksPage,
    SearchResponse,
    SnapshotResponse,
    Track,
    UserProfile,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Provider page size cap for /me/tracks and /me/playlists
PAGE_SIZE = 50


def track_uri(track_id: str) -> str:
    if track_id.startswith("spotify:track:"):
        return track_id
    return f"spotify:track:{track_id}"


class ProviderClient:
    """Bearer-authenticated Web API calls.

    Every request first asks :class:`AuthFlow` for a valid token. A 401 reply
    forces one refresh and one retry of that request.
    """

    def __init__(
        self,
        auth: AuthFlow,
        requester: RateLimitedRequester,
        api_base: str = "https://api.spotify.com/v1",
    ) -> None:
        self.auth = auth
        self.requester = requester
        self.api_base = api_base.rstrip("/")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> httpx.Response:
        url = f"{self.api_base}{path}"
        token = await self.auth.ensure_valid_token()

        attempt = 0
        while True:
            attempt += 1
            request = httpx.Request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {token.access_token}"},
            )
            try:
                return await self.requester.send(request)
            except RequestFailed as e:
                if e.status_code != 401 or attempt > 1:
                    raise
                logger.warning(
                    "provider.unauthorized_refreshing",
                    extra={"meta": {"method": method, "path": path}},
                )
                token = await self.auth.refresh()

    @staticmethod
    def _decode(response: httpx.Response, model: type[ModelT]) -> ModelT:
        try:
            return model.model_validate_json(response.content)
        except ValidationError as e:
            logger.warning(
                "provider.decode_failed",
                extra={
                    "meta": {
                        "path": response.request.url.path,
                        "model": model.__name__,
                        "errors": e.error_count(),
                    }
                },
            )
            raise MalformedResponse(
                f"unexpected {model.__name__} payload from {response.request.url.path}"
            ) from e

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_profile(self) -> UserProfile:
        r = await self._request("GET", "/me")
        return self._decode(r, UserProfile)

    async def search_track(self, query: str) -> Track | None:
        """Top single match for ``query``, or ``None`` when nothing matches."""
        r = await self._request(
            "GET", "/search", params={"q": query, "type": "track", "limit": 1}
        )
        items = self._decode(r, SearchResponse).tracks.items
        return items[0] if items else None

    async def get_saved_track_ids(self, limit: int = PAGE_SIZE) -> list[str]:
        """IDs of the caller's liked songs, newest first, at most ``limit``."""
        ids: list[str] = []
        offset = 0
        while len(ids) < limit:
            page_size = min(PAGE_SIZE, limit - len(ids))
            r = await self._request(
                "GET", "/me/tracks", params={"limit": page_size, "offset": offset}
            )
            page = self._decode(r, SavedTracksPage)
            for item in page.items:
                if item.track is not None and item.track.id:
                    ids.append(item.track.id)
            offset += len(page.items)
            if not page.next or not page.items:
                break
        return ids[:limit]

    async def get_playlists(self, limit: int = PAGE_SIZE) -> list[PlaylistSummary]:
        playlists: list[PlaylistSummary] = []
        offset = 0
        while len(playlists) < limit:
            page_size = min(PAGE_SIZE, limit - len(playlists))
            r = await self._request(
                "GET", "/me/playlists", params={"limit": page_size, "offset": offset}
            )
            page = self._decode(r, PlaylistPage)
            playlists.extend(page.items)
            offset += len(page.items)
            if not page.next or not page.items:
                break
        return playlists[:limit]

    async def create_playlist(
        self, user_id: str, name: str, description: str, *, public: bool = False
    ) -> CreatedPlaylist:
        body = CreatePlaylistRequest(name=name, description=description, public=public)
        r = await self._request(
            "POST",
            f"/users/{quote(user_id, safe='')}/playlists",
            json_body=body.model_dump(),
        )
        return self._decode(r, CreatedPlaylist)

    async def add_tracks(self, playlist_id: str, uris: list[str]) -> str:
        """Append ``uris`` in one request and return the new snapshot id."""
        body = AddTracksRequest(uris=uris)
        r = await self._request(
            "POST",
            f"/playlists/{quote(playlist_id, safe='')}/tracks",
            json_body=body.model_dump(),
        )
        return self._decode(r, SnapshotResponse).snapshot_id

    async def unfollow_playlist(self, playlist_id: str) -> None:
        """Remove the playlist from the caller's library (the provider's delete)."""
        await self._request("DELETE", f"/playlists/{quote(playlist_id, safe='')}/followers")


__all__ = ["ProviderClient", "track_uri", "PAGE_SIZE"]
