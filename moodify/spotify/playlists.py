from __future__ import annotations

import logging
from collections.abc import Sequence

from ..errors import CreateFailed, ProfileFailed, RequestError, TrackAdditionFailed
from .client import ProviderClient, track_uri
from .tracks import MAX_PLAYLIST_TRACKS

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 300


def truncate(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip()


class PlaylistBuilder:
    """Creates private playlists and fills them in a single add request."""

    def __init__(self, client: ProviderClient) -> None:
        self.client = client

    async def fetch_owner_id(self) -> str:
        try:
            profile = await self.client.get_profile()
        except RequestError as e:
            raise ProfileFailed(f"could not fetch provider profile: {e}") from e
        return profile.id

    async def create_playlist(self, user_id: str, title: str, description_seed: str) -> str:
        name = truncate(title, MAX_TITLE_LENGTH)
        description = truncate(description_seed, MAX_DESCRIPTION_LENGTH)
        if not name:
            raise CreateFailed("playlist title is empty")
        try:
            created = await self.client.create_playlist(
                user_id, name, description, public=False
            )
        except RequestError as e:
            raise CreateFailed(f"could not create playlist: {e}") from e
        logger.info(
            "builder.playlist_created",
            extra={"meta": {"playlist_id": created.id, "name": name}},
        )
        return created.id

    async def add_tracks(self, playlist_id: str, track_ids: Sequence[str]) -> None:
        if not track_ids:
            raise TrackAdditionFailed("no tracks to add")
        if len(track_ids) > MAX_PLAYLIST_TRACKS:
            raise TrackAdditionFailed(
                f"{len(track_ids)} tracks exceeds the per-request limit of {MAX_PLAYLIST_TRACKS}"
            )
        uris = [track_uri(t) for t in track_ids]
        try:
            snapshot = await self.client.add_tracks(playlist_id, uris)
        except RequestError as e:
            raise TrackAdditionFailed(f"could not add tracks: {e}") from e
        logger.info(
            "builder.tracks_added",
            extra={
                "meta": {"playlist_id": playlist_id, "tracks": len(uris), "snapshot": snapshot}
            },
        )

    async def delete_playlist(self, playlist_id: str) -> None:
        """Unfollow ``playlist_id``; the provider has no hard delete."""
        await self.client.unfollow_playlist(playlist_id)
        logger.info("builder.playlist_deleted", extra={"meta": {"playlist_id": playlist_id}})


__all__ = ["PlaylistBuilder", "MAX_TITLE_LENGTH", "MAX_DESCRIPTION_LENGTH", "truncate"]
