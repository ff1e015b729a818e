from __future__ import annotations

from pydantic import BaseModel, Field


class UserProfile(BaseModel):
    id: str
    display_name: str | None = None
    email: str | None = None
    country: str | None = None


class Artist(BaseModel):
    name: str
    id: str | None = None


class Track(BaseModel):
    # local files have no id
    id: str | None = None
    name: str
    uri: str | None = None
    artists: list[Artist] = Field(default_factory=list)

    @property
    def artist_names(self) -> str:
        return ", ".join(a.name for a in self.artists)


class TrackPage(BaseModel):
    items: list[Track]
    total: int = 0
    next: str | None = None


class SearchResponse(BaseModel):
    tracks: TrackPage


class SavedTrack(BaseModel):
    track: Track | None = None
    added_at: str | None = None


class SavedTracksPage(BaseModel):
    items: list[SavedTrack]
    total: int = 0
    next: str | None = None


class PlaylistOwner(BaseModel):
    id: str
    display_name: str | None = None


class PlaylistSummary(BaseModel):
    id: str
    name: str
    owner: PlaylistOwner | None = None
    public: bool | None = None
    uri: str | None = None
    description: str | None = None


class PlaylistPage(BaseModel):
    items: list[PlaylistSummary]
    total: int = 0
    next: str | None = None


class CreatePlaylistRequest(BaseModel):
    name: str
    description: str
    public: bool = False


class CreatedPlaylist(BaseModel):
    id: str
    name: str
    uri: str | None = None
    public: bool | None = None


class AddTracksRequest(BaseModel):
    uris: list[str]


class SnapshotResponse(BaseModel):
    snapshot_id: str
