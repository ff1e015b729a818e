from .client import ProviderClient, track_uri
from .playlists import PlaylistBuilder
from .tracks import ResolvedTrack, TrackResolver, merge_track_ids

__all__ = [
    "ProviderClient",
    "PlaylistBuilder",
    "TrackResolver",
    "ResolvedTrack",
    "merge_track_ids",
    "track_uri",
]
