from __future__ import annotations

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_DEFAULT_SCOPES = (
    "user-read-private "
    "user-read-email "
    "user-library-read "
    "playlist-read-private "
    "playlist-modify-public "
    "playlist-modify-private"
)


class MoodifySettings(BaseSettings):
    """Runtime configuration, read from ``MOODIFY_*`` env vars or a ``.env`` file."""

    model_config = SettingsConfigDict(
        env_prefix="MOODIFY_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    # Provider OAuth (PKCE, public client: no secret)
    spotify_client_id: str = ""
    spotify_redirect_uri: str = "moodifyapp://callback"
    spotify_scopes: str = _DEFAULT_SCOPES
    spotify_auth_url: str = "https://accounts.spotify.com/authorize"
    spotify_token_url: str = "https://accounts.spotify.com/api/token"
    spotify_api_base: str = "https://api.spotify.com/v1"

    # Completion endpoint
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-3.5-turbo"
    classification_temperature: float = 0.0
    creative_temperature: float = 0.7

    # Persistence backend
    supabase_url: str = ""
    supabase_key: str = ""

    # Token storage
    token_db_path: str = "moodify_tokens.db"
    token_master_key: str | None = None
    token_expiry_margin: float = 300.0

    # HTTP
    http_timeout: float = 30.0
    http_connect_timeout: float = 10.0
    max_retries: int = 3
    retry_delay: float = 5.0

    # Pipeline
    search_concurrency: int = 10
    suggestion_count: int = 10
    min_run_interval: float = 120.0
    include_liked_tracks: bool = False
    liked_tracks_limit: int = 50
    cleanup_orphaned_playlists: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    def scopes(self) -> list[str]:
        return self.spotify_scopes.split()


@lru_cache(maxsize=1)
def get_settings() -> MoodifySettings:
    settings = MoodifySettings()
    logger.debug(
        "settings loaded",
        extra={
            "meta": {
                "client_id_configured": bool(settings.spotify_client_id),
                "openai_key_configured": bool(settings.openai_api_key),
                "supabase_configured": bool(settings.supabase_url),
                "token_encryption": bool(settings.token_master_key),
            }
        },
    )
    return settings


__all__ = ["MoodifySettings", "get_settings"]
