"""Provider OAuth: PKCE authorization, token storage and refresh."""

from .flow import AuthFlow, AuthState
from .pkce import code_challenge, generate_code_verifier
from .token_store import MemoryTokenStore, SqliteTokenStore, TokenStore

__all__ = [
    "AuthFlow",
    "AuthState",
    "TokenStore",
    "MemoryTokenStore",
    "SqliteTokenStore",
    "code_challenge",
    "generate_code_verifier",
]
