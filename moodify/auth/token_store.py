from __future__ import annotations

import logging
import time
from typing import Protocol

import aiosqlite
from cryptography.fernet import Fernet, InvalidToken

from ..models import AuthToken, PendingAuthorization

logger = logging.getLogger(__name__)

TOKEN_TABLE = "auth_tokens"
PENDING_TABLE = "pending_authorizations"


class TokenStore(Protocol):
    """Durable holder of the provider token and pending PKCE verifiers.

    ``save`` replaces the whole token in one write; there is no partial update.
    """

    async def load(self) -> AuthToken | None: ...

    async def save(self, token: AuthToken) -> None: ...

    async def clear(self) -> None: ...

    async def save_pending(self, pending: PendingAuthorization) -> None: ...

    async def pop_pending(self, state: str | None) -> PendingAuthorization | None: ...


class MemoryTokenStore:
    """Process-local token store for tests and short-lived sessions."""

    def __init__(self, token: AuthToken | None = None) -> None:
        self._token = token
        self._pending: list[PendingAuthorization] = []

    async def load(self) -> AuthToken | None:
        return self._token

    async def save(self, token: AuthToken) -> None:
        self._token = token

    async def clear(self) -> None:
        self._token = None

    async def save_pending(self, pending: PendingAuthorization) -> None:
        self._pending.append(pending)

    async def pop_pending(self, state: str | None) -> PendingAuthorization | None:
        if not self._pending:
            return None
        if state is None:
            return self._pending.pop()
        for i in range(len(self._pending) - 1, -1, -1):
            if self._pending[i].state == state:
                return self._pending.pop(i)
        return None


def _fernet(master_key: str | None) -> Fernet | None:
    if not master_key:
        return None
    return Fernet(master_key.encode())


class SqliteTokenStore:
    """Token store backed by sqlite + aiosqlite, Fernet-encrypted when a master key is set."""

    def __init__(self, db_path: str, master_key: str | None = None) -> None:
        self.db_path = db_path
        self._fernet = _fernet(master_key)
        self._ready = False

    def _encrypt(self, value: str | None) -> bytes | None:
        if value is None:
            return None
        raw = value.encode()
        return self._fernet.encrypt(raw) if self._fernet else raw

    def _decrypt(self, blob: bytes | None) -> str | None:
        if blob is None:
            return None
        raw = self._fernet.decrypt(blob) if self._fernet else blob
        return raw.decode()

    async def _ensure_tables(self, db: aiosqlite.Connection) -> None:
        if self._ready:
            return
        await db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {TOKEN_TABLE} (
                slot INTEGER PRIMARY KEY CHECK (slot = 1),
                access_token BLOB NOT NULL,
                refresh_token BLOB,
                scope TEXT,
                expires_at REAL NOT NULL,
                updated_at INTEGER
            )
            """
        )
        await db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {PENDING_TABLE} (
                state TEXT PRIMARY KEY,
                verifier BLOB NOT NULL,
                created_at REAL NOT NULL
            )
            """
        )
        await db.commit()
        self._ready = True

    async def load(self) -> AuthToken | None:
        async with aiosqlite.connect(self.db_path) as db:
            await self._ensure_tables(db)
            cur = await db.execute(
                f"SELECT access_token, refresh_token, scope, expires_at FROM {TOKEN_TABLE} WHERE slot = 1"
            )
            row = await cur.fetchone()
        if not row:
            return None
        at_blob, rt_blob, scope, expires_at = row
        try:
            access_token = self._decrypt(at_blob)
            refresh_token = self._decrypt(rt_blob)
        except InvalidToken:
            logger.exception("token_store.decrypt_failed")
            return None
        return AuthToken(
            access_token=access_token or "",
            refresh_token=refresh_token,
            expires_at=float(expires_at),
            scope=scope,
        )

    async def save(self, token: AuthToken) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await self._ensure_tables(db)
            await db.execute(
                f"INSERT OR REPLACE INTO {TOKEN_TABLE} (slot, access_token, refresh_token, scope, expires_at, updated_at) VALUES (1, ?, ?, ?, ?, ?)",
                (
                    self._encrypt(token.access_token),
                    self._encrypt(token.refresh_token),
                    token.scope,
                    token.expires_at,
                    int(time.time()),
                ),
            )
            await db.commit()

    async def clear(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await self._ensure_tables(db)
            await db.execute(f"DELETE FROM {TOKEN_TABLE}")
            await db.commit()

    async def save_pending(self, pending: PendingAuthorization) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await self._ensure_tables(db)
            await db.execute(
                f"INSERT OR REPLACE INTO {PENDING_TABLE} (state, verifier, created_at) VALUES (?, ?, ?)",
                (pending.state, self._encrypt(pending.verifier), pending.created_at),
            )
            await db.commit()

    async def pop_pending(self, state: str | None) -> PendingAuthorization | None:
        async with aiosqlite.connect(self.db_path) as db:
            await self._ensure_tables(db)
            if state is None:
                cur = await db.execute(
                    f"SELECT state, verifier, created_at FROM {PENDING_TABLE} ORDER BY created_at DESC LIMIT 1"
                )
            else:
                cur = await db.execute(
                    f"SELECT state, verifier, created_at FROM {PENDING_TABLE} WHERE state = ?",
                    (state,),
                )
            row = await cur.fetchone()
            if not row:
                return None
            await db.execute(f"DELETE FROM {PENDING_TABLE} WHERE state = ?", (row[0],))
            await db.commit()
        try:
            verifier = self._decrypt(row[1])
        except InvalidToken:
            logger.exception("token_store.decrypt_failed")
            return None
        return PendingAuthorization(state=row[0], verifier=verifier or "", created_at=float(row[2]))


__all__ = ["TokenStore", "MemoryTokenStore", "SqliteTokenStore"]
