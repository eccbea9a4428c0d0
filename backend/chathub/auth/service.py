"""Credential collaborator used by the session coordinator.

The coordinator only needs two questions answered: can this identity be
created, and does this identity/secret pair verify. ``CredentialStore``
defines that seam; ``DuckDBCredentialStore`` answers it from a ``users``
table living next to the message tables.

Usage:
    credentials = DuckDBCredentialStore(connection=store.connection, lock=store.lock)
    await credentials.register("alice", "secret")
    ok = await credentials.verify("alice", "secret")
"""
import asyncio
import functools
import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import duckdb

from chathub.errors import DuplicateIdentity, StorageError

logger = logging.getLogger(__name__)


def hash_secret(identity: str, secret: str) -> str:
    """Digest a secret, keyed by identity so equal secrets differ per user."""
    return hashlib.sha256(f"{identity}:{secret}".encode()).hexdigest()


class CredentialStore(ABC):
    """Abstract credential check used by the coordinator."""

    @abstractmethod
    async def register(self, identity: str, secret: str) -> None:
        """Create an identity.

        Raises:
            DuplicateIdentity: If the identity already exists.
            StorageError: If the backing store fails.
        """

    @abstractmethod
    async def verify(self, identity: str, secret: str) -> bool:
        """Return True if the identity exists and the secret matches."""


class DuckDBCredentialStore(CredentialStore):
    """Credential store backed by a DuckDB ``users`` table."""

    def __init__(
        self,
        db_path: str = ":memory:",
        connection: Optional[duckdb.DuckDBPyConnection] = None,
        lock: Optional[threading.Lock] = None,
    ) -> None:
        self._connection = connection or duckdb.connect(db_path)
        self._lock = lock or threading.Lock()
        with self._lock:
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    username VARCHAR PRIMARY KEY,
                    secret_hash VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)

    async def register(self, identity: str, secret: str) -> None:
        await self._run("register", self._register, identity, secret)
        logger.info("[Auth] New user registered: %s", identity)

    async def verify(self, identity: str, secret: str) -> bool:
        return await self._run("verify", self._verify, identity, secret)

    async def _run(self, operation: str, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._locked, operation, fn, *args))

    def _locked(self, operation: str, fn, *args):
        with self._lock:
            try:
                return fn(*args)
            except duckdb.Error as e:
                logger.error("[Auth] %s failed: %s", operation, e)
                raise StorageError(f"{operation} failed: {e}", operation) from e

    def _register(self, identity: str, secret: str) -> None:
        existing = self._connection.execute(
            "SELECT 1 FROM users WHERE username = ?", [identity]
        ).fetchone()
        if existing is not None:
            raise DuplicateIdentity(identity)
        self._connection.execute(
            "INSERT INTO users (username, secret_hash, created_at) VALUES (?, ?, ?)",
            [identity, hash_secret(identity, secret), datetime.now(timezone.utc).replace(tzinfo=None)],
        )

    def _verify(self, identity: str, secret: str) -> bool:
        row = self._connection.execute(
            "SELECT secret_hash FROM users WHERE username = ?", [identity]
        ).fetchone()
        return row is not None and row[0] == hash_secret(identity, secret)
