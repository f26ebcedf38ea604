"""
Tool: Provider Token Source
Purpose: Hand the syncers a currently valid bearer token, or None

Refreshing credentials is handled elsewhere; whatever writes the
provider_tokens table owns that. A token that expires within the configured
skew counts as expired so a sync run never starts with a credential that
dies halfway through.

Usage:
    from calsync.sync.tokens import StoredTokenSource

    tokens = StoredTokenSource(db_path)
    tokens.save_token("alice", "ya29...", expires_at)
    token = await tokens.get_valid_access_token("alice")
    if token is None:
        ...  # needs re-authentication
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path

from calsync import DB_PATH
from calsync.models import utcnow


logger = logging.getLogger(__name__)


class TokenSource(ABC):
    """Supplies provider credentials per user."""

    @abstractmethod
    async def get_valid_access_token(self, user_id: str) -> str | None:
        """Return a usable access token, or None when the user must re-authenticate."""
        pass


class StoredTokenSource(TokenSource):
    """Reads tokens from the provider_tokens table."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        provider: str = "google",
        expiry_skew: timedelta = timedelta(minutes=30),
    ):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self.provider = provider
        self.expiry_skew = expiry_skew

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("""
            CREATE TABLE IF NOT EXISTS provider_tokens (
                user_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                access_token TEXT NOT NULL,
                expires_at TEXT,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, provider)
            )
        """)
        conn.commit()
        return conn

    def save_token(self, user_id: str, access_token: str, expires_at: datetime | None) -> None:
        """Store or replace the user's token."""
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        conn = self.get_connection()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO provider_tokens (user_id, provider, access_token, expires_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, provider) DO UPDATE SET
                        access_token = excluded.access_token,
                        expires_at = excluded.expires_at,
                        updated_at = excluded.updated_at
                    """,
                    (
                        user_id,
                        self.provider,
                        access_token,
                        expires_at.isoformat() if expires_at else None,
                        utcnow().isoformat(),
                    ),
                )
        finally:
            conn.close()

    def revoke(self, user_id: str) -> None:
        conn = self.get_connection()
        try:
            with conn:
                conn.execute(
                    "DELETE FROM provider_tokens WHERE user_id = ? AND provider = ?",
                    (user_id, self.provider),
                )
        finally:
            conn.close()

    async def get_valid_access_token(self, user_id: str) -> str | None:
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT access_token, expires_at FROM provider_tokens WHERE user_id = ? AND provider = ?",
                (user_id, self.provider),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            logger.info("No %s token stored for %s", self.provider, user_id)
            return None

        # Tokens without an expiry are trusted until the provider answers 401
        if row["expires_at"]:
            expires_at = datetime.fromisoformat(row["expires_at"])
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at - self.expiry_skew <= utcnow():
                logger.warning("%s token for %s expires at %s, treating as expired", self.provider, user_id, expires_at)
                return None

        return row["access_token"]


__all__ = ["StoredTokenSource", "TokenSource"]
