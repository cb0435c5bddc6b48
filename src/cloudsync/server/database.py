"""Server database using SQLAlchemy with SQLite.

This module provides:
- User management
- Token-based authentication
- Sync heads (last accepted ``lastSync`` per user) with compare-and-swap
"""

from __future__ import annotations

import hashlib
import secrets
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cloudsync.core.timestamps import ensure_utc
from cloudsync.server.models import Base, SyncHead, Token, User

if TYPE_CHECKING:
    from sqlalchemy import Engine

TOKEN_PREFIX = "cs_"


def hash_token(token: str) -> str:
    """Hash a token using SHA-256.

    Args:
        token: Raw token string.

    Returns:
        Hex-encoded SHA-256 hash.
    """
    return hashlib.sha256(token.encode()).hexdigest()


class StaleHeadError(Exception):
    """Raised when a sync head no longer holds the expected value."""


class Database:
    """SQLAlchemy database for server metadata.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    Writers to the same sync head are serialized by SQLite's write lock.
    """

    def __init__(self, db_path: Path, busy_timeout: float = 30.0) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
            busy_timeout: Seconds a writer waits for a concurrent writer.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False, "timeout": busy_timeout},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")

        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    # === User operations ===

    def create_user(self, name: str, user_id: str | None = None) -> User:
        """Create a new user.

        Args:
            name: Unique display name.
            user_id: Explicit identifier (random hex when omitted).

        Returns:
            Created User object.

        Raises:
            IntegrityError: If name or id already exists.
        """
        with self._session() as session:
            user = User(id=user_id or uuid.uuid4().hex, name=name)
            session.add(user)
            session.commit()
            session.refresh(user)
            session.expunge(user)
            return user

    def get_user(self, user_id: str) -> User | None:
        """Get a user by ID."""
        with self._session() as session:
            user = session.get(User, user_id)
            if user:
                session.expunge(user)
            return user

    def get_user_by_name(self, name: str) -> User | None:
        """Get a user by name."""
        with self._session() as session:
            stmt = select(User).where(User.name == name)
            user = session.execute(stmt).scalar_one_or_none()
            if user:
                session.expunge(user)
            return user

    def delete_user(self, user_id: str) -> bool:
        """Delete a user, its tokens and its sync head.

        The payload blob is removed by the record repository.

        Returns:
            True if the user existed.
        """
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                return False
            session.delete(user)
            session.execute(delete(SyncHead).where(SyncHead.user_id == user_id))
            session.commit()
            return True

    # === Token operations ===

    def create_token(
        self,
        user_id: str,
        expires_in_days: int | None = None,
    ) -> tuple[str, Token]:
        """Issue a bearer token for a user.

        Args:
            user_id: Owner of the token.
            expires_in_days: Optional lifetime. None means no expiry.

        Returns:
            Tuple of (raw_token, Token). The raw token is only shown once.
        """
        raw_token = TOKEN_PREFIX + secrets.token_urlsafe(32)
        expires_at = None
        if expires_in_days is not None:
            expires_at = datetime.now(UTC) + timedelta(days=expires_in_days)

        with self._session() as session:
            token = Token(
                user_id=user_id,
                token_hash=hash_token(raw_token),
                expires_at=expires_at,
            )
            session.add(token)
            session.commit()
            session.refresh(token)
            session.expunge(token)
            return raw_token, token

    def validate_token(self, raw_token: str) -> Token | None:
        """Validate a token and return it if valid.

        Args:
            raw_token: Raw token string.

        Returns:
            Token if valid, None otherwise.
        """
        token_hash = hash_token(raw_token)
        with self._session() as session:
            stmt = select(Token).where(Token.token_hash == token_hash, Token.revoked == False)  # noqa: E712
            token = session.execute(stmt).scalar_one_or_none()

            if token is None:
                return None

            if token.expires_at and ensure_utc(token.expires_at) < datetime.now(UTC):
                return None

            session.expunge(token)
            return token

    def revoke_token(self, token_id: int) -> None:
        """Revoke a token."""
        with self._session() as session:
            token = session.get(Token, token_id)
            if token:
                token.revoked = True
                session.commit()

    # === Sync heads ===

    def get_sync_head(self, user_id: str) -> datetime | None:
        """Get the last accepted sync instant for a user.

        Returns:
            Aware UTC datetime, or None if the user never synced.
        """
        with self._session() as session:
            head = session.get(SyncHead, user_id)
            if head is None:
                return None
            return ensure_utc(head.last_sync)

    def swap_sync_head(
        self,
        user_id: str,
        expected: datetime | None,
        new_value: datetime,
        on_swapped: Callable[[], None] | None = None,
    ) -> None:
        """Compare-and-swap the sync head of a user.

        The head is moved from ``expected`` to ``new_value`` only if it still
        holds ``expected`` (None meaning "no head yet"). ``on_swapped`` runs
        while the row is write-locked, before commit; if it raises, the swap
        is rolled back.

        Raises:
            StaleHeadError: If the head no longer holds ``expected``.
        """
        with self._session() as session:
            if expected is None:
                session.add(SyncHead(user_id=user_id, last_sync=new_value))
                try:
                    session.flush()
                except IntegrityError as e:
                    session.rollback()
                    raise StaleHeadError(f"Sync head for {user_id} already exists") from e
            else:
                stmt = (
                    update(SyncHead)
                    .where(
                        SyncHead.user_id == user_id,
                        SyncHead.last_sync == ensure_utc(expected),
                    )
                    .values(last_sync=new_value, updated_at=datetime.now(UTC))
                )
                result = session.execute(stmt)
                if result.rowcount != 1:
                    session.rollback()
                    raise StaleHeadError(f"Sync head for {user_id} moved")

            if on_swapped is not None:
                on_swapped()
            session.commit()

    def delete_sync_head(self, user_id: str) -> bool:
        """Remove the sync head of a user."""
        with self._session() as session:
            result = session.execute(delete(SyncHead).where(SyncHead.user_id == user_id))
            session.commit()
            return bool(result.rowcount)
