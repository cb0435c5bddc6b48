"""SQLAlchemy models for cloudsync server.

This module defines the database schema using SQLAlchemy ORM. Payloads are
not stored here; they live in the blob store. The database only keeps
identities, bearer tokens and the per-user sync head.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class User(Base):
    """Represents a user whose state is synchronized."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    # Relationships
    tokens: Mapped[list[Token]] = relationship(
        "Token", back_populates="user", cascade="all, delete-orphan"
    )


class Token(Base):
    """Represents a bearer token issued to a user."""

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    user: Mapped[User] = relationship("User", back_populates="tokens")

    # Indexes
    __table_args__ = (Index("idx_tokens_hash", "token_hash"),)


class SyncHead(Base):
    """Last accepted sync instant for a user.

    Mirrors the ``lastSync`` of the user's record in the blob store and is
    the row that conditional writes compare against.
    """

    __tablename__ = "sync_heads"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_sync: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )
