import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from tvtracker.database import Base
from tvtracker.utils import utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """An account of the tracker."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    plex_token: Mapped[Optional[str]] = mapped_column(
        String(36), unique=True, nullable=True, default=new_id
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Password(Base):
    """Legacy bcrypt password, migrated into Account on login."""

    __tablename__ = "passwords"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), primary_key=True)
    hash: Mapped[str] = mapped_column(String(100))


class Account(Base):
    """Credential account holding the current password hash."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(String(36))
    provider_id: Mapped[str] = mapped_column(String(50), default="credential")
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    password: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class PasswordReset(Base):
    """Pending password reset, token stored as sha256 hex digest."""

    __tablename__ = "password_resets"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(320), index=True)
    token: Mapped[str] = mapped_column(String(64), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Invite(Base):
    """Invite code required to join while signup is disabled."""

    __tablename__ = "invites"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
