from datetime import datetime
from typing import Optional

from sqlalchemy import String, BigInteger, LargeBinary, DateTime, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column

from tvtracker.database import Base
from tvtracker.models.user import new_id
from tvtracker.utils import utcnow


class Passkey(Base):
    """WebAuthn credential registered by a user."""

    __tablename__ = "passkeys"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    credential_id: Mapped[str] = mapped_column(String(1024), unique=True, index=True)  # base64url
    public_key: Mapped[bytes] = mapped_column(LargeBinary)
    counter: Mapped[int] = mapped_column(BigInteger, default=0)
    transports: Mapped[list] = mapped_column(JSON, default=list)
    name: Mapped[str] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
