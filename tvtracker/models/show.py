from datetime import date, datetime
from typing import Optional

from sqlalchemy import String, Text, Float, Date, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tvtracker.database import Base
from tvtracker.models.user import new_id
from tvtracker.utils import utcnow


class Show(Base):
    """A show as known to the catalog."""

    __tablename__ = "shows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    maze_id: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(500))
    premiered: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    ended: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    summary: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    episodes: Mapped[list["Episode"]] = relationship(  # noqa: F821
        back_populates="show",
        order_by="[Episode.season.desc(), Episode.number.desc()]",
    )


class ShowOnUser(Base):
    """A user's subscription to a show."""

    __tablename__ = "shows_on_users"
    __table_args__ = (UniqueConstraint("show_id", "user_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    show_id: Mapped[str] = mapped_column(String(36), ForeignKey("shows.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    archived: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
