from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Integer, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tvtracker.database import Base
from tvtracker.models.show import Show
from tvtracker.models.user import new_id
from tvtracker.utils import utcnow


class Episode(Base):
    """An episode of a show."""

    __tablename__ = "episodes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    maze_id: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    show_id: Mapped[str] = mapped_column(String(36), ForeignKey("shows.id"), index=True)
    name: Mapped[str] = mapped_column(String(500), default="")
    season: Mapped[int] = mapped_column(Integer)
    number: Mapped[int] = mapped_column(Integer)
    air_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    runtime: Mapped[int] = mapped_column(Integer, default=0)
    image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    summary: Mapped[str] = mapped_column(Text, default="")

    show: Mapped[Show] = relationship(back_populates="episodes")


class EpisodeOnUser(Base):
    """Watch record. Means watched unless ignored is set."""

    __tablename__ = "episodes_on_users"
    __table_args__ = (UniqueConstraint("episode_id", "show_id", "user_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    episode_id: Mapped[str] = mapped_column(String(36), ForeignKey("episodes.id"), index=True)
    show_id: Mapped[str] = mapped_column(String(36), ForeignKey("shows.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    ignored: Mapped[bool] = mapped_column(Boolean, default=False)

    # Doubles as the "watched at" timestamp
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    episode: Mapped[Episode] = relationship()
    show: Mapped[Show] = relationship()
