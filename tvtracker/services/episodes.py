import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tvtracker.exceptions import EpisodeNotFoundError, ShowNotTrackedError
from tvtracker.models import Episode, EpisodeOnUser, ShowOnUser
from tvtracker.utils import utcnow

logger = logging.getLogger(__name__)

UPCOMING_LIMIT = 50
RECENTLY_WATCHED_LIMIT = 50
STATS_MONTHS = 12
STATS_MAX_RECORDS = 1000
MONTH_LABEL_FORMAT = "%B %Y"


@dataclass
class MonthlyStats:
    """Viewing activity of one calendar month."""
    month: str
    episodes: int = 0
    runtime: int = 0
    show_count: int = 0


async def get_episode_by_id(session: AsyncSession, episode_id: str) -> Optional[Episode]:
    result = await session.execute(
        select(Episode).where(Episode.id == episode_id).options(selectinload(Episode.show))
    )
    return result.scalar_one_or_none()


async def get_aired_episodes_by_show_id(session: AsyncSession, show_id: str) -> list[Episode]:
    result = await session.execute(
        select(Episode).where(
            Episode.show_id == show_id,
            Episode.air_date <= utcnow()
        )
    )
    return list(result.scalars().all())


async def get_episode_by_show_id_and_numbers(
    session: AsyncSession,
    show_id: str,
    season: int,
    number: int
) -> Optional[Episode]:
    result = await session.execute(
        select(Episode).where(
            Episode.show_id == show_id,
            Episode.season == season,
            Episode.number == number
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def get_upcoming_episodes(session: AsyncSession, user_id: str) -> list[Episode]:
    """Next episodes to air across the user's shows, soonest first."""
    tracked = select(ShowOnUser.show_id).where(ShowOnUser.user_id == user_id)
    result = await session.execute(
        select(Episode)
        .where(Episode.air_date > utcnow(), Episode.show_id.in_(tracked))
        .options(selectinload(Episode.show))
        .order_by(Episode.air_date.asc())
        .limit(UPCOMING_LIMIT)
    )
    return list(result.scalars().all())


async def get_recently_watched_episodes(session: AsyncSession, user_id: str) -> list[EpisodeOnUser]:
    """Latest watch records of the user with episode and show loaded."""
    result = await session.execute(
        select(EpisodeOnUser)
        .join(Episode, Episode.id == EpisodeOnUser.episode_id)
        .where(
            EpisodeOnUser.user_id == user_id,
            EpisodeOnUser.ignored == False,
            EpisodeOnUser.created_at < utcnow()
        )
        .options(selectinload(EpisodeOnUser.episode), selectinload(EpisodeOnUser.show))
        .order_by(EpisodeOnUser.created_at.desc())
        .limit(RECENTLY_WATCHED_LIMIT)
    )
    return list(result.scalars().all())


async def _require_show_on_user(session: AsyncSession, user_id: str, show_id: str):
    result = await session.execute(
        select(ShowOnUser.id).where(
            ShowOnUser.user_id == user_id,
            ShowOnUser.show_id == show_id
        )
    )
    if result.scalar_one_or_none() is None:
        raise ShowNotTrackedError(f"User {user_id} does not track show {show_id}")


async def _require_episode_of_show(session: AsyncSession, show_id: str, episode_id: str):
    result = await session.execute(
        select(Episode.id).where(Episode.id == episode_id, Episode.show_id == show_id)
    )
    if result.scalar_one_or_none() is None:
        raise EpisodeNotFoundError(f"Episode {episode_id} not found in show {show_id}")


async def _get_record(
    session: AsyncSession,
    user_id: str,
    show_id: str,
    episode_id: str
) -> Optional[EpisodeOnUser]:
    result = await session.execute(
        select(EpisodeOnUser).where(
            EpisodeOnUser.user_id == user_id,
            EpisodeOnUser.show_id == show_id,
            EpisodeOnUser.episode_id == episode_id
        )
    )
    return result.scalar_one_or_none()


async def _upsert_record(
    session: AsyncSession,
    user_id: str,
    show_id: str,
    episode_id: str,
    ignored: bool
):
    await _require_show_on_user(session, user_id, show_id)
    await _require_episode_of_show(session, show_id, episode_id)

    record = await _get_record(session, user_id, show_id, episode_id)
    if record:
        record.ignored = ignored
    else:
        session.add(EpisodeOnUser(
            user_id=user_id,
            show_id=show_id,
            episode_id=episode_id,
            ignored=ignored
        ))
    await session.commit()


async def mark_episode_as_watched(session: AsyncSession, user_id: str, show_id: str, episode_id: str):
    await _upsert_record(session, user_id, show_id, episode_id, ignored=False)


async def mark_episode_as_ignored(session: AsyncSession, user_id: str, show_id: str, episode_id: str):
    await _upsert_record(session, user_id, show_id, episode_id, ignored=True)


async def mark_episode_as_unwatched(session: AsyncSession, user_id: str, show_id: str, episode_id: str):
    await _require_show_on_user(session, user_id, show_id)
    await session.execute(
        delete(EpisodeOnUser).where(
            EpisodeOnUser.user_id == user_id,
            EpisodeOnUser.show_id == show_id,
            EpisodeOnUser.episode_id == episode_id
        )
    )
    await session.commit()


async def mark_episode_as_unignored(session: AsyncSession, user_id: str, show_id: str, episode_id: str):
    await _require_show_on_user(session, user_id, show_id)
    await session.execute(
        delete(EpisodeOnUser).where(
            EpisodeOnUser.user_id == user_id,
            EpisodeOnUser.show_id == show_id,
            EpisodeOnUser.episode_id == episode_id,
            EpisodeOnUser.ignored == True
        )
    )
    await session.commit()


async def mark_all_episodes_as_watched(session: AsyncSession, user_id: str, show_id: str) -> int:
    """Record every aired, not yet connected episode of a show as watched."""
    await _require_show_on_user(session, user_id, show_id)

    connected = select(EpisodeOnUser.episode_id).where(
        EpisodeOnUser.user_id == user_id,
        EpisodeOnUser.show_id == show_id
    )
    result = await session.execute(
        select(Episode.id).where(
            Episode.show_id == show_id,
            Episode.air_date <= utcnow(),
            Episode.id.not_in(connected)
        )
    )
    episode_ids = list(result.scalars().all())

    session.add_all([
        EpisodeOnUser(user_id=user_id, show_id=show_id, episode_id=episode_id)
        for episode_id in episode_ids
    ])
    await session.commit()

    logger.info(f"Marked {len(episode_ids)} episodes of show {show_id} as watched")
    return len(episode_ids)


async def get_episode_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count(Episode.id)))
    return result.scalar() or 0


async def get_connected_episode_count(session: AsyncSession) -> int:
    """Number of distinct episodes with at least one watch record."""
    result = await session.execute(select(func.count(func.distinct(EpisodeOnUser.episode_id))))
    return result.scalar() or 0


async def get_episodes_with_missing_info(session: AsyncSession) -> list[Episode]:
    result = await session.execute(
        select(Episode)
        .where(or_(
            Episode.image_url.is_(None),
            Episode.image_url == "",
            Episode.name == "",
            Episode.name == "TBA",
            Episode.summary.is_(None),
            Episode.summary == "",
            Episode.air_date.is_(None)
        ))
        .options(selectinload(Episode.show))
    )
    return list(result.scalars().all())


async def get_total_watch_time_for_user(session: AsyncSession, user_id: str) -> int:
    """Minutes spent on watched (not ignored) episodes."""
    result = await session.execute(
        select(func.coalesce(func.sum(Episode.runtime), 0))
        .join(EpisodeOnUser, EpisodeOnUser.episode_id == Episode.id)
        .where(EpisodeOnUser.user_id == user_id, EpisodeOnUser.ignored == False)
    )
    return result.scalar() or 0


async def get_watched_episodes_count_for_user(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.count(EpisodeOnUser.id))
        .join(Episode, Episode.id == EpisodeOnUser.episode_id)
        .where(
            EpisodeOnUser.user_id == user_id,
            EpisodeOnUser.ignored == False
        )
    )
    return result.scalar() or 0


async def get_unwatched_episodes_count_for_user(session: AsyncSession, user_id: str) -> int:
    """Aired episodes of all tracked shows (archived included) neither watched nor ignored."""
    now = utcnow()
    tracked = select(ShowOnUser.show_id).where(ShowOnUser.user_id == user_id)

    aired_result = await session.execute(
        select(func.count(Episode.id)).where(
            Episode.show_id.in_(tracked),
            Episode.air_date <= now
        )
    )
    aired = aired_result.scalar() or 0

    connected_result = await session.execute(
        select(func.count(EpisodeOnUser.id))
        .join(Episode, Episode.id == EpisodeOnUser.episode_id)
        .where(
            EpisodeOnUser.user_id == user_id,
            EpisodeOnUser.show_id.in_(tracked),
            Episode.air_date <= now
        )
    )
    connected = connected_result.scalar() or 0

    return max(0, aired - connected)


def _months_back(moment: datetime, months: int) -> datetime:
    """First instant of the month `months` before the month of `moment`."""
    index = moment.year * 12 + (moment.month - 1) - months
    return datetime(index // 12, index % 12 + 1, 1)


def summarize_by_month(records: list[EpisodeOnUser]) -> list[MonthlyStats]:
    """Group watch records by the month label of their timestamp, oldest month first."""
    months: "OrderedDict[str, MonthlyStats]" = OrderedDict()
    shows: dict[str, set[str]] = {}

    for record in sorted(records, key=lambda r: r.created_at):
        # watch records of deleted episodes
        if record.episode is None:
            continue
        label = record.created_at.strftime(MONTH_LABEL_FORMAT)
        stats = months.setdefault(label, MonthlyStats(month=label))
        stats.episodes += 1
        stats.runtime += record.episode.runtime or 0
        shows.setdefault(label, set()).add(record.show_id)

    for label, stats in months.items():
        stats.show_count = len(shows[label])

    return list(months.values())


async def get_last_12_months_stats(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None
) -> list[MonthlyStats]:
    """Monthly watch statistics over the last 12 months, capped at the latest 1000 records."""
    now = now or utcnow()
    since = _months_back(now, STATS_MONTHS - 1)

    result = await session.execute(
        select(EpisodeOnUser)
        .where(
            EpisodeOnUser.user_id == user_id,
            EpisodeOnUser.ignored == False,
            EpisodeOnUser.created_at >= since,
            EpisodeOnUser.created_at <= now
        )
        .options(selectinload(EpisodeOnUser.episode))
        .order_by(EpisodeOnUser.created_at.desc())
        .limit(STATS_MAX_RECORDS)
    )
    return summarize_by_month(list(result.scalars().all()))
