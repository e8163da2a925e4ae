import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tvtracker.config import settings
from tvtracker.exceptions import ShowNotFoundError
from tvtracker.models import Show, ShowOnUser, Episode, EpisodeOnUser
from tvtracker.services.catalog import TVMazeClient
from tvtracker.services.html import strip_html
from tvtracker.utils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)


@dataclass
class ShowSummary:
    """A tracked show as listed on the overview and archive pages."""
    show: Show
    unwatched_episodes_count: int = 0
    archived: bool = False


@dataclass
class ShowDetail:
    """A show with its episodes and the user's state for each of them."""
    show: Show
    watched_episodes: set[str] = field(default_factory=set)
    ignored_episodes: set[str] = field(default_factory=set)
    archived: bool = False


@dataclass
class SearchResultShow:
    maze_id: str
    name: str
    premiered: Optional[date]
    ended: Optional[date]
    rating: Optional[float]
    image_url: Optional[str]
    summary: str


def parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def _image(payload: dict) -> Optional[str]:
    return (payload.get("image") or {}).get("medium")


def prepare_show(show_result: dict) -> tuple[dict, list[dict]]:
    """Map a catalog show (with embedded episodes) to Show/Episode column values."""
    show = {
        "maze_id": str(show_result["id"]),
        "name": show_result.get("name") or "",
        "premiered": parse_date(show_result.get("premiered")),
        "ended": parse_date(show_result.get("ended")),
        "rating": (show_result.get("rating") or {}).get("average"),
        "image_url": _image(show_result),
        "summary": strip_html(show_result.get("summary")),
    }

    embedded = show_result.get("_embedded") or {}
    episodes = [prepare_episode(episode) for episode in embedded.get("episodes") or []]

    return show, episodes


def prepare_episode(episode: dict) -> dict:
    return {
        "maze_id": str(episode["id"]),
        "name": episode.get("name") or "",
        "season": episode.get("season") or 0,
        "number": episode.get("number") or 0,
        "air_date": parse_datetime(episode.get("airstamp")),
        "runtime": episode.get("runtime") or 0,
        "image_url": _image(episode),
        "summary": strip_html(episode.get("summary")),
    }


async def get_all_running_show_ids(session: AsyncSession) -> list[str]:
    """Catalog ids of shows without an end date, used by maintenance jobs."""
    result = await session.execute(select(Show.maze_id).where(Show.ended.is_(None)))
    return list(result.scalars().all())


async def _count_unwatched_by_show(
    session: AsyncSession,
    user_id: str,
    show_ids: list[str]
) -> dict[str, int]:
    now = utcnow()

    aired_result = await session.execute(
        select(Episode.show_id, func.count(Episode.id))
        .where(Episode.show_id.in_(show_ids), Episode.air_date <= now)
        .group_by(Episode.show_id)
    )
    aired = dict(aired_result.all())

    connected_result = await session.execute(
        select(EpisodeOnUser.show_id, func.count(EpisodeOnUser.id))
        .join(Episode, Episode.id == EpisodeOnUser.episode_id)
        .where(
            EpisodeOnUser.user_id == user_id,
            EpisodeOnUser.show_id.in_(show_ids),
            Episode.air_date <= now
        )
        .group_by(EpisodeOnUser.show_id)
    )
    connected = dict(connected_result.all())

    return {
        show_id: max(0, aired.get(show_id, 0) - connected.get(show_id, 0))
        for show_id in show_ids
    }


async def get_shows_by_user_id(
    session: AsyncSession,
    user_id: str,
    archived: bool = False
) -> list[ShowSummary]:
    """Tracked shows with their unwatched episode count, unwatched first."""
    result = await session.execute(
        select(Show, ShowOnUser.archived)
        .join(ShowOnUser, ShowOnUser.show_id == Show.id)
        .where(ShowOnUser.user_id == user_id, ShowOnUser.archived == archived)
    )
    rows = result.all()
    if not rows:
        return []

    unwatched = await _count_unwatched_by_show(session, user_id, [show.id for show, _ in rows])

    shows = [
        ShowSummary(
            show=show,
            unwatched_episodes_count=unwatched[show.id],
            archived=is_archived
        )
        for show, is_archived in rows
    ]
    shows.sort(key=lambda s: (s.unwatched_episodes_count == 0, s.show.name.lower()))
    return shows


async def get_archived_shows_by_user_id(session: AsyncSession, user_id: str) -> list[ShowSummary]:
    return await get_shows_by_user_id(session, user_id, archived=True)


async def get_show_by_id(
    session: AsyncSession,
    show_id: str,
    user_id: str
) -> Optional[ShowDetail]:
    """Load a show with episodes (newest season first) and the user's watch state."""
    result = await session.execute(
        select(Show).where(Show.id == show_id).options(selectinload(Show.episodes))
    )
    show = result.scalar_one_or_none()
    if not show:
        return None

    records_result = await session.execute(
        select(EpisodeOnUser.episode_id, EpisodeOnUser.ignored).where(
            EpisodeOnUser.user_id == user_id,
            EpisodeOnUser.show_id == show_id
        )
    )
    detail = ShowDetail(show=show)
    for episode_id, ignored in records_result.all():
        if ignored:
            detail.ignored_episodes.add(episode_id)
        else:
            detail.watched_episodes.add(episode_id)

    subscription = await get_show_on_user(session, user_id, show_id)
    detail.archived = bool(subscription and subscription.archived)

    return detail


async def get_show_on_user(
    session: AsyncSession,
    user_id: str,
    show_id: str
) -> Optional[ShowOnUser]:
    result = await session.execute(
        select(ShowOnUser).where(
            ShowOnUser.user_id == user_id,
            ShowOnUser.show_id == show_id
        )
    )
    return result.scalar_one_or_none()


async def get_show_by_user_id_and_name(
    session: AsyncSession,
    user_id: str,
    name: str
) -> Optional[Show]:
    result = await session.execute(
        select(Show)
        .join(ShowOnUser, ShowOnUser.show_id == Show.id)
        .where(ShowOnUser.user_id == user_id, Show.name == name)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def remove_show_from_user(session: AsyncSession, user_id: str, show_id: str):
    """Stop tracking a show, dropping the user's watch records for it."""
    await session.execute(
        delete(ShowOnUser).where(
            ShowOnUser.show_id == show_id,
            ShowOnUser.user_id == user_id
        )
    )
    await session.execute(
        delete(EpisodeOnUser).where(
            EpisodeOnUser.show_id == show_id,
            EpisodeOnUser.user_id == user_id
        )
    )
    await session.commit()


async def _set_archived(session: AsyncSession, user_id: str, show_id: str, archived: bool):
    subscription = await get_show_on_user(session, user_id, show_id)
    if subscription:
        subscription.archived = archived
        await session.commit()


async def archive_show_on_user(session: AsyncSession, user_id: str, show_id: str):
    await _set_archived(session, user_id, show_id, True)


async def unarchive_show_on_user(session: AsyncSession, user_id: str, show_id: str):
    await _set_archived(session, user_id, show_id, False)


async def _get_added_shows_maze_ids(session: AsyncSession, user_id: str) -> set[str]:
    result = await session.execute(
        select(Show.maze_id)
        .join(ShowOnUser, ShowOnUser.show_id == Show.id)
        .where(ShowOnUser.user_id == user_id)
    )
    return set(result.scalars().all())


async def search_shows(
    session: AsyncSession,
    client: TVMazeClient,
    query: Optional[str],
    user_id: str
) -> list[SearchResultShow]:
    """Search the catalog, leaving out shows the user already tracks."""
    if not query:
        return []

    results = await client.fetch_search_results(query)
    added = await _get_added_shows_maze_ids(session, user_id)

    shows = []
    for item in results:
        show = (item or {}).get("show") or {}
        if "id" not in show:
            continue
        maze_id = str(show["id"])
        if maze_id in added:
            continue
        shows.append(SearchResultShow(
            maze_id=maze_id,
            name=show.get("name") or "",
            premiered=parse_date(show.get("premiered")),
            ended=parse_date(show.get("ended")),
            rating=(show.get("rating") or {}).get("average"),
            image_url=_image(show),
            summary=strip_html(show.get("summary"))
        ))
    return shows


async def add_show(
    session: AsyncSession,
    client: TVMazeClient,
    user_id: str,
    maze_id: str
) -> Show:
    """
    Track a catalog show for a user.

    Shows already in the database are only connected to the user. New shows
    are fetched with their episodes; episodes are only created when there
    are at most `max_initial_episodes` of them.
    """
    result = await session.execute(select(Show).where(Show.maze_id == maze_id))
    existing = result.scalar_one_or_none()

    if existing:
        if not await get_show_on_user(session, user_id, existing.id):
            session.add(ShowOnUser(show_id=existing.id, user_id=user_id))
            await session.commit()
        return existing

    show_result = await client.fetch_show_with_embedded_episodes(maze_id)
    if not show_result:
        raise ShowNotFoundError(maze_id)

    show_data, episodes = prepare_show(show_result)

    show = Show(**show_data)
    session.add(show)
    await session.flush()
    session.add(ShowOnUser(show_id=show.id, user_id=user_id))

    if len(episodes) <= settings.max_initial_episodes:
        session.add_all([Episode(show_id=show.id, **episode) for episode in episodes])
    else:
        logger.warning(
            f"Skipping initial episodes of {show.name}: {len(episodes)} exceed the limit"
        )

    await session.commit()
    logger.info(f"Added show {show.name} ({maze_id}) with {len(episodes)} episodes")
    return show


async def get_show_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count(Show.id)))
    return result.scalar() or 0


async def get_connected_show_count(session: AsyncSession) -> int:
    """Number of distinct shows tracked by at least one user."""
    result = await session.execute(select(func.count(func.distinct(ShowOnUser.show_id))))
    return result.scalar() or 0


async def get_shows_tracked_by_user(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.count(ShowOnUser.id)).where(ShowOnUser.user_id == user_id)
    )
    return result.scalar() or 0


async def get_archived_shows_count_for_user(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.count(ShowOnUser.id)).where(
            ShowOnUser.user_id == user_id,
            ShowOnUser.archived == True
        )
    )
    return result.scalar() or 0
