import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.auth import require_user_id
from tvtracker.database import get_session
from tvtracker.services.episodes import get_connected_episode_count, get_episode_count
from tvtracker.services.shows import get_connected_show_count, get_show_count
from tvtracker.services.users import get_user_count

logger = logging.getLogger(__name__)

router = APIRouter()

GAUGES = [
    ("show_count", "The total number of shows."),
    ("connected_show_count", "The total number of connected shows."),
    ("episode_count", "The total number of episodes."),
    ("connected_episode_count", "The total number of connected episodes."),
    ("user_count", "The total number of users."),
]


async def _collect(session: AsyncSession) -> dict[str, int]:
    return {
        "show_count": await get_show_count(session),
        "connected_show_count": await get_connected_show_count(session),
        "episode_count": await get_episode_count(session),
        "connected_episode_count": await get_connected_episode_count(session),
        "user_count": await get_user_count(session),
    }


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(session: AsyncSession = Depends(get_session)):
    """Prometheus text exposition of the catalog and user gauges."""
    logger.info("Metrics endpoint accessed")
    values = await _collect(session)

    lines = []
    for name, description in GAUGES:
        lines.append(f"# HELP {name} {description}")
        lines.append(f"# TYPE {name} gauge")
        lines.append(f"{name} {values[name]}")

    return PlainTextResponse("\n".join(lines))


@router.get("/kpi")
async def kpi(
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    values = await _collect(session)
    return {
        "showCount": values["show_count"],
        "connectedShowCount": values["connected_show_count"],
        "episodeCount": values["episode_count"],
        "connectedEpisodeCount": values["connected_episode_count"],
        "userCount": values["user_count"],
    }
