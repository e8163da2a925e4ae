import json
import logging

from fastapi import APIRouter, Depends, Form
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.config import is_enabled
from tvtracker.database import get_session
from tvtracker.services.episodes import get_episode_by_show_id_and_numbers, mark_episode_as_watched
from tvtracker.services.shows import get_show_by_user_id_and_name
from tvtracker.services.users import get_user_by_plex_token

logger = logging.getLogger(__name__)

router = APIRouter()

SCROBBLE_EVENT = "media.scrobble"


@router.post("/plex/{token}")
async def plex_webhook(
    token: str,
    payload: str = Form(""),
    session: AsyncSession = Depends(get_session)
):
    """
    Plex webhook. A scrobble of a tracked show's episode marks it watched.

    Always answers 200 with an empty object, nothing is reported back to Plex.
    """
    if not is_enabled("plex"):
        return {}

    try:
        event = json.loads(payload)
    except ValueError:
        logger.warning("Plex webhook with unreadable payload")
        return {}

    if not isinstance(event, dict):
        return {}

    metadata = event.get("Metadata")
    if not isinstance(metadata, dict):
        return {}

    show_title = metadata.get("grandparentTitle")
    if not show_title or event.get("event") != SCROBBLE_EVENT:
        return {}

    user = await get_user_by_plex_token(session, token)
    if not user:
        return {}

    show = await get_show_by_user_id_and_name(session, user.id, show_title)
    if not show:
        logger.debug(f"Plex scrobble for untracked show {show_title}")
        return {}

    try:
        season = int(metadata["parentIndex"])
        number = int(metadata["index"])
    except (KeyError, TypeError, ValueError):
        return {}

    episode = await get_episode_by_show_id_and_numbers(session, show.id, season, number)
    if not episode:
        return {}

    try:
        await mark_episode_as_watched(session, user.id, show.id, episode.id)
        logger.info(f"Plex marked S{season}E{number} of {show.name} as watched for user {user.id}")
    except Exception:
        await session.rollback()
        logger.exception(f"Plex scrobble for episode {episode.id} failed")

    return {}
