import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends, Form, HTTPException
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.auth import require_user_id
from tvtracker.config import is_enabled
from tvtracker.database import get_session
from tvtracker.dependencies import require_flag
from tvtracker.exceptions import CatalogError
from tvtracker.services.catalog import TVMazeClient, get_catalog_client
from tvtracker.services.episodes import (
    get_last_12_months_stats,
    get_recently_watched_episodes,
    get_total_watch_time_for_user,
    get_unwatched_episodes_count_for_user,
    get_upcoming_episodes,
    get_watched_episodes_count_for_user,
    mark_all_episodes_as_watched,
    mark_episode_as_ignored,
    mark_episode_as_unignored,
    mark_episode_as_unwatched,
    mark_episode_as_watched,
)
from tvtracker.services.shows import (
    add_show,
    archive_show_on_user,
    get_archived_shows_by_user_id,
    get_archived_shows_count_for_user,
    get_show_by_id,
    get_shows_by_user_id,
    get_shows_tracked_by_user,
    remove_show_from_user,
    search_shows,
    unarchive_show_on_user,
)
from tvtracker.templating import templates
from tvtracker.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

# intent -> (service call, error code)
EPISODE_INTENTS = {
    "MARK_WATCHED": (mark_episode_as_watched, "MARKING_EPISODE_FAILED"),
    "MARK_UNWATCHED": (mark_episode_as_unwatched, "MARKING_EPISODE_UNWATCHED_FAILED"),
    "MARK_IGNORED": (mark_episode_as_ignored, "MARKING_EPISODE_IGNORED_FAILED"),
    "MARK_UNIGNORED": (mark_episode_as_unignored, "MARKING_EPISODE_UNIGNORED_FAILED"),
}

SHOW_INTENTS = {
    "DELETE_SHOW": (remove_show_from_user, "REMOVE_SHOW_FAILED", None),
    "ARCHIVE": (archive_show_on_user, "ARCHIVE_SHOW_FAILED", "archive"),
    "UNARCHIVE": (unarchive_show_on_user, "UNARCHIVE_SHOW_FAILED", "archive"),
}


@router.get("", response_class=HTMLResponse)
async def overview(
    request: Request,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    """Tracked shows, the ones with unwatched episodes first."""
    shows = await get_shows_by_user_id(session, user_id)
    logger.debug(f"Overview returned {len(shows)} shows")

    return templates.TemplateResponse(
        request,
        "tv/index.html",
        {
            "shows": shows,
            "unwatched_episodes": sum(s.unwatched_episodes_count for s in shows),
        }
    )


@router.get("/archive", response_class=HTMLResponse)
async def archive(
    request: Request,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    shows = await get_archived_shows_by_user_id(session, user_id)
    return templates.TemplateResponse(
        request,
        "tv/archive.html",
        {"shows": shows, "features": {"archive": is_enabled("archive")}}
    )


@router.get("/search", response_class=HTMLResponse)
async def search(
    request: Request,
    query: Optional[str] = None,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session),
    client: TVMazeClient = Depends(get_catalog_client)
):
    """Search the catalog for shows the user does not track yet."""
    features = {"search": is_enabled("search"), "add_show": is_enabled("add_show")}
    shows = []
    error = None

    if features["search"] and query:
        try:
            shows = await search_shows(session, client, query, user_id)
        except CatalogError as e:
            logger.error(f"Search for {query!r} failed: {e.message}")
            error = "SEARCH_FAILED"

    return templates.TemplateResponse(
        request,
        "tv/search.html",
        {"shows": shows, "query": query or "", "features": features, "error": error},
        status_code=500 if error else 200
    )


@router.post("/search", dependencies=[Depends(require_flag("add_show"))])
async def add_show_action(
    request: Request,
    show_id: str = Form(...),
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session),
    client: TVMazeClient = Depends(get_catalog_client)
):
    """Start tracking a catalog show."""
    try:
        await add_show(session, client, user_id, show_id)
    except Exception:
        logger.exception(f"Adding show {show_id} failed")
        await session.rollback()
        return templates.TemplateResponse(
            request,
            "tv/search.html",
            {
                "shows": [],
                "query": "",
                "features": {"search": is_enabled("search"), "add_show": True},
                "error": "ADDING_SHOW_FAILED",
            },
            status_code=500
        )

    return RedirectResponse(url="/tv", status_code=303)


@router.get("/upcoming", response_class=HTMLResponse, dependencies=[Depends(require_flag("upcoming_route"))])
async def upcoming(
    request: Request,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    episodes = await get_upcoming_episodes(session, user_id)
    return templates.TemplateResponse(request, "tv/upcoming.html", {"episodes": episodes})


@router.get("/recent", response_class=HTMLResponse, dependencies=[Depends(require_flag("recently_watched_route"))])
async def recent(
    request: Request,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    records = await get_recently_watched_episodes(session, user_id)
    return templates.TemplateResponse(request, "tv/recent.html", {"records": records})


@router.get("/stats", response_class=HTMLResponse, dependencies=[Depends(require_flag("stats_route"))])
async def stats(
    request: Request,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    """Watch statistics. Failures render zeros and an error banner."""
    context = {
        "total_watch_time": 0,
        "watched_episodes_count": 0,
        "unwatched_episodes_count": 0,
        "shows_tracked": 0,
        "archived_shows_count": 0,
        "last_12_months_stats": [],
        "error": False,
    }

    try:
        context.update({
            "total_watch_time": await get_total_watch_time_for_user(session, user_id),
            "watched_episodes_count": await get_watched_episodes_count_for_user(session, user_id),
            "unwatched_episodes_count": await get_unwatched_episodes_count_for_user(session, user_id),
            "shows_tracked": await get_shows_tracked_by_user(session, user_id),
            "archived_shows_count": await get_archived_shows_count_for_user(session, user_id),
            "last_12_months_stats": await get_last_12_months_stats(session, user_id, utcnow()),
        })
    except Exception:
        logger.exception("Failed to load statistics data")
        context["error"] = True

    tracked = context["shows_tracked"]
    context["archived_percentage"] = (
        round(context["archived_shows_count"] / tracked * 100) if tracked else 0
    )

    return templates.TemplateResponse(request, "tv/stats.html", context)


async def _render_show(
    request: Request,
    session: AsyncSession,
    show_id: str,
    user_id: str,
    error: Optional[str] = None,
    status_code: int = 200
):
    detail = await get_show_by_id(session, show_id, user_id)
    if not detail:
        raise HTTPException(status_code=404, detail="Show not found")

    seasons: dict[int, list] = {}
    for episode in detail.show.episodes:
        seasons.setdefault(episode.season, []).append(episode)

    return templates.TemplateResponse(
        request,
        "tv/show.html",
        {
            "detail": detail,
            "show": detail.show,
            "seasons": seasons,
            "now": utcnow(),
            "error": error,
            "features": {
                "mark_all_as_watched": is_enabled("mark_all_as_watched"),
                "archive": is_enabled("archive"),
            },
        },
        status_code=status_code
    )


@router.get("/{show_id}", response_class=HTMLResponse)
async def show_detail(
    request: Request,
    show_id: str,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    return await _render_show(request, session, show_id, user_id)


@router.post("/{show_id}")
async def show_action(
    request: Request,
    show_id: str,
    intent: str = Form(""),
    episode_id: str = Form(""),
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session)
):
    """Apply a form intent to the show or one of its episodes."""
    error = None

    if intent in EPISODE_INTENTS:
        action, error_code = EPISODE_INTENTS[intent]
        try:
            await action(session, user_id, show_id, episode_id)
        except Exception:
            logger.exception(f"{intent} failed for episode {episode_id} of show {show_id}")
            error = error_code

    elif intent == "MARK_ALL_WATCHED":
        if not is_enabled("mark_all_as_watched"):
            raise HTTPException(status_code=404, detail="Not Found")
        try:
            count = await mark_all_episodes_as_watched(session, user_id, show_id)
            logger.info(f"Marked {count} episodes of show {show_id} as watched")
        except Exception:
            logger.exception(f"Marking all episodes of show {show_id} failed")
            error = "MARKING_ALL_EPISODES_FAILED"

    elif intent in SHOW_INTENTS:
        action, error_code, flag = SHOW_INTENTS[intent]
        if flag and not is_enabled(flag):
            raise HTTPException(status_code=404, detail="Not Found")
        try:
            await action(session, user_id, show_id)
            return RedirectResponse(url="/tv", status_code=303)
        except Exception:
            logger.exception(f"{intent} failed for show {show_id}")
            error = error_code

    elif intent:
        logger.warning(f"Unknown intent {intent!r} for show {show_id}")

    if error:
        await session.rollback()
        return await _render_show(request, session, show_id, user_id, error=error, status_code=500)

    return RedirectResponse(url=f"/tv/{show_id}", status_code=303)
