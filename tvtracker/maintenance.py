"""
Maintenance jobs for the catalog data, run from the command line:

    python -m tvtracker.maintenance new-episodes
    python -m tvtracker.maintenance refresh-episodes
    python -m tvtracker.maintenance show-status
    python -m tvtracker.maintenance delete-episode "Show name" 1 3
    python -m tvtracker.maintenance remove-orphans

Catalog calls retry on rate limiting. Every job exits with status 1 when
one of its items failed.
"""
import argparse
import asyncio
import logging
import sys

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.config import is_enabled
from tvtracker.database import async_session, init_db
from tvtracker.exceptions import CatalogError
from tvtracker.logging_config import configure_logging
from tvtracker.models import Episode, EpisodeOnUser, Show
from tvtracker.services.catalog import TVMazeClient, with_rate_limit_retry
from tvtracker.services.episodes import get_episodes_with_missing_info
from tvtracker.services.shows import (
    get_all_running_show_ids,
    parse_date,
    prepare_episode,
    prepare_show,
)

logger = logging.getLogger("tvtracker.maintenance")


async def fetch_new_episodes(session: AsyncSession, client: TVMazeClient) -> int:
    """Add episodes the catalog knows but the database does not, for all running shows."""
    show_ids = await get_all_running_show_ids(session)
    logger.info(f"Found {len(show_ids)} running shows to update")

    failures = 0
    for maze_id in show_ids:
        try:
            show_result = await with_rate_limit_retry(client.fetch_show_with_embedded_episodes, maze_id)
        except CatalogError as e:
            logger.error(f"Fetching show {maze_id} failed: {e.message}")
            failures += 1
            continue

        _, episodes = prepare_show(show_result)

        result = await session.execute(select(Show).where(Show.maze_id == maze_id))
        show = result.scalar_one_or_none()
        if not show:
            logger.error(f"Show {maze_id} not found in database")
            failures += 1
            continue

        existing_result = await session.execute(
            select(Episode.maze_id).where(Episode.show_id == show.id)
        )
        existing = set(existing_result.scalars().all())

        new_episodes = [episode for episode in episodes if episode["maze_id"] not in existing]
        session.add_all([Episode(show_id=show.id, **episode) for episode in new_episodes])
        await session.commit()
        logger.info(f"{show.name}: {len(existing)} episodes known, added {len(new_episodes)}")

    return failures


async def refresh_episodes(session: AsyncSession, client: TVMazeClient) -> int:
    """Refetch episodes whose name, image, summary or air date is missing."""
    episodes = await get_episodes_with_missing_info(session)
    logger.info(f"Found {len(episodes)} episodes to potentially update")

    failures = 0
    for episode in episodes:
        logger.info(
            f"Updating {episode.show.name} S{episode.season}E{episode.number} (mazeId {episode.maze_id})"
        )
        try:
            episode_result = await with_rate_limit_retry(client.fetch_episode, episode.maze_id)
        except CatalogError as e:
            logger.error(f"Fetching episode {episode.maze_id} failed: {e.message}")
            failures += 1
            continue

        fresh = prepare_episode(episode_result)
        for column in ("name", "air_date", "image_url", "summary"):
            setattr(episode, column, fresh[column])
        await session.commit()

    return failures


async def update_show_status(session: AsyncSession, client: TVMazeClient) -> int:
    """Store end dates of shows that ended since they were added."""
    result = await session.execute(select(Show).where(Show.ended.is_(None)))
    shows = list(result.scalars().all())
    logger.info(f"Processing {len(shows)} shows with unknown end status")

    updated = 0
    failed = []
    for show in shows:
        try:
            show_result = await with_rate_limit_retry(client.fetch_show, show.maze_id)
        except CatalogError as e:
            if e.status_code == 404:
                logger.info(f"Show {show.name} ({show.maze_id}) not found in catalog")
                continue
            logger.error(f"Checking show {show.name} failed: {e.message}")
            failed.append(show)
            continue

        ended = parse_date(show_result.get("ended"))
        if ended:
            show.ended = ended
            await session.commit()
            updated += 1
            logger.info(f"Updated show {show.name}, ended on {ended.isoformat()}")

    logger.info(f"Processed {len(shows)} shows, updated {updated}")
    for show in failed:
        logger.error(f"Failed: {show.name} (mazeId {show.maze_id})")
    return len(failed)


async def delete_episode(session: AsyncSession, show_name: str, season: int, number: int) -> int:
    """Delete one episode of a show and every watch record of it."""
    result = await session.execute(select(Show).where(Show.name == show_name).limit(1))
    show = result.scalar_one_or_none()
    if not show:
        logger.error(f"Show {show_name} not found")
        return 1

    result = await session.execute(
        select(Episode).where(
            Episode.show_id == show.id,
            Episode.season == season,
            Episode.number == number
        ).limit(1)
    )
    episode = result.scalar_one_or_none()
    if not episode:
        logger.error(f"Episode S{season}E{number} of {show_name} not found")
        return 1

    await session.execute(delete(EpisodeOnUser).where(EpisodeOnUser.episode_id == episode.id))
    await session.delete(episode)
    await session.commit()
    logger.info(f"Deleted {show_name} S{season}E{number} ({episode.id})")
    return 0


async def remove_orphaned_records(session: AsyncSession) -> int:
    """Delete watch records that point to episodes which no longer exist."""
    existing = select(Episode.id)
    result = await session.execute(
        delete(EpisodeOnUser).where(EpisodeOnUser.episode_id.not_in(existing))
    )
    await session.commit()
    logger.info(f"Deleted {result.rowcount} watch records of missing episodes")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tvtracker.maintenance", description="TV Tracker maintenance jobs")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("new-episodes", help="fetch new episodes of running shows")
    commands.add_parser("refresh-episodes", help="refetch episodes with missing information")
    commands.add_parser("show-status", help="update end dates of running shows")

    delete_parser = commands.add_parser("delete-episode", help="delete one episode of a show")
    delete_parser.add_argument("show_name")
    delete_parser.add_argument("season", type=int)
    delete_parser.add_argument("number", type=int)

    commands.add_parser("remove-orphans", help="delete watch records of missing episodes")
    return parser


# these talk to the catalog and honor the fetch_from_source flag
CATALOG_COMMANDS = {
    "new-episodes": fetch_new_episodes,
    "refresh-episodes": refresh_episodes,
    "show-status": update_show_status,
}


async def run(args: argparse.Namespace) -> int:
    await init_db()

    async with async_session() as session:
        if args.command in CATALOG_COMMANDS:
            if not is_enabled("fetch_from_source"):
                logger.warning("Feature flag for fetching from source is disabled, skipping")
                return 1
            failures = await CATALOG_COMMANDS[args.command](session, TVMazeClient())
        elif args.command == "delete-episode":
            failures = await delete_episode(session, args.show_name, args.season, args.number)
        else:
            failures = await remove_orphaned_records(session)

    if failures:
        logger.error(f"{args.command} finished with {failures} failure(s)")
        return 1
    logger.info(f"{args.command} finished")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
