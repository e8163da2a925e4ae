from datetime import date

from sqlalchemy import select

from tvtracker import maintenance
from tvtracker.config import flags
from tvtracker.models import Episode, EpisodeOnUser


async def test_fetch_new_episodes_adds_only_unknown(session, catalog, make_show):
    show = await make_show()
    catalog.responses[f"/shows/{show.maze_id}"] = (200, {
        "id": int(show.maze_id),
        "name": show.name,
        "_embedded": {"episodes": [
            {"id": f"{show.maze_id}-0", "name": "Episode 1", "season": 1, "number": 1},
            {"id": 555, "name": "Cold Harbor", "season": 1, "number": 9, "airstamp": "2026-03-20T01:00:00+00:00"},
        ]},
    })

    failures = await maintenance.fetch_new_episodes(session, catalog.client())

    assert failures == 0
    result = await session.execute(select(Episode).where(Episode.maze_id == "555"))
    added = result.scalar_one()
    assert added.show_id == show.id
    assert added.name == "Cold Harbor"
    count = await session.execute(select(Episode).where(Episode.show_id == show.id))
    assert len(count.scalars().all()) == 4


async def test_fetch_new_episodes_counts_failures(session, catalog, make_show):
    await make_show()

    assert await maintenance.fetch_new_episodes(session, catalog.client()) == 1


async def test_refresh_episodes_fills_missing_info(session, catalog, make_show, episodes_of):
    show = await make_show(episodes=((1, 1, 10, 50),))
    [episode] = await episodes_of(show)
    catalog.responses[f"/episodes/{episode.maze_id}"] = (200, {
        "id": episode.maze_id,
        "name": "Good News About Hell",
        "season": 1,
        "number": 1,
        "airstamp": "2022-02-18T08:00:00+00:00",
        "summary": "<p>Mark is promoted.</p>",
        "image": {"medium": "https://img.test/m.jpg", "original": "https://img.test/o.jpg"},
    })

    failures = await maintenance.refresh_episodes(session, catalog.client())

    assert failures == 0
    assert episode.name == "Good News About Hell"
    assert episode.summary == "Mark is promoted."
    assert episode.image_url
    assert episode.air_date.year == 2022


async def test_update_show_status(session, catalog, make_show):
    ended = await make_show(name="Dark")
    gone = await make_show(name="Removed")
    running = await make_show(name="Andor")
    catalog.responses[f"/shows/{ended.maze_id}"] = (200, {"id": 1, "name": "Dark", "ended": "2020-06-27"})
    catalog.responses[f"/shows/{running.maze_id}"] = (200, {"id": 3, "name": "Andor", "ended": None})

    failures = await maintenance.update_show_status(session, catalog.client())

    # a show missing from the catalog is skipped, not counted
    assert failures == 0
    assert ended.ended == date(2020, 6, 27)
    assert gone.ended is None
    assert running.ended is None


async def test_delete_episode_removes_watch_records(session, user, make_show, episodes_of):
    show = await make_show(user_id=user.id)
    first = (await episodes_of(show))[0]
    session.add(EpisodeOnUser(episode_id=first.id, show_id=show.id, user_id=user.id))
    await session.commit()

    assert await maintenance.delete_episode(session, "Severance", 1, 1) == 0

    assert len(await episodes_of(show)) == 2
    records = await session.execute(select(EpisodeOnUser))
    assert records.scalars().all() == []


async def test_delete_episode_unknown(session, make_show):
    await make_show()

    assert await maintenance.delete_episode(session, "Unknown", 1, 1) == 1
    assert await maintenance.delete_episode(session, "Severance", 9, 9) == 1


async def test_remove_orphaned_records(session, user, make_show, episodes_of):
    show = await make_show(user_id=user.id)
    first = (await episodes_of(show))[0]
    session.add_all([
        EpisodeOnUser(episode_id=first.id, show_id=show.id, user_id=user.id),
        EpisodeOnUser(episode_id="missing", show_id=show.id, user_id=user.id),
    ])
    await session.commit()

    assert await maintenance.remove_orphaned_records(session) == 0

    records = await session.execute(select(EpisodeOnUser.episode_id))
    assert records.scalars().all() == [first.id]


def test_parser():
    args = maintenance.build_parser().parse_args(["delete-episode", "Severance", "1", "3"])

    assert args.command == "delete-episode"
    assert (args.show_name, args.season, args.number) == ("Severance", 1, 3)


async def test_catalog_jobs_honor_flag(monkeypatch):
    monkeypatch.setattr(flags, "fetch_from_source", False)

    async def no_init():
        pass

    monkeypatch.setattr(maintenance, "init_db", no_init)
    args = maintenance.build_parser().parse_args(["new-episodes"])

    assert await maintenance.run(args) == 1

