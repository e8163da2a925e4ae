from datetime import datetime

import pytest
from sqlalchemy import select

from tvtracker.exceptions import EpisodeNotFoundError, ShowNotTrackedError
from tvtracker.models import EpisodeOnUser
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
from tvtracker.services.shows import get_shows_by_user_id
from tvtracker.services.users import create_user


async def records(session, user_id):
    result = await session.execute(
        select(EpisodeOnUser)
        .where(EpisodeOnUser.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def test_marking_untracked_show_fails(session, user, make_show, episodes_of):
    show = await make_show()
    episode = (await episodes_of(show))[0]

    with pytest.raises(ShowNotTrackedError):
        await mark_episode_as_watched(session, user.id, show.id, episode.id)

    assert await records(session, user.id) == []


async def test_watch_ignore_and_reset(session, user, make_show, episodes_of):
    show = await make_show(user_id=user.id)
    first, second, _ = await episodes_of(show)

    await mark_episode_as_watched(session, user.id, show.id, first.id)
    await mark_episode_as_watched(session, user.id, show.id, first.id)
    await mark_episode_as_ignored(session, user.id, show.id, second.id)

    saved = {r.episode_id: r.ignored for r in await records(session, user.id)}
    assert saved == {first.id: False, second.id: True}

    # unignore only touches ignored records
    await mark_episode_as_unignored(session, user.id, show.id, first.id)
    await mark_episode_as_unignored(session, user.id, show.id, second.id)
    assert [r.episode_id for r in await records(session, user.id)] == [first.id]

    await mark_episode_as_unwatched(session, user.id, show.id, first.id)
    assert await records(session, user.id) == []


async def test_watching_an_ignored_episode_clears_the_flag(session, user, make_show, episodes_of):
    show = await make_show(user_id=user.id)
    episode = (await episodes_of(show))[0]

    await mark_episode_as_ignored(session, user.id, show.id, episode.id)
    await mark_episode_as_watched(session, user.id, show.id, episode.id)

    [record] = await records(session, user.id)
    assert record.ignored is False


async def test_mark_all_only_adds_aired_unconnected_episodes(session, user, make_show, episodes_of):
    show = await make_show(user_id=user.id)
    first, second, upcoming = await episodes_of(show)
    await mark_episode_as_ignored(session, user.id, show.id, first.id)

    count = await mark_all_episodes_as_watched(session, user.id, show.id)

    assert count == 1
    saved = {r.episode_id: r.ignored for r in await records(session, user.id)}
    assert saved == {first.id: True, second.id: False}
    assert upcoming.id not in saved

    assert await mark_all_episodes_as_watched(session, user.id, show.id) == 0


async def test_mark_all_requires_tracked_show(session, user, make_show):
    show = await make_show()

    with pytest.raises(ShowNotTrackedError):
        await mark_all_episodes_as_watched(session, user.id, show.id)


async def test_unwatched_count_is_aired_minus_watched_minus_ignored(session, user, make_show, episodes_of):
    show = await make_show(user_id=user.id, episodes=((1, 1, 10, 30), (1, 2, 9, 30), (1, 3, 8, 30), (1, 4, -1, 30)))
    archived = await make_show(name="Andor", user_id=user.id, archived=True, episodes=((1, 1, 3, 40),))
    first, second, _, _ = await episodes_of(show)

    await mark_episode_as_watched(session, user.id, show.id, first.id)
    await mark_episode_as_ignored(session, user.id, show.id, second.id)

    assert await get_unwatched_episodes_count_for_user(session, user.id) == 2

    [summary] = await get_shows_by_user_id(session, user.id)
    assert summary.unwatched_episodes_count == 1

    [archived_summary] = await get_shows_by_user_id(session, user.id, archived=True)
    assert archived_summary.show.id == archived.id
    assert archived_summary.unwatched_episodes_count == 1


async def test_watch_time_and_count_skip_ignored(session, user, make_show, episodes_of):
    show = await make_show(user_id=user.id)
    first, second, _ = await episodes_of(show)

    await mark_episode_as_watched(session, user.id, show.id, first.id)
    await mark_episode_as_ignored(session, user.id, show.id, second.id)

    assert await get_total_watch_time_for_user(session, user.id) == 55
    assert await get_watched_episodes_count_for_user(session, user.id) == 1


async def test_upcoming_and_recent_are_scoped_to_user(session, session_factory, user, make_show, episodes_of):
    other = await create_user(session, "other@example.com", "another password")
    show = await make_show(user_id=user.id)
    first, _, upcoming = await episodes_of(show)
    session.add(EpisodeOnUser(episode_id=first.id, show_id=show.id, user_id=other.id))
    await session.commit()

    assert [e.id for e in await get_upcoming_episodes(session, user.id)] == [upcoming.id]
    assert await get_upcoming_episodes(session, other.id) == []

    assert await get_recently_watched_episodes(session, user.id) == []
    await mark_episode_as_watched(session, user.id, show.id, first.id)
    async with session_factory() as fresh:
        [record] = await get_recently_watched_episodes(fresh, user.id)
    assert record.episode.id == first.id
    assert record.show.name == "Severance"


async def test_monthly_stats(session, session_factory, user, make_show, episodes_of):
    show = await make_show(user_id=user.id, episodes=((1, 1, 400, 30), (1, 2, 300, 40), (1, 3, 200, 50)))
    other = await make_show(name="Andor", user_id=user.id, episodes=((1, 1, 100, 20),))
    first, second, third = await episodes_of(show)
    [andor] = await episodes_of(other)

    watched = [
        (first, show, datetime(2026, 3, 5, 20, 0), False),
        (second, show, datetime(2026, 3, 20, 21, 0), False),
        (andor, other, datetime(2026, 3, 21, 22, 0), False),
        (third, show, datetime(2026, 5, 2, 19, 0), False),
    ]
    for episode, owner, created_at, ignored in watched:
        session.add(EpisodeOnUser(
            episode_id=episode.id,
            show_id=owner.id,
            user_id=user.id,
            ignored=ignored,
            created_at=created_at
        ))
    await session.commit()

    async with session_factory() as fresh:
        stats = await get_last_12_months_stats(fresh, user.id, now=datetime(2026, 6, 15))

    assert [s.month for s in stats] == ["March 2026", "May 2026"]
    march, may = stats
    assert (march.episodes, march.runtime, march.show_count) == (3, 90, 2)
    assert (may.episodes, may.runtime, may.show_count) == (1, 50, 1)


async def test_monthly_stats_window(session, session_factory, user, make_show, episodes_of):
    show = await make_show(user_id=user.id, episodes=((1, 1, 400, 30), (1, 2, 300, 40)))
    old, recent = await episodes_of(show)

    session.add(EpisodeOnUser(episode_id=old.id, show_id=show.id, user_id=user.id,
                              created_at=datetime(2025, 6, 30, 23, 0)))
    session.add(EpisodeOnUser(episode_id=recent.id, show_id=show.id, user_id=user.id,
                              created_at=datetime(2025, 7, 1, 0, 30)))
    await session.commit()

    async with session_factory() as fresh:
        stats = await get_last_12_months_stats(fresh, user.id, now=datetime(2026, 6, 15))

    assert [s.month for s in stats] == ["July 2025"]


async def test_marking_unknown_or_foreign_episode_fails(session, user, make_show, episodes_of):
    show = await make_show(user_id=user.id)
    other = await make_show(name="Andor", user_id=user.id)
    foreign = (await episodes_of(other))[0]

    with pytest.raises(EpisodeNotFoundError):
        await mark_episode_as_watched(session, user.id, show.id, "does-not-exist")
    with pytest.raises(EpisodeNotFoundError):
        await mark_episode_as_ignored(session, user.id, show.id, foreign.id)

    assert await records(session, user.id) == []
    assert await get_watched_episodes_count_for_user(session, user.id) == 0


async def test_stats_and_recent_skip_records_of_deleted_episodes(
    session, session_factory, user, make_show, episodes_of
):
    show = await make_show(user_id=user.id)
    first = (await episodes_of(show))[0]
    session.add_all([
        EpisodeOnUser(episode_id=first.id, show_id=show.id, user_id=user.id,
                      created_at=datetime(2026, 6, 1, 20, 0)),
        EpisodeOnUser(episode_id="deleted", show_id=show.id, user_id=user.id,
                      created_at=datetime(2026, 6, 2, 20, 0)),
    ])
    await session.commit()

    async with session_factory() as fresh:
        stats = await get_last_12_months_stats(fresh, user.id, now=datetime(2026, 6, 15))
        recent = await get_recently_watched_episodes(fresh, user.id)
        watched = await get_watched_episodes_count_for_user(fresh, user.id)

    [june] = stats
    assert (june.month, june.episodes, june.runtime) == ("June 2026", 1, 55)
    assert [record.episode_id for record in recent] == [first.id]
    assert watched == 1


async def test_monthly_stats_leave_out_ignored_records(session, session_factory, user, make_show, episodes_of):
    show = await make_show(user_id=user.id, episodes=((1, 1, 400, 30),))
    other = await make_show(name="Andor", user_id=user.id, episodes=((1, 1, 100, 20),))
    [episode] = await episodes_of(show)
    [andor] = await episodes_of(other)

    session.add_all([
        EpisodeOnUser(episode_id=episode.id, show_id=show.id, user_id=user.id,
                      created_at=datetime(2026, 4, 3, 20, 0)),
        EpisodeOnUser(episode_id=andor.id, show_id=other.id, user_id=user.id, ignored=True,
                      created_at=datetime(2026, 4, 4, 20, 0)),
    ])
    await session.commit()

    async with session_factory() as fresh:
        stats = await get_last_12_months_stats(fresh, user.id, now=datetime(2026, 6, 15))

    [april] = stats
    assert (april.month, april.episodes, april.runtime, april.show_count) == ("April 2026", 1, 30, 1)


async def test_monthly_stats_read_at_most_1000_latest_records(
    session, session_factory, user, make_show, episodes_of
):
    show = await make_show(
        user_id=user.id,
        episodes=tuple((1, number, 400, 10) for number in range(1, 1003))
    )
    episodes = await episodes_of(show)

    # two oldest records fall in May, the newest 1000 in June
    for index, episode in enumerate(episodes):
        created_at = datetime(2026, 5, 20) if index < 2 else datetime(2026, 6, 1, 0, index % 60, index % 60)
        session.add(EpisodeOnUser(episode_id=episode.id, show_id=show.id, user_id=user.id, created_at=created_at))
    await session.commit()

    async with session_factory() as fresh:
        stats = await get_last_12_months_stats(fresh, user.id, now=datetime(2026, 6, 15))

    assert [(s.month, s.episodes) for s in stats] == [("June 2026", 1000)]
