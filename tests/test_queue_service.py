import asyncio
import random
from datetime import UTC, datetime, timedelta

import pytest

from obs_queue.core.errors import NotFoundError
from obs_queue.services.queue_service import compute_insert_position
from obs_queue.shared.models.queue import Added, AlreadyQueued, DeleteMode, NewQueueUser


def user(login: str) -> NewQueueUser:
    return NewQueueUser(
        user_id=f"id-{login}",
        user_login=login,
        display_name=login.upper(),
        profile_image_url=f"https://img/{login}.png",
    )


def assert_dense(repo) -> None:
    positions = sorted(e.position for e in repo.entries.values())
    assert positions == list(range(len(repo.entries)))


# ── compute_insert_position ──


@pytest.mark.parametrize(
    ("counts", "mine", "expected"),
    [
        ([], 0, 0),
        ([0, 0, 0], 0, 3),
        ([0, 2, 1], 0, 1),
        ([0, 1, 2], 1, 2),
        ([3, 0], 1, 0),
        ([1, 1, 1], 5, 3),
    ],
)
def test_compute_insert_position(counts, mine, expected):
    assert compute_insert_position(counts, mine) == expected


# ── enqueue ──


async def test_enqueue_appends_in_arrival_order(queue_service, queue_repo):
    for login in ("a", "b", "c"):
        await queue_service.enqueue(user(login))

    assert queue_repo.logins() == ["a", "b", "c"]
    assert_dense(queue_repo)


async def test_enqueue_returns_added_with_position(queue_service):
    first = await queue_service.enqueue(user("a"))
    second = await queue_service.enqueue(user("b"))

    assert isinstance(first, Added) and first.position == 0
    assert isinstance(second, Added) and second.position == 1
    assert first.id != second.id


async def test_enqueue_already_queued_is_idempotent(queue_service, queue_repo):
    await queue_service.enqueue(user("a"))
    await queue_service.enqueue(user("b"))
    before = queue_repo.ordered()

    outcome = await queue_service.enqueue(user("a"))

    assert outcome == AlreadyQueued()
    assert queue_repo.ordered() == before


async def test_fresh_player_goes_before_first_strictly_greater(queue_service, queue_repo):
    # A(0), C(1), B(2)
    queue_repo.add_history("id-c", 1)
    queue_repo.add_history("id-b", 2)
    for login in ("a", "c", "b"):
        await queue_service.enqueue(user(login))
    queue_repo.add_history("id-new", 0)

    outcome = await queue_service.enqueue(user("new"))

    assert queue_repo.logins() == ["a", "new", "c", "b"]
    assert outcome.position == 1


async def test_insert_keeps_later_entries_relative_order(queue_service, queue_repo):
    for login in ("a", "b", "c"):
        await queue_service.enqueue(user(login))
    # A(0), B(2), C(1): history recorded after they queued
    queue_repo.add_history("id-b", 2)
    queue_repo.add_history("id-c", 1)

    await queue_service.enqueue(user("new"))

    assert queue_repo.logins() == ["a", "new", "b", "c"]
    assert_dense(queue_repo)


async def test_ties_queue_behind_earlier_arrivals(queue_service, queue_repo):
    queue_repo.add_history("id-a", 1)
    queue_repo.add_history("id-b", 1)
    queue_repo.add_history("id-new", 1)
    await queue_service.enqueue(user("a"))
    await queue_service.enqueue(user("b"))

    await queue_service.enqueue(user("new"))

    assert queue_repo.logins() == ["a", "b", "new"]


async def test_history_outside_window_is_ignored(queue_service, queue_repo):
    long_ago = datetime.now(UTC) - timedelta(days=3)
    queue_repo.add_history("id-a", 5, at=long_ago)
    queue_repo.add_history("id-b", 1)
    await queue_service.enqueue(user("a"))
    await queue_service.enqueue(user("b"))

    await queue_service.enqueue(user("new"))

    # a's old plays no longer count, so only b is ahead of "new" in fairness
    assert queue_repo.logins() == ["a", "new", "b"]


async def test_failed_enqueue_rolls_back_shift(queue_service, queue_repo):
    queue_repo.add_history("id-b", 1)
    await queue_service.enqueue(user("a"))
    await queue_service.enqueue(user("b"))
    before = queue_repo.ordered()
    queue_repo.fail_on_insert = True

    with pytest.raises(RuntimeError):
        await queue_service.enqueue(user("new"))

    assert queue_repo.ordered() == before


async def test_concurrent_enqueues_keep_positions_dense(queue_service, queue_repo):
    logins = [f"u{i}" for i in range(20)]
    for i, login in enumerate(logins):
        queue_repo.add_history(f"id-{login}", i % 3)

    results = await asyncio.gather(*(queue_service.enqueue(user(login)) for login in logins))

    assert all(isinstance(r, Added) for r in results)
    assert_dense(queue_repo)
    counts = [i % 3 for i in range(20)]
    ordered_counts = [counts[logins.index(login)] for login in queue_repo.logins()]
    assert ordered_counts == sorted(ordered_counts)


# ── list / is_queued ──


async def test_list_queue_reports_recent_counts(queue_service, queue_repo):
    queue_repo.add_history("id-b", 2)
    await queue_service.enqueue(user("a"))
    await queue_service.enqueue(user("b"))

    items = await queue_service.list_queue()

    assert [(i.user_login, i.position, i.recent_participation_count) for i in items] == [
        ("a", 0, 0),
        ("b", 1, 2),
    ]


async def test_list_queue_empty(queue_service):
    assert await queue_service.list_queue() == []


async def test_is_queued(queue_service):
    await queue_service.enqueue(user("a"))

    assert await queue_service.is_queued("id-a")
    assert not await queue_service.is_queued("id-b")


# ── delete ──


async def test_delete_completed_records_participation(queue_service, queue_repo):
    added = [await queue_service.enqueue(user(login)) for login in ("a", "b", "c")]

    await queue_service.delete(added[0].id, DeleteMode.COMPLETED)

    assert queue_repo.logins() == ["b", "c"]
    assert [u for u, _ in queue_repo.participations] == ["id-a"]
    assert_dense(queue_repo)


async def test_delete_canceled_records_nothing(queue_service, queue_repo):
    added = [await queue_service.enqueue(user(login)) for login in ("a", "b", "c")]

    await queue_service.delete(added[1].id, DeleteMode.CANCELED)

    assert queue_repo.logins() == ["a", "c"]
    assert queue_repo.participations == []
    assert_dense(queue_repo)


async def test_delete_unknown_id(queue_service):
    with pytest.raises(NotFoundError):
        await queue_service.delete("missing", DeleteMode.COMPLETED)


async def test_completed_player_requeues_behind_fresh_players(queue_service, queue_repo):
    a = await queue_service.enqueue(user("a"))
    await queue_service.enqueue(user("b"))
    await queue_service.delete(a.id, DeleteMode.COMPLETED)
    await queue_service.enqueue(user("a"))

    await queue_service.enqueue(user("c"))

    assert queue_repo.logins() == ["b", "c", "a"]


async def test_cancel_by_user(queue_service, queue_repo):
    await queue_service.enqueue(user("a"))
    await queue_service.enqueue(user("b"))

    assert await queue_service.cancel_by_user("id-a") is True
    assert await queue_service.cancel_by_user("id-a") is False
    assert queue_repo.logins() == ["b"]
    assert queue_repo.participations == []
    assert_dense(queue_repo)


# ── move ──


async def test_move_up_and_down_swap_neighbours(queue_service, queue_repo):
    added = [await queue_service.enqueue(user(login)) for login in ("a", "b", "c")]

    await queue_service.move_up(added[2].id)
    assert queue_repo.logins() == ["a", "c", "b"]

    await queue_service.move_down(added[0].id)
    assert queue_repo.logins() == ["c", "a", "b"]
    assert_dense(queue_repo)


async def test_move_at_edges_is_noop(queue_service, queue_repo):
    added = [await queue_service.enqueue(user(login)) for login in ("a", "b")]

    await queue_service.move_up(added[0].id)
    await queue_service.move_down(added[1].id)

    assert queue_repo.logins() == ["a", "b"]


async def test_move_unknown_id(queue_service):
    with pytest.raises(NotFoundError):
        await queue_service.move_up("missing")
    with pytest.raises(NotFoundError):
        await queue_service.move_down("missing")


async def test_random_operations_keep_positions_dense(queue_service, queue_repo):
    rng = random.Random(7)
    ids: list[str] = []

    for _ in range(200):
        op = rng.choice(["enqueue", "enqueue", "complete", "cancel", "up", "down"])
        if op == "enqueue":
            outcome = await queue_service.enqueue(user(f"p{rng.randrange(30)}"))
            if isinstance(outcome, Added):
                ids.append(outcome.id)
        elif ids:
            target = rng.choice(ids)
            if op in ("complete", "cancel"):
                mode = DeleteMode.COMPLETED if op == "complete" else DeleteMode.CANCELED
                await queue_service.delete(target, mode)
                ids.remove(target)
            elif op == "up":
                await queue_service.move_up(target)
            else:
                await queue_service.move_down(target)
        assert_dense(queue_repo)
