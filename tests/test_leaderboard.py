"""Tests for focusboard/leaderboard.py — sharded counters, ordering, expiry."""

import random
import threading
from datetime import timedelta

import pytest

from focusboard.leaderboard import LeaderboardStore
from focusboard.models import LeaderboardEntry


DAY = "2026-02-11"


def test_increment_accumulates(leaderboard):
    assert leaderboard.increment("global", DAY, "alice", 30) == 30
    assert leaderboard.increment("global", DAY, "alice", 15) == 45
    assert leaderboard.get_user("global", DAY, "alice") == 45


def test_get_user_absent(leaderboard):
    assert leaderboard.get_user("global", DAY, "nobody") == 0
    leaderboard.increment("global", DAY, "alice", 5)
    assert leaderboard.get_user("global", DAY, "nobody") == 0


def test_shards_are_independent(leaderboard):
    leaderboard.increment("global", DAY, "alice", 10)
    leaderboard.increment("room-1", DAY, "alice", 20)
    leaderboard.increment("global", "2026-02-12", "alice", 40)
    assert leaderboard.get_user("global", DAY, "alice") == 10
    assert leaderboard.get_user("room-1", DAY, "alice") == 20
    assert leaderboard.get_user("global", "2026-02-12", "alice") == 40


def test_negative_increment_rejected(leaderboard):
    with pytest.raises(ValueError):
        leaderboard.increment("global", DAY, "alice", -1)


def test_increment_is_commutative(clock):
    increments = [("alice", 5), ("bob", 7), ("alice", 11), ("carol", 3), ("bob", 1), ("alice", 2)] * 5
    results = []
    for seed in range(5):
        order = list(increments)
        random.Random(seed).shuffle(order)
        store = LeaderboardStore(clock=clock)
        for user, seconds in order:
            store.increment("global", DAY, user, seconds)
        results.append(store.ranking("global", DAY))
    assert all(r == results[0] for r in results)
    assert results[0][0] == LeaderboardEntry("alice", 90)


def test_concurrent_increments(leaderboard):
    users = ["u1", "u2", "u3"]

    def worker():
        for _ in range(500):
            for u in users:
                leaderboard.increment("global", DAY, u, 1)
            leaderboard.increment("global", DAY, "shared", 2)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for u in users:
        assert leaderboard.get_user("global", DAY, u) == 4000
    assert leaderboard.get_user("global", DAY, "shared") == 8000


def test_top_n_ordering_and_ties(leaderboard):
    leaderboard.increment("global", DAY, "dave", 100)
    leaderboard.increment("global", DAY, "bob", 300)
    leaderboard.increment("global", DAY, "carol", 100)
    leaderboard.increment("global", DAY, "alice", 100)

    top = leaderboard.top_n("global", DAY, 3)
    assert [(e.user_id, e.seconds) for e in top] == [("bob", 300), ("alice", 100), ("carol", 100)]
    assert leaderboard.top_n("global", DAY, 3) == top
    assert len(leaderboard.top_n("global", DAY, 100)) == 4
    assert leaderboard.top_n("global", DAY, 0) == []


def test_top_n_missing_shard(leaderboard):
    assert leaderboard.top_n("global", "1999-01-01", 10) == []


def test_seq_replay_is_ignored(leaderboard):
    leaderboard.increment("global", DAY, "alice", 10, source="s1", seq=1)
    leaderboard.increment("global", DAY, "alice", 10, source="s1", seq=1)
    assert leaderboard.get_user("global", DAY, "alice") == 10

    leaderboard.increment("global", DAY, "alice", 5, source="s1", seq=2)
    leaderboard.increment("global", DAY, "alice", 5, source="s1", seq=1)
    assert leaderboard.get_user("global", DAY, "alice") == 15

    # other sessions keep their own seq
    leaderboard.increment("global", DAY, "alice", 7, source="s2", seq=1)
    assert leaderboard.get_user("global", DAY, "alice") == 22
    assert leaderboard.contribution("global", DAY, "alice", "s1") == 15
    assert leaderboard.contribution("global", DAY, "alice", "s2") == 7


def test_top_up_only_raises(leaderboard):
    leaderboard.increment("global", DAY, "alice", 40, source="s1", seq=1)
    leaderboard.increment("global", DAY, "alice", 100)  # unrelated
    assert leaderboard.top_up("global", DAY, "alice", "s1", 60) == 20
    assert leaderboard.top_up("global", DAY, "alice", "s1", 60) == 0
    assert leaderboard.top_up("global", DAY, "alice", "s1", 10) == 0
    assert leaderboard.get_user("global", DAY, "alice") == 160


def test_shard_expires_after_retention(leaderboard, clock):
    leaderboard.increment("global", DAY, "alice", 120)

    clock.advance(hours=47)
    assert leaderboard.get_user("global", DAY, "alice") == 120

    clock.advance(hours=2)
    assert leaderboard.get_user("global", DAY, "alice") == 0
    assert leaderboard.top_n("global", DAY, 10) == []
    assert len(leaderboard) == 0


def test_expiry_is_set_on_first_write(leaderboard, clock):
    start = clock.now()
    leaderboard.increment("global", DAY, "alice", 1)
    clock.advance(hours=10)
    leaderboard.increment("global", DAY, "bob", 1)
    assert leaderboard.expires_at("global", DAY) == start + timedelta(hours=48)


def test_write_after_expiry_starts_fresh(leaderboard, clock):
    leaderboard.increment("global", DAY, "alice", 120)
    clock.advance(hours=49)
    assert leaderboard.increment("global", DAY, "alice", 5) == 5


def test_sweep(leaderboard, clock):
    leaderboard.increment("global", "2026-02-10", "alice", 1)
    clock.advance(hours=30)
    leaderboard.increment("global", DAY, "alice", 1)
    clock.advance(hours=20)
    assert leaderboard.sweep() == 1
    assert len(leaderboard) == 1
    assert leaderboard.get_user("global", DAY, "alice") == 1


def test_retention_minimum(clock):
    with pytest.raises(ValueError, match="48h"):
        LeaderboardStore(timedelta(hours=24), clock)
