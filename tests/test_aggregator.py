"""Tests for focusboard/aggregator.py — heartbeat delivery, reconciliation, rank."""

from datetime import datetime, timedelta, timezone

import pytest

from focusboard.aggregator import LeaderboardAggregator, RetryPolicy
from focusboard.errors import PersistenceError, TransientStoreError
from focusboard.leaderboard import LeaderboardStore
from focusboard.models import CompletedSession, RetrySettings


class FlakyStore(LeaderboardStore):
    """Fails the first *failures* increments, optionally after applying them."""

    def __init__(self, clock, failures=1, apply_first=False, error=TransientStoreError):
        super().__init__(clock=clock)
        self.failures = failures
        self.apply_first = apply_first
        self.error = error
        self.calls = 0

    def increment(self, *args, **kwargs):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            if self.apply_first:
                super().increment(*args, **kwargs)
            raise self.error("store timed out")
        return super().increment(*args, **kwargs)


def _aggregator(store, clock, sleeps, attempts=3):
    retry = RetryPolicy(RetrySettings(max_attempts=attempts, base_delay=0.01, max_delay=0.1), sleep=sleeps.append)
    return LeaderboardAggregator(store, clock, retry)


def test_on_heartbeat_hits_every_scope(aggregator, leaderboard):
    aggregator.on_heartbeat("alice", "math", 30, "UTC", ["global", "room-1"], session_id="s1", seq=1)
    assert leaderboard.get_user("global", "2026-02-11", "alice") == 30
    assert leaderboard.get_user("room-1", "2026-02-11", "alice") == 30


def test_on_heartbeat_uses_callers_day(aggregator, leaderboard, clock):
    clock.set(datetime(2026, 2, 11, 16, 0, tzinfo=timezone.utc))  # 01:00 next day in Tokyo
    aggregator.on_heartbeat("kenji", "math", 60, "Asia/Tokyo", ["global"], session_id="s2", seq=1)
    aggregator.on_heartbeat("alice", "math", 60, "UTC", ["global"], session_id="s1", seq=1)
    assert leaderboard.get_user("global", "2026-02-12", "kenji") == 60
    assert leaderboard.get_user("global", "2026-02-11", "alice") == 60


def test_on_heartbeat_ignores_empty_delta(aggregator, leaderboard):
    aggregator.on_heartbeat("alice", "math", 0, "UTC", ["global"], session_id="s1", seq=1)
    assert len(leaderboard) == 0


def test_on_heartbeat_splits_at_midnight(aggregator, leaderboard):
    instant = datetime(2026, 2, 11, 0, 0, 20, tzinfo=timezone.utc)
    aggregator.on_heartbeat("alice", "math", 60, "UTC", ["global"], session_id="s1", seq=1, instant=instant)
    assert leaderboard.get_user("global", "2026-02-10", "alice") == 40
    assert leaderboard.get_user("global", "2026-02-11", "alice") == 20


def test_transient_failure_is_retried(clock, sleeps):
    store = FlakyStore(clock, failures=2)
    aggregator = _aggregator(store, clock, sleeps)
    aggregator.on_heartbeat("alice", "math", 10, "UTC", ["global"], session_id="s1", seq=1)
    assert store.get_user("global", "2026-02-11", "alice") == 10
    assert store.calls == 3
    assert len(sleeps) == 2


def test_timed_out_increment_is_not_double_counted(clock, sleeps):
    store = FlakyStore(clock, failures=1, apply_first=True, error=TimeoutError)
    aggregator = _aggregator(store, clock, sleeps)
    aggregator.on_heartbeat("alice", "math", 10, "UTC", ["global"], session_id="s1", seq=1)
    assert store.get_user("global", "2026-02-11", "alice") == 10


def test_retries_exhausted(clock, sleeps):
    store = FlakyStore(clock, failures=5)
    aggregator = _aggregator(store, clock, sleeps, attempts=3)
    with pytest.raises(PersistenceError) as exc:
        aggregator.on_heartbeat("alice", "math", 10, "UTC", ["global"], session_id="s1", seq=1)
    assert isinstance(exc.value.__cause__, TransientStoreError)
    assert store.calls == 3


def test_non_transient_errors_propagate(clock, sleeps):
    store = FlakyStore(clock, failures=1, error=KeyError)
    aggregator = _aggregator(store, clock, sleeps)
    with pytest.raises(KeyError):
        aggregator.on_heartbeat("alice", "math", 10, "UTC", ["global"], session_id="s1", seq=1)
    assert sleeps == []


def test_retry_delay_is_capped():
    policy = RetryPolicy(RetrySettings(max_attempts=10, base_delay=0.5, max_delay=2.0), jitter=0)
    assert policy.delay(0) == 0.5
    assert policy.delay(1) == 1.0
    assert policy.delay(8) == 2.0


def _completed(start, seconds, session_id="s1", user_id="alice"):
    return CompletedSession(
        user_id=user_id,
        subject_id="math",
        start_instant=start,
        end_instant=start + timedelta(seconds=seconds),
        duration_seconds=seconds,
        session_id=session_id,
    )


def test_completion_reconciles_missed_heartbeats(aggregator, leaderboard, clock):
    start = clock.now()
    for seq in range(1, 4):
        aggregator.on_heartbeat(
            "alice", "math", 10, "UTC", ["global"],
            session_id="s1", seq=seq, instant=start + timedelta(seconds=10 * seq),
        )
    assert leaderboard.get_user("global", "2026-02-11", "alice") == 30

    added = aggregator.on_session_complete(_completed(start, 100), "UTC", ["global"])
    assert added == 70
    assert leaderboard.get_user("global", "2026-02-11", "alice") == 100

    # a retried completion changes nothing
    assert aggregator.on_session_complete(_completed(start, 100), "UTC", ["global"]) == 0
    assert leaderboard.get_user("global", "2026-02-11", "alice") == 100


def test_every_heartbeat_then_completion_counts_once(aggregator, leaderboard, clock):
    start = clock.now()
    for seq in range(1, 61):
        aggregator.on_heartbeat(
            "alice", "math", 1, "UTC", ["global"],
            session_id="s1", seq=seq, instant=start + timedelta(seconds=seq),
        )
    assert aggregator.on_session_complete(_completed(start, 60), "UTC", ["global"]) == 0
    assert leaderboard.get_user("global", "2026-02-11", "alice") == 60


def test_heartbeat_without_session_id_is_rejected(aggregator, leaderboard):
    with pytest.raises(ValueError, match="session_id"):
        aggregator.on_heartbeat("alice", "math", 30, "UTC", ["global"])
    with pytest.raises(ValueError, match="session_id"):
        aggregator.on_heartbeat("alice", "math", 30, "UTC", ["global"], session_id="", seq=1)
    assert len(leaderboard) == 0


def test_completion_without_session_id_is_rejected(aggregator, leaderboard, clock):
    with pytest.raises(ValueError, match="session_id"):
        aggregator.on_session_complete(_completed(clock.now(), 60, session_id=""), "UTC", ["global"])
    assert len(leaderboard) == 0


def test_completion_across_midnight_is_split(aggregator, leaderboard):
    start = datetime(2026, 2, 10, 14, 50, tzinfo=timezone.utc)  # 23:50 in Tokyo
    aggregator.on_session_complete(_completed(start, 1200, user_id="kenji"), "Asia/Tokyo", ["global"])
    assert leaderboard.get_user("global", "2026-02-10", "kenji") == 600
    assert leaderboard.get_user("global", "2026-02-11", "kenji") == 600


def test_rank(aggregator, leaderboard):
    day = "2026-02-11"
    leaderboard.increment("global", day, "alice", 100)
    leaderboard.increment("global", day, "bob", 300)
    leaderboard.increment("global", day, "carol", 100)
    assert aggregator.rank("global", "UTC", "bob") == 1
    assert aggregator.rank("global", "UTC", "alice") == 2
    assert aggregator.rank("global", "UTC", "carol") == 3
    assert aggregator.rank("global", "UTC", "nobody") is None
    assert [e.user_id for e in aggregator.top("global", "UTC", 2)] == ["bob", "alice"]


def test_rank_reads_callers_today(aggregator, leaderboard, clock):
    clock.set(datetime(2026, 2, 11, 16, 0, tzinfo=timezone.utc))
    leaderboard.increment("global", "2026-02-12", "kenji", 50)
    assert aggregator.rank("global", "Asia/Tokyo", "kenji") == 1
    assert aggregator.rank("global", "UTC", "kenji") is None
