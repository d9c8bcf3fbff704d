"""Bridges focus session activity to the leaderboard store.

Delivery is exactly-once per shard: every heartbeat carries the
session id and a monotonic seq, and the store drops replays. Completion
then reconciles each day the session touched up to its exact length,
covering heartbeats that never arrived.

Time is split at the user's local midnight. A session running
23:50-00:10 contributes 600 seconds to each of the two days.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timedelta
from typing import Callable, TypeVar

from focusboard.clock import Clock, SystemClock
from focusboard.errors import PersistenceError, TransientStoreError
from focusboard.leaderboard import LeaderboardStore
from focusboard.models import CompletedSession, Heartbeat, LeaderboardEntry, RetrySettings
from focusboard.shardkey import shard_key, split_by_day

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE = (TransientStoreError, TimeoutError, ConnectionError)


class RetryPolicy:
    """Bounded retry with exponential backoff and jitter.

    Delay before attempt n+1: min(max_delay, base_delay * 2**n) +/- jitter.
    """

    def __init__(
        self,
        settings: RetrySettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter: float = 0.1,
    ) -> None:
        self.settings = settings or RetrySettings()
        self.sleep = sleep
        self.jitter = jitter

    def delay(self, attempt: int) -> float:
        delay = min(self.settings.max_delay, self.settings.base_delay * (2 ** attempt))
        return max(0.0, delay + random.uniform(-self.jitter, self.jitter) * delay)

    def call(self, operation: Callable[[], T], name: str = "operation") -> T:
        attempts = self.settings.max_attempts
        for attempt in range(attempts):
            try:
                return operation()
            except RETRYABLE as e:
                if attempt + 1 >= attempts:
                    logger.error("%s failed after %d attempt(s): %s", name, attempts, e)
                    raise PersistenceError(f"{name} failed after {attempts} attempt(s): {e}") from e
                delay = self.delay(attempt)
                logger.warning("%s failed (%s), retrying in %.3fs", name, e, delay)
                self.sleep(delay)
        raise AssertionError("unreachable")


class LeaderboardAggregator:
    def __init__(
        self,
        store: LeaderboardStore,
        clock: Clock | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.retry = retry or RetryPolicy()

    def today(self, timezone: str) -> str:
        return shard_key(timezone, self.clock.now())

    # ── writes ────────────────────────────────────────────────

    def on_heartbeat(
        self,
        user_id: str,
        subject_id: str,
        delta_seconds: int,
        timezone: str,
        scope_ids: list[str],
        session_id: str | None = None,
        seq: int | None = None,
        instant: datetime | None = None,
    ) -> None:
        """Credit *delta_seconds* of study ending at *instant* (default now).

        The delta is split across local days if it straddles midnight.
        *session_id* is required: completion reconciles against it.
        """
        if not session_id:
            raise ValueError("on_heartbeat needs the session_id of the session being credited")
        if delta_seconds <= 0:
            return
        end = instant or self.clock.now()
        pieces = split_by_day(timezone, end - timedelta(seconds=delta_seconds), end)
        for scope_id in scope_ids:
            for day_key, seconds in pieces:
                self.retry.call(
                    lambda: self.store.increment(
                        scope_id, day_key, user_id, seconds, source=session_id, seq=seq
                    ),
                    name=f"increment {scope_id}/{day_key}/{user_id}",
                )
        logger.debug("Heartbeat %s seq=%s subject=%s +%ds", user_id, seq, subject_id, delta_seconds)

    def on_heartbeat_event(self, heartbeat: Heartbeat, timezone: str, scope_ids: list[str]) -> None:
        self.on_heartbeat(
            heartbeat.user_id,
            heartbeat.subject_id,
            heartbeat.delta_seconds,
            timezone,
            scope_ids,
            session_id=heartbeat.session_id,
            seq=heartbeat.seq,
            instant=heartbeat.instant,
        )

    def on_session_complete(self, completed: CompletedSession, timezone: str, scope_ids: list[str]) -> int:
        """Top up every day the session touched to its exact share.

        Returns the seconds added by reconciliation. Safe to call again.
        """
        if not completed.session_id:
            raise ValueError("on_session_complete needs a CompletedSession with a session_id")
        source = completed.session_id
        start = completed.start_instant
        end = start + timedelta(seconds=completed.duration_seconds)
        added = 0
        for scope_id in scope_ids:
            for day_key, seconds in split_by_day(timezone, start, end):
                added += self.retry.call(
                    lambda: self.store.top_up(scope_id, day_key, completed.user_id, source, seconds),
                    name=f"reconcile {scope_id}/{day_key}/{completed.user_id}",
                )
        if added:
            logger.info(
                "Reconciled %s session %s: +%ds missed by heartbeats",
                completed.user_id, source, added,
            )
        return added

    # ── reads ─────────────────────────────────────────────────

    def top(self, scope_id: str, timezone: str, n: int = 10) -> list[LeaderboardEntry]:
        """The top *n* of the caller's own "today" in *scope_id*."""
        return self.store.top_n(scope_id, self.today(timezone), n)

    def rank(self, scope_id: str, timezone: str, user_id: str) -> int | None:
        """1-based position of *user_id* in today's ranking, or None if absent.

        Full scan of the shard.
        """
        for position, entry in enumerate(self.store.ranking(scope_id, self.today(timezone)), start=1):
            if entry.user_id == user_id:
                return position
        return None
