"""Sharded, expiring study-time counters.

Each shard is addressed by (scope_id, day_key) and has its own lock, so
increments for unrelated shards never wait on each other. The registry
lock only guards shard lookup and creation. Timezone math stays outside
this module; callers pass ready-made day keys.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from focusboard.clock import Clock, SystemClock
from focusboard.models import MIN_RETENTION_HOURS, LeaderboardEntry

logger = logging.getLogger(__name__)

ShardId = tuple[str, str]


@dataclass
class _Shard:
    expires_at: datetime
    totals: dict[str, int] = field(default_factory=dict)
    # (user_id, source) -> last applied heartbeat seq
    seqs: dict[tuple[str, str], int] = field(default_factory=dict)
    # (user_id, source) -> seconds contributed by that source
    contributions: dict[tuple[str, str], int] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)
    retired: bool = False

    def add(self, user_id: str, source: str | None, seconds: int) -> None:
        self.totals[user_id] = self.totals.get(user_id, 0) + seconds
        if source is not None:
            key = (user_id, source)
            self.contributions[key] = self.contributions.get(key, 0) + seconds


class LeaderboardStore:
    """In-process leaderboard store with per-shard locks and TTL expiry."""

    def __init__(self, retention: timedelta = timedelta(hours=MIN_RETENTION_HOURS), clock: Clock | None = None) -> None:
        if retention < timedelta(hours=MIN_RETENTION_HOURS):
            raise ValueError(f"retention must be at least {MIN_RETENTION_HOURS}h, got {retention}")
        self.retention = retention
        self.clock = clock or SystemClock()
        self._shards: dict[ShardId, _Shard] = {}
        self._registry_lock = threading.Lock()

    # ── shard lookup ──────────────────────────────────────────

    def _retire(self, shard_id: ShardId, shard: _Shard) -> None:
        # caller holds the registry lock
        with shard.lock:
            shard.retired = True
        del self._shards[shard_id]
        logger.debug("Purged expired shard %s/%s", *shard_id)

    def _shard(self, scope_id: str, day_key: str, create: bool) -> _Shard | None:
        shard_id = (scope_id, day_key)
        now = self.clock.now()
        with self._registry_lock:
            shard = self._shards.get(shard_id)
            if shard is not None and shard.expires_at <= now:
                self._retire(shard_id, shard)
                shard = None
            if shard is None and create:
                shard = _Shard(expires_at=now + self.retention)
                self._shards[shard_id] = shard
            return shard

    def _write(self, scope_id: str, day_key: str, apply: Callable[[_Shard], int]) -> int:
        while True:
            shard = self._shard(scope_id, day_key, create=True)
            with shard.lock:
                if shard.retired:
                    continue
                return apply(shard)

    # ── writes ────────────────────────────────────────────────

    def increment(
        self,
        scope_id: str,
        day_key: str,
        user_id: str,
        seconds: int,
        source: str | None = None,
        seq: int | None = None,
    ) -> int:
        """Add *seconds* to the user's counter and return the new total.

        When *source* and *seq* are given, a seq at or below the last one
        applied for that (user, source) in this shard is ignored, so a
        retried increment is applied exactly once.
        """
        if seconds < 0:
            raise ValueError(f"seconds must be >= 0, got {seconds}")

        def apply(shard: _Shard) -> int:
            if source is not None and seq is not None:
                key = (user_id, source)
                if seq <= shard.seqs.get(key, -1):
                    return shard.totals.get(user_id, 0)
                shard.seqs[key] = seq
            shard.add(user_id, source, seconds)
            return shard.totals[user_id]

        return self._write(scope_id, day_key, apply)

    def top_up(self, scope_id: str, day_key: str, user_id: str, source: str, target: int) -> int:
        """Raise *source*'s contribution in this shard to at least *target*.

        Returns the seconds added (0 if already at or above target).
        """

        def apply(shard: _Shard) -> int:
            missing = target - shard.contributions.get((user_id, source), 0)
            if missing <= 0:
                return 0
            shard.add(user_id, source, missing)
            return missing

        return self._write(scope_id, day_key, apply)

    # ── reads ─────────────────────────────────────────────────

    def get_user(self, scope_id: str, day_key: str, user_id: str) -> int:
        shard = self._shard(scope_id, day_key, create=False)
        if shard is None:
            return 0
        with shard.lock:
            return shard.totals.get(user_id, 0)

    def contribution(self, scope_id: str, day_key: str, user_id: str, source: str) -> int:
        shard = self._shard(scope_id, day_key, create=False)
        if shard is None:
            return 0
        with shard.lock:
            return shard.contributions.get((user_id, source), 0)

    def ranking(self, scope_id: str, day_key: str) -> list[LeaderboardEntry]:
        """Every entry, by seconds descending then user id ascending."""
        shard = self._shard(scope_id, day_key, create=False)
        if shard is None:
            return []
        with shard.lock:
            items = list(shard.totals.items())
        items.sort(key=lambda kv: (-kv[1], kv[0]))
        return [LeaderboardEntry(user_id=u, seconds=s) for u, s in items]

    def top_n(self, scope_id: str, day_key: str, n: int) -> list[LeaderboardEntry]:
        if n <= 0:
            return []
        return self.ranking(scope_id, day_key)[:n]

    def expires_at(self, scope_id: str, day_key: str) -> datetime | None:
        shard = self._shard(scope_id, day_key, create=False)
        return shard.expires_at if shard else None

    # ── maintenance ───────────────────────────────────────────

    def sweep(self) -> int:
        """Purge every expired shard. Returns how many were removed."""
        now = self.clock.now()
        with self._registry_lock:
            expired = [(sid, s) for sid, s in self._shards.items() if s.expires_at <= now]
            for shard_id, shard in expired:
                self._retire(shard_id, shard)
        if expired:
            logger.debug("Sweep purged %d shard(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._shards)
