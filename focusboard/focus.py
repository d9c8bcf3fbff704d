"""Focus session state machine for focusboard.

One FocusSessionMachine per user tracks that user's single active
session: Idle -> Active <-> Interrupted -> Completed -> Idle. The record
is mirrored into a SessionStore on every transition and heartbeat, and
a transition only takes effect in memory once the store write succeeded.

Elapsed time is always recomputed as now - start_instant. Interruption
is advisory: time keeps accruing while a session is interrupted.
"""

from __future__ import annotations

import logging
import threading
import uuid
import warnings
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

import yaml

from focusboard.aggregator import LeaderboardAggregator, RetryPolicy
from focusboard.clock import Clock, SystemClock
from focusboard.errors import ClockSkewWarning, ConflictError, NotFoundError
from focusboard.hooks import run_hooks
from focusboard.leaderboard import LeaderboardStore
from focusboard.models import (
    ACTIVE,
    IDLE,
    INTERRUPTED,
    LIVE_STATES,
    CompletedSession,
    Heartbeat,
    SessionRecord,
    Settings,
    UserProfile,
)
from focusboard.session_store import FileSessionStore, SessionStore
from focusboard.workspace import load_settings, load_user_profiles, resolve_timezone, workspace_root

logger = logging.getLogger(__name__)


class HeartbeatTicker:
    """Calls *callback* every *interval* seconds on a daemon thread."""

    def __init__(self, interval: float, callback: Callable[[], Any], name: str = "heartbeat") -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        if self.running:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop,), name=self.name, daemon=True)
        self._thread.start()

    def stop(self, join: bool = False) -> None:
        self._stop.set()
        thread = self._thread
        if join and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval * 2 + 1)

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("Heartbeat tick failed for %s", self.name)


class FocusSessionMachine:
    """The session state machine of a single user."""

    def __init__(
        self,
        user_id: str,
        store: SessionStore,
        aggregator: LeaderboardAggregator | None = None,
        profile: UserProfile | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
        hooks_root: Path | None = None,
        auto_heartbeat: bool = True,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.aggregator = aggregator
        profile = profile or UserProfile(user_id=user_id)
        self.profile = replace(profile, timezone=resolve_timezone(profile.timezone).key)
        self.clock = clock or SystemClock()
        self.settings = settings or Settings()
        self.hooks_root = hooks_root
        self.record: SessionRecord | None = None
        self._lock = threading.RLock()
        self._ticker: HeartbeatTicker | None = None
        interval = self.settings.heartbeat_interval_seconds
        if auto_heartbeat and interval:
            self._ticker = HeartbeatTicker(interval, self._tick, name=f"heartbeat-{user_id}")

    @property
    def state(self) -> str:
        with self._lock:
            return self.record.state if self.record else IDLE

    def elapsed_seconds(self) -> int:
        """Live elapsed seconds for display, 0 when idle."""
        with self._lock:
            if self.record is None:
                return 0
            return self.record.elapsed_seconds(self.clock.now())

    # ── transitions ───────────────────────────────────────────

    def start(self, subject_id: str) -> SessionRecord:
        """Begin a session. Raises ConflictError if one already exists."""
        with self._lock:
            if self.record is not None or self.store.get(self.user_id) is not None:
                raise ConflictError(f"A focus session is already active for {self.user_id!r}.")
            now = self.clock.now()
            record = SessionRecord(
                user_id=self.user_id,
                subject_id=subject_id,
                start_instant=now,
                last_heartbeat_instant=now,
                session_id=uuid.uuid4().hex,
                state=ACTIVE,
            )
            self.store.put(record)
            self.record = record
        logger.info("Session %s started for %s (%s)", record.session_id, self.user_id, subject_id)
        self._start_ticker()
        self._fire("on_focus_start", record.to_dict())
        return record

    def resume(self) -> SessionRecord | None:
        """Restore a persisted live session after a restart. Idempotent."""
        with self._lock:
            if self.record is not None:
                return self.record
            record = self.store.get(self.user_id)
            if record is None:
                return None
            if record.state not in LIVE_STATES:
                logger.warning("Ignoring stored session for %s in state %r", self.user_id, record.state)
                return None
            self._check_skew(record, self.clock.now())
            self.record = record
        logger.info(
            "Session %s resumed for %s at %ds",
            record.session_id, self.user_id, record.elapsed_seconds(self.clock.now()),
        )
        self._start_ticker()
        return record

    def heartbeat(self) -> Heartbeat | None:
        """Recompute elapsed time, persist it, and report the new seconds.

        Returns the Heartbeat sent to the aggregator, or None if no whole
        second has passed since the last one.
        """
        with self._lock:
            record = self._require()
            now = self.clock.now()
            if now < record.start_instant:
                self._check_skew(record, now)
            elapsed = record.elapsed_seconds(now)
            delta = elapsed - record.reported_seconds
            if delta > 0:
                updated = replace(
                    record,
                    last_heartbeat_instant=now,
                    heartbeat_seq=record.heartbeat_seq + 1,
                    reported_seconds=elapsed,
                )
            else:
                updated = replace(record, last_heartbeat_instant=now)
            self.store.put(updated)
            self.record = updated
            if delta <= 0:
                return None
            beat = Heartbeat(
                user_id=self.user_id,
                subject_id=updated.subject_id,
                session_id=updated.session_id,
                seq=updated.heartbeat_seq,
                delta_seconds=delta,
                instant=updated.start_instant + timedelta(seconds=elapsed),
            )
            # seqs must reach the store in order
            if self.aggregator is not None:
                self.aggregator.on_heartbeat_event(beat, self.profile.timezone, self.profile.scopes)
        return beat

    def mark_interrupted(self) -> SessionRecord:
        """Active -> Interrupted on a focus-lost signal. No-op if already interrupted."""
        with self._lock:
            record = self._require()
            if record.state == INTERRUPTED:
                return record
            updated = replace(record, state=INTERRUPTED, interruptions=record.interruptions + 1)
            self.store.put(updated)
            self.record = updated
        logger.info("Session %s interrupted (%d)", updated.session_id, updated.interruptions)
        self._fire("on_focus_interrupted", updated.to_dict())
        return updated

    def mark_resumed_focus(self) -> SessionRecord:
        """Interrupted -> Active on a focus-regained signal."""
        with self._lock:
            record = self._require()
            if record.state == ACTIVE:
                return record
            updated = replace(record, state=ACTIVE)
            self.store.put(updated)
            self.record = updated
        return updated

    def complete(self) -> CompletedSession:
        """Finish the session, report it, and clear the stored record.

        If reporting or clearing fails the session stays live, and a
        retry reports it again without double counting.
        """
        with self._lock:
            record = self._require()
            now = self.clock.now()
            completed = CompletedSession(
                user_id=self.user_id,
                subject_id=record.subject_id,
                start_instant=record.start_instant,
                end_instant=now,
                duration_seconds=record.elapsed_seconds(now),
                session_id=record.session_id,
                interruptions=record.interruptions,
            )
            if self.aggregator is not None:
                self.aggregator.on_session_complete(completed, self.profile.timezone, self.profile.scopes)
            self.store.delete(self.user_id)
            self.record = None
        self._stop_ticker()
        logger.info("Session %s completed for %s: %ds", completed.session_id, self.user_id, completed.duration_seconds)
        self._fire("on_focus_complete", completed.to_dict())
        return completed

    def discard(self) -> SessionRecord:
        """Drop the session without reporting it."""
        with self._lock:
            record = self._require()
            self.store.delete(self.user_id)
            self.record = None
        self._stop_ticker()
        logger.info("Session %s discarded for %s", record.session_id, self.user_id)
        self._fire("on_focus_discard", record.to_dict())
        return record

    # ── internals ─────────────────────────────────────────────

    def _require(self) -> SessionRecord:
        if self.record is None:
            self.resume()
        if self.record is None:
            raise NotFoundError(f"No active focus session for {self.user_id!r}.")
        return self.record

    def _check_skew(self, record: SessionRecord, now: datetime) -> None:
        raw = (now - record.start_instant).total_seconds()
        limit = self.settings.max_plausible_session_hours * 3600
        if raw < 0:
            message = f"Session {record.session_id} starts {-raw:.0f}s in the future; elapsed clamped to 0"
        elif raw > limit:
            message = f"Session {record.session_id} has run {raw / 3600:.1f}h, beyond {limit / 3600:.0f}h"
        else:
            return
        logger.warning("%s", message)
        warnings.warn(message, ClockSkewWarning, stacklevel=3)

    def _tick(self) -> None:
        if self.record is None:
            return
        try:
            self.heartbeat()
        except NotFoundError:
            self._stop_ticker()

    def _start_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.start()

    def _stop_ticker(self, join: bool = False) -> None:
        if self._ticker is not None:
            self._ticker.stop(join=join)

    def _fire(self, hook_point: str, context: dict[str, Any]) -> None:
        if self.hooks_root is None:
            return
        try:
            run_hooks(hook_point, context, self.hooks_root)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not run %s hooks: %s", hook_point, e)


class FocusSessions:
    """All users' machines, created on first use."""

    def __init__(
        self,
        store: SessionStore,
        aggregator: LeaderboardAggregator | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
        profiles: Callable[[str], UserProfile] | None = None,
        hooks_root: Path | None = None,
        auto_heartbeat: bool = True,
    ) -> None:
        self.store = store
        self.aggregator = aggregator
        self.clock = clock or SystemClock()
        self.settings = settings or Settings()
        self.hooks_root = hooks_root
        self.auto_heartbeat = auto_heartbeat
        self._profiles = profiles or self._default_profile
        self._machines: dict[str, FocusSessionMachine] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_workspace(
        cls,
        root: Path | None = None,
        clock: Clock | None = None,
        auto_heartbeat: bool = True,
    ) -> FocusSessions:
        """Wire file-backed sessions and an in-process leaderboard from config."""
        if root is None:
            root = workspace_root()
        clock = clock or SystemClock()
        settings = load_settings(root)
        profiles = load_user_profiles(root, settings)
        leaderboard = LeaderboardStore(timedelta(hours=settings.retention_hours), clock)
        aggregator = LeaderboardAggregator(leaderboard, clock, RetryPolicy(settings.retry))
        sessions = cls(
            FileSessionStore(root),
            aggregator,
            clock=clock,
            settings=settings,
            hooks_root=root,
            auto_heartbeat=auto_heartbeat,
        )
        sessions._profiles = lambda uid: profiles.get(uid) or sessions._default_profile(uid)
        return sessions

    def _default_profile(self, user_id: str) -> UserProfile:
        return UserProfile(user_id=user_id, scopes=list(self.settings.default_scopes))

    def profile(self, user_id: str) -> UserProfile:
        return self._profiles(user_id)

    def machine(self, user_id: str) -> FocusSessionMachine:
        with self._lock:
            m = self._machines.get(user_id)
            if m is None:
                m = FocusSessionMachine(
                    user_id,
                    self.store,
                    aggregator=self.aggregator,
                    profile=self._profiles(user_id),
                    clock=self.clock,
                    settings=self.settings,
                    hooks_root=self.hooks_root,
                    auto_heartbeat=self.auto_heartbeat,
                )
                self._machines[user_id] = m
            return m

    def start(self, user_id: str, subject_id: str) -> SessionRecord:
        return self.machine(user_id).start(subject_id)

    def resume(self, user_id: str) -> SessionRecord | None:
        return self.machine(user_id).resume()

    def resume_all(self) -> list[SessionRecord]:
        """Resume every session found in the store (process boot)."""
        resumed = []
        for user_id in self.store.user_ids():
            record = self.resume(user_id)
            if record is not None:
                resumed.append(record)
        return resumed

    def heartbeat(self, user_id: str) -> Heartbeat | None:
        return self.machine(user_id).heartbeat()

    def mark_interrupted(self, user_id: str) -> SessionRecord:
        return self.machine(user_id).mark_interrupted()

    def mark_resumed_focus(self, user_id: str) -> SessionRecord:
        return self.machine(user_id).mark_resumed_focus()

    def complete(self, user_id: str) -> CompletedSession:
        return self.machine(user_id).complete()

    def discard(self, user_id: str) -> SessionRecord:
        return self.machine(user_id).discard()

    def elapsed_seconds(self, user_id: str) -> int:
        return self.machine(user_id).elapsed_seconds()

    def active_user_ids(self) -> list[str]:
        with self._lock:
            machines = list(self._machines.values())
        return sorted(m.user_id for m in machines if m.state in LIVE_STATES)

    def shutdown(self) -> None:
        """Stop every heartbeat ticker. Sessions stay persisted for resume()."""
        with self._lock:
            machines = list(self._machines.values())
        for m in machines:
            m._stop_ticker(join=True)
