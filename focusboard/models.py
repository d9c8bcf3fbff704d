"""Typed dataclasses for the focusboard data model.

Persisted models use from_dict/to_dict for JSON/YAML serialization.
camelCase in JSON is mapped to snake_case in Python.
Unknown keys are ignored; missing keys use defaults.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from focusboard.clock import format_instant, parse_instant


# ── Session states ────────────────────────────────────────────

IDLE = "idle"
ACTIVE = "active"
INTERRUPTED = "interrupted"
COMPLETED = "completed"

LIVE_STATES = {ACTIVE, INTERRUPTED}


def whole_seconds(start: datetime, end: datetime) -> int:
    """Floor of (end - start) in seconds, clamped to >= 0."""
    return max(0, math.floor((end - start).total_seconds()))


# ── Session record ────────────────────────────────────────────


@dataclass
class SessionRecord:
    user_id: str
    subject_id: str
    start_instant: datetime
    last_heartbeat_instant: datetime
    session_id: str = ""
    state: str = ACTIVE  # active, interrupted
    interruptions: int = 0
    # exactly-once heartbeat delivery
    heartbeat_seq: int = 0
    reported_seconds: int = 0

    def __post_init__(self) -> None:
        # records written without an id still need one stable reconciliation key
        if not self.session_id:
            self.session_id = f"{self.user_id}@{format_instant(self.start_instant)}"

    def elapsed_seconds(self, now: datetime) -> int:
        return whole_seconds(self.start_instant, now)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SessionRecord:
        start = parse_instant(str(d.get("startInstant", d.get("start_instant", ""))))
        last = d.get("lastHeartbeatInstant", d.get("last_heartbeat_instant"))
        return cls(
            user_id=str(d.get("userId", d.get("user_id", ""))),
            subject_id=str(d.get("subjectId", d.get("subject_id", ""))),
            start_instant=start,
            last_heartbeat_instant=parse_instant(str(last)) if last else start,
            session_id=str(d.get("sessionId", d.get("session_id", ""))),
            state=str(d.get("state", ACTIVE)),
            interruptions=int(d.get("interruptions", 0)),
            heartbeat_seq=int(d.get("heartbeatSeq", 0)),
            reported_seconds=int(d.get("reportedSeconds", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "subjectId": self.subject_id,
            "sessionId": self.session_id,
            "startInstant": format_instant(self.start_instant),
            "lastHeartbeatInstant": format_instant(self.last_heartbeat_instant),
            "state": self.state,
            "interruptions": self.interruptions,
            "heartbeatSeq": self.heartbeat_seq,
            "reportedSeconds": self.reported_seconds,
        }


@dataclass(frozen=True)
class CompletedSession:
    """Immutable fact emitted once per completed session."""

    user_id: str
    subject_id: str
    start_instant: datetime
    end_instant: datetime
    duration_seconds: int
    session_id: str = ""
    interruptions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "subjectId": self.subject_id,
            "sessionId": self.session_id,
            "startInstant": format_instant(self.start_instant),
            "endInstant": format_instant(self.end_instant),
            "durationSeconds": self.duration_seconds,
            "interruptions": self.interruptions,
        }


@dataclass(frozen=True)
class Heartbeat:
    """One tick's contribution: *delta_seconds* of study ending at *instant*."""

    user_id: str
    subject_id: str
    session_id: str
    seq: int
    delta_seconds: int
    instant: datetime


# ── Leaderboard ───────────────────────────────────────────────


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    seconds: int

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "seconds": self.seconds}


# ── Configuration ─────────────────────────────────────────────

MIN_RETENTION_HOURS = 48


@dataclass
class RetrySettings:
    max_attempts: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RetrySettings:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            max_attempts=max(1, int(d.get("max_attempts", 3))),
            base_delay=float(d.get("base_delay", 0.05)),
            max_delay=float(d.get("max_delay", 1.0)),
        )


@dataclass
class Settings:
    retention_hours: float = MIN_RETENTION_HOURS
    heartbeat_interval_seconds: float | None = 1.0
    max_plausible_session_hours: float = 24
    retry: RetrySettings = field(default_factory=RetrySettings)
    motivation_command: str = ""
    motivation_timeout: float = 5.0
    default_scopes: list[str] = field(default_factory=lambda: ["global"])

    def __post_init__(self) -> None:
        if self.retention_hours < MIN_RETENTION_HOURS:
            raise ValueError(
                f"retention_hours must be >= {MIN_RETENTION_HOURS}, got {self.retention_hours}"
            )

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Settings:
        if not d or not isinstance(d, dict):
            return cls()
        interval = d.get("heartbeat_interval_seconds", 1.0)
        scopes = d.get("default_scopes") or ["global"]
        return cls(
            retention_hours=float(d.get("retention_hours", MIN_RETENTION_HOURS)),
            heartbeat_interval_seconds=float(interval) if interval else None,
            max_plausible_session_hours=float(d.get("max_plausible_session_hours", 24)),
            retry=RetrySettings.from_dict(d.get("retry") or {}),
            motivation_command=str(d.get("motivation_command", "") or ""),
            motivation_timeout=float(d.get("motivation_timeout", 5.0)),
            default_scopes=[str(s) for s in scopes],
        )


@dataclass
class UserProfile:
    user_id: str
    timezone: str = "UTC"
    scopes: list[str] = field(default_factory=lambda: ["global"])

    @classmethod
    def from_dict(cls, user_id: str, d: dict[str, Any], default_scopes: list[str] | None = None) -> UserProfile:
        scopes = default_scopes or ["global"]
        if not d or not isinstance(d, dict):
            return cls(user_id=user_id, scopes=list(scopes))
        return cls(
            user_id=user_id,
            timezone=str(d.get("timezone", "UTC")),
            scopes=[str(s) for s in (d.get("scopes") or scopes)],
        )
