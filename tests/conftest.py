"""Shared test fixtures for focusboard tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import yaml

from focusboard.aggregator import LeaderboardAggregator, RetryPolicy
from focusboard.clock import ManualClock
from focusboard.focus import FocusSessions
from focusboard.leaderboard import LeaderboardStore
from focusboard.models import RetrySettings
from focusboard.session_store import FileSessionStore


T0 = datetime(2026, 2, 11, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace with config and user profiles."""
    root = tmp_path / "workspace"
    root.mkdir(parents=True)

    config = {
        "retention_hours": 48,
        "heartbeat_interval_seconds": 1,
        "max_plausible_session_hours": 12,
        "retry": {"max_attempts": 3, "base_delay": 0.001, "max_delay": 0.01},
        "default_scopes": ["global"],
    }
    (root / "config.yaml").write_text(yaml.dump(config, default_flow_style=False), encoding="utf-8")

    users = {
        "users": {
            "alice": {"timezone": "UTC", "scopes": ["global", "room-1"]},
            "kenji": {"timezone": "Asia/Tokyo", "scopes": ["global", "room-1"]},
            "maria": {"timezone": "America/Los_Angeles"},
        }
    }
    (root / "users.yaml").write_text(yaml.dump(users, default_flow_style=False), encoding="utf-8")

    os.environ["FOCUSBOARD_ROOT"] = str(root)
    yield root
    if "FOCUSBOARD_ROOT" in os.environ:
        del os.environ["FOCUSBOARD_ROOT"]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def leaderboard(clock: ManualClock) -> LeaderboardStore:
    return LeaderboardStore(timedelta(hours=48), clock)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def aggregator(leaderboard: LeaderboardStore, clock: ManualClock, sleeps: list[float]) -> LeaderboardAggregator:
    retry = RetryPolicy(RetrySettings(max_attempts=3, base_delay=0.01, max_delay=0.1), sleep=sleeps.append)
    return LeaderboardAggregator(leaderboard, clock, retry)


@pytest.fixture
def sessions(workspace: Path, clock: ManualClock) -> FocusSessions:
    """File-backed sessions wired from the workspace config, no background ticker."""
    s = FocusSessions.from_workspace(workspace, clock=clock, auto_heartbeat=False)
    yield s
    s.shutdown()


@pytest.fixture
def store(workspace: Path) -> FileSessionStore:
    return FileSessionStore(workspace)
