"""Workspace root, configuration and path helpers for focusboard."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from focusboard.fileio import read_yaml
from focusboard.models import Settings, UserProfile

logger = logging.getLogger(__name__)


def workspace_root() -> Path:
    """Get the workspace root directory (holds config.yaml and sessions/)."""
    return Path(
        os.environ.get("FOCUSBOARD_ROOT", str(Path.home() / "focusboard"))
    ).expanduser().resolve()


# ── Path helpers ──────────────────────────────────────────────

def config_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "config.yaml"


def users_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "users.yaml"


def hooks_config_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "hooks.yaml"


def sessions_dir(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "sessions"


# ── Configuration ─────────────────────────────────────────────

def load_settings(root: Path | None = None) -> Settings:
    """Load config.yaml into Settings. Raises ValueError on a bad retention window."""
    return Settings.from_dict(read_yaml(config_path(root)))


def resolve_timezone(name: str) -> ZoneInfo:
    """ZoneInfo for *name*, falling back to UTC for unknown zones."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", name)
        return ZoneInfo("UTC")


def load_user_profiles(root: Path | None = None, settings: Settings | None = None) -> dict[str, UserProfile]:
    """Load users.yaml as {user_id: UserProfile}.

    Timezones are resolved here, so an unknown zone becomes UTC once
    instead of failing every later shard lookup.
    """
    if settings is None:
        settings = load_settings(root)
    data = read_yaml(users_path(root))
    users = data.get("users") or {}
    if not isinstance(users, dict):
        return {}
    profiles = {}
    for uid, d in users.items():
        profile = UserProfile.from_dict(str(uid), d, settings.default_scopes)
        profile.timezone = resolve_timezone(profile.timezone).key
        profiles[profile.user_id] = profile
    return profiles


def get_user_profile(
    user_id: str,
    root: Path | None = None,
    settings: Settings | None = None,
) -> UserProfile:
    """Profile for *user_id*; unknown users get UTC and the default scopes."""
    if settings is None:
        settings = load_settings(root)
    profile = load_user_profiles(root, settings).get(user_id)
    if profile is None:
        return UserProfile(user_id=user_id, scopes=list(settings.default_scopes))
    return profile
