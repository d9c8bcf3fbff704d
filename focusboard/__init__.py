"""focusboard: focus session tracking and per-timezone daily leaderboards.

Public API re-exports for convenient imports:
    from focusboard import FocusSessions, LeaderboardStore, shard_key, ...
"""

# Time
from focusboard.clock import (
    Clock,
    SystemClock,
    ManualClock,
)

# Errors
from focusboard.errors import (
    FocusboardError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    TransientStoreError,
    ClockSkewWarning,
)

# Models
from focusboard.models import (
    IDLE,
    ACTIVE,
    INTERRUPTED,
    COMPLETED,
    SessionRecord,
    CompletedSession,
    Heartbeat,
    LeaderboardEntry,
    Settings,
    RetrySettings,
    UserProfile,
)

# Workspace & config
from focusboard.workspace import (
    workspace_root,
    load_settings,
    load_user_profiles,
    get_user_profile,
)

# Shard keys
from focusboard.shardkey import shard_key, split_by_day

# Stores
from focusboard.session_store import (
    SessionStore,
    FileSessionStore,
    MemorySessionStore,
)
from focusboard.leaderboard import LeaderboardStore

# Engines
from focusboard.aggregator import LeaderboardAggregator, RetryPolicy
from focusboard.focus import FocusSessionMachine, FocusSessions, HeartbeatTicker

# Hooks
from focusboard.hooks import run_hooks, get_motivation
