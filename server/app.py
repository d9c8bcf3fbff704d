from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, status

from focusboard import (
    COMPLETED,
    ConflictError,
    FocusSessions,
    NotFoundError,
    PersistenceError,
    get_motivation,
    load_settings,
)
from focusboard.workspace import resolve_timezone, workspace_root

logger = logging.getLogger(__name__)

app = FastAPI(title="focusboard", version="0.1.0")


@lru_cache
def get_sessions() -> FocusSessions:
    sessions = FocusSessions.from_workspace()
    resumed = sessions.resume_all()
    if resumed:
        logger.info("Resumed %d session(s) from %s", len(resumed), workspace_root())
    return sessions


def _call(fn, *args: Any) -> Any:
    try:
        return fn(*args)
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


def _timezone(timezone: str) -> str:
    return resolve_timezone(timezone).key


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"ok": "true"}


# ── Sessions ──────────────────────────────────────────────────

@app.post("/api/sessions/{user_id}/start")
def api_start(
    user_id: str,
    payload: dict[str, Any] = Body(...),
    sessions: FocusSessions = Depends(get_sessions),
) -> dict[str, Any]:
    subject_id = str(payload.get("subject_id", "")).strip()
    if not subject_id:
        raise HTTPException(status_code=400, detail="subject_id is required")
    record = _call(sessions.start, user_id, subject_id)
    return {"ok": True, "session": record.to_dict()}


@app.post("/api/sessions/{user_id}/heartbeat")
def api_heartbeat(user_id: str, sessions: FocusSessions = Depends(get_sessions)) -> dict[str, Any]:
    beat = _call(sessions.heartbeat, user_id)
    return {
        "ok": True,
        "elapsedSeconds": sessions.elapsed_seconds(user_id),
        "deltaSeconds": beat.delta_seconds if beat else 0,
    }


@app.post("/api/sessions/{user_id}/interrupt")
def api_interrupt(user_id: str, sessions: FocusSessions = Depends(get_sessions)) -> dict[str, Any]:
    record = _call(sessions.mark_interrupted, user_id)
    return {"ok": True, "session": record.to_dict()}


@app.post("/api/sessions/{user_id}/focus")
def api_focus(user_id: str, sessions: FocusSessions = Depends(get_sessions)) -> dict[str, Any]:
    record = _call(sessions.mark_resumed_focus, user_id)
    return {"ok": True, "session": record.to_dict()}


@app.post("/api/sessions/{user_id}/complete")
def api_complete(user_id: str, sessions: FocusSessions = Depends(get_sessions)) -> dict[str, Any]:
    completed = _call(sessions.complete, user_id)
    return {"ok": True, "state": COMPLETED, "session": completed.to_dict()}


@app.post("/api/sessions/{user_id}/discard")
def api_discard(user_id: str, sessions: FocusSessions = Depends(get_sessions)) -> dict[str, Any]:
    record = _call(sessions.discard, user_id)
    return {"ok": True, "session": record.to_dict()}


@app.get("/api/sessions/{user_id}")
def api_current(user_id: str, sessions: FocusSessions = Depends(get_sessions)) -> dict[str, Any]:
    """Current session for display, with the studying/idle status."""
    machine = sessions.machine(user_id)
    record = _call(machine.resume)
    return {
        "state": machine.state,
        "status": "studying" if record else "idle",
        "elapsedSeconds": machine.elapsed_seconds(),
        "session": record.to_dict() if record else None,
    }


# ── Leaderboard ───────────────────────────────────────────────

@app.get("/api/leaderboard/{scope_id}")
def api_leaderboard(
    scope_id: str,
    timezone: str = "UTC",
    n: int = 10,
    sessions: FocusSessions = Depends(get_sessions),
) -> dict[str, Any]:
    """Top n of today in the caller's timezone. Resets at local midnight."""
    tz = _timezone(timezone)
    aggregator = sessions.aggregator
    entries = _call(aggregator.top, scope_id, tz, n)
    active = set(sessions.active_user_ids())
    return {
        "scope": scope_id,
        "day": aggregator.today(tz),
        "timezone": tz,
        "entries": [
            {
                "rank": i,
                **e.to_dict(),
                "status": "studying" if e.user_id in active else "idle",
            }
            for i, e in enumerate(entries, start=1)
        ],
    }


@app.get("/api/leaderboard/{scope_id}/rank/{user_id}")
def api_rank(
    scope_id: str,
    user_id: str,
    timezone: str = "UTC",
    sessions: FocusSessions = Depends(get_sessions),
) -> dict[str, Any]:
    tz = _timezone(timezone)
    aggregator = sessions.aggregator
    day = aggregator.today(tz)
    return {
        "scope": scope_id,
        "day": day,
        "userId": user_id,
        "rank": _call(aggregator.rank, scope_id, tz, user_id),
        "seconds": aggregator.store.get_user(scope_id, day, user_id),
    }


@app.get("/api/motivation")
def api_motivation(subject: str = "", minutes: int = 0) -> dict[str, str]:
    """Display-only text. Always answers, falling back to a static line."""
    root = workspace_root()
    return {"message": get_motivation(subject, minutes, load_settings(root), root)}


def main() -> None:
    import uvicorn

    uvicorn.run("server.app:app", host="127.0.0.1", port=8000)


if __name__ == "__main__":
    main()
