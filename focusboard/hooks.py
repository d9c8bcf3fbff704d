"""Lifecycle hooks and motivation text for focusboard.

Hooks run shell commands at session transitions. Configured via
hooks.yaml in the workspace root:

    on_focus_start:
      - "notify-send 'focus on'"
    on_focus_complete:
      - {command: "./log_session.sh", timeout: 10}

Hook points:
- on_focus_start, on_focus_interrupted, on_focus_complete, on_focus_discard

Context is passed as JSON on stdin. Hooks and the motivation command are
display-side collaborators: their failures are reported, never raised.
"""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from focusboard.fileio import read_yaml
from focusboard.models import Settings
from focusboard.workspace import hooks_config_path, load_settings, workspace_root

logger = logging.getLogger(__name__)

VALID_HOOK_POINTS = {
    "on_focus_start",
    "on_focus_interrupted",
    "on_focus_complete",
    "on_focus_discard",
}

DEFAULT_TIMEOUT = 30

FALLBACK_MOTIVATION = "The secret to getting ahead is getting started."


def load_hooks_config(root: Path | None = None) -> dict[str, Any]:
    """Load hooks configuration from hooks.yaml."""
    return read_yaml(hooks_config_path(root))


def run_command(command: str, context: dict[str, Any], timeout: float, cwd: Path) -> dict[str, Any]:
    """Run one shell command with *context* as JSON on stdin."""
    result: dict[str, Any] = {"command": command}
    try:
        proc = subprocess.run(
            command,
            shell=True,
            input=json.dumps(context, ensure_ascii=False),
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=str(cwd) if cwd.exists() else None,
        )
        result["exit_code"] = proc.returncode
        result["stdout"] = proc.stdout[:4096]
        result["stderr"] = proc.stderr[:4096]
    except subprocess.TimeoutExpired:
        result["exit_code"] = -1
        result["error"] = f"Command timed out after {timeout}s"
    except OSError as e:
        result["exit_code"] = -1
        result["error"] = str(e)
    return result


def run_hooks(
    hook_point: str,
    context: dict[str, Any],
    root: Path | None = None,
) -> list[dict[str, Any]]:
    """Run all hooks registered for a given hook point.

    Returns list of results with stdout/stderr and exit codes.
    """
    if hook_point not in VALID_HOOK_POINTS:
        return []

    if root is None:
        root = workspace_root()

    hooks = load_hooks_config(root).get(hook_point, [])
    if not hooks or not isinstance(hooks, list):
        return []

    results = []
    for hook in hooks:
        if isinstance(hook, str):
            command = hook
            timeout = DEFAULT_TIMEOUT
        elif isinstance(hook, dict):
            command = hook.get("command", "")
            timeout = hook.get("timeout", DEFAULT_TIMEOUT)
        else:
            continue

        if not command:
            continue

        result = run_command(command, context, timeout, root)
        result["hook_point"] = hook_point
        if result["exit_code"] != 0:
            logger.warning("Hook %s (%s) failed: %s", hook_point, command, result.get("error") or result.get("stderr"))
        results.append(result)

    return results


def get_motivation(
    subject: str,
    minutes: int,
    settings: Settings | None = None,
    root: Path | None = None,
) -> str:
    """One line of encouragement from motivation_command, or a static fallback."""
    if root is None:
        root = workspace_root()
    if settings is None:
        settings = load_settings(root)
    if not settings.motivation_command:
        return FALLBACK_MOTIVATION

    result = run_command(
        settings.motivation_command,
        {"subject": subject, "minutes": minutes},
        settings.motivation_timeout,
        root,
    )
    text = (result.get("stdout") or "").strip()
    if result["exit_code"] != 0 or not text:
        logger.warning("Motivation command failed, using fallback: %s", result.get("error") or result.get("stderr"))
        return FALLBACK_MOTIVATION
    return text.splitlines()[0]
