"""
AttendanceSession — single source of truth for one attendance attempt.

Mutated only through SessionSync while it holds the session guard.
attended_seconds comes from the session store; display_seconds is the
per-second UI projection and is reset to attended_seconds on every sync.
"""

import json
from dataclasses import dataclass, field
from typing import Optional, List

from .config import log, SNAPSHOT_FILE
from .constants import MAX_GRACE_PERIODS, SNAPSHOT_MAX_AGE_SEC

IDLE = "IDLE"
RUNNING = "RUNNING"
PAUSED = "PAUSED"
STOPPED = "STOPPED"


@dataclass
class SecurityEvent:
    type: str
    timestamp: float
    reason: Optional[str] = None
    payload: dict = field(default_factory=dict)


@dataclass
class AttendanceSession:
    student_id: str
    session_id: Optional[str] = None
    start_time: Optional[float] = None

    # ── Authoritative time (server-owned) ─────────────────────
    attended_seconds: int = 0
    display_seconds: int = 0

    # ── Run state ─────────────────────────────────────────────
    is_running: bool = False
    is_paused: bool = False
    pause_reason: Optional[str] = None
    terminated: bool = False
    stop_reason: Optional[str] = None

    # ── Grace accounting ──────────────────────────────────────
    grace_periods_used: int = 0
    max_grace_periods: int = MAX_GRACE_PERIODS

    # ── Sync / validation ─────────────────────────────────────
    last_server_sync: Optional[float] = None
    sync_drift: int = 0
    is_validated: bool = False
    last_update: Optional[float] = None

    security_events: List[SecurityEvent] = field(default_factory=list)

    @property
    def phase(self) -> str:
        if self.terminated:
            return STOPPED
        if not self.is_running:
            return IDLE
        return PAUSED if self.is_paused else RUNNING

    @property
    def can_start(self):
        return not self.is_running

    @property
    def can_stop(self):
        return self.is_running

    @property
    def can_pause(self):
        return self.is_running and not self.is_paused

    @property
    def can_resume(self):
        return self.is_running and self.is_paused

    def record(self, event_type, timestamp, reason=None, **payload):
        self.security_events.append(SecurityEvent(event_type, timestamp, reason, payload))

    def security_status(self):
        return {
            "is_validated": self.is_validated,
            "last_sync": self.last_server_sync,
            "drift": self.sync_drift,
            "grace_periods_used": self.grace_periods_used,
            "max_grace_periods": self.max_grace_periods,
        }

    def snapshot(self):
        return {
            "attendedSeconds": self.attended_seconds,
            "isRunning": self.is_running,
            "isPaused": self.is_paused,
            "pauseReason": self.pause_reason,
            "sessionId": self.session_id,
            "lastUpdate": self.last_update,
        }


def format_time(seconds) -> str:
    """1234 → '00:20:34'"""
    seconds = max(0, int(seconds))
    return f"{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}"


# ─── Local snapshot (crash / restart recovery) ───────────────────

def save_snapshot(session, path=SNAPSHOT_FILE):
    if not session.session_id:
        return
    try:
        path.write_text(json.dumps(session.snapshot()), encoding="utf-8")
    except OSError as e:
        log.warning("Failed to save session snapshot: %s", e)


def load_snapshot(now, path=SNAPSHOT_FILE, max_age=SNAPSHOT_MAX_AGE_SEC):
    """
    Read the saved snapshot. Returns the dict, or None if missing,
    unreadable, or older than max_age seconds (stale ones are deleted).
    """
    try:
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        age = now - float(data["lastUpdate"])
    except (OSError, ValueError, KeyError, TypeError) as e:
        log.warning("Session snapshot unreadable: %s", e)
        return None

    if age >= max_age:
        log.info("Discarding stale session snapshot (%.0fs old)", age)
        clear_snapshot(path)
        return None
    return data


def clear_snapshot(path=SNAPSHOT_FILE):
    try:
        path.unlink(missing_ok=True)
    except OSError:
        pass


@dataclass
class TimerState:
    """Timer state as reported by the session store."""
    attended_seconds: int = 0
    is_running: bool = False
    is_paused: bool = False
    grace_periods_used: int = 0
    session_id: Optional[str] = None

    @classmethod
    def from_api(cls, data):
        return cls(
            attended_seconds=int(data.get("attendedSeconds") or 0),
            is_running=bool(data.get("isRunning")),
            is_paused=bool(data.get("isPaused")),
            grace_periods_used=int(data.get("gracePeriodsUsed") or 0),
            session_id=data.get("sessionId"),
        )

    def to_api(self):
        return {
            "attendedSeconds": self.attended_seconds,
            "isRunning": self.is_running,
            "isPaused": self.is_paused,
            "gracePeriodsUsed": self.grace_periods_used,
            "sessionId": self.session_id,
        }
