"""
In-process session store with the server's timer semantics.

Same interface as HttpSessionStore, used for offline demos and the test
suite. Attended time is derived, never counted:

    attended = floor(now - start) - paused_total - (now - pause_start if paused)

so it is frozen while paused and cannot be moved by any client value.
"""

import math
import threading
import uuid
from dataclasses import dataclass
from typing import Optional

from .config import log
from .constants import MAX_GRACE_PERIODS, CONNECTIVITY_MARKER
from .errors import TransportError
from .state import TimerState


@dataclass
class _StoredSession:
    session_id: str
    student_id: str
    start_time: float
    lecture: dict
    is_active: bool = True
    is_paused: bool = False
    pause_start: Optional[float] = None
    paused_total: float = 0.0
    pause_reason: Optional[str] = None
    grace_periods_used: int = 0
    stop_reason: Optional[str] = None
    final_attended: Optional[int] = None


class InMemorySessionStore:

    def __init__(self, clock, classrooms=None, timetables=None):
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions = {}
        self._active = {}                       # student_id → session_id
        self.classrooms = list(classrooms or [])
        self.timetables = dict(timetables or {})
        self.wifi_events = []

    def _attended(self, s, now):
        paused = s.paused_total
        if s.is_paused and s.pause_start is not None:
            paused += now - s.pause_start
        return max(0, math.floor(now - s.start_time - paused))

    def _owned(self, operation, student_id, session_id):
        s = self._sessions.get(session_id)
        if s is None or s.student_id != student_id:
            raise TransportError(operation, "Session not found", status=404)
        return s

    def _finish(self, s, reason, now):
        s.final_attended = self._attended(s, now)
        s.is_active = False
        s.is_paused = False
        s.stop_reason = reason
        self._active.pop(s.student_id, None)

    # ─── Session lifecycle ───────────────────────────────────

    def start(self, student_id, lecture_context=None):
        if not student_id:
            raise TransportError("start", "Student ID required", status=400)
        with self._lock:
            if student_id in self._active:
                raise TransportError("start", "Timer already running", status=400)
            s = _StoredSession(uuid.uuid4().hex, student_id, self._clock.now(),
                               dict(lecture_context or {}))
            self._sessions[s.session_id] = s
            self._active[student_id] = s.session_id
        log.info("Store: session %s started for %s", s.session_id, student_id)
        return TimerState(0, True, False, 0, s.session_id)

    def stop(self, student_id, session_id, reason):
        with self._lock:
            s = self._owned("stop", student_id, session_id)
            if s.is_active:
                self._finish(s, reason, self._clock.now())
        return {"ok": True, "final_attended_seconds": s.final_attended}

    def pause(self, student_id, session_id, reason, grace_periods_used):
        now = self._clock.now()
        with self._lock:
            s = self._owned("pause", student_id, session_id)
            if not s.is_active:
                raise TransportError("pause", "Session not active", status=400)
            wifi = CONNECTIVITY_MARKER in (reason or "")
            if wifi and grace_periods_used >= MAX_GRACE_PERIODS:
                self._finish(s, "max_grace_periods_exceeded", now)
                return {"ok": True, "action": "stopped"}
            if not s.is_paused:
                s.is_paused = True
                s.pause_start = now
                s.pause_reason = reason
                if wifi:
                    s.grace_periods_used += 1
        return {"ok": True, "action": "paused", "grace_periods_used": s.grace_periods_used}

    def resume(self, student_id, session_id, reason):
        now = self._clock.now()
        with self._lock:
            s = self._owned("resume", student_id, session_id)
            if not s.is_active:
                raise TransportError("resume", "Session not active", status=400)
            if s.is_paused and s.pause_start is not None:
                s.paused_total += now - s.pause_start
            s.is_paused = False
            s.pause_start = None
            s.pause_reason = None
        return {"ok": True, "total_paused_seconds": math.floor(s.paused_total)}

    def sync(self, student_id, client_state):
        now = self._clock.now()
        with self._lock:
            session_id = self._active.get(student_id)
            if session_id is None:
                return TimerState()
            s = self._sessions[session_id]
            return TimerState(
                attended_seconds=self._attended(s, now),
                is_running=True,
                is_paused=s.is_paused,
                grace_periods_used=s.grace_periods_used,
                session_id=s.session_id,
            )

    def get(self, session_id):
        return self._sessions.get(session_id)

    def active_session_id(self, student_id):
        return self._active.get(student_id)

    # ─── Reporting / directory ───────────────────────────────

    def report_wifi_event(self, student_id, event, lecture=None, timer_state=None):
        self.wifi_events.append((student_id, event))
        return True

    def list_authorized_networks(self):
        return list(self.classrooms)

    def fetch_timetable(self, semester, branch):
        try:
            return self.timetables[(semester, branch)]
        except KeyError:
            raise TransportError("timetable", "Timetable not found", status=404)
