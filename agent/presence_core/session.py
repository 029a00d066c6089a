"""
SessionSync — the attendance timer state machine.

    IDLE ──start()──▶ RUNNING ◀──resume()── PAUSED
                         │ ──pause()──────────▶ │
                         └──────stop()──────────┴──▶ STOPPED

The session store owns attended time. Locally we only mirror it:
attended_seconds is written by start() and by sync(), nothing else.
pause/resume/stop change run flags and the grace counter only.

Three periodic tasks exist per active session:
  sync     every SYNC_INTERVAL_SEC   (RUNNING and not PAUSED only)
  display  every DISPLAY_TICK_SEC    (RUNNING and not PAUSED only, UI only)
  probe    every PROBE_INTERVAL_SEC  (ConnectivityMonitor, whole session)
All of them are cancelled before stop() talks to the server.

Remote calls block, so scheduled callbacks hand them to `spawn`
(a daemon thread by default). Lifecycle methods may be called from any
thread; every write to the session record goes through SessionGuard.
"""

import threading
from contextlib import contextmanager

from .config import log, SNAPSHOT_FILE
from .constants import (
    SYNC_INTERVAL_SEC, DISPLAY_TICK_SEC, PROBE_INTERVAL_SEC,
    CONNECTIVITY_MARKER, REASON_GRACE_EXPIRED, REASON_RECONNECTED,
    REASON_MANUAL, REASON_ABUSE,
)
from .connectivity import EV_GRACE_EXPIRED, EV_CONNECTED, EV_BSSID_CHANGED
from .drift import DriftValidator
from .errors import AuthorizationError, SyncValidationError, TransportError
from .scheduler import PeriodicTask
from .state import AttendanceSession, save_snapshot, load_snapshot, clear_snapshot

# Sources allowed to write attended_seconds
_AUTHORITATIVE = frozenset({"start", "server", "snapshot"})


def _spawn_thread(fn, *args):
    threading.Thread(target=fn, args=args, daemon=True).start()


def is_connectivity_reason(reason):
    return CONNECTIVITY_MARKER in (reason or "")


class SessionGuard:
    """
    Mutex around the session record.

    Background writers (sync, display tick) use try-acquire: if the
    record is busy the update is dropped and logged; the next tick
    rewrites the same fields anyway. Lifecycle transitions wait for the
    lock, because a lost pause/resume/stop would not heal by itself.
    """

    def __init__(self, wait_timeout=2.0):
        self._lock = threading.Lock()
        self._wait_timeout = wait_timeout
        self.dropped = 0

    @contextmanager
    def hold(self, source, wait=False):
        if wait:
            acquired = self._lock.acquire(timeout=self._wait_timeout)
        else:
            acquired = self._lock.acquire(blocking=False)
        if not acquired:
            self.dropped += 1
            log.warning("Session state busy — %s could not take the lock", source)
            yield False
            return
        try:
            yield True
        finally:
            self._lock.release()


class SessionSync:

    def __init__(self, store, student_id, clock, scheduler, authorizer, monitor=None,
                 validator=None, spawn=_spawn_thread, notify=None,
                 snapshot_path=SNAPSHOT_FILE, sync_interval=SYNC_INTERVAL_SEC,
                 display_interval=DISPLAY_TICK_SEC, retry_interval=PROBE_INTERVAL_SEC):
        self._store = store
        self.student_id = student_id
        self._clock = clock
        self._scheduler = scheduler
        self._authorizer = authorizer
        self._monitor = monitor
        self._validator = validator or DriftValidator()
        self._spawn = spawn
        self._notify = notify or (lambda title, message: log.warning("%s: %s", title, message))
        self._snapshot_path = snapshot_path
        self._retry_interval = retry_interval

        self.guard = SessionGuard()
        self.session = AttendanceSession(student_id)
        self.lecture = None
        self._last_sync_at = None
        self._subscription = None
        self._retry_handle = None
        self._sync_task = PeriodicTask(scheduler, sync_interval, self._on_sync_tick, "server-sync")
        self._display_task = PeriodicTask(scheduler, display_interval, self._on_display_tick,
                                          "display-tick")

    # ─── State writes ────────────────────────────────────────

    def _update(self, source, wait=False, force=False, expect=None, **changes):
        """
        Apply `changes` to the session record under the guard.
        With `expect`, nothing is written unless that record is still the
        current, unterminated one.
        Returns False when the update was dropped or blocked.
        """
        if "attended_seconds" in changes and source not in _AUTHORITATIVE:
            log.warning("Blocked attended_seconds write from non-server source %s", source)
            return False

        with self.guard.hold(source, wait=wait or force) as acquired:
            if not acquired and not force:
                return False
            if not acquired:
                log.warning("Forcing %s update without the session lock", source)
            if expect is not None and not self._is_current(expect):
                log.info("Discarding %s update for a finished session", source)
                return False
            s = self.session
            for key, value in changes.items():
                setattr(s, key, value)
            if "attended_seconds" in changes:
                s.display_seconds = s.attended_seconds
            if not s.is_running:
                s.is_paused = False
            s.last_update = self._clock.now()
        if source != "display":
            save_snapshot(self.session, self._snapshot_path)
        return True

    def _is_current(self, session):
        return self.session is session and not session.terminated

    def _record(self, event_type, reason=None, **payload):
        self.session.record(event_type, self._clock.now(), reason, **payload)

    # ─── Task management ─────────────────────────────────────

    def _start_ticking(self):
        self._sync_task.start()
        self._display_task.start()

    def _stop_ticking(self):
        self._sync_task.cancel()
        self._display_task.cancel()

    def _attach_monitor(self):
        if self._monitor is None:
            return
        if self._subscription is None:
            self._subscription = self._monitor.events.subscribe(self._on_connectivity_event)
        self._monitor.start()

    def _cancel_all(self):
        """Cancel every periodic task, timer and subscription of this session."""
        self._stop_ticking()
        if self._retry_handle is not None:
            self._scheduler.cancel(self._retry_handle)
            self._retry_handle = None
        if self._monitor is not None:
            self._monitor.stop()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    @property
    def tasks_active(self):
        return {
            "sync": self._sync_task.active,
            "display": self._display_task.active,
            "probe": bool(self._monitor and self._monitor.running),
        }

    # ─── Lifecycle ───────────────────────────────────────────

    def start(self, room_number, lecture_context=None):
        """
        Authorize against the room's access point, then open a session.
        Raises AuthorizationError or TransportError; nothing changes locally
        unless both succeed. Returns False if a session is already running.
        """
        if self.session.is_running:
            log.warning("Start ignored — session %s already running", self.session.session_id)
            return False

        auth = self._authorizer.is_authorized_for_room(room_number)
        if not auth.authorized:
            raise AuthorizationError(auth)

        lecture = dict(lecture_context or {})
        lecture.setdefault("room", room_number)
        state = self._store.start(self.student_id, lecture)

        now = self._clock.now()
        fresh = AttendanceSession(
            self.student_id,
            session_id=state.session_id,
            start_time=now,
            is_running=True,
            is_paused=False,
            grace_periods_used=0,
            is_validated=True,
            last_server_sync=now,
        )
        with self.guard.hold("start", wait=True):
            self.session = fresh
        self._update("start", wait=True, attended_seconds=state.attended_seconds)
        self.lecture = lecture
        self._validator.reset()
        self._last_sync_at = now
        self._record("session_started", room=room_number, access_point=auth.current_id)
        log.info("Session %s started for %s in room %s",
                 state.session_id, self.student_id, room_number)

        self._start_ticking()
        self._attach_monitor()
        return True

    def pause(self, reason):
        """
        RUNNING → PAUSED. Connectivity reasons use up a grace period; at
        the cap the session is stopped instead. A failed server call
        still pauses locally.
        """
        s = self.session
        if not s.can_pause:
            return False

        wifi = is_connectivity_reason(reason)
        if wifi and s.grace_periods_used >= s.max_grace_periods:
            log.warning("Extreme disconnection abuse (%d grace periods) — stopping",
                        s.grace_periods_used)
            self.stop(REASON_ABUSE)
            return False

        try:
            result = self._store.pause(self.student_id, s.session_id, reason,
                                       s.grace_periods_used)
            if result.get("action") == "stopped":
                log.warning("Server stopped the session on pause")
                self._terminate(REASON_ABUSE)
                return False
        except TransportError as e:
            log.warning("Server pause failed (%s) — pausing locally", e)

        self._stop_ticking()
        changes = {"is_paused": True, "pause_reason": reason}
        if wifi:
            changes["grace_periods_used"] = s.grace_periods_used + 1
        if not self._update("pause", force=True, expect=s, **changes):
            return False
        self._record("session_paused", reason, grace_periods_used=self.session.grace_periods_used)
        log.info("Session paused (%s), grace periods used: %d",
                 reason, self.session.grace_periods_used)
        return True

    def resume(self, reason):
        """PAUSED → RUNNING. Raises TransportError if the server refuses."""
        if not self.session.can_resume:
            return False

        s = self.session
        self._store.resume(self.student_id, s.session_id, reason)
        if not self._update("resume", force=True, expect=s, is_paused=False, pause_reason=None):
            return False
        # Paused time is not attended time; restart the drift baseline
        self._last_sync_at = self._clock.now()
        self._validator.reset()
        self._record("session_resumed", reason)
        log.info("Session resumed (%s)", reason)
        self._start_ticking()
        return True

    def stop(self, reason=REASON_MANUAL):
        """
        RUNNING/PAUSED → STOPPED. Always applied locally, even when the
        server call fails (the failed call is kept in the offline buffer).
        Returns True if the server confirmed.
        """
        if not self.session.is_running:
            return True

        self._cancel_all()
        confirmed = True
        try:
            self._store.stop(self.student_id, self.session.session_id, reason)
        except TransportError as e:
            confirmed = False
            log.error("Server stop failed (%s) — stopped locally", e)
            self._notify("Stop not confirmed",
                         "Your session was stopped on this device but the server "
                         "could not be reached. It will be told when you are back online.")
        self._terminate(reason, cancel=False)
        return confirmed

    def _terminate(self, reason, cancel=True, expect=None):
        if expect is not None and not self._is_current(expect):
            return
        if cancel:
            self._cancel_all()
        if not self._update("stop", force=True, expect=expect, is_running=False, is_paused=False,
                            pause_reason=None, terminated=True, stop_reason=reason):
            return
        self._record("session_stopped", reason, attended_seconds=self.session.attended_seconds)
        clear_snapshot(self._snapshot_path)
        log.info("Session %s stopped (%s) — %ds attended",
                 self.session.session_id, reason, self.session.attended_seconds)

    def teardown(self):
        """App shutdown: cancel everything but leave the server session open."""
        self._cancel_all()
        if self.session.session_id and self.session.is_running:
            save_snapshot(self.session, self._snapshot_path)
        log.info("Session sync torn down")

    # ─── Sync ────────────────────────────────────────────────

    def sync(self):
        """
        Fetch authoritative state, drift-check it, and adopt it.
        Returns True when the server value was applied.
        """
        s = self.session
        if not s.is_running or not s.session_id:
            return False

        prior = s.attended_seconds
        counting = s.can_pause
        try:
            state = self._store.sync(self.student_id, {
                "attendedSeconds": s.attended_seconds,
                "isRunning": s.is_running,
                "isPaused": s.is_paused,
            })
        except TransportError as e:
            log.warning("Sync failed: %s — will retry next tick", e)
            self._update("sync-error", expect=s, is_validated=False, last_server_sync=None)
            return False

        # Stopped or replaced while the call was in flight
        if not self._is_current(s):
            log.info("Discarding sync result for finished session %s", s.session_id)
            return False

        if state.session_id != s.session_id or not (state.is_running or state.is_paused):
            log.warning("Server has no active session %s — ending locally", s.session_id)
            self._terminate("server_ended", expect=s)
            return False

        now = self._clock.now()
        since = now - self._last_sync_at if self._last_sync_at is not None else 0
        try:
            validation = self._validator.ensure_valid(state.attended_seconds, prior, counting, since)
        except SyncValidationError as e:
            validation = e.validation
            self._record("sync_drift", validation.reason, drift=validation.drift,
                         server=state.attended_seconds, prior=prior)
            self._notify("Timer sync issue",
                         "Timer synchronization detected unusual activity. "
                         "Your attended time is taken from the server.")

        changes = {
            "attended_seconds": state.attended_seconds,
            "grace_periods_used": max(s.grace_periods_used, state.grace_periods_used),
            "last_server_sync": now,
            "sync_drift": validation.drift,
            "is_validated": validation.valid,
        }
        server_paused = state.is_paused and not s.is_paused
        if server_paused:
            changes.update(is_paused=True, pause_reason=s.pause_reason or "server")
        if not self._update("server", expect=s, **changes):
            if self._is_current(s):
                self._record("update_dropped", "server")
            return False
        self._last_sync_at = now
        if server_paused:
            self._stop_ticking()
        log.info("Synced: attended=%ds drift=%ds valid=%s",
                 state.attended_seconds, validation.drift, validation.valid)
        return True

    def _on_sync_tick(self):
        if self.session.can_pause:
            self._spawn(self.sync)

    def _on_display_tick(self):
        # Projected from the last good sync, so a missed tick never accumulates
        if self.session.can_pause:
            since = self._clock.now() - self._last_sync_at if self._last_sync_at is not None else 0
            self._update("display", display_seconds=self.session.attended_seconds + int(since))

    def on_foreground(self):
        """Process came back from suspension: sync now, not at the next tick."""
        if self.session.is_running:
            log.info("Back in foreground — forcing sync")
            self._spawn(self.sync)

    # ─── Restore ─────────────────────────────────────────────

    def restore(self):
        """
        Adopt a fresh local snapshot after a restart. It stays unvalidated
        until the sync triggered here confirms it. Returns True if adopted.
        """
        data = load_snapshot(self._clock.now(), self._snapshot_path)
        if not data or not data.get("isRunning") or not data.get("sessionId"):
            return False

        paused = bool(data.get("isPaused"))
        pause_reason = data.get("pauseReason") if paused else None
        if paused and not pause_reason:
            # Unknown cause: let the access point coming back resume it
            pause_reason = REASON_GRACE_EXPIRED
        with self.guard.hold("snapshot", wait=True):
            self.session = AttendanceSession(
                self.student_id,
                session_id=data["sessionId"],
                is_running=True,
                is_paused=paused,
                pause_reason=pause_reason,
                is_validated=False,
            )
        self._update("snapshot", wait=True, attended_seconds=int(data.get("attendedSeconds", 0)))
        self._validator.reset()
        self._last_sync_at = self._clock.now()
        log.info("Restored session %s from snapshot (%ds, unvalidated)",
                 data["sessionId"], self.session.attended_seconds)

        if not self.session.is_paused:
            self._start_ticking()
        self._attach_monitor()
        self._spawn(self.sync)
        return True

    # ─── Connectivity ────────────────────────────────────────

    def _on_connectivity_event(self, event):
        s = self.session
        fields = event.to_dict()
        del fields["type"], fields["timestamp"]
        self._record(event.type, **fields)
        self._spawn(self._store.report_wifi_event, self.student_id, event,
                    self.lecture, s.snapshot())

        if event.type == EV_GRACE_EXPIRED and s.can_pause:
            self._spawn(self.pause, REASON_GRACE_EXPIRED)
        elif event.type == EV_CONNECTED and s.can_resume and is_connectivity_reason(s.pause_reason):
            self._spawn(self._resume_after_reconnect)
        elif event.type == EV_BSSID_CHANGED:
            log.warning("Access point changed during session: %s → %s", event.old_id, event.new_id)

    def _resume_after_reconnect(self):
        self._retry_handle = None
        if not (self.session.can_resume and is_connectivity_reason(self.session.pause_reason)):
            return
        try:
            self.resume(REASON_RECONNECTED)
        except TransportError as e:
            log.warning("Resume after reconnect failed: %s — retrying in %ss",
                        e, self._retry_interval)
            self._notify("Resume failed",
                         "WiFi is back but the server could not be reached. Retrying.")
            self._retry_handle = self._scheduler.call_later(
                self._retry_interval, lambda: self._spawn(self._resume_after_reconnect))

    # ─── Read-only views ─────────────────────────────────────

    @property
    def is_secure(self):
        return self.session.is_validated

    def status(self):
        s = self.session
        status = {
            "phase": s.phase,
            "session_id": s.session_id,
            "attended_seconds": s.attended_seconds,
            "display_seconds": s.display_seconds,
            "pause_reason": s.pause_reason,
            "security": s.security_status(),
        }
        if self._monitor is not None:
            status["connectivity"] = self._monitor.status()
        return status

