"""
AgentApp — the main Tkinter application.

The session timers, the connectivity probe, alert delivery and
foreground detection all run inside Tkinter's event loop via
root.after() (through TkScheduler). Zero busy-wait loops.

Background threads: ONLY short-lived API call threads and the startup
bootstrap. None of them touch Tkinter directly; alerts are queued and
shown by _drain_alerts() on the main thread.
"""

import queue
import threading
import time
import tkinter as tk

from .constants import (
    AGENT_VERSION, SYNC_INTERVAL_SEC, PROBE_INTERVAL_SEC, GRACE_PERIOD_SEC,
    SUSPEND_GAP_FACTOR, REASON_MANUAL,
)
from .config import log, safe_print, is_production
from .clock import ServerClock
from .api import HttpSessionStore
from .platform_wifi import AccessPointReader
from .authorization import WifiAuthorizer, describe_failure
from .connectivity import ConnectivityMonitor, EV_CONNECTED
from .errors import AuthorizationError, TransportError
from .scheduler import TkScheduler
from .session import SessionSync
from .popup import AlertDialog, StatusWindow
from .platform_win import is_system_locked
from . import network

_TICK_SEC = 3


def _in_thread(fn, *args):
    threading.Thread(target=fn, args=args, daemon=True).start()


class AgentApp:
    """
    Owns the Tk main loop. Schedules via root.after():
      _drain_alerts()  — shows queued alert dialogs           (every 200ms)
      _refresh()       — repaints the status window           (every 1s)
      _tick()          — lock / suspend → forced sync          (every 3s)
    plus the sync, display and probe tasks owned by SessionSync.
    """

    def __init__(self, config):
        self._config = config
        self._clock = ServerClock(config["serverUrl"])
        self._store = HttpSessionStore(config["serverUrl"], self._clock)
        self._reader = AccessPointReader(production=is_production(config))
        self._authorizer = WifiAuthorizer(self._reader, clock=self._clock)
        self._alerts = queue.Queue()
        self._root = None
        self._status = None
        self._dialogs = None
        self.monitor = None
        self.sync = None
        self._room = config.get("roomNumber")
        self._last_tick = None
        self._was_locked = False
        self._starting = False

    def run(self):
        """Start the agent. Blocks on Tk mainloop. Call from main thread."""
        self._root = tk.Tk()
        scheduler = TkScheduler(self._root)

        self.monitor = ConnectivityMonitor(
            self._reader, scheduler, self._clock,
            probe_interval=self._config.get("probeIntervalSec", PROBE_INTERVAL_SEC),
            grace_sec=self._config.get("gracePeriodSec", GRACE_PERIOD_SEC),
        )
        self.monitor.events.subscribe(self._on_connectivity_event)
        self.sync = SessionSync(
            self._store, self._config["studentId"], self._clock, scheduler,
            self._authorizer, monitor=self.monitor, notify=self.alert,
            sync_interval=self._config.get("syncIntervalSec", SYNC_INTERVAL_SEC),
        )

        self._status = StatusWindow(self._root, self._room_label(),
                                    self._on_start_clicked, self._on_stop_clicked)
        self._dialogs = AlertDialog(self._root)
        self._root.protocol("WM_DELETE_WINDOW", self.stop)

        self._root.after(200, self._drain_alerts)
        self._root.after(1000, self._refresh)
        self._last_tick = time.monotonic()
        self._root.after(_TICK_SEC * 1000, self._tick)
        _in_thread(self._bootstrap)

        log.info("v%s started (student=%s, room=%s, production=%s)",
                 AGENT_VERSION, self._config["studentId"], self._room or "from timetable",
                 is_production(self._config))
        safe_print("Agent running.\n")

        try:
            self._root.mainloop()
        finally:
            self.sync.teardown()
            self._dialogs.close_all()
            log.info("AgentApp shut down.")

    def stop(self):
        try:
            self._root.quit()
        except Exception:
            pass

    def _room_label(self):
        return f"Room {self._room}" if self._room else "Room: waiting for timetable"

    # ─── Alerts (any thread → main thread) ───────────────────

    def alert(self, title, message, level="warning", action=None):
        self._alerts.put((title, message, level, action))

    def _drain_alerts(self):
        try:
            while True:
                title, message, level, action = self._alerts.get_nowait()
                self._dialogs.show(title, message, level, action)
        except queue.Empty:
            pass
        except Exception as e:
            log.error("_drain_alerts error: %s", e)
        self._root.after(200, self._drain_alerts)

    # ─── Startup (worker thread) ─────────────────────────────

    def _bootstrap(self):
        if self._clock.sync() and self._clock.is_device_time_manipulated():
            self.alert("Device time incorrect",
                       "Your device clock does not match the server. Set date and time "
                       "to automatic; attendance is measured with server time.")

        self._authorizer.load_directory(self._store, student=self._config)
        if not self._room:
            current = self._authorizer.current_lecture()
            if current:
                self._room = current.room_number
                log.info("Using current lecture room %s", self._room)

        if network.has_buffered_requests():
            log.info("Flushing offline buffer from previous session...")
            try:
                network.flush_buffer()
            except Exception as e:
                log.warning("Buffer flush failed: %s", e)

        if self.sync.restore():
            return
        self._start_session()

    # ─── Session control ─────────────────────────────────────

    def _start_session(self):
        if self._starting:
            return
        if not self._room:
            self.alert("No classroom",
                       "No room is configured and no lecture is scheduled right now.")
            return

        self._starting = True
        lecture = {
            "room": self._room,
            "semester": self._config.get("semester"),
            "branch": self._config.get("branch"),
        }
        try:
            self.sync.start(self._room, lecture)
        except AuthorizationError as e:
            self.alert("WiFi Validation Failed", describe_failure(e.result, self._room),
                       level="error", action=lambda: _in_thread(self._start_session))
        except TransportError as e:
            self.alert("Could not start",
                       f"The attendance server could not start your session.\n\n{e}",
                       level="error", action=lambda: _in_thread(self._start_session))
        finally:
            self._starting = False

    def _on_start_clicked(self):
        _in_thread(self._start_session)

    def _on_stop_clicked(self):
        _in_thread(self.sync.stop, REASON_MANUAL)

    def _on_connectivity_event(self, event):
        # Called on whichever thread ran the probe
        if event.type == EV_CONNECTED and network.has_buffered_requests():
            _in_thread(network.flush_buffer)

    # ─── Main-loop jobs ──────────────────────────────────────

    def _refresh(self):
        try:
            self._status.set_room(self._room_label())
            self._status.refresh(self.sync.status())
        except Exception as e:
            log.error("_refresh error: %s", e)
        self._root.after(1000, self._refresh)

    def _tick(self):
        try:
            now = time.monotonic()
            gap = now - self._last_tick
            self._last_tick = now
            locked = is_system_locked()
            unlocked = self._was_locked and not locked
            self._was_locked = locked

            if unlocked or gap > _TICK_SEC * SUSPEND_GAP_FACTOR:
                log.info("Foreground detected (unlocked=%s, gap=%.0fs)", unlocked, gap)
                self.sync.on_foreground()
        except Exception as e:
            log.error("_tick error: %s", e)
        self._root.after(_TICK_SEC * 1000, self._tick)
