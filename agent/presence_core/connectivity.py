"""
Connectivity monitor with a grace period.

Re-probes the access point every PROBE_INTERVAL_SEC. Losing the access
point does not count as leaving the room straight away: a GRACE timer
runs first, and only if it expires without the access point coming back
is `grace_expired` published. Events go out on `monitor.events`.

  DISCONNECTED ──id──▶ CONNECTED ──none──▶ GRACE ──timer──▶ GRACE_EXPIRED
                          ▲  │ other id          │ id              │ id
                          │  └─ bssid_changed    ▼                 │
                          └──────────────────────┴─────────────────┘
"""

from dataclasses import dataclass, asdict
from typing import Optional

from .config import log
from .constants import PROBE_INTERVAL_SEC, GRACE_PERIOD_SEC
from .events import EventChannel
from .scheduler import PeriodicTask

DISCONNECTED = "DISCONNECTED"
CONNECTED = "CONNECTED"
GRACE = "GRACE"
GRACE_EXPIRED = "GRACE_EXPIRED"

EV_CONNECTED = "connected"
EV_DISCONNECTED = "disconnected"
EV_GRACE_EXPIRED = "grace_expired"
EV_BSSID_CHANGED = "bssid_changed"


@dataclass
class ConnectivityEvent:
    type: str
    timestamp: float
    access_point_id: Optional[str] = None
    old_id: Optional[str] = None
    new_id: Optional[str] = None
    grace_time_remaining: Optional[int] = None

    @property
    def in_grace_period(self):
        return self.type == EV_DISCONNECTED

    def to_dict(self):
        return {k: v for k, v in asdict(self).items() if v is not None}


class ConnectivityMonitor:

    def __init__(self, reader, scheduler, clock,
                 probe_interval=PROBE_INTERVAL_SEC, grace_sec=GRACE_PERIOD_SEC):
        self._reader = reader
        self._scheduler = scheduler
        self._clock = clock
        self._grace_sec = grace_sec
        self._probe_task = PeriodicTask(scheduler, probe_interval, self.check, "connectivity-probe")
        self._grace_handle = None
        self.state = DISCONNECTED
        self.current_id = None
        self.events = EventChannel("connectivity")

    @property
    def running(self):
        return self._probe_task.active

    @property
    def in_grace_period(self):
        return self.state == GRACE

    def start(self):
        """Begin polling. Runs one probe immediately."""
        if self.running:
            return
        self._probe_task.start()
        log.info("Connectivity monitor started (probe=%ss, grace=%ss)",
                 self._probe_task.interval, self._grace_sec)
        self.check()

    def stop(self):
        """Cancel the probe task and any running grace timer, forget the link."""
        self._probe_task.cancel()
        self._cancel_grace()
        self.state = DISCONNECTED
        self.current_id = None
        log.info("Connectivity monitor stopped")

    def status(self):
        return {
            "state": self.state,
            "current_id": self.current_id,
            "in_grace_period": self.in_grace_period,
        }

    # ─── Probe ───────────────────────────────────────────────

    def check(self):
        new_id = self._reader.current_id()
        old_id = self.current_id

        if new_id is None:
            if self.state == CONNECTED:
                self._enter_grace(old_id)
            return

        self.current_id = new_id
        if self.state == CONNECTED:
            if new_id != old_id:
                log.info("BSSID changed: %s → %s", old_id, new_id)
                self._publish(EV_BSSID_CHANGED, old_id=old_id, new_id=new_id)
            return

        if self.state == GRACE:
            log.info("Access point back after disconnect — grace period cancelled")
        self._cancel_grace()
        self.state = CONNECTED
        self._publish(EV_CONNECTED, access_point_id=new_id)

    # ─── Grace timer ─────────────────────────────────────────

    def _enter_grace(self, lost_id):
        log.info("Access point %s lost — starting %ss grace period", lost_id, self._grace_sec)
        self.state = GRACE
        self._grace_handle = self._scheduler.call_later(self._grace_sec, self._on_grace_expired)
        self._publish(EV_DISCONNECTED, grace_time_remaining=self._grace_sec)

    def _on_grace_expired(self):
        self._grace_handle = None
        if self.state != GRACE:
            return
        log.warning("Grace period expired — access point still missing")
        self.state = GRACE_EXPIRED
        self._publish(EV_GRACE_EXPIRED)

    def _cancel_grace(self):
        if self._grace_handle is not None:
            self._scheduler.cancel(self._grace_handle)
            self._grace_handle = None

    def _publish(self, event_type, **fields):
        self.events.publish(ConnectivityEvent(event_type, self._clock.now(), **fields))
