"""
Clock sources.

Everything time-dependent takes a clock with two methods:
  now()        → server-trusted epoch seconds (for timestamps and drift)
  monotonic()  → seconds for measuring intervals on this machine

SystemClock trusts the device. ServerClock corrects the device clock by
the offset reported by the server, so changing the device time cannot
stretch or shrink the measured elapsed time. ManualClock is advanced
explicitly and is what the virtual scheduler drives.
"""

import time

import requests

from .config import log
from .constants import CLOCK_MANIPULATION_SEC
from . import http_client


class SystemClock:

    def now(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()


class ServerClock:
    """
    Device clock + offset measured against GET /api/time.
    Until sync() succeeds the offset is 0 (plain device time).
    """

    def __init__(self, server_url, timeout=10):
        self._server_url = server_url
        self._timeout = timeout
        self.offset = 0.0
        self.synced = False

    def sync(self):
        """Measure the server offset. Returns True on success."""
        url = f"{self._server_url}/api/time"
        try:
            sent = time.time()
            resp = http_client.http.get(url, timeout=self._timeout)
            received = time.time()
            resp.raise_for_status()
            server_ms = resp.json()["serverTime"]
        except (requests.RequestException, KeyError, ValueError) as e:
            log.warning("Server time sync failed: %s — using device clock", e)
            return False

        # Assume the server stamped the response halfway through the round trip
        midpoint = (sent + received) / 2
        self.offset = server_ms / 1000.0 - midpoint
        self.synced = True
        log.info("Server time synced (offset=%.3fs, rtt=%.0fms)",
                 self.offset, (received - sent) * 1000)
        if self.is_device_time_manipulated():
            log.warning("Device clock is off by %.0fs — set time to automatic", self.offset)
        return True

    def is_device_time_manipulated(self) -> bool:
        return self.synced and abs(self.offset) > CLOCK_MANIPULATION_SEC

    def now(self) -> float:
        return time.time() + self.offset

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock:
    """Clock that only moves when advance() is called."""

    def __init__(self, start=1_700_000_000.0):
        self._now = float(start)
        self._mono = 0.0

    def now(self) -> float:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds):
        self._now += seconds
        self._mono += seconds

    def jump_wall(self, seconds):
        """Move only the wall clock (simulates the user changing device time)."""
        self._now += seconds
