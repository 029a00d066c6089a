"""
Timer scheduling.

The agent never sleeps in a loop; every recurring job is a one-shot
callback that re-arms itself (the root.after() pattern). Two backends:

  TkScheduler      → wraps root.after / root.after_cancel (production)
  VirtualScheduler → runs callbacks against a ManualClock (simulation)

PeriodicTask is the re-arming wrapper used for the sync, display and
probe jobs. Cancelling it is synchronous: once cancel() returns the
callback will not run again.
"""

import heapq
import queue
import threading
import itertools

from .config import log


class TkScheduler:
    """
    Schedules callbacks on the Tk main loop.

    Tk is not thread-safe, so calls from worker threads are queued and
    applied by _pump() on the main thread (every 100ms). Handles are our
    own integers, valid from either thread.
    """

    def __init__(self, root, pump_ms=100):
        self._root = root
        self._pump_ms = pump_ms
        self._ops = queue.Queue()
        self._ids = itertools.count(1)
        self._tk_ids = {}
        self._cancelled = set()
        self._main_thread = threading.get_ident()
        self._root.after(pump_ms, self._pump)

    def _on_main(self):
        return threading.get_ident() == self._main_thread

    def call_later(self, delay_sec, callback):
        handle = next(self._ids)
        if self._on_main():
            self._arm(handle, delay_sec, callback)
        else:
            self._ops.put(("arm", handle, delay_sec, callback))
        return handle

    def cancel(self, handle):
        if self._on_main():
            self._disarm(handle)
        else:
            self._ops.put(("cancel", handle, None, None))

    def _arm(self, handle, delay_sec, callback):
        if handle in self._cancelled:
            self._cancelled.discard(handle)
            return
        self._tk_ids[handle] = self._root.after(
            int(delay_sec * 1000), lambda: self._run(handle, callback))

    def _disarm(self, handle):
        tk_id = self._tk_ids.pop(handle, None)
        if tk_id is None:
            # Not armed yet (still queued); skip it when it arrives
            self._cancelled.add(handle)
            return
        try:
            self._root.after_cancel(tk_id)
        except Exception:
            pass

    def _run(self, handle, callback):
        self._tk_ids.pop(handle, None)
        callback()

    def _pump(self):
        try:
            while True:
                op, handle, delay_sec, callback = self._ops.get_nowait()
                if op == "arm":
                    self._arm(handle, delay_sec, callback)
                else:
                    self._disarm(handle)
        except queue.Empty:
            pass
        self._root.after(self._pump_ms, self._pump)


class VirtualScheduler:
    """
    Deterministic scheduler driven by a ManualClock.
    advance(n) moves the clock forward n seconds, firing every callback
    that comes due on the way, in due-time order.
    """

    def __init__(self, clock):
        self._clock = clock
        self._queue = []
        self._seq = itertools.count()
        self._cancelled = set()

    def call_later(self, delay_sec, callback):
        handle = next(self._seq)
        due = self._clock.monotonic() + delay_sec
        heapq.heappush(self._queue, (due, handle, callback))
        return handle

    def cancel(self, handle):
        self._cancelled.add(handle)

    @property
    def pending(self):
        """Number of scheduled, not-cancelled callbacks."""
        return sum(1 for _, h, _ in self._queue if h not in self._cancelled)

    def advance(self, seconds):
        target = self._clock.monotonic() + seconds
        while self._queue and self._queue[0][0] <= target:
            due, handle, callback = heapq.heappop(self._queue)
            if handle in self._cancelled:
                self._cancelled.discard(handle)
                continue
            step = due - self._clock.monotonic()
            if step > 0:
                self._clock.advance(step)
            callback()
        remaining = target - self._clock.monotonic()
        if remaining > 0:
            self._clock.advance(remaining)


class PeriodicTask:
    """Runs callback every interval seconds until cancelled."""

    def __init__(self, scheduler, interval_sec, callback, name):
        self._scheduler = scheduler
        self.interval = interval_sec
        self._callback = callback
        self.name = name
        self._handle = None
        self.active = False

    def start(self):
        if self.active:
            return
        self.active = True
        self._handle = self._scheduler.call_later(self.interval, self._fire)

    def cancel(self):
        self.active = False
        if self._handle is not None:
            self._scheduler.cancel(self._handle)
            self._handle = None

    def _fire(self):
        self._handle = None
        if not self.active:
            return
        try:
            self._callback()
        except Exception as e:
            log.error("%s task error: %s", self.name, e, exc_info=True)
        # The callback may have cancelled us (e.g. sync → stop)
        if self.active:
            self._handle = self._scheduler.call_later(self.interval, self._fire)
