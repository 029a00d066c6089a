"""
Small publish/subscribe channel.

subscribe() returns a Subscription handle; calling unsubscribe() on it
(or using it as a context manager) detaches exactly that subscriber.
A failing subscriber is logged and does not stop delivery to the rest.
"""

import threading

from .config import log


class Subscription:

    def __init__(self, channel, callback):
        self._channel = channel
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._channel._remove(self)
            self.active = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.unsubscribe()


class EventChannel:

    def __init__(self, name):
        self.name = name
        self._subs = []
        self._lock = threading.Lock()

    def subscribe(self, callback) -> Subscription:
        sub = Subscription(self, callback)
        with self._lock:
            self._subs.append(sub)
        return sub

    def _remove(self, sub):
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def clear(self):
        with self._lock:
            subs, self._subs = self._subs, []
        for sub in subs:
            sub.active = False

    def __len__(self):
        return len(self._subs)

    def publish(self, event):
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            try:
                sub.callback(event)
            except Exception as e:
                log.error("%s subscriber error: %s", self.name, e, exc_info=True)
