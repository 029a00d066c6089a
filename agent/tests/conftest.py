import os
import tempfile

# Data directory must exist before presence_core.config is imported
os.environ.setdefault("PRESENCE_HOME", tempfile.mkdtemp(prefix="presence-test-"))

import pytest

from presence_core.authorization import WifiAuthorizer
from presence_core.clock import ManualClock
from presence_core.connectivity import ConnectivityMonitor
from presence_core.platform_wifi import AccessPointReader, ProbeResult, NO_ID
from presence_core.scheduler import VirtualScheduler
from presence_core.session import SessionSync
from presence_core.store import InMemorySessionStore

ROOM_AP = "aa:bb:cc:dd:ee:01"
OTHER_AP = "aa:bb:cc:dd:ee:02"

CLASSROOMS = [
    {"roomNumber": "R101", "wifiBSSID": "AA:BB:CC:DD:EE:01", "building": "Block A", "isActive": True},
    {"roomNumber": "R102", "wifiBSSID": OTHER_AP, "isActive": True},
    {"roomNumber": "R103", "wifiBSSID": "aa:bb:cc:dd:ee:03", "isActive": False},
]


class Radio:
    """Stand-in for the platform probe: attached to `bssid`, or nothing."""

    def __init__(self, bssid=ROOM_AP):
        self.bssid = bssid
        self.probes = 0

    def __call__(self):
        self.probes += 1
        if self.bssid:
            return ProbeResult.ok(self.bssid)
        return ProbeResult.fail(NO_ID, "not associated")


def inline(fn, *args):
    fn(*args)


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def scheduler(clock):
    return VirtualScheduler(clock)


@pytest.fixture()
def store(clock):
    return InMemorySessionStore(clock, classrooms=CLASSROOMS)


@pytest.fixture()
def radio():
    return Radio()


@pytest.fixture()
def reader(radio):
    return AccessPointReader(probe=radio, production=True)


@pytest.fixture()
def authorizer(reader, store, clock, tmp_path):
    auth = WifiAuthorizer(reader, cache_file=tmp_path / "classrooms.json", clock=clock)
    auth.load_directory(store)
    return auth


@pytest.fixture()
def monitor(reader, scheduler, clock):
    return ConnectivityMonitor(reader, scheduler, clock)


@pytest.fixture()
def notes():
    return []


@pytest.fixture()
def make_sync(store, clock, scheduler, authorizer, reader, notes, tmp_path):
    def factory(session_store=None, spawn=inline, monitor=None):
        return SessionSync(
            session_store or store, "S1", clock, scheduler, authorizer,
            monitor=monitor or ConnectivityMonitor(reader, scheduler, clock),
            spawn=spawn,
            notify=lambda title, message: notes.append(title),
            snapshot_path=tmp_path / "session.json",
        )
    return factory


@pytest.fixture()
def sync(make_sync):
    return make_sync()
