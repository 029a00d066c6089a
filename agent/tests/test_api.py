import json

import pytest
import requests

from presence_core import api, http_client
from presence_core.api import HttpSessionStore
from presence_core.connectivity import ConnectivityEvent
from presence_core.errors import TransportError


class FakeResponse:

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.text = json.dumps(body) if body is not None else "<html>Bad Gateway</html>"

    def json(self):
        if self._body is None:
            raise ValueError("not json")
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeHttp:

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self):
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    def get(self, url, timeout=None):
        self.calls.append(("GET", url, None))
        return self._next()

    def post(self, url, json=None, timeout=None):
        self.calls.append(("POST", url, json))
        return self._next()


@pytest.fixture()
def buffered(monkeypatch):
    saved = []
    monkeypatch.setattr(api.network, "buffer_request",
                        lambda method, url, payload: saved.append((method, url, payload)))
    return saved


@pytest.fixture()
def fake_http(monkeypatch):
    def install(*responses):
        fake = FakeHttp(*responses)
        monkeypatch.setattr(http_client, "http", fake)
        return fake
    return install


@pytest.fixture()
def remote(clock):
    return HttpSessionStore("https://attendance.example.edu/", clock)


def test_start_posts_lecture_and_returns_session(remote, fake_http, clock):
    fake = fake_http(FakeResponse(200, {
        "success": True,
        "sessionId": "abc",
        "timerState": {"attendedSeconds": 0, "isRunning": True, "isPaused": False},
    }))
    state = remote.start("S1", {"room": "R101"})
    assert state.session_id == "abc"
    assert state.is_running

    method, url, payload = fake.calls[0]
    assert url == "https://attendance.example.edu/api/attendance/start-unified-timer"
    assert payload["studentId"] == "S1"
    assert payload["lectureInfo"] == {"room": "R101"}
    assert payload["clientTime"] == int(clock.now() * 1000)


def test_sync_parses_timer_state(remote, fake_http):
    fake_http(FakeResponse(200, {"success": True, "timerState": {
        "attendedSeconds": 61, "isRunning": True, "isPaused": True,
        "gracePeriodsUsed": 2, "sessionId": "abc",
    }}))
    state = remote.sync("S1", {"attendedSeconds": 0})
    assert state.attended_seconds == 61
    assert state.is_paused
    assert state.grace_periods_used == 2


def test_success_false_is_a_transport_error(remote, fake_http, buffered):
    fake_http(FakeResponse(200, {"success": False, "error": "Timer already running"}))
    with pytest.raises(TransportError) as exc:
        remote.start("S1")
    assert "Timer already running" in str(exc.value)
    assert buffered == []


def test_network_error_on_start_is_not_buffered(remote, fake_http, buffered):
    fake_http(requests.ConnectionError("down"))
    with pytest.raises(TransportError):
        remote.start("S1")
    assert buffered == []


def test_failed_stop_is_buffered(remote, fake_http, buffered):
    fake_http(requests.ConnectionError("down"))
    with pytest.raises(TransportError):
        remote.stop("S1", "abc", "manual")
    assert len(buffered) == 1
    assert buffered[0][1].endswith("/api/attendance/stop-unified-timer")
    assert buffered[0][2]["sessionId"] == "abc"


def test_server_error_stop_is_buffered_but_client_error_is_not(remote, fake_http, buffered):
    fake_http(FakeResponse(502), FakeResponse(404, {"success": False, "error": "Session not found"}))
    with pytest.raises(TransportError) as exc:
        remote.stop("S1", "abc", "manual")
    assert exc.value.status == 502
    with pytest.raises(TransportError) as exc:
        remote.stop("S1", "abc", "manual")
    assert exc.value.status == 404
    assert len(buffered) == 1


def test_pause_reports_server_action(remote, fake_http):
    fake_http(FakeResponse(200, {"success": True, "action": "stopped"}))
    assert remote.pause("S1", "abc", "wifi_grace_expired", 999)["action"] == "stopped"


def test_wifi_event_report_never_raises(remote, fake_http, buffered, clock):
    fake_http(requests.Timeout("slow"))
    event = ConnectivityEvent("disconnected", clock.now(), grace_time_remaining=120)
    assert remote.report_wifi_event("S1", event) is False
    payload = buffered[0][2]
    assert payload["type"] == "disconnected"
    assert payload["gracePeriod"] is True


def test_directory_endpoints(remote, fake_http):
    fake = fake_http(
        FakeResponse(200, {"success": True, "classrooms": [{"roomNumber": "R101"}]}),
        FakeResponse(200, {"success": True, "timetable": {"periods": []}}),
    )
    assert remote.list_authorized_networks() == [{"roomNumber": "R101"}]
    assert remote.fetch_timetable(5, "CS/AI") == {"periods": []}
    assert fake.calls[1][1].endswith("/api/timetable/5/CS%2FAI")
