import pytest

from presence_core.state import (
    AttendanceSession, TimerState, format_time, save_snapshot, load_snapshot,
    IDLE, RUNNING, PAUSED, STOPPED,
)


@pytest.mark.parametrize("seconds, text", [
    (0, "00:00:00"),
    (59, "00:00:59"),
    (3725, "01:02:05"),
    (-5, "00:00:00"),
])
def test_format_time(seconds, text):
    assert format_time(seconds) == text


def test_phases_and_predicates():
    s = AttendanceSession("S1")
    assert s.phase == IDLE and s.can_start and not s.can_stop

    s.is_running = True
    assert s.phase == RUNNING and s.can_pause and not s.can_resume

    s.is_paused = True
    assert s.phase == PAUSED and s.can_resume and s.can_stop

    s.is_running = s.is_paused = False
    s.terminated = True
    assert s.phase == STOPPED and s.can_start


def test_security_status_defaults():
    assert AttendanceSession("S1").security_status() == {
        "is_validated": False,
        "last_sync": None,
        "drift": 0,
        "grace_periods_used": 0,
        "max_grace_periods": 999,
    }


def test_record_keeps_payload():
    s = AttendanceSession("S1")
    s.record("sync_drift", 100.0, "excessive_drift", drift=140)
    event = s.security_events[0]
    assert (event.type, event.reason, event.payload) == ("sync_drift", "excessive_drift", {"drift": 140})


def test_snapshot_round_trip_and_expiry(tmp_path):
    path = tmp_path / "session.json"
    s = AttendanceSession("S1", session_id="abc", attended_seconds=120,
                          is_running=True, last_update=1000.0)
    save_snapshot(s, path)

    data = load_snapshot(1000.0 + 3599, path)
    assert data["sessionId"] == "abc"
    assert data["attendedSeconds"] == 120

    assert load_snapshot(1000.0 + 3600, path) is None
    assert not path.exists()


def test_snapshot_needs_session_id(tmp_path):
    path = tmp_path / "session.json"
    save_snapshot(AttendanceSession("S1"), path)
    assert not path.exists()


def test_unreadable_snapshot(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{broken")
    assert load_snapshot(0, path) is None


def test_timer_state_from_api_defaults():
    state = TimerState.from_api({"attendedSeconds": None, "isRunning": True})
    assert state.attended_seconds == 0
    assert state.is_running
    assert state.to_api()["gracePeriodsUsed"] == 0


def test_snapshot_keeps_pause_reason():
    s = AttendanceSession("S1", session_id="abc", is_running=True, is_paused=True,
                          pause_reason="wifi_grace_expired")
    assert s.snapshot()["pauseReason"] == "wifi_grace_expired"
