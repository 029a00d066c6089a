"""
Session store + classroom directory over HTTP.

Every call raises TransportError on a network error, a non-2xx status,
or a `success: false` body; the session protocol decides per operation
what a failure means. Failed stop and wifi-event calls are also written
to the offline buffer so the server eventually hears about them.
"""

from urllib.parse import quote

import requests

from .config import log
from .constants import API_TIMEOUT_SYNC, API_TIMEOUT_SESSION, API_TIMEOUT_DIRECTORY
from .errors import TransportError
from .state import TimerState
from . import http_client
from . import network


class HttpSessionStore:

    def __init__(self, server_url, clock):
        self._base = server_url.rstrip("/")
        self._clock = clock

    def _client_time(self):
        return int(self._clock.now() * 1000)

    def _request(self, operation, method, path, payload=None, timeout=API_TIMEOUT_SESSION,
                 buffer=False):
        url = f"{self._base}{path}"
        try:
            if method == "GET":
                resp = http_client.http.get(url, timeout=timeout)
            else:
                resp = http_client.http.post(url, json=payload, timeout=timeout)
        except requests.RequestException as e:
            log.warning("%s network error: %s", operation, e)
            if buffer:
                network.buffer_request(method, url, payload)
            raise TransportError(operation, str(e)) from e

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = {}

        if not 200 <= resp.status_code < 300 or not data.get("success", False):
            error = data.get("error") or resp.text[:200]
            log.warning("%s failed: HTTP %d — %s", operation, resp.status_code, error)
            # Server-side 5xx may be transient; 4xx will never succeed on replay
            if buffer and resp.status_code >= 500:
                network.buffer_request(method, url, payload)
            raise TransportError(operation, error, status=resp.status_code)
        return data

    # ─── Session lifecycle ───────────────────────────────────

    def start(self, student_id, lecture_context=None):
        data = self._request("start", "POST", "/api/attendance/start-unified-timer", {
            "studentId": student_id,
            "lectureInfo": lecture_context or {},
            "clientTime": self._client_time(),
            "deviceInfo": {"platform": "desktop", "timestamp": self._client_time()},
        })
        state = TimerState.from_api(data.get("timerState") or {})
        state.session_id = data.get("sessionId") or state.session_id
        log.info("Session started on server: %s", state.session_id)
        return state

    def stop(self, student_id, session_id, reason):
        data = self._request("stop", "POST", "/api/attendance/stop-unified-timer", {
            "studentId": student_id,
            "sessionId": session_id,
            "reason": reason,
            "clientTime": self._client_time(),
        }, buffer=True)
        return {"ok": True, "final_attended_seconds": data.get("finalAttendedSeconds")}

    def pause(self, student_id, session_id, reason, grace_periods_used):
        data = self._request("pause", "POST", "/api/attendance/pause-unified-timer", {
            "studentId": student_id,
            "sessionId": session_id,
            "reason": reason,
            "gracePeriodsUsed": grace_periods_used,
            "clientTime": self._client_time(),
        })
        return {
            "ok": True,
            "action": data.get("action", "paused"),
            "grace_periods_used": data.get("gracePeriodsUsed"),
        }

    def resume(self, student_id, session_id, reason):
        data = self._request("resume", "POST", "/api/attendance/resume-unified-timer", {
            "studentId": student_id,
            "sessionId": session_id,
            "reason": reason,
            "clientTime": self._client_time(),
        })
        return {"ok": True, "total_paused_seconds": data.get("totalPausedTime", 0)}

    def sync(self, student_id, client_state):
        data = self._request("sync", "POST", "/api/attendance/get-timer-state", {
            "studentId": student_id,
            "clientTime": self._client_time(),
            "currentState": client_state,
        }, timeout=API_TIMEOUT_SYNC)
        return TimerState.from_api(data.get("timerState") or {})

    # ─── Reporting ───────────────────────────────────────────

    def report_wifi_event(self, student_id, event, lecture=None, timer_state=None):
        """Best-effort; failures are buffered, never raised."""
        payload = {
            "timestamp": int(event.timestamp * 1000),
            "type": event.type,
            "bssid": event.access_point_id or event.new_id,
            "lecture": lecture,
            "studentId": student_id,
            "timerState": timer_state,
            "gracePeriod": event.in_grace_period,
        }
        try:
            self._request("wifi-event", "POST", "/api/attendance/wifi-event", payload,
                          timeout=API_TIMEOUT_SYNC, buffer=True)
            return True
        except TransportError:
            return False

    # ─── Directory ───────────────────────────────────────────

    def list_authorized_networks(self):
        data = self._request("classrooms", "GET", "/api/classrooms", timeout=API_TIMEOUT_DIRECTORY)
        return data.get("classrooms") or []

    def fetch_timetable(self, semester, branch):
        path = f"/api/timetable/{quote(str(semester))}/{quote(str(branch), safe='')}"
        data = self._request("timetable", "GET", path, timeout=API_TIMEOUT_DIRECTORY)
        return data.get("timetable") or {}
