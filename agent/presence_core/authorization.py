"""
WiFi authorization — is this device in the right classroom?

The classroom directory maps room numbers to the BSSID of the access
point installed in that room. It is fetched from the server, cached to
disk, and reloaded from the cache when the server cannot be reached.
"""

import json
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Optional

from .config import log, DIRECTORY_CACHE_FILE
from .errors import WifiPermissionError, ConnectivityError

AUTHORIZED = "authorized"
NO_WIFI = "no_wifi"
WRONG_BSSID = "wrong_bssid"
ROOM_NOT_CONFIGURED = "room_not_configured"
ERROR = "error"

_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


@dataclass
class ClassroomNetwork:
    room_number: str
    authorized_access_point_id: str
    building: str = "Main Building"
    capacity: int = 60
    is_current_lecture: bool = False

    @classmethod
    def from_api(cls, row):
        """Build from a /api/classrooms row. Returns None for unusable rows."""
        bssid = row.get("wifiBSSID") or row.get("authorizedAccessPointId")
        if not bssid or not row.get("isActive", True):
            return None
        return cls(
            room_number=str(row["roomNumber"]),
            authorized_access_point_id=bssid.lower(),
            building=row.get("building") or "Main Building",
            capacity=row.get("capacity") or 60,
        )


@dataclass
class AuthorizationResult:
    authorized: bool
    reason: str
    current_id: Optional[str] = None
    expected_id: Optional[str] = None
    room: Optional[ClassroomNetwork] = None
    error_code: Optional[str] = None
    error: str = field(default="", repr=False)


def current_lecture_room(timetable, now=None):
    """
    Room of the timetable period running at `now`, or None.

    timetable = {"periods": [{"startTime": "09:00", "endTime": "09:50"}, ...],
                 "schedule": {"monday": [{"room": "R101", "isBreak": False}, ...]}}
    schedule[day][i] is taught during periods[i].
    """
    now = now or datetime.now()
    try:
        day_schedule = (timetable.get("schedule") or {}).get(_WEEKDAYS[now.weekday()])
        periods = timetable.get("periods")
        if not day_schedule or not periods:
            return None

        minute = now.hour * 60 + now.minute
        for slot, period in zip(day_schedule, periods):
            if slot.get("isBreak"):
                continue
            sh, sm = map(int, period["startTime"].split(":"))
            eh, em = map(int, period["endTime"].split(":"))
            if sh * 60 + sm <= minute <= eh * 60 + em:
                return slot.get("room")
    except (KeyError, ValueError, AttributeError) as e:
        log.warning("Could not resolve current lecture room: %s", e)
    return None


class WifiAuthorizer:
    """
    load_directory()          → refresh room → BSSID map (never raises)
    is_authorized_for_room()  → AuthorizationResult for one room
    """

    def __init__(self, reader, cache_file=DIRECTORY_CACHE_FILE, clock=None):
        self._reader = reader
        self._cache_file = cache_file
        self._clock = clock
        self.networks = {}
        self.consecutive_failures = 0

    # ─── Directory ───────────────────────────────────────────

    def load_directory(self, source, student=None):
        """
        Fetch the directory from `source` (anything with
        list_authorized_networks()), mark the current lecture room when
        student semester/branch are known, and cache it.
        Any failure falls back to the previously cached directory.
        Returns the number of rooms loaded.
        """
        try:
            rows = source.list_authorized_networks()
            networks = {}
            for row in rows:
                net = ClassroomNetwork.from_api(row)
                if net:
                    networks[net.room_number] = net

            if student and student.get("semester") and student.get("branch"):
                self._mark_current_lecture(source, student, networks)

            self.networks = networks
            self._save_cache()
            log.info("Loaded %d authorized classroom networks", len(networks))
            for net in networks.values():
                log.info("  Room %s: %s (%s)%s", net.room_number,
                         net.authorized_access_point_id, net.building,
                         " [current lecture]" if net.is_current_lecture else "")
        except Exception as e:
            log.warning("Directory fetch failed: %s — using cached classrooms", e)
            if not self.networks:
                self.load_cached()
        return len(self.networks)

    def _mark_current_lecture(self, source, student, networks):
        try:
            timetable = source.fetch_timetable(student["semester"], student["branch"])
        except Exception as e:
            log.warning("Could not fetch timetable for room matching: %s", e)
            return
        now = datetime.fromtimestamp(self._clock.now()) if self._clock else None
        room = current_lecture_room(timetable, now)
        if room and room in networks:
            networks[room].is_current_lecture = True
            log.info("Current lecture room: %s", room)

    def current_lecture(self):
        for net in self.networks.values():
            if net.is_current_lecture:
                return net
        return None

    def load_cached(self):
        """Load the on-disk directory cache. Returns True if anything loaded."""
        try:
            if not self._cache_file.exists():
                return False
            rows = json.loads(self._cache_file.read_text(encoding="utf-8"))
            self.networks = {r["room_number"]: ClassroomNetwork(**r) for r in rows}
            log.info("Loaded %d cached classroom networks", len(self.networks))
            return True
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("Directory cache unreadable: %s", e)
            return False

    def _save_cache(self):
        try:
            rows = [asdict(n) for n in self.networks.values()]
            self._cache_file.write_text(json.dumps(rows, indent=2), encoding="utf-8")
        except OSError as e:
            log.warning("Failed to cache directory: %s", e)

    # ─── Authorization ───────────────────────────────────────

    def is_authorized_for_room(self, room_number) -> AuthorizationResult:
        result = self._check(room_number)
        if result.authorized:
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1
        log.info("Authorization for room %s: %s (current=%s, expected=%s, failures=%d)",
                 room_number, result.reason, result.current_id, result.expected_id,
                 self.consecutive_failures)
        return result

    def _check(self, room_number):
        try:
            # Checked before touching the radio: "no wifi" would be misleading
            # for a room that simply isn't configured.
            net = self.networks.get(room_number)
            if net is None:
                log.info("No BSSID configured for room %s (known: %s)",
                         room_number, ", ".join(sorted(self.networks)) or "none")
                return AuthorizationResult(False, ROOM_NOT_CONFIGURED)

            expected = net.authorized_access_point_id
            probe = self._reader.read()
            try:
                probe.raise_for_error()
            except (WifiPermissionError, ConnectivityError) as e:
                return AuthorizationResult(False, NO_WIFI, expected_id=expected, room=net,
                                           error_code=probe.error_code, error=str(e))
            if not probe.id:
                return AuthorizationResult(False, NO_WIFI, expected_id=expected, room=net)

            if probe.id.lower() == expected.lower():
                return AuthorizationResult(True, AUTHORIZED, probe.id, expected, net)
            return AuthorizationResult(False, WRONG_BSSID, probe.id, expected, net)
        except Exception as e:
            log.error("Authorization check failed: %s", e, exc_info=True)
            return AuthorizationResult(False, ERROR, error=str(e))


def describe_failure(result, room_number):
    """User-facing explanation of a failed authorization."""
    if result.reason == NO_WIFI:
        if result.error_code in ("permission_denied", "location_services_disabled"):
            return ("Location Permission Required\n\nThe classroom access point cannot be "
                    "read without location access. Enable it in system settings and try again.")
        return ("WiFi Not Connected\n\nYou are not connected to any WiFi network. "
                f"Connect to the WiFi of room {room_number} and try again.")
    if result.reason == WRONG_BSSID:
        return ("Wrong WiFi Network\n\nYou are connected to the wrong access point.\n\n"
                f"Expected: Classroom {room_number}\nCurrent: {result.current_id or 'Unknown'}")
    if result.reason == ROOM_NOT_CONFIGURED:
        return (f"Room Not Configured\n\nRoom {room_number} is not configured for WiFi "
                "validation. Please contact your administrator.")
    return (f"WiFi Validation Failed\n\nReason: {result.error or result.reason}\n\n"
            "Please make sure you are connected to the classroom WiFi.")
