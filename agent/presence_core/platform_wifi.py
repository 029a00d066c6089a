"""
Radio probing — which access point (BSSID) is this machine attached to?

  Windows → `netsh wlan show interfaces`
  Linux   → `nmcli -t -f ACTIVE,BSSID dev wifi`
  other   → capability_unavailable

get_current_access_point_id() never raises; failures come back as a
ProbeResult with an error_code. ProbeResult.raise_for_error() turns them
into the exception taxonomy for callers that prefer exceptions.
"""

import re
import sys
import subprocess
from dataclasses import dataclass
from typing import Optional

from .config import log
from .constants import DEV_FALLBACK_BSSID
from .errors import WifiPermissionError, ConnectivityError

PERMISSION_DENIED = "permission_denied"
WIFI_DISABLED = "wifi_disabled"
NO_ID = "no_id"
LOCATION_SERVICES_DISABLED = "location_services_disabled"
CAPABILITY_UNAVAILABLE = "capability_unavailable"

_PERMISSION_CODES = (PERMISSION_DENIED, LOCATION_SERVICES_DISABLED)

_BSSID_RE = re.compile(r"([0-9a-f]{2}(?::[0-9a-f]{2}){5})", re.IGNORECASE)


@dataclass
class ProbeResult:
    success: bool
    id: Optional[str] = None
    error_code: Optional[str] = None
    error: str = ""

    @classmethod
    def ok(cls, bssid):
        return cls(success=True, id=bssid.lower())

    @classmethod
    def fail(cls, code, error=""):
        return cls(success=False, error_code=code, error=error)

    def raise_for_error(self):
        if self.success:
            return
        if self.error_code in _PERMISSION_CODES:
            raise WifiPermissionError(f"{self.error_code}: {self.error}")
        raise ConnectivityError(f"{self.error_code}: {self.error}")


def _run(cmd):
    return subprocess.run(cmd, capture_output=True, text=True, timeout=10)


# ─── Windows ─────────────────────────────────────────────────────

def parse_netsh_output(output):
    """Parse `netsh wlan show interfaces` into a ProbeResult."""
    text = output.lower()
    if "there is no wireless interface" in text or "wlansvc" in text:
        return ProbeResult.fail(CAPABILITY_UNAVAILABLE, "no wireless interface")
    if "location permission" in text or "location services" in text:
        return ProbeResult.fail(LOCATION_SERVICES_DISABLED, "location access is off")
    if "access is denied" in text:
        return ProbeResult.fail(PERMISSION_DENIED, "access denied")
    if "software off" in text or "hardware off" in text:
        return ProbeResult.fail(WIFI_DISABLED, "wifi radio is off")

    for line in output.splitlines():
        key, _, value = line.partition(":")
        if key.strip().upper() == "BSSID":
            m = _BSSID_RE.search(value)
            if m:
                return ProbeResult.ok(m.group(1))
    return ProbeResult.fail(NO_ID, "not associated with an access point")


def _probe_windows():
    result = _run(["netsh", "wlan", "show", "interfaces"])
    return parse_netsh_output(result.stdout + result.stderr)


# ─── Linux ───────────────────────────────────────────────────────

def parse_nmcli_output(output):
    """Parse `nmcli -t -f ACTIVE,BSSID dev wifi` (colons escaped as \\:)."""
    for line in output.splitlines():
        active, _, bssid = line.partition(":")
        if active.strip().lower() != "yes":
            continue
        m = _BSSID_RE.search(bssid.replace("\\:", ":"))
        if m:
            return ProbeResult.ok(m.group(1))
    return ProbeResult.fail(NO_ID, "not associated with an access point")


def _probe_linux():
    radio = _run(["nmcli", "radio", "wifi"])
    if radio.stdout.strip().lower() == "disabled":
        return ProbeResult.fail(WIFI_DISABLED, "wifi radio is off")
    result = _run(["nmcli", "-t", "-f", "ACTIVE,BSSID", "dev", "wifi"])
    if result.returncode != 0:
        err = result.stderr.strip()
        if "not authorized" in err.lower():
            return ProbeResult.fail(PERMISSION_DENIED, err)
        return ProbeResult.fail(CAPABILITY_UNAVAILABLE, err or "nmcli failed")
    return parse_nmcli_output(result.stdout)


# ─── Entry point ─────────────────────────────────────────────────

def get_current_access_point_id():
    """Probe the current BSSID. Returns ProbeResult, never raises."""
    try:
        if sys.platform == "win32":
            return _probe_windows()
        if sys.platform.startswith("linux"):
            return _probe_linux()
        return ProbeResult.fail(CAPABILITY_UNAVAILABLE, f"unsupported platform {sys.platform}")
    except FileNotFoundError as e:
        return ProbeResult.fail(CAPABILITY_UNAVAILABLE, str(e))
    except (subprocess.SubprocessError, OSError) as e:
        log.warning("Access point probe failed: %s", e)
        return ProbeResult.fail(CAPABILITY_UNAVAILABLE, str(e))


class AccessPointReader:
    """
    Probe wrapper shared by the authorizer and the connectivity monitor.

    When the radio cannot be probed at all, development builds get a
    fixed placeholder BSSID so the session flow can still be exercised;
    production builds report "not detected" and never fabricate a match.
    """

    def __init__(self, probe=get_current_access_point_id, production=False,
                 fallback_id=DEV_FALLBACK_BSSID):
        self._probe = probe
        self.production = production
        self._fallback_id = fallback_id.lower()

    def read(self) -> ProbeResult:
        result = self._probe()
        if result.success and result.id:
            return ProbeResult.ok(result.id)
        if result.error_code == CAPABILITY_UNAVAILABLE and not self.production:
            log.info("Radio probe unavailable (%s) — using development BSSID", result.error)
            return ProbeResult.ok(self._fallback_id)
        return result

    def current_id(self):
        result = self.read()
        return result.id if result.success else None
