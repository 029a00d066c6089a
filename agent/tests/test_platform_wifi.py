import pytest

from presence_core.errors import WifiPermissionError, ConnectivityError
from presence_core.platform_wifi import (
    parse_netsh_output, parse_nmcli_output, ProbeResult,
    PERMISSION_DENIED, WIFI_DISABLED, NO_ID, LOCATION_SERVICES_DISABLED,
    CAPABILITY_UNAVAILABLE,
)

NETSH_CONNECTED = """
There is 1 interface on the system:

    Name                   : Wi-Fi
    Description            : Intel(R) Wi-Fi 6 AX201 160MHz
    State                  : connected
    SSID                   : Campus
    BSSID                  : B4:86:18:6F:FB:EC
    Radio type             : 802.11ax
    Signal                 : 92%
"""

NETSH_DISCONNECTED = """
There is 1 interface on the system:

    Name                   : Wi-Fi
    State                  : disconnected
    Radio status           : Hardware On
"""


def test_netsh_connected():
    result = parse_netsh_output(NETSH_CONNECTED)
    assert result.success
    assert result.id == "b4:86:18:6f:fb:ec"


def test_netsh_disconnected():
    result = parse_netsh_output(NETSH_DISCONNECTED)
    assert not result.success
    assert result.error_code == NO_ID


@pytest.mark.parametrize("output, code", [
    ("There is no wireless interface on the system.", CAPABILITY_UNAVAILABLE),
    ("The Wireless AutoConfig Service (wlansvc) is not running.", CAPABILITY_UNAVAILABLE),
    ("Network shell commands need location permission to access WLAN information.",
     LOCATION_SERVICES_DISABLED),
    ("Access is denied.", PERMISSION_DENIED),
    ("    Radio status           : Hardware On\n                             Software Off",
     WIFI_DISABLED),
])
def test_netsh_failures(output, code):
    assert parse_netsh_output(output).error_code == code


def test_nmcli_picks_active_line():
    output = "no:AA\\:BB\\:CC\\:DD\\:EE\\:01\nyes:B4\\:86\\:18\\:6F\\:FB\\:EC\n"
    assert parse_nmcli_output(output).id == "b4:86:18:6f:fb:ec"


def test_nmcli_nothing_active():
    assert parse_nmcli_output("no:AA\\:BB\\:CC\\:DD\\:EE\\:01\n").error_code == NO_ID


def test_raise_for_error_taxonomy():
    ProbeResult.ok("AA:BB:CC:DD:EE:FF").raise_for_error()
    with pytest.raises(WifiPermissionError):
        ProbeResult.fail(LOCATION_SERVICES_DISABLED).raise_for_error()
    with pytest.raises(ConnectivityError):
        ProbeResult.fail(WIFI_DISABLED).raise_for_error()
