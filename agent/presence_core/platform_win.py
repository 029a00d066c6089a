"""
Windows-specific helpers:
  - Single instance enforcement (named mutex)
  - Workstation lock detection (lock → unlock counts as "foreground")

Every function is a safe no-op on other platforms.
"""

import sys
import ctypes

from .config import log

_MUTEX_NAME = "Global\\ClassroomPresence_5c1d"
_ERROR_ALREADY_EXISTS = 183
_DESKTOP_SWITCHDESKTOP = 0x0100

_instance_mutex = None


def ensure_single_instance():
    """Return False if another agent already holds the named mutex."""
    global _instance_mutex
    if sys.platform != "win32":
        return True
    try:
        kernel32 = ctypes.windll.kernel32
        _instance_mutex = kernel32.CreateMutexW(None, False, _MUTEX_NAME)
        if kernel32.GetLastError() == _ERROR_ALREADY_EXISTS:
            log.info("Another instance is already running.")
            return False
    except (AttributeError, OSError) as e:
        log.warning("Single-instance check unavailable: %s", e)
    return True


def is_system_locked():
    """
    True while the input desktop cannot be switched to — i.e. the lock
    screen (or secure desktop) is up.
    """
    if sys.platform != "win32":
        return False
    try:
        user32 = ctypes.windll.user32
        desktop = user32.OpenInputDesktop(0, False, _DESKTOP_SWITCHDESKTOP)
        if desktop == 0:
            return True
        switchable = user32.SwitchDesktop(desktop)
        user32.CloseDesktop(desktop)
        return not switchable
    except (AttributeError, OSError):
        return False
