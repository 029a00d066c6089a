"""
Entry point and auto-restart wrapper.
"""

import sys
import time

from .constants import AGENT_VERSION
from .config import log, safe_print, load_config, save_config, CONFIG_FILE
from . import http_client
from .platform_win import ensure_single_instance
from .app import AgentApp

_REQUIRED_KEYS = ("serverUrl", "studentId")

# Restart policy
_STABLE_AFTER_SEC = 120       # a run this long resets the crash counter
_BOOT_LOOP_CRASHES = 10
_BOOT_LOOP_WAIT_SEC = 120


def _checked_config(path=CONFIG_FILE):
    """Loaded config, or exit(1) with a message naming what is missing."""
    config = load_config(path)
    if not config:
        safe_print(f"No configuration found. Create {path} with "
                   f"{', '.join(_REQUIRED_KEYS)}.")
        sys.exit(1)

    missing = [k for k in _REQUIRED_KEYS if not config.get(k)]
    if missing:
        safe_print(f"{path} is missing: {', '.join(missing)}")
        sys.exit(1)

    url = config["serverUrl"].rstrip("/")
    if url != config["serverUrl"]:
        config["serverUrl"] = url
        save_config(config, path)
    return config


def main():
    safe_print(f"Classroom Presence Agent v{AGENT_VERSION}\n")

    if not ensure_single_instance():
        safe_print("Another agent is already running.")
        sys.exit(0)

    config = _checked_config()
    log.info("Loaded config for %s (server: %s)", config["studentId"], config["serverUrl"])
    AgentApp(config).run()


def _restart_delay(crashes):
    if crashes >= _BOOT_LOOP_CRASHES:
        log.warning("%d crashes in a row — backing off %ds", crashes, _BOOT_LOOP_WAIT_SEC)
        return _BOOT_LOOP_WAIT_SEC
    return min(10 * crashes, 60)


def run_with_auto_restart():
    """
    Keep the agent alive across crashes. Clean exits and configuration
    errors (exit codes 0 and 1) end the loop.
    """
    crashes = 0
    while True:
        started = time.time()
        try:
            main()
            return
        except KeyboardInterrupt:
            safe_print("\nStopped.")
            return
        except SystemExit as e:
            if e.code in (0, 1, None):
                raise
            log.error("Unexpected exit (%s)", e.code)
        except Exception as e:
            log.error("Agent crashed: %s", e, exc_info=True)

        ran = time.time() - started
        crashes = 1 if ran > _STABLE_AFTER_SEC else crashes + 1
        delay = _restart_delay(crashes)
        log.info("Restarting in %ds (ran %.0fs, crash #%d)", delay, ran, crashes)
        time.sleep(delay)
        http_client.http = http_client.reset_session(http_client.http)
