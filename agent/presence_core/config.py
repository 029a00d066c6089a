"""
Paths, logging, config load/save, safe_print.
"""

import os
import json
import sys
import logging
from pathlib import Path


# ─── Paths ───────────────────────────────────────────────────────
# One config and one session snapshot per student per machine.

def _data_dir():
    if os.environ.get("PRESENCE_HOME"):
        return Path(os.environ["PRESENCE_HOME"])
    if sys.platform == "win32":
        return Path(os.environ.get("PROGRAMDATA", "C:\\ProgramData")) / "ClassroomPresence"
    return Path(__file__).resolve().parent.parent


BASE_DIR = _data_dir()
BASE_DIR.mkdir(parents=True, exist_ok=True)

CONFIG_FILE = BASE_DIR / "config.json"
LOG_FILE = BASE_DIR / "presence.log"
OFFLINE_BUFFER_FILE = BASE_DIR / "pending.jsonl"
SNAPSHOT_FILE = BASE_DIR / "session.json"
DIRECTORY_CACHE_FILE = BASE_DIR / "classrooms.json"

_LOG_MAX_BYTES = 1_000_000


def safe_print(*args, **kwargs):
    """print() that survives a missing console (windowed builds)."""
    try:
        print(*args, **kwargs)
    except Exception:
        pass


# ─── Logging ─────────────────────────────────────────────────────
# Truncated at startup once it passes _LOG_MAX_BYTES; a lecture day of
# logs is far below that.

try:
    if LOG_FILE.stat().st_size > _LOG_MAX_BYTES:
        LOG_FILE.write_text("", encoding="utf-8")
except OSError:
    pass

log = logging.getLogger("presence")
log.setLevel(logging.INFO)

if not log.handlers:
    _fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s",
                             datefmt="%Y-%m-%d %H:%M:%S")
    for handler in (logging.FileHandler(str(LOG_FILE), encoding="utf-8"),
                    logging.StreamHandler(sys.stdout)):
        handler.setFormatter(_fmt)
        log.addHandler(handler)


# ─── Config ──────────────────────────────────────────────────────

def load_config(path=CONFIG_FILE):
    """config.json as a dict; None when missing or not valid JSON."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except FileNotFoundError:
        return None
    except (ValueError, OSError) as e:
        log.error("Config %s unreadable: %s", path, e)
        return None
    return config if isinstance(config, dict) else None


def save_config(config, path=CONFIG_FILE):
    """Write through a temp file so a crash never leaves half a config."""
    tmp = path.with_suffix(".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    os.replace(tmp, path)
    log.info("Config saved to %s", path)


def is_production(config=None):
    """
    Production builds never fabricate an access point identifier.
    Explicit config wins; otherwise PRESENCE_ENV=production.
    """
    if config and "production" in config:
        return bool(config["production"])
    return os.environ.get("PRESENCE_ENV", "").lower() == "production"
