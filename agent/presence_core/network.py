"""
Offline buffer — session calls that must eventually reach the server.

A JSON-lines file of failed POSTs (stop, wifi-event). Entries are
replayed oldest first when the access point comes back and at startup;
an entry leaves the file once the server has answered it with anything
but a 5xx.

A flush first moves the pending lines into `<name>.flushing`, so calls
buffered while the replay is running land in a fresh file and are kept.
"""

import json
import threading
import time

from .config import log, OFFLINE_BUFFER_FILE
from . import http_client

REPLAY_TIMEOUT = 30

# Guards every read-modify-write of the buffer files (never held across HTTP)
_file_lock = threading.Lock()
# One flush at a time
_flush_lock = threading.Lock()


def _read_lines(path):
    try:
        return [l for l in path.read_text(encoding="utf-8").splitlines() if l.strip()]
    except OSError:
        return []


def _same_request(line, method, url, payload):
    try:
        last = json.loads(line)
    except ValueError:
        return False
    return (last.get("method"), last.get("url"), last.get("payload")) == (method, url, payload)


def buffer_request(method, url, payload, path=OFFLINE_BUFFER_FILE):
    """Append a failed call; an identical call right before it is not repeated."""
    record = json.dumps({"method": method, "url": url, "payload": payload, "ts": time.time()})
    with _file_lock:
        existing = _read_lines(path)
        if existing and _same_request(existing[-1], method, url, payload):
            return
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(record + "\n")
        except OSError as e:
            log.warning("Could not buffer %s: %s", url.rsplit("/", 1)[-1], e)
            return
    log.info("Buffered for later: %s %s", method, url.rsplit("/", 1)[-1])


def _inflight(path):
    return path.with_name(path.name + ".flushing")


def _non_empty(path):
    try:
        return path.exists() and path.stat().st_size > 0
    except OSError:
        return False


def has_buffered_requests(path=OFFLINE_BUFFER_FILE):
    return _non_empty(path) or _non_empty(_inflight(path))


def _replay(line):
    """
    True  → delivered (or rejected for good), drop it
    False → keep for the next flush
    None  → unreadable, drop it
    """
    try:
        entry = json.loads(line)
        method, url, payload = entry["method"].upper(), entry["url"], entry["payload"]
    except (ValueError, KeyError, AttributeError):
        log.warning("Dropping corrupt offline entry")
        return None
    if method != "POST":
        return None
    try:
        resp = http_client.http.post(url, json=payload, timeout=REPLAY_TIMEOUT)
    except Exception as e:
        log.warning("Replay of %s failed: %s", url.rsplit("/", 1)[-1], e)
        return False
    # A 4xx will never succeed (session already closed, etc.)
    return resp.status_code < 500


def _claim(path):
    """
    Move pending lines into the in-flight file and empty the live one.
    Lines left over from an interrupted flush go first.
    """
    inflight = _inflight(path)
    with _file_lock:
        lines = _read_lines(inflight) + _read_lines(path)
        try:
            if lines:
                inflight.write_text("\n".join(lines) + "\n", encoding="utf-8")
            path.unlink(missing_ok=True)
        except OSError as e:
            log.warning("Could not claim offline buffer: %s", e)
            return []
    return lines


def _settle(path, keep):
    """Put unsent lines back in front of anything buffered meanwhile."""
    with _file_lock:
        lines = keep + _read_lines(path)
        try:
            if lines:
                path.write_text("\n".join(lines) + "\n", encoding="utf-8")
            else:
                path.unlink(missing_ok=True)
            _inflight(path).unlink(missing_ok=True)
        except OSError as e:
            log.warning("Could not rewrite offline buffer: %s", e)
    return len(lines)


def flush_buffer(path=OFFLINE_BUFFER_FILE):
    """Replay buffered calls in order. Returns (flushed, remaining)."""
    if not has_buffered_requests(path):
        return 0, 0
    if not _flush_lock.acquire(blocking=False):
        log.info("Offline buffer flush already running")
        return 0, 0

    try:
        keep = []
        flushed = 0
        for line in _claim(path):
            outcome = _replay(line)
            if outcome:
                flushed += 1
            elif outcome is False:
                keep.append(line)
        remaining = _settle(path, keep)
    finally:
        _flush_lock.release()

    if flushed or remaining:
        log.info("Offline buffer: %d delivered, %d pending", flushed, remaining)
    return flushed, remaining
