"""
Constants, policy thresholds, theme colors, and reason strings.
"""

AGENT_VERSION = "1.0.0"

# ─── Session timing (seconds) ────────────────────────────────────
SYNC_INTERVAL_SEC = 30         # Authoritative sync with the session store
DISPLAY_TICK_SEC = 1           # UI-only projection of attended time
PROBE_INTERVAL_SEC = 10        # Re-probe the access point identifier
GRACE_PERIOD_SEC = 120         # Disconnection tolerated before it counts
MAX_SYNC_DRIFT_SEC = 30        # Drift above this flags the sync as suspicious
SNAPSHOT_MAX_AGE_SEC = 3600    # Local snapshot older than 1h is discarded
MAX_GRACE_PERIODS = 999        # Practically unlimited
SUSPEND_GAP_FACTOR = 3         # Tick gap > 3x interval → process was suspended

# ─── Server clock ────────────────────────────────────────────────
CLOCK_MANIPULATION_SEC = 300   # Device clock off by 5+ min → manipulated

# ─── Network ─────────────────────────────────────────────────────
API_TIMEOUT_SYNC = 15
API_TIMEOUT_SESSION = 30       # start/stop/pause/resume need a DB write
API_TIMEOUT_DIRECTORY = 15

# Returned by the radio probe in development builds when the real
# capability is missing, so the flow can be exercised on any machine.
DEV_FALLBACK_BSSID = "b4:86:18:6f:fb:ec"

# ─── Reasons ─────────────────────────────────────────────────────
CONNECTIVITY_MARKER = "wifi"   # Reasons containing this count as grace pauses
REASON_GRACE_EXPIRED = "wifi_grace_expired"
REASON_RECONNECTED = "wifi_reconnected"
REASON_MANUAL = "manual"
REASON_ABUSE = "extreme_disconnection_abuse"

# ─── Theme (alert dialogs) ───────────────────────────────────────
THEME = {
    "bg_dark":       "#0f172a",
    "bg_card":       "#1e293b",
    "header_bg":     "#0a2c54",
    "primary":       "#3b82f6",
    "text_primary":  "#f1f5f9",
    "text_muted":    "#94a3b8",
    "success":       "#22c55e",
    "error":         "#ef4444",
    "warning":       "#fbbf24",
}
