"""
Exception taxonomy for the presence agent.

Only start/resume failures and authorization failures travel up to the
caller as exceptions; stop/pause/sync failures are absorbed by the
session protocol according to its per-operation policy.
"""


class PresenceError(Exception):
    """Base class for all agent errors."""


class WifiPermissionError(PresenceError):
    """Location / WiFi permission withheld. Retry after granting."""


class ConnectivityError(PresenceError):
    """No access point detected, or the radio cannot be probed."""


class AuthorizationError(PresenceError):
    """Wrong or unconfigured access point for the room. Blocks start."""

    def __init__(self, result):
        self.result = result
        super().__init__(
            f"Not authorized for room: {result.reason} "
            f"(current={result.current_id}, expected={result.expected_id})"
        )


class SyncValidationError(PresenceError):
    """Drift between expected and reported attended time is too large."""

    def __init__(self, validation):
        self.validation = validation
        super().__init__(f"Sync validation failed: {validation.reason} (drift={validation.drift}s)")


class TransportError(PresenceError):
    """A remote call failed (network error, non-2xx, or success=false)."""

    def __init__(self, operation, message, status=None):
        self.operation = operation
        self.status = status
        super().__init__(f"{operation} failed: {message}")
