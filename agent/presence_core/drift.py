"""
Drift validation for server syncs.

Between two syncs of a running session the server's attended counter
should advance by about the wall time that passed. A large mismatch
means the device clock was tampered with, or the response is stale or
replayed. The validator only reports; the server value is always kept.
"""

import math
from dataclasses import dataclass
from typing import Optional

from .config import log
from .constants import MAX_SYNC_DRIFT_SEC
from .errors import SyncValidationError

EXCESSIVE_DRIFT = "excessive_drift"
VALIDATION_ERROR = "validation_error"


@dataclass
class SyncValidationResult:
    valid: bool
    drift: int = 0
    reason: Optional[str] = None


class DriftValidator:

    def __init__(self, max_drift=MAX_SYNC_DRIFT_SEC):
        self.max_drift = max_drift
        self._has_baseline = False

    def reset(self):
        """Forget the baseline (new session)."""
        self._has_baseline = False

    def validate(self, server_attended, prior_attended, is_running,
                 seconds_since_last_sync) -> SyncValidationResult:
        try:
            if not self._has_baseline:
                self._has_baseline = True
                return SyncValidationResult(True, 0)

            expected = math.floor(seconds_since_last_sync) if is_running else 0
            actual = int(server_attended) - int(prior_attended)
            drift = abs(actual - expected)
        except (TypeError, ValueError) as e:
            log.error("Drift validation error: %s", e)
            return SyncValidationResult(False, 0, VALIDATION_ERROR)

        if drift > self.max_drift:
            log.warning("Suspicious timer drift: expected=%d actual=%d drift=%ds",
                        expected, actual, drift)
            return SyncValidationResult(False, drift, EXCESSIVE_DRIFT)
        return SyncValidationResult(True, drift)

    def ensure_valid(self, *args) -> SyncValidationResult:
        """validate(), raising SyncValidationError when invalid."""
        result = self.validate(*args)
        if not result.valid:
            raise SyncValidationError(result)
        return result
