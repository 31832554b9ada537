"""Per-user admission control for voice-note processing.

WHY: A user who forwards the same voice note twice, or fires off several
in a row, should get one summary and a "please wait" notice instead of a
stack of Gemini calls and duplicate replies. Throttling per user also
keeps the relay inside the Gemini quota.

HOW: A dict maps user ID → _LedgerEntry(admitted_at, last_activity).
try_admit() checks and stamps inside one threading.Lock critical
section, so two requests racing for the same user cannot both pass.
release() records pipeline completion. sweep() drops entries that have
been idle for more than twice the window; the app runs it periodically.

RULES:
- The window is measured from request ARRIVAL (admitted_at), never from
  completion. release() only refreshes last_activity for expiry.
- A request at exactly admitted_at + window is admitted
- Rejections carry a retry-after hint in milliseconds
- Timestamps are seconds as floats (time.monotonic() by default)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of AdmissionController.try_admit()."""

    admitted: bool
    retry_after_ms: int = 0

    def __bool__(self) -> bool:
        return self.admitted


ADMITTED = AdmissionDecision(admitted=True)


@dataclass
class _LedgerEntry:
    admitted_at: float
    last_activity: float


class AdmissionController:
    """Thread-safe per-user rate limiter.

    RULES:
    - window_ms must be positive
    - now arguments default to the injected clock
    """

    def __init__(
        self,
        window_ms: int,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if window_ms <= 0:
            raise ValueError("window_ms must be positive, got {}".format(window_ms))
        self._window_s = window_ms / 1000.0
        self._clock = clock or time.monotonic
        self._entries: Dict[str, _LedgerEntry] = {}
        self._lock = threading.Lock()

    @property
    def window_s(self) -> float:
        return self._window_s

    def try_admit(self, user_id: str, now: Optional[float] = None) -> AdmissionDecision:
        """Admit user_id unless it was admitted less than one window ago.

        HOW: Under the lock: look up the entry, compare arrival times,
        and either reject with the remaining wait or stamp admitted_at.
        """
        if now is None:
            now = self._clock()
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is not None:
                elapsed = now - entry.admitted_at
                if elapsed < self._window_s:
                    remaining_ms = int(round((self._window_s - elapsed) * 1000))
                    return AdmissionDecision(
                        admitted=False, retry_after_ms=max(remaining_ms, 1)
                    )
            self._entries[user_id] = _LedgerEntry(admitted_at=now, last_activity=now)
        return ADMITTED

    def release(self, user_id: str, now: Optional[float] = None) -> None:
        """Record that the pipeline admitted for user_id has finished."""
        if now is None:
            now = self._clock()
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is not None:
                entry.last_activity = max(entry.last_activity, now)

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove entries idle for more than 2 × window. Returns count removed."""
        if now is None:
            now = self._clock()
        horizon = 2 * self._window_s
        with self._lock:
            stale = [
                user_id
                for user_id, entry in self._entries.items()
                if now - entry.last_activity > horizon
            ]
            for user_id in stale:
                del self._entries[user_id]
        if stale:
            logger.debug("Swept %d idle admission entries", len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._entries
