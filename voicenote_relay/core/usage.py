"""Append-only usage log (newline-delimited JSON).

WHY: Operators need an audit trail of what the relay did for whom:
voice notes received, throttled, summarized, or failed, and opt-in/out
changes. The log is written, never read back by the service.

HOW: UsageEvent is a frozen dataclass. UsageLog.record() serializes it
to one JSON line and appends it to the log file under a threading.Lock
so concurrent writers never interleave partial lines.

RULES:
- Each line is a standalone JSON object ending with "\\n"
- timestamp is ISO-8601 UTC with millisecond precision and a "Z" suffix
- Optional fields that are None are omitted from the line
- Write failures raise OSError to the caller
"""

from __future__ import annotations

import enum
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class UsageEventKind(str, enum.Enum):
    AUDIO_RECEIVED = "audio_received"
    RATE_LIMITED = "rate_limited"
    SUMMARY_SENT = "summary_sent"
    SUMMARY_FAILED = "summary_failed"
    OPT_OUT = "opt_out"
    OPT_IN = "opt_in"
    HUMAN_REQUESTED = "human_requested"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UsageEvent:
    """One audit record."""

    kind: UsageEventKind
    user_id: str
    media_id: Optional[str] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": self.timestamp.astimezone(timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "event": self.kind.value,
            "from": self.user_id,
        }
        if self.media_id is not None:
            data["mediaId"] = self.media_id
        if self.success is not None:
            data["success"] = self.success
        if self.error is not None:
            data["error"] = self.error
        return data


class UsageLog:
    """File-backed append-only event log."""

    def __init__(self, file_path: Path) -> None:
        self._file_path = Path(file_path)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        return self._file_path

    def record(self, event: UsageEvent) -> None:
        line = json.dumps(event.to_dict(), ensure_ascii=False) + "\n"
        with self._lock:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file_path, "a", encoding="utf-8") as f:
                f.write(line)
