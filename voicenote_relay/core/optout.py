"""Persisted set of users who opted out of automated processing.

WHY: A user who replies STOP must never have another voice note sent to
Gemini until they reply START. Losing an opt-out write would be a
compliance violation, so every change is saved before it is confirmed.

HOW: The set lives in memory and is mirrored to a JSON array file. It is
loaded lazily on first use. An asyncio.Lock serializes load-mutate-save
so concurrent STOP/START commands cannot interleave. File reads and
writes run in a worker thread (asyncio.to_thread) so the event loop
keeps serving other messages. Saves write a temp file next to the target
and atomically replace it.

RULES:
- Load failure (unreadable or invalid JSON) → logged, treated as empty,
  and the bad file is moved aside to <name>.corrupt so the next save
  cannot overwrite the earlier opt-outs
- Save failure → OptOutPersistenceError raised to the caller
- opt_out/opt_in are idempotent but always persist the full set
- The file is a JSON array of strings, sorted, indented by 2
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Set

logger = logging.getLogger(__name__)

CORRUPT_SUFFIX = ".corrupt"


class OptOutPersistenceError(Exception):
    """Raised when the opt-out set could not be written to disk."""


class OptOutRegistry:
    """Lazy-loading, file-backed opt-out set.

    RULES:
    - Use one instance per data file
    - All public methods are coroutines and take the lock
    """

    def __init__(self, file_path: Path) -> None:
        self._file_path = Path(file_path)
        self._items: Set[str] = set()
        self._loaded = False
        self._lock = asyncio.Lock()

    @property
    def file_path(self) -> Path:
        return self._file_path

    @property
    def corrupt_path(self) -> Path:
        return self._file_path.with_name(self._file_path.name + CORRUPT_SUFFIX)

    async def is_opted_out(self, user_id: str) -> bool:
        async with self._lock:
            await self._ensure_loaded()
            return user_id in self._items

    async def opt_out(self, user_id: str) -> None:
        """Add user_id and persist. Raises OptOutPersistenceError on save failure."""
        async with self._lock:
            await self._ensure_loaded()
            previous = set(self._items)
            self._items.add(user_id)
            await self._save_or_rollback(previous)
        logger.info("Opted out %s", user_id)

    async def opt_in(self, user_id: str) -> None:
        """Remove user_id and persist. Raises OptOutPersistenceError on save failure."""
        async with self._lock:
            await self._ensure_loaded()
            previous = set(self._items)
            self._items.discard(user_id)
            await self._save_or_rollback(previous)
        logger.info("Opted in %s", user_id)

    async def load(self) -> None:
        """Force the initial load (used at app startup)."""
        async with self._lock:
            await self._ensure_loaded()

    # ------------------------------------------------------------------
    # Persistence (callers hold the lock)
    # ------------------------------------------------------------------

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._items = await asyncio.to_thread(self._read_file)
        self._loaded = True

    def _read_file(self) -> Set[str]:
        """Read the opt-out file, failing open to an empty set."""
        if not self._file_path.exists():
            return set()
        try:
            data = json.loads(self._file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error(
                "Failed to read opt-out list %s: %s", self._file_path, exc
            )
            self._move_aside()
            return set()
        if not isinstance(data, list):
            logger.error(
                "Opt-out list %s is not a JSON array; ignoring it", self._file_path
            )
            self._move_aside()
            return set()
        return {str(item) for item in data}

    def _move_aside(self) -> None:
        try:
            os.replace(self._file_path, self.corrupt_path)
        except OSError as exc:
            logger.error(
                "Could not move unreadable opt-out list to %s: %s",
                self.corrupt_path,
                exc,
            )
            return
        logger.warning("Moved unreadable opt-out list to %s", self.corrupt_path)

    async def _save_or_rollback(self, previous: Set[str]) -> None:
        payload = json.dumps(sorted(self._items), indent=2)
        try:
            await asyncio.to_thread(self._write_file, payload)
        except OSError as exc:
            self._items = previous
            raise OptOutPersistenceError(
                "Could not save opt-out list to {}: {}".format(self._file_path, exc)
            ) from exc

    def _write_file(self, payload: str) -> None:
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".opt-outs-", suffix=".tmp", dir=str(self._file_path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self._file_path)
        except OSError:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
