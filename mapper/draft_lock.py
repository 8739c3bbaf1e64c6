"""
mapper/draft_lock.py - Advisory TTL Lock for the Draft Slot

One lock record guards the single in-progress draft against a second
writer (another tab or process sharing the same storage). Cooperating
writers only; this is not a distributed lock.

Lifecycle: acquire -> renew by re-acquire -> release or expire.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .constants import DRAFT_LOCK_TTL_MS

logger = logging.getLogger(__name__)

__all__ = ["DraftLock", "DraftLockManager", "DRAFT_LOCK_KEY", "now_ms"]

DRAFT_LOCK_KEY = "complex-mapper-draft-lock"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class DraftLock:
    tab_id: str
    acquired_at_ms: int

    def age_ms(self, now: int) -> int:
        return now - self.acquired_at_ms

    def to_json(self) -> str:
        return json.dumps({"tabId": self.tab_id, "acquiredAtMs": self.acquired_at_ms})

    @classmethod
    def from_json(cls, raw: str) -> DraftLock:
        data = json.loads(raw)
        return cls(tab_id=str(data["tabId"]), acquired_at_ms=int(data["acquiredAtMs"]))


class DraftLockManager:
    """
    Lock record on a StoragePort.

    Args:
        storage: Any StoragePort (get/set/remove)
        ttl_ms: Age at which a lock counts as expired and may be stolen
        clock: Millisecond clock, injectable for tests
    """

    def __init__(self, storage, ttl_ms: int = DRAFT_LOCK_TTL_MS, clock: Callable[[], int] = now_ms):
        self.storage = storage
        self.ttl_ms = ttl_ms
        self.clock = clock

    def read(self) -> Optional[DraftLock]:
        """Current lock record; an unreadable record counts as absent."""
        raw = self.storage.get(DRAFT_LOCK_KEY)
        if not raw:
            return None
        try:
            return DraftLock.from_json(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("ignoring unreadable draft lock record")
            return None

    def is_expired(self, lock: DraftLock) -> bool:
        return lock.age_ms(self.clock()) >= self.ttl_ms

    def acquire(self, tab_id: str) -> bool:
        """
        Take or renew the lock.

        Succeeds when no lock exists, tab_id already owns it, or the holder's
        lock has expired (stolen). Otherwise the holder is left untouched.
        """
        existing = self.read()
        if existing is not None and existing.tab_id != tab_id and not self.is_expired(existing):
            logger.debug("draft lock held by %s, %s denied", existing.tab_id, tab_id)
            return False
        if existing is not None and existing.tab_id != tab_id:
            logger.info("draft lock of %s expired; stolen by %s", existing.tab_id, tab_id)
        self.storage.set(DRAFT_LOCK_KEY, DraftLock(tab_id, self.clock()).to_json())
        return True

    def release(self, tab_id: str) -> None:
        """Clear the lock if tab_id owns it. A non-owner's release does nothing."""
        existing = self.read()
        if existing is not None and existing.tab_id == tab_id:
            self.storage.remove(DRAFT_LOCK_KEY)

    def is_locked_by_other(self, tab_id: str) -> bool:
        existing = self.read()
        if existing is None or existing.tab_id == tab_id:
            return False
        return not self.is_expired(existing)
