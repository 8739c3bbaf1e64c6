"""
mapper/storage.py - Persistence Adapters

StoragePort is a string key-value slot store (get/set/remove/keys). Writes
are atomic per key and reads return the last write. SessionStore and
PackStore sit on top of any port.

Storage failures (OS errors, corrupt JSON) are logged and degrade to
absent/empty; callers never see storage exceptions.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from receipts import StopRule

from .constants import DRAFT_LOCK_TTL_MS
from .draft_lock import DraftLockManager, now_ms
from .stimuli import StimulusList, validate_stimulus_list
from .types_session import SessionResult

logger = logging.getLogger(__name__)

__all__ = [
    "StoragePort",
    "MemoryStorage",
    "JsonFileStorage",
    "SessionStore",
    "SessionListEntry",
    "PackStore",
    "PackInUseError",
]

SESSIONS_KEY = "complex-mapper-sessions"
DRAFT_KEY = "complex-mapper-draft"
PACKS_KEY = "complex-mapper-custom-packs"
STAGING_SUFFIX = "__staging"

SESSION_SCHEMA_VERSION = 3


# =============================================================================
# PORTS
# =============================================================================

class StoragePort(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> bool: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...


class MemoryStorage:
    """In-process port. Two stores sharing one MemoryStorage behave like two tabs."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._data)


class JsonFileStorage:
    """
    One file per key under a directory.

    Writes go to a temp file in the same directory, then os.replace, so a
    reader sees either the old or the new value.
    """

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("storage read failed for %s: %s", key, e)
            return None

    def set(self, key: str, value: str) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(value)
                os.replace(tmp, self._path(key))
            except OSError:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
            return True
        except OSError as e:
            logger.warning("storage write failed for %s: %s", key, e)
            return False

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("storage remove failed for %s: %s", key, e)

    def keys(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))


def _read_json(storage: StoragePort, key: str) -> Optional[Any]:
    raw = storage.get(key)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("discarding corrupt record %s", key)
        return None


def _dict_entries(data: Dict[str, Any], key: str) -> Dict[str, Dict[str, Any]]:
    entries = {k: v for k, v in data.items() if isinstance(v, dict)}
    if len(entries) != len(data):
        logger.warning("dropping %d malformed entries from %s", len(data) - len(entries), key)
    return entries


def _write_staged(storage: StoragePort, key: str, data: Any) -> bool:
    """Stage, commit, clean up. A crash leaves either the old value or the new one."""
    payload = json.dumps(data, ensure_ascii=False)
    staging = key + STAGING_SUFFIX
    if not storage.set(staging, payload):
        return False
    ok = storage.set(key, payload)
    storage.remove(staging)
    return ok


# =============================================================================
# SESSIONS
# =============================================================================

@dataclass(frozen=True)
class SessionListEntry:
    id: str
    completed_at: str
    total_trials: int
    stimulus_list_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "completedAt": self.completed_at,
            "totalTrials": self.total_trials,
            "stimulusListId": self.stimulus_list_id,
        }


class SessionStore:
    """
    Completed sessions, the single draft slot and its lock.

    Args:
        storage: StoragePort shared by every cooperating writer
        lock_ttl_ms: Draft lock TTL
        clock: Millisecond clock for the draft lock
    """

    def __init__(
        self,
        storage: StoragePort,
        lock_ttl_ms: int = DRAFT_LOCK_TTL_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.storage = storage
        self.lock = DraftLockManager(storage, ttl_ms=lock_ttl_ms, clock=clock)

    # --- envelope ---

    def _read_envelope(self) -> Dict[str, Dict[str, Any]]:
        if self.storage.get(SESSIONS_KEY + STAGING_SUFFIX) is not None:
            # leftover from an interrupted write; the main key is authoritative
            self.storage.remove(SESSIONS_KEY + STAGING_SUFFIX)
        data = _read_json(self.storage, SESSIONS_KEY)
        if not isinstance(data, dict):
            return {}
        if "schemaVersion" not in data:
            # legacy layout: a bare {id: session} map
            return _dict_entries(data, SESSIONS_KEY)
        sessions = data.get("sessions")
        return _dict_entries(sessions, SESSIONS_KEY) if isinstance(sessions, dict) else {}

    def _write_envelope(self, sessions: Dict[str, Dict[str, Any]]) -> bool:
        return _write_staged(self.storage, SESSIONS_KEY, {
            "schemaVersion": SESSION_SCHEMA_VERSION,
            "sessions": sessions,
        })

    def _decode(self, raw: Dict[str, Any]) -> Optional[SessionResult]:
        try:
            return SessionResult.from_dict(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("skipping unreadable session %s: %s", raw.get("id"), e)
            return None

    # --- sessions ---

    def save(self, session: SessionResult) -> bool:
        sessions = self._read_envelope()
        sessions[session.id] = session.to_dict()
        ok = self._write_envelope(sessions)
        if ok:
            logger.info("saved session %s", session.id)
        return ok

    def load(self, session_id: str) -> Optional[SessionResult]:
        raw = self._read_envelope().get(session_id)
        return self._decode(raw) if raw else None

    def exists(self, session_id: str) -> bool:
        return session_id in self._read_envelope()

    def list(self) -> List[SessionListEntry]:
        """Metadata for every stored session, newest completedAt first."""
        entries = []
        for raw in self._read_envelope().values():
            session = self._decode(raw)
            if session is None:
                continue
            entries.append(SessionListEntry(
                id=session.id,
                completed_at=session.completed_at,
                total_trials=len(session.scored_trials),
                stimulus_list_id=session.config.pack_id,
            ))
        entries.sort(key=lambda e: e.completed_at, reverse=True)
        return entries

    def delete(self, session_id: str) -> None:
        sessions = self._read_envelope()
        if sessions.pop(session_id, None) is not None:
            self._write_envelope(sessions)
            logger.info("deleted session %s", session_id)

    def delete_all(self) -> None:
        self._write_envelope({})

    def delete_imported(self) -> int:
        sessions = self._read_envelope()
        kept = {k: v for k, v in sessions.items() if not v.get("importedFrom")}
        removed = len(sessions) - len(kept)
        if removed:
            self._write_envelope(kept)
        return removed

    def delete_older_than(self, cutoff: datetime) -> int:
        """Drop sessions whose completedAt sorts before the cutoff's ISO form."""
        stamp = cutoff.isoformat()
        sessions = self._read_envelope()
        kept = {k: v for k, v in sessions.items() if (v.get("completedAt") or "") >= stamp}
        removed = len(sessions) - len(kept)
        if removed:
            self._write_envelope(kept)
        return removed

    def referenced_packs(self) -> set:
        """id@version of every pack some stored session was run with."""
        refs = set()
        for raw in self._read_envelope().values():
            config = raw.get("config")
            if not isinstance(config, dict):
                continue
            refs.add(f"{config.get('stimulusListId', '')}@{config.get('stimulusListVersion', '')}")
        return refs

    def export_all(self) -> str:
        return json.dumps(
            {"schemaVersion": SESSION_SCHEMA_VERSION, "sessions": self._read_envelope()},
            indent=2,
            ensure_ascii=False,
        )

    # --- draft slot ---

    def save_draft(self, draft: Dict[str, Any]) -> bool:
        return _write_staged(self.storage, DRAFT_KEY, draft)

    def load_draft(self) -> Optional[Dict[str, Any]]:
        data = _read_json(self.storage, DRAFT_KEY)
        if not isinstance(data, dict) or not data.get("id"):
            return None
        word_list = data.get("wordList") or []
        return {
            **data,
            "stimulusListId": data.get("stimulusListId") or "",
            "stimulusListVersion": data.get("stimulusListVersion") or "",
            "orderPolicy": data.get("orderPolicy") or "fixed",
            "seedUsed": data.get("seedUsed"),
            "wordList": word_list,
            "practiceWords": data.get("practiceWords") or [],
            "stimulusOrder": data.get("stimulusOrder") or word_list,
            "trials": data.get("trials") or [],
            "currentIndex": int(data.get("currentIndex") or 0),
        }

    def delete_draft(self) -> None:
        self.storage.remove(DRAFT_KEY)

    # --- draft lock ---

    def acquire_draft_lock(self, tab_id: str) -> bool:
        return self.lock.acquire(tab_id)

    def release_draft_lock(self, tab_id: str) -> None:
        self.lock.release(tab_id)

    def is_draft_locked_by_other(self, tab_id: str) -> bool:
        return self.lock.is_locked_by_other(tab_id)


# =============================================================================
# CUSTOM PACKS
# =============================================================================

class PackInUseError(StopRule):
    """A stored session still references the pack."""
    pass


class PackStore:
    """Custom stimulus packs keyed by id@version."""

    def __init__(self, storage: StoragePort, sessions: Optional[SessionStore] = None) -> None:
        self.storage = storage
        self.sessions = sessions

    def _read(self) -> Dict[str, Dict[str, Any]]:
        data = _read_json(self.storage, PACKS_KEY)
        return _dict_entries(data, PACKS_KEY) if isinstance(data, dict) else {}

    def save(self, pack: StimulusList) -> bool:
        packs = self._read()
        packs[pack.key] = pack.to_dict()
        ok = _write_staged(self.storage, PACKS_KEY, packs)
        if ok:
            logger.info("saved pack %s", pack.key)
        return ok

    def load(self, pack_id: str, version: str) -> Optional[StimulusList]:
        raw = self._read().get(f"{pack_id}@{version}")
        if raw is None:
            return None
        if validate_stimulus_list(raw):
            logger.warning("stored pack %s@%s fails validation", pack_id, version)
            return None
        return StimulusList.from_dict(raw)

    def exists(self, pack_id: str, version: str) -> bool:
        return f"{pack_id}@{version}" in self._read()

    def list(self) -> List[StimulusList]:
        packs = []
        for raw in self._read().values():
            if not validate_stimulus_list(raw):
                packs.append(StimulusList.from_dict(raw))
        return packs

    def delete(self, pack_id: str, version: str, force: bool = False) -> bool:
        """
        Remove a pack.

        Raises:
            PackInUseError: if a stored session references it and force is False
        """
        key = f"{pack_id}@{version}"
        packs = self._read()
        if key not in packs:
            return False
        if not force and self.sessions is not None and key in self.sessions.referenced_packs():
            raise PackInUseError(f"pack {key} is referenced by stored sessions")
        del packs[key]
        return _write_staged(self.storage, PACKS_KEY, packs)
