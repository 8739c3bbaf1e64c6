"""
mapper/types_session.py - Session Dataclasses

SessionConfig, provenance records and the durable SessionResult.
Transforms always return new objects (dataclasses.replace), never mutate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .constants import OrderPolicy
from .types_trial import SessionScoring, Trial


PROVENANCE_KEYS = (
    "listId",
    "listVersion",
    "language",
    "source",
    "sourceName",
    "sourceYear",
    "sourceCitation",
    "licenseNote",
)


@dataclass(frozen=True)
class SessionConfig:
    """Immutable for the life of a session."""
    pack_id: str
    pack_version: str
    order_policy: OrderPolicy = OrderPolicy.FIXED
    seed: Optional[int] = None
    trial_timeout_ms: Optional[int] = None
    break_every_n: Optional[int] = None
    max_response_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "stimulusListId": self.pack_id,
            "stimulusListVersion": self.pack_version,
            "maxResponseTimeMs": self.max_response_time_ms,
            "orderPolicy": self.order_policy.value,
            "seed": self.seed,
        }
        if self.trial_timeout_ms is not None:
            data["trialTimeoutMs"] = self.trial_timeout_ms
        if self.break_every_n is not None:
            data["breakEveryN"] = self.break_every_n
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SessionConfig:
        return cls(
            pack_id=data.get("stimulusListId", ""),
            pack_version=data.get("stimulusListVersion", ""),
            order_policy=OrderPolicy(data.get("orderPolicy") or "fixed"),
            seed=data.get("seed"),
            trial_timeout_ms=data.get("trialTimeoutMs"),
            break_every_n=data.get("breakEveryN"),
            max_response_time_ms=int(data.get("maxResponseTimeMs") or 0),
        )


@dataclass(frozen=True)
class ImportedFrom:
    """Where an imported session came from."""
    package_version: str
    package_hash: str
    original_session_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "packageVersion": self.package_version,
            "packageHash": self.package_hash,
            "originalSessionId": self.original_session_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ImportedFrom:
        return cls(
            package_version=data.get("packageVersion", ""),
            package_hash=data.get("packageHash", ""),
            original_session_id=data.get("originalSessionId", ""),
        )


@dataclass(frozen=True)
class SessionResult:
    """
    The durable unit of one completed run.

    provenance_snapshot, stimulus_pack_snapshot and session_context are kept
    as plain dicts; they are copied through exports verbatim.
    """
    id: str
    config: SessionConfig
    trials: Tuple[Trial, ...]
    scoring: SessionScoring
    started_at: str = ""
    completed_at: str = ""
    stimulus_order: Tuple[str, ...] = field(default_factory=tuple)
    seed_used: Optional[int] = None
    provenance_snapshot: Optional[Dict[str, Any]] = None
    session_fingerprint: Optional[str] = None
    scoring_version: Optional[str] = None
    app_version: Optional[str] = None
    stimulus_pack_snapshot: Optional[Dict[str, Any]] = None
    imported_from: Optional[ImportedFrom] = None
    session_context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if isinstance(self.trials, list):
            object.__setattr__(self, "trials", tuple(self.trials))
        if isinstance(self.stimulus_order, list):
            object.__setattr__(self, "stimulus_order", tuple(self.stimulus_order))

    @property
    def scored_trials(self) -> Tuple[Trial, ...]:
        return tuple(t for t in self.trials if not t.is_practice)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "config": self.config.to_dict(),
            "trials": [t.to_dict() for t in self.trials],
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "scoring": self.scoring.to_dict(),
            "seedUsed": self.seed_used,
            "stimulusOrder": list(self.stimulus_order),
            "provenanceSnapshot": self.provenance_snapshot,
            "sessionFingerprint": self.session_fingerprint,
            "scoringVersion": self.scoring_version,
            "appVersion": self.app_version,
            "stimulusPackSnapshot": self.stimulus_pack_snapshot,
            "importedFrom": self.imported_from.to_dict() if self.imported_from else None,
            "sessionContext": self.session_context,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SessionResult:
        """
        Build from a stored or exported payload.

        Missing optional fields default to None. A missing stimulusOrder is
        rebuilt from the scored trials.

        Raises:
            KeyError: if 'id' or 'config' is absent
        """
        trials = tuple(Trial.from_dict(t) for t in data.get("trials") or [])
        order = data.get("stimulusOrder")
        if order is None:
            order = [t.stimulus_word for t in trials if not t.is_practice]
        imported = data.get("importedFrom")
        return cls(
            id=data["id"],
            config=SessionConfig.from_dict(data["config"]),
            trials=trials,
            scoring=SessionScoring.from_dict(data.get("scoring") or {}),
            started_at=data.get("startedAt") or "",
            completed_at=data.get("completedAt") or "",
            stimulus_order=tuple(order),
            seed_used=data.get("seedUsed"),
            provenance_snapshot=data.get("provenanceSnapshot"),
            session_fingerprint=data.get("sessionFingerprint"),
            scoring_version=data.get("scoringVersion"),
            app_version=data.get("appVersion"),
            stimulus_pack_snapshot=data.get("stimulusPackSnapshot"),
            imported_from=ImportedFrom.from_dict(imported) if imported else None,
            session_context=data.get("sessionContext"),
        )
