"""
mapper/types_trial.py - Trial and Scoring Dataclasses

Immutable records for one trial and for the scoring derived from a trial list.
Wire format uses the archived camelCase layout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .constants import FlagKind


@dataclass(frozen=True)
class Trial:
    """One stimulus and the participant's typed response."""
    stimulus_word: str
    stimulus_order_index: int
    response: str = ""
    reaction_time_ms: int = 0
    first_keystroke_ms: Optional[int] = None
    backspace_count: int = 0
    edit_count: int = 0
    ime_composition_count: int = 0
    is_practice: bool = False
    timed_out: Optional[bool] = None

    @property
    def is_timed_out(self) -> bool:
        return self.timed_out is True

    @property
    def is_empty(self) -> bool:
        return self.response.strip() == ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "stimulus": {"word": self.stimulus_word, "index": self.stimulus_order_index},
            "association": {
                "response": self.response,
                "reactionTimeMs": self.reaction_time_ms,
                "tFirstKeyMs": self.first_keystroke_ms,
                "backspaceCount": self.backspace_count,
                "editCount": self.edit_count,
                "compositionCount": self.ime_composition_count,
            },
            "isPractice": self.is_practice,
        }
        if self.timed_out is not None:
            data["timedOut"] = self.timed_out
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Trial:
        stimulus = data.get("stimulus") or {}
        assoc = data.get("association") or {}
        timed_out = data.get("timedOut")
        return cls(
            stimulus_word=stimulus.get("word", ""),
            stimulus_order_index=int(stimulus.get("index", 0)),
            response=assoc.get("response") or "",
            reaction_time_ms=int(assoc.get("reactionTimeMs") or 0),
            first_keystroke_ms=assoc.get("tFirstKeyMs"),
            backspace_count=int(assoc.get("backspaceCount") or 0),
            edit_count=int(assoc.get("editCount") or 0),
            ime_composition_count=int(assoc.get("compositionCount") or 0),
            is_practice=bool(data.get("isPractice", False)),
            timed_out=None if timed_out is None else bool(timed_out),
        )


@dataclass(frozen=True)
class TrialFlags:
    """Flags for one scored trial. trial_index is the position in the scored subset."""
    trial_index: int
    flags: Tuple[FlagKind, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if isinstance(self.flags, list):
            object.__setattr__(self, "flags", tuple(self.flags))

    def has(self, flag: FlagKind) -> bool:
        return flag in self.flags

    def to_dict(self) -> Dict[str, Any]:
        return {"trialIndex": self.trial_index, "flags": [f.value for f in self.flags]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TrialFlags:
        parsed: List[FlagKind] = []
        for raw in data.get("flags") or []:
            flag = FlagKind.parse(raw)
            if flag not in parsed:
                parsed.append(flag)
        return cls(trial_index=int(data.get("trialIndex", 0)), flags=tuple(parsed))


@dataclass(frozen=True)
class SessionSummary:
    total_trials: int = 0
    mean_rt: float = 0.0
    median_rt: float = 0.0
    std_dev_rt: float = 0.0
    empty_count: int = 0
    repeated_count: int = 0
    outlier_count: int = 0
    high_editing_count: int = 0
    timeout_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTrials": self.total_trials,
            "meanReactionTimeMs": self.mean_rt,
            "medianReactionTimeMs": self.median_rt,
            "stdDevReactionTimeMs": self.std_dev_rt,
            "emptyResponseCount": self.empty_count,
            "repeatedResponseCount": self.repeated_count,
            "timingOutlierCount": self.outlier_count,
            "highEditingCount": self.high_editing_count,
            "timeoutCount": self.timeout_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SessionSummary:
        return cls(
            total_trials=int(data.get("totalTrials", 0)),
            mean_rt=data.get("meanReactionTimeMs", 0.0),
            median_rt=data.get("medianReactionTimeMs", 0.0),
            std_dev_rt=data.get("stdDevReactionTimeMs", 0.0),
            empty_count=int(data.get("emptyResponseCount", 0)),
            repeated_count=int(data.get("repeatedResponseCount", 0)),
            outlier_count=int(data.get("timingOutlierCount", 0)),
            high_editing_count=int(data.get("highEditingCount", 0)),
            timeout_count=int(data.get("timeoutCount", 0)),
        )


@dataclass(frozen=True)
class SessionScoring:
    """Per-trial flags plus summary. Always rebuilt wholesale."""
    trial_flags: Tuple[TrialFlags, ...] = field(default_factory=tuple)
    summary: SessionSummary = field(default_factory=SessionSummary)

    def __post_init__(self) -> None:
        if isinstance(self.trial_flags, list):
            object.__setattr__(self, "trial_flags", tuple(self.trial_flags))

    def flags_for(self, subset_index: int) -> Tuple[FlagKind, ...]:
        for tf in self.trial_flags:
            if tf.trial_index == subset_index:
                return tf.flags
        return ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trialFlags": [tf.to_dict() for tf in self.trial_flags],
            "summary": self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SessionScoring:
        return cls(
            trial_flags=tuple(TrialFlags.from_dict(tf) for tf in data.get("trialFlags") or []),
            summary=SessionSummary.from_dict(data.get("summary") or {}),
        )
