"""
mapper/indicators.py - Unified Indicator Descriptors

CI codes and scoring flags share one descriptor table keyed by the enums.
Every surface (CLI, exports, insights) takes labels from here.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from .constants import CI_CODE_ORDER, FLAG_ORDER, CiCode, FlagKind, IndicatorCode
from .types_trial import Trial

__all__ = [
    "IndicatorDescriptor",
    "INDICATOR_DESCRIPTORS",
    "INDICATOR_ORDER",
    "compute_ci_codes",
    "merge_trial_indicators",
    "aggregate_ci_counts",
    "aggregate_indicator_counts",
    "indicator_label",
    "indicator_explanation",
]


@dataclass(frozen=True)
class IndicatorDescriptor:
    code: IndicatorCode
    label: str
    explanation: str
    category: str  # "quality" | "timing" | "content" | "input"
    is_auto: bool = True

    def to_dict(self) -> Dict[str, object]:
        return {
            "code": self.code.value,
            "label": self.label,
            "explanation": self.explanation,
            "category": self.category,
            "isAuto": self.is_auto,
        }


INDICATOR_DESCRIPTORS: Dict[IndicatorCode, IndicatorDescriptor] = {
    d.code: d for d in (
        IndicatorDescriptor(CiCode.F, "Failure to respond",
                            "The participant gave no response or the trial timed out.", "quality"),
        IndicatorDescriptor(CiCode.MSW, "Multi-word response",
                            "The participant typed more than one word in their response.", "content"),
        IndicatorDescriptor(CiCode.RSW, "Response = stimulus",
                            "The participant echoed back the stimulus word exactly.", "content"),
        IndicatorDescriptor(CiCode.PRT, "Prolonged RT",
                            "Reaction time was a statistical outlier on the slow end.", "timing"),
        IndicatorDescriptor(CiCode.P, "Perseveration",
                            "The same response was given for multiple stimuli.", "content"),
        IndicatorDescriptor(FlagKind.TIMING_OUTLIER_SLOW, "Slow outlier",
                            "Reaction time was unusually slow compared to the session median (MAD-based).",
                            "timing"),
        IndicatorDescriptor(FlagKind.TIMING_OUTLIER_FAST, "Fast outlier",
                            "Reaction time was unusually fast (under 200 ms).", "timing"),
        IndicatorDescriptor(FlagKind.EMPTY_RESPONSE, "Empty response",
                            "No text was entered before submission.", "quality"),
        IndicatorDescriptor(FlagKind.REPEATED_RESPONSE, "Repeated response",
                            "This exact response appeared in a previous trial.", "content"),
        IndicatorDescriptor(FlagKind.HIGH_EDITING, "High editing",
                            "An unusually high number of edits/backspaces occurred during this trial.",
                            "input"),
        IndicatorDescriptor(FlagKind.TIMEOUT, "Timeout",
                            "The trial ended because the time limit was reached.", "quality"),
    )
}

INDICATOR_ORDER: Tuple[IndicatorCode, ...] = CI_CODE_ORDER + FLAG_ORDER

_missing = [c for c in INDICATOR_ORDER if c not in INDICATOR_DESCRIPTORS]
if _missing:
    raise RuntimeError(f"indicator descriptors missing for {_missing}")


# =============================================================================
# CI CODES
# =============================================================================

def compute_ci_codes(trial: Trial, flags: Sequence[FlagKind]) -> List[CiCode]:
    """
    Deterministic CI codes for one trial, in canonical order.

    F (no response or timeout) suppresses every other code.
    """
    if trial.is_timed_out or FlagKind.TIMEOUT in flags or trial.is_empty:
        return [CiCode.F]

    normalized = trial.response.strip().lower()
    found = set()
    if normalized == trial.stimulus_word.strip().lower():
        found.add(CiCode.RSW)
    if any(ch.isspace() for ch in normalized):
        found.add(CiCode.MSW)
    if FlagKind.TIMING_OUTLIER_SLOW in flags:
        found.add(CiCode.PRT)
    if FlagKind.REPEATED_RESPONSE in flags:
        found.add(CiCode.P)
    return [c for c in CI_CODE_ORDER if c in found]


def merge_trial_indicators(ci_codes: Iterable[CiCode], flags: Iterable[FlagKind]) -> List[IndicatorCode]:
    """CI codes first, then flags, without duplicates."""
    result: List[IndicatorCode] = []
    for code in list(ci_codes) + list(flags):
        if code not in result:
            result.append(code)
    return result


def aggregate_ci_counts(per_trial: Iterable[Sequence[CiCode]]) -> Dict[CiCode, int]:
    counts = Counter(c for codes in per_trial for c in codes)
    return {c: counts[c] for c in CI_CODE_ORDER if counts[c]}


def aggregate_indicator_counts(per_trial: Iterable[Sequence[IndicatorCode]]) -> Dict[IndicatorCode, int]:
    counts = Counter(c for codes in per_trial for c in codes)
    return {c: counts[c] for c in INDICATOR_ORDER if counts[c]}


def indicator_label(code: IndicatorCode) -> str:
    return INDICATOR_DESCRIPTORS[code].label


def indicator_explanation(code: IndicatorCode) -> str:
    return INDICATOR_DESCRIPTORS[code].explanation
