"""
mapper/insights.py - Derived Session Read-Model

Pure function of (trials, scoring). Rebuilt wholesale on every call.

Scoring stores flags against the scored-subset index; every structure built
here is keyed by the ORIGINAL trial index (sessionTrialIndex), so practice
trials keep their slots.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .constants import (
    CLUSTER_MIN_SIZE,
    EMPTY_PENALTY,
    FLAG_ORDER,
    FLAGGED_OTHER_PENALTY,
    HISTOGRAM_BINS,
    LEGACY_TIMEOUT_SPELLING,
    MICRO_GOAL_EMPTY_LIMIT,
    MICRO_GOAL_SPIKINESS_MS,
    QUALITY_MAX,
    TIMEOUT_PENALTY,
    TOP_N_ANOMALIES,
    CiCode,
    FlagKind,
)
from .indicators import aggregate_ci_counts, compute_ci_codes
from .types_session import SessionResult

__all__ = [
    "TrialRef",
    "TimelinePoint",
    "Histogram",
    "ResponseCluster",
    "SessionInsights",
    "QualityIndex",
    "build_session_insights",
    "compute_quality_index",
    "get_micro_goal",
    "percentile_90",
    "build_histogram",
]


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class TrialRef:
    """Drilldown reference to one scored trial."""
    session_trial_index: int
    order_index: int
    position: int
    word: str
    reaction_time_ms: int
    flags: Tuple[FlagKind, ...]
    timed_out: bool
    response: str
    response_len: int
    t_first_key_ms: Optional[int]
    backspaces: int
    edits: int
    compositions: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionTrialIndex": self.session_trial_index,
            "orderIndex": self.order_index,
            "position": self.position,
            "word": self.word,
            "reactionTimeMs": self.reaction_time_ms,
            "flags": [f.value for f in self.flags],
            "timedOut": self.timed_out,
            "response": self.response,
            "responseLen": self.response_len,
            "tFirstKeyMs": self.t_first_key_ms,
            "backspaces": self.backspaces,
            "edits": self.edits,
            "compositions": self.compositions,
        }


@dataclass(frozen=True)
class TimelinePoint:
    session_trial_index: int
    x: int
    y: int
    timed_out: bool
    flags: Tuple[FlagKind, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionTrialIndex": self.session_trial_index,
            "x": self.x,
            "y": self.y,
            "timedOut": self.timed_out,
            "flags": [f.value for f in self.flags],
        }


@dataclass(frozen=True)
class Histogram:
    bin_edges: Tuple[float, ...] = ()
    counts: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"binEdges": list(self.bin_edges), "counts": list(self.counts)}


@dataclass(frozen=True)
class ResponseCluster:
    response: str
    count: int
    session_trial_indices: Tuple[int, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "count": self.count,
            "sessionTrialIndices": list(self.session_trial_indices),
        }


@dataclass(frozen=True)
class SessionInsights:
    # Quality
    trial_count: int
    scored_count: int
    practice_count: int
    empty_response_count: int
    timeout_count: int
    flagged_trial_count: int
    flagged_other_count: int
    non_empty_response_rate: float
    # Speed (scored, non-timeout)
    mean_rt_ms: float
    median_rt_ms: float
    p90_rt_ms: float
    spikiness_ms: float
    min_rt_ms: float
    max_rt_ms: float
    # Input
    total_backspaces: int
    total_edits: int
    total_compositions: int
    ime_used: bool
    # Anomalies and charts
    top_slow_trials: Tuple[TrialRef, ...]
    top_fast_trials: Tuple[TrialRef, ...]
    timeline: Tuple[TimelinePoint, ...]
    histogram: Histogram
    response_clusters: Tuple[ResponseCluster, ...]
    flag_counts: Dict[FlagKind, int]
    ci_counts: Dict[CiCode, int]
    # Drilldown
    trial_refs: Tuple[TrialRef, ...]
    trial_ref_by_session_trial_index: Dict[int, TrialRef] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trialCount": self.trial_count,
            "scoredCount": self.scored_count,
            "practiceCount": self.practice_count,
            "emptyResponseCount": self.empty_response_count,
            "timeoutCount": self.timeout_count,
            "flaggedTrialCount": self.flagged_trial_count,
            "flaggedOtherCount": self.flagged_other_count,
            "nonEmptyResponseRate": self.non_empty_response_rate,
            "meanRtMs": self.mean_rt_ms,
            "medianRtMs": self.median_rt_ms,
            "p90RtMs": self.p90_rt_ms,
            "spikinessMs": self.spikiness_ms,
            "minRtMs": self.min_rt_ms,
            "maxRtMs": self.max_rt_ms,
            "totalBackspaces": self.total_backspaces,
            "totalEdits": self.total_edits,
            "totalCompositions": self.total_compositions,
            "imeUsed": self.ime_used,
            "topSlowTrials": [r.to_dict() for r in self.top_slow_trials],
            "topFastTrials": [r.to_dict() for r in self.top_fast_trials],
            "timeline": [p.to_dict() for p in self.timeline],
            "histogram": self.histogram.to_dict(),
            "responseClusters": [c.to_dict() for c in self.response_clusters],
            "flagCounts": {k.value: v for k, v in self.flag_counts.items()},
            "ciCounts": {k.value: v for k, v in self.ci_counts.items()},
            "trialRefs": [r.to_dict() for r in self.trial_refs],
        }


@dataclass(frozen=True)
class QualityIndex:
    score: int
    penalties: Tuple[Tuple[str, int], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "penalties": [{"reason": r, "points": p} for r, p in self.penalties],
        }


# =============================================================================
# HELPERS
# =============================================================================

def _is_timeout_flag(flag: Any) -> bool:
    return flag == FlagKind.TIMEOUT or flag == LEGACY_TIMEOUT_SPELLING


def percentile_90(sorted_values: List[float]) -> float:
    """Nearest-rank p90: sorted[ceil(0.9 n) - 1], clamped at index 0."""
    if not sorted_values:
        return 0
    idx = max(0, math.ceil(0.9 * len(sorted_values)) - 1)
    return sorted_values[idx]


def build_histogram(rts: List[float]) -> Histogram:
    """
    Ten equal-width bins over [min, max]; the last bin includes max.

    n == 0 gives an empty histogram, n == 1 a single bin [rt, rt + 1).
    """
    if not rts:
        return Histogram()
    if len(rts) == 1:
        return Histogram(bin_edges=(rts[0], rts[0] + 1), counts=(1,))
    values = np.asarray(rts, dtype=float)
    lo, hi = float(values.min()), float(values.max())
    width = 1.0 if hi == lo else (hi - lo) / HISTOGRAM_BINS
    edges = tuple(lo + i * width for i in range(HISTOGRAM_BINS + 1))
    idx = np.minimum(np.floor((values - lo) / width).astype(int), HISTOGRAM_BINS - 1)
    counts = np.bincount(idx, minlength=HISTOGRAM_BINS)
    return Histogram(bin_edges=edges, counts=tuple(int(c) for c in counts))


def _response_clusters(refs: List[TrialRef]) -> Tuple[ResponseCluster, ...]:
    groups: Dict[str, List[int]] = {}
    for ref in refs:
        if ref.timed_out or ref.response.strip() == "":
            continue
        groups.setdefault(ref.response, []).append(ref.session_trial_index)
    clusters = [
        ResponseCluster(response=text, count=len(idx), session_trial_indices=tuple(idx))
        for text, idx in groups.items()
        if len(idx) >= CLUSTER_MIN_SIZE
    ]
    clusters.sort(key=lambda c: (-c.count, c.response))
    return tuple(clusters)


# =============================================================================
# CORE FUNCTION: build_session_insights
# =============================================================================

def build_session_insights(session: SessionResult) -> SessionInsights:
    """
    Summarise a completed session.

    Args:
        session: SessionResult with trials and scoring

    Returns:
        SessionInsights keyed by original trial index
    """
    subset_flags = {tf.trial_index: tf.flags for tf in session.scoring.trial_flags}

    refs: List[TrialRef] = []
    timeline: List[TimelinePoint] = []
    rts: List[float] = []
    ci_per_trial: List[List[CiCode]] = []
    empty = timeouts = flagged = flagged_other = 0

    position = 0
    for original_idx, trial in enumerate(session.trials):
        if trial.is_practice:
            continue
        flags = subset_flags.get(position, ())
        timed_out = trial.is_timed_out or any(_is_timeout_flag(f) for f in flags)
        response_len = len(trial.response)

        ref = TrialRef(
            session_trial_index=original_idx,
            order_index=trial.stimulus_order_index,
            position=position,
            word=trial.stimulus_word,
            reaction_time_ms=trial.reaction_time_ms,
            flags=tuple(flags),
            timed_out=timed_out,
            response=trial.response,
            response_len=response_len,
            t_first_key_ms=trial.first_keystroke_ms,
            backspaces=trial.backspace_count,
            edits=trial.edit_count,
            compositions=trial.ime_composition_count,
        )
        refs.append(ref)
        timeline.append(TimelinePoint(original_idx, position, trial.reaction_time_ms, timed_out, tuple(flags)))

        if timed_out:
            timeouts += 1
        else:
            rts.append(trial.reaction_time_ms)
            if trial.is_empty:
                empty += 1
        if flags:
            flagged += 1
        if any(not _is_timeout_flag(f) and f != FlagKind.EMPTY_RESPONSE for f in flags):
            flagged_other += 1

        ci_per_trial.append(compute_ci_codes(trial, flags))
        position += 1

    scored_count = len(refs)
    ordered = sorted(rts)
    lo = ordered[0] if ordered else 0
    hi = ordered[-1] if ordered else 0
    active = [r for r in refs if not r.timed_out]
    non_empty = sum(1 for r in active if r.response.strip())
    flag_counter = Counter(f for r in refs for f in r.flags)
    totals = [sum(getattr(r, name) for r in refs) for name in ("backspaces", "edits", "compositions")]

    return SessionInsights(
        trial_count=len(session.trials),
        scored_count=scored_count,
        practice_count=len(session.trials) - scored_count,
        empty_response_count=empty,
        timeout_count=timeouts,
        flagged_trial_count=flagged,
        flagged_other_count=flagged_other,
        non_empty_response_rate=0.0 if scored_count == 0 else non_empty / scored_count,
        mean_rt_ms=float(np.mean(ordered)) if ordered else 0.0,
        median_rt_ms=float(np.median(ordered)) if ordered else 0.0,
        p90_rt_ms=percentile_90(ordered),
        spikiness_ms=hi - lo,
        min_rt_ms=lo,
        max_rt_ms=hi,
        total_backspaces=totals[0],
        total_edits=totals[1],
        total_compositions=totals[2],
        ime_used=totals[2] > 0,
        top_slow_trials=tuple(sorted(active, key=lambda r: -r.reaction_time_ms)[:TOP_N_ANOMALIES]),
        top_fast_trials=tuple(sorted(active, key=lambda r: r.reaction_time_ms)[:TOP_N_ANOMALIES]),
        timeline=tuple(timeline),
        histogram=build_histogram(rts),
        response_clusters=_response_clusters(refs),
        flag_counts={f: flag_counter.get(f, 0) for f in FLAG_ORDER},
        ci_counts=aggregate_ci_counts(ci_per_trial),
        trial_refs=tuple(refs),
        trial_ref_by_session_trial_index={r.session_trial_index: r for r in refs},
    )


# =============================================================================
# QUALITY INDEX + MICRO-GOAL
# =============================================================================

def compute_quality_index(insights: SessionInsights) -> QualityIndex:
    """0-100 score. flaggedOtherCount keeps empty/timeout from being penalised twice."""
    penalties: List[Tuple[str, int]] = []
    if insights.empty_response_count > 0:
        penalties.append(("Empty responses", insights.empty_response_count * EMPTY_PENALTY))
    if insights.timeout_count > 0:
        penalties.append(("Timeouts", insights.timeout_count * TIMEOUT_PENALTY))
    if insights.flagged_other_count > 0:
        penalties.append(("Flagged trials (other)", insights.flagged_other_count * FLAGGED_OTHER_PENALTY))
    deduction = sum(p for _, p in penalties)
    score = max(0, min(QUALITY_MAX, QUALITY_MAX - deduction))
    return QualityIndex(score=score, penalties=tuple(penalties))


def get_micro_goal(insights: SessionInsights) -> str:
    if insights.empty_response_count > MICRO_GOAL_EMPTY_LIMIT:
        return f"Next run: aim for ≤ {MICRO_GOAL_EMPTY_LIMIT} empty responses"
    if insights.timeout_count > 0:
        return "Next run: avoid timeouts (consider breaks)"
    if insights.spikiness_ms > MICRO_GOAL_SPIKINESS_MS:
        return "Next run: try for steadier pace (lower spikes)"
    return "Next run: baseline repeat (stability check)"
