"""
mapper/scoring.py - Robust Trial Scoring

Turns a trial list into per-trial flags and summary statistics.
Slow outliers use the MAD-based modified z-score; everything else is a
fixed rule. Same input always yields an equal SessionScoring.
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Sequence, Set

import numpy as np
from scipy.stats import median_abs_deviation

from .constants import (
    FAST_THRESHOLD_MS,
    HIGH_EDITING_BACKSPACES,
    MIN_SAMPLE_FOR_SLOW,
    MODIFIED_Z_CONSTANT,
    MODIFIED_Z_THRESHOLD,
    FlagKind,
)
from .types_trial import SessionScoring, SessionSummary, Trial, TrialFlags

logger = logging.getLogger(__name__)

__all__ = ["score_session", "round2", "modified_z"]


# =============================================================================
# HELPERS
# =============================================================================

def round2(value: float) -> float:
    """Round to 2 decimals, half away from zero."""
    return float(Decimal(repr(float(value))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def modified_z(rt: float, median: float, mad: float) -> float:
    """0.6745 * (rt - median) / MAD. Caller guarantees mad > 0."""
    return MODIFIED_Z_CONSTANT * (rt - median) / mad


# =============================================================================
# CORE FUNCTION: score_session
# =============================================================================

def score_session(trials: Sequence[Trial]) -> SessionScoring:
    """
    Score a trial list (practice trials included in the input).

    Args:
        trials: Trials in presentation order

    Returns:
        SessionScoring whose trial indices refer to the non-practice subset
    """
    scored = [t for t in trials if not t.is_practice]
    if not scored:
        return SessionScoring()

    valid = np.array(
        [t.reaction_time_ms for t in scored if not t.is_timed_out and not t.is_empty],
        dtype=float,
    )
    slow_enabled = False
    median = mad = 0.0
    if valid.size >= MIN_SAMPLE_FOR_SLOW:
        median = float(np.median(valid))
        mad = float(median_abs_deviation(valid, scale=1.0))
        slow_enabled = mad > 0
    logger.debug("scoring %d trials, valid=%d, median=%s, mad=%s", len(scored), valid.size, median, mad)

    seen: Set[str] = set()
    trial_flags: List[TrialFlags] = []
    for i, trial in enumerate(scored):
        flags: List[FlagKind] = []
        if trial.is_timed_out:
            flags.append(FlagKind.TIMEOUT)
        elif trial.is_empty:
            flags.append(FlagKind.EMPTY_RESPONSE)
        else:
            key = trial.response.strip().lower()
            if key in seen:
                flags.append(FlagKind.REPEATED_RESPONSE)
            seen.add(key)
            rt = trial.reaction_time_ms
            if slow_enabled and modified_z(rt, median, mad) > MODIFIED_Z_THRESHOLD:
                flags.append(FlagKind.TIMING_OUTLIER_SLOW)
            if rt < FAST_THRESHOLD_MS:
                flags.append(FlagKind.TIMING_OUTLIER_FAST)

        if trial.backspace_count > HIGH_EDITING_BACKSPACES:
            flags.append(FlagKind.HIGH_EDITING)

        trial_flags.append(TrialFlags(trial_index=i, flags=tuple(flags)))

    return SessionScoring(trial_flags=tuple(trial_flags), summary=_summarize(scored, trial_flags))


def _summarize(scored: Sequence[Trial], trial_flags: Sequence[TrialFlags]) -> SessionSummary:
    rts = np.array([t.reaction_time_ms for t in scored], dtype=float)
    mean = float(np.mean(rts))
    std = float(np.std(rts)) if rts.size >= 2 else 0.0

    def count(*kinds: FlagKind) -> int:
        return sum(1 for tf in trial_flags if any(k in tf.flags for k in kinds))

    return SessionSummary(
        total_trials=len(scored),
        mean_rt=round2(mean),
        median_rt=round2(float(np.median(rts))),
        std_dev_rt=round2(std),
        empty_count=count(FlagKind.EMPTY_RESPONSE),
        repeated_count=count(FlagKind.REPEATED_RESPONSE),
        outlier_count=count(FlagKind.TIMING_OUTLIER_SLOW, FlagKind.TIMING_OUTLIER_FAST),
        high_editing_count=count(FlagKind.HIGH_EDITING),
        timeout_count=count(FlagKind.TIMEOUT),
    )
