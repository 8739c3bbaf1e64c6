"""
tests/test_scoring.py - Scoring Engine Tests

MAD-based slow outliers, fixed-threshold flags, practice exclusion,
summary rounding and determinism.
"""

import numpy as np
import pytest

from mapper.constants import FlagKind
from mapper.scoring import modified_z, round2, score_session
from mapper.types_trial import SessionScoring, SessionSummary


def flags_by_index(scoring):
    return {tf.trial_index: set(tf.flags) for tf in scoring.trial_flags}


class TestSampleSession:
    """Flags and summary for the shared fixture session."""

    def test_practice_trials_excluded(self, sample_trials):
        """Practice trials never appear in trialFlags or totalTrials."""
        scoring = score_session(sample_trials)
        assert scoring.summary.total_trials == 8
        assert [tf.trial_index for tf in scoring.trial_flags] == list(range(8))

    def test_flags_per_scored_trial(self, sample_trials):
        """Each scored trial carries exactly the expected flags."""
        flags = flags_by_index(score_session(sample_trials))
        assert flags[0] == set()
        assert flags[1] == set()
        assert flags[2] == set()
        assert flags[3] == {FlagKind.REPEATED_RESPONSE}
        assert flags[4] == {FlagKind.TIMING_OUTLIER_SLOW}
        assert flags[5] == {FlagKind.TIMING_OUTLIER_FAST}
        assert flags[6] == {FlagKind.TIMEOUT}
        assert flags[7] == {FlagKind.EMPTY_RESPONSE, FlagKind.HIGH_EDITING}

    def test_summary_counts(self, sample_trials):
        """Counts per flag category; outliers count slow and fast together."""
        s = score_session(sample_trials).summary
        assert s.empty_count == 1
        assert s.repeated_count == 1
        assert s.outlier_count == 2
        assert s.high_editing_count == 1
        assert s.timeout_count == 1

    def test_summary_statistics_over_every_scored_trial(self, sample_trials):
        """Mean, median and population std include timeouts and empties."""
        rts = np.array([t.reaction_time_ms for t in sample_trials if not t.is_practice], dtype=float)
        s = score_session(sample_trials).summary
        assert s.mean_rt == 1081.25
        assert s.median_rt == 505.0
        assert s.std_dev_rt == round2(float(np.std(rts)))

    def test_deterministic(self, sample_trials):
        """Two calls on the same input are structurally equal."""
        assert score_session(sample_trials) == score_session(sample_trials)
        assert score_session(sample_trials).to_dict() == score_session(list(sample_trials)).to_dict()


class TestEdgeCases:
    """Sample size, MAD and precedence rules."""

    def test_empty_input(self):
        """No trials gives the zeroed scoring."""
        scoring = score_session([])
        assert scoring == SessionScoring()
        assert scoring.summary == SessionSummary()

    def test_only_practice(self, make_trial):
        """All-practice input behaves like no input."""
        trials = [make_trial(word=f"w{i}", index=i, practice=True) for i in range(3)]
        assert score_session(trials) == SessionScoring()

    def test_small_sample_never_slow(self, make_trial):
        """Fewer than five valid RTs disables the slow check."""
        trials = [make_trial(word=f"w{i}", rt=rt, response=f"r{i}", index=i)
                  for i, rt in enumerate([400, 410, 420, 90000])]
        flags = flags_by_index(score_session(trials))
        assert FlagKind.TIMING_OUTLIER_SLOW not in flags[3]

    def test_fast_flag_regardless_of_sample_size(self, make_trial):
        """A single 150 ms trial is still flagged fast."""
        scoring = score_session([make_trial(rt=150)])
        assert scoring.trial_flags[0].flags == (FlagKind.TIMING_OUTLIER_FAST,)

    def test_exactly_200ms_not_fast(self, make_trial):
        """Fast threshold is strict."""
        scoring = score_session([make_trial(rt=200)])
        assert scoring.trial_flags[0].flags == ()

    def test_zero_mad_disables_slow(self, make_trial):
        """Identical valid RTs give MAD 0; no division, no slow flag."""
        rts = [500, 500, 500, 500, 500, 500, 9000]
        trials = [make_trial(word=f"w{i}", rt=rt, response=f"r{i}", index=i) for i, rt in enumerate(rts)]
        flags = flags_by_index(score_session(trials))
        assert all(FlagKind.TIMING_OUTLIER_SLOW not in f for f in flags.values())

    def test_timeout_skips_content_checks(self, make_trial):
        """A timed-out trial is not checked for repeats and does not seed them."""
        trials = [
            make_trial(word="a", response="same", index=0, timed_out=True),
            make_trial(word="b", response="same", index=1),
            make_trial(word="c", response="same", index=2, timed_out=True),
        ]
        flags = flags_by_index(score_session(trials))
        assert flags[0] == {FlagKind.TIMEOUT}
        assert flags[1] == set()
        assert flags[2] == {FlagKind.TIMEOUT}

    def test_high_editing_applies_to_timeout(self, make_trial):
        """Backspace rule is independent of every other check."""
        scoring = score_session([make_trial(timed_out=True, backspaces=4)])
        assert set(scoring.trial_flags[0].flags) == {FlagKind.TIMEOUT, FlagKind.HIGH_EDITING}

    def test_three_backspaces_not_high_editing(self, make_trial):
        scoring = score_session([make_trial(backspaces=3)])
        assert FlagKind.HIGH_EDITING not in scoring.trial_flags[0].flags

    def test_repeat_is_trimmed_and_case_insensitive(self, make_trial):
        """'Home' and ' home ' are the same response."""
        trials = [
            make_trial(word="a", response="Home", index=0),
            make_trial(word="b", response=" home ", index=1),
        ]
        flags = flags_by_index(score_session(trials))
        assert flags[1] == {FlagKind.REPEATED_RESPONSE}

    def test_whitespace_response_is_empty(self, make_trial):
        """Empty means the trimmed response is blank."""
        scoring = score_session([make_trial(response="   ")])
        assert scoring.trial_flags[0].flags == (FlagKind.EMPTY_RESPONSE,)

    def test_slow_threshold(self, make_trial):
        """Modified z above 3.5 is slow; the sample median trial is not."""
        rts = [400, 420, 440, 460, 480, 2000]
        trials = [make_trial(word=f"w{i}", rt=rt, response=f"r{i}", index=i) for i, rt in enumerate(rts)]
        flags = flags_by_index(score_session(trials))
        assert FlagKind.TIMING_OUTLIER_SLOW in flags[5]
        assert all(FlagKind.TIMING_OUTLIER_SLOW not in flags[i] for i in range(5))


class TestHelpers:
    """round2 and modified_z."""

    @pytest.mark.parametrize("value,expected", [
        (2.675, 2.68),
        (-2.675, -2.68),
        (1.005, 1.01),
        (0.125, 0.13),
        (3.0, 3.0),
    ])
    def test_round2_half_away_from_zero(self, value, expected):
        assert round2(value) == expected

    def test_modified_z(self):
        assert modified_z(525, 505, 20) == pytest.approx(0.6745)
