"""
Shared fixtures: a hand-built session with two practice trials followed by
eight scored trials covering every flag kind.

Scored subset (original index = subset index + 2):
    0 tree     500  leaf
    1 house    520  home
    2 water    480  drink
    3 mother   510  home     repeated_response
    4 dark    3000  night    timing_outlier_slow
    5 journey  150  road     timing_outlier_fast
    6 bridge  3000  (timeout)
    7 child    490  ""       empty_response + high_editing
"""

import pytest

from mapper.constants import OrderPolicy, SCORING_VERSION
from mapper.fingerprint import compute_session_fingerprint
from mapper.scoring import score_session
from mapper.stimuli import DEMO_10
from mapper.types_session import SessionConfig, SessionResult
from mapper.types_trial import Trial


def _trial(word, rt, response, index, practice=False, timed_out=None, backspaces=0):
    return Trial(
        stimulus_word=word,
        stimulus_order_index=index,
        response=response,
        reaction_time_ms=rt,
        first_keystroke_ms=None if not response else rt // 3,
        backspace_count=backspaces,
        edit_count=1,
        ime_composition_count=0,
        is_practice=practice,
        timed_out=timed_out,
    )


@pytest.fixture
def make_trial():
    """Factory for Trial objects with sensible defaults."""
    def factory(word="word", rt=500, response="resp", index=0, **kwargs):
        return _trial(word, rt, response, index, **kwargs)
    return factory


@pytest.fixture
def sample_trials():
    return [
        _trial("warm", 500, "up", 0, practice=True),
        _trial("cold", 480, "hot", 1, practice=True),
        _trial("tree", 500, "leaf", 0),
        _trial("house", 520, "home", 1),
        _trial("water", 480, "drink", 2),
        _trial("mother", 510, "home", 3),
        _trial("dark", 3000, "night", 4),
        _trial("journey", 150, "road", 5),
        _trial("bridge", 3000, "", 6, timed_out=True),
        _trial("child", 490, "", 7, backspaces=5),
    ]


@pytest.fixture
def sample_config():
    return SessionConfig(
        pack_id=DEMO_10.id,
        pack_version=DEMO_10.version,
        order_policy=OrderPolicy.SEEDED,
        seed=1234,
        trial_timeout_ms=3000,
    )


@pytest.fixture
def sample_session(sample_trials, sample_config):
    order = tuple(t.stimulus_word for t in sample_trials if not t.is_practice)
    return SessionResult(
        id="session_001",
        config=sample_config,
        trials=tuple(sample_trials),
        scoring=score_session(sample_trials),
        started_at="2026-02-13T09:00:00.000Z",
        completed_at="2026-02-13T09:05:00.000Z",
        stimulus_order=order,
        seed_used=1234,
        provenance_snapshot=DEMO_10.snapshot_provenance(),
        session_fingerprint=compute_session_fingerprint(sample_config, order, 1234),
        scoring_version=SCORING_VERSION,
        app_version="1.0.0",
    )
