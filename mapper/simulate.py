"""
mapper/simulate.py - Deterministic Simulated Sessions

Same seed, same session. Used by the CLI demo and by tests that need a
realistic scored session without a participant.
"""

import math
from datetime import datetime, timedelta, timezone

from .constants import SCORING_VERSION, OrderPolicy
from .fingerprint import compute_session_fingerprint
from .scoring import score_session
from .stimuli import mulberry32
from .types_session import SessionConfig, SessionResult
from .types_trial import Trial

DEMO_WORDS = (
    "apple", "river", "storm", "clock", "bridge",
    "forest", "mirror", "flame", "ocean", "shadow",
)

DEFAULT_TIMEOUT_MS = 3000
SIM_PACK_ID = "simulated"
SIM_PACK_VERSION = "1.0.0"

_EPOCH_BASE = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def _round(x: float) -> int:
    """Half-up rounding."""
    return math.floor(x + 0.5)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def simulate_session(seed: int, word_count: int = 10) -> SessionResult:
    """
    Build a scored SessionResult from the mulberry32 stream.

    Roughly 5% timeouts and 5% empty responses; IME compositions on
    positions 1 and 4. Timestamps derive from the seed, never the clock.
    """
    rng = mulberry32(seed)
    words = DEMO_WORDS[:max(0, min(word_count, len(DEMO_WORDS)))]

    trials = []
    for i, word in enumerate(words):
        timed_out = rng() < 0.05
        empty = not timed_out and rng() < 0.05
        if timed_out:
            rt = DEFAULT_TIMEOUT_MS
        else:
            rt = max(80, _round(350 + rng() * 300 + rng() * 200 - 100))
        first_key = None if (empty or timed_out) else _round(rt * 0.4 + rng() * 50)
        trials.append(Trial(
            stimulus_word=word,
            stimulus_order_index=i,
            response="" if empty else word,
            reaction_time_ms=rt,
            first_keystroke_ms=first_key,
            backspace_count=_round(rng() * 2),
            edit_count=_round(1 + rng() * 2),
            ime_composition_count=1 if i in (1, 4) else 0,
            timed_out=True if timed_out else None,
        ))

    config = SessionConfig(
        pack_id=SIM_PACK_ID,
        pack_version=SIM_PACK_VERSION,
        order_policy=OrderPolicy.FIXED,
        seed=None,
        trial_timeout_ms=DEFAULT_TIMEOUT_MS,
    )
    started = _EPOCH_BASE + timedelta(seconds=seed % 1_000_000)
    return SessionResult(
        id=f"sim_{seed}",
        config=config,
        trials=tuple(trials),
        scoring=score_session(trials),
        started_at=_iso(started),
        completed_at=_iso(started + timedelta(seconds=4 * len(words))),
        stimulus_order=tuple(words),
        seed_used=seed,
        provenance_snapshot={
            "listId": SIM_PACK_ID,
            "listVersion": SIM_PACK_VERSION,
            "language": "en",
            "source": "Simulated session - not clinically validated",
            "sourceName": "Complex Mapper Simulator",
            "sourceYear": "2026",
            "sourceCitation": "Internal simulation - not derived from any clinical instrument.",
            "licenseNote": "internal/sim",
            "wordCount": len(words),
        },
        session_fingerprint=compute_session_fingerprint(config, words, seed),
        scoring_version=SCORING_VERSION,
        app_version="simulated",
    )
