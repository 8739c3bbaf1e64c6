"""
mapper/csv_export.py - Flat Trial CSV (csv_v1)

One row per trial, practice trials included (warmup=true). Columns may be
appended in later schema versions; existing columns never move.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from .constants import CSV_SCHEMA_VERSION, FlagKind
from .types_session import SessionResult

__all__ = ["CSV_HEADERS", "escape_csv", "session_rows", "sessions_to_csv", "session_to_csv"]


CSV_HEADERS: Tuple[str, ...] = (
    "csv_schema_version",
    "session_id",
    "session_fingerprint",
    "scoring_version",
    "pack_id",
    "pack_version",
    "seed",
    "order_index",
    "word",
    "warmup",
    "response",
    "t_first_input_ms",
    "t_submit_ms",
    "backspaces",
    "edits",
    "compositions",
    "timed_out",
    "flags",
    "emotions",
    "candidate_complexes",
)


def escape_csv(value: str) -> str:
    """Quote only when the cell contains a comma, quote or newline."""
    if "," in value or '"' in value or "\n" in value:
        return '"' + value.replace('"', '""') + '"'
    return value


def _opt(value: Optional[object]) -> str:
    return "" if value is None else str(value)


def _bool(value: bool) -> str:
    return "true" if value else "false"


def session_rows(session: SessionResult, redacted: bool = False) -> List[str]:
    """
    CSV lines (without header) for one session.

    Flags are looked up by scored-subset position, so practice rows carry
    no flags and scored rows line up with their own scoring entry.
    """
    rows: List[str] = []
    position = 0
    for trial in session.trials:
        flags: Sequence[FlagKind] = ()
        if not trial.is_practice:
            flags = session.scoring.flags_for(position)
            position += 1
        response = "" if redacted else trial.response
        values = [
            CSV_SCHEMA_VERSION,
            escape_csv(session.id),
            _opt(session.session_fingerprint),
            _opt(session.scoring_version),
            escape_csv(session.config.pack_id),
            escape_csv(session.config.pack_version),
            _opt(session.seed_used),
            str(trial.stimulus_order_index),
            escape_csv(trial.stimulus_word),
            _bool(trial.is_practice),
            escape_csv(response),
            _opt(trial.first_keystroke_ms),
            str(trial.reaction_time_ms),
            str(trial.backspace_count),
            str(trial.edit_count),
            str(trial.ime_composition_count),
            _bool(trial.is_timed_out),
            escape_csv("; ".join(f.value for f in flags)),
            "",
            "",
        ]
        rows.append(",".join(values))
    return rows


def sessions_to_csv(sessions: Iterable[SessionResult], redacted: bool = False) -> str:
    """Header plus every trial of every session, newline-joined, no trailing newline."""
    lines = [",".join(CSV_HEADERS)]
    for session in sessions:
        lines.extend(session_rows(session, redacted=redacted))
    return "\n".join(lines)


def session_to_csv(session: SessionResult, redacted: bool = False) -> str:
    return sessions_to_csv([session], redacted=redacted)
