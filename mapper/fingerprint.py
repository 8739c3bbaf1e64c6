"""
mapper/fingerprint.py - Session Fingerprint

Hash of everything that determines a reproducible run: pack identity,
order policy, seed actually used, timeout, break interval and the realized
word order. Timestamps never enter the fingerprint.
"""

from typing import Optional, Sequence

from receipts import sha256_hex

from .constants import OrderPolicy
from .types_session import SessionConfig, SessionResult


def fingerprint_canonical(
    pack_id: str,
    pack_version: str,
    order_policy: OrderPolicy,
    seed: Optional[int],
    stimulus_order: Sequence[str],
    trial_timeout_ms: Optional[int] = None,
    break_every_n: Optional[int] = None,
) -> str:
    lines = [
        f"pack:{pack_id}@{pack_version}",
        f"order:{OrderPolicy(order_policy).value}",
        f"seed:{'null' if seed is None else seed}",
        f"timeout:{'none' if trial_timeout_ms is None else trial_timeout_ms}",
        f"break:{'none' if break_every_n is None else break_every_n}",
        f"words:{','.join(stimulus_order)}",
    ]
    return "\n".join(lines)


def compute_session_fingerprint(
    config: SessionConfig,
    stimulus_order: Sequence[str],
    seed_used: Optional[int] = None,
) -> str:
    """
    SHA-256 hex of the canonical fingerprint string.

    seed_used is the seed the run actually used. config.seed never
    substitutes for it; a run without one hashes as seed:null.
    """
    return sha256_hex(fingerprint_canonical(
        config.pack_id,
        config.pack_version,
        config.order_policy,
        seed_used,
        stimulus_order,
        config.trial_timeout_ms,
        config.break_every_n,
    ))


def fingerprint_session(session: SessionResult) -> str:
    return compute_session_fingerprint(session.config, session.stimulus_order, session.seed_used)
