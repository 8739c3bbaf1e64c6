"""
mapper/constants.py - Closed Enums, Versions and Thresholds

Every tunable number and every wire string lives here.
"""

from enum import Enum
from typing import Tuple, Union


# =============================================================================
# FLAGS AND CI CODES
# =============================================================================

class FlagKind(str, Enum):
    """Auto-scored per-trial flag."""
    TIMING_OUTLIER_SLOW = "timing_outlier_slow"
    TIMING_OUTLIER_FAST = "timing_outlier_fast"
    EMPTY_RESPONSE = "empty_response"
    REPEATED_RESPONSE = "repeated_response"
    HIGH_EDITING = "high_editing"
    TIMEOUT = "timeout"

    @classmethod
    def parse(cls, value: str) -> "FlagKind":
        """Wire string to FlagKind. The legacy spelling 'timed_out' maps to TIMEOUT."""
        if value == LEGACY_TIMEOUT_SPELLING:
            return cls.TIMEOUT
        return cls(value)


class CiCode(str, Enum):
    """Deterministic coding code derived from stimulus and response text."""
    F = "F"
    MSW = "MSW"
    RSW = "RSW"
    PRT = "PRT"
    P = "(P)"


IndicatorCode = Union[CiCode, FlagKind]

LEGACY_TIMEOUT_SPELLING = "timed_out"

CI_CODE_ORDER: Tuple[CiCode, ...] = (CiCode.F, CiCode.MSW, CiCode.RSW, CiCode.PRT, CiCode.P)
FLAG_ORDER: Tuple[FlagKind, ...] = tuple(FlagKind)


class PrivacyMode(str, Enum):
    FULL = "full"
    MINIMAL = "minimal"
    REDACTED = "redacted"


class OrderPolicy(str, Enum):
    FIXED = "fixed"
    SEEDED = "seeded"


# =============================================================================
# SCORING THRESHOLDS
# =============================================================================

SCORING_VERSION = "scoring_v2_mad_3.5"
SCORING_ALGORITHM = "MAD-modified-z@3.5 + fast<200ms + timeout excluded"

MODIFIED_Z_CONSTANT = 0.6745
MODIFIED_Z_THRESHOLD = 3.5
MIN_SAMPLE_FOR_SLOW = 5
FAST_THRESHOLD_MS = 200
HIGH_EDITING_BACKSPACES = 3


# =============================================================================
# INSIGHTS
# =============================================================================

HISTOGRAM_BINS = 10
TOP_N_ANOMALIES = 5
CLUSTER_MIN_SIZE = 2

QUALITY_MAX = 100
EMPTY_PENALTY = 5
TIMEOUT_PENALTY = 10
FLAGGED_OTHER_PENALTY = 2

MICRO_GOAL_EMPTY_LIMIT = 2
MICRO_GOAL_SPIKINESS_MS = 400


# =============================================================================
# EXPORT / IMPORT VERSIONS
# =============================================================================

EXPORT_SCHEMA_VERSION = "rb_v3"
SUPPORTED_EXPORT_SCHEMAS: Tuple[str, ...] = ("rb_v2", "rb_v3")
PACKAGE_VERSION = "pkg_v1"
SUPPORTED_PACKAGE_VERSIONS: Tuple[str, ...] = ("pkg_v1",)
PROTOCOL_DOC_VERSION = "PROTOCOL.md@2026-02-13"
HASH_ALGORITHM = "sha-256"
CSV_SCHEMA_VERSION = "csv_v1"
STIMULUS_SCHEMA_VERSION = "sp_v1"

PACKAGE_KEY_ORDER: Tuple[str, ...] = (
    "packageVersion",
    "packageHash",
    "hashAlgorithm",
    "exportedAt",
    "bundle",
    "csv",
    "csvRedacted",
)

# (includesStimulusWords, includesResponses)
PRIVACY_TABLE = {
    PrivacyMode.FULL: (True, True),
    PrivacyMode.MINIMAL: (False, True),
    PrivacyMode.REDACTED: (False, False),
}

ACTION_BLOCKED = "Blocked: Integrity mismatch"
ACTION_IMPORT_SESSION = "Import as Session"
ACTION_EXTRACT_PACK = "Extract Pack"
ACTION_IMPORT_PACK = "Import Pack"

DEFAULT_COLLISION_RETRY_LIMIT = 10


# =============================================================================
# DRAFT LOCK
# =============================================================================

DRAFT_LOCK_TTL_MS = 120_000
