"""
mapper - Word-Association Timing Analysis and Export Integrity

Public API. Flat, focused files: one file = one responsibility.
"""

# =============================================================================
# CONSTANTS AND TYPES
# =============================================================================
from .constants import (
    FlagKind,
    CiCode,
    IndicatorCode,
    PrivacyMode,
    OrderPolicy,
    SCORING_VERSION,
    SCORING_ALGORITHM,
    EXPORT_SCHEMA_VERSION,
    PACKAGE_VERSION,
    CSV_SCHEMA_VERSION,
    DRAFT_LOCK_TTL_MS,
)
from .types_trial import Trial, TrialFlags, SessionSummary, SessionScoring
from .types_session import SessionConfig, ImportedFrom, SessionResult

# =============================================================================
# ANALYSIS
# =============================================================================
from .hashing import compute_words_sha256, EXPECTED_HASHES, verify_words
from .scoring import score_session, round2
from .indicators import (
    INDICATOR_DESCRIPTORS,
    compute_ci_codes,
    merge_trial_indicators,
    indicator_label,
    indicator_explanation,
)
from .insights import (
    SessionInsights,
    build_session_insights,
    compute_quality_index,
    get_micro_goal,
)
from .fingerprint import compute_session_fingerprint, fingerprint_session
from .reflection import generate_reflection_prompts
from .simulate import simulate_session

# =============================================================================
# STIMULI
# =============================================================================
from .stimuli import (
    StimulusList,
    ValidationError,
    validate_stimulus_list,
    get_stimulus_list,
    seeded_shuffle,
    normalize_snapshot,
)

# =============================================================================
# EXPORT / IMPORT
# =============================================================================
from .csv_export import CSV_HEADERS, sessions_to_csv, session_to_csv
from .export import (
    PrivacyModeError,
    PackageFormatError,
    IntegrityResult,
    build_bundle,
    build_package,
    seal_package,
    verify_package_integrity,
    anonymize_bundle,
)
from .importer import (
    ImportPreview,
    ImportCollisionError,
    build_import_preview,
    get_available_actions,
    resolve_import_id,
    prepare_session_import,
)

# =============================================================================
# PERSISTENCE
# =============================================================================
from .draft_lock import DraftLock, DraftLockManager
from .storage import MemoryStorage, JsonFileStorage, SessionStore, PackStore
