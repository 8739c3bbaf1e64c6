"""
mapper/stimuli.py - Stimulus Packs

Versioned, attributable word lists: validation, the built-in registry,
seeded ordering and self-describing snapshots.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .constants import STIMULUS_SCHEMA_VERSION
from .hashing import compute_words_sha256

__all__ = [
    "StimulusProvenance",
    "StimulusList",
    "ValidationError",
    "validate_stimulus_list",
    "get_stimulus_list",
    "list_available_stimulus_lists",
    "mulberry32",
    "seeded_shuffle",
    "random_seed",
    "normalize_snapshot",
]

T = TypeVar("T")

_MASK32 = 0xFFFFFFFF


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class StimulusProvenance:
    source_name: str
    source_year: str
    source_citation: str
    license_note: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "sourceName": self.source_name,
            "sourceYear": self.source_year,
            "sourceCitation": self.source_citation,
            "licenseNote": self.license_note,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StimulusProvenance:
        return cls(
            source_name=data.get("sourceName") or "",
            source_year=str(data.get("sourceYear") or ""),
            source_citation=data.get("sourceCitation") or "",
            license_note=data.get("licenseNote") or "",
        )


@dataclass(frozen=True)
class StimulusList:
    """A versioned word list with provenance. Words are hashed exactly as stored."""
    id: str
    version: str
    language: str
    source: str
    provenance: StimulusProvenance
    words: Tuple[str, ...] = field(default_factory=tuple)
    stimulus_schema_version: Optional[str] = None
    stimulus_list_hash: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.words, list):
            object.__setattr__(self, "words", tuple(self.words))

    @property
    def key(self) -> str:
        return f"{self.id}@{self.version}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "version": self.version,
            "language": self.language,
            "source": self.source,
            "provenance": self.provenance.to_dict(),
            "words": list(self.words),
        }
        if self.stimulus_schema_version is not None:
            data["stimulusSchemaVersion"] = self.stimulus_schema_version
        if self.stimulus_list_hash is not None:
            data["stimulusListHash"] = self.stimulus_list_hash
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StimulusList:
        """Build from a validated payload (see validate_stimulus_list)."""
        return cls(
            id=data["id"],
            version=data["version"],
            language=data.get("language") or "",
            source=data.get("source") or "",
            provenance=StimulusProvenance.from_dict(data.get("provenance") or {}),
            words=tuple(data.get("words") or ()),
            stimulus_schema_version=data.get("stimulusSchemaVersion"),
            stimulus_list_hash=data.get("stimulusListHash"),
        )

    def snapshot_provenance(self) -> Dict[str, Any]:
        """Flat provenance record stored on sessions and bundles."""
        return {
            "listId": self.id,
            "listVersion": self.version,
            "language": self.language,
            "source": self.source,
            **self.provenance.to_dict(),
            "wordCount": len(self.words),
        }


@dataclass(frozen=True)
class ValidationError:
    field: str
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "code": self.code, "message": self.message}


# =============================================================================
# VALIDATION
# =============================================================================

def _blank(value: Any) -> bool:
    return not isinstance(value, str) or value.strip() == ""


def validate_stimulus_list(payload: Dict[str, Any]) -> List[ValidationError]:
    """
    Check a pack payload. Every problem is reported; nothing short-circuits.

    Returns:
        List of ValidationError, empty when the pack is valid
    """
    errors: List[ValidationError] = []

    for name, code in (("id", "MISSING_ID"), ("version", "MISSING_VERSION"),
                       ("language", "MISSING_LANGUAGE"), ("source", "MISSING_SOURCE")):
        if _blank(payload.get(name)):
            errors.append(ValidationError(name, code, f"{name} is required"))

    provenance = payload.get("provenance")
    if not isinstance(provenance, dict):
        errors.append(ValidationError("provenance", "MISSING_PROVENANCE", "provenance is required"))
    else:
        for name in ("sourceName", "sourceYear", "sourceCitation", "licenseNote"):
            if _blank(provenance.get(name)):
                errors.append(ValidationError(
                    f"provenance.{name}", "MISSING_PROVENANCE_FIELD", f"provenance.{name} is required",
                ))

    words = payload.get("words")
    if not isinstance(words, list) or not words:
        errors.append(ValidationError("words", "EMPTY_WORD_LIST", "words must be a non-empty array"))
        return errors

    blanks = [w for w in words if _blank(w)]
    if blanks:
        errors.append(ValidationError(
            "words", "BLANK_WORDS", f"{len(blanks)} blank or non-string word(s) found",
        ))

    seen = set()
    duplicates: List[str] = []
    for word in words:
        if not isinstance(word, str):
            continue
        normalized = word.strip().lower()
        if normalized in seen:
            duplicates.append(word)
        seen.add(normalized)
    if duplicates:
        errors.append(ValidationError(
            "words", "DUPLICATE_WORDS",
            f"{len(duplicates)} duplicate word(s): {', '.join(duplicates[:5])}",
        ))

    return errors


# =============================================================================
# BUILT-IN REGISTRY
# =============================================================================

DEMO_10 = StimulusList(
    id="demo-10",
    version="1.0.0",
    language="en",
    source="Project demo list (not clinically validated)",
    provenance=StimulusProvenance(
        source_name="Complex Mapper Project",
        source_year="2025",
        source_citation="Internal demo list - not derived from any clinical instrument.",
        license_note="Project-internal; no license restrictions.",
    ),
    words=("tree", "house", "water", "mother", "dark", "journey", "bridge", "child", "fire", "silence"),
)

# Kent, G. H., & Rosanoff, A. J. (1910). A study of association in insanity.
# American Journal of Insanity, 67, 37-96. Public domain.
KENT_ROSANOFF_1910 = StimulusList(
    id="kent-rosanoff-1910",
    version="1.0.0",
    language="en",
    source="Kent & Rosanoff (1910)",
    provenance=StimulusProvenance(
        source_name="Grace Helen Kent & Aaron Joshua Rosanoff",
        source_year="1910",
        source_citation=(
            'Kent, G. H., & Rosanoff, A. J. (1910). "A study of association in insanity." '
            "American Journal of Insanity, 67, 37-96."
        ),
        license_note="Public domain (published 1910, US copyright expired).",
    ),
    words=(
        "table", "dark", "music", "sickness", "man", "deep", "soft", "eating",
        "mountain", "house", "black", "mutton", "comfort", "hand", "short", "fruit",
        "butterfly", "smooth", "command", "chair", "sweet", "whistle", "woman", "cold",
        "slow", "wish", "river", "white", "beautiful", "window", "rough", "citizen",
        "foot", "spider", "needle", "red", "sleep", "anger", "carpet", "girl",
        "high", "working", "sour", "earth", "trouble", "soldier", "cabbage", "hard",
        "eagle", "stomach", "stem", "lamp", "dream", "yellow", "bread", "justice",
        "boy", "light", "health", "bible", "memory", "sheep", "bath", "cottage",
        "swift", "blue", "hungry", "priest", "ocean", "head", "stove", "long",
        "religion", "whiskey", "child", "bitter", "hammer", "thirsty", "city", "square",
        "butter", "doctor", "loud", "thief", "lion", "joy", "bed", "heavy",
        "tobacco", "baby", "moon", "scissors", "quiet", "green", "salt", "street",
        "king", "cheese", "blossom", "afraid",
    ),
)

_REGISTRY: Dict[str, StimulusList] = {pack.key: pack for pack in (DEMO_10, KENT_ROSANOFF_1910)}


def get_stimulus_list(pack_id: str, version: str) -> Optional[StimulusList]:
    """Registry lookup; None when the pack is unknown."""
    return _REGISTRY.get(f"{pack_id}@{version}")


def list_available_stimulus_lists() -> List[Dict[str, Any]]:
    return [
        {
            "id": pack.id,
            "version": pack.version,
            "language": pack.language,
            "source": pack.source,
            "wordCount": len(pack.words),
        }
        for pack in _REGISTRY.values()
    ]


# =============================================================================
# SEEDED ORDER
# =============================================================================

def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


def mulberry32(seed: int) -> Callable[[], float]:
    """32-bit mulberry32 generator; each call yields a float in [0, 1)."""
    state = seed & _MASK32

    def next_float() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & _MASK32
        t = _imul(state ^ (state >> 15), 1 | state)
        t = ((t + _imul(t ^ (t >> 7), 61 | t)) & _MASK32) ^ t
        return ((t ^ (t >> 14)) & _MASK32) / 4294967296

    return next_float


def seeded_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """Fisher-Yates driven by mulberry32. Returns a new list; same seed, same order."""
    result = list(items)
    rng = mulberry32(seed)
    for i in range(len(result) - 1, 0, -1):
        j = int(rng() * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result


def random_seed() -> int:
    return random.randrange(2147483647)


# =============================================================================
# SNAPSHOTS
# =============================================================================

def normalize_snapshot(
    snapshot: Optional[Dict[str, Any]],
    words: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """
    Make a stimulus-pack snapshot self-describing.

    When words are present (argument or snapshot["words"]) the copy always
    carries stimulusSchemaVersion and stimulusListHash. Without words the
    snapshot is returned unchanged.
    """
    base = dict(snapshot or {})
    effective = list(words) if words is not None else base.get("words")
    if not effective:
        return base
    if not base.get("stimulusSchemaVersion"):
        base["stimulusSchemaVersion"] = STIMULUS_SCHEMA_VERSION
    if not base.get("stimulusListHash"):
        base["stimulusListHash"] = compute_words_sha256(effective)
    base["words"] = list(effective)
    return base
