"""
mapper/export.py - Research Bundles and Sealed Packages

Export pipeline:
    SessionResult -> build_bundle (privacy-scoped, rb_v3)
                  -> build_package (bundle + csv + csvRedacted, pkg_v1)
                  -> seal_package (packageHash over canonical JSON)

verify_package_integrity reverses the seal exactly. There is no partial
match: any changed byte in any field makes the package invalid.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence, Union

from receipts import StopRule, canonical_json, sha256_hex

from .constants import (
    EXPORT_SCHEMA_VERSION,
    HASH_ALGORITHM,
    PACKAGE_KEY_ORDER,
    PACKAGE_VERSION,
    PRIVACY_TABLE,
    PROTOCOL_DOC_VERSION,
    SCORING_ALGORITHM,
    PrivacyMode,
)
from .csv_export import session_to_csv
from .fingerprint import fingerprint_session
from .stimuli import StimulusList, get_stimulus_list, normalize_snapshot
from .types_session import SessionResult

logger = logging.getLogger(__name__)

__all__ = [
    "PrivacyModeError",
    "PackageFormatError",
    "PrivacyManifest",
    "IntegrityResult",
    "parse_privacy_mode",
    "build_bundle",
    "build_package",
    "seal_package",
    "compute_package_hash",
    "verify_package_integrity",
    "anonymize_bundle",
    "anonymous_session_id",
    "bundle_filename",
    "package_filename",
    "csv_filename",
    "pack_filename",
]


# =============================================================================
# ERRORS
# =============================================================================

class PrivacyModeError(StopRule):
    """Unknown privacy mode."""
    pass


class PackageFormatError(StopRule):
    """Payload is not a structurally valid bundle or package."""
    pass


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class PrivacyManifest:
    mode: PrivacyMode
    includes_stimulus_words: bool
    includes_responses: bool
    identifiers_anonymized: bool = False

    @classmethod
    def for_mode(cls, mode: PrivacyMode, identifiers_anonymized: bool = False) -> PrivacyManifest:
        words, responses = PRIVACY_TABLE[mode]
        return cls(mode, words, responses, identifiers_anonymized)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "includesStimulusWords": self.includes_stimulus_words,
            "includesResponses": self.includes_responses,
            "identifiersAnonymized": self.identifiers_anonymized,
        }


@dataclass(frozen=True)
class IntegrityResult:
    valid: bool
    expected: str
    actual: str

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "expected": self.expected, "actual": self.actual}


def parse_privacy_mode(mode: Union[str, PrivacyMode]) -> PrivacyMode:
    try:
        return PrivacyMode(mode)
    except ValueError:
        raise PrivacyModeError(f"unknown privacy mode: {mode!r}") from None


# =============================================================================
# BUNDLE
# =============================================================================

PackLookup = Callable[[str, str], Optional[StimulusList]]


def _resolve_pack_words(
    session: SessionResult,
    pack_lookup: Optional[PackLookup] = None,
) -> Optional[Sequence[str]]:
    """Registry pack, then the custom pack lookup, then the realized order (scored words only)."""
    pack_id, version = session.config.pack_id, session.config.pack_version
    pack = get_stimulus_list(pack_id, version)
    if pack is None and pack_lookup is not None:
        pack = pack_lookup(pack_id, version)
    if pack is not None:
        return pack.words
    if session.stimulus_order:
        return session.stimulus_order
    return None


def _pack_snapshot(
    session: SessionResult,
    manifest: PrivacyManifest,
    pack_words: Optional[Sequence[str]],
    pack_lookup: Optional[PackLookup],
) -> Dict[str, Any]:
    base = dict(session.stimulus_pack_snapshot or {
        "stimulusListHash": None,
        "stimulusSchemaVersion": None,
        "provenance": session.provenance_snapshot,
    })
    base.pop("words", None)
    if not manifest.includes_stimulus_words:
        return base
    words = pack_words if pack_words is not None else _resolve_pack_words(session, pack_lookup)
    return normalize_snapshot(base, words)


def build_bundle(
    session: SessionResult,
    mode: Union[str, PrivacyMode],
    exported_at: str,
    pack_words: Optional[Sequence[str]] = None,
    app_version: Optional[str] = None,
    anonymize: bool = False,
    pack_lookup: Optional[PackLookup] = None,
) -> Dict[str, Any]:
    """
    Privacy-scoped research bundle (rb_v3).

    Scoring and config are copied verbatim. In redacted mode every response
    is blanked in the artifact itself. Only full mode carries the pack word
    payload; whenever words are carried, the snapshot hash and schema
    version are populated too.

    Args:
        session: Completed session
        mode: full | minimal | redacted
        exported_at: ISO timestamp recorded in the bundle
        pack_words: Word list to attach (default: registry pack, pack_lookup, realized order)
        app_version: Exporting application version (default: session.app_version)
        anonymize: Apply anonymize_bundle before returning
        pack_lookup: (pack_id, version) -> StimulusList for packs outside the registry

    Raises:
        PrivacyModeError: if mode is unknown
    """
    manifest = PrivacyManifest.for_mode(parse_privacy_mode(mode))

    session_data = session.to_dict()
    if not manifest.includes_responses:
        for trial in session_data["trials"]:
            trial["association"]["response"] = ""

    bundle: Dict[str, Any] = {
        "exportSchemaVersion": EXPORT_SCHEMA_VERSION,
        "exportedAt": exported_at,
        "protocolDocVersion": PROTOCOL_DOC_VERSION,
        "appVersion": app_version if app_version is not None else session.app_version,
        "scoringAlgorithm": SCORING_ALGORITHM,
        "privacy": manifest.to_dict(),
        "sessionResult": session_data,
        "stimulusPackSnapshot": _pack_snapshot(session, manifest, pack_words, pack_lookup),
    }
    logger.debug("built %s bundle for session %s", manifest.mode.value, session.id)
    if anonymize:
        return anonymize_bundle(bundle)
    return bundle


# =============================================================================
# ANONYMIZATION
# =============================================================================

def anonymous_session_id(fingerprint: str) -> str:
    """anon_<first 16 hex of sha256(fingerprint)>. Stable per fingerprint."""
    return "anon_" + sha256_hex(fingerprint)[:16]


def anonymize_bundle(bundle: Dict[str, Any]) -> Dict[str, Any]:
    """
    New bundle with identifying timestamps and the session id removed.

    Session id becomes anon_<derived-from-fingerprint>; startedAt,
    completedAt and exportedAt become "". importedFrom, sessionFingerprint
    and scoring are untouched. The input bundle is not modified.

    Raises:
        PackageFormatError: if the bundle has no sessionResult object
    """
    result = copy.deepcopy(bundle)
    session_data = result.get("sessionResult")
    if not isinstance(session_data, dict):
        raise PackageFormatError("bundle has no sessionResult")

    fingerprint = session_data.get("sessionFingerprint")
    if not fingerprint:
        try:
            fingerprint = fingerprint_session(SessionResult.from_dict(session_data))
        except (KeyError, TypeError, ValueError) as e:
            raise PackageFormatError(f"cannot derive fingerprint: {e}") from e

    session_data["id"] = anonymous_session_id(fingerprint)
    session_data["startedAt"] = ""
    session_data["completedAt"] = ""
    result["exportedAt"] = ""
    privacy = dict(result.get("privacy") or {})
    privacy["identifiersAnonymized"] = True
    result["privacy"] = privacy
    return result


# =============================================================================
# PACKAGE
# =============================================================================

def _sorted_tree(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _sorted_tree(value[k]) for k in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_sorted_tree(v) for v in value]
    return value


def _package_canonical(package: Dict[str, Any]) -> str:
    """
    Fixed top-level key order, sorted keys below it.

    packageHash keeps its position as an empty placeholder; its value never
    enters the hash. Unknown top-level keys follow in sorted order so an
    added field also breaks the seal.
    """
    ordered: Dict[str, Any] = {}
    for key in PACKAGE_KEY_ORDER:
        ordered[key] = "" if key == "packageHash" else _sorted_tree(package.get(key))
    for key in sorted(k for k in package if k not in PACKAGE_KEY_ORDER):
        ordered[key] = _sorted_tree(package[key])
    return canonical_json(ordered, sort_keys=False)


def compute_package_hash(package: Dict[str, Any]) -> str:
    return sha256_hex(_package_canonical(package))


def seal_package(envelope: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of the envelope, in canonical key order, with packageHash set."""
    sealed = {key: envelope.get(key) for key in PACKAGE_KEY_ORDER}
    sealed.update({k: v for k, v in envelope.items() if k not in PACKAGE_KEY_ORDER})
    sealed["packageHash"] = compute_package_hash(sealed)
    return sealed


def build_package(
    session: SessionResult,
    mode: Union[str, PrivacyMode],
    exported_at: str,
    pack_words: Optional[Sequence[str]] = None,
    app_version: Optional[str] = None,
    pack_lookup: Optional[PackLookup] = None,
) -> Dict[str, Any]:
    """
    Sealed pkg_v1 envelope: bundle + csv + csvRedacted.

    In redacted mode the csv field is redacted as well.
    """
    privacy_mode = parse_privacy_mode(mode)
    bundle = build_bundle(session, privacy_mode, exported_at, pack_words, app_version, pack_lookup=pack_lookup)
    envelope = {
        "packageVersion": PACKAGE_VERSION,
        "packageHash": "",
        "hashAlgorithm": HASH_ALGORITHM,
        "exportedAt": exported_at,
        "bundle": bundle,
        "csv": session_to_csv(session, redacted=privacy_mode is PrivacyMode.REDACTED),
        "csvRedacted": session_to_csv(session, redacted=True),
    }
    package = seal_package(envelope)
    logger.info("sealed %s package for session %s: %s", privacy_mode.value, session.id, package["packageHash"])
    return package


def verify_package_integrity(package: Dict[str, Any]) -> IntegrityResult:
    """
    Recompute packageHash and compare with the stored value.

    Returns:
        IntegrityResult(valid, expected=stored hash, actual=recomputed hash)
    """
    expected = package.get("packageHash")
    expected = expected if isinstance(expected, str) else ""
    actual = compute_package_hash(package)
    valid = expected != "" and expected == actual
    if not valid:
        logger.warning("package integrity mismatch: expected=%s actual=%s", expected[:12], actual[:12])
    return IntegrityResult(valid=valid, expected=expected, actual=actual)


# =============================================================================
# FILENAMES
# =============================================================================

APP_SLUG = "cm"


def _sanitize(value: str) -> str:
    value = re.sub(r"[^a-zA-Z0-9._-]", "-", value)
    value = re.sub(r"-{2,}", "-", value)
    return value.strip("-")


def _stamp(now: datetime) -> str:
    return now.strftime("%Y%m%dT%H%M")


def bundle_filename(mode: Union[str, PrivacyMode], now: datetime, hash_prefix: Optional[str] = None) -> str:
    """cm_rb_v3_<mode>_<hash10>_<YYYYMMDD>T<HHmm>.json"""
    parts = [APP_SLUG, EXPORT_SCHEMA_VERSION, parse_privacy_mode(mode).value]
    if hash_prefix:
        parts.append(_sanitize(hash_prefix[:10]))
    parts.append(_stamp(now))
    return "_".join(parts) + ".json"


def package_filename(mode: Union[str, PrivacyMode], now: datetime, package_hash: Optional[str] = None) -> str:
    """cm_pkg_v1_<mode>_<hash10>_<YYYYMMDD>T<HHmm>.json"""
    parts = [APP_SLUG, PACKAGE_VERSION, parse_privacy_mode(mode).value]
    if package_hash:
        parts.append(_sanitize(package_hash[:10]))
    parts.append(_stamp(now))
    return "_".join(parts) + ".json"


def csv_filename(now: datetime, redacted: bool = False) -> str:
    parts = [APP_SLUG, "csv_v1", _stamp(now)]
    if redacted:
        parts.append("redacted")
    return "_".join(parts) + ".csv"


def pack_filename(pack_id: str, version: str, now: datetime) -> str:
    return "_".join([APP_SLUG, "pack", _sanitize(pack_id), _sanitize(version), now.strftime("%Y%m%d")]) + ".json"
