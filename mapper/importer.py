"""
mapper/importer.py - Import Gatekeeper

Classifies an arbitrary JSON payload, verifies package integrity and
derives the one list of actions a caller may offer.

    package : has packageVersion and bundle
    bundle  : has exportSchemaVersion
    pack    : anything else (the payload is the pack)

get_available_actions is the only place actions are decided; rendering
and enablement both read from it.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from receipts import StopRule

from .constants import (
    ACTION_BLOCKED,
    ACTION_EXTRACT_PACK,
    ACTION_IMPORT_PACK,
    ACTION_IMPORT_SESSION,
    DEFAULT_COLLISION_RETRY_LIMIT,
    EXPORT_SCHEMA_VERSION,
    PACKAGE_VERSION,
    PROTOCOL_DOC_VERSION,
    SUPPORTED_EXPORT_SCHEMAS,
    SUPPORTED_PACKAGE_VERSIONS,
)
from .export import IntegrityResult, PackageFormatError, verify_package_integrity
from .schemas import schema_errors
from .types_session import ImportedFrom, SessionResult

logger = logging.getLogger(__name__)

__all__ = [
    "ImportType",
    "ImportCompat",
    "CompatWarning",
    "ImportPreview",
    "ImportCollisionError",
    "classify_payload",
    "extract_pack_from_bundle",
    "build_import_preview",
    "get_available_actions",
    "preview_actions",
    "compat_warnings",
    "resolve_import_id",
    "prepare_session_import",
]

ImportType = str  # "pack" | "bundle" | "package"


class ImportCollisionError(StopRule):
    """Every candidate id for an imported session is already taken."""
    pass


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class ImportCompat:
    export_schema_version: Optional[str] = None
    protocol_doc_version: Optional[str] = None
    imported_app_version: Optional[str] = None
    privacy_mode: Optional[str] = None
    package_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exportSchemaVersion": self.export_schema_version,
            "protocolDocVersion": self.protocol_doc_version,
            "importedAppVersion": self.imported_app_version,
            "privacyMode": self.privacy_mode,
            "packageVersion": self.package_version,
        }


@dataclass(frozen=True)
class CompatWarning:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True)
class ImportPreview:
    """Transient classification result. Never persisted."""
    type: ImportType
    pack_data: Dict[str, Any]
    word_count: int
    hash: Optional[str]
    schema_version: Optional[str]
    size_bytes: int
    integrity_result: Optional[IntegrityResult] = None
    session_to_import: Optional[SessionResult] = None
    package_version: Optional[str] = None
    package_hash: Optional[str] = None
    compat: Optional[ImportCompat] = None
    warnings: Tuple[CompatWarning, ...] = field(default_factory=tuple)

    @property
    def integrity_failed(self) -> bool:
        return self.integrity_result is not None and not self.integrity_result.valid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "packData": self.pack_data,
            "wordCount": self.word_count,
            "hash": self.hash,
            "schemaVersion": self.schema_version,
            "sizeBytes": self.size_bytes,
            "integrityResult": self.integrity_result.to_dict() if self.integrity_result else None,
            "sessionToImport": self.session_to_import.id if self.session_to_import else None,
            "packageVersion": self.package_version,
            "packageHash": self.package_hash,
            "compat": self.compat.to_dict() if self.compat else None,
            "warnings": [w.to_dict() for w in self.warnings],
            "actions": preview_actions(self),
        }


# =============================================================================
# CLASSIFICATION
# =============================================================================

def classify_payload(payload: Dict[str, Any]) -> ImportType:
    if "packageVersion" in payload and payload.get("bundle"):
        return "package"
    if "exportSchemaVersion" in payload:
        return "bundle"
    return "pack"


def extract_pack_from_bundle(bundle: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Pack payload carried by a bundle's stimulus snapshot.

    Requires a non-empty words array and a provenance object. Anything less
    means no extractable pack, which is not an error.
    """
    snapshot = bundle.get("stimulusPackSnapshot")
    if not isinstance(snapshot, dict):
        return None
    words = snapshot.get("words")
    provenance = snapshot.get("provenance")
    if not isinstance(words, list) or not words or not isinstance(provenance, dict) or not provenance:
        return None
    return {
        "id": provenance.get("listId"),
        "version": provenance.get("listVersion"),
        "language": provenance.get("language"),
        "source": provenance.get("source"),
        "provenance": {
            "sourceName": provenance.get("sourceName"),
            "sourceYear": provenance.get("sourceYear"),
            "sourceCitation": provenance.get("sourceCitation"),
            "licenseNote": provenance.get("licenseNote"),
        },
        "words": list(words),
        "stimulusSchemaVersion": snapshot.get("stimulusSchemaVersion"),
        "stimulusListHash": snapshot.get("stimulusListHash"),
    }


def _compat(bundle: Dict[str, Any], package_version: Optional[str] = None) -> ImportCompat:
    privacy = bundle.get("privacy") if isinstance(bundle.get("privacy"), dict) else {}
    return ImportCompat(
        export_schema_version=bundle.get("exportSchemaVersion"),
        protocol_doc_version=bundle.get("protocolDocVersion"),
        imported_app_version=bundle.get("appVersion"),
        privacy_mode=privacy.get("mode"),
        package_version=package_version,
    )


def compat_warnings(compat: Optional[ImportCompat], app_version: Optional[str] = None) -> List[CompatWarning]:
    """Advisory only. Warnings never block an import."""
    if compat is None:
        return []
    warns: List[CompatWarning] = []
    schema = compat.export_schema_version
    if schema and schema != EXPORT_SCHEMA_VERSION:
        if schema in SUPPORTED_EXPORT_SCHEMAS:
            message = f"Older schema version: {schema} (current: {EXPORT_SCHEMA_VERSION})"
        else:
            message = f"Unknown schema version: {schema} (supported: {', '.join(SUPPORTED_EXPORT_SCHEMAS)})"
        warns.append(CompatWarning("exportSchemaVersion", message))
    if compat.package_version and compat.package_version not in SUPPORTED_PACKAGE_VERSIONS:
        warns.append(CompatWarning(
            "packageVersion", f"Unknown package version: {compat.package_version} (current: {PACKAGE_VERSION})",
        ))
    if compat.protocol_doc_version and compat.protocol_doc_version != PROTOCOL_DOC_VERSION:
        warns.append(CompatWarning("protocolDocVersion", f"Different protocol version: {compat.protocol_doc_version}"))
    if app_version and compat.imported_app_version and compat.imported_app_version != app_version:
        warns.append(CompatWarning(
            "appVersion", f"Created with app v{compat.imported_app_version} (current: v{app_version})",
        ))
    return warns


def _session_from_bundle(bundle: Dict[str, Any]) -> Tuple[Optional[SessionResult], List[CompatWarning]]:
    raw = bundle.get("sessionResult")
    if raw is None:
        return None, []
    problems = schema_errors("session", raw)
    if problems:
        logger.warning("embedded session not importable: %s", problems[0])
        return None, [CompatWarning("sessionResult", f"Session not importable: {problems[0]}")]
    return SessionResult.from_dict(raw), []


def build_import_preview(
    payload: Any,
    raw_size_bytes: Optional[int] = None,
    app_version: Optional[str] = None,
) -> ImportPreview:
    """
    Classify a parsed JSON payload and gather everything a caller needs.

    Packages are verified here; a failed check is carried in
    integrity_result and blocks every action.

    Raises:
        PackageFormatError: if payload is not a JSON object
    """
    if not isinstance(payload, dict):
        raise PackageFormatError(f"expected a JSON object, got {type(payload).__name__}")

    size = raw_size_bytes if raw_size_bytes is not None else len(json.dumps(payload, ensure_ascii=False))
    kind = classify_payload(payload)
    integrity: Optional[IntegrityResult] = None
    session: Optional[SessionResult] = None
    compat: Optional[ImportCompat] = None
    warns: List[CompatWarning] = []
    package_version = package_hash = None

    if kind == "package":
        package_version = payload.get("packageVersion")
        package_hash = payload.get("packageHash") if isinstance(payload.get("packageHash"), str) else None
        integrity = verify_package_integrity(payload)
        bundle = payload["bundle"] if isinstance(payload["bundle"], dict) else {}
        pack_data = extract_pack_from_bundle(bundle) or {}
        compat = _compat(bundle, package_version)
        if integrity.valid:
            session, warns = _session_from_bundle(bundle)
    elif kind == "bundle":
        pack_data = extract_pack_from_bundle(payload) or {}
        compat = _compat(payload)
    else:
        pack_data = payload

    words = pack_data.get("words")
    preview = ImportPreview(
        type=kind,
        pack_data=pack_data,
        word_count=len(words) if isinstance(words, list) else 0,
        hash=pack_data.get("stimulusListHash"),
        schema_version=pack_data.get("stimulusSchemaVersion"),
        size_bytes=size,
        integrity_result=integrity,
        session_to_import=session,
        package_version=package_version,
        package_hash=package_hash,
        compat=compat,
        warnings=tuple(compat_warnings(compat, app_version) + warns),
    )
    logger.debug("import preview: type=%s words=%d session=%s", kind, preview.word_count, session is not None)
    return preview


# =============================================================================
# ACTIONS (single source of truth)
# =============================================================================

def get_available_actions(
    import_type: ImportType,
    word_count: int,
    has_session_to_import: bool,
    integrity_failed: bool,
) -> List[str]:
    if integrity_failed:
        return [ACTION_BLOCKED]
    if import_type == "package":
        actions = []
        if has_session_to_import:
            actions.append(ACTION_IMPORT_SESSION)
        if word_count > 0:
            actions.append(ACTION_EXTRACT_PACK)
        return actions or [ACTION_IMPORT_SESSION]
    return [ACTION_IMPORT_PACK]


def preview_actions(preview: ImportPreview) -> List[str]:
    return get_available_actions(
        preview.type,
        preview.word_count,
        preview.session_to_import is not None,
        preview.integrity_failed,
    )


# =============================================================================
# SESSION IMPORT
# =============================================================================

def resolve_import_id(
    original_id: str,
    package_hash: str,
    exists: Callable[[str], bool],
    retry_limit: int = DEFAULT_COLLISION_RETRY_LIMIT,
) -> str:
    """
    Collision-free id for an imported session.

    original_id when free; else <id>__import_<hash8>; else
    <id>__import_<hash8>__2 ... __<retry_limit>.

    Raises:
        ImportCollisionError: when every candidate is taken
    """
    if not exists(original_id):
        return original_id
    base = f"{original_id}__import_{package_hash[:8]}"
    if not exists(base):
        return base
    for attempt in range(2, retry_limit + 1):
        candidate = f"{base}__{attempt}"
        if not exists(candidate):
            return candidate
    raise ImportCollisionError(
        f"session id {original_id!r} still collides after {retry_limit} attempts"
    )


def prepare_session_import(
    preview: ImportPreview,
    exists: Callable[[str], bool],
    retry_limit: int = DEFAULT_COLLISION_RETRY_LIMIT,
) -> SessionResult:
    """
    New SessionResult ready to save: importedFrom attached, id collision-free.

    Raises:
        PackageFormatError: if the preview carries no importable session or failed integrity
        ImportCollisionError: if no free id is found within retry_limit
    """
    if preview.integrity_failed:
        raise PackageFormatError("package failed integrity verification")
    session = preview.session_to_import
    if session is None:
        raise PackageFormatError("payload carries no importable session")

    package_hash = preview.package_hash or ""
    new_id = resolve_import_id(session.id, package_hash, exists, retry_limit)
    if new_id != session.id:
        logger.warning("session id %s already exists; importing as %s", session.id, new_id)
    return dataclasses.replace(
        session,
        id=new_id,
        imported_from=ImportedFrom(
            package_version=preview.package_version or PACKAGE_VERSION,
            package_hash=package_hash,
            original_session_id=session.id,
        ),
    )
