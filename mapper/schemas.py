"""
mapper/schemas.py - JSON Schemas for Imported Artifacts (Draft 2020-12)

Structural checks only. Integrity is the package hash; these schemas decide
whether an embedded session is complete enough to import.
"""

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

__all__ = ["SESSION_SCHEMA", "BUNDLE_SCHEMA", "PACKAGE_SCHEMA", "schema_errors"]


_TRIAL_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["stimulus", "association"],
    "properties": {
        "stimulus": {
            "type": "object",
            "required": ["word", "index"],
            "properties": {
                "word": {"type": "string"},
                "index": {"type": "integer", "minimum": 0},
            },
        },
        "association": {
            "type": "object",
            "required": ["response", "reactionTimeMs"],
            "properties": {
                "response": {"type": "string"},
                "reactionTimeMs": {"type": "integer", "minimum": 0},
                "tFirstKeyMs": {"type": ["integer", "null"]},
                "backspaceCount": {"type": "integer", "minimum": 0},
                "editCount": {"type": "integer", "minimum": 0},
                "compositionCount": {"type": "integer", "minimum": 0},
            },
        },
        "isPractice": {"type": "boolean"},
        "timedOut": {"type": "boolean"},
    },
}

_SESSION_BODY: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "config", "trials", "scoring"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "config": {
            "type": "object",
            "required": ["stimulusListId", "stimulusListVersion"],
            "properties": {
                "stimulusListId": {"type": "string"},
                "stimulusListVersion": {"type": "string"},
                "orderPolicy": {"enum": ["fixed", "seeded"]},
                "seed": {"type": ["integer", "null"]},
                "trialTimeoutMs": {"type": "integer"},
                "breakEveryN": {"type": "integer"},
            },
        },
        "trials": {"type": "array", "items": _TRIAL_SCHEMA},
        "scoring": {
            "type": "object",
            "required": ["trialFlags", "summary"],
            "properties": {
                "trialFlags": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["trialIndex", "flags"],
                        "properties": {
                            "trialIndex": {"type": "integer", "minimum": 0},
                            "flags": {"type": "array", "items": {"type": "string"}},
                        },
                    },
                },
                "summary": {"type": "object"},
            },
        },
        "stimulusOrder": {"type": "array", "items": {"type": "string"}},
        "sessionFingerprint": {"type": ["string", "null"]},
        "importedFrom": {"type": ["object", "null"]},
    },
}

_BUNDLE_BODY: Dict[str, Any] = {
    "type": "object",
    "required": ["exportSchemaVersion", "sessionResult"],
    "properties": {
        "exportSchemaVersion": {"type": "string"},
        "exportedAt": {"type": "string"},
        "privacy": {
            "type": "object",
            "properties": {
                "mode": {"enum": ["full", "minimal", "redacted"]},
                "includesStimulusWords": {"type": "boolean"},
                "includesResponses": {"type": "boolean"},
                "identifiersAnonymized": {"type": "boolean"},
            },
        },
        "sessionResult": _SESSION_BODY,
        "stimulusPackSnapshot": {"type": ["object", "null"]},
    },
}

_DRAFT = "https://json-schema.org/draft/2020-12/schema"

SESSION_SCHEMA: Dict[str, Any] = {"$schema": _DRAFT, "title": "SessionResult", **_SESSION_BODY}
BUNDLE_SCHEMA: Dict[str, Any] = {"$schema": _DRAFT, "title": "ResearchBundle", **_BUNDLE_BODY}

PACKAGE_SCHEMA: Dict[str, Any] = {
    "$schema": _DRAFT,
    "title": "SessionPackage",
    "type": "object",
    "required": ["packageVersion", "packageHash", "hashAlgorithm", "exportedAt", "bundle", "csv", "csvRedacted"],
    "properties": {
        "packageVersion": {"type": "string"},
        "packageHash": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
        "hashAlgorithm": {"const": "sha-256"},
        "exportedAt": {"type": "string"},
        "bundle": _BUNDLE_BODY,
        "csv": {"type": "string"},
        "csvRedacted": {"type": "string"},
    },
}

_VALIDATORS = {
    "session": Draft202012Validator(SESSION_SCHEMA),
    "bundle": Draft202012Validator(BUNDLE_SCHEMA),
    "package": Draft202012Validator(PACKAGE_SCHEMA),
}


def schema_errors(kind: str, payload: Any) -> List[str]:
    """
    Validate payload against the named schema ('session', 'bundle', 'package').

    Returns:
        Error messages with their JSON path, empty when valid
    """
    validator = _VALIDATORS[kind]
    errors = sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.absolute_path])
    return [f"{'/'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}" for err in errors]
