"""
Complex Mapper Configuration Schema - Self-Validating Runtime Config

This module defines MapperConfig, the runtime settings for storage, import
and export behaviour. Loaded once by the CLI and passed down explicitly.

Consumed by:
- cli.py (every command)
- mapper/storage.py (lock TTL, storage dir)
- mapper/importer.py (collision retry limit)

Design Principles:
- Self-validating: Can't create invalid config
- Self-healing: Invalid input → safe defaults + warnings
- Self-describing: Exports its JSON Schema
- Immutable: Frozen after load, no runtime mutation
"""

from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from jsonschema import Draft202012Validator

from receipts import canonical_json, sha256_hex


__all__ = [
    'MapperConfig',
    'load',
    'default',
    'ENV_OVERLAYS',
]


# =============================================================================
# JSON Schema Definition (Draft 2020-12)
# =============================================================================

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_PRIVACY_MODES = ("full", "minimal", "redacted")

_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": "https://complex-mapper.local/schemas/config/v1",
    "title": "MapperConfig",
    "description": "Complex Mapper runtime configuration",
    "type": "object",
    "properties": {
        "storage_dir": {
            "type": "string",
            "description": "Directory for JsonFileStorage records",
            "minLength": 1,
            "default": ".mapper"
        },
        "collision_retry_limit": {
            "type": "integer",
            "description": "Suffix attempts before an import id collision is fatal",
            "minimum": 1,
            "maximum": 1000,
            "default": 10
        },
        "draft_lock_ttl_ms": {
            "type": "integer",
            "description": "Age at which a draft lock may be stolen",
            "minimum": 1000,
            "default": 120000
        },
        "default_privacy_mode": {
            "type": "string",
            "description": "Privacy mode used when export is given none",
            "enum": list(_PRIVACY_MODES),
            "default": "full"
        },
        "log_level": {
            "type": "string",
            "description": "Root logging level for the CLI",
            "enum": list(_LOG_LEVELS),
            "default": "WARNING"
        },
        "app_version": {
            "type": "string",
            "description": "Version stamped into exports",
            "minLength": 1,
            "default": "1.0.0"
        }
    },
    "additionalProperties": False
}

Draft202012Validator.check_schema(_JSON_SCHEMA)

# Compiled once at import
_COMPILED_VALIDATOR = Draft202012Validator(_JSON_SCHEMA)

_DEFAULTS: Dict[str, Any] = {
    key: spec["default"] for key, spec in _JSON_SCHEMA["properties"].items()
}

# Environment variable → config field
ENV_OVERLAYS: Dict[str, str] = {
    "MAPPER_STORAGE_DIR": "storage_dir",
    "MAPPER_LOG_LEVEL": "log_level",
}


# =============================================================================
# MapperConfig
# =============================================================================

@dataclass(frozen=True)
class MapperConfig:
    """
    Complex Mapper runtime configuration.

    Attributes:
        storage_dir: Directory holding session, draft and pack records
        collision_retry_limit: Max `__N` suffix attempts on import id clash
        draft_lock_ttl_ms: Draft lock time-to-live in milliseconds
        default_privacy_mode: full | minimal | redacted
        log_level: Standard logging level name
        app_version: Version string written into bundles
    """
    storage_dir: str = ".mapper"
    collision_retry_limit: int = 10
    draft_lock_ttl_ms: int = 120_000
    default_privacy_mode: str = "full"
    log_level: str = "WARNING"
    app_version: str = "1.0.0"

    @property
    def schema(self) -> Dict[str, Any]:
        """JSON Schema dict for external validation."""
        return json.loads(json.dumps(_JSON_SCHEMA))

    @property
    def config_hash(self) -> str:
        """SHA-256 of the canonical field values."""
        return sha256_hex(canonical_json(self.to_dict()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'storage_dir': self.storage_dir,
            'collision_retry_limit': self.collision_retry_limit,
            'draft_lock_ttl_ms': self.draft_lock_ttl_ms,
            'default_privacy_mode': self.default_privacy_mode,
            'log_level': self.log_level,
            'app_version': self.app_version,
        }

    def to_json(self, pretty: bool = False) -> str:
        if pretty:
            return json.dumps(self.to_dict(), indent=2, sort_keys=True)
        return json.dumps(self.to_dict(), separators=(',', ':'))

    def save(self, path: str) -> None:
        """Write config to a .json, .yaml or .yml file."""
        path_obj = Path(path)
        if path_obj.suffix in ('.yaml', '.yml'):
            content = yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)
        else:
            content = self.to_json(pretty=True)
        path_obj.write_text(content, encoding="utf-8")

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        validate: bool = True,
        strict: bool = False
    ) -> MapperConfig:
        """Create from dictionary. Same validation as load()."""
        return _create_config(dict(data), validate, strict)


# =============================================================================
# Module-Level Functions
# =============================================================================

def load(
    path: Optional[str] = None,
    validate: bool = True,
    strict: bool = False,
    env: Optional[Mapping[str, str]] = None
) -> MapperConfig:
    """
    Load config from a JSON/YAML file, then overlay environment variables.

    Args:
        path: Config file; None starts from defaults
        validate: Whether to validate (default True)
        strict: If True, raise on invalid; if False, self-heal with warnings
        env: Environment mapping, os.environ when None

    Returns:
        Validated, frozen MapperConfig

    Raises:
        FileNotFoundError: If path is given and doesn't exist
        ValueError: If strict=True and validation fails, or the file
            does not hold a mapping
    """
    data: Dict[str, Any] = {}
    if path is not None:
        path_obj = Path(path)
        if not path_obj.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path_obj.read_text(encoding="utf-8")
        if path_obj.suffix in ('.yaml', '.yml'):
            loaded = yaml.safe_load(content)
        else:
            loaded = json.loads(content)

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must hold a mapping, got {type(loaded).__name__}")
        data.update(loaded)

    data.update(_env_overlay(os.environ if env is None else env))
    return _create_config(data, validate, strict)


def default() -> MapperConfig:
    """Return the all-defaults config."""
    return MapperConfig()


# =============================================================================
# Internal Validation Functions
# =============================================================================

def _env_overlay(env: Mapping[str, str]) -> Dict[str, Any]:
    overlay: Dict[str, Any] = {}
    for var, key in ENV_OVERLAYS.items():
        value = env.get(var)
        if value:
            overlay[key] = value.upper() if key == 'log_level' else value
    return overlay


def _validate(data: Dict[str, Any]) -> Tuple[bool, List[str], List[str]]:
    """
    Validate config data.

    Returns: (is_valid, errors, warnings)

    Unknown fields are warnings; wrong types, out-of-range numbers and
    values outside an enum are errors.
    """
    errors: List[str] = []
    warns: List[str] = []

    for err in _COMPILED_VALIDATOR.iter_errors(data):
        if err.validator == 'additionalProperties':
            extra = sorted(set(data) - set(_JSON_SCHEMA["properties"]))
            warns.extend(f"Ignoring unknown field: {name}" for name in extra)
        else:
            where = ".".join(str(p) for p in err.absolute_path) or "<root>"
            errors.append(f"{where}: {err.message}")

    is_valid = len(errors) == 0
    return is_valid, sorted(errors), warns


def _self_heal(data: Dict[str, Any], warns: List[str]) -> Dict[str, Any]:
    """
    Apply self-healing to config data.

    - Unknown field → drop, add warning
    - Invalid value → default, add warning
    - Integral floats → int
    """
    healed: Dict[str, Any] = {}
    props = _JSON_SCHEMA["properties"]

    for key, value in data.items():
        if key not in props:
            warns.append(f"Ignoring unknown field: {key}")
            continue
        if props[key]["type"] == "integer" and isinstance(value, float) and value.is_integer():
            value = int(value)
        if list(Draft202012Validator(props[key]).iter_errors(value)):
            warns.append(f"Invalid {key}={value!r}, using default: {_DEFAULTS[key]!r}")
            value = _DEFAULTS[key]
        healed[key] = value

    return healed


def _create_config(
    data: Dict[str, Any],
    validate: bool,
    strict: bool
) -> MapperConfig:
    """Internal factory: validation, self-healing, defaults."""
    all_warnings: List[str] = []

    if validate:
        is_valid, errors, warns = _validate(data)
        all_warnings.extend(warns)

        if not is_valid and strict:
            raise ValueError("Config validation failed:\n" + "\n".join(f"  - {e}" for e in errors))
        if not is_valid or warns:
            data = _self_heal(data, all_warnings)
            is_valid, errors, _ = _validate(data)
            if not is_valid:
                raise ValueError("Config validation failed after self-healing:\n" +
                                 "\n".join(f"  - {e}" for e in errors))

    # _self_heal re-reports unknown fields already listed by _validate
    for w in dict.fromkeys(all_warnings):
        warnings.warn(f"MapperConfig: {w}", UserWarning, stacklevel=3)

    merged = {**_DEFAULTS, **{k: v for k, v in data.items() if k in _DEFAULTS}}
    return MapperConfig(
        storage_dir=str(merged['storage_dir']),
        collision_retry_limit=int(merged['collision_retry_limit']),
        draft_lock_ttl_ms=int(merged['draft_lock_ttl_ms']),
        default_privacy_mode=str(merged['default_privacy_mode']),
        log_level=str(merged['log_level']),
        app_version=str(merged['app_version']),
    )
