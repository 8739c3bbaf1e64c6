"""
receipts.py - Foundation Module

Canonical hashing and audit receipts. ALL modules import from here.
This is the single source of truth for digests and canonical JSON.

One algorithm everywhere: SHA-256, lowercase hex, UTF-8 input.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Union

__all__ = [
    "sha256_hex",
    "canonical_json",
    "emit_receipt",
    "write_receipt_jsonl",
    "StopRule",
]


# =============================================================================
# CORE FUNCTION 1: sha256_hex
# =============================================================================

def sha256_hex(data: Union[bytes, str]) -> str:
    """
    SHA-256 digest of bytes or of the UTF-8 encoding of a string.

    Args:
        data: Bytes or string to hash

    Returns:
        str: 64 lowercase hex characters
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


# =============================================================================
# CORE FUNCTION 2: canonical_json
# =============================================================================

def canonical_json(data: Any, sort_keys: bool = True) -> str:
    """
    Compact JSON with stable key order.

    With sort_keys=False the insertion order of every dict is kept, which
    lets callers impose a fixed, non-alphabetical key order.
    """
    return json.dumps(
        data,
        sort_keys=sort_keys,
        separators=(",", ":"),
        ensure_ascii=False,
    )


# =============================================================================
# CORE FUNCTION 3: emit_receipt
# =============================================================================

def emit_receipt(receipt_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Audit record for an export, verification or import.

    Args:
        receipt_type: export | verify | import
        data: Flat, JSON-serializable payload

    Returns:
        dict: receipt_type, ts, payload_hash (over data only), then the data fields
    """
    return {
        "receipt_type": receipt_type,
        "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
        "payload_hash": sha256_hex(canonical_json(data)),
        **data,
    }


# =============================================================================
# CORE FUNCTION 4: write_receipt_jsonl
# =============================================================================

def write_receipt_jsonl(receipt: Dict[str, Any], fh) -> None:
    """
    Append receipt as single JSON line to file handle.

    Args:
        receipt: Receipt dict to write
        fh: File handle (must be open for writing)
    """
    line = json.dumps(receipt, separators=(",", ":"))
    fh.write(line + "\n")


# =============================================================================
# STOPRULE EXCEPTION
# =============================================================================

class StopRule(Exception):
    """Raised when an operation must not continue. Never catch silently."""
    pass
