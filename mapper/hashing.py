"""
mapper/hashing.py - Word-List Digests

sha256 over words joined by newline. Case and padding are significant:
two lists that differ only in case or whitespace hash differently.
"""

from typing import Optional, Sequence

from receipts import sha256_hex


# Frozen digests of the built-in packs, keyed "<id>@<version>".
EXPECTED_HASHES = {
    "demo-10@1.0.0": "703387c3dee2fc429df5b478e20916e77e15cb949ea31a2fb1d6067eb8714201",
    "kent-rosanoff-1910@1.0.0": "31ab5dd87c812e7204231c8756ed3e2572befdb611a7320aaf601cedfbbbf210",
    "practice-100@1.0.0": "8f1826e7319fe607e7e2f2845ec7c3315f5db11ddcb9bdd8c774734e7c2febd6",
}


def compute_words_sha256(words: Sequence[str]) -> str:
    """SHA-256 hex of '\\n'.join(words), no trailing newline."""
    return sha256_hex("\n".join(words))


def expected_hash(pack_id: str, version: str) -> Optional[str]:
    return EXPECTED_HASHES.get(f"{pack_id}@{version}")


def verify_words(pack_id: str, version: str, words: Sequence[str]) -> bool:
    """True when the pack has no frozen digest or the words still match it."""
    expected = expected_hash(pack_id, version)
    if expected is None:
        return True
    return compute_words_sha256(words) == expected
