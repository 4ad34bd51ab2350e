"""
Compact identity hashing for per-cell distinct counting.

Richness aggregation keeps one set of identities per cell. Storing the
species names themselves costs tens of bytes each across millions of
records, so each normalized name is folded into a 53-bit integer instead.

The hash runs two 32-bit multiplicative lanes over the UTF-8 bytes and
combines them after a final avalanche step. With a 53-bit space the
birthday bound keeps collisions well under 1e-6 for a few thousand
distinct names per cell. It is not a security hash.
"""

from typing import Optional

HASH_BITS = 53

_MASK32 = 0xFFFFFFFF
_HIGH_MASK = (1 << (HASH_BITS - 32)) - 1


def _imul(a: int, b: int) -> int:
    """32-bit wrapping multiply."""
    return (a * b) & _MASK32


def normalize_identity(text: Optional[str]) -> str:
    """
    Normalize an identity string before hashing.

    Trims, collapses runs of whitespace to a single space and case-folds,
    so "Panthera  onca " and "panthera onca" are the same identity.
    Returns an empty string for missing input.
    """
    if not text:
        return ""
    return " ".join(str(text).split()).casefold()


def identity_hash(text: str, seed: int = 0) -> int:
    """
    Hash a normalized identity to a non-negative integer below 2**53.

    Args:
        text: Normalized identity (see :func:`normalize_identity`)
        seed: Optional seed mixed into both lanes

    Returns:
        Deterministic 53-bit integer surrogate
    """
    h1 = (0xDEADBEEF ^ seed) & _MASK32
    h2 = (0x41C6CE57 ^ seed) & _MASK32

    for byte in text.encode("utf-8"):
        h1 = _imul(h1 ^ byte, 2654435761)
        h2 = _imul(h2 ^ byte, 1597334677)

    h1 = _imul(h1 ^ (h1 >> 16), 2246822507)
    h1 ^= _imul(h2 ^ (h2 >> 13), 3266489909)
    h2 = _imul(h2 ^ (h2 >> 16), 2246822507)
    h2 ^= _imul(h1 ^ (h1 >> 13), 3266489909)

    return ((h2 & _HIGH_MASK) << 32) | h1
