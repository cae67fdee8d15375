"""
32-bit integer hashing used as the Feistel round function.

This is the final mixing step of Bob Jenkins' lookup3 hash, applied to a single
32-bit word. It is bit-for-bit the same function PostgreSQL exposes as
hash_uint32(), so permutations computed here match the ones computed inside
the database.
"""

UINT32_MASK = 0xFFFFFFFF

# 0x9e3779b9 + sizeof(uint32) + 3923095
_INITVAL = (0x9E3779B9 + 4 + 3923095) & UINT32_MASK


def _rot(x: int, k: int) -> int:
    return ((x << k) | (x >> (32 - k))) & UINT32_MASK


def hash_uint32(k: int) -> int:
    """Hashes a 32-bit unsigned integer into another 32-bit unsigned integer."""
    a = b = c = _INITVAL
    a = (a + (k & UINT32_MASK)) & UINT32_MASK

    c ^= b
    c = (c - _rot(b, 14)) & UINT32_MASK
    a ^= c
    a = (a - _rot(c, 11)) & UINT32_MASK
    b ^= a
    b = (b - _rot(a, 25)) & UINT32_MASK
    c ^= b
    c = (c - _rot(b, 16)) & UINT32_MASK
    a ^= c
    a = (a - _rot(c, 4)) & UINT32_MASK
    b ^= a
    b = (b - _rot(a, 14)) & UINT32_MASK
    c ^= b
    c = (c - _rot(b, 24)) & UINT32_MASK
    return c
