"""
Format-preserving encryption of integers within an arbitrary [minval, maxval] range.

A balanced Feistel network permutes the 2**(2*hsz) values of the smallest
square power-of-two domain that covers the range, and cycle walking restricts
that permutation to the range itself: any output falling outside of it is fed
back into the network until one lands inside. The result is a keyed bijection
of the range onto itself, typically used to turn sequential identifiers into
unique but unpredictable ones that stay within the same bounds.

The construction, the key schedule and the round function are the ones of the
permuteseq PostgreSQL extension. For ranges of at most 2**62 elements (half
blocks narrower than 32 bits) values encrypted here can be decrypted by
range_decrypt_element() in the database and vice versa.
"""
import logging
from enum import IntEnum
from typing import List

from config import INT64_MIN, INT64_MAX, UINT64_MAX, FEISTEL_ROUNDS, MIN_RANGE_SIZE, CYCLE_WALK_MAX
from mixing import hash_uint32, UINT32_MASK

logger = logging.getLogger(f"permuteseq.{__name__}")

UINT64_MASK = UINT64_MAX
MAX_HALF_BLOCK_BITS = 32


# --- Exceptions ---

class CipherError(Exception):
    """Base class for errors raised by the range cipher."""
    pass

class RangeTooSmall(CipherError, ValueError):
    """The interval has fewer elements than the cipher needs."""
    pass

class ValueOutOfRange(CipherError, ValueError):
    """The value to encrypt or decrypt is not within [minval, maxval]."""
    pass

class CycleLimitExceeded(CipherError, RuntimeError):
    """Cycle walking did not reach the interval. Indicates a broken network, never retried."""
    pass


class Direction(IntEnum):
    ENCRYPT = 0
    DECRYPT = 1


# --- Range Validation ---

def _check_int64(name: str, n: int) -> None:
    if not INT64_MIN <= n <= INT64_MAX:
        raise ValueError(f"{name} must fit in a signed 64-bit integer, got {n}")

def interval_size(minval: int, maxval: int) -> int:
    """Number of integers in [minval, maxval]. Python integers cannot overflow here."""
    return maxval - minval + 1

def check_range(minval: int, maxval: int, minimum: int = MIN_RANGE_SIZE) -> None:
    """
    Ensures [minval, maxval] is a valid 64-bit interval holding at least `minimum` elements.

    Raises: ValueError if a bound does not fit in a signed 64-bit integer,
            RangeTooSmall if the interval is too short to be permuted.
    """
    _check_int64("minval", minval)
    _check_int64("maxval", maxval)
    if interval_size(minval, maxval) < minimum:
        raise RangeTooSmall(
            f"range [{minval},{maxval}] too short to encrypt: "
            f"the difference between maximum and minimum values should be at least {minimum - 1}."
        )

def check_value(value: int, minval: int, maxval: int) -> None:
    if not minval <= value <= maxval:
        raise ValueOutOfRange(f"invalid value: {value} is outside of range [{minval},{maxval}]")


# --- Key Schedule ---

def normalize_key(key: int) -> int:
    """Accepts a key given as a signed or unsigned 64-bit integer and returns its unsigned form."""
    if not INT64_MIN <= key <= UINT64_MAX:
        raise ValueError("crypt key must fit in 64 bits")
    return key & UINT64_MASK

def scramble_key(key: int) -> int:
    """
    Hashes each 32-bit half of the key separately.
    This protects against weak keys, such as ones with only a few low bits set.
    """
    key = normalize_key(key)
    low = hash_uint32(key & UINT32_MASK)
    high = hash_uint32((key >> 32) & UINT32_MASK)
    return (high << 32) | low

def round_subkey(scrambled_key: int, round_index: int, hsz: int,
                 direction: Direction = Direction.ENCRYPT, rounds: int = FEISTEL_ROUNDS) -> int:
    """
    Returns the 32-bit sub-key for one round.

    The sub-key of round j is a window of the scrambled key starting at bit
    (hsz * j) mod 64, plus j. Decryption at round i uses the sub-key of
    encryption round rounds-1-i.
    """
    j = round_index if direction == Direction.ENCRYPT else rounds - 1 - round_index
    window = (scrambled_key >> ((hsz * j) & 0x3F)) & UINT32_MASK
    return (window + j) & UINT32_MASK

def round_keys(scrambled_key: int, hsz: int, direction: Direction,
               rounds: int = FEISTEL_ROUNDS) -> List[int]:
    """Hashed sub-keys for every round, in the order the network consumes them."""
    return [
        hash_uint32(round_subkey(scrambled_key, i, hsz, direction, rounds))
        for i in range(rounds)
    ]


# --- Feistel Network ---

def half_block_bits(size: int) -> int:
    """Smallest hsz in [1, 32] such that two half blocks cover `size` values."""
    hsz = 1
    while hsz < MAX_HALF_BLOCK_BITS and (1 << (2 * hsz)) < size:
        hsz += 1
    return hsz

def feistel(block: int, hsz: int, keys: List[int]) -> int:
    """
    Runs one pass of the Feistel network over a 2*hsz bit block.

    The halves are swapped on output, so running the same network with the
    keys in reverse order undoes it.
    """
    mask = (1 << hsz) - 1
    l = block >> hsz
    r = block & mask
    for k in keys:
        l, r = r, (l ^ hash_uint32(r) ^ k) & mask
    return (r << hsz) | l

def cycle_walk(offset: int, size: int, hsz: int, keys: List[int],
               walk_max: int = CYCLE_WALK_MAX) -> int:
    """
    Applies the network to `offset`, then again to each output, until the
    result falls within [0, size).

    Raises: CycleLimitExceeded after `walk_max` walks outside the range.
    """
    result = feistel(offset, hsz, keys)
    walks = 0
    while result >= size:
        if walks >= walk_max:
            raise CycleLimitExceeded(f"infinite cycle walking prevented for offset {offset} ({walk_max} loops)")
        walks += 1
        result = feistel(result, hsz, keys)
    if walks:
        logger.debug(f"Cycle walking took {walks} extra pass(es) over a domain of {1 << (2 * hsz)} for size {size}")
    return result


# --- Public Operations ---

def _cycle_walking_cipher(value: int, minval: int, maxval: int, key: int, direction: Direction) -> int:
    check_range(minval, maxval)
    check_value(value, minval, maxval)

    size = interval_size(minval, maxval)
    hsz = half_block_bits(size)
    keys = round_keys(scramble_key(key), hsz, direction)
    return minval + cycle_walk(value - minval, size, hsz, keys)

def range_encrypt_element(value: int, minval: int, maxval: int, key: int) -> int:
    """Encrypts `value` into another element of [minval, maxval]."""
    return _cycle_walking_cipher(value, minval, maxval, key, Direction.ENCRYPT)

def range_decrypt_element(value: int, minval: int, maxval: int, key: int) -> int:
    """Recovers the element that range_encrypt_element() mapped to `value` with the same range and key."""
    return _cycle_walking_cipher(value, minval, maxval, key, Direction.DECRYPT)
