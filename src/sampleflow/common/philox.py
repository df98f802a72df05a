from __future__ import annotations

import numpy as np

# Philox-4x32-10 constants (Salmon et al., 2011).
PHILOX_M4X32_A = 0xD2511F53
PHILOX_M4X32_B = 0xCD9E8D57
PHILOX_W32_A = 0x9E3779B9
PHILOX_W32_B = 0xBB67AE85
PHILOX_ROUNDS = 10

# Each Philox block yields this many uint32 draws.
RESULT_ELEMENT_COUNT = 4

U32_MASK = 0xFFFFFFFF
U64_MASK = 0xFFFFFFFFFFFFFFFF
U128_MASK = (1 << 128) - 1

_FLOAT32_ONE_BITS = np.uint32(127 << 23)
_MANTISSA_MASK = np.uint32(0x7FFFFF)


def _mulhilo32(a: int, b: int) -> tuple[int, int]:
    product = a * b
    return (product >> 32) & U32_MASK, product & U32_MASK


def philox4x32_10(counter: tuple[int, int, int, int], key: tuple[int, int]) -> tuple[int, int, int, int]:
    """Evaluate one Philox-4x32-10 block for a 128-bit counter and 64-bit key."""
    c0, c1, c2, c3 = (int(c) & U32_MASK for c in counter)
    k0, k1 = (int(k) & U32_MASK for k in key)
    for _ in range(PHILOX_ROUNDS):
        hi0, lo0 = _mulhilo32(PHILOX_M4X32_A, c0)
        hi1, lo1 = _mulhilo32(PHILOX_M4X32_B, c2)
        c0, c1, c2, c3 = hi1 ^ c1 ^ k0, lo1, hi0 ^ c3 ^ k1, lo0
        k0 = (k0 + PHILOX_W32_A) & U32_MASK
        k1 = (k1 + PHILOX_W32_B) & U32_MASK
    return c0, c1, c2, c3


def seed_key(seed: int) -> tuple[int, int]:
    seed_u64 = int(seed) & U64_MASK
    return seed_u64 & U32_MASK, seed_u64 >> 32


def block_counter(seed2: int, block: int) -> tuple[int, int, int, int]:
    """Counter words for ``block`` blocks past the stream origin ``seed2 << 64``."""
    value = (((int(seed2) & U64_MASK) << 64) + int(block)) & U128_MASK
    return (
        value & U32_MASK,
        (value >> 32) & U32_MASK,
        (value >> 64) & U32_MASK,
        (value >> 96) & U32_MASK,
    )


def uint32_to_float(x: int) -> float:
    """Map a uint32 to a float32 in [0, 1) using its low 23 bits as mantissa."""
    bits = np.array([int(x) & U32_MASK], dtype=np.uint32)
    bits = (bits & _MANTISSA_MASK) | _FLOAT32_ONE_BITS
    return float(bits.view(np.float32)[0] - np.float32(1.0))


def draw_uint32(seed: int, seed2: int, index: int) -> int:
    block, offset = divmod(int(index), RESULT_ELEMENT_COUNT)
    return philox4x32_10(block_counter(seed2, block), seed_key(seed))[offset]


def draw(seed: int, seed2: int, index: int) -> float:
    """The ``index``-th uniform value of the (seed, seed2) stream. Pure."""
    return uint32_to_float(draw_uint32(seed, seed2, index))


class PhiloxRandom:
    """Positional Philox stream: ``next()`` returns ``draw(seed, seed2, draw_count)``.

    The only state is ``draw_count``. The most recent block is cached so
    consecutive draws cost one Philox evaluation per four values.
    """

    def __init__(self, seed: int, seed2: int, draw_count: int = 0) -> None:
        if int(draw_count) < 0:
            raise ValueError(f"draw_count must be non-negative, got: {draw_count}")
        self._seed = int(seed)
        self._seed2 = int(seed2)
        self._key = seed_key(self._seed)
        self._draw_count = int(draw_count)
        self._block_index: int | None = None
        self._block: tuple[int, int, int, int] = (0, 0, 0, 0)

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def seed2(self) -> int:
        return self._seed2

    @property
    def draw_count(self) -> int:
        return self._draw_count

    def skip(self, count: int) -> None:
        if int(count) < 0:
            raise ValueError(f"Cannot skip a negative number of draws: {count}")
        self._draw_count += int(count)

    def next_uint32(self) -> int:
        block, offset = divmod(self._draw_count, RESULT_ELEMENT_COUNT)
        if block != self._block_index:
            self._block = philox4x32_10(block_counter(self._seed2, block), self._key)
            self._block_index = block
        self._draw_count += 1
        return self._block[offset]

    def next(self) -> float:
        return uint32_to_float(self.next_uint32())

    def __repr__(self) -> str:
        return f"PhiloxRandom(seed={self._seed}, seed2={self._seed2}, draw_count={self._draw_count})"
