"""
Per-particle linear congruential generator.

Every particle carries its own 32-bit seed and threads it through each tick,
so there is no shared generator and lanes never synchronize.

    seed' = seed * 214013 + 2531011   (mod 2**32)
    value = ((seed' >> 16) & 0x7FFF) / 32767

The value is nominally in [0, 1); 1.0 comes out when all 15 bits are set.
"""
from __future__ import annotations

import numpy as np

LCG_MULTIPLIER = 214013
LCG_INCREMENT = 2531011
SEED_MASK = 0xFFFFFFFF
VALUE_MASK = 0x7FFF
VALUE_SCALE = np.float32(32767.0)


def advance(seed: int) -> int:
    return (int(seed) * LCG_MULTIPLIER + LCG_INCREMENT) & SEED_MASK


def seed_to_unit(seed: int) -> np.float32:
    return np.float32((int(seed) >> 16) & VALUE_MASK) / VALUE_SCALE


def next_random(seed: int) -> tuple[np.float32, int]:
    """Advance one step; returns (value, new_seed)."""
    new_seed = advance(seed)
    return seed_to_unit(new_seed), new_seed


def next_random_array(seeds: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Vectorized next_random over a uint32 array. The input is not modified."""
    seeds = np.asarray(seeds)
    if seeds.dtype != np.uint32:
        raise TypeError(f"seeds must be uint32, got {seeds.dtype}")
    # uint32 array arithmetic wraps, which is the mod 2**32
    new_seeds = seeds * np.uint32(LCG_MULTIPLIER) + np.uint32(LCG_INCREMENT)
    bits = (new_seeds >> np.uint32(16)) & np.uint32(VALUE_MASK)
    return bits.astype(np.float32) / VALUE_SCALE, new_seeds


def stream(seed: int, count: int) -> tuple[np.ndarray, int]:
    """Draw `count` values from one seed in order; returns (values, final_seed)."""
    values = np.empty(int(count), dtype=np.float32)
    for i in range(int(count)):
        values[i], seed = next_random(seed)
    return values, seed
