"""
Capsule colliders (tracked fingertips) and the bounded, ordered set the host
refreshes once per tick.

A collider is two radius-bearing endpoints packed as vec4 (x, y, z, radius):
`base` and `tip`. The packed arrays keep the uniform layout a GPU would get,
zero-padded up to `max_colliders`. A collider whose float32 height is zero
(base == tip, or so close that the squared length underflows) is inactive;
zero-filled padding slots fall into that case.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np

log = logging.getLogger(__name__)


def _vec4(v, name):
    arr = np.asarray(v, dtype=np.float32).reshape(-1)
    if arr.shape != (4,):
        raise ValueError(f"{name} must be (x, y, z, radius), got shape {arr.shape}")
    return arr


@dataclass
class Collider:
    base: np.ndarray   # (4,) float32: xyz + radius at the base
    tip: np.ndarray    # (4,) float32: xyz + radius at the tip

    def __post_init__(self):
        self.base = _vec4(self.base, "base")
        self.tip = _vec4(self.tip, "tip")

    @classmethod
    def from_points(cls, base_xyz, base_radius, tip_xyz, tip_radius):
        return cls(
            base=(*[float(c) for c in base_xyz], float(base_radius)),
            tip=(*[float(c) for c in tip_xyz], float(tip_radius)),
        )

    @property
    def height(self) -> float:
        return float(np.sqrt(axis_length_sq(self.base, self.tip)))

    @property
    def is_degenerate(self) -> bool:
        return is_degenerate(self.base, self.tip)


# Smallest normal float32. Squared axis lengths below it are zero or denormal,
# which some devices flush to zero, so they all count as degenerate.
MIN_AXIS_LENGTH_SQ = float(np.finfo(np.float32).tiny)


def axis_length_sq(base, tip) -> np.float32:
    d = np.asarray(tip, dtype=np.float32)[:3] - np.asarray(base, dtype=np.float32)[:3]
    with np.errstate(under="ignore"):
        return np.sum(d * d)


def is_degenerate(base, tip) -> bool:
    """True when the collider has no usable axis; it is then inactive in every backend."""
    return bool(axis_length_sq(base, tip) < MIN_AXIS_LENGTH_SQ)


class ColliderSet:
    """
    Bounded ordered list of colliders.

    Order is part of the contract: the first collider a particle hits wins.
    Backends only ever evaluate a frozen `snapshot()`.
    """

    def __init__(self, max_colliders: int = 8):
        self.max_colliders = int(max_colliders)
        self.bases = np.zeros((self.max_colliders, 4), dtype=np.float32)
        self.tips = np.zeros((self.max_colliders, 4), dtype=np.float32)
        self.count = 0
        self.frozen = False

    def __len__(self):
        return self.count

    def __iter__(self):
        for i in range(self.count):
            yield Collider(self.bases[i].copy(), self.tips[i].copy())

    def _check_mutable(self):
        if self.frozen:
            raise RuntimeError("Collider snapshot is read-only")

    def clear(self):
        self._check_mutable()
        self.bases[:] = 0.0
        self.tips[:] = 0.0
        self.count = 0

    def set(self, colliders):
        """Replace the contents with `colliders`, keeping their order."""
        self._check_mutable()
        colliders = list(colliders)
        if len(colliders) > self.max_colliders:
            log.warning("Got %d colliders, keeping the first %d",
                        len(colliders), self.max_colliders)
            colliders = colliders[:self.max_colliders]

        self.bases[:] = 0.0
        self.tips[:] = 0.0
        for i, c in enumerate(colliders):
            self.bases[i] = c.base
            self.tips[i] = c.tip
        self.count = len(colliders)
        return self

    @classmethod
    def from_arrays(cls, bases, tips, max_colliders=None):
        bases = np.asarray(bases, dtype=np.float32).reshape(-1, 4)
        tips = np.asarray(tips, dtype=np.float32).reshape(-1, 4)
        if bases.shape != tips.shape:
            raise ValueError(f"bases {bases.shape} and tips {tips.shape} differ")
        if max_colliders is None:
            max_colliders = len(bases)
        out = cls(max_colliders)
        return out.set(Collider(b, t) for b, t in zip(bases, tips))

    def active_pairs(self):
        """(index, base, tip) for every non-degenerate collider, in index order."""
        for i in range(self.count):
            if is_degenerate(self.bases[i], self.tips[i]):
                continue
            yield i, self.bases[i], self.tips[i]

    def snapshot(self) -> "ColliderSet":
        if self.frozen:
            return self
        snap = ColliderSet(self.max_colliders)
        snap.bases[:] = self.bases
        snap.tips[:] = self.tips
        snap.count = self.count
        snap.bases.flags.writeable = False
        snap.tips.flags.writeable = False
        snap.frozen = True
        return snap


def as_collider_set(colliders, max_colliders: int = 8) -> ColliderSet:
    """Accept a ColliderSet, an iterable of Collider, or a (bases, tips) pair."""
    if colliders is None:
        return ColliderSet(max_colliders)
    if isinstance(colliders, ColliderSet):
        if colliders.max_colliders == max_colliders:
            return colliders
        return ColliderSet(max_colliders).set(colliders)
    if isinstance(colliders, (tuple, list)) and len(colliders) == 2 and not isinstance(colliders[0], Collider):
        bases, tips = colliders
        out = ColliderSet.from_arrays(bases, tips)
        return ColliderSet(max_colliders).set(out)
    return ColliderSet(max_colliders).set(colliders)
