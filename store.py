"""
Double-buffered particle storage.

A tick reads `front` and writes `back`; `swap()` publishes the result. Origins
never change between respawns, so they live outside the two buffers.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np

log = logging.getLogger(__name__)


@dataclass
class ParticleState:
    position: np.ndarray     # (N, 4) float32, w = interaction flag
    velocity: np.ndarray     # (N, 4) float32, w = 0
    random_seed: np.ndarray  # (N,) uint32

    def __len__(self):
        return len(self.random_seed)

    def copy(self) -> "ParticleState":
        return ParticleState(self.position.copy(), self.velocity.copy(), self.random_seed.copy())

    def validate(self, n=None):
        if n is None:
            n = len(self.random_seed)
        if self.position.shape != (n, 4) or self.position.dtype != np.float32:
            raise ValueError(f"position must be float32 ({n}, 4), got {self.position.dtype} {self.position.shape}")
        if self.velocity.shape != (n, 4) or self.velocity.dtype != np.float32:
            raise ValueError(f"velocity must be float32 ({n}, 4), got {self.velocity.dtype} {self.velocity.shape}")
        if self.random_seed.shape != (n,) or self.random_seed.dtype != np.uint32:
            raise ValueError(f"random_seed must be uint32 ({n},), got {self.random_seed.dtype} {self.random_seed.shape}")
        flags = self.position[:, 3]
        if not np.all((flags == 0.0) | (flags == 1.0)):
            raise ValueError("position.w (interaction flag) must be 0 or 1")
        return self

    @classmethod
    def empty(cls, n: int) -> "ParticleState":
        return cls(
            np.zeros((n, 4), dtype=np.float32),
            np.zeros((n, 4), dtype=np.float32),
            np.zeros(n, dtype=np.uint32),
        )


class ParticleStore:
    def __init__(self, origin: np.ndarray, state: ParticleState):
        origin = np.asarray(origin, dtype=np.float32)
        n = len(state)
        if origin.shape != (n, 4):
            raise ValueError(f"origin must be ({n}, 4), got {origin.shape}")
        state.validate(n)

        self.origin = origin.copy()
        self.origin[:, 3] = 0.0
        self.origin.flags.writeable = False

        self.front = state.copy()
        self.back = ParticleState.empty(n)

    def __len__(self):
        return len(self.front)

    def swap(self):
        self.front, self.back = self.back, self.front

    def load(self, state: ParticleState):
        state.validate(len(self))
        np.copyto(self.front.position, state.position)
        np.copyto(self.front.velocity, state.velocity)
        np.copyto(self.front.random_seed, state.random_seed)


def _as_origins(origins, n):
    origins = np.asarray(origins, dtype=np.float32)
    if origins.ndim != 2 or origins.shape[1] not in (3, 4):
        raise ValueError(f"origins must be (N, 3) or (N, 4), got {origins.shape}")
    if n is not None and len(origins) != n:
        raise ValueError(f"expected {n} origins, got {len(origins)}")
    out = np.zeros((len(origins), 4), dtype=np.float32)
    out[:, :3] = origins[:, :3]
    return out


def random_origins(n, half_extents, rng) -> np.ndarray:
    """Uniform anchors inside the wall box."""
    ext = np.asarray(half_extents, dtype=np.float32)
    out = np.zeros((n, 4), dtype=np.float32)
    out[:, :3] = (rng.random((n, 3)).astype(np.float32) * 2.0 - 1.0) * ext
    return out


def initial_state(origin, vel_random_scaling, rng) -> ParticleState:
    """Particles start at their anchors, unflagged, with a small random velocity."""
    n = len(origin)
    state = ParticleState.empty(n)
    state.position[:, :3] = origin[:, :3]
    state.velocity[:, :3] = (rng.random((n, 3)).astype(np.float32) - 0.5) * np.float32(vel_random_scaling)
    state.random_seed[:] = rng.integers(0, 2**32, size=n, dtype=np.uint32)
    return state


def spawn(p, origins=None, rng=None) -> ParticleStore:
    if rng is None:
        rng = np.random.default_rng(p.seed)
    if origins is None:
        origin = random_origins(int(p.num_particles), p.box_half_extents, rng)
    else:
        origin = _as_origins(origins, None)
    state = initial_state(origin, p.vel_random_scaling, rng)
    log.debug("Spawned %d particles (seed=%s)", len(origin), p.seed)
    return ParticleStore(origin, state)
