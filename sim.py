"""
Particle field pushed around by fingertip capsules, vectorized with numpy.

State (double-buffered, see store.py):
- position: Nx4, xyz + interaction flag in w
- velocity: Nx4, w unused
- random_seed: N uint32, one LCG stream per particle
- origin: Nx4 anchors, fixed for the run

Per tick, for every particle at once:
- respawn roll (flagged particles respawn far less often)
- integrate, drag + homing for flagged particles
- capsule collision / swirl, first collider hit wins
- tip-sphere fallback for particles no capsule caught
- wall reflection
"""

import logging

import numpy as np

from colliders import as_collider_set
from lcg import next_random_array
from params import as_params
from physics import perpendicular
from store import ParticleState, initial_state, spawn

log = logging.getLogger(__name__)

F32 = np.float32


def _norm_rows(v):
    return np.sqrt(np.sum(v * v, axis=1))


def _normalize_rows(v):
    n = _norm_rows(v)[:, None]
    return np.divide(v, n, out=np.zeros_like(v), where=(n > 0) & np.isfinite(n))


class ParticleSim:
    def __init__(self, params=None, origins=None):
        self.params = as_params(params)
        self.rng = np.random.default_rng(self.params.seed)

        self.store = spawn(self.params, origins=origins, rng=self.rng)
        self.colliders = as_collider_set(None, self.params.max_colliders).snapshot()

        # Host clock; no rule reads these yet
        self.time = 0.0
        self.time_delta = 0.0

    def __len__(self):
        return len(self.store)

    def reset(self):
        """Respawn every slot at its anchor with a fresh velocity and seed."""
        state = initial_state(self.store.origin, self.params.vel_random_scaling, self.rng)
        self.store.load(state)
        log.debug("Reset %d particles", len(state))

    def set_colliders(self, colliders):
        self.colliders = as_collider_set(colliders, self.params.max_colliders).snapshot()

    def set_time(self, time):
        # previous - current: sign is inverted relative to elapsed time
        if self.time != 0:
            self.time_delta = self.time - time
        self.time = time

    def get_time(self):
        return self.time

    # ------------------------------------------------------------------ state

    def get_positions(self) -> np.ndarray:
        return self.store.front.position.copy()

    def get_velocities(self) -> np.ndarray:
        return self.store.front.velocity.copy()

    def get_seeds(self) -> np.ndarray:
        return self.store.front.random_seed.copy()

    def get_origins(self) -> np.ndarray:
        return self.store.origin.copy()

    def get_state(self) -> ParticleState:
        return self.store.front.copy()

    def load_state(self, state: ParticleState):
        self.store.load(state)

    def interaction_count(self) -> int:
        return int(np.count_nonzero(self.store.front.position[:, 3] == 1.0))

    # ------------------------------------------------------------------- tick

    def step(self):
        """Advance every particle one tick, then publish the new buffer."""
        src = self.store.front
        dst = self.store.back
        colliders = self.colliders

        pos, vel, seed = self._tick(src.position, src.velocity, src.random_seed,
                                    self.store.origin, colliders)

        np.copyto(dst.position, pos)
        np.copyto(dst.velocity, vel)
        np.copyto(dst.random_seed, seed)
        self.store.swap()

    def _tick(self, pos, vel, seed, origin, colliders):
        p = self.params

        # --- Respawn roll (always the first draw) ---
        u, seed = next_random_array(seed)
        flagged = pos[:, 3] == 1.0
        rate = np.where(flagged, F32(p.reset_rate_interacted), F32(p.reset_rate_idle))
        respawn = u > rate

        out_pos, out_vel = self._update(pos, vel, origin, colliders)

        # --- Respawn: back to the anchor, three more draws (x, y, z) ---
        idx = np.flatnonzero(respawn)
        if len(idx):
            s = seed[idx]
            new_vel = np.zeros((len(idx), 4), dtype=np.float32)
            for axis in range(3):
                r, s = next_random_array(s)
                new_vel[:, axis] = (r - F32(0.5)) * F32(p.vel_random_scaling)
            seed[idx] = s

            out_pos[idx, :3] = origin[idx, :3]
            out_pos[idx, 3] = 0.0
            out_vel[idx] = new_vel

        return out_pos, out_vel, seed

    def _update(self, pos, vel, origin, colliders):
        # Particles far outside the box saturate to inf; see physics.update_particle
        with np.errstate(over="ignore", invalid="ignore"):
            return self._integrate(pos, vel, origin, colliders)

    def _integrate(self, pos, vel, origin, colliders):
        p = self.params
        pos3 = pos[:, :3]

        # --- Integrate ---
        out_pos = pos.copy()
        out_pos[:, :3] = pos3 + vel[:, :3]
        out_vel = vel.copy()

        # --- Drag + homing for particles that were touched ---
        flagged = pos[:, 3] == 1.0
        if np.any(flagged):
            out_vel[flagged] = vel[flagged] * F32(p.drag)
            home = origin[flagged, :3] - out_pos[flagged, :3]
            out_vel[flagged, :3] += _normalize_rows(home) * F32(p.homing_strength)

        collided = self._capsules(pos3, out_pos, out_vel, colliders)
        self._tips(pos3, out_pos, out_vel, colliders, collided)
        self._reflect_walls(out_pos, out_vel)
        return out_pos, out_vel

    def _push(self, hit, movement, out_pos, out_vel):
        out_pos[hit, :3] += movement
        out_pos[hit, 3] = 1.0
        out_vel[hit, :3] += movement * F32(self.params.collision_kick)

    def _capsules(self, pos3, out_pos, out_vel, colliders):
        p = self.params
        collided = np.zeros(len(pos3), dtype=bool)

        for _, base, tip in colliders.active_pairs():
            height = tip[:3] - base[:3]
            h = np.sqrt(np.dot(height, height))
            up = height / h
            rel = pos3 - base[:3]

            d = rel @ up
            c = np.cross(up, rel).astype(np.float32)
            dist = _norm_rows(c)
            boundary = (tip[3] - base[3]) * d / h + base[3]

            # Particles already caught by an earlier collider are done
            inside = ~collided & (d > 0) & (d < h)
            hit = inside & (boundary > dist)

            if np.any(hit):
                direction = _normalize_rows(np.cross(c[hit], up).astype(np.float32))
                on_axis = dist[hit] == 0
                if np.any(on_axis):
                    direction[on_axis] = perpendicular(up)
                self._push(hit, direction * boundary[hit, None], out_pos, out_vel)
                collided |= hit

            # Force field band: tangential swirl, accumulates across colliders
            swirl = inside & ~hit & (boundary * F32(2.0) - dist > 0) & (dist > 0)
            if np.any(swirl):
                out_vel[swirl, :3] += (c[swirl] / dist[swirl, None]) * F32(p.swirl_strength)

        return collided

    def _tips(self, pos3, out_pos, out_vel, colliders, collided):
        p = self.params
        done = collided.copy()

        for _, base, tip in colliders.active_pairs():
            r = tip[3]
            pt = pos3 - tip[:3]
            dt = _norm_rows(pt)

            pending = ~done
            hit = pending & (dt < r)

            if np.any(hit):
                direction = _normalize_rows(pt[hit])
                at_tip = dt[hit] == 0
                if np.any(at_tip):
                    direction[at_tip] = perpendicular(tip[:3] - base[:3])
                self._push(hit, direction * r, out_pos, out_vel)
                done |= hit

            swirl = pending & ~hit & (r * F32(2.0) - dt > 0)
            if np.any(swirl):
                tangent = np.stack([pt[swirl, 1], -pt[swirl, 0]], axis=1)
                out_vel[swirl, :2] += _normalize_rows(tangent) * F32(p.swirl_strength)

    def _reflect_walls(self, out_pos, out_vel):
        for axis, limit in enumerate(self.params.box_half_extents):
            limit = F32(limit)

            low = out_pos[:, axis] < -limit
            out_pos[low, axis] += (out_pos[low, axis] + limit) * F32(2.0)
            out_vel[low, axis] *= F32(-1.0)

            high = out_pos[:, axis] > limit
            out_pos[high, axis] += (out_pos[high, axis] - limit) * F32(2.0)
            out_vel[high, axis] *= F32(-1.0)
