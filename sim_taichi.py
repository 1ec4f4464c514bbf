# pyright: reportInvalidTypeForm=false
import logging

import numpy as np
import taichi as ti

from colliders import MIN_AXIS_LENGTH_SQ, as_collider_set
from params import as_params
from store import ParticleState, initial_state, spawn

log = logging.getLogger(__name__)

_TAICHI_READY = False
_FLT_MAX = float(np.finfo(np.float32).max)


def ensure_ti(arch=None):
    global _TAICHI_READY
    if _TAICHI_READY:
        return
    if arch is not None:
        ti.init(arch=arch, fast_math=False)
        print(f"✅ Taichi {arch} (particles)")
    else:
        try:
            ti.init(arch=ti.cuda, device_memory_fraction=0.7, fast_math=False)
            print("✅ Taichi CUDA (particles)")
        except Exception:
            ti.init(arch=ti.cpu, fast_math=False)
            print("⚠️ Taichi CPU fallback (particles)")
    _TAICHI_READY = True


@ti.data_oriented
class ParticleSimTaichi:
    """
    Same particle rule as sim.ParticleSim, one Taichi lane per particle.

    Keeps the numpy backend's API:
      sim = ParticleSimTaichi(params=params)
      sim.set_colliders(colliders)   # once per tick, before step()
      sim.set_time(t)
      sim.step()
      sim.get_positions()

    Two sets of fields; a tick reads fields[front] and writes fields[1 - front].
    """

    def __init__(self, params=None, origins=None):
        ensure_ti()

        self.params = as_params(params)
        p = self.params
        self.rng = np.random.default_rng(p.seed)

        host = spawn(p, origins=origins, rng=self.rng)
        self.n = len(host)
        if self.n == 0:
            raise ValueError("ParticleSimTaichi needs at least one particle")
        self.origin_np = host.origin

        # ---------------- Constants (baked into the kernel) ----------------
        self.max_colliders = int(p.max_colliders)
        self.collider_slots = max(1, self.max_colliders)  # zero-size fields are not allowed
        self.box = tuple(float(x) for x in p.box_half_extents)
        self.drag = float(p.drag)
        self.homing_strength = float(p.homing_strength)
        self.collision_kick = float(p.collision_kick)
        self.swirl_strength = float(p.swirl_strength)
        self.reset_rate_interacted = float(p.reset_rate_interacted)
        self.reset_rate_idle = float(p.reset_rate_idle)
        self.vel_random_scaling = float(p.vel_random_scaling)

        # ---------------- Taichi fields ----------------
        self.origin = ti.Vector.field(4, dtype=ti.f32, shape=self.n)
        self.pos = [ti.Vector.field(4, dtype=ti.f32, shape=self.n) for _ in range(2)]
        self.vel = [ti.Vector.field(4, dtype=ti.f32, shape=self.n) for _ in range(2)]
        self.seed = [ti.field(dtype=ti.u32, shape=self.n) for _ in range(2)]
        self.front = 0

        self.collider_bases = ti.Vector.field(4, dtype=ti.f32, shape=self.collider_slots)
        self.collider_tips = ti.Vector.field(4, dtype=ti.f32, shape=self.collider_slots)

        self.time = 0.0
        self.time_delta = 0.0

        self.origin.from_numpy(self.origin_np)
        self._write_front(host.front)
        self.set_colliders(None)

    def __len__(self):
        return self.n

    # ========================= Public controls =========================

    def reset(self):
        state = initial_state(self.origin_np, self.vel_random_scaling, self.rng)
        self._write_front(state)
        log.debug("Reset %d particles", self.n)

    def set_colliders(self, colliders):
        snap = as_collider_set(colliders, self.max_colliders).snapshot()
        bases = np.zeros((self.collider_slots, 4), dtype=np.float32)
        tips = np.zeros((self.collider_slots, 4), dtype=np.float32)
        bases[:self.max_colliders] = snap.bases
        tips[:self.max_colliders] = snap.tips
        self.collider_bases.from_numpy(bases)
        self.collider_tips.from_numpy(tips)
        self.colliders = snap

    def set_time(self, time):
        # previous - current: sign is inverted relative to elapsed time
        if self.time != 0:
            self.time_delta = self.time - time
        self.time = time

    def get_time(self):
        return self.time

    def get_positions(self) -> np.ndarray:
        return self.pos[self.front].to_numpy()

    def get_velocities(self) -> np.ndarray:
        return self.vel[self.front].to_numpy()

    def get_seeds(self) -> np.ndarray:
        return self.seed[self.front].to_numpy().astype(np.uint32)

    def get_origins(self) -> np.ndarray:
        return self.origin_np.copy()

    def get_state(self) -> ParticleState:
        return ParticleState(self.get_positions(), self.get_velocities(), self.get_seeds())

    def load_state(self, state: ParticleState):
        self._write_front(state)

    def interaction_count(self) -> int:
        return int(np.count_nonzero(self.get_positions()[:, 3] == 1.0))

    def _write_front(self, state: ParticleState):
        state.validate(self.n)
        f = self.front
        self.pos[f].from_numpy(state.position)
        self.vel[f].from_numpy(state.velocity)
        self.seed[f].from_numpy(state.random_seed)

    # ========================= Core sim loop =========================

    def step(self):
        src = self.front
        dst = 1 - src
        self._step_kernel(self.pos[src], self.vel[src], self.seed[src],
                          self.pos[dst], self.vel[dst], self.seed[dst])
        self.front = dst

    # ========================= Taichi helpers =========================

    @ti.func
    def _advance(self, seed):
        return seed * ti.u32(214013) + ti.u32(2531011)

    @ti.func
    def _unit(self, seed):
        return ti.cast((seed >> ti.u32(16)) & ti.u32(0x7FFF), ti.f32) / 32767.0

    @ti.func
    def _perpendicular(self, a):
        ax = ti.abs(a[0])
        ay = ti.abs(a[1])
        az = ti.abs(a[2])
        e = ti.Vector([0.0, 0.0, 1.0])
        if ax <= ay and ax <= az:
            e = ti.Vector([1.0, 0.0, 0.0])
        elif ay <= az:
            e = ti.Vector([0.0, 1.0, 0.0])
        return a.cross(e).normalized()

    # ========================= Particle kernel =========================

    @ti.kernel
    def _step_kernel(self, src_pos: ti.template(), src_vel: ti.template(), src_seed: ti.template(),
                     dst_pos: ti.template(), dst_vel: ti.template(), dst_seed: ti.template()):
        for i in range(self.n):
            pos = src_pos[i]
            vel = src_vel[i]
            org = self.origin[i]

            # Respawn roll; touched particles linger longer
            seed = self._advance(src_seed[i])
            u = self._unit(seed)
            rate = self.reset_rate_idle
            if pos[3] == 1.0:
                rate = self.reset_rate_interacted

            out_pos = pos
            out_vel = vel

            if u > rate:
                out_pos = ti.Vector([org[0], org[1], org[2], 0.0])
                seed = self._advance(seed)
                vx = (self._unit(seed) - 0.5) * self.vel_random_scaling
                seed = self._advance(seed)
                vy = (self._unit(seed) - 0.5) * self.vel_random_scaling
                seed = self._advance(seed)
                vz = (self._unit(seed) - 0.5) * self.vel_random_scaling
                out_vel = ti.Vector([vx, vy, vz, 0.0])
            else:
                p3 = ti.Vector([pos[0], pos[1], pos[2]])
                out_pos = ti.Vector([pos[0] + vel[0], pos[1] + vel[1], pos[2] + vel[2], pos[3]])

                # --- Drag + homing ---
                if pos[3] == 1.0:
                    out_vel = vel * self.drag
                    home = ti.Vector([org[0] - out_pos[0], org[1] - out_pos[1], org[2] - out_pos[2]])
                    hl = home.norm()
                    # inf once a particle has run off far enough; skip like a zero vector
                    if hl > 0.0 and hl <= _FLT_MAX:
                        home = home / hl * self.homing_strength
                        out_vel += ti.Vector([home[0], home[1], home[2], 0.0])

                # --- Capsules: first hit wins, swirl accumulates ---
                collided = 0
                for k in range(self.collider_slots):
                    base = self.collider_bases[k]
                    tip = self.collider_tips[k]
                    height = ti.Vector([tip[0] - base[0], tip[1] - base[1], tip[2] - base[2]])
                    h2 = height.dot(height)
                    if h2 >= MIN_AXIS_LENGTH_SQ:
                        h = ti.sqrt(h2)
                        up = height / h
                        rel = p3 - ti.Vector([base[0], base[1], base[2]])
                        d = up.dot(rel)
                        if d > 0.0 and d < h:
                            c = up.cross(rel)
                            dist = c.norm()
                            boundary = (tip[3] - base[3]) * d / h + base[3]
                            if boundary > dist:
                                direction = self._perpendicular(up)
                                if dist > 0.0:
                                    direction = c.cross(up).normalized()
                                mv = direction * boundary
                                out_pos += ti.Vector([mv[0], mv[1], mv[2], 0.0])
                                out_pos[3] = 1.0
                                out_vel += ti.Vector([mv[0], mv[1], mv[2], 0.0]) * self.collision_kick
                                collided = 1
                                break
                            if boundary * 2.0 - dist > 0.0 and dist > 0.0:
                                t = c / dist * self.swirl_strength
                                out_vel += ti.Vector([t[0], t[1], t[2], 0.0])

                # --- Tip spheres for anything the capsules missed ---
                if collided == 0:
                    for k in range(self.collider_slots):
                        base = self.collider_bases[k]
                        tip = self.collider_tips[k]
                        height = ti.Vector([tip[0] - base[0], tip[1] - base[1], tip[2] - base[2]])
                        if height.dot(height) >= MIN_AXIS_LENGTH_SQ:
                            pt = p3 - ti.Vector([tip[0], tip[1], tip[2]])
                            dt = pt.norm()
                            r = tip[3]
                            if dt < r:
                                direction = self._perpendicular(height)
                                if dt > 0.0:
                                    direction = pt / dt
                                mv = direction * r
                                out_pos += ti.Vector([mv[0], mv[1], mv[2], 0.0])
                                out_pos[3] = 1.0
                                out_vel += ti.Vector([mv[0], mv[1], mv[2], 0.0]) * self.collision_kick
                                break
                            if r * 2.0 - dt > 0.0:
                                tl = ti.sqrt(pt[0] * pt[0] + pt[1] * pt[1])
                                if tl > 0.0:
                                    out_vel[0] += pt[1] / tl * self.swirl_strength
                                    out_vel[1] += -pt[0] / tl * self.swirl_strength

                # --- Walls ---
                for a in ti.static(range(3)):
                    lim = ti.static(self.box[a])
                    if out_pos[a] < -lim:
                        out_pos[a] += (out_pos[a] + lim) * 2.0
                        out_vel[a] *= -1.0
                    if out_pos[a] > lim:
                        out_pos[a] += (out_pos[a] - lim) * 2.0
                        out_vel[a] *= -1.0

            dst_pos[i] = out_pos
            dst_vel[i] = out_vel
            dst_seed[i] = seed
