"""
Per-particle state transition, one particle at a time.

This is the reference rule; `sim.ParticleSim` and `sim_taichi.ParticleSimTaichi`
run the same math over every particle at once. Vectors are float32 vec4:
position.w is the interaction flag, velocity.w is always 0.

Tick for one particle:
  1. draw u from its seed; respawn if u > reset rate (lower once interacted)
  2. otherwise: integrate, drag + homing if flagged, capsule collision
     (first hit wins), tip-sphere fallback, wall reflection
"""
from __future__ import annotations

import numpy as np

from lcg import next_random

F32 = np.float32
_ZERO3 = np.zeros(3, dtype=np.float32)
_WORLD_AXES = np.eye(3, dtype=np.float32)


def _length(v) -> np.float32:
    return np.sqrt(np.dot(v, v))


def _normalize(v):
    n = _length(v)
    if n == 0 or not np.isfinite(n):
        return _ZERO3.copy()
    return (v / n).astype(np.float32)


def perpendicular(axis):
    """Fixed unit vector perpendicular to `axis` (used when no push direction exists)."""
    a = _normalize(np.asarray(axis, dtype=np.float32))
    if not np.any(a):
        return _WORLD_AXES[1].copy()
    e = _WORLD_AXES[int(np.argmin(np.abs(a)))]
    return _normalize(np.cross(a, e).astype(np.float32))


def _capsule_pass(pos3, out_pos, out_vel, colliders, p):
    for _, base, tip in colliders.active_pairs():
        height = tip[:3] - base[:3]
        h = _length(height)
        up = height / h
        rel = pos3 - base[:3]

        d = np.dot(up, rel)
        if not (d > 0 and d < h):
            continue

        c = np.cross(up, rel).astype(np.float32)
        dist = _length(c)
        boundary = (tip[3] - base[3]) * d / h + base[3]

        if boundary > dist:
            direction = _normalize(np.cross(c, up).astype(np.float32))
            if dist == 0:
                direction = perpendicular(up)
            movement = direction * boundary
            out_pos[:3] += movement
            out_pos[3] = 1.0
            out_vel[:3] += movement * F32(p.collision_kick)
            return True

        if boundary * F32(2.0) - dist > 0 and dist > 0:
            out_vel[:3] += (c / dist) * F32(p.swirl_strength)
    return False


def _tip_pass(pos3, out_pos, out_vel, colliders, p):
    for _, base, tip in colliders.active_pairs():
        pt = pos3 - tip[:3]
        dt = _length(pt)
        r = tip[3]

        if dt < r:
            if dt == 0:
                direction = perpendicular(tip[:3] - base[:3])
            else:
                direction = pt / dt
            movement = direction * r
            out_pos[:3] += movement
            out_pos[3] = 1.0
            out_vel[:3] += movement * F32(p.collision_kick)
            return True

        if r * F32(2.0) - dt > 0:
            tangent = np.array([pt[1], -pt[0]], dtype=np.float32)
            tl = _length(tangent)
            if tl > 0:
                out_vel[:2] += (tangent / tl) * F32(p.swirl_strength)
    return False


def reflect_walls(out_pos, out_vel, half_extents):
    """Mirror overshoot on every axis; checks are independent, no early exit."""
    for axis, limit in enumerate(half_extents):
        limit = F32(limit)
        if out_pos[axis] < -limit:
            out_pos[axis] += (out_pos[axis] + limit) * F32(2.0)
            out_vel[axis] *= F32(-1.0)
        if out_pos[axis] > limit:
            out_pos[axis] += (out_pos[axis] - limit) * F32(2.0)
            out_vel[axis] *= F32(-1.0)


def update_particle(position, velocity, origin, colliders, p):
    """
    Physics step for one particle (no respawn).

    position, velocity, origin: float32 vec4. colliders: ColliderSet (snapshot).
    Returns new (position, velocity) arrays; inputs are left untouched.
    """
    pos = np.asarray(position, dtype=np.float32)
    vel = np.asarray(velocity, dtype=np.float32)
    origin = np.asarray(origin, dtype=np.float32)
    pos3 = pos[:3]

    # A particle far outside the box saturates to inf like float32 on a GPU;
    # the normalize guards keep NaN out of the state.
    with np.errstate(over="ignore", invalid="ignore"):
        out_pos = pos.copy()
        out_pos[:3] = pos3 + vel[:3]
        out_vel = vel.copy()

        if pos[3] == 1.0:
            out_vel = vel * F32(p.drag)
            out_vel[:3] += _normalize(origin[:3] - out_pos[:3]) * F32(p.homing_strength)

        collided = _capsule_pass(pos3, out_pos, out_vel, colliders, p)
        if not collided:
            _tip_pass(pos3, out_pos, out_vel, colliders, p)

        reflect_walls(out_pos, out_vel, p.box_half_extents)
    return out_pos, out_vel


def respawn_velocity(seed, p):
    """Three draws, x then y then z, each mapped to [-0.5, 0.5] * scaling."""
    vel = np.zeros(4, dtype=np.float32)
    for axis in range(3):
        u, seed = next_random(seed)
        vel[axis] = (u - F32(0.5)) * F32(p.vel_random_scaling)
    return vel, seed


def reset_rate(flag, p) -> np.float32:
    return F32(p.reset_rate_interacted) if flag == 1.0 else F32(p.reset_rate_idle)


def step_particle(position, velocity, origin, seed, colliders, p):
    """
    Full tick for one particle: respawn decision, then respawn or physics.

    Returns (position, velocity, new_seed).
    """
    position = np.asarray(position, dtype=np.float32)
    origin = np.asarray(origin, dtype=np.float32)

    u, seed = next_random(seed)
    if u > reset_rate(position[3], p):
        out_pos = origin.copy()
        out_pos[3] = 0.0
        out_vel, seed = respawn_velocity(seed, p)
        return out_pos, out_vel, seed

    out_pos, out_vel = update_particle(position, velocity, origin, colliders, p)
    return out_pos, out_vel, seed
