# app.py - headless particle field driven by two synthetic fingertips
import logging
import math
import time

from colliders import Collider, ColliderSet
from params import Params

USE_TAICHI = True
RUN_SECONDS = 10.0
NUM_PARTICLES = 65536

# Synthetic fingertips: capsules orbiting the middle of the box
FINGER_LENGTH = 0.9
FINGER_BASE_RADIUS = 0.16
FINGER_TIP_RADIUS = 0.12
ORBIT_RADIUS = 2.4
ORBIT_SPEED = 0.8   # rad / s


def make_sim(params):
    if USE_TAICHI:
        from sim_taichi import ParticleSimTaichi
        return ParticleSimTaichi(params=params)
    from sim import ParticleSim
    return ParticleSim(params=params)


def finger_colliders(t, colliders: ColliderSet):
    """Two fingers pointing into the screen, circling opposite each other."""
    fingers = []
    for hid in range(2):
        a = t * ORBIT_SPEED + hid * math.pi
        x = ORBIT_RADIUS * math.cos(a)
        y = 0.8 * math.sin(2.0 * a)
        base = (x, y, 1.8)
        tip = (x, y, 1.8 - FINGER_LENGTH)
        fingers.append(Collider.from_points(base, FINGER_BASE_RADIUS, tip, FINGER_TIP_RADIUS))
    return colliders.set(fingers)


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    params = Params(num_particles=NUM_PARTICLES)
    sim = make_sim(params)
    colliders = ColliderSet(params.max_colliders)

    print("\n" + "=" * 60)
    print("✨ FINGERTIP PARTICLE FIELD (headless)")
    print("=" * 60)
    print(f"   Backend: {type(sim).__name__}")
    print(f"   Particles: {len(sim)}  |  Colliders: up to {params.max_colliders}")
    print(f"   Running for {RUN_SECONDS:.0f}s")
    print("=" * 60 + "\n")

    start = time.time()
    prev = start
    last_report = start
    fps_smooth = 0.0
    ticks = 0

    while True:
        now = time.time()
        if now - start > RUN_SECONDS:
            break

        dt = max(1e-6, now - prev)
        prev = now
        fps = 1.0 / dt
        fps_smooth = fps if fps_smooth == 0 else 0.9 * fps_smooth + 0.1 * fps

        sim.set_time(now - start)
        sim.set_colliders(finger_colliders(now - start, colliders))
        sim.step()
        ticks += 1

        if now - last_report >= 1.0:
            last_report = now
            print(f"FPS: {fps_smooth:6.1f}  ticks: {ticks:6d}  interacted: {sim.interaction_count():6d}")

    print(f"\n✅ Done: {ticks} ticks in {time.time() - start:.1f}s")


if __name__ == "__main__":
    main()
