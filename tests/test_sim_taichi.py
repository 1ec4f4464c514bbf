import numpy as np
import pytest

ti = pytest.importorskip("taichi")

from conftest import capsule  # noqa: E402
from params import Params  # noqa: E402
from sim import ParticleSim  # noqa: E402
import sim_taichi  # noqa: E402
from sim_taichi import ParticleSimTaichi  # noqa: E402


@pytest.fixture(scope="module", autouse=True)
def taichi_cpu():
    sim_taichi.ensure_ti(ti.cpu)


def _scene():
    return [
        capsule((-0.5, -0.5, -1.0), 0.8, (-0.2, 0.4, 1.2), 0.5),
        capsule((0.0, -0.3, -0.8), 0.6, (0.3, 0.6, 1.0), 0.9),
        capsule((1.0, 1.0, 1.0), 2.0, (1.0, 1.0, 1.0), 2.0),
        capsule((2.0, 0.0, 1.5), 0.3, (2.5, 0.5, 0.2), 0.3),
    ]


def _pair(n=256, seed=9):
    p = Params(num_particles=n, seed=seed, vel_random_scaling=0.05)
    rng = np.random.default_rng(seed)
    origins = (rng.random((n, 3)) * 2.0 - 1.0) * np.array([2.5, 1.5, 1.5])

    ref = ParticleSim(p, origins=origins)
    state = ref.get_state()
    state.position[:, :3] = origins + (rng.random((n, 3)) - 0.5) * 0.4
    state.position[::3, 3] = 1.0

    fast = ParticleSimTaichi(p, origins=origins)
    for s in (ref, fast):
        s.load_state(state)
        s.set_colliders(_scene())
    return ref, fast


def test_spawn_matches_numpy_backend():
    p = Params(num_particles=128, seed=21)
    ref = ParticleSim(p)
    fast = ParticleSimTaichi(p)
    assert np.array_equal(ref.get_positions(), fast.get_positions())
    assert np.array_equal(ref.get_velocities(), fast.get_velocities())
    assert np.array_equal(ref.get_seeds(), fast.get_seeds())


def test_tick_matches_numpy_backend():
    ref, fast = _pair()
    for _ in range(5):
        before = ref.get_state()
        fast.load_state(before)
        ref.step()
        fast.step()
        assert np.array_equal(ref.get_seeds(), fast.get_seeds())
        np.testing.assert_allclose(fast.get_positions(), ref.get_positions(), atol=1e-5)
        np.testing.assert_allclose(fast.get_velocities(), ref.get_velocities(), atol=1e-6)


def test_free_flight_and_walls():
    p = Params(num_particles=2, seed=1)
    fast = ParticleSimTaichi(p, origins=np.zeros((2, 3)))
    state = fast.get_state()
    state.position[0] = (0.1, 0.2, 0.3, 0.0)
    state.velocity[0] = (0.01, -0.02, 0.03, 0.0)
    state.position[1] = (5.2, 0.0, 0.0, 0.0)
    state.velocity[1] = (0.1, 0.0, 0.0, 0.0)
    state.random_seed[:] = 1  # first draw is 41 / 32767, no respawn
    fast.load_state(state)

    fast.step()
    pos = fast.get_positions()
    vel = fast.get_velocities()
    assert pos[0] == pytest.approx([0.11, 0.18, 0.33, 0.0])
    assert vel[0] == pytest.approx([0.01, -0.02, 0.03, 0.0])
    assert pos[1, 0] == pytest.approx(5.5, abs=1e-5)
    assert vel[1, 0] == pytest.approx(-0.1)


def test_on_axis_collision_matches_reference():
    origins = np.array([[0.0, 0.0, 0.5]])
    p = Params(seed=1)
    ref = ParticleSim(p, origins=origins)
    fast = ParticleSimTaichi(p, origins=origins)
    finger = capsule((0, 0, 0), 0.5, (0, 0, 3), 0.5)
    for s in (ref, fast):
        state = s.get_state()
        state.velocity[:] = 0.0
        state.random_seed[:] = 1
        s.load_state(state)
        s.set_colliders([finger])
        s.step()

    assert fast.get_positions()[0] == pytest.approx(ref.get_positions()[0])
    assert fast.get_positions()[0, 3] == 1.0
    assert fast.interaction_count() == 1


def test_double_buffer_flips():
    fast = ParticleSimTaichi(Params(num_particles=8, seed=2))
    assert fast.front == 0
    fast.step()
    assert fast.front == 1
    fast.step()
    assert fast.front == 0


def test_time_and_reset():
    fast = ParticleSimTaichi(Params(num_particles=16, seed=3))
    fast.set_time(2.0)
    fast.set_time(2.25)
    assert fast.time_delta == pytest.approx(-0.25)

    for _ in range(3):
        fast.step()
    fast.reset()
    assert np.array_equal(fast.get_positions()[:, :3], fast.get_origins()[:, :3])


def test_sub_resolution_height_collider_matches_reference():
    origins = np.zeros((1, 3))
    p = Params(seed=1)
    ref = ParticleSim(p, origins=origins)
    fast = ParticleSimTaichi(p, origins=origins)
    sliver = capsule((0, 0, 0), 0.3, (1e-23, 0, 0), 0.3)
    for s in (ref, fast):
        state = s.get_state()
        state.position[0] = (0.05, 0.0, 0.0, 0.0)
        state.velocity[:] = 0.0
        state.random_seed[:] = 1
        s.load_state(state)
        s.set_colliders([sliver])
        s.step()

    assert np.array_equal(fast.get_positions(), ref.get_positions())
    assert fast.get_positions()[0] == pytest.approx([0.05, 0.0, 0.0, 0.0])
    assert fast.interaction_count() == 0


def test_runaway_particles_never_go_nan():
    p = Params(num_particles=2, seed=2, reset_rate_interacted=1.0)
    fast = ParticleSimTaichi(p, origins=np.zeros((2, 3)))
    state = fast.get_state()
    state.position[:] = [(5.2, 0, 0, 1), (0, -2.0, 0, 1)]
    state.velocity[:] = [(0.1, 0, 0, 0), (0, -0.1, 0, 0)]
    fast.load_state(state)
    fast.set_colliders([capsule((0, 0, 0), 0.5, (0, 0, 3), 0.5)])

    for _ in range(120):
        fast.step()
    assert not np.any(np.isnan(fast.get_positions()))
    assert np.all(np.isfinite(fast.get_velocities()))
    assert fast.interaction_count() == 2
