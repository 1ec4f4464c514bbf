import numpy as np
import pytest

from colliders import Collider, ColliderSet
from params import Params


def capsule(base, base_radius, tip, tip_radius):
    return Collider.from_points(base, base_radius, tip, tip_radius)


def collider_set(*colliders, max_colliders=8):
    return ColliderSet(max_colliders).set(colliders).snapshot()


def vec4(x, y, z, w=0.0):
    return np.array([x, y, z, w], dtype=np.float32)


@pytest.fixture
def params():
    return Params(num_particles=64)


@pytest.fixture
def no_colliders():
    return ColliderSet(8).snapshot()


@pytest.fixture
def z_capsule():
    # Upright along +z from the origin, radius 0.5 along the whole length.
    # Long enough that the tip sphere never reaches the test points near z = 0.5.
    return capsule((0.0, 0.0, 0.0), 0.5, (0.0, 0.0, 3.0), 0.5)
