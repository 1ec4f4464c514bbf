def _pget(p, key, default=None):
    if isinstance(p, dict):
        return p.get(key, default)
    return getattr(p, key, default)


class Params:
    """
    All tunable knobs live here so you don't hunt through code.

    Keyword overrides are accepted, e.g. ``Params(num_particles=2000)``.
    """
    def __init__(self, **overrides):
        # Particle count and host RNG seed (spawn origins, initial seeds)
        self.num_particles = 10000
        self.seed = 0

        # Colliders (fingertip capsules) evaluated per tick
        self.max_colliders = 8

        # Respawn velocity spread: each axis is (u - 0.5) * scaling
        self.vel_random_scaling = 0.01

        # Walls: box is [-x, x] * [-y, y] * [-z, z]
        self.box_half_extents = (5.2, 2.0, 2.56)

        # Particles that have been touched drift back home
        self.drag = 0.95
        self.homing_strength = 0.0005

        # Collision response
        self.collision_kick = 0.1      # fraction of the push added to velocity
        self.swirl_strength = 0.0007   # tangential nudge inside the force field band

        # Respawn thresholds: a draw above the rate resets the particle
        self.reset_rate_interacted = 0.998
        self.reset_rate_idle = 0.97

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown parameter: {key!r}")
            setattr(self, key, value)

        if int(self.max_colliders) < 0:
            raise ValueError("max_colliders must be >= 0")
        if len(tuple(self.box_half_extents)) != 3:
            raise ValueError("box_half_extents needs three values")

    def keys(self):
        return list(vars(self).keys())


def as_params(p=None) -> Params:
    """Build a Params from None, a dict, or any object carrying the same knobs."""
    if isinstance(p, Params):
        return p
    defaults = Params()
    if p is None:
        return defaults
    if isinstance(p, dict):
        unknown = set(p) - set(defaults.keys())
        if unknown:
            raise TypeError(f"Unknown parameter(s): {sorted(unknown)}")
    return Params(**{k: _pget(p, k, getattr(defaults, k)) for k in defaults.keys()})
