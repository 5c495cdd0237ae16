"""
Tests for collision radii and pairwise overlap detection.

Validates:
1. Mass -> radius regimes are continuous enough and monotonic
2. Strict '<' threshold comparison
3. Index-order reporting of the first overlapping pair
4. 'vdt' mode needs a step size
"""

import numpy as np
import pytest

from tribody.collisions import (
    M_EARTH_MSUN,
    M_JUP_MSUN,
    R_EARTH_AU,
    R_SUN_AU,
    CollisionSettings,
    collision_radii,
    detect_collision,
    physical_radius_au,
    radius_regime,
)
from tribody.state import StateView


def view_at(positions, masses=None, velocities=None):
    n = len(positions)
    masses = masses if masses is not None else [1.0] * n
    velocities = velocities if velocities is not None else np.zeros((n, 3))
    return StateView.from_arrays(masses, positions, velocities)


class TestPhysicalRadius:
    """Tests for the mass-derived radius model."""

    def test_sun(self):
        assert physical_radius_au(1.0) == pytest.approx(R_SUN_AU)

    def test_earth(self):
        assert physical_radius_au(M_EARTH_MSUN) == pytest.approx(R_EARTH_AU)

    def test_floor(self):
        assert physical_radius_au(1e-9) == pytest.approx(0.5 * R_EARTH_AU)
        assert radius_regime(1e-9) == 'floor'

    def test_regimes(self):
        assert radius_regime(1.0) == 'stellar'
        assert radius_regime(0.01) == 'giant'
        assert radius_regime(M_JUP_MSUN) == 'giant'
        assert radius_regime(1e-5) == 'rocky'

    def test_invalid_mass_falls_back_to_earth(self):
        for m in (0.0, -1.0, float('nan'), float('inf')):
            assert physical_radius_au(m) == physical_radius_au(M_EARTH_MSUN)

    def test_monotonic_within_regimes(self):
        for lo, hi in [(0.1, 10.0), (M_JUP_MSUN, 0.0999), (M_EARTH_MSUN, M_JUP_MSUN * 0.999)]:
            masses = np.geomspace(lo, hi, 50)
            radii = [physical_radius_au(m) for m in masses]
            assert np.all(np.diff(radii) >= 0)
            assert np.all(np.isfinite(radii))


class TestSettings:
    """Tests for CollisionSettings validation."""

    def test_defaults(self):
        s = CollisionSettings()
        assert s.enabled and s.mode == 'core' and s.fudge == 1.5

    def test_bad_mode(self):
        with pytest.raises(ValueError, match="mode"):
            CollisionSettings(mode='sphere')

    def test_fudge_below_one(self):
        with pytest.raises(ValueError, match="fudge"):
            CollisionSettings(fudge=0.9)


class TestDetectCollision:
    """Tests for detect_collision."""

    def test_far_apart(self):
        view = view_at([[0, 0, 0], [1, 0, 0], [0, 1, 0]])
        assert detect_collision(view) is None

    def test_overlap_reported(self):
        r = physical_radius_au(1.0) * 1.5
        view = view_at([[0, 0, 0], [1.5 * r, 0, 0]])
        hit = detect_collision(view, 'core', 1.5)
        assert hit is not None
        assert hit.bodies == (0, 1)
        assert hit.separation == pytest.approx(1.5 * r)
        assert hit.threshold == pytest.approx(2 * r)

    def test_strict_threshold(self):
        """Separation exactly equal to r_i + r_j is not a collision."""
        view = view_at([[0, 0, 0], [1.0, 0, 0]], velocities=[[0.5, 0, 0], [0.5, 0, 0]])
        # vdt radii are 0.5 * 1.0 * 1.0 each, summing to exactly 1.0
        assert detect_collision(view, 'vdt', 1.0, dt=1.0) is None
        assert detect_collision(view, 'vdt', 1.0, dt=1.01) is not None

    def test_core_strict_threshold(self):
        """Two suns at exactly the summed core radius do not collide."""
        r = collision_radii(view_at([[0, 0, 0]]), 'core', 1.5)[0]
        assert r == physical_radius_au(1.0) * 1.5
        sep = float(r + r)
        assert detect_collision(view_at([[0, 0, 0], [sep, 0, 0]]), 'core', 1.5) is None

        hit = detect_collision(
            view_at([[0, 0, 0], [np.nextafter(sep, 0.0), 0, 0]]), 'core', 1.5
        )
        assert hit is not None
        assert (hit.i, hit.j) == (0, 1)

    def test_first_pair_in_index_order(self):
        view = view_at([[5, 0, 0], [0, 0, 0], [0, 0, 0], [5, 0, 0]])
        hit = detect_collision(view)
        assert (hit.i, hit.j) == (0, 3)

    def test_vdt_requires_dt(self):
        view = view_at([[0, 0, 0], [1, 0, 0]])
        with pytest.raises(ValueError, match="dt"):
            detect_collision(view, 'vdt', 1.0)

    def test_vdt_radii(self):
        view = view_at([[0, 0, 0], [1, 0, 0]], velocities=[[3, 4, 0], [0, 0, 0]])
        radii = collision_radii(view, 'vdt', 2.0, dt=0.1)
        assert np.allclose(radii, [1.0, 0.0])

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            collision_radii(view_at([[0, 0, 0]]), 'bogus', 1.0)
