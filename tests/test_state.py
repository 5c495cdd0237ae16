"""
Tests for the flat state buffer and read-only views.

Validates:
1. Packing layout (positions block, then velocities block)
2. Construction errors on mismatched body counts
3. Snapshots never alias the live buffer
4. Views are read-only
"""

import numpy as np
import pytest

from tribody.bodies import Body, bodies_from_arrays, bodies_to_arrays
from tribody.state import StateVector, StateView, pack_state, unpack_state


MASSES = [1.0, 2.0, 3.0]
POS = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 2.0, 0.0]]
VEL = [[0.1, 0.0, 0.0], [0.0, 0.2, 0.0], [0.0, 0.0, 0.3]]


class TestPacking:
    """Tests for pack_state / unpack_state."""

    def test_layout(self):
        """Positions come first, body-major, then velocities."""
        s = pack_state(np.array(POS), np.array(VEL))
        assert s.shape == (18,)
        assert np.allclose(s[:9], np.array(POS).ravel())
        assert np.allclose(s[9:], np.array(VEL).ravel())

    def test_unpack_returns_views(self):
        s = pack_state(np.array(POS), np.array(VEL))
        pos, vel = unpack_state(s)
        pos[1, 0] = 42.0
        assert s[3] == 42.0
        assert vel.shape == (3, 3)


class TestStateVector:
    """Tests for the state owner."""

    def test_mismatched_lengths_raise(self):
        with pytest.raises(ValueError, match="Mismatched"):
            StateVector(MASSES, POS[:2], VEL)
        with pytest.raises(ValueError):
            StateVector(MASSES[:2], POS, VEL)

    def test_length_is_6n(self):
        s = StateVector(MASSES, POS, VEL)
        assert len(s) == 18
        assert s.n_bodies == 3

    def test_positions_are_copies(self):
        """Mutating a snapshot must not touch the live buffer."""
        s = StateVector(MASSES, POS, VEL)
        p = s.positions()
        p[:] = 99.0
        assert np.allclose(s.positions(), POS)

        v = s.velocities()
        v[:] = 99.0
        assert np.allclose(s.velocities(), VEL)

    def test_masses_read_only(self):
        s = StateVector(MASSES, POS, VEL)
        with pytest.raises(ValueError):
            s.masses[0] = 5.0

    def test_no_validation_of_values(self):
        """Non-positive masses and NaNs pass straight through."""
        s = StateVector([-1.0, 0.0], [[np.nan, 0, 0], [1, 0, 0]], [[0, 0, 0], [0, 0, 0]])
        assert s.n_bodies == 2


class TestStateView:
    """Tests for read-only snapshots."""

    def test_view_is_read_only(self):
        view = StateVector(MASSES, POS, VEL).view()
        with pytest.raises(ValueError):
            view.positions[0, 0] = 1.0
        with pytest.raises(ValueError):
            view.velocities[0, 0] = 1.0

    def test_view_detached_from_buffer(self):
        s = StateVector(MASSES, POS, VEL)
        view = s.view()
        s.buffer[0] = 7.0
        assert view.positions[0, 0] == 0.0

    def test_speeds(self):
        view = StateView.from_arrays(MASSES, POS, VEL)
        assert np.allclose(view.speeds, [0.1, 0.2, 0.3])
        assert view.n_bodies == 3


class TestBodies:
    """Tests for the Body dataclass at the configuration boundary."""

    def test_rejects_non_positive_mass(self):
        with pytest.raises(ValueError, match="Mass"):
            Body("bad", M=0.0, x=[0, 0, 0], v=[0, 0, 0])
        with pytest.raises(ValueError):
            Body("bad", M=float("nan"), x=[0, 0, 0], v=[0, 0, 0])

    def test_rejects_bad_shape(self):
        with pytest.raises(ValueError, match="shape"):
            Body("bad", M=1.0, x=[0, 0], v=[0, 0, 0])

    def test_arrays_round_trip(self):
        bodies = bodies_from_arrays(["a", "b", "c"], MASSES, POS, VEL)
        m, p, v = bodies_to_arrays(bodies)
        assert np.array_equal(m, MASSES)
        assert np.array_equal(p, POS)
        assert np.array_equal(v, VEL)

    def test_from_arrays_mismatch(self):
        with pytest.raises(ValueError):
            bodies_from_arrays(["a"], MASSES, POS, VEL)
