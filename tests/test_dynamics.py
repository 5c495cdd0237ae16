"""
Tests for the gravitational derivative and the RK4 engine.

Validates:
1. Derivative layout and pairwise force symmetry
2. Energy conservation on the figure-8 configuration
3. Momentum conservation
4. Bit-for-bit determinism of step()
5. Softening keeps coincident bodies finite
"""

import numpy as np
import pytest

from tribody.bodies import Body
from tribody.diagnostics import total_momentum
from tribody.dynamics import G, NBodyEngine, accelerations, derivative
from tribody.presets import get_preset


class TestDerivative:
    """Tests for the state derivative."""

    def test_velocity_block_copied(self):
        s = np.array([0.0, 0, 0, 1, 0, 0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6])
        d = derivative(s, np.array([1.0, 1.0]), 0.0)
        assert np.array_equal(d[:6], s[6:])

    def test_inverse_square(self):
        """Acceleration on a test body at r is G M / r²."""
        s = np.array([0.0, 0, 0, 2.0, 0, 0, 0, 0, 0, 0, 0, 0])
        d = derivative(s, np.array([1.0, 0.0]), 0.0)
        assert d[9] == pytest.approx(-G / 4.0, rel=1e-12)
        assert d[10] == 0.0 and d[11] == 0.0

    def test_newton_third_law(self):
        """m_i a_i = -m_j a_j for a two-body system."""
        s = np.array([0.0, 0, 0, 1.0, 0.5, -0.2, 0, 0, 0, 0, 0, 0])
        m = np.array([1.0, 0.3])
        acc = derivative(s, m, 1e-6)[6:].reshape(2, 3)
        assert np.allclose(m[0] * acc[0], -m[1] * acc[1], rtol=1e-12, atol=0)

    def test_out_buffer(self):
        s = np.zeros(12)
        s[3] = 1.0
        out = np.full(12, np.nan)
        ret = derivative(s, np.array([1.0, 1.0]), 1e-6, out=out)
        assert ret is out
        assert np.all(np.isfinite(out))

    def test_softened_coincident_bodies(self):
        """Coincident bodies give zero, finite acceleration when eps > 0."""
        view_state = np.zeros(12)
        d = derivative(view_state, np.array([1.0, 1.0]), 1e-3)
        assert np.all(np.isfinite(d))
        assert np.allclose(d, 0.0)


class TestEngine:
    """Tests for the RK4 engine."""

    def test_figure8_energy_drift(self):
        p = get_preset("figure8")
        engine = NBodyEngine(p["masses"][:3], p["pos"][:3], p["vel"][:3], 1e-6)
        E0 = engine.energy()
        for _ in range(200):
            engine.step(0.01)
        E = engine.energy()
        assert abs((E - E0) / E0) < 1e-3

    def test_bound_orbit_energy_drift(self):
        """Sun-Earth over one year at 0.1 d keeps |ΔE/E| tiny."""
        v = np.sqrt(G * 1.0)
        engine = NBodyEngine([1.0, 3.003e-6], [[0, 0, 0], [1, 0, 0]], [[0, 0, 0], [0, v, 0]])
        E0 = engine.energy()
        for _ in range(3653):
            engine.step(0.1)
        assert abs((engine.energy() - E0) / E0) < 1e-8

    def test_momentum_conserved(self):
        p = get_preset("tristar-planet")
        engine = NBodyEngine(p["masses"], p["pos"], p["vel"])
        P0 = total_momentum(engine.view())
        for _ in range(100):
            engine.step(0.05)
        P = total_momentum(engine.view())
        assert np.allclose(P, P0, rtol=0, atol=1e-14)

    def test_determinism(self):
        p = get_preset("triangle")
        a = NBodyEngine(p["masses"], p["pos"], p["vel"])
        b = NBodyEngine(p["masses"], p["pos"], p["vel"])
        for _ in range(50):
            a.step(0.02)
            b.step(0.02)
        assert np.array_equal(a.state_copy(), b.state_copy())

    def test_zero_step_is_identity(self):
        p = get_preset("triangle")
        engine = NBodyEngine(p["masses"], p["pos"], p["vel"])
        before = engine.state_copy()
        engine.step(0.0)
        assert np.array_equal(engine.state_copy(), before)

    def test_snapshots_do_not_alias(self):
        p = get_preset("triangle")
        engine = NBodyEngine(p["masses"], p["pos"], p["vel"])
        v = engine.velocities()
        v[:] = 0.0
        assert not np.allclose(engine.velocities(), 0.0)
        s = engine.state_copy()
        s[:] = 0.0
        assert not np.allclose(engine.positions(), 0.0)

    def test_free_particles_move_linearly(self):
        """Massless bodies drift at constant velocity."""
        engine = NBodyEngine([1e-30, 1e-30], [[0, 0, 0], [10, 0, 0]],
                             [[1, 0, 0], [0, 1, 0]])
        for _ in range(10):
            engine.step(0.1)
        assert np.allclose(engine.positions(), [[1, 0, 0], [10, 1, 0]], atol=1e-12)

    def test_accelerations_match_view_helper(self):
        p = get_preset("sun-earth-jupiter")
        engine = NBodyEngine(p["masses"], p["pos"], p["vel"])
        assert np.allclose(engine.accelerations(), accelerations(engine.view()))

    def test_from_bodies(self):
        bodies = [
            Body("A", 1.0, [0, 0, 0], [0, 0, 0]),
            Body("B", 0.5, [1, 0, 0], [0, 0.01, 0]),
        ]
        engine = NBodyEngine.from_bodies(bodies, softening=1e-4)
        assert engine.n_bodies == 2
        assert engine.softening == 1e-4
        assert np.allclose(engine.masses, [1.0, 0.5])

    def test_mismatched_inputs(self):
        with pytest.raises(ValueError):
            NBodyEngine([1.0, 1.0], [[0, 0, 0]], [[0, 0, 0], [0, 0, 0]])

    def test_docstring_examples(self):
        import doctest
        import tribody.dynamics as dynamics_module
        result = doctest.testmod(dynamics_module)
        assert result.attempted > 0
        assert result.failed == 0
