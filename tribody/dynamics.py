"""
Time integration module for the N-body gravity engine.

This module implements the classical fourth-order Runge-Kutta (RK4)
integrator over the flat 6N state vector (see tribody.state) driven by
softened Newtonian gravity.

Key features:
- Direct-sum O(N²) force evaluation with Plummer-like softening
- Fixed-step RK4, state mutated in place
- NBodyEngine: the single owner/writer of the state buffer

Integration scheme:
    k1 = f(s)
    k2 = f(s + dt/2 * k1)
    k3 = f(s + dt/2 * k2)
    k4 = f(s + dt * k3)
    s  = s + dt/6 * (k1 + 2 k2 + 2 k3 + k4)

Physics notes:
- Units are AU, days and solar masses, so G = 2.959122082855911e-4
- Softening adds eps² to every squared separation; accelerations stay
  finite (if large) for coincident bodies
- RK4 is not symplectic: energy drifts slowly, which is why the energy
  diagnostic exists. Sub-stepping (see tribody.driver) bounds the drift.
"""

from typing import List, Sequence
import numpy as np

from tribody.bodies import Body, bodies_to_arrays
from tribody.state import DEFAULT_SOFTENING, StateVector, StateView


G = 2.959122082855911e-4  # AU^3 / (Msun * day^2)


# ============================================================================
# Derivative
# ============================================================================

def derivative(
    state: np.ndarray,
    masses: np.ndarray,
    softening: float,
    out: np.ndarray = None,
) -> np.ndarray:
    """
    Time derivative of the flat 6N state vector.

    For each body i:
        d(x_i)/dt = v_i
        d(v_i)/dt = Σ_{j≠i} -G m_j (x_i - x_j) / (|x_i - x_j|² + eps²)^(3/2)

    Parameters
    ----------
    state : ndarray, shape (6N,)
        Positions block followed by velocities block.
    masses : ndarray, shape (N,)
        Masses [Msun].
    softening : float
        Softening length eps [AU].
    out : ndarray, shape (6N,), optional
        Buffer to write into. A new array is allocated if omitted.

    Returns
    -------
    ndarray, shape (6N,)
        First 3N entries are a copy of the velocity block, last 3N entries
        are accelerations [AU/day²].

    Notes
    -----
    The pairwise difference tensor is built with broadcasting; the diagonal
    (self-interaction) contributes exactly zero because its displacement
    vector is zero, so no masking is needed once eps > 0. For eps == 0 the
    diagonal inverse distance is forced to zero explicitly.

    Examples
    --------
    >>> import numpy as np
    >>> s = np.array([0.0, 0, 0, 1.0, 0, 0,   0, 0, 0, 0, 0.01, 0])
    >>> d = derivative(s, np.array([1.0, 1e-6]), 1e-6)
    >>> d[:6].tolist() == s[6:].tolist()
    True
    >>> bool(d[9] < 0)  # body 1 pulled toward body 0
    True
    """
    n3 = state.shape[0] // 2
    if out is None:
        out = np.empty_like(state, dtype=np.float64)

    out[:n3] = state[n3:]

    pos = state[:n3].reshape(-1, 3)
    diff = pos[:, None, :] - pos[None, :, :]           # x_i - x_j
    r2 = np.einsum("ijk,ijk->ij", diff, diff) + softening * softening
    with np.errstate(divide="ignore"):
        inv_r3 = np.power(r2, -1.5)
    np.fill_diagonal(inv_r3, 0.0)

    coeff = -G * masses[None, :] * inv_r3              # (N, N)
    acc = np.einsum("ij,ijk->ik", coeff, diff)
    out[n3:] = acc.ravel()
    return out


def accelerations(view: StateView) -> np.ndarray:
    """Accelerations [AU/day²] for a state view, shape (N, 3)."""
    state = np.concatenate([view.positions.ravel(), view.velocities.ravel()])
    d = derivative(state, np.asarray(view.masses), view.softening)
    return d[d.shape[0] // 2:].reshape(-1, 3)


# ============================================================================
# Engine
# ============================================================================

class NBodyEngine:
    """
    Fixed-step RK4 engine over a privately owned state vector.

    The engine is the only component allowed to mutate the state buffer.
    Everything it hands out (positions(), velocities(), view()) is a copy
    or a read-only snapshot.

    Parameters
    ----------
    masses : sequence of float, length N
        Masses [Msun].
    positions : sequence of 3-vectors, length N
        Initial positions [AU].
    velocities : sequence of 3-vectors, length N
        Initial velocities [AU/day].
    softening : float, optional
        Softening length [AU] (default: 1e-6). Fixed for this engine.

    Raises
    ------
    ValueError
        If the three input sequences have different lengths.

    Examples
    --------
    >>> from tribody.presets import get_preset
    >>> p = get_preset("figure8")
    >>> engine = NBodyEngine(p["masses"][:3], p["pos"][:3], p["vel"][:3])
    >>> E0 = engine.energy()
    >>> for _ in range(200):
    ...     engine.step(0.01)
    >>> abs((engine.energy() - E0) / E0) < 1e-3
    True
    """

    def __init__(
        self,
        masses: Sequence[float],
        positions: Sequence[Sequence[float]],
        velocities: Sequence[Sequence[float]],
        softening: float = DEFAULT_SOFTENING,
    ):
        self._state = StateVector(masses, positions, velocities, softening)
        # Writable mass copy for the hot loop; the public one is read-only.
        self._m = np.array(self._state.masses, dtype=np.float64)
        n = len(self._state)
        self._k1 = np.empty(n, dtype=np.float64)
        self._k2 = np.empty(n, dtype=np.float64)
        self._k3 = np.empty(n, dtype=np.float64)
        self._k4 = np.empty(n, dtype=np.float64)
        self._tmp = np.empty(n, dtype=np.float64)

    @classmethod
    def from_bodies(cls, bodies: List[Body], softening: float = DEFAULT_SOFTENING):
        """Build an engine from Body objects."""
        masses, positions, velocities = bodies_to_arrays(bodies)
        return cls(masses, positions, velocities, softening)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def n_bodies(self) -> int:
        return self._state.n_bodies

    @property
    def masses(self) -> np.ndarray:
        return self._state.masses

    @property
    def softening(self) -> float:
        return self._state.softening

    def positions(self) -> np.ndarray:
        """Snapshot of positions [AU], shape (N, 3)."""
        return self._state.positions()

    def velocities(self) -> np.ndarray:
        """Snapshot of velocities [AU/day], shape (N, 3)."""
        return self._state.velocities()

    def view(self) -> StateView:
        """Read-only snapshot for detectors and diagnostics."""
        return self._state.view()

    def state_copy(self) -> np.ndarray:
        """Copy of the raw 6N buffer."""
        return self._state.buffer.copy()

    def accelerations(self) -> np.ndarray:
        """Current accelerations [AU/day²], shape (N, 3)."""
        d = derivative(self._state.buffer, self._m, self.softening)
        return d[3 * self.n_bodies:].reshape(-1, 3)

    def energy(self) -> float:
        """Total mechanical energy of the current state (see diagnostics)."""
        from tribody.diagnostics import total_energy
        return total_energy(self.view())

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def step(self, dt: float) -> None:
        """
        Advance the state by one classical RK4 step of size dt [days].

        The state is updated in place. No error estimate, no step-size
        adaptation and no time bookkeeping happen here; callers sub-step
        with small dt (see tribody.driver.Simulation.advance_frame).
        """
        s = self._state.buffer
        m = self._m
        eps = self.softening
        k1, k2, k3, k4, tmp = self._k1, self._k2, self._k3, self._k4, self._tmp

        derivative(s, m, eps, out=k1)

        np.multiply(k1, 0.5 * dt, out=tmp)
        tmp += s
        derivative(tmp, m, eps, out=k2)

        np.multiply(k2, 0.5 * dt, out=tmp)
        tmp += s
        derivative(tmp, m, eps, out=k3)

        np.multiply(k3, dt, out=tmp)
        tmp += s
        derivative(tmp, m, eps, out=k4)

        s += (dt / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)

    def __repr__(self) -> str:
        return f"NBodyEngine(n_bodies={self.n_bodies}, softening={self.softening:.3e})"
