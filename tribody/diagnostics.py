"""Diagnostics module for the N-body gravity engine.

This module provides functions for monitoring conserved quantities of the
integrated system. All functions are pure: they take a read-only
StateView (see tribody.state) and never modify it.

Key diagnostics:
- Kinetic energy: T = Σ (1/2) m_i v_i²
- Softened potential energy: U = -G Σ_{i<j} m_i m_j / sqrt(r_ij² + eps²)
- Total energy: E = T + U (near-constant for a closed system)
- Linear momentum: P = Σ m_i v_i (conserved exactly by the pairwise force)
- Angular momentum: L = Σ m_i (x_i × v_i)
- Energy drift over a sampled run

Energy drift is a diagnostic value, not an error condition: a large drift
means the step size is too coarse for the encounter being integrated.
"""

from typing import Dict, Sequence
import numpy as np

from tribody.dynamics import G
from tribody.state import StateView


def kinetic_energy(view: StateView) -> float:
    """Compute total kinetic energy of the system.

    Formula:
        T = Σ_i (1/2) m_i |v_i|²

    Parameters
    ----------
    view : StateView
        State snapshot.

    Returns
    -------
    float
        Kinetic energy [Msun AU²/day²].

    Examples
    --------
    >>> v = StateView.from_arrays([1.0, 2.0], [[0, 0, 0], [1, 0, 0]], [[1, 0, 0], [0, 0.5, 0]])
    >>> kinetic_energy(v)
    0.75
    """
    v2 = np.einsum("ij,ij->i", view.velocities, view.velocities)
    return float(0.5 * np.sum(view.masses * v2))


def potential_energy(view: StateView) -> float:
    """Compute softened gravitational potential energy.

    Formula:
        U = -G Σ_{i<j} m_i m_j / sqrt(|x_i - x_j|² + eps²)

    The softening matches the one used by the force law, so E = T + U is
    the quantity the integrator (approximately) conserves.
    """
    n = view.n_bodies
    if n < 2:
        return 0.0
    pos = view.positions
    m = view.masses
    eps2 = view.softening * view.softening
    iu, ju = np.triu_indices(n, 1)
    diff = pos[iu] - pos[ju]
    r = np.sqrt(np.einsum("ij,ij->i", diff, diff) + eps2)
    return float(-G * np.sum(m[iu] * m[ju] / r))


def total_energy(view: StateView) -> float:
    """Total mechanical energy E = T + U [Msun AU²/day²].

    Used as a regression oracle for integrator fidelity. Never raises on
    drift.

    Examples
    --------
    >>> from tribody.dynamics import NBodyEngine
    >>> engine = NBodyEngine([1.0, 1e-3], [[0, 0, 0], [1, 0, 0]], [[0, 0, 0], [0, 0.0172, 0]])
    >>> total_energy(engine.view()) < 0  # bound orbit
    True
    """
    return kinetic_energy(view) + potential_energy(view)


def total_momentum(view: StateView) -> np.ndarray:
    """Total linear momentum P = Σ m_i v_i, shape (3,)."""
    return np.sum(view.masses[:, None] * view.velocities, axis=0)


def angular_momentum(view: StateView) -> np.ndarray:
    """Total angular momentum L = Σ m_i (x_i × v_i) about the origin, shape (3,)."""
    return np.sum(view.masses[:, None] * np.cross(view.positions, view.velocities), axis=0)


def center_of_mass(view: StateView) -> np.ndarray:
    """Mass-weighted centre of all bodies, shape (3,)."""
    m = view.masses
    return np.sum(m[:, None] * view.positions, axis=0) / np.sum(m)


def relative_energy_drift(E0: float, E: float) -> float:
    """|E - E0| / |E0|; infinite when E0 is exactly zero."""
    if E0 == 0:
        return float("inf") if E != 0 else 0.0
    return abs((E - E0) / E0)


def energy_drift_monitor(energies: Sequence[float]) -> Dict[str, float]:
    """Summarize energy drift over a sampled run.

    Parameters
    ----------
    energies : sequence of float
        Total energy samples in time order.

    Returns
    -------
    dict
        Dictionary with:
        - 'E0': initial energy
        - 'Ef': final energy
        - 'dE': absolute drift |Ef - E0|
        - 'dE_rel': relative drift |ΔE|/|E₀|
        - 'dE_max': maximum absolute deviation from E₀

    Raises
    ------
    ValueError
        If fewer than two samples are given.

    Notes
    -----
    RK4 is not symplectic, so the drift is secular rather than oscillatory.
    Typical acceptable drift for the built-in presets is |ΔE|/|E| < 1e-3.
    """
    if len(energies) < 2:
        raise ValueError("Need at least 2 samples to compute energy drift")

    energies = np.asarray(energies, dtype=np.float64)
    E0 = float(energies[0])
    Ef = float(energies[-1])

    return {
        'E0': E0,
        'Ef': Ef,
        'dE': abs(Ef - E0),
        'dE_rel': relative_energy_drift(E0, Ef),
        'dE_max': float(np.max(np.abs(energies - E0))),
    }


def snapshot_diagnostics(view: StateView) -> Dict:
    """Energy and momentum diagnostics for one state, as a dict.

    Keys: 'kinetic_energy', 'potential_energy', 'total_energy',
    'total_momentum', 'momentum_magnitude', 'angular_momentum'.
    """
    T = kinetic_energy(view)
    U = potential_energy(view)
    p = total_momentum(view)
    return {
        'kinetic_energy': T,
        'potential_energy': U,
        'total_energy': T + U,
        'total_momentum': p,
        'momentum_magnitude': float(np.linalg.norm(p)),
        'angular_momentum': angular_momentum(view),
    }
