"""Collision detection for the N-body gravity engine.

Bodies are point masses for the dynamics, so "collision" needs an effective
radius per body. Two radius models are supported:

- 'core': a physical radius derived from mass (main-sequence / giant /
  rocky power laws plus a small floor), scaled by a safety fudge >= 1 to
  compensate for discrete-step overshoot.
- 'vdt': a kinematic radius |v_i| * dt * fudge, i.e. how far the body can
  travel in one step. Useful when physical size is a poor proxy.

Detection is immediate and binary: the first overlapping pair in index
order is reported, and the caller is expected to halt the simulation.

Known approximation: the 'core' fudge is a fixed blanket margin, not a
bound derived from the actual sub-step displacement. At high time scales
bodies can step through each other between frames and go undetected; at
low time scales the margin over-reports. Use 'vdt' when that matters.
"""

from dataclasses import dataclass
from typing import Optional
import math
import numpy as np

from tribody.bodies import BodyIndex
from tribody.state import StateView


# Radius/mass anchors [AU, Msun]
R_SUN_AU = 0.00465047
M_JUP_MSUN = 0.000954588
R_JUP_AU = R_SUN_AU * 0.10045
M_EARTH_MSUN = 3.003e-6
R_EARTH_AU = R_SUN_AU / 109.0

STELLAR_MIN_MSUN = 0.1

COLLISION_MODES = ('core', 'vdt')


def physical_radius_au(m: float) -> float:
    """Approximate physical radius [AU] of a body of mass m [Msun].

    Regimes:
        m >= 0.1            stellar:  R_sun * m^0.8
        M_jup <= m < 0.1    giant:    R_jup * (m/M_jup)^0.03 (nearly flat)
        M_earth <= m < M_jup rocky:   R_earth * (m/M_earth)^0.27
        m < M_earth         floor:    0.5 * R_earth

    A non-finite or non-positive mass is replaced by one Earth mass; this
    helper only feeds collision radii, never the dynamics.

    Examples
    --------
    >>> round(physical_radius_au(1.0), 8)
    0.00465047
    >>> physical_radius_au(float('nan')) == physical_radius_au(M_EARTH_MSUN)
    True
    """
    m = float(m)
    if not math.isfinite(m) or m <= 0:
        m = M_EARTH_MSUN

    if m >= STELLAR_MIN_MSUN:
        return R_SUN_AU * m ** 0.8
    elif m >= M_JUP_MSUN:
        return R_JUP_AU * (m / M_JUP_MSUN) ** 0.03
    elif m >= M_EARTH_MSUN:
        return R_EARTH_AU * (m / M_EARTH_MSUN) ** 0.27
    else:
        return R_EARTH_AU * 0.5


def radius_regime(m: float) -> str:
    """Name of the radius regime used for mass m: stellar/giant/rocky/floor."""
    m = float(m)
    if not math.isfinite(m) or m <= 0:
        m = M_EARTH_MSUN
    if m >= STELLAR_MIN_MSUN:
        return 'stellar'
    if m >= M_JUP_MSUN:
        return 'giant'
    if m >= M_EARTH_MSUN:
        return 'rocky'
    return 'floor'


@dataclass
class CollisionSettings:
    """Collision detector configuration.

    Attributes
    ----------
    enabled : bool
        Run the detector every frame (default: True).
    mode : str
        'core' (mass-derived radius) or 'vdt' (kinematic radius).
    fudge : float
        Safety multiplier on every radius, must be >= 1 (default: 1.5).
    """

    enabled: bool = True
    mode: str = 'core'
    fudge: float = 1.5

    def __post_init__(self):
        if self.mode not in COLLISION_MODES:
            raise ValueError(
                f"Collision mode must be one of {COLLISION_MODES}, got {self.mode!r}"
            )
        self.fudge = float(self.fudge)
        if not math.isfinite(self.fudge) or self.fudge < 1.0:
            raise ValueError(f"Collision fudge must be >= 1, got {self.fudge}")


@dataclass(frozen=True)
class Collision:
    """A detected overlap between bodies i < j.

    separation is the centre distance [AU]; threshold is r_i + r_j [AU].
    """

    i: BodyIndex
    j: BodyIndex
    separation: float
    threshold: float

    @property
    def bodies(self):
        return (self.i, self.j)


def collision_radii(
    view: StateView,
    mode: str,
    fudge: float,
    dt: Optional[float] = None,
) -> np.ndarray:
    """Effective collision radius [AU] of every body, shape (N,).

    Raises
    ------
    ValueError
        For an unknown mode, or mode 'vdt' without dt.
    """
    if mode == 'core':
        return np.array(
            [physical_radius_au(m) * fudge for m in view.masses], dtype=np.float64
        )
    if mode == 'vdt':
        if dt is None:
            raise ValueError("Collision mode 'vdt' requires the step size dt")
        return view.speeds * abs(float(dt)) * fudge
    raise ValueError(f"Collision mode must be one of {COLLISION_MODES}, got {mode!r}")


def detect_collision(
    view: StateView,
    mode: str = 'core',
    fudge: float = 1.5,
    dt: Optional[float] = None,
) -> Optional[Collision]:
    """
    Find the first pair of bodies whose effective radii overlap.

    Pairs are scanned in index order (lowest i, then lowest j > i). A pair
    collides when its centre separation is strictly less than r_i + r_j.

    Parameters
    ----------
    view : StateView
        End-of-frame state snapshot.
    mode : str
        'core' or 'vdt' (see module docstring).
    fudge : float
        Radius multiplier.
    dt : float, optional
        Sub-step size [days]; required for mode 'vdt'.

    Returns
    -------
    Collision or None
    """
    radii = collision_radii(view, mode, fudge, dt)
    pos = view.positions
    n = view.n_bodies

    for i in range(n):
        for j in range(i + 1, n):
            dx = pos[i, 0] - pos[j, 0]
            dy = pos[i, 1] - pos[j, 1]
            dz = pos[i, 2] - pos[j, 2]
            separation = math.sqrt(dx * dx + dy * dy + dz * dz)
            threshold = float(radii[i] + radii[j])
            if separation < threshold:
                return Collision(
                    i=BodyIndex(i),
                    j=BodyIndex(j),
                    separation=float(separation),
                    threshold=threshold,
                )
    return None
