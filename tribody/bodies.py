"""Body dataclass for the N-body gravity engine.

Bodies are point masses identified by their position in the body set.
Each body has:
- Mass M in solar masses
- Position x [AU] and velocity v [AU/day] (3D vectors)

The integrator itself works on a flat state vector (see tribody.state);
Body objects are the plain-data form used by presets, configuration files
and outputs.
"""

from dataclasses import dataclass
from typing import List, NewType, Sequence
import numpy as np


BodyIndex = NewType("BodyIndex", int)
"""Index of a body in the ordered body set (0..N-1)."""


@dataclass
class Body:
    """A gravitating point mass.

    Attributes
    ----------
    name : str
        Identifier for this body (e.g., "Star 1", "Planet").
    M : float
        Mass [Msun].
    x : np.ndarray
        Position vector [AU], shape (3,).
    v : np.ndarray
        Velocity vector [AU/day], shape (3,).

    Notes
    -----
    Validation happens here, at the configuration boundary. The engine
    trusts the arrays it is given and never re-checks masses.

    Examples
    --------
    >>> sun = Body("Sun", M=1.0, x=[0.0, 0.0, 0.0], v=[0.0, 0.0, 0.0])
    >>> earth = Body("Earth", M=3.003e-6, x=[1.0, 0.0, 0.0], v=[0.0, 0.0172, 0.0])
    >>> print(earth)
    Body 'Earth': M=3.003e-06
      x = [1.000e+00, 0.000e+00, 0.000e+00]
      v = [0.000e+00, 1.720e-02, 0.000e+00]
      KE = 4.442e-10
    """

    name: str
    M: float
    x: np.ndarray
    v: np.ndarray

    def __post_init__(self):
        """Validate body parameters and ensure arrays are proper numpy arrays."""
        self.x = np.array(self.x, dtype=float)
        self.v = np.array(self.v, dtype=float)
        self.M = float(self.M)

        if self.x.shape != (3,):
            raise ValueError(f"Position x must have shape (3,), got {self.x.shape}")
        if self.v.shape != (3,):
            raise ValueError(f"Velocity v must have shape (3,), got {self.v.shape}")
        if not np.isfinite(self.M) or self.M <= 0:
            raise ValueError(f"Mass M must be positive and finite, got {self.M}")

    @property
    def kinetic_energy(self) -> float:
        """Kinetic energy KE = (1/2) * M * v² [Msun AU²/day²]."""
        return 0.5 * self.M * float(np.dot(self.v, self.v))

    @property
    def speed(self) -> float:
        """Speed |v| [AU/day]."""
        return float(np.linalg.norm(self.v))

    def __str__(self) -> str:
        lines = [f"Body '{self.name}': M={self.M:.3e}"]
        lines.append(f"  x = [{self.x[0]:.3e}, {self.x[1]:.3e}, {self.x[2]:.3e}]")
        lines.append(f"  v = [{self.v[0]:.3e}, {self.v[1]:.3e}, {self.v[2]:.3e}]")
        lines.append(f"  KE = {self.kinetic_energy:.3e}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Body(name={self.name!r}, M={self.M!r}, x={self.x!r}, v={self.v!r})"


def bodies_to_arrays(bodies: Sequence[Body]):
    """Split a body list into (masses, positions, velocities) arrays.

    Returns
    -------
    masses : ndarray, shape (N,)
    positions : ndarray, shape (N, 3)
    velocities : ndarray, shape (N, 3)
    """
    masses = np.array([b.M for b in bodies], dtype=np.float64)
    positions = np.array([b.x for b in bodies], dtype=np.float64).reshape(-1, 3)
    velocities = np.array([b.v for b in bodies], dtype=np.float64).reshape(-1, 3)
    return masses, positions, velocities


def bodies_from_arrays(
    names: Sequence[str],
    masses: Sequence[float],
    positions: Sequence[Sequence[float]],
    velocities: Sequence[Sequence[float]],
) -> List[Body]:
    """Build Body objects from parallel arrays (inverse of bodies_to_arrays)."""
    if not (len(names) == len(masses) == len(positions) == len(velocities)):
        raise ValueError(
            f"Mismatched lengths: {len(names)} names, {len(masses)} masses, "
            f"{len(positions)} positions, {len(velocities)} velocities"
        )
    return [
        Body(name=n, M=m, x=x, v=v)
        for n, m, x, v in zip(names, masses, positions, velocities)
    ]
