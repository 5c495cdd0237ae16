"""State vector model for the N-body engine.

The full dynamical state of N bodies lives in one flat float64 buffer of
length 6N:

    [x0 y0 z0  x1 y1 z1 ... | vx0 vy0 vz0  vx1 vy1 vz1 ...]
     <------ positions 3N -->  <------ velocities 3N ------->

Both blocks are body-major, axis-minor. The derivative function relies on
this layout: the position-derivative block is a copy of the velocity block
and forces only ever touch the velocity-derivative block.

Ownership:
- StateVector owns the buffer and is the only writer (via the engine).
- StateView is an immutable snapshot handed to detectors and diagnostics.
  Its arrays have numpy's WRITEABLE flag cleared, so an accidental write
  raises instead of corrupting the integrator state.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple
import numpy as np
from numpy.typing import NDArray


DEFAULT_SOFTENING = 1e-6  # AU

Vec3Array = NDArray[np.float64]  # Shape (N, 3)


def pack_state(positions: np.ndarray, velocities: np.ndarray) -> np.ndarray:
    """Pack (N, 3) position and velocity arrays into a flat 6N buffer."""
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    velocities = np.asarray(velocities, dtype=np.float64).reshape(-1, 3)
    return np.concatenate([positions.ravel(), velocities.ravel()])


def unpack_state(state: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split a flat 6N buffer into (N, 3) position and velocity views.

    The returned arrays are views into `state`, not copies.
    """
    half = state.shape[0] // 2
    return state[:half].reshape(-1, 3), state[half:].reshape(-1, 3)


def _frozen(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, dtype=np.float64, copy=True)
    out.flags.writeable = False
    return out


@dataclass(frozen=True)
class StateView:
    """Read-only snapshot of the engine state.

    Attributes
    ----------
    positions : ndarray, shape (N, 3)
        Positions [AU].
    velocities : ndarray, shape (N, 3)
        Velocities [AU/day].
    masses : ndarray, shape (N,)
        Masses [Msun].
    softening : float
        Softening length [AU].
    """

    positions: Vec3Array
    velocities: Vec3Array
    masses: np.ndarray
    softening: float

    @classmethod
    def from_arrays(cls, masses, positions, velocities, softening=DEFAULT_SOFTENING):
        """Build a view directly from arrays (copied and frozen)."""
        return cls(
            positions=_frozen(np.asarray(positions).reshape(-1, 3)),
            velocities=_frozen(np.asarray(velocities).reshape(-1, 3)),
            masses=_frozen(np.asarray(masses).ravel()),
            softening=float(softening),
        )

    @property
    def n_bodies(self) -> int:
        return int(self.masses.shape[0])

    @property
    def speeds(self) -> np.ndarray:
        """|v_i| for every body, shape (N,)."""
        return np.linalg.norm(self.velocities, axis=1)


class StateVector:
    """Owner of the flat 6N state buffer, masses and softening.

    Parameters
    ----------
    masses : sequence of float, length N
        Masses [Msun]. Immutable after construction.
    positions : sequence of 3-vectors, length N
        Initial positions [AU].
    velocities : sequence of 3-vectors, length N
        Initial velocities [AU/day].
    softening : float
        Softening length [AU], fixed for the lifetime of this state.

    Raises
    ------
    ValueError
        If masses, positions and velocities do not have the same length.
        No other validation is performed; NaNs and non-positive masses
        pass straight through to the integrator.
    """

    def __init__(
        self,
        masses: Sequence[float],
        positions: Sequence[Sequence[float]],
        velocities: Sequence[Sequence[float]],
        softening: float = DEFAULT_SOFTENING,
    ):
        n_m, n_p, n_v = len(masses), len(positions), len(velocities)
        if not (n_m == n_p == n_v):
            raise ValueError(
                f"Mismatched body counts: {n_m} masses, {n_p} positions, "
                f"{n_v} velocities"
            )

        self._masses = _frozen(np.asarray(masses, dtype=np.float64).ravel())
        self._buffer = pack_state(
            np.asarray(positions, dtype=np.float64).reshape(n_p, 3),
            np.asarray(velocities, dtype=np.float64).reshape(n_v, 3),
        )
        self._softening = float(softening)

    @property
    def n_bodies(self) -> int:
        return int(self._masses.shape[0])

    @property
    def masses(self) -> np.ndarray:
        """Masses [Msun]; a read-only array."""
        return self._masses

    @property
    def softening(self) -> float:
        return self._softening

    @property
    def buffer(self) -> np.ndarray:
        """The live 6N buffer. Only the owning engine may write to it."""
        return self._buffer

    def positions(self) -> np.ndarray:
        """Current positions as a fresh (N, 3) array."""
        return self._buffer[: 3 * self.n_bodies].reshape(-1, 3).copy()

    def velocities(self) -> np.ndarray:
        """Current velocities as a fresh (N, 3) array."""
        return self._buffer[3 * self.n_bodies:].reshape(-1, 3).copy()

    def view(self) -> StateView:
        """Immutable snapshot of the current state."""
        pos, vel = unpack_state(self._buffer)
        return StateView(
            positions=_frozen(pos),
            velocities=_frozen(vel),
            masses=self._masses,
            softening=self._softening,
        )

    def __len__(self) -> int:
        return int(self._buffer.shape[0])

    def __repr__(self) -> str:
        return (
            f"StateVector(n_bodies={self.n_bodies}, "
            f"softening={self._softening:.3e})"
        )
