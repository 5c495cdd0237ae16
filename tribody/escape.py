"""Escape detection for the N-body gravity engine.

A body is an escape candidate when its speed meets or exceeds the local
two-body escape speed relative to the centre of mass of all *other* bodies:

    v_esc,k = fudge * sqrt(2 G M_other / r_CM)

Bodies closer than max_sep_au to that centre are skipped; during close
encounters the two-body estimate is meaningless.

detect_escape reports an instantaneous candidate only. Fast perihelion
passages regularly exceed the local escape speed for a frame or two, so
EscapeDebouncer filters candidates over time before an escape is declared.
"""

from dataclasses import dataclass
from typing import Optional
import math
import numpy as np

from tribody.bodies import BodyIndex
from tribody.dynamics import G
from tribody.state import StateView


DEFAULT_CONSECUTIVE_THRESHOLD = 8

# Per-body debounce states
QUIET = 'quiet'
SUSPECT = 'suspect'
CONFIRMED = 'confirmed'


@dataclass
class EscapeSettings:
    """Escape detector configuration.

    Attributes
    ----------
    enabled : bool
        Run the detector every frame (default: True).
    max_sep_au : float
        Bodies closer than this to the others' centre of mass are skipped [AU].
    fudge : float
        Multiplier on the escape speed (default: 1.0).
    consecutive_threshold : int
        Debounce counter value that declares an escape (default: 8).
    """

    enabled: bool = True
    max_sep_au: float = 5.0
    fudge: float = 1.0
    consecutive_threshold: int = DEFAULT_CONSECUTIVE_THRESHOLD

    def __post_init__(self):
        self.max_sep_au = float(self.max_sep_au)
        self.fudge = float(self.fudge)
        self.consecutive_threshold = int(self.consecutive_threshold)
        if not math.isfinite(self.max_sep_au) or self.max_sep_au < 0:
            raise ValueError(f"Escape max_sep_au must be non-negative, got {self.max_sep_au}")
        if not math.isfinite(self.fudge) or self.fudge <= 0:
            raise ValueError(f"Escape fudge must be positive, got {self.fudge}")
        if self.consecutive_threshold < 1:
            raise ValueError(
                f"Escape consecutive_threshold must be >= 1, got {self.consecutive_threshold}"
            )


@dataclass(frozen=True)
class EscapeCandidate:
    """Instantaneous escape verdict for one body.

    Attributes
    ----------
    index : BodyIndex
        The escaping body.
    speed : float
        |v| [AU/day].
    escape_speed : float
        fudge * sqrt(2 G M_other / r_CM) [AU/day].
    r_cm : float
        Distance from the centre of mass of the other bodies [AU].
    mass_other : float
        Total mass of the other bodies [Msun].
    """

    index: BodyIndex
    speed: float
    escape_speed: float
    r_cm: float
    mass_other: float


def detect_escape(
    view: StateView,
    max_sep_au: float = 5.0,
    fudge: float = 1.0,
) -> Optional[EscapeCandidate]:
    """
    Find the first body moving at or above its local escape speed.

    Parameters
    ----------
    view : StateView
        End-of-frame state snapshot.
    max_sep_au : float
        Skip bodies with r_CM < max_sep_au [AU].
    fudge : float
        Escape speed multiplier.

    Returns
    -------
    EscapeCandidate or None
        The lowest-index qualifying body.

    Notes
    -----
    Speed is measured in the frame the state is expressed in (not relative
    to the other bodies' centre-of-mass velocity).
    """
    pos = view.positions
    m = view.masses
    speeds = view.speeds
    n = view.n_bodies
    if n < 2:
        return None

    m_total = float(np.sum(m))
    weighted = np.sum(m[:, None] * pos, axis=0)

    for k in range(n):
        mass_other = m_total - float(m[k])
        if mass_other <= 0:
            continue
        com_other = (weighted - m[k] * pos[k]) / mass_other
        r_cm = float(np.linalg.norm(pos[k] - com_other))
        if r_cm < max_sep_au or r_cm == 0.0:
            continue
        escape_speed = math.sqrt(2.0 * G * mass_other / r_cm) * fudge
        speed = float(speeds[k])
        if speed >= escape_speed:
            return EscapeCandidate(
                index=BodyIndex(k),
                speed=speed,
                escape_speed=escape_speed,
                r_cm=r_cm,
                mass_other=mass_other,
            )
    return None


class EscapeDebouncer:
    """
    Temporal filter turning per-frame escape candidates into final escapes.

    One counter per body, in [0, threshold]. Each frame (one call to
    update): the candidate body's counter grows by 2, capped at threshold,
    and every other body's counter decays by 1, floored at 0. An escape is
    declared when a counter reaches threshold.

    With the default threshold of 8, four consecutive qualifying frames
    confirm an escape, while isolated single-frame hits (fast perihelion
    swings) decay away.

    Per-body states:
        quiet      counter == 0
        suspect    0 < counter < threshold
        confirmed  counter reached threshold (sticky until reset)

    Parameters
    ----------
    n_bodies : int
        Number of bodies tracked.
    threshold : int
        Counter value that confirms an escape (default: 8).
    """

    def __init__(self, n_bodies: int, threshold: int = DEFAULT_CONSECUTIVE_THRESHOLD):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        self.threshold = int(threshold)
        self.counters = np.zeros(int(n_bodies), dtype=np.int64)
        self._confirmed = np.zeros(int(n_bodies), dtype=bool)

    @property
    def n_bodies(self) -> int:
        return int(self.counters.shape[0])

    def reset(self, n_bodies: Optional[int] = None) -> None:
        """Zero every counter (engine rebuild). Optionally resize."""
        n = self.n_bodies if n_bodies is None else int(n_bodies)
        self.counters = np.zeros(n, dtype=np.int64)
        self._confirmed = np.zeros(n, dtype=bool)

    def update(self, candidate: Optional[EscapeCandidate]) -> Optional[BodyIndex]:
        """Feed one frame's detector verdict.

        Parameters
        ----------
        candidate : EscapeCandidate or None
            Result of detect_escape for this frame.

        Returns
        -------
        BodyIndex or None
            The body whose escape became final on this frame.
        """
        hit = -1 if candidate is None else int(candidate.index)
        newly_confirmed = None

        for k in range(self.n_bodies):
            if k == hit:
                self.counters[k] = min(self.threshold, self.counters[k] + 2)
            else:
                self.counters[k] = max(0, self.counters[k] - 1)

            if self.counters[k] >= self.threshold and not self._confirmed[k]:
                self._confirmed[k] = True
                newly_confirmed = BodyIndex(k)

        return newly_confirmed

    def state(self, k: int) -> str:
        """Debounce state of body k: 'quiet', 'suspect' or 'confirmed'."""
        if self._confirmed[k]:
            return CONFIRMED
        if self.counters[k] == 0:
            return QUIET
        return SUSPECT

    def states(self):
        return [self.state(k) for k in range(self.n_bodies)]

    def __repr__(self) -> str:
        return f"EscapeDebouncer(counters={self.counters.tolist()}, threshold={self.threshold})"
