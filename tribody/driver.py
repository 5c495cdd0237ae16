"""
Frame driver for the N-body gravity engine.

The driver plays the role of an animation loop without any rendering:
each frame it performs a fixed number of RK4 sub-steps, records trails,
then runs the anomaly detectors once on the end-of-frame state. A
confirmed collision or escape sets the pause flag; clearing it is an
explicit action (resume() or reset()), never automatic.

Frame composition:
1. If paused, skip integration entirely
2. dt = frame_delta * time_scale / sub_steps
3. Call engine.step(dt) sub_steps times
4. Append end-of-frame positions to the trail buffers
5. Collision detector: a hit pauses immediately
6. Escape detector -> debouncer: a confirmed escape pauses

Detectors never run mid-substep, and they only ever see a read-only
StateView of the engine.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Sequence, Tuple
import numpy as np

from tribody.bodies import Body, BodyIndex, bodies_to_arrays
from tribody.collisions import CollisionSettings, detect_collision
from tribody.diagnostics import snapshot_diagnostics
from tribody.dynamics import NBodyEngine
from tribody.escape import EscapeDebouncer, EscapeSettings, detect_escape
from tribody.presets import get_preset, preset_bodies
from tribody.state import DEFAULT_SOFTENING


DEFAULT_SUB_STEPS = 4
DEFAULT_TIME_SCALE = 5.0      # simulated days per real second
DEFAULT_FRAME_DT = 1.0 / 60.0
DEFAULT_TRAIL_LEN = 2500
DEFAULT_ENERGY_EVERY = 15     # ~250 ms of wall time at 60 fps


@dataclass
class SimulationEvent:
    """An anomaly that paused the simulation.

    Attributes
    ----------
    kind : str
        'collision' or 'escape'.
    bodies : tuple of BodyIndex
        Implicated bodies.
    measured : float
        Separation [AU] for collisions, speed [AU/day] for escapes.
    threshold : float
        r_i + r_j [AU] for collisions, escape speed [AU/day] for escapes.
    time : float
        Simulated time of detection [days].
    frame : int
        Frame counter at detection.
    message : str
        Human-readable description.
    """

    kind: str
    bodies: Tuple[BodyIndex, ...]
    measured: float
    threshold: float
    time: float
    frame: int
    message: str = ''


@dataclass
class InitialConditions:
    """Plain-data initial conditions an engine is (re)built from."""

    masses: List[float]
    pos: List[List[float]]
    vel: List[List[float]]
    softening: float = DEFAULT_SOFTENING
    names: List[str] = field(default_factory=list)

    @classmethod
    def from_bodies(cls, bodies: Sequence[Body], softening: float = DEFAULT_SOFTENING):
        masses, positions, velocities = bodies_to_arrays(bodies)
        return cls(
            masses=masses.tolist(),
            pos=positions.tolist(),
            vel=velocities.tolist(),
            softening=float(softening),
            names=[b.name for b in bodies],
        )

    def body_name(self, k: int) -> str:
        if k < len(self.names):
            return self.names[k]
        return f"body {k}"

    def to_dict(self) -> Dict:
        """{masses, pos, vel, softening}, the displayable init document."""
        return {
            'masses': list(self.masses),
            'pos': [list(p) for p in self.pos],
            'vel': [list(v) for v in self.vel],
            'softening': self.softening,
        }


class Simulation:
    """
    Headless animation-loop driver around one NBodyEngine.

    Parameters
    ----------
    initial : InitialConditions
        Bodies to build the engine from.
    time_scale : float
        Simulated days per real second (default: 5).
    sub_steps : int
        RK4 steps per frame (default: 4).
    collisions : CollisionSettings, optional
    escape : EscapeSettings, optional
    trail_len : int
        Maximum points kept per body trail (default: 2500). Assigning a
        new value trims the live trails at once.
    verbose : bool
        Print anomaly messages as they happen.

    Examples
    --------
    >>> sim = Simulation.from_preset("sun-earth-jupiter")
    >>> for _ in range(60):
    ...     _ = sim.advance_frame(1.0 / 60.0)
    >>> round(sim.sim_time, 6)
    5.0
    >>> sim.paused
    False
    """

    def __init__(
        self,
        initial: InitialConditions,
        time_scale: float = DEFAULT_TIME_SCALE,
        sub_steps: int = DEFAULT_SUB_STEPS,
        collisions: Optional[CollisionSettings] = None,
        escape: Optional[EscapeSettings] = None,
        trail_len: int = DEFAULT_TRAIL_LEN,
        verbose: bool = False,
    ):
        if int(sub_steps) < 1:
            raise ValueError(f"sub_steps must be >= 1, got {sub_steps}")
        self.initial = initial
        self.time_scale = float(time_scale)
        self.sub_steps = int(sub_steps)
        self.collisions = collisions if collisions is not None else CollisionSettings()
        self.escape = escape if escape is not None else EscapeSettings()
        self.verbose = verbose

        self.events: List[SimulationEvent] = []
        self.engine: NBodyEngine = None
        self.debouncer: EscapeDebouncer = None
        self.trails: List[Deque[np.ndarray]] = []
        self.trail_len = trail_len
        self.paused = False
        self.sim_time = 0.0
        self.frame = 0
        self.last_dt = 0.0
        self.rebuild()

    @classmethod
    def from_bodies(cls, bodies: Sequence[Body], softening: float = DEFAULT_SOFTENING, **kwargs):
        return cls(InitialConditions.from_bodies(bodies, softening), **kwargs)

    @classmethod
    def from_preset(cls, name: str, softening: float = DEFAULT_SOFTENING, **kwargs):
        return cls.from_bodies(preset_bodies(name), softening, **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def rebuild(self) -> None:
        """Rebuild the engine from the initial conditions.

        Escape counters are zeroed and trails restart from the initial
        positions. The pause flag is left untouched.
        """
        ic = self.initial
        self.engine = NBodyEngine(ic.masses, ic.pos, ic.vel, ic.softening)
        self.debouncer = EscapeDebouncer(
            self.engine.n_bodies, self.escape.consecutive_threshold
        )
        self.trails = [deque(maxlen=self.trail_len) for _ in range(self.engine.n_bodies)]
        for k, p in enumerate(self.engine.positions()):
            self.trails[k].append(p)
        self.sim_time = 0.0
        self.frame = 0
        self.last_dt = 0.0

    def reset(self) -> None:
        """Rebuild from the initial conditions and clear the pause flag."""
        self.rebuild()
        self.paused = False

    def apply_preset(self, name: str) -> None:
        """Replace the initial conditions with a named preset and reset."""
        get_preset(name)  # raises KeyError for unknown names
        self.initial = InitialConditions.from_bodies(
            preset_bodies(name), self.initial.softening
        )
        self.reset()

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def toggle_pause(self) -> None:
        self.paused = not self.paused

    @property
    def trail_len(self) -> int:
        return self._trail_len

    @trail_len.setter
    def trail_len(self, n: int) -> None:
        """Change the trail capacity; existing trails keep their newest points."""
        n = int(n)
        if n < 1:
            raise ValueError(f"trail_len must be >= 1, got {n}")
        self._trail_len = n
        self.trails = [deque(t, maxlen=n) for t in self.trails]

    # ------------------------------------------------------------------
    # Frame loop
    # ------------------------------------------------------------------

    def energy(self) -> float:
        return self.engine.energy()

    def positions(self) -> np.ndarray:
        return self.engine.positions()

    def trail(self, k: int) -> np.ndarray:
        """Trail of body k as an (n_points, 3) array, oldest first."""
        return np.array(self.trails[k], dtype=np.float64).reshape(-1, 3)

    def advance_frame(self, frame_delta: float) -> Optional[SimulationEvent]:
        """
        Integrate one display frame of frame_delta real seconds.

        Returns
        -------
        SimulationEvent or None
            The anomaly that paused the simulation on this frame, if any.
            Nothing happens (and None is returned) while paused.
        """
        if self.paused:
            return None

        dt = float(frame_delta) * self.time_scale / self.sub_steps
        for _ in range(self.sub_steps):
            self.engine.step(dt)
        self.sim_time += dt * self.sub_steps
        self.frame += 1
        self.last_dt = dt

        for k, p in enumerate(self.engine.positions()):
            self.trails[k].append(p)

        return self._check_anomalies(dt)

    def _check_anomalies(self, dt: float) -> Optional[SimulationEvent]:
        view = self.engine.view()

        if self.collisions.enabled:
            hit = detect_collision(view, self.collisions.mode, self.collisions.fudge, dt)
            if hit is not None:
                msg = (
                    f"Collision: {self.initial.body_name(hit.i)} and "
                    f"{self.initial.body_name(hit.j)} at t={self.sim_time:.2f} d "
                    f"(separation {hit.separation:.3e} AU < {hit.threshold:.3e} AU)"
                )
                return self._halt(SimulationEvent(
                    kind='collision',
                    bodies=(hit.i, hit.j),
                    measured=hit.separation,
                    threshold=hit.threshold,
                    time=self.sim_time,
                    frame=self.frame,
                    message=msg,
                ))

        if self.escape.enabled:
            candidate = detect_escape(view, self.escape.max_sep_au, self.escape.fudge)
            confirmed = self.debouncer.update(candidate)
            if confirmed is not None:
                msg = (
                    f"Escape: {self.initial.body_name(candidate.index)} at "
                    f"t={self.sim_time:.2f} d (speed {candidate.speed:.3e} AU/d >= "
                    f"escape speed {candidate.escape_speed:.3e} AU/d at "
                    f"r_CM={candidate.r_cm:.2f} AU)"
                )
                return self._halt(SimulationEvent(
                    kind='escape',
                    bodies=(confirmed,),
                    measured=candidate.speed,
                    threshold=candidate.escape_speed,
                    time=self.sim_time,
                    frame=self.frame,
                    message=msg,
                ))

        return None

    def _halt(self, event: SimulationEvent) -> SimulationEvent:
        self.paused = True
        self.events.append(event)
        if self.verbose:
            print(f"⚠️  {event.message}. Simulation paused.")
        return event

    def run(
        self,
        n_frames: int,
        frame_delta: float = DEFAULT_FRAME_DT,
        save_every: int = 1,
        energy_every: int = DEFAULT_ENERGY_EVERY,
        progress_every: int = 0,
    ) -> Tuple[Dict, List[Dict]]:
        """
        Drive up to n_frames frames, sampling trajectory and diagnostics.

        The loop stops early when a detector pauses the simulation.

        Parameters
        ----------
        n_frames : int
            Maximum number of frames to integrate.
        frame_delta : float
            Real seconds per frame (default: 1/60).
        save_every : int
            Save positions/velocities every N frames (default: 1).
        energy_every : int
            Record energy/momentum diagnostics every N frames (default: 15).
        progress_every : int
            Print progress every N frames when verbose (0 disables).

        Returns
        -------
        trajectory : dict
            't' : ndarray, shape (n_saved,), simulated days
            'x' : ndarray, shape (n_saved, N, 3)
            'v' : ndarray, shape (n_saved, N, 3)
            'M' : ndarray, shape (N,)
            'frame' : ndarray, shape (n_saved,)
            Includes the state at the start of the run.
        diagnostics : list of dict
            Energy/momentum samples (see diagnostics.snapshot_diagnostics)
            with 'frame' and 'time' added, including the initial and the
            final state.
        """
        save_every = max(1, int(save_every))
        energy_every = max(1, int(energy_every))
        n = self.engine.n_bodies

        times = [self.sim_time]
        frames = [self.frame]
        xs = [self.engine.positions()]
        vs = [self.engine.velocities()]
        diagnostics = [self._diagnostics_sample()]

        if self.verbose:
            print(f"Starting run: up to {n_frames} frames, {self.sub_steps} sub-steps, "
                  f"dt={frame_delta * self.time_scale / self.sub_steps:.3e} d")
            print(f"  N bodies: {n}")
            print(f"  Initial energy: {diagnostics[0]['total_energy']:.6e}")

        for i in range(1, int(n_frames) + 1):
            if self.paused:
                break
            event = self.advance_frame(frame_delta)

            if i % save_every == 0 or event is not None:
                times.append(self.sim_time)
                frames.append(self.frame)
                xs.append(self.engine.positions())
                vs.append(self.engine.velocities())

            if i % energy_every == 0 or event is not None or i == n_frames:
                diagnostics.append(self._diagnostics_sample())

            if self.verbose and progress_every > 0 and i % progress_every == 0:
                E0 = diagnostics[0]['total_energy']
                E = self.energy()
                dE = (E - E0) / E0 if E0 != 0 else 0.0
                print(f"  Frame {i:7d}/{n_frames}  t={self.sim_time:10.3f} d  "
                      f"E={E:+.6e}  ΔE/E={dE:+.2e}")

        trajectory = {
            't': np.array(times, dtype=np.float64),
            'frame': np.array(frames, dtype=np.int64),
            'x': np.array(xs, dtype=np.float64).reshape(-1, n, 3),
            'v': np.array(vs, dtype=np.float64).reshape(-1, n, 3),
            'M': np.array(self.engine.masses, dtype=np.float64),
        }
        return trajectory, diagnostics

    def _diagnostics_sample(self) -> Dict:
        diag = snapshot_diagnostics(self.engine.view())
        diag['frame'] = self.frame
        diag['time'] = self.sim_time
        return diag
