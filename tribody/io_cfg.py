"""Configuration and I/O module for the N-body gravity simulator.

This module provides:
- YAML configuration loading and validation
- Example config generation
- CSV output for trajectories
- JSON output for diagnostics and initial conditions

Units throughout: AU, days, solar masses.
"""

from typing import Any, Dict, List, Optional, Tuple
import json
from pathlib import Path
import warnings

import numpy as np
import yaml

from tribody.bodies import Body
from tribody.collisions import CollisionSettings, detect_collision
from tribody.driver import (
    DEFAULT_ENERGY_EVERY,
    DEFAULT_FRAME_DT,
    DEFAULT_SUB_STEPS,
    DEFAULT_TIME_SCALE,
    DEFAULT_TRAIL_LEN,
    InitialConditions,
)
from tribody.dynamics import G
from tribody.escape import EscapeSettings
from tribody.presets import DEFAULT_PRESET, get_preset, preset_bodies
from tribody.state import DEFAULT_SOFTENING, StateView


DEFAULT_FRAMES = 600


def parse_config(raw_config: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a raw (YAML-decoded) mapping into configuration objects.

    See load_config for the layout. Raises KeyError / ValueError on
    missing or invalid fields.
    """
    if raw_config is None:
        raise ValueError("Empty configuration")

    # Parse bodies: explicit list, or a named preset
    bodies = []
    if 'bodies' in raw_config:
        bodies_cfg = raw_config['bodies']
        if not isinstance(bodies_cfg, list) or len(bodies_cfg) == 0:
            raise ValueError("Configuration 'bodies' must be a non-empty list")
        for i, body_cfg in enumerate(bodies_cfg):
            try:
                body = Body(
                    name=str(body_cfg.get('name', f"Body {i + 1}")),
                    M=float(body_cfg['M']),
                    x=np.array(body_cfg['x'], dtype=float),
                    v=np.array(body_cfg['v'], dtype=float),
                )
                bodies.append(body)
            except KeyError as e:
                raise KeyError(f"Body {i} missing required field {e}")
            except (ValueError, TypeError) as e:
                raise ValueError(f"Body {i} ('{body_cfg.get('name', 'unnamed')}'): {e}")
    elif 'preset' in raw_config:
        bodies = preset_bodies(str(raw_config['preset']))
    else:
        raise KeyError("Configuration needs either a 'bodies' list or a 'preset' name")

    numerics_cfg = raw_config.get('numerics', {}) or {}
    numerics = {
        'softening': float(numerics_cfg.get('softening', DEFAULT_SOFTENING)),
        'time_scale': float(numerics_cfg.get('time_scale', DEFAULT_TIME_SCALE)),
        'sub_steps': int(numerics_cfg.get('sub_steps', DEFAULT_SUB_STEPS)),
        'frame_dt': float(numerics_cfg.get('frame_dt', DEFAULT_FRAME_DT)),
        'frames': int(numerics_cfg.get('frames', DEFAULT_FRAMES)),
    }

    coll_cfg = raw_config.get('collisions', {}) or {}
    collisions = CollisionSettings(
        enabled=bool(coll_cfg.get('enabled', True)),
        mode=str(coll_cfg.get('mode', 'core')),
        fudge=float(coll_cfg.get('fudge', 1.5)),
    )

    esc_cfg = raw_config.get('escape', {}) or {}
    escape = EscapeSettings(
        enabled=bool(esc_cfg.get('enabled', True)),
        max_sep_au=float(esc_cfg.get('max_sep_au', 5.0)),
        fudge=float(esc_cfg.get('fudge', 1.0)),
        consecutive_threshold=int(esc_cfg.get('consecutive_threshold', 8)),
    )

    outputs_cfg = raw_config.get('outputs', {}) or {}
    outputs = {
        'save_every': int(outputs_cfg.get('save_every', 1)),
        'energy_every': int(outputs_cfg.get('energy_every', DEFAULT_ENERGY_EVERY)),
        'trail_len': int(outputs_cfg.get('trail_len', DEFAULT_TRAIL_LEN)),
        'write_csv': bool(outputs_cfg.get('write_csv', True)),
        'plots': list(outputs_cfg.get('plots') or []),
    }

    if len(bodies) not in (3, 4):
        warnings.warn(
            f"Configuration has {len(bodies)} bodies; presets and defaults are "
            "tuned for 3-4 bodies",
            UserWarning
        )

    return {
        'bodies': bodies,
        'numerics': numerics,
        'collisions': collisions,
        'escape': escape,
        'outputs': outputs,
    }


def load_config(yaml_path: str) -> Dict[str, Any]:
    """Load and parse a YAML configuration file.

    Parameters
    ----------
    yaml_path : str
        Path to YAML configuration file.

    Returns
    -------
    dict
        Configuration dictionary with keys:
        - 'bodies': list of Body instances (name, M, x, v)
        - 'numerics': dict (softening, time_scale, sub_steps, frame_dt, frames)
        - 'collisions': CollisionSettings
        - 'escape': EscapeSettings
        - 'outputs': dict (save_every, energy_every, trail_len, write_csv, plots)

    Raises
    ------
    FileNotFoundError
        If yaml_path does not exist.
    yaml.YAMLError
        If YAML parsing fails.
    KeyError
        If required configuration fields are missing.
    ValueError
        If configuration values are invalid (negative masses, etc.).

    Notes
    -----
    Bodies come from either a 'bodies' list (name, M, x, v per entry) or a
    'preset' name (see tribody.presets). Every other section is optional.

    Examples
    --------
    >>> config = load_config("tristar.yaml")  # doctest: +SKIP
    >>> print(f"Loaded {len(config['bodies'])} bodies")  # doctest: +SKIP
    Loaded 4 bodies
    """
    yaml_path = Path(yaml_path)
    if not yaml_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    with open(yaml_path, 'r') as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raise ValueError(f"Empty or invalid YAML file: {yaml_path}")

    return parse_config(raw_config)


def config_from_preset(name: str = DEFAULT_PRESET) -> Dict[str, Any]:
    """Default configuration built around a named preset."""
    get_preset(name)
    return parse_config({'preset': name})


def initial_conditions(config: Dict[str, Any]) -> InitialConditions:
    """InitialConditions for the driver from a loaded configuration."""
    return InitialConditions.from_bodies(
        config['bodies'], config['numerics']['softening']
    )


def validate_config(config: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Validate configuration for physical consistency and numerical stability.

    Parameters
    ----------
    config : dict
        Configuration dictionary from load_config().

    Returns
    -------
    is_valid : bool
        True if configuration passes all checks (may still have warnings).
    warnings_list : list of str
        Messages about errors and potential issues.

    Notes
    -----
    **Checks performed**:

    1. Positive numerics: softening, time_scale, sub_steps, frame_dt, frames
    2. Positive output intervals
    3. Bodies already overlapping under the configured collision model
       (the run would halt on its first frame)
    4. Sub-step dt against the tightest two-body orbital period
    """
    warnings_list = []
    is_valid = True

    try:
        bodies = config['bodies']
        numerics = config['numerics']
        collisions = config['collisions']
        outputs = config['outputs']
    except KeyError as e:
        return False, [f"Missing required config section: {e}"]

    for key in ('softening', 'time_scale', 'frame_dt'):
        if not numerics[key] > 0:
            is_valid = False
            warnings_list.append(f"numerics.{key} must be positive, got {numerics[key]}")
    for key in ('sub_steps', 'frames'):
        if numerics[key] < 1:
            is_valid = False
            warnings_list.append(f"numerics.{key} must be >= 1, got {numerics[key]}")
    for key in ('save_every', 'energy_every', 'trail_len'):
        if outputs[key] < 1:
            is_valid = False
            warnings_list.append(f"outputs.{key} must be >= 1, got {outputs[key]}")

    if len(bodies) < 2:
        is_valid = False
        warnings_list.append("Configuration must have at least two bodies")
        return is_valid, warnings_list

    if not is_valid:
        return is_valid, warnings_list

    dt = numerics['frame_dt'] * numerics['time_scale'] / numerics['sub_steps']
    view = StateView.from_arrays(
        [b.M for b in bodies], [b.x for b in bodies], [b.v for b in bodies],
        numerics['softening'],
    )

    if collisions.enabled:
        hit = detect_collision(view, collisions.mode, collisions.fudge, dt)
        if hit is not None:
            warnings_list.append(
                f"Bodies '{bodies[hit.i].name}' and '{bodies[hit.j].name}' already "
                f"overlap: separation {hit.separation:.3e} AU < {hit.threshold:.3e} AU. "
                f"The run will halt on its first frame."
            )

    # Tightest two-body period T = 2π sqrt(r³ / (G (m_i + m_j)))
    min_period = np.inf
    for i in range(len(bodies)):
        for j in range(i + 1, len(bodies)):
            r = np.linalg.norm(bodies[j].x - bodies[i].x)
            if r <= 0:
                continue
            T = 2.0 * np.pi * np.sqrt(r**3 / (G * (bodies[i].M + bodies[j].M)))
            min_period = min(min_period, T)

    if np.isfinite(min_period) and dt > 0.01 * min_period:
        warnings_list.append(
            f"Sub-step dt = {dt:.3e} d is large compared to the tightest orbital "
            f"period T ~ {min_period:.3e} d. Consider lowering time_scale or "
            f"raising sub_steps (dt < {0.01 * min_period:.3e} d)."
        )

    return is_valid, warnings_list


def create_example_config(output_path: str, preset: str = 'tristar-planet') -> None:
    """Generate an example YAML configuration file from a preset.

    The bodies of the preset are written out explicitly so the file can be
    edited by hand.
    """
    bodies = preset_bodies(preset)

    lines = [
        f"# Example configuration generated from preset '{preset}'",
        "# Units: AU, days, solar masses",
        "",
        "bodies:",
    ]
    for b in bodies:
        lines.append(f"  - name: \"{b.name}\"")
        lines.append(f"    M: {b.M!r}")
        lines.append(f"    x: [{float(b.x[0])!r}, {float(b.x[1])!r}, {float(b.x[2])!r}]")
        lines.append(f"    v: [{float(b.v[0])!r}, {float(b.v[1])!r}, {float(b.v[2])!r}]")

    lines += [
        "",
        "numerics:",
        f"  softening: {DEFAULT_SOFTENING}     # AU, added in quadrature to separations",
        f"  time_scale: {DEFAULT_TIME_SCALE}       # simulated days per real second",
        f"  sub_steps: {DEFAULT_SUB_STEPS}          # RK4 steps per frame",
        f"  frame_dt: {DEFAULT_FRAME_DT!r}",
        f"  frames: {DEFAULT_FRAMES}",
        "",
        "collisions:",
        "  enabled: true",
        "  mode: core          # core (mass-derived radius) or vdt (|v| * dt)",
        "  fudge: 1.5",
        "",
        "escape:",
        "  enabled: true",
        "  max_sep_au: 5.0",
        "  fudge: 1.0",
        "  consecutive_threshold: 8",
        "",
        "outputs:",
        "  save_every: 1",
        f"  energy_every: {DEFAULT_ENERGY_EVERY}",
        f"  trail_len: {DEFAULT_TRAIL_LEN}",
        "  write_csv: true",
        "  plots: []         # trajectory_3d, energy",
        "",
    ]

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w') as f:
        f.write("\n".join(lines))

    print(f"Example configuration written to: {output_path}")


def save_state_csv(
    filepath: str,
    trajectory: Dict[str, np.ndarray],
    body_names: List[str],
) -> None:
    """Save trajectory data to CSV file.

    Writes a CSV file with columns: time, body_name, x, y, z, vx, vy, vz, M.
    Each row corresponds to one body at one saved frame.

    Parameters
    ----------
    filepath : str
        Output CSV file path.
    trajectory : dict
        Trajectory from Simulation.run ('t', 'x', 'v', 'M').
    body_names : list of str
        Names of the bodies, in index order.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    times = trajectory['t']
    positions = trajectory['x']
    velocities = trajectory['v']
    masses = trajectory['M']

    with open(filepath, 'w') as f:
        f.write("time,body_name,x,y,z,vx,vy,vz,M\n")
        for i, t in enumerate(times):
            for j, name in enumerate(body_names):
                x = positions[i, j]
                v = velocities[i, j]
                f.write(
                    f"{t:.15e},{name},"
                    f"{x[0]:.15e},{x[1]:.15e},{x[2]:.15e},"
                    f"{v[0]:.15e},{v[1]:.15e},{v[2]:.15e},"
                    f"{masses[j]:.15e}\n"
                )

    n_snapshots = len(times)
    n_bodies = len(body_names)
    print(f"Saved {n_snapshots * n_bodies} states ({n_snapshots} snapshots × "
          f"{n_bodies} bodies) to {filepath}")


def convert_to_json_serializable(obj):
    """Recursively convert numpy arrays and scalars to plain Python."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, dict):
        return {key: convert_to_json_serializable(val) for key, val in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_to_json_serializable(item) for item in obj]
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, (np.integer, np.floating)):
        return obj.item()
    else:
        return obj


def save_diagnostics_json(filepath: str, diagnostics: Dict[str, Any]) -> None:
    """Save diagnostics data to JSON file.

    Arrays are converted to lists for JSON serialization.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with open(filepath, 'w') as f:
        json.dump(convert_to_json_serializable(diagnostics), f, indent=2)

    print(f"Saved diagnostics to {filepath} ({len(diagnostics)} top-level keys)")


def build_init_json(initial: InitialConditions) -> str:
    """Initial conditions as an indented JSON document.

    The document has the keys masses, pos, vel and softening, so it can be
    pasted back into a configuration or a preset.
    """
    return json.dumps(initial.to_dict(), indent=2)


def parse_init_json(text: str, names: Optional[List[str]] = None) -> InitialConditions:
    """Inverse of build_init_json."""
    obj = json.loads(text)
    return InitialConditions(
        masses=[float(m) for m in obj['masses']],
        pos=[[float(c) for c in p] for p in obj['pos']],
        vel=[[float(c) for c in v] for v in obj['vel']],
        softening=float(obj.get('softening', DEFAULT_SOFTENING)),
        names=list(names or []),
    )


def save_init_json(filepath: str, initial: InitialConditions) -> None:
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, 'w') as f:
        f.write(build_init_json(initial))
    print(f"Saved initial conditions to {filepath}")
