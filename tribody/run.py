#!/usr/bin/env python3
"""
Main command-line interface for the N-body gravity simulator.

This script runs the frame driver headlessly and reports on the result. It
handles:
- Configuration loading and validation (YAML file or built-in preset)
- Simulation execution with optional progress reporting
- Collision / escape anomaly reporting
- CSV and JSON output, optional matplotlib plots
- Graceful keyboard interrupt handling
- A quick self-test of the integrator

Usage:
    python -m tribody.run config.yaml
    python -m tribody.run --preset tristar-planet --frames 3000 --verbose
    python -m tribody.run config.yaml --validate-only
    python -m tribody.run --self-test

Units: AU, days, solar masses. One frame advances frame_dt * time_scale
simulated days, split into sub_steps RK4 steps.
"""

import argparse
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from tribody.diagnostics import energy_drift_monitor, relative_energy_drift
from tribody.driver import Simulation, SimulationEvent
from tribody.dynamics import NBodyEngine
from tribody.io_cfg import (
    build_init_json,
    config_from_preset,
    initial_conditions,
    load_config,
    parse_init_json,
    save_diagnostics_json,
    save_init_json,
    save_state_csv,
    validate_config,
)
from tribody.presets import DEFAULT_PRESET, get_preset, preset_names


# ============================================================================
# Global state for interrupt handling
# ============================================================================
_interrupted = False


def signal_handler(signum, frame):
    """Handle keyboard interrupt gracefully."""
    global _interrupted
    _interrupted = True
    print("\n\n🛑 Keyboard interrupt received. Stopping after this frame...")


# ============================================================================
# Main simulation runner
# ============================================================================

def build_simulation(config: Dict[str, Any], verbose: bool = False) -> Simulation:
    """Driver configured from a loaded configuration."""
    numerics = config['numerics']
    return Simulation(
        initial_conditions(config),
        time_scale=numerics['time_scale'],
        sub_steps=numerics['sub_steps'],
        collisions=config['collisions'],
        escape=config['escape'],
        trail_len=config['outputs']['trail_len'],
        verbose=verbose,
    )


def run_simulation(
    config: Dict[str, Any],
    verbose: bool = False,
) -> Dict[str, Any]:
    """
    Run the simulation described by config.

    Parameters
    ----------
    config : dict
        Loaded and validated configuration
    verbose : bool
        Enable verbose progress output

    Returns
    -------
    results : dict
        Dictionary with:
        - 'trajectory': trajectory data from Simulation.run
        - 'diagnostics': diagnostics list from Simulation.run
        - 'events': anomaly events that paused the run
        - 'simulation': the Simulation object (final state, trails)
        - 'summary': summary statistics dict
        - 'interrupted': bool, True if interrupted
    """
    global _interrupted
    _interrupted = False
    signal.signal(signal.SIGINT, signal_handler)

    numerics = config['numerics']
    sim = build_simulation(config, verbose=verbose)

    if verbose:
        print("=" * 80)
        print("N-BODY GRAVITY SIMULATOR")
        print("=" * 80)
        print()
        print(f"Bodies ({sim.engine.n_bodies}):")
        for body in config['bodies']:
            print(f"  {body.name:12s}: M={body.M:.6e}  |x|={np.linalg.norm(body.x):.3f} AU  "
                  f"|v|={body.speed:.3e} AU/d")
        print()
        dt = numerics['frame_dt'] * numerics['time_scale'] / numerics['sub_steps']
        print("Integration parameters:")
        print(f"  Frames:             {numerics['frames']:,}")
        print(f"  Sub-steps/frame:    {numerics['sub_steps']}")
        print(f"  Sub-step dt:        {dt:.6e} d")
        print(f"  Total time:         {dt * numerics['sub_steps'] * numerics['frames']:.3f} d")
        print(f"  Softening:          {numerics['softening']:.3e} AU")
        print()
        c, e = config['collisions'], config['escape']
        print("Detectors:")
        print(f"  Collisions:         {'ON' if c.enabled else 'OFF'} (mode={c.mode}, fudge={c.fudge})")
        print(f"  Escapes:            {'ON' if e.enabled else 'OFF'} (max_sep={e.max_sep_au} AU, "
              f"fudge={e.fudge}, threshold={e.consecutive_threshold})")
        print()

    t_start = time.time()
    trajectory, diagnostics = _run_interruptible(sim, config)
    elapsed = time.time() - t_start

    summary = compute_summary(
        trajectory, diagnostics, sim.events, elapsed,
        body_names=[b.name for b in config['bodies']],
    )

    return {
        'trajectory': trajectory,
        'diagnostics': diagnostics,
        'events': list(sim.events),
        'simulation': sim,
        'summary': summary,
        'interrupted': _interrupted,
    }


def _run_interruptible(sim: Simulation, config: Dict[str, Any]):
    """Simulation.run in chunks so SIGINT can stop between frames."""
    numerics = config['numerics']
    outputs = config['outputs']
    n_frames = numerics['frames']
    # A multiple of both sampling strides keeps chunk boundaries on sampled frames
    chunk = outputs['save_every'] * outputs['energy_every'] * 10

    trajectory = None
    diagnostics: List[Dict] = []
    done = 0
    while done < n_frames and not sim.paused and not _interrupted:
        todo = min(chunk, n_frames - done)
        traj, diags = sim.run(
            todo,
            frame_delta=numerics['frame_dt'],
            save_every=outputs['save_every'],
            energy_every=outputs['energy_every'],
            progress_every=max(1, n_frames // 20) if sim.verbose else 0,
        )
        if trajectory is None:
            trajectory = traj
            diagnostics = diags
        else:
            # Each chunk repeats the previous chunk's final state first
            for key in ('t', 'frame', 'x', 'v'):
                trajectory[key] = np.concatenate([trajectory[key], traj[key][1:]])
            diagnostics.extend(diags[1:])
        done += todo

    if trajectory is None:
        trajectory, diagnostics = sim.run(0)
    return trajectory, diagnostics


def compute_summary(
    trajectory: Dict,
    diagnostics: List[Dict],
    events: List[SimulationEvent],
    elapsed_time: float,
    body_names: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Compute summary statistics from simulation results.

    Returns
    -------
    summary : dict
        - timing: wall time, frames/sec
        - integration: frames, simulated days
        - energy: initial, final, drift (absolute, relative, max)
        - momentum: initial/final magnitude and drift
        - final_positions: last saved position per body name
        - events: list of anomaly messages
    """
    times = trajectory['t']
    n_frames = int(diagnostics[-1]['frame'] - diagnostics[0]['frame'])

    energies = [d['total_energy'] for d in diagnostics]
    if len(energies) >= 2:
        drift = energy_drift_monitor(energies)
    else:
        drift = {'E0': energies[0], 'Ef': energies[0], 'dE': 0.0,
                 'dE_rel': 0.0, 'dE_max': 0.0}

    x_final = trajectory['x'][-1]
    if body_names is None:
        body_names = [f"Body {k}" for k in range(x_final.shape[0])]

    p_initial = diagnostics[0]['total_momentum']
    p_final = diagnostics[-1]['total_momentum']

    return {
        'timing': {
            'elapsed_seconds': elapsed_time,
            'frames_per_second': n_frames / elapsed_time if elapsed_time > 0 else 0.0,
        },
        'integration': {
            'n_frames': n_frames,
            'n_saved': int(len(times)),
            'total_time_days': float(diagnostics[-1]['time'] - diagnostics[0]['time']),
            'paused': bool(events),
        },
        'energy': {
            'initial': drift['E0'],
            'final': drift['Ef'],
            'drift_absolute': drift['Ef'] - drift['E0'],
            'drift_relative': relative_energy_drift(drift['E0'], drift['Ef']),
            'max_deviation_absolute': drift['dE_max'],
            'max_deviation_relative': (
                drift['dE_max'] / abs(drift['E0']) if drift['E0'] != 0 else 0.0
            ),
        },
        'momentum': {
            'initial_magnitude': float(np.linalg.norm(p_initial)),
            'final_magnitude': float(np.linalg.norm(p_final)),
            'drift_magnitude': float(np.linalg.norm(p_final - p_initial)),
        },
        'final_positions': {
            name: x_final[k].tolist() for k, name in enumerate(body_names)
        },
        'events': [
            {
                'kind': ev.kind,
                'bodies': [int(k) for k in ev.bodies],
                'measured': ev.measured,
                'threshold': ev.threshold,
                'time': ev.time,
                'frame': ev.frame,
                'message': ev.message,
            }
            for ev in events
        ],
    }


def energy_quality(drift_relative: float) -> str:
    """Grade a relative energy drift."""
    drift_relative = abs(drift_relative)
    if drift_relative < 1e-5:
        return "EXCELLENT"
    elif drift_relative < 1e-3:
        return "GOOD"
    elif drift_relative < 1e-2:
        return "ACCEPTABLE"
    return "POOR (lower time_scale or raise sub_steps)"


def print_summary(summary: Dict[str, Any], verbose: bool = False) -> None:
    """Print human-readable simulation summary."""
    print()
    print("=" * 80)
    print("SIMULATION SUMMARY")
    print("=" * 80)
    print()

    t = summary['timing']
    print("Performance:")
    print(f"  Wall time:          {t['elapsed_seconds']:.2f} seconds")
    print(f"  Speed:              {t['frames_per_second']:.1f} frames/second")
    print()

    i = summary['integration']
    print("Integration:")
    print(f"  Frames:             {i['n_frames']:,}")
    print(f"  Simulated time:     {i['total_time_days']:.4f} d "
          f"({i['total_time_days'] / 365.25:.4f} yr)")
    print()

    e = summary['energy']
    print("Energy conservation:")
    print(f"  Initial energy:     {e['initial']:+.10e}")
    print(f"  Final energy:       {e['final']:+.10e}")
    print(f"  Absolute drift:     {e['drift_absolute']:+.6e}")
    print(f"  Relative drift:     {e['drift_relative']:+.6e}")
    print(f"  Max deviation:      {e['max_deviation_relative']:+.6e}")
    print(f"  Quality:            {energy_quality(e['drift_relative'])}")
    print()

    if verbose:
        m = summary['momentum']
        print("Momentum conservation:")
        print(f"  Initial |p|:        {m['initial_magnitude']:.6e}")
        print(f"  Final |p|:          {m['final_magnitude']:.6e}")
        print(f"  Drift |Δp|:         {m['drift_magnitude']:.6e}")
        print()

    print("Final positions [AU]:")
    for name, x in summary['final_positions'].items():
        print(f"  {name:12s}: ({x[0]:+.6f}, {x[1]:+.6f}, {x[2]:+.6f})")
    print()

    print("Anomalies:")
    if summary['events']:
        for ev in summary['events']:
            print(f"  ⚠️  {ev['message']}")
        print("  Simulation PAUSED.")
    else:
        print("  None detected.")
    print()


def print_trajectory_table(
    trajectory: Dict,
    body_names: List[str],
    max_rows: int = 20,
) -> None:
    """Print formatted table of trajectory data (first/last rows if long)."""
    times = trajectory['t']
    positions = trajectory['x']
    velocities = trajectory['v']
    n_snapshots = len(times)

    print()
    print("=" * 80)
    print("TRAJECTORY SAMPLE")
    print("=" * 80)
    print()

    if n_snapshots <= max_rows:
        rows = range(n_snapshots)
    else:
        n_show = max_rows // 2
        rows = list(range(n_show)) + list(range(n_snapshots - n_show, n_snapshots))

    print(f"{'Time [d]':>12s}  {'Body':>12s}  {'x':>14s}  {'y':>14s}  {'z':>14s}  "
          f"{'vx':>14s}  {'vy':>14s}  {'vz':>14s}")
    print("-" * 110)

    last_printed_idx = -1
    for i in rows:
        if i > last_printed_idx + 1:
            print(f"{'...':>12s}  {'...':>12s}  {'...':>14s}  {'...':>14s}  {'...':>14s}  "
                  f"{'...':>14s}  {'...':>14s}  {'...':>14s}")
        t = times[i]
        for j, name in enumerate(body_names):
            x = positions[i, j]
            v = velocities[i, j]
            print(f"{t:12.6e}  {name:>12s}  "
                  f"{x[0]:+14.6e}  {x[1]:+14.6e}  {x[2]:+14.6e}  "
                  f"{v[0]:+14.6e}  {v[1]:+14.6e}  {v[2]:+14.6e}")
        last_printed_idx = i

    print()


def save_outputs(
    config: Dict[str, Any],
    results: Dict[str, Any],
    output_dir: Path,
    plots: Optional[List[str]] = None,
    verbose: bool = False,
) -> None:
    """Save simulation outputs (CSV, JSON, plots)."""
    output_dir.mkdir(parents=True, exist_ok=True)

    trajectory = results['trajectory']
    diagnostics = results['diagnostics']
    body_names = [b.name for b in config['bodies']]
    written = []

    if config['outputs']['write_csv']:
        csv_path = output_dir / "trajectory.csv"
        if verbose:
            print(f"Saving trajectory to {csv_path}...")
        save_state_csv(str(csv_path), trajectory, body_names)
        written.append(csv_path.name)

    diag_dict = {
        'times': [float(d['time']) for d in diagnostics],
        'frames': [int(d['frame']) for d in diagnostics],
        'total_energy': [float(d['total_energy']) for d in diagnostics],
        'kinetic_energy': [float(d['kinetic_energy']) for d in diagnostics],
        'potential_energy': [float(d['potential_energy']) for d in diagnostics],
        'summary': results['summary'],
    }
    json_path = output_dir / "diagnostics.json"
    save_diagnostics_json(str(json_path), diag_dict)
    written.append(json_path.name)

    init_path = output_dir / "initial_conditions.json"
    save_init_json(str(init_path), initial_conditions(config))
    written.append(init_path.name)

    plots = list(plots if plots is not None else config['outputs']['plots'])
    if plots:
        from tribody import viz
        if 'trajectory_3d' in plots:
            path = output_dir / "trajectory_3d.png"
            viz.plot_trajectory_3d(trajectory, body_names, str(path), events=results['events'])
            written.append(path.name)
        if 'energy' in plots:
            path = output_dir / "energy.png"
            viz.plot_energy_drift(diagnostics, str(path))
            written.append(path.name)

    print()
    print(f"✓ Outputs saved to: {output_dir.absolute()}")
    for name in written:
        print(f"  - {name}")
    print()


# ============================================================================
# Self-tests
# ============================================================================

def run_self_tests() -> bool:
    """Quick integrity checks of the engine and presets.

    1. Figure-8 energy drift over 200 steps of 0.01 d stays below 1e-3
    2. Step determinism: two identical engines stay bit-identical
    3. Preset -> init JSON -> preset round trip
    4. Every preset builds a simulation and advances one frame
    """
    results = []

    p = get_preset('figure8')
    engine = NBodyEngine(p['masses'][:3], p['pos'][:3], p['vel'][:3], 1e-6)
    E0 = engine.energy()
    for _ in range(200):
        engine.step(0.01)
    rel = relative_energy_drift(E0, engine.energy())
    results.append(("energy drift < 1e-3", rel < 1e-3, f"rel={rel:.3e}"))

    a = NBodyEngine(p['masses'], p['pos'], p['vel'])
    b = NBodyEngine(p['masses'], p['pos'], p['vel'])
    for _ in range(2):
        a.step(0.01)
        b.step(0.01)
    same = bool(np.array_equal(a.state_copy(), b.state_copy()))
    results.append(("step determinism", same, ""))

    sim = Simulation.from_preset('triangle')
    ic = parse_init_json(build_init_json(sim.initial))
    ok = np.allclose(ic.pos, get_preset('triangle')['pos'], rtol=0, atol=1e-12)
    results.append(("init JSON round trip", bool(ok), ""))

    ok = True
    for name in preset_names():
        sim.apply_preset(name)
        sim.advance_frame(1.0 / 60.0)
        ok = ok and np.all(np.isfinite(sim.positions()))
    results.append(("presets advance", bool(ok), ""))

    for i, (label, passed, detail) in enumerate(results, start=1):
        status = "PASS" if passed else "FAIL"
        print(f"Test {i} ({label}): {status}" + (f" ({detail})" if detail else ""))

    return all(passed for _, passed, _ in results)


# ============================================================================
# Command-line interface
# ============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog='tribody.run',
        description=(
            'N-body gravity simulator: fixed-step RK4 integration of 3-4 '
            'point masses (AU, days, solar masses) with collision and escape '
            'detection.'
        ),
        epilog=(
            'Examples:\n'
            '  python -m tribody.run config.yaml\n'
            '  python -m tribody.run --preset tristar-planet --frames 3000 -v\n'
            '  python -m tribody.run config.yaml --validate-only\n'
            '  python -m tribody.run --self-test\n'
            '\n'
            f'Presets: {", ".join(preset_names())}'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        'config',
        type=str,
        nargs='?',
        default=None,
        help='Path to YAML configuration file (default: use --preset)',
    )
    parser.add_argument(
        '--preset',
        type=str,
        default=None,
        choices=preset_names(),
        help=f'Built-in initial conditions (default: {DEFAULT_PRESET})',
    )
    parser.add_argument(
        '--frames',
        type=int,
        default=None,
        help='Override number of frames to integrate',
    )
    parser.add_argument(
        '--time-scale',
        type=float,
        default=None,
        help='Override simulated days per real second',
    )
    parser.add_argument(
        '--output-dir',
        type=str,
        default='output',
        help='Output directory for results (default: output/)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output (progress, parameters, events)',
    )
    parser.add_argument(
        '--validate-only',
        action='store_true',
        help='Validate configuration and exit (no simulation)',
    )
    parser.add_argument(
        '--self-test',
        action='store_true',
        help='Run integrator self-tests and exit',
    )
    parser.add_argument(
        '--no-table',
        action='store_true',
        help='Skip trajectory table output',
    )
    parser.add_argument(
        '--table-rows',
        type=int,
        default=20,
        help='Number of rows in trajectory table (default: 20)',
    )
    parser.add_argument(
        '--plot',
        action='store_true',
        help='Write trajectory_3d.png and energy.png',
    )

    return parser


def main(argv=None):
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.self_test:
        return 0 if run_self_tests() else 1

    output_dir = Path(args.output_dir)

    # 1) Load configuration
    try:
        if args.config is not None:
            if args.verbose:
                print(f"Loading configuration from: {args.config}")
                print()
            config = load_config(args.config)
        else:
            config = config_from_preset(args.preset or DEFAULT_PRESET)
    except FileNotFoundError:
        print(f"ERROR: Configuration file not found: {args.config}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"ERROR: Failed to load configuration: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1

    if args.frames is not None:
        config['numerics']['frames'] = args.frames
    if args.time_scale is not None:
        config['numerics']['time_scale'] = args.time_scale

    # 2) Validate configuration
    is_valid, warnings_list = validate_config(config)

    if warnings_list:
        print("⚠️  Configuration warnings/errors:")
        for w in warnings_list:
            print(f"    - {w}")
        print()

    if not is_valid:
        print("❌ Configuration is INVALID. Please fix errors above.", file=sys.stderr)
        return 1

    if args.validate_only:
        print("✓ Configuration validated successfully. Exiting (--validate-only mode).")
        return 0

    # 3) Run simulation
    try:
        results = run_simulation(config, verbose=args.verbose)
    except KeyboardInterrupt:
        print("\n\nSimulation interrupted by user. Exiting without saving.")
        return 130
    except Exception as e:
        print(f"\nERROR: Simulation failed: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1

    # 4) Print summary
    print_summary(results['summary'], verbose=args.verbose)

    # 5) Print trajectory table
    if not args.no_table:
        print_trajectory_table(
            results['trajectory'],
            [b.name for b in config['bodies']],
            max_rows=args.table_rows,
        )

    # 6) Save outputs
    try:
        plots = ['trajectory_3d', 'energy'] if args.plot else None
        save_outputs(config, results, output_dir, plots=plots, verbose=args.verbose)
    except Exception as e:
        print(f"ERROR: Failed to save outputs: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1

    print()
    print("=" * 80)
    print("✓ Simulation complete!")
    print("=" * 80)
    print()

    if results['interrupted']:
        print("⚠️  Note: Simulation was interrupted. Results may be incomplete.")
        return 130

    return 0


if __name__ == '__main__':
    sys.exit(main())
