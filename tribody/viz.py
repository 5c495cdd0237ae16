"""Visualization module for the N-body gravity simulator.

Static matplotlib plots of a finished run:
- 3D trajectory visualization with start/end markers
- Energy drift over time

Interactive rendering is not part of this package; these plots are for
inspecting headless runs.
"""

from typing import Dict, List, Optional
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from tribody.diagnostics import relative_energy_drift


BODY_COLORS = ['orange', 'royalblue', 'crimson', 'green', 'purple', 'brown', 'pink']


def plot_trajectory_3d(
    trajectory: Dict[str, np.ndarray],
    body_names: List[str],
    output_path: str,
    events: Optional[List] = None,
    dpi: int = 150
) -> None:
    """Plot 3D trajectory visualization with color-coded bodies.

    Creates a 3D plot showing:
    - Color-coded paths for each body
    - Initial positions marked with circles
    - Final positions marked with squares
    - Anomaly events (collision/escape) marked with an X on the implicated
      bodies' final positions

    Parameters
    ----------
    trajectory : Dict[str, np.ndarray]
        Trajectory from Simulation.run(); must contain 'x'.
    body_names : List[str]
        Names of bodies (for legend).
    output_path : str
        Output file path (e.g., "output/trajectory_3d.png").
    events : list of SimulationEvent, optional
        Events to mark.
    dpi : int, optional
        Output resolution (default: 150).
    """
    x = trajectory['x']  # Shape: (n_saved, n_bodies, 3)
    n_saved, n_bodies, _ = x.shape

    fig = plt.figure(figsize=(12, 10))
    ax = fig.add_subplot(111, projection='3d')

    for i in range(n_bodies):
        color = BODY_COLORS[i % len(BODY_COLORS)]
        label = body_names[i] if i < len(body_names) else f"Body {i}"

        ax.plot(x[:, i, 0], x[:, i, 1], x[:, i, 2],
                color=color, linewidth=1.2, label=label, alpha=0.7)
        ax.scatter(x[0, i, 0], x[0, i, 1], x[0, i, 2],
                   color=color, marker='o', s=60, edgecolors='black')
        ax.scatter(x[-1, i, 0], x[-1, i, 1], x[-1, i, 2],
                   color=color, marker='s', s=60, edgecolors='black')

    for event in events or []:
        for k in event.bodies:
            ax.scatter(x[-1, k, 0], x[-1, k, 1], x[-1, k, 2],
                       color='black', marker='x', s=150, linewidth=2)

    ax.set_xlabel('x [AU]', fontsize=12)
    ax.set_ylabel('y [AU]', fontsize=12)
    ax.set_zlabel('z [AU]', fontsize=12)
    ax.set_title('3D Orbital Trajectories', fontsize=14, fontweight='bold')
    ax.legend(loc='best', fontsize=10)

    # Equal aspect ratio for all axes
    max_range = max(
        x[:, :, 0].max() - x[:, :, 0].min(),
        x[:, :, 1].max() - x[:, :, 1].min(),
        x[:, :, 2].max() - x[:, :, 2].min(),
        1e-3,
    ) / 2.0
    mid = [(x[:, :, d].max() + x[:, :, d].min()) * 0.5 for d in range(3)]
    ax.set_xlim(mid[0] - max_range, mid[0] + max_range)
    ax.set_ylim(mid[1] - max_range, mid[1] + max_range)
    ax.set_zlim(mid[2] - max_range, mid[2] + max_range)

    plt.tight_layout()

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)

    print(f"Saved 3D trajectory plot to {output_path}")


def plot_energy_drift(
    diagnostics: List[Dict],
    output_path: str,
    dpi: int = 150
) -> None:
    """Plot total energy and relative drift |E - E0|/|E0| against time.

    Parameters
    ----------
    diagnostics : list of dict
        Samples from Simulation.run(), each with 'time' and 'total_energy'.
    output_path : str
        Output file path (e.g., "output/energy.png").
    dpi : int, optional
        Output resolution (default: 150).
    """
    t = np.array([d['time'] for d in diagnostics])
    E = np.array([d['total_energy'] for d in diagnostics])
    drift = np.array([relative_energy_drift(E[0], e) for e in E])

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 8), sharex=True)

    ax1.plot(t, E, 'b-', linewidth=1.5)
    ax1.set_ylabel('Total energy [Msun AU²/d²]', fontsize=12)
    ax1.set_title('Energy Conservation (RK4)', fontsize=14, fontweight='bold')
    ax1.grid(True, alpha=0.3)

    # Floor keeps the log axis valid for the initial zero-drift sample
    ax2.semilogy(t, np.maximum(drift, 1e-18), 'k-', linewidth=1.5)
    ax2.set_xlabel('Time [days]', fontsize=12)
    ax2.set_ylabel('|ΔE/E₀|', fontsize=12)
    ax2.grid(True, alpha=0.3)

    plt.tight_layout()

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)

    print(f"Saved energy plot to {output_path}")
