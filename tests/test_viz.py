"""
Smoke tests for the matplotlib plots (Agg backend, files only).
"""

import matplotlib
matplotlib.use("Agg")

from tribody.bodies import Body
from tribody.driver import Simulation
from tribody.viz import plot_energy_drift, plot_trajectory_3d


class TestPlots:
    """Plots write non-empty PNG files."""

    def test_trajectory_3d(self, tmp_path):
        sim = Simulation.from_preset('triangle')
        traj, _ = sim.run(20)
        path = tmp_path / "plots" / "trajectory_3d.png"
        plot_trajectory_3d(traj, sim.initial.names, str(path))
        assert path.exists() and path.stat().st_size > 0

    def test_trajectory_3d_with_event(self, tmp_path):
        sim = Simulation.from_bodies([
            Body("A", 1.0, [0, 0, 0], [0, 0, 0]),
            Body("B", 1.0, [0.01, 0, 0], [0, 0, 0]),
        ], time_scale=1e-4)
        traj, _ = sim.run(10)
        path = tmp_path / "collision.png"
        plot_trajectory_3d(traj, ["A", "B"], str(path), events=sim.events)
        assert path.exists()

    def test_energy(self, tmp_path):
        sim = Simulation.from_preset('sun-earth-jupiter')
        _, diags = sim.run(60, energy_every=10)
        path = tmp_path / "energy.png"
        plot_energy_drift(diags, str(path))
        assert path.exists() and path.stat().st_size > 0
