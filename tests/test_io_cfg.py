"""
Tests for configuration loading, validation and file output.
"""

import json

import numpy as np
import pytest
import yaml

from tribody.collisions import CollisionSettings
from tribody.driver import Simulation
from tribody.escape import EscapeSettings
from tribody.io_cfg import (
    DEFAULT_FRAMES,
    build_init_json,
    config_from_preset,
    convert_to_json_serializable,
    create_example_config,
    initial_conditions,
    load_config,
    parse_config,
    parse_init_json,
    save_diagnostics_json,
    save_init_json,
    save_state_csv,
    validate_config,
)


THREE_BODIES = {
    'bodies': [
        {'name': 'A', 'M': 1.0, 'x': [0, 0, 0], 'v': [0, 0, 0]},
        {'name': 'B', 'M': 0.5, 'x': [1, 0, 0], 'v': [0, 0.01, 0]},
        {'name': 'C', 'M': 0.1, 'x': [0, 2, 0], 'v': [-0.01, 0, 0]},
    ],
}


def write_yaml(path, data):
    with open(path, 'w') as f:
        yaml.safe_dump(data, f)
    return path


class TestLoadConfig:
    """Tests for YAML loading."""

    def test_bodies_and_defaults(self, tmp_path):
        path = write_yaml(tmp_path / "c.yaml", THREE_BODIES)
        config = load_config(str(path))
        assert [b.name for b in config['bodies']] == ['A', 'B', 'C']
        assert config['bodies'][1].M == 0.5
        assert np.allclose(config['bodies'][2].v, [-0.01, 0, 0])
        assert config['numerics']['frames'] == DEFAULT_FRAMES
        assert config['numerics']['sub_steps'] == 4
        assert isinstance(config['collisions'], CollisionSettings)
        assert isinstance(config['escape'], EscapeSettings)
        assert config['outputs']['plots'] == []

    def test_sections(self, tmp_path):
        data = dict(THREE_BODIES)
        data.update({
            'numerics': {'time_scale': 2.0, 'sub_steps': 8, 'softening': 1e-4},
            'collisions': {'mode': 'vdt', 'fudge': 2.0},
            'escape': {'enabled': False, 'consecutive_threshold': 4},
            'outputs': {'save_every': 10, 'plots': ['energy']},
        })
        config = load_config(str(write_yaml(tmp_path / "c.yaml", data)))
        assert config['numerics']['time_scale'] == 2.0
        assert config['numerics']['sub_steps'] == 8
        assert config['collisions'].mode == 'vdt'
        assert config['escape'].enabled is False
        assert config['escape'].consecutive_threshold == 4
        assert config['outputs']['save_every'] == 10
        assert config['outputs']['plots'] == ['energy']

    def test_preset_key(self, tmp_path):
        path = write_yaml(tmp_path / "c.yaml", {'preset': 'triangle'})
        config = load_config(str(path))
        assert len(config['bodies']) == 4
        assert config['bodies'][-1].name == 'Planet'

    def test_empty_plots_key(self, tmp_path):
        """A bare `plots:` key (YAML null) means no plots."""
        path = tmp_path / "c.yaml"
        path.write_text("preset: triangle\noutputs:\n  plots:\n")
        assert load_config(str(path))['outputs']['plots'] == []
        data = yaml.safe_load("preset: triangle\noutputs:\n  save_every: 2\n  plots:\n")
        assert parse_config(data)['outputs']['plots'] == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_missing_mass(self):
        with pytest.raises(KeyError, match="M"):
            parse_config({'bodies': [{'name': 'A', 'x': [0, 0, 0], 'v': [0, 0, 0]}]})

    def test_negative_mass(self):
        with pytest.raises(ValueError, match="Body 0"):
            parse_config({'bodies': [{'M': -1.0, 'x': [0, 0, 0], 'v': [0, 0, 0]}] * 3})

    def test_neither_bodies_nor_preset(self):
        with pytest.raises(KeyError):
            parse_config({'numerics': {}})

    def test_bad_collision_mode(self):
        data = dict(THREE_BODIES, collisions={'mode': 'exact'})
        with pytest.raises(ValueError):
            parse_config(data)

    def test_unusual_body_count_warns(self):
        data = {'bodies': THREE_BODIES['bodies'][:2]}
        with pytest.warns(UserWarning, match="2 bodies"):
            parse_config(data)


class TestValidateConfig:
    """Tests for validate_config."""

    def test_presets_valid(self):
        for name in ('tristar-planet', 'sun-earth-jupiter', 'triangle'):
            ok, _ = validate_config(config_from_preset(name))
            assert ok

    def test_non_positive_numerics(self):
        config = config_from_preset('triangle')
        config['numerics']['frames'] = 0
        config['numerics']['time_scale'] = -1.0
        ok, msgs = validate_config(config)
        assert not ok
        assert any('frames' in m for m in msgs)
        assert any('time_scale' in m for m in msgs)

    def test_initial_overlap_warns(self):
        config = parse_config({
            'bodies': [
                {'name': 'A', 'M': 1.0, 'x': [0, 0, 0], 'v': [0, 0, 0]},
                {'name': 'B', 'M': 1.0, 'x': [0.001, 0, 0], 'v': [0, 0, 0]},
                {'name': 'C', 'M': 1.0, 'x': [5, 0, 0], 'v': [0, 0, 0]},
            ],
        })
        ok, msgs = validate_config(config)
        assert ok
        assert any('overlap' in m for m in msgs)

    def test_large_dt_warns(self):
        config = config_from_preset('tristar-planet')
        config['numerics']['time_scale'] = 5000.0
        ok, msgs = validate_config(config)
        assert ok
        assert any('dt' in m for m in msgs)

    def test_missing_section(self):
        ok, msgs = validate_config({'bodies': []})
        assert not ok


class TestOutputs:
    """Tests for CSV / JSON writers."""

    def test_csv(self, tmp_path):
        sim = Simulation.from_preset('triangle')
        traj, _ = sim.run(5)
        path = tmp_path / "out" / "trajectory.csv"
        save_state_csv(str(path), traj, sim.initial.names)
        lines = path.read_text().splitlines()
        assert lines[0] == "time,body_name,x,y,z,vx,vy,vz,M"
        assert len(lines) == 1 + 6 * 4
        assert lines[1].split(',')[1] == "Star 1"

    def test_diagnostics_json(self, tmp_path):
        path = tmp_path / "d.json"
        save_diagnostics_json(str(path), {
            'a': np.arange(3),
            'b': np.float64(1.5),
            'c': [np.int64(2), (np.bool_(True),)],
        })
        data = json.loads(path.read_text())
        assert data == {'a': [0, 1, 2], 'b': 1.5, 'c': [2, [True]]}

    def test_convert_passthrough(self):
        assert convert_to_json_serializable("x") == "x"

    def test_init_json_round_trip(self, tmp_path):
        ic = initial_conditions(config_from_preset('tristar-planet'))
        text = build_init_json(ic)
        assert set(json.loads(text)) == {'masses', 'pos', 'vel', 'softening'}
        back = parse_init_json(text, names=ic.names)
        assert back.masses == ic.masses
        assert back.pos == ic.pos
        assert back.vel == ic.vel
        assert back.softening == ic.softening
        assert back.names == ic.names

        path = tmp_path / "init.json"
        save_init_json(str(path), ic)
        assert parse_init_json(path.read_text()).masses == ic.masses

    def test_example_config_loads(self, tmp_path):
        path = tmp_path / "example.yaml"
        create_example_config(str(path), preset='sun-earth-jupiter')
        config = load_config(str(path))
        assert len(config['bodies']) == 4
        ok, _ = validate_config(config)
        assert ok
        ic = initial_conditions(config)
        assert np.allclose(ic.pos, initial_conditions(config_from_preset('sun-earth-jupiter')).pos)
