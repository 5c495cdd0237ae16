"""Built-in initial conditions (AU, day, Msun).

Each preset is a dict with 'masses', 'pos' and 'vel'. All presets carry
a tiny fourth "test planet" of roughly one Earth mass.

Presets:
- 'tristar-planet': three stars in a compact triangle, planet on a
  circular orbit around the middle star
- 'sun-earth-jupiter': Sun, Earth, Jupiter plus a test planet at 1.3 AU
- 'triangle': three equal stars in a tilted triangle
- 'figure8': the classic Chenciner-Montgomery figure-8 coordinates plus a
  test planet (note: published in G=1 units, so with the AU/day G the
  stars fly apart almost ballistically)
"""

import copy
from typing import Dict, List
import numpy as np

from tribody.bodies import Body
from tribody.dynamics import G


EPS_PLANET = 3.003e-6  # ~Earth mass [Msun]


def circular_velocity(M: float, r_au: float) -> float:
    """Circular orbit speed [AU/day] at radius r_au around mass M [Msun]."""
    return float(np.sqrt(G * M / r_au))


def _tristar_planet() -> Dict:
    m1, m2, m3, mp = 1.10, 0.95, 0.75, EPS_PLANET
    pos_stars = [
        [-1.2, 0.0, 0.0],
        [0.0, 0.0, 0.0],     # the star the planet orbits
        [1.0, 0.8, 0.0],
    ]
    vel_stars = [
        [0.0, 0.006, 0.0],
        [0.0, -0.008, 0.0],
        [-0.006, 0.0, 0.0],
    ]
    r_p = 0.25
    v_circ = circular_velocity(m2, r_p)
    pos_p = [pos_stars[1][0] + r_p, pos_stars[1][1], pos_stars[1][2]]
    vel_p = [vel_stars[1][0], vel_stars[1][1] + v_circ, vel_stars[1][2]]
    return {
        'masses': [m1, m2, m3, mp],
        'pos': pos_stars + [pos_p],
        'vel': vel_stars + [vel_p],
    }


def _sun_earth_jupiter() -> Dict:
    return {
        'masses': [1.0, 3.003e-6, 0.000954, EPS_PLANET],
        'pos': [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [5.2, 0.0, 0.0], [1.3, 0.0, 0.0]],
        'vel': [[0.0, 0.0, 0.0], [0.0, 0.0172, 0.0], [0.0, 0.0074, 0.0], [0.0, 0.015, 0.0]],
    }


def _triangle() -> Dict:
    return {
        'masses': [1.0, 1.0, 1.0, EPS_PLANET],
        'pos': [
            [-0.8, 0.0, 0.2],
            [0.4, 0.692820323, -0.1],
            [0.4, -0.692820323, -0.1],
            [0.6, 0.0, 0.0],
        ],
        'vel': [
            [0.0, 0.0055, 0.0],
            [-0.0048, -0.00275, 0.002],
            [0.0048, -0.00275, -0.002],
            [0.0, 0.01, 0.0],
        ],
    }


def _figure8() -> Dict:
    return {
        'masses': [1.0, 1.0, 1.0, EPS_PLANET],
        'pos': [
            [0.97000436, -0.24308753, 0.0],
            [-0.97000436, 0.24308753, 0.0],
            [0.0, 0.0, 0.0],
            [0.2, 0.0, 0.0],
        ],
        'vel': [
            [0.466203685, 0.43236573, 0.0],
            [0.466203685, 0.43236573, 0.0],
            [-0.93240737, -0.86473146, 0.0],
            [0.0, 0.01, 0.0],
        ],
    }


PRESETS: Dict[str, Dict] = {
    'tristar-planet': _tristar_planet(),
    'sun-earth-jupiter': _sun_earth_jupiter(),
    'triangle': _triangle(),
    'figure8': _figure8(),
}

DEFAULT_PRESET = 'sun-earth-jupiter'


def preset_names() -> List[str]:
    return list(PRESETS)


def get_preset(name: str) -> Dict:
    """Deep copy of a preset's {'masses', 'pos', 'vel'}.

    Raises
    ------
    KeyError
        If the preset name is unknown.
    """
    try:
        return copy.deepcopy(PRESETS[name])
    except KeyError:
        raise KeyError(
            f"Unknown preset {name!r}; choose one of {', '.join(PRESETS)}"
        ) from None


def preset_bodies(name: str) -> List[Body]:
    """Preset as Body objects: stars named 'Star 1'.., the last one 'Planet'."""
    p = get_preset(name)
    n = len(p['masses'])
    names = [f"Star {i + 1}" for i in range(n - 1)] + ["Planet"]
    return [
        Body(name=names[i], M=p['masses'][i], x=p['pos'][i], v=p['vel'][i])
        for i in range(n)
    ]
