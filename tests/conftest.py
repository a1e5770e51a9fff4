# Ensure repository root is on sys.path for imports like `from galaxysim import ...`
import os
import sys

import matplotlib

matplotlib.use("Agg")

_REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

import pytest

from galaxysim import SimulationConfig


@pytest.fixture
def chain_records():
    # A–B–C: A,B and B,C are neighbours; A,C are not.
    return [
        {"name": "Alpha", "position": [0.0, 0.0, 0.0], "neighbours": [1]},
        {"name": "Beta",  "position": [3.0, 4.0, 0.0], "neighbours": [0, 2]},
        {"name": "Gamma", "position": [6.0, 0.0, 1.0], "neighbours": [1]},
    ]


@pytest.fixture
def square_records():
    # Flat 2-D chart, one pinned corner.
    return [
        {"name": "Lave",   "coordinates": [0, 0],  "neighbours": [1, 3], "pinned": True},
        {"name": "Diso",   "coordinates": [10, 0], "neighbours": [0, 2]},
        {"name": "Leesti", "coordinates": [10, 10], "neighbours": [1, 3], "color": "#ffcc00"},
        {"name": "Zaonce", "coordinates": [0, 10], "neighbours": [2, 0]},
    ]


@pytest.fixture
def cfg():
    return SimulationConfig()
