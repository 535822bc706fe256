"""Pytest configuration and shared fixtures for BVH Engine tests."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest


# Add project root to path so imports work
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )


@pytest.fixture
def epsilon() -> float:
    """Default intersection epsilon."""
    return 1e-10


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded generator for reproducible random scenes."""
    return np.random.default_rng(1234)


@pytest.fixture
def raw_config() -> dict:
    """A complete, valid configuration mapping."""
    return {
        "bvh": {
            "max_prims_in_node": 1,
            "split_method": "sah",
            "ordered_traversal": False,
        },
        "intersection": {"epsilon": 1.0e-10},
        "scene": {
            "type": "random_spheres",
            "num_primitives": 60,
            "extent": 10.0,
            "min_radius": 0.2,
            "max_radius": 1.0,
            "seed": 3,
        },
        "benchmark": {"num_rays": 80, "seed": 5},
    }
