"""Engine configuration loader.

Accelerator, intersection, scene-synthesis and benchmark settings are
loaded from a YAML file into frozen dataclasses and validated once, so the
rest of the engine works with typed values only.
"""

from __future__ import annotations

import logging
import platform
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

from bvh_engine.bvh import SplitMethod

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccelConfig:
    """BVH accelerator configuration.

    Attributes
    ----------
    max_prims_in_node : int
        Requested leaf capacity (clamped to 255 by ``BVHAccel``).
    split_method : SplitMethod
        Partition heuristic.
    ordered_traversal : bool
        Visit the nearer child box first and cull the farther one.
    """

    max_prims_in_node: int
    split_method: SplitMethod
    ordered_traversal: bool


@dataclass(frozen=True)
class IntersectionConfig:
    """Primitive intersection settings.

    Attributes
    ----------
    epsilon : float
        Hits with ``t <= epsilon`` are rejected (self-intersection guard).
    """

    epsilon: float


@dataclass(frozen=True)
class SyntheticSceneConfig:
    """Configuration for synthetic scene generation.

    Attributes
    ----------
    scene_type : str
        Generator name ('random_spheres', 'random_boxes', 'sphere_grid',
        'bowl_terrain').
    num_primitives : int
        Number of primitives (approximate face count for 'bowl_terrain').
    extent : float
        Half-size of the cube the scene occupies.
    min_radius, max_radius : float
        Range of sphere radii / box half-sizes.
    seed : int
        Random seed for reproducibility.
    """

    scene_type: str
    num_primitives: int
    extent: float
    min_radius: float
    max_radius: float
    seed: int


@dataclass(frozen=True)
class BenchmarkConfig:
    """BVH-vs-brute-force benchmark settings.

    Attributes
    ----------
    num_rays : int
        Number of random query rays.
    seed : int
        Random seed for the rays.
    """

    num_rays: int
    seed: int


@dataclass
class EngineConfig:
    """Top-level configuration loaded from YAML.

    Attributes
    ----------
    accel : AccelConfig
        Accelerator settings.
    intersection : IntersectionConfig
        Primitive intersection settings.
    scene : SyntheticSceneConfig
        Synthetic scene settings.
    benchmark : BenchmarkConfig
        Benchmark settings.
    """

    accel: AccelConfig
    intersection: IntersectionConfig
    scene: SyntheticSceneConfig
    benchmark: BenchmarkConfig


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path) -> EngineConfig:
    """Load and validate an engine configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    EngineConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    KeyError
        If a required key is missing.
    ValueError
        If a value is invalid.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f)

    logger.info("Loading configuration from: %s", config_path)
    config = parse_config(raw)
    logger.info(
        "Configuration loaded: split=%s, max_prims_in_node=%d, scene=%s (%d prims)",
        config.accel.split_method.value,
        config.accel.max_prims_in_node,
        config.scene.scene_type,
        config.scene.num_primitives,
    )
    return config


def parse_config(raw: dict[str, Any]) -> EngineConfig:
    """Build and validate an ``EngineConfig`` from an already-parsed mapping."""
    b = raw["bvh"]
    accel = AccelConfig(
        max_prims_in_node=int(b["max_prims_in_node"]),
        split_method=SplitMethod.parse(b["split_method"]),
        ordered_traversal=bool(b.get("ordered_traversal", False)),
    )

    isect = raw["intersection"]
    intersection = IntersectionConfig(epsilon=float(isect["epsilon"]))

    sc = raw["scene"]
    scene = SyntheticSceneConfig(
        scene_type=str(sc["type"]),
        num_primitives=int(sc["num_primitives"]),
        extent=float(sc["extent"]),
        min_radius=float(sc["min_radius"]),
        max_radius=float(sc["max_radius"]),
        seed=int(sc["seed"]),
    )

    bench = raw["benchmark"]
    benchmark = BenchmarkConfig(
        num_rays=int(bench["num_rays"]),
        seed=int(bench["seed"]),
    )

    config = EngineConfig(
        accel=accel,
        intersection=intersection,
        scene=scene,
        benchmark=benchmark,
    )
    _validate_config(config)
    return config


def _validate_config(config: EngineConfig) -> None:
    """Validate value ranges.

    Raises
    ------
    ValueError
        If any value is out of range.
    """
    if config.accel.max_prims_in_node < 1:
        raise ValueError(
            f"max_prims_in_node must be >= 1, got {config.accel.max_prims_in_node}"
        )
    if config.intersection.epsilon <= 0:
        raise ValueError("Intersection epsilon must be positive.")
    if config.scene.num_primitives < 0:
        raise ValueError("Scene primitive count cannot be negative.")
    if config.scene.extent <= 0:
        raise ValueError("Scene extent must be positive.")
    if not (0.0 < config.scene.min_radius <= config.scene.max_radius):
        raise ValueError(
            f"Radius range must satisfy 0 < min <= max, got "
            f"[{config.scene.min_radius}, {config.scene.max_radius}]"
        )
    if config.benchmark.num_rays < 0:
        raise ValueError("Benchmark ray count cannot be negative.")

    logger.debug("Configuration validation passed.")


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s", numba.__version__)
    logger.info("  Float64 eps: %e", np.finfo(np.float64).eps)
    logger.info("=" * 70)
