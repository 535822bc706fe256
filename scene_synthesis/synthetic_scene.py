"""Synthetic scene generator for BVH construction and query testing.

Generates reproducible primitive lists (random spheres, random boxes, a
sphere lattice, a crater-shaped terrain mesh) and random query rays, so
the accelerator can be built and validated without any scene files.

Notes
-----
The ``bowl_terrain`` scene is a parabolic crater of radius R = extent:

    z(r) = -D * (1 - (r/R)^2)       for r <= R  (inside crater)
    z(r) = H * exp(-(r-R)^2 / 2w^2)  for r > R   (raised rim, Gaussian profile)

with D = 0.2 R, H = 0.06 R and rim width w = 0.1 R. The whole terrain is a
single ``TriangleMesh`` primitive carrying its own internal BVH.
"""

from __future__ import annotations

import logging

import numpy as np

from bvh_engine.config import AccelConfig, SyntheticSceneConfig
from bvh_engine.geometry import Ray
from bvh_engine.mesh import heightfield_to_mesh
from bvh_engine.primitives import AxisAlignedBox, Primitive, Sphere, _DEFAULT_EPSILON

logger = logging.getLogger(__name__)


def generate_synthetic_scene(
    config: SyntheticSceneConfig,
    epsilon: float = _DEFAULT_EPSILON,
    accel: AccelConfig | None = None,
) -> list[Primitive]:
    """Generate a synthetic primitive list from configuration.

    Dispatches to the appropriate generator based on ``config.scene_type``.

    Parameters
    ----------
    config : SyntheticSceneConfig
        Scene configuration loaded from YAML.
    epsilon : float
        Intersection epsilon handed to every primitive.
    accel : AccelConfig, optional
        Settings for the internal accelerator of mesh primitives
        (``bowl_terrain``). Mesh defaults apply when omitted.

    Returns
    -------
    list[Primitive]
        Generated primitives (empty when ``num_primitives`` is 0).

    Raises
    ------
    ValueError
        If ``config.scene_type`` is not recognized.
    """
    generators = {
        "random_spheres": _generate_random_spheres,
        "random_boxes": _generate_random_boxes,
        "sphere_grid": _generate_sphere_grid,
        "bowl_terrain": _generate_bowl_terrain,
    }

    if config.scene_type not in generators:
        raise ValueError(
            f"Unknown scene type '{config.scene_type}'. "
            f"Valid options: {list(generators.keys())}"
        )

    logger.info(
        "Generating synthetic scene: type=%s, n=%d, extent=%.1f, seed=%d",
        config.scene_type,
        config.num_primitives,
        config.extent,
        config.seed,
    )

    if config.num_primitives == 0:
        return []

    rng = np.random.default_rng(config.seed)
    return generators[config.scene_type](config, rng, epsilon, accel)


def _generate_random_spheres(
    config: SyntheticSceneConfig,
    rng: np.random.Generator,
    epsilon: float,
    accel: AccelConfig | None,
) -> list[Primitive]:
    """Spheres with uniform centers in the scene cube and uniform radii."""
    n = config.num_primitives
    centers = rng.uniform(-config.extent, config.extent, size=(n, 3))
    radii = rng.uniform(config.min_radius, config.max_radius, size=n)
    return [Sphere(c, r, epsilon=epsilon) for c, r in zip(centers, radii)]


def _generate_random_boxes(
    config: SyntheticSceneConfig,
    rng: np.random.Generator,
    epsilon: float,
    accel: AccelConfig | None,
) -> list[Primitive]:
    """Axis-aligned boxes with per-axis half sizes in the radius range."""
    n = config.num_primitives
    centers = rng.uniform(-config.extent, config.extent, size=(n, 3))
    half_sizes = rng.uniform(config.min_radius, config.max_radius, size=(n, 3))
    return [
        AxisAlignedBox(c - h, c + h, epsilon=epsilon)
        for c, h in zip(centers, half_sizes)
    ]


def _generate_sphere_grid(
    config: SyntheticSceneConfig,
    rng: np.random.Generator,
    epsilon: float,
    accel: AccelConfig | None,
) -> list[Primitive]:
    """Regular lattice of equal spheres, truncated to ``num_primitives``.

    Lattice points are emitted in shuffled order so the builder's sort is
    exercised.
    """
    n = config.num_primitives
    side = int(np.ceil(n ** (1.0 / 3.0) - 1e-9))
    spacing = 2.0 * config.extent / side
    radius = min(config.max_radius, 0.45 * spacing)

    axis_coords = -config.extent + spacing * (np.arange(side) + 0.5)
    gx, gy, gz = np.meshgrid(axis_coords, axis_coords, axis_coords, indexing="ij")
    centers = np.column_stack([gx.ravel(), gy.ravel(), gz.ravel()])[:n]
    rng.shuffle(centers)

    return [Sphere(c, radius, epsilon=epsilon) for c in centers]


def _generate_bowl_terrain(
    config: SyntheticSceneConfig,
    rng: np.random.Generator,
    epsilon: float,
    accel: AccelConfig | None,
) -> list[Primitive]:
    """Parabolic crater heightfield as one mesh primitive.

    The grid is sized so the mesh has roughly ``num_primitives`` faces.
    """
    R = config.extent
    D = 0.2 * R
    H = 0.06 * R
    rim_width = 0.1 * R

    cells = max(1, int(round(np.sqrt(config.num_primitives / 2.0))))
    half_extent = 1.2 * R
    x = np.linspace(-half_extent, half_extent, cells + 1)
    y = np.linspace(-half_extent, half_extent, cells + 1)
    xx, yy = np.meshgrid(x, y, indexing="xy")
    r = np.sqrt(xx**2 + yy**2)

    elevation = np.zeros_like(r)
    inside_mask = r <= R
    elevation[inside_mask] = -D * (1.0 - (r[inside_mask] / R) ** 2)
    outside_mask = ~inside_mask
    elevation[outside_mask] = H * np.exp(
        -((r[outside_mask] - R) ** 2) / (2.0 * rim_width**2)
    )

    logger.info(
        "Bowl terrain generated: %d x %d grid, z_min=%.2f, z_max=%.2f",
        cells + 1,
        cells + 1,
        elevation.min(),
        elevation.max(),
    )

    mesh_kwargs = {}
    if accel is not None:
        mesh_kwargs = {
            "max_prims_in_node": accel.max_prims_in_node,
            "split_method": accel.split_method,
            "ordered_traversal": accel.ordered_traversal,
        }
    return [heightfield_to_mesh(x, y, elevation, epsilon=epsilon, **mesh_kwargs)]


def generate_random_rays(
    num_rays: int,
    extent: float,
    seed: int = 0,
) -> list[Ray]:
    """Random query rays aimed into the scene cube.

    Origins lie on a sphere of radius ``2 * extent`` around the scene;
    each ray is aimed at a uniformly random point inside the cube
    ``[-extent, extent]^3``. Directions are unit length.

    Parameters
    ----------
    num_rays : int
        Number of rays.
    extent : float
        Half-size of the target cube.
    seed : int
        Random seed.

    Returns
    -------
    list[Ray]
        Generated rays.
    """
    rng = np.random.default_rng(seed)

    on_sphere = rng.normal(size=(num_rays, 3))
    on_sphere /= np.linalg.norm(on_sphere, axis=1, keepdims=True)
    origins = 2.0 * extent * on_sphere

    targets = rng.uniform(-extent, extent, size=(num_rays, 3))
    directions = targets - origins
    directions /= np.linalg.norm(directions, axis=1, keepdims=True)

    logger.debug("Generated %d random rays (extent=%.1f, seed=%d)", num_rays, extent, seed)
    return [Ray(o, d) for o, d in zip(origins, directions)]
