"""Tests for synthetic scene and query ray generation."""

from __future__ import annotations

from dataclasses import replace

import numpy as np
import pytest

from bvh_engine.bvh import SplitMethod
from bvh_engine.config import SyntheticSceneConfig, parse_config
from bvh_engine.mesh import TriangleMesh
from bvh_engine.primitives import AxisAlignedBox, Sphere
from scene_synthesis.synthetic_scene import generate_random_rays, generate_synthetic_scene


@pytest.fixture
def scene_config() -> SyntheticSceneConfig:
    return SyntheticSceneConfig(
        scene_type="random_spheres",
        num_primitives=50,
        extent=10.0,
        min_radius=0.2,
        max_radius=1.0,
        seed=11,
    )


class TestSyntheticScene:
    """Test suite for generate_synthetic_scene."""

    def test_random_spheres(self, scene_config: SyntheticSceneConfig) -> None:
        prims = generate_synthetic_scene(scene_config)

        assert len(prims) == 50
        assert all(isinstance(p, Sphere) for p in prims)
        radii = np.array([p.radius for p in prims])
        assert radii.min() >= 0.2 and radii.max() <= 1.0
        centers = np.array([p.center for p in prims])
        assert np.all(np.abs(centers) <= 10.0)

    def test_reproducible_with_seed(self, scene_config: SyntheticSceneConfig) -> None:
        a = generate_synthetic_scene(scene_config)
        b = generate_synthetic_scene(scene_config)
        c = generate_synthetic_scene(replace(scene_config, seed=12))

        np.testing.assert_array_equal(
            [p.center for p in a], [p.center for p in b]
        )
        assert not np.array_equal([p.center for p in a], [p.center for p in c])

    def test_random_boxes(self, scene_config: SyntheticSceneConfig) -> None:
        prims = generate_synthetic_scene(replace(scene_config, scene_type="random_boxes"))

        assert len(prims) == 50
        assert all(isinstance(p, AxisAlignedBox) for p in prims)
        half = np.array([(p.p_max - p.p_min) / 2.0 for p in prims])
        assert half.min() >= 0.2 - 1e-12 and half.max() <= 1.0 + 1e-12

    def test_sphere_grid_truncates_lattice(self, scene_config: SyntheticSceneConfig) -> None:
        prims = generate_synthetic_scene(replace(scene_config, scene_type="sphere_grid"))

        # 50 primitives need a 4 x 4 x 4 lattice, truncated
        assert len(prims) == 50
        radii = {p.radius for p in prims}
        assert len(radii) == 1
        centers = np.array([p.center for p in prims])
        assert len(np.unique(centers, axis=0)) == 50

    def test_sphere_grid_spheres_do_not_overlap(self, scene_config: SyntheticSceneConfig) -> None:
        prims = generate_synthetic_scene(
            replace(scene_config, scene_type="sphere_grid", num_primitives=27, max_radius=100.0)
        )
        centers = np.array([p.center for p in prims])
        radius = prims[0].radius
        d = np.linalg.norm(centers[:, None, :] - centers[None, :, :], axis=2)
        np.fill_diagonal(d, np.inf)

        assert d.min() > 2.0 * radius

    def test_bowl_terrain_is_one_mesh(self, scene_config: SyntheticSceneConfig) -> None:
        prims = generate_synthetic_scene(
            replace(scene_config, scene_type="bowl_terrain", num_primitives=800)
        )

        assert len(prims) == 1
        mesh = prims[0]
        assert isinstance(mesh, TriangleMesh)
        assert mesh.num_triangles == 800
        # Crater floor sits at -0.2 R, below the flat surroundings
        assert mesh.vertices[:, 2].min() == pytest.approx(-2.0, abs=0.2)
        assert mesh.vertices[:, 2].max() <= 0.06 * 10.0 + 1e-9

    def test_bowl_terrain_mesh_follows_accel_config(self, raw_config: dict) -> None:
        raw_config["scene"]["type"] = "bowl_terrain"
        raw_config["scene"]["num_primitives"] = 200
        raw_config["bvh"]["split_method"] = "naive"
        raw_config["bvh"]["ordered_traversal"] = True
        config = parse_config(raw_config)

        (mesh,) = generate_synthetic_scene(
            config.scene, epsilon=config.intersection.epsilon, accel=config.accel
        )

        assert mesh.bvh.split_method is SplitMethod.NAIVE_MEDIAN
        assert mesh.bvh.ordered_traversal is True
        assert mesh.bvh.stats.split_method is SplitMethod.NAIVE_MEDIAN

    def test_bowl_terrain_mesh_defaults_without_accel_config(
        self, scene_config: SyntheticSceneConfig
    ) -> None:
        (mesh,) = generate_synthetic_scene(
            replace(scene_config, scene_type="bowl_terrain", num_primitives=200)
        )

        assert mesh.bvh.split_method is SplitMethod.SAH
        assert mesh.bvh.ordered_traversal is False

    def test_zero_primitives(self, scene_config: SyntheticSceneConfig) -> None:
        for scene_type in ("random_spheres", "sphere_grid", "bowl_terrain"):
            cfg = replace(scene_config, scene_type=scene_type, num_primitives=0)
            assert generate_synthetic_scene(cfg) == []

    def test_unknown_scene_type(self, scene_config: SyntheticSceneConfig) -> None:
        with pytest.raises(ValueError, match="Unknown scene type"):
            generate_synthetic_scene(replace(scene_config, scene_type="teapot"))


class TestRandomRays:
    """Test suite for generate_random_rays."""

    def test_count_and_normalization(self) -> None:
        rays = generate_random_rays(64, extent=5.0, seed=3)

        assert len(rays) == 64
        norms = np.linalg.norm([r.direction for r in rays], axis=1)
        np.testing.assert_allclose(norms, 1.0)

    def test_origins_outside_scene_aimed_inside(self) -> None:
        extent = 5.0
        rays = generate_random_rays(64, extent=extent, seed=3)

        for ray in rays:
            assert np.linalg.norm(ray.origin) == pytest.approx(2.0 * extent)
            # Aimed inward: the direction points back toward the scene
            assert np.dot(ray.direction, -ray.origin) > 0.0

    def test_reproducible(self) -> None:
        a = generate_random_rays(8, extent=1.0, seed=9)
        b = generate_random_rays(8, extent=1.0, seed=9)
        np.testing.assert_array_equal([r.direction for r in a], [r.direction for r in b])
