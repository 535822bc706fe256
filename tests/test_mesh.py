"""Tests for the triangle mesh primitive and heightfield conversion."""

from __future__ import annotations

import numpy as np
import pytest

from bvh_engine.bvh import BVHAccel, SplitMethod, brute_force_intersect
from bvh_engine.geometry import Ray
from bvh_engine.mesh import TriangleMesh, heightfield_to_mesh
from bvh_engine.primitives import Sphere


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def unit_quad() -> TriangleMesh:
    """Two triangles covering [0, 1]^2 at z=0."""
    vertices = np.array(
        [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]]
    )
    triangles = np.array([[0, 1, 2], [0, 2, 3]])
    return TriangleMesh(vertices, triangles)


@pytest.fixture
def bumpy_heightfield() -> TriangleMesh:
    """Smooth 21 x 21 bump, 800 faces."""
    x = np.linspace(-5.0, 5.0, 21)
    y = np.linspace(-5.0, 5.0, 21)
    xx, yy = np.meshgrid(x, y, indexing="xy")
    elevation = 2.0 * np.exp(-(xx**2 + yy**2) / 8.0)
    return heightfield_to_mesh(x, y, elevation)


# ===================================================================
# TRIANGLE MESH TESTS
# ===================================================================


class TestTriangleMesh:
    """Test suite for TriangleMesh."""

    def test_face_properties(self, unit_quad: TriangleMesh) -> None:
        assert unit_quad.num_triangles == 2
        assert unit_quad.surface_area == pytest.approx(1.0)
        np.testing.assert_allclose(unit_quad.face_normals, [[0, 0, 1], [0, 0, 1]])
        assert len(unit_quad.faces) == 2

    def test_bounds(self, unit_quad: TriangleMesh) -> None:
        np.testing.assert_allclose(unit_quad.get_bounds().p_min, [0.0, 0.0, 0.0])
        np.testing.assert_allclose(unit_quad.get_bounds().p_max, [1.0, 1.0, 0.0])

    def test_hit_and_miss(self, unit_quad: TriangleMesh) -> None:
        hit = unit_quad.get_intersection(
            Ray(np.array([0.3, 0.6, 2.0]), np.array([0.0, 0.0, -1.0]))
        )
        miss = unit_quad.get_intersection(
            Ray(np.array([1.5, 0.5, 2.0]), np.array([0.0, 0.0, -1.0]))
        )

        assert hit.happened
        assert hit.distance == pytest.approx(2.0)
        assert hit.primitive in unit_quad.faces
        assert not miss.happened

    def test_internal_bvh_matches_face_scan(
        self, bumpy_heightfield: TriangleMesh, rng: np.random.Generator
    ) -> None:
        for _ in range(100):
            origin = np.array([*rng.uniform(-6.0, 6.0, 2), 10.0])
            target = np.array([*rng.uniform(-5.0, 5.0, 2), 0.0])
            ray = Ray(origin, target - origin)

            got = bumpy_heightfield.get_intersection(ray)
            want = brute_force_intersect(bumpy_heightfield.faces, ray)

            assert got.happened == want.happened
            if want.happened:
                assert got.distance == pytest.approx(want.distance, rel=1e-12)

    def test_mesh_inside_scene_bvh(self, unit_quad: TriangleMesh) -> None:
        """A mesh is one primitive of a scene-level BVH."""
        blocker = Sphere(np.array([0.5, 0.5, 1.0]), 0.25)
        accel = BVHAccel([unit_quad, blocker], split_method=SplitMethod.SAH)

        through_blocker = accel.intersect(
            Ray(np.array([0.5, 0.5, 3.0]), np.array([0.0, 0.0, -1.0]))
        )
        beside_blocker = accel.intersect(
            Ray(np.array([0.2, 0.1, 3.0]), np.array([0.0, 0.0, -1.0]))
        )

        assert through_blocker.primitive is blocker
        assert through_blocker.distance == pytest.approx(1.75)
        assert beside_blocker.primitive in unit_quad.faces
        assert beside_blocker.distance == pytest.approx(3.0)

    def test_accelerator_settings_forwarded(self, bumpy_heightfield: TriangleMesh) -> None:
        mesh = TriangleMesh(
            bumpy_heightfield.vertices,
            bumpy_heightfield.triangles,
            split_method="naive",
            ordered_traversal=True,
        )
        ray = Ray(np.array([0.3, 0.7, 10.0]), np.array([0.0, 0.0, -1.0]))

        assert mesh.bvh.split_method is SplitMethod.NAIVE_MEDIAN
        assert mesh.bvh.ordered_traversal is True
        assert mesh.get_intersection(ray).distance == pytest.approx(
            bumpy_heightfield.get_intersection(ray).distance, rel=1e-12
        )

    def test_empty_mesh_rejected(self) -> None:
        with pytest.raises(ValueError, match="at least one triangle"):
            TriangleMesh(np.zeros((3, 3)), np.zeros((0, 3), dtype=np.int64))

    def test_out_of_range_index_rejected(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            TriangleMesh(np.zeros((3, 3)), np.array([[0, 1, 3]]))


# ===================================================================
# HEIGHTFIELD CONVERSION TESTS
# ===================================================================


class TestHeightfieldToMesh:
    """Test suite for heightfield_to_mesh."""

    def test_face_count(self, bumpy_heightfield: TriangleMesh) -> None:
        assert bumpy_heightfield.num_triangles == 2 * 20 * 20
        assert bumpy_heightfield.vertices.shape == (21 * 21, 3)

    def test_flat_grid_winding(self) -> None:
        x = np.linspace(0.0, 3.0, 4)
        y = np.linspace(0.0, 2.0, 3)
        mesh = heightfield_to_mesh(x, y, np.zeros((3, 4)))

        assert mesh.num_triangles == 2 * 2 * 3
        assert mesh.surface_area == pytest.approx(6.0)
        # Ascending y rows give clockwise winding seen from above
        np.testing.assert_allclose(mesh.face_normals, np.tile([0.0, 0.0, -1.0], (12, 1)))

    def test_too_small_grid_rejected(self) -> None:
        with pytest.raises(ValueError, match="at least 2 x 2"):
            heightfield_to_mesh(np.array([0.0]), np.array([0.0, 1.0]), np.zeros((2, 1)))

    def test_shape_mismatch_rejected(self) -> None:
        with pytest.raises(ValueError, match="do not match"):
            heightfield_to_mesh(np.arange(3.0), np.arange(3.0), np.zeros((3, 4)))
