"""Triangle mesh primitive with its own internal BVH.

A ``TriangleMesh`` is a single ``Primitive`` from the point of view of a
scene-level ``BVHAccel``; internally it owns one ``Triangle`` per face and
a private accelerator over them, so a scene BVH prunes whole meshes and
the mesh BVH prunes individual faces.

Notes
-----
A heightfield grid of M rows x N columns produces 2*(M-1)*(N-1) triangles.
Each grid cell is split into two triangles along the diagonal:

    (i,j)-------(i,j+1)
      |  \\  T1  |
      |   \\     |
      | T0  \\   |
      |       \\  |
    (i+1,j)---(i+1,j+1)

T0: (i,j), (i+1,j), (i+1,j+1)   lower-left triangle
T1: (i,j), (i+1,j+1), (i,j+1)   upper-right triangle
"""

from __future__ import annotations

import logging

import numpy as np

from bvh_engine.bvh import BVHAccel, SplitMethod
from bvh_engine.geometry import Bounds3, Intersection, Ray
from bvh_engine.primitives import Primitive, Triangle, _DEFAULT_EPSILON

logger = logging.getLogger(__name__)


class TriangleMesh(Primitive):
    """Indexed triangle mesh exposed as one primitive.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions. Shape: (num_vertices, 3).
    triangles : np.ndarray
        Vertex indices per face. Shape: (num_triangles, 3).
    max_prims_in_node : int
        Forwarded to the internal ``BVHAccel``.
    split_method : SplitMethod
        Split heuristic for the internal ``BVHAccel``.
    ordered_traversal : bool
        Front-to-back traversal for the internal ``BVHAccel``.
    epsilon : float
        Möller-Trumbore tolerance for every face.

    Raises
    ------
    ValueError
        If the mesh has no faces or the index array is malformed.
    """

    def __init__(
        self,
        vertices: np.ndarray,
        triangles: np.ndarray,
        max_prims_in_node: int = 1,
        split_method: SplitMethod | str = SplitMethod.SAH,
        ordered_traversal: bool = False,
        epsilon: float = _DEFAULT_EPSILON,
    ) -> None:
        self.vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        self.triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)

        if self.triangles.shape[0] == 0:
            raise ValueError("TriangleMesh requires at least one triangle")
        if self.triangles.min() < 0 or self.triangles.max() >= self.vertices.shape[0]:
            raise ValueError(
                f"Triangle indices out of range [0, {self.vertices.shape[0]})"
            )

        self.face_normals, self.face_areas = _compute_face_properties(
            self.vertices, self.triangles
        )

        degenerate_count = int(np.sum(self.face_areas < 1e-20))
        if degenerate_count > 0:
            logger.warning(
                "  %d degenerate triangles detected (area < 1e-20)", degenerate_count
            )

        corners = self.vertices[self.triangles]  # (N, 3, 3)
        self.faces: list[Triangle] = [
            Triangle(c[0], c[1], c[2], epsilon=epsilon) for c in corners
        ]

        self._bounds = Bounds3(
            self.vertices[self.triangles.ravel()].min(axis=0),
            self.vertices[self.triangles.ravel()].max(axis=0),
        )
        self.bvh = BVHAccel(
            self.faces,
            max_prims_in_node=max_prims_in_node,
            split_method=split_method,
            ordered_traversal=ordered_traversal,
        )

        logger.debug(
            "Mesh created: %d vertices, %d triangles, %.3f surface area",
            self.vertices.shape[0],
            self.triangles.shape[0],
            self.surface_area,
        )

    @property
    def num_triangles(self) -> int:
        return int(self.triangles.shape[0])

    @property
    def surface_area(self) -> float:
        return float(self.face_areas.sum())

    def get_bounds(self) -> Bounds3:
        return self._bounds

    def get_intersection(self, ray: Ray) -> Intersection:
        return self.bvh.intersect(ray)


def heightfield_to_mesh(
    x_coords: np.ndarray,
    y_coords: np.ndarray,
    elevation: np.ndarray,
    **kwargs,
) -> TriangleMesh:
    """Convert an elevation grid to a triangle mesh.

    Parameters
    ----------
    x_coords : np.ndarray
        Column coordinates. Shape: (nx,).
    y_coords : np.ndarray
        Row coordinates. Shape: (ny,).
    elevation : np.ndarray
        Height per grid point. Shape: (ny, nx).
    **kwargs
        Forwarded to ``TriangleMesh``.

    Returns
    -------
    TriangleMesh
        Mesh with ``2 * (ny - 1) * (nx - 1)`` faces.

    Raises
    ------
    ValueError
        If the grid is smaller than 2 x 2 or shapes disagree.
    """
    elev = np.asarray(elevation, dtype=np.float64)
    ny, nx = elev.shape
    if nx < 2 or ny < 2:
        raise ValueError(f"Heightfield must be at least 2 x 2, got {nx} x {ny}")
    if len(x_coords) != nx or len(y_coords) != ny:
        raise ValueError(
            f"Coordinate lengths ({len(x_coords)}, {len(y_coords)}) "
            f"do not match elevation shape ({ny}, {nx})"
        )

    logger.info("Converting heightfield (%d x %d) to triangle mesh...", nx, ny)

    xx, yy = np.meshgrid(x_coords, y_coords, indexing="xy")
    vertices = np.column_stack([xx.ravel(), yy.ravel(), elev.ravel()]).astype(
        np.float64
    )

    row_idx, col_idx = np.meshgrid(
        np.arange(ny - 1, dtype=np.int64),
        np.arange(nx - 1, dtype=np.int64),
        indexing="ij",
    )
    row_flat = row_idx.ravel()
    col_flat = col_idx.ravel()

    v00 = row_flat * nx + col_flat
    v10 = (row_flat + 1) * nx + col_flat
    v11 = (row_flat + 1) * nx + (col_flat + 1)
    v01 = row_flat * nx + (col_flat + 1)

    # Interleave lower-left and upper-right triangles per cell
    triangles = np.empty((2 * row_flat.size, 3), dtype=np.int64)
    triangles[0::2] = np.column_stack([v00, v10, v11])
    triangles[1::2] = np.column_stack([v00, v11, v01])

    return TriangleMesh(vertices, triangles, **kwargs)


def _compute_face_properties(
    vertices: np.ndarray,
    triangles: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Compute face normals and areas for all triangles.

    Returns
    -------
    normals : np.ndarray
        Unit normals following the vertex winding, shape (num_triangles, 3).
        Degenerate faces get (0, 0, 1).
    areas : np.ndarray
        Triangle areas, shape (num_triangles,).
    """
    v0 = vertices[triangles[:, 0]]
    v1 = vertices[triangles[:, 1]]
    v2 = vertices[triangles[:, 2]]

    # Magnitude of the cross product is twice the area
    cross = np.cross(v1 - v0, v2 - v0)
    norms = np.linalg.norm(cross, axis=1, keepdims=True)

    safe_norms = np.where(norms > 1e-30, norms, 1.0)
    normals = cross / safe_norms
    normals[norms.ravel() < 1e-30] = np.array([0.0, 0.0, 1.0])

    areas = 0.5 * norms.ravel()

    return normals, areas
