"""Geometric value types shared by the BVH builder and traverser.

Provides the ``Ray``, the axis-aligned ``Bounds3`` box and the
``Intersection`` record, together with the Numba-compiled slab kernels
that drive the ray-box pruning test during traversal.

Design Notes
------------
- **Empty box**: ``Bounds3()`` is the empty box (``p_min = +inf``,
  ``p_max = -inf``). It is the identity of ``union`` and is missed by
  every ray.
- **Miss sentinel**: ``Intersection()`` (``happened=False``,
  ``distance=inf``) is the identity of the ``nearest`` merge.
- **Zero direction components**: ``Ray.inverse_direction`` maps them to
  the large finite value ``_INF`` instead of IEEE infinity so the slab
  arithmetic never forms ``0 * inf = NaN``. A ray lying exactly on a slab
  plane is therefore accepted (conservative), never rejected.

References
----------
- Williams, A. et al. (2005). "An Efficient and Robust Ray-Box
  Intersection Algorithm." J. Graphics Tools, 10(1), 49-54.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numba import njit

logger = logging.getLogger(__name__)

_INF: float = 1e30

# ===================================================================
# SLAB TEST (Numba JIT)
# ===================================================================


@njit(cache=True, fastmath=False)
def ray_aabb_interval(
    ray_origin: np.ndarray,
    inv_dir: np.ndarray,
    dir_is_neg: np.ndarray,
    bbox_min: np.ndarray,
    bbox_max: np.ndarray,
) -> tuple[float, float]:
    """Parametric interval over which a ray lies inside an AABB.

    For every axis the sign flag selects which face is "near" and which
    is "far", so no per-axis swap is needed.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin [x, y, z]. Shape: (3,).
    inv_dir : np.ndarray
        Precomputed 1.0 / ray_dir per axis. Shape: (3,).
    dir_is_neg : np.ndarray
        Per-axis flag, True where the direction component is negative.
        Shape: (3,), dtype: bool.
    bbox_min, bbox_max : np.ndarray
        AABB corners. Shape: (3,) each.

    Returns
    -------
    t_enter, t_exit : float
        The ray is inside the box for ``t_enter <= t <= t_exit``. The
        interval is empty when ``t_enter > t_exit``.
    """
    t_enter = -np.inf
    t_exit = np.inf

    for axis in range(3):
        if dir_is_neg[axis]:
            near = bbox_max[axis]
            far = bbox_min[axis]
        else:
            near = bbox_min[axis]
            far = bbox_max[axis]

        t_near = (near - ray_origin[axis]) * inv_dir[axis]
        t_far = (far - ray_origin[axis]) * inv_dir[axis]

        if t_near > t_enter:
            t_enter = t_near
        if t_far < t_exit:
            t_exit = t_far

    return t_enter, t_exit


@njit(cache=True, fastmath=False)
def ray_aabb_intersect(
    ray_origin: np.ndarray,
    inv_dir: np.ndarray,
    dir_is_neg: np.ndarray,
    bbox_min: np.ndarray,
    bbox_max: np.ndarray,
) -> bool:
    """Test if a ray intersects an axis-aligned bounding box.

    A hit requires a non-empty slab interval that is not entirely behind
    the ray origin.

    Returns
    -------
    bool
        True if ``t_enter <= t_exit`` and ``t_exit >= 0``.
    """
    t_enter, t_exit = ray_aabb_interval(
        ray_origin, inv_dir, dir_is_neg, bbox_min, bbox_max
    )
    return t_enter <= t_exit and t_exit >= 0.0


# ===================================================================
# RAY
# ===================================================================


@dataclass(eq=False)
class Ray:
    """A ray ``R(t) = origin + t * direction``.

    Attributes
    ----------
    origin : np.ndarray
        Ray origin. Shape: (3,), dtype: float64.
    direction : np.ndarray
        Ray direction. Shape: (3,), dtype: float64. Need not be
        normalized; hit distances are expressed in units of ``t``.
    """

    origin: np.ndarray
    direction: np.ndarray

    def __post_init__(self) -> None:
        self.origin = np.asarray(self.origin, dtype=np.float64).reshape(3)
        self.direction = np.asarray(self.direction, dtype=np.float64).reshape(3)

    def at(self, t: float) -> np.ndarray:
        """Point along the ray at parameter ``t``."""
        return self.origin + t * self.direction

    def inverse_direction(self) -> np.ndarray:
        """Per-axis reciprocal of the direction, zeros mapped to ``_INF``."""
        with np.errstate(divide="ignore"):
            return np.where(self.direction == 0.0, _INF, 1.0 / self.direction)

    def dir_is_neg(self) -> np.ndarray:
        """Per-axis sign flags (True where the direction is negative)."""
        return self.direction < 0.0


# ===================================================================
# BOUNDS3
# ===================================================================


@dataclass(frozen=True, eq=False)
class Bounds3:
    """Axis-aligned bounding box.

    Attributes
    ----------
    p_min : np.ndarray
        Minimum corner. Shape: (3,), dtype: float64.
    p_max : np.ndarray
        Maximum corner. Shape: (3,), dtype: float64.
    """

    p_min: np.ndarray = field(default_factory=lambda: np.full(3, np.inf))
    p_max: np.ndarray = field(default_factory=lambda: np.full(3, -np.inf))

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "p_min", np.asarray(self.p_min, dtype=np.float64).reshape(3)
        )
        object.__setattr__(
            self, "p_max", np.asarray(self.p_max, dtype=np.float64).reshape(3)
        )

    @classmethod
    def from_points(cls, *points: Any) -> Bounds3:
        """Smallest box enclosing the given points."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return cls(pts.min(axis=0), pts.max(axis=0))

    def __repr__(self) -> str:
        return f"Bounds3(p_min={self.p_min.tolist()}, p_max={self.p_max.tolist()})"

    def is_empty(self) -> bool:
        return bool(np.any(self.p_min > self.p_max))

    def union(self, other: Bounds3 | np.ndarray) -> Bounds3:
        """Smallest box enclosing this box and a box or a point."""
        if isinstance(other, Bounds3):
            return Bounds3(
                np.minimum(self.p_min, other.p_min),
                np.maximum(self.p_max, other.p_max),
            )
        p = np.asarray(other, dtype=np.float64).reshape(3)
        return Bounds3(np.minimum(self.p_min, p), np.maximum(self.p_max, p))

    def diagonal(self) -> np.ndarray:
        return self.p_max - self.p_min

    def centroid(self) -> np.ndarray:
        return 0.5 * self.p_min + 0.5 * self.p_max

    def surface_area(self) -> float:
        """Total area of the six faces (0.0 for the empty box)."""
        if self.is_empty():
            return 0.0
        d = self.diagonal()
        return float(2.0 * (d[0] * d[1] + d[1] * d[2] + d[2] * d[0]))

    def max_extent(self) -> int:
        """Axis (0, 1 or 2) along which the box is widest."""
        return int(np.argmax(self.diagonal()))

    def contains(self, other: Bounds3 | np.ndarray) -> bool:
        """Closed-box containment of another box or a point."""
        if isinstance(other, Bounds3):
            if other.is_empty():
                return True
            return bool(
                np.all(self.p_min <= other.p_min) and np.all(other.p_max <= self.p_max)
            )
        p = np.asarray(other, dtype=np.float64).reshape(3)
        return bool(np.all(self.p_min <= p) and np.all(p <= self.p_max))

    def intersect_p(
        self,
        ray: Ray,
        inv_dir: np.ndarray,
        dir_is_neg: np.ndarray,
    ) -> bool:
        """Fast slab test with precomputed inverse direction and signs."""
        return bool(
            ray_aabb_intersect(ray.origin, inv_dir, dir_is_neg, self.p_min, self.p_max)
        )

    def entry_distance(
        self,
        ray: Ray,
        inv_dir: np.ndarray,
        dir_is_neg: np.ndarray,
    ) -> float:
        """Distance at which the ray enters the box, ``inf`` on a miss.

        Origins inside the box report 0.0.
        """
        t_enter, t_exit = ray_aabb_interval(
            ray.origin, inv_dir, dir_is_neg, self.p_min, self.p_max
        )
        if t_enter > t_exit or t_exit < 0.0:
            return np.inf
        return max(float(t_enter), 0.0)


def union(a: Bounds3, b: Bounds3 | np.ndarray) -> Bounds3:
    """Module-level alias of ``Bounds3.union``."""
    return a.union(b)


# ===================================================================
# INTERSECTION RECORD
# ===================================================================


@dataclass
class Intersection:
    """Result of a ray query.

    The default instance is the miss sentinel.

    Attributes
    ----------
    happened : bool
        Whether any primitive was hit.
    distance : float
        Ray parameter ``t`` of the hit, ``inf`` on a miss.
    coords : np.ndarray or None
        Hit point. Shape: (3,).
    normal : np.ndarray or None
        Unit surface normal at the hit point. Shape: (3,).
    primitive : Any
        Borrowed reference to the primitive that was hit.
    """

    happened: bool = False
    distance: float = np.inf
    coords: np.ndarray | None = None
    normal: np.ndarray | None = None
    primitive: Any = None


def nearest(a: Intersection, b: Intersection) -> Intersection:
    """Merge two query results, keeping the nearer hit.

    The miss sentinel is the identity element. When both records report
    the same distance the second one is kept.
    """
    if a.happened and b.happened:
        return a if a.distance < b.distance else b
    if a.happened:
        return a
    if b.happened:
        return b
    return Intersection()
