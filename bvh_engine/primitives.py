"""Renderable primitives consumed by the BVH.

Every primitive exposes its own bounding box and its own exact ray
intersection; the accelerator never looks inside them. The inner-loop
intersection math is compiled with Numba ``@njit(cache=True)``.

References
----------
- Möller, T. & Trumbore, B. (1997). "Fast, Minimum Storage Ray-Triangle
  Intersection." J. Graphics Tools, 2(1), 21-28.
- Haines, E. et al. (2019). "Precision Improvements for Ray/Sphere
  Intersection." Ray Tracing Gems, ch. 7.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import numpy as np
from numba import njit

from bvh_engine.geometry import Bounds3, Intersection, Ray, ray_aabb_interval

logger = logging.getLogger(__name__)

_DEFAULT_EPSILON: float = 1e-10


# ===================================================================
# MÖLLER-TRUMBORE RAY-TRIANGLE INTERSECTION (Numba JIT)
# ===================================================================


@njit(cache=True, fastmath=False)
def moller_trumbore(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    epsilon: float,
) -> float:
    """Möller-Trumbore ray-triangle intersection test.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin. Shape: (3,).
    ray_dir : np.ndarray
        Ray direction. Shape: (3,). Need not be normalized.
    v0, v1, v2 : np.ndarray
        Triangle vertices. Shape: (3,) each.
    epsilon : float
        Tolerance for the determinant, the barycentric bounds and ``t``.

    Returns
    -------
    float
        Parametric distance ``t > epsilon`` on a hit, -1.0 otherwise.

    Notes
    -----
    ``fastmath=False`` keeps the epsilon comparisons in program order so
    rays aimed at a shared edge cannot slip between two triangles.
    """
    e1_x = v1[0] - v0[0]
    e1_y = v1[1] - v0[1]
    e1_z = v1[2] - v0[2]

    e2_x = v2[0] - v0[0]
    e2_y = v2[1] - v0[1]
    e2_z = v2[2] - v0[2]

    # P = dir x e2
    p_x = ray_dir[1] * e2_z - ray_dir[2] * e2_y
    p_y = ray_dir[2] * e2_x - ray_dir[0] * e2_z
    p_z = ray_dir[0] * e2_y - ray_dir[1] * e2_x

    det = e1_x * p_x + e1_y * p_y + e1_z * p_z

    # Parallel to the triangle plane, or degenerate triangle
    if det > -epsilon and det < epsilon:
        return -1.0

    inv_det = 1.0 / det

    s_x = ray_origin[0] - v0[0]
    s_y = ray_origin[1] - v0[1]
    s_z = ray_origin[2] - v0[2]

    u = (s_x * p_x + s_y * p_y + s_z * p_z) * inv_det
    if u < -epsilon or u > 1.0 + epsilon:
        return -1.0

    # Q = S x e1
    q_x = s_y * e1_z - s_z * e1_y
    q_y = s_z * e1_x - s_x * e1_z
    q_z = s_x * e1_y - s_y * e1_x

    v = (ray_dir[0] * q_x + ray_dir[1] * q_y + ray_dir[2] * q_z) * inv_det
    if v < -epsilon or u + v > 1.0 + epsilon:
        return -1.0

    t = (e2_x * q_x + e2_y * q_y + e2_z * q_z) * inv_det
    if t > epsilon:
        return t

    return -1.0


# ===================================================================
# RAY-SPHERE INTERSECTION (Numba JIT)
# ===================================================================


@njit(cache=True, fastmath=False)
def ray_sphere_intersect(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    center: np.ndarray,
    radius: float,
    epsilon: float,
) -> float:
    """Nearest ray-sphere intersection using the robust quadratic.

    Solves ``a t^2 + 2 h t + c = 0`` with ``q = -(h + sign(h) sqrt(D))``,
    ``t0 = q / a``, ``t1 = c / q`` to avoid catastrophic cancellation.

    Returns
    -------
    float
        Smallest root ``t > epsilon`` (the exit point when the origin is
        inside the sphere), -1.0 on a miss.
    """
    oc_x = ray_origin[0] - center[0]
    oc_y = ray_origin[1] - center[1]
    oc_z = ray_origin[2] - center[2]

    a = ray_dir[0] * ray_dir[0] + ray_dir[1] * ray_dir[1] + ray_dir[2] * ray_dir[2]
    if a == 0.0:
        return -1.0

    h = ray_dir[0] * oc_x + ray_dir[1] * oc_y + ray_dir[2] * oc_z
    c = oc_x * oc_x + oc_y * oc_y + oc_z * oc_z - radius * radius

    discriminant = h * h - a * c
    if discriminant < 0.0:
        return -1.0

    sqrt_d = np.sqrt(discriminant)
    sign_h = -1.0 if h < 0.0 else 1.0
    q = -(h + sign_h * sqrt_d)

    if q == 0.0:
        # Origin on the surface with a tangent direction
        t0 = -h / a
        t1 = t0
    else:
        t0 = q / a
        t1 = c / q

    if t0 > t1:
        t0, t1 = t1, t0

    if t0 > epsilon:
        return t0
    if t1 > epsilon:
        return t1
    return -1.0


# ===================================================================
# PRIMITIVE INTERFACE
# ===================================================================


class Primitive(ABC):
    """A geometric object that can be placed in a BVH leaf."""

    @abstractmethod
    def get_bounds(self) -> Bounds3:
        """Axis-aligned box enclosing the whole primitive."""

    @abstractmethod
    def get_intersection(self, ray: Ray) -> Intersection:
        """Exact nearest intersection of ``ray`` with this primitive."""


@dataclass(eq=False)
class Sphere(Primitive):
    """Solid sphere.

    Attributes
    ----------
    center : np.ndarray
        Sphere center. Shape: (3,).
    radius : float
        Sphere radius, must be positive.
    epsilon : float
        Hits with ``t <= epsilon`` are ignored.
    """

    center: np.ndarray
    radius: float
    epsilon: float = _DEFAULT_EPSILON
    _bounds: Bounds3 = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.center = np.asarray(self.center, dtype=np.float64).reshape(3)
        self.radius = float(self.radius)
        if self.radius <= 0.0:
            raise ValueError(f"Sphere radius must be > 0, got {self.radius}")
        self._bounds = Bounds3(self.center - self.radius, self.center + self.radius)

    def get_bounds(self) -> Bounds3:
        return self._bounds

    def get_intersection(self, ray: Ray) -> Intersection:
        t = ray_sphere_intersect(
            ray.origin, ray.direction, self.center, self.radius, self.epsilon
        )
        if t < 0.0:
            return Intersection()
        coords = ray.at(t)
        return Intersection(
            happened=True,
            distance=float(t),
            coords=coords,
            normal=(coords - self.center) / self.radius,
            primitive=self,
        )


@dataclass(eq=False)
class Triangle(Primitive):
    """Single triangle with a fixed geometric normal.

    Attributes
    ----------
    v0, v1, v2 : np.ndarray
        Vertex positions. Shape: (3,) each.
    epsilon : float
        Möller-Trumbore tolerance.
    """

    v0: np.ndarray
    v1: np.ndarray
    v2: np.ndarray
    epsilon: float = _DEFAULT_EPSILON
    normal: np.ndarray = field(init=False, repr=False)
    _bounds: Bounds3 = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.v0 = np.asarray(self.v0, dtype=np.float64).reshape(3)
        self.v1 = np.asarray(self.v1, dtype=np.float64).reshape(3)
        self.v2 = np.asarray(self.v2, dtype=np.float64).reshape(3)

        n = np.cross(self.v1 - self.v0, self.v2 - self.v0)
        norm = np.linalg.norm(n)
        self.normal = n / norm if norm > 1e-30 else np.zeros(3)
        self._bounds = Bounds3.from_points(self.v0, self.v1, self.v2)

    def area(self) -> float:
        return 0.5 * float(np.linalg.norm(np.cross(self.v1 - self.v0, self.v2 - self.v0)))

    def get_bounds(self) -> Bounds3:
        return self._bounds

    def get_intersection(self, ray: Ray) -> Intersection:
        t = moller_trumbore(
            ray.origin, ray.direction, self.v0, self.v1, self.v2, self.epsilon
        )
        if t < 0.0:
            return Intersection()
        return Intersection(
            happened=True,
            distance=float(t),
            coords=ray.at(t),
            normal=self.normal,
            primitive=self,
        )


@dataclass(eq=False)
class AxisAlignedBox(Primitive):
    """Solid axis-aligned box.

    The hit distance is where the ray enters the box, or where it leaves
    it when the origin is inside.

    Attributes
    ----------
    p_min, p_max : np.ndarray
        Box corners. Shape: (3,) each, ``p_min <= p_max`` per axis.
    epsilon : float
        Hits with ``t <= epsilon`` are ignored.
    """

    p_min: np.ndarray
    p_max: np.ndarray
    epsilon: float = _DEFAULT_EPSILON
    _bounds: Bounds3 = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.p_min = np.asarray(self.p_min, dtype=np.float64).reshape(3)
        self.p_max = np.asarray(self.p_max, dtype=np.float64).reshape(3)
        if np.any(self.p_min > self.p_max):
            raise ValueError(
                f"Box corners inverted: p_min={self.p_min}, p_max={self.p_max}"
            )
        self._bounds = Bounds3(self.p_min, self.p_max)

    @classmethod
    def cube(cls, center: np.ndarray, size: float = 1.0, **kwargs) -> AxisAlignedBox:
        """Cube of edge length ``size`` centered at ``center``."""
        c = np.asarray(center, dtype=np.float64).reshape(3)
        half = 0.5 * size
        return cls(c - half, c + half, **kwargs)

    def get_bounds(self) -> Bounds3:
        return self._bounds

    def get_intersection(self, ray: Ray) -> Intersection:
        t_enter, t_exit = ray_aabb_interval(
            ray.origin,
            ray.inverse_direction(),
            ray.dir_is_neg(),
            self.p_min,
            self.p_max,
        )
        if t_enter > t_exit or t_exit <= self.epsilon:
            return Intersection()

        t = t_enter if t_enter > self.epsilon else t_exit
        coords = ray.at(t)
        return Intersection(
            happened=True,
            distance=float(t),
            coords=coords,
            normal=self._face_normal(coords),
            primitive=self,
        )

    def _face_normal(self, point: np.ndarray) -> np.ndarray:
        """Outward normal of the face closest to ``point``."""
        # Rows: distance to the min face and to the max face, per axis
        dist = np.abs(np.stack([point - self.p_min, self.p_max - point]))
        side, axis = np.unravel_index(np.argmin(dist), dist.shape)
        normal = np.zeros(3)
        normal[axis] = -1.0 if side == 0 else 1.0
        return normal
