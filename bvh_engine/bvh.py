"""Bounding Volume Hierarchy: recursive construction and nearest-hit traversal.

Builds a binary tree of axis-aligned boxes over a list of primitives and
answers "which primitive does this ray hit first?" by descending only into
boxes the ray touches.

Design Notes
------------
- **Tagged nodes**: a node is either a ``BVHLeaf`` (exactly one borrowed
  primitive) or a ``BVHInternal`` (exactly two owned children). There is
  no node with a single child.
- **Immutable tree**: nodes are frozen dataclasses; once ``BVHAccel`` is
  constructed nothing is mutated, so any number of threads may query the
  same accelerator without locking.
- **Construction** (Python, one-time cost): per node the split axis is the
  widest axis of the centroid bounds; primitives are sorted by centroid
  along it and cut either at the median or at the exact SAH minimum,
  evaluated for every candidate with prefix/suffix box sweeps. Nodes whose
  centroids all coincide fall back to the median cut.
- **Leaf size**: ``max_prims_in_node`` is accepted and clamped to 255 but
  recursion always continues down to single-primitive leaves.
- **Traversal**: recursive; both children of a hit box are visited and the
  nearer of their results is kept. An opt-in ordered mode visits the
  nearer child box first and skips the other one when it starts beyond the
  current best hit.

References
----------
- MacDonald, J.D. & Booth, K.S. (1990). "Heuristics for ray tracing using
  space subdivision." The Visual Computer, 6(3), 153-166.
- Pharr, M., Jakob, W. & Humphreys, G. (2016). "Physically Based
  Rendering", 3rd ed., ch. 4.3.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Union

import numpy as np

from bvh_engine.geometry import Bounds3, Intersection, Ray, nearest
from bvh_engine.primitives import Primitive

if TYPE_CHECKING:
    from bvh_engine.config import AccelConfig

logger = logging.getLogger(__name__)

MAX_PRIMS_IN_NODE_CEILING: int = 255

# Relative slack under which two SAH costs count as tied
_SAH_TIE_RTOL: float = 1e-12


class SplitMethod(Enum):
    """Partition heuristic used at every internal node."""

    NAIVE_MEDIAN = "naive_median"
    SAH = "sah"

    @classmethod
    def parse(cls, value: str | SplitMethod) -> SplitMethod:
        """Resolve a configuration string to a ``SplitMethod``.

        Raises
        ------
        ValueError
            If ``value`` names no known split method.
        """
        if isinstance(value, SplitMethod):
            return value
        aliases = {
            "naive": cls.NAIVE_MEDIAN,
            "naive_median": cls.NAIVE_MEDIAN,
            "naivemedian": cls.NAIVE_MEDIAN,
            "median": cls.NAIVE_MEDIAN,
            "sah": cls.SAH,
        }
        key = str(value).strip().lower()
        if key not in aliases:
            raise ValueError(
                f"Unknown split method '{value}'. Valid options: {sorted(aliases)}"
            )
        return aliases[key]


# ===================================================================
# NODE TYPES
# ===================================================================


@dataclass(frozen=True, eq=False)
class BVHLeaf:
    """Leaf node wrapping exactly one primitive.

    Attributes
    ----------
    bounds : Bounds3
        The primitive's own bounding box.
    primitive : Primitive
        Borrowed reference; the tree never owns primitive geometry.
    """

    bounds: Bounds3
    primitive: Primitive


@dataclass(frozen=True, eq=False)
class BVHInternal:
    """Internal node with exactly two children.

    Attributes
    ----------
    bounds : Bounds3
        Union of the two children's bounds.
    left, right : BVHNode
        Child subtrees, exclusively owned by this node.
    """

    bounds: Bounds3
    left: BVHNode
    right: BVHNode


BVHNode = Union[BVHLeaf, BVHInternal]


@dataclass
class TraversalStats:
    """Per-query work counters.

    Passed explicitly to a query and never stored on the tree.

    Attributes
    ----------
    nodes_visited : int
        Number of node boxes tested against the ray.
    primitive_tests : int
        Number of exact primitive intersection tests.
    """

    nodes_visited: int = 0
    primitive_tests: int = 0


@dataclass(frozen=True)
class BVHStats:
    """Shape and build cost of a finished tree.

    Attributes
    ----------
    num_primitives : int
        Primitives handed to the accelerator.
    num_nodes : int
        Leaves plus internal nodes (``2 * num_primitives - 1`` when non-empty).
    num_leaves : int
        Leaf count, equal to ``num_primitives``.
    max_depth : int
        Depth of the deepest leaf (the root has depth 0).
    build_time_s : float
        Wall-clock construction time [s].
    split_method : SplitMethod
        Heuristic the tree was built with.
    """

    num_primitives: int
    num_nodes: int
    num_leaves: int
    max_depth: int
    build_time_s: float
    split_method: SplitMethod


# ===================================================================
# BVH CONSTRUCTION (Python, one-time cost, not JIT-compiled)
# ===================================================================


def build_bvh(
    primitives: list[Primitive],
    split_method: SplitMethod = SplitMethod.SAH,
) -> BVHNode:
    """Build a BVH over a non-empty list of primitives.

    Parameters
    ----------
    primitives : list[Primitive]
        Primitives to organize. The list is reordered in place; on return
        its order matches the left-to-right order of the tree's leaves.
    split_method : SplitMethod
        Median or SAH partitioning for nodes with three or more primitives.

    Returns
    -------
    BVHNode
        Root of the new tree.

    Raises
    ------
    ValueError
        If ``primitives`` is empty.
    """
    num_prims = len(primitives)
    if num_prims == 0:
        raise ValueError("Cannot build a BVH over zero primitives")

    prim_bounds = [p.get_bounds() for p in primitives]
    bboxes_min = np.array([b.p_min for b in prim_bounds], dtype=np.float64)
    bboxes_max = np.array([b.p_max for b in prim_bounds], dtype=np.float64)
    centroids = 0.5 * bboxes_min + 0.5 * bboxes_max

    # Working index array (reordered during construction)
    indices = np.arange(num_prims, dtype=np.int64)

    def _make_leaf(position: int) -> BVHLeaf:
        idx = indices[position]
        return BVHLeaf(bounds=prim_bounds[idx], primitive=primitives[idx])

    def _build_recursive(start: int, end: int) -> BVHNode:
        count = end - start

        if count == 1:
            return _make_leaf(start)

        if count == 2:
            left = _make_leaf(start)
            right = _make_leaf(start + 1)
            return BVHInternal(left.bounds.union(right.bounds), left, right)

        sub_idx = indices[start:end]
        bounds = Bounds3(bboxes_min[sub_idx].min(axis=0), bboxes_max[sub_idx].max(axis=0))
        centroid_bounds = Bounds3(
            centroids[sub_idx].min(axis=0), centroids[sub_idx].max(axis=0)
        )
        axis = centroid_bounds.max_extent()

        order = np.argsort(centroids[sub_idx, axis], kind="stable")
        indices[start:end] = sub_idx[order]

        # Fallback: coincident centroids give SAH nothing to separate, use median
        if split_method is SplitMethod.SAH and np.any(centroid_bounds.diagonal() > 0.0):
            sorted_idx = indices[start:end]
            best, _ = sah_split_index(bboxes_min[sorted_idx], bboxes_max[sorted_idx], bounds)
            mid = start + best + 1
        else:
            mid = start + count // 2

        left = _build_recursive(start, mid)
        right = _build_recursive(mid, end)

        return BVHInternal(left.bounds.union(right.bounds), left, right)

    root = _build_recursive(0, num_prims)
    primitives[:] = [primitives[i] for i in indices]
    return root


def sah_split_index(
    bboxes_min: np.ndarray,
    bboxes_max: np.ndarray,
    parent_bounds: Bounds3 | None = None,
) -> tuple[int, np.ndarray]:
    """Find the SAH-optimal cut of primitives already sorted along an axis.

    Candidate ``i`` (``1 <= i <= n - 2``) puts primitives ``[0..i]`` on the
    left and ``[i+1..n-1]`` on the right, with cost

        ((i + 1) * SA(prefix[i]) + (n - i - 1) * SA(suffix[i])) / SA(parent)

    where ``prefix[i]`` and ``suffix[i]`` are the unions of the left and
    right boxes. When several candidates share the minimum cost, the one
    closest to the median cut wins, which keeps trees over identical boxes
    logarithmically deep.

    Parameters
    ----------
    bboxes_min, bboxes_max : np.ndarray
        Per-primitive AABB corners in sorted order. Shape: (n, 3), n >= 3.
    parent_bounds : Bounds3, optional
        Union of all boxes. Computed from the inputs when omitted.

    Returns
    -------
    best_index : int
        Index ``i`` of the last primitive on the left side.
    costs : np.ndarray
        Cost of every candidate; ``costs[k]`` belongs to ``i = k + 1``.
        Shape: (n - 2,).

    Raises
    ------
    ValueError
        If fewer than three boxes are given.
    """
    n = bboxes_min.shape[0]
    if n < 3:
        raise ValueError(f"SAH split needs at least 3 primitives, got {n}")

    prefix_min = np.minimum.accumulate(bboxes_min, axis=0)
    prefix_max = np.maximum.accumulate(bboxes_max, axis=0)
    # tail_*[k] is the union of boxes [k..n-1]
    tail_min = np.minimum.accumulate(bboxes_min[::-1], axis=0)[::-1]
    tail_max = np.maximum.accumulate(bboxes_max[::-1], axis=0)[::-1]

    candidates = np.arange(1, n - 1)
    sa_left = _surface_area(prefix_min[1 : n - 1], prefix_max[1 : n - 1])
    sa_right = _surface_area(tail_min[2:n], tail_max[2:n])

    costs = (candidates + 1) * sa_left + (n - candidates - 1) * sa_right

    if parent_bounds is None:
        parent_sa = float(_surface_area(prefix_min[-1], prefix_max[-1]))
    else:
        parent_sa = parent_bounds.surface_area()
    # Normalization does not move the argmin; skip it for flat parents
    if parent_sa > 0.0:
        costs = costs / parent_sa

    # Among (near-)tied minima take the one closest to the median cut
    tied = np.flatnonzero(costs <= costs.min() * (1.0 + _SAH_TIE_RTOL))
    median_candidate = n // 2 - 1
    best_index = int(candidates[tied[np.argmin(np.abs(candidates[tied] - median_candidate))]])
    logger.debug("SAH split: n=%d, best i=%d, cost=%.6g", n, best_index, costs[best_index - 1])
    return best_index, costs


def _surface_area(bbox_min: np.ndarray, bbox_max: np.ndarray) -> np.ndarray:
    """Surface area of one AABB or of a stack of them (last axis = xyz)."""
    d = bbox_max - bbox_min
    return 2.0 * (d[..., 0] * d[..., 1] + d[..., 1] * d[..., 2] + d[..., 2] * d[..., 0])


# ===================================================================
# BVH TRAVERSAL
# ===================================================================


def get_intersection(
    node: BVHNode,
    ray: Ray,
    inv_dir: np.ndarray,
    dir_is_neg: np.ndarray,
    stats: TraversalStats | None = None,
) -> Intersection:
    """Nearest intersection below ``node``, visiting both children of every hit box."""
    if stats is not None:
        stats.nodes_visited += 1

    if not node.bounds.intersect_p(ray, inv_dir, dir_is_neg):
        return Intersection()

    if isinstance(node, BVHLeaf):
        if stats is not None:
            stats.primitive_tests += 1
        return node.primitive.get_intersection(ray)

    hit_left = get_intersection(node.left, ray, inv_dir, dir_is_neg, stats)
    hit_right = get_intersection(node.right, ray, inv_dir, dir_is_neg, stats)
    return nearest(hit_left, hit_right)


def get_intersection_ordered(
    node: BVHNode,
    ray: Ray,
    inv_dir: np.ndarray,
    dir_is_neg: np.ndarray,
    stats: TraversalStats | None = None,
) -> Intersection:
    """Nearest intersection below ``node``, front-to-back with far-box culling.

    Returns the same hit distance as ``get_intersection`` while usually
    testing fewer primitives.
    """
    if stats is not None:
        stats.nodes_visited += 1
    if not node.bounds.intersect_p(ray, inv_dir, dir_is_neg):
        return Intersection()
    return _visit_ordered(node, ray, inv_dir, dir_is_neg, Intersection(), stats)


def _visit_ordered(
    node: BVHNode,
    ray: Ray,
    inv_dir: np.ndarray,
    dir_is_neg: np.ndarray,
    best: Intersection,
    stats: TraversalStats | None,
) -> Intersection:
    if isinstance(node, BVHLeaf):
        if stats is not None:
            stats.primitive_tests += 1
        return nearest(best, node.primitive.get_intersection(ray))

    children = [
        (child.bounds.entry_distance(ray, inv_dir, dir_is_neg), child)
        for child in (node.left, node.right)
    ]
    if stats is not None:
        stats.nodes_visited += 2
    children.sort(key=lambda entry: entry[0])

    for t_entry, child in children:
        if t_entry == np.inf:
            continue
        if best.happened and t_entry > best.distance:
            break
        best = _visit_ordered(child, ray, inv_dir, dir_is_neg, best, stats)

    return best


def any_hit(root: BVHNode, ray: Ray, t_max: float = np.inf) -> bool:
    """Test if anything below ``root`` is hit closer than ``t_max``.

    Uses stack-based iterative traversal and returns on the FIRST hit,
    since only occlusion matters, not the closest hit.
    """
    inv_dir = ray.inverse_direction()
    dir_is_neg = ray.dir_is_neg()

    stack: list[BVHNode] = [root]
    while stack:
        node = stack.pop()
        if not node.bounds.intersect_p(ray, inv_dir, dir_is_neg):
            continue
        if isinstance(node, BVHLeaf):
            isect = node.primitive.get_intersection(ray)
            if isect.happened and isect.distance < t_max:
                return True
        else:
            stack.append(node.right)
            stack.append(node.left)

    return False


def brute_force_intersect(primitives: Sequence[Primitive], ray: Ray) -> Intersection:
    """Reference nearest-hit query: test every primitive, no pruning."""
    result = Intersection()
    for prim in primitives:
        result = nearest(result, prim.get_intersection(ray))
    return result


# ===================================================================
# HIGH-LEVEL API
# ===================================================================


class BVHAccel:
    """Build-once, query-many BVH over a fixed primitive list.

    Parameters
    ----------
    primitives : Sequence[Primitive]
        Primitives to organize. The accelerator keeps its own list of
        references (reordered by construction); the caller's sequence is
        left untouched and primitives are never copied.
    max_prims_in_node : int
        Accepted leaf capacity, clamped to 255. Not consulted during
        construction: leaves always hold exactly one primitive.
    split_method : SplitMethod or str
        ``SplitMethod.NAIVE_MEDIAN`` or ``SplitMethod.SAH``.
    ordered_traversal : bool
        If True, ``intersect`` visits the nearer child box first and culls
        the farther one when possible. Results are unchanged.
    """

    def __init__(
        self,
        primitives: Sequence[Primitive],
        max_prims_in_node: int = 1,
        split_method: SplitMethod | str = SplitMethod.SAH,
        ordered_traversal: bool = False,
    ) -> None:
        if max_prims_in_node > MAX_PRIMS_IN_NODE_CEILING:
            logger.warning(
                "max_prims_in_node=%d exceeds ceiling, clamped to %d",
                max_prims_in_node,
                MAX_PRIMS_IN_NODE_CEILING,
            )
        self.max_prims_in_node = min(MAX_PRIMS_IN_NODE_CEILING, int(max_prims_in_node))
        self.split_method = SplitMethod.parse(split_method)
        self.ordered_traversal = bool(ordered_traversal)
        self.primitives: list[Primitive] = list(primitives)
        self.root: BVHNode | None = None

        if not self.primitives:
            logger.info("BVH over 0 primitives: no tree built, all queries miss")
            self._stats = BVHStats(0, 0, 0, 0, 0.0, self.split_method)
            return

        start = time.perf_counter()
        self.root = build_bvh(self.primitives, self.split_method)
        build_time_s = time.perf_counter() - start

        num_nodes = 0
        num_leaves = 0
        max_depth = 0
        for node, depth in self.walk():
            num_nodes += 1
            if isinstance(node, BVHLeaf):
                num_leaves += 1
                max_depth = max(max_depth, depth)

        self._stats = BVHStats(
            num_primitives=len(self.primitives),
            num_nodes=num_nodes,
            num_leaves=num_leaves,
            max_depth=max_depth,
            build_time_s=build_time_s,
            split_method=self.split_method,
        )
        logger.info(
            "BVH generation complete: %d primitives, %d nodes, depth %d, "
            "split=%s, %.3f s",
            len(self.primitives),
            num_nodes,
            max_depth,
            self.split_method.value,
            build_time_s,
        )

    @classmethod
    def from_config(cls, primitives: Sequence[Primitive], config: AccelConfig) -> BVHAccel:
        """Construct from an ``AccelConfig``."""
        return cls(
            primitives,
            max_prims_in_node=config.max_prims_in_node,
            split_method=config.split_method,
            ordered_traversal=config.ordered_traversal,
        )

    def __repr__(self) -> str:
        return (
            f"BVHAccel(num_primitives={len(self.primitives)}, "
            f"split_method={self.split_method.value}, "
            f"max_prims_in_node={self.max_prims_in_node})"
        )

    @property
    def stats(self) -> BVHStats:
        return self._stats

    def get_bounds(self) -> Bounds3:
        """Bounds of the whole tree (the empty box when there is no tree)."""
        if self.root is None:
            return Bounds3()
        return self.root.bounds

    def intersect(self, ray: Ray, stats: TraversalStats | None = None) -> Intersection:
        """Nearest intersection of ``ray`` with any primitive.

        Parameters
        ----------
        ray : Ray
            Query ray.
        stats : TraversalStats, optional
            Receives per-query work counters.

        Returns
        -------
        Intersection
            The nearest hit, or the miss sentinel.
        """
        if self.root is None:
            return Intersection()

        inv_dir = ray.inverse_direction()
        dir_is_neg = ray.dir_is_neg()

        if self.ordered_traversal:
            return get_intersection_ordered(self.root, ray, inv_dir, dir_is_neg, stats)
        return get_intersection(self.root, ray, inv_dir, dir_is_neg, stats)

    def occluded(self, ray: Ray, t_max: float = np.inf) -> bool:
        """Test if any primitive is hit before ``t_max`` (shadow-ray query)."""
        if self.root is None:
            return False
        return any_hit(self.root, ray, t_max)

    def walk(self) -> Iterator[tuple[BVHNode, int]]:
        """Yield ``(node, depth)`` for every node, depth-first, left to right."""
        if self.root is None:
            return
        stack: list[tuple[BVHNode, int]] = [(self.root, 0)]
        while stack:
            node, depth = stack.pop()
            yield node, depth
            if isinstance(node, BVHInternal):
                stack.append((node.right, depth + 1))
                stack.append((node.left, depth + 1))

    def iter_leaves(self) -> Iterator[BVHLeaf]:
        """Leaves in left-to-right order."""
        for node, _ in self.walk():
            if isinstance(node, BVHLeaf):
                yield node
