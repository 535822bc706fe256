"""Benchmark Runner - BVH queries checked against a brute-force scan.

Orchestrates the full validation pipeline:
1. Generate the synthetic scene
2. Build the BVH (timed)
3. Fire random rays through the BVH and through an exhaustive scan
4. Compare hit distances and collect timings and tree statistics

Notes
-----
A ray counts as a mismatch when exactly one of the two queries reports a
hit, or when both hit at distances that differ by more than

    tol = DISTANCE_RTOL * max(1, d_brute)

Distances rather than primitive identities are compared, since two
primitives may legitimately share the nearest distance.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from bvh_engine.bvh import BVHAccel, BVHStats, TraversalStats, brute_force_intersect
from bvh_engine.config import EngineConfig
from bvh_engine.mesh import TriangleMesh
from bvh_engine.primitives import Primitive
from scene_synthesis.synthetic_scene import generate_random_rays, generate_synthetic_scene

logger = logging.getLogger(__name__)

DISTANCE_RTOL: float = 1e-9


# ---------------------------------------------------------------------------
# Result Container
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkResults:
    """Container for benchmark output data.

    Attributes
    ----------
    bvh_distances : np.ndarray
        Nearest-hit distance per ray from the BVH, ``inf`` on a miss.
        Shape: (num_rays,).
    brute_distances : np.ndarray
        Same for the brute-force scan. Shape: (num_rays,).
    mismatch_mask : np.ndarray
        True where the two queries disagree. Shape: (num_rays,).
    bvh_stats : BVHStats or None
        Shape and build cost of the tree.
    nodes_visited : int
        Node boxes tested over all BVH queries.
    primitive_tests : int
        Exact primitive tests over all BVH queries.
    bvh_query_time_s : float
        Wall time for all BVH queries [s].
    brute_query_time_s : float
        Wall time for all brute-force queries [s].
    metadata : dict
        Run metadata (config, counts, timing).
    """

    bvh_distances: np.ndarray = field(default_factory=lambda: np.array([]))
    brute_distances: np.ndarray = field(default_factory=lambda: np.array([]))
    mismatch_mask: np.ndarray = field(default_factory=lambda: np.array([], dtype=bool))
    bvh_stats: BVHStats | None = None
    nodes_visited: int = 0
    primitive_tests: int = 0
    bvh_query_time_s: float = 0.0
    brute_query_time_s: float = 0.0
    metadata: dict = field(default_factory=dict)

    @property
    def num_rays(self) -> int:
        return int(self.bvh_distances.shape[0])

    @property
    def num_hits(self) -> int:
        return int(np.isfinite(self.bvh_distances).sum())

    @property
    def num_mismatches(self) -> int:
        return int(self.mismatch_mask.sum())

    @property
    def speedup(self) -> float:
        """Brute-force query time divided by BVH query time."""
        if self.bvh_query_time_s <= 0.0:
            return float("nan")
        return self.brute_query_time_s / self.bvh_query_time_s


# ---------------------------------------------------------------------------
# Benchmark Runner
# ---------------------------------------------------------------------------


class BenchmarkRunner:
    """Build a BVH over a synthetic scene and validate it ray by ray.

    Parameters
    ----------
    config : EngineConfig
        Full configuration loaded from YAML (with any CLI overrides applied).
    """

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

        logger.info(
            "BenchmarkRunner initialized: scene=%s, n=%d, rays=%d, split=%s, ordered=%s",
            config.scene.scene_type,
            config.scene.num_primitives,
            config.benchmark.num_rays,
            config.accel.split_method.value,
            config.accel.ordered_traversal,
        )

    def run(
        self,
        save_data: bool = False,
        output_dir: Path | str = "output",
    ) -> BenchmarkResults:
        """Execute the benchmark.

        Parameters
        ----------
        save_data : bool
            Persist distances and metadata via ``benchmark.io_manager``.
        output_dir : Path or str
            Target directory when ``save_data`` is set.

        Returns
        -------
        BenchmarkResults
            Per-ray distances, mismatches, timings and tree statistics.
        """
        wall_start = time.perf_counter()

        # Step 1: Scene
        logger.info("Step 1/3: Generating synthetic scene...")
        scene = generate_synthetic_scene(
            self._config.scene,
            epsilon=self._config.intersection.epsilon,
            accel=self._config.accel,
        )
        reference = _reference_primitives(scene)

        # Step 2: Accelerator
        logger.info("Step 2/3: Building BVH over %d primitives...", len(scene))
        accel = BVHAccel.from_config(scene, self._config.accel)

        # Step 3: Queries
        rays = generate_random_rays(
            self._config.benchmark.num_rays,
            self._config.scene.extent,
            seed=self._config.benchmark.seed,
        )
        logger.info("Step 3/3: Tracing %d rays (BVH and brute force)...", len(rays))

        num_rays = len(rays)
        bvh_distances = np.full(num_rays, np.inf, dtype=np.float64)
        brute_distances = np.full(num_rays, np.inf, dtype=np.float64)
        traversal = TraversalStats()

        t0 = time.perf_counter()
        for i, ray in enumerate(rays):
            isect = accel.intersect(ray, traversal)
            if isect.happened:
                bvh_distances[i] = isect.distance
        bvh_query_time_s = time.perf_counter() - t0

        t0 = time.perf_counter()
        for i, ray in enumerate(rays):
            isect = brute_force_intersect(reference, ray)
            if isect.happened:
                brute_distances[i] = isect.distance
        brute_query_time_s = time.perf_counter() - t0

        mismatch_mask = _compare_distances(bvh_distances, brute_distances)

        results = BenchmarkResults(
            bvh_distances=bvh_distances,
            brute_distances=brute_distances,
            mismatch_mask=mismatch_mask,
            bvh_stats=accel.stats,
            nodes_visited=traversal.nodes_visited,
            primitive_tests=traversal.primitive_tests,
            bvh_query_time_s=bvh_query_time_s,
            brute_query_time_s=brute_query_time_s,
            metadata={
                "scene_type": self._config.scene.scene_type,
                "num_primitives": len(scene),
                "num_reference_primitives": len(reference),
                "num_rays": num_rays,
                "split_method": self._config.accel.split_method.value,
                "ordered_traversal": self._config.accel.ordered_traversal,
                "max_prims_in_node": accel.max_prims_in_node,
                "num_nodes": accel.stats.num_nodes,
                "max_depth": accel.stats.max_depth,
                "build_time_s": accel.stats.build_time_s,
                "bvh_query_time_s": bvh_query_time_s,
                "brute_query_time_s": brute_query_time_s,
                "nodes_visited": traversal.nodes_visited,
                "primitive_tests": traversal.primitive_tests,
            },
        )

        wall_elapsed = time.perf_counter() - wall_start
        results.metadata["wall_time_s"] = wall_elapsed
        results.metadata["num_hits"] = results.num_hits
        results.metadata["num_mismatches"] = results.num_mismatches

        if results.num_mismatches > 0:
            logger.error(
                "BVH disagrees with brute force on %d of %d rays",
                results.num_mismatches,
                num_rays,
            )
        logger.info(
            "Benchmark complete: %d/%d hits, %d mismatches, speedup x%.1f, "
            "%.1f seconds wall time",
            results.num_hits,
            num_rays,
            results.num_mismatches,
            results.speedup,
            wall_elapsed,
        )

        if save_data:
            from benchmark.io_manager import save_results

            save_results(output_dir=output_dir, results=results)

        return results


def _reference_primitives(scene: list[Primitive]) -> list[Primitive]:
    """Flatten meshes into their faces so the reference scan prunes nothing."""
    flat: list[Primitive] = []
    for prim in scene:
        if isinstance(prim, TriangleMesh):
            flat.extend(prim.faces)
        else:
            flat.append(prim)
    return flat


def _compare_distances(bvh_distances: np.ndarray, brute_distances: np.ndarray) -> np.ndarray:
    """Per-ray disagreement mask between two distance arrays (``inf`` = miss)."""
    bvh_hit = np.isfinite(bvh_distances)
    brute_hit = np.isfinite(brute_distances)

    mismatch = bvh_hit != brute_hit
    both = bvh_hit & brute_hit
    tol = DISTANCE_RTOL * np.maximum(1.0, np.abs(brute_distances[both]))
    mismatch[both] = np.abs(bvh_distances[both] - brute_distances[both]) > tol
    return mismatch
