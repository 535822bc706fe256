"""BVH Engine - CLI entry point.

Builds a BVH over a synthetic scene and checks every query against a
brute-force scan.

Usage
-----
    python main.py --split sah --num-primitives 5000 --num-rays 1000
    python main.py --scene bowl_terrain --ordered
    python main.py --output output          # also save per-ray results
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    fmt = "%(name)s [%(levelname)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="bvh-engine",
        description="BVH Engine - build a BVH and validate it against brute force",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py --split naive --num-primitives 2000\n"
            "  python main.py --scene random_boxes --num-rays 5000 --ordered\n"
            "  python main.py --scene bowl_terrain --num-primitives 20000\n"
            "  python main.py --output output --log-level DEBUG\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/default_config.yaml",
        help="Path to engine config YAML (default: config/default_config.yaml)",
    )
    parser.add_argument(
        "--split",
        type=str,
        default=None,
        choices=["naive", "sah"],
        help="Override split method (default: from config)",
    )
    parser.add_argument(
        "--num-primitives",
        type=int,
        default=None,
        help="Override scene primitive count (default: from config)",
    )
    parser.add_argument(
        "--num-rays",
        type=int,
        default=None,
        help="Override number of query rays (default: from config)",
    )
    parser.add_argument(
        "--scene",
        type=str,
        default=None,
        choices=["random_spheres", "random_boxes", "sphere_grid", "bowl_terrain"],
        help="Override synthetic scene type (default: from config)",
    )
    parser.add_argument(
        "--ordered",
        action="store_true",
        default=False,
        help="Use front-to-back traversal with far-child culling",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override scene seed (default: from config)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Save per-ray results and metadata to this directory",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main benchmark entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger = logging.getLogger("bvh_engine")
    logger.info("=" * 60)
    logger.info("  BVH Engine - Build & Validate")
    logger.info("=" * 60)

    from benchmark.runner import BenchmarkRunner
    from bvh_engine.bvh import SplitMethod
    from bvh_engine.config import load_config, log_platform_info

    log_platform_info()

    config_path = Path(args.config)
    logger.info("Loading config: %s", config_path)
    config = load_config(config_path)

    # CLI overrides
    accel = config.accel
    if args.split is not None:
        accel = replace(accel, split_method=SplitMethod.parse(args.split))
    if args.ordered:
        accel = replace(accel, ordered_traversal=True)

    scene = config.scene
    if args.scene is not None:
        scene = replace(scene, scene_type=args.scene)
    if args.num_primitives is not None:
        scene = replace(scene, num_primitives=args.num_primitives)
    if args.seed is not None:
        scene = replace(scene, seed=args.seed)

    benchmark = config.benchmark
    if args.num_rays is not None:
        benchmark = replace(benchmark, num_rays=args.num_rays)

    config = replace(config, accel=accel, scene=scene, benchmark=benchmark)

    runner = BenchmarkRunner(config)
    results = runner.run(
        save_data=args.output is not None,
        output_dir=args.output or "output",
    )

    stats = results.bvh_stats
    logger.info("=" * 60)
    logger.info("  BENCHMARK COMPLETE")
    logger.info("=" * 60)
    logger.info(
        "  Scene: %s, %d primitives",
        config.scene.scene_type,
        results.metadata["num_primitives"],
    )
    if stats is not None:
        logger.info(
            "  BVH: %d nodes, %d leaves, depth %d, built in %.3f s (%s)",
            stats.num_nodes,
            stats.num_leaves,
            stats.max_depth,
            stats.build_time_s,
            stats.split_method.value,
        )
    logger.info(
        "  Rays: %d traced, %d hits, %d mismatches",
        results.num_rays,
        results.num_hits,
        results.num_mismatches,
    )
    logger.info(
        "  Query time: BVH %.3f s, brute force %.3f s (x%.1f)",
        results.bvh_query_time_s,
        results.brute_query_time_s,
        results.speedup,
    )
    if results.num_rays > 0:
        logger.info(
            "  Work per ray: %.1f nodes, %.1f primitive tests",
            results.nodes_visited / results.num_rays,
            results.primitive_tests / results.num_rays,
        )
    logger.info("=" * 60)

    return 1 if results.num_mismatches > 0 else 0


if __name__ == "__main__":
    sys.exit(main())
