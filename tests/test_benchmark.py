"""Tests for the benchmark runner, result I/O and the command line."""

from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest
import yaml

import main
from benchmark.io_manager import load_results, save_results
from benchmark.runner import BenchmarkResults, BenchmarkRunner, _compare_distances
from bvh_engine.config import parse_config


class TestBenchmarkRunner:
    """End-to-end BVH-vs-brute-force runs on small scenes."""

    @pytest.mark.parametrize(
        "scene_type", ["random_spheres", "random_boxes", "sphere_grid", "bowl_terrain"]
    )
    @pytest.mark.parametrize("split", ["naive", "sah"])
    def test_no_mismatches(self, raw_config: dict, scene_type: str, split: str) -> None:
        raw_config["scene"]["type"] = scene_type
        raw_config["bvh"]["split_method"] = split
        results = BenchmarkRunner(parse_config(raw_config)).run()

        assert results.num_rays == 80
        assert results.num_mismatches == 0
        assert results.num_hits > 0
        assert results.bvh_stats is not None
        assert results.bvh_stats.num_leaves == results.metadata["num_primitives"]

    def test_ordered_traversal_does_less_work(self, raw_config: dict) -> None:
        unordered = BenchmarkRunner(parse_config(raw_config)).run()
        raw_config["bvh"]["ordered_traversal"] = True
        ordered = BenchmarkRunner(parse_config(raw_config)).run()

        np.testing.assert_allclose(ordered.bvh_distances, unordered.bvh_distances)
        assert ordered.primitive_tests <= unordered.primitive_tests

    def test_empty_scene(self, raw_config: dict) -> None:
        raw_config["scene"]["num_primitives"] = 0
        results = BenchmarkRunner(parse_config(raw_config)).run()

        assert results.num_hits == 0
        assert results.num_mismatches == 0
        assert results.bvh_stats.num_nodes == 0

    def test_bvh_tests_fewer_primitives_than_brute_force(self, raw_config: dict) -> None:
        results = BenchmarkRunner(parse_config(raw_config)).run()
        brute_tests = results.num_rays * results.metadata["num_reference_primitives"]

        assert results.primitive_tests < brute_tests


class TestCompareDistances:
    """Per-ray disagreement detection."""

    def test_mismatch_cases(self) -> None:
        bvh = np.array([1.0, np.inf, 2.0, np.inf, 5.0])
        brute = np.array([1.0, np.inf, np.inf, 3.0, 5.0 + 1e-6])

        mismatch = _compare_distances(bvh, brute)

        assert mismatch.tolist() == [False, False, True, True, True]


class TestIOManager:
    """Saving and loading benchmark results."""

    def test_round_trip(self, tmp_path: Path, raw_config: dict) -> None:
        results = BenchmarkRunner(parse_config(raw_config)).run()

        saved = save_results(tmp_path / "out", results)
        data = load_results(tmp_path / "out")

        assert len(saved) == 4
        np.testing.assert_array_equal(data["bvh_distances"], results.bvh_distances)
        np.testing.assert_array_equal(data["mismatch_mask"], results.mismatch_mask)
        assert data["metadata"]["num_rays"] == 80
        assert data["metadata"]["bvh_stats"]["split_method"] == "sah"

    def test_non_finite_metadata_is_valid_json(self, tmp_path: Path) -> None:
        results = BenchmarkResults(metadata={"speedup": float("nan"), "n": np.int64(3)})
        save_results(tmp_path, results)

        meta = json.loads((tmp_path / "metadata.json").read_text(encoding="utf-8"))
        assert meta == {"speedup": None, "n": 3}

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_results(tmp_path / "missing")

    def test_missing_array_maps_to_none(self, tmp_path: Path) -> None:
        data = load_results(tmp_path)
        assert data["bvh_distances"] is None
        assert data["metadata"] == {}


class TestCommandLine:
    """The ``main`` entry point."""

    def test_overrides_and_exit_code(self, tmp_path: Path, raw_config: dict) -> None:
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.safe_dump(raw_config), encoding="utf-8")
        out_dir = tmp_path / "out"

        code = main.main([
            "--config", str(config_path),
            "--split", "naive",
            "--scene", "random_boxes",
            "--num-primitives", "40",
            "--num-rays", "30",
            "--ordered",
            "--seed", "2",
            "--output", str(out_dir),
        ])

        assert code == 0
        meta = json.loads((out_dir / "metadata.json").read_text(encoding="utf-8"))
        assert meta["split_method"] == "naive_median"
        assert meta["scene_type"] == "random_boxes"
        assert meta["num_primitives"] == 40
        assert meta["num_rays"] == 30
        assert meta["ordered_traversal"] is True

    def test_rejects_unknown_split(self) -> None:
        with pytest.raises(SystemExit):
            main.parse_args(["--split", "octree"])
