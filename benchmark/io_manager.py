"""Data I/O manager - persist benchmark results as NumPy arrays.

Saves and loads raw per-ray benchmark data so runs can be compared
without re-tracing.

File layout under output_dir/:
    bvh_distances.npy    - Nearest-hit distance per ray from the BVH (inf = miss)
    brute_distances.npy  - Nearest-hit distance per ray from the brute-force scan
    mismatch_mask.npy    - True where the two disagree, shape (num_rays,)
    metadata.json        - Run metadata and BVH statistics (JSON)
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from enum import Enum
from pathlib import Path

import numpy as np

from benchmark.runner import BenchmarkResults

logger = logging.getLogger(__name__)


def save_results(
    output_dir: Path | str,
    results: BenchmarkResults,
) -> list[Path]:
    """Save benchmark results to disk as NumPy arrays + JSON.

    Parameters
    ----------
    output_dir : Path or str
        Output directory (created if needed).
    results : BenchmarkResults
        Output of ``BenchmarkRunner.run``.

    Returns
    -------
    list[Path]
        Paths to all saved files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    saved: list[Path] = []

    for name, arr in [
        ("bvh_distances.npy", results.bvh_distances),
        ("brute_distances.npy", results.brute_distances),
        ("mismatch_mask.npy", results.mismatch_mask),
    ]:
        path = output_dir / name
        np.save(path, arr)
        saved.append(path)
        logger.debug("Saved %s: shape=%s, dtype=%s", name, arr.shape, arr.dtype)

    meta = dict(results.metadata)
    if results.bvh_stats is not None:
        meta["bvh_stats"] = asdict(results.bvh_stats)

    meta_path = output_dir / "metadata.json"
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(_sanitize_for_json(meta), f, indent=2, ensure_ascii=False)
    saved.append(meta_path)

    logger.info(
        "Saved %d files to %s (%d rays, %d mismatches)",
        len(saved), output_dir, results.num_rays, results.num_mismatches,
    )

    return saved


def load_results(
    output_dir: Path | str,
) -> dict[str, np.ndarray | dict | None]:
    """Load previously saved benchmark results.

    Parameters
    ----------
    output_dir : Path or str
        Directory containing saved results.

    Returns
    -------
    dict
        Keys: 'bvh_distances', 'brute_distances', 'mismatch_mask',
        'metadata'. A missing array file maps to None.

    Raises
    ------
    FileNotFoundError
        If ``output_dir`` does not exist.
    """
    output_dir = Path(output_dir)

    if not output_dir.exists():
        raise FileNotFoundError(f"Output directory not found: {output_dir}")

    data: dict = {}

    for key in ("bvh_distances", "brute_distances", "mismatch_mask"):
        path = output_dir / f"{key}.npy"
        if path.exists():
            data[key] = np.load(path)
            logger.debug("Loaded %s: shape=%s", key, data[key].shape)
        else:
            logger.warning("Missing file: %s", path)
            data[key] = None

    meta_path = output_dir / "metadata.json"
    if meta_path.exists():
        with open(meta_path, "r", encoding="utf-8") as f:
            data["metadata"] = json.load(f)
    else:
        data["metadata"] = {}

    logger.info("Loaded results from %s (%d keys)", output_dir, len(data))

    return data


def _sanitize_for_json(obj: object) -> object:
    """Recursively convert NumPy types, enums and non-finite floats to JSON natives."""
    if isinstance(obj, dict):
        return {k: _sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize_for_json(v) for v in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        return float(obj) if np.isfinite(obj) else None
    if isinstance(obj, np.ndarray):
        return [_sanitize_for_json(v) for v in obj.tolist()]
    return obj
