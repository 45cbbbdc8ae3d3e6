# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Extremal index queries against a segment.

The place extractor walks skeleton paths between two voxels and needs the
path voxel that strays furthest from the straight segment joining them,
either to split the path there or to decide that the segment is a good
enough approximation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

GlobalIndex = Tuple[int, int, int]


@dataclass
class FurthestIndexResult:
    """Outcome of :func:`find_furthest_index_from_line`.

    ``from_source`` is ``True`` when ``distance`` was measured directly to
    the segment start rather than perpendicular to the segment.
    """

    valid: bool = False
    distance: float = 0.0
    from_source: bool = True
    index: Optional[GlobalIndex] = None


def _as_index(value: Sequence[int]) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"index must have 3 components, got shape {arr.shape}")
    return arr


def _line_distance(point: np.ndarray, start: np.ndarray, end: np.ndarray) -> float:
    direction = end - start
    norm = float(np.linalg.norm(direction))
    if norm == 0.0:
        return float(np.linalg.norm(point - start))
    return float(np.linalg.norm(np.cross(point - start, direction)) / norm)


def find_furthest_index_from_line(
    indices: Sequence[Sequence[int]],
    start: Sequence[int],
    end: Sequence[int],
    number_source_edges: Optional[int] = None,
) -> FurthestIndexResult:
    """Return the index furthest from the segment ``start`` -> ``end``.

    Parameters
    ----------
    indices : Sequence[Sequence[int]]
        Candidate global voxel indices, in path order.
    start, end : Sequence[int]
        Segment endpoints.
    number_source_edges : int, optional
        How many leading indices are measured by direct distance to
        ``start``; the remainder use the perpendicular distance to the line.
        Defaults to all of them.

    Returns
    -------
    FurthestIndexResult
        ``valid`` is ``False`` only for an empty ``indices``. On equal
        distances the earliest index wins.
    """

    result = FurthestIndexResult()
    if len(indices) == 0:
        return result

    if number_source_edges is None:
        number_source_edges = len(indices)
    p_start = _as_index(start)
    p_end = _as_index(end)

    for i, idx in enumerate(indices):
        point = _as_index(idx)
        from_source = i < number_source_edges
        if from_source:
            distance = float(np.linalg.norm(point - p_start))
        else:
            distance = _line_distance(point, p_start, p_end)
        if not result.valid or distance > result.distance:
            result.valid = True
            result.distance = distance
            result.from_source = from_source
            result.index = tuple(int(v) for v in idx)  # type: ignore[assignment]
    return result


def split_skeleton_path(
    indices: Sequence[Sequence[int]],
    start: Sequence[int],
    end: Sequence[int],
    max_distance: float,
) -> List[GlobalIndex]:
    """Return the split points that keep every sub-path within ``max_distance``.

    The path is split at its furthest index from the chord whenever that
    distance exceeds ``max_distance``; both halves are split recursively.
    Split points come back in path order and exclude ``start``/``end``.
    """

    if max_distance < 0:
        raise ValueError("max_distance must be non-negative")
    path = [tuple(int(v) for v in idx) for idx in indices]
    splits: List[GlobalIndex] = []
    # explicit stack of (lo, hi, start, end) ranges, right half pushed first
    stack = [(0, len(path), tuple(int(v) for v in start), tuple(int(v) for v in end))]
    while stack:
        lo, hi, seg_start, seg_end = stack.pop()
        section = path[lo:hi]
        best = find_furthest_index_from_line(section, seg_start, seg_end, number_source_edges=0)
        if not best.valid or best.distance <= max_distance:
            continue
        pivot = lo + section.index(best.index)
        splits.append(best.index)
        stack.append((pivot + 1, hi, best.index, seg_end))
        stack.append((lo, pivot, seg_start, best.index))
    return sorted(splits, key=path.index)


__all__ = ["FurthestIndexResult", "find_furthest_index_from_line", "split_skeleton_path"]
