# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Block-sparse voxel layer carrying the generalized Voronoi distance field.

Summary
-------
Voxels are addressed by integer global indices. A :class:`VoxelLayer`
allocates :class:`VoxelBlock` objects of ``voxels_per_side ** 3`` voxels on
demand; each block stores its voxels column-wise in numpy arrays so that
whole-block comparisons stay vectorised.

Examples
--------
>>> layer = VoxelLayer(voxel_size=0.1, voxels_per_side=8)
>>> layer.set_voxel((9, 0, 0), GvdVoxel(observed=True, distance=0.5))
>>> layer.block_index((9, 0, 0))
(1, 0, 0)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

GlobalIndex = Tuple[int, int, int]
BlockIndex = Tuple[int, int, int]


@dataclass
class GvdVoxel:
    """One voxel of the distance field."""

    observed: bool = False
    distance: float = 0.0
    fixed: bool = False
    on_gvd: bool = False


class VoxelBlock:
    """Dense cube of ``voxels_per_side ** 3`` voxels."""

    def __init__(self, index: BlockIndex, voxels_per_side: int) -> None:
        self.index = tuple(index)
        self.voxels_per_side = voxels_per_side
        n = voxels_per_side**3
        self.observed = np.zeros(n, dtype=bool)
        self.distance = np.zeros(n, dtype=float)
        self.fixed = np.zeros(n, dtype=bool)
        self.on_gvd = np.zeros(n, dtype=bool)

    @property
    def num_voxels(self) -> int:
        return len(self.observed)

    def linear_index(self, local: Sequence[int]) -> int:
        vps = self.voxels_per_side
        x, y, z = (int(v) for v in local)
        if not all(0 <= v < vps for v in (x, y, z)):
            raise IndexError(f"local voxel index {tuple(local)} outside block")
        return x + vps * (y + vps * z)

    def local_index(self, linear: int) -> GlobalIndex:
        vps = self.voxels_per_side
        return (linear % vps, (linear // vps) % vps, linear // (vps * vps))

    def get_voxel(self, linear: int) -> GvdVoxel:
        return GvdVoxel(
            observed=bool(self.observed[linear]),
            distance=float(self.distance[linear]),
            fixed=bool(self.fixed[linear]),
            on_gvd=bool(self.on_gvd[linear]),
        )

    def set_voxel(self, linear: int, voxel: GvdVoxel) -> None:
        self.observed[linear] = voxel.observed
        self.distance[linear] = voxel.distance
        self.fixed[linear] = voxel.fixed
        self.on_gvd[linear] = voxel.on_gvd


class VoxelLayer:
    """Sparse collection of voxel blocks.

    Parameters
    ----------
    voxel_size : float
        Edge length of one voxel in metres.
    voxels_per_side : int
        Voxels along one block edge.
    """

    def __init__(self, voxel_size: float, voxels_per_side: int) -> None:
        if voxel_size <= 0:
            raise ValueError("voxel_size must be positive")
        if voxels_per_side <= 0:
            raise ValueError("voxels_per_side must be positive")
        self.voxel_size = float(voxel_size)
        self.voxels_per_side = int(voxels_per_side)
        self.blocks: Dict[BlockIndex, VoxelBlock] = {}

    def __len__(self) -> int:
        return len(self.blocks)

    def block_index(self, global_index: Sequence[int]) -> BlockIndex:
        vps = self.voxels_per_side
        return tuple(int(v) // vps for v in global_index)  # type: ignore[return-value]

    def split_index(self, global_index: Sequence[int]) -> Tuple[BlockIndex, int]:
        """Return ``(block index, linear voxel index)`` for a global index."""

        vps = self.voxels_per_side
        block = self.block_index(global_index)
        local = [int(v) - b * vps for v, b in zip(global_index, block)]
        return block, local[0] + vps * (local[1] + vps * local[2])

    def global_index(self, block: BlockIndex, linear: int) -> GlobalIndex:
        vps = self.voxels_per_side
        lx, ly, lz = (linear % vps, (linear // vps) % vps, linear // (vps * vps))
        return (block[0] * vps + lx, block[1] * vps + ly, block[2] * vps + lz)

    def index_from_point(self, point: Sequence[float]) -> GlobalIndex:
        x, y, z = (int(math.floor(float(p) / self.voxel_size)) for p in point)
        return (x, y, z)

    def voxel_center(self, global_index: Sequence[int]) -> np.ndarray:
        return (np.asarray(global_index, dtype=float) + 0.5) * self.voxel_size

    def has_block(self, block: BlockIndex) -> bool:
        return tuple(block) in self.blocks

    def get_block(self, block: BlockIndex) -> Optional[VoxelBlock]:
        return self.blocks.get(tuple(block))

    def allocate_block(self, block: BlockIndex) -> VoxelBlock:
        key = tuple(int(v) for v in block)
        if key not in self.blocks:
            self.blocks[key] = VoxelBlock(key, self.voxels_per_side)
        return self.blocks[key]

    def get_voxel(self, global_index: Sequence[int]) -> Optional[GvdVoxel]:
        block, linear = self.split_index(global_index)
        found = self.blocks.get(block)
        return None if found is None else found.get_voxel(linear)

    def set_voxel(self, global_index: Sequence[int], voxel: GvdVoxel) -> None:
        block, linear = self.split_index(global_index)
        self.allocate_block(block).set_voxel(linear, voxel)

    def is_observed(self, global_index: Sequence[int]) -> bool:
        voxel = self.get_voxel(global_index)
        return voxel is not None and voxel.observed

    def observed_indices(self) -> Iterator[GlobalIndex]:
        for block_idx in sorted(self.blocks):
            block = self.blocks[block_idx]
            for linear in np.flatnonzero(block.observed):
                yield self.global_index(block_idx, int(linear))


@dataclass
class LayerComparisonResult:
    """Voxel-by-voxel agreement between two layers.

    ``num_missing_lhs`` counts observed ``rhs`` voxels in blocks ``lhs`` has
    not allocated (and vice versa). Error statistics are taken over the
    distances of voxels observed in both layers.
    """

    valid: bool = False
    num_same: int = 0
    num_different: int = 0
    num_lhs_seen_rhs_unseen: int = 0
    num_rhs_seen_lhs_unseen: int = 0
    num_missing_lhs: int = 0
    num_missing_rhs: int = 0
    rmse: float = 0.0
    min_error: float = math.inf
    max_error: float = 0.0

    def __str__(self) -> str:
        if not self.valid:
            return "Invalid result!"
        return (
            "Comparison Results:\n"
            f" - {self.num_same} same, {self.num_different} different\n"
            f" - {self.num_missing_lhs} / {self.num_missing_rhs} unallocated (lhs / rhs)\n"
            f" - {self.num_lhs_seen_rhs_unseen} / {self.num_rhs_seen_lhs_unseen}"
            " uniquely seen (lhs / rhs)\n"
            f" - {self.rmse} rmse -> [{self.min_error}, {self.max_error}]"
        )


def voxels_same(lhs: GvdVoxel, rhs: GvdVoxel) -> bool:
    return lhs.distance == rhs.distance and lhs.fixed == rhs.fixed


def _count_missing(layer: VoxelLayer, other: VoxelLayer) -> int:
    return sum(
        int(np.count_nonzero(block.observed))
        for idx, block in layer.blocks.items()
        if not other.has_block(idx)
    )


def compare_layers(
    lhs: VoxelLayer,
    rhs: VoxelLayer,
    compare: Callable[[GvdVoxel, GvdVoxel], bool] = voxels_same,
) -> LayerComparisonResult:
    """Compare two layers of identical geometry voxel by voxel.

    Layers with different voxel size or block size give an invalid result.
    """

    result = LayerComparisonResult()
    if lhs.voxel_size != rhs.voxel_size or lhs.voxels_per_side != rhs.voxels_per_side:
        return result
    result.valid = True
    result.num_missing_lhs = _count_missing(rhs, lhs)
    result.num_missing_rhs = _count_missing(lhs, rhs)

    errors: List[float] = []
    for idx in sorted(lhs.blocks):
        rhs_block = rhs.get_block(idx)
        if rhs_block is None:
            continue
        lhs_block = lhs.blocks[idx]
        for linear in range(lhs_block.num_voxels):
            lhs_seen = bool(lhs_block.observed[linear])
            rhs_seen = bool(rhs_block.observed[linear])
            if not lhs_seen and not rhs_seen:
                result.num_same += 1
                continue
            if not lhs_seen or not rhs_seen:
                result.num_rhs_seen_lhs_unseen += int(not lhs_seen)
                result.num_lhs_seen_rhs_unseen += int(not rhs_seen)
                continue
            lhs_voxel = lhs_block.get_voxel(linear)
            rhs_voxel = rhs_block.get_voxel(linear)
            if compare(lhs_voxel, rhs_voxel):
                result.num_same += 1
            else:
                result.num_different += 1
            errors.append(abs(lhs_voxel.distance - rhs_voxel.distance))

    if errors:
        err = np.asarray(errors)
        result.min_error = float(err.min())
        result.max_error = float(err.max())
        # normalised by every compared voxel, including those unseen in both
        result.rmse = float(np.sqrt(np.sum(err**2) / (result.num_same + result.num_different)))
    return result


__all__ = [
    "GvdVoxel",
    "VoxelBlock",
    "VoxelLayer",
    "LayerComparisonResult",
    "compare_layers",
    "voxels_same",
]
