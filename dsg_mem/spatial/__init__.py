# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Spatial queries over node positions and voxel indices."""

from .furthest import FurthestIndexResult, find_furthest_index_from_line, split_skeleton_path
from .nearest import (
    DynamicNearestNodeFinder,
    DynamicNodeFinder,
    NearestNodeFinder,
    NearestVoxelFinder,
    NodeFinder,
    VoxelFinder,
    nodes_within,
)
from .voxels import (
    GvdVoxel,
    LayerComparisonResult,
    VoxelBlock,
    VoxelLayer,
    compare_layers,
    voxels_same,
)

__all__ = [
    "FurthestIndexResult",
    "find_furthest_index_from_line",
    "split_skeleton_path",
    "DynamicNearestNodeFinder",
    "DynamicNodeFinder",
    "NearestNodeFinder",
    "NearestVoxelFinder",
    "NodeFinder",
    "VoxelFinder",
    "nodes_within",
    "GvdVoxel",
    "LayerComparisonResult",
    "VoxelBlock",
    "VoxelLayer",
    "compare_layers",
    "voxels_same",
]
