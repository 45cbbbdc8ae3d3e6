import math

import pytest

from dsg_mem.spatial import GvdVoxel, VoxelLayer, compare_layers


def test_index_arithmetic() -> None:
    layer = VoxelLayer(voxel_size=0.1, voxels_per_side=8)
    assert layer.block_index((9, 0, 0)) == (1, 0, 0)
    assert layer.split_index((9, 0, 0)) == ((1, 0, 0), 1)
    assert layer.split_index((-1, 0, 0)) == ((-1, 0, 0), 7)
    assert layer.global_index((-1, 0, 0), 7) == (-1, 0, 0)
    assert layer.index_from_point((-0.05, 0.25, 0.0)) == (-1, 2, 0)
    assert layer.voxel_center((0, 0, 0)) == pytest.approx([0.05, 0.05, 0.05])


def test_set_get_and_observed() -> None:
    layer = VoxelLayer(voxel_size=0.1, voxels_per_side=4)
    assert layer.get_voxel((5, 5, 5)) is None
    layer.set_voxel((5, 5, 5), GvdVoxel(observed=True, distance=0.3))
    layer.set_voxel((6, 5, 5), GvdVoxel(observed=False, distance=0.1))
    assert layer.get_voxel((5, 5, 5)).distance == pytest.approx(0.3)
    assert layer.is_observed((5, 5, 5))
    assert not layer.is_observed((6, 5, 5))
    assert list(layer.observed_indices()) == [(5, 5, 5)]
    assert len(layer) == 1


def test_invalid_layer_geometry() -> None:
    with pytest.raises(ValueError):
        VoxelLayer(voxel_size=0.0, voxels_per_side=8)


def test_identical_layers_compare_equal() -> None:
    lhs = VoxelLayer(0.1, 8)
    rhs = VoxelLayer(0.1, 8)
    for layer in (lhs, rhs):
        layer.set_voxel((0, 0, 0), GvdVoxel(observed=True, distance=1.0))
    result = compare_layers(lhs, rhs)
    assert result.valid
    assert result.num_same == 512
    assert result.num_different == 0
    assert result.rmse == 0.0
    assert result.max_error == 0.0


def test_distance_mismatch_and_unique_observations() -> None:
    lhs = VoxelLayer(0.1, 8)
    rhs = VoxelLayer(0.1, 8)
    lhs.set_voxel((0, 0, 0), GvdVoxel(observed=True, distance=1.0))
    rhs.set_voxel((0, 0, 0), GvdVoxel(observed=True, distance=1.5))
    lhs.set_voxel((1, 0, 0), GvdVoxel(observed=True))
    rhs.set_voxel((9, 0, 0), GvdVoxel(observed=True))
    rhs.set_voxel((10, 0, 0), GvdVoxel(observed=True))

    result = compare_layers(lhs, rhs)
    assert result.num_different == 1
    assert result.num_same == 510
    assert result.num_lhs_seen_rhs_unseen == 1
    assert result.num_rhs_seen_lhs_unseen == 0
    assert result.num_missing_lhs == 2
    assert result.num_missing_rhs == 0
    assert result.min_error == pytest.approx(0.5)
    assert result.max_error == pytest.approx(0.5)
    assert result.rmse == pytest.approx(math.sqrt(0.25 / 511))
    assert "1 different" in str(result)


def test_mismatched_geometry_is_invalid() -> None:
    result = compare_layers(VoxelLayer(0.1, 8), VoxelLayer(0.2, 8))
    assert not result.valid
    assert str(result) == "Invalid result!"
