# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Per-layer update and merge passes.

Summary
-------
Each ``update_*`` function repositions the nodes of one layer from the
optimizer's solved sets and, when merging is allowed, folds near-duplicate
nodes together. All five share the signature::

    update_x(graph, places_values, mesh_values, allow_node_merging, **thresholds)

so the pipeline can bind thresholds once with :func:`functools.partial` and
call every layer the same way. Nodes whose key is not in the solved set are
left where they are; a layer the graph does not have yields an empty
:class:`UpdateResult`.

Merging
-------
:func:`merge_layer_nodes` visits nodes in ascending id order against a
position snapshot taken before the first merge. Every live neighbour within
the threshold that passes the layer predicate is folded into the lowest id
of the group, so the older node always survives. Merges do not move the
survivor, which makes a second pass over unchanged inputs a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np

from dsg_mem.graph.keys import format_key
from dsg_mem.graph.scene_graph import SceneGraph
from dsg_mem.graph.types import (
    AgentNodeAttributes,
    BoundingBox,
    BoundingBoxType,
    LayerId,
    Node,
    NodeAttributes,
    ObjectNodeAttributes,
    PlaceNodeAttributes,
)
from dsg_mem.spatial.nearest import NearestNodeFinder, NearestVoxelFinder, nodes_within
from dsg_mem.spatial.voxels import VoxelLayer

from .values import Values, rotation_of, translation_of

logger = logging.getLogger(__name__)

MergePredicate = Callable[[Node, Node], bool]


@dataclass
class UpdateResult:
    """What one layer pass changed.

    ``merges`` maps each removed node id to the id it was folded into.
    """

    layer: Optional[LayerId] = None
    updated: List[int] = field(default_factory=list)
    merges: Dict[int, int] = field(default_factory=dict)

    @property
    def num_updated(self) -> int:
        return len(self.updated)

    @property
    def num_merged(self) -> int:
        return len(self.merges)


LayerUpdateFunc = Callable[[SceneGraph, Values, Values, bool], UpdateResult]


# ----------------------------------------------------------------------
# Geometry helpers
def _shift_geometry(attrs: NodeAttributes, delta: np.ndarray) -> None:
    if attrs.points is not None:
        attrs.points = attrs.points + delta
    box = attrs.bounding_box
    if box is None:
        return
    if box.type is BoundingBoxType.AABB:
        attrs.bounding_box = BoundingBox(box.min + delta, box.max + delta)
    else:
        attrs.bounding_box = BoundingBox(
            box.min, box.max, box.type, box.position + delta, box.orientation
        )


def _move(attrs: NodeAttributes, position: np.ndarray) -> bool:
    """Move ``attrs`` and its geometry to ``position``; report a change."""

    delta = position - attrs.position
    if not np.any(delta):
        return False
    _shift_geometry(attrs, delta)
    attrs.position = position
    return True


# ----------------------------------------------------------------------
# Merging
def merge_layer_nodes(
    graph: SceneGraph,
    layer: LayerId,
    threshold: float,
    predicate: Optional[MergePredicate] = None,
    max_candidates: int = 0,
) -> Dict[int, int]:
    """Fold near-duplicate nodes of ``layer``; return ``{removed: survivor}``.

    Parameters
    ----------
    graph : SceneGraph
        Graph to mutate.
    layer : LayerId
        Ranked layer to merge. Missing layers are a no-op.
    threshold : float
        Inclusive merge distance in metres; non-positive disables merging.
    predicate : MergePredicate, optional
        Extra pairwise test both nodes must pass.
    max_candidates : int, optional
        Upper bound on nodes folded into one node per visit, nearest
        first; ``0`` means no bound. Capped passes are not guaranteed to
        be idempotent.
    """

    target = graph.try_get_layer(layer)
    if target is None or threshold <= 0 or len(target) < 2:
        return {}
    ids = target.node_ids()
    finder = NearestNodeFinder(target, ids)
    snapshot = {node_id: target.nodes[node_id].attributes.position.copy() for node_id in ids}
    merges: Dict[int, int] = {}

    for node_id in ids:
        if node_id in merges:
            continue
        node = target.nodes[node_id]
        group = [
            other
            for other, _ in nodes_within(finder, snapshot[node_id], threshold)
            if other != node_id
            and other not in merges
            and (predicate is None or predicate(node, target.nodes[other]))
        ]
        if max_candidates > 0:
            group = group[:max_candidates]
        if not group:
            continue
        survivor = min([node_id, *group])
        for other in sorted({node_id, *group} - {survivor}):
            logger.debug(
                "Merging %s into %s (%s)", format_key(other), format_key(survivor), layer.name
            )
            graph.merge_nodes(other, survivor)
            merges[other] = survivor
    # a survivor may itself be folded later when candidates are capped
    for removed, survivor in merges.items():
        while survivor in merges:
            survivor = merges[survivor]
        merges[removed] = survivor
    return merges


def _same_label(lhs: Node, rhs: Node) -> bool:
    return lhs.attributes.semantic_label == rhs.attributes.semantic_label


def _places_compatible(tolerance: float) -> MergePredicate:
    def check(lhs: Node, rhs: Node) -> bool:
        a, b = lhs.attributes, rhs.attributes
        if not isinstance(a, PlaceNodeAttributes) or not isinstance(b, PlaceNodeAttributes):
            return False
        if a.active or b.active:
            return False
        return abs(a.distance - b.distance) < tolerance

    return check


def _finish(
    graph: SceneGraph,
    result: UpdateResult,
    allow_node_merging: bool,
    threshold: float,
    predicate: Optional[MergePredicate],
    max_candidates: int,
) -> UpdateResult:
    if allow_node_merging:
        result.merges = merge_layer_nodes(
            graph, result.layer, threshold, predicate, max_candidates
        )
        removed = set(result.merges)
        result.updated = [n for n in result.updated if n not in removed]
    return result


# ----------------------------------------------------------------------
# Layer passes
def update_objects(
    graph: SceneGraph,
    places_values: Values,
    mesh_values: Values,
    allow_node_merging: bool,
    *,
    pos_threshold_m: float = 0.0,
    max_candidates: int = 0,
) -> UpdateResult:
    """Reposition objects from the mesh solution.

    A solved object key wins. Otherwise the object is moved to the centroid
    of its solved mesh vertices and, unless it carries an oriented box, its
    box is refit around them. Only objects with equal semantic labels merge.
    """

    if not graph.has_layer(LayerId.OBJECTS):
        return UpdateResult()
    result = UpdateResult(LayerId.OBJECTS)
    for node in graph.nodes(LayerId.OBJECTS):
        attrs = node.attributes
        if node.id in mesh_values:
            if _move(attrs, translation_of(mesh_values[node.id])):
                result.updated.append(node.id)
            continue
        if not isinstance(attrs, ObjectNodeAttributes):
            continue
        solved = [
            translation_of(mesh_values[k]) for k in attrs.mesh_connections if k in mesh_values
        ]
        if not solved:
            continue
        vertices = np.stack(solved)
        centroid = vertices.mean(axis=0)
        moved = _move(attrs, centroid)
        box = attrs.bounding_box
        if box is None or box.type is BoundingBoxType.AABB:
            refit = BoundingBox.from_points(vertices)
            if box is None or not (
                np.array_equal(refit.min, box.min) and np.array_equal(refit.max, box.max)
            ):
                attrs.bounding_box = refit
                moved = True
        if moved:
            result.updated.append(node.id)
    return _finish(graph, result, allow_node_merging, pos_threshold_m, _same_label, max_candidates)


def update_places(
    graph: SceneGraph,
    places_values: Values,
    mesh_values: Values,
    allow_node_merging: bool,
    *,
    pos_threshold_m: float = 0.0,
    distance_tolerance_m: float = 0.0,
    max_candidates: int = 0,
) -> UpdateResult:
    """Reposition places from the places solution.

    Two places merge only if they are within ``pos_threshold_m``, their
    clearances differ by less than ``distance_tolerance_m`` and neither is
    active.
    """

    if not graph.has_layer(LayerId.PLACES):
        return UpdateResult()
    result = UpdateResult(LayerId.PLACES)
    for node in graph.nodes(LayerId.PLACES):
        if node.id in places_values and _move(
            node.attributes, translation_of(places_values[node.id])
        ):
            result.updated.append(node.id)
    return _finish(
        graph,
        result,
        allow_node_merging,
        pos_threshold_m,
        _places_compatible(distance_tolerance_m),
        max_candidates,
    )


def _update_from_children(
    graph: SceneGraph,
    layer: LayerId,
    allow_node_merging: bool,
    pos_threshold_m: float,
    max_candidates: int,
) -> UpdateResult:
    if not graph.has_layer(layer):
        return UpdateResult()
    result = UpdateResult(layer)
    for node in graph.nodes(layer):
        children = [graph.find_node(c) for c in node.children.values()]
        if not children:
            continue
        centroid = np.mean([c.attributes.position for c in children], axis=0)
        if _move(node.attributes, centroid):
            result.updated.append(node.id)
    return _finish(graph, result, allow_node_merging, pos_threshold_m, None, max_candidates)


def update_rooms(
    graph: SceneGraph,
    places_values: Values,
    mesh_values: Values,
    allow_node_merging: bool,
    *,
    pos_threshold_m: float = 0.0,
    max_candidates: int = 0,
) -> UpdateResult:
    """Recompute room positions as the centroid of their children."""

    return _update_from_children(
        graph, LayerId.ROOMS, allow_node_merging, pos_threshold_m, max_candidates
    )


def update_buildings(
    graph: SceneGraph,
    places_values: Values,
    mesh_values: Values,
    allow_node_merging: bool,
    *,
    pos_threshold_m: float = 0.0,
    max_candidates: int = 0,
) -> UpdateResult:
    """Recompute building positions as the centroid of their children."""

    return _update_from_children(
        graph, LayerId.BUILDINGS, allow_node_merging, pos_threshold_m, max_candidates
    )


def update_agents(
    graph: SceneGraph,
    places_values: Values,
    mesh_values: Values,
    allow_node_merging: bool,
    **_unused: float,
) -> UpdateResult:
    """Reposition agent poses; agents are never merged."""

    if not graph.dynamic_layers:
        return UpdateResult()
    result = UpdateResult(LayerId.AGENTS)
    for node in graph.nodes(LayerId.AGENTS):
        attrs = node.attributes
        key = node.id
        if isinstance(attrs, AgentNodeAttributes) and attrs.external_key is not None:
            key = attrs.external_key
        if key not in mesh_values:
            continue
        value = mesh_values[key]
        moved = _move(attrs, translation_of(value))
        rotation = rotation_of(value)
        if isinstance(attrs, AgentNodeAttributes) and rotation is not None:
            moved = moved or not np.array_equal(rotation, attrs.orientation)
            attrs.orientation = rotation
        if moved:
            result.updated.append(node.id)
    return result


LAYER_UPDATE_FUNCS: Dict[LayerId, Callable[..., UpdateResult]] = {
    LayerId.OBJECTS: update_objects,
    LayerId.PLACES: update_places,
    LayerId.ROOMS: update_rooms,
    LayerId.BUILDINGS: update_buildings,
    LayerId.AGENTS: update_agents,
}


# ----------------------------------------------------------------------
# Re-anchoring
def reanchor_places(
    graph: SceneGraph,
    voxel_layer: VoxelLayer,
    skeleton_indices: Iterable[Sequence[int]],
) -> List[int]:
    """Move places whose voxel is no longer observed onto the skeleton.

    Each inactive place with a recorded ``voxel_index`` that the distance
    field no longer observes is moved to the nearest observed skeleton
    voxel, taking its centre as position and its distance as clearance.
    Returns the ids of the moved places.
    """

    if not graph.has_layer(LayerId.PLACES):
        return []
    candidates = [tuple(idx) for idx in skeleton_indices if voxel_layer.is_observed(idx)]
    finder = NearestVoxelFinder(candidates)
    if len(finder) == 0:
        return []
    moved: List[int] = []
    for node in graph.nodes(LayerId.PLACES):
        attrs = node.attributes
        if not isinstance(attrs, PlaceNodeAttributes) or attrs.active:
            continue
        if attrs.voxel_index is None or voxel_layer.is_observed(attrs.voxel_index):
            continue
        found: List[tuple] = []
        finder.find(attrs.voxel_index, 1, lambda idx, _rank, _dist: found.append(idx))
        new_index = found[0]
        voxel = voxel_layer.get_voxel(new_index)
        attrs.position = voxel_layer.voxel_center(new_index)
        attrs.voxel_index = new_index
        attrs.distance = voxel.distance
        moved.append(node.id)
        logger.debug("Re-anchored place %s to voxel %s", format_key(node.id), new_index)
    return moved


__all__ = [
    "UpdateResult",
    "LayerUpdateFunc",
    "MergePredicate",
    "merge_layer_nodes",
    "update_objects",
    "update_places",
    "update_rooms",
    "update_buildings",
    "update_agents",
    "reanchor_places",
    "LAYER_UPDATE_FUNCS",
]
