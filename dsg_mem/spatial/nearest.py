# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Nearest-neighbour finders over node positions and voxel indices.

Summary
-------
Three finders share one query contract: ``find`` reports up to ``k``
nearest points through a callback, closest first, ties broken by ascending
id, never more than the number of indexed points. Candidates come from a
FAISS flat L2 index (float32); the final order is decided on exact float64
(or integer, for voxels) distances, after widening the candidate set to
every point within the float32 ``k``-th distance so ties are not lost.

Points are stored in float32 relative to the first point an index sees,
and the widening slack grows with the extent of the indexed data, so
float32 rounding cannot drop a true neighbour far from the world origin.

With ``skip_first`` the node finders drop the hit that is the query point:
the hit with ``query_id`` when one is given, otherwise the first hit at
distance zero. Colocated nodes therefore need ``query_id`` to tell them
apart.

See Also
--------
dsg_mem.spatial.furthest
"""

from __future__ import annotations

import logging
import warnings
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from dsg_mem.graph.layer import Layer
from dsg_mem.graph.scene_graph import SceneGraph
from dsg_mem.graph.types import LayerId, Node

with warnings.catch_warnings():
    warnings.filterwarnings(
        "ignore",
        message=r"(?i)builtin type .*swig.* has no __module__ attribute",
        category=DeprecationWarning,
    )
    import faiss  # type: ignore

logger = logging.getLogger(__name__)

NodeCallback = Callable[[int, int, float], None]
VoxelCallback = Callable[[Tuple[int, int, int], int, int], None]
DynamicNodeCallback = Callable[[int, float], None]

# relative/absolute slack on squared float32 distances when widening ties
_RADIUS_RTOL = 1e-5
_RADIUS_ATOL = 1e-6
# float32 squared-distance error bound per unit of squared extent
_EXTENT_SLACK = 2.0**-18


class NodeFinder(Protocol):
    """Query contract of the static node finder."""

    def find(
        self,
        position: Sequence[float],
        num_to_find: int,
        skip_first: bool,
        callback: NodeCallback,
        query_id: Optional[int] = None,
    ) -> None:
        """Report nearest nodes to ``position``."""


class VoxelFinder(Protocol):
    """Query contract of the voxel finder."""

    def find(self, index: Sequence[int], num_to_find: int, callback: VoxelCallback) -> None:
        """Report nearest voxel indices to ``index``."""


class DynamicNodeFinder(Protocol):
    """Query contract of the incrementally maintained node finder."""

    def add_nodes(self, new_nodes: Iterable[int]) -> None:
        """Index ``new_nodes``."""

    def remove_node(self, to_remove: int) -> None:
        """Stop indexing ``to_remove``."""

    def find(
        self,
        position: Sequence[float],
        num_to_find: int,
        skip_first: bool,
        callback: DynamicNodeCallback,
        query_id: Optional[int] = None,
    ) -> None:
        """Report nearest nodes to ``position``."""


class _PointIndex:
    """Exact k-NN over labelled 3-D points backed by ``IndexIDMap2(IndexFlatL2)``.

    Labels are non-negative ``int64`` values chosen by the caller. FAISS
    holds points shifted by ``origin`` (the first point added).
    """

    def __init__(self) -> None:
        self.index = faiss.IndexIDMap2(faiss.IndexFlatL2(3))
        self._points: Dict[int, np.ndarray] = {}
        self.origin: Optional[np.ndarray] = None
        # largest squared norm of any shifted point ever added
        self._extent = 0.0

    def __len__(self) -> int:
        return len(self._points)

    def __contains__(self, label: int) -> bool:
        return label in self._points

    def add(self, labels: Sequence[int], points: np.ndarray) -> None:
        if len(labels) == 0:
            return
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        for label, pt in zip(labels, pts):
            self._points[int(label)] = pt
        if self.origin is None:
            self.origin = pts[0].copy()
        shifted = pts - self.origin
        self._extent = max(self._extent, float(np.max(np.sum(shifted**2, axis=1))))
        self.index.add_with_ids(
            np.ascontiguousarray(shifted, dtype="float32"), np.asarray(labels, dtype="int64")
        )

    def remove(self, label: int) -> bool:
        if self._points.pop(int(label), None) is None:
            return False
        self.index.remove_ids(np.array([label], dtype="int64"))
        return True

    def search(
        self,
        query: Sequence[float],
        k: int,
        tiebreak: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    ) -> List[Tuple[int, float]]:
        """Return ``(label, squared distance)`` pairs, exact and tie-ordered.

        Ties are ordered by label, or by ``tiebreak(labels)`` when given.
        """

        n = len(self._points)
        if k <= 0 or n == 0:
            return []
        k_eff = min(int(k), n)
        q = np.asarray(query, dtype=float).reshape(1, 3)
        q_shifted = q - self.origin
        q32 = np.ascontiguousarray(q_shifted, dtype="float32")
        dists, _ = self.index.search(q32, k_eff)
        kth = float(np.max(dists[0][:k_eff]))
        slack = _EXTENT_SLACK * (self._extent + float(np.sum(q_shifted**2)))
        radius = kth * (1.0 + _RADIUS_RTOL) + _RADIUS_ATOL + slack
        lims, _, labels = self.index.range_search(q32, radius)
        candidates = labels[lims[0] : lims[1]]
        if len(candidates) < k_eff:  # pragma: no cover - float32 edge case
            _, top = self.index.search(q32, k_eff)
            candidates = np.union1d(candidates, top[0][top[0] >= 0])
        pts = np.stack([self._points[int(c)] for c in candidates])
        exact = np.sum((pts - q) ** 2, axis=1)
        keys = candidates if tiebreak is None else tiebreak(candidates)
        order = np.lexsort((keys, exact))[:k_eff]
        return [(int(candidates[i]), float(exact[i])) for i in order]


def _drop_query(
    hits: List[Tuple[int, float]],
    num_to_find: int,
    query_id: Optional[int],
    node_of: Callable[[int], int],
) -> List[Tuple[int, float]]:
    """Remove the hit standing for the query point and trim to ``num_to_find``."""

    for i, (label, sq_dist) in enumerate(hits):
        is_query = sq_dist == 0.0 if query_id is None else node_of(label) == query_id
        if is_query:
            hits = hits[:i] + hits[i + 1 :]
            break
    return hits[: max(0, num_to_find)]


class NearestNodeFinder:
    """Static finder over a snapshot of node positions.

    Parameters
    ----------
    layer : Layer
        Layer holding the nodes.
    nodes : Iterable[int]
        Node ids to index; ids missing from ``layer`` are skipped.
    """

    def __init__(self, layer: Layer, nodes: Iterable[int]) -> None:
        self._ids = sorted({n for n in nodes if layer.has_node(n)})
        ids, positions = layer.positions(self._ids)
        self._index = _PointIndex()
        self._index.add(list(range(len(ids))), positions)

    def __len__(self) -> int:
        return len(self._ids)

    def find(
        self,
        position: Sequence[float],
        num_to_find: int,
        skip_first: bool,
        callback: NodeCallback,
        query_id: Optional[int] = None,
    ) -> None:
        """Call ``callback(node_id, rank, distance)`` for the nearest nodes.

        ``skip_first`` drops the query point itself, for queries made from
        the position of an indexed node: the hit for ``query_id`` when
        given, otherwise the first hit at distance zero.
        """

        # rows follow ascending node id, so row order is id order for ties
        hits = self._index.search(position, num_to_find + (1 if skip_first else 0))
        if skip_first:
            hits = _drop_query(hits, num_to_find, query_id, lambda row: self._ids[row])
        for rank, (row, sq_dist) in enumerate(hits):
            callback(self._ids[row], rank, float(np.sqrt(sq_dist)))


class NearestVoxelFinder:
    """Static finder over global voxel indices.

    Distances reported to the callback are squared integer distances.
    """

    def __init__(self, indices: Iterable[Sequence[int]]) -> None:
        raw = np.asarray([tuple(i) for i in indices], dtype="int64").reshape(-1, 3)
        # sorted and deduplicated, so ties resolve in lexicographic index order
        self._indices = np.unique(raw, axis=0) if len(raw) else raw
        self._index = _PointIndex()
        self._index.add(list(range(len(self._indices))), self._indices.astype(float))

    def __len__(self) -> int:
        return len(self._indices)

    def find(self, index: Sequence[int], num_to_find: int, callback: VoxelCallback) -> None:
        query = np.asarray(index, dtype="int64").reshape(3)
        for rank, (row, _) in enumerate(self._index.search(query.astype(float), num_to_find)):
            found = self._indices[row]
            sq_dist = int(np.sum((found - query) ** 2))
            callback((int(found[0]), int(found[1]), int(found[2])), rank, sq_dist)


class DynamicNearestNodeFinder:
    """Node finder that tracks additions and removals without rebuilding.

    Positions are captured when a node is added; a moved node must be
    removed and re-added to be found at its new position.
    """

    def __init__(self, graph: SceneGraph, layer: LayerId) -> None:
        self._graph = graph
        self._layer_id = LayerId(layer)
        self._index = _PointIndex()
        # node ids are arbitrary 64-bit keys; labels are dense insertion slots
        self._slot_of: Dict[int, int] = {}
        self._node_of: Dict[int, int] = {}
        self._next_slot = 0

    def __len__(self) -> int:
        return len(self._slot_of)

    def _lookup(self) -> Optional[Callable[[int], Optional[Node]]]:
        if self._layer_id.is_dynamic:
            # agent nodes live in per-prefix layers
            def find_agent(node_id: int) -> Optional[Node]:
                node = self._graph.find_node(node_id)
                return node if node is not None and node.layer is self._layer_id else None

            return find_agent
        layer = self._graph.try_get_layer(self._layer_id)
        return None if layer is None else layer.get_node

    def add_nodes(self, new_nodes: Iterable[int]) -> None:
        lookup = self._lookup()
        if lookup is None:
            logger.warning("Cannot index nodes of missing layer %s", self._layer_id.name)
            return
        slots: List[int] = []
        points: List[np.ndarray] = []
        for node_id in sorted(set(new_nodes)):
            node = lookup(node_id)
            if node is None or node_id in self._slot_of:
                continue
            slot = self._next_slot
            self._next_slot += 1
            self._slot_of[node_id] = slot
            self._node_of[slot] = node_id
            slots.append(slot)
            points.append(node.attributes.position)
        if slots:
            self._index.add(slots, np.stack(points))

    def remove_node(self, to_remove: int) -> None:
        slot = self._slot_of.pop(to_remove, None)
        if slot is None:
            return
        del self._node_of[slot]
        self._index.remove(slot)

    def find(
        self,
        position: Sequence[float],
        num_to_find: int,
        skip_first: bool,
        callback: DynamicNodeCallback,
        query_id: Optional[int] = None,
    ) -> None:
        """Call ``callback(node_id, distance)`` for the nearest indexed nodes.

        ``skip_first`` and ``query_id`` behave as in
        :meth:`NearestNodeFinder.find`.
        """

        hits = self._index.search(
            position,
            num_to_find + (1 if skip_first else 0),
            tiebreak=lambda slots: np.array([self._node_of[int(s)] for s in slots], dtype="int64"),
        )
        if skip_first:
            hits = _drop_query(hits, num_to_find, query_id, lambda slot: self._node_of[slot])
        for slot, sq_dist in hits:
            node_id = self._node_of[slot]
            callback(node_id, float(np.sqrt(sq_dist)))


def nodes_within(
    finder: NearestNodeFinder,
    position: Sequence[float],
    radius: float,
    *,
    batch: int = 8,
) -> List[Tuple[int, float]]:
    """Return every indexed node within ``radius`` as ``(id, distance)``.

    Repeats :meth:`NearestNodeFinder.find` with a growing ``k`` until the
    furthest hit leaves the radius or the index is exhausted.
    """

    k = max(1, batch)
    while True:
        hits: List[Tuple[int, float]] = []
        finder.find(position, k, False, lambda node_id, _rank, dist: hits.append((node_id, dist)))
        if len(hits) < k or hits[-1][1] > radius:
            return [(node_id, dist) for node_id, dist in hits if dist <= radius]
        k *= 2


__all__ = [
    "NodeFinder",
    "VoxelFinder",
    "DynamicNodeFinder",
    "NearestNodeFinder",
    "NearestVoxelFinder",
    "DynamicNearestNodeFinder",
    "nodes_within",
]
