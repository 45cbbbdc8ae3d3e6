# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Layered scene graph store.

Summary
-------
``SceneGraph`` owns every layer, node and edge. Ranked layers (objects,
places, rooms, buildings) are created up front; agent layers are created on
demand per robot prefix. Inter-layer edges always point from parent (higher
layer) to child (lower layer) and receive ids from a monotonic counter.

Side Effects
------------
All mutations run under an internal re-entrant lock so that node/edge
removal is atomic with respect to other mutations. Readers that need a
stable view across several calls should go through
:class:`dsg_mem.common.shared_graph.SharedGraphState`.

Examples
--------
>>> from dsg_mem.graph.types import NodeAttributes
>>> g = SceneGraph()
>>> g.add_node(LayerId.PLACES, 1, NodeAttributes())
True
>>> g.add_node(LayerId.ROOMS, 2, NodeAttributes())
True
>>> g.connect(1, 2).source
2
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

import numpy as np

from .keys import format_key
from .layer import Layer
from .types import (
    RANKED_LAYERS,
    Edge,
    GraphInvariantError,
    LayerId,
    Node,
    NodeAttributes,
    ObjectNodeAttributes,
)

_log = logging.getLogger(__name__)


def default_layer_parents(layer_ids: Iterable[LayerId]) -> Dict[LayerId, LayerId]:
    """Chain ranked layers to the next present higher layer.

    Agents hang below places when a places layer is present.
    """

    ranked = sorted(lid for lid in set(layer_ids) if not lid.is_dynamic)
    parents = {child: parent for child, parent in zip(ranked, ranked[1:])}
    if LayerId.PLACES in ranked:
        parents[LayerId.AGENTS] = LayerId.PLACES
    return parents


class SceneGraph:
    """Hierarchical multi-layer graph.

    Parameters
    ----------
    layer_ids : Iterable[LayerId], optional
        Ranked layers to create. Defaults to all four ranked layers.
    layer_parents : Mapping[LayerId, LayerId], optional
        Explicit child → parent layer overrides applied on top of the
        default chain.
    strict_edge_direction : bool, optional
        Reject inter-layer edges submitted child-first instead of fixing
        them, by default ``False``.
    """

    def __init__(
        self,
        layer_ids: Iterable[LayerId] = RANKED_LAYERS,
        *,
        layer_parents: Optional[Mapping[LayerId, LayerId]] = None,
        strict_edge_direction: bool = False,
    ) -> None:
        ranked = sorted({LayerId(lid) for lid in layer_ids} - {LayerId.AGENTS})
        if not ranked:
            raise ValueError("scene graph needs at least one ranked layer")
        self.layers: Dict[LayerId, Layer] = {lid: Layer(lid) for lid in ranked}
        self.dynamic_layers: Dict[str, Layer] = {}
        self.inter_layer_edges: Dict[int, Edge] = {}
        self.strict_edge_direction = strict_edge_direction
        self._parents = default_layer_parents(ranked)
        for child, parent in (layer_parents or {}).items():
            self._set_parent_layer(LayerId(child), LayerId(parent))
        self._node_layers: Dict[int, Layer] = {}
        self._next_edge_id = 0
        self._lock = threading.RLock()
        self._log = {
            "nodes_added": 0,
            "nodes_removed": 0,
            "edges_added": 0,
            "edges_removed": 0,
            "direction_fixes": 0,
            "merges": 0,
        }

    def _set_parent_layer(self, child: LayerId, parent: LayerId) -> None:
        if parent.is_dynamic or parent not in self.layers:
            raise GraphInvariantError(
                f"parent layer {parent.name} is not a configured ranked layer"
            )
        if not child.is_dynamic and (child not in self.layers or child >= parent):
            raise GraphInvariantError(
                f"invalid layer ordering: {child.name} cannot be a child of {parent.name}"
            )
        self._parents[child] = parent

    # ------------------------------------------------------------------
    # Pickling support for snapshots; the lock is process-local.
    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        del state["_lock"]
        return state

    def __setstate__(self, state: dict) -> None:
        self.__dict__.update(state)
        self._lock = threading.RLock()

    def clone(self) -> "SceneGraph":
        """Deep copy of the whole graph."""

        with self._lock:
            return copy.deepcopy(self)

    def log_status(self) -> dict:
        """Return a copy of internal counters."""

        return dict(self._log)

    # ------------------------------------------------------------------
    # Layers
    @property
    def layer_ids(self) -> List[LayerId]:
        return sorted(self.layers)

    def parent_layer(self, layer_id: LayerId) -> Optional[LayerId]:
        return self._parents.get(LayerId(layer_id))

    def is_parent_layer(self, parent: LayerId, child: LayerId) -> bool:
        return self._parents.get(child) == parent

    def has_layer(self, layer_id: LayerId) -> bool:
        return LayerId(layer_id) in self.layers

    def get_layer(self, layer_id: LayerId) -> Layer:
        """Return a ranked layer; an unknown layer is a caller bug."""

        layer = self.layers.get(LayerId(layer_id))
        if layer is None:
            raise GraphInvariantError(f"missing layer: {LayerId(layer_id).name}")
        return layer

    def try_get_layer(self, layer_id: LayerId) -> Optional[Layer]:
        return self.layers.get(LayerId(layer_id))

    def get_dynamic_layer(self, prefix: str) -> Optional[Layer]:
        return self.dynamic_layers.get(prefix)

    def all_layers(self) -> Iterator[Layer]:
        for lid in sorted(self.layers):
            yield self.layers[lid]
        for prefix in sorted(self.dynamic_layers):
            yield self.dynamic_layers[prefix]

    # ------------------------------------------------------------------
    # Nodes
    def num_nodes(self) -> int:
        return len(self._node_layers)

    def num_edges(self) -> int:
        return len(self.inter_layer_edges) + sum(lay.num_edges() for lay in self.all_layers())

    def has_node(self, node_id: int) -> bool:
        return node_id in self._node_layers

    def find_node(self, node_id: int) -> Optional[Node]:
        layer = self._node_layers.get(node_id)
        return None if layer is None else layer.nodes[node_id]

    def get_node(self, layer_id: LayerId, node_id: int) -> Optional[Node]:
        """Look up ``node_id`` in ``layer_id``; ``None`` when absent."""

        layer_id = LayerId(layer_id)
        if layer_id.is_dynamic:
            present = bool(self.dynamic_layers)
            layer = self._node_layers.get(node_id)
            if layer is not None and layer.id is not LayerId.AGENTS:
                layer = None
        else:
            layer = self.layers.get(layer_id)
            present = layer is not None
        if not present:
            _log.error(
                "Requested node %s from missing layer %s", format_key(node_id), layer_id.name
            )
            return None
        node = None if layer is None else layer.get_node(node_id)
        if node is None:
            _log.error("Requested missing node %s in layer %s", format_key(node_id), layer_id.name)
        return node

    def nodes(self, layer_id: LayerId) -> List[Node]:
        """Nodes of ``layer_id`` in ascending id order (all agents for ``AGENTS``)."""

        layer_id = LayerId(layer_id)
        if layer_id.is_dynamic:
            return [n for lay in self.dynamic_layers.values() for n in lay]
        layer = self.layers.get(layer_id)
        if layer is None:
            return []
        return [layer.nodes[i] for i in layer.node_ids()]

    def add_node(self, layer_id: LayerId, node_id: int, attributes: NodeAttributes) -> bool:
        """Insert a node into a ranked layer.

        Returns ``False`` (and logs) when ``node_id`` already exists anywhere
        in the graph.
        """

        layer_id = LayerId(layer_id)
        if layer_id.is_dynamic:
            raise GraphInvariantError("agent nodes must be added through add_agent_node")
        with self._lock:
            return self._insert_node(self.get_layer(layer_id), node_id, attributes)

    def add_agent_node(self, prefix: str, node_id: int, attributes: NodeAttributes) -> bool:
        """Insert a trajectory node into the agent layer of robot ``prefix``."""

        with self._lock:
            layer = self.dynamic_layers.get(prefix)
            if layer is None:
                layer = Layer(LayerId.AGENTS, prefix)
                self.dynamic_layers[prefix] = layer
            return self._insert_node(layer, node_id, attributes)

    def _insert_node(self, layer: Layer, node_id: int, attributes: NodeAttributes) -> bool:
        if node_id in self._node_layers:
            _log.warning("Node %s already exists; not adding it again", format_key(node_id))
            return False
        layer.add_node(Node(node_id, layer.id, attributes, prefix=layer.prefix))
        self._node_layers[node_id] = layer
        self._log["nodes_added"] += 1
        return True

    def remove_node(self, node_id: int) -> bool:
        """Remove ``node_id`` together with every edge touching it."""

        with self._lock:
            layer = self._node_layers.get(node_id)
            if layer is None:
                return False
            node = layer.nodes[node_id]
            if node.parent_edge is not None:
                self._drop_inter_edge(node.parent_edge)
            for edge_id in list(node.children):
                self._drop_inter_edge(edge_id)
            layer.remove_node(node_id)
            del self._node_layers[node_id]
            self._log["nodes_removed"] += 1
            return True

    # ------------------------------------------------------------------
    # Relations
    def parent_of(self, node_id: int) -> Optional[int]:
        node = self.find_node(node_id)
        if node is None or node.parent_edge is None:
            return None
        return self.inter_layer_edges[node.parent_edge].source

    def children_of(self, node_id: int) -> List[int]:
        node = self.find_node(node_id)
        return [] if node is None else sorted(node.children.values())

    def siblings_of(self, node_id: int) -> List[int]:
        layer = self._node_layers.get(node_id)
        return [] if layer is None else layer.siblings(node_id)

    # ------------------------------------------------------------------
    # Edges
    def has_edge(self, source: int, target: int) -> bool:
        return self._find_edge(source, target) is not None

    def _find_edge(self, source: int, target: int) -> Optional[Edge]:
        src_layer = self._node_layers.get(source)
        tgt_layer = self._node_layers.get(target)
        if src_layer is None or tgt_layer is None:
            return None
        if src_layer is tgt_layer:
            return src_layer.get_edge(source, target)
        for child, parent in ((source, target), (target, source)):
            edge_id = self.find_node(child).parent_edge
            if edge_id is not None and self.inter_layer_edges[edge_id].source == parent:
                return self.inter_layer_edges[edge_id]
        return None

    def connect(self, source: int, target: int, weight: float = 1.0) -> Edge:
        """Add an edge between two existing nodes, resolving their layers."""

        src = self.find_node(source)
        tgt = self.find_node(target)
        if src is None or tgt is None:
            missing = source if src is None else target
            raise GraphInvariantError(f"edge endpoint {format_key(missing)} does not exist")
        return self.add_edge(Edge(src.layer, source, tgt.layer, target, weight=weight))

    def add_edge(self, edge: Edge) -> Edge:
        """Commit ``edge`` and return the committed copy.

        Same-layer edges go to the layer's sibling store. Inter-layer edges
        receive the next global edge id and are oriented parent → child; an
        edge submitted child-first is swapped with a warning unless
        ``strict_edge_direction`` is set. Missing endpoints, non-adjacent
        layers and invalid results raise :class:`GraphInvariantError`.
        """

        with self._lock:
            src = self._require_endpoint(edge.source_layer, edge.source)
            tgt = self._require_endpoint(edge.target_layer, edge.target)
            if edge.source == edge.target:
                raise GraphInvariantError(f"self-loop on {format_key(edge.source)}")
            if not edge.is_inter_layer:
                committed = self._add_sibling_edge(edge)
            else:
                if self.is_parent_layer(tgt.layer, src.layer):
                    if self.strict_edge_direction:
                        raise GraphInvariantError(
                            f"inter-layer edge submitted child-first: "
                            f"{src.layer.name} -> {tgt.layer.name}"
                        )
                    _log.warning(
                        "Inter-layer edge %s -> %s submitted child-first; fixing direction",
                        format_key(edge.source),
                        format_key(edge.target),
                    )
                    self._log["direction_fixes"] += 1
                    edge = edge.swap_direction()
                elif not self.is_parent_layer(src.layer, tgt.layer):
                    raise GraphInvariantError(
                        f"layers {src.layer.name} and {tgt.layer.name} are not parent and child"
                    )
                committed = self._add_inter_edge(edge.source, edge.target, edge.weight)
            if not self.is_edge_valid(committed):
                raise GraphInvariantError(f"committed edge is invalid: {committed}")
            return committed

    def _require_endpoint(self, layer_id: LayerId, node_id: int) -> Node:
        layer_id = LayerId(layer_id)
        if not layer_id.is_dynamic and layer_id not in self.layers:
            raise GraphInvariantError(f"missing layer: {layer_id.name}")
        node = self.find_node(node_id)
        if node is None or node.layer is not layer_id:
            raise GraphInvariantError(
                f"edge endpoint {format_key(node_id)} does not exist in layer {layer_id.name}"
            )
        return node

    def _add_sibling_edge(self, edge: Edge) -> Edge:
        layer = self._node_layers[edge.source]
        if self._node_layers[edge.target] is not layer:
            raise GraphInvariantError("sibling edge between different agent layers")
        committed = layer.add_edge(edge.source, edge.target, edge.weight)
        if committed is None:
            _log.debug(
                "Sibling edge %s - %s already exists",
                format_key(edge.source),
                format_key(edge.target),
            )
            committed = layer.get_edge(edge.source, edge.target)
        else:
            self._log["edges_added"] += 1
        return committed

    def _add_inter_edge(self, parent_id: int, child_id: int, weight: float = 1.0) -> Edge:
        parent = self.find_node(parent_id)
        child = self.find_node(child_id)
        if child.parent_edge is not None:
            current = self.inter_layer_edges[child.parent_edge]
            if current.source == parent_id:
                return current
            _log.debug(
                "Rewiring %s from parent %s to %s",
                format_key(child_id),
                format_key(current.source),
                format_key(parent_id),
            )
            self._drop_inter_edge(child.parent_edge)
        edge_id = self._next_edge_id
        self._next_edge_id += 1
        if edge_id in self.inter_layer_edges:
            raise GraphInvariantError(f"inter-layer edge id {edge_id} already in use")
        committed = Edge(parent.layer, parent_id, child.layer, child_id, weight, edge_id)
        parent.children[edge_id] = child_id
        child.parent_edge = edge_id
        self.inter_layer_edges[edge_id] = committed
        self._log["edges_added"] += 1
        return committed

    def _drop_inter_edge(self, edge_id: int) -> None:
        edge = self.inter_layer_edges.pop(edge_id)
        parent = self.find_node(edge.source)
        child = self.find_node(edge.target)
        if parent is None or child is None:
            raise GraphInvariantError(f"inter-layer edge {edge_id} references a missing node")
        del parent.children[edge_id]
        child.parent_edge = None
        self._log["edges_removed"] += 1

    def remove_edge(self, source: int, target: int) -> bool:
        """Remove the edge between ``source`` and ``target`` in either order."""

        with self._lock:
            edge = self._find_edge(source, target)
            if edge is None:
                return False
            if edge.is_inter_layer:
                self._drop_inter_edge(edge.edge_id)
            else:
                self._node_layers[source].remove_edge(source, target)
                self._log["edges_removed"] += 1
            return True

    def is_edge_valid(self, edge: Optional[Edge]) -> bool:
        """Both endpoints distinct, present and in the recorded layers."""

        if edge is None or edge.edge_id is None or edge.source == edge.target:
            return False
        src = self.find_node(edge.source)
        tgt = self.find_node(edge.target)
        if src is None or tgt is None:
            return False
        return src.layer is edge.source_layer and tgt.layer is edge.target_layer

    # ------------------------------------------------------------------
    # Merging
    def merge_nodes(self, from_id: int, to_id: int) -> None:
        """Fold ``from_id`` into ``to_id`` and remove ``from_id``.

        Siblings and children of the removed node move to the survivor; its
        parent is adopted only if the survivor has none. Point clusters,
        bounding boxes and mesh connections are unioned.
        """

        with self._lock:
            removed = self.find_node(from_id)
            survivor = self.find_node(to_id)
            if removed is None or survivor is None or from_id == to_id:
                raise GraphInvariantError(
                    f"cannot merge {format_key(from_id)} into {format_key(to_id)}"
                )
            layer = self._node_layers[from_id]
            if self._node_layers[to_id] is not layer:
                raise GraphInvariantError("merged nodes must share a layer")

            for sibling in layer.siblings(from_id):
                if sibling != to_id:
                    weight = layer.graph[from_id][sibling]["weight"]
                    layer.add_edge(to_id, sibling, weight)

            parent_id = self.parent_of(from_id)
            for edge_id, child_id in list(removed.children.items()):
                weight = self.inter_layer_edges[edge_id].weight
                self._drop_inter_edge(edge_id)
                self._add_inter_edge(to_id, child_id, weight)
            if parent_id is not None:
                if survivor.parent_edge is None:
                    self._add_inter_edge(parent_id, to_id)
                elif self.parent_of(to_id) != parent_id:
                    _log.debug(
                        "Dropping parent %s of merged node %s; survivor keeps %s",
                        format_key(parent_id),
                        format_key(from_id),
                        format_key(self.parent_of(to_id)),
                    )

            merge_attributes(survivor.attributes, removed.attributes)
            self.remove_node(from_id)
            self._log["merges"] += 1

    # ------------------------------------------------------------------
    # Diagnostics
    def check_consistency(self) -> None:
        """Raise :class:`GraphInvariantError` on any orphaned reference."""

        problems: List[str] = []
        for edge_id, edge in self.inter_layer_edges.items():
            parent = self.find_node(edge.source)
            child = self.find_node(edge.target)
            if parent is None or child is None:
                problems.append(f"edge {edge_id} has a missing endpoint")
                continue
            if parent.children.get(edge_id) != edge.target:
                problems.append(f"edge {edge_id} missing from parent children")
            if child.parent_edge != edge_id:
                problems.append(f"edge {edge_id} not recorded as child parent")
            if not self.is_parent_layer(parent.layer, child.layer):
                problems.append(f"edge {edge_id} violates layer adjacency")
        for node_id, layer in self._node_layers.items():
            node = layer.nodes.get(node_id)
            if node is None:
                problems.append(f"node {format_key(node_id)} missing from its layer")
                continue
            if node.parent_edge is not None:
                edge = self.inter_layer_edges.get(node.parent_edge)
                if edge is None or edge.target != node_id:
                    problems.append(f"node {format_key(node_id)} has a dangling parent edge")
            for edge_id, child_id in node.children.items():
                edge = self.inter_layer_edges.get(edge_id)
                if edge is None or edge.source != node_id or edge.target != child_id:
                    problems.append(f"node {format_key(node_id)} has a dangling child edge")
        counted = sum(len(lay) for lay in self.all_layers())
        if counted != len(self._node_layers):
            problems.append("layer membership does not match node index")
        if problems:
            raise GraphInvariantError("; ".join(problems))


def merge_attributes(into: NodeAttributes, other: NodeAttributes) -> None:
    """Union point cluster, bounding geometry and mesh connections in place."""

    if other.points is not None and len(other.points):
        if into.points is None:
            into.points = other.points
        else:
            into.points = np.vstack([into.points, other.points])
    if other.bounding_box is not None:
        into.bounding_box = (
            other.bounding_box
            if into.bounding_box is None
            else into.bounding_box.union(other.bounding_box)
        )
    if isinstance(into, ObjectNodeAttributes) and isinstance(other, ObjectNodeAttributes):
        into.mesh_connections = sorted(set(into.mesh_connections) | set(other.mesh_connections))
    into.last_update_time_ns = max(into.last_update_time_ns, other.last_update_time_ns)


__all__ = ["SceneGraph", "default_layer_parents", "merge_attributes"]
