# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Single scene graph layer.

Summary
-------
A layer owns its nodes and the intra-layer (sibling) edges between them.
Sibling edges are kept in an undirected ``networkx.Graph`` whose edges
carry a layer-local ``edge_id`` and a ``weight``. Inter-layer edges are not
stored here; see :class:`dsg_mem.graph.scene_graph.SceneGraph`.

Complexity
----------
Node and edge lookups are ``O(1)``; node removal is linear in its degree.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Tuple

import networkx as nx
import numpy as np

from .keys import format_key
from .types import Edge, LayerId, Node

logger = logging.getLogger(__name__)


class Layer:
    """Nodes of one layer plus their sibling edges."""

    def __init__(self, layer_id: LayerId, prefix: Optional[str] = None) -> None:
        self.id = layer_id
        self.prefix = prefix
        self.nodes: Dict[int, Node] = {}
        # sibling adjacency: node id -> node id with edge_id/weight data
        self.graph = nx.Graph()
        self._next_edge_id = 0

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: int) -> bool:
        return node_id in self.nodes

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes.values())

    def __repr__(self) -> str:
        tag = self.id.name if self.prefix is None else f"{self.id.name}[{self.prefix}]"
        return f"Layer({tag}, nodes={len(self.nodes)}, edges={self.num_edges()})"

    # ------------------------------------------------------------------
    # Nodes
    def has_node(self, node_id: int) -> bool:
        return node_id in self.nodes

    def get_node(self, node_id: int) -> Optional[Node]:
        return self.nodes.get(node_id)

    def add_node(self, node: Node) -> bool:
        """Insert ``node``; return ``False`` if the id is already present."""

        if node.id in self.nodes:
            return False
        self.nodes[node.id] = node
        self.graph.add_node(node.id)
        return True

    def remove_node(self, node_id: int) -> Optional[Node]:
        """Drop ``node_id`` and all of its sibling edges."""

        node = self.nodes.pop(node_id, None)
        if node is None:
            return None
        self.graph.remove_node(node_id)
        return node

    def node_ids(self) -> List[int]:
        return sorted(self.nodes)

    def positions(self, node_ids: Optional[List[int]] = None) -> Tuple[List[int], np.ndarray]:
        """Return ``(ids, (N, 3) positions)`` in ascending id order."""

        ids = sorted(self.nodes) if node_ids is None else list(node_ids)
        if not ids:
            return [], np.zeros((0, 3))
        return ids, np.stack([self.nodes[i].attributes.position for i in ids])

    # ------------------------------------------------------------------
    # Sibling edges
    def num_edges(self) -> int:
        return self.graph.number_of_edges()

    def has_edge(self, source: int, target: int) -> bool:
        return self.graph.has_edge(source, target)

    def add_edge(self, source: int, target: int, weight: float = 1.0) -> Optional[Edge]:
        """Connect two member nodes.

        Returns the committed edge, or ``None`` when either node is missing,
        the endpoints coincide, or the edge already exists.
        """

        if source == target or source not in self.nodes or target not in self.nodes:
            return None
        if self.graph.has_edge(source, target):
            return None
        edge_id = self._next_edge_id
        self._next_edge_id += 1
        self.graph.add_edge(source, target, edge_id=edge_id, weight=float(weight))
        return Edge(self.id, source, self.id, target, weight=float(weight), edge_id=edge_id)

    def get_edge(self, source: int, target: int) -> Optional[Edge]:
        data = self.graph.get_edge_data(source, target)
        if data is None:
            return None
        return Edge(
            self.id, source, self.id, target, weight=data["weight"], edge_id=data["edge_id"]
        )

    def remove_edge(self, source: int, target: int) -> bool:
        if not self.graph.has_edge(source, target):
            return False
        self.graph.remove_edge(source, target)
        return True

    def siblings(self, node_id: int) -> List[int]:
        if node_id not in self.nodes:
            logger.debug("siblings requested for missing node %s", format_key(node_id))
            return []
        return sorted(self.graph.neighbors(node_id))

    def edges(self) -> Iterator[Edge]:
        for source, target, data in self.graph.edges(data=True):
            yield Edge(
                self.id, source, self.id, target, weight=data["weight"], edge_id=data["edge_id"]
            )


__all__ = ["Layer"]
