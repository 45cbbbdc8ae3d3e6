# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Layered scene graph store.

Summary
-------
Provides the node/edge data model (:mod:`dsg_mem.graph.types`), per-layer
storage (:class:`Layer`), the owning :class:`SceneGraph` and JSON
persistence helpers.

Examples
--------
>>> from dsg_mem.graph import SceneGraph, LayerId
>>> SceneGraph().has_layer(LayerId.PLACES)
True
"""

from .keys import NodeSymbol, format_key, key_category
from .layer import Layer
from .scene_graph import SceneGraph, default_layer_parents, merge_attributes
from .serialization import graph_from_dict, graph_to_dict, load_graph, save_graph
from .types import (
    RANKED_LAYERS,
    AgentNodeAttributes,
    BoundingBox,
    BoundingBoxType,
    Edge,
    GraphInvariantError,
    LayerId,
    Node,
    NodeAttributes,
    ObjectNodeAttributes,
    PlaceNodeAttributes,
)

__all__ = [
    "NodeSymbol",
    "format_key",
    "key_category",
    "Layer",
    "SceneGraph",
    "default_layer_parents",
    "merge_attributes",
    "graph_from_dict",
    "graph_to_dict",
    "load_graph",
    "save_graph",
    "RANKED_LAYERS",
    "AgentNodeAttributes",
    "BoundingBox",
    "BoundingBoxType",
    "Edge",
    "GraphInvariantError",
    "LayerId",
    "Node",
    "NodeAttributes",
    "ObjectNodeAttributes",
    "PlaceNodeAttributes",
]
