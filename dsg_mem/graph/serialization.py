# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""JSON persistence for :class:`~dsg_mem.graph.scene_graph.SceneGraph`.

Inter-layer edge ids survive a round trip; sibling edge ids are layer-local
and are reassigned on load.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Type

import numpy as np

from .scene_graph import SceneGraph
from .types import (
    AgentNodeAttributes,
    BoundingBox,
    Edge,
    LayerId,
    NodeAttributes,
    ObjectNodeAttributes,
    PlaceNodeAttributes,
)

_KINDS: Dict[str, Type[NodeAttributes]] = {
    "node": NodeAttributes,
    "object": ObjectNodeAttributes,
    "place": PlaceNodeAttributes,
    "agent": AgentNodeAttributes,
}
_KIND_OF = {cls: kind for kind, cls in _KINDS.items()}


def _encode_value(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, BoundingBox):
        return {
            "min": value.min.tolist(),
            "max": value.max.tolist(),
            "type": value.type.value,
            "position": None if value.position is None else value.position.tolist(),
            "orientation": None if value.orientation is None else value.orientation.tolist(),
        }
    if isinstance(value, tuple):
        return list(value)
    return value


def _encode_attributes(attrs: NodeAttributes) -> Dict[str, Any]:
    return {f.name: _encode_value(getattr(attrs, f.name)) for f in fields(attrs)}


def _decode_attributes(kind: str, data: Dict[str, Any]) -> NodeAttributes:
    cls = _KINDS[kind]
    values = dict(data)
    if values.get("bounding_box") is not None:
        values["bounding_box"] = BoundingBox(**values["bounding_box"])
    if values.get("voxel_index") is not None:
        values["voxel_index"] = tuple(values["voxel_index"])
    return cls(**values)


def graph_to_dict(graph: SceneGraph) -> Dict[str, Any]:
    """Return a JSON-compatible description of ``graph``."""

    with graph._lock:  # noqa: SLF001 - consistent snapshot
        nodes = []
        for layer in graph.all_layers():
            for node_id in layer.node_ids():
                node = layer.nodes[node_id]
                nodes.append(
                    {
                        "id": node_id,
                        "layer": layer.id.name,
                        "prefix": layer.prefix,
                        "kind": _KIND_OF[type(node.attributes)],
                        "attributes": _encode_attributes(node.attributes),
                    }
                )
        siblings = [
            {"source": e.source, "target": e.target, "weight": e.weight}
            for layer in graph.all_layers()
            for e in layer.edges()
        ]
        inter = [
            {"source": e.source, "target": e.target, "weight": e.weight, "edge_id": e.edge_id}
            for _, e in sorted(graph.inter_layer_edges.items())
        ]
        return {
            "layers": [lid.name for lid in graph.layer_ids],
            "layer_parents": {c.name: p.name for c, p in graph._parents.items()},  # noqa: SLF001
            "strict_edge_direction": graph.strict_edge_direction,
            "next_edge_id": graph._next_edge_id,  # noqa: SLF001
            "nodes": nodes,
            "sibling_edges": siblings,
            "inter_layer_edges": inter,
        }


def graph_from_dict(data: Dict[str, Any]) -> SceneGraph:
    """Rebuild a graph produced by :func:`graph_to_dict`."""

    graph = SceneGraph(
        [LayerId[name] for name in data["layers"]],
        layer_parents={LayerId[c]: LayerId[p] for c, p in data["layer_parents"].items()},
        strict_edge_direction=bool(data.get("strict_edge_direction", False)),
    )
    for entry in data["nodes"]:
        attrs = _decode_attributes(entry["kind"], entry["attributes"])
        if LayerId[entry["layer"]].is_dynamic:
            graph.add_agent_node(entry["prefix"], entry["id"], attrs)
        else:
            graph.add_node(LayerId[entry["layer"]], entry["id"], attrs)
    for entry in data["sibling_edges"]:
        graph.connect(entry["source"], entry["target"], entry["weight"])
    for entry in data["inter_layer_edges"]:
        parent = graph.find_node(entry["source"])
        child = graph.find_node(entry["target"])
        graph._next_edge_id = entry["edge_id"]  # noqa: SLF001 - preserve ids
        graph.add_edge(Edge(parent.layer, parent.id, child.layer, child.id, entry["weight"]))
    graph._next_edge_id = int(data["next_edge_id"])  # noqa: SLF001
    return graph


def save_graph(graph: SceneGraph, path: str | Path) -> None:
    """Atomically write ``graph`` as JSON to ``path``."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = graph_to_dict(graph)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh)
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - cleanup safety
            os.unlink(tmp_name)


def load_graph(path: str | Path) -> SceneGraph:
    with open(path, "r", encoding="utf-8") as fh:
        return graph_from_dict(json.load(fh))


__all__ = ["graph_to_dict", "graph_from_dict", "save_graph", "load_graph"]
