# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Node, edge and attribute types of the scene graph.

Summary
-------
Layers form a fixed total order (objects < places < rooms < buildings);
agents live in dynamic layers keyed by robot prefix and have no rank of
their own. Nodes carry their attributes plus id-only references to their
parent edge and child edges; the owning :class:`~dsg_mem.graph.SceneGraph`
resolves those ids.

See Also
--------
dsg_mem.graph.layer
dsg_mem.graph.scene_graph
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Tuple

import numpy as np


class GraphInvariantError(RuntimeError):
    """Raised when a caller or the graph's own bookkeeping breaks an invariant."""


class LayerId(IntEnum):
    """Layer identifiers; ranked layers compare by hierarchy rank."""

    OBJECTS = 2
    PLACES = 3
    ROOMS = 4
    BUILDINGS = 5
    AGENTS = 100

    @property
    def is_dynamic(self) -> bool:
        return self is LayerId.AGENTS

    @classmethod
    def from_name(cls, name: str) -> "LayerId":
        """Resolve a case-insensitive layer name such as ``"places"``."""

        try:
            return cls[name.upper()]
        except KeyError as exc:
            raise ValueError(f"unknown layer name: {name!r}") from exc


RANKED_LAYERS: Tuple[LayerId, ...] = (
    LayerId.OBJECTS,
    LayerId.PLACES,
    LayerId.ROOMS,
    LayerId.BUILDINGS,
)


def _vec3(value, name: str = "vector") -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"{name} must have 3 components, got shape {arr.shape}")
    return arr


class BoundingBoxType(str, Enum):
    AABB = "aabb"
    OBB = "obb"


@dataclass
class BoundingBox:
    """Axis-aligned or oriented box.

    Parameters
    ----------
    min, max : np.ndarray
        Corner extents. World frame for ``AABB``; box frame for ``OBB``.
    type : BoundingBoxType
        Box flavour, by default ``AABB``.
    position : np.ndarray, optional
        Box frame origin in world coordinates (``OBB`` only).
    orientation : np.ndarray, optional
        ``3x3`` rotation from box frame to world (``OBB`` only).
    """

    min: np.ndarray
    max: np.ndarray
    type: BoundingBoxType = BoundingBoxType.AABB
    position: Optional[np.ndarray] = None
    orientation: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.min = _vec3(self.min, "min")
        self.max = _vec3(self.max, "max")
        if np.any(self.min > self.max):
            raise ValueError("bounding box min must not exceed max")
        self.type = BoundingBoxType(self.type)
        if self.type is BoundingBoxType.OBB:
            self.position = np.zeros(3) if self.position is None else _vec3(self.position)
            rot = np.eye(3) if self.orientation is None else np.asarray(self.orientation, float)
            if rot.shape != (3, 3):
                raise ValueError("orientation must be a 3x3 rotation matrix")
            self.orientation = rot

    @classmethod
    def from_points(cls, points) -> "BoundingBox":
        """Return the AABB of an ``(N, 3)`` point array."""

        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        if len(pts) == 0:
            raise ValueError("cannot fit a bounding box to zero points")
        return cls(pts.min(axis=0), pts.max(axis=0))

    def corners(self) -> np.ndarray:
        """Return the eight corners in world coordinates."""

        lo, hi = self.min, self.max
        local = np.array(
            [[x, y, z] for x in (lo[0], hi[0]) for y in (lo[1], hi[1]) for z in (lo[2], hi[2])]
        )
        if self.type is BoundingBoxType.AABB:
            return local
        return local @ self.orientation.T + self.position

    def contains(self, point) -> bool:
        p = _vec3(point, "point")
        if self.type is BoundingBoxType.OBB:
            p = self.orientation.T @ (p - self.position)
        return bool(np.all(p >= self.min) and np.all(p <= self.max))

    def union(self, other: "BoundingBox") -> "BoundingBox":
        """Return the world-frame AABB enclosing both boxes."""

        return BoundingBox.from_points(np.vstack([self.corners(), other.corners()]))

    def volume(self) -> float:
        return float(np.prod(self.max - self.min))


@dataclass
class NodeAttributes:
    """Attributes shared by every node.

    ``points`` is an optional ``(N, 3)`` cluster of points associated with the
    node (e.g. the segmented object cloud).
    """

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    semantic_label: int = 0
    color: Tuple[int, int, int] = (0, 0, 0)
    name: str = ""
    bounding_box: Optional[BoundingBox] = None
    points: Optional[np.ndarray] = None
    last_update_time_ns: int = 0

    def __post_init__(self) -> None:
        self.position = _vec3(self.position, "position")
        self.color = tuple(int(c) for c in self.color)  # type: ignore[assignment]
        if self.points is not None:
            self.points = np.asarray(self.points, dtype=float).reshape(-1, 3)


@dataclass
class ObjectNodeAttributes(NodeAttributes):
    """Object attributes; ``mesh_connections`` are keys of mesh vertices."""

    mesh_connections: List[int] = field(default_factory=list)


@dataclass
class PlaceNodeAttributes(NodeAttributes):
    """Free-space place.

    ``distance`` is the obstacle clearance recorded from the distance field.
    Active places are still being edited by the place extractor.
    """

    distance: float = 0.0
    active: bool = False
    voxel_index: Optional[Tuple[int, int, int]] = None


@dataclass
class AgentNodeAttributes(NodeAttributes):
    """One pose of a robot trajectory. ``orientation`` is ``(w, x, y, z)``."""

    timestamp_ns: int = 0
    orientation: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))
    external_key: Optional[int] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        quat = np.asarray(self.orientation, dtype=float).reshape(-1)
        if quat.shape != (4,):
            raise ValueError("orientation must be a (w, x, y, z) quaternion")
        self.orientation = quat


@dataclass
class Node:
    """A graph node.

    ``parent_edge`` and the keys of ``children`` are inter-layer edge ids;
    the values of ``children`` are the child node ids.
    """

    id: int
    layer: LayerId
    attributes: NodeAttributes
    parent_edge: Optional[int] = None
    children: Dict[int, int] = field(default_factory=dict)
    prefix: Optional[str] = None

    @property
    def position(self) -> np.ndarray:
        return self.attributes.position

    def has_parent(self) -> bool:
        return self.parent_edge is not None

    def has_children(self) -> bool:
        return bool(self.children)


@dataclass
class Edge:
    """Edge between two nodes.

    For a committed inter-layer edge ``source`` is the parent (higher layer)
    and ``target`` the child. ``edge_id`` stays ``None`` until the graph
    commits the edge.
    """

    source_layer: LayerId
    source: int
    target_layer: LayerId
    target: int
    weight: float = 1.0
    edge_id: Optional[int] = None

    @property
    def is_inter_layer(self) -> bool:
        return self.source_layer != self.target_layer

    def swap_direction(self) -> "Edge":
        return replace(
            self,
            source_layer=self.target_layer,
            source=self.target,
            target_layer=self.source_layer,
            target=self.source,
        )


__all__ = [
    "GraphInvariantError",
    "LayerId",
    "RANKED_LAYERS",
    "BoundingBoxType",
    "BoundingBox",
    "NodeAttributes",
    "ObjectNodeAttributes",
    "PlaceNodeAttributes",
    "AgentNodeAttributes",
    "Node",
    "Edge",
]
