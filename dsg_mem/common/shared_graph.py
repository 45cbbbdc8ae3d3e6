# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Single shared scene graph with a freshness flag.

Summary
-------
One :class:`SharedGraphState` is created at start-up and handed to every
component that needs the graph. The update pipeline is the only writer: it
holds :meth:`SharedGraphState.write` for a whole pass and calls
:meth:`mark_updated` before releasing it. Readers hold :meth:`read` while
they traverse, or take a :meth:`snapshot`. The reader designated as the
consumer clears the flag with :meth:`consume_update`.

Examples
--------
>>> state = SharedGraphState({"places": "p"}, mesh_prefix="v")
>>> with state.write() as graph:
...     state.mark_updated(10)
>>> state.consume_update()
10
>>> state.consume_update() is None
True
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Mapping, Optional, Union

from omegaconf import DictConfig

from dsg_mem.graph.keys import key_category
from dsg_mem.graph.scene_graph import SceneGraph
from dsg_mem.graph.types import LayerId

from .config import layer_parents

logger = logging.getLogger(__name__)


class SharedGraphState:
    """Owns the process-wide :class:`SceneGraph` and its update flag.

    Parameters
    ----------
    layer_id_map : Mapping[LayerId | str, str]
        Ranked layer to one-character key prefix.
    mesh_prefix : str
        Prefix of mesh vertex keys; must differ from every layer prefix.
    agent_prefix : str, optional
        Prefix of agent pose keys.
    layer_parents : Mapping[LayerId, LayerId], optional
        Adjacency overrides forwarded to the graph.
    strict_edge_direction : bool, optional
        Forwarded to the graph.
    """

    def __init__(
        self,
        layer_id_map: Mapping[Union[LayerId, str], str],
        mesh_prefix: str,
        *,
        agent_prefix: Optional[str] = None,
        layer_parents: Optional[Mapping[LayerId, LayerId]] = None,
        strict_edge_direction: bool = False,
    ) -> None:
        self.mesh_prefix = mesh_prefix
        self.agent_prefix = agent_prefix
        self.prefix_layer_map: Dict[str, LayerId] = {}
        for layer, prefix in layer_id_map.items():
            layer = layer if isinstance(layer, LayerId) else LayerId.from_name(str(layer))
            if prefix == mesh_prefix:
                raise ValueError(f"layer {layer.name} prefix {prefix!r} duplicates the mesh prefix")
            if prefix in self.prefix_layer_map:
                raise ValueError(f"prefix {prefix!r} assigned to more than one layer")
            self.prefix_layer_map[prefix] = layer
        if agent_prefix is not None:
            if agent_prefix == mesh_prefix or agent_prefix in self.prefix_layer_map:
                raise ValueError(f"agent prefix {agent_prefix!r} is already in use")
            self.prefix_layer_map[agent_prefix] = LayerId.AGENTS

        ranked = [lid for lid in self.prefix_layer_map.values() if not lid.is_dynamic]
        self.graph = SceneGraph(
            ranked,
            layer_parents=layer_parents,
            strict_edge_direction=strict_edge_direction,
        )
        self._lock = threading.RLock()
        self._updated = False
        self._last_update_time: Optional[int] = None

    @classmethod
    def from_config(cls, cfg: DictConfig) -> "SharedGraphState":
        return cls(
            dict(cfg.layer_id_map),
            cfg.mesh_prefix,
            agent_prefix=cfg.agent_prefix,
            layer_parents=layer_parents(cfg),
            strict_edge_direction=cfg.strict_edge_direction,
        )

    # ------------------------------------------------------------------
    # Access
    @contextmanager
    def write(self) -> Iterator[SceneGraph]:
        """Exclusive access for one full update pass."""

        with self._lock:
            yield self.graph

    @contextmanager
    def read(self) -> Iterator[SceneGraph]:
        """Consistent view; no pass can commit while the block runs."""

        with self._lock:
            yield self.graph

    def snapshot(self) -> SceneGraph:
        """Deep copy of the graph taken between passes."""

        with self._lock:
            return self.graph.clone()

    # ------------------------------------------------------------------
    # Freshness
    def mark_updated(self, timestamp_ns: int) -> None:
        with self._lock:
            self._updated = True
            self._last_update_time = int(timestamp_ns)

    def consume_update(self) -> Optional[int]:
        """Clear the flag; return the pending update time or ``None``."""

        with self._lock:
            if not self._updated:
                return None
            self._updated = False
            return self._last_update_time

    @property
    def updated(self) -> bool:
        with self._lock:
            return self._updated

    @property
    def last_update_time(self) -> Optional[int]:
        with self._lock:
            return self._last_update_time

    # ------------------------------------------------------------------
    # Keys
    def layer_for_key(self, key: int) -> Optional[LayerId]:
        """Layer whose prefix tags ``key``; ``None`` for mesh or unknown keys."""

        layer = self.prefix_layer_map.get(key_category(key))
        if layer is None:
            logger.debug("Key %d has no layer prefix", key)
        return layer


__all__ = ["SharedGraphState"]
