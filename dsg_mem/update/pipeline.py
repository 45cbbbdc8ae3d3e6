# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Single-writer update pipeline over the shared graph.

Summary
-------
:class:`GraphUpdater` binds each layer's thresholds from the config once,
then applies every layer pass for one optimizer solution under the shared
write lock and marks the update before releasing it, so readers see either
the previous pass or the complete new one.

Side Effects
------------
With a ``source`` callable the updater can run passes periodically on a
background thread (:meth:`start_background_tasks`).
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from omegaconf import DictConfig

from dsg_mem.common.config import merge_config
from dsg_mem.common.lifecycle import WriterLifecycleMixin
from dsg_mem.common.shared_graph import SharedGraphState
from dsg_mem.common.telemetry import UpdateRegistry
from dsg_mem.graph.types import LayerId

from .functions import LAYER_UPDATE_FUNCS, LayerUpdateFunc, UpdateResult
from .values import SolvedValues, Values

logger = logging.getLogger(__name__)

UPDATE_ORDER: Tuple[LayerId, ...] = (
    LayerId.OBJECTS,
    LayerId.PLACES,
    LayerId.ROOMS,
    LayerId.BUILDINGS,
    LayerId.AGENTS,
)

ValuesSource = Callable[[], Optional[SolvedValues]]


def build_update_funcs(cfg: DictConfig) -> List[Tuple[LayerId, LayerUpdateFunc]]:
    """Bind per-layer thresholds from ``cfg`` in update order."""

    funcs: List[Tuple[LayerId, LayerUpdateFunc]] = []
    for layer in UPDATE_ORDER:
        func = LAYER_UPDATE_FUNCS[layer]
        if layer.is_dynamic:
            funcs.append((layer, func))
            continue
        merge = merge_config(cfg, layer)
        kwargs = {"pos_threshold_m": merge.pos_threshold_m, "max_candidates": merge.max_candidates}
        if layer is LayerId.PLACES:
            kwargs["distance_tolerance_m"] = merge.distance_tolerance_m
        funcs.append((layer, functools.partial(func, **kwargs)))
    return funcs


class GraphUpdater(WriterLifecycleMixin):
    """Applies optimizer solutions to the shared graph.

    Parameters
    ----------
    state : SharedGraphState
        Shared graph to write.
    cfg : DictConfig
        Frozen config from :func:`dsg_mem.common.config.load_config`.
    source : ValuesSource, optional
        Returns the next solution, or ``None`` when nothing new is
        available. Required for background mode.
    telemetry : UpdateRegistry, optional
        Per-layer counters; a private registry is created when omitted.
    """

    def __init__(
        self,
        state: SharedGraphState,
        cfg: DictConfig,
        source: Optional[ValuesSource] = None,
        telemetry: Optional[UpdateRegistry] = None,
    ) -> None:
        self._log = {"passes": 0, "skipped": 0, "failures": 0, "merges": 0}
        super().__init__()
        self.state = state
        self.cfg = cfg
        self._source = source
        if telemetry is None:
            telemetry = UpdateRegistry(lid.name.lower() for lid in UPDATE_ORDER)
        self.telemetry = telemetry
        self.update_funcs = build_update_funcs(cfg)

    def update(
        self,
        places_values: Values,
        mesh_values: Values,
        allow_node_merging: Optional[bool] = None,
        timestamp_ns: Optional[int] = None,
    ) -> Dict[LayerId, UpdateResult]:
        """Run every layer pass as one unit and mark the shared state."""

        if allow_node_merging is None:
            allow_node_merging = bool(self.cfg.allow_node_merging)
        if timestamp_ns is None:
            timestamp_ns = time.time_ns()
        results: Dict[LayerId, UpdateResult] = {}
        with self.state.write() as graph:
            for layer, func in self.update_funcs:
                start = time.perf_counter()
                result = func(graph, places_values, mesh_values, allow_node_merging)
                self.telemetry.record(
                    layer.name.lower(),
                    updated=result.num_updated,
                    merged=result.num_merged,
                    num_nodes=len(graph.nodes(layer)),
                    duration_ms=(time.perf_counter() - start) * 1000.0,
                )
                results[layer] = result
            self.state.mark_updated(timestamp_ns)
        self._log["passes"] += 1
        self._log["merges"] += sum(r.num_merged for r in results.values())
        logger.info(
            "Update pass at %d: %s",
            timestamp_ns,
            ", ".join(
                f"{lid.name.lower()} {r.num_updated} moved/{r.num_merged} merged"
                for lid, r in results.items()
            ),
        )
        return results

    def apply(
        self, values: SolvedValues, allow_node_merging: Optional[bool] = None
    ) -> Dict[LayerId, UpdateResult]:
        return self.update(values.places, values.mesh, allow_node_merging, values.timestamp_ns)

    def start_background_tasks(self, interval: Optional[float] = None) -> None:
        if self._source is None:
            raise ValueError("background updates need a values source")
        super().start_background_tasks(
            self.cfg.update_interval_s if interval is None else interval
        )

    def _background_tick(self, event: threading.Event) -> None:
        values = self._source()
        if values is None or event.is_set():
            self._log["skipped"] += 1
            return
        try:
            self.apply(values)
        except Exception:
            self._log["failures"] += 1
            raise


__all__ = ["GraphUpdater", "build_update_funcs", "UPDATE_ORDER", "ValuesSource"]
