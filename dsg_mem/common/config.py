# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Structured configuration for the scene graph core.

Summary
-------
:class:`GraphConfig` is an OmegaConf structured config. :func:`load_config`
merges YAML files, dicts and dotlist overrides onto the defaults, validates
the result and returns it read-only; the graph, shared state and updater are
all constructed from that one frozen object.

Examples
--------
>>> cfg = load_config(overrides=["allow_node_merging=false"])
>>> cfg.allow_node_merging
False
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from omegaconf import DictConfig, OmegaConf

from dsg_mem.graph.types import LayerId

_log = logging.getLogger(__name__)


@dataclass
class LayerMergeConfig:
    """Merge thresholds for one layer.

    A non-positive ``pos_threshold_m`` disables merging for the layer and
    ``max_candidates`` of ``0`` leaves the merge group unbounded.
    ``distance_tolerance_m`` is only read for places.
    """

    pos_threshold_m: float = 0.0
    distance_tolerance_m: float = 0.0
    max_candidates: int = 0


def _default_merge() -> Dict[str, LayerMergeConfig]:
    return {
        "objects": LayerMergeConfig(pos_threshold_m=0.4),
        "places": LayerMergeConfig(pos_threshold_m=0.4, distance_tolerance_m=0.4),
        "rooms": LayerMergeConfig(),
        "buildings": LayerMergeConfig(),
    }


def _default_room_colors() -> List[List[int]]:
    return [
        [166, 206, 227],
        [31, 120, 180],
        [178, 223, 138],
        [51, 160, 44],
        [251, 154, 153],
        [227, 26, 28],
        [253, 191, 111],
        [255, 127, 0],
        [202, 178, 214],
        [106, 61, 154],
        [255, 255, 153],
        [177, 89, 40],
    ]


@dataclass
class GraphConfig:
    """Top-level configuration."""

    # Layers & keys
    layer_id_map: Dict[str, str] = field(
        default_factory=lambda: {"objects": "o", "places": "p", "rooms": "r", "buildings": "b"}
    )
    mesh_prefix: str = "v"
    agent_prefix: str = "a"
    layer_parents: Dict[str, str] = field(default_factory=dict)

    # Update behaviour
    allow_node_merging: bool = True
    strict_edge_direction: bool = False
    update_interval_s: float = 1.0
    merge: Dict[str, LayerMergeConfig] = field(default_factory=_default_merge)

    # Presentation lookups
    room_colors: List[List[int]] = field(default_factory=_default_room_colors)
    label_names: Dict[int, str] = field(default_factory=dict)


ConfigSource = Union[str, Path, Mapping[str, Any], DictConfig]


def validate_config(cfg: DictConfig) -> None:
    """Raise ``ValueError`` for inconsistent settings."""

    seen: Dict[str, str] = {}
    for name, prefix in cfg.layer_id_map.items():
        layer = LayerId.from_name(name)
        if layer.is_dynamic:
            raise ValueError("agents are keyed by agent_prefix, not layer_id_map")
        if len(prefix) != 1:
            raise ValueError(f"prefix for {name} must be one character, got {prefix!r}")
        if prefix in seen:
            raise ValueError(f"prefix {prefix!r} used by both {seen[prefix]} and {name}")
        seen[prefix] = name
    for label, prefix in (("mesh_prefix", cfg.mesh_prefix), ("agent_prefix", cfg.agent_prefix)):
        if len(prefix) != 1:
            raise ValueError(f"{label} must be one character, got {prefix!r}")
    if cfg.agent_prefix in seen:
        raise ValueError(
            f"agent prefix {cfg.agent_prefix!r} collides with {seen[cfg.agent_prefix]}"
        )
    if cfg.mesh_prefix == cfg.agent_prefix:
        raise ValueError("agent prefix collides with the mesh prefix")
    for child, parent in cfg.layer_parents.items():
        LayerId.from_name(child)
        LayerId.from_name(parent)
    for name, merge in cfg.merge.items():
        LayerId.from_name(name)
        if merge.pos_threshold_m < 0 or merge.distance_tolerance_m < 0:
            raise ValueError(f"merge thresholds for {name} must be non-negative")
        if merge.max_candidates < 0:
            raise ValueError(f"merge.{name}.max_candidates must be non-negative")
    if cfg.update_interval_s <= 0:
        raise ValueError("update_interval_s must be positive")
    for color in cfg.room_colors:
        if len(color) != 3 or any(not 0 <= int(c) <= 255 for c in color):
            raise ValueError(f"room color {list(color)} is not an RGB triple")


def load_config(
    *sources: ConfigSource, overrides: Optional[Sequence[str]] = None
) -> DictConfig:
    """Merge ``sources`` and dotlist ``overrides`` onto the defaults.

    Strings and paths are read as YAML files. The returned config is
    validated and read-only.
    """

    cfg = OmegaConf.structured(GraphConfig)
    for source in sources:
        if isinstance(source, (str, Path)):
            source = OmegaConf.load(source)
        cfg = OmegaConf.merge(cfg, source)
    if overrides:
        cfg = OmegaConf.merge(cfg, OmegaConf.from_dotlist(list(overrides)))
    validate_config(cfg)
    OmegaConf.set_readonly(cfg, True)
    _log.debug("Loaded graph config: %s", OmegaConf.to_container(cfg))
    return cfg


def layer_ids(cfg: DictConfig) -> List[LayerId]:
    return sorted(LayerId.from_name(name) for name in cfg.layer_id_map)


def layer_parents(cfg: DictConfig) -> Dict[LayerId, LayerId]:
    return {
        LayerId.from_name(child): LayerId.from_name(parent)
        for child, parent in cfg.layer_parents.items()
    }


def merge_config(cfg: DictConfig, layer: LayerId) -> LayerMergeConfig:
    """Return merge settings for ``layer``; layers without an entry never merge."""

    entry = cfg.merge.get(layer.name.lower())
    if entry is None:
        return LayerMergeConfig()
    return LayerMergeConfig(**OmegaConf.to_container(entry))


def room_color(cfg: DictConfig, index: int) -> Tuple[int, int, int]:
    """Colour for room ``index``, cycling through ``room_colors``."""

    colors = cfg.room_colors
    if not colors:
        return (0, 0, 0)
    r, g, b = colors[index % len(colors)]
    return (int(r), int(g), int(b))


def label_name(cfg: DictConfig, label: int) -> str:
    return cfg.label_names.get(label, str(label))


__all__ = [
    "GraphConfig",
    "LayerMergeConfig",
    "load_config",
    "validate_config",
    "layer_ids",
    "layer_parents",
    "merge_config",
    "room_color",
    "label_name",
]
