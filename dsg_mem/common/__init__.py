# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Configuration, shared state and worker helpers."""

from .config import GraphConfig, LayerMergeConfig, load_config, room_color
from .lifecycle import WriterLifecycleMixin
from .maintenance import BackgroundTaskManager
from .shared_graph import SharedGraphState
from .telemetry import UpdateRegistry, UpdateStats

__all__ = [
    "GraphConfig",
    "LayerMergeConfig",
    "load_config",
    "room_color",
    "WriterLifecycleMixin",
    "BackgroundTaskManager",
    "SharedGraphState",
    "UpdateRegistry",
    "UpdateStats",
]
