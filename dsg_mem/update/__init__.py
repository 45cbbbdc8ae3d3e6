# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Update and merge passes driven by optimizer solutions."""

from .functions import (
    LAYER_UPDATE_FUNCS,
    LayerUpdateFunc,
    MergePredicate,
    UpdateResult,
    merge_layer_nodes,
    reanchor_places,
    update_agents,
    update_buildings,
    update_objects,
    update_places,
    update_rooms,
)
from .pipeline import UPDATE_ORDER, GraphUpdater, build_update_funcs
from .values import Pose, SolvedValues, rotation_of, translation_of

__all__ = [
    "LAYER_UPDATE_FUNCS",
    "LayerUpdateFunc",
    "MergePredicate",
    "UpdateResult",
    "merge_layer_nodes",
    "reanchor_places",
    "update_agents",
    "update_buildings",
    "update_objects",
    "update_places",
    "update_rooms",
    "UPDATE_ORDER",
    "GraphUpdater",
    "build_update_funcs",
    "Pose",
    "SolvedValues",
    "rotation_of",
    "translation_of",
]
