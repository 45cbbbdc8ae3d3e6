# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Solved-variable sets handed over by the optimizer.

A solved set maps a variable key to either a :class:`Pose` or a plain
3-vector. The update functions only read these mappings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence, Union

import numpy as np


@dataclass
class Pose:
    """Rigid pose; ``rotation`` is a ``(w, x, y, z)`` quaternion."""

    translation: np.ndarray
    rotation: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))

    def __post_init__(self) -> None:
        self.translation = np.asarray(self.translation, dtype=float).reshape(3)
        quat = np.asarray(self.rotation, dtype=float).reshape(4)
        norm = float(np.linalg.norm(quat))
        if norm == 0.0:
            raise ValueError("rotation quaternion must be non-zero")
        self.rotation = quat / norm


SolvedValue = Union[Pose, np.ndarray, Sequence[float]]
Values = Mapping[int, SolvedValue]


@dataclass
class SolvedValues:
    """The two solved sets of one optimizer run."""

    places: Values = field(default_factory=dict)
    mesh: Values = field(default_factory=dict)
    timestamp_ns: Optional[int] = None


def translation_of(value: SolvedValue) -> np.ndarray:
    """Position part of a solved value."""

    if isinstance(value, Pose):
        return value.translation.copy()
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"solved value must be a Pose or 3-vector, got shape {arr.shape}")
    return arr


def rotation_of(value: SolvedValue) -> Optional[np.ndarray]:
    """Orientation part of a solved value; ``None`` for plain positions."""

    return value.rotation.copy() if isinstance(value, Pose) else None


__all__ = ["Pose", "SolvedValue", "Values", "SolvedValues", "translation_of", "rotation_of"]
