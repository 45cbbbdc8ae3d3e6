# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Open-set label scoring."""

from .embedding_group import (
    CosineDistance,
    EmbeddingDistance,
    EmbeddingGroup,
    L2Distance,
    ScoreResult,
)

__all__ = ["CosineDistance", "EmbeddingDistance", "EmbeddingGroup", "L2Distance", "ScoreResult"]
