# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Named groups of feature embeddings scored against a query.

Summary
-------
An :class:`EmbeddingGroup` holds one embedding per named category (for
example, the text features of the label space). A query embedding from an
open-set detector is compared to every member with an
:class:`EmbeddingDistance`, and :meth:`EmbeddingGroup.get_best_score`
picks the best-scoring category.

Examples
--------
>>> group = EmbeddingGroup([[1.0, 0.0], [0.0, 1.0]], ["chair", "table"])
>>> group.get_best_score(CosineDistance(), [0.1, 0.9]).index
1
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

import numpy as np


class EmbeddingDistance(Protocol):
    """Pairwise distance and similarity score; higher scores are better."""

    def dist(self, lhs: np.ndarray, rhs: np.ndarray) -> float:  # pragma: no cover - Protocol
        ...

    def score(self, lhs: np.ndarray, rhs: np.ndarray) -> float:  # pragma: no cover - Protocol
        ...


class CosineDistance:
    """``1 - cos`` distance; the score is the cosine similarity."""

    def score(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        denom = float(np.linalg.norm(lhs) * np.linalg.norm(rhs))
        if denom == 0.0:
            return 0.0
        return float(np.dot(lhs, rhs) / denom)

    def dist(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        return 1.0 - self.score(lhs, rhs)


class L2Distance:
    """Euclidean distance; the score maps it into ``(0, 1]``."""

    def dist(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        return float(np.linalg.norm(np.asarray(lhs) - np.asarray(rhs)))

    def score(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        return 1.0 / (1.0 + self.dist(lhs, rhs))


@dataclass
class ScoreResult:
    score: float = float("-inf")
    index: int = 0


class EmbeddingGroup:
    """Embeddings with parallel display names."""

    def __init__(
        self,
        embeddings: Sequence[Sequence[float]] = (),
        names: Optional[Sequence[str]] = None,
    ) -> None:
        self.embeddings: List[np.ndarray] = [np.asarray(e, dtype=np.float32) for e in embeddings]
        self.names: List[str] = list(names) if names is not None else [
            str(i) for i in range(len(self.embeddings))
        ]
        if len(self.names) != len(self.embeddings):
            raise ValueError("names and embeddings must have the same length")
        dims = {e.shape for e in self.embeddings}
        if len(dims) > 1:
            raise ValueError(f"embeddings have mismatched shapes: {sorted(dims)}")

    @property
    def empty(self) -> bool:
        return not self.embeddings

    def __len__(self) -> int:
        return len(self.embeddings)

    def __bool__(self) -> bool:
        return not self.empty

    def _query(self, embedding: Sequence[float]) -> np.ndarray:
        query = np.asarray(embedding, dtype=np.float32)
        if self.embeddings and query.shape != self.embeddings[0].shape:
            raise ValueError(
                f"query shape {query.shape} does not match group shape {self.embeddings[0].shape}"
            )
        return query

    def get_distances(self, dist: EmbeddingDistance, embedding: Sequence[float]) -> np.ndarray:
        query = self._query(embedding)
        return np.array([dist.dist(e, query) for e in self.embeddings], dtype=np.float32)

    def get_scores(self, dist: EmbeddingDistance, embedding: Sequence[float]) -> np.ndarray:
        query = self._query(embedding)
        return np.array([dist.score(e, query) for e in self.embeddings], dtype=np.float32)

    def get_best_score(self, dist: EmbeddingDistance, embedding: Sequence[float]) -> ScoreResult:
        """Highest score and its index; the first wins ties.

        An empty group returns ``ScoreResult()`` with a score of ``-inf``.
        """

        scores = self.get_scores(dist, embedding)
        if scores.size == 0:
            return ScoreResult()
        best = int(np.argmax(scores))
        return ScoreResult(float(scores[best]), best)

    def name_of(self, index: int) -> str:
        return self.names[index]


__all__ = [
    "EmbeddingDistance",
    "CosineDistance",
    "L2Distance",
    "ScoreResult",
    "EmbeddingGroup",
]
