"""
Vector Similarity Module

Similarity scoring and summary statistics for face embeddings.
"""

from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np

Vector = Union[np.ndarray, Sequence[float]]


@dataclass(frozen=True)
class EmbeddingStats:
    """Summary statistics of a single embedding vector."""
    dimension: int
    magnitude: float
    mean: float
    std: float

    def is_normalized(self, tolerance: float = 0.01) -> bool:
        return abs(self.magnitude - 1.0) < tolerance


def similarity(a: Vector, b: Vector) -> float:
    """
    Similarity between two pre-normalized embeddings.

    The dot product of unit vectors equals their cosine similarity; negative
    values are clamped so scores fall in [0, 1].

    Args:
        a: First embedding
        b: Second embedding

    Returns:
        Score in [0, 1]; 0.0 when the vectors differ in length
    """
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.shape[0] != vb.shape[0]:
        return 0.0
    return max(0.0, float(np.dot(va, vb)))


def embedding_stats(vector: Vector) -> EmbeddingStats:
    """
    Compute magnitude, mean and standard deviation of an embedding.

    Args:
        vector: Embedding vector

    Returns:
        EmbeddingStats for the vector (all zeros for an empty vector)
    """
    arr = np.asarray(vector, dtype=np.float64).reshape(-1)
    if arr.size == 0:
        return EmbeddingStats(dimension=0, magnitude=0.0, mean=0.0, std=0.0)

    return EmbeddingStats(
        dimension=int(arr.size),
        magnitude=float(np.sqrt(np.sum(arr * arr))),
        mean=float(np.mean(arr)),
        std=float(np.std(arr)),
    )
