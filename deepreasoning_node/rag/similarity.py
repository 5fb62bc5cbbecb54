"""Cosine similarity over embedding vectors."""
from typing import Sequence
import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Empty inputs, mismatched dimensions and zero-magnitude vectors score 0.0
    rather than raising. The result is clipped to [-1, 1].
    """
    if len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0 or not np.isfinite(denominator):
        return 0.0

    score = float(np.dot(va, vb) / denominator)
    return float(np.clip(score, -1.0, 1.0))
