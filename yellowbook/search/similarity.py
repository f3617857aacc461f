"""Vector similarity helpers."""

from typing import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Dot product of *a* and *b* divided by the product of their norms.

    Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: if the vectors differ in length or are empty.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.ndim != 1 or va.shape != vb.shape:
        raise ValueError(f"Vector shapes differ: {va.shape} vs {vb.shape}")
    if va.size == 0:
        raise ValueError("Vectors must not be empty")

    norm = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb)) / norm
