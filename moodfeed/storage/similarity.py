"""Vector similarity used by corpus queries."""

from typing import Sequence

import numpy as np


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine distance in [0, 2].

    A zero-norm vector is treated as orthogonal to everything (distance 1).

    Raises:
        ValueError: If the vectors differ in length
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.size} != {vb.size}")

    da = float(np.linalg.norm(va))
    db = float(np.linalg.norm(vb))
    if da == 0.0 or db == 0.0:
        return 1.0

    # Clamp rounding noise so identical vectors give exactly 0
    cosine = float(np.clip(np.dot(va, vb) / (da * db), -1.0, 1.0))
    return 1.0 - cosine


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Similarity as ``1 - cosine_distance(a, b)``, in [-1, 1]."""
    return 1.0 - cosine_distance(a, b)
