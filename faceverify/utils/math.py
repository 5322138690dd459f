from __future__ import annotations

import numpy as np


def l2_normalize(vec: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """L2-normalize a vector (or 2D array row-wise) safely."""
    arr = np.asarray(vec, dtype=np.float32)
    if arr.ndim == 1:
        denom = float(np.linalg.norm(arr))
        if denom < eps:
            return arr
        return arr / denom
    if arr.ndim == 2:
        norms = np.linalg.norm(arr, axis=1, keepdims=True)
        norms = np.maximum(norms, eps)
        return arr / norms
    raise ValueError(f"Unsupported ndim={arr.ndim}")


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance between two points/vectors of equal length."""
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    return float(np.linalg.norm(va - vb))


def row_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Euclidean distance from `query` (D,) to every row of `matrix` (N, D)."""
    diff = np.asarray(matrix, dtype=np.float64) - np.asarray(query, dtype=np.float64).reshape(1, -1)
    return np.sqrt(np.einsum("ij,ij->i", diff, diff))
