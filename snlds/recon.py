"""Reconstruction error between observations and their reconstructions."""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import ArrayLike


def mean_squared_error(a: ArrayLike, b: ArrayLike) -> float:
    """Mean over all elements of ``(a - b)**2``."""
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.shape != right.shape:
        raise ValueError(f"shape mismatch: {left.shape} vs {right.shape}")
    diff = left - right
    return float(np.mean(diff * diff))


def root_mean_squared_error(a: ArrayLike, b: ArrayLike) -> float:
    """Square root of :func:`mean_squared_error`, in the units of the observations."""
    return math.sqrt(mean_squared_error(a, b))