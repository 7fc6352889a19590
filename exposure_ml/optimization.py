"""
Numba-optimized computations for performance-critical operations.

This module provides JIT-compiled functions for:
- Weighted squared distances between exposure profiles
- Gaussian kernel matrices used by the BKMR posterior predictions
"""
import numpy as np
from numba import jit, prange


@jit(nopython=True, parallel=True, cache=True)
def fast_weighted_sqdist(
    Z1: np.ndarray,
    Z2: np.ndarray,
    r: np.ndarray
) -> np.ndarray:
    """
    Weighted squared Euclidean distances between two sets of rows.

    D[i, j] = sum_m r[m] * (Z1[i, m] - Z2[j, m]) ** 2

    Parameters
    ----------
    Z1 : np.ndarray
        Exposure matrix (n1, n_exposures)
    Z2 : np.ndarray
        Exposure matrix (n2, n_exposures)
    r : np.ndarray
        Non-negative per-exposure weights

    Returns
    -------
    np.ndarray
        Distance matrix (n1, n2)
    """
    n1 = Z1.shape[0]
    n2 = Z2.shape[0]
    dist = np.zeros((n1, n2), dtype=np.float64)

    for i in prange(n1):
        for j in range(n2):
            d = 0.0
            for m in range(Z1.shape[1]):
                diff = Z1[i, m] - Z2[j, m]
                d += r[m] * diff * diff
            dist[i, j] = d

    return dist


@jit(nopython=True, cache=True)
def fast_gaussian_kernel(
    Z1: np.ndarray,
    Z2: np.ndarray,
    r: np.ndarray
) -> np.ndarray:
    """
    Gaussian kernel K[i, j] = exp(-sum_m r[m] * (Z1[i, m] - Z2[j, m]) ** 2).
    """
    return np.exp(-fast_weighted_sqdist(Z1, Z2, r))


def gaussian_kernel(Z1, Z2, r) -> np.ndarray:
    """Coerce inputs to contiguous float64 and call the compiled kernel."""
    Z1 = np.ascontiguousarray(Z1, dtype=np.float64)
    Z2 = np.ascontiguousarray(Z2, dtype=np.float64)
    r = np.ascontiguousarray(r, dtype=np.float64)
    return fast_gaussian_kernel(Z1, Z2, r)
