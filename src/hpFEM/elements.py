"""Element-level building blocks: hierarchic Lobatto shape functions and Gauss rules.

All shape functions live on the reference interval [-1, 1]. An element of
degree p carries p + 1 of them: the two vertex functions

    l0 = (1 - xi) / 2,    l1 = (1 + xi) / 2

followed by the bubbles l2, ..., lp built from Legendre polynomials,

    lk = (P_k - P_{k-2}) / sqrt(2 (2k - 1)),    lk' = sqrt((2k - 1) / 2) P_{k-1},

which vanish at both end points and are orthonormal in the H1 seminorm.
"""

from functools import lru_cache

import numpy as np
from numba import njit
from numpy.polynomial.legendre import leggauss


@njit
def _lobatto_table(p, xi):
    """Values and derivatives of the Lobatto shape functions 0..p at xi."""
    n_pts = xi.shape[0]
    n_leg = max(p + 1, 2)

    leg = np.empty((n_leg, n_pts))
    leg[0, :] = 1.0
    leg[1, :] = xi
    for k in range(2, n_leg):
        leg[k, :] = ((2 * k - 1) * xi * leg[k - 1, :] - (k - 1) * leg[k - 2, :]) / k

    vals = np.empty((p + 1, n_pts))
    ders = np.empty((p + 1, n_pts))
    vals[0, :] = 0.5 * (1.0 - xi)
    vals[1, :] = 0.5 * (1.0 + xi)
    ders[0, :] = -0.5
    ders[1, :] = 0.5
    for k in range(2, p + 1):
        vals[k, :] = (leg[k, :] - leg[k - 2, :]) / np.sqrt(2.0 * (2 * k - 1))
        ders[k, :] = np.sqrt((2 * k - 1) / 2.0) * leg[k - 1, :]

    return vals, ders


def lobatto_basis(p: int, xi) -> tuple[np.ndarray, np.ndarray]:
    """
    Evaluate the Lobatto shape functions of an element of degree p.

    Parameters
    ----------
    p : int
        Polynomial degree (>= 1)
    xi : array_like
        Points in the reference interval [-1, 1]

    Returns
    -------
    vals, ders : ndarray (p+1, n_pts)
        Shape function values and reference derivatives d/dxi
    """
    if p < 1:
        raise ValueError(f"Polynomial degree must be >= 1, got {p}")
    xi = np.ascontiguousarray(np.atleast_1d(xi), dtype=np.float64)
    return _lobatto_table(int(p), xi)


@lru_cache(maxsize=None)
def gauss_quadrature(n_pts: int) -> tuple[np.ndarray, np.ndarray]:
    """Gauss-Legendre points and weights on [-1, 1] (cached, read-only)."""
    if n_pts < 1:
        raise ValueError(f"Need at least one quadrature point, got {n_pts}")
    points, weights = leggauss(n_pts)
    points.setflags(write=False)
    weights.setflags(write=False)
    return points, weights


def quadrature_points(p: int) -> int:
    """Number of Gauss points integrating polynomials of degree 3p + 1 exactly."""
    return (3 * p + 1) // 2 + 1


@lru_cache(maxsize=None)
def reference_tables(p: int):
    """Gauss points/weights for degree p and the shape functions evaluated there (read-only)."""
    xi, w = gauss_quadrature(quadrature_points(p))
    phi, dphi = lobatto_basis(p, xi)
    phi.setflags(write=False)
    dphi.setflags(write=False)
    return xi, w, phi, dphi
