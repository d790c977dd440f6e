import numpy as np

from .datastructures import GEOMETRY_TOL, Mesh, _evaluate_piecewise


def evaluate_solution(mesh: Mesh, x, sln: int = 0, eq: int = 0) -> tuple[np.ndarray, np.ndarray]:
    """Values and x-derivatives of one solution component at arbitrary points in [a, b]."""
    x = np.atleast_1d(np.asarray(x, dtype=float))
    if np.any(x < mesh.a - GEOMETRY_TOL) or np.any(x > mesh.b + GEOMETRY_TOL):
        raise ValueError(f"Points outside the domain [{mesh.a}, {mesh.b}]")
    order = np.argsort(x, kind="stable")
    vals, ders = _evaluate_piecewise(list(mesh.active_elements()), x[order])
    u = np.empty(len(x))
    dudx = np.empty(len(x))
    u[order] = vals[sln, eq]
    dudx[order] = ders[sln, eq]
    return u, dudx


def linearize(mesh: Mesh, n_pts_per_elem: int = 11, sln: int = 0, eq: int = 0):
    """
    Sample the solution on every active element for plotting or export.

    Returns (x, y) with n_pts_per_elem equidistant points per element,
    element end points included (shared vertices appear twice).
    """
    if n_pts_per_elem < 2:
        raise ValueError(f"Need at least two points per element, got {n_pts_per_elem}")
    xs, ys = [], []
    for e in mesh.active_elements():
        x = np.linspace(e.x1, e.x2, n_pts_per_elem)
        vals, _ = e.evaluate(x, sln)
        xs.append(x)
        ys.append(vals[eq])
    return np.concatenate(xs), np.concatenate(ys)
