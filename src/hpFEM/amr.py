import logging
from typing import Callable

import numpy as np

from .assembly import DiscreteProblem
from .datastructures import (
    GEOMETRY_TOL,
    REFINE_H,
    REFINE_HP,
    REFINE_P,
    Element,
    ElementPair,
    Mesh,
    _evaluate_piecewise,
    project_solution,
)
from .elements import gauss_quadrature, quadrature_points
from .parameters import AdaptivityHistory, AdaptivityParameters, AdaptivityResult
from .solvers import solve_newton

log = logging.getLogger(__name__)

# adapt_type -> reference refinement of the fast trial refinement
# (h and p adaptivity get reference pairs of their own kind)
FTR_MODES = {"hp": REFINE_HP, "h": REFINE_H, "p": REFINE_P}


# ============================================================================
# Norms
# ============================================================================


def _difference_norm_squared(norm: str, elems_a, elems_b, sln: int = 0) -> float:
    """
    Squared L2 or H1 norm of u_a - u_b, where each list of elements covers
    the same interval. Integrated piecewise over the common refinement of
    both partitions, so polynomial differences are integrated exactly.
    """
    elems_a = sorted(elems_a, key=lambda e: e.x1)
    elems_b = sorted(elems_b, key=lambda e: e.x1)
    cuts = np.unique([e.x1 for e in elems_a + elems_b] + [elems_a[-1].x2, elems_b[-1].x2])
    p_max = max(e.p for e in elems_a + elems_b)
    xi, w = gauss_quadrature(quadrature_points(p_max))

    total = 0.0
    for lo, hi in zip(cuts[:-1], cuts[1:]):
        if hi - lo <= GEOMETRY_TOL:
            continue
        x = 0.5 * (lo + hi) + 0.5 * (hi - lo) * xi
        va, da = _evaluate_piecewise(elems_a, x)
        vb, db = _evaluate_piecewise(elems_b, x)
        integrand = np.sum((va[sln] - vb[sln]) ** 2, axis=0)
        if norm == "H1":
            integrand += np.sum((da[sln] - db[sln]) ** 2, axis=0)
        total += 0.5 * (hi - lo) * np.sum(w * integrand)
    return total


def calc_error_estimate(norm: str, mesh: Mesh, mesh_ref: Mesh) -> float:
    """Norm of the difference between the coarse and the reference solution over the domain."""
    return np.sqrt(
        _difference_norm_squared(norm, list(mesh.active_elements()), list(mesh_ref.active_elements()))
    )


def calc_error_exact(norm: str, mesh: Mesh, exact_sol: Callable, n_pts: int = 20) -> float:
    """Norm of the difference between the mesh solution and exact_sol(x) -> (u, dudx)."""
    total = 0.0
    for e in mesh.active_elements():
        x, w, vals, ders = e.get_solution_quad(0, max(n_pts, quadrature_points(e.p)))
        u, dudx = exact_sol(x)
        integrand = np.sum((vals - np.reshape(u, vals.shape)) ** 2, axis=0)
        if norm == "H1":
            integrand += np.sum((ders - np.reshape(dudx, ders.shape)) ** 2, axis=0)
        total += np.sum(w * integrand)
    return np.sqrt(total)


def calc_solution_norm(
    norm: str,
    exact_sol: Callable,
    n_eq: int,
    a: float,
    b: float,
    subdivision: int = 500,
    order: int = 20,
) -> float:
    """Norm of exact_sol on [a, b], using `subdivision` intervals and quadrature of `order`."""
    xi, w = gauss_quadrature(order // 2 + 1)
    VX = np.linspace(a, b, subdivision + 1)
    h = np.diff(VX)
    x = (0.5 * (VX[:-1] + VX[1:])[:, None] + 0.5 * h[:, None] * xi[None, :]).ravel()
    wx = (0.5 * h[:, None] * w[None, :]).ravel()

    u, dudx = exact_sol(x)
    integrand = np.sum(np.reshape(u, (n_eq, -1)) ** 2, axis=0)
    if norm == "H1":
        integrand += np.sum(np.reshape(dudx, (n_eq, -1)) ** 2, axis=0)
    return np.sqrt(np.sum(wx * integrand))


# ============================================================================
# Fast trial refinement (FTR)
# ============================================================================


def estimate_element_error(
    mesh: Mesh, dp: DiscreteProblem, i: int, params: AdaptivityParameters
) -> tuple[float, ElementPair]:
    """
    Error estimate and reference element pair of the i-th active element.

    Works on a private replica of the mesh, so estimates for different
    elements are independent of each other.
    """
    mesh_ref = mesh.replicate()
    replaced = mesh_ref.reference_refinement(i, FTR_MODES[params.adapt_type])
    log.debug(f"Elem [{i}]: fine mesh created ({mesh_ref.get_num_dofs()} DOF).")

    solve_newton(mesh_ref, dp, params.ref_newton())

    err = calc_error_estimate(params.norm, mesh, mesh_ref)
    pair = ElementPair(tuple(mesh_ref.elements[idx].copy() for idx in replaced))
    return float(err), pair


def ftr_error_estimate(mesh: Mesh, dp: DiscreteProblem, params: AdaptivityParameters):
    """
    Fast trial refinement of every active element of a converged mesh.

    Returns
    -------
    elem_errors : ndarray (n_active,)
        Error estimate per active element
    ref_pairs : list[ElementPair]
        Reference element(s) replacing each active element
    """
    n_elem = mesh.get_n_active_elem()
    elem_errors = np.zeros(n_elem)
    ref_pairs = [None] * n_elem
    for i in range(n_elem):
        elem_errors[i], ref_pairs[i] = estimate_element_error(mesh, dp, i, params)
        log.debug(f"Elem [{i}]: absolute error (est) = {elem_errors[i]:g}")
    return elem_errors, ref_pairs


# ============================================================================
# Adaptation
# ============================================================================


def mark_elements(errors: np.ndarray, threshold: float = 0.7) -> np.ndarray:
    """Indices of elements with error > threshold * max error, largest error first."""
    errors = np.asarray(errors)
    if errors.size == 0:
        return np.array([], dtype=int)
    order = np.argsort(-errors, kind="stable")
    return order[errors[order] > threshold * np.max(errors)]


def _split_candidate(elem: Element, p_left: int, p_right: int, ref_elems) -> list:
    sons = [
        Element(elem.x1, elem.mid, p_left, n_eq=elem.n_eq, n_sln=1),
        Element(elem.mid, elem.x2, p_right, n_eq=elem.n_eq, n_sln=1),
    ]
    for son in sons:
        project_solution(son, ref_elems)
    return sons


def select_split_orders(norm: str, elem: Element, pair: ElementPair) -> tuple[int, int]:
    """
    Orders of the two sons of `elem` that best reproduce the reference solution.

    Candidates range per son from elem.p to the reference order. Each one is
    scored by the decrease of the projection error of the reference solution
    per added DOF, relative to the unrefined element.
    """
    ref_elems = [e.copy() for e in pair.elements]
    for e in ref_elems:
        e.coeffs = e.coeffs[:1].copy()
        e.n_sln = 1

    current = Element(elem.x1, elem.x2, elem.p, n_eq=elem.n_eq, n_sln=1)
    project_solution(current, ref_elems)
    err_orig = np.sqrt(_difference_norm_squared(norm, [current], ref_elems))

    p_ref_left, p_ref_right = pair.orders
    best, best_rate = (elem.p, elem.p), -np.inf
    candidates = [
        (pl, pr)
        for pl in range(elem.p, max(p_ref_left, elem.p) + 1)
        for pr in range(elem.p, max(p_ref_right, elem.p) + 1)
    ]
    for pl, pr in sorted(candidates, key=lambda c: c[0] + c[1]):
        sons = _split_candidate(elem, pl, pr, ref_elems)
        err = np.sqrt(_difference_norm_squared(norm, sons, ref_elems))
        added = pl + pr - elem.p  # new vertex + bubbles of both sons - old bubbles
        rate = (err_orig - err) / added
        if rate > best_rate:
            best, best_rate = (pl, pr), rate
    return best


def adapt(
    norm: str,
    adapt_type: str,
    threshold: float,
    elem_errors: np.ndarray,
    mesh: Mesh,
    ref_pairs: list,
) -> list:
    """
    Refine the elements flagged by their FTR error, in place.

    A reference pair of two spatially distinct elements means the element is
    split (h-refinement, or hp when the chosen son orders differ from p); a
    single reference element means its degree is raised to that element's.
    Solutions are carried over to the new elements. Returns the applied
    refinements as (active position, kind, orders) tuples.
    """
    marked = mark_elements(elem_errors, threshold)
    snapshot = list(mesh.active)

    decisions = []
    for i in marked:
        elem = mesh.elements[snapshot[i]]
        pair = ref_pairs[i]
        if not pair.is_split:
            decisions.append((int(i), "p", (max(pair.orders[0], elem.p + 1),)))
        elif adapt_type == "h":
            decisions.append((int(i), "h", (elem.p, elem.p)))
        else:
            orders = select_split_orders(norm, elem, pair)
            kind = "h" if orders == (elem.p, elem.p) else "hp"
            decisions.append((int(i), kind, orders))

    for i, kind, orders in decisions:
        idx = snapshot[i]
        if kind == "p":
            mesh.increase_order(idx, orders[0])
        else:
            mesh.refine_element(idx, *orders)
        log.debug(f"Elem [{i}]: {kind}-refinement, orders {orders}")

    mesh.assign_dofs()
    return decisions


def run_hp_adaptivity(
    mesh: Mesh,
    dp: DiscreteProblem,
    params: AdaptivityParameters = AdaptivityParameters(),
    exact_sol: Callable | None = None,
) -> AdaptivityResult:
    """
    Adaptivity loop: coarse Newton solve, FTR error estimate, refinement.

    Stops once the maximum FTR error falls below params.tol_err_ftr, or after
    params.max_adapt_iter steps (converged=False). The mesh is modified in
    place and holds the last coarse solution.
    """
    history = AdaptivityHistory()

    for step in range(1, params.max_adapt_iter + 1):
        log.info(f"============ Adaptivity step {step} ============")
        log.info(f"N_dof = {mesh.get_num_dofs()}")

        solve_newton(mesh, dp, params.coarse_newton())
        elem_errors, ref_pairs = ftr_error_estimate(mesh, dp, params)

        exact_rel_error = None
        if exact_sol is not None:
            err_exact = calc_error_exact(params.norm, mesh, exact_sol)
            exact_norm = calc_solution_norm(params.norm, exact_sol, mesh.n_eq, mesh.a, mesh.b)
            exact_rel_error = err_exact / exact_norm
            log.info(f"Relative error (exact) = {100 * exact_rel_error:g} %")

        max_ftr_error = float(np.max(elem_errors))
        log.info(f"Max FTR error = {max_ftr_error:g}")
        history.append(step, mesh.get_num_dofs(), max_ftr_error, exact_rel_error)

        if max_ftr_error < params.tol_err_ftr:
            log.info(f"Adaptivity converged in {step} steps ({mesh.get_num_dofs()} DOF)")
            return AdaptivityResult(mesh=mesh, history=history, converged=True)

        adapt(params.norm, params.adapt_type, params.threshold, elem_errors, mesh, ref_pairs)

    log.warning(
        f"Adaptivity stopped after {params.max_adapt_iter} steps, "
        f"max FTR error {history.max_ftr_error[-1]:g} >= {params.tol_err_ftr:g}"
    )
    return AdaptivityResult(mesh=mesh, history=history, converged=False)
