"""Weak-form registration and global assembly.

Forms are plain callables, vectorized over the shape functions of one
element. Every form receives a FormContext with the quadrature data and the
current solution of the element:

    jacobian(ctx, u, dudx, v, dvdx) -> (n_test, n_trial)
        trial arrays u, dudx have shape (1, n_trial, n_pts),
        test arrays v, dvdx have shape (n_test, 1, n_pts)

    residual(ctx, v, dvdx) -> (n_test,)
        test arrays v, dvdx have shape (n_test, n_pts)

so that e.g. ``ctx.integrate(dudx * v)`` yields the full local block.
Surface forms use the same signatures at the single boundary point.
"""

from dataclasses import dataclass

import numpy as np

from .backends import SparseMatrix, Vector
from .datastructures import Element, Mesh
from .elements import lobatto_basis, reference_tables

BOUNDARY_LEFT = 0
BOUNDARY_RIGHT = 1


@dataclass
class FormContext:
    """
    Field data handed to a weak form.

    Attributes
    ----------
    x : ndarray (n_pts,)
        Physical quadrature points (the boundary point for surface forms)
    weights : ndarray (n_pts,)
        Physical quadrature weights (ones for surface forms)
    u_prev, du_prevdx : ndarray (n_sln, n_eq, n_pts)
        Current solution values and x-derivatives of every slot
    element : Element
        Element being assembled
    marker : int
        Material marker of the element
    side : int | None
        BOUNDARY_LEFT / BOUNDARY_RIGHT for surface forms, None otherwise
    """

    x: np.ndarray
    weights: np.ndarray
    u_prev: np.ndarray
    du_prevdx: np.ndarray
    element: Element
    marker: int
    side: int | None = None

    def integrate(self, expr) -> np.ndarray:
        """Quadrature sum over the last axis."""
        return np.sum(self.weights * expr, axis=-1)


class DiscreteProblem:
    """Registry of weak forms keyed by equation indices and marker / boundary."""

    def __init__(self):
        self.matrix_forms = {}
        self.vector_forms = {}
        self.matrix_forms_surf = {}
        self.vector_forms_surf = {}

    def add_matrix_form(self, i: int, j: int, fn, marker: int | None = None):
        """Jacobian block (i, j) on elements with `marker` (None: every element)."""
        self.matrix_forms.setdefault((i, j, marker), []).append(fn)

    def add_vector_form(self, i: int, fn, marker: int | None = None):
        """Residual of equation i on elements with `marker` (None: every element)."""
        self.vector_forms.setdefault((i, marker), []).append(fn)

    def add_matrix_form_surf(self, i: int, j: int, fn, boundary: int):
        self.matrix_forms_surf.setdefault((i, j, _check_boundary(boundary)), []).append(fn)

    def add_vector_form_surf(self, i: int, fn, boundary: int):
        self.vector_forms_surf.setdefault((i, _check_boundary(boundary)), []).append(fn)

    # ------------------------------------------------------------------

    def assemble_matrix_and_vector(self, mesh: Mesh, matrix: SparseMatrix, rhs: Vector):
        """Overwrite matrix and rhs with the Jacobian and residual at the mesh solution."""
        n_dof = mesh.get_num_dofs()
        matrix.prealloc(n_dof)
        rhs.prealloc(n_dof)

        for e in mesh.active_elements():
            self._assemble_volume(e, matrix, rhs)

        first = mesh.elements[mesh.active[0]]
        last = mesh.elements[mesh.active[-1]]
        self._assemble_surface(first, BOUNDARY_LEFT, matrix, rhs)
        self._assemble_surface(last, BOUNDARY_RIGHT, matrix, rhs)

    def assemble_vector(self, mesh: Mesh, rhs: Vector):
        """Residual only."""
        self.assemble_matrix_and_vector(mesh, SparseMatrix(), rhs)

    def _assemble_volume(self, e: Element, matrix: SparseMatrix, rhs: Vector):
        matrix_forms = _matching(self.matrix_forms, e.marker)
        vector_forms = _matching(self.vector_forms, e.marker)
        if not (matrix_forms or vector_forms):
            return

        xi, w, phi, dphi = reference_tables(e.p)
        dphidx = dphi * (2.0 / e.h)
        ctx = FormContext(
            x=e.to_physical(xi),
            weights=0.5 * e.h * np.asarray(w),
            u_prev=e.coeffs @ phi,
            du_prevdx=e.coeffs @ dphidx,
            element=e,
            marker=e.marker,
        )
        self._scatter(ctx, e, phi, dphidx, matrix_forms, vector_forms, matrix, rhs)

    def _assemble_surface(self, e: Element, side: int, matrix: SparseMatrix, rhs: Vector):
        matrix_forms = _matching(self.matrix_forms_surf, side)
        vector_forms = _matching(self.vector_forms_surf, side)
        if not (matrix_forms or vector_forms):
            return

        xi = np.array([-1.0 if side == BOUNDARY_LEFT else 1.0])
        phi, dphi = lobatto_basis(e.p, xi)
        dphidx = dphi * (2.0 / e.h)
        ctx = FormContext(
            x=e.to_physical(xi),
            weights=np.ones(1),
            u_prev=e.coeffs @ phi,
            du_prevdx=e.coeffs @ dphidx,
            element=e,
            marker=e.marker,
            side=side,
        )
        self._scatter(ctx, e, phi, dphidx, matrix_forms, vector_forms, matrix, rhs)

    @staticmethod
    def _scatter(ctx, e, phi, dphidx, matrix_forms, vector_forms, matrix, rhs):
        for (i, j), fn in matrix_forms:
            local = fn(ctx, phi[None, :, :], dphidx[None, :, :], phi[:, None, :], dphidx[:, None, :])
            matrix.add_block(e.dof[i], e.dof[j], local)
        for (i,), fn in vector_forms:
            rhs.add(e.dof[i], fn(ctx, phi, dphidx))


def _check_boundary(boundary: int) -> int:
    if boundary not in (BOUNDARY_LEFT, BOUNDARY_RIGHT):
        raise ValueError(f"Unknown boundary {boundary}, expected BOUNDARY_LEFT or BOUNDARY_RIGHT")
    return boundary


def _matching(forms: dict, tag) -> list:
    """Forms registered for `tag` or for every tag (None), as ((eq indices), fn) pairs."""
    return [
        (key[:-1], fn)
        for key, fns in forms.items()
        if key[-1] is None or key[-1] == tag
        for fn in fns
    ]
