"""Tests for weak-form registration and global assembly.

Run with: pytest tests/test_assembly.py -v
"""

import numpy as np
import pytest

from hpFEM import BOUNDARY_LEFT, BOUNDARY_RIGHT, DiscreteProblem, line_mesh, material_mesh
from hpFEM.backends import SparseMatrix, Vector


def mass(ctx, u, dudx, v, dvdx):
    return ctx.integrate(u * v)


def stiffness(ctx, u, dudx, v, dvdx):
    return ctx.integrate(dudx * dvdx)


def load(ctx, v, dvdx):
    return ctx.integrate(v)


def assemble(dp, mesh):
    matrix, rhs = SparseMatrix(), Vector()
    dp.assemble_matrix_and_vector(mesh, matrix, rhs)
    return matrix.toarray(), rhs.array.copy()


class TestVolumeAssembly:
    """Test volumetric forms."""

    def test_mass_matrix(self):
        """Vertex functions sum to one, so the p=1 mass matrix sums to the domain length."""
        dp = DiscreteProblem()
        dp.add_matrix_form(0, 0, mass)
        A, _ = assemble(dp, line_mesh(0.0, 3.0, 4, p_init=1))
        assert A.shape == (5, 5)
        assert np.allclose(A, A.T)
        assert np.isclose(A.sum(), 3.0)

    def test_bubble_stiffness_is_identity(self):
        """On an element of length 2 the bubbles are orthonormal in the H1 seminorm."""
        mesh = line_mesh(0.0, 2.0, 1, p_init=4)
        dp = DiscreteProblem()
        dp.add_matrix_form(0, 0, stiffness)
        A, _ = assemble(dp, mesh)
        bubbles = mesh.active_element(0).dof[0, 2:]
        assert np.allclose(A[np.ix_(bubbles, bubbles)], np.eye(3), atol=1e-12)

    def test_load_vector(self):
        mesh = material_mesh([0.0, 1.0, 3.0], [1, 1], [0, 1], [1, 1])
        dp = DiscreteProblem()
        dp.add_vector_form(0, load)
        _, b = assemble(dp, mesh)
        assert np.allclose(b, [0.5, 1.5, 1.0])

    def test_unregistered_marker_contributes_zero(self):
        mesh = material_mesh([0.0, 1.0, 3.0], [1, 1], [0, 1], [1, 1])
        dp = DiscreteProblem()
        dp.add_vector_form(0, load, marker=0)
        dp.add_matrix_form(0, 0, mass, marker=0)
        A, b = assemble(dp, mesh)
        assert np.allclose(b, [0.5, 0.5, 0.0])
        assert np.allclose(A[2], 0.0)
        assert np.allclose(A[:, 2], 0.0)

    def test_no_forms(self):
        mesh = line_mesh(0.0, 1.0, 3, p_init=2)
        A, b = assemble(DiscreteProblem(), mesh)
        assert A.shape == (7, 7)
        assert np.allclose(A, 0.0)
        assert np.allclose(b, 0.0)

    def test_dirichlet_dofs_skipped(self):
        mesh = line_mesh(0.0, 1.0, 2, p_init=1)
        mesh.set_bc_left_dirichlet(0, 1.0)
        mesh.assign_dofs()
        dp = DiscreteProblem()
        dp.add_matrix_form(0, 0, mass)
        dp.add_vector_form(0, load)
        A, b = assemble(dp, mesh)
        assert A.shape == (2, 2)
        assert np.allclose(b, [0.5, 0.25])

    def test_form_sees_current_solution(self):
        """u_prev carries the mesh coefficients into the forms."""
        mesh = line_mesh(0.0, 1.0, 2, p_init=1)
        mesh.vector_to_solution(np.array([2.0, 2.0, 2.0]))
        dp = DiscreteProblem()
        dp.add_vector_form(0, lambda ctx, v, dvdx: ctx.integrate(ctx.u_prev[0, 0] * v))
        _, b = assemble(dp, mesh)
        assert np.allclose(b, [0.5, 1.0, 0.5])


class TestSurfaceAssembly:
    """Test boundary forms."""

    def test_right_boundary(self):
        mesh = line_mesh(0.0, 1.0, 2, p_init=3)
        dp = DiscreteProblem()
        dp.add_vector_form_surf(0, load, BOUNDARY_RIGHT)
        dp.add_matrix_form_surf(0, 0, mass, BOUNDARY_RIGHT)
        A, b = assemble(dp, mesh)
        last = mesh.active_element(1).dof[0, 1]
        expected = np.zeros(mesh.get_num_dofs())
        expected[last] = 1.0
        assert np.allclose(b, expected)
        assert np.isclose(A[last, last], 1.0)
        assert np.isclose(A.sum(), 1.0)

    def test_left_boundary(self):
        mesh = line_mesh(0.0, 1.0, 2, p_init=2)
        dp = DiscreteProblem()
        dp.add_vector_form_surf(0, load, BOUNDARY_LEFT)
        _, b = assemble(dp, mesh)
        assert np.isclose(b[0], 1.0)
        assert np.isclose(b.sum(), 1.0)

    def test_unknown_boundary(self):
        dp = DiscreteProblem()
        with pytest.raises(ValueError):
            dp.add_vector_form_surf(0, load, 2)
