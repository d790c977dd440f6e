"""Tests for the hp mesh: construction, DOF enumeration, replication and refinement.

Run with: pytest tests/test_mesh.py -v
"""

import numpy as np
import pytest

from hpFEM import (
    REFINE_H,
    REFINE_HP,
    REFINE_P,
    evaluate_solution,
    line_mesh,
    linearize,
    material_mesh,
)


def _interpolate_linear(mesh, fn, sln=0):
    """Set vertex coefficients to fn at the element end points, bubbles to zero."""
    for e in mesh.active_elements():
        e.coeffs[sln, 0, 0] = fn(e.x1)
        e.coeffs[sln, 0, 1] = fn(e.x2)
        e.coeffs[sln, 0, 2:] = 0.0


class TestMeshConstruction:
    """Test line and material meshes."""

    def test_line_mesh(self):
        mesh = line_mesh(0.0, 10.0, 5, p_init=1)
        assert mesh.get_n_active_elem() == 5
        assert mesh.a == 0.0
        assert mesh.b == 10.0
        hs = [e.h for e in mesh.active_elements()]
        assert np.allclose(hs, 2.0)

    def test_material_mesh(self):
        mesh = material_mesh([0, 50, 100, 125], [3, 3, 3], [0, 1, 2], [2, 2, 1])
        assert mesh.get_n_active_elem() == 5
        markers = [e.marker for e in mesh.active_elements()]
        assert markers == [0, 0, 1, 1, 2]
        assert mesh.get_num_dofs() == 5 * 3 + 1

    def test_material_mesh_bad_input(self):
        with pytest.raises(ValueError):
            material_mesh([0, 1, 2], [1], [0, 1], [1, 1])
        with pytest.raises(ValueError):
            material_mesh([0, 2, 1], [1, 1], [0, 1], [1, 1])
        with pytest.raises(ValueError):
            line_mesh(0.0, 1.0, 0)

    def test_active_elements_fresh_cursor(self):
        """Every traversal starts from the first active element."""
        mesh = line_mesh(0.0, 1.0, 4)
        first = [e.index for e in mesh.active_elements()]
        second = [e.index for e in mesh.active_elements()]
        assert first == second == mesh.active

    def test_active_element_out_of_range(self):
        mesh = line_mesh(0.0, 1.0, 3)
        with pytest.raises(IndexError):
            mesh.active_element(3)

    def test_find_active_element(self):
        mesh = line_mesh(0.0, 10.0, 5)
        e = mesh.find_active_element(3.0)
        assert e.x1 == 2.0 and e.x2 == 4.0
        assert mesh.find_active_element(10.0).x2 == 10.0

    def test_to_dataframe(self):
        df = line_mesh(0.0, 1.0, 4, p_init=2).to_dataframe()
        assert len(df) == 4
        assert list(df.columns) == ["id", "x1", "x2", "h", "p", "level", "marker"]
        assert (df["p"] == 2).all()


class TestDofEnumeration:
    """Test global DOF numbering."""

    def test_dof_count(self):
        assert line_mesh(0.0, 1.0, 5, p_init=1).get_num_dofs() == 6
        assert line_mesh(0.0, 1.0, 5, p_init=3).get_num_dofs() == 16
        assert line_mesh(0.0, 1.0, 5, p_init=2, n_eq=2).get_num_dofs() == 22

    def test_dirichlet_removes_vertex_dof(self):
        mesh = line_mesh(0.0, 10.0, 5, p_init=1)
        mesh.set_bc_left_dirichlet(0, 1.0)
        assert mesh.assign_dofs() == 5
        first = mesh.active_element(0)
        assert first.dof[0, 0] == -1
        assert first.coeffs[0, 0, 0] == 1.0

        mesh.set_bc_right_dirichlet(0, 2.0)
        assert mesh.assign_dofs() == 4
        assert mesh.active_element(4).dof[0, 1] == -1

    def test_left_to_right_order(self):
        """Left vertex, bubbles, right vertex; the right vertex is shared with the neighbour."""
        mesh = line_mesh(0.0, 1.0, 2, p_init=3)
        e0, e1 = mesh.active_element(0), mesh.active_element(1)
        assert list(e0.dof[0]) == [0, 3, 1, 2]
        assert e1.dof[0, 0] == e0.dof[0, 1]
        assert list(e1.dof[0]) == [3, 6, 4, 5]

    def test_assign_dofs_idempotent(self):
        mesh = material_mesh([0, 1, 3], [2, 4], [0, 1], [2, 3], n_eq=2)
        mesh.set_bc_left_dirichlet(1, 0.0)
        n1 = mesh.assign_dofs()
        dofs1 = [e.dof.copy() for e in mesh.active_elements()]
        n2 = mesh.assign_dofs()
        dofs2 = [e.dof.copy() for e in mesh.active_elements()]
        assert n1 == n2
        for d1, d2 in zip(dofs1, dofs2):
            assert np.array_equal(d1, d2)

    def test_vector_to_solution_restores_dirichlet(self):
        mesh = line_mesh(0.0, 1.0, 3, p_init=2)
        mesh.set_bc_left_dirichlet(0, 5.0)
        n_dof = mesh.assign_dofs()
        mesh.vector_to_solution(np.arange(n_dof, dtype=float))
        assert mesh.active_element(0).coeffs[0, 0, 0] == 5.0
        assert np.allclose(mesh.solution_to_vector(), np.arange(n_dof))

    def test_vector_length_mismatch(self):
        mesh = line_mesh(0.0, 1.0, 3)
        with pytest.raises(ValueError):
            mesh.vector_to_solution(np.zeros(2))


class TestReplication:
    """Test deep replication of a mesh."""

    def test_replica_matches(self):
        mesh = line_mesh(0.0, 2.0, 4, p_init=2)
        _interpolate_linear(mesh, lambda x: x**2)
        replica = mesh.replicate()
        assert replica.get_num_dofs() == mesh.get_num_dofs()
        for e, r in zip(mesh.active_elements(), replica.active_elements()):
            assert (e.x1, e.x2, e.p, e.marker) == (r.x1, r.x2, r.p, r.marker)
            assert np.array_equal(e.coeffs, r.coeffs)
            assert np.array_equal(e.dof, r.dof)

    def test_replica_is_independent(self):
        mesh = line_mesh(0.0, 2.0, 4, p_init=2)
        replica = mesh.replicate()
        replica.active_element(0).coeffs[:] = 7.0
        replica.reference_refinement(1, REFINE_HP)
        assert np.all(mesh.active_element(0).coeffs == 0.0)
        assert mesh.get_n_active_elem() == 4
        assert mesh.get_num_dofs() == 9


class TestRefinement:
    """Test reference refinement and solution transfer."""

    @pytest.mark.parametrize(
        "mode, n_active, orders",
        [(REFINE_HP, 4, (3, 3)), (REFINE_H, 4, (2, 2)), (REFINE_P, 3, (3,))],
    )
    def test_reference_refinement(self, mode, n_active, orders):
        mesh = line_mesh(0.0, 3.0, 3, p_init=2)
        n_dof = mesh.get_num_dofs()
        replaced = mesh.reference_refinement(1, mode)
        assert mesh.get_n_active_elem() == n_active
        assert tuple(mesh.elements[idx].p for idx in replaced) == orders
        assert mesh.get_num_dofs() > n_dof
        covered = sorted((mesh.elements[idx].x1, mesh.elements[idx].x2) for idx in replaced)
        assert covered[0][0] == 1.0 and covered[-1][1] == 2.0

    def test_split_marks_parent_inactive(self):
        mesh = line_mesh(0.0, 1.0, 2, p_init=1)
        parent = mesh.active[0]
        sons = mesh.reference_refinement(0, REFINE_H)
        assert not mesh.elements[parent].active
        assert mesh.elements[parent].sons == tuple(sons)
        assert all(mesh.elements[s].level == 1 for s in sons)
        assert mesh.active[:2] == sons

    def test_order_raise_replaces_element(self):
        mesh = line_mesh(0.0, 1.0, 2, p_init=2)
        mesh.active_element(1).coeffs[0, 0] = [0.5, 1.0, 0.25]
        original = mesh.active[1]
        (replacement,) = mesh.reference_refinement(1, REFINE_P)
        assert replacement != original
        assert not mesh.elements[original].active
        assert mesh.elements[original].sons == (replacement,)
        assert mesh.active[1] == replacement
        new = mesh.elements[replacement]
        assert (new.p, new.level, new.parent) == (3, 0, original)
        assert np.allclose(new.coeffs[0, 0], [0.5, 1.0, 0.25, 0.0])

    def test_unknown_mode(self):
        mesh = line_mesh(0.0, 1.0, 2)
        with pytest.raises(ValueError):
            mesh.reference_refinement(0, "q")

    def test_refinement_preserves_polynomial_solution(self):
        """Projection onto sons of at least the parent's degree is exact."""
        mesh = line_mesh(0.0, 2.0, 2, p_init=3)
        mesh.active_element(0).coeffs[0, 0] = [1.0, -0.5, 0.3, 0.2]
        mesh.active_element(1).coeffs[0, 0] = [-0.5, 0.4, -0.1, 0.6]
        x = np.linspace(0.0, 2.0, 17)
        before, _ = evaluate_solution(mesh, x)

        mesh.reference_refinement(0, REFINE_HP)
        mesh.reference_refinement(2, REFINE_P)
        mesh.refine_element(mesh.active[0], 4, 5)
        after, _ = evaluate_solution(mesh, x)
        assert np.allclose(before, after, atol=1e-12)

    def test_increase_order_cannot_lower(self):
        mesh = line_mesh(0.0, 1.0, 1, p_init=3)
        with pytest.raises(ValueError):
            mesh.increase_order(mesh.active[0], 2)


class TestOutput:
    """Test solution sampling."""

    def test_evaluate_linear(self):
        mesh = line_mesh(0.0, 4.0, 4, p_init=1)
        _interpolate_linear(mesh, lambda x: 2.0 * x + 1.0)
        u, dudx = evaluate_solution(mesh, [3.5, 0.25, 2.0])
        assert np.allclose(u, [8.0, 1.5, 5.0])
        assert np.allclose(dudx, 2.0)

    def test_evaluate_outside_domain(self):
        mesh = line_mesh(0.0, 1.0, 2)
        with pytest.raises(ValueError):
            evaluate_solution(mesh, [1.5])

    def test_linearize(self):
        mesh = line_mesh(0.0, 1.0, 3, p_init=1)
        _interpolate_linear(mesh, lambda x: x)
        x, y = linearize(mesh, n_pts_per_elem=5)
        assert len(x) == len(y) == 15
        assert np.allclose(x, y)
