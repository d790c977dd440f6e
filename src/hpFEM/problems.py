"""Reference problems: weak forms, coarse meshes and problem data.

FirstOrderODE
    y' = f(y, x) on (a, b), y(a) = ya, posed as the residual
    F(y) = int (y' - f(y, x)) v dx with Jacobian int (u' - df/dy u) v dx.

NeutronicsProblem
    One-group neutron diffusion eigenproblem in a slab reactor,
    -(D u')' + Sa u = (1/k) nSf u, with total reflection on the left
    (homogeneous Neumann) and vacuum on the right (albedo u + D u' = 0).
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from .assembly import BOUNDARY_LEFT, BOUNDARY_RIGHT, DiscreteProblem
from .datastructures import Mesh
from .elements import gauss_quadrature, quadrature_points
from .mesh import line_mesh, material_mesh


# ============================================================================
# General first-order ODE
# ============================================================================


def _minus_y_squared(y, x):
    return -y * y


def _minus_two_y(y, x):
    return -2.0 * y


def _inverse_linear(x):
    x = np.atleast_1d(np.asarray(x, dtype=float))
    return (1.0 / (x + 1.0))[None, :], (-1.0 / (x + 1.0) ** 2)[None, :]


@dataclass(frozen=True)
class FirstOrderODE:
    """
    y' = f(y, x), y(a) = ya.

    The default is y' = -y^2, y(0) = 1 on (0, 10) with exact solution
    y = 1 / (x + 1).
    """

    f: Callable = _minus_y_squared
    dfdy: Callable = _minus_two_y
    a: float = 0.0
    b: float = 10.0
    ya: float = 1.0
    exact: Optional[Callable] = _inverse_linear

    def jacobian(self, ctx, u, dudx, v, dvdx):
        y = ctx.u_prev[0, 0]
        return ctx.integrate((dudx - self.dfdy(y, ctx.x) * u) * v)

    def residual(self, ctx, v, dvdx):
        y = ctx.u_prev[0, 0]
        dydx = ctx.du_prevdx[0, 0]
        return ctx.integrate((dydx - self.f(y, ctx.x)) * v)

    def discrete_problem(self) -> DiscreteProblem:
        dp = DiscreteProblem()
        dp.add_matrix_form(0, 0, self.jacobian)
        dp.add_vector_form(0, self.residual)
        return dp

    def build_mesh(self, n_elem: int = 5, p_init: int = 1) -> Mesh:
        """Equidistant coarse mesh with the initial condition as left Dirichlet value."""
        mesh = line_mesh(self.a, self.b, n_elem, p_init)
        mesh.set_bc_left_dirichlet(0, self.ya)
        mesh.assign_dofs()
        return mesh

    def exact_sol(self, x):
        """(u, dudx), each of shape (1, len(x))."""
        if self.exact is None:
            raise ValueError("No exact solution provided for this problem")
        return self.exact(x)


# ============================================================================
# Neutron diffusion eigenproblem
# ============================================================================


@dataclass(frozen=True)
class Material:
    """One-group cross sections of a material region."""

    D: float  # diffusion coefficient
    Sa: float  # absorption cross section
    nSf: float  # fission yield cross section (nu * Sigma_f)


def _default_materials():
    return (
        Material(D=0.65, Sa=0.12, nSf=0.185),  # inner core
        Material(D=0.75, Sa=0.10, nSf=0.15),  # outer core
        Material(D=1.15, Sa=0.01, nSf=0.0),  # reflector
    )


@dataclass
class NeutronicsProblem:
    """
    Three-slab reactor (inner core, outer core, reflector), marker = region index.

    k_eff is read by the fission term of the residual and updated by the
    source iteration; the previous flux is taken from solution slot 1.
    """

    materials: tuple = field(default_factory=_default_materials)
    interfaces: tuple = (0.0, 50.0, 100.0, 125.0)  # [cm]
    poly_orders: tuple = (3, 3, 3)
    subdivisions: tuple = (2, 2, 1)
    neumann_left: float = 0.0
    albedo_right: float = 0.5
    nu: float = 2.43  # mean number of neutrons per fission
    eps: float = 3.204e-11  # mean energy release per fission [J]
    k_eff: float = 1.0

    def __post_init__(self):
        self.materials = tuple(
            m if isinstance(m, Material) else Material(**m) for m in self.materials
        )
        if len(self.materials) != len(self.interfaces) - 1:
            raise ValueError(
                f"{len(self.materials)} materials for {len(self.interfaces) - 1} regions"
            )

    # -- weak forms ----------------------------------------------------------

    def jacobian_vol(self, ctx, u, dudx, v, dvdx):
        m = self.materials[ctx.marker]
        return ctx.integrate(m.D * dudx * dvdx + m.Sa * u * v)

    def residual_vol(self, ctx, v, dvdx):
        m = self.materials[ctx.marker]
        u, dudx = ctx.u_prev[0, 0], ctx.du_prevdx[0, 0]
        u_old = ctx.u_prev[1, 0]
        return ctx.integrate(m.D * dudx * dvdx + m.Sa * u * v - m.nSf * u_old * v / self.k_eff)

    def jacobian_surf_right(self, ctx, u, dudx, v, dvdx):
        return ctx.integrate(self.albedo_right * u * v)

    def residual_surf_right(self, ctx, v, dvdx):
        return ctx.integrate(self.albedo_right * ctx.u_prev[0, 0] * v)

    def residual_surf_left(self, ctx, v, dvdx):
        return ctx.integrate(-self.neumann_left * v)

    def discrete_problem(self) -> DiscreteProblem:
        dp = DiscreteProblem()
        for marker in range(len(self.materials)):
            dp.add_matrix_form(0, 0, self.jacobian_vol, marker)
            dp.add_vector_form(0, self.residual_vol, marker)
        dp.add_vector_form_surf(0, self.residual_surf_left, BOUNDARY_LEFT)
        dp.add_matrix_form_surf(0, 0, self.jacobian_surf_right, BOUNDARY_RIGHT)
        dp.add_vector_form_surf(0, self.residual_surf_right, BOUNDARY_RIGHT)
        return dp

    def build_mesh(self, init_val: float = 1.0) -> Mesh:
        """Coarse mesh with two solution slots and the constant initial flux."""
        mesh = material_mesh(
            self.interfaces,
            self.poly_orders,
            list(range(len(self.materials))),
            self.subdivisions,
            n_eq=1,
            n_sln=2,
        )
        mesh.set_vertex_dofs_constant(init_val)
        return mesh

    # -- integral quantities -------------------------------------------------

    def element_fission_yield(self, e) -> float:
        """int nSf u dx over one element (nSf is constant per element)."""
        xi, w = gauss_quadrature(quadrature_points(e.p))
        x = e.to_physical(xi)
        vals, _ = e.evaluate(x, 0)
        return float(self.materials[e.marker].nSf * np.sum(0.5 * e.h * w * vals[0]))

    def fission_yield(self, mesh: Mesh) -> float:
        """int nSf u dx over the whole mesh."""
        return sum(self.element_fission_yield(e) for e in mesh.active_elements())

    def power(self, mesh: Mesh) -> float:
        """Power [W] generated by the current flux, eps * int Sigma_f u dx."""
        return self.eps * self.fission_yield(mesh) / self.nu
