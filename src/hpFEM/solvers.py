import logging

import numpy as np

from .assembly import DiscreteProblem
from .backends import linear_system
from .datastructures import Mesh
from .errors import LinearSolveFailure, NewtonNonConvergence
from .parameters import NewtonParameters, NewtonResult, Termination

log = logging.getLogger(__name__)


def newton_iterations(
    mesh: Mesh, dp: DiscreteProblem, params: NewtonParameters, sln: int = 0
) -> NewtonResult:
    """
    Run Newton's method on the mesh solution without raising on failure.

    Each iteration assembles J(y) and F(y) from the mesh, stops once
    ||F||_2 < tol after at least one full update (the initial residual on a
    fresh reference mesh can be spuriously small), solves J dy = -F and
    pushes y + dy back into the mesh. At most max_iter - 1 updates are
    applied, so the solution left in the mesh is always the one whose
    residual was last reported.
    """
    result = NewtonResult()
    y = mesh.solution_to_vector(sln)

    with linear_system(params.matrix_solver) as (matrix, rhs, solver):
        for it in range(1, params.max_iter + 1):
            dp.assemble_matrix_and_vector(mesh, matrix, rhs)

            res_norm = rhs.norm()
            result.iterations = it
            result.residual_norm = res_norm
            result.residual_history.append(res_norm)
            log.debug(f"---- Newton iter {it}, residual norm: {res_norm:.15f}")

            if res_norm < params.tol and it > 1:
                result.termination = Termination.CONVERGED
                return result
            if it == params.max_iter:
                break

            # J(y) dy = -F(y)
            rhs.change_sign()
            if not solver.solve():
                result.termination = Termination.FAILED
                return result
            y += solver.get_solution()

            mesh.vector_to_solution(y, sln)

    result.termination = Termination.EXHAUSTED
    return result


def solve_newton(
    mesh: Mesh, dp: DiscreteProblem, params: NewtonParameters = NewtonParameters(), sln: int = 0
) -> NewtonResult:
    """Newton solve that leaves the converged solution in the mesh or raises."""
    result = newton_iterations(mesh, dp, params, sln)

    if result.termination is Termination.FAILED:
        raise LinearSolveFailure(
            f"Linear solve failed in Newton iteration {result.iterations} "
            f"({params.matrix_solver}, {mesh.get_num_dofs()} DOF)"
        )
    if result.termination is Termination.EXHAUSTED:
        raise NewtonNonConvergence(result)

    log.debug(
        f"Newton converged in {result.iterations} iterations, "
        f"residual norm {result.residual_norm:.3e} ({mesh.get_num_dofs()} DOF)"
    )
    return result


def residual_norm(mesh: Mesh, dp: DiscreteProblem, matrix_solver: str = "spsolve") -> float:
    """l2 norm of the residual vector at the current mesh solution."""
    with linear_system(matrix_solver) as (_, rhs, _solver):
        dp.assemble_vector(mesh, rhs)
        return float(np.linalg.norm(rhs.array))
