"""Source (power) iteration for the dominant eigenvalue of a diffusion problem.

The eigenvalue problem object supplies the physics: its residual form reads
``problem.k_eff`` and the previous flux from solution slot 1, and
``problem.fission_yield(mesh)`` integrates nu*Sigma_f*u over the mesh.
"""

import logging

from .assembly import DiscreteProblem
from .datastructures import Mesh
from .errors import SourceIterationNonConvergence
from .parameters import EigenParameters, EigenResult, Termination
from .solvers import solve_newton

log = logging.getLogger(__name__)

CURRENT_SOLUTION = 0
PREVIOUS_SOLUTION = 1


def source_iteration(
    mesh: Mesh, dp: DiscreteProblem, problem, params: EigenParameters = EigenParameters()
) -> EigenResult:
    """
    Iterate flux shape and k_eff until |k_new - k_old| / k_new < params.tol_si.

    Each iteration freezes the current flux as fission source (slot 1),
    Newton-solves for the new flux (slot 0) and sets k_eff to the total
    fission yield of the new flux. Raises SourceIterationNonConvergence
    after params.max_si iterations.
    """
    if mesh.n_sln < 2:
        raise ValueError("Source iteration needs a mesh with at least two solution slots")

    problem.k_eff = params.k_eff_init
    result = EigenResult(k_eff=problem.k_eff)

    for it in range(1, params.max_si + 1):
        mesh.copy_dofs(CURRENT_SOLUTION, PREVIOUS_SOLUTION)
        solve_newton(mesh, dp, params.newton(), sln=CURRENT_SOLUTION)

        k_old = problem.k_eff
        k_new = problem.fission_yield(mesh)
        if k_new <= 0:
            raise SourceIterationNonConvergence(result)
        problem.k_eff = k_new

        result.k_eff = k_new
        result.iterations = it
        result.k_history.append(k_new)
        log.info(f"K_EFF_{it} = {k_new:.8f}")

        if abs(k_new - k_old) / k_new < params.tol_si:
            result.termination = Termination.CONVERGED
            log.info(f"Source iteration converged: k_eff = {k_new:.8f} ({it} iterations)")
            return result

    raise SourceIterationNonConvergence(result)


def normalize_to_power(mesh: Mesh, problem, desired_power: float) -> float:
    """
    Scale the flux so that the power it generates equals desired_power [W].

    Every coefficient of the current solution is multiplied by the same
    constant, which is returned; k_eff is untouched.
    """
    power = problem.power(mesh)
    if power == 0:
        raise ValueError("The flux generates no power; cannot normalize")
    c = desired_power / power
    mesh.multiply_dofs(c, sln=CURRENT_SOLUTION)
    return c
