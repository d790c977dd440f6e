"""
hpFEM - Unified entry point for the reference problems.

Usage:
    python main.py                                   # hp-adaptive first-order ODE
    python main.py adaptivity.adapt_type=h adaptivity.norm=H1
    python main.py problem=neutronics                # k-effective of the slab reactor
    python main.py problem=neutronics matrix_solver=splu
"""

import logging
import sys

import hydra
from hydra.utils import instantiate
from omegaconf import DictConfig

from hpFEM import (
    AdaptivityParameters,
    EigenParameters,
    NeutronicsProblem,
    hpFEMError,
    normalize_to_power,
    run_hp_adaptivity,
    source_iteration,
)

log = logging.getLogger(__name__)


def run_adaptivity(cfg: DictConfig, problem) -> None:
    params = AdaptivityParameters.from_config(cfg.adaptivity)
    mesh = problem.build_mesh(cfg.mesh.n_elem, cfg.mesh.p_init)
    dp = problem.discrete_problem()
    log.info(f"N_dof = {mesh.get_num_dofs()}")

    exact_sol = problem.exact_sol if problem.exact is not None else None
    result = run_hp_adaptivity(mesh, dp, params, exact_sol)

    log.info(f"Convergence history:\n{result.history.to_dataframe().to_string(index=False)}")
    log.info(f"Final mesh:\n{result.mesh.to_dataframe().to_string(index=False)}")
    log.info(f"Done: {len(result.history)} steps, converged={result.converged}")


def run_eigenvalue(cfg: DictConfig, problem: NeutronicsProblem) -> None:
    params = EigenParameters.from_config(cfg.eigen)
    mesh = problem.build_mesh()
    dp = problem.discrete_problem()
    log.info(f"N_dof = {mesh.get_num_dofs()}")

    result = source_iteration(mesh, dp, problem, params)
    c = normalize_to_power(mesh, problem, cfg.desired_power)

    log.info(f"Flux normalized to {cfg.desired_power} W (factor {c:.6e})")
    log.info(f"K_EFF = {result.k_eff:.6f} after {result.iterations} iterations")


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    problem = instantiate(cfg.problem, _convert_="all")
    log.info(f"Problem: {type(problem).__name__}, matrix solver: {cfg.matrix_solver}")

    try:
        if isinstance(problem, NeutronicsProblem):
            run_eigenvalue(cfg, problem)
        else:
            run_adaptivity(cfg, problem)
    except hpFEMError as exc:
        log.error(f"Solver failed: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
