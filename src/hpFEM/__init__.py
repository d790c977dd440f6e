"""hpFEM package for 1D hp-adaptive finite elements.

This package implements hierarchic (Lobatto) finite elements of variable
polynomial degree for nonlinear ODE boundary-value problems and
diffusion eigenvalue problems in 1D.

Main components:
- Mesh, Element: hp mesh with per-element degree and local refinement
- DiscreteProblem: weak-form registration and global assembly
- solve_newton: Newton's method on the mesh solution
- run_hp_adaptivity: FTR error estimation and h/p/hp adaptation loop
- source_iteration: power iteration for k-effective
"""

from .datastructures import (
    Element,
    ElementPair,
    Mesh,
    REFINE_H,
    REFINE_P,
    REFINE_HP,
    project_solution,
)
from .elements import lobatto_basis, gauss_quadrature, quadrature_points
from .mesh import line_mesh, material_mesh
from .assembly import BOUNDARY_LEFT, BOUNDARY_RIGHT, DiscreteProblem, FormContext
from .backends import (
    create_matrix,
    create_vector,
    create_linear_solver,
    linear_system,
)
from .errors import (
    hpFEMError,
    LinearSolveFailure,
    NewtonNonConvergence,
    SourceIterationNonConvergence,
)
from .parameters import (
    Termination,
    NewtonParameters,
    AdaptivityParameters,
    EigenParameters,
    NewtonResult,
    AdaptivityHistory,
    AdaptivityResult,
    EigenResult,
)
from .solvers import newton_iterations, solve_newton, residual_norm
from .amr import (
    calc_error_estimate,
    calc_error_exact,
    calc_solution_norm,
    ftr_error_estimate,
    mark_elements,
    select_split_orders,
    adapt,
    run_hp_adaptivity,
)
from .eigen import source_iteration, normalize_to_power
from .interpolation import evaluate_solution, linearize
from .problems import FirstOrderODE, Material, NeutronicsProblem

__all__ = [
    # Mesh
    "Element",
    "ElementPair",
    "Mesh",
    "REFINE_H",
    "REFINE_P",
    "REFINE_HP",
    "project_solution",
    "line_mesh",
    "material_mesh",
    # Shape functions
    "lobatto_basis",
    "gauss_quadrature",
    "quadrature_points",
    # Assembly
    "BOUNDARY_LEFT",
    "BOUNDARY_RIGHT",
    "DiscreteProblem",
    "FormContext",
    # Linear algebra
    "create_matrix",
    "create_vector",
    "create_linear_solver",
    "linear_system",
    # Errors
    "hpFEMError",
    "LinearSolveFailure",
    "NewtonNonConvergence",
    "SourceIterationNonConvergence",
    # Parameters and results
    "Termination",
    "NewtonParameters",
    "AdaptivityParameters",
    "EigenParameters",
    "NewtonResult",
    "AdaptivityHistory",
    "AdaptivityResult",
    "EigenResult",
    # Solvers
    "newton_iterations",
    "solve_newton",
    "residual_norm",
    # Adaptivity
    "calc_error_estimate",
    "calc_error_exact",
    "calc_solution_norm",
    "ftr_error_estimate",
    "mark_elements",
    "select_split_orders",
    "adapt",
    "run_hp_adaptivity",
    # Eigenvalue problems
    "source_iteration",
    "normalize_to_power",
    # Output
    "evaluate_solution",
    "linearize",
    # Problems
    "FirstOrderODE",
    "Material",
    "NeutronicsProblem",
]
