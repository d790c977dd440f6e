"""Pluggable linear-solve backends.

The Newton engine only talks to three objects created by name:

- SparseMatrix: accumulates element blocks as COO triplets
- Vector: dense right-hand side
- LinearSolver: solve() -> success flag, get_solution() -> increment

Available kinds: "spsolve" (scipy sparse direct), "splu" (SuperLU
factorization) and "dense" (numpy, for small systems and debugging).
"""

import logging
import warnings
from abc import ABC, abstractmethod
from contextlib import contextmanager

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.linalg import MatrixRankWarning, splu, spsolve

log = logging.getLogger(__name__)


class SparseMatrix:
    """Square sparse matrix assembled from (row, col, value) triplets; duplicates are summed."""

    def __init__(self):
        self.prealloc(0)

    def prealloc(self, size: int):
        """Resize to size x size and drop all entries."""
        self.size = int(size)
        self._rows, self._cols, self._vals = [], [], []

    def add(self, i: int, j: int, value: float):
        if i >= 0 and j >= 0:
            self._rows.append(np.array([i]))
            self._cols.append(np.array([j]))
            self._vals.append(np.array([value], dtype=float))

    def add_block(self, rows: np.ndarray, cols: np.ndarray, block: np.ndarray):
        """Scatter a local block; rows/cols equal to -1 (fixed DOFs) are skipped."""
        r_free = rows >= 0
        c_free = cols >= 0
        if not (np.any(r_free) and np.any(c_free)):
            return
        R, C = np.meshgrid(rows[r_free], cols[c_free], indexing="ij")
        self._rows.append(R.ravel())
        self._cols.append(C.ravel())
        self._vals.append(np.asarray(block, dtype=float)[np.ix_(r_free, c_free)].ravel())

    def tocsr(self):
        if not self._vals:
            return coo_matrix((self.size, self.size)).tocsr()
        rows = np.concatenate(self._rows)
        cols = np.concatenate(self._cols)
        vals = np.concatenate(self._vals)
        return coo_matrix((vals, (rows, cols)), shape=(self.size, self.size)).tocsr()

    def toarray(self) -> np.ndarray:
        return self.tocsr().toarray()

    def free(self):
        self.prealloc(0)


class Vector:
    """Dense vector with scatter-add of local contributions."""

    def __init__(self):
        self.prealloc(0)

    def prealloc(self, size: int):
        self.size = int(size)
        self.array = np.zeros(self.size)

    def add(self, rows: np.ndarray, values: np.ndarray):
        """Scatter-add local values; rows equal to -1 are skipped."""
        rows = np.atleast_1d(rows)
        free = rows >= 0
        np.add.at(self.array, rows[free], np.atleast_1d(values)[free])

    def change_sign(self):
        self.array *= -1.0

    def norm(self) -> float:
        return float(np.linalg.norm(self.array))

    def free(self):
        self.prealloc(0)


class LinearSolver(ABC):
    """Solves matrix @ x = rhs for the current contents of matrix and rhs."""

    def __init__(self, matrix: SparseMatrix, rhs: Vector):
        self.matrix = matrix
        self.rhs = rhs
        self.sln = None

    @abstractmethod
    def _solve(self, b: np.ndarray) -> np.ndarray:
        pass

    def solve(self) -> bool:
        """Return True and store the solution, or False if the backend failed."""
        self.sln = None
        try:
            x = np.asarray(self._solve(self.rhs.array.copy()), dtype=float).ravel()
        except (RuntimeError, ValueError, np.linalg.LinAlgError) as exc:
            log.warning(f"{type(self).__name__}: linear solve failed ({exc})")
            return False
        if x.shape != (self.rhs.size,) or not np.all(np.isfinite(x)):
            log.warning(f"{type(self).__name__}: linear solve returned a non-finite solution")
            return False
        self.sln = x
        return True

    def get_solution(self) -> np.ndarray:
        if self.sln is None:
            raise RuntimeError("No solution available; solve() did not succeed")
        return self.sln


class SpsolveSolver(LinearSolver):
    def _solve(self, b):
        with warnings.catch_warnings():
            # a singular matrix yields NaNs, reported as failure by solve()
            warnings.simplefilter("ignore", MatrixRankWarning)
            return spsolve(self.matrix.tocsr().tocsc(), b)


class SuperLUSolver(LinearSolver):
    def _solve(self, b):
        return splu(self.matrix.tocsr().tocsc()).solve(b)


class DenseSolver(LinearSolver):
    def _solve(self, b):
        return np.linalg.solve(self.matrix.toarray(), b)


MATRIX_SOLVERS = {
    "spsolve": SpsolveSolver,
    "splu": SuperLUSolver,
    "dense": DenseSolver,
}


def _check_kind(kind: str):
    if kind not in MATRIX_SOLVERS:
        raise ValueError(f"Unknown matrix solver '{kind}', expected one of {sorted(MATRIX_SOLVERS)}")


def create_matrix(kind: str = "spsolve") -> SparseMatrix:
    _check_kind(kind)
    return SparseMatrix()


def create_vector(kind: str = "spsolve") -> Vector:
    _check_kind(kind)
    return Vector()


def create_linear_solver(kind: str, matrix: SparseMatrix, rhs: Vector) -> LinearSolver:
    _check_kind(kind)
    return MATRIX_SOLVERS[kind](matrix, rhs)


@contextmanager
def linear_system(kind: str = "spsolve"):
    """Matrix, right-hand side and solver for one nonlinear solve, released on exit."""
    matrix = create_matrix(kind)
    rhs = create_vector(kind)
    solver = create_linear_solver(kind, matrix, rhs)
    try:
        yield matrix, rhs, solver
    finally:
        solver.sln = None
        matrix.free()
        rhs.free()
