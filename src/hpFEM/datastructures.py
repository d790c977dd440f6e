from __future__ import annotations

import copy
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from .elements import gauss_quadrature, lobatto_basis, quadrature_points

# Reference refinement modes
REFINE_H = "h"
REFINE_P = "p"
REFINE_HP = "hp"
REFINEMENT_MODES = (REFINE_H, REFINE_P, REFINE_HP)

GEOMETRY_TOL = 1e-12


@dataclass(eq=False)
class Element:
    """
    One interval [x1, x2] of a 1D hp mesh.

    Attributes
    ----------
    x1, x2 : float
        Element end points
    p : int
        Polynomial degree, shared by all equations of the element
    n_eq : int
        Number of equations (solution components)
    n_sln : int
        Number of solution slots (e.g. current and previous iterate)
    marker : int
        Material marker
    level : int
        Refinement level (0 for elements of the initial mesh)
    index : int
        Stable position in the mesh arena
    id : int
        Position in the active sequence, set by Mesh.assign_dofs()
    dof : ndarray (n_eq, p+1)
        Global DOF index per shape function, -1 where fixed by a Dirichlet BC
    coeffs : ndarray (n_sln, n_eq, p+1)
        Shape function coefficients
    """

    x1: float
    x2: float
    p: int
    n_eq: int = 1
    n_sln: int = 1
    marker: int = 0
    level: int = 0
    index: int = -1
    id: int = -1
    active: bool = True
    parent: int | None = None
    sons: tuple = ()
    left: int | None = None
    right: int | None = None
    dof: np.ndarray = None
    coeffs: np.ndarray = None

    def __post_init__(self):
        if self.x2 <= self.x1:
            raise ValueError(f"Degenerate element [{self.x1}, {self.x2}]")
        if self.p < 1:
            raise ValueError(f"Polynomial degree must be >= 1, got {self.p}")
        if self.dof is None:
            self.dof = np.full((self.n_eq, self.p + 1), -1, dtype=np.int64)
        if self.coeffs is None:
            self.coeffs = np.zeros((self.n_sln, self.n_eq, self.p + 1))

    @property
    def h(self) -> float:
        return self.x2 - self.x1

    @property
    def mid(self) -> float:
        return 0.5 * (self.x1 + self.x2)

    def to_reference(self, x) -> np.ndarray:
        return (2.0 * np.asarray(x, dtype=float) - self.x1 - self.x2) / self.h

    def to_physical(self, xi) -> np.ndarray:
        return self.mid + 0.5 * self.h * np.asarray(xi, dtype=float)

    def evaluate_all(self, x) -> tuple[np.ndarray, np.ndarray]:
        """Values and x-derivatives of all slots at physical points, shape (n_sln, n_eq, n_pts)."""
        phi, dphi = lobatto_basis(self.p, self.to_reference(x))
        return self.coeffs @ phi, (self.coeffs @ dphi) * (2.0 / self.h)

    def evaluate(self, x, sln: int = 0) -> tuple[np.ndarray, np.ndarray]:
        """Values and x-derivatives of one slot at physical points, shape (n_eq, n_pts)."""
        vals, ders = self.evaluate_all(x)
        return vals[sln], ders[sln]

    def get_solution_quad(self, sln: int = 0, n_pts: int | None = None):
        """Physical quadrature points, weights and solution values/derivatives there."""
        n_pts = quadrature_points(self.p) if n_pts is None else n_pts
        xi, w = gauss_quadrature(n_pts)
        x = self.to_physical(xi)
        vals, ders = self.evaluate(x, sln)
        return x, 0.5 * self.h * w, vals, ders

    def set_order(self, p_new: int):
        """Change the degree; added bubbles get zero coefficients, removed ones are dropped."""
        if p_new < 1:
            raise ValueError(f"Polynomial degree must be >= 1, got {p_new}")
        coeffs = np.zeros((self.n_sln, self.n_eq, p_new + 1))
        n_keep = min(p_new, self.p) + 1
        coeffs[:, :, :n_keep] = self.coeffs[:, :, :n_keep]
        self.coeffs = coeffs
        self.dof = np.full((self.n_eq, p_new + 1), -1, dtype=np.int64)
        self.p = p_new

    def copy(self) -> Element:
        """Detached value copy."""
        return copy.deepcopy(self)


def _composite_rule(a: float, b: float, breaks, n_pts: int):
    """Gauss rule on [a, b] split at interior break points."""
    cuts = [a] + [t for t in sorted(breaks) if a + GEOMETRY_TOL < t < b - GEOMETRY_TOL] + [b]
    xi, w = gauss_quadrature(n_pts)
    xs, ws = [], []
    for lo, hi in zip(cuts[:-1], cuts[1:]):
        xs.append(0.5 * (lo + hi) + 0.5 * (hi - lo) * xi)
        ws.append(0.5 * (hi - lo) * w)
    return np.concatenate(xs), np.concatenate(ws)


def _evaluate_piecewise(sources, x):
    """Evaluate all slots of a list of covering elements at sorted points x."""
    vals = np.empty((sources[0].n_sln, sources[0].n_eq, len(x)))
    ders = np.empty_like(vals)
    lefts = np.array([s.x1 for s in sources])
    owner = np.clip(np.searchsorted(lefts, x, side="right") - 1, 0, len(sources) - 1)
    for k, src in enumerate(sources):
        mask = owner == k
        if np.any(mask):
            vals[:, :, mask], ders[:, :, mask] = src.evaluate_all(x[mask])
    return vals, ders


def project_solution(dst: Element, sources) -> None:
    """
    Transfer the solution of `sources` (elements covering dst) onto dst.

    Vertex coefficients take the source values at the end points of dst, so
    continuity is preserved; bubble coefficients are the H1-seminorm
    projection of the remainder. The transfer is exact whenever the source
    solution lies in the polynomial space of dst.
    """
    sources = sorted(sources, key=lambda s: s.x1)
    ends, _ = _evaluate_piecewise(sources, np.array([dst.x1, dst.x2]))
    dst.coeffs[:, :, 0] = ends[:, :, 0]
    dst.coeffs[:, :, 1] = ends[:, :, 1]
    if dst.p < 2:
        return

    p_max = max([dst.p] + [s.p for s in sources])
    breaks = [s.x1 for s in sources] + [s.x2 for s in sources]
    x, w = _composite_rule(dst.x1, dst.x2, breaks, quadrature_points(p_max))
    _, ders = _evaluate_piecewise(sources, x)
    _, dphi = lobatto_basis(dst.p, dst.to_reference(x))

    # c_k = int u'(x) l_k'(xi(x)) dx, since dl_k/dx = (2/h) dl_k/dxi and dx = (h/2) dxi
    dst.coeffs[:, :, 2:] = ders @ (w * dphi[2:]).T


@dataclass
class ElementPair:
    """Reference (FTR) counterpart of one coarse element: one element if only
    the order was raised, two if the element was split in space."""

    elements: tuple

    @property
    def is_split(self) -> bool:
        if len(self.elements) < 2:
            return False
        left, right = self.elements
        return abs(left.x1 - right.x1) > GEOMETRY_TOL or abs(left.x2 - right.x2) > GEOMETRY_TOL

    @property
    def orders(self) -> tuple:
        return tuple(e.p for e in self.elements)


@dataclass
class Mesh:
    """
    Arena of 1D hp elements.

    Attributes
    ----------
    elements : list[Element]
        All elements ever created (active and refined-away), addressed by
        stable arena index
    active : list[int]
        Arena indices of the active elements, in domain order
    n_eq, n_sln : int
        Equations and solution slots per element
    bc_left_dirichlet, bc_right_dirichlet : dict[int, float]
        Dirichlet values per equation at the domain ends
    """

    elements: list = field(default_factory=list)
    active: list = field(default_factory=list)
    n_eq: int = 1
    n_sln: int = 1
    bc_left_dirichlet: dict = field(default_factory=dict)
    bc_right_dirichlet: dict = field(default_factory=dict)
    n_dof: int = 0

    def add_element(self, elem: Element) -> int:
        """Append an element to the arena and the end of the active sequence."""
        elem.index = len(self.elements)
        self.elements.append(elem)
        self.active.append(elem.index)
        self._relink()
        return elem.index

    @property
    def a(self) -> float:
        return self.elements[self.active[0]].x1

    @property
    def b(self) -> float:
        return self.elements[self.active[-1]].x2

    def get_n_active_elem(self) -> int:
        return len(self.active)

    def get_num_dofs(self) -> int:
        return self.n_dof

    def active_elements(self):
        """Fresh cursor over the active elements in domain order."""
        for idx in list(self.active):
            yield self.elements[idx]

    def active_element(self, i: int) -> Element:
        """The i-th active element (0-based, domain order)."""
        if not 0 <= i < len(self.active):
            raise IndexError(f"Active element {i} out of range [0, {len(self.active)})")
        return self.elements[self.active[i]]

    def find_active_element(self, x: float) -> Element:
        """Active element containing x (the left one on a shared vertex)."""
        rights = np.array([self.elements[idx].x2 for idx in self.active])
        pos = int(np.searchsorted(rights, x - GEOMETRY_TOL))
        return self.elements[self.active[min(pos, len(self.active) - 1)]]

    def _relink(self):
        for pos, idx in enumerate(self.active):
            e = self.elements[idx]
            e.left = self.active[pos - 1] if pos > 0 else None
            e.right = self.active[pos + 1] if pos + 1 < len(self.active) else None

    # ------------------------------------------------------------------
    # Boundary conditions and DOF enumeration
    # ------------------------------------------------------------------

    def set_bc_left_dirichlet(self, eq: int, value: float):
        self._check_eq(eq)
        self.bc_left_dirichlet[eq] = float(value)

    def set_bc_right_dirichlet(self, eq: int, value: float):
        self._check_eq(eq)
        self.bc_right_dirichlet[eq] = float(value)

    def _check_eq(self, eq: int):
        if not 0 <= eq < self.n_eq:
            raise ValueError(f"Equation index {eq} out of range [0, {self.n_eq})")

    def assign_dofs(self) -> int:
        """
        Enumerate the free DOFs left to right and return their count.

        Per element and equation the order is: left vertex (shared with the
        left neighbour), bubbles, right vertex. Vertex DOFs fixed by a
        Dirichlet condition get index -1 and their coefficient is set to the
        boundary value.
        """
        count = 0
        n_active = len(self.active)
        shared = np.full(self.n_eq, -1, dtype=np.int64)

        for pos, e in enumerate(self.active_elements()):
            e.id = pos
            for c in range(self.n_eq):
                if pos > 0:
                    e.dof[c, 0] = shared[c]
                elif c in self.bc_left_dirichlet:
                    e.dof[c, 0] = -1
                    e.coeffs[0, c, 0] = self.bc_left_dirichlet[c]
                else:
                    e.dof[c, 0] = count
                    count += 1

                n_bubbles = e.p - 1
                e.dof[c, 2:] = np.arange(count, count + n_bubbles)
                count += n_bubbles

                if pos == n_active - 1 and c in self.bc_right_dirichlet:
                    e.dof[c, 1] = -1
                    e.coeffs[0, c, 1] = self.bc_right_dirichlet[c]
                else:
                    e.dof[c, 1] = count
                    count += 1
                shared[c] = e.dof[c, 1]

        self.n_dof = count
        return count

    # ------------------------------------------------------------------
    # Solution vector <-> element coefficients
    # ------------------------------------------------------------------

    def solution_to_vector(self, sln: int = 0) -> np.ndarray:
        """Gather the free coefficients of one slot into a flat vector."""
        y = np.zeros(self.n_dof)
        for e in self.active_elements():
            free = e.dof >= 0
            y[e.dof[free]] = e.coeffs[sln][free]
        return y

    def vector_to_solution(self, y: np.ndarray, sln: int = 0):
        """Scatter a flat vector into one slot; fixed coefficients get their BC values."""
        if len(y) != self.n_dof:
            raise ValueError(f"Vector length {len(y)} does not match {self.n_dof} DOFs")
        for e in self.active_elements():
            free = e.dof >= 0
            e.coeffs[sln][free] = y[e.dof[free]]
        first = self.elements[self.active[0]]
        last = self.elements[self.active[-1]]
        for c, value in self.bc_left_dirichlet.items():
            first.coeffs[sln, c, 0] = value
        for c, value in self.bc_right_dirichlet.items():
            last.coeffs[sln, c, 1] = value

    def copy_dofs(self, src: int, dst: int):
        """Copy coefficient slot src into slot dst on every active element."""
        for e in self.active_elements():
            e.coeffs[dst] = e.coeffs[src]

    def multiply_dofs(self, factor: float, sln: int = 0):
        for e in self.active_elements():
            e.coeffs[sln] *= factor

    def set_vertex_dofs_constant(self, value: float, eq: int = 0, sln: int = 0):
        """Constant initial guess: vertex coefficients = value, bubbles = 0."""
        self._check_eq(eq)
        for e in self.active_elements():
            e.coeffs[sln, eq, :2] = value
            e.coeffs[sln, eq, 2:] = 0.0

    # ------------------------------------------------------------------
    # Replication and refinement
    # ------------------------------------------------------------------

    def replicate(self) -> Mesh:
        """Deep value copy; the replica shares no state with this mesh."""
        return copy.deepcopy(self)

    def refine_element(self, idx: int, p_left: int, p_right: int) -> tuple[int, int]:
        """Split active element `idx` at its midpoint; the sons inherit the solution."""
        parent = self.elements[idx]
        if not parent.active:
            raise ValueError(f"Element {idx} is not active")

        sons = []
        for x1, x2, p in ((parent.x1, parent.mid, p_left), (parent.mid, parent.x2, p_right)):
            son = Element(
                x1, x2, p,
                n_eq=parent.n_eq,
                n_sln=parent.n_sln,
                marker=parent.marker,
                level=parent.level + 1,
                parent=idx,
            )
            project_solution(son, [parent])
            son.index = len(self.elements)
            self.elements.append(son)
            sons.append(son.index)

        parent.active = False
        parent.sons = tuple(sons)
        pos = self.active.index(idx)
        self.active[pos:pos + 1] = sons
        self._relink()
        return sons[0], sons[1]

    def _replace_element(self, idx: int, p_new: int) -> int:
        """Deactivate element `idx` in favour of a copy of degree p_new."""
        parent = self.elements[idx]
        if not parent.active:
            raise ValueError(f"Element {idx} is not active")
        son = Element(
            parent.x1, parent.x2, p_new,
            n_eq=parent.n_eq,
            n_sln=parent.n_sln,
            marker=parent.marker,
            level=parent.level,
            parent=idx,
        )
        project_solution(son, [parent])
        son.index = len(self.elements)
        self.elements.append(son)

        parent.active = False
        parent.sons = (son.index,)
        self.active[self.active.index(idx)] = son.index
        self._relink()
        return son.index

    def increase_order(self, idx: int, p_new: int):
        """Raise the degree of active element `idx` in place."""
        e = self.elements[idx]
        if not e.active:
            raise ValueError(f"Element {idx} is not active")
        if p_new < e.p:
            raise ValueError(f"Cannot lower degree {e.p} to {p_new}")
        e.set_order(p_new)

    def reference_refinement(self, i: int, mode: str = REFINE_HP) -> list[int]:
        """
        Refine the i-th active element for a reference solution.

        mode 'h' splits it into two halves of the same degree, 'p' replaces it
        by one element of degree p + 1 and 'hp' does both. In every mode the
        original becomes inactive and DOFs are re-enumerated. Returns the
        arena indices of the element(s) now covering the original interval.
        """
        if mode not in REFINEMENT_MODES:
            raise ValueError(f"Unknown refinement mode '{mode}', expected one of {REFINEMENT_MODES}")
        e = self.active_element(i)
        if mode == REFINE_P:
            replaced = [self._replace_element(e.index, e.p + 1)]
        elif mode == REFINE_H:
            replaced = list(self.refine_element(e.index, e.p, e.p))
        else:
            replaced = list(self.refine_element(e.index, e.p + 1, e.p + 1))
        self.assign_dofs()
        return replaced

    def to_dataframe(self) -> pd.DataFrame:
        """Active-element geometry, one row per element."""
        rows = [
            {"id": pos, "x1": e.x1, "x2": e.x2, "h": e.h, "p": e.p, "level": e.level, "marker": e.marker}
            for pos, e in enumerate(self.active_elements())
        ]
        return pd.DataFrame(rows, columns=["id", "x1", "x2", "h", "p", "level", "marker"])
