import numpy as np

from .datastructures import Element, Mesh


def line_mesh(
    a: float, b: float, n_elem: int, p_init: int = 1, n_eq: int = 1, n_sln: int = 1
) -> Mesh:
    """Create a uniform 1D mesh on [a, b] with n_elem elements of degree p_init."""
    if n_elem < 1:
        raise ValueError(f"Need at least one element, got {n_elem}")
    if b <= a:
        raise ValueError(f"Empty domain [{a}, {b}]")

    mesh = Mesh(n_eq=n_eq, n_sln=n_sln)
    VX = np.linspace(a, b, n_elem + 1)
    for x1, x2 in zip(VX[:-1], VX[1:]):
        mesh.add_element(Element(float(x1), float(x2), p_init, n_eq=n_eq, n_sln=n_sln))
    mesh.assign_dofs()
    return mesh


def material_mesh(
    interfaces,
    poly_orders,
    markers,
    subdivisions,
    n_eq: int = 1,
    n_sln: int = 1,
) -> Mesh:
    """
    Create a mesh of material regions ("macroelements").

    Region m spans [interfaces[m], interfaces[m+1]] and is split into
    subdivisions[m] equal elements of degree poly_orders[m] carrying
    material marker markers[m].
    """
    n_mat = len(interfaces) - 1
    if n_mat < 1:
        raise ValueError("Need at least two interface coordinates")
    if not len(poly_orders) == len(markers) == len(subdivisions) == n_mat:
        raise ValueError(
            f"Expected {n_mat} orders, markers and subdivisions for {n_mat} regions"
        )
    if np.any(np.diff(interfaces) <= 0):
        raise ValueError(f"Interfaces must be strictly increasing: {list(interfaces)}")

    mesh = Mesh(n_eq=n_eq, n_sln=n_sln)
    for m in range(n_mat):
        if subdivisions[m] < 1:
            raise ValueError(f"Region {m} needs at least one subdivision")
        VX = np.linspace(interfaces[m], interfaces[m + 1], subdivisions[m] + 1)
        for x1, x2 in zip(VX[:-1], VX[1:]):
            mesh.add_element(
                Element(
                    float(x1), float(x2), poly_orders[m],
                    n_eq=n_eq, n_sln=n_sln, marker=markers[m],
                )
            )
    mesh.assign_dofs()
    return mesh
