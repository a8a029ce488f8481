"""Lowest-order discrete assembly of the bilinear forms consumed by the DD layer.

The coupling layer needs, per subdomain and per interface, sparse matrices for

  - a vector (Nedelec) mass form,
  - a curl-curl form,
  - a scalar (H1) mass form,
  - a mixed form <v, grad(p)> between a Nedelec test space and an H1 trial space.

These are built here from mesh incidence matrices and element measures:

  G : edges x vertices, the oriented vertex-to-edge incidence (discrete gradient)
  C : faces x edges,    the oriented edge-to-face incidence   (discrete curl)

and a generic element-wise SPD mass pattern. The curl-curl form is C^T W C with
W = diag(1 / face area), and the mixed gradient form is M_nd G, which is exact for
lowest-order spaces since grad(H1_1) is contained in ND_1 with coefficients G p.

Only order 1 is assembled. DOF numbering for higher orders is still available
from `robindd.fem.spaces`.
"""

from __future__ import annotations

import numpy as np
from scipy.sparse import coo_array, csr_array, diags_array

from .spaces import FiniteElementSpace


def _require_lowest_order(space: FiniteElementSpace, name: str | None = None) -> None:
    c = space.collection
    if c.order != 1 or (name is not None and c.name != name):
        raise NotImplementedError(
            f"only lowest-order {name or c.name} assembly is available, got {c.name}{c.order}"
        )


def gradient_incidence(mesh) -> csr_array:
    """Oriented vertex-to-edge incidence G (n_edges x n_vertices)."""
    ne = mesh.n_edges
    rows = np.repeat(np.arange(ne), 2)
    cols = mesh.edges.ravel()
    vals = np.tile([-1.0, 1.0], ne)
    return csr_array((vals, (rows, cols)), shape=(ne, mesh.n_vertices))


def curl_incidence(mesh) -> csr_array:
    """Oriented edge-to-face incidence C (n_faces x n_edges).

    With sorted face vertices (a, b, c) the boundary is ab + bc - ac.
    """
    nf = mesh.n_faces
    rows = np.repeat(np.arange(nf), 3)
    cols = mesh.face_edge_table.ravel()
    vals = np.tile([1.0, 1.0, -1.0], nf)
    return csr_array((vals, (rows, cols)), shape=(nf, mesh.n_edges))


def mass_matrix(space: FiniteElementSpace, coef: float = 1.0) -> csr_array:
    """Element-wise mass pattern  sum_e |e| / (n (n+1)) (I + 1 1^T)  over element DOFs."""
    mesh = space.mesh
    meas = mesh.element_measures()
    dofs = np.stack([space.element_dofs(e) for e in range(mesh.n_elements)])
    n = dofs.shape[1]

    local = (np.eye(n) + np.ones((n, n))) / (n * (n + 1))
    rows = np.repeat(dofs, n, axis=1).ravel()
    cols = np.tile(dofs, (1, n)).ravel()
    vals = (coef * meas[:, None] * local.ravel()[None, :]).ravel()

    M = coo_array((vals, (rows, cols)), shape=(space.vsize, space.vsize)).tocsr()
    M.sum_duplicates()
    return M


def curl_curl_matrix(space: FiniteElementSpace, coef: float = 1.0) -> csr_array:
    """Discrete curl-curl form C^T diag(coef / area) C on a lowest-order Nedelec space."""
    _require_lowest_order(space, "nd")
    mesh = space.mesh
    C = curl_incidence(mesh)
    W = diags_array(coef / mesh.face_areas())
    return (C.T @ W @ C).tocsr()


def mixed_gradient_matrix(
    nd_space: FiniteElementSpace, h1_space: FiniteElementSpace, coef: float = 1.0
) -> csr_array:
    """Mixed form <v, grad p> with v in ND_1 (rows) and p in H1_1 (columns)."""
    _require_lowest_order(nd_space, "nd")
    _require_lowest_order(h1_space, "h1")
    if nd_space.mesh is not h1_space.mesh:
        raise ValueError("mixed gradient form needs both spaces on the same mesh")
    return (mass_matrix(nd_space, coef) @ gradient_incidence(nd_space.mesh)).tocsr()


def form_system_matrix(
    A,
    test_space: FiniteElementSpace,
    trial_space: FiniteElementSpace | None = None,
    ess_tdofs=None,
) -> csr_array:
    """Restrict a full-DOF matrix to true DOFs and eliminate essential true DOFs.

    Computes R_test A P_trial. For square systems the rows and columns of
    `ess_tdofs` are zeroed and a unit diagonal is placed on them. An empty or
    None `ess_tdofs` performs no elimination.
    """
    if trial_space is None:
        trial_space = test_space
    At = (test_space.restriction @ A @ trial_space.prolongation).tocsr()

    ess = np.asarray([] if ess_tdofs is None else ess_tdofs, dtype=np.int64)
    if ess.size:
        if At.shape[0] != At.shape[1]:
            raise ValueError("essential DOF elimination needs a square matrix")
        keep = np.ones(At.shape[0])
        keep[ess] = 0.0
        D = diags_array(keep)
        At = (D @ At @ D + diags_array(1.0 - keep)).tocsr()

    At.eliminate_zeros()
    At.sort_indices()
    return At
