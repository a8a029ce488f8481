"""DOF numbering for Nedelec and H1 finite element collections on simplicial meshes.

Only the *numbering* of a finite element space is modelled here: how many DOFs
live on each vertex, edge, face and cell, their global (full) indices, and
which of them are true DOFs owned by this process. Basis functions are out of
scope.

Full DOFs are numbered entity block by entity block:

    [vertex DOFs | edge DOFs | face DOFs | cell-interior DOFs]

with the DOFs of one entity contiguous. For a triangle mesh the faces are the
elements themselves and there are no cell-interior DOFs.

True DOFs are the owned full DOFs in increasing order. The prolongation P
(vsize x true_vsize) copies true values to owned full DOFs; the restriction
R = P^T gathers owned full values back.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csr_array

from .mesh import SimplexMesh

IndexArray = NDArray[np.int32]

POINT, SEGMENT, TRIANGLE, TETRAHEDRON = 0, 1, 2, 3


@dataclass(slots=True, frozen=True)
class FECollection:
    """DOF counts per geometry for one finite element family and order.

    Attributes
    ----------
    name
        "nd" (Nedelec, edge based) or "h1" (nodal).
    order
        Polynomial order (>= 1).
    dofs
        DOFs per point, segment, triangle and tetrahedron interior.
    """

    name: str
    order: int
    dofs: tuple[int, int, int, int]

    def dof_for_geometry(self, geom: int) -> int:
        """Number of interior DOFs on an entity of dimension `geom`."""
        return self.dofs[geom]


def nd_collection(order: int = 1) -> FECollection:
    """Nedelec (first kind) DOF layout of the given order."""
    if order < 1:
        raise ValueError("Nedelec order must be >= 1")
    p = order
    return FECollection("nd", p, (0, p, p * (p - 1), p * (p - 1) * (p - 2) // 2))


def h1_collection(order: int = 1) -> FECollection:
    """Continuous Lagrange DOF layout of the given order."""
    if order < 1:
        raise ValueError("H1 order must be >= 1")
    p = order
    return FECollection("h1", p, (1, p - 1, (p - 1) * (p - 2) // 2, (p - 1) * (p - 2) * (p - 3) // 6))


class FiniteElementSpace:
    """Full and true DOF numbering of a collection on a mesh.

    Parameters
    ----------
    mesh
        The mesh the space lives on.
    collection
        DOF layout (`nd_collection` or `h1_collection`).
    owned_dofs
        Optional boolean mask over full DOFs. DOFs with False are not true DOFs
        on this process (their owner is another process). Default: all owned.
    """

    def __init__(self, mesh: SimplexMesh, collection: FECollection, owned_dofs=None):
        self.mesh = mesh
        self.collection = collection

        dv, de, df, dc = collection.dofs
        n_cells = mesh.n_elements if mesh.dim == 3 else 0
        sizes = [mesh.n_vertices * dv, mesh.n_edges * de, mesh.n_faces * df, n_cells * dc]
        self._block_start = np.concatenate([[0], np.cumsum(sizes)]).astype(np.int64)
        self.vsize = int(self._block_start[-1])

        if owned_dofs is None:
            owned_dofs = np.ones(self.vsize, dtype=bool)
        owned_dofs = np.asarray(owned_dofs, dtype=bool)
        if owned_dofs.shape != (self.vsize,):
            raise ValueError(f"owned_dofs must have length {self.vsize}")
        self.owned_dofs = owned_dofs

        self._ldof_to_tdof = np.full(self.vsize, -1, dtype=np.int32)
        self.tdof_to_ldof = np.flatnonzero(owned_dofs).astype(np.int32)
        self._ldof_to_tdof[self.tdof_to_ldof] = np.arange(self.tdof_to_ldof.size, dtype=np.int32)
        self.true_vsize = int(self.tdof_to_ldof.size)

        self.prolongation = csr_array(
            (np.ones(self.true_vsize), (self.tdof_to_ldof, np.arange(self.true_vsize))),
            shape=(self.vsize, self.true_vsize),
        )
        self.restriction = self.prolongation.T.tocsr()

    def _entity_dofs(self, block: int, index: int) -> IndexArray:
        n = self.collection.dofs[block]
        start = self._block_start[block] + index * n
        return np.arange(start, start + n, dtype=np.int32)

    def vertex_dofs(self, v: int) -> IndexArray:
        return self._entity_dofs(POINT, v)

    def edge_dofs(self, e: int) -> IndexArray:
        return self._entity_dofs(SEGMENT, e)

    def face_dofs(self, f: int) -> IndexArray:
        """Interior DOFs of face f (for a triangle mesh: of element f)."""
        return self._entity_dofs(TRIANGLE, f)

    def face_closure_dofs(self, f: int) -> IndexArray:
        """All DOFs on the closure of face f: its vertices, edges and interior."""
        mesh = self.mesh
        parts = [self.vertex_dofs(v) for v in mesh.face_vertices(f)]
        parts += [self.edge_dofs(e) for e in mesh.face_edges(f)]
        parts.append(self.face_dofs(f))
        return np.concatenate(parts).astype(np.int32)

    def element_dofs(self, el: int) -> IndexArray:
        """All DOFs of element el, vertices first, then edges, faces and interior."""
        mesh = self.mesh
        parts = [self.vertex_dofs(v) for v in mesh.element_vertices(el)]
        parts += [self.edge_dofs(e) for e in mesh.element_edges(el)]
        parts += [self.face_dofs(f) for f in mesh.element_faces(el)]
        if mesh.dim == 3:
            parts.append(self._entity_dofs(TETRAHEDRON, el))
        return np.concatenate(parts).astype(np.int32)

    def local_tdof(self, dof: int) -> int:
        """Local true DOF number of full DOF `dof`, or -1 if it is not owned here."""
        return int(self._ldof_to_tdof[dof])

    def local_tdofs(self, dofs) -> IndexArray:
        """Vectorized `local_tdof`."""
        return self._ldof_to_tdof[np.asarray(dofs, dtype=np.int64)]

    def __repr__(self) -> str:
        c = self.collection
        return f"FiniteElementSpace({c.name}{c.order}, vsize={self.vsize}, true_vsize={self.true_vsize})"
