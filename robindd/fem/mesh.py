"""Simplicial meshes with entity topology, used as the mesh collaborator of the DD layer.

A `SimplexMesh` stores vertex coordinates, element connectivity (triangles or
tetrahedra), one integer attribute per element and an ownership mask emulating
which elements are local to the current process. From the connectivity it
derives the entity topology the coupling layer queries:

  - edges  : unique sorted vertex pairs, `element_edges`, `edge_vertices`
  - faces  : unique sorted vertex triples (for a triangle mesh the faces are
             the elements themselves), `element_faces`, `face_edges`
  - face-to-element incidence and the boundary faces

Helpers build a structured Kuhn tetrahedral box mesh, assign slab attributes,
extract a subdomain mesh (attribute = 1-based parent element index) and an
interface surface mesh, and discover interfaces between attributes. Vertex
numberings of extracted meshes can be shuffled so that nothing downstream may
rely on a shared numbering.

Conventions
-----------
- Edges are oriented from the smaller to the larger local vertex index.
- Faces are stored with sorted vertex indices.
- All index arrays are int32; coordinates are float64 with shape (nv, 3).
"""

from __future__ import annotations

from itertools import combinations, permutations
from typing import Sequence

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csr_array

IndexArray = NDArray[np.int32]


class SimplexMesh:
    """Triangle or tetrahedral mesh with edges, faces and face-element incidence.

    Parameters
    ----------
    coordinates
        Array of shape (nv, 2) or (nv, 3). Two-column input is padded with z = 0.
    elements
        Array of shape (ne, 3) (triangles) or (ne, 4) (tetrahedra).
    attributes
        Optional per-element integer tags, default all ones.
    owned
        Optional per-element boolean mask. Elements with `owned == False` are
        ghosts: they take part in the topology but are not local to this process.
    """

    def __init__(self, coordinates, elements, attributes=None, owned=None):
        coordinates = np.asarray(coordinates, dtype=float)
        if coordinates.ndim != 2 or coordinates.shape[1] not in (2, 3):
            raise ValueError("coordinates must have shape (nv, 2) or (nv, 3)")
        if coordinates.shape[1] == 2:
            coordinates = np.hstack([coordinates, np.zeros((coordinates.shape[0], 1))])
        self.coordinates = np.ascontiguousarray(coordinates)

        elements = np.asarray(elements, dtype=np.int32)
        if elements.ndim != 2 or elements.shape[1] not in (3, 4):
            raise ValueError("elements must have shape (ne, 3) or (ne, 4)")
        self.elements = elements
        self.dim = elements.shape[1] - 1

        ne = elements.shape[0]
        if attributes is None:
            attributes = np.ones(ne, dtype=np.int32)
        self.attributes = np.asarray(attributes, dtype=np.int32)
        if owned is None:
            owned = np.ones(ne, dtype=bool)
        self.owned = np.asarray(owned, dtype=bool)
        if self.attributes.shape != (ne,) or self.owned.shape != (ne,):
            raise ValueError("attributes and owned must have one entry per element")

        self._build_topology()

    def _build_topology(self) -> None:
        """Derive edges, faces and their incidences from the element connectivity."""
        els = self.elements
        ne = els.shape[0]
        nvert = els.shape[1]

        local_edges = list(combinations(range(nvert), 2))
        pairs = np.sort(els[:, local_edges], axis=2).reshape(-1, 2)
        self.edges, inv = np.unique(pairs, axis=0, return_inverse=True)
        self.edges = self.edges.astype(np.int32)
        self.element_edge_table = inv.reshape(ne, len(local_edges)).astype(np.int32)
        self._edge_index = {(int(a), int(b)): k for k, (a, b) in enumerate(self.edges)}

        if self.dim == 3:
            local_faces = list(combinations(range(nvert), 3))
            triples = np.sort(els[:, local_faces], axis=2).reshape(-1, 3)
            self.faces, inv = np.unique(triples, axis=0, return_inverse=True)
            self.faces = self.faces.astype(np.int32)
            self.element_face_table = inv.reshape(ne, len(local_faces)).astype(np.int32)
        else:
            self.faces = np.sort(els, axis=1).astype(np.int32)
            self.element_face_table = np.arange(ne, dtype=np.int32)[:, None]

        nf = self.faces.shape[0]
        self.face_edge_table = np.empty((nf, 3), dtype=np.int32)
        for f, (a, b, c) in enumerate(self.faces):
            self.face_edge_table[f] = (
                self._edge_index[(int(a), int(b))],
                self._edge_index[(int(b), int(c))],
                self._edge_index[(int(a), int(c))],
            )

        rows = self.element_face_table.ravel()
        cols = np.repeat(np.arange(ne, dtype=np.int32), self.element_face_table.shape[1])
        vals = np.ones(rows.size, dtype=np.int32)
        self.face_to_element = csr_array((vals, (rows, cols)), shape=(nf, ne))
        self.face_to_element.sort_indices()

    # ---- sizes ----
    @property
    def n_vertices(self) -> int:
        return self.coordinates.shape[0]

    @property
    def n_edges(self) -> int:
        return self.edges.shape[0]

    @property
    def n_faces(self) -> int:
        return self.faces.shape[0]

    @property
    def n_elements(self) -> int:
        return self.elements.shape[0]

    # ---- entity queries ----
    def attribute(self, e: int) -> int:
        return int(self.attributes[e])

    def is_owned(self, e: int) -> bool:
        return bool(self.owned[e])

    def vertex(self, v: int) -> np.ndarray:
        return self.coordinates[v]

    def element_vertices(self, e: int) -> IndexArray:
        return self.elements[e]

    def element_edges(self, e: int) -> IndexArray:
        return self.element_edge_table[e]

    def element_faces(self, e: int) -> IndexArray:
        return self.element_face_table[e]

    def face_vertices(self, f: int) -> IndexArray:
        return self.faces[f]

    def face_edges(self, f: int) -> IndexArray:
        return self.face_edge_table[f]

    def edge_vertices(self, e: int) -> IndexArray:
        return self.edges[e]

    def edge_index(self, a: int, b: int) -> int:
        """Return the edge joining vertices a and b (KeyError if there is none)."""
        return self._edge_index[(min(a, b), max(a, b))]

    def face_elements(self, f: int) -> IndexArray:
        """Elements (owned or not) containing face f."""
        p = self.face_to_element.indptr
        return self.face_to_element.indices[p[f] : p[f + 1]]

    def boundary_faces(self) -> IndexArray:
        """Faces with exactly one neighbouring element (empty for surface meshes)."""
        if self.dim != 3:
            return np.zeros(0, dtype=np.int32)
        counts = np.diff(self.face_to_element.indptr)
        return np.flatnonzero(counts == 1).astype(np.int32)

    # ---- measures ----
    def edge_lengths(self) -> np.ndarray:
        x = self.coordinates
        return np.linalg.norm(x[self.edges[:, 1]] - x[self.edges[:, 0]], axis=1)

    def face_areas(self) -> np.ndarray:
        x = self.coordinates
        f = self.faces
        return 0.5 * np.linalg.norm(np.cross(x[f[:, 1]] - x[f[:, 0]], x[f[:, 2]] - x[f[:, 0]]), axis=1)

    def element_measures(self) -> np.ndarray:
        """Volumes of tetrahedra, or areas of triangles."""
        if self.dim == 2:
            return self.face_areas()
        x = self.coordinates
        e = self.elements
        d = np.stack([x[e[:, k]] - x[e[:, 0]] for k in (1, 2, 3)], axis=1)
        return np.abs(np.linalg.det(d)) / 6.0

    def element_centroids(self) -> np.ndarray:
        return self.coordinates[self.elements].mean(axis=1)

    def __repr__(self) -> str:
        return (
            f"SimplexMesh(dim={self.dim}, nv={self.n_vertices}, ne={self.n_edges}, "
            f"nf={self.n_faces}, nel={self.n_elements})"
        )


def box_mesh(
    n: Sequence[int],
    lower: Sequence[float] = (0.0, 0.0, 0.0),
    upper: Sequence[float] = (1.0, 1.0, 1.0),
) -> SimplexMesh:
    """Structured tetrahedral mesh of a box, six Kuhn tetrahedra per cell.

    All cells use the same diagonal, so the triangulation is conforming.
    """
    nx, ny, nz = (int(k) for k in n)
    if min(nx, ny, nz) < 1:
        raise ValueError("box_mesh needs at least one cell per direction")
    lo = np.asarray(lower, dtype=float)
    hi = np.asarray(upper, dtype=float)

    ii, jj, kk = np.meshgrid(np.arange(nx + 1), np.arange(ny + 1), np.arange(nz + 1), indexing="ij")
    ijk = np.stack([ii.ravel(order="F"), jj.ravel(order="F"), kk.ravel(order="F")], axis=1)
    coords = lo + (hi - lo) * ijk / np.array([nx, ny, nz], dtype=float)

    def vid(i, j, k):
        return i + (nx + 1) * (j + (ny + 1) * k)

    unit = np.eye(3, dtype=int)
    tets = []
    for k in range(nz):
        for j in range(ny):
            for i in range(nx):
                base = np.array([i, j, k])
                for perm in permutations(range(3)):
                    p = base.copy()
                    tet = [vid(*p)]
                    for axis in perm:
                        p = p + unit[axis]
                        tet.append(vid(*p))
                    tets.append(tet)

    return SimplexMesh(coords, np.asarray(tets, dtype=np.int32))


def slab_attributes(mesh: SimplexMesh, n_slabs: int, axis: int = 0) -> np.ndarray:
    """Attributes 1..n_slabs splitting the mesh bounding box into equal slabs along `axis`."""
    c = mesh.element_centroids()[:, axis]
    lo = mesh.coordinates[:, axis].min()
    hi = mesh.coordinates[:, axis].max()
    slab = np.floor((c - lo) / (hi - lo) * n_slabs).astype(np.int32)
    return np.clip(slab, 0, n_slabs - 1) + 1


def _renumber(vertices: np.ndarray, n_parent: int, seed: int | None) -> tuple[np.ndarray, np.ndarray]:
    """Return (ordered parent vertex ids, parent->new map) with an optional shuffle."""
    if seed is not None:
        vertices = vertices[np.random.default_rng(seed).permutation(vertices.size)]
    new_index = np.full(n_parent, -1, dtype=np.int32)
    new_index[vertices] = np.arange(vertices.size, dtype=np.int32)
    return vertices, new_index


def submesh(parent: SimplexMesh, attribute: int, seed: int | None = None) -> SimplexMesh | None:
    """Extract the elements of `parent` with the given attribute.

    Element order follows the parent. Each extracted element's attribute is its
    1-based parent element index. Returns None when no owned element carries the
    attribute (the subdomain is not local to this process).
    """
    elems = np.flatnonzero((parent.attributes == attribute) & parent.owned)
    if elems.size == 0:
        return None
    verts, new_index = _renumber(np.unique(parent.elements[elems]), parent.n_vertices, seed)
    return SimplexMesh(
        parent.coordinates[verts],
        new_index[parent.elements[elems]],
        attributes=(elems + 1).astype(np.int32),
    )


def surface_mesh(parent: SimplexMesh, faces: Sequence[int], seed: int | None = None) -> SimplexMesh:
    """Triangle mesh whose i-th element is the i-th face of `sorted(faces)`.

    With a seed, the vertex numbering is shuffled and every triangle's vertex
    order is rotated.
    """
    faces = np.asarray(sorted(faces), dtype=np.int32)
    tris = parent.faces[faces]
    verts, new_index = _renumber(np.unique(tris), parent.n_vertices, seed)
    tris = new_index[tris]
    if seed is not None:
        shifts = np.random.default_rng(seed + 1).integers(0, 3, size=tris.shape[0])
        tris = np.stack([np.roll(t, s) for t, s in zip(tris, shifts)]) if tris.size else tris
    return SimplexMesh(parent.coordinates[verts], tris)


def find_interface_faces(mesh: SimplexMesh) -> dict[tuple[int, int], list[int]]:
    """Group interior faces separating different attributes by (smaller, larger) attribute."""
    groups: dict[tuple[int, int], list[int]] = {}
    counts = np.diff(mesh.face_to_element.indptr)
    for f in np.flatnonzero(counts == 2):
        e0, e1 = mesh.face_elements(f)
        a0, a1 = mesh.attribute(e0), mesh.attribute(e1)
        if a0 != a1:
            groups.setdefault((min(a0, a1), max(a0, a1)), []).append(int(f))
    return {k: sorted(v) for k, v in sorted(groups.items())}
