"""Geometric entity matching between meshes that do not share a numbering.

Two entities (faces, edges or vertices) of different meshes coincide when their
vertex sets coincide: every vertex of one has a partner in the other whose
coordinates agree to within `tol` in each component. Coincidence is binary; there
is no nearest-neighbour fallback and no tie-break.

The predicates only compare sets, so they are valid for convex entities
(simplices), where the vertex set determines the entity.
"""

from __future__ import annotations

import numpy as np

DEFAULT_VERTEX_TOL = 1.0e-12


def vertices_coincide(a, b, tol: float = DEFAULT_VERTEX_TOL) -> bool:
    """True if two points agree to within `tol` in every coordinate."""
    return bool(np.all(np.abs(np.asarray(a, dtype=float) - np.asarray(b, dtype=float)) <= tol))


def entities_coincide(coords_a, coords_b, tol: float = DEFAULT_VERTEX_TOL) -> bool:
    """Decide whether two vertex sets, each of shape (k, 3), coincide.

    Returns False on a size mismatch or as soon as a vertex of `coords_a` has no
    partner in `coords_b`.
    """
    a = np.atleast_2d(np.asarray(coords_a, dtype=float))
    b = np.atleast_2d(np.asarray(coords_b, dtype=float))
    if a.shape != b.shape:
        return False
    close = np.all(np.abs(a[:, None, :] - b[None, :, :]) <= tol, axis=2)
    return bool(np.all(np.any(close, axis=1)))


def find_coincident_vertex(point, mesh, candidates, tol: float = DEFAULT_VERTEX_TOL) -> list[int]:
    """Return the vertices among `candidates` of `mesh` coinciding with `point`."""
    return [int(v) for v in candidates if vertices_coincide(point, mesh.vertex(v), tol)]


def faces_coincide(volume_mesh, face: int, surface_mesh, element: int, tol: float = DEFAULT_VERTEX_TOL) -> bool:
    """Compare face `face` of a volume mesh with element `element` of a surface mesh."""
    fa = volume_mesh.face_vertices(face)
    eb = surface_mesh.element_vertices(element)
    if len(fa) != len(eb):
        return False
    return entities_coincide(
        np.stack([volume_mesh.vertex(v) for v in fa]),
        np.stack([surface_mesh.vertex(v) for v in eb]),
        tol,
    )


def edges_coincide(mesh_a, edge_a: int, mesh_b, edge_b: int, tol: float = DEFAULT_VERTEX_TOL) -> bool:
    """Compare two edges by their endpoints, independently of orientation."""
    va = mesh_a.edge_vertices(edge_a)
    vb = mesh_b.edge_vertices(edge_b)
    if len(va) != 2 or len(vb) != 2:
        return False
    return entities_coincide(
        np.stack([mesh_a.vertex(v) for v in va]),
        np.stack([mesh_b.vertex(v) for v in vb]),
        tol,
    )
