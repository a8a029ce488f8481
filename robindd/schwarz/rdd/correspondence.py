"""Interface-to-surface DOF correspondence for the Robin DD layer.

Interface operators live on the trace spaces of interface meshes, while the
subdomain unknowns live on subdomain meshes. The meshes come from the same
parent mesh but have independent vertex numberings, so DOFs are related
geometrically:

  interface element i  (= the i-th face of the sorted interface face set)
    -> parent face
    -> the unique parent element of the subdomain touching it
    -> the subdomain element extracted from it (attribute = parent index + 1)
    -> the face of that element coinciding geometrically with interface element i

and then, on the matched face pair, vertex DOFs by vertex coincidence, edge DOFs
by endpoint coincidence (edge orientation may differ) and face DOFs by position.

The resulting map goes from *full* interface DOFs to *true* subdomain DOFs.
Entries whose subdomain DOF is not owned by this process stay unset; this is
expected and is not an error.

Faces whose subdomain-side parent element is a ghost on this process are
skipped, since overlapping faces may be duplicated across processes. A face
without any parent element of the subdomain is a structural error.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from .matching import DEFAULT_VERTEX_TOL, edges_coincide, faces_coincide, find_coincident_vertex
from .types import DofCorrespondence, GeometricMismatchError, MeshLike, SpaceLike, StructuralError

POINT, SEGMENT, TRIANGLE = 0, 1, 2


def _dd_faces_to_subdomain_elements(parent_mesh: MeshLike, sd_attribute: int, faces: set[int]) -> dict[int, int]:
    """Map each interface face to the unique owned parent element of the subdomain touching it."""
    face_to_elem: dict[int, int] = {}
    for el in range(parent_mesh.n_elements):
        if parent_mesh.attribute(el) != sd_attribute or not parent_mesh.is_owned(el):
            continue
        for f in parent_mesh.element_faces(el):
            f = int(f)
            if f not in faces:
                continue
            if f in face_to_elem:
                raise StructuralError(
                    f"interface face {f} touches parent elements {face_to_elem[f]} and {el} "
                    f"of subdomain attribute {sd_attribute}"
                )
            face_to_elem[f] = el
    return face_to_elem


def _dd_parent_to_subdomain_elements(sd_mesh: MeshLike, parent_elems: Iterable[int]) -> dict[int, int]:
    """Map parent element indices to subdomain element indices (interface neighbours only)."""
    wanted = set(parent_elems)
    out: dict[int, int] = {}
    for el in range(sd_mesh.n_elements):
        parent_el = sd_mesh.attribute(el) - 1
        if parent_el in wanted:
            out[parent_el] = el
    return out


def _dd_copy_dofs(dofmap: DofCorrespondence, if_dofs, sd_dofs, sd_space, what: str) -> None:
    """Assign interface full DOFs to the true DOFs of the matching subdomain DOFs."""
    if len(if_dofs) != len(sd_dofs):
        raise StructuralError(f"{what}: {len(if_dofs)} interface DOFs vs {len(sd_dofs)} subdomain DOFs")
    for d_if, d_sd in zip(if_dofs, sd_dofs):
        tdof = sd_space.local_tdof(int(d_sd))
        if tdof >= 0:
            dofmap.assign(int(d_if), tdof)


def build_interface_to_surface_map(
    if_space: SpaceLike,
    sd_space: SpaceLike,
    parent_mesh: MeshLike,
    sd_attribute: int,
    interface_faces,
    *,
    tol: float = DEFAULT_VERTEX_TOL,
    strict: bool = True,
) -> DofCorrespondence:
    """Build the partial map from full interface DOFs to true subdomain DOFs.

    Parameters
    ----------
    if_space
        Trace space on the interface mesh. Its i-th element is the i-th face of
        `sorted(interface_faces)`.
    sd_space
        Space on the subdomain mesh. Subdomain element attributes are 1-based
        parent element indices.
    parent_mesh
        The unpartitioned mesh, with subdomain attributes and element ownership.
    sd_attribute
        Attribute of the subdomain's elements in `parent_mesh`.
    interface_faces
        Parent-mesh faces forming the interface.
    tol
        Per-coordinate vertex coincidence tolerance.
    strict
        Consistency policy for double matches (see `DofCorrespondence`).

    Returns
    -------
    dofmap
        DofCorrespondence of length `if_space.vsize`.

    Raises
    ------
    StructuralError
        A face touches two elements of the subdomain, a face touches none, or
        DOF counts on matched entities differ.
    GeometricMismatchError
        No (or more than one) coincident subdomain face, vertex or edge, or
        disagreeing double matches under the strict policy.
    """
    if_mesh = if_space.mesh
    sd_mesh = sd_space.mesh
    fec = if_space.collection

    faces = sorted(int(f) for f in interface_faces)
    face_set = set(faces)
    if len(faces) != if_mesh.n_elements:
        raise StructuralError(
            f"interface mesh has {if_mesh.n_elements} elements for {len(faces)} interface faces"
        )

    dofmap = DofCorrespondence(if_space.vsize, strict=strict)

    face_to_elem = _dd_faces_to_subdomain_elements(parent_mesh, sd_attribute, face_set)
    elem_to_sd = _dd_parent_to_subdomain_elements(sd_mesh, face_to_elem.values())

    nv = fec.dof_for_geometry(POINT)
    ne = fec.dof_for_geometry(SEGMENT)
    nf = fec.dof_for_geometry(TRIANGLE)

    for i, pface in enumerate(faces):
        parent_el = face_to_elem.get(pface)
        if parent_el is None:
            neighbours = parent_mesh.face_elements(pface)
            if not any(parent_mesh.attribute(int(e)) == sd_attribute for e in neighbours):
                raise StructuralError(
                    f"interface face {pface} is not adjacent to any element of subdomain "
                    f"attribute {sd_attribute}"
                )
            # The subdomain element across this face is owned by another process.
            continue

        sd_el = elem_to_sd.get(parent_el)
        if sd_el is None:
            raise StructuralError(
                f"parent element {parent_el} next to interface face {pface} is missing from the subdomain mesh"
            )

        matches = [
            int(f) for f in sd_mesh.element_faces(sd_el) if faces_coincide(sd_mesh, int(f), if_mesh, i, tol)
        ]
        if len(matches) != 1:
            raise GeometricMismatchError(
                f"interface element {i} (parent face {pface}) coincides with {len(matches)} faces "
                f"of subdomain element {sd_el}"
            )
        sd_face = matches[0]

        if nv > 0:
            sd_verts = sd_mesh.face_vertices(sd_face)
            for v in if_mesh.element_vertices(i):
                hit = find_coincident_vertex(if_mesh.vertex(v), sd_mesh, sd_verts, tol)
                if len(hit) != 1:
                    raise GeometricMismatchError(
                        f"vertex {int(v)} of interface element {i} matches {len(hit)} vertices "
                        f"of subdomain face {sd_face}"
                    )
                _dd_copy_dofs(dofmap, if_space.vertex_dofs(v), sd_space.vertex_dofs(hit[0]), sd_space, "vertex")

        if ne > 0:
            sd_edges = sd_mesh.face_edges(sd_face)
            for e in if_mesh.element_edges(i):
                hit = [int(k) for k in sd_edges if edges_coincide(if_mesh, int(e), sd_mesh, int(k), tol)]
                if len(hit) != 1:
                    raise GeometricMismatchError(
                        f"edge {int(e)} of interface element {i} matches {len(hit)} edges "
                        f"of subdomain face {sd_face}"
                    )
                _dd_copy_dofs(dofmap, if_space.edge_dofs(e), sd_space.edge_dofs(hit[0]), sd_space, "edge")

        if nf > 0:
            _dd_copy_dofs(dofmap, if_space.face_dofs(i), sd_space.face_dofs(sd_face), sd_space, "face")

    return dofmap


def unset_fraction(dofmap: DofCorrespondence) -> float:
    """Fraction of interface DOFs left unset (0.0 for an empty map)."""
    n = len(dofmap)
    return float(n - dofmap.n_set) / n if n else 0.0
