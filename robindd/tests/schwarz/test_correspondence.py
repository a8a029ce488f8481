"""Interface-to-subdomain DOF correspondence maps."""

from __future__ import annotations

import warnings

import numpy as np
import pytest

from robindd.fem.mesh import SimplexMesh, box_mesh, find_interface_faces, slab_attributes, submesh, surface_mesh
from robindd.fem.spaces import FiniteElementSpace, h1_collection, nd_collection
from robindd.schwarz.rdd.correspondence import build_interface_to_surface_map, unset_fraction
from robindd.schwarz.rdd.types import DofCorrespondence, GeometricMismatchError, StructuralError


@pytest.fixture
def two_cubes():
    mesh = box_mesh((2, 1, 1), (0.0, 0.0, 0.0), (2.0, 1.0, 1.0))
    return SimplexMesh(mesh.coordinates, mesh.elements, attributes=slab_attributes(mesh, 2))


def _edge_points(mesh, e):
    return {tuple(mesh.vertex(v)) for v in mesh.edge_vertices(e)}


@pytest.mark.parametrize("attribute", [1, 2])
def test_lowest_order_map_is_complete_and_geometric(two_cubes, attribute):
    faces = find_interface_faces(two_cubes)[(1, 2)]
    sd = submesh(two_cubes, attribute, seed=3)
    surf = surface_mesh(two_cubes, faces, seed=5)
    if_space = FiniteElementSpace(surf, nd_collection(1))
    sd_space = FiniteElementSpace(sd, nd_collection(1))

    dofmap = build_interface_to_surface_map(if_space, sd_space, two_cubes, attribute, faces)

    assert len(dofmap) == if_space.vsize == 5
    assert dofmap.n_set == 5
    assert unset_fraction(dofmap) == 0.0
    assert len(set(dofmap.target.tolist())) == 5
    for e in range(surf.n_edges):
        # lowest-order Nedelec: one DOF per edge, numbered like the edges
        assert _edge_points(surf, e) == _edge_points(sd, dofmap.get(e))


def test_h1_map_matches_vertices(two_cubes):
    faces = find_interface_faces(two_cubes)[(1, 2)]
    sd = submesh(two_cubes, 2, seed=8)
    surf = surface_mesh(two_cubes, faces, seed=9)
    if_space = FiniteElementSpace(surf, h1_collection(2))
    sd_space = FiniteElementSpace(sd, h1_collection(2))

    dofmap = build_interface_to_surface_map(if_space, sd_space, two_cubes, 2, faces)
    assert dofmap.n_set == if_space.vsize == surf.n_vertices + surf.n_edges
    for v in range(surf.n_vertices):
        np.testing.assert_array_equal(surf.vertex(v), sd.vertex(dofmap.get(v)))


def test_higher_order_face_dofs_are_positional(two_cubes):
    faces = find_interface_faces(two_cubes)[(1, 2)]
    sd = submesh(two_cubes, 1)
    surf = surface_mesh(two_cubes, faces)
    if_space = FiniteElementSpace(surf, nd_collection(3))
    sd_space = FiniteElementSpace(sd, nd_collection(3))

    dofmap = build_interface_to_surface_map(if_space, sd_space, two_cubes, 1, faces)
    assert dofmap.n_set == if_space.vsize

    for i in range(surf.n_elements):
        targets = [dofmap.get(int(d)) for d in if_space.face_dofs(i)]
        assert len(targets) == 6
        # consecutive interior DOFs of one subdomain face
        assert targets == list(range(targets[0], targets[0] + 6))


def test_unowned_subdomain_dofs_stay_unset(two_cubes):
    faces = find_interface_faces(two_cubes)[(1, 2)]
    sd = submesh(two_cubes, 1)
    surf = surface_mesh(two_cubes, faces)
    if_space = FiniteElementSpace(surf, nd_collection(1))

    full = FiniteElementSpace(sd, nd_collection(1))
    reference = build_interface_to_surface_map(if_space, full, two_cubes, 1, faces)
    not_owned = reference.target[:2]
    owned = np.ones(full.vsize, dtype=bool)
    owned[not_owned] = False
    sd_space = FiniteElementSpace(sd, nd_collection(1), owned_dofs=owned)

    dofmap = build_interface_to_surface_map(if_space, sd_space, two_cubes, 1, faces)
    assert dofmap.n_set == 3
    assert dofmap.get(0) is None and dofmap.get(1) is None
    assert unset_fraction(dofmap) == pytest.approx(0.4)


def test_faces_next_to_ghost_elements_are_skipped(two_cubes):
    faces = find_interface_faces(two_cubes)[(1, 2)]
    ghost = [int(e) for e in two_cubes.face_elements(faces[0]) if two_cubes.attribute(e) == 2]
    owned = np.ones(two_cubes.n_elements, dtype=bool)
    owned[ghost] = False
    parent = SimplexMesh(two_cubes.coordinates, two_cubes.elements, two_cubes.attributes, owned=owned)

    sd = submesh(parent, 2)
    surf = surface_mesh(parent, faces)
    if_space = FiniteElementSpace(surf, nd_collection(1))
    sd_space = FiniteElementSpace(sd, nd_collection(1))

    dofmap = build_interface_to_surface_map(if_space, sd_space, parent, 2, faces)
    assert dofmap.n_set == 3
    assert 0 < unset_fraction(dofmap) < 1


def test_face_without_subdomain_neighbour_is_fatal(two_cubes):
    faces = find_interface_faces(two_cubes)[(1, 2)]
    outer = [
        int(f)
        for f in two_cubes.boundary_faces()
        if np.all(two_cubes.coordinates[two_cubes.face_vertices(f), 0] == 2.0)
    ]
    bad = sorted(faces + outer[:1])
    sd = submesh(two_cubes, 1)
    surf = surface_mesh(two_cubes, bad)

    with pytest.raises(StructuralError):
        build_interface_to_surface_map(
            FiniteElementSpace(surf, nd_collection(1)), FiniteElementSpace(sd, nd_collection(1)), two_cubes, 1, bad
        )


def test_interface_mesh_must_match_face_count(two_cubes):
    faces = find_interface_faces(two_cubes)[(1, 2)]
    sd = submesh(two_cubes, 1)
    surf = surface_mesh(two_cubes, faces[:1])
    with pytest.raises(StructuralError):
        build_interface_to_surface_map(
            FiniteElementSpace(surf, nd_collection(1)), FiniteElementSpace(sd, nd_collection(1)), two_cubes, 1, faces
        )


def test_displaced_interface_mesh_is_a_geometric_mismatch(two_cubes):
    faces = find_interface_faces(two_cubes)[(1, 2)]
    sd = submesh(two_cubes, 1)
    surf = surface_mesh(two_cubes, faces)
    moved = SimplexMesh(surf.coordinates + np.array([1.0e-6, 0.0, 0.0]), surf.elements)

    with pytest.raises(GeometricMismatchError):
        build_interface_to_surface_map(
            FiniteElementSpace(moved, nd_collection(1)), FiniteElementSpace(sd, nd_collection(1)), two_cubes, 1, faces
        )


def test_disagreeing_assignments_strict_and_lenient():
    strict = DofCorrespondence(3)
    strict.assign(1, 4)
    strict.assign(1, 4)
    with pytest.raises(GeometricMismatchError):
        strict.assign(1, 5)

    lenient = DofCorrespondence(3, strict=False)
    lenient.assign(1, 4)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        lenient.assign(1, 5)
    assert any(issubclass(w.category, RuntimeWarning) for w in caught)
    assert lenient.get(1) == 4 and lenient.conflicts == 1
    assert lenient.get(0) is None
    assert lenient.set_indices().tolist() == [1]
