"""Mesh topology, DOF numbering and lowest-order assembly collaborators."""

from __future__ import annotations

import numpy as np
import pytest

from robindd.fem.forms import (
    curl_curl_matrix,
    curl_incidence,
    form_system_matrix,
    gradient_incidence,
    mass_matrix,
    mixed_gradient_matrix,
)
from robindd.fem.mesh import SimplexMesh, box_mesh, find_interface_faces, slab_attributes, submesh, surface_mesh
from robindd.fem.spaces import FiniteElementSpace, h1_collection, nd_collection
from robindd.schwarz.rdd.types import MeshLike, SpaceLike


@pytest.fixture
def cube():
    return box_mesh((1, 1, 1))


def test_kuhn_cube_topology(cube):
    assert (cube.n_vertices, cube.n_edges, cube.n_faces, cube.n_elements) == (8, 19, 18, 6)
    assert cube.boundary_faces().size == 12
    assert cube.element_measures().sum() == pytest.approx(1.0)
    assert np.all(cube.element_measures() > 0)
    # Euler characteristic of a ball
    assert cube.n_vertices - cube.n_edges + cube.n_faces - cube.n_elements == 1


def test_box_mesh_rejects_empty_direction():
    with pytest.raises(ValueError):
        box_mesh((1, 0, 1))


def test_face_edges_and_incidence_complex(cube):
    C = curl_incidence(cube)
    G = gradient_incidence(cube)
    assert (C @ G).count_nonzero() == 0
    for f in range(cube.n_faces):
        a, b, c = cube.face_vertices(f)
        ab, bc, ac = cube.face_edges(f)
        assert set(cube.edge_vertices(ab)) == {a, b}
        assert set(cube.edge_vertices(bc)) == {b, c}
        assert set(cube.edge_vertices(ac)) == {a, c}


def test_slab_attributes_and_interfaces():
    mesh = box_mesh((3, 1, 1), (0.0, 0.0, 0.0), (3.0, 1.0, 1.0))
    attrs = slab_attributes(mesh, 3)
    assert np.bincount(attrs).tolist() == [0, 6, 6, 6]
    mesh = SimplexMesh(mesh.coordinates, mesh.elements, attributes=attrs)
    groups = find_interface_faces(mesh)
    assert list(groups) == [(1, 2), (2, 3)]
    assert all(len(f) == 2 for f in groups.values())
    for f in groups[(1, 2)]:
        assert np.allclose(mesh.coordinates[mesh.face_vertices(f), 0], 1.0)


def test_submesh_keeps_parent_provenance():
    mesh = box_mesh((2, 1, 1), (0.0, 0.0, 0.0), (2.0, 1.0, 1.0))
    mesh = SimplexMesh(mesh.coordinates, mesh.elements, attributes=slab_attributes(mesh, 2))
    sd = submesh(mesh, 2, seed=4)
    assert sd.n_elements == 6
    for el in range(sd.n_elements):
        parent = sd.attribute(el) - 1
        assert mesh.attribute(parent) == 2
        np.testing.assert_allclose(
            np.sort(sd.coordinates[sd.element_vertices(el)], axis=0),
            np.sort(mesh.coordinates[mesh.element_vertices(parent)], axis=0),
        )
    assert submesh(mesh, 5) is None


def test_surface_mesh_element_order_follows_sorted_faces():
    mesh = box_mesh((2, 1, 1), (0.0, 0.0, 0.0), (2.0, 1.0, 1.0))
    faces = list(reversed(mesh.boundary_faces()[:4].tolist()))
    surf = surface_mesh(mesh, faces, seed=2)
    assert surf.dim == 2 and surf.n_elements == 4
    for i, f in enumerate(sorted(faces)):
        got = {tuple(p) for p in surf.coordinates[surf.element_vertices(i)]}
        want = {tuple(p) for p in mesh.coordinates[mesh.face_vertices(f)]}
        assert got == want
    assert surf.boundary_faces().size == 0


def test_space_sizes(cube):
    assert FiniteElementSpace(cube, nd_collection(1)).vsize == 19
    assert FiniteElementSpace(cube, nd_collection(2)).vsize == 2 * 19 + 2 * 18
    assert FiniteElementSpace(cube, h1_collection(1)).vsize == 8
    assert FiniteElementSpace(cube, h1_collection(2)).vsize == 8 + 19
    with pytest.raises(ValueError):
        nd_collection(0)


def test_ownership_mask_defines_true_dofs(cube):
    owned = np.ones(19, dtype=bool)
    owned[[0, 5]] = False
    space = FiniteElementSpace(cube, nd_collection(1), owned_dofs=owned)
    assert space.true_vsize == 17
    assert space.prolongation.shape == (19, 17)
    assert space.local_tdof(0) == -1 and space.local_tdof(1) == 0 and space.local_tdof(6) == 4
    x = np.arange(17.0)
    np.testing.assert_array_equal(space.restriction @ (space.prolongation @ x), x)
    with pytest.raises(ValueError):
        FiniteElementSpace(cube, nd_collection(1), owned_dofs=owned[:-1])


def test_lowest_order_forms(cube):
    nd = FiniteElementSpace(cube, nd_collection(1))
    h1 = FiniteElementSpace(cube, h1_collection(1))
    M = mass_matrix(nd)
    K = curl_curl_matrix(nd)
    assert abs(M - M.T).max() < 1e-14
    assert np.all(np.linalg.eigvalsh(M.toarray()) > 0)
    # gradients are in the kernel of curl-curl
    np.testing.assert_allclose(K @ (gradient_incidence(cube) @ np.arange(8.0)), 0.0, atol=1e-12)
    assert mixed_gradient_matrix(nd, h1).shape == (19, 8)
    with pytest.raises(NotImplementedError):
        curl_curl_matrix(FiniteElementSpace(cube, nd_collection(2)))


def test_form_system_matrix_eliminates_essential_dofs(cube):
    nd = FiniteElementSpace(cube, nd_collection(1))
    A = form_system_matrix(curl_curl_matrix(nd) + mass_matrix(nd), nd, ess_tdofs=[2, 7])
    dense = A.toarray()
    assert dense[2, 2] == 1.0 and dense[7, 7] == 1.0
    assert np.count_nonzero(dense[2]) == 1 and np.count_nonzero(dense[:, 7]) == 1


def test_collaborators_satisfy_dd_protocols(cube):
    space = FiniteElementSpace(cube, nd_collection(1))
    assert isinstance(cube, MeshLike)
    assert isinstance(space, SpaceLike)
    assert isinstance(space.mesh, MeshLike)
    surf = surface_mesh(cube, cube.boundary_faces()[:2].tolist())
    assert isinstance(FiniteElementSpace(surf, h1_collection(1)), SpaceLike)
    assert not isinstance(object(), MeshLike)
