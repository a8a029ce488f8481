"""Set and correspondence-based injections."""

from __future__ import annotations

import numpy as np
import pytest

from robindd.fem.mesh import SimplexMesh
from robindd.fem.spaces import FiniteElementSpace, h1_collection, nd_collection
from robindd.schwarz.rdd.injection import ArrayInjection, SetInjection
from robindd.schwarz.rdd.types import DofCorrespondence, StructuralError


@pytest.fixture
def triangle():
    return SimplexMesh(np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]), np.array([[0, 1, 2]]))


def test_set_injection_scatter_and_gather():
    inj = SetInjection(6, [4, 0, 2])
    assert inj.shape == (6, 3)
    np.testing.assert_array_equal(inj.matvec(np.array([1.0, 2.0, 3.0])), [2.0, 0.0, 3.0, 0.0, 1.0, 0.0])
    np.testing.assert_array_equal(inj.rmatvec(np.arange(6.0)), [4.0, 0.0, 2.0])


def test_set_injection_rejects_bad_sizes():
    with pytest.raises(StructuralError):
        SetInjection(2, [0, 1, 2])
    with pytest.raises(StructuralError):
        SetInjection(3, [0, 3])


def test_set_injection_empty():
    inj = SetInjection(4, [])
    assert inj.shape == (4, 0)
    np.testing.assert_array_equal(inj.matvec(np.zeros(0)), np.zeros(4))


def test_array_injection_skips_unset_entries(triangle):
    space = FiniteElementSpace(triangle, nd_collection(1))
    dofmap = DofCorrespondence(space.vsize)
    dofmap.assign(0, 5)
    dofmap.assign(2, 1)

    E = ArrayInjection(8, space, dofmap)
    assert E.shape == (8, 3)
    y = E.matvec(np.array([1.0, 2.0, 3.0]))
    np.testing.assert_array_equal(y, [0.0, 3.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0])
    np.testing.assert_array_equal(E.rmatvec(np.arange(8.0)), [5.0, 0.0, 1.0])


def test_array_injection_uses_true_dofs(triangle):
    owned = np.array([True, False, True])
    space = FiniteElementSpace(triangle, h1_collection(1), owned_dofs=owned)
    dofmap = DofCorrespondence(space.vsize)
    for i, t in enumerate([3, 0, 1]):
        dofmap.assign(i, t)

    E = ArrayInjection(4, space, dofmap)
    assert E.shape == (4, 2)
    # true DOFs 0, 1 are full DOFs 0, 2; full DOF 1 only receives the prolongation's zero
    np.testing.assert_array_equal(E.matvec(np.array([7.0, 9.0])), [0.0, 9.0, 0.0, 7.0])

    rng = np.random.default_rng(3)
    x, y = rng.standard_normal(2), rng.standard_normal(4)
    assert np.isclose(E.matvec(x) @ y, x @ E.rmatvec(y))


def test_array_injection_rejects_bad_sizes(triangle):
    space = FiniteElementSpace(triangle, nd_collection(1))
    with pytest.raises(StructuralError):
        ArrayInjection(2, space, DofCorrespondence(space.vsize))
    with pytest.raises(StructuralError):
        ArrayInjection(5, space, DofCorrespondence(space.vsize + 1))
