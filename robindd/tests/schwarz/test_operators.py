"""Block operator algebra checked against dense matrices."""

from __future__ import annotations

import numpy as np
import pytest
from scipy.sparse import csr_array

from robindd.schwarz.rdd.operators import (
    BlockDiagonalPreconditioner,
    BlockLayout,
    BlockOperator,
    IdentityOperator,
    OperatorArena,
    ProductOperator,
    ScaledOperator,
    SumOperator,
    TransposeOperator,
    TripleProductOperator,
    check_offsets,
)
from robindd.schwarz.rdd.types import StructuralError


def _dense(op) -> np.ndarray:
    n = op.shape[1]
    return np.column_stack([op.matvec(e) for e in np.eye(n)]) if n else np.zeros((op.shape[0], 0))


def _dense_t(op) -> np.ndarray:
    m = op.shape[0]
    return np.column_stack([op.rmatvec(e) for e in np.eye(m)]) if m else np.zeros((op.shape[1], 0))


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


def test_block_layout_offsets_and_slices():
    lay = BlockLayout()
    assert lay.append("u", 7) == 0
    assert lay.append(("f", 0), 3) == 1
    assert lay.append(("rho", 0), 0) == 2
    assert lay.append(("f", 4), 2) == 3
    assert lay.offsets().tolist() == [0, 7, 10, 10, 12]
    assert lay.total == 12
    assert lay.slice(("f", 4)) == slice(10, 12)
    assert lay.size(("rho", 0)) == 0
    assert ("f", 0) in lay and ("f", 1) not in lay

    with pytest.raises(StructuralError):
        lay.append("u", 1)
    with pytest.raises(StructuralError):
        lay.append("v", -1)
    with pytest.raises(StructuralError):
        lay.index("missing")


@pytest.mark.parametrize("offsets", [[], [1, 2], [0, 3, 2], [[0, 1]]])
def test_check_offsets_rejects_invalid(offsets):
    with pytest.raises(StructuralError):
        check_offsets(offsets)


def test_simple_combinators_match_dense(rng):
    A = rng.standard_normal((4, 5))
    B = rng.standard_normal((4, 5))
    C = rng.standard_normal((5, 3))
    D = rng.standard_normal((3, 2))

    cases = [
        (IdentityOperator(4), np.eye(4)),
        (ScaledOperator(A, -2.5), -2.5 * A),
        (SumOperator(A, B, 0.5, -3.0), 0.5 * A - 3.0 * B),
        (ProductOperator(A, C), A @ C),
        (TripleProductOperator(A, C, D), A @ C @ D),
        (TransposeOperator(A), A.T),
    ]
    for op, ref in cases:
        np.testing.assert_allclose(_dense(op), ref, atol=1e-13)
        np.testing.assert_allclose(_dense_t(op), ref.T, atol=1e-13)


def test_combinators_reject_shape_mismatch(rng):
    A = rng.standard_normal((4, 5))
    with pytest.raises(StructuralError):
        SumOperator(A, A.T)
    with pytest.raises(StructuralError):
        ProductOperator(A, A)
    with pytest.raises(StructuralError):
        TripleProductOperator(A, A.T, A.T)


def test_sparse_operands_are_wrapped(rng):
    S = csr_array(rng.standard_normal((6, 6)) * (rng.random((6, 6)) < 0.4) + np.eye(6))
    op = ProductOperator(S, IdentityOperator(6))
    np.testing.assert_allclose(_dense(op), S.toarray(), atol=1e-14)


def test_block_operator_matches_np_block(rng):
    rows = [0, 2, 5]
    cols = [0, 3, 3, 7]
    A00 = rng.standard_normal((2, 3))
    A02 = rng.standard_normal((2, 4))
    A10 = rng.standard_normal((3, 3))

    op = BlockOperator(rows, cols)
    op.set_block(0, 0, A00)
    op.set_block(0, 2, A02, -2.0)
    op.set_block(1, 0, csr_array(A10), 0.5)

    ref = np.block(
        [
            [A00, np.zeros((2, 0)), -2.0 * A02],
            [0.5 * A10, np.zeros((3, 0)), np.zeros((3, 4))],
        ]
    )
    assert op.shape == (5, 7)
    assert op.row_offsets[-1] == op.shape[0] and op.col_offsets[-1] == op.shape[1]
    np.testing.assert_allclose(_dense(op), ref, atol=1e-13)
    np.testing.assert_allclose(_dense_t(op), ref.T, atol=1e-13)
    assert op.is_zero_block(1, 2)
    assert op.get_block(1, 1) is None
    assert op.nonzero_blocks == [(0, 0), (0, 2), (1, 0)]


def test_block_operator_square_default_and_errors(rng):
    op = BlockOperator([0, 2, 4])
    assert op.shape == (4, 4)
    with pytest.raises(StructuralError):
        op.set_block(0, 1, rng.standard_normal((2, 3)))
    with pytest.raises(StructuralError):
        op.set_block(2, 0, rng.standard_normal((2, 2)))
    np.testing.assert_array_equal(op.matvec(np.ones(4)), np.zeros(4))


def test_block_diagonal_unset_blocks_are_identity(rng):
    A = rng.standard_normal((3, 3))
    prec = BlockDiagonalPreconditioner([0, 2, 5, 6])
    prec.set_diagonal_block(1, A)
    ref = np.eye(6)
    ref[2:5, 2:5] = A
    np.testing.assert_allclose(_dense(prec), ref, atol=1e-14)
    np.testing.assert_allclose(_dense_t(prec), ref.T, atol=1e-14)
    with pytest.raises(StructuralError):
        prec.set_diagonal_block(0, A)


def test_operator_arena_release():
    arena = OperatorArena()
    op = arena.own(IdentityOperator(3))
    assert isinstance(op, IdentityOperator)
    arena.own(ScaledOperator(op, 2.0, owns=True))
    assert len(arena) == 2
    assert arena.release() == 2
    assert len(arena) == 0
