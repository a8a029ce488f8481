"""Composable linear operators and block layouts for the Robin DD layer.

Every operator here is a `scipy.sparse.linalg.LinearOperator` implementing
`_matvec` (apply) and `_rmatvec` (apply transpose; all data is real so the
transpose and the adjoint agree). Sparse matrices are accepted wherever an
operand is expected and wrapped with `aslinearoperator`.

Combinators
-----------
IdentityOperator(n)                 x
ScaledOperator(A, c)                c A x
SumOperator(A, B, alpha, beta)      alpha A x + beta B x
ProductOperator(A, B)               A (B x)
TripleProductOperator(A, B, C)      A (B (C x))
TransposeOperator(A)                A^T x
BlockOperator(rows, cols)           sum_j coef_ij A_ij x_j per row block i; unset blocks are zero
BlockDiagonalPreconditioner(offs)   A_ii x_i per block; unset blocks act as identity

No combinator factors anything; factorizations live in the leaf solvers of
`rdd.solvers`.

Ownership
---------
Composites reference their operands and never copy them. Operands are
*borrowed* unless the composite is created with `owns=True`. The orchestrator
allocates composites through an `OperatorArena` whose lifetime bounds every
operator it holds; `OperatorArena.release` drops them all together.

Layouts
-------
`BlockLayout` appends named blocks and returns prefix-sum offsets, so callers
never maintain running totals by hand.
"""

from __future__ import annotations

from typing import Any, Hashable

import numpy as np
from numpy.typing import NDArray
from scipy.sparse.linalg import LinearOperator, aslinearoperator

from .types import StructuralError

IndexArray = NDArray[np.int64]


def _vec(x) -> np.ndarray:
    """Flatten an (n,) or (n, 1) input to a 1-D array."""
    return np.asarray(x).reshape(-1)


def as_operator(A) -> LinearOperator:
    """Return A as a LinearOperator (sparse/dense matrices are wrapped, not copied)."""
    if isinstance(A, LinearOperator):
        return A
    return aslinearoperator(A)


def _dtype(*ops) -> np.dtype:
    """Common result dtype of the operands (at least float64)."""
    return np.result_type(np.float64, *[op.dtype for op in ops])


def check_offsets(offsets, what: str = "block") -> IndexArray:
    """Validate block offsets: 1-D, starting at 0, non-decreasing.

    Raises
    ------
    StructuralError
        If the array violates any of the invariants.
    """
    offs = np.asarray(offsets, dtype=np.int64)
    if offs.ndim != 1 or offs.size == 0:
        raise StructuralError(f"{what} offsets must be a non-empty 1-D array")
    if offs[0] != 0:
        raise StructuralError(f"{what} offsets must start at 0, got {int(offs[0])}")
    if np.any(np.diff(offs) < 0):
        raise StructuralError(f"{what} offsets must be non-decreasing: {offs.tolist()}")
    return offs


class BlockLayout:
    """Builder for block offsets from named, sized blocks.

    Examples
    --------
    >>> lay = BlockLayout()
    >>> lay.append("u", 10)
    0
    >>> lay.append(("f", 3), 4)
    1
    >>> lay.offsets().tolist()
    [0, 10, 14]
    >>> lay.slice(("f", 3))
    slice(10, 14, None)
    """

    def __init__(self):
        self._names: list[Hashable] = []
        self._sizes: list[int] = []
        self._index: dict[Hashable, int] = {}

    def append(self, name: Hashable, size: int) -> int:
        """Append a block and return its index."""
        if name in self._index:
            raise StructuralError(f"duplicate block name {name!r}")
        size = int(size)
        if size < 0:
            raise StructuralError(f"block {name!r} has negative size {size}")
        self._index[name] = len(self._names)
        self._names.append(name)
        self._sizes.append(size)
        return self._index[name]

    def offsets(self) -> IndexArray:
        return np.concatenate([[0], np.cumsum(self._sizes, dtype=np.int64)]).astype(np.int64)

    def index(self, name: Hashable) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise StructuralError(f"no block named {name!r}") from None

    def size(self, name: Hashable) -> int:
        return self._sizes[self.index(name)]

    def slice(self, name: Hashable) -> slice:
        i = self.index(name)
        start = int(sum(self._sizes[:i]))
        return slice(start, start + self._sizes[i])

    @property
    def names(self) -> list[Hashable]:
        return list(self._names)

    @property
    def total(self) -> int:
        return int(sum(self._sizes))

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: Hashable) -> bool:
        return name in self._index

    def __repr__(self) -> str:
        return f"BlockLayout({list(zip(self._names, self._sizes))})"


class IdentityOperator(LinearOperator):
    """Identity on R^n."""

    def __init__(self, n: int):
        super().__init__(dtype=np.float64, shape=(int(n), int(n)))

    def _matvec(self, x):
        return _vec(x).copy()

    def _rmatvec(self, x):
        return _vec(x).copy()


class ScaledOperator(LinearOperator):
    """c * A."""

    def __init__(self, A, c: float, *, owns: bool = False):
        self.A = as_operator(A)
        self.c = c
        self.owns = owns
        super().__init__(dtype=_dtype(self.A, np.asarray(c)), shape=self.A.shape)

    def _matvec(self, x):
        return self.c * self.A.matvec(_vec(x))

    def _rmatvec(self, x):
        return self.c * self.A.rmatvec(_vec(x))


class SumOperator(LinearOperator):
    """alpha * A + beta * B."""

    def __init__(self, A, B, alpha: float = 1.0, beta: float = 1.0, *, owns: bool = False):
        self.A = as_operator(A)
        self.B = as_operator(B)
        if self.A.shape != self.B.shape:
            raise StructuralError(f"SumOperator shapes differ: {self.A.shape} vs {self.B.shape}")
        self.alpha = alpha
        self.beta = beta
        self.owns = owns
        super().__init__(dtype=_dtype(self.A, self.B), shape=self.A.shape)

    def _matvec(self, x):
        x = _vec(x)
        return self.alpha * self.A.matvec(x) + self.beta * self.B.matvec(x)

    def _rmatvec(self, x):
        x = _vec(x)
        return self.alpha * self.A.rmatvec(x) + self.beta * self.B.rmatvec(x)


class ProductOperator(LinearOperator):
    """A B."""

    def __init__(self, A, B, *, owns: bool = False):
        self.A = as_operator(A)
        self.B = as_operator(B)
        if self.A.shape[1] != self.B.shape[0]:
            raise StructuralError(f"ProductOperator shapes do not chain: {self.A.shape} x {self.B.shape}")
        self.owns = owns
        super().__init__(dtype=_dtype(self.A, self.B), shape=(self.A.shape[0], self.B.shape[1]))

    def _matvec(self, x):
        return self.A.matvec(self.B.matvec(_vec(x)))

    def _rmatvec(self, x):
        return self.B.rmatvec(self.A.rmatvec(_vec(x)))


class TripleProductOperator(LinearOperator):
    """A B C."""

    def __init__(self, A, B, C, *, owns: bool = False):
        self.A = as_operator(A)
        self.B = as_operator(B)
        self.C = as_operator(C)
        if self.A.shape[1] != self.B.shape[0] or self.B.shape[1] != self.C.shape[0]:
            raise StructuralError(
                f"TripleProductOperator shapes do not chain: {self.A.shape} x {self.B.shape} x {self.C.shape}"
            )
        self.owns = owns
        super().__init__(dtype=_dtype(self.A, self.B, self.C), shape=(self.A.shape[0], self.C.shape[1]))

    def _matvec(self, x):
        return self.A.matvec(self.B.matvec(self.C.matvec(_vec(x))))

    def _rmatvec(self, x):
        return self.C.rmatvec(self.B.rmatvec(self.A.rmatvec(_vec(x))))


class TransposeOperator(LinearOperator):
    """A^T, applied through A's transpose action."""

    def __init__(self, A, *, owns: bool = False):
        self.A = as_operator(A)
        self.owns = owns
        super().__init__(dtype=self.A.dtype, shape=(self.A.shape[1], self.A.shape[0]))

    def _matvec(self, x):
        return self.A.rmatvec(_vec(x))

    def _rmatvec(self, x):
        return self.A.matvec(_vec(x))


class BlockOperator(LinearOperator):
    """Operator partitioned into row and column blocks.

    Parameters
    ----------
    row_offsets
        Prefix sums of the row block sizes (see `check_offsets`).
    col_offsets
        Prefix sums of the column block sizes; defaults to `row_offsets`.

    Blocks are registered with `set_block(i, j, op, coef)`; absent blocks act as
    zero. The shape is `(row_offsets[-1], col_offsets[-1])`.
    """

    def __init__(self, row_offsets, col_offsets=None):
        self.row_offsets = check_offsets(row_offsets, "row")
        self.col_offsets = self.row_offsets if col_offsets is None else check_offsets(col_offsets, "column")
        self._blocks: dict[tuple[int, int], tuple[LinearOperator, float]] = {}
        super().__init__(
            dtype=np.float64, shape=(int(self.row_offsets[-1]), int(self.col_offsets[-1]))
        )

    @property
    def n_row_blocks(self) -> int:
        return self.row_offsets.size - 1

    @property
    def n_col_blocks(self) -> int:
        return self.col_offsets.size - 1

    def block_shape(self, i: int, j: int) -> tuple[int, int]:
        r, c = self.row_offsets, self.col_offsets
        return int(r[i + 1] - r[i]), int(c[j + 1] - c[j])

    def set_block(self, i: int, j: int, op, coef: float = 1.0) -> None:
        """Register `coef * op` at block (i, j)."""
        if not (0 <= i < self.n_row_blocks and 0 <= j < self.n_col_blocks):
            raise StructuralError(
                f"block ({i}, {j}) outside a {self.n_row_blocks} x {self.n_col_blocks} block operator"
            )
        op = as_operator(op)
        if op.shape != self.block_shape(i, j):
            raise StructuralError(f"block ({i}, {j}) expects shape {self.block_shape(i, j)}, got {op.shape}")
        self._blocks[(i, j)] = (op, coef)
        self.dtype = _dtype(self, op)

    def get_block(self, i: int, j: int) -> LinearOperator | None:
        entry = self._blocks.get((i, j))
        return None if entry is None else entry[0]

    def block_coef(self, i: int, j: int) -> float:
        return self._blocks[(i, j)][1]

    def is_zero_block(self, i: int, j: int) -> bool:
        return (i, j) not in self._blocks

    @property
    def nonzero_blocks(self) -> list[tuple[int, int]]:
        return sorted(self._blocks)

    def _matvec(self, x):
        x = _vec(x)
        r, c = self.row_offsets, self.col_offsets
        y = np.zeros(self.shape[0], dtype=np.result_type(self.dtype, x.dtype))
        for (i, j), (op, coef) in self._blocks.items():
            y[r[i] : r[i + 1]] += coef * op.matvec(x[c[j] : c[j + 1]])
        return y

    def _rmatvec(self, x):
        x = _vec(x)
        r, c = self.row_offsets, self.col_offsets
        y = np.zeros(self.shape[1], dtype=np.result_type(self.dtype, x.dtype))
        for (i, j), (op, coef) in self._blocks.items():
            y[c[j] : c[j + 1]] += coef * op.rmatvec(x[r[i] : r[i + 1]])
        return y


class BlockDiagonalPreconditioner(LinearOperator):
    """Square block-diagonal operator; blocks that are not set act as identity."""

    def __init__(self, offsets):
        self.offsets = check_offsets(offsets)
        self._blocks: dict[int, LinearOperator] = {}
        n = int(self.offsets[-1])
        super().__init__(dtype=np.float64, shape=(n, n))

    def set_diagonal_block(self, i: int, op) -> None:
        if not 0 <= i < self.offsets.size - 1:
            raise StructuralError(f"diagonal block {i} outside {self.offsets.size - 1} blocks")
        op = as_operator(op)
        n = int(self.offsets[i + 1] - self.offsets[i])
        if op.shape != (n, n):
            raise StructuralError(f"diagonal block {i} expects shape {(n, n)}, got {op.shape}")
        self._blocks[i] = op

    def get_diagonal_block(self, i: int) -> LinearOperator | None:
        return self._blocks.get(i)

    def _apply(self, x, transpose: bool):
        x = _vec(x)
        y = x.astype(np.result_type(self.dtype, x.dtype), copy=True)
        o = self.offsets
        for i, op in self._blocks.items():
            xi = x[o[i] : o[i + 1]]
            y[o[i] : o[i + 1]] = op.rmatvec(xi) if transpose else op.matvec(xi)
        return y

    def _matvec(self, x):
        return self._apply(x, transpose=False)

    def _rmatvec(self, x):
        return self._apply(x, transpose=True)


class OperatorArena:
    """Holds every operator allocated by one owner and releases them together."""

    def __init__(self):
        self._ops: list[Any] = []

    def own(self, op):
        """Register `op` with the arena and return it."""
        self._ops.append(op)
        return op

    def __len__(self) -> int:
        return len(self._ops)

    def release(self) -> int:
        """Drop all held operators; returns how many were released."""
        n = len(self._ops)
        self._ops.clear()
        return n


def _own(arena: OperatorArena | None, op):
    """Register `op` with `arena` when one is given."""
    return op if arena is None else arena.own(op)
