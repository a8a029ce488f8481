"""Leaf solvers used as operator building blocks.

DirectSolver
    Sparse LU (`scipy.sparse.linalg.splu`) of a square matrix, applied as
    A^{-1}; the transpose action uses the transposed triangular solves.

KrylovSolver
    Restarted flexible GMRES (`pyamg.krylov.fgmres`) approximating op^{-1},
    started from a zero guess and right-preconditioned by `prec`. Every
    application is counted, and the iteration count and final relative
    residual of the most recent ones are kept in a bounded window. A solve
    that misses the tolerance emits a RuntimeWarning and returns the last
    iterate.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from warnings import warn

import numpy as np
from scipy.sparse import csc_array
from scipy.sparse.linalg import LinearOperator, splu

from pyamg.krylov import fgmres

from .operators import TransposeOperator, _vec, as_operator
from .types import FactorizationError, StructuralError


class DirectSolver(LinearOperator):
    """Exact inverse of a sparse matrix through a sparse LU factorization.

    Parameters
    ----------
    matrix
        Square sparse (or dense) matrix.
    name
        Label used in error messages.

    Raises
    ------
    StructuralError
        If the matrix is not square.
    FactorizationError
        If the factorization fails (for instance an exactly singular matrix).
    """

    def __init__(self, matrix, *, name: str = "matrix"):
        A = csc_array(matrix, dtype=np.float64)
        if A.shape[0] != A.shape[1]:
            raise StructuralError(f"DirectSolver needs a square matrix, {name} is {A.shape}")
        self.name = name
        self._lu = None
        if A.shape[0] > 0:
            try:
                self._lu = splu(A)
            except RuntimeError as exc:
                raise FactorizationError(f"sparse LU of {name} {A.shape} failed: {exc}") from exc
        super().__init__(dtype=np.float64, shape=A.shape)

    def _matvec(self, x):
        x = _vec(x)
        if self._lu is None:
            return x.copy()
        return self._lu.solve(np.ascontiguousarray(x, dtype=np.float64))

    def _rmatvec(self, x):
        x = _vec(x)
        if self._lu is None:
            return x.copy()
        return self._lu.solve(np.ascontiguousarray(x, dtype=np.float64), trans="T")


@dataclass(slots=True)
class LocalSolveRecord:
    """Outcome of one Krylov application."""

    iterations: int
    residual: float
    converged: bool


class KrylovSolver(LinearOperator):
    """Approximate inverse of `op` by preconditioned restarted FGMRES.

    Parameters
    ----------
    op
        Square operator to invert.
    prec
        Preconditioner approximating op^{-1} (None for no preconditioning).
    rtol
        Relative residual tolerance.
    maxiter
        Cap on the total number of inner iterations.
    restart
        Restart length (capped at the operator size).
    name
        Label used in warnings.
    history_size
        Number of most recent `LocalSolveRecord`s kept in `history`.

    Attributes
    ----------
    history
        deque of the last `history_size` records.
    n_solves, n_failed
        Counts over every application since construction.
    """

    def __init__(self, op, prec=None, *, rtol: float = 1.0e-12, maxiter: int = 1000,
                 restart: int = 50, name: str = "local", history_size: int = 64):
        self.op = as_operator(op)
        if self.op.shape[0] != self.op.shape[1]:
            raise StructuralError(f"KrylovSolver needs a square operator, got {self.op.shape}")
        self.prec = None if prec is None else as_operator(prec)
        if self.prec is not None and self.prec.shape != self.op.shape:
            raise StructuralError(
                f"preconditioner shape {self.prec.shape} does not match operator shape {self.op.shape}"
            )
        self.rtol = float(rtol)
        self.maxiter = int(maxiter)
        self.restart = int(restart)
        self.name = name
        if history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {history_size}")
        self.history: deque[LocalSolveRecord] = deque(maxlen=int(history_size))
        self.n_solves = 0
        self.n_failed = 0
        super().__init__(dtype=self.op.dtype, shape=self.op.shape)

    def _record(self, record: LocalSolveRecord) -> None:
        self.history.append(record)
        self.n_solves += 1
        if not record.converged:
            self.n_failed += 1

    def _solve(self, A, M, b):
        b = _vec(b)
        n = b.size
        if n == 0 or not np.any(b):
            self._record(LocalSolveRecord(0, 0.0, True))
            return np.zeros(n, dtype=np.result_type(self.dtype, b.dtype))

        restart = max(1, min(self.restart, n))
        outer = max(1, -(-self.maxiter // restart))
        res: list[float] = []
        x, info = fgmres(A, b, x0=np.zeros_like(b), tol=self.rtol, restart=restart,
                         maxiter=outer, M=M, residuals=res)

        res_arr = np.asarray(res, dtype=float)
        iters = max(int(res_arr.size - 1), 0)
        ratio = float(res_arr[-1] / res_arr[0]) if res_arr.size and res_arr[0] > 0.0 else 0.0
        record = LocalSolveRecord(iters, ratio, info == 0)
        self._record(record)
        if info != 0:
            warn(
                f"{self.name} FGMRES did not converge: {iters} iterations, "
                f"relative residual {ratio:.3e} > {self.rtol:.1e}",
                RuntimeWarning,
                stacklevel=3,
            )
        return np.asarray(x).reshape(-1)

    def _matvec(self, x):
        return self._solve(self.op, self.prec, x)

    def _rmatvec(self, x):
        prec_t = None if self.prec is None else TransposeOperator(self.prec)
        return self._solve(TransposeOperator(self.op), prec_t, x)
