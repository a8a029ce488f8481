"""Injection and restriction operators between index spaces of different sizes.

SetInjection
    Scatter a short vector into selected positions of a longer one. The
    transpose gathers those positions back.

ArrayInjection
    Move interface true DOFs onto subdomain true DOFs through a
    `DofCorrespondence`: expand to full interface DOFs with the space
    prolongation, then scatter every set entry to its subdomain true DOF. The
    transpose gathers the set entries into a full interface vector and restricts
    it back to true DOFs.

Unset correspondence entries are skipped in both directions: subdomain DOFs
owned elsewhere receive nothing and contribute nothing.
"""

from __future__ import annotations

import numpy as np
from scipy.sparse.linalg import LinearOperator

from .operators import _vec
from .types import DofCorrespondence, SpaceLike, StructuralError


class SetInjection(LinearOperator):
    """Injection of R^len(indices) into R^height at `indices`.

    Parameters
    ----------
    height
        Length of the output vector.
    indices
        Output positions receiving consecutive input entries. Must be in range;
        the width is `len(indices)` and must not exceed `height`.
    """

    def __init__(self, height: int, indices):
        idx = np.asarray(indices, dtype=np.int32).reshape(-1)
        if idx.size > height:
            raise StructuralError(f"SetInjection height {height} is smaller than its width {idx.size}")
        if idx.size and (idx.min() < 0 or idx.max() >= height):
            raise StructuralError(f"SetInjection indices out of range for height {height}")
        self.indices = idx
        super().__init__(dtype=np.float64, shape=(int(height), int(idx.size)))

    def _matvec(self, x):
        x = _vec(x)
        y = np.zeros(self.shape[0], dtype=np.result_type(self.dtype, x.dtype))
        y[self.indices] = x
        return y

    def _rmatvec(self, x):
        return _vec(x)[self.indices].copy()


class ArrayInjection(LinearOperator):
    """Interface true DOFs to subdomain true DOFs through a correspondence map.

    Parameters
    ----------
    height
        Number of true DOFs of the subdomain space.
    space
        Interface space; the width is `space.true_vsize`.
    dofmap
        Correspondence of length `space.vsize`.
    """

    def __init__(self, height: int, space: SpaceLike, dofmap: DofCorrespondence):
        width = int(space.true_vsize)
        if width > height:
            raise StructuralError(f"ArrayInjection height {height} is smaller than its width {width}")
        if len(dofmap) != space.vsize:
            raise StructuralError(
                f"correspondence has {len(dofmap)} entries for an interface space of {space.vsize} DOFs"
            )
        self.space = space
        self.dofmap = dofmap
        self._src = dofmap.set_indices()
        self._dst = dofmap.target[self._src]
        if self._dst.size and self._dst.max() >= height:
            raise StructuralError(f"correspondence targets exceed subdomain size {height}")
        super().__init__(dtype=np.float64, shape=(int(height), width))

    def _matvec(self, x):
        gf = self.space.prolongation @ _vec(x)
        y = np.zeros(self.shape[0], dtype=np.result_type(self.dtype, gf.dtype))
        y[self._dst] = gf[self._src]
        return y

    def _rmatvec(self, x):
        x = _vec(x)
        gf = np.zeros(self.space.vsize, dtype=np.result_type(self.dtype, x.dtype))
        gf[self._src] = x[self._dst]
        return self.space.restriction @ gf
