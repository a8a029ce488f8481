"""Typed containers, configuration and errors used throughout the Robin DD layer.

This module groups "setup state" into coherent parcels so the orchestrator does
not carry many parallel per-subdomain and per-interface arrays.

Containers
----------
DDConfig
    Frozen configuration: wavenumber squared, transmission coefficients
    (alpha, beta, gamma), matching tolerance and policy, local solver controls.

SubdomainInterface
    Unordered pair of subdomain indices (canonicalized, first < second) and the
    sorted parent-mesh faces separating them.

DofCorrespondence
    Partial map from full interface DOFs to true subdomain DOFs. Unset entries
    are tracked by an explicit boolean mask, never by a sentinel value.

InterfaceMatrices / InterfaceState
    Per-interface trace spaces and assembled interface matrices.

SubdomainState
    Per-subdomain space, boundary true DOFs, block layout and local operators.

Errors
------
DDError
    Base class of all fatal setup errors.
GeometricMismatchError
    A required coincident entity is missing, or two matches disagree.
StructuralError
    Offsets or shapes are inconsistent, or a required component is missing.
FactorizationError
    A local direct factorization failed.

Invariants
----------
- Index arrays are int32 numpy arrays.
- `SubdomainState.tdofs_bdry` is unique-sorted.
- `SubdomainState.layout` blocks are ordered [u, f_0, rho_0, f_1, rho_1, ...].
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable
from warnings import warn

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import sparray, spmatrix

SparseLike = spmatrix | sparray
IndexArray = NDArray[np.int32]


class DDError(RuntimeError):
    """Fatal error raised while building or applying the DD interface operator."""


class GeometricMismatchError(DDError):
    """A geometric match required by the DOF correspondence failed or was inconsistent."""


class StructuralError(DDError):
    """Block offsets, operator shapes or required components are inconsistent."""


class FactorizationError(DDError):
    """A local sparse direct factorization reported failure."""


@dataclass(slots=True, frozen=True)
class DDConfig:
    """Configuration of the Robin DD interface operator.

    Attributes
    ----------
    k2 : float
        Wavenumber squared in the subdomain operator curl-curl - k2 * mass.
    alpha, beta, gamma : float
        Transmission-condition coefficients. The formulation leaves their
        values open; all default to 1.0.
    vertex_tol : float
        Per-coordinate tolerance deciding vertex coincidence.
    strict_matching : bool
        If True, two geometric matches assigning different subdomain DOFs to the
        same interface DOF raise GeometricMismatchError. If False, a warning is
        issued and the first assignment is kept.
    local_rtol, local_maxiter, local_restart
        Relative tolerance, iteration cap and restart length of the local
        FGMRES solve standing in for A_m^{-1}.
    local_history : int
        Number of recent local solve records each solver keeps.
    print_info : bool
        Whether to print setup and local-solve summaries via `rdd.stats`.
    """

    k2: float = 250.0
    alpha: float = 1.0
    beta: float = 1.0
    gamma: float = 1.0
    vertex_tol: float = 1.0e-12
    strict_matching: bool = True
    local_rtol: float = 1.0e-12
    local_maxiter: int = 1000
    local_restart: int = 50
    local_history: int = 64
    print_info: bool = False

    def __post_init__(self) -> None:
        if self.alpha == 0.0:
            raise ValueError("alpha must be non-zero (it is inverted in the F blocks)")
        if self.vertex_tol <= 0.0 or self.local_rtol <= 0.0:
            raise ValueError("tolerances must be positive")
        if self.local_maxiter < 1 or self.local_restart < 1 or self.local_history < 1:
            raise ValueError("local_maxiter, local_restart and local_history must be >= 1")


@dataclass(slots=True, frozen=True)
class SubdomainInterface:
    """Interface between two subdomains given by a set of parent-mesh faces.

    The pair is canonicalized on construction so that `first < second`.
    """

    first: int
    second: int
    faces: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.first == self.second:
            raise ValueError(f"an interface needs two distinct subdomains, got {self.first} twice")
        if self.first > self.second:
            a, b = self.second, self.first
            object.__setattr__(self, "first", a)
            object.__setattr__(self, "second", b)
        object.__setattr__(self, "faces", tuple(sorted(int(f) for f in self.faces)))

    def oriented(self, orientation: int) -> tuple[int, int]:
        """Return (self, neighbour) subdomain indices for orientation 0 or 1."""
        if orientation == 0:
            return self.first, self.second
        if orientation == 1:
            return self.second, self.first
        raise ValueError(f"orientation must be 0 or 1, got {orientation!r}")


class DofCorrespondence:
    """Partial map from full interface-space DOFs to true subdomain-space DOFs.

    Parameters
    ----------
    size
        Number of full DOFs of the interface space.
    strict
        Policy for disagreeing assignments (see `DDConfig.strict_matching`).

    Attributes
    ----------
    target
        int32 array of length `size`; meaningful only where `mask` is True.
    mask
        Boolean array of length `size`; True where the entry is set.
    conflicts
        Number of disagreeing assignments seen under the lenient policy.
    """

    __slots__ = ("target", "mask", "strict", "conflicts")

    def __init__(self, size: int, *, strict: bool = True):
        self.target = np.zeros(size, dtype=np.int32)
        self.mask = np.zeros(size, dtype=bool)
        self.strict = strict
        self.conflicts = 0

    def __len__(self) -> int:
        return self.target.size

    def get(self, i: int) -> Optional[int]:
        """Return the true subdomain DOF of interface DOF i, or None if unset."""
        return int(self.target[i]) if self.mask[i] else None

    def assign(self, i: int, tdof: int) -> None:
        """Set entry i to `tdof`, checking consistency with an earlier assignment."""
        if self.mask[i] and self.target[i] != tdof:
            msg = (
                f"interface DOF {i} matched to subdomain true DOFs {int(self.target[i])} "
                f"and {tdof}"
            )
            if self.strict:
                raise GeometricMismatchError(msg)
            self.conflicts += 1
            warn(msg + "; keeping the first", RuntimeWarning, stacklevel=2)
            return
        self.target[i] = tdof
        self.mask[i] = True

    @property
    def n_set(self) -> int:
        return int(np.count_nonzero(self.mask))

    def set_indices(self) -> IndexArray:
        """Interface DOFs with a defined entry."""
        return np.flatnonzero(self.mask).astype(np.int32)


@dataclass(slots=True)
class InterfaceMatrices:
    """Assembled true-DOF matrices on one interface mesh.

    nd_mass, nd_curlcurl : ND x ND
    h1_mass              : H1 x H1
    nd_h1_grad           : ND x H1 (mixed <v, grad p>)
    """

    nd_mass: SparseLike
    nd_curlcurl: SparseLike
    h1_mass: SparseLike
    nd_h1_grad: SparseLike


@dataclass(slots=True)
class InterfaceState:
    """Per-interface spaces and matrices (None on processes without the interface)."""

    index: int
    interface: SubdomainInterface
    mesh: MeshLike
    nd_space: SpaceLike
    h1_space: SpaceLike
    matrices: Optional[InterfaceMatrices] = None

    @property
    def nd_size(self) -> int:
        return self.nd_space.true_vsize

    @property
    def h1_size(self) -> int:
        return self.h1_space.true_vsize


@dataclass(slots=True)
class SubdomainState:
    """Per-subdomain setup state.

    Attributes
    ----------
    index
        Subdomain index m (parent-mesh attribute m + 1).
    mesh, space
        Subdomain mesh and Nedelec space for the volume unknown u_m.
    interfaces
        Global indices of incident local interfaces, in increasing order.
    injections
        Interface-to-surface ArrayInjection operators aligned with `interfaces`.
    dofmaps
        DofCorrespondence maps aligned with `interfaces`.
    tdofs_bdry
        Sorted true DOFs of `space` on the whole subdomain boundary (u_m^s).
    layout
        BlockLayout [u, f_i, rho_i, ...] of the local operator.
    trace_layout
        BlockLayout [s, f_i, rho_i, ...] of this subdomain's part of the global
        interface vector (u replaced by its boundary trace s).
    volume_matrix, op, prec, solver
        Local matrix curl-curl - k2 mass, local block operator, block diagonal
        preconditioner and the Krylov solver approximating op^{-1}.
    """

    index: int
    mesh: MeshLike
    space: SpaceLike
    interfaces: list[int] = field(default_factory=list)
    injections: list[Any] = field(default_factory=list)
    dofmaps: list[DofCorrespondence] = field(default_factory=list)
    tdofs_bdry: Optional[IndexArray] = None
    bdry_injection: Any = None
    layout: Any = None
    trace_layout: Any = None
    volume_matrix: Optional[SparseLike] = None
    op: Any = None
    prec: Any = None
    solver: Any = None

    def local_position(self, interface_index: int) -> int:
        """Position of a global interface index among this subdomain's interfaces."""
        hits = [k for k, i in enumerate(self.interfaces) if i == interface_index]
        if len(hits) != 1:
            raise StructuralError(
                f"interface {interface_index} appears {len(hits)} times on subdomain {self.index}"
            )
        return hits[0]


@runtime_checkable
class MeshLike(Protocol):
    """Structural type of the mesh collaborator as used by the correspondence builder."""

    n_elements: int

    def attribute(self, e: int) -> int: ...
    def is_owned(self, e: int) -> bool: ...
    def vertex(self, v: int) -> np.ndarray: ...
    def element_vertices(self, e: int) -> IndexArray: ...
    def element_edges(self, e: int) -> IndexArray: ...
    def element_faces(self, e: int) -> IndexArray: ...
    def face_vertices(self, f: int) -> IndexArray: ...
    def face_edges(self, f: int) -> IndexArray: ...
    def edge_vertices(self, e: int) -> IndexArray: ...
    def face_elements(self, f: int) -> IndexArray: ...
    def boundary_faces(self) -> IndexArray: ...


@runtime_checkable
class SpaceLike(Protocol):
    """Structural type of a finite element space as used by the DD layer."""

    mesh: MeshLike
    collection: Any
    vsize: int
    true_vsize: int
    prolongation: SparseLike
    restriction: SparseLike

    def vertex_dofs(self, v: int) -> IndexArray: ...
    def edge_dofs(self, e: int) -> IndexArray: ...
    def face_dofs(self, f: int) -> IndexArray: ...
    def face_closure_dofs(self, f: int) -> IndexArray: ...
    def local_tdof(self, dof: int) -> int: ...
    def local_tdofs(self, dofs) -> IndexArray: ...
