"""Robin-coupled non-overlapping domain decomposition interface operator.

ROBINDD_PRINT_INFO=1 pytest -q -s robindd/tests/schwarz/test_robin_dd.py

The operator acts on the concatenation, over subdomains m, of

    [s_m, f_{m,0}, rho_{m,0}, f_{m,1}, rho_{m,1}, ...]

(boundary trace of the Nedelec volume field, interface Nedelec fields and
interface H1 multipliers) and evaluates

    y = x + BlockDiag(R_m A_m^{-1} R_m^T) BlockOffDiag(C_mn) x

where A_m is the local block operator of subdomain m, R_m^T embeds the
boundary trace into the local layout, and C_mn couples neighbour n to m across
their interface through Robin transmission conditions.

Setup proceeds through explicit phases:

    UNINITIALIZED -> CORRESPONDENCES_BUILT -> LOCAL_OPERATORS_ASSEMBLED
                  -> GLOBAL_OPERATOR_COMPOSED -> READY  (-> RELEASED)

Any failure raises and aborts construction; there is no partially built
operator to use.
"""

from __future__ import annotations

from enum import Enum

import numpy as np
from scipy.sparse.linalg import LinearOperator

from robindd.fem.mesh import find_interface_faces, submesh, surface_mesh
from robindd.fem.spaces import FiniteElementSpace, h1_collection, nd_collection

from .rdd.correspondence import build_interface_to_surface_map
from .rdd.injection import ArrayInjection, SetInjection
from .rdd.interfaces import create_cij, create_interface_matrices, create_interface_operator
from .rdd.operators import (
    BlockOperator,
    IdentityOperator,
    OperatorArena,
    ProductOperator,
    SumOperator,
    TransposeOperator,
    TripleProductOperator,
    _vec,
)
from .rdd.stats import (
    DDSetupStats,
    _dd_finalize_setup_stats,
    _dd_print_local_solve_summary,
    _dd_print_setup_summary,
    _dd_record_local_solves,
)
from .rdd.subdomains import (
    create_subdomain_layouts,
    create_subdomain_matrices,
    create_subdomain_operator,
    create_subdomain_preconditioner,
    create_subdomain_solver,
    create_trace_injection,
    find_boundary_true_dofs,
)
from .rdd.types import DDConfig, InterfaceState, StructuralError, SubdomainInterface, SubdomainState

LOWEST_ORDER = 1


class DDState(Enum):
    """Setup phases of `DDMInterfaceOperator`, in order."""

    UNINITIALIZED = 0
    CORRESPONDENCES_BUILT = 1
    LOCAL_OPERATORS_ASSEMBLED = 2
    GLOBAL_OPERATOR_COMPOSED = 3
    READY = 4
    RELEASED = 5


class DDMInterfaceOperator(LinearOperator):
    """Interface operator of a Robin-coupled non-overlapping DD.

    Parameters
    ----------
    parent_mesh
        The unpartitioned mesh. Element attribute m + 1 marks subdomain m.
    subdomain_meshes
        Per-subdomain meshes (None where the subdomain is not local). Element
        attributes are 1-based parent element indices.
    interface_meshes
        Per-interface surface meshes (None where absent); element i of an
        interface mesh is the i-th face of the interface's sorted faces.
    interfaces
        `SubdomainInterface` per interface mesh.
    order
        Nedelec / H1 order of the subdomain and interface spaces. Only order 1
        can be assembled; higher orders are rejected before any setup.
    config
        `DDConfig`; defaults are used when None.

    Attributes
    ----------
    state
        Current `DDState`.
    subdomains
        `SubdomainState` or None per subdomain.
    interface_states
        `InterfaceState` or None per interface.
    block_offsets
        Offsets of each subdomain's part of the operator's vector.
    global_interface_operator
        BlockOffDiag(C_mn) over `block_offsets`.
    global_subdomain_operator
        BlockDiag(R_m A_m^{-1} R_m^T) over `block_offsets`.
    stats
        `DDSetupStats` with timings and diagnostics.

    Raises
    ------
    GeometricMismatchError, StructuralError, FactorizationError
        On the corresponding setup failure.
    ValueError
        On inconsistent input lists or order < 1.
    NotImplementedError
        For order > 1.
    """

    def __init__(
        self,
        parent_mesh,
        subdomain_meshes,
        interface_meshes,
        interfaces,
        *,
        order: int = 1,
        config: DDConfig | None = None,
    ):
        order = int(order)
        if order < 1:
            raise ValueError(f"order must be >= 1, got {order}")
        if order > LOWEST_ORDER:
            raise NotImplementedError(f"only order {LOWEST_ORDER} assembly is available, got order {order}")
        self.config = DDConfig() if config is None else config
        self.state = DDState.UNINITIALIZED
        self.arena = OperatorArena()

        subdomain_meshes = list(subdomain_meshes)
        interface_meshes = list(interface_meshes)
        interfaces = list(interfaces)
        if len(interface_meshes) != len(interfaces):
            raise ValueError(f"{len(interface_meshes)} interface meshes for {len(interfaces)} interfaces")
        n_sd = len(subdomain_meshes)
        pairs = set()
        for k, ifc in enumerate(interfaces):
            if not isinstance(ifc, SubdomainInterface):
                raise TypeError(f"interface {k} must be a SubdomainInterface, got {type(ifc).__name__}")
            if ifc.second >= n_sd or ifc.first < 0:
                raise ValueError(f"interface {k} references subdomain outside 0..{n_sd - 1}")
            if (ifc.first, ifc.second) in pairs:
                raise StructuralError(f"subdomains {ifc.first} and {ifc.second} share more than one interface")
            pairs.add((ifc.first, ifc.second))

        self.parent_mesh = parent_mesh
        self.order = order
        self.interfaces = interfaces
        self.stats = DDSetupStats(n_subdomains=n_sd, n_interfaces=len(interfaces))

        with self.stats.timeit("spaces"):
            self.subdomains = self._dd_create_subdomains(subdomain_meshes, interface_meshes)
            self.interface_states = self._dd_create_interface_states(interface_meshes)

        with self.stats.timeit("correspondence"):
            self._dd_build_correspondences()
        self._advance(DDState.CORRESPONDENCES_BUILT)

        with self.stats.timeit("interface_ops"):
            self._dd_assemble_interfaces()
        with self.stats.timeit("subdomain_ops"):
            self._dd_assemble_subdomains()
        with self.stats.timeit("factorize"):
            self._dd_create_local_solvers()
        self._advance(DDState.LOCAL_OPERATORS_ASSEMBLED)

        with self.stats.timeit("compose"):
            self._dd_compose()
        self._advance(DDState.GLOBAL_OPERATOR_COMPOSED)

        n = int(self.block_offsets[-1])
        super().__init__(dtype=np.float64, shape=(n, n))
        self._advance(DDState.READY)

        _dd_finalize_setup_stats(
            stats=self.stats,
            subdomains=self.subdomains,
            interface_states=self.interface_states,
            block_offsets=self.block_offsets,
        )
        _dd_print_setup_summary(self.stats, print_info=self.config.print_info)

    # ---- state machine ----
    def _advance(self, new: DDState) -> None:
        if new.value != self.state.value + 1:
            raise StructuralError(f"cannot move from {self.state.name} to {new.name}")
        self.state = new

    def _require_ready(self) -> None:
        if self.state is not DDState.READY:
            raise StructuralError(f"interface operator used in state {self.state.name}")

    # ---- setup phases ----
    def _dd_create_subdomains(self, subdomain_meshes, interface_meshes) -> list[SubdomainState | None]:
        out: list[SubdomainState | None] = []
        for m, mesh in enumerate(subdomain_meshes):
            if mesh is None:
                out.append(None)
                continue
            incident = [
                i
                for i, ifc in enumerate(self.interfaces)
                if m in (ifc.first, ifc.second) and interface_meshes[i] is not None
            ]
            space = FiniteElementSpace(mesh, nd_collection(self.order))
            out.append(SubdomainState(index=m, mesh=mesh, space=space, interfaces=incident))
        return out

    def _dd_create_interface_states(self, interface_meshes) -> list[InterfaceState | None]:
        out: list[InterfaceState | None] = []
        for i, mesh in enumerate(interface_meshes):
            if mesh is None:
                out.append(None)
                continue
            out.append(
                InterfaceState(
                    index=i,
                    interface=self.interfaces[i],
                    mesh=mesh,
                    nd_space=FiniteElementSpace(mesh, nd_collection(self.order)),
                    h1_space=FiniteElementSpace(mesh, h1_collection(self.order)),
                )
            )
        return out

    def _dd_build_correspondences(self) -> None:
        cfg = self.config
        for sd in self.subdomains:
            if sd is None:
                continue
            n_u = sd.space.true_vsize
            sd.tdofs_bdry = find_boundary_true_dofs(sd.space)
            sd.bdry_injection = SetInjection(n_u, sd.tdofs_bdry)
            for i in sd.interfaces:
                st = self.interface_states[i]
                dofmap = build_interface_to_surface_map(
                    st.nd_space,
                    sd.space,
                    self.parent_mesh,
                    sd.index + 1,
                    st.interface.faces,
                    tol=cfg.vertex_tol,
                    strict=cfg.strict_matching,
                )
                sd.dofmaps.append(dofmap)
                sd.injections.append(ArrayInjection(n_u, st.nd_space, dofmap))

    def _dd_assemble_interfaces(self) -> None:
        self._cij: list[BlockOperator | None] = []
        for st in self.interface_states:
            if st is None:
                self._cij.append(None)
                continue
            st.matrices = create_interface_matrices(st.nd_space, st.h1_space)
            self._cij.append(create_cij(st, self.config, self.arena))

    def _dd_assemble_subdomains(self) -> None:
        for sd in self.subdomains:
            if sd is None:
                continue
            sd.volume_matrix = create_subdomain_matrices(sd.space, self.config.k2)
            create_subdomain_layouts(sd, self.interface_states)
            sd.op = create_subdomain_operator(sd, self.interface_states, self.config, self.arena)

    def _dd_create_local_solvers(self) -> None:
        for sd in self.subdomains:
            if sd is None:
                continue
            sd.prec = create_subdomain_preconditioner(sd, self.interface_states, self.config, self.arena)
            sd.solver = self.arena.own(create_subdomain_solver(sd, self.config))

    def _dd_compose(self) -> None:
        sizes = [0 if sd is None else sd.trace_layout.total for sd in self.subdomains]
        self.block_offsets = np.concatenate([[0], np.cumsum(sizes, dtype=np.int64)]).astype(np.int64)

        gif = self.arena.own(BlockOperator(self.block_offsets))
        for st, cij in zip(self.interface_states, self._cij):
            if st is None:
                continue
            for orientation in (0, 1):
                m, n = st.interface.oriented(orientation)
                sd_m, sd_n = self.subdomains[m], self.subdomains[n]
                if sd_m is None or sd_n is None:
                    continue
                gif.set_block(m, n, create_interface_operator(cij, st, sd_m, sd_n, self.arena))

        gsd = self.arena.own(BlockOperator(self.block_offsets))
        for sd in self.subdomains:
            if sd is None:
                continue
            inj = create_trace_injection(sd, self.arena)
            gsd.set_block(
                sd.index,
                sd.index,
                self.arena.own(TripleProductOperator(self.arena.own(TransposeOperator(inj)), sd.solver, inj)),
            )

        n = int(self.block_offsets[-1])
        self.global_interface_operator = gif
        self.global_subdomain_operator = gsd
        self._op = self.arena.own(
            SumOperator(self.arena.own(ProductOperator(gsd, gif)), self.arena.own(IdentityOperator(n)))
        )

    # ---- application ----
    def _matvec(self, x):
        self._require_ready()
        return self._op.matvec(_vec(x))

    def _rmatvec(self, x):
        self._require_ready()
        return self._op.rmatvec(_vec(x))

    def local_solve_summary(self) -> DDSetupStats:
        """Record the local Krylov histories into `stats` (and print them if enabled)."""
        _dd_record_local_solves(self.stats, self.subdomains)
        _dd_print_local_solve_summary(self.stats, print_info=self.config.print_info)
        return self.stats

    def release(self) -> int:
        """Drop every operator built during setup; the operator is unusable afterwards."""
        n = self.arena.release()
        self._op = None
        self._cij = []
        self.global_interface_operator = None
        self.global_subdomain_operator = None
        for sd in self.subdomains:
            if sd is not None:
                sd.op = sd.prec = sd.solver = None
        self.state = DDState.RELEASED
        return n


def ddm_interface_operator(
    mesh,
    *,
    n_subdomains: int | None = None,
    order: int = 1,
    config: DDConfig | None = None,
    permute_seed: int | None = None,
) -> DDMInterfaceOperator:
    """Build the interface operator of an attributed mesh.

    Subdomain m consists of the elements with attribute m + 1; every pair of
    attributes sharing faces becomes an interface.

    Parameters
    ----------
    mesh
        Parent `SimplexMesh` with attributes 1..n_subdomains.
    n_subdomains
        Number of subdomains (default: the largest attribute).
    order
        Space order (only 1 is supported).
    config
        `DDConfig` (defaults when None).
    permute_seed
        If given, subdomain and interface meshes get shuffled vertex numberings
        derived from this seed.

    Returns
    -------
    op
        A READY `DDMInterfaceOperator`.
    """
    if n_subdomains is None:
        n_subdomains = int(np.max(mesh.attributes))

    def seed(k):
        return None if permute_seed is None else permute_seed + k

    sd_meshes = [submesh(mesh, m + 1, seed=seed(m)) for m in range(n_subdomains)]

    interfaces: list[SubdomainInterface] = []
    if_meshes = []
    for k, ((a, b), faces) in enumerate(find_interface_faces(mesh).items()):
        if a > n_subdomains or b > n_subdomains:
            continue
        interfaces.append(SubdomainInterface(a - 1, b - 1, tuple(faces)))
        if_meshes.append(surface_mesh(mesh, faces, seed=seed(n_subdomains + k)))

    return DDMInterfaceOperator(mesh, sd_meshes, if_meshes, interfaces, order=order, config=config)
