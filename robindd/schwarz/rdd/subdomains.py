"""Subdomain assembly: volume matrix, local block operator, preconditioner and solver.

For subdomain m with incident interfaces i (in increasing global order) the
local unknown is laid out as

    [u, f_0, rho_0, f_1, rho_1, ...]

with u the Nedelec volume field, f_i an interface Nedelec field and rho_i an
interface H1 multiplier. With E_i the interface-to-surface injection and the
interface matrices M_i (ND mass), K_i (curl-curl), G_i (mixed gradient) and
H_i (H1 mass), the nonzero blocks are

    (u,     u    ) = A_vol = curl-curl - k2 mass
    (u,     rho_i) = -gamma E_i G_i
    (f_i,   u    ) = (M_i + beta/alpha K_i) E_i^T
    (f_i,   f_i  ) = M_i / alpha
    (f_i,   rho_i) = gamma/alpha G_i
    (rho_i, f_i  ) = G_i^T
    (rho_i, rho_i) = H_i

The preconditioner is block diagonal with exact inverses of the diagonal
blocks, and the local solve is FGMRES on the block operator.
"""

from __future__ import annotations

import numpy as np

from robindd.fem.forms import curl_curl_matrix, form_system_matrix, mass_matrix

from .operators import (
    BlockDiagonalPreconditioner,
    BlockLayout,
    BlockOperator,
    IdentityOperator,
    ProductOperator,
    ScaledOperator,
    SumOperator,
    TransposeOperator,
    _own,
)
from .solvers import DirectSolver, KrylovSolver
from .types import DDConfig, IndexArray, InterfaceState, SpaceLike, StructuralError, SubdomainState


def find_boundary_true_dofs(space: SpaceLike) -> IndexArray:
    """Sorted unique true DOFs of `space` on the closure of all boundary faces."""
    faces = space.mesh.boundary_faces()
    if len(faces) == 0:
        return np.zeros(0, dtype=np.int32)
    dofs = np.concatenate([space.face_closure_dofs(int(f)) for f in faces])
    tdofs = space.local_tdofs(dofs)
    return np.unique(tdofs[tdofs >= 0]).astype(np.int32)


def create_subdomain_matrices(space: SpaceLike, k2: float):
    """Assemble the true-DOF volume matrix curl-curl - k2 * mass (no essential DOFs)."""
    A = curl_curl_matrix(space) - k2 * mass_matrix(space)
    return form_system_matrix(A, space, ess_tdofs=[])


def _dd_interface_states(sd: SubdomainState, interface_states) -> list[InterfaceState]:
    """Interface states incident to `sd`, aligned with `sd.interfaces`."""
    out = []
    for i in sd.interfaces:
        st = interface_states[i]
        if st is None or st.matrices is None:
            raise StructuralError(f"subdomain {sd.index} references interface {i} without assembled matrices")
        out.append(st)
    if len(sd.injections) != len(out):
        raise StructuralError(
            f"subdomain {sd.index} has {len(sd.injections)} injections for {len(out)} interfaces"
        )
    return out


def create_subdomain_layouts(sd: SubdomainState, interface_states) -> None:
    """Set `sd.layout` ([u, f_i, rho_i, ...]) and `sd.trace_layout` ([s, f_i, rho_i, ...])."""
    if sd.tdofs_bdry is None:
        raise StructuralError(f"subdomain {sd.index} has no boundary true DOFs")
    layout = BlockLayout()
    trace = BlockLayout()
    layout.append("u", sd.space.true_vsize)
    trace.append("s", sd.tdofs_bdry.size)
    for i, st in zip(sd.interfaces, _dd_interface_states(sd, interface_states)):
        for lay in (layout, trace):
            lay.append(("f", i), st.nd_size)
            lay.append(("rho", i), st.h1_size)
    sd.layout = layout
    sd.trace_layout = trace


def create_subdomain_operator(sd: SubdomainState, interface_states, config: DDConfig, arena=None) -> BlockOperator:
    """Assemble the local block operator of subdomain `sd`.

    Parameters
    ----------
    sd
        Subdomain state with `volume_matrix`, `injections` and `layout` set.
    interface_states
        Global list of interface states (None entries for absent interfaces).
    config
        Provides alpha, beta and gamma.
    arena
        Optional `OperatorArena` taking ownership of the created composites.

    Returns
    -------
    op
        BlockOperator over `sd.layout`.
    """
    if sd.volume_matrix is None or sd.layout is None:
        raise StructuralError(f"subdomain {sd.index} is missing its volume matrix or layout")
    alpha, beta, gamma = config.alpha, config.beta, config.gamma
    lay = sd.layout

    op = _own(arena, BlockOperator(lay.offsets()))
    u = lay.index("u")
    op.set_block(u, u, sd.volume_matrix)

    for i, E, st in zip(sd.interfaces, sd.injections, _dd_interface_states(sd, interface_states)):
        f, rho = lay.index(("f", i)), lay.index(("rho", i))
        mats = st.matrices
        op.set_block(u, rho, _own(arena, ProductOperator(E, mats.nd_h1_grad)), -gamma)
        op.set_block(f, rho, mats.nd_h1_grad, gamma / alpha)
        robin = _own(arena, SumOperator(mats.nd_mass, mats.nd_curlcurl, 1.0, beta / alpha))
        op.set_block(f, u, _own(arena, ProductOperator(robin, _own(arena, TransposeOperator(E)))))
        op.set_block(rho, f, mats.nd_h1_grad.T.tocsr())
        op.set_block(f, f, mats.nd_mass, 1.0 / alpha)
        op.set_block(rho, rho, mats.h1_mass)
    return op


def create_subdomain_preconditioner(
    sd: SubdomainState, interface_states, config: DDConfig, arena=None
) -> BlockDiagonalPreconditioner:
    """Block-diagonal preconditioner: A_vol^{-1}, alpha M_i^{-1} and H_i^{-1}."""
    lay = sd.layout
    prec = _own(arena, BlockDiagonalPreconditioner(lay.offsets()))
    prec.set_diagonal_block(lay.index("u"), DirectSolver(sd.volume_matrix, name=f"subdomain {sd.index} volume"))
    for i, st in zip(sd.interfaces, _dd_interface_states(sd, interface_states)):
        mats = st.matrices
        if st.nd_size:
            minv = DirectSolver(mats.nd_mass, name=f"interface {i} ND mass")
            prec.set_diagonal_block(lay.index(("f", i)), _own(arena, ScaledOperator(minv, config.alpha)))
        if st.h1_size:
            prec.set_diagonal_block(
                lay.index(("rho", i)), DirectSolver(mats.h1_mass, name=f"interface {i} H1 mass")
            )
    return prec


def create_subdomain_solver(sd: SubdomainState, config: DDConfig) -> KrylovSolver:
    """Preconditioned FGMRES standing in for the inverse of the local block operator."""
    if sd.op is None:
        raise StructuralError(f"subdomain {sd.index} has no local operator")
    return KrylovSolver(
        sd.op,
        sd.prec,
        rtol=config.local_rtol,
        maxiter=config.local_maxiter,
        restart=config.local_restart,
        history_size=config.local_history,
        name=f"subdomain {sd.index}",
    )


def create_trace_injection(sd: SubdomainState, arena=None) -> BlockOperator:
    """Map [s, interface blocks] to [u, interface blocks] (boundary trace into the volume)."""
    n_if = sd.layout.total - sd.space.true_vsize
    inj = _own(arena, BlockOperator([0, sd.space.true_vsize, sd.layout.total],
                                    [0, sd.tdofs_bdry.size, sd.trace_layout.total]))
    inj.set_block(0, 0, sd.bdry_injection)
    inj.set_block(1, 1, _own(arena, IdentityOperator(n_if)))
    return inj
