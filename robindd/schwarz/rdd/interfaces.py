"""Interface assembly: trace matrices, the Robin coupling block C and its embedding.

On one interface with trace matrices M (ND mass), K (curl-curl), G (mixed
gradient) and H (H1 mass), the coupling block C maps the neighbour's
[S, F, rho] (trace of u, interface field, multiplier) to the self side's
[S, F] rows:

             S                     F          rho
    S  [ alpha M + beta K         -M         -gamma G        ]
    F  [ -M - beta/alpha K        M/alpha    gamma/alpha G   ]

The oriented interface operator from neighbour n to self m is

    BL_m  (Linj_m  C  Rinj_n)  BR_n

where Rinj_n = diag(E_n^T S_n, I, I) pulls the neighbour boundary trace onto
the interface, Linj_m = diag(S_m^T E_m, I) pushes the S rows onto the self
boundary trace, and BR_n, BL_m select and place the blocks of this interface
within the subdomains' parts of the global vector.
"""

from __future__ import annotations

from robindd.fem.forms import curl_curl_matrix, form_system_matrix, mass_matrix, mixed_gradient_matrix

from .operators import (
    BlockOperator,
    IdentityOperator,
    ProductOperator,
    SumOperator,
    TransposeOperator,
    TripleProductOperator,
    _own,
)
from .types import DDConfig, InterfaceMatrices, InterfaceState, SpaceLike, StructuralError, SubdomainState


def create_interface_matrices(nd_space: SpaceLike, h1_space: SpaceLike) -> InterfaceMatrices:
    """Assemble the true-DOF ND mass, ND curl-curl, H1 mass and mixed gradient matrices."""
    return InterfaceMatrices(
        nd_mass=form_system_matrix(mass_matrix(nd_space), nd_space),
        nd_curlcurl=form_system_matrix(curl_curl_matrix(nd_space), nd_space),
        h1_mass=form_system_matrix(mass_matrix(h1_space), h1_space),
        nd_h1_grad=form_system_matrix(mixed_gradient_matrix(nd_space, h1_space), nd_space, h1_space),
    )


def create_cij(state: InterfaceState, config: DDConfig, arena=None) -> BlockOperator:
    """Build the 2 x 3 block coupling operator C of one interface.

    Row offsets are [0, nd, 2 nd] and column offsets [0, nd, 2 nd, 2 nd + h1].
    """
    if state.matrices is None:
        raise StructuralError(f"interface {state.index} has no assembled matrices")
    alpha, beta, gamma = config.alpha, config.beta, config.gamma
    M = state.matrices.nd_mass
    K = state.matrices.nd_curlcurl
    G = state.matrices.nd_h1_grad
    nd, h1 = state.nd_size, state.h1_size

    C = _own(arena, BlockOperator([0, nd, 2 * nd], [0, nd, 2 * nd, 2 * nd + h1]))
    C.set_block(0, 0, _own(arena, SumOperator(M, K, alpha, beta)))
    C.set_block(0, 1, M, -1.0)
    C.set_block(0, 2, G, -gamma)
    C.set_block(1, 0, _own(arena, SumOperator(M, K, -1.0, -beta / alpha)))
    C.set_block(1, 1, M, 1.0 / alpha)
    C.set_block(1, 2, G, gamma / alpha)
    return C


def create_interface_operator(
    cij: BlockOperator,
    state: InterfaceState,
    self_sd: SubdomainState,
    neighbour_sd: SubdomainState,
    arena=None,
) -> TripleProductOperator:
    """Embed C into the global vector parts of self (rows) and neighbour (columns).

    Parameters
    ----------
    cij
        Coupling block from `create_cij`.
    state
        The interface.
    self_sd, neighbour_sd
        Subdomain states with boundary injections, interface injections and
        trace layouts. The interface must be incident to both.

    Returns
    -------
    op
        Operator of shape (self_sd.trace_layout.total, neighbour_sd.trace_layout.total).
    """
    i = state.index
    nd, h1 = state.nd_size, state.h1_size
    m_pos = self_sd.local_position(i)
    n_pos = neighbour_sd.local_position(i)
    m_bdry = self_sd.tdofs_bdry.size
    n_bdry = neighbour_sd.tdofs_bdry.size

    # neighbour boundary trace -> interface ND trace
    rinj = _own(arena, BlockOperator([0, nd, 2 * nd, 2 * nd + h1], [0, n_bdry, n_bdry + nd, n_bdry + nd + h1]))
    rinj.set_block(0, 0, _own(arena, ProductOperator(
        _own(arena, TransposeOperator(neighbour_sd.injections[n_pos])), neighbour_sd.bdry_injection)))
    rinj.set_block(1, 1, _own(arena, IdentityOperator(nd)))
    rinj.set_block(2, 2, _own(arena, IdentityOperator(h1)))

    # interface ND rows -> self boundary trace
    linj = _own(arena, BlockOperator([0, m_bdry, m_bdry + nd], [0, nd, 2 * nd]))
    linj.set_block(0, 0, _own(arena, ProductOperator(
        _own(arena, TransposeOperator(self_sd.bdry_injection)), self_sd.injections[m_pos])))
    linj.set_block(1, 1, _own(arena, IdentityOperator(nd)))

    local = _own(arena, TripleProductOperator(linj, cij, rinj))

    n_lay = neighbour_sd.trace_layout
    br = _own(arena, BlockOperator([0, n_bdry, n_bdry + nd, n_bdry + nd + h1], n_lay.offsets()))
    br.set_block(0, n_lay.index("s"), _own(arena, IdentityOperator(n_bdry)))
    br.set_block(1, n_lay.index(("f", i)), _own(arena, IdentityOperator(nd)))
    br.set_block(2, n_lay.index(("rho", i)), _own(arena, IdentityOperator(h1)))

    m_lay = self_sd.trace_layout
    bl = _own(arena, BlockOperator(m_lay.offsets(), [0, m_bdry, m_bdry + nd]))
    bl.set_block(m_lay.index("s"), 0, _own(arena, IdentityOperator(m_bdry)))
    bl.set_block(m_lay.index(("f", i)), 1, _own(arena, IdentityOperator(nd)))

    return _own(arena, TripleProductOperator(bl, local, br))
