"""Timing and diagnostic reporting for Robin DD setup.

This module provides:
  - A setup timing collector (`DDSetupStats`) that supports labeled timers.
  - Helpers to compute min/median/max summaries of per-subdomain and
    per-interface quantities.
  - Compact, human-readable setup and local-solve summary printers.

Typical usage
-------------
Inside the orchestrator:

    stats = DDSetupStats(n_subdomains=len(sd_meshes), n_interfaces=len(interfaces))
    with stats.timeit("correspondence"):
        ... build DOF correspondences ...
    with stats.timeit("subdomain_ops"):
        ... assemble local operators ...
    _dd_finalize_setup_stats(stats=stats, subdomains=..., interface_states=..., block_offsets=...)
    _dd_print_setup_summary(stats, print_info=config.print_info)

The caller decides which timer keys are used; this module simply stores them.
All printing of the package happens here.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any
import time

import numpy as np


@dataclass(slots=True)
class DDSetupStats:
    """Setup timings and summary statistics of one DD interface operator.

    Attributes
    ----------
    n_subdomains
        Number of subdomains (present or not on this process).
    n_interfaces
        Number of interfaces.
    size
        Dimension of the interface operator (filled in finalize).
    timings
        Dict mapping timer keys to elapsed seconds.
    extra
        Dict for derived metrics (min/med/max of trace sizes, unset map entries,
        local solve iterations, etc.).
    """

    n_subdomains: int
    n_interfaces: int
    size: int | None = None
    timings: dict[str, float] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @contextmanager
    def timeit(self, key: str):
        """Context manager that accumulates elapsed time under `timings[key]`."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.timings[key] = self.timings.get(key, 0.0) + (time.perf_counter() - t0)


def _store_mmx(extra: dict[str, Any], base: str, arr) -> None:
    """Store min/median/max of an array-like into `extra` under `<base>_{min,med,max}`."""
    a = np.asarray(arr, dtype=float)
    if a.size == 0:
        return
    extra[f"{base}_min"] = float(np.min(a))
    extra[f"{base}_med"] = float(np.median(a))
    extra[f"{base}_max"] = float(np.max(a))


def _dd_finalize_setup_stats(*, stats: DDSetupStats, subdomains, interface_states, block_offsets) -> None:
    """Populate derived diagnostics once the operator has been composed.

    Parameters
    ----------
    stats
        The stats object (mutated in-place).
    subdomains
        List of `SubdomainState` or None.
    interface_states
        List of `InterfaceState` or None.
    block_offsets
        Global block offsets of the interface operator.
    """
    stats.size = int(block_offsets[-1])

    present = [sd for sd in subdomains if sd is not None]
    stats.extra["n_local_subdomains"] = len(present)
    stats.extra["n_local_interfaces"] = sum(s is not None for s in interface_states)

    _store_mmx(stats.extra, "bdry", [sd.tdofs_bdry.size for sd in present])
    _store_mmx(stats.extra, "local", [sd.layout.total for sd in present])
    _store_mmx(stats.extra, "nd", [s.nd_size for s in interface_states if s is not None])
    _store_mmx(stats.extra, "h1", [s.h1_size for s in interface_states if s is not None])

    n_map = sum(len(d) for sd in present for d in sd.dofmaps)
    n_unset = sum(len(d) - d.n_set for sd in present for d in sd.dofmaps)
    stats.extra["map_entries"] = n_map
    stats.extra["map_unset"] = n_unset
    stats.extra["map_conflicts"] = sum(d.conflicts for sd in present for d in sd.dofmaps)


def _dd_record_local_solves(stats: DDSetupStats, subdomains) -> None:
    """Summarize the local Krylov solvers into `stats.extra`.

    Solve and failure counts cover every application; iteration and residual
    summaries cover the recent records each solver keeps.
    """
    solvers = [sd.solver for sd in subdomains if sd is not None and sd.solver is not None]
    records = [r for s in solvers for r in s.history]
    stats.extra["local_solves"] = sum(s.n_solves for s in solvers)
    stats.extra["local_failed"] = sum(s.n_failed for s in solvers)
    _store_mmx(stats.extra, "local_its", [r.iterations for r in records])
    _store_mmx(stats.extra, "local_res", [r.residual for r in records])


def _fmt(x) -> str:
    """Format a scalar for compact printing."""
    try:
        x = float(x)
    except (TypeError, ValueError):
        return str(x)
    ax = abs(x)
    if ax != 0.0 and (ax < 1e-2 or ax >= 1e4):
        return f"{x:.2e}"
    return f"{x:.3g}"


def _mmx(extra: dict[str, Any], base: str) -> str:
    """Return `min/med/max` string for `base` as stored in `extra`."""
    a = extra.get(f"{base}_min")
    b = extra.get(f"{base}_med")
    c = extra.get(f"{base}_max")
    if a is None or b is None or c is None:
        return "n/a"
    return f"{_fmt(a)}/{_fmt(b)}/{_fmt(c)}"


def _fmt_ms(t: float) -> str:
    """Format a duration in seconds as either milliseconds or seconds."""
    return f"{t*1e3:7.1f}ms" if t < 1.0 else f"{t:7.2f}s"


def _dd_print_setup_summary(
    stats: DDSetupStats,
    *,
    print_info: bool,
    prefix: str = "RDD",
    indent: str = "",
) -> None:
    """Print a compact summary of setup diagnostics and timings.

    Parameters
    ----------
    stats
        Stats object that has already been finalized.
    print_info
        If False, does nothing.
    prefix
        Short label prefix.
    indent
        Optional indentation string (useful if caller nests printing).
    """
    if not print_info:
        return

    n = stats.size if stats.size is not None else "?"
    print(
        f"{indent}{prefix:<3}  subdomains={stats.n_subdomains:<3d} interfaces={stats.n_interfaces:<3d} n={n}"
    )

    print(f"{indent}     subdomains (min/med/max):")
    print(f"{indent}       bdry  : {_mmx(stats.extra, 'bdry')}")
    print(f"{indent}       local : {_mmx(stats.extra, 'local')}")
    print(f"{indent}     interfaces (min/med/max):")
    print(f"{indent}       nd    : {_mmx(stats.extra, 'nd')}")
    print(f"{indent}       h1    : {_mmx(stats.extra, 'h1')}")

    if "map_entries" in stats.extra:
        print(f"{indent}     correspondence:")
        print(
            f"{indent}       entries={stats.extra['map_entries']}  unset={stats.extra['map_unset']}"
            f"  conflicts={stats.extra['map_conflicts']}"
        )

    order = [
        "spaces",
        "correspondence",
        "interface_ops",
        "subdomain_ops",
        "factorize",
        "compose",
    ]
    total = 0.0
    print(f"{indent}     timing:")
    for k in order:
        if k in stats.timings:
            v = stats.timings[k]
            total += v
            print(f"{indent}       {k:<14} {_fmt_ms(v)}")
    print(f"{indent}       {'total':<14} {_fmt_ms(total)}")


def _dd_print_local_solve_summary(stats: DDSetupStats, *, print_info: bool, indent: str = "") -> None:
    """Print the local Krylov solve summary recorded by `_dd_record_local_solves`.

    Parameters
    ----------
    stats
        Stats object holding `local_*` entries.
    print_info
        If False, does nothing.
    indent
        Optional indentation prefix.
    """
    if not print_info or "local_solves" not in stats.extra:
        return
    print(
        f"{indent}RDD  local solves={stats.extra['local_solves']}  failed={stats.extra['local_failed']}"
        f"  its={_mmx(stats.extra, 'local_its')}  res={_mmx(stats.extra, 'local_res')}"
    )
