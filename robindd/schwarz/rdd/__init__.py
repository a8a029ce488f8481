"""Robin DD (non-overlapping, Robin-coupled domain decomposition) internals.

This package contains the building blocks of the interface operator
(`robindd.schwarz.robin_dd`).

Modules
-------
types
    Configuration, typed setup containers and the error hierarchy.
matching
    Geometric coincidence predicates for vertices, edges and faces.
correspondence
    Interface-to-subdomain DOF correspondence maps.
injection
    Set and correspondence-based injection operators.
operators
    Composable linear operators, block operators and block layouts.
solvers
    Sparse direct and FGMRES leaf solvers.
subdomains
    Subdomain volume matrices, local block operators, preconditioners and solvers.
interfaces
    Interface trace matrices, the Robin coupling block and its embedding.
stats
    Setup timing and diagnostic reporting.
"""

from __future__ import annotations

from . import correspondence, injection, interfaces, matching, operators, solvers, stats, subdomains, types

__all__ = [
    "types",
    "matching",
    "correspondence",
    "injection",
    "operators",
    "solvers",
    "subdomains",
    "interfaces",
    "stats",
]
