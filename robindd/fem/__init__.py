"""Reference mesh, space and assembly collaborators for the Robin DD coupling layer.

Modules
-------
mesh
    Simplicial meshes with entity topology, box meshing, subdomain and
    interface mesh extraction, interface discovery.
spaces
    Nedelec / H1 DOF numbering with full and true (owned) DOFs.
forms
    Lowest-order discrete mass, curl-curl and mixed-gradient matrices and the
    "form system matrix" step.
"""

from __future__ import annotations

from . import forms, mesh, spaces
from .mesh import SimplexMesh, box_mesh, find_interface_faces, slab_attributes, submesh, surface_mesh
from .spaces import FECollection, FiniteElementSpace, h1_collection, nd_collection

__all__ = [
    "forms",
    "mesh",
    "spaces",
    "SimplexMesh",
    "box_mesh",
    "find_interface_faces",
    "slab_attributes",
    "submesh",
    "surface_mesh",
    "FECollection",
    "FiniteElementSpace",
    "h1_collection",
    "nd_collection",
]
