"""Geometry module: nodal basis and element mesh.

Provides the Lobatto-Legendre basis and the uniform Cartesian element mesh
with its interface and boundary enumeration.
"""

from subcell.geometry.basis import LobattoLegendreBasis
from subcell.geometry.mesh import CartesianMesh2D

__all__ = ["CartesianMesh2D", "LobattoLegendreBasis"]
