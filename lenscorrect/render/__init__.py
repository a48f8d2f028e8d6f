"""Piecewise-affine rendering of images through transform chains.

This module provides:
- Triangle meshes spanning the image extent
- Footprint / common bounding box computation
- Mesh-based image warping with selectable interpolation
"""

from lenscorrect.render.bounding_box import BoundingBox, BoundingBoxResolver, mesh_bounding_box
from lenscorrect.render.mesh import DEFAULT_MESH_RESOLUTION, MappedMesh, TransformMesh, build_mesh
from lenscorrect.render.warper import Interpolation, MeshMapping, MeshWarper, compute_mapping

__all__ = [
    "DEFAULT_MESH_RESOLUTION",
    # Bounding box
    "BoundingBox",
    "BoundingBoxResolver",
    # Warper
    "Interpolation",
    "MappedMesh",
    "MeshMapping",
    "MeshWarper",
    # Mesh
    "TransformMesh",
    "build_mesh",
    "compute_mapping",
    "mesh_bounding_box",
]
