"""三角形メッシュ

画像範囲 [0, width] x [0, height] を規則格子の三角形に分割し、
各頂点に変換を適用して区分アフィン近似の基底を作ります。
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from lenscorrect.transform.composite import Transform

logger = logging.getLogger(__name__)

DEFAULT_MESH_RESOLUTION = 128


@dataclass(frozen=True)
class TransformMesh:
    """変換前の三角形メッシュ（構築後は読み取り専用）

    Attributes:
        width: 画像幅
        height: 画像高さ
        resolution: 幅方向の分割数
        source_vertices: 頂点座標 (V, 2)
        triangles: 各三角形の頂点インデックス (T, 3)
    """

    width: int
    height: int
    resolution: int
    source_vertices: np.ndarray
    triangles: np.ndarray

    @property
    def num_triangles(self) -> int:
        return len(self.triangles)

    @property
    def normalized_vertices(self) -> np.ndarray:
        """[0, 1] に正規化した頂点座標"""
        return self.source_vertices / np.array([self.width, self.height], dtype=np.float64)

    def map(self, transform: Transform) -> MappedMesh:
        """全頂点に変換を適用する"""
        target = transform.apply_array(self.source_vertices)
        target.setflags(write=False)
        return MappedMesh(mesh=self, target_vertices=target)


@dataclass(frozen=True)
class MappedMesh:
    """変換後の頂点座標を持つメッシュ

    Attributes:
        mesh: 元のメッシュ
        target_vertices: 変換後の頂点座標 (V, 2)
    """

    mesh: TransformMesh
    target_vertices: np.ndarray

    @property
    def target_triangles(self) -> np.ndarray:
        """変換後の三角形頂点 (T, 3, 2)"""
        return self.target_vertices[self.mesh.triangles]

    @property
    def source_triangles(self) -> np.ndarray:
        """変換前の三角形頂点 (T, 3, 2)"""
        return self.mesh.source_vertices[self.mesh.triangles]

    def extent(self) -> tuple[float, float, float, float]:
        """変換後頂点の (min_x, min_y, max_x, max_y)"""
        min_x, min_y = np.min(self.target_vertices, axis=0)
        max_x, max_y = np.max(self.target_vertices, axis=0)
        return (float(min_x), float(min_y), float(max_x), float(max_y))


def build_mesh(width: int, height: int, mesh_resolution: int = DEFAULT_MESH_RESOLUTION) -> TransformMesh:
    """画像範囲を三角形メッシュに分割する

    幅方向を mesh_resolution 分割し、高さ方向はアスペクト比を保つ分割数にします。
    各セルは対角線で2つの三角形に分割されます。

    Args:
        width: 画像幅
        height: 画像高さ
        mesh_resolution: 幅方向の三角形数

    Returns:
        TransformMesh

    Raises:
        ValueError: サイズまたは解像度が不正な場合
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"画像サイズは正である必要があります: {width}x{height}")
    if mesh_resolution < 1:
        raise ValueError(f"mesh_resolution は1以上である必要があります: {mesh_resolution}")

    num_x = int(mesh_resolution)
    num_y = max(1, int(round(mesh_resolution * height / width)))

    xs = np.linspace(0.0, float(width), num_x + 1)
    ys = np.linspace(0.0, float(height), num_y + 1)
    grid_x, grid_y = np.meshgrid(xs, ys)
    vertices = np.stack([grid_x.ravel(), grid_y.ravel()], axis=1)

    # セル (i, j) の左上頂点インデックス
    row = np.arange(num_y)[:, None] * (num_x + 1)
    col = np.arange(num_x)[None, :]
    v00 = (row + col).ravel()
    v10 = v00 + 1
    v01 = v00 + num_x + 1
    v11 = v01 + 1

    triangles = np.empty((2 * len(v00), 3), dtype=np.int64)
    triangles[0::2] = np.stack([v00, v10, v11], axis=1)
    triangles[1::2] = np.stack([v00, v11, v01], axis=1)

    vertices.setflags(write=False)
    triangles.setflags(write=False)

    logger.debug(f"Mesh built: {width}x{height}, {num_x}x{num_y} cells, {len(triangles)} triangles")
    return TransformMesh(
        width=int(width),
        height=int(height),
        resolution=num_x,
        source_vertices=vertices,
        triangles=triangles,
    )
