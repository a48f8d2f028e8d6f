"""区分アフィン画像ワーピングモジュール

変換後メッシュの各三角形内を、その3頂点で決まるアフィン変換として扱い、
出力画素ごとに元画像上の座標（逆写像）を求めて補間します。
元画像の範囲外に写る画素、どの三角形にも含まれない画素はマスクされ、0になります。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import math
from typing import TYPE_CHECKING

import cv2
import numpy as np
from scipy.ndimage import map_coordinates

from lenscorrect.errors import BufferAllocationError, UnsupportedInterpolationError
from lenscorrect.render.mesh import DEFAULT_MESH_RESOLUTION, build_mesh

if TYPE_CHECKING:
    from lenscorrect.render.mesh import MappedMesh, TransformMesh
    from lenscorrect.transform.composite import Transform

logger = logging.getLogger(__name__)

# 三角形の辺上の画素を内側とみなす許容誤差（重心座標）
_BARYCENTRIC_EPS = 1e-9
# これ以下の行列式の三角形は縮退として扱う
_DEGENERATE_DET = 1e-12
# 元画像の左端・上端の判定に許す丸め誤差 [px]
_EDGE_EPS = 1e-4


class Interpolation(str, Enum):
    """補間方法"""

    NEAREST = "nearest"
    BILINEAR = "bilinear"
    BICUBIC = "bicubic"

    @classmethod
    def parse(cls, value: object) -> Interpolation:
        """文字列または Interpolation を解釈する

        Raises:
            UnsupportedInterpolationError: 未対応の補間方法の場合
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as e:
            raise UnsupportedInterpolationError(value) from e

    @property
    def spline_order(self) -> int:
        return _SPLINE_ORDERS[self]


_SPLINE_ORDERS = {
    Interpolation.NEAREST: 0,
    Interpolation.BILINEAR: 1,
    Interpolation.BICUBIC: 3,
}

# 最近傍補間で cv2.remap が直接扱える画素型
_REMAP_DTYPES = (np.uint8, np.uint16, np.int16, np.float32, np.float64)


def _allocate(shape: tuple[int, ...], fill_value: float, dtype: type) -> np.ndarray:
    try:
        return np.full(shape, fill_value, dtype=dtype)
    except MemoryError as e:
        raise BufferAllocationError(shape) from e


@dataclass(frozen=True)
class MeshMapping:
    """出力画素 → 元画像座標の対応表

    Attributes:
        source_size: 元画像サイズ (width, height)
        output_size: 出力サイズ (width, height)
        map_x: 元画像上のx座標 (H, W)
        map_y: 元画像上のy座標 (H, W)
        mask: 有効画素 (H, W)
        triangle_index: 画素を含む三角形のインデックス（-1はなし）
    """

    source_size: tuple[int, int]
    output_size: tuple[int, int]
    map_x: np.ndarray
    map_y: np.ndarray
    mask: np.ndarray
    triangle_index: np.ndarray

    @property
    def coverage(self) -> float:
        """有効画素の割合"""
        return float(np.mean(self.mask)) if self.mask.size else 0.0

    def map_interpolated(
        self,
        source: np.ndarray,
        interpolation: Interpolation | str = Interpolation.BILINEAR,
    ) -> tuple[np.ndarray, np.ndarray]:
        """元画像の1平面を出力バッファへ写す

        Args:
            source: 2D画像 (H, W)
            interpolation: 補間方法

        Returns:
            (出力画像, マスク)。出力画像の型は source と同じ

        Raises:
            UnsupportedInterpolationError: 未対応の補間方法
            ValueError: source の形状がメッシュと一致しない場合
            BufferAllocationError: 出力バッファを確保できない場合
        """
        interp = Interpolation.parse(interpolation)

        source = np.asarray(source)
        if source.ndim != 2:
            raise ValueError(f"2D平面を指定してください: shape={source.shape}")
        src_w, src_h = self.source_size
        if source.shape != (src_h, src_w):
            raise ValueError(f"画像サイズがメッシュと一致しません: {source.shape} != {(src_h, src_w)}")

        dtype = source.dtype
        try:
            if interp is Interpolation.NEAREST:
                dst = self._remap_nearest(source)
            else:
                # 補間の重みは float64 の元画像座標そのもので計算する
                dst = map_coordinates(
                    source.astype(np.float64),
                    [self.map_y, self.map_x],
                    output=np.float64,
                    order=interp.spline_order,
                    mode="nearest",
                )
        except MemoryError as e:
            raise BufferAllocationError((self.output_size[1], self.output_size[0])) from e

        if dst.dtype != dtype:
            if np.issubdtype(dtype, np.integer):
                info = np.iinfo(dtype)
                dst = np.clip(np.rint(dst), info.min, info.max).astype(dtype)
            else:
                dst = dst.astype(dtype)

        dst[~self.mask] = 0
        return dst, self.mask.copy()

    def _remap_nearest(self, source: np.ndarray) -> np.ndarray:
        if source.dtype == np.bool_:
            work = source.astype(np.uint8)
        elif source.dtype.type in _REMAP_DTYPES:
            work = source
        else:
            work = source.astype(np.float64)
        map_x = self.map_x.astype(np.float32)
        map_y = self.map_y.astype(np.float32)
        return cv2.remap(work, map_x, map_y, cv2.INTER_NEAREST, borderMode=cv2.BORDER_REPLICATE)


def compute_mapping(mapped: MappedMesh, output_size: tuple[int, int]) -> MeshMapping:
    """変換後メッシュから出力画素ごとの逆写像を計算する

    三角形はインデックス順に処理し、既に割り当て済みの画素は上書きしません。
    複数の三角形の辺上にある画素は、最小インデックスの三角形に属します。

    Args:
        mapped: 変換後メッシュ
        output_size: 出力サイズ (width, height)

    Returns:
        MeshMapping
    """
    out_w, out_h = int(output_size[0]), int(output_size[1])
    if out_w <= 0 or out_h <= 0:
        raise ValueError(f"空のキャンバスには描画できません: {out_w}x{out_h}")

    mesh = mapped.mesh
    shape = (out_h, out_w)
    map_x = _allocate(shape, -1.0, np.float64)
    map_y = _allocate(shape, -1.0, np.float64)
    triangle_index = _allocate(shape, -1, np.int32)

    target = mapped.target_triangles
    source = mapped.source_triangles

    # 重心座標: lambda = inv([[x0 x1 x2], [y0 y1 y2], [1 1 1]]) @ [x, y, 1]
    bary = np.ones((len(target), 3, 3), dtype=np.float64)
    bary[:, 0, :] = target[:, :, 0]
    bary[:, 1, :] = target[:, :, 1]
    det = np.linalg.det(bary)
    valid = np.abs(det) > _DEGENERATE_DET
    inverse = np.zeros_like(bary)
    inverse[valid] = np.linalg.inv(bary[valid])
    # 出力座標 → 元画像座標のアフィン行列 (T, 2, 3)
    affine = np.transpose(source, (0, 2, 1)) @ inverse

    num_degenerate = int(np.count_nonzero(~valid))
    if num_degenerate:
        logger.debug(f"Skipping {num_degenerate} degenerate triangles")

    x0 = np.maximum(np.ceil(target[:, :, 0].min(axis=1) - 1e-6), 0).astype(np.int64)
    x1 = np.minimum(np.floor(target[:, :, 0].max(axis=1) + 1e-6), out_w - 1).astype(np.int64)
    y0 = np.maximum(np.ceil(target[:, :, 1].min(axis=1) - 1e-6), 0).astype(np.int64)
    y1 = np.minimum(np.floor(target[:, :, 1].max(axis=1) + 1e-6), out_h - 1).astype(np.int64)
    candidates = np.flatnonzero(valid & (x0 <= x1) & (y0 <= y1))

    for t in candidates:
        ys, xs = np.mgrid[y0[t] : y1[t] + 1, x0[t] : x1[t] + 1]
        inv = inverse[t]
        inside = np.ones(xs.shape, dtype=bool)
        for k in range(3):
            inside &= inv[k, 0] * xs + inv[k, 1] * ys + inv[k, 2] >= -_BARYCENTRIC_EPS

        region = triangle_index[y0[t] : y1[t] + 1, x0[t] : x1[t] + 1]
        selected = inside & (region < 0)
        if not selected.any():
            continue

        px = xs[selected]
        py = ys[selected]
        a = affine[t]
        region[selected] = t
        map_x[y0[t] : y1[t] + 1, x0[t] : x1[t] + 1][selected] = a[0, 0] * px + a[0, 1] * py + a[0, 2]
        map_y[y0[t] : y1[t] + 1, x0[t] : x1[t] + 1][selected] = a[1, 0] * px + a[1, 1] * py + a[1, 2]

    mask = (
        (triangle_index >= 0)
        & (map_x >= -_EDGE_EPS)
        & (map_x < mesh.width)
        & (map_y >= -_EDGE_EPS)
        & (map_y < mesh.height)
    )
    # 右端・下端の画素外の座標は境界複製と同じ値になるため最終画素に丸める
    np.clip(map_x, 0, mesh.width - 1, out=map_x)
    np.clip(map_y, 0, mesh.height - 1, out=map_y)
    map_x[~mask] = 0
    map_y[~mask] = 0

    for array in (map_x, map_y, mask, triangle_index):
        array.setflags(write=False)

    logger.debug(f"Mesh mapping {out_w}x{out_h}: coverage {np.mean(mask):.1%}")
    return MeshMapping(
        source_size=(mesh.width, mesh.height),
        output_size=(out_w, out_h),
        map_x=map_x,
        map_y=map_y,
        mask=mask,
        triangle_index=triangle_index,
    )


class MeshWarper:
    """変換チェーンを通して画像を描画する

    Attributes:
        mesh_resolution: 幅方向の三角形数
        interpolation: 既定の補間方法
    """

    def __init__(
        self,
        mesh_resolution: int = DEFAULT_MESH_RESOLUTION,
        interpolation: Interpolation | str = Interpolation.BILINEAR,
    ):
        if mesh_resolution < 1:
            raise ValueError(f"mesh_resolution は1以上である必要があります: {mesh_resolution}")
        self.mesh_resolution = mesh_resolution
        self.interpolation = Interpolation.parse(interpolation)

    def build_mesh(self, width: int, height: int, mesh_resolution: int | None = None) -> TransformMesh:
        """画像範囲の三角形メッシュを作成する"""
        resolution = self.mesh_resolution if mesh_resolution is None else mesh_resolution
        return build_mesh(width, height, resolution)

    def create_mapping(
        self,
        transform: Transform,
        mesh: TransformMesh,
        output_size: tuple[int, int] | None = None,
    ) -> MeshMapping:
        """変換とメッシュから画素対応表を作成する

        Args:
            transform: 変換チェーン
            mesh: 変換前メッシュ
            output_size: 出力サイズ (width, height)。省略時は元画像サイズ
        """
        size = output_size or (mesh.width, mesh.height)
        return compute_mapping(mesh.map(transform), size)

    def warp(
        self,
        source: np.ndarray,
        transform: Transform,
        mesh: TransformMesh | None = None,
        interpolation: Interpolation | str | None = None,
        output_size: tuple[int, int] | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """1平面を変換して描画する

        Args:
            source: 2D画像 (H, W)
            transform: 変換チェーン
            mesh: メッシュ（省略時は source のサイズで作成）
            interpolation: 補間方法（省略時はインスタンスの設定値）
            output_size: 出力サイズ (width, height)

        Returns:
            (出力画像, マスク)
        """
        interp = Interpolation.parse(self.interpolation if interpolation is None else interpolation)

        source = np.asarray(source)
        if source.ndim != 2:
            raise ValueError(f"2D平面を指定してください: shape={source.shape}")
        if mesh is None:
            mesh = self.build_mesh(source.shape[1], source.shape[0])

        mapping = self.create_mapping(transform, mesh, output_size)
        return mapping.map_interpolated(source, interp)


def estimate_memory_bytes(output_size: tuple[int, int]) -> int:
    """対応表1つあたりのおおよそのメモリ使用量"""
    # map_x, map_y (float64) + triangle_index (int32) + mask (bool)
    return int(math.prod(output_size) * (8 + 8 + 4 + 1))
