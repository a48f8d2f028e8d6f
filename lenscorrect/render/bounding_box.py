"""バウンディングボックス計算モジュール

変換をメッシュ頂点上でサンプリングして出力範囲（フットプリント）を求め、
複数の変換チェーン間で共通の描画範囲を決定します。
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
import math
from typing import TYPE_CHECKING

from lenscorrect.errors import NoOverlapError
from lenscorrect.render.mesh import DEFAULT_MESH_RESOLUTION, build_mesh
from lenscorrect.transform.composite import PrimitiveTransform
from lenscorrect.transform.models import TranslationModel2D

if TYPE_CHECKING:
    from lenscorrect.render.mesh import MappedMesh
    from lenscorrect.transform.composite import Transform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    """整数矩形 (x, y, width, height)

    交差結果では width/height が0以下（空）になり得ます。
    """

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def area(self) -> int:
        return 0 if self.is_empty else self.width * self.height

    def intersection(self, other: BoundingBox) -> BoundingBox:
        """矩形の交差（重ならない場合は空の矩形）"""
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.right, other.right)
        y2 = min(self.bottom, other.bottom)
        return BoundingBox(x1, y1, x2 - x1, y2 - y1)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_extent(cls, min_x: float, min_y: float, max_x: float, max_y: float) -> BoundingBox:
        """実数範囲を包含する最小の整数矩形"""
        x = math.floor(min_x)
        y = math.floor(min_y)
        return cls(x, y, math.ceil(max_x) - x, math.ceil(max_y) - y)


def mesh_bounding_box(mapped: MappedMesh) -> BoundingBox:
    """変換後メッシュを包含する整数矩形"""
    return BoundingBox.from_extent(*mapped.extent())


class BoundingBoxResolver:
    """変換チェーンのフットプリント計算と共通範囲の決定

    Attributes:
        mesh_resolution: 幅方向のサンプリング分割数
        max_workers: フットプリント計算の並列数
    """

    def __init__(self, mesh_resolution: int = DEFAULT_MESH_RESOLUTION, max_workers: int = 1):
        if mesh_resolution < 1:
            raise ValueError(f"mesh_resolution は1以上である必要があります: {mesh_resolution}")
        self.mesh_resolution = mesh_resolution
        self.max_workers = max(1, max_workers)

    def footprint(
        self,
        transform: Transform,
        width: int,
        height: int,
        mesh_resolution: int | None = None,
    ) -> BoundingBox:
        """変換後の画像範囲を包含する整数矩形を求める

        Args:
            transform: 変換
            width: 画像幅
            height: 画像高さ
            mesh_resolution: 分割数（省略時はインスタンスの設定値）

        Returns:
            BoundingBox
        """
        resolution = self.mesh_resolution if mesh_resolution is None else mesh_resolution
        mesh = build_mesh(width, height, resolution)
        box = mesh_bounding_box(mesh.map(transform))
        logger.debug(f"Footprint {box} for {width}x{height}")
        return box

    def intersect(self, boxes: Sequence[BoundingBox]) -> BoundingBox:
        """矩形を左から順に交差させる（空の結果もそのまま返す）

        Raises:
            ValueError: boxes が空の場合
        """
        if not boxes:
            raise ValueError("交差には1つ以上の矩形が必要です")
        result = boxes[0]
        for box in boxes[1:]:
            result = result.intersection(box)
        return result

    def common_box(self, transforms: Sequence[Transform], width: int, height: int) -> BoundingBox:
        """全変換のフットプリントの共通部分を求める

        Raises:
            NoOverlapError: 共通部分が空の場合
        """
        if not transforms:
            raise ValueError("変換が1つもありません")

        if self.max_workers > 1 and len(transforms) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                boxes = list(executor.map(lambda t: self.footprint(t, width, height), transforms))
        else:
            boxes = [self.footprint(t, width, height) for t in transforms]

        for i, box in enumerate(boxes):
            logger.info(f"  外接矩形 {i}: x={box.x}, y={box.y}, w={box.width}, h={box.height}")

        bounds = self.intersect(boxes)
        if bounds.is_empty:
            raise NoOverlapError(boxes, bounds)
        return bounds

    @staticmethod
    def offset_to_origin(box: BoundingBox) -> PrimitiveTransform:
        """矩形の左上を原点へ移す平行移動"""
        return PrimitiveTransform.from_model(TranslationModel2D(-box.x, -box.y))
