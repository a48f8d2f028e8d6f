"""Canvas phase: common bounding box of all transform chains."""

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging

from lenscorrect.config import ConfigManager
from lenscorrect.pipeline.phases.base import BasePhase
from lenscorrect.render.bounding_box import BoundingBox, BoundingBoxResolver
from lenscorrect.transform.composite import Calibration, CompositeTransform


@dataclass
class CanvasResult:
    """描画範囲の決定結果

    Attributes:
        bounds: 全チェーン共通の描画範囲（crop_width 適用後）
        chains: 原点への平行移動を追加したチェーン（入力とは別インスタンス）
    """

    bounds: BoundingBox
    chains: list[CompositeTransform] = field(default_factory=list)

    @property
    def size(self) -> tuple[int, int]:
        return (self.bounds.width, self.bounds.height)


class CanvasPhase(BasePhase):
    """描画範囲決定フェーズ"""

    def __init__(self, config: ConfigManager, logger: logging.Logger):
        super().__init__(config, logger)
        self.resolver = BoundingBoxResolver(
            mesh_resolution=config.get("render.mesh_resolution", 128),
            max_workers=config.get("render.max_workers", 1),
        )
        self.crop_width = int(config.get("render.crop_width", 0) or 0)

    def crop(self, bounds: BoundingBox) -> BoundingBox:
        """四辺から crop_width 画素を除いた範囲"""
        if self.crop_width <= 0:
            return bounds
        c = self.crop_width
        cropped = BoundingBox(bounds.x + c, bounds.y + c, bounds.width - 2 * c, bounds.height - 2 * c)
        if cropped.is_empty:
            raise ValueError(f"crop_width={c} が描画範囲 {bounds.width}x{bounds.height} に対して大きすぎます")
        return cropped

    def execute(self, calibrations: Sequence[Calibration], width: int, height: int) -> CanvasResult:
        """共通の描画範囲を求め、各チェーンに原点への平行移動を追加する

        Args:
            calibrations: キャリブレーション
            width: 入力画像の幅
            height: 入力画像の高さ

        Returns:
            CanvasResult

        Raises:
            NoOverlapError: 共通範囲が空の場合
        """
        self.log_phase_start("フェーズ1: 描画範囲の決定")

        transforms = [calibration.transform for calibration in calibrations]
        bounds = self.crop(self.resolver.common_box(transforms, width, height))
        self.logger.info(f"Common bounding box: x={bounds.x}, y={bounds.y}, w={bounds.width}, h={bounds.height}")

        chains = []
        for transform in transforms:
            chain = transform.copy()
            chain.append(BoundingBoxResolver.offset_to_origin(bounds))
            chains.append(chain)
        return CanvasResult(bounds=bounds, chains=chains)
