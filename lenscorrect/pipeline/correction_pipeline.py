"""Lens correction pipeline coordinating the canvas, alignment and render phases."""

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging

import numpy as np

from lenscorrect.align.features import FeatureMatcher
from lenscorrect.align.refiner import AlignmentResult
from lenscorrect.config import ConfigManager
from lenscorrect.io.image_stack import ImageStack, combine_channels, z_average_projection
from lenscorrect.pipeline.phases import AlignmentPhase, CanvasPhase, RenderPhase
from lenscorrect.render.bounding_box import BoundingBox
from lenscorrect.transform.composite import Calibration, CompositeTransform
from lenscorrect.utils.performance_monitor import PerformanceMonitor


@dataclass
class CorrectionResult:
    """補正結果

    Attributes:
        stack: 出力スタック
        chains: 描画に使用したチェーン（原点移動・位置合わせ補正を含む）
        names: チェーンの名前
        bounds: 共通描画範囲（入力画像の変換後座標）
        alignment: 位置合わせ結果（無効時は空）
    """

    stack: ImageStack
    chains: list[CompositeTransform]
    names: list[str]
    bounds: BoundingBox
    alignment: list[AlignmentResult] = field(default_factory=list)

    def calibrations(self) -> list[Calibration]:
        """描画に使用したチェーンをキャリブレーションとして返す"""
        return [Calibration(name=name, transform=chain) for name, chain in zip(self.names, self.chains)]


class CorrectionPipeline:
    """レンズ補正パイプライン

    Attributes:
        config: 設定
        logger: ロガー
        monitor: フェーズごとの処理時間
    """

    def __init__(self, config: ConfigManager, logger: logging.Logger, matcher: FeatureMatcher | None = None):
        self.config = config
        self.logger = logger
        self.monitor = PerformanceMonitor()
        self.canvas_phase = CanvasPhase(config, logger)
        self.render_phase = RenderPhase(config, logger)
        self.alignment_enabled = bool(config.get("alignment.enabled", False))
        self.alignment_phase = (
            AlignmentPhase(config, logger, self.render_phase, matcher) if self.alignment_enabled else None
        )

    def _run(
        self,
        sources: Sequence[ImageStack],
        calibrations: Sequence[Calibration],
        projections: Sequence[np.ndarray],
    ) -> tuple[list[ImageStack], list[CompositeTransform], BoundingBox, list[AlignmentResult]]:
        width, height = sources[0].width, sources[0].height

        with self.monitor.measure("canvas"):
            canvas = self.canvas_phase.execute(calibrations, width, height)

        chains = canvas.chains
        alignment: list[AlignmentResult] = []
        if self.alignment_phase is not None:
            with self.monitor.measure("alignment"):
                chains, alignment = self.alignment_phase.execute(projections, chains, canvas.size)

        with self.monitor.measure("render"):
            rendered = self.render_phase.execute(sources, chains, canvas.size)

        self.monitor.log_summary(self.logger)
        return rendered, chains, canvas.bounds, alignment

    @staticmethod
    def _check_calibrations(calibrations: Sequence[Calibration]) -> None:
        if not calibrations:
            raise ValueError("No transforms found")

    def apply_split(self, stack: ImageStack, calibrations: Sequence[Calibration]) -> CorrectionResult:
        """1つのスタックを全チェーンで描画する

        出力チャンネル数は C x K（K はチェーン数）で、入力チャンネル c の
        チェーン k による描画がチャンネル c * K + k になります。
        """
        self._check_calibrations(calibrations)
        self.logger.info(f"apply-split: {stack!r} through {len(calibrations)} transforms")

        projection = z_average_projection(stack) if self.alignment_enabled else None
        k = len(calibrations)
        rendered, chains, bounds, alignment = self._run([stack] * k, calibrations, [projection] * k)

        # (T, Z, C, K, Y, X) -> (T, Z, C*K, Y, X)
        data = np.stack([r.data for r in rendered], axis=3)
        t, z, c, _, h, w = data.shape
        output = ImageStack(data=data.reshape(t, z, c * k, h, w), name=stack.name)

        return CorrectionResult(
            stack=output,
            chains=chains,
            names=[calibration.name for calibration in calibrations],
            bounds=bounds,
            alignment=alignment,
        )

    def apply_channels(self, stacks: Sequence[ImageStack], calibrations: Sequence[Calibration]) -> CorrectionResult:
        """i 番目のスタックを i 番目のチェーンで描画し、チャンネル方向に結合する"""
        self._check_calibrations(calibrations)
        if len(stacks) != len(calibrations):
            raise ValueError(f"チャンネル数と変換数が一致しません: {len(stacks)} != {len(calibrations)}")

        first = stacks[0]
        for stack in stacks[1:]:
            if stack.data.shape[0:2] + stack.data.shape[3:] != first.data.shape[0:2] + first.data.shape[3:]:
                raise ValueError(f"チャンネル画像の大きさが一致しません: {first!r} / {stack!r}")
        self.logger.info(f"apply-channels: {len(stacks)} channels")

        projections = [z_average_projection(s) for s in stacks] if self.alignment_enabled else [None] * len(stacks)
        rendered, chains, bounds, alignment = self._run(stacks, calibrations, projections)

        output = combine_channels(rendered, name=first.name)
        return CorrectionResult(
            stack=output,
            chains=chains,
            names=[calibration.name for calibration in calibrations],
            bounds=bounds,
            alignment=alignment,
        )
