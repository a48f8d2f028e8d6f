"""Alignment phase: fold residual corrections into the transform chains."""

from collections.abc import Sequence
import logging

import numpy as np

from lenscorrect.align.features import FeatureMatcher
from lenscorrect.align.refiner import AlignmentConfig, AlignmentRefiner, AlignmentResult
from lenscorrect.config import ConfigManager
from lenscorrect.pipeline.phases.base import BasePhase
from lenscorrect.pipeline.phases.render import RenderPhase
from lenscorrect.transform.composite import CompositeTransform


class AlignmentPhase(BasePhase):
    """位置合わせフェーズ

    投影画像を各チェーンで描画し、先頭を参照として補正変換を推定します。
    """

    def __init__(
        self,
        config: ConfigManager,
        logger: logging.Logger,
        renderer: RenderPhase,
        matcher: FeatureMatcher | None = None,
    ):
        super().__init__(config, logger)
        self.renderer = renderer
        alignment_config = AlignmentConfig.from_dict(
            config.get_section("alignment"),
            max_workers=config.get("render.max_workers", 1),
        )
        self.refiner = AlignmentRefiner(alignment_config, matcher)

    def execute(
        self,
        projections: Sequence[np.ndarray],
        chains: Sequence[CompositeTransform],
        output_size: tuple[int, int],
    ) -> tuple[list[CompositeTransform], list[AlignmentResult]]:
        """補正を推定してチェーンに追加する

        Args:
            projections: チェーンごとの投影画像（描画前）
            chains: 変換チェーン
            output_size: 描画サイズ (width, height)

        Returns:
            (補正済みチェーン, 位置合わせ結果)
        """
        self.log_phase_start("フェーズ2: 位置合わせ")
        if len(projections) != len(chains):
            raise ValueError(f"投影画像数とチェーン数が一致しません: {len(projections)} != {len(chains)}")

        renderings = [
            self.renderer.render_plane(projection, chain, output_size)
            for projection, chain in zip(projections, chains)
        ]
        refined, results = self.refiner.refine(renderings, chains)

        aligned = sum(1 for r in results[1:] if r.succeeded)
        self.logger.info(f"位置合わせ完了: {aligned}/{len(results) - 1} 画像")
        return refined, results
