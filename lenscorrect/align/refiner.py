"""位置合わせ補正モジュール

描画済みの各画像を最初の画像（参照）に合わせる補正変換を推定し、
各変換チェーンの末尾に追加します。推定に失敗した画像は警告を出して
元のチェーンのまま扱います。
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
from typing import Any

import numpy as np

from lenscorrect.align.features import FeatureMatcher, PointMatch, SiftFeatureMatcher, SiftParams
from lenscorrect.align.ransac import RansacParams, filter_ransac
from lenscorrect.errors import NoAlignmentFoundError
from lenscorrect.transform.composite import CompositeTransform, PrimitiveTransform
from lenscorrect.transform.models import CORRECTION_MODELS, FittableModel

logger = logging.getLogger(__name__)


@dataclass
class AlignmentConfig:
    """位置合わせの設定

    Attributes:
        model: 補正モデル（translation または rigid）
        sift: SIFTパラメータ
        ransac: RANSACパラメータ
        max_workers: 並列数
        seed: 乱数シード（None の場合は非決定的）
    """

    model: str = "translation"
    sift: SiftParams = field(default_factory=SiftParams)
    ransac: RansacParams = field(default_factory=RansacParams)
    max_workers: int = 1
    seed: int | None = None

    @property
    def model_class(self) -> type[FittableModel]:
        try:
            return CORRECTION_MODELS[self.model]
        except KeyError as e:
            raise ValueError(
                f"補正モデルは {sorted(CORRECTION_MODELS)} のいずれかである必要があります: {self.model}"
            ) from e

    def validate(self) -> None:
        _ = self.model_class
        self.sift.validate()
        self.ransac.validate()

    @classmethod
    def from_dict(cls, section: Mapping[str, Any], max_workers: int = 1) -> AlignmentConfig:
        """設定ファイルの alignment セクションから作成する"""
        ransac_section = section.get("ransac") or {}
        defaults = RansacParams()
        return cls(
            model=section.get("model", "translation"),
            sift=SiftParams(
                max_scale=float(section.get("max_scale", 1.0)),
                min_scale=float(section.get("min_scale", 0.2)),
                rod=float(section.get("rod", 0.92)),
            ),
            ransac=RansacParams(
                iterations=int(ransac_section.get("iterations", defaults.iterations)),
                max_epsilon=float(ransac_section.get("max_epsilon", defaults.max_epsilon)),
                min_inlier_ratio=float(ransac_section.get("min_inlier_ratio", defaults.min_inlier_ratio)),
                min_num_inliers=int(ransac_section.get("min_num_inliers", defaults.min_num_inliers)),
                max_trust=float(ransac_section.get("max_trust", defaults.max_trust)),
            ),
            max_workers=max_workers,
            seed=section.get("seed"),
        )


@dataclass
class AlignmentResult:
    """1画像分の位置合わせ結果

    Attributes:
        index: 画像インデックス
        correction: 補正変換（失敗時は None）
        inliers: インライアの対応点
        num_candidates: 対応点候補数
        error: 失敗理由
    """

    index: int
    correction: PrimitiveTransform | None = None
    inliers: list[PointMatch] = field(default_factory=list)
    num_candidates: int = 0
    error: NoAlignmentFoundError | None = None

    @property
    def succeeded(self) -> bool:
        return self.correction is not None


class AlignmentRefiner:
    """参照画像に対する補正変換の推定とチェーンへの追加

    Attributes:
        config: 位置合わせ設定
        matcher: 対応点候補を返すマッチャー
    """

    def __init__(self, config: AlignmentConfig | None = None, matcher: FeatureMatcher | None = None):
        self.config = config or AlignmentConfig()
        self.config.validate()
        self.matcher = matcher or SiftFeatureMatcher(self.config.sift)

    def _rng(self, index: int) -> np.random.Generator:
        seed = None if self.config.seed is None else int(self.config.seed) + index
        return np.random.default_rng(seed)

    def estimate(self, subject: np.ndarray, reference: np.ndarray, index: int) -> AlignmentResult:
        """subject を reference に合わせる補正を推定する

        推定できない場合も例外は送出せず、error に理由を格納した結果を返します。
        """
        candidates = self.matcher.match(subject, reference)
        logger.debug(f"Subject {index}: {len(candidates)} candidate matches")

        try:
            result = filter_ransac(self.config.model_class, candidates, self.config.ransac, self._rng(index))
        except NoAlignmentFoundError as e:
            error = NoAlignmentFoundError(e.num_candidates, e.num_inliers, index=index, reason=e.reason)
            return AlignmentResult(index=index, num_candidates=len(candidates), error=error)

        logger.info(
            f"  Subject {index}: {result.model!r} "
            f"({len(result.inliers)}/{result.num_candidates} inliers, mean error {result.mean_error:.3f}px)"
        )
        return AlignmentResult(
            index=index,
            correction=PrimitiveTransform.from_model(result.model),
            inliers=result.inliers,
            num_candidates=result.num_candidates,
        )

    def compute_corrections(self, renderings: Sequence[np.ndarray]) -> list[AlignmentResult]:
        """全画像の補正を推定する（先頭は参照として恒等変換）"""
        if not renderings:
            return []

        reference = renderings[0]
        identity = PrimitiveTransform.from_model(self.config.model_class.identity())
        results: list[AlignmentResult] = [AlignmentResult(index=0, correction=identity)]
        if len(renderings) == 1:
            return results

        indices = range(1, len(renderings))
        if self.config.max_workers > 1:
            by_index: dict[int, AlignmentResult] = {}
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                futures = {executor.submit(self.estimate, renderings[i], reference, i): i for i in indices}
                for future in as_completed(futures):
                    by_index[futures[future]] = future.result()
            results.extend(by_index[i] for i in indices)
        else:
            results.extend(self.estimate(renderings[i], reference, i) for i in indices)
        return results

    def refine(
        self,
        renderings: Sequence[np.ndarray],
        chains: Sequence[CompositeTransform],
    ) -> tuple[list[CompositeTransform], list[AlignmentResult]]:
        """補正を推定し、各チェーンの複製の末尾に追加する

        Args:
            renderings: 各チェーンで描画した画像（先頭が参照）
            chains: 変換チェーン

        Returns:
            (補正済みチェーン, 位置合わせ結果)。入力のチェーンは変更しない
        """
        if len(renderings) != len(chains):
            raise ValueError(f"画像数とチェーン数が一致しません: {len(renderings)} != {len(chains)}")

        results = self.compute_corrections(renderings)
        refined: list[CompositeTransform] = []
        for chain, result in zip(chains, results):
            updated = chain.copy()
            if result.succeeded:
                updated.append(result.correction)
            else:
                logger.warning(f"{result.error}; keeping the unaligned transform chain")
            refined.append(updated)

        num_failed = sum(1 for r in results if not r.succeeded)
        if num_failed:
            logger.warning(f"位置合わせに失敗した画像: {num_failed}/{len(results) - 1}")
        return refined, results
