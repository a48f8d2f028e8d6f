"""RANSACによるロバストなモデル推定

対応点候補から最小サンプルを繰り返し抽出してモデルを当てはめ、
許容誤差内のインライア数が最大となるモデルを選びます。
その後、残差の中央値に対する倍率で外れ値を反復的に除去し、最終モデルを推定します。
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging

import numpy as np

from lenscorrect.align.features import PointMatch, matches_to_arrays
from lenscorrect.errors import NoAlignmentFoundError
from lenscorrect.transform.models import FittableModel

logger = logging.getLogger(__name__)

# 残差がこれ以下の対応点は中央値によらず残す
_MIN_TRUST_DISTANCE = 1e-6


@dataclass
class RansacParams:
    """RANSACパラメータ

    Attributes:
        iterations: 試行回数
        max_epsilon: インライアとみなす最大残差 [px]
        min_inlier_ratio: 候補に対するインライア比の下限
        min_num_inliers: 必要なインライア数の下限
        max_trust: 残差中央値に対する許容倍率（外れ値除去）
    """

    iterations: int = 1000
    max_epsilon: float = 5.0
    min_inlier_ratio: float = 0.0
    min_num_inliers: int = 10
    max_trust: float = 3.0

    def validate(self) -> None:
        if self.iterations < 1:
            raise ValueError(f"iterations は1以上である必要があります: {self.iterations}")
        if self.max_epsilon <= 0:
            raise ValueError(f"max_epsilon は正である必要があります: {self.max_epsilon}")
        if not 0 <= self.min_inlier_ratio <= 1:
            raise ValueError(f"min_inlier_ratio は [0, 1] の範囲である必要があります: {self.min_inlier_ratio}")
        if self.min_num_inliers < 1:
            raise ValueError(f"min_num_inliers は1以上である必要があります: {self.min_num_inliers}")
        if self.max_trust <= 0:
            raise ValueError(f"max_trust は正である必要があります: {self.max_trust}")


@dataclass
class RansacResult:
    """推定結果

    Attributes:
        model: 最終モデル
        inliers: インライアの対応点
        mean_error: インライアの平均残差 [px]
        num_candidates: 候補数
    """

    model: FittableModel
    inliers: list[PointMatch] = field(default_factory=list)
    mean_error: float = 0.0
    num_candidates: int = 0


def residuals(model: FittableModel, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    """model(p1) と p2 の距離"""
    if len(p1) == 0:
        return np.empty(0, dtype=np.float64)
    return np.linalg.norm(model.apply_array(p1) - p2, axis=1)


def ransac(
    model_cls: type[FittableModel],
    p1: np.ndarray,
    p2: np.ndarray,
    params: RansacParams,
    rng: np.random.Generator,
) -> np.ndarray | None:
    """最大のコンセンサス集合を探す

    Returns:
        インライアのインデックス配列（条件を満たす集合がなければ None）
    """
    n = len(p1)
    sample_size = model_cls.MIN_NUM_MATCHES
    if n < sample_size:
        return None

    best: np.ndarray | None = None
    best_error = np.inf
    for _ in range(params.iterations):
        sample = rng.choice(n, size=sample_size, replace=False)
        try:
            model = model_cls.fit(p1[sample], p2[sample])
        except ValueError:
            continue

        errors = residuals(model, p1, p2)
        inliers = np.flatnonzero(errors < params.max_epsilon)
        if len(inliers) < params.min_num_inliers or len(inliers) < params.min_inlier_ratio * n:
            continue

        error = float(np.mean(errors[inliers]))
        if best is None or len(inliers) > len(best) or (len(inliers) == len(best) and error < best_error):
            best = inliers
            best_error = error

    return best


def filter_by_trust(
    model_cls: type[FittableModel],
    p1: np.ndarray,
    p2: np.ndarray,
    max_trust: float,
) -> tuple[FittableModel, np.ndarray]:
    """残差が中央値 x max_trust を超える対応点を除去しながら再推定する

    Returns:
        (最終モデル, 残した対応点のインデックス)
    """
    kept = np.arange(len(p1))
    while True:
        model = model_cls.fit(p1[kept], p2[kept])
        errors = residuals(model, p1[kept], p2[kept])
        threshold = max(max_trust * float(np.median(errors)), _MIN_TRUST_DISTANCE)
        survivors = kept[errors <= threshold]
        if len(survivors) == len(kept) or len(survivors) < model_cls.MIN_NUM_MATCHES:
            return model, kept
        kept = survivors


def filter_ransac(
    model_cls: type[FittableModel],
    candidates: list[PointMatch],
    params: RansacParams | None = None,
    rng: np.random.Generator | None = None,
) -> RansacResult:
    """RANSAC と外れ値除去で対応点を絞り込み、モデルを推定する

    Args:
        model_cls: 推定するモデルクラス
        candidates: 対応点候補（p1 → p2 を写すモデルを推定）
        params: RANSACパラメータ
        rng: 乱数生成器

    Returns:
        RansacResult

    Raises:
        NoAlignmentFoundError: 必要なインライア数に達しなかった場合
    """
    params = params or RansacParams()
    rng = rng or np.random.default_rng()
    num_candidates = len(candidates)

    required = max(params.min_num_inliers, model_cls.MIN_NUM_MATCHES)
    if num_candidates < required:
        raise NoAlignmentFoundError(num_candidates, 0, reason=f"fewer than {required} candidates")

    p1, p2 = matches_to_arrays(candidates)
    consensus = ransac(model_cls, p1, p2, params, rng)
    if consensus is None:
        raise NoAlignmentFoundError(num_candidates, 0, reason="no consensus set reached the support threshold")

    model, kept = filter_by_trust(model_cls, p1[consensus], p2[consensus], params.max_trust)
    inlier_indices = consensus[kept]
    if len(inlier_indices) < required:
        raise NoAlignmentFoundError(num_candidates, len(inlier_indices), reason="too few inliers after filtering")

    errors = residuals(model, p1[inlier_indices], p2[inlier_indices])
    mean_error = float(np.mean(errors))
    logger.debug(
        f"RANSAC {model_cls.__name__}: {len(inlier_indices)}/{num_candidates} inliers, mean error {mean_error:.3f}px"
    )
    return RansacResult(
        model=model,
        inliers=[candidates[i] for i in inlier_indices],
        mean_error=mean_error,
        num_candidates=num_candidates,
    )
