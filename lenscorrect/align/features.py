"""特徴点マッチングモジュール

2枚の画像平面から対応点候補を求めます。
SIFT特徴量を抽出し、記述子距離の比（ratio of distances）で曖昧な対応を除外します。
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Protocol

import cv2
import numpy as np
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PointMatch:
    """対応点

    Attributes:
        p1: 対象画像上の座標 (x, y)
        p2: 参照画像上の座標 (x, y)
    """

    p1: tuple[float, float]
    p2: tuple[float, float]


def matches_to_arrays(matches: list[PointMatch]) -> tuple[np.ndarray, np.ndarray]:
    """対応点リストを (N, 2) 配列の組に変換する"""
    if not matches:
        empty = np.empty((0, 2), dtype=np.float64)
        return empty, empty.copy()
    p1 = np.array([m.p1 for m in matches], dtype=np.float64)
    p2 = np.array([m.p2 for m in matches], dtype=np.float64)
    return p1, p2


class FeatureMatcher(Protocol):
    """対応点候補を返す特徴点マッチャー"""

    def match(self, subject: np.ndarray, reference: np.ndarray) -> list[PointMatch]:
        """subject 上の点と reference 上の点の対応候補を返す"""
        ...


@dataclass
class SiftParams:
    """SIFT特徴点抽出のパラメータ

    Attributes:
        max_scale: 抽出に使う最大の画像倍率
        min_scale: 抽出に使う最小の画像倍率
        rod: 最近傍と第2近傍の距離比の上限
    """

    max_scale: float = 1.0
    min_scale: float = 0.2
    rod: float = 0.92

    def validate(self) -> None:
        if not 0 < self.min_scale <= self.max_scale:
            raise ValueError(f"0 < min_scale <= max_scale である必要があります: {self.min_scale}, {self.max_scale}")
        if not 0 < self.rod <= 1:
            raise ValueError(f"rod は (0, 1] の範囲である必要があります: {self.rod}")


def to_uint8(image: np.ndarray) -> np.ndarray:
    """最小値〜最大値を 0〜255 に線形変換する"""
    plane = np.asarray(image, dtype=np.float64)
    lo = float(np.min(plane)) if plane.size else 0.0
    hi = float(np.max(plane)) if plane.size else 0.0
    if hi <= lo:
        return np.zeros(plane.shape, dtype=np.uint8)
    return np.clip((plane - lo) * (255.0 / (hi - lo)), 0, 255).astype(np.uint8)


def _octave_of(keypoint: cv2.KeyPoint) -> int:
    # OpenCV は octave を下位8bitに符号付きで格納する
    octave = keypoint.octave & 255
    return octave - 256 if octave >= 128 else octave


class SiftFeatureMatcher:
    """SIFT + 距離比テストによる対応点候補の抽出

    Attributes:
        params: SIFTパラメータ
    """

    def __init__(self, params: SiftParams | None = None, clip_limit: float = 2.0):
        self.params = params or SiftParams()
        self.params.validate()
        self.clip_limit = clip_limit

    def _prepare(self, image: np.ndarray) -> np.ndarray:
        plane = to_uint8(image)
        clahe = cv2.createCLAHE(clipLimit=self.clip_limit, tileGridSize=(8, 8))
        plane = clahe.apply(plane)
        if self.params.max_scale != 1.0:
            plane = cv2.resize(
                plane,
                None,
                fx=self.params.max_scale,
                fy=self.params.max_scale,
                interpolation=cv2.INTER_AREA,
            )
        return plane

    def extract(self, image: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """特徴点を抽出する

        Returns:
            (座標 (N, 2), 記述子 (N, 128))。座標は元画像の画素単位
        """
        plane = self._prepare(image)
        sift = cv2.SIFT_create()
        keypoints, descriptors = sift.detectAndCompute(plane, None)
        if descriptors is None or not keypoints:
            return np.empty((0, 2), dtype=np.float64), np.empty((0, 128), dtype=np.float32)

        # 最小倍率を下回るオクターブの特徴点は使わない
        max_octave_factor = self.params.max_scale / self.params.min_scale
        keep = np.array([2.0 ** _octave_of(kp) <= max_octave_factor for kp in keypoints], dtype=bool)

        points = np.array([kp.pt for kp in keypoints], dtype=np.float64)[keep] / self.params.max_scale
        return points, descriptors[keep]

    def match(self, subject: np.ndarray, reference: np.ndarray) -> list[PointMatch]:
        """subject と reference の対応点候補を返す"""
        subject_points, subject_desc = self.extract(subject)
        reference_points, reference_desc = self.extract(reference)
        logger.debug(f"SIFT features: subject={len(subject_points)}, reference={len(reference_points)}")

        if len(subject_points) == 0 or len(reference_points) < 2:
            return []

        tree = cKDTree(reference_desc)
        distances, indices = tree.query(subject_desc, k=2)
        ratio_ok = distances[:, 0] < self.params.rod * distances[:, 1]

        candidates = np.flatnonzero(ratio_ok)
        targets = indices[candidates, 0]

        # 複数の特徴点が同じ参照特徴点に対応する場合は全て除外する
        unique_targets, counts = np.unique(targets, return_counts=True)
        ambiguous = set(unique_targets[counts > 1].tolist())

        matches = [
            PointMatch(
                p1=(float(subject_points[i, 0]), float(subject_points[i, 1])),
                p2=(float(reference_points[j, 0]), float(reference_points[j, 1])),
            )
            for i, j in zip(candidates, targets)
            if j not in ambiguous
        ]
        logger.debug(f"Candidate matches: {len(matches)} (ambiguous removed: {len(ambiguous)})")
        return matches
