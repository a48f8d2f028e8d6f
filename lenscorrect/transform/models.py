"""2D座標変換モデル

キャリブレーションファイルに現れるプリミティブ変換を提供します。
各モデルは className（TAG）とパラメータ文字列（dataString）で永続化されます。
平行移動・剛体・アフィンモデルは対応点からの最小二乗フィットをサポートします。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import math
from typing import ClassVar

import numpy as np

logger = logging.getLogger(__name__)


def _parse_floats(data: str, tag: str) -> list[float]:
    """空白区切りの数値列をパースする"""
    try:
        return [float(token) for token in data.split()]
    except ValueError as e:
        raise ValueError(f"{tag}: 数値として解釈できないパラメータがあります: {data!r}") from e


def _parse_int(token: str, tag: str, name: str) -> int:
    """整数パラメータをパースする（小数・非有限値は不可）"""
    try:
        return int(token)
    except ValueError as e:
        raise ValueError(f"{tag}: {name} は整数である必要があります: {token!r}") from e


def _as_points(points: np.ndarray) -> np.ndarray:
    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"点配列は (N, 2) である必要があります: {pts.shape}")
    return pts


class CoordinateModel(ABC):
    """プリミティブ変換の基底クラス"""

    TAG: ClassVar[str] = ""

    @classmethod
    @abstractmethod
    def from_data_string(cls, data: str) -> CoordinateModel:
        """dataString からモデルを生成する

        Raises:
            ValueError: パラメータ文字列が不正な場合
        """

    @abstractmethod
    def to_data_string(self) -> str:
        """モデルのパラメータを dataString に変換する"""

    @abstractmethod
    def apply_array(self, points: np.ndarray) -> np.ndarray:
        """(N, 2) の点配列を変換する（入力は変更しない）"""

    def apply(self, point: tuple[float, float]) -> tuple[float, float]:
        """1点を変換する"""
        x, y = self.apply_array(np.array([[point[0], point[1]]], dtype=np.float64))[0]
        return (float(x), float(y))


class FittableModel(CoordinateModel):
    """対応点からフィット可能なモデル"""

    MIN_NUM_MATCHES: ClassVar[int] = 1

    @classmethod
    @abstractmethod
    def fit(cls, src: np.ndarray, dst: np.ndarray) -> FittableModel:
        """src を dst へ写すモデルを最小二乗で推定する

        Raises:
            ValueError: 対応点の数が不足している場合
        """

    @classmethod
    def identity(cls) -> FittableModel:
        """恒等変換を返す"""
        return cls()

    @classmethod
    def _check_matches(cls, src: np.ndarray, dst: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        src = _as_points(src)
        dst = _as_points(dst)
        if len(src) != len(dst):
            raise ValueError("src と dst の点数が一致しません")
        if len(src) < cls.MIN_NUM_MATCHES:
            raise ValueError(f"{cls.__name__} のフィットには最低{cls.MIN_NUM_MATCHES}点の対応点が必要です")
        return src, dst


class TranslationModel2D(FittableModel):
    """平行移動モデル (x + tx, y + ty)"""

    TAG = "mpicbg.trakem2.transform.TranslationModel2D"
    MIN_NUM_MATCHES = 1

    def __init__(self, tx: float = 0.0, ty: float = 0.0):
        self.tx = float(tx)
        self.ty = float(ty)

    @classmethod
    def from_data_string(cls, data: str) -> TranslationModel2D:
        values = _parse_floats(data, cls.TAG)
        if len(values) != 2:
            raise ValueError(f"{cls.TAG}: 2個のパラメータが必要です（{len(values)}個）")
        return cls(*values)

    def to_data_string(self) -> str:
        return f"{self.tx!r} {self.ty!r}"

    def apply_array(self, points: np.ndarray) -> np.ndarray:
        return _as_points(points) + np.array([self.tx, self.ty])

    @classmethod
    def fit(cls, src: np.ndarray, dst: np.ndarray) -> TranslationModel2D:
        src, dst = cls._check_matches(src, dst)
        tx, ty = np.mean(dst - src, axis=0)
        return cls(tx, ty)

    def __repr__(self) -> str:
        return f"TranslationModel2D(tx={self.tx:.4f}, ty={self.ty:.4f})"


class RigidModel2D(FittableModel):
    """剛体変換モデル（回転 + 平行移動）"""

    TAG = "mpicbg.trakem2.transform.RigidModel2D"
    MIN_NUM_MATCHES = 2

    def __init__(self, theta: float = 0.0, tx: float = 0.0, ty: float = 0.0):
        self.theta = float(theta)
        self.tx = float(tx)
        self.ty = float(ty)

    @classmethod
    def from_data_string(cls, data: str) -> RigidModel2D:
        values = _parse_floats(data, cls.TAG)
        if len(values) != 3:
            raise ValueError(f"{cls.TAG}: 3個のパラメータが必要です（{len(values)}個）")
        return cls(*values)

    def to_data_string(self) -> str:
        return f"{self.theta!r} {self.tx!r} {self.ty!r}"

    def apply_array(self, points: np.ndarray) -> np.ndarray:
        pts = _as_points(points)
        c, s = math.cos(self.theta), math.sin(self.theta)
        x, y = pts[:, 0], pts[:, 1]
        return np.stack([c * x - s * y + self.tx, s * x + c * y + self.ty], axis=1)

    @classmethod
    def fit(cls, src: np.ndarray, dst: np.ndarray) -> RigidModel2D:
        src, dst = cls._check_matches(src, dst)

        # 重心を合わせた上で回転角を閉形式で求める
        src_c = src.mean(axis=0)
        dst_c = dst.mean(axis=0)
        p = src - src_c
        q = dst - dst_c
        sin_sum = float(np.sum(p[:, 0] * q[:, 1] - p[:, 1] * q[:, 0]))
        cos_sum = float(np.sum(p[:, 0] * q[:, 0] + p[:, 1] * q[:, 1]))
        theta = math.atan2(sin_sum, cos_sum)

        c, s = math.cos(theta), math.sin(theta)
        tx = dst_c[0] - (c * src_c[0] - s * src_c[1])
        ty = dst_c[1] - (s * src_c[0] + c * src_c[1])
        return cls(theta, tx, ty)

    def __repr__(self) -> str:
        return f"RigidModel2D(theta={self.theta:.6f}, tx={self.tx:.4f}, ty={self.ty:.4f})"


class AffineModel2D(FittableModel):
    """アフィン変換モデル

    x' = m00 * x + m01 * y + m02
    y' = m10 * x + m11 * y + m12
    """

    TAG = "mpicbg.trakem2.transform.AffineModel2D"
    MIN_NUM_MATCHES = 3

    def __init__(
        self,
        m00: float = 1.0,
        m10: float = 0.0,
        m01: float = 0.0,
        m11: float = 1.0,
        m02: float = 0.0,
        m12: float = 0.0,
    ):
        self.matrix = np.array([[m00, m01, m02], [m10, m11, m12]], dtype=np.float64)

    @classmethod
    def from_data_string(cls, data: str) -> AffineModel2D:
        values = _parse_floats(data, cls.TAG)
        if len(values) != 6:
            raise ValueError(f"{cls.TAG}: 6個のパラメータが必要です（{len(values)}個）")
        return cls(*values)

    def to_data_string(self) -> str:
        m = self.matrix
        return " ".join(repr(float(v)) for v in (m[0, 0], m[1, 0], m[0, 1], m[1, 1], m[0, 2], m[1, 2]))

    def apply_array(self, points: np.ndarray) -> np.ndarray:
        pts = _as_points(points)
        return pts @ self.matrix[:, :2].T + self.matrix[:, 2]

    @classmethod
    def fit(cls, src: np.ndarray, dst: np.ndarray) -> AffineModel2D:
        src, dst = cls._check_matches(src, dst)
        src_aug = np.hstack([src, np.ones((len(src), 1))])
        A, _, rank, _ = np.linalg.lstsq(src_aug, dst, rcond=None)
        if rank < 3:
            raise ValueError("対応点が一直線上にあるためアフィン変換を推定できません")
        # A は (3, 2): [[m00, m10], [m01, m11], [m02, m12]]
        return cls(A[0, 0], A[0, 1], A[1, 0], A[1, 1], A[2, 0], A[2, 1])

    def __repr__(self) -> str:
        return f"AffineModel2D({self.to_data_string()})"


class NonLinearCoordinateTransform(CoordinateModel):
    """多項式レンズ歪みモデル

    座標を次数 dimension までの単項式に展開し、平均・分散で正規化した
    特徴ベクトルに係数行列 beta (length x 2) を掛けて新しい座標を得ます。
    特徴ベクトルの最後の要素は定数項 100 です。
    """

    TAG = "mpicbg.trakem2.transform.NonLinearCoordinateTransform"
    LEGACY_TAG = "lenscorrection.NonLinearTransform"

    def __init__(
        self,
        dimension: int,
        beta: np.ndarray,
        norm_mean: np.ndarray,
        norm_var: np.ndarray,
        width: int = 0,
        height: int = 0,
    ):
        self.dimension = int(dimension)
        self.length = (self.dimension + 2) * (self.dimension + 1) // 2
        self.beta = np.asarray(beta, dtype=np.float64).reshape(self.length, 2)
        self.norm_mean = np.asarray(norm_mean, dtype=np.float64).reshape(self.length)
        self.norm_var = np.asarray(norm_var, dtype=np.float64).reshape(self.length)
        self.width = int(width)
        self.height = int(height)

    @classmethod
    def from_data_string(cls, data: str) -> NonLinearCoordinateTransform:
        tokens = data.split()
        if len(tokens) < 2:
            raise ValueError(f"{cls.TAG}: dimension と length が必要です")

        dimension = _parse_int(tokens[0], cls.TAG, "dimension")
        length = _parse_int(tokens[1], cls.TAG, "length")
        expected_length = (dimension + 2) * (dimension + 1) // 2
        if dimension < 1 or length != expected_length:
            raise ValueError(f"{cls.TAG}: dimension={dimension} に対して length={length} は不正です")

        required = 4 * length
        if len(tokens) - 2 < required:
            raise ValueError(f"{cls.TAG}: パラメータが不足しています（{len(tokens) - 2} < {required}）")
        body = _parse_floats(" ".join(tokens[2 : 2 + required]), cls.TAG)

        beta = np.array(body[: 2 * length])
        norm_mean = np.array(body[2 * length : 3 * length])
        norm_var = np.array(body[3 * length : 4 * length])
        if np.any(norm_var[: length - 1] == 0):
            raise ValueError(f"{cls.TAG}: normVar にゼロが含まれています")

        # 末尾の画像サイズは省略可能
        trailer = tokens[2 + required :]
        width = _parse_int(trailer[0], cls.TAG, "width") if len(trailer) > 0 else 0
        height = _parse_int(trailer[1], cls.TAG, "height") if len(trailer) > 1 else 0
        return cls(dimension, beta, norm_mean, norm_var, width, height)

    def to_data_string(self) -> str:
        parts = [str(self.dimension), str(self.length)]
        parts += [repr(float(v)) for v in self.beta.reshape(-1)]
        parts += [repr(float(v)) for v in self.norm_mean]
        parts += [repr(float(v)) for v in self.norm_var]
        parts += [str(self.width), str(self.height)]
        return " ".join(parts)

    def _kernel_expand(self, pts: np.ndarray) -> np.ndarray:
        x, y = pts[:, 0], pts[:, 1]
        columns = []
        for i in range(1, self.dimension + 1):
            for j in range(i, -1, -1):
                columns.append(x**j * y ** (i - j))
        expanded = np.empty((len(pts), self.length), dtype=np.float64)
        expanded[:, : self.length - 1] = np.stack(columns, axis=1)
        expanded[:, : self.length - 1] -= self.norm_mean[: self.length - 1]
        expanded[:, : self.length - 1] /= self.norm_var[: self.length - 1]
        expanded[:, self.length - 1] = 100.0
        return expanded

    def apply_array(self, points: np.ndarray) -> np.ndarray:
        pts = _as_points(points)
        return self._kernel_expand(pts) @ self.beta

    def __repr__(self) -> str:
        return f"NonLinearCoordinateTransform(dimension={self.dimension}, size=({self.width}, {self.height}))"


# 位置合わせ補正に使用できるモデル
CORRECTION_MODELS: dict[str, type[FittableModel]] = {
    "translation": TranslationModel2D,
    "rigid": RigidModel2D,
}
