"""レンズ補正パイプラインの例外定義。

各例外は失敗の種類を識別できる属性を持ち、CLI で終了コードへ変換される。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from lenscorrect.render.bounding_box import BoundingBox


class LensCorrectError(Exception):
    """lenscorrect が送出する例外の基底クラス"""


class TransformDecodeError(LensCorrectError, ValueError):
    """変換ノードを復元できない（未知のタグ、不正なパラメータ文字列など）

    Attributes:
        tag: 問題のあった className（取得できなかった場合は None）
    """

    def __init__(self, tag: str | None, message: str):
        self.tag = tag
        super().__init__(f"Failed to decode transform '{tag}': {message}")


class NoOverlapError(LensCorrectError):
    """全変換のバウンディングボックスの共通部分が空"""

    def __init__(self, boxes: Sequence[BoundingBox], intersection: BoundingBox | None = None):
        self.boxes = list(boxes)
        self.intersection = intersection
        super().__init__(
            f"No valid bounding box found for {len(self.boxes)} transformations (intersection: {intersection})"
        )


class NoAlignmentFoundError(LensCorrectError):
    """RANSAC で必要なインライア数に達しなかった

    Attributes:
        index: 対象画像のインデックス（不明な場合は None）
        num_candidates: 候補対応点の数
        num_inliers: 最良モデルのインライア数
    """

    def __init__(self, num_candidates: int, num_inliers: int = 0, index: int | None = None, reason: str = ""):
        self.index = index
        self.num_candidates = num_candidates
        self.num_inliers = num_inliers
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"No alignment found for subject {index}: {num_inliers} inliers of {num_candidates} candidates{detail}"
        )


class UnsupportedInterpolationError(LensCorrectError, ValueError):
    """補間方法がサポートされていない"""

    def __init__(self, kind: object):
        self.kind = kind
        super().__init__(f"Unsupported interpolation: {kind!r} (expected nearest, bilinear or bicubic)")


class BufferAllocationError(LensCorrectError):
    """出力バッファを確保できなかった"""

    def __init__(self, shape: tuple[int, ...]):
        self.shape = shape
        super().__init__(f"Could not allocate destination buffer of shape {shape}")


class ImageReadError(LensCorrectError):
    """画像ファイルを開けなかった"""

    def __init__(self, path: object, message: str = "unsupported or unreadable file"):
        self.path = path
        super().__init__(f"Could not open image '{path}': {message}")
