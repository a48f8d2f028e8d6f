"""合成変換モジュール

プリミティブ変換（タグ + パラメータ文字列）と、それらを順に適用する
合成変換（木構造）を提供します。走査・複製・比較はすべて反復的に行うため、
入れ子の深さに上限はありません。
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from itertools import zip_longest
import logging
from typing import TYPE_CHECKING, Union

import numpy as np

from lenscorrect.transform.registry import COMPOSITE_TAG

if TYPE_CHECKING:
    from lenscorrect.transform.models import CoordinateModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Point:
    """2D座標 (x, y)"""

    x: float
    y: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class PrimitiveTransform:
    """プリミティブ変換（葉ノード）

    Attributes:
        tag: className
        data_string: パラメータ文字列（読み込んだ値をそのまま保持）
        model: 写像を実行するモデル
    """

    tag: str
    data_string: str
    model: CoordinateModel = field(compare=False, repr=False)

    @classmethod
    def from_model(cls, model: CoordinateModel) -> PrimitiveTransform:
        """モデルからプリミティブ変換を作成する"""
        return cls(tag=model.TAG, data_string=model.to_data_string(), model=model)

    def apply(self, point: Point) -> Point:
        x, y = self.model.apply((point.x, point.y))
        return Point(x, y)

    def apply_array(self, points: np.ndarray) -> np.ndarray:
        return self.model.apply_array(points)


class CompositeTransform:
    """子変換を順に適用する合成変換

    子リストへの追加は末尾のみで、既存の順序は変わりません。
    合成変換を子として追加する場合は複製してから保持するため、
    別の合成変換と子を共有して変更が波及することはありません。
    """

    TAG = COMPOSITE_TAG

    def __init__(self, children: Iterable[Transform] = ()):
        self._children: list[Transform] = []
        for child in children:
            self.append(child)

    @classmethod
    def _adopt(cls, children: list[Transform]) -> CompositeTransform:
        # 呼び出し側が children の唯一の所有者であること
        composite = cls()
        composite._children = children
        return composite

    @property
    def children(self) -> tuple[Transform, ...]:
        """子変換（挿入順）"""
        return tuple(self._children)

    def append(self, child: Transform) -> None:
        """子変換を末尾に追加する

        Args:
            child: プリミティブ変換または合成変換
        """
        if isinstance(child, CompositeTransform):
            child = child.copy()
        elif not isinstance(child, PrimitiveTransform):
            raise TypeError(f"変換として追加できない型です: {type(child).__name__}")
        self._children.append(child)

    def walk(self) -> Iterator[tuple[str, Transform]]:
        """木を前順に走査する

        Yields:
            ("enter", 合成変換), ("primitive", プリミティブ変換), ("leave", 合成変換)
        """
        stack: list[tuple[Transform, bool]] = [(self, False)]
        while stack:
            node, leaving = stack.pop()
            if isinstance(node, CompositeTransform):
                if leaving:
                    yield ("leave", node)
                    continue
                yield ("enter", node)
                stack.append((node, True))
                stack.extend((child, False) for child in reversed(node._children))
            else:
                yield ("primitive", node)

    def primitives(self) -> Iterator[PrimitiveTransform]:
        """適用順にプリミティブ変換を返す"""
        for event, node in self.walk():
            if event == "primitive":
                yield node

    def apply(self, point: Point) -> Point:
        """点を変換する（子が空なら恒等変換）"""
        for primitive in self.primitives():
            point = primitive.apply(point)
        return point

    def apply_array(self, points: np.ndarray) -> np.ndarray:
        """(N, 2) の点配列を変換する"""
        pts = np.array(points, dtype=np.float64)
        for primitive in self.primitives():
            pts = primitive.apply_array(pts)
        return pts

    def copy(self) -> CompositeTransform:
        """木構造を複製する（プリミティブは不変なので共有）"""
        root: CompositeTransform | None = None
        parents: list[CompositeTransform] = []
        for event, node in self.walk():
            if event == "enter":
                clone = CompositeTransform._adopt([])
                if parents:
                    parents[-1]._children.append(clone)
                else:
                    root = clone
                parents.append(clone)
            elif event == "leave":
                parents.pop()
            else:
                parents[-1]._children.append(node)
        assert root is not None
        return root

    def _tokens(self) -> Iterator[tuple[str, ...]]:
        for event, node in self.walk():
            if event == "primitive":
                yield (event, node.tag, node.data_string)
            else:
                yield (event,)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CompositeTransform):
            return NotImplemented
        sentinel = ("end",)
        return all(a == b for a, b in zip_longest(self._tokens(), other._tokens(), fillvalue=sentinel))

    __hash__ = None  # type: ignore[assignment]

    def __len__(self) -> int:
        return len(self._children)

    def __iter__(self) -> Iterator[Transform]:
        return iter(self.children)

    def __repr__(self) -> str:
        return f"CompositeTransform({len(self._children)} children)"


Transform = Union[PrimitiveTransform, CompositeTransform]


@dataclass
class Calibration:
    """名前付きのキャリブレーション（永続化の単位）

    Attributes:
        name: ラベル（例: "scope, sample, left"）
        transform: このキャリブレーションが所有する合成変換
    """

    name: str
    transform: CompositeTransform = field(default_factory=CompositeTransform)

    def copy(self) -> Calibration:
        return Calibration(name=self.name, transform=self.transform.copy())
