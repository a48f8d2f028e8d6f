"""プリミティブ変換のタグ→ファクトリ登録表。

className 文字列から具体的なモデルを生成するための明示的なマッピングです。
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
import logging

from lenscorrect.errors import TransformDecodeError
from lenscorrect.transform.models import (
    AffineModel2D,
    CoordinateModel,
    NonLinearCoordinateTransform,
    RigidModel2D,
    TranslationModel2D,
)

logger = logging.getLogger(__name__)

COMPOSITE_TAG = "mpicbg.trakem2.transform.CoordinateTransformList"

ModelFactory = Callable[[str], CoordinateModel]

BUILTIN_FACTORIES: dict[str, ModelFactory] = {
    TranslationModel2D.TAG: TranslationModel2D.from_data_string,
    RigidModel2D.TAG: RigidModel2D.from_data_string,
    AffineModel2D.TAG: AffineModel2D.from_data_string,
    NonLinearCoordinateTransform.TAG: NonLinearCoordinateTransform.from_data_string,
    NonLinearCoordinateTransform.LEGACY_TAG: NonLinearCoordinateTransform.from_data_string,
}


class TransformRegistry:
    """className からプリミティブ変換を生成する登録表

    Attributes:
        factories: タグ → ファクトリ関数
    """

    def __init__(self, factories: Mapping[str, ModelFactory] | None = None):
        self.factories: dict[str, ModelFactory] = {}
        for tag, factory in (factories or {}).items():
            self.register(tag, factory)

    def register(self, tag: str, factory: ModelFactory) -> None:
        """タグにファクトリを登録する

        Raises:
            ValueError: 合成変換のタグや呼び出し不可能なファクトリが指定された場合
        """
        if tag == COMPOSITE_TAG:
            raise ValueError(f"{COMPOSITE_TAG} はプリミティブとして登録できません")
        if not callable(factory):
            raise ValueError(f"タグ '{tag}' のファクトリが呼び出し可能ではありません")
        if tag in self.factories:
            logger.debug(f"Overriding transform factory for {tag}")
        self.factories[tag] = factory

    @property
    def tags(self) -> list[str]:
        """登録済みタグの一覧"""
        return sorted(self.factories)

    def resolve(self, tag: str) -> ModelFactory:
        """タグに対応するファクトリを返す

        Raises:
            TransformDecodeError: 未登録のタグの場合
        """
        factory = self.factories.get(tag)
        if factory is None:
            raise TransformDecodeError(tag, "unknown transform class")
        return factory

    def create(self, tag: str, data_string: str) -> CoordinateModel:
        """タグと dataString からモデルを生成する

        Raises:
            TransformDecodeError: 未登録のタグ、またはパラメータが不正な場合
        """
        factory = self.resolve(tag)
        try:
            return factory(data_string)
        except (ValueError, IndexError, TypeError, OverflowError) as e:
            raise TransformDecodeError(tag, f"invalid dataString ({e})") from e

    def check_complete(self, required: Iterable[str] | None = None) -> None:
        """必要なタグがすべて登録されているか確認する

        Args:
            required: 必須タグ（省略時は組み込みタグ）

        Raises:
            ValueError: 未登録のタグがある場合
        """
        required_tags = list(BUILTIN_FACTORIES) if required is None else list(required)
        missing = [tag for tag in required_tags if tag not in self.factories]
        if missing:
            raise ValueError(f"未登録の変換クラスがあります: {', '.join(missing)}")
        logger.debug(f"Transform registry complete: {len(self.factories)} classes")

    def __contains__(self, tag: object) -> bool:
        return tag in self.factories


def default_registry() -> TransformRegistry:
    """組み込みモデルを登録したレジストリを返す"""
    return TransformRegistry(BUILTIN_FACTORIES)
