"""変換木のJSONシリアライズ/デシリアライズ

各ノードは className を持つオブジェクトです。

- プリミティブ: {"className": "<tag>", "dataString": "<params>"}
- 合成変換:     {"className": "mpicbg.trakem2.transform.CoordinateTransformList",
                 "transforms": [<node>, ...]}

キャリブレーションファイルは [{"transform": [<node>, ...], "name": "<label>"}, ...] 形式です。
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import json
import logging
from pathlib import Path
from typing import Any

from lenscorrect.errors import TransformDecodeError
from lenscorrect.transform.composite import Calibration, CompositeTransform, PrimitiveTransform, Transform
from lenscorrect.transform.registry import COMPOSITE_TAG, TransformRegistry, default_registry

logger = logging.getLogger(__name__)

_END = object()


class TransformCodec:
    """変換木と JSON 互換構造の相互変換を行う

    Attributes:
        registry: className → モデル生成の登録表
    """

    def __init__(self, registry: TransformRegistry | None = None):
        self.registry = registry or default_registry()

    # ------------------------------------------------------------------
    # encode
    # ------------------------------------------------------------------

    def encode(self, transform: Transform) -> dict[str, Any]:
        """変換木をノード辞書に変換する"""
        if isinstance(transform, PrimitiveTransform):
            return {"className": transform.tag, "dataString": transform.data_string}

        root: dict[str, Any] | None = None
        containers: list[list[dict[str, Any]]] = []
        for event, node in transform.walk():
            if event == "enter":
                encoded: dict[str, Any] = {"className": COMPOSITE_TAG, "transforms": []}
                if containers:
                    containers[-1].append(encoded)
                else:
                    root = encoded
                containers.append(encoded["transforms"])
            elif event == "leave":
                containers.pop()
            else:
                containers[-1].append({"className": node.tag, "dataString": node.data_string})
        assert root is not None
        return root

    def encode_calibrations(self, calibrations: Sequence[Calibration]) -> list[dict[str, Any]]:
        """キャリブレーションのリストを永続化形式に変換する"""
        return [
            {
                "transform": [self.encode(child) for child in calibration.transform.children],
                "name": calibration.name,
            }
            for calibration in calibrations
        ]

    # ------------------------------------------------------------------
    # decode
    # ------------------------------------------------------------------

    def _decode_node(self, node: Any) -> tuple[str, Any]:
        """1ノードを解釈する

        Returns:
            ("absent", None) / ("primitive", PrimitiveTransform) / ("composite", 子ノードのリスト)
        """
        if not isinstance(node, Mapping):
            raise TransformDecodeError(None, f"node must be an object, got {type(node).__name__}")

        tag = node.get("className")
        if tag is None:
            return ("absent", None)
        if not isinstance(tag, str):
            raise TransformDecodeError(str(tag), "className must be a string")

        if tag == COMPOSITE_TAG:
            transforms = node.get("transforms")
            if not isinstance(transforms, list):
                if transforms is not None:
                    logger.warning(f"'transforms' of {COMPOSITE_TAG} is not an array; using an empty list")
                transforms = []
            return ("composite", transforms)

        data_string = node.get("dataString")
        if not isinstance(data_string, str):
            raise TransformDecodeError(tag, "missing dataString")
        model = self.registry.create(tag, data_string)
        return ("primitive", PrimitiveTransform(tag=tag, data_string=data_string, model=model))

    def decode(self, node: Any) -> Transform | None:
        """ノードを変換木に復元する

        className のないノードは None（変換なし）になります。

        Raises:
            TransformDecodeError: 未知のタグ、dataString の欠落・不正
        """
        kind, value = self._decode_node(node)
        if kind != "composite":
            return value

        root_children: list[Transform] = []
        stack: list[tuple[list[Transform], Any]] = [(root_children, iter(value))]
        while stack:
            children, pending = stack[-1]
            child_node = next(pending, _END)
            if child_node is _END:
                if not children:
                    logger.warning("Empty CoordinateTransformList decoded; treating it as identity")
                stack.pop()
                continue

            kind, value = self._decode_node(child_node)
            if kind == "absent":
                logger.warning("Skipping transform node without className")
            elif kind == "primitive":
                children.append(value)
            else:
                sub_children: list[Transform] = []
                children.append(CompositeTransform._adopt(sub_children))
                stack.append((sub_children, iter(value)))

        return CompositeTransform._adopt(root_children)

    def decode_calibration(self, entry: Any, index: int = 0) -> Calibration:
        """1件のキャリブレーションを復元する"""
        if not isinstance(entry, Mapping):
            raise TransformDecodeError(None, f"calibration {index} must be an object")

        name = entry.get("name")
        if not isinstance(name, str):
            name = f"calibration-{index}"

        nodes = entry.get("transform")
        if nodes is None:
            nodes = []
        elif isinstance(nodes, Mapping):
            nodes = [nodes]
        elif not isinstance(nodes, list):
            raise TransformDecodeError(None, f"'transform' of calibration '{name}' must be an array")

        children: list[Transform] = []
        for node in nodes:
            transform = self.decode(node)
            if transform is None:
                logger.warning(f"Calibration '{name}': skipping transform node without className")
                continue
            children.append(transform)

        if not children:
            logger.warning(f"Calibration '{name}' has no transforms; it will be applied as identity")
        return Calibration(name=name, transform=CompositeTransform._adopt(children))

    def decode_calibrations(
        self,
        data: Any,
        errors: list[TransformDecodeError] | None = None,
    ) -> list[Calibration]:
        """キャリブレーションのリストを復元する

        Args:
            data: JSON から読み込んだリスト
            errors: 指定された場合、復元に失敗したキャリブレーションは読み飛ばして
                例外をこのリストに追加する（省略時は最初の失敗で送出）

        Returns:
            Calibration のリスト
        """
        if not isinstance(data, list):
            raise TransformDecodeError(None, "calibration data must be an array")

        calibrations = []
        for index, entry in enumerate(data):
            try:
                calibrations.append(self.decode_calibration(entry, index))
            except TransformDecodeError as e:
                if errors is None:
                    raise
                logger.error(f"Calibration {index} could not be decoded: {e}")
                errors.append(e)
        return calibrations

    # ------------------------------------------------------------------
    # files
    # ------------------------------------------------------------------

    def load(self, path: str | Path, errors: list[TransformDecodeError] | None = None) -> list[Calibration]:
        """キャリブレーションファイルを読み込む

        Raises:
            FileNotFoundError: ファイルが存在しない場合
            TransformDecodeError: JSON または変換の内容が不正な場合
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Transform file not found: {file_path}")

        with open(file_path, encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise TransformDecodeError(None, f"invalid JSON in {file_path}: {e}") from e

        calibrations = self.decode_calibrations(data, errors)
        logger.info(f"Loaded {len(calibrations)} calibrations from {file_path}")
        logger.debug(self.dumps(calibrations))
        return calibrations

    def save(self, calibrations: Sequence[Calibration], path: str | Path) -> None:
        """キャリブレーションをファイルに保存する"""
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(self.encode_calibrations(calibrations), f, indent=2, ensure_ascii=False)
        logger.info(f"Saved {len(calibrations)} calibrations to {file_path}")

    def dumps(self, calibrations: Sequence[Calibration]) -> str:
        """キャリブレーションを整形済みJSON文字列にする"""
        return json.dumps(self.encode_calibrations(calibrations), indent=2, ensure_ascii=False)


def load_calibrations(path: str | Path, registry: TransformRegistry | None = None) -> list[Calibration]:
    """キャリブレーションファイルを読み込む"""
    return TransformCodec(registry).load(path)


def save_calibrations(
    calibrations: Sequence[Calibration],
    path: str | Path,
    registry: TransformRegistry | None = None,
) -> None:
    """キャリブレーションをファイルに保存する"""
    TransformCodec(registry).save(calibrations, path)
