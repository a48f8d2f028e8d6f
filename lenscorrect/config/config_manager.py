"""Configuration management module for the lens correction tools."""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

INTERPOLATION_KINDS = ("nearest", "bilinear", "bicubic")
CORRECTION_MODEL_NAMES = ("translation", "rigid")


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """defaults に overrides を再帰的に重ねた新しい辞書を返す"""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """設定ファイル管理クラス

    YAML/JSON形式の設定ファイルを読み込み、検証し、設定値を提供する。
    ファイルに無い項目はデフォルト値で補完される。

    Attributes:
        config_path: 設定ファイルのパス
        config: 読み込まれた設定データ
    """

    # 必須項目の定義
    REQUIRED_KEYS = {
        "render": ["mesh_resolution", "interpolation"],
        "alignment": ["enabled", "model"],
        "output": ["directory"],
    }

    # デフォルト設定値
    DEFAULT_CONFIG = {
        "render": {
            "mesh_resolution": 128,
            "interpolation": "bilinear",
            "crop_width": 0,
            "max_workers": 4,
        },
        "alignment": {
            "enabled": False,
            "model": "translation",
            "max_scale": 1.0,
            "min_scale": 0.2,
            "rod": 0.92,
            "seed": None,
            "ransac": {
                "iterations": 1000,
                "max_epsilon": 5.0,
                "min_inlier_ratio": 0.0,
                "min_num_inliers": 10,
                "max_trust": 3.0,
            },
        },
        "output": {
            "directory": "output",
            "debug_mode": False,
        },
    }

    def __init__(self, config_path: str = "config.yaml"):
        """ConfigManagerを初期化する

        Args:
            config_path: 設定ファイルのパス（デフォルト: config.yaml）
        """
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """設定ファイルを読み込む

        Returns:
            読み込まれた設定データ

        Raises:
            ValueError: 設定ファイルの形式が不正な場合
        """
        if not os.path.exists(self.config_path):
            logger.warning(f"設定ファイル '{self.config_path}' が見つかりません。デフォルト設定を使用します。")
            return copy.deepcopy(self.DEFAULT_CONFIG)

        file_ext = Path(self.config_path).suffix.lower()
        if file_ext not in [".yaml", ".yml", ".json"]:
            raise ValueError(f"サポートされていないファイル形式: {file_ext}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                if file_ext == ".json":
                    config = json.load(f)
                else:
                    config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"YAML解析エラー: {e}") from e
        except json.JSONDecodeError as e:
            raise ValueError(f"JSON解析エラー: {e}") from e
        except OSError as e:
            raise ValueError(f"設定ファイルの読み込みに失敗しました: {e}") from e

        if config is None:
            logger.warning("設定ファイルが空です。デフォルト設定を使用します。")
            return copy.deepcopy(self.DEFAULT_CONFIG)
        if not isinstance(config, dict):
            raise ValueError("設定ファイルのトップレベルは辞書である必要があります。")

        logger.info(f"設定ファイル '{self.config_path}' を読み込みました。")
        return _merge(self.DEFAULT_CONFIG, config)

    def validate(self) -> bool:
        """設定値の妥当性を検証する

        必須項目の存在チェック、型チェック、値の範囲チェックを実行する。

        Returns:
            検証が成功した場合True

        Raises:
            ValueError: 設定値が不正な場合
        """
        for section, required_keys in self.REQUIRED_KEYS.items():
            section_config = self.config.get(section)
            if not isinstance(section_config, dict):
                raise ValueError(f"セクション '{section}' は辞書型である必要があります。")
            for key in required_keys:
                if key not in section_config:
                    raise ValueError(f"必須項目 '{section}.{key}' が設定ファイルに存在しません。")

        self._validate_render_config()
        self._validate_alignment_config()
        self._validate_output_config()

        logger.info("設定ファイルの検証が完了しました。")
        return True

    @staticmethod
    def _is_int(value: Any) -> bool:
        return isinstance(value, int) and not isinstance(value, bool)

    @staticmethod
    def _is_number(value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool)

    def _validate_render_config(self):
        """render セクションの検証"""
        render_config = self.config.get("render", {})

        mesh_resolution = render_config.get("mesh_resolution")
        if not self._is_int(mesh_resolution) or mesh_resolution < 1:
            raise ValueError("render.mesh_resolution は1以上の整数である必要があります。")

        interpolation = render_config.get("interpolation")
        if interpolation not in INTERPOLATION_KINDS:
            raise ValueError(f"render.interpolation は {', '.join(INTERPOLATION_KINDS)} のいずれかである必要があります。")

        crop_width = render_config.get("crop_width", 0)
        if not self._is_int(crop_width) or crop_width < 0:
            raise ValueError("render.crop_width は0以上の整数である必要があります。")

        max_workers = render_config.get("max_workers", 1)
        if not self._is_int(max_workers) or max_workers < 1:
            raise ValueError("render.max_workers は1以上の整数である必要があります。")

    def _validate_alignment_config(self):
        """alignment セクションの検証"""
        alignment_config = self.config.get("alignment", {})

        if not isinstance(alignment_config.get("enabled"), bool):
            raise ValueError("alignment.enabled はブール値である必要があります。")

        if alignment_config.get("model") not in CORRECTION_MODEL_NAMES:
            raise ValueError(f"alignment.model は {', '.join(CORRECTION_MODEL_NAMES)} のいずれかである必要があります。")

        max_scale = alignment_config.get("max_scale", 1.0)
        min_scale = alignment_config.get("min_scale", 0.2)
        if not self._is_number(max_scale) or not self._is_number(min_scale) or not 0 < min_scale <= max_scale:
            raise ValueError("alignment.min_scale と alignment.max_scale は 0 < min_scale <= max_scale である必要があります。")

        rod = alignment_config.get("rod", 0.92)
        if not self._is_number(rod) or not 0 < rod <= 1:
            raise ValueError("alignment.rod は0より大きく1以下の数値である必要があります。")

        seed = alignment_config.get("seed")
        if seed is not None and not self._is_int(seed):
            raise ValueError("alignment.seed は整数または null である必要があります。")

        ransac_config = alignment_config.get("ransac", {})
        if not isinstance(ransac_config, dict):
            raise ValueError("alignment.ransac は辞書型である必要があります。")

        iterations = ransac_config.get("iterations", 1000)
        if not self._is_int(iterations) or iterations < 1:
            raise ValueError("alignment.ransac.iterations は1以上の整数である必要があります。")

        max_epsilon = ransac_config.get("max_epsilon", 5.0)
        if not self._is_number(max_epsilon) or max_epsilon <= 0:
            raise ValueError("alignment.ransac.max_epsilon は正の数値である必要があります。")

        min_inlier_ratio = ransac_config.get("min_inlier_ratio", 0.0)
        if not self._is_number(min_inlier_ratio) or not 0 <= min_inlier_ratio <= 1:
            raise ValueError("alignment.ransac.min_inlier_ratio は0から1の数値である必要があります。")

        min_num_inliers = ransac_config.get("min_num_inliers", 10)
        if not self._is_int(min_num_inliers) or min_num_inliers < 1:
            raise ValueError("alignment.ransac.min_num_inliers は1以上の整数である必要があります。")

        max_trust = ransac_config.get("max_trust", 3.0)
        if not self._is_number(max_trust) or max_trust <= 0:
            raise ValueError("alignment.ransac.max_trust は正の数値である必要があります。")

    def _validate_output_config(self):
        """output セクションの検証"""
        output_config = self.config.get("output", {})

        if not isinstance(output_config.get("directory"), str):
            raise ValueError("output.directory は文字列である必要があります。")

        if "debug_mode" in output_config and not isinstance(output_config["debug_mode"], bool):
            raise ValueError("output.debug_mode はブール値である必要があります。")

    def get(self, key: str, default: Any = None) -> Any:
        """設定値を取得する

        ドット記法（例: 'render.mesh_resolution'）で階層的な設定値にアクセスできる。

        Args:
            key: 設定キー（ドット記法をサポート）
            default: キーが存在しない場合のデフォルト値

        Returns:
            設定値、またはデフォルト値
        """
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """設定セクション全体を取得する

        Args:
            section: セクション名（例: 'render', 'alignment'）

        Returns:
            セクションの設定データ
        """
        return self.config.get(section, {})

    def set(self, key: str, value: Any):
        """設定値を動的に変更する

        Args:
            key: 設定キー（ドット記法をサポート）
            value: 設定する値
        """
        keys = key.split(".")
        config = self.config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value
        logger.debug(f"設定値を変更しました: {key} = {value}")

    def save(self, output_path: Optional[str] = None):
        """設定をファイルに保存する

        Args:
            output_path: 保存先パス（指定しない場合は元のパスに上書き）
        """
        save_path = output_path or self.config_path
        file_ext = Path(save_path).suffix.lower()
        if file_ext not in [".yaml", ".yml", ".json"]:
            raise ValueError(f"サポートされていないファイル形式: {file_ext}")

        try:
            with open(save_path, "w", encoding="utf-8") as f:
                if file_ext == ".json":
                    json.dump(self.config, f, indent=2, ensure_ascii=False)
                else:
                    yaml.dump(self.config, f, default_flow_style=False, allow_unicode=True)

            logger.info(f"設定ファイルを保存しました: {save_path}")
        except OSError as e:
            logger.error(f"設定ファイルの保存に失敗しました: {e}")
            raise
