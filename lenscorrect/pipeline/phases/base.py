"""Base class for pipeline phases."""

from abc import ABC, abstractmethod
import logging

from lenscorrect.config import ConfigManager


class BasePhase(ABC):
    """パイプラインフェーズの基底クラス"""

    def __init__(self, config: ConfigManager, logger: logging.Logger):
        """初期化

        Args:
            config: ConfigManagerインスタンス
            logger: ロガー
        """
        self.config = config
        self.logger = logger

    def log_phase_start(self, phase_name: str) -> None:
        """フェーズ開始のログを出力

        Args:
            phase_name: フェーズ名（例: "フェーズ1: 描画範囲の決定"）
        """
        self.logger.info("=" * 80)
        self.logger.info(phase_name)
        self.logger.info("=" * 80)

    @abstractmethod
    def execute(self, *args, **kwargs):
        """フェーズの実行処理（サブクラスで実装）"""
        raise NotImplementedError("Subclass must implement execute method")
