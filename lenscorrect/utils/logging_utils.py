"""Logging utilities for the lens correction tools."""

import logging
from pathlib import Path
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "lenscorrect.log"


def setup_logging(debug_mode: bool = False, output_dir: str = "output") -> Path:
    """ロギングを設定する

    ルートロガーの既存ハンドラを外し、標準出力とログファイルへ出力する。

    Args:
        debug_mode: デバッグモードの場合True
        output_dir: ログファイルの出力ディレクトリ

    Returns:
        ログファイルのパス
    """
    log_level = logging.DEBUG if debug_mode else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    log_dir = Path(output_dir)
    log_dir.mkdir(exist_ok=True, parents=True)
    log_path = log_dir / LOG_FILE_NAME

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)
    return log_path
