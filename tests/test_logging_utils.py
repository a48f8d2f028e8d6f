"""Test cases for logging_utils."""

from __future__ import annotations

import logging
from pathlib import Path

from lenscorrect.utils.logging_utils import LOG_FILE_NAME, setup_logging


def test_setup_logging_debug_mode(tmp_path: Path):
    """デバッグモードでのロギング設定"""
    output_dir = str(tmp_path / "output")

    log_path = setup_logging(debug_mode=True, output_dir=output_dir)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG

    # ファイルハンドラーが設定されていることを確認
    file_handlers = [h for h in root_logger.handlers if isinstance(h, logging.FileHandler)]
    assert len(file_handlers) == 1
    assert log_path == Path(output_dir) / LOG_FILE_NAME
    assert file_handlers[0].baseFilename == str(log_path.resolve())


def test_setup_logging_info_mode(tmp_path: Path):
    """INFOモードでのロギング設定"""
    setup_logging(debug_mode=False, output_dir=str(tmp_path / "output"))

    root_logger = logging.getLogger()
    assert root_logger.level == logging.INFO


def test_setup_logging_creates_directory(tmp_path: Path):
    """存在しないディレクトリが自動作成される"""
    output_dir = str(tmp_path / "new" / "output")

    setup_logging(debug_mode=False, output_dir=output_dir)

    assert Path(output_dir).exists()


def test_setup_logging_replaces_handlers(tmp_path: Path):
    """再設定すると既存のハンドラーは置き換えられる"""
    setup_logging(debug_mode=False, output_dir=str(tmp_path / "first"))
    setup_logging(debug_mode=False, output_dir=str(tmp_path / "second"))

    root_logger = logging.getLogger()
    file_handlers = [h for h in root_logger.handlers if isinstance(h, logging.FileHandler)]
    assert len(file_handlers) == 1
    assert "second" in file_handlers[0].baseFilename


def test_log_written_to_file(tmp_path: Path):
    """ログメッセージがファイルに書き込まれる"""
    log_path = setup_logging(debug_mode=False, output_dir=str(tmp_path))

    logging.getLogger("lenscorrect.test").info("補正を開始します")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "補正を開始します" in log_path.read_text(encoding="utf-8")
