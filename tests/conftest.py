"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import logging
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import numpy as np
import pytest

from lenscorrect.transform import (
    Calibration,
    CompositeTransform,
    NonLinearCoordinateTransform,
    PrimitiveTransform,
    TransformCodec,
    TranslationModel2D,
)


def translation(dx: float, dy: float) -> PrimitiveTransform:
    """平行移動のプリミティブ変換"""
    return PrimitiveTransform.from_model(TranslationModel2D(dx, dy))


def make_nonlinear_data_string(shift_x: float = 0.0, shift_y: float = 0.0) -> str:
    """恒等写像 + 定数ずれとなる2次の多項式モデルの dataString

    正規化後の展開は [x, y, x^2, xy, y^2, 100] なので、
    beta の x 係数・y 係数を 1 にし、定数項 100 にずれ / 100 を掛けます。
    """
    dimension, length = 2, 6
    beta = np.zeros((length, 2))
    beta[0, 0] = 1.0
    beta[1, 1] = 1.0
    beta[5, 0] = shift_x / 100.0
    beta[5, 1] = shift_y / 100.0
    norm_mean = np.zeros(length)
    norm_var = np.ones(length)
    values = [dimension, length, *beta.reshape(-1), *norm_mean, *norm_var, 64, 48]
    return " ".join(str(v) for v in values)


@pytest.fixture
def codec() -> TransformCodec:
    return TransformCodec()


@pytest.fixture
def nonlinear_data_string() -> str:
    return make_nonlinear_data_string(1.5, -0.5)


@pytest.fixture
def nonlinear_primitive(nonlinear_data_string: str) -> PrimitiveTransform:
    data = nonlinear_data_string
    return PrimitiveTransform(
        tag=NonLinearCoordinateTransform.TAG,
        data_string=data,
        model=NonLinearCoordinateTransform.from_data_string(data),
    )


@pytest.fixture
def sample_calibrations(nonlinear_primitive: PrimitiveTransform) -> list[Calibration]:
    """歪み補正 + 平行移動の2つのキャリブレーション"""
    return [
        Calibration(name="left", transform=CompositeTransform([nonlinear_primitive, translation(2.0, 1.0)])),
        Calibration(name="right", transform=CompositeTransform([translation(-3.0, 2.0)])),
    ]


@pytest.fixture
def textured_image() -> np.ndarray:
    """特徴点を検出できる平滑化ノイズ画像 (200, 240) float32"""
    import cv2

    rng = np.random.default_rng(42)
    noise = rng.uniform(0, 255, size=(200, 240)).astype(np.float32)
    return cv2.GaussianBlur(noise, (0, 0), 2.0)


@pytest.fixture
def gradient_image() -> np.ndarray:
    """(30, 40) の uint16 勾配画像"""
    ys, xs = np.mgrid[0:30, 0:40]
    return (xs * 100 + ys * 7).astype(np.uint16)


@pytest.fixture
def make_translation():
    """平行移動プリミティブを作る関数"""
    return translation


@pytest.fixture(autouse=True)
def restore_root_logging():
    """setup_logging が差し替えたルートロガーのハンドラーをテスト後に戻す"""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        if handler not in handlers:
            root_logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)
