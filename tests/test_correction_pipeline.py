"""Tests for CorrectionPipeline and its phases."""

from __future__ import annotations

import logging
from unittest.mock import patch

import numpy as np
import pytest

from lenscorrect.adapters.fakes import FakeFeatureMatcher, make_shift_matches
from lenscorrect.config import ConfigManager
from lenscorrect.errors import BufferAllocationError, NoOverlapError
from lenscorrect.io.image_stack import ImageStack
from lenscorrect.pipeline import CorrectionPipeline
from lenscorrect.pipeline.phases import CanvasPhase, RenderPhase
from lenscorrect.render.bounding_box import BoundingBox
from lenscorrect.transform.composite import Calibration, CompositeTransform


@pytest.fixture
def config() -> ConfigManager:
    config = ConfigManager("nonexistent_config.yaml")
    config.set("render.mesh_resolution", 8)
    config.set("render.interpolation", "nearest")
    config.set("render.max_workers", 2)
    return config


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("test_correction_pipeline")


@pytest.fixture
def calibrations(make_translation) -> list[Calibration]:
    """恒等変換と (2, 1) の平行移動"""
    return [
        Calibration(name="a", transform=CompositeTransform()),
        Calibration(name="b", transform=CompositeTransform([make_translation(2.0, 1.0)])),
    ]


@pytest.fixture
def two_channel_stack(gradient_image) -> ImageStack:
    """(1, 1, 2, 30, 40) uint16 スタック"""
    planes = np.stack([gradient_image, gradient_image // 2])
    return ImageStack.from_planes(planes, name="input.tif")


class TestCanvasPhase:
    """CanvasPhaseのテスト"""

    def test_offset_appended(self, config, logger, calibrations):
        result = CanvasPhase(config, logger).execute(calibrations, 40, 30)
        assert result.bounds == BoundingBox(2, 1, 38, 29)
        assert result.size == (38, 29)
        # 入力のチェーンは変更されない
        assert len(calibrations[0].transform) == 0
        assert [len(chain) for chain in result.chains] == [1, 2]

    def test_crop(self, config, logger, calibrations):
        config.set("render.crop_width", 2)
        result = CanvasPhase(config, logger).execute(calibrations, 40, 30)
        assert result.bounds == BoundingBox(4, 3, 34, 25)

    def test_crop_too_large(self, config, logger, calibrations):
        config.set("render.crop_width", 20)
        with pytest.raises(ValueError, match="crop_width"):
            CanvasPhase(config, logger).execute(calibrations, 40, 30)


class TestRenderPhase:
    """RenderPhaseのテスト"""

    def test_preserves_order_and_dtype(self, config, logger, two_channel_stack):
        chains = [CompositeTransform(), CompositeTransform()]
        rendered = RenderPhase(config, logger).execute([two_channel_stack] * 2, chains, (40, 30))
        assert len(rendered) == 2
        for stack in rendered:
            assert stack.dtype == np.uint16
            np.testing.assert_array_equal(stack.data, two_channel_stack.data)

    def test_output_buffer_allocation_failure(self, config, logger, two_channel_stack):
        """出力バッファを確保できない場合は BufferAllocationError"""
        chains = [CompositeTransform()]
        with patch.object(np, "zeros", side_effect=MemoryError):
            with pytest.raises(BufferAllocationError) as exc_info:
                RenderPhase(config, logger).execute([two_channel_stack], chains, (40, 30))
        assert exc_info.value.shape == (1, 1, 2, 30, 40)

    def test_mapping_memory_logged(self, config, logger, two_channel_stack, caplog):
        chains = [CompositeTransform(), CompositeTransform()]
        with caplog.at_level(logging.DEBUG, logger=logger.name):
            RenderPhase(config, logger).execute([two_channel_stack] * 2, chains, (40, 30))
        assert "画素対応表のメモリ" in caplog.text

    def test_invalid_interpolation_fails_early(self, config, logger):
        config.set("render.interpolation", "lanczos")
        with pytest.raises(ValueError):
            RenderPhase(config, logger)


class TestApplySplit:
    """apply_split のテスト"""

    def test_channel_order(self, config, logger, calibrations, two_channel_stack):
        """入力チャンネル c のチェーン k による描画がチャンネル c * K + k"""
        result = CorrectionPipeline(config, logger).apply_split(two_channel_stack, calibrations)
        data = result.stack.data
        source = two_channel_stack.data

        assert data.shape == (1, 1, 4, 29, 38)
        assert result.stack.dtype == np.uint16
        assert result.bounds == BoundingBox(2, 1, 38, 29)
        # チェーン a: 原点移動のみ
        np.testing.assert_array_equal(data[0, 0, 0], source[0, 0, 0, 1:30, 2:40])
        np.testing.assert_array_equal(data[0, 0, 2], source[0, 0, 1, 1:30, 2:40])
        # チェーン b: 平行移動と原点移動が打ち消し合う
        np.testing.assert_array_equal(data[0, 0, 1], source[0, 0, 0, :29, :38])
        np.testing.assert_array_equal(data[0, 0, 3], source[0, 0, 1, :29, :38])

    def test_calibrations_of_result(self, config, logger, calibrations, two_channel_stack):
        result = CorrectionPipeline(config, logger).apply_split(two_channel_stack, calibrations)
        used = result.calibrations()
        assert [c.name for c in used] == ["a", "b"]
        assert len(used[1].transform) == 2
        assert result.alignment == []

    def test_no_calibrations(self, config, logger, two_channel_stack):
        with pytest.raises(ValueError, match="No transforms found"):
            CorrectionPipeline(config, logger).apply_split(two_channel_stack, [])

    def test_no_overlap(self, config, logger, two_channel_stack, make_translation):
        calibrations = [
            Calibration(name="a", transform=CompositeTransform()),
            Calibration(name="b", transform=CompositeTransform([make_translation(100.0, 0.0)])),
        ]
        with pytest.raises(NoOverlapError):
            CorrectionPipeline(config, logger).apply_split(two_channel_stack, calibrations)

    def test_phase_timings(self, config, logger, calibrations, two_channel_stack):
        pipeline = CorrectionPipeline(config, logger)
        pipeline.apply_split(two_channel_stack, calibrations)
        assert set(pipeline.monitor.get_metrics()) == {"canvas", "render"}


class TestApplyChannels:
    """apply_channels のテスト"""

    def test_channels_rendered_with_matching_chain(self, config, logger, calibrations, gradient_image):
        stacks = [
            ImageStack.from_planes(gradient_image, name="c1.tif"),
            ImageStack.from_planes(gradient_image + 1, name="c2.tif"),
        ]
        result = CorrectionPipeline(config, logger).apply_channels(stacks, calibrations)
        data = result.stack.data

        assert data.shape == (1, 1, 2, 29, 38)
        assert result.stack.name == "c1.tif"
        np.testing.assert_array_equal(data[0, 0, 0], gradient_image[1:30, 2:40])
        np.testing.assert_array_equal(data[0, 0, 1], (gradient_image + 1)[:29, :38])

    def test_crop(self, config, logger, calibrations, gradient_image):
        config.set("render.crop_width", 2)
        stacks = [ImageStack.from_planes(gradient_image), ImageStack.from_planes(gradient_image)]
        result = CorrectionPipeline(config, logger).apply_channels(stacks, calibrations)
        assert result.stack.data.shape == (1, 1, 2, 25, 34)
        np.testing.assert_array_equal(result.stack.data[0, 0, 0], gradient_image[3:28, 4:38])

    def test_count_mismatch(self, config, logger, calibrations, gradient_image):
        stacks = [ImageStack.from_planes(gradient_image)] * 3
        with pytest.raises(ValueError, match="一致しません"):
            CorrectionPipeline(config, logger).apply_channels(stacks, calibrations)

    def test_shape_mismatch(self, config, logger, calibrations, gradient_image):
        stacks = [ImageStack.from_planes(gradient_image), ImageStack.from_planes(gradient_image[:20])]
        with pytest.raises(ValueError, match="大きさ"):
            CorrectionPipeline(config, logger).apply_channels(stacks, calibrations)


class TestAlignment:
    """位置合わせを有効にした場合"""

    def test_identity_corrections(self, config, logger, calibrations, two_channel_stack):
        config.set("alignment.enabled", True)
        config.set("alignment.seed", 0)
        matcher = FakeFeatureMatcher(make_shift_matches(0.0, 0.0))

        pipeline = CorrectionPipeline(config, logger, matcher=matcher)
        result = pipeline.apply_split(two_channel_stack, calibrations)

        assert [r.succeeded for r in result.alignment] == [True, True]
        assert [len(chain) for chain in result.chains] == [2, 3]
        assert matcher.calls == 1
        assert "alignment" in pipeline.monitor.get_metrics()
        np.testing.assert_array_equal(result.stack.data[0, 0, 1], two_channel_stack.data[0, 0, 0, :29, :38])

    def test_failed_alignment_keeps_chain(self, config, logger, calibrations, two_channel_stack):
        config.set("alignment.enabled", True)
        pipeline = CorrectionPipeline(config, logger, matcher=FakeFeatureMatcher())
        result = pipeline.apply_split(two_channel_stack, calibrations)

        assert not result.alignment[1].succeeded
        assert [len(chain) for chain in result.chains] == [2, 2]
        assert result.stack.data.shape == (1, 1, 4, 29, 38)

    def test_correction_applied(self, config, logger, calibrations, gradient_image):
        """補正量だけ描画がずれる"""
        config.set("alignment.enabled", True)
        matcher = FakeFeatureMatcher(make_shift_matches(1.0, 0.0))
        stacks = [ImageStack.from_planes(gradient_image), ImageStack.from_planes(gradient_image)]

        result = CorrectionPipeline(config, logger, matcher=matcher).apply_channels(stacks, calibrations)

        shifted = result.stack.data[0, 0, 1]
        np.testing.assert_array_equal(shifted[:, 1:], gradient_image[:29, :37])
        # 元画像の外から来る列は 0
        assert not shifted[:, 0].any()
