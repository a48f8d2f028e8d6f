"""Unit tests for SIFT feature matching."""

from __future__ import annotations

import numpy as np
import pytest

from lenscorrect.align.features import PointMatch, SiftFeatureMatcher, SiftParams, matches_to_arrays, to_uint8


class TestToUint8:
    """to_uint8 のテスト"""

    def test_stretch(self):
        plane = np.array([[10.0, 20.0], [30.0, 40.0]])
        result = to_uint8(plane)
        assert result.dtype == np.uint8
        assert result.min() == 0
        assert result.max() == 255

    def test_flat_image(self):
        assert not to_uint8(np.full((4, 4), 7.0)).any()


class TestSiftFeatureMatcher:
    """SiftFeatureMatcherのテスト"""

    def test_shifted_crop(self, textured_image):
        """同じ画像の切り出し同士では一定のずれの対応点が得られる"""
        reference = textured_image[0:180, 0:220]
        subject = textured_image[5:185, 8:228]
        matches = SiftFeatureMatcher().match(subject, reference)
        assert len(matches) >= 10

        p1, p2 = matches_to_arrays(matches)
        displacement = np.median(p2 - p1, axis=0)
        assert displacement[0] == pytest.approx(8.0, abs=0.5)
        assert displacement[1] == pytest.approx(5.0, abs=0.5)

    def test_identical_images(self, textured_image):
        matches = SiftFeatureMatcher().match(textured_image, textured_image)
        assert matches
        p1, p2 = matches_to_arrays(matches)
        np.testing.assert_allclose(np.median(p2 - p1, axis=0), [0.0, 0.0], atol=1e-3)

    def test_blank_image(self, textured_image):
        blank = np.zeros_like(textured_image)
        assert SiftFeatureMatcher().match(blank, textured_image) == []

    def test_scaled_extraction(self, textured_image):
        """縮小して抽出しても座標は元画像の画素単位"""
        matcher = SiftFeatureMatcher(SiftParams(max_scale=0.5, min_scale=0.1))
        points, descriptors = matcher.extract(textured_image)
        assert len(points) == len(descriptors)
        assert points[:, 0].max() < textured_image.shape[1]
        assert points[:, 1].max() < textured_image.shape[0]

    def test_min_scale_limits_octaves(self, textured_image):
        all_points, _ = SiftFeatureMatcher(SiftParams(min_scale=0.01)).extract(textured_image)
        fine_points, _ = SiftFeatureMatcher(SiftParams(min_scale=1.0)).extract(textured_image)
        assert len(fine_points) <= len(all_points)

    def test_invalid_params(self):
        with pytest.raises(ValueError):
            SiftFeatureMatcher(SiftParams(max_scale=0.5, min_scale=0.8))
        with pytest.raises(ValueError):
            SiftFeatureMatcher(SiftParams(rod=1.5))


def test_matches_to_arrays_empty():
    p1, p2 = matches_to_arrays([])
    assert p1.shape == (0, 2)
    assert p2.shape == (0, 2)


def test_point_match_is_hashable():
    assert len({PointMatch((0.0, 0.0), (1.0, 1.0)), PointMatch((0.0, 0.0), (1.0, 1.0))}) == 1
