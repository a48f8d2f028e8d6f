"""Unit tests for composite transforms."""

from __future__ import annotations

import numpy as np
import pytest

from lenscorrect.transform.composite import Calibration, CompositeTransform, Point, PrimitiveTransform
from lenscorrect.transform.models import RigidModel2D


class TestCompositeTransform:
    """CompositeTransformのテスト"""

    def test_empty_is_identity(self):
        composite = CompositeTransform()
        assert composite.apply(Point(3.0, 4.0)) == Point(3.0, 4.0)
        np.testing.assert_array_equal(composite.apply_array(np.array([[1.0, 2.0]])), [[1.0, 2.0]])

    def test_apply_order(self, make_translation):
        """子は追加順に適用される: apply(p) == b(a(p))"""
        a = PrimitiveTransform.from_model(RigidModel2D(np.pi / 2, 0.0, 0.0))
        b = make_translation(10.0, 0.0)
        composite = CompositeTransform([a, b])

        for p in (Point(1.0, 0.0), Point(-2.5, 3.0), Point(0.0, 0.0)):
            expected = b.apply(a.apply(p))
            result = composite.apply(p)
            assert result.x == pytest.approx(expected.x)
            assert result.y == pytest.approx(expected.y)

        # 逆順では結果が異なる
        reversed_result = CompositeTransform([b, a]).apply(Point(1.0, 0.0))
        assert reversed_result.y == pytest.approx(11.0)
        assert composite.apply(Point(1.0, 0.0)).x == pytest.approx(10.0)

    def test_apply_array_matches_apply(self, make_translation, nonlinear_primitive):
        composite = CompositeTransform([nonlinear_primitive, make_translation(1.0, 2.0)])
        points = np.array([[0.0, 0.0], [5.0, 7.0], [63.0, 47.0]])
        mapped = composite.apply_array(points)
        for (x, y), (mx, my) in zip(points, mapped):
            p = composite.apply(Point(x, y))
            assert p.x == pytest.approx(mx)
            assert p.y == pytest.approx(my)

    def test_nested(self, make_translation):
        inner = CompositeTransform([make_translation(1.0, 0.0), make_translation(0.0, 1.0)])
        outer = CompositeTransform([inner, make_translation(2.0, 2.0)])
        assert outer.apply(Point(0.0, 0.0)) == Point(3.0, 3.0)
        assert len(list(outer.primitives())) == 3

    def test_append_keeps_existing_children(self, make_translation):
        first = make_translation(1.0, 0.0)
        composite = CompositeTransform([first])
        composite.append(make_translation(0.0, 1.0))
        assert composite.children[0] is first
        assert len(composite) == 2

    def test_append_copies_composite(self, make_translation):
        """合成変換の追加は複製されるため、元の変更は波及しない"""
        shared = CompositeTransform([make_translation(1.0, 1.0)])
        chain_a = CompositeTransform([shared])
        chain_b = CompositeTransform([shared])

        shared.append(make_translation(5.0, 5.0))
        chain_a.children[0].append(make_translation(7.0, 7.0))

        assert chain_a.children[0] is not chain_b.children[0]
        assert chain_b.apply(Point(0.0, 0.0)) == Point(1.0, 1.0)
        assert chain_a.apply(Point(0.0, 0.0)) == Point(8.0, 8.0)

    def test_append_rejects_other_types(self):
        with pytest.raises(TypeError):
            CompositeTransform().append("not a transform")

    def test_children_is_read_only_view(self, make_translation):
        composite = CompositeTransform([make_translation(1.0, 1.0)])
        assert isinstance(composite.children, tuple)

    def test_copy_is_independent(self, make_translation):
        original = CompositeTransform([CompositeTransform([make_translation(1.0, 0.0)])])
        clone = original.copy()
        assert clone == original
        clone.append(make_translation(1.0, 1.0))
        assert clone != original
        assert len(original) == 1

    def test_equality_is_structural(self, make_translation):
        a = CompositeTransform([make_translation(1.0, 2.0)])
        b = CompositeTransform([make_translation(1.0, 2.0)])
        nested = CompositeTransform([CompositeTransform([make_translation(1.0, 2.0)])])
        assert a == b
        assert a != nested

    def test_deep_nesting(self, make_translation):
        """深い入れ子でも再帰上限に達しない"""
        depth = 5000
        root = CompositeTransform._adopt([])
        node = root
        for _ in range(depth):
            child = CompositeTransform._adopt([])
            node._children.append(child)
            node = child
        node._children.append(make_translation(1.0, 1.0))

        assert root.apply(Point(0.0, 0.0)) == Point(1.0, 1.0)
        assert root.copy() == root


def test_calibration_copy(make_translation):
    calibration = Calibration(name="c", transform=CompositeTransform([make_translation(1.0, 1.0)]))
    clone = calibration.copy()
    clone.transform.append(make_translation(1.0, 1.0))
    assert len(calibration.transform) == 1
    assert clone.name == "c"
