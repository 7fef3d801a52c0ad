"""Tests for page <-> viewport rectangle mapping."""

import itertools

import pytest

from skfill.coords import normalize_rect, scale_rect, to_page, to_viewport
from skfill.models import ViewportRect


class TestToViewport:
    """Page space (bottom-left origin) to viewport space (top-left origin)."""

    def test_basic_mapping(self):
        box = to_viewport([50, 700, 300, 720], 792)
        assert box == ViewportRect(x=50, y=72, width=250, height=20)

    def test_size_non_negative_for_any_corner_order(self):
        x1, y1, x2, y2 = 10.0, 20.0, 110.0, 70.0
        orders = [
            [x1, y1, x2, y2],
            [x2, y2, x1, y1],
            [x1, y2, x2, y1],
            [x2, y1, x1, y2],
        ]
        for rect, height in itertools.product(orders, (1.0, 100.0, 792.0)):
            box = to_viewport(rect, height)
            assert box.width >= 0
            assert box.height >= 0
            assert box.width == 100.0
            assert box.height == 50.0
            assert box.x == 10.0
            assert box.y == height - 70.0

    def test_negative_coordinates(self):
        box = to_viewport([-20, -10, 0, 10], 100)
        assert box.x == -20
        assert box.y == 90
        assert box.width == 20
        assert box.height == 20

    def test_wrong_length_raises(self):
        with pytest.raises(ValueError):
            to_viewport([1, 2, 3], 100)


class TestToPage:
    """Viewport boxes map back to normalized page rects."""

    def test_inverse(self):
        rect = [300, 720, 50, 700]
        box = to_viewport(rect, 792)
        assert to_page(box, 792) == normalize_rect(rect)


class TestHelpers:
    """normalize_rect and scale_rect."""

    def test_normalize_orders_corners(self):
        assert normalize_rect([5, 9, 1, 2]) == [1, 2, 5, 9]

    def test_scale(self):
        assert scale_rect([10, 20, 30, 40], 1.5) == [15, 30, 45, 60]
