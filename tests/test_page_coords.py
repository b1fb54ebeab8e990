"""Tests for pixel/document coordinate mapping."""

import pytest

from page_coords import (
    document_bounds_to_pixel_region,
    document_to_pixel,
    pixel_segment_to_document_rect,
    pixel_to_document,
)


class TestPointMapping:

    def test_pixel_to_document(self):
        assert pixel_to_document(100, 500, 1000, 1000, 500, 500) == (50, 250)

    def test_document_to_pixel(self):
        assert document_to_pixel(50, 250, 1000, 1000, 500, 500) == (100, 500)

    def test_y_axis_flips(self):
        assert pixel_to_document(0, 0, 100, 200, 50, 100) == (0, 100)
        assert pixel_to_document(0, 200, 100, 200, 50, 100) == (0, 0)

    @pytest.mark.parametrize("point", [(0, 0), (17.3, 401.9), (611.5, 791.2)])
    def test_round_trip_letter_page(self, point):
        img_w, img_h, page_w, page_h = 2550, 3300, 612, 792
        px, py = document_to_pixel(*point, img_w, img_h, page_w, page_h)
        x, y = pixel_to_document(px, py, img_w, img_h, page_w, page_h)
        assert x == pytest.approx(point[0], abs=1e-6)
        assert y == pytest.approx(point[1], abs=1e-6)


class TestRegions:

    def test_padded_region(self):
        region = document_bounds_to_pixel_region([100, 700, 300, 715], 1000, 1000, 1000, 1000,
                                                 padding=15)
        assert region == {"x": 85, "y": 270, "width": 230, "height": 45}

    def test_scaled_region(self):
        region = document_bounds_to_pixel_region([100, 400, 200, 450], 1000, 1000, 500, 500)
        assert region == {"x": 200, "y": 100, "width": 200, "height": 100}

    def test_clipped_to_image(self):
        region = document_bounds_to_pixel_region([0, 0, 50, 20], 100, 100, 100, 100, padding=15)
        assert region["x"] == 0
        assert region["y"] + region["height"] == 100

    def test_off_page_has_no_area(self):
        region = document_bounds_to_pixel_region([10, 300, 50, 320], 100, 100, 100, 100,
                                                 padding=5)
        assert region["height"] <= 0


class TestSegmentRect:

    def test_rule_is_bottom_edge(self):
        segment = {"start_x": 300, "end_x": 500, "y": 500, "length": 200, "thickness": 2}
        rect = pixel_segment_to_document_rect(segment, 1000, 1000, 500, 500)
        assert rect == {"x": 150, "y": 250, "width": 100, "height": 15.0}

    def test_field_height(self):
        segment = {"start_x": 0, "end_x": 72, "y": 72, "length": 72, "thickness": 1}
        rect = pixel_segment_to_document_rect(segment, 72, 144, 72, 144, field_height=20)
        assert rect["height"] == 20
        assert rect["y"] == 72
